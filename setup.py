from setuptools import setup

setup(
    name="nshm_faults",
    version="0.1.0",
    packages=["nshm_faults", "nshm_faults.scripts"],
    install_requires=["lxml", "numpy", "shapely>=2.0", "typer"],
    extras_require={"test": ["hypothesis", "pytest"]},
    entry_points={
        "console_scripts": [
            "nshm-convert-faults=nshm_faults.scripts.convert_faults:main",
        ]
    },
    python_requires=">=3.11",
    include_package_data=True,
    zip_safe=False,
)
