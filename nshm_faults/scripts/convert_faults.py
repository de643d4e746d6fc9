"""Convert NSHMP fault input files to XML."""

import logging
from pathlib import Path
from typing import Annotated

import typer

from nshm_faults import fault_converter
from nshm_faults.fault_converter import SourceRegion

logger = logging.getLogger(__name__)


def convert_faults(
    input_ffps: Annotated[
        list[Path],
        typer.Argument(
            help="NSHMP fault input files to convert.",
            exists=True,
            readable=True,
            dir_okay=False,
        ),
    ],
    output_dir: Annotated[
        Path, typer.Argument(help="Root output directory.", file_okay=False)
    ],
    region: Annotated[
        SourceRegion, typer.Option(help="Region of the input files.")
    ] = SourceRegion.WUS,
    weight: Annotated[
        float, typer.Option(help="Weight of each file within its source set.")
    ] = 1.0,
    source_type: Annotated[
        str, typer.Option(help="Source type directory to write output into.")
    ] = "Fault",
    verbose: Annotated[
        bool, typer.Option(help="Log each source and MFD as it is read.")
    ] = False,
):
    """Convert NSHMP fault input files to XML source models."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    source_files = []
    read_failures = 0
    for input_ffp in input_ffps:
        try:
            source_files.append(
                fault_converter.SourceFile.read_from_file(
                    input_ffp, region, weight=weight, source_type=source_type
                )
            )
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Failed to read %s: %s", input_ffp, e)
            read_failures += 1
    failures = len(fault_converter.convert_all(source_files, output_dir)) + read_failures
    if failures:
        typer.echo(f"Failed to convert {failures} file(s).", err=True)
        raise typer.Exit(code=1)


def main():
    typer.run(convert_faults)


if __name__ == "__main__":
    main()
