import dataclasses
import io
from pathlib import Path

import pytest
import shapely
from hypothesis import given
from hypothesis import strategies as st
from lxml import etree

from nshm_faults import fault_converter, mfd
from nshm_faults.fault_converter import (
    ConsolidationError,
    EmptyMFDError,
    FaultConversionError,
    FaultSource,
    FocalMechanism,
    MagnitudeScaling,
    SourceFile,
    SourceRegion,
)
from nshm_faults.magnitude_uncertainty import ConfigurationError, read_magnitude_uncertainty
from nshm_faults.mfd import CharacteristicMFD, GutenbergRichterMFD
from nshm_faults.parse_utils import ExhaustedInputError, LineCursor, MalformedLineError

FAULT_DIR = Path(__file__).parent / "faults"


def header_lines(aleatory: str = "0.0 0") -> list[str]:
    """Header blocks with a site grid, no ground motion periods and the given aleatory line."""
    return [
        "0",  # site grid
        "40.0 45.0 0.1",
        "-125.0 -120.0 0.1",
        "760.0 2.0",
        "1000.0 1.0",  # rMax
        "0",  # periods
        "1.0 0.0",  # distance sampling
        "1",
        "0.0",
        "1.0",
        aleatory,
    ]


def source_lines(
    header: str,
    mfd_lines: list[str],
    dip: float = 90.0,
    trace: list[tuple[float, float]] | None = None,
) -> list[str]:
    trace = trace or [(40.0, -111.0), (40.5, -111.2)]
    return (
        [header]
        + mfd_lines
        + [f"{dip} 12.0 0.0", str(len(trace))]
        + [f"{lat} {lon}" for lat, lon in trace]
    )


def ceus_file(*sources: list[str], aleatory: str = "0.0 0") -> SourceFile:
    lines = header_lines(aleatory)
    for source in sources:
        lines += source
    return SourceFile(
        name="ceus_test.in", region=SourceRegion.CEUS, weight=0.5, lines=tuple(lines)
    )


def fault_source(**kwargs) -> FaultSource:
    fields = dict(
        source_file=SourceFile("test.in", SourceRegion.WUS, 1.0, ()),
        focal_mechanism=FocalMechanism.STRIKE_SLIP,
        name="Smith",
        dip=50.0,
        width=15.0,
        top=0.0,
        trace=shapely.LineString([(-111.0, 40.0, 0.0), (-111.2, 40.5, 0.0)]),
        mfds=(CharacteristicMFD(6.8, 0.001, 1.0),),
    )
    fields.update(kwargs)
    return FaultSource(**fields)


def test_skip_site_data_station_list():
    cursor = LineCursor(["3", "sta1", "sta2", "sta3", "760.0 2.0", "next"])
    fault_converter.skip_site_data(cursor)
    assert cursor.next_line() == "next"


def test_skip_site_data_grid():
    cursor = LineCursor(["-1", "lat bounds", "lon bounds", "760.0 2.0", "next"])
    fault_converter.skip_site_data(cursor)
    assert cursor.next_line() == "next"


def test_skip_gmms():
    cursor = LineCursor(
        [
            "2",
            # period with ground motion epistemic uncertainty
            "0.0 1",
            "epi 1",
            "epi 2",
            "epi 3",
            "out/pga",
            "3",
            "0.05 0.1 0.2",
            "2 ! relations",
            "relation 1",
            "relation 2",
            # period without
            "1.0 0",
            "out/1hz",
            "1",
            "0.1",
            "1",
            "relation 1",
            "next",
        ]
    )
    fault_converter.skip_gmms(cursor)
    assert cursor.next_line() == "next"


def test_skip_gmms_truncated():
    cursor = LineCursor(["1", "0.0 1", "epi 1"])
    with pytest.raises(ExhaustedInputError):
        fault_converter.skip_gmms(cursor)


@pytest.mark.parametrize(
    "raw, cleaned",
    [
        ("Juniper Mountain fault", "Juniper Mountain"),
        ("Klamath graben fault zone", "Klamath graben"),
        ("Hat Creek-McArthur-Mayfield faults", "Hat Creek - McArthur - Mayfield"),
        ("Gillem/Big Crack", "Gillem - Big Crack"),
        ("Seattle fault, Seattle , N", "Seattle - Seattle - N"),
        ("Lake Creek;Central", "Lake Creek : Central"),
        ("  Smith   fault  ", "Smith"),
    ],
)
def test_clean_name(raw: str, cleaned: str):
    assert fault_converter.clean_name(raw) == cleaned


@given(name=st.text(alphabet="abcfltuzone -/,;\t", max_size=40))
def test_clean_name_idempotent(name: str):
    cleaned = fault_converter.clean_name(name)
    assert fault_converter.clean_name(cleaned) == cleaned


@pytest.mark.parametrize(
    "name, region, index",
    [
        ("aFault_aPriori_D2.1.in", SourceRegion.CA, 3),
        ("bFault.ch.in", SourceRegion.WUS, 3),
        ("NMSZnocl.1000yr.5branch.in", SourceRegion.CEUS, 3),
        ("wasatch.3dip.74.in", SourceRegion.WUS, 4),
        ("orwa_c.in", SourceRegion.WUS, 5),
    ],
)
def test_name_start_index(name: str, region: SourceRegion, index: int):
    source_file = SourceFile(name=name, region=region, weight=1.0, lines=())
    assert fault_converter.name_start_index(source_file) == index


def test_magnitude_scaling():
    assert fault_converter.magnitude_scaling("aFault_unseg.in") == MagnitudeScaling.NSHMP_CA
    assert fault_converter.magnitude_scaling("orwa_c.in") == MagnitudeScaling.WC_94_LENGTH


def test_focal_mechanisms():
    assert FocalMechanism.from_id(1).rake == 0.0
    assert FocalMechanism.from_id(2).rake == 90.0
    assert FocalMechanism.from_id(3).rake == -90.0
    with pytest.raises(MalformedLineError):
        FocalMechanism.from_id(4)


def test_fault_source_equality_ignores_mfds():
    first = fault_source()
    second = fault_source(mfds=(GutenbergRichterMFD(3.2, 0.8, 6.5, 7.2, 0.1, 1.0),))
    assert first == second
    assert second == first


@pytest.mark.parametrize(
    "changes",
    [
        dict(dip=50.0 + 1e-9),
        dict(width=15.5),
        dict(top=1.0),
        dict(name="Jones"),
        dict(focal_mechanism=FocalMechanism.REVERSE),
        dict(source_file=SourceFile("other.in", SourceRegion.WUS, 1.0, ())),
        dict(trace=shapely.LineString([(-111.0, 40.0, 0.0), (-111.3, 40.5, 0.0)])),
    ],
)
def test_fault_source_inequality(changes: dict):
    first = fault_source()
    other = fault_source(**changes)
    assert first != other
    assert other != first


def test_fault_source_equality_uses_file_name_only():
    other_file = SourceFile("test.in", SourceRegion.CEUS, 0.2, ("different",))
    assert fault_source() == fault_source(source_file=other_file)


def test_negative_dip_reverses_trace():
    trace = [(40.0, -111.0), (40.2, -111.1), (40.5, -111.2)]
    source_file = ceus_file(
        source_lines("1 1 1 Reversed", ["6.8 0.001 1.0"], dip=-50.0, trace=trace)
    )
    (source,) = fault_converter.read_fault_source_set(source_file).sources["Reversed"]
    assert source.dip == 50.0
    assert list(source.trace.coords) == [
        (-111.2, 40.5, 0.0),
        (-111.1, 40.2, 0.0),
        (-111.0, 40.0, 0.0),
    ]


def test_normal_fault_name_includes_dip():
    source_file = ceus_file(
        source_lines("1 3 1 Wasatch fault", ["6.8 0.001 1.0"], dip=50.7),
        source_lines("1 3 1 Wasatch fault", ["6.8 0.001 1.0"], dip=-35.0),
    )
    fault_source_set = fault_converter.read_fault_source_set(source_file)
    assert list(fault_source_set.sources) == ["Wasatch 50", "Wasatch 35"]


def test_empty_mfds():
    source_file = ceus_file(source_lines("1 1 0 Empty", []))
    with pytest.raises(EmptyMFDError) as exc_info:
        fault_converter.read_fault_source_set(source_file)
    assert any("source 0" in note for note in exc_info.value.__notes__)


def test_short_trace():
    source_file = ceus_file(
        source_lines("1 1 1 Short", ["6.8 0.001 1.0"], trace=[(40.0, -111.0)])
    )
    with pytest.raises(MalformedLineError):
        fault_converter.read_fault_source_set(source_file)


def test_truncated_source():
    source_file = ceus_file(["1 1 2 Truncated", "6.8 0.001 1.0"])
    with pytest.raises(ExhaustedInputError):
        fault_converter.read_fault_source_set(source_file)


def test_scenario_single_characteristic_source():
    lines = header_lines() + [
        "1 1 1 1 name",
        "6.5 0.01 1.0",
        "90 12 0",
        "2",
        "40.0 -111.0",
        "40.5 -111.2",
    ]
    source_file = SourceFile(
        name="wasatch.3dip.74.in", region=SourceRegion.WUS, weight=1.0, lines=tuple(lines)
    )
    fault_source_set = fault_converter.read_fault_source_set(source_file)

    ((name, source, mfds),) = fault_source_set.consolidate()
    assert name == "name"
    assert mfds == [CharacteristicMFD(magnitude=6.5, rate=0.01, weight=1.0)]
    assert len(source.trace.coords) == 2

    root = fault_source_set.to_xml()
    (source_element,) = root.findall("Source")
    assert source_element.get("name") == "name"
    (mfd_element,) = source_element.findall("MagFreqDist")
    assert mfd_element.get("type") == "SINGLE"
    assert mfd_element.get("rate") == "0.01"
    # Magnitude and weight match the reference so are not repeated.
    assert mfd_element.get("m") is None
    assert mfd_element.get("weight") is None
    trace = source_element.find("Geometry/Trace")
    assert trace.text.split() == [
        "-111.00000,40.00000,0.00000",
        "-111.20000,40.50000,0.00000",
    ]


def test_scenario_names_merged_after_normalisation():
    source_file = ceus_file(
        source_lines("1 1 1 Smith fault", ["6.8 0.001 0.5"]),
        source_lines("2 1 1 Smith", ["3.2 0.8 6.5 7.2 0.1 0.5"]),
    )
    fault_source_set = fault_converter.read_fault_source_set(source_file)
    assert list(fault_source_set.sources) == ["Smith"]

    ((name, _, mfds),) = fault_source_set.consolidate()
    assert name == "Smith"
    assert mfds == [
        CharacteristicMFD(6.8, 0.001, 0.5),
        GutenbergRichterMFD(3.2, 0.8, 6.5, 7.2, 0.1, 0.5),
    ]

    root = fault_source_set.to_xml()
    (source_element,) = root.findall("Source")
    assert [element.get("type") for element in source_element.findall("MagFreqDist")] == [
        "SINGLE",
        "GR",
    ]
    assert len(source_element.findall("Geometry")) == 1


def test_scenario_dissimilar_duplicates(tmp_path: Path):
    source_file = ceus_file(
        source_lines("1 1 1 Smith fault", ["6.8 0.001 0.5"], dip=90.0),
        source_lines("1 1 1 Smith", ["6.9 0.001 0.5"], dip=80.0),
    )
    fault_source_set = fault_converter.read_fault_source_set(source_file)
    with pytest.raises(ConsolidationError) as exc_info:
        fault_source_set.to_xml()
    error = exc_info.value
    assert error.name == "Smith"
    assert error.index == 1
    assert error.first.dip == 90.0
    assert error.other.dip == 80.0
    assert "ceus_test.in" in str(error)
    assert "dip=90.0" in str(error) and "dip=80.0" in str(error)

    with pytest.raises(FaultConversionError) as exc_info:
        fault_converter.convert(source_file, tmp_path)
    assert isinstance(exc_info.value.__cause__, ConsolidationError)
    assert exc_info.value.file_name == "ceus_test.in"
    assert exc_info.value.region == SourceRegion.CEUS
    assert not any(tmp_path.iterdir())


def test_scenario_zero_slope_branch_with_aleatory(tmp_path: Path):
    source_file = ceus_file(
        source_lines("-2 1 1 Test", ["3.2 0.8 6.5 7.2 0.1 1.0"]),
        aleatory="0.12 2",
    )
    with pytest.raises(ConfigurationError):
        fault_converter.read_fault_source_set(source_file)

    with pytest.raises(FaultConversionError) as exc_info:
        fault_converter.convert(source_file, tmp_path)
    assert isinstance(exc_info.value.__cause__, ConfigurationError)
    assert not any(tmp_path.iterdir())


def test_zero_slope_branch_source():
    source_file = ceus_file(source_lines("-2 2 1 Test", ["3.2 0.8 6.5 7.2 0.1 1.0"]))
    ((_, _, mfds),) = fault_converter.read_fault_source_set(source_file).consolidate()
    assert [entry.b_value for entry in mfds] == [0.8, 0.0]
    assert [entry.weight for entry in mfds] == [0.5, 0.5]


def test_sample_file():
    source_file = SourceFile.read_from_file(
        FAULT_DIR / "orwa_sample.in", SourceRegion.WUS, 1.0
    )
    assert source_file.name == "orwa_sample.in"
    fault_source_set = fault_converter.read_fault_source_set(source_file)

    uncertainty = fault_source_set.magnitude_uncertainty
    assert uncertainty.epistemic_deltas == (-0.2, 0.2)
    assert uncertainty.aleatory_count == 5
    assert not uncertainty.moment_balance

    assert list(fault_source_set.sources) == [
        "Juniper Mountain",
        "Klamath graben 50",
        "Sky Lakes",
    ]
    (juniper,) = fault_source_set.sources["Juniper Mountain"]
    assert juniper.focal_mechanism == FocalMechanism.STRIKE_SLIP
    assert juniper.mfds == (
        CharacteristicMFD(6.8, 0.001, 0.6),
        CharacteristicMFD(7.0, 0.0005, 0.4),
    )
    assert len(juniper.trace.coords) == 3

    (klamath,) = fault_source_set.sources["Klamath graben 50"]
    assert klamath.focal_mechanism == FocalMechanism.NORMAL
    assert klamath.dip == 50.0
    assert list(klamath.trace.coords)[0] == (-121.9, 42.3, 0.0)

    (sky_lakes,) = fault_source_set.sources["Sky Lakes"]
    (collapsed,) = sky_lakes.mfds
    assert isinstance(collapsed, CharacteristicMFD)
    assert collapsed.floats
    assert collapsed.magnitude == 6.6
    assert collapsed.rate == pytest.approx(10 ** (1.2 - 0.9 * 6.6))
    assert sky_lakes.top == 1.0

    assert fault_source_set.references.characteristic == mfd.REFERENCE_CH
    assert fault_source_set.references.gutenberg_richter == mfd.REFERENCE_GR


def test_sample_file_xml():
    source_file = SourceFile.read_from_file(
        FAULT_DIR / "orwa_sample.in", SourceRegion.WUS, 0.5
    )
    buffer = io.BytesIO()
    fault_converter.read_fault_source_set(source_file).write(buffer)
    output = buffer.getvalue()
    assert output.startswith(b"<?xml version='1.0' encoding='UTF-8' standalone='yes'?>")

    root = etree.fromstring(output)
    assert root.tag == "FaultSourceSet"
    assert root.get("name") == "orwa_sample.in"
    assert root.get("weight") == "0.5"

    settings = root.find("Settings")
    assert [child.tag for child in settings] == [
        "MagFreqDistRef",
        "MagUncertainty",
        "SourceProperties",
    ]
    assert [element.get("type") for element in settings.find("MagFreqDistRef")] == [
        "SINGLE",
        "GR",
    ]
    assert settings.find("SourceProperties").get("magScaling") == "WC_94_LENGTH"
    assert settings.find("MagUncertainty/Aleatory").get("moBalance") == "false"

    sources = root.findall("Source")
    assert [source.get("name") for source in sources] == [
        "Juniper Mountain",
        "Klamath graben 50",
        "Sky Lakes",
    ]
    klamath = sources[1]
    (gr,) = klamath.findall("MagFreqDist")
    assert dict(gr.attrib) == {"type": "GR", "a": "3.2", "mMin": "6.5", "mMax": "7.2"}
    geometry = klamath.find("Geometry")
    assert dict(geometry.attrib) == {
        "dip": "50",
        "width": "15",
        "rake": "-90",
        "depth": "0",
    }
    assert geometry.find("Trace").text.split() == [
        "-121.90000,42.30000,0.00000",
        "-121.80000,42.00000,0.00000",
    ]


def test_no_references_without_mfds_built():
    fault_source_set = fault_converter.FaultSourceSet(
        name="empty.in",
        weight=1.0,
        region=SourceRegion.WUS,
        magnitude_uncertainty=read_magnitude_uncertainty(
            ["1", "0.0", "1.0", "0.0 0"]
        ),
    )
    root = fault_source_set.to_xml()
    assert root.find("Settings/MagFreqDistRef") is None
    assert root.findall("Source") == []


def test_add_logs_duplicate_names(caplog: pytest.LogCaptureFixture):
    fault_source_set = fault_converter.FaultSourceSet(
        name="test.in",
        weight=1.0,
        region=SourceRegion.WUS,
        magnitude_uncertainty=read_magnitude_uncertainty(
            ["1", "0.0", "1.0", "0.0 0"]
        ),
    )
    fault_source_set.add(fault_source())
    fault_source_set.add(fault_source())
    assert len(fault_source_set.sources["Smith"]) == 2
    assert "Name map already contains: Smith" in caplog.text


def test_output_path(tmp_path: Path):
    source_file = SourceFile(
        name="wasatch.3dip.74.in", region=SourceRegion.WUS, weight=1.0, lines=()
    )
    assert fault_converter.output_path(tmp_path, source_file) == (
        tmp_path / "WUS" / "Fault" / "wasatch.3dip.74.xml"
    )
    grid_file = dataclasses.replace(source_file, source_type="Grid")
    assert fault_converter.output_path(tmp_path, grid_file).parent.name == "Grid"


def test_convert(tmp_path: Path):
    source_file = SourceFile.read_from_file(
        FAULT_DIR / "orwa_sample.in", SourceRegion.WUS, 1.0
    )
    out_path = fault_converter.convert(source_file, tmp_path)
    assert out_path == tmp_path / "WUS" / "Fault" / "orwa_sample.xml"
    assert etree.parse(str(out_path)).getroot().tag == "FaultSourceSet"


def test_convert_all_isolates_failures(tmp_path: Path):
    good = SourceFile.read_from_file(FAULT_DIR / "orwa_sample.in", SourceRegion.WUS, 1.0)
    bad = dataclasses.replace(good, name="broken.in", lines=good.lines[:-3])
    failures = fault_converter.convert_all([bad, good], tmp_path)
    assert [failure.file_name for failure in failures] == ["broken.in"]
    assert isinstance(failures[0].__cause__, ExhaustedInputError)
    assert (tmp_path / "WUS" / "Fault" / "orwa_sample.xml").exists()
    assert not (tmp_path / "WUS" / "Fault" / "broken.xml").exists()


@pytest.mark.parametrize(
    "line_index, line",
    [
        (10, "-1                      ! number of attenuation relations"),
        (18, "1 1 -1 1    805 Juniper Mountain fault"),
        (17, "-0.12 nan"),
    ],
)
def test_convert_all_isolates_invalid_counts(tmp_path: Path, line_index: int, line: str):
    good = SourceFile.read_from_file(FAULT_DIR / "orwa_sample.in", SourceRegion.WUS, 1.0)
    lines = list(good.lines)
    lines[line_index] = line
    bad = dataclasses.replace(good, name="broken.in", lines=tuple(lines))
    failures = fault_converter.convert_all([bad, good], tmp_path)
    assert [failure.file_name for failure in failures] == ["broken.in"]
    assert isinstance(failures[0].__cause__, (MalformedLineError, ConfigurationError))
    assert (tmp_path / "WUS" / "Fault" / "orwa_sample.xml").exists()
    assert not (tmp_path / "WUS" / "Fault" / "broken.xml").exists()
