"""Convert NSHMP fault source input files to XML.

An NSHMP fault input file describes a set of fault sources for a region.
After some header blocks that only matter to the legacy hazard codes
(site data, ground motion models), each file has a magnitude uncertainty
block followed by a list of sources. Each source is written as::

    2 3 1 1    805 Juniper Mountain fault     ! MFD type, mechanism, MFD count, ..., name
    0.0 0.8 6.5 7.1 0.1 1.0                   ! one line per MFD
    50.0 15.0 0.0                             ! dip, width, depth to top
    2                                         ! trace point count
    42.10 -121.50                             ! one lat lon line per trace point
    42.40 -121.60

Sources that share a name (after normalisation) are merged into one
source element, provided they are identical apart from their MFDs.

Example
-------
>>> source_file = SourceFile.read_from_file(Path("orwa_c.in"), SourceRegion.WUS, 1.0)
>>> fault_source_set = read_fault_source_set(source_file)
>>> fault_source_set.write(Path("orwa_c.xml"))
"""

import dataclasses
import logging
import re
from collections.abc import Iterable
from enum import Enum, StrEnum
from pathlib import Path
from typing import IO

import shapely
from lxml import etree

from nshm_faults import mfd
from nshm_faults.magnitude_uncertainty import (
    ConfigurationError,
    MagnitudeUncertainty,
    read_magnitude_uncertainty,
)
from nshm_faults.parse_utils import (
    LineCursor,
    MalformedLineError,
    ParseError,
    read_float,
    read_int,
    tokenise,
)

logger = logging.getLogger(__name__)

CALIFORNIA_PREFIXES = ("aFault", "bFault")
"""File name prefixes of California fault files."""

# Token index at which the source name begins, for files that do not
# follow the usual convention.
NAME_INDEX_EXCEPTIONS = {"wasatch.3dip.74.in": 4}
DEFAULT_NAME_INDEX = 5
SHORT_NAME_INDEX = 3


class SourceRegion(StrEnum):
    """NSHMP source regions."""

    CA = "CA"
    CEUS = "CEUS"
    WUS = "WUS"


class FocalMechanism(Enum):
    """Fault rupture styles, by NSHMP mechanism code."""

    STRIKE_SLIP = 1
    REVERSE = 2
    NORMAL = 3

    @property
    def rake(self) -> float:
        """float: The rake (degrees) used for this mechanism."""
        return RAKES[self]

    @classmethod
    def from_id(cls, mechanism_id: int) -> "FocalMechanism":
        """Look up a focal mechanism by its NSHMP code.

        Raises
        ------
        MalformedLineError
            If the code is not a known focal mechanism.
        """
        try:
            return cls(mechanism_id)
        except ValueError:
            raise MalformedLineError(f"Unknown focal mechanism code: {mechanism_id}")


RAKES = {
    FocalMechanism.STRIKE_SLIP: 0.0,
    FocalMechanism.REVERSE: 90.0,
    FocalMechanism.NORMAL: -90.0,
}


class MagnitudeScaling(StrEnum):
    """Magnitude scaling relations applied to a fault source set."""

    NSHMP_CA = "NSHMP_CA"
    WC_94_LENGTH = "WC_94_LENGTH"


def is_california(name: str) -> bool:
    """Check if a file or source set name follows the California naming convention."""
    return name.startswith(CALIFORNIA_PREFIXES)


def magnitude_scaling(name: str) -> MagnitudeScaling:
    """Find the magnitude scaling relation for a source set.

    Parameters
    ----------
    name : str
        The name of the source set.

    Returns
    -------
    MagnitudeScaling
        `MagnitudeScaling.NSHMP_CA` for California source sets, and
        `MagnitudeScaling.WC_94_LENGTH` otherwise.
    """
    return (
        MagnitudeScaling.NSHMP_CA if is_california(name) else MagnitudeScaling.WC_94_LENGTH
    )


@dataclasses.dataclass(frozen=True)
class SourceFile:
    """An NSHMP fault input file."""

    name: str
    """The file name (with extension)."""
    region: SourceRegion
    """The region the file belongs to."""
    weight: float
    """The weight of this file within its source set."""
    lines: tuple[str, ...]
    """The decoded lines of the file."""
    source_type: str = "Fault"
    """The source type classifier, used to build output paths."""

    @classmethod
    def read_from_file(
        cls,
        path: Path,
        region: SourceRegion,
        weight: float = 1.0,
        source_type: str = "Fault",
    ) -> "SourceFile":
        """Read an NSHMP fault input file.

        Parameters
        ----------
        path : Path
            The path to the input file.
        region : SourceRegion
            The region of the file.
        weight : float
            The weight of the file within its source set. Defaults to 1.0.
        source_type : str
            The source type classifier. Defaults to "Fault".

        Returns
        -------
        SourceFile
            The input file.
        """
        with open(path, "r", encoding="utf-8") as source_file_handle:
            lines = tuple(line.rstrip("\r\n") for line in source_file_handle)
        return cls(
            name=path.name,
            region=region,
            weight=weight,
            lines=lines,
            source_type=source_type,
        )


def name_start_index(source_file: SourceFile) -> int:
    """Find the token index at which source names begin in a file.

    Most files name a source on a line such as::

        2 3 1 1    805 Juniper Mountain fault

    where the name starts at index 5 (the identifying number is needed to
    tell apart some faults). California and CEUS files start names at
    index 3.
    """
    if is_california(source_file.name) or source_file.region == SourceRegion.CEUS:
        return SHORT_NAME_INDEX
    return NAME_INDEX_EXCEPTIONS.get(source_file.name, DEFAULT_NAME_INDEX)


def _clean_name_once(name: str) -> str:
    name = (
        name.replace("faults", "")
        .replace("fault", "")
        .replace("zone", "")
        .replace("-", " - ")
        .replace("/", " - ")
        .replace(" , ", " - ")
        .replace(", ", " - ")
        .replace(";", " : ")
    )
    return re.sub(r"\s+", " ", name).strip()


def clean_name(name: str) -> str:
    """Normalise a source name.

    Parameters
    ----------
    name : str
        The raw source name.

    Returns
    -------
    str
        The name without "faults", "fault" or "zone", with separators
        padded, and with whitespace collapsed. Cleaning a cleaned name
        returns it unchanged.

    Examples
    --------
    >>> clean_name("Hat Creek-McArthur-Mayfield fault zone")
    'Hat Creek - McArthur - Mayfield'
    """
    # Removals can expose new matches (e.g. "ffaultault"), so repeat until stable.
    while (cleaned := _clean_name_once(name)) != name:
        name = cleaned
    return cleaned


def trace_to_string(trace: shapely.LineString) -> str:
    """Serialise a trace as one ``lon,lat,depth`` line per point."""
    return "\n".join(
        f"{lon:.5f},{lat:.5f},{depth:.5f}" for lon, lat, depth in trace.coords
    )


@dataclasses.dataclass(frozen=True, eq=False)
class FaultSource:
    """A single fault source entry of an NSHMP input file.

    Two entries are equal if everything but their MFDs is equal.
    """

    source_file: SourceFile
    """The file the source was read from."""
    focal_mechanism: FocalMechanism
    """The rupture style of the source."""
    name: str
    """The normalised source name."""
    dip: float
    """The dip of the fault (degrees)."""
    width: float
    """The down dip width of the fault (km)."""
    top: float
    """The depth to the top of the fault (km)."""
    trace: shapely.LineString
    """The surface trace of the fault as (lon, lat, depth) coordinates."""
    mfds: tuple[mfd.MFD, ...]
    """The MFDs of the source."""

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FaultSource):
            return NotImplemented
        return (
            self.source_file.name == other.source_file.name
            and self.focal_mechanism == other.focal_mechanism
            and self.name == other.name
            and self.dip == other.dip
            and self.width == other.width
            and self.top == other.top
            and list(self.trace.coords) == list(other.trace.coords)
        )

    def __str__(self) -> str:
        return (
            f"{self.name} mech={self.focal_mechanism.name} dip={self.dip} "
            f"width={self.width} top={self.top} trace={list(self.trace.coords)}"
        )


class ConsolidationError(Exception):
    """Raised when sources sharing a name differ in more than their MFDs."""

    def __init__(self, name: str, index: int, first: FaultSource, other: FaultSource):
        self.name = name
        self.index = index
        self.first = first
        self.other = other
        super().__init__(
            f"{name} in {first.source_file.name} has multiple dissimilar entries\n"
            f"index = 0 :: {first}\n"
            f"index = {index} :: {other}"
        )


class EmptyMFDError(Exception):
    """Raised when a source has no MFDs."""

    pass


class FaultConversionError(Exception):
    """Raised when an NSHMP fault file cannot be converted."""

    def __init__(self, file_name: str, region: SourceRegion, cause: Exception):
        self.file_name = file_name
        self.region = region
        super().__init__(
            f"Failed to convert {file_name} ({region}): {type(cause).__name__}: {cause}"
        )


def skip_site_data(cursor: LineCursor) -> None:
    """Skip the site definition block of a file.

    The block is either a station count followed by one line per station,
    or a non-positive count followed by two lines of lat/lon bounds. Both
    forms end with a site data line (Vs30 and basin depth).
    """
    station_count = read_int(cursor.next_line(), 0, "station count")
    cursor.skip(station_count if station_count > 0 else 2)
    cursor.skip(1)


def skip_gmms(cursor: LineCursor) -> None:
    """Skip the ground motion model block of a file.

    For each period the block has a period line (whose second value flags
    three extra lines of ground motion epistemic uncertainty), an output
    file line, a ground motion count line, a ground motion values line and
    an attenuation relation count followed by one line per relation.
    """
    period_count = read_int(cursor.next_line(), 0, "period count")
    for _ in range(period_count):
        epistemic_flag = read_float(cursor.next_line(), 1, "ground motion epistemic flag")
        if epistemic_flag > 0:
            cursor.skip(3)
        cursor.skip(3)  # output file, ground motion count, ground motion values
        relation_count = read_int(cursor.next_line(), 0, "attenuation relation count")
        cursor.skip(relation_count)


def read_trace(cursor: LineCursor) -> shapely.LineString:
    """Read a trace point count and the ``lat lon`` lines that follow it.

    Raises
    ------
    MalformedLineError
        If the trace has fewer than two points.
    """
    point_count = read_int(cursor.next_line(), 0, "trace point count")
    if point_count < 2:
        raise MalformedLineError(
            f"A trace needs at least two points, got {point_count}"
        )
    return shapely.LineString(
        [
            (read_float(line, 1, "longitude"), read_float(line, 0, "latitude"), 0.0)
            for line in cursor.take(point_count)
        ]
    )


def read_fault_source(
    cursor: LineCursor,
    source_file: SourceFile,
    references: mfd.ReferenceMFDs,
    magnitude_uncertainty: MagnitudeUncertainty,
) -> FaultSource:
    """Read one fault source entry.

    Parameters
    ----------
    cursor : LineCursor
        The cursor, positioned at the source name line.
    source_file : SourceFile
        The file being read.
    references : mfd.ReferenceMFDs
        The reference MFDs of the file.
    magnitude_uncertainty : MagnitudeUncertainty
        The magnitude uncertainty of the file.

    Returns
    -------
    FaultSource
        The source read.

    Raises
    ------
    EmptyMFDError
        If the source has no MFDs.
    """
    header = cursor.next_line()
    mfd_type = mfd.MFDType.from_id(read_int(header, 0, "MFD type"))
    focal_mechanism = FocalMechanism.from_id(read_int(header, 1, "focal mechanism"))
    mfd_count = read_int(header, 2, "MFD count")
    name = clean_name(" ".join(tokenise(header)[name_start_index(source_file) :]))

    mfds = mfd.build_mfds(
        mfd_type, cursor.take(mfd_count), references, magnitude_uncertainty, name
    )

    geometry = cursor.next_line()
    dip = read_float(geometry, 0, "dip")
    width = read_float(geometry, 1, "width")
    top = read_float(geometry, 2, "depth to top")
    trace = read_trace(cursor)

    # A negative dip flips the trace rather than the dip direction
    if dip < 0:
        dip = -dip
        trace = shapely.reverse(trace)

    # Normal faults come in dip variants that otherwise share a name
    if focal_mechanism == FocalMechanism.NORMAL:
        name += f" {int(dip)}"

    if not mfds:
        raise EmptyMFDError(f"Source {name} has no MFDs")

    return FaultSource(
        source_file=source_file,
        focal_mechanism=focal_mechanism,
        name=name,
        dip=dip,
        width=width,
        top=top,
        trace=trace,
        mfds=tuple(mfds),
    )


@dataclasses.dataclass
class FaultSourceSet:
    """The fault sources of one NSHMP input file, grouped by name."""

    name: str
    """The name of the source set (the input file name)."""
    weight: float
    """The weight of the source set."""
    region: SourceRegion
    """The region of the source set."""
    magnitude_uncertainty: MagnitudeUncertainty
    """The magnitude uncertainty shared by all sources."""
    references: mfd.ReferenceMFDs = dataclasses.field(
        default_factory=mfd.ReferenceMFDs
    )
    """The reference MFDs of the file."""
    sources: dict[str, list[FaultSource]] = dataclasses.field(default_factory=dict)
    """The sources, keyed by name in the order names were first seen."""

    def add(self, source: FaultSource) -> None:
        """Add a source, appending to any sources that share its name."""
        if source.name in self.sources:
            logger.warning("Name map already contains: %s", source.name)
        self.sources.setdefault(source.name, []).append(source)

    def consolidate(self) -> list[tuple[str, FaultSource, list[mfd.MFD]]]:
        """Merge sources that share a name.

        Returns
        -------
        list[tuple[str, FaultSource, list[mfd.MFD]]]
            For each name, in first seen order, the name, the first source
            with that name (whose geometry is used), and the MFDs of all
            sources with that name in insertion order.

        Raises
        ------
        ConsolidationError
            If sources that share a name differ in anything but their MFDs.
        """
        consolidated = []
        for name, entries in self.sources.items():
            first = entries[0]
            for i, entry in enumerate(entries[1:], start=1):
                if first != entry:
                    raise ConsolidationError(name, i, first, entry)
            mfds = [entry_mfd for entry in entries for entry_mfd in entry.mfds]
            consolidated.append((name, first, mfds))
        return consolidated

    def to_xml(self) -> etree._Element:
        """Build the XML tree of the source set.

        Returns
        -------
        etree._Element
            The ``FaultSourceSet`` root element.

        Raises
        ------
        ConsolidationError
            If sources that share a name differ in anything but their MFDs.
        """
        consolidated = self.consolidate()

        root = etree.Element(
            "FaultSourceSet", name=self.name, weight=mfd.format_float(self.weight)
        )
        settings = etree.SubElement(root, "Settings")
        if self.references.initialised:
            self.references.append_to(settings)
        self.magnitude_uncertainty.append_to(settings)
        etree.SubElement(
            settings, "SourceProperties", magScaling=str(magnitude_scaling(self.name))
        )

        for name, first, mfds in consolidated:
            source_element = etree.SubElement(root, "Source", name=name)
            for source_mfd in mfds:
                source_mfd.append_to(
                    source_element, self.references.reference_for(source_mfd)
                )
            geometry = etree.SubElement(
                source_element,
                "Geometry",
                dip=mfd.format_float(first.dip),
                width=mfd.format_float(first.width),
                rake=mfd.format_float(first.focal_mechanism.rake),
                depth=mfd.format_float(first.top),
            )
            trace = etree.SubElement(geometry, "Trace")
            trace.text = trace_to_string(first.trace)
        return root

    def write(self, target: Path | IO[bytes]) -> None:
        """Write the source set as XML.

        The XML tree is fully built before `target` is touched, so nothing
        is written if the sources cannot be consolidated.

        Parameters
        ----------
        target : Path | IO[bytes]
            The output file path (parent directories are created if they
            do not exist) or a binary stream.
        """
        tree = etree.ElementTree(self.to_xml())
        if isinstance(target, Path):
            target.parent.mkdir(parents=True, exist_ok=True)
            target = str(target)
        tree.write(
            target,
            pretty_print=True,
            xml_declaration=True,
            encoding="UTF-8",
            standalone=True,
        )


def read_fault_source_set(source_file: SourceFile) -> FaultSourceSet:
    """Parse an NSHMP fault input file.

    Parameters
    ----------
    source_file : SourceFile
        The file to parse.

    Returns
    -------
    FaultSourceSet
        The sources of the file.

    Raises
    ------
    ParseError
        If the file does not follow the expected layout.
    ConfigurationError
        If the file combines incompatible settings.
    EmptyMFDError
        If a source has no MFDs.
    """
    logger.info(
        "Source file: %s %s %s", source_file.name, source_file.region, source_file.weight
    )
    cursor = LineCursor(source_file.lines)

    skip_site_data(cursor)
    cursor.skip(1)  # rMax and discretisation
    skip_gmms(cursor)
    cursor.skip(1)  # distance sampling on fault and dMove

    magnitude_uncertainty = read_magnitude_uncertainty(cursor.take(4))
    logger.info("%s", magnitude_uncertainty)

    fault_source_set = FaultSourceSet(
        name=source_file.name,
        weight=source_file.weight,
        region=source_file.region,
        magnitude_uncertainty=magnitude_uncertainty,
    )

    source_index = 0
    while not cursor.exhausted:
        start_line = cursor.line_number + 1
        try:
            source = read_fault_source(
                cursor,
                source_file,
                fault_source_set.references,
                magnitude_uncertainty,
            )
        except (ParseError, ConfigurationError, EmptyMFDError) as e:
            e.add_note(
                f"Reading source {source_index} of {source_file.name} "
                f"starting at line {start_line}"
            )
            raise
        fault_source_set.add(source)
        source_index += 1
    return fault_source_set


def output_path(output_directory: Path, source_file: SourceFile) -> Path:
    """Build the output path of a converted file.

    Parameters
    ----------
    output_directory : Path
        The root output directory.
    source_file : SourceFile
        The input file.

    Returns
    -------
    Path
        ``output_directory / region / source type / <file stem>.xml``
    """
    return (
        output_directory
        / str(source_file.region)
        / source_file.source_type
        / f"{Path(source_file.name).stem}.xml"
    )


def convert(source_file: SourceFile, output_directory: Path) -> Path:
    """Convert an NSHMP fault input file to XML.

    Parameters
    ----------
    source_file : SourceFile
        The file to convert.
    output_directory : Path
        The root output directory.

    Returns
    -------
    Path
        The path of the written XML file.

    Raises
    ------
    FaultConversionError
        If the file cannot be converted. No output is written in this case.
    """
    out_path = output_path(output_directory, source_file)
    try:
        read_fault_source_set(source_file).write(out_path)
    except (ParseError, ConfigurationError, EmptyMFDError, ConsolidationError) as e:
        raise FaultConversionError(source_file.name, source_file.region, e) from e
    logger.info("Wrote %s", out_path)
    return out_path


def convert_all(
    source_files: Iterable[SourceFile], output_directory: Path
) -> list[FaultConversionError]:
    """Convert many NSHMP fault input files to XML.

    A failure to convert one file does not stop the others from being
    converted.

    Parameters
    ----------
    source_files : Iterable[SourceFile]
        The files to convert.
    output_directory : Path
        The root output directory.

    Returns
    -------
    list[FaultConversionError]
        The errors of the files that could not be converted.
    """
    failures = []
    for source_file in source_files:
        try:
            convert(source_file, output_directory)
        except FaultConversionError as e:
            logger.error("%s", e, exc_info=e)
            failures.append(e)
    return failures
