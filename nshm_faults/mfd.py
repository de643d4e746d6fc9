"""Magnitude frequency distributions (MFDs) of NSHMP fault sources.

Fault sources declare their MFDs as one of three families:

- characteristic (CH): one line per entry, ``magnitude rate weight``,
- Gutenberg-Richter (GR): one line per entry, ``a b mMin mMax dMag weight``,
- Gutenberg-Richter with a zero-slope branch (GRB0): GR lines where each
  entry is split into a pair of equally weighted branches, the second with
  b = 0 and an a-value that preserves the total moment rate of the first.

Every file keeps a reference MFD per family (`ReferenceMFDs`). The
reference is a fixed anchor that is set the first time its family is
built, and MFDs of the same family are written relative to it.
"""

import dataclasses
import logging
import math
from enum import Enum

import numpy as np
from lxml import etree

from nshm_faults import moment
from nshm_faults.magnitude_uncertainty import ConfigurationError, MagnitudeUncertainty
from nshm_faults.parse_utils import MalformedLineError, read_float

logger = logging.getLogger(__name__)


class MFDType(Enum):
    """MFD family codes used in NSHMP fault files."""

    CH = 1
    """Characteristic."""
    GR = 2
    """Gutenberg-Richter."""
    GRB0 = -2
    """Gutenberg-Richter with a b = 0 branch."""

    @classmethod
    def from_id(cls, type_id: int) -> "MFDType":
        """Look up an MFD type by its NSHMP code.

        Raises
        ------
        MalformedLineError
            If the code is not a known MFD type.
        """
        try:
            return cls(type_id)
        except ValueError:
            raise MalformedLineError(f"Unknown MFD type code: {type_id}")


def format_float(value: float) -> str:
    """Format a float attribute value for output."""
    return f"{value:.8g}"


def _append_relative(
    parent: etree._Element,
    mfd_type: str,
    attributes: dict[str, str],
    reference_attributes: dict[str, str] | None,
) -> etree._Element:
    element = etree.SubElement(parent, "MagFreqDist", type=mfd_type)
    for key, value in attributes.items():
        if reference_attributes is None or reference_attributes[key] != value:
            element.set(key, value)
    return element


@dataclasses.dataclass(frozen=True)
class CharacteristicMFD:
    """A single magnitude MFD."""

    magnitude: float
    """The characteristic magnitude."""
    rate: float
    """The annual rate of events at `magnitude`."""
    weight: float
    """The logic tree weight of this MFD."""
    floats: bool = False
    """True if the rupture floats along the fault (collapsed GR entries)."""

    @classmethod
    def from_line(cls, line: str) -> "CharacteristicMFD":
        """Read a ``magnitude rate weight`` line."""
        return cls(
            magnitude=read_float(line, 0, "magnitude"),
            rate=read_float(line, 1, "rate"),
            weight=read_float(line, 2, "weight"),
        )

    def _attributes(self) -> dict[str, str]:
        return {
            "m": format_float(self.magnitude),
            "rate": format_float(self.rate),
            "weight": format_float(self.weight),
            "floats": str(self.floats).lower(),
        }

    def append_to(
        self, parent: etree._Element, reference: "CharacteristicMFD | None" = None
    ) -> etree._Element:
        """Append a ``MagFreqDist`` element for this MFD.

        Parameters
        ----------
        parent : etree._Element
            The element to append to.
        reference : CharacteristicMFD | None
            If given, only attributes that differ from the reference are
            written.

        Returns
        -------
        etree._Element
            The appended element.
        """
        return _append_relative(
            parent,
            "SINGLE",
            self._attributes(),
            reference._attributes() if reference else None,
        )


@dataclasses.dataclass(frozen=True)
class GutenbergRichterMFD:
    """A truncated, discretised Gutenberg-Richter MFD."""

    a_value: float
    """The Gutenberg-Richter a-value."""
    b_value: float
    """The Gutenberg-Richter b-value."""
    m_min: float
    """The magnitude of the first bin."""
    m_max: float
    """The magnitude of the last bin."""
    d_mag: float
    """The magnitude increment between bins."""
    weight: float
    """The logic tree weight of this MFD."""

    def __post_init__(self):
        if not all(map(math.isfinite, (self.m_min, self.m_max, self.d_mag))):
            raise ConfigurationError(
                f"GR magnitudes must be finite, got mMin={self.m_min}, "
                f"mMax={self.m_max}, dMag={self.d_mag}"
            )
        if self.m_max != self.m_min and self.d_mag <= 0:
            raise ConfigurationError(
                f"GR magnitude increment must be positive, got {self.d_mag}"
            )
        if self.n_mag < 1:
            raise ConfigurationError(
                f"GR mMax ({self.m_max}) is less than mMin ({self.m_min})"
            )

    @property
    def n_mag(self) -> int:
        """int: The number of magnitude bins between `m_min` and `m_max`."""
        if self.m_max == self.m_min:
            return 1
        return int((self.m_max - self.m_min) / self.d_mag + 1.4)

    @classmethod
    def from_line(cls, line: str) -> "GutenbergRichterMFD":
        """Read an ``a b mMin mMax dMag weight`` line."""
        return cls(
            a_value=read_float(line, 0, "a-value"),
            b_value=read_float(line, 1, "b-value"),
            m_min=read_float(line, 2, "mMin"),
            m_max=read_float(line, 3, "mMax"),
            d_mag=read_float(line, 4, "dMag"),
            weight=read_float(line, 5, "weight"),
        )

    def total_moment_rate(self) -> float:
        """float: The total moment rate of the distribution (Nm/yr)."""
        return moment.total_moment_rate(
            self.m_min, self.n_mag, self.d_mag, self.a_value, self.b_value
        )

    def _attributes(self) -> dict[str, str]:
        return {
            "a": format_float(self.a_value),
            "b": format_float(self.b_value),
            "mMin": format_float(self.m_min),
            "mMax": format_float(self.m_max),
            "dMag": format_float(self.d_mag),
            "weight": format_float(self.weight),
        }

    def append_to(
        self, parent: etree._Element, reference: "GutenbergRichterMFD | None" = None
    ) -> etree._Element:
        """Append a ``MagFreqDist`` element for this MFD.

        Parameters
        ----------
        parent : etree._Element
            The element to append to.
        reference : GutenbergRichterMFD | None
            If given, only attributes that differ from the reference are
            written.

        Returns
        -------
        etree._Element
            The appended element.
        """
        return _append_relative(
            parent,
            "GR",
            self._attributes(),
            reference._attributes() if reference else None,
        )


MFD = CharacteristicMFD | GutenbergRichterMFD

REFERENCE_CH = CharacteristicMFD(magnitude=6.5, rate=0.0, weight=1.0, floats=False)
REFERENCE_GR = GutenbergRichterMFD(
    a_value=0.0, b_value=0.8, m_min=6.55, m_max=7.5, d_mag=0.1, weight=1.0
)


@dataclasses.dataclass
class ReferenceMFDs:
    """The per-file reference MFD of each family.

    Each reference is set at most once, the first time an MFD of its
    family is built, and is never reset.
    """

    characteristic: CharacteristicMFD | None = None
    """The characteristic reference, if any CH MFD has been built."""
    gutenberg_richter: GutenbergRichterMFD | None = None
    """The GR reference, if any GR MFD has been built."""

    def init_characteristic(self) -> None:
        """Set the characteristic reference if it is not already set."""
        if self.characteristic is None:
            self.characteristic = REFERENCE_CH

    def init_gutenberg_richter(self) -> None:
        """Set the GR reference if it is not already set."""
        if self.gutenberg_richter is None:
            self.gutenberg_richter = REFERENCE_GR

    @property
    def initialised(self) -> bool:
        """bool: True if either reference has been set."""
        return self.characteristic is not None or self.gutenberg_richter is not None

    def reference_for(self, mfd: MFD) -> MFD | None:
        """Find the reference of the same family as `mfd`, if set."""
        if isinstance(mfd, CharacteristicMFD):
            return self.characteristic
        return self.gutenberg_richter

    def append_to(self, parent: etree._Element) -> etree._Element:
        """Append a ``MagFreqDistRef`` element with the absolute references."""
        element = etree.SubElement(parent, "MagFreqDistRef")
        if self.characteristic is not None:
            self.characteristic.append_to(element)
        if self.gutenberg_richter is not None:
            self.gutenberg_richter.append_to(element)
        return element


def _log_mfd(mfd_type: MFDType, floats: bool, source_name: str) -> None:
    logger.info(
        "%s%s %s", mfd_type.name.ljust(5), "f" if floats else " ", source_name
    )


def build_characteristic(
    lines: list[str], references: ReferenceMFDs, source_name: str = ""
) -> list[MFD]:
    """Build characteristic MFDs.

    Parameters
    ----------
    lines : list[str]
        One ``magnitude rate weight`` line per MFD.
    references : ReferenceMFDs
        The reference MFDs of the file; the CH reference is initialised.
    source_name : str
        The source name, for logging.

    Returns
    -------
    list[MFD]
        One non-floating `CharacteristicMFD` per line.
    """
    references.init_characteristic()
    mfds: list[MFD] = []
    for line in lines:
        mfds.append(CharacteristicMFD.from_line(line))
        _log_mfd(MFDType.CH, False, source_name)
    return mfds


def build_gutenberg_richter(
    lines: list[str], references: ReferenceMFDs, source_name: str = ""
) -> list[MFD]:
    """Build Gutenberg-Richter MFDs.

    A single bin GR entry (mMin == mMax) is collapsed into a floating
    characteristic MFD at mMin with the GR rate at that magnitude.

    Parameters
    ----------
    lines : list[str]
        One ``a b mMin mMax dMag weight`` line per MFD.
    references : ReferenceMFDs
        The reference MFDs of the file. The GR reference is initialised for
        genuine GR entries and the CH reference for collapsed ones.
    source_name : str
        The source name, for logging.

    Returns
    -------
    list[MFD]
        One MFD per line, in line order.
    """
    gr_data = [GutenbergRichterMFD.from_line(line) for line in lines]

    mfds: list[MFD] = []
    for gr in gr_data:
        if gr.n_mag > 1:
            references.init_gutenberg_richter()
            mfds.append(gr)
            _log_mfd(MFDType.GR, True, source_name)
        else:
            references.init_characteristic()
            mfds.append(
                CharacteristicMFD(
                    magnitude=gr.m_min,
                    rate=moment.gr_rate(gr.a_value, gr.b_value, gr.m_min),
                    weight=gr.weight,
                    floats=True,
                )
            )
            _log_mfd(MFDType.CH, True, source_name)
    return mfds


def build_zero_slope_branches(
    lines: list[str],
    references: ReferenceMFDs,
    magnitude_uncertainty: MagnitudeUncertainty,
    source_name: str = "",
) -> list[MFD]:
    """Build Gutenberg-Richter MFDs paired with moment balanced b = 0 branches.

    Each GR line yields two MFDs with half the line's weight: the GR
    distribution itself, and a b = 0 distribution over the same magnitude
    range whose a-value is chosen so the two have equal total moment rate.

    Parameters
    ----------
    lines : list[str]
        One ``a b mMin mMax dMag weight`` line per pair.
    references : ReferenceMFDs
        The reference MFDs of the file; the GR reference is initialised.
    magnitude_uncertainty : MagnitudeUncertainty
        The magnitude uncertainty of the file.
    source_name : str
        The source name, for logging.

    Returns
    -------
    list[MFD]
        The MFD pairs, in line order.

    Raises
    ------
    ConfigurationError
        If the file has aleatory uncertainty, or any line has mMax <= mMin.
    """
    if magnitude_uncertainty.has_aleatory:
        raise ConfigurationError("Aleatory uncertainty is incompatible with GR b=0 branches")

    gr_data = [GutenbergRichterMFD.from_line(line) for line in lines]
    for gr in gr_data:
        if not gr.m_max > gr.m_min:
            raise ConfigurationError(
                f"GR b=0 branch cannot handle a floating CH (mMin={gr.m_min:g}, mMax={gr.m_max:g})"
            )

    mfds: list[MFD] = []
    for gr in gr_data:
        references.init_gutenberg_richter()

        gr = dataclasses.replace(gr, weight=gr.weight * 0.5)
        mfds.append(gr)
        _log_mfd(MFDType.GR, True, source_name)

        zero_slope_moment_rate = moment.total_moment_rate(
            gr.m_min, gr.n_mag, gr.d_mag, 0.0, 0.0
        )
        mfds.append(
            GutenbergRichterMFD(
                a_value=float(np.log10(gr.total_moment_rate() / zero_slope_moment_rate)),
                b_value=0.0,
                m_min=gr.m_min,
                m_max=gr.m_max,
                d_mag=gr.d_mag,
                weight=gr.weight,
            )
        )
        _log_mfd(MFDType.GRB0, True, source_name)
    return mfds


def build_mfds(
    mfd_type: MFDType,
    lines: list[str],
    references: ReferenceMFDs,
    magnitude_uncertainty: MagnitudeUncertainty,
    source_name: str = "",
) -> list[MFD]:
    """Build the MFDs of a source according to its declared family.

    Parameters
    ----------
    mfd_type : MFDType
        The declared MFD family.
    lines : list[str]
        The MFD lines of the source.
    references : ReferenceMFDs
        The reference MFDs of the file.
    magnitude_uncertainty : MagnitudeUncertainty
        The magnitude uncertainty of the file.
    source_name : str
        The source name, for logging.

    Returns
    -------
    list[MFD]
        The MFDs of the source.
    """
    if mfd_type == MFDType.CH:
        return build_characteristic(lines, references, source_name)
    elif mfd_type == MFDType.GR:
        return build_gutenberg_richter(lines, references, source_name)
    return build_zero_slope_branches(
        lines, references, magnitude_uncertainty, source_name
    )
