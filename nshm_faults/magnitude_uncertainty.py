"""Magnitude uncertainty models for NSHMP fault source files.

Every NSHMP fault file carries a single magnitude uncertainty block that
applies to all sources in the file. The block is four lines long::

    2                   ! number of epistemic branches (unused)
    -0.2 0.2            ! epistemic magnitude deltas
    0.5 0.5             ! epistemic weights
    0.12 2              ! aleatory sigma and half point count

A negative aleatory sigma disables moment balancing.
"""

import dataclasses
import math

from lxml import etree

from nshm_faults.parse_utils import read_float, read_float_list

EPISTEMIC_CUTOFF = 6.5
ALEATORY_CUTOFF = 6.5


class ConfigurationError(ValueError):
    """Raised for a semantically invalid combination of input settings."""

    pass


def _format_values(values: tuple[float, ...]) -> str:
    return "[" + ", ".join(f"{value:g}" for value in values) + "]"


@dataclasses.dataclass(frozen=True)
class MagnitudeUncertainty:
    """Epistemic and aleatory magnitude uncertainty shared by a source file."""

    epistemic_deltas: tuple[float, ...]
    """Discrete magnitude shifts of the epistemic branches."""
    epistemic_weights: tuple[float, ...]
    """Weights of the epistemic branches."""
    aleatory_sigma: float
    """Standard deviation of the aleatory magnitude distribution."""
    aleatory_count: int
    """Number of points discretising the aleatory distribution (odd)."""
    moment_balance: bool
    """True if the aleatory distribution is moment balanced."""
    epistemic_cutoff: float = EPISTEMIC_CUTOFF
    """Magnitude below which epistemic uncertainty is not applied."""
    aleatory_cutoff: float = ALEATORY_CUTOFF
    """Magnitude below which aleatory uncertainty is not applied."""

    def __post_init__(self):
        if len(self.epistemic_deltas) != len(self.epistemic_weights):
            raise ConfigurationError(
                f"Found {len(self.epistemic_deltas)} epistemic magnitude deltas "
                f"but {len(self.epistemic_weights)} weights"
            )

    @property
    def has_epistemic(self) -> bool:
        """bool: True if there is more than one epistemic branch."""
        return len(self.epistemic_deltas) > 1

    @property
    def has_aleatory(self) -> bool:
        """bool: True if aleatory uncertainty is active."""
        return self.aleatory_count > 1 and self.aleatory_sigma > 0

    def append_to(self, parent: etree._Element) -> etree._Element:
        """Append a ``MagUncertainty`` element describing this model.

        Parameters
        ----------
        parent : etree._Element
            The element to append to.

        Returns
        -------
        etree._Element
            The appended element.
        """
        element = etree.SubElement(parent, "MagUncertainty")
        if self.has_epistemic:
            etree.SubElement(
                element,
                "Epistemic",
                deltas=_format_values(self.epistemic_deltas),
                weights=_format_values(self.epistemic_weights),
                cutoff=f"{self.epistemic_cutoff:g}",
            )
        if self.has_aleatory:
            etree.SubElement(
                element,
                "Aleatory",
                sigma=f"{self.aleatory_sigma:g}",
                count=str(self.aleatory_count),
                moBalance=str(self.moment_balance).lower(),
                cutoff=f"{self.aleatory_cutoff:g}",
            )
        return element

    def __str__(self) -> str:
        return (
            "MagUncertainty\n"
            f"  epistemic: {self.has_epistemic} deltas={_format_values(self.epistemic_deltas)} "
            f"weights={_format_values(self.epistemic_weights)} cutoff={self.epistemic_cutoff}\n"
            f"  aleatory: {self.has_aleatory} sigma={self.aleatory_sigma} "
            f"count={self.aleatory_count} moBalance={self.moment_balance} "
            f"cutoff={self.aleatory_cutoff}"
        )


def read_magnitude_uncertainty(lines: list[str]) -> MagnitudeUncertainty:
    """Read a magnitude uncertainty block.

    Parameters
    ----------
    lines : list[str]
        The four lines of the block. The first line is ignored.

    Returns
    -------
    MagnitudeUncertainty
        The uncertainty model for the file.

    Raises
    ------
    ConfigurationError
        If the number of epistemic deltas and weights differ, or the
        aleatory point count is negative or not finite.
    MalformedLineError
        If any line cannot be read.
    """
    if len(lines) != 4:
        raise ValueError(
            f"Magnitude uncertainty block must be 4 lines, got {len(lines)}"
        )
    epistemic_deltas = read_float_list(lines[1], "epistemic magnitude deltas")
    epistemic_weights = read_float_list(lines[2], "epistemic weights")

    aleatory_sigma = read_float(lines[3], 0, "aleatory sigma")
    # Half counts are written as "2" or "2.0" depending on the file.
    half_count = read_float(lines[3], 1, "aleatory point count")
    if not math.isfinite(half_count) or half_count < 0:
        raise ConfigurationError(
            f"Aleatory point count must be finite and non-negative, got {half_count:g}"
        )

    return MagnitudeUncertainty(
        epistemic_deltas=tuple(epistemic_deltas),
        epistemic_weights=tuple(epistemic_weights),
        aleatory_sigma=abs(aleatory_sigma),
        aleatory_count=int(half_count) * 2 + 1,
        moment_balance=aleatory_sigma > 0,
    )
