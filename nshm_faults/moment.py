"""Utility functions for working with moment rate and moment."""

import numpy as np


def magnitude_to_moment(magnitude: float) -> float:
    """Convert magnitude to moment.

    Parameters
    ----------
    magnitude : float
        The magnitude of the rupture.

    Returns
    -------
    float
        Rupture moment in Nm.
    """
    return 10 ** ((magnitude + 6.03333) * 3 / 2)


def gr_rate(a_value: float, b_value: float, magnitude: float) -> float:
    """Gutenberg-Richter rate of events at a magnitude.

    Parameters
    ----------
    a_value : float
        The Gutenberg-Richter a-value.
    b_value : float
        The Gutenberg-Richter b-value.
    magnitude : float
        The magnitude to evaluate the rate at.

    Returns
    -------
    float
        The annual rate, ``10 ** (a - b * m)``.
    """
    return 10 ** (a_value - b_value * magnitude)


def total_moment_rate(
    m_min: float, n_mag: int, d_mag: float, a_value: float, b_value: float
) -> float:
    """Total moment rate of a discretised Gutenberg-Richter distribution.

    Parameters
    ----------
    m_min : float
        The magnitude of the first bin.
    n_mag : int
        The number of magnitude bins.
    d_mag : float
        The magnitude increment between bins.
    a_value : float
        The Gutenberg-Richter a-value.
    b_value : float
        The Gutenberg-Richter b-value.

    Returns
    -------
    float
        The sum over all bins of the bin rate multiplied by the bin moment (Nm/yr).
    """
    magnitudes = m_min + np.arange(n_mag) * d_mag
    return float(
        np.sum(gr_rate(a_value, b_value, magnitudes) * magnitude_to_moment(magnitudes))
    )
