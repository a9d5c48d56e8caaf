"""Mass defect relative to the peptide mass cluster model.

Peptide masses cluster around integer multiples of a near-constant spacing
(the mass wavelength, ~1.000476 Da). The deviation of a mass from its nearest
cluster centre is the folded remainder

    deviation = ((mass - intercept) mod wavelength) in (-wavelength/2, wavelength/2]

which is the quantity the calibration regresses and the initial filter
thresholds.
"""

import numpy as np
from numba import njit

from ..constants import (
    DEFAULT_MASS_DEFECT_INTERCEPT,
    DEFAULT_THEORETICAL_MASS_WAVELENGTH,
)


@njit(cache=True)
def fold_remainder(value: float, wavelength: float) -> float:
    """Fold ``value mod wavelength`` into (-wavelength/2, wavelength/2]."""
    remainder = value - np.floor(value / wavelength) * wavelength
    if remainder > wavelength / 2:
        remainder -= wavelength
    return remainder


@njit(cache=True)
def fold_remainders(values: np.ndarray, wavelength: float) -> np.ndarray:
    out = np.empty(len(values), dtype=np.float64)
    for i in range(len(values)):
        out[i] = fold_remainder(values[i], wavelength)
    return out


def calculate_mass_defect_deviation(
    masses: np.ndarray,
    wavelength: float = DEFAULT_THEORETICAL_MASS_WAVELENGTH,
    intercept: float = DEFAULT_MASS_DEFECT_INTERCEPT,
) -> np.ndarray:
    """Deviation (Da) of each mass from its nearest cluster centre.

    Parameters
    ----------
    masses : np.ndarray
        Neutral masses (Da)
    wavelength : float
        Cluster spacing (Da)
    intercept : float
        Cluster centre offset at nominal mass zero

    Returns
    -------
    deviations : np.ndarray
        Folded deviations in (-wavelength/2, wavelength/2]
    """
    masses = np.asarray(masses, dtype=np.float64)
    return fold_remainders(masses - intercept, wavelength)


def calculate_mass_defect_deviation_ppm(
    masses: np.ndarray,
    wavelength: float = DEFAULT_THEORETICAL_MASS_WAVELENGTH,
    intercept: float = DEFAULT_MASS_DEFECT_INTERCEPT,
) -> np.ndarray:
    """Deviation from the nearest cluster centre in ppm of each mass.

    Non-positive masses give NaN.
    """
    masses = np.asarray(masses, dtype=np.float64)
    deviations = calculate_mass_defect_deviation(masses, wavelength, intercept)
    out = np.full(len(masses), np.nan)
    positive = masses > 0
    out[positive] = deviations[positive] * 1e6 / masses[positive]
    return out


def filter_by_mass_defect_deviation(
    masses: np.ndarray,
    max_deviation_ppm: float,
    wavelength: float = DEFAULT_THEORETICAL_MASS_WAVELENGTH,
    intercept: float = DEFAULT_MASS_DEFECT_INTERCEPT,
) -> np.ndarray:
    """Boolean mask of masses within ``max_deviation_ppm`` of a cluster centre."""
    deviations_ppm = calculate_mass_defect_deviation_ppm(masses, wavelength, intercept)
    return np.abs(deviations_ppm) <= max_deviation_ppm
