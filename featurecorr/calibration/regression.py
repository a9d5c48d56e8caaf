"""Robust pairwise regression for the mass wavelength.

For every pair of features the distance between their masses is regressed
against the remainder of that distance modulo the theoretical wavelength.
A perfectly calibrated population gives residuals scattered around zero with
no slope; a scale error of the mass axis shows up as a slope. The fit is
made robust by two cutoffs:

1. Leverage: pairs whose distance lies far from the mean distance
   (leverage >= max_leverage_numerator / n_pairs) are dropped.
2. Studentized residual: after a first least-squares fit, pairs whose
   absolute residual is too large relative to the residual scale are
   dropped and the line is fitted again.

Pair enumeration is capped: when there are more pairs than ``max_pairs``,
every ``interval``-th pair of the upper triangle is used.
"""

import logging

import numpy as np
from numba import njit

from .mass_defect import fold_remainder

logger = logging.getLogger(__name__)


# =============================================================================
# Pair sampling
# =============================================================================

def pair_sampling_interval(n_pairs: int, max_pairs: int) -> int:
    """Stride through the pair list so that roughly ``max_pairs`` are kept.

    Returns 1 (keep all) when ``n_pairs <= max_pairs``; otherwise the rounded
    ratio, never less than 2.
    """
    if n_pairs <= max_pairs:
        return 1
    interval = int(round(n_pairs / max_pairs))
    return max(2, interval)


@njit(cache=True)
def count_sampled_pairs(n: int, interval: int) -> int:
    n_pairs = n * (n - 1) // 2
    if n_pairs == 0:
        return 0
    return (n_pairs - 1) // interval + 1


@njit(cache=True)
def sample_pair_residuals(masses: np.ndarray, interval: int,
                          wavelength: float):
    """Distances and folded wavelength residuals of sampled mass pairs.

    Pairs (i, j), i < j, are enumerated row by row; pair number ``p`` is kept
    when ``p % interval == 0``. Rows are skipped in O(1) so the cost is
    proportional to the number of kept pairs plus ``len(masses)``.

    Parameters
    ----------
    masses : np.ndarray
        Masses (Da)
    interval : int
        Keep every ``interval``-th pair
    wavelength : float
        Theoretical mass wavelength (Da)

    Returns
    -------
    distances : np.ndarray
        |m_i - m_j| per kept pair
    residuals : np.ndarray
        distance mod wavelength, folded to (-wavelength/2, wavelength/2]
    """
    n = len(masses)
    n_kept = count_sampled_pairs(n, interval)
    distances = np.empty(n_kept, dtype=np.float64)
    residuals = np.empty(n_kept, dtype=np.float64)

    target = 0
    row_start = 0
    k = 0
    for i in range(n - 1):
        row_len = n - 1 - i
        while target < row_start + row_len:
            j = i + 1 + (target - row_start)
            distance = abs(masses[i] - masses[j])
            distances[k] = distance
            residuals[k] = fold_remainder(distance, wavelength)
            k += 1
            target += interval
        row_start += row_len

    return distances, residuals


# =============================================================================
# Regression statistics
# =============================================================================

@njit(cache=True)
def linear_fit(x: np.ndarray, y: np.ndarray):
    """Ordinary least squares ``y = slope * x + intercept``.

    Returns (slope, intercept, ok); ``ok`` is False when x has no spread.
    """
    n = len(x)
    if n < 2:
        return 0.0, 0.0, False

    mean_x = np.mean(x)
    mean_y = np.mean(y)
    sxx = 0.0
    sxy = 0.0
    for i in range(n):
        dx = x[i] - mean_x
        sxx += dx * dx
        sxy += dx * (y[i] - mean_y)

    if sxx <= 0.0:
        return 0.0, mean_y, False

    slope = sxy / sxx
    return slope, mean_y - slope * mean_x, True


@njit(cache=True)
def leverages(x: np.ndarray) -> np.ndarray:
    """Leverage of each point: (x - mean)^2 / ((n - 1) * var(x)).

    All zeros when x has no spread.
    """
    n = len(x)
    out = np.zeros(n, dtype=np.float64)
    if n < 2:
        return out

    mean_x = np.mean(x)
    ss = 0.0
    for i in range(n):
        ss += (x[i] - mean_x) ** 2
    if ss <= 0.0:
        return out

    for i in range(n):
        out[i] = (x[i] - mean_x) ** 2 / ss
    return out


@njit(cache=True)
def studentized_residuals(x: np.ndarray, residuals: np.ndarray) -> np.ndarray:
    """Residuals scaled by sigma = sqrt(sum(r^2) / (n - 2)) and sqrt(1 + leverage).

    Returns zeros when the residual scale is zero (perfect fit) or n <= 2.
    """
    n = len(x)
    out = np.zeros(n, dtype=np.float64)
    if n <= 2:
        return out

    ss = 0.0
    for i in range(n):
        ss += residuals[i] * residuals[i]
    sigma = np.sqrt(ss / (n - 2))
    if sigma <= 0.0:
        return out

    lev = leverages(x)
    for i in range(n):
        out[i] = residuals[i] / sigma / np.sqrt(1.0 + lev[i])
    return out


# =============================================================================
# Robust slope
# =============================================================================

def robust_wavelength_slope(
    distances: np.ndarray,
    residuals: np.ndarray,
    max_leverage_numerator: float,
    max_studentized_residual: float,
    min_pairs: int = 3,
):
    """Slope of wavelength residual vs distance after both outlier cutoffs.

    Returns
    -------
    slope : float or None
        None when too few pairs survive or the regression is singular.
    n_used : int
        Number of pairs in the final regression
    """
    n_pairs = len(distances)
    if n_pairs < min_pairs:
        return None, n_pairs

    keep = leverages(distances) < max_leverage_numerator / n_pairs
    x = distances[keep]
    y = residuals[keep]
    logger.debug(f"Pairs after leverage cutoff: {len(x):,} of {n_pairs:,}")
    if len(x) < min_pairs:
        return None, len(x)

    slope, intercept, ok = linear_fit(x, y)
    if not ok:
        return None, len(x)
    logger.debug(f"First regression slope: {slope:.3e}")

    absolute = np.abs(y - (slope * x + intercept))
    inliers = studentized_residuals(x, absolute) < max_studentized_residual
    x = x[inliers]
    y = y[inliers]
    logger.debug(f"Pairs after studentized residual cutoff: {len(x):,}")
    if len(x) < min_pairs:
        return None, len(x)

    slope, intercept, ok = linear_fit(x, y)
    if not ok:
        return None, len(x)
    return slope, len(x)
