"""Mass calibration from the peptide mass cluster model.

Peptide masses cluster around multiples of a near-constant spacing (the
mass wavelength). A systematic scale error of the mass axis stretches that
spacing, and a constant shift moves every cluster centre. Both are estimated
directly from the feature population, without identifications:

- the fitted ``wavelength`` comes from a robust regression over pairwise mass
  distances (see :mod:`featurecorr.calibration.regression`);
- the ``offset`` is the mean deviation of the masses from the cluster centres
  implied by the fitted wavelength.

The correction applied to every feature is

    corrected = mass + mass * (theoretical_wavelength - wavelength) - offset

Calibration drift over a run is handled by splitting the scan range into
equal-width partitions, each with its own (wavelength, offset).

Examples
--------
>>> from featurecorr.calibration import MassCalibrator, CalibrationParams
>>>
>>> calibrator = MassCalibrator(CalibrationParams(n_partitions=3))
>>> result = calibrator.calibrate(features)
>>> for partition in result.partitions:
...     print(partition.start_scan, partition.wavelength, partition.offset)
>>> calibrated = result.features

References
----------
Wolski et al. (2006) BMC Bioinformatics 6:203
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import NamedTuple, Optional

import numpy as np

from ..constants import (
    DEFAULT_MASS_DEFECT_INTERCEPT,
    DEFAULT_MAX_LEVERAGE_NUMERATOR,
    DEFAULT_MAX_PAIRS_FOR_LEVERAGE_CALC,
    DEFAULT_MAX_STUDENTIZED_RESIDUAL,
    DEFAULT_THEORETICAL_MASS_WAVELENGTH,
    MIN_PAIRS_FOR_REGRESSION,
)
from ..features.adjustment import apply_calibration
from ..features.collection import FeatureCollection
from .mass_defect import (
    calculate_mass_defect_deviation,
    calculate_mass_defect_deviation_ppm,
    fold_remainders,
)
from .regression import (
    pair_sampling_interval,
    robust_wavelength_slope,
    sample_pair_residuals,
)

logger = logging.getLogger(__name__)


@dataclass
class CalibrationParams:
    """Parameters for mass calibration.

    Attributes
    ----------
    theoretical_wavelength : float
        Expected spacing of peptide mass clusters (Da)
    max_pairs : int
        Cap on mass pairs used for the regression
    n_partitions : int
        Number of equal-width scan partitions, each calibrated independently
    initial_filter_ppm : float
        Exclude features whose uncalibrated mass defect deviation exceeds this
        many ppm from the fit (they are still corrected). 0 disables.
    max_leverage_numerator : float
        Pairs with leverage >= this / n_pairs are excluded
    max_studentized_residual : float
        Pairs at or above this studentized residual are excluded from the
        second regression
    mass_defect_intercept : float
        Cluster centre at nominal mass 0 (Da)
    """

    theoretical_wavelength: float = DEFAULT_THEORETICAL_MASS_WAVELENGTH
    max_pairs: int = DEFAULT_MAX_PAIRS_FOR_LEVERAGE_CALC
    n_partitions: int = 1
    initial_filter_ppm: float = 0.0
    max_leverage_numerator: float = DEFAULT_MAX_LEVERAGE_NUMERATOR
    max_studentized_residual: float = DEFAULT_MAX_STUDENTIZED_RESIDUAL
    mass_defect_intercept: float = DEFAULT_MASS_DEFECT_INTERCEPT

    def __post_init__(self):
        if not self.theoretical_wavelength > 0:
            raise ValueError(
                f"theoretical_wavelength must be positive, got {self.theoretical_wavelength}"
            )
        if self.max_pairs < 1:
            raise ValueError(f"max_pairs must be >= 1, got {self.max_pairs}")
        if self.n_partitions < 1:
            raise ValueError(f"n_partitions must be >= 1, got {self.n_partitions}")
        if self.initial_filter_ppm < 0:
            raise ValueError(
                f"initial_filter_ppm must be >= 0, got {self.initial_filter_ppm}"
            )


@dataclass(frozen=True)
class CalibrationPartition:
    """Calibration of one contiguous scan range.

    The partition covers scans ``>= start_scan`` up to (excluding) the next
    partition's ``start_scan``.
    """

    start_scan: int
    wavelength: float
    offset: float
    n_features: int = 0

    @classmethod
    def identity(cls, start_scan: int, theoretical_wavelength: float,
                 n_features: int = 0) -> 'CalibrationPartition':
        return cls(start_scan, theoretical_wavelength, 0.0, n_features)

    def is_identity(self, theoretical_wavelength: float) -> bool:
        return self.wavelength == theoretical_wavelength and self.offset == 0.0


class CalibrationResult(NamedTuple):
    """Calibrated features plus the partitions that produced them."""

    features: FeatureCollection
    partitions: tuple
    deviation_before: np.ndarray  # mass defect deviation (Da), input masses
    deviation_after: np.ndarray   # mass defect deviation (Da), corrected masses


# =============================================================================
# Single population
# =============================================================================

def calculate_wavelength_and_offset(
    masses: np.ndarray,
    theoretical_wavelength: float = DEFAULT_THEORETICAL_MASS_WAVELENGTH,
    max_pairs: int = DEFAULT_MAX_PAIRS_FOR_LEVERAGE_CALC,
    max_leverage_numerator: float = DEFAULT_MAX_LEVERAGE_NUMERATOR,
    max_studentized_residual: float = DEFAULT_MAX_STUDENTIZED_RESIDUAL,
    mass_defect_intercept: float = DEFAULT_MASS_DEFECT_INTERCEPT,
) -> Optional[tuple[float, float]]:
    """Fit (wavelength, offset) for one population of masses.

    Parameters
    ----------
    masses : np.ndarray
        Neutral masses (Da); non-finite and non-positive values are ignored
    theoretical_wavelength : float
        Expected cluster spacing (Da)
    max_pairs : int
        Cap on pairs used for the regression
    max_leverage_numerator : float
        Leverage cutoff numerator
    max_studentized_residual : float
        Studentized residual cutoff
    mass_defect_intercept : float
        Cluster centre at nominal mass 0 (Da)

    Returns
    -------
    (wavelength, offset) or None
        None when there are too few usable pairs to regress.

    Notes
    -----
    The regression slope ``s`` of folded residual against distance relates to
    the population's cluster spacing by ``wavelength = theoretical / (1 - s)``.
    """
    masses = np.asarray(masses, dtype=np.float64)
    masses = np.sort(masses[np.isfinite(masses) & (masses > 0)])

    n = len(masses)
    n_pairs = n * (n - 1) // 2
    if n_pairs < MIN_PAIRS_FOR_REGRESSION:
        return None

    interval = pair_sampling_interval(n_pairs, max_pairs)
    if interval > 1:
        logger.info(f"Too many pairs ({n_pairs:,}), using every {interval}th pair")

    distances, residuals = sample_pair_residuals(masses, interval, theoretical_wavelength)
    slope, n_used = robust_wavelength_slope(
        distances,
        residuals,
        max_leverage_numerator,
        max_studentized_residual,
        min_pairs=MIN_PAIRS_FOR_REGRESSION,
    )
    if slope is None or slope >= 1.0:
        return None

    wavelength = theoretical_wavelength / (1.0 - slope)
    offset = float(np.mean(fold_remainders(masses - mass_defect_intercept, wavelength)))

    logger.debug(
        f"Wavelength {wavelength:.7f}, offset {offset:.5f} "
        f"({n} masses, {n_used:,} pairs in final regression)"
    )
    return wavelength, offset


# =============================================================================
# Partitions
# =============================================================================

def partition_start_scans(min_scan: int, max_scan: int, n_partitions: int) -> np.ndarray:
    """Start scans of ``n_partitions`` equal-width ranges over [min_scan, max_scan].

    Fewer starts than ``n_partitions`` are returned when the scan range is
    narrower than the partition count, so start scans never repeat.

    Examples
    --------
    >>> partition_start_scans(1, 300, 3)
    array([  1, 101, 201])
    >>> partition_start_scans(0, 0, 3)
    array([0])
    """
    span = max_scan - min_scan + 1
    n_partitions = max(1, min(n_partitions, span))
    starts = [min_scan + (i * span) // n_partitions for i in range(n_partitions)]
    return np.asarray(starts, dtype=np.int64)


def calculate_partitions(
    scans: np.ndarray,
    masses: np.ndarray,
    params: Optional[CalibrationParams] = None,
    fit_mask: Optional[np.ndarray] = None,
) -> tuple:
    """Fit one calibration per equal-width scan partition.

    Parameters
    ----------
    scans : np.ndarray
        Scan number per feature
    masses : np.ndarray
        Neutral mass per feature (Da)
    params : CalibrationParams, optional
        Calibration settings (defaults when None)
    fit_mask : np.ndarray of bool, optional
        Features allowed into the fit; the scan range is taken from these

    Returns
    -------
    partitions : tuple of CalibrationPartition
        Ordered by ``start_scan``. Partitions without enough data carry the
        identity calibration; a ``UserWarning`` is issued for each.
    """
    if params is None:
        params = CalibrationParams()

    scans = np.asarray(scans, dtype=np.int64)
    masses = np.asarray(masses, dtype=np.float64)
    if fit_mask is None:
        fit_mask = np.ones(len(masses), dtype=bool)
    fit_mask = fit_mask & np.isfinite(masses) & (masses > 0)

    theoretical = params.theoretical_wavelength
    if not np.any(fit_mask):
        warnings.warn("No usable features for mass calibration. Using identity calibration.")
        start = int(scans.min()) if len(scans) > 0 else 0
        return (CalibrationPartition.identity(start, theoretical),)

    fit_scans = scans[fit_mask]
    fit_masses = masses[fit_mask]
    starts = partition_start_scans(int(fit_scans.min()), int(fit_scans.max()),
                                   params.n_partitions)
    if len(starts) < params.n_partitions:
        warnings.warn(
            f"Scan range {int(fit_scans.min())}-{int(fit_scans.max())} is too narrow for "
            f"{params.n_partitions} partitions. Using {len(starts)}."
        )
    assignment = np.searchsorted(starts, fit_scans, side='right') - 1

    partitions = []
    for p, start in enumerate(starts):
        partition_masses = fit_masses[assignment == p]
        fitted = calculate_wavelength_and_offset(
            partition_masses,
            theoretical_wavelength=theoretical,
            max_pairs=params.max_pairs,
            max_leverage_numerator=params.max_leverage_numerator,
            max_studentized_residual=params.max_studentized_residual,
            mass_defect_intercept=params.mass_defect_intercept,
        )
        if fitted is None:
            warnings.warn(
                f"Too few features ({len(partition_masses)}) to calibrate partition "
                f"starting at scan {start}. Using identity calibration."
            )
            partition = CalibrationPartition.identity(int(start), theoretical,
                                                      len(partition_masses))
        else:
            wavelength, offset = fitted
            partition = CalibrationPartition(int(start), wavelength, offset,
                                             len(partition_masses))
        logger.info(
            f"Partition {p + 1}/{len(starts)} (scan >= {partition.start_scan}): "
            f"wavelength={partition.wavelength:.7f}, offset={partition.offset:.5f}, "
            f"n={partition.n_features}"
        )
        partitions.append(partition)

    return tuple(partitions)


# =============================================================================
# Calibrator
# =============================================================================

class MassCalibrator:
    """Fit and apply partitioned mass calibration to feature collections.

    Parameters
    ----------
    params : CalibrationParams, optional
        Calibration settings (defaults when None)

    Attributes
    ----------
    partitions : tuple of CalibrationPartition
        Result of the last ``fit`` (empty before fitting)
    n_fit_features : int
        Features that passed the initial filter in the last fit
    n_filtered_features : int
        Features excluded from the last fit by the initial filter

    Examples
    --------
    >>> calibrator = MassCalibrator(CalibrationParams(initial_filter_ppm=200))
    >>> result = calibrator.calibrate(features)
    >>> stats = calibrator.get_statistics()
    """

    def __init__(self, params: Optional[CalibrationParams] = None):
        self.params = params if params is not None else CalibrationParams()
        self.partitions: tuple = ()
        self.n_fit_features = 0
        self.n_filtered_features = 0
        self._deviation_before = np.zeros(0)
        self._deviation_after = np.zeros(0)

    def fit_mask(self, features: FeatureCollection) -> np.ndarray:
        """Features admitted to the fit by the initial mass defect filter."""
        mask = np.isfinite(features.mass) & (features.mass > 0)
        if self.params.initial_filter_ppm > 0:
            deviation_ppm = calculate_mass_defect_deviation_ppm(
                features.mass,
                self.params.theoretical_wavelength,
                self.params.mass_defect_intercept,
            )
            mask &= np.abs(deviation_ppm) <= self.params.initial_filter_ppm
        return mask

    def fit(self, features: FeatureCollection) -> tuple:
        """Fit partitions from ``features`` without modifying them."""
        mask = self.fit_mask(features)
        self.n_fit_features = int(mask.sum())
        self.n_filtered_features = len(features) - self.n_fit_features
        if self.params.initial_filter_ppm > 0:
            logger.info(
                f"Initial filter ({self.params.initial_filter_ppm} ppm) kept "
                f"{self.n_fit_features:,} of {len(features):,} features for fitting"
            )

        self.partitions = calculate_partitions(features.scan, features.mass,
                                               self.params, fit_mask=mask)
        return self.partitions

    def apply(self, features: FeatureCollection) -> FeatureCollection:
        """Apply the fitted partitions to every feature, including filtered ones."""
        if not self.partitions:
            raise RuntimeError("MassCalibrator.apply called before fit")
        return apply_calibration(features, self.partitions,
                                 self.params.theoretical_wavelength)

    def calibrate(self, features: FeatureCollection) -> CalibrationResult:
        """Fit on ``features`` and return the corrected copy with diagnostics."""
        self.fit(features)
        calibrated = self.apply(features)

        wavelength = self.params.theoretical_wavelength
        intercept = self.params.mass_defect_intercept
        self._deviation_before = calculate_mass_defect_deviation(features.mass, wavelength, intercept)
        self._deviation_after = calculate_mass_defect_deviation(calibrated.mass, wavelength, intercept)

        if len(features) > 0:
            shift = calibrated.mass - features.mass
            logger.info(
                f"Calibrated {len(features):,} features: mean mass change "
                f"{np.nanmean(shift):.5f} Da"
            )
        return CalibrationResult(calibrated, self.partitions,
                                 self._deviation_before, self._deviation_after)

    def get_statistics(self) -> dict:
        """Summary of the last calibration.

        Returns
        -------
        dict
            - 'n_partitions': number of partitions
            - 'n_fit_features': features used for fitting
            - 'n_filtered_features': features excluded by the initial filter
            - 'wavelengths': fitted wavelength per partition
            - 'offsets': fitted offset per partition
            - 'mean_abs_deviation_before' / 'mean_abs_deviation_after':
              mean |mass defect deviation| (Da), when ``calibrate`` was used
        """
        stats = {
            'n_partitions': len(self.partitions),
            'n_fit_features': self.n_fit_features,
            'n_filtered_features': self.n_filtered_features,
            'wavelengths': [p.wavelength for p in self.partitions],
            'offsets': [p.offset for p in self.partitions],
        }
        if len(self._deviation_before) > 0:
            stats['mean_abs_deviation_before'] = float(np.nanmean(np.abs(self._deviation_before)))
            stats['mean_abs_deviation_after'] = float(np.nanmean(np.abs(self._deviation_after)))
        return stats


def calibrate_features(
    features: FeatureCollection, params: Optional[CalibrationParams] = None
) -> CalibrationResult:
    """One-call calibration: ``MassCalibrator(params).calibrate(features)``."""
    return MassCalibrator(params).calibrate(features)
