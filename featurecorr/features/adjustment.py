"""Apply fitted mass calibrations to features and MS2 precursors.

A calibration partition is any object with ``start_scan``, ``wavelength``
and ``offset`` attributes (see
:class:`featurecorr.calibration.CalibrationPartition`). Each feature is
corrected by the partition with the greatest ``start_scan`` not exceeding
the feature's scan; scans before the first partition use the first one.

All functions return new objects; inputs are never modified.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
from numba import njit

from ..constants import DEFAULT_THEORETICAL_MASS_WAVELENGTH, PROTON_MASS
from .collection import Feature, FeatureCollection, mz_from_neutral_masses


@njit(cache=True)
def calibrate_mass(mass: float, wavelength: float, offset: float,
                   theoretical_wavelength: float) -> float:
    """Corrected mass: mass + mass * (theoretical - wavelength) - offset."""
    return mass + mass * (theoretical_wavelength - wavelength) - offset


@njit(cache=True)
def calibrate_masses(masses: np.ndarray, partition_index: np.ndarray,
                     wavelengths: np.ndarray, offsets: np.ndarray,
                     theoretical_wavelength: float) -> np.ndarray:
    out = np.empty(len(masses), dtype=np.float64)
    for i in range(len(masses)):
        p = partition_index[i]
        out[i] = calibrate_mass(masses[i], wavelengths[p], offsets[p],
                                theoretical_wavelength)
    return out


def _start_scans(partitions: Sequence) -> np.ndarray:
    if len(partitions) == 0:
        raise ValueError("At least one calibration partition is required")
    return np.asarray([p.start_scan for p in partitions], dtype=np.int64)


def select_partitions(partitions: Sequence, scans: np.ndarray) -> np.ndarray:
    """Partition index for every scan (vectorised ``select_partition``)."""
    starts = _start_scans(partitions)
    index = np.searchsorted(starts, np.asarray(scans, dtype=np.int64), side='right') - 1
    return np.maximum(index, 0)


def select_partition(partitions: Sequence, scan: int) -> int:
    """Index of the partition whose ``start_scan`` is the greatest <= ``scan``.

    Examples
    --------
    >>> from featurecorr.calibration import CalibrationPartition
    >>> parts = [CalibrationPartition(1, 1.0, 0.0), CalibrationPartition(101, 1.0, 0.0)]
    >>> select_partition(parts, 100), select_partition(parts, 101), select_partition(parts, 0)
    (0, 1, 0)
    """
    return int(select_partitions(partitions, np.asarray([scan]))[0])


def adjust_feature(
    feature: Feature,
    partition,
    theoretical_wavelength: float = DEFAULT_THEORETICAL_MASS_WAVELENGTH,
) -> Feature:
    """Return a copy of ``feature`` with calibrated mass (and m/z if charged)."""
    adjusted = feature.replace(
        mass=float(calibrate_mass(feature.mass, partition.wavelength,
                                  partition.offset, theoretical_wavelength))
    )
    adjusted.update_mz()
    return adjusted


def apply_calibration(
    features: FeatureCollection,
    partitions: Sequence,
    theoretical_wavelength: float = DEFAULT_THEORETICAL_MASS_WAVELENGTH,
) -> FeatureCollection:
    """Calibrate every feature by its scan's partition.

    Parameters
    ----------
    features : FeatureCollection
        Features to correct (not modified)
    partitions : sequence of CalibrationPartition
        Ordered by ``start_scan``
    theoretical_wavelength : float
        Wavelength the partitions were fitted against

    Returns
    -------
    FeatureCollection
        New collection with corrected masses and, for charged features,
        recomputed m/z
    """
    partition_index = select_partitions(partitions, features.scan)
    wavelengths = np.asarray([p.wavelength for p in partitions], dtype=np.float64)
    offsets = np.asarray([p.offset for p in partitions], dtype=np.float64)

    masses = calibrate_masses(features.mass, partition_index, wavelengths, offsets,
                              theoretical_wavelength)
    mz = mz_from_neutral_masses(masses, features.charge, features.mz)
    return features.with_columns(mass=masses, mz=mz)


# =============================================================================
# MS2 precursors
# =============================================================================

def adjust_precursor_mz(
    precursor_mz: float,
    charge: int,
    partition,
    theoretical_wavelength: float = DEFAULT_THEORETICAL_MASS_WAVELENGTH,
) -> float:
    """Calibrate an MS2 precursor m/z.

    Unassigned charges (< 1) are treated as 1 for the m/z to mass conversion.
    """
    z = max(int(charge), 1)
    mass = precursor_mz * z - z * PROTON_MASS
    mass = calibrate_mass(mass, partition.wavelength, partition.offset,
                          theoretical_wavelength)
    return float((mass + z * PROTON_MASS) / z)


def adjust_precursors(
    scans: np.ndarray,
    precursor_mz: np.ndarray,
    charges: np.ndarray,
    partitions: Sequence,
    theoretical_wavelength: float = DEFAULT_THEORETICAL_MASS_WAVELENGTH,
) -> np.ndarray:
    """Calibrate MS2 precursor m/z values, each by its own scan's partition."""
    z = np.maximum(np.asarray(charges, dtype=np.int64), 1)
    precursor_mz = np.asarray(precursor_mz, dtype=np.float64)

    masses = precursor_mz * z - z * PROTON_MASS
    partition_index = select_partitions(partitions, scans)
    wavelengths = np.asarray([p.wavelength for p in partitions], dtype=np.float64)
    offsets = np.asarray([p.offset for p in partitions], dtype=np.float64)

    masses = calibrate_masses(masses, partition_index, wavelengths, offsets,
                              theoretical_wavelength)
    return (masses + z * PROTON_MASS) / z
