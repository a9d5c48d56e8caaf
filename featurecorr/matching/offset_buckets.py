"""Relative-mass bucket scanning for systematic mass offsets (adducts).

For every reference feature and every integer ``d`` in
``[min_relative_daltons, max_relative_daltons]`` this counts interrogated
features whose mass lies within tolerance of ``reference_mass + d *
mass_wavelength`` and whose scan range overlaps the reference's scan range
widened by ``scan_window_size - 1`` scans. Summed over all references the
counts form a histogram whose peaks reveal recurring mass offsets such as
adducts, oxidations or co-eluting isotopologues.

Pointer discipline
------------------
Interrogated features are sorted by mass. References are visited in
ascending mass order, and the lower bound of a reference's lowest bucket
never decreases with reference mass (for absolute and ppm tolerances), so a
base pointer into the interrogated array only moves forward across
references. Within one reference a local pointer starts from the base
pointer and walks forward through the ascending buckets; it is never written
back to the base pointer.

Examples
--------
>>> scanner = OffsetBucketScanner(OffsetScanParams(max_relative_daltons=50))
>>> result = scanner.scan(features)
>>> result.top_offsets(3)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import NamedTuple, Optional

import numpy as np
from numba import njit

from ..constants import (
    DEFAULT_MAX_RELATIVE_DALTONS,
    DEFAULT_MAX_RELATIVE_SECONDS,
    DEFAULT_MIN_RELATIVE_DALTONS,
    DEFAULT_MIN_RELATIVE_SECONDS,
    DEFAULT_OFFSET_DELTA_MASS_PPM,
    DEFAULT_SCAN_WINDOW_SIZE,
    DEFAULT_SECONDS_INCREMENT,
    DEFAULT_THEORETICAL_MASS_WAVELENGTH,
    MIN_HEATMAP_MASS_DIFFERENCE,
)
from ..features.collection import FeatureCollection
from ..tolerance import MassToleranceType, absolute_delta

logger = logging.getLogger(__name__)


@dataclass
class OffsetScanParams:
    """Parameters for relative-mass bucket scanning.

    Attributes
    ----------
    mass_wavelength : float
        Bucket spacing (Da)
    min_relative_daltons, max_relative_daltons : int
        Bucket range in units of ``mass_wavelength`` (inclusive)
    delta_mass : float
        Tolerance around each bucket centre
    delta_mass_type : MassToleranceType
        Unit of ``delta_mass``
    scan_window_size : int
        Scan window size, including the reference's own scans (>= 1)
    collect_identity : bool
        Record interrogated features in the offset-0 bucket
    """

    mass_wavelength: float = DEFAULT_THEORETICAL_MASS_WAVELENGTH
    min_relative_daltons: int = DEFAULT_MIN_RELATIVE_DALTONS
    max_relative_daltons: int = DEFAULT_MAX_RELATIVE_DALTONS
    delta_mass: float = DEFAULT_OFFSET_DELTA_MASS_PPM
    delta_mass_type: MassToleranceType = MassToleranceType.PPM
    scan_window_size: int = DEFAULT_SCAN_WINDOW_SIZE
    collect_identity: bool = False

    def __post_init__(self):
        if not self.mass_wavelength > 0:
            raise ValueError(f"mass_wavelength must be positive, got {self.mass_wavelength}")
        if self.min_relative_daltons > self.max_relative_daltons:
            raise ValueError(
                f"min_relative_daltons ({self.min_relative_daltons}) exceeds "
                f"max_relative_daltons ({self.max_relative_daltons})"
            )
        if self.delta_mass < 0:
            raise ValueError(f"delta_mass must be non-negative, got {self.delta_mass}")
        if self.scan_window_size < 1:
            raise ValueError(f"scan_window_size must be >= 1, got {self.scan_window_size}")

    @property
    def n_buckets(self) -> int:
        return self.max_relative_daltons - self.min_relative_daltons + 1

    def relative_daltons(self) -> np.ndarray:
        return np.arange(self.min_relative_daltons, self.max_relative_daltons + 1,
                         dtype=np.int64)

    def relative_masses(self) -> np.ndarray:
        return self.relative_daltons() * self.mass_wavelength

    @property
    def identity_bucket(self) -> int:
        """Index of the offset-0 bucket, or -1 when 0 is out of range."""
        if self.min_relative_daltons <= 0 <= self.max_relative_daltons:
            return -self.min_relative_daltons
        return -1


class OffsetScanResult(NamedTuple):
    """Histogram of interrogated features per relative-mass bucket."""

    relative_daltons: np.ndarray  # bucket label (integer Daltons)
    relative_masses: np.ndarray   # bucket offset (Da)
    counts: np.ndarray            # summed over reference features
    identity_indices: np.ndarray  # interrogated indices in the offset-0 bucket
    n_reference: int

    def top_offsets(self, k: int = 5) -> list[tuple[int, int]]:
        """(relative Daltons, count) of the ``k`` most populated buckets."""
        order = np.argsort(-self.counts, kind='stable')[:k]
        return [(int(self.relative_daltons[i]), int(self.counts[i])) for i in order]


class TimeOffsetHeatmap(NamedTuple):
    """Counts of feature pairs by relative retention time and relative mass."""

    relative_seconds: np.ndarray  # lower edge of each time bucket
    relative_daltons: np.ndarray  # mass bucket labels
    counts: np.ndarray            # shape (n_time_buckets, n_mass_buckets)


# =============================================================================
# Numba kernels
# =============================================================================

@njit(cache=True)
def scan_offset_buckets(ref_masses: np.ndarray, ref_ids: np.ndarray,
                        ref_scan_first: np.ndarray, ref_scan_last: np.ndarray,
                        int_masses: np.ndarray, int_ids: np.ndarray,
                        int_scan_first: np.ndarray, int_scan_last: np.ndarray,
                        relative_masses: np.ndarray, delta: float, is_ppm: bool,
                        scan_padding: int, skip_self: bool, identity_bucket: int):
    """Per-bucket counts over mass-sorted reference and interrogated arrays.

    Returns
    -------
    counts : np.ndarray
        int64 count per bucket
    identity_hits : np.ndarray
        bool per interrogated feature (sorted order), True if it fell in the
        identity bucket of any reference
    """
    n_ref = len(ref_masses)
    n_int = len(int_masses)
    n_buckets = len(relative_masses)
    counts = np.zeros(n_buckets, dtype=np.int64)
    identity_hits = np.zeros(n_int, dtype=np.bool_)

    base = 0
    for r in range(n_ref):
        mass = ref_masses[r]
        low_scan = ref_scan_first[r] - scan_padding
        high_scan = ref_scan_last[r] + scan_padding

        lowest_center = mass + relative_masses[0]
        lowest_tolerance = absolute_delta(lowest_center, delta, is_ppm)
        while base < n_int and lowest_center - int_masses[base] > lowest_tolerance:
            base += 1

        local = base
        for b in range(n_buckets):
            center = mass + relative_masses[b]
            tolerance = absolute_delta(center, delta, is_ppm)
            while local < n_int and center - int_masses[local] > tolerance:
                local += 1

            j = local
            while j < n_int and int_masses[j] - center <= tolerance:
                if (skip_self and int_ids[j] == ref_ids[r]) or \
                        int_scan_first[j] > high_scan or int_scan_last[j] < low_scan:
                    j += 1
                    continue
                counts[b] += 1
                if b == identity_bucket:
                    identity_hits[j] = True
                j += 1

    return counts, identity_hits


@njit(cache=True)
def time_offset_heatmap(masses: np.ndarray, times: np.ndarray,
                        min_relative_daltons: int, n_mass_buckets: int,
                        mass_wavelength: float, delta: float, is_ppm: bool,
                        min_relative_seconds: float, seconds_increment: float,
                        n_time_buckets: int, min_mass_difference: float) -> np.ndarray:
    """Pair counts by (relative time bucket, relative mass bucket).

    ``masses`` must be sorted ascending; ``times`` aligned with it.
    """
    n = len(masses)
    heatmap = np.zeros((n_time_buckets, n_mass_buckets), dtype=np.int64)
    max_relative_seconds = min_relative_seconds + n_time_buckets * seconds_increment

    base = 0
    for r in range(n):
        mass = masses[r]
        lowest_center = mass + min_relative_daltons * mass_wavelength
        highest_center = mass + (min_relative_daltons + n_mass_buckets - 1) * mass_wavelength
        lowest_bound = lowest_center - absolute_delta(lowest_center, delta, is_ppm)
        highest_bound = highest_center + absolute_delta(highest_center, delta, is_ppm)

        while base < n and masses[base] < lowest_bound:
            base += 1

        for k in range(base, n):
            if masses[k] > highest_bound:
                break
            if k == r:
                continue
            mass_difference = masses[k] - mass
            if abs(mass_difference) < min_mass_difference:
                continue

            bucket = int(np.floor(mass_difference / mass_wavelength + 0.5)) - min_relative_daltons
            if bucket < 0 or bucket >= n_mass_buckets:
                continue
            center = mass + (min_relative_daltons + bucket) * mass_wavelength
            if abs(masses[k] - center) > absolute_delta(center, delta, is_ppm):
                continue

            time_difference = times[k] - times[r]
            if time_difference < min_relative_seconds or time_difference >= max_relative_seconds:
                continue
            time_bucket = int((time_difference - min_relative_seconds) / seconds_increment)
            if time_bucket >= n_time_buckets:
                continue
            heatmap[time_bucket, bucket] += 1

    return heatmap


# =============================================================================
# Scanner
# =============================================================================

def _valid_mass_order(masses: np.ndarray) -> np.ndarray:
    valid = np.flatnonzero(np.isfinite(masses) & (masses > 0))
    return valid[np.argsort(masses[valid], kind='stable')]


class OffsetBucketScanner:
    """Count interrogated features at contiguous relative-mass offsets.

    Parameters
    ----------
    params : OffsetScanParams, optional
        Scan settings (defaults when None)
    """

    def __init__(self, params: Optional[OffsetScanParams] = None):
        self.params = params if params is not None else OffsetScanParams()

    def scan(self, reference: FeatureCollection,
             interrogated: Optional[FeatureCollection] = None) -> OffsetScanResult:
        """Histogram of ``interrogated`` features relative to ``reference``.

        Parameters
        ----------
        reference : FeatureCollection
            Features whose masses anchor the buckets
        interrogated : FeatureCollection, optional
            Features counted into buckets; ``reference`` itself when None, in
            which case a feature is never counted against itself

        Returns
        -------
        OffsetScanResult
        """
        params = self.params
        if interrogated is None:
            interrogated = reference
        skip_self = interrogated is reference

        ref_order = _valid_mass_order(reference.mass)
        int_order = _valid_mass_order(interrogated.mass)

        identity_bucket = params.identity_bucket if params.collect_identity else -1
        counts, identity_hits = scan_offset_buckets(
            reference.mass[ref_order], ref_order,
            reference.scan_first[ref_order], reference.scan_last[ref_order],
            interrogated.mass[int_order], int_order,
            interrogated.scan_first[int_order], interrogated.scan_last[int_order],
            params.relative_masses(), float(params.delta_mass),
            params.delta_mass_type.is_ppm, params.scan_window_size - 1,
            skip_self, identity_bucket,
        )

        identity_indices = np.sort(int_order[identity_hits])
        logger.info(
            f"Scanned {len(ref_order):,} reference features over {params.n_buckets} "
            f"buckets: {int(counts.sum()):,} hits"
        )
        return OffsetScanResult(params.relative_daltons(), params.relative_masses(),
                                counts, identity_indices, len(ref_order))

    def time_heatmap(
        self,
        features: FeatureCollection,
        min_relative_seconds: int = DEFAULT_MIN_RELATIVE_SECONDS,
        max_relative_seconds: int = DEFAULT_MAX_RELATIVE_SECONDS,
        seconds_increment: int = DEFAULT_SECONDS_INCREMENT,
    ) -> TimeOffsetHeatmap:
        """Relative time x relative mass counts of feature pairs within one collection.

        Pairs closer than 0.5 Da are ignored. Mass buckets follow ``params``;
        time buckets span ``[min_relative_seconds, max_relative_seconds)`` in
        steps of ``seconds_increment``.
        """
        if seconds_increment <= 0:
            raise ValueError(f"seconds_increment must be positive, got {seconds_increment}")
        if max_relative_seconds <= min_relative_seconds:
            raise ValueError("max_relative_seconds must exceed min_relative_seconds")

        params = self.params
        n_time_buckets = int((max_relative_seconds - min_relative_seconds) // seconds_increment)
        order = _valid_mass_order(features.mass)

        counts = time_offset_heatmap(
            features.mass[order], features.time[order],
            params.min_relative_daltons, params.n_buckets, params.mass_wavelength,
            float(params.delta_mass), params.delta_mass_type.is_ppm,
            float(min_relative_seconds), float(seconds_increment), n_time_buckets,
            MIN_HEATMAP_MASS_DIFFERENCE,
        )
        relative_seconds = (min_relative_seconds
                            + np.arange(n_time_buckets) * seconds_increment)
        return TimeOffsetHeatmap(relative_seconds, params.relative_daltons(), counts)


def scan_offsets(reference: FeatureCollection,
                 interrogated: Optional[FeatureCollection] = None,
                 params: Optional[OffsetScanParams] = None) -> OffsetScanResult:
    """Functional form of ``OffsetBucketScanner(params).scan(...)``."""
    return OffsetBucketScanner(params).scan(reference, interrogated)
