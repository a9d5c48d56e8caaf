"""Tolerance matching of two feature collections.

Every master feature is matched to *all* slave features within the mass and
elution tolerances; this is not a nearest-neighbour assignment, so a master
may collect many slaves and a slave may appear under many masters.

Algorithm
---------
1. Masters and slaves are sorted by mass (features with non-finite or
   non-positive mass are left out).
2. A two-pointer sweep finds each master's slave window
   ``[mass + low, mass + high]`` (``low = -delta``, ``high = delta`` unless an
   asymmetric ``mass_window`` is set), recomputed per master so ppm
   tolerances scale with mass. Window bounds never decrease with master
   mass, so both pointers only move forward.
3. Slaves inside the window are tested against the elution predicate
   (signed interval gap within the elution bounds) and optionally charge equality. Matching
   pairs are counted first, then written into pre-allocated arrays.
4. Pairs are mapped back to the callers' indices and each master's slaves
   are ranked best-first.

Examples
--------
>>> from featurecorr.matching import ToleranceMatcher, ToleranceSpec
>>> matcher = ToleranceMatcher(ToleranceSpec(delta_mass=5.0))
>>> result = matcher.match(master_features, slave_features)
>>> for master_index, slave_indices in result.as_dict().items():
...     best = slave_indices[0]
"""

from __future__ import annotations

import logging
from typing import Iterator, NamedTuple, Optional, Sequence

import numpy as np
from numba import njit

from ..features.collection import FeatureCollection
from ..tolerance import absolute_delta
from .params import SlaveOrdering, ToleranceSpec

logger = logging.getLogger(__name__)


class MatchPairs(NamedTuple):
    """Flat list of matched (master, slave) pairs in input index space."""

    master: np.ndarray          # master feature index per pair
    slave: np.ndarray           # slave feature index per pair
    mass_difference: np.ndarray  # slave mass - master mass (Da)
    elution_gap: np.ndarray     # elution interval gap (>= 0)


# =============================================================================
# Numba kernels
# =============================================================================

@njit(cache=True)
def elution_gap(low_a: float, high_a: float, low_b: float, high_b: float) -> float:
    """Distance between two closed intervals (0 when they overlap, inf if undefined)."""
    if np.isnan(low_a) or np.isnan(high_a) or np.isnan(low_b) or np.isnan(high_b):
        return np.inf
    gap = 0.0
    if low_b - high_a > gap:
        gap = low_b - high_a
    if low_a - high_b > gap:
        gap = low_a - high_b
    return gap


@njit(cache=True)
def signed_elution_gap(low_a: float, high_a: float, low_b: float, high_b: float) -> float:
    """Gap from interval a to interval b, positive when b lies after a.

    0 when the intervals overlap, NaN when either is undefined.
    """
    if np.isnan(low_a) or np.isnan(high_a) or np.isnan(low_b) or np.isnan(high_b):
        return np.nan
    if low_b > high_a:
        return low_b - high_a
    if high_b < low_a:
        return high_b - low_a
    return 0.0


@njit(cache=True)
def sweep_mass_windows(master_masses: np.ndarray, slave_masses: np.ndarray,
                       delta: float, is_ppm: bool):
    """Slave window ``[start, end)`` per master, both arrays sorted by mass.

    A slave ``s`` lies in the window of master ``m`` when
    ``|s - m| <= delta(m)``. Neither pointer moves backwards.
    """
    return sweep_mass_ranges(master_masses, slave_masses, -delta, delta, is_ppm)


@njit(cache=True)
def sweep_mass_ranges(master_masses: np.ndarray, slave_masses: np.ndarray,
                      low: float, high: float, is_ppm: bool):
    """Slave window ``[start, end)`` per master for ``low <= s - m <= high``.

    ``low`` and ``high`` are in Da, or ppm of each master mass.
    """
    n_master = len(master_masses)
    n_slave = len(slave_masses)
    starts = np.empty(n_master, dtype=np.int64)
    ends = np.empty(n_master, dtype=np.int64)

    start = 0
    end = 0
    for i in range(n_master):
        mass = master_masses[i]
        lower = absolute_delta(mass, low, is_ppm)
        upper = absolute_delta(mass, high, is_ppm)

        while start < n_slave and slave_masses[start] - mass < lower:
            start += 1
        if end < start:
            end = start
        while end < n_slave and slave_masses[end] - mass <= upper:
            end += 1

        starts[i] = start
        ends[i] = end

    return starts, ends


@njit(cache=True)
def _pair_passes(i: int, j: int, master_low: np.ndarray, master_high: np.ndarray,
                 slave_low: np.ndarray, slave_high: np.ndarray, min_elution: float,
                 max_elution: float, master_charge: np.ndarray, slave_charge: np.ndarray,
                 within_charge: bool) -> bool:
    if within_charge and master_charge[i] != slave_charge[j]:
        return False
    gap = signed_elution_gap(master_low[i], master_high[i], slave_low[j], slave_high[j])
    return min_elution <= gap <= max_elution


@njit(cache=True)
def collect_window_pairs(starts: np.ndarray, ends: np.ndarray,
                         master_masses: np.ndarray, slave_masses: np.ndarray,
                         master_low: np.ndarray, master_high: np.ndarray,
                         slave_low: np.ndarray, slave_high: np.ndarray,
                         min_elution: float, max_elution: float,
                         master_charge: np.ndarray, slave_charge: np.ndarray,
                         within_charge: bool):
    """All (master, slave) pairs inside the mass windows passing the elution test.

    Indices refer to the mass-sorted arrays passed in.

    Returns
    -------
    master_idx, slave_idx : np.ndarray
        Pair indices
    mass_diff : np.ndarray
        Slave mass minus master mass
    gaps : np.ndarray
        Elution gap of each pair
    """
    n_master = len(starts)

    # Count pass
    n_pairs = 0
    for i in range(n_master):
        for j in range(starts[i], ends[i]):
            if _pair_passes(i, j, master_low, master_high, slave_low, slave_high,
                            min_elution, max_elution, master_charge, slave_charge,
                            within_charge):
                n_pairs += 1

    master_idx = np.empty(n_pairs, dtype=np.int64)
    slave_idx = np.empty(n_pairs, dtype=np.int64)
    mass_diff = np.empty(n_pairs, dtype=np.float64)
    gaps = np.empty(n_pairs, dtype=np.float64)

    # Fill pass
    k = 0
    for i in range(n_master):
        for j in range(starts[i], ends[i]):
            if _pair_passes(i, j, master_low, master_high, slave_low, slave_high,
                            min_elution, max_elution, master_charge, slave_charge,
                            within_charge):
                master_idx[k] = i
                slave_idx[k] = j
                mass_diff[k] = slave_masses[j] - master_masses[i]
                gaps[k] = elution_gap(master_low[i], master_high[i],
                                      slave_low[j], slave_high[j])
                k += 1

    return master_idx, slave_idx, mass_diff, gaps


# =============================================================================
# Result
# =============================================================================

class MatchResult:
    """One-to-many correspondence from master features to slave features.

    Stored in compressed-row form: the slaves of ``master_indices[k]`` are
    ``slave_indices[offsets[k]:offsets[k + 1]]``, ranked best-first.
    Only masters with at least one match are stored.

    Attributes
    ----------
    master_indices : np.ndarray
        Matched master indices, ascending
    offsets : np.ndarray
        Row offsets into ``slave_indices`` (length ``len(master_indices) + 1``)
    slave_indices : np.ndarray
        Concatenated slave lists
    mass_differences : np.ndarray
        Slave minus master mass (Da), aligned with ``slave_indices``
    elution_gaps : np.ndarray
        Elution gap, aligned with ``slave_indices``
    n_master, n_slave : int
        Sizes of the matched collections
    """

    def __init__(self, master_indices, offsets, slave_indices, mass_differences,
                 elution_gaps, n_master: int, n_slave: int):
        self.master_indices = master_indices
        self.offsets = offsets
        self.slave_indices = slave_indices
        self.mass_differences = mass_differences
        self.elution_gaps = elution_gaps
        self.n_master = n_master
        self.n_slave = n_slave

    @classmethod
    def empty(cls, n_master: int = 0, n_slave: int = 0) -> 'MatchResult':
        return cls(np.zeros(0, dtype=np.int64), np.zeros(1, dtype=np.int64),
                   np.zeros(0, dtype=np.int64), np.zeros(0), np.zeros(0),
                   n_master, n_slave)

    @classmethod
    def from_pairs(cls, pairs: MatchPairs, ordering_key: Sequence[np.ndarray],
                   n_master: int, n_slave: int) -> 'MatchResult':
        """Group flat pairs by master, ranking each group by ``ordering_key``.

        ``ordering_key`` lists per-pair sort keys, most significant last
        (``np.lexsort`` convention); the master index is always the primary key.
        """
        if len(pairs.master) == 0:
            return cls.empty(n_master, n_slave)

        order = np.lexsort(tuple(ordering_key) + (pairs.master,))
        masters = pairs.master[order]
        master_indices, first = np.unique(masters, return_index=True)
        offsets = np.concatenate([first, [len(masters)]]).astype(np.int64)

        return cls(master_indices.astype(np.int64), offsets,
                   pairs.slave[order].astype(np.int64),
                   pairs.mass_difference[order], pairs.elution_gap[order],
                   n_master, n_slave)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _row(self, master_index: int) -> Optional[int]:
        k = int(np.searchsorted(self.master_indices, master_index))
        if k < len(self.master_indices) and self.master_indices[k] == master_index:
            return k
        return None

    def matches_for(self, master_index: int) -> np.ndarray:
        """Slave indices matched to ``master_index`` (best first; empty if none)."""
        k = self._row(master_index)
        if k is None:
            return np.zeros(0, dtype=np.int64)
        return self.slave_indices[self.offsets[k]:self.offsets[k + 1]]

    def best_match(self, master_index: int) -> Optional[int]:
        """Top-ranked slave for ``master_index``, or None."""
        matches = self.matches_for(master_index)
        return int(matches[0]) if len(matches) > 0 else None

    def as_dict(self) -> dict[int, list[int]]:
        return {
            int(m): self.slave_indices[self.offsets[k]:self.offsets[k + 1]].tolist()
            for k, m in enumerate(self.master_indices)
        }

    def pairs(self) -> Iterator[tuple[int, int]]:
        """(master, slave) index pairs, grouped by master in rank order."""
        for k, m in enumerate(self.master_indices):
            for s in self.slave_indices[self.offsets[k]:self.offsets[k + 1]]:
                yield int(m), int(s)

    def pair_arrays(self) -> tuple[np.ndarray, np.ndarray]:
        """(master, slave) index arrays, one entry per pair."""
        counts = np.diff(self.offsets)
        return np.repeat(self.master_indices, counts), self.slave_indices

    def best_pairs(self) -> tuple[np.ndarray, np.ndarray]:
        """(master, best slave) arrays, one entry per matched master."""
        return self.master_indices, self.slave_indices[self.offsets[:-1]]

    def matched_slave_indices(self) -> np.ndarray:
        return np.unique(self.slave_indices)

    def unmatched_master_indices(self) -> np.ndarray:
        return np.setdiff1d(np.arange(self.n_master), self.master_indices)

    def unmatched_slave_indices(self) -> np.ndarray:
        return np.setdiff1d(np.arange(self.n_slave), self.slave_indices)

    @property
    def n_pairs(self) -> int:
        return len(self.slave_indices)

    def __len__(self) -> int:
        return len(self.master_indices)

    def __repr__(self) -> str:
        return (f"MatchResult(matched_masters={len(self)}/{self.n_master}, "
                f"pairs={self.n_pairs}, n_slave={self.n_slave})")


# =============================================================================
# Matcher
# =============================================================================

def _valid_mass_indices(masses: np.ndarray) -> np.ndarray:
    return np.flatnonzero(np.isfinite(masses) & (masses > 0))


def ordering_keys(pairs: MatchPairs, ordering: SlaveOrdering,
                  slave_intensity: np.ndarray) -> tuple:
    """``np.lexsort`` keys (least significant first) for ranking slaves."""
    abs_diff = np.abs(pairs.mass_difference)
    if ordering is SlaveOrdering.ELUTION_CLOSENESS:
        return (pairs.slave, abs_diff, pairs.elution_gap)
    if ordering is SlaveOrdering.MASS_CLOSENESS:
        return (pairs.slave, pairs.elution_gap, abs_diff)
    return (pairs.slave, -slave_intensity[pairs.slave])


class ToleranceMatcher:
    """Match master features to slave features within a ``ToleranceSpec``.

    Parameters
    ----------
    spec : ToleranceSpec, optional
        Tolerances (5 ppm, 3 scans when None)
    """

    def __init__(self, spec: Optional[ToleranceSpec] = None):
        self.spec = spec if spec is not None else ToleranceSpec()

    def find_pairs(self, master: FeatureCollection, slave: FeatureCollection) -> MatchPairs:
        """All matching (master, slave) pairs, unordered, in input index space."""
        spec = self.spec
        master_valid = _valid_mass_indices(master.mass)
        slave_valid = _valid_mass_indices(slave.mass)

        n_skipped = (len(master) - len(master_valid)) + (len(slave) - len(slave_valid))
        if n_skipped > 0:
            logger.debug(f"Skipping {n_skipped} features with non-positive or missing mass")

        # Sort usable features by mass
        master_order = master_valid[np.argsort(master.mass[master_valid], kind='stable')]
        slave_order = slave_valid[np.argsort(slave.mass[slave_valid], kind='stable')]

        master_masses = master.mass[master_order]
        slave_masses = slave.mass[slave_order]
        master_low, master_high = spec.elution_mode.intervals(master)
        slave_low, slave_high = spec.elution_mode.intervals(slave)

        mass_low, mass_high = spec.mass_bounds
        min_elution, max_elution = spec.elution_bounds
        starts, ends = sweep_mass_ranges(master_masses, slave_masses, mass_low, mass_high,
                                         spec.delta_mass_type.is_ppm)
        m_idx, s_idx, mass_diff, gaps = collect_window_pairs(
            starts, ends,
            master_masses, slave_masses,
            master_low[master_order], master_high[master_order],
            slave_low[slave_order], slave_high[slave_order],
            min_elution, max_elution,
            master.charge[master_order], slave.charge[slave_order],
            spec.match_within_charge,
        )

        return MatchPairs(master_order[m_idx], slave_order[s_idx], mass_diff, gaps)

    def match(self, master: FeatureCollection, slave: FeatureCollection) -> MatchResult:
        """Match ``master`` against ``slave``.

        Returns
        -------
        MatchResult
            Empty (never None) when nothing matches or an input is empty.
        """
        pairs = self.find_pairs(master, slave)
        keys = ordering_keys(pairs, self.spec.slave_ordering, slave.intensity)
        result = MatchResult.from_pairs(pairs, keys, len(master), len(slave))

        logger.info(
            f"Matched {len(result):,} of {len(master):,} master features "
            f"({result.n_pairs:,} pairs) against {len(slave):,} slave features"
        )
        return result

    def match_many(self, master: FeatureCollection,
                   slaves: Sequence[FeatureCollection]) -> list[MatchResult]:
        """Match one master collection against several slave collections."""
        return [self.match(master, slave) for slave in slaves]


def match_features(master: FeatureCollection, slave: FeatureCollection,
                   spec: Optional[ToleranceSpec] = None) -> MatchResult:
    """Functional form of ``ToleranceMatcher(spec).match(master, slave)``."""
    return ToleranceMatcher(spec).match(master, slave)


def brute_force_match(master: FeatureCollection, slave: FeatureCollection,
                      spec: Optional[ToleranceSpec] = None) -> MatchResult:
    """Exhaustive O(n*m) reference matcher with the same predicates.

    Intended for validating the swept matcher on small inputs.
    """
    if spec is None:
        spec = ToleranceSpec()

    master_valid = _valid_mass_indices(master.mass)
    slave_valid = _valid_mass_indices(slave.mass)
    m = master.mass[master_valid][:, None]
    s = slave.mass[slave_valid][None, :]

    low, high = spec.mass_bounds
    if spec.delta_mass_type.is_ppm:
        lower, upper = low * m / 1e6, high * m / 1e6
    else:
        lower, upper = np.full_like(m, low), np.full_like(m, high)
    diff = s - m
    in_mass = (diff >= lower) & (diff <= upper)

    master_low, master_high = spec.elution_mode.intervals(master)
    slave_low, slave_high = spec.elution_mode.intervals(slave)
    ml = master_low[master_valid][:, None]
    mh = master_high[master_valid][:, None]
    sl = slave_low[slave_valid][None, :]
    sh = slave_high[slave_valid][None, :]
    after = sl - mh
    before = sh - ml
    signed = np.where(after > 0, after, np.where(before < 0, before, 0.0))
    signed = np.where(np.isnan(after) | np.isnan(before), np.nan, signed)
    min_elution, max_elution = spec.elution_bounds
    with np.errstate(invalid='ignore'):
        in_elution = (signed >= min_elution) & (signed <= max_elution)
    gaps = np.abs(signed)

    passes = in_mass & in_elution
    if spec.match_within_charge:
        passes &= (master.charge[master_valid][:, None] == slave.charge[slave_valid][None, :])

    rows, cols = np.nonzero(passes)
    pairs = MatchPairs(
        master_valid[rows],
        slave_valid[cols],
        diff[rows, cols],
        gaps[rows, cols],
    )
    keys = ordering_keys(pairs, spec.slave_ordering, slave.intensity)
    return MatchResult.from_pairs(pairs, keys, len(master), len(slave))
