"""Tolerance settings for feature matching.

Matching uses two criteria: a mass window (absolute or ppm) and an elution
window in one of three dimensions. Each ``ElutionMode`` member knows how to
read its dimension from a feature collection:

- SCAN compares scan ranges (``scan_first`` to ``scan_last``); two features
  are ``gap`` scans apart when their ranges do not overlap, 0 when they do.
- TIME and HYDROPHOBICITY compare single values (absolute difference).

Both cases reduce to the gap between two closed intervals, which is what the
matching kernels evaluate. The gap is signed (positive when the slave elutes
after the master) so that asymmetric windows, e.g. matching at a known mass
shift and retention lag, can be expressed with ``mass_window`` and
``elution_window``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from ..constants import (
    DEFAULT_DELTA_HYDROPHOBICITY,
    DEFAULT_DELTA_MASS_ABSOLUTE,
    DEFAULT_DELTA_MASS_PPM,
    DEFAULT_DELTA_SCAN,
    DEFAULT_DELTA_TIME,
)
from ..features.collection import FeatureCollection
from ..tolerance import MassToleranceType


class ElutionMode(Enum):
    """Elution dimension used as the secondary matching criterion."""
    SCAN = "scan"
    TIME = "time"
    HYDROPHOBICITY = "hydrophobicity"

    @property
    def is_range(self) -> bool:
        return self is ElutionMode.SCAN

    @property
    def default_delta(self) -> float:
        return {
            ElutionMode.SCAN: float(DEFAULT_DELTA_SCAN),
            ElutionMode.TIME: DEFAULT_DELTA_TIME,
            ElutionMode.HYDROPHOBICITY: DEFAULT_DELTA_HYDROPHOBICITY,
        }[self]

    @property
    def bucket_step(self) -> float:
        """Step size for callers that bin along this dimension."""
        return {
            ElutionMode.SCAN: 1.0,
            ElutionMode.TIME: 1.0,
            ElutionMode.HYDROPHOBICITY: 0.05,
        }[self]

    def intervals(self, features: FeatureCollection) -> tuple[np.ndarray, np.ndarray]:
        """(low, high) elution bounds per feature, as float64 arrays."""
        if self is ElutionMode.SCAN:
            low = features.scan_first.astype(np.float64)
            high = features.scan_last.astype(np.float64)
            return np.minimum(low, high), np.maximum(low, high)
        values = self.points(features)
        return values, values

    def points(self, features: FeatureCollection) -> np.ndarray:
        """Single elution value per feature (apex scan for SCAN)."""
        if self is ElutionMode.SCAN:
            return features.scan.astype(np.float64)
        if self is ElutionMode.TIME:
            return features.time.astype(np.float64)
        return features.hydrophobicity.astype(np.float64)


class SlaveOrdering(Enum):
    """How the slaves matched to one master are ranked (best first)."""
    ELUTION_CLOSENESS = "elution"    # smallest elution gap, then mass difference
    MASS_CLOSENESS = "mass"          # smallest mass difference, then elution gap
    INTENSITY = "intensity"          # highest slave intensity


def _check_window(name: str, window) -> None:
    if window is None:
        return
    if len(window) != 2:
        raise ValueError(f"{name} must be a (min, max) pair, got {window}")
    low, high = window
    if not (np.isfinite(low) and np.isfinite(high) and low <= high):
        raise ValueError(f"{name} needs finite bounds with min <= max, got {window}")


@dataclass(frozen=True)
class ToleranceSpec:
    """Mass and elution tolerances for one matching run.

    Attributes
    ----------
    delta_mass : float
        Mass window half-width, in Da or ppm
    delta_mass_type : MassToleranceType
        Unit of ``delta_mass``
    delta_elution : float
        Maximum elution gap (scans, seconds or hydrophobicity units)
    elution_mode : ElutionMode
        Elution dimension
    match_within_charge : bool
        Only match features with equal charge
    slave_ordering : SlaveOrdering
        Ranking of each master's matched slaves
    mass_window : (float, float), optional
        Allowed (min, max) of slave minus master mass, in ``delta_mass_type``
        units. Defaults to (-delta_mass, delta_mass).
    elution_window : (float, float), optional
        Allowed (min, max) of the signed elution gap. Defaults to
        (-delta_elution, delta_elution).
    """

    delta_mass: float = DEFAULT_DELTA_MASS_PPM
    delta_mass_type: MassToleranceType = MassToleranceType.PPM
    delta_elution: float = float(DEFAULT_DELTA_SCAN)
    elution_mode: ElutionMode = ElutionMode.SCAN
    match_within_charge: bool = False
    slave_ordering: SlaveOrdering = SlaveOrdering.ELUTION_CLOSENESS
    mass_window: Optional[tuple] = None
    elution_window: Optional[tuple] = None

    def __post_init__(self):
        if not (self.delta_mass >= 0 and np.isfinite(self.delta_mass)):
            raise ValueError(f"delta_mass must be a non-negative number, got {self.delta_mass}")
        if not self.delta_elution >= 0:
            raise ValueError(f"delta_elution must be non-negative, got {self.delta_elution}")
        _check_window('mass_window', self.mass_window)
        _check_window('elution_window', self.elution_window)
        if (self.mass_window is not None and self.delta_mass_type.is_ppm
                and self.mass_window[0] <= -1e6):
            raise ValueError(f"ppm mass_window must stay above -1e6, got {self.mass_window}")

    @property
    def mass_bounds(self) -> tuple[float, float]:
        """(min, max) of slave minus master mass, in ``delta_mass_type`` units."""
        if self.mass_window is None:
            return -float(self.delta_mass), float(self.delta_mass)
        return float(self.mass_window[0]), float(self.mass_window[1])

    @property
    def elution_bounds(self) -> tuple[float, float]:
        """(min, max) of the signed elution gap."""
        if self.elution_window is None:
            return -float(self.delta_elution), float(self.delta_elution)
        return float(self.elution_window[0]), float(self.elution_window[1])

    @classmethod
    def default(
        cls,
        elution_mode: ElutionMode = ElutionMode.SCAN,
        delta_mass: Optional[float] = None,
        delta_mass_type: MassToleranceType = MassToleranceType.PPM,
        **kwargs,
    ) -> 'ToleranceSpec':
        """Default tolerances for an elution mode (5 ppm or 0.2 Da; 3 scans, 20 s or 0.05)."""
        if delta_mass is None:
            delta_mass = (DEFAULT_DELTA_MASS_PPM if delta_mass_type.is_ppm
                          else DEFAULT_DELTA_MASS_ABSOLUTE)
        return cls(
            delta_mass=delta_mass,
            delta_mass_type=delta_mass_type,
            delta_elution=elution_mode.default_delta,
            elution_mode=elution_mode,
            **kwargs,
        )
