"""Feature data model: single features and columnar feature collections.

A feature is a detected ion signal (mass, charge, elution position,
intensity) extracted from MS1 spectra. Collections store every field as a
numpy column so that the Numba kernels in calibration and matching can work
on contiguous arrays; single ``Feature`` objects are views materialised on
demand.

The neutral mass and m/z of a charged feature are tied together:

    mass = mz * charge - charge * PROTON_MASS

``update_mz`` and ``update_mass`` restore this relation after one side
changes. Uncharged features (charge <= 0) carry mass and m/z independently.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

import numpy as np
from numba import njit

from ..constants import PROTON_MASS


# =============================================================================
# Mass / m/z conversion
# =============================================================================

@njit(cache=True)
def mz_from_neutral_masses(masses: np.ndarray, charges: np.ndarray,
                           mz: np.ndarray) -> np.ndarray:
    """Recompute m/z for charged entries; uncharged entries keep ``mz``."""
    out = mz.copy()
    for i in range(len(masses)):
        z = charges[i]
        if z > 0:
            out[i] = (masses[i] + z * PROTON_MASS) / z
    return out


@njit(cache=True)
def neutral_masses_from_mz(mz: np.ndarray, charges: np.ndarray,
                           masses: np.ndarray) -> np.ndarray:
    """Recompute neutral mass for charged entries; uncharged keep ``masses``."""
    out = masses.copy()
    for i in range(len(mz)):
        z = charges[i]
        if z > 0:
            out[i] = mz[i] * z - z * PROTON_MASS
    return out


# =============================================================================
# Feature
# =============================================================================

@dataclass
class Feature:
    """A single detected MS1 feature."""

    mass: float
    mz: float = float("nan")
    charge: int = 0
    scan: int = 0
    scan_first: int = 0
    scan_last: int = 0
    time: float = 0.0            # seconds
    intensity: float = 0.0
    hydrophobicity: float = float("nan")

    def update_mz(self) -> None:
        """Set m/z from the neutral mass (no-op when uncharged)."""
        if self.charge > 0:
            self.mz = (self.mass + self.charge * PROTON_MASS) / self.charge

    def update_mass(self) -> None:
        """Set the neutral mass from m/z (no-op when uncharged)."""
        if self.charge > 0:
            self.mass = self.mz * self.charge - self.charge * PROTON_MASS

    def replace(self, **changes) -> 'Feature':
        return dataclasses.replace(self, **changes)


# =============================================================================
# FeatureCollection
# =============================================================================

FLOAT_COLUMNS = ('mass', 'mz', 'time', 'intensity', 'hydrophobicity')
INT_COLUMNS = ('charge', 'scan', 'scan_first', 'scan_last')
COLUMNS = ('mass', 'mz', 'charge', 'scan', 'scan_first', 'scan_last',
           'time', 'intensity', 'hydrophobicity')


class FeatureCollection:
    """Columnar container of features.

    Parameters
    ----------
    mass : array-like
        Neutral masses (Da). Derived from ``mz`` and ``charge`` when None.
    mz : array-like, optional
        m/z values. Derived from ``mass`` and ``charge`` when None
        (NaN for uncharged features).
    charge : array-like, optional
        Charge states (0 = unknown). Default 0.
    scan : array-like, optional
        Apex scan number. Default 0.
    scan_first, scan_last : array-like, optional
        First and last scan of the feature's elution profile.
        Default to ``scan``.
    time : array-like, optional
        Apex retention time in seconds. Default 0.
    intensity : array-like, optional
        Feature intensity. Default 0.
    hydrophobicity : array-like, optional
        Predicted hydrophobicity. Default NaN.
    source : str
        Provenance label (usually the file the features came from).

    Raises
    ------
    ValueError
        If neither ``mass`` nor ``mz`` is given, or columns differ in length.

    Examples
    --------
    >>> features = FeatureCollection(mass=[1000.0, 1500.5], charge=[2, 3],
    ...                              scan=[100, 230])
    >>> len(features)
    2
    >>> features[0].mz
    501.007276466622
    """

    def __init__(
        self,
        mass=None,
        mz=None,
        charge=None,
        scan=None,
        scan_first=None,
        scan_last=None,
        time=None,
        intensity=None,
        hydrophobicity=None,
        source: str = "",
    ):
        if mass is None and mz is None:
            raise ValueError("FeatureCollection needs mass or mz values")

        reference = mass if mass is not None else mz
        n = len(np.atleast_1d(np.asarray(reference)))

        self.charge = self._int_column(charge, n, 0)
        self.scan = self._int_column(scan, n, 0)
        self.scan_first = self._int_column(scan_first, n, None, fallback=self.scan)
        self.scan_last = self._int_column(scan_last, n, None, fallback=self.scan)
        self.time = self._float_column(time, n, 0.0)
        self.intensity = self._float_column(intensity, n, 0.0)
        self.hydrophobicity = self._float_column(hydrophobicity, n, np.nan)

        if mass is not None:
            self.mass = self._float_column(mass, n, np.nan)
            self.mz = (
                self._float_column(mz, n, np.nan) if mz is not None
                else mz_from_neutral_masses(self.mass, self.charge, np.full(n, np.nan))
            )
        else:
            self.mz = self._float_column(mz, n, np.nan)
            self.mass = neutral_masses_from_mz(self.mz, self.charge, np.full(n, np.nan))

        self.source = source

        for name in COLUMNS:
            if len(getattr(self, name)) != n:
                raise ValueError(
                    f"Column '{name}' has {len(getattr(self, name))} values, expected {n}"
                )

    @staticmethod
    def _float_column(values, n: int, default: float) -> np.ndarray:
        if values is None:
            return np.full(n, default, dtype=np.float64)
        return np.atleast_1d(np.asarray(values, dtype=np.float64)).copy()

    @staticmethod
    def _int_column(values, n: int, default: Optional[int],
                    fallback: Optional[np.ndarray] = None) -> np.ndarray:
        if values is None:
            if fallback is not None:
                return fallback.copy()
            return np.full(n, default, dtype=np.int64)
        return np.atleast_1d(np.asarray(values, dtype=np.int64)).copy()

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def from_features(cls, features: Sequence[Feature], source: str = "") -> 'FeatureCollection':
        """Build a collection from ``Feature`` objects."""
        columns = {
            name: [getattr(f, name) for f in features] for name in COLUMNS
        }
        return cls(**columns, source=source)

    @classmethod
    def empty(cls, source: str = "") -> 'FeatureCollection':
        return cls(mass=np.zeros(0), source=source)

    def columns(self) -> dict[str, np.ndarray]:
        """Column name → array (shared, not copied)."""
        return {name: getattr(self, name) for name in COLUMNS}

    def with_columns(self, **replacements) -> 'FeatureCollection':
        """New collection with some columns replaced, the rest copied."""
        columns = self.columns()
        columns.update(replacements)
        return FeatureCollection(**columns, source=self.source)

    def copy(self) -> 'FeatureCollection':
        return self.with_columns()

    def take(self, indices) -> 'FeatureCollection':
        """Subset (or reorder) by integer indices or boolean mask."""
        indices = np.asarray(indices)
        return FeatureCollection(
            **{name: values[indices] for name, values in self.columns().items()},
            source=self.source,
        )

    # -------------------------------------------------------------------------
    # Ordering
    # -------------------------------------------------------------------------

    def argsort_by_mass(self) -> np.ndarray:
        return np.argsort(self.mass, kind='stable')

    def argsort_by_scan(self) -> np.ndarray:
        return np.argsort(self.scan, kind='stable')

    def sorted_by_mass(self) -> 'FeatureCollection':
        return self.take(self.argsort_by_mass())

    def sorted_by_scan(self) -> 'FeatureCollection':
        return self.take(self.argsort_by_scan())

    # -------------------------------------------------------------------------
    # Mass / m/z consistency
    # -------------------------------------------------------------------------

    def update_mz(self) -> None:
        """Recompute m/z from mass for every charged feature (in place)."""
        self.mz = mz_from_neutral_masses(self.mass, self.charge, self.mz)

    def update_mass(self) -> None:
        """Recompute mass from m/z for every charged feature (in place)."""
        self.mass = neutral_masses_from_mz(self.mz, self.charge, self.mass)

    # -------------------------------------------------------------------------
    # Sequence protocol
    # -------------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.mass)

    def __getitem__(self, index: int) -> Feature:
        return Feature(
            mass=float(self.mass[index]),
            mz=float(self.mz[index]),
            charge=int(self.charge[index]),
            scan=int(self.scan[index]),
            scan_first=int(self.scan_first[index]),
            scan_last=int(self.scan_last[index]),
            time=float(self.time[index]),
            intensity=float(self.intensity[index]),
            hydrophobicity=float(self.hydrophobicity[index]),
        )

    def __iter__(self) -> Iterator[Feature]:
        for i in range(len(self)):
            yield self[i]

    def to_features(self) -> list[Feature]:
        return list(self)

    def to_dataframe(self):
        """Return the collection as a pandas DataFrame (one row per feature)."""
        import pandas as pd

        return pd.DataFrame(self.columns())

    def __repr__(self) -> str:
        label = f", source='{self.source}'" if self.source else ""
        return f"FeatureCollection(n={len(self)}{label})"
