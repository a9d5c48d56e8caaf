"""Mass tolerance arithmetic (Daltons and parts-per-million).

All mass comparisons in featurecorr go through this module so that absolute
and relative (ppm) tolerances are handled identically by the calibration,
matching and offset-scanning code.

Examples
--------
>>> to_absolute_delta(1000.0, 5.0, MassToleranceType.PPM)
0.005
>>> to_ppm(0.005, 1000.0)
5.0
>>> MassToleranceType.parse("10ppm")
(10.0, <MassToleranceType.PPM: 'ppm'>)
"""

from __future__ import annotations

import math
from enum import Enum

import numpy as np
from numba import njit


class MassToleranceType(Enum):
    """How a mass tolerance value is interpreted."""
    ABSOLUTE = "da"   # Daltons
    PPM = "ppm"       # parts-per-million of the reference mass

    @property
    def is_ppm(self) -> bool:
        return self is MassToleranceType.PPM

    @classmethod
    def parse(
        cls, text: str, default: 'MassToleranceType | None' = None
    ) -> tuple[float, 'MassToleranceType']:
        """Parse a tolerance string such as ``"10ppm"`` or ``"0.1da"``.

        A value without a unit suffix takes ``default`` (ABSOLUTE if None).

        Raises
        ------
        ValueError
            If the numeric part cannot be parsed or is negative.
        """
        if default is None:
            default = cls.ABSOLUTE

        value = text.strip().lower()
        kind = default
        for member in cls:
            if value.endswith(member.value):
                kind = member
                value = value[: -len(member.value)]
                break

        try:
            delta = float(value)
        except ValueError:
            raise ValueError(f"Failed to parse mass tolerance: {text!r}") from None

        if delta < 0 or not math.isfinite(delta):
            raise ValueError(f"Mass tolerance must be a non-negative number: {text!r}")
        return delta, kind


def _check_reference_mass(reference_mass: float) -> None:
    if not (reference_mass > 0 and math.isfinite(reference_mass)):
        raise ValueError(
            f"PPM conversion needs a positive finite reference mass, got {reference_mass}"
        )


def to_absolute_delta(
    reference_mass: float, delta: float, kind: MassToleranceType
) -> float:
    """Convert a tolerance to Daltons at a given reference mass.

    Parameters
    ----------
    reference_mass : float
        Mass the tolerance is centred on (Da)
    delta : float
        Tolerance value, in Da or ppm depending on ``kind``
    kind : MassToleranceType
        Unit of ``delta``

    Returns
    -------
    float
        Tolerance in Daltons

    Raises
    ------
    ValueError
        For a PPM tolerance around a non-positive or non-finite mass.
    """
    if kind is MassToleranceType.ABSOLUTE:
        return float(delta)
    _check_reference_mass(reference_mass)
    return float(delta) * reference_mass / 1e6


def to_ppm(delta_da: float, reference_mass: float) -> float:
    """Express a mass difference in Daltons as ppm of ``reference_mass``."""
    _check_reference_mass(reference_mass)
    return float(delta_da) * 1e6 / reference_mass


# =============================================================================
# Numba kernels (inputs must be pre-validated)
# =============================================================================

@njit(cache=True)
def absolute_delta(reference_mass: float, delta: float, is_ppm: bool) -> float:
    """Tolerance in Daltons at ``reference_mass`` (Numba)."""
    if is_ppm:
        return delta * reference_mass / 1e6
    return delta


@njit(cache=True)
def absolute_deltas(masses: np.ndarray, delta: float, is_ppm: bool) -> np.ndarray:
    """Per-mass tolerance window half-widths in Daltons."""
    n = len(masses)
    deltas = np.empty(n, dtype=np.float64)
    for i in range(n):
        deltas[i] = absolute_delta(masses[i], delta, is_ppm)
    return deltas


@njit(cache=True)
def ppm_errors(observed: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """Signed ppm deviation of ``observed`` from ``reference``."""
    return (observed - reference) / reference * 1e6


@njit(cache=True)
def within_tolerance(
    mass: float, reference_mass: float, delta: float, is_ppm: bool
) -> bool:
    """True when ``mass`` lies inside the closed tolerance window."""
    return abs(mass - reference_mass) <= absolute_delta(reference_mass, delta, is_ppm)
