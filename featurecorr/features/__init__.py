"""MS1 feature model and mass adjustment.

This module provides:
- Feature and columnar FeatureCollection containers
- Mass / m/z conversion honouring charge
- Application of partitioned mass calibration to features and MS2 precursors
"""

from .collection import (
    Feature,
    FeatureCollection,
    mz_from_neutral_masses,
    neutral_masses_from_mz,
)

from .adjustment import (
    calibrate_mass,
    select_partition,
    select_partitions,
    adjust_feature,
    apply_calibration,
    adjust_precursor_mz,
    adjust_precursors,
)

__all__ = [
    # Data model
    'Feature',
    'FeatureCollection',
    'mz_from_neutral_masses',
    'neutral_masses_from_mz',

    # Mass adjustment
    'calibrate_mass',
    'select_partition',
    'select_partitions',
    'adjust_feature',
    'apply_calibration',
    'adjust_precursor_mz',
    'adjust_precursors',
]
