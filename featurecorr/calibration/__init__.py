"""Mass calibration from the peptide mass cluster model.

This module provides:
- Mass defect deviation from the nearest cluster centre (Da and ppm)
- Robust pairwise regression of the mass wavelength
- Partitioned calibration over scan ranges
"""

from .mass_defect import (
    calculate_mass_defect_deviation,
    calculate_mass_defect_deviation_ppm,
    filter_by_mass_defect_deviation,
)

from .regression import (
    pair_sampling_interval,
    sample_pair_residuals,
    linear_fit,
    leverages,
    studentized_residuals,
    robust_wavelength_slope,
)

from .calibrator import (
    CalibrationParams,
    CalibrationPartition,
    CalibrationResult,
    MassCalibrator,
    calculate_wavelength_and_offset,
    calculate_partitions,
    partition_start_scans,
    calibrate_features,
)

__all__ = [
    # Mass defect
    'calculate_mass_defect_deviation',
    'calculate_mass_defect_deviation_ppm',
    'filter_by_mass_defect_deviation',

    # Regression
    'pair_sampling_interval',
    'sample_pair_residuals',
    'linear_fit',
    'leverages',
    'studentized_residuals',
    'robust_wavelength_slope',

    # Calibration
    'CalibrationParams',
    'CalibrationPartition',
    'CalibrationResult',
    'MassCalibrator',
    'calculate_wavelength_and_offset',
    'calculate_partitions',
    'partition_start_scans',
    'calibrate_features',
]
