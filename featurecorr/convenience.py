"""Convenience wrapper functions for file-level workflows.

These functions load feature files, run one engine step and write the
result, so that a whole calibration or matching run is a single call.

For repeated work on in-memory collections, use ``MassCalibrator``,
``ToleranceMatcher`` and ``OffsetBucketScanner`` directly.

Examples
--------
>>> # Calibrate a feature file in three scan partitions
>>> result = calibrate_feature_file("run1.tsv", "run1.calibrated.tsv", n_partitions=3)

>>> # Match two runs within 5 ppm and 20 seconds
>>> result = match_feature_files("run1.tsv", "run2.tsv", "matches.tsv",
...                              delta_mass=5.0, elution_mode="time")

>>> # Histogram of features 0..100 Da above each feature
>>> offsets = detect_mass_offsets("run1.tsv", max_relative_daltons=100)
"""

from dataclasses import replace
from pathlib import Path
from typing import Optional, Union

from .calibration import CalibrationParams, CalibrationResult, MassCalibrator
from .io import read_feature_tsv, write_feature_tsv, write_match_tsv
from .matching import (
    ElutionMode,
    MatchResult,
    OffsetBucketScanner,
    OffsetScanParams,
    OffsetScanResult,
    ToleranceMatcher,
    ToleranceSpec,
)
from .tolerance import MassToleranceType


# =============================================================================
# Calibration
# =============================================================================

def calibrate_feature_file(
    input_path: Union[str, Path],
    output_path: Optional[Union[str, Path]] = None,
    **params,
) -> CalibrationResult:
    """Calibrate the masses in a feature file.

    Parameters
    ----------
    input_path : str or Path
        Tab-delimited feature file
    output_path : str or Path, optional
        Where to write the calibrated features (other columns preserved)
    **params
        ``CalibrationParams`` fields, e.g. ``n_partitions=3``

    Returns
    -------
    CalibrationResult
    """
    features, frame = read_feature_tsv(input_path, return_frame=True)
    result = MassCalibrator(CalibrationParams(**params)).calibrate(features)
    if output_path is not None:
        write_feature_tsv(result.features, output_path, template=frame)
    return result


# =============================================================================
# Matching
# =============================================================================

def build_tolerance_spec(
    delta_mass: Optional[float] = None,
    delta_mass_type: Union[str, MassToleranceType] = MassToleranceType.PPM,
    delta_elution: Optional[float] = None,
    elution_mode: Union[str, ElutionMode] = ElutionMode.SCAN,
    **kwargs,
) -> ToleranceSpec:
    """``ToleranceSpec`` from plain values, filling defaults per elution mode.

    Examples
    --------
    >>> build_tolerance_spec(10, "ppm", elution_mode="time").delta_elution
    20.0
    """
    mode = ElutionMode(elution_mode) if isinstance(elution_mode, str) else elution_mode
    kind = (MassToleranceType(delta_mass_type) if isinstance(delta_mass_type, str)
            else delta_mass_type)
    spec = ToleranceSpec.default(mode, delta_mass=delta_mass, delta_mass_type=kind, **kwargs)
    if delta_elution is not None:
        spec = replace(spec, delta_elution=float(delta_elution))
    return spec


def match_feature_files(
    master_path: Union[str, Path],
    slave_path: Union[str, Path],
    output_path: Optional[Union[str, Path]] = None,
    **spec_values,
) -> MatchResult:
    """Match the features of two files.

    ``spec_values`` are passed to :func:`build_tolerance_spec`.
    """
    master = read_feature_tsv(master_path)
    slave = read_feature_tsv(slave_path)
    result = ToleranceMatcher(build_tolerance_spec(**spec_values)).match(master, slave)
    if output_path is not None:
        write_match_tsv(result, master, slave, output_path)
    return result


# =============================================================================
# Offset scanning
# =============================================================================

def detect_mass_offsets(
    input_path: Union[str, Path],
    zero_bucket_path: Optional[Union[str, Path]] = None,
    **params,
) -> OffsetScanResult:
    """Relative-mass histogram of a feature file against itself.

    Parameters
    ----------
    input_path : str or Path
        Tab-delimited feature file
    zero_bucket_path : str or Path, optional
        Write the features found in the offset-0 bucket here
    **params
        ``OffsetScanParams`` fields

    Returns
    -------
    OffsetScanResult
    """
    if zero_bucket_path is not None:
        params['collect_identity'] = True
    features = read_feature_tsv(input_path)
    result = OffsetBucketScanner(OffsetScanParams(**params)).scan(features)
    if zero_bucket_path is not None:
        write_feature_tsv(features.take(result.identity_indices), zero_bucket_path)
    return result
