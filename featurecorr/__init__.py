"""featurecorr - MS1 feature mass calibration and correlation.

This library provides Numba-accelerated building blocks for comparing
feature sets from LC-MS runs:

- mass calibration from the periodic spacing of peptide mass clusters,
  optionally per scan partition
- one-to-many tolerance matching of feature sets in mass and elution
- relative-mass bucket scanning to detect systematic offsets (adducts)
"""

__version__ = "0.1.0"

from featurecorr import tolerance
from featurecorr import features
from featurecorr import calibration
from featurecorr import matching
from featurecorr import io

from featurecorr.features import Feature, FeatureCollection
from featurecorr.calibration import CalibrationParams, CalibrationPartition, MassCalibrator
from featurecorr.matching import (
    ElutionMode,
    MatchResult,
    OffsetBucketScanner,
    OffsetScanParams,
    ToleranceMatcher,
    ToleranceSpec,
)
from featurecorr.tolerance import MassToleranceType

__all__ = [
    "tolerance",
    "features",
    "calibration",
    "matching",
    "io",
    "Feature",
    "FeatureCollection",
    "CalibrationParams",
    "CalibrationPartition",
    "MassCalibrator",
    "ElutionMode",
    "MatchResult",
    "OffsetBucketScanner",
    "OffsetScanParams",
    "ToleranceMatcher",
    "ToleranceSpec",
    "MassToleranceType",
]
