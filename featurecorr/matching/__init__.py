"""Feature correlation between collections.

This module provides:
- Tolerance specification with scan, time or hydrophobicity elution modes
- Two-pointer mass/elution matcher with one-to-many results
- Relative-mass bucket scanning for systematic offsets (adducts)
"""

from .params import (
    ElutionMode,
    SlaveOrdering,
    ToleranceSpec,
)

from .matcher import (
    MatchPairs,
    MatchResult,
    ToleranceMatcher,
    match_features,
    brute_force_match,
    sweep_mass_windows,
    sweep_mass_ranges,
)

from .offset_buckets import (
    OffsetScanParams,
    OffsetScanResult,
    TimeOffsetHeatmap,
    OffsetBucketScanner,
    scan_offsets,
)

__all__ = [
    # Tolerances
    'ElutionMode',
    'SlaveOrdering',
    'ToleranceSpec',

    # Matching
    'MatchPairs',
    'MatchResult',
    'ToleranceMatcher',
    'match_features',
    'brute_force_match',
    'sweep_mass_windows',
    'sweep_mass_ranges',

    # Offset scanning
    'OffsetScanParams',
    'OffsetScanResult',
    'TimeOffsetHeatmap',
    'OffsetBucketScanner',
    'scan_offsets',
]
