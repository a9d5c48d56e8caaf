"""Feature file I/O.

This module provides:
- msInspect-style tab-delimited feature tables (pandas)
- Match result export
- HDF5 storage of collections and calibration partitions (h5py)
"""

from .tsv import (
    read_feature_tsv,
    write_feature_tsv,
    feature_frame,
    match_frame,
    write_match_tsv,
    write_table,
)

from .hdf import (
    FeatureStore,
    save_collection_hdf,
    load_collection_hdf,
)

__all__ = [
    # Tab-delimited
    'read_feature_tsv',
    'write_feature_tsv',
    'feature_frame',
    'match_frame',
    'write_match_tsv',
    'write_table',

    # HDF5
    'FeatureStore',
    'save_collection_hdf',
    'load_collection_hdf',
]
