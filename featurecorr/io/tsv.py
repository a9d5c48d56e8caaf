"""Tab-delimited feature files.

Reads and writes msInspect-style feature tables: one feature per row, a
header line naming the columns, ``#`` comment lines ignored. Recognised
columns (case-insensitive):

    scan, time, mz, mass, intensity, charge, scanFirst, scanLast,
    hydrophobicity (or observedHydrophobicity)

Unrecognised columns are kept in the returned DataFrame so that a
calibrated collection can be written back with them intact.
"""

import logging
from pathlib import Path
from typing import Union

import numpy as np

from ..features.collection import FeatureCollection
from ..matching.matcher import MatchResult

logger = logging.getLogger(__name__)

# File column name → FeatureCollection attribute
COLUMN_MAP = {
    'scan': 'scan',
    'time': 'time',
    'mz': 'mz',
    'mass': 'mass',
    'intensity': 'intensity',
    'charge': 'charge',
    'scanfirst': 'scan_first',
    'scanlast': 'scan_last',
    'hydrophobicity': 'hydrophobicity',
    'observedhydrophobicity': 'hydrophobicity',
}

# FeatureCollection attribute → column name written
WRITE_COLUMNS = {
    'scan': 'scan',
    'time': 'time',
    'mz': 'mz',
    'mass': 'mass',
    'intensity': 'intensity',
    'charge': 'charge',
    'scan_first': 'scanFirst',
    'scan_last': 'scanLast',
    'hydrophobicity': 'hydrophobicity',
}


def read_feature_tsv(path: Union[str, Path], return_frame: bool = False):
    """Load a feature table.

    Parameters
    ----------
    path : str or Path
        Tab-delimited feature file
    return_frame : bool, default=False
        Also return the parsed DataFrame (with any extra columns)

    Returns
    -------
    FeatureCollection, or (FeatureCollection, pandas.DataFrame)

    Raises
    ------
    ValueError
        If the file has neither a ``mass`` nor an ``mz`` column.
    """
    import pandas as pd

    path = Path(path)
    df = pd.read_csv(path, sep='\t', comment='#')

    columns = {}
    for column in df.columns:
        attribute = COLUMN_MAP.get(str(column).strip().lower())
        if attribute is not None and attribute not in columns:
            columns[attribute] = df[column].to_numpy()

    if 'mass' not in columns and 'mz' not in columns:
        raise ValueError(f"{path.name}: feature file needs a 'mass' or 'mz' column")

    scan = _fill_missing(columns, 'scan', 0, path.name)
    _fill_missing(columns, 'charge', 0, path.name)
    _fill_missing(columns, 'scan_first', scan, path.name)
    _fill_missing(columns, 'scan_last', scan, path.name)

    features = FeatureCollection(**columns, source=path.name)
    logger.info(f"Loaded {len(features):,} features from {path.name}")

    if return_frame:
        return features, df
    return features


def _fill_missing(columns: dict, attribute: str, default, source: str):
    """Replace empty cells of an integer column with ``default`` before casting."""
    values = columns.get(attribute)
    if values is None:
        return default
    values = np.asarray(values, dtype=np.float64)
    missing = np.isnan(values)
    if np.any(missing):
        logger.warning(f"{source}: {missing.sum():,} empty '{attribute}' cells")
        values = np.where(missing, default, values)
    columns[attribute] = values.astype(np.int64)
    return columns[attribute]


def feature_frame(features: FeatureCollection, template=None):
    """DataFrame of ``features``, updating ``template``'s columns when given.

    ``template`` must have one row per feature in the same order (e.g. the
    frame returned by ``read_feature_tsv``). Only columns the template already
    has are updated, except mass and m/z which are always written.
    """
    import pandas as pd

    if template is None:
        return pd.DataFrame(
            {name: getattr(features, attribute) for attribute, name in WRITE_COLUMNS.items()}
        )

    if len(template) != len(features):
        raise ValueError(
            f"Template has {len(template)} rows but collection has {len(features)} features"
        )
    df = template.copy()
    existing = {str(c).strip().lower(): c for c in df.columns}
    for attribute, name in WRITE_COLUMNS.items():
        column = existing.get(name.lower())
        if column is None and attribute == 'hydrophobicity':
            column = existing.get('observedhydrophobicity')
        if column is None:
            if attribute not in ('mass', 'mz'):
                continue
            column = name
        df[column] = getattr(features, attribute)
    return df


def write_table(frame, path: Union[str, Path], index: bool = False) -> Path:
    """Write a DataFrame as a tab-delimited table, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(path, sep='\t', index=index)
    return path


def write_feature_tsv(features: FeatureCollection, path: Union[str, Path],
                      template=None) -> Path:
    """Write ``features`` as a tab-delimited feature table."""
    path = write_table(feature_frame(features, template), path)
    logger.info(f"Wrote {len(features):,} features to {path.name}")
    return path


def match_frame(result: MatchResult, master: FeatureCollection,
                slave: FeatureCollection):
    """One row per matched pair, with the slave's rank within its master."""
    import pandas as pd

    master_idx, slave_idx = result.pair_arrays()
    counts = np.diff(result.offsets)
    rank = np.arange(len(slave_idx)) - np.repeat(result.offsets[:-1], counts)

    master_mass = master.mass[master_idx]
    with np.errstate(divide='ignore', invalid='ignore'):
        ppm = result.mass_differences * 1e6 / master_mass

    return pd.DataFrame({
        'master_index': master_idx,
        'slave_index': slave_idx,
        'rank': rank,
        'master_mass': master_mass,
        'slave_mass': slave.mass[slave_idx],
        'mass_difference': result.mass_differences,
        'mass_difference_ppm': ppm,
        'elution_gap': result.elution_gaps,
        'master_scan': master.scan[master_idx],
        'slave_scan': slave.scan[slave_idx],
    })


def write_match_tsv(result: MatchResult, master: FeatureCollection,
                    slave: FeatureCollection, path: Union[str, Path]) -> Path:
    """Write matched pairs as a tab-delimited table."""
    path = write_table(match_frame(result, master, slave), path)
    logger.info(f"Wrote {result.n_pairs:,} matched pairs to {path.name}")
    return path
