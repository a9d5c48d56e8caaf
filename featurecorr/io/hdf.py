"""HDF5 storage of feature collections and their calibration.

Layout::

    /features/<column>      one dataset per FeatureCollection column
    /features.attrs         source
    /calibration            compound table (start_scan, wavelength, offset,
                            n_features), optional
    /calibration.attrs      theoretical_wavelength
"""

from pathlib import Path
from typing import Optional, Sequence, Union

import h5py
import numpy as np

from ..calibration.calibrator import CalibrationPartition
from ..constants import DEFAULT_THEORETICAL_MASS_WAVELENGTH
from ..features.collection import COLUMNS, FeatureCollection

PARTITION_DTYPE = np.dtype([
    ('start_scan', np.int64),
    ('wavelength', np.float64),
    ('offset', np.float64),
    ('n_features', np.int64),
])


class FeatureStore:
    """HDF5 file holding one feature collection and optional calibration.

    Use as a context manager to keep the file open across several calls.

    Parameters
    ----------
    path : Path or str
        HDF5 file
    mode : str, default='r'
        h5py file mode ('r', 'w', 'a')
    """

    def __init__(self, path: Union[Path, str], mode: str = 'r'):
        self.path = Path(path)
        self.mode = mode
        self._hdf_handle = None

    def __enter__(self):
        """Open the HDF5 file."""
        self._hdf_handle = h5py.File(self.path, self.mode)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Close the HDF5 file."""
        if self._hdf_handle is not None:
            self._hdf_handle.close()
            self._hdf_handle = None

    @property
    def hdf(self) -> h5py.File:
        if self._hdf_handle is None:
            raise RuntimeError("FeatureStore is not open; use it as a context manager")
        return self._hdf_handle

    def write_features(self, features: FeatureCollection) -> None:
        if 'features' in self.hdf:
            del self.hdf['features']
        group = self.hdf.create_group('features')
        group.attrs['source'] = features.source
        for name, values in features.columns().items():
            group.create_dataset(name, data=values)

    def read_features(self) -> FeatureCollection:
        group = self.hdf['features']
        columns = {name: group[name][:] for name in COLUMNS if name in group}
        source = group.attrs.get('source', '')
        if isinstance(source, bytes):
            source = source.decode()
        return FeatureCollection(**columns, source=str(source))

    def write_calibration(self, partitions: Sequence[CalibrationPartition],
                          theoretical_wavelength: float) -> None:
        if 'calibration' in self.hdf:
            del self.hdf['calibration']
        table = np.array(
            [(p.start_scan, p.wavelength, p.offset, p.n_features) for p in partitions],
            dtype=PARTITION_DTYPE,
        )
        dataset = self.hdf.create_dataset('calibration', data=table)
        dataset.attrs['theoretical_wavelength'] = theoretical_wavelength

    def read_calibration(self) -> Optional[tuple]:
        """Stored partitions, or None when the file has no calibration."""
        if 'calibration' not in self.hdf:
            return None
        table = self.hdf['calibration'][:]
        return tuple(
            CalibrationPartition(int(row['start_scan']), float(row['wavelength']),
                                 float(row['offset']), int(row['n_features']))
            for row in table
        )


def save_collection_hdf(path: Union[Path, str], features: FeatureCollection,
                        partitions: Optional[Sequence[CalibrationPartition]] = None,
                        theoretical_wavelength: Optional[float] = None) -> Path:
    """Write ``features`` (and ``partitions`` when given) to a new HDF5 file."""
    path = Path(path)
    with FeatureStore(path, 'w') as store:
        store.write_features(features)
        if partitions is not None:
            store.write_calibration(
                partitions,
                DEFAULT_THEORETICAL_MASS_WAVELENGTH if theoretical_wavelength is None
                else theoretical_wavelength,
            )
    return path


def load_collection_hdf(path: Union[Path, str]):
    """Read (features, partitions-or-None) from an HDF5 file."""
    with FeatureStore(path, 'r') as store:
        return store.read_features(), store.read_calibration()
