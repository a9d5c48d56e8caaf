"""Pytest configuration for featurecorr tests.

This module provides common fixtures and configuration for all tests:
synthetic feature collections on the peptide mass cluster grid and small
feature files for the I/O and command line tests.
"""

import numpy as np
import pytest

from featurecorr.constants import DEFAULT_THEORETICAL_MASS_WAVELENGTH
from featurecorr.features import FeatureCollection


def cluster_masses(n, rng, offset=0.0, drift=0.0, k_min=500, k_max=3000,
                   wavelength=DEFAULT_THEORETICAL_MASS_WAVELENGTH):
    """Masses on the cluster grid: k * wavelength * (1 + drift) + offset."""
    k = rng.integers(k_min, k_max, size=n)
    return k * wavelength * (1.0 + drift) + offset


@pytest.fixture
def rng():
    """Independent random generator per test."""
    return np.random.default_rng(7)


@pytest.fixture
def make_cluster_masses():
    """Factory for synthetic masses on the peptide mass cluster grid."""
    return cluster_masses


@pytest.fixture
def calibrated_features(rng):
    """300 features sitting exactly on the theoretical cluster grid."""
    masses = cluster_masses(300, rng)
    return FeatureCollection(
        mass=masses,
        charge=np.full(300, 2),
        scan=np.arange(1, 301),
        time=np.arange(1, 301) * 2.0,
        intensity=rng.uniform(1e4, 1e6, size=300),
    )


@pytest.fixture
def small_feature_table():
    """Rows of a tiny msInspect-style feature table."""
    return [
        # scan, time, mz, mass, intensity, charge, scanFirst, scanLast, description
        (100, 300.0, 501.007276, 1000.0, 1.0e5, 2, 98, 103, 'a'),
        (105, 315.0, 509.007276, 1016.0, 2.0e5, 2, 103, 108, 'b'),
        (220, 660.0, 751.007276, 1500.0, 3.0e5, 2, 218, 224, 'c'),
        (400, 1200.0, 1001.007276, 2000.0, 4.0e5, 2, 398, 405, 'd'),
    ]


@pytest.fixture
def feature_tsv(tmp_path, small_feature_table):
    """Write ``small_feature_table`` to a tab-delimited file and return its path."""
    path = tmp_path / "features.tsv"
    header = "scan\ttime\tmz\tmass\tintensity\tcharge\tscanFirst\tscanLast\tdescription"
    lines = ["# msInspect feature file", header]
    for row in small_feature_table:
        lines.append("\t".join(str(v) for v in row))
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def shifted_feature_tsv(tmp_path, calibrated_features):
    """Feature file whose masses all sit 0.01 Da above the cluster grid."""
    from featurecorr.io import write_feature_tsv

    shifted = calibrated_features.with_columns(mass=calibrated_features.mass + 0.01)
    shifted.update_mz()
    return write_feature_tsv(shifted, tmp_path / "shifted.tsv")


@pytest.fixture
def proton_mass():
    """Proton mass constant."""
    from featurecorr.constants import PROTON_MASS
    return PROTON_MASS


# Random seed for reproducibility
@pytest.fixture(scope="session", autouse=True)
def set_random_seed():
    """Set random seed for reproducible tests."""
    np.random.seed(42)
