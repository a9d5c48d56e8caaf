"""Tests for the feature data model."""

import numpy as np
import pytest

from featurecorr.features import (
    Feature,
    FeatureCollection,
    mz_from_neutral_masses,
    neutral_masses_from_mz,
)


class TestMassConversion:
    """Test neutral mass <-> m/z conversion."""

    def test_mz_from_mass(self, proton_mass):
        mz = mz_from_neutral_masses(np.array([1000.0, 1500.0]), np.array([2, 3]),
                                    np.full(2, np.nan))
        np.testing.assert_allclose(mz, [(1000.0 + 2 * proton_mass) / 2,
                                        (1500.0 + 3 * proton_mass) / 3])

    def test_uncharged_unchanged(self):
        """Charge 0 keeps the existing value."""
        mz = mz_from_neutral_masses(np.array([1000.0]), np.array([0]), np.array([123.4]))
        assert mz[0] == 123.4

        masses = neutral_masses_from_mz(np.array([500.0]), np.array([0]), np.array([999.0]))
        assert masses[0] == 999.0

    def test_round_trip(self):
        masses = np.array([800.0, 1234.5678, 2999.9])
        charges = np.array([1, 2, 4])
        mz = mz_from_neutral_masses(masses, charges, np.zeros(3))
        back = neutral_masses_from_mz(mz, charges, np.zeros(3))
        np.testing.assert_allclose(back, masses, rtol=1e-12)


class TestFeature:
    """Test single features."""

    def test_update_mz(self, proton_mass):
        feature = Feature(mass=1000.0, charge=2)
        feature.update_mz()
        assert feature.mz == pytest.approx((1000.0 + 2 * proton_mass) / 2)

    def test_update_mass(self, proton_mass):
        feature = Feature(mass=0.0, mz=501.0, charge=2)
        feature.update_mass()
        assert feature.mass == pytest.approx(1002.0 - 2 * proton_mass)

    def test_uncharged_update_is_noop(self):
        feature = Feature(mass=1000.0)
        feature.update_mz()
        assert np.isnan(feature.mz)

    def test_replace_returns_copy(self):
        feature = Feature(mass=1000.0, scan=5)
        changed = feature.replace(mass=1001.0)
        assert feature.mass == 1000.0
        assert changed.mass == 1001.0
        assert changed.scan == 5


class TestFeatureCollection:
    """Test columnar collections."""

    def test_defaults(self):
        features = FeatureCollection(mass=[1000.0, 1500.5], charge=[2, 3], scan=[100, 230])

        assert len(features) == 2
        np.testing.assert_array_equal(features.scan_first, [100, 230])
        np.testing.assert_array_equal(features.scan_last, [100, 230])
        assert np.all(np.isnan(features.hydrophobicity))
        assert features.mass.dtype == np.float64
        assert features.scan.dtype == np.int64

    def test_mz_derived_from_mass(self, proton_mass):
        features = FeatureCollection(mass=[1000.0, 1500.0], charge=[2, 0])
        assert features.mz[0] == pytest.approx((1000.0 + 2 * proton_mass) / 2)
        assert np.isnan(features.mz[1])

    def test_mass_derived_from_mz(self, proton_mass):
        features = FeatureCollection(mz=[501.0], charge=[2])
        assert features.mass[0] == pytest.approx(1002.0 - 2 * proton_mass)

    def test_requires_mass_or_mz(self):
        with pytest.raises(ValueError):
            FeatureCollection(scan=[1, 2])

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            FeatureCollection(mass=[1000.0, 1001.0], scan=[1])

    def test_copies_input(self):
        masses = np.array([1000.0, 2000.0])
        features = FeatureCollection(mass=masses)
        masses[0] = 0.0
        assert features.mass[0] == 1000.0

    def test_take_and_sort(self):
        features = FeatureCollection(mass=[3000.0, 1000.0, 2000.0], scan=[1, 3, 2])

        by_mass = features.sorted_by_mass()
        np.testing.assert_array_equal(by_mass.mass, [1000.0, 2000.0, 3000.0])
        np.testing.assert_array_equal(by_mass.scan, [3, 2, 1])

        by_scan = features.sorted_by_scan()
        np.testing.assert_array_equal(by_scan.scan, [1, 2, 3])

        subset = features.take(np.array([True, False, True]))
        np.testing.assert_array_equal(subset.mass, [3000.0, 2000.0])

    def test_features_round_trip(self):
        features = FeatureCollection(mass=[1000.0, 1200.0], charge=[2, 1], scan=[5, 6],
                                     time=[10.0, 12.0], intensity=[1e5, 2e5], source="run1")

        rebuilt = FeatureCollection.from_features(features.to_features(), source="run1")

        for name, values in features.columns().items():
            np.testing.assert_array_equal(getattr(rebuilt, name), values)

    def test_getitem_and_iter(self):
        features = FeatureCollection(mass=[1000.0, 1200.0], scan=[5, 6])
        assert isinstance(features[1], Feature)
        assert features[1].scan == 6
        assert [f.mass for f in features] == [1000.0, 1200.0]

    def test_with_columns(self):
        features = FeatureCollection(mass=[1000.0], scan=[4], source="a")
        changed = features.with_columns(mass=np.array([1001.0]))

        assert changed.mass[0] == 1001.0
        assert changed.scan[0] == 4
        assert changed.source == "a"
        assert features.mass[0] == 1000.0

    def test_update_mz_in_place(self, proton_mass):
        features = FeatureCollection(mass=[1000.0], charge=[1])
        features.mass[0] = 1010.0
        features.update_mz()
        assert features.mz[0] == pytest.approx(1010.0 + proton_mass)

    def test_empty(self):
        features = FeatureCollection.empty()
        assert len(features) == 0
        assert features.to_features() == []

    def test_to_dataframe(self):
        features = FeatureCollection(mass=[1000.0, 1200.0], scan=[5, 6])
        df = features.to_dataframe()
        assert list(df['scan']) == [5, 6]
        assert len(df) == 2

    def test_repr(self):
        assert repr(FeatureCollection(mass=[1.0], source="x.tsv")) == \
            "FeatureCollection(n=1, source='x.tsv')"
