"""Tests for tolerance matching of feature collections.

This module tests:
- Completeness against an exhaustive reference matcher
- Mass window semantics (absolute and ppm)
- Elution modes (scan ranges, time, hydrophobicity)
- Charge restriction and slave ordering
- Empty inputs and features without usable mass
"""

import unittest

import numpy as np
import pytest

from featurecorr.features import FeatureCollection
from featurecorr.matching import (
    ElutionMode,
    MatchResult,
    SlaveOrdering,
    ToleranceMatcher,
    ToleranceSpec,
    brute_force_match,
    match_features,
    sweep_mass_ranges,
    sweep_mass_windows,
)
from featurecorr.matching.matcher import elution_gap, signed_elution_gap
from featurecorr.tolerance import MassToleranceType


def random_features(n, rng, mass_range=(1000.0, 1010.0)):
    """Crowded features so that tolerance windows hold several candidates."""
    scan = rng.integers(1, 60, size=n)
    return FeatureCollection(
        mass=rng.uniform(*mass_range, size=n),
        charge=rng.integers(1, 4, size=n),
        scan=scan,
        scan_first=scan - rng.integers(0, 4, size=n),
        scan_last=scan + rng.integers(0, 4, size=n),
        time=rng.uniform(0.0, 120.0, size=n),
        intensity=rng.uniform(1e3, 1e6, size=n),
        hydrophobicity=rng.uniform(0.0, 1.0, size=n),
    )


def pair_set(result: MatchResult) -> set:
    return set(result.pairs())


# =============================================================================
# Kernels
# =============================================================================

class TestKernels(unittest.TestCase):
    """Test the sweep and interval kernels."""

    def test_elution_gap(self):
        self.assertEqual(elution_gap(1.0, 5.0, 3.0, 8.0), 0.0)   # overlap
        self.assertEqual(elution_gap(1.0, 5.0, 8.0, 9.0), 3.0)
        self.assertEqual(elution_gap(8.0, 9.0, 1.0, 5.0), 3.0)
        self.assertEqual(elution_gap(2.0, 2.0, 2.0, 2.0), 0.0)
        self.assertEqual(elution_gap(np.nan, np.nan, 1.0, 1.0), np.inf)

    def test_windows_monotone(self):
        """Window bounds never decrease with master mass."""
        masters = np.sort(np.random.uniform(500, 3000, size=500))
        slaves = np.sort(np.random.uniform(500, 3000, size=800))

        starts, ends = sweep_mass_windows(masters, slaves, 20.0, True)

        self.assertTrue(np.all(np.diff(starts) >= 0))
        self.assertTrue(np.all(np.diff(ends) >= 0))
        self.assertTrue(np.all(starts <= ends))

    def test_windows_content(self):
        masters = np.array([1000.0, 1000.3])
        slaves = np.array([999.7, 999.9, 1000.05, 1000.25, 1000.6])

        starts, ends = sweep_mass_windows(masters, slaves, 0.2, False)

        np.testing.assert_array_equal(starts, [1, 3])
        np.testing.assert_array_equal(ends, [3, 4])

    def test_signed_elution_gap(self):
        self.assertEqual(signed_elution_gap(1.0, 5.0, 3.0, 8.0), 0.0)
        self.assertEqual(signed_elution_gap(1.0, 5.0, 8.0, 9.0), 3.0)
        self.assertEqual(signed_elution_gap(8.0, 9.0, 1.0, 5.0), -3.0)
        self.assertTrue(np.isnan(signed_elution_gap(1.0, 1.0, np.nan, np.nan)))

    def test_shifted_windows(self):
        masters = np.array([1000.0, 1000.3])
        slaves = np.array([999.7, 1000.05, 1001.0, 1001.3, 1001.6])

        starts, ends = sweep_mass_ranges(masters, slaves, 0.9, 1.1, False)

        np.testing.assert_array_equal(starts, [2, 3])
        np.testing.assert_array_equal(ends, [3, 4])


# =============================================================================
# Completeness
# =============================================================================

class TestAgainstBruteForce:
    """The swept matcher finds exactly the pairs an exhaustive search finds."""

    @pytest.mark.parametrize("spec", [
        ToleranceSpec(delta_mass=500.0, delta_elution=3.0),
        ToleranceSpec(delta_mass=0.5, delta_mass_type=MassToleranceType.ABSOLUTE,
                      delta_elution=0.0),
        ToleranceSpec(delta_mass=0.3, delta_mass_type=MassToleranceType.ABSOLUTE,
                      delta_elution=15.0, elution_mode=ElutionMode.TIME),
        ToleranceSpec(delta_mass=300.0, delta_elution=0.1,
                      elution_mode=ElutionMode.HYDROPHOBICITY),
        ToleranceSpec(delta_mass=1000.0, delta_elution=5.0, match_within_charge=True),
        ToleranceSpec(delta_mass=0.0, delta_mass_type=MassToleranceType.ABSOLUTE,
                      mass_window=(1.0, 3.0), elution_window=(0.0, 10.0)),
        ToleranceSpec(delta_mass=0.0, mass_window=(-500.0, 2000.0),
                      elution_mode=ElutionMode.TIME, elution_window=(-5.0, 30.0)),
    ])
    def test_same_pairs(self, rng, spec):
        master = random_features(50, rng)
        slave = random_features(50, rng)

        swept = ToleranceMatcher(spec).match(master, slave)
        exhaustive = brute_force_match(master, slave, spec)

        assert swept.n_pairs > 0
        assert pair_set(swept) == pair_set(exhaustive)

    @pytest.mark.parametrize("ordering", list(SlaveOrdering))
    def test_same_ordering(self, rng, ordering):
        master = random_features(50, rng)
        slave = random_features(50, rng)
        spec = ToleranceSpec(delta_mass=1000.0, delta_elution=10.0, slave_ordering=ordering)

        swept = ToleranceMatcher(spec).match(master, slave)
        exhaustive = brute_force_match(master, slave, spec)

        assert swept.as_dict() == exhaustive.as_dict()

    def test_self_match_includes_identity(self, rng):
        features = random_features(40, rng)
        result = ToleranceMatcher(ToleranceSpec(delta_mass=1.0)).match(features, features)

        for i in range(len(features)):
            assert i in result.matches_for(i)


# =============================================================================
# Mass tolerance
# =============================================================================

class TestMassTolerance:
    """Test mass window semantics."""

    def test_ppm_window(self):
        master = FeatureCollection(mass=[1000.0], scan=[10])
        slave = FeatureCollection(mass=[1000.0005], scan=[10])

        assert len(match_features(master, slave, ToleranceSpec(delta_mass=5.0))) == 1
        assert len(match_features(master, slave, ToleranceSpec(delta_mass=0.4))) == 0

    def test_ppm_scales_with_mass(self):
        """The same Dalton difference passes at high mass but not at low mass."""
        master = FeatureCollection(mass=[500.0, 4000.0], scan=[1, 1])
        slave = FeatureCollection(mass=[500.01, 4000.01], scan=[1, 1])

        result = match_features(master, slave, ToleranceSpec(delta_mass=5.0))

        assert result.as_dict() == {1: [1]}

    def test_absolute_symmetric(self):
        """A pair matches in both directions under an absolute tolerance."""
        a = FeatureCollection(mass=[1000.0, 1500.0, 2000.0], scan=[5, 5, 5])
        b = FeatureCollection(mass=[1000.15, 1499.9, 2000.5], scan=[5, 5, 5])
        spec = ToleranceSpec(delta_mass=0.2, delta_mass_type=MassToleranceType.ABSOLUTE)

        forward = {(m, s) for m, s in match_features(a, b, spec).pairs()}
        backward = {(s, m) for m, s in match_features(b, a, spec).pairs()}

        assert forward == backward == {(0, 0), (1, 1)}

    def test_window_edge_inclusive(self):
        master = FeatureCollection(mass=[1000.0], scan=[1])
        slave = FeatureCollection(mass=[1000.25, 999.75], scan=[1, 1])
        spec = ToleranceSpec(delta_mass=0.25, delta_mass_type=MassToleranceType.ABSOLUTE)

        assert sorted(match_features(master, slave, spec).matches_for(0)) == [0, 1]


# =============================================================================
# Elution and charge
# =============================================================================

class TestElution(unittest.TestCase):
    """Test elution predicates."""

    def test_scan_ranges_overlap(self):
        """Overlapping scan ranges match regardless of apex distance."""
        master = FeatureCollection(mass=[1000.0], scan=[100], scan_first=[95], scan_last=[110])
        slave = FeatureCollection(mass=[1000.0], scan=[120], scan_first=[108], scan_last=[130])

        result = match_features(master, slave, ToleranceSpec(delta_elution=0.0))

        self.assertEqual(result.best_match(0), 0)
        self.assertEqual(result.elution_gaps[0], 0.0)

    def test_scan_gap(self):
        master = FeatureCollection(mass=[1000.0], scan=[100], scan_first=[95], scan_last=[100])
        slave = FeatureCollection(mass=[1000.0], scan=[110], scan_first=[104], scan_last=[112])

        self.assertEqual(len(match_features(master, slave, ToleranceSpec(delta_elution=4.0))), 1)
        self.assertEqual(len(match_features(master, slave, ToleranceSpec(delta_elution=3.0))), 0)

    def test_time_mode(self):
        master = FeatureCollection(mass=[1000.0, 1200.0], time=[100.0, 300.0])
        slave = FeatureCollection(mass=[1000.0, 1200.0], time=[115.0, 330.0])

        result = match_features(master, slave, ToleranceSpec.default(ElutionMode.TIME))

        self.assertEqual(result.as_dict(), {0: [0]})

    def test_hydrophobicity_nan_never_matches(self):
        master = FeatureCollection(mass=[1000.0], hydrophobicity=[np.nan])
        slave = FeatureCollection(mass=[1000.0], hydrophobicity=[0.3])

        spec = ToleranceSpec(delta_elution=10.0, elution_mode=ElutionMode.HYDROPHOBICITY)
        self.assertEqual(len(match_features(master, slave, spec)), 0)

    def test_within_charge(self):
        master = FeatureCollection(mass=[1000.0], charge=[2], scan=[1])
        slave = FeatureCollection(mass=[1000.0, 1000.0], charge=[3, 2], scan=[1, 1])

        everything = match_features(master, slave, ToleranceSpec())
        same_charge = match_features(master, slave, ToleranceSpec(match_within_charge=True))

        self.assertEqual(sorted(everything.matches_for(0)), [0, 1])
        self.assertEqual(list(same_charge.matches_for(0)), [1])


# =============================================================================
# Ordering and result
# =============================================================================

class TestOrdering:
    """Test ranking of each master's slaves."""

    def _collections(self):
        master = FeatureCollection(mass=[1000.0], scan=[50])
        slave = FeatureCollection(
            mass=[1000.004, 1000.001, 1000.002],
            scan=[50, 53, 50],
            intensity=[1e4, 1e6, 1e5],
        )
        return master, slave

    def test_elution_closeness(self):
        master, slave = self._collections()
        result = match_features(master, slave, ToleranceSpec(delta_mass=5.0))
        # Gap 0 first (closer mass wins the tie), then gap 3
        assert list(result.matches_for(0)) == [2, 0, 1]

    def test_mass_closeness(self):
        master, slave = self._collections()
        spec = ToleranceSpec(delta_mass=5.0, slave_ordering=SlaveOrdering.MASS_CLOSENESS)
        assert list(match_features(master, slave, spec).matches_for(0)) == [1, 2, 0]

    def test_intensity(self):
        master, slave = self._collections()
        spec = ToleranceSpec(delta_mass=5.0, slave_ordering=SlaveOrdering.INTENSITY)
        assert list(match_features(master, slave, spec).matches_for(0)) == [1, 2, 0]
        assert match_features(master, slave, spec).best_match(0) == 1


class TestMatchResult:
    """Test result queries and degenerate inputs."""

    def test_empty_inputs(self):
        empty = FeatureCollection.empty()
        features = FeatureCollection(mass=[1000.0])

        for master, slave in ((empty, features), (features, empty), (empty, empty)):
            result = match_features(master, slave)
            assert isinstance(result, MatchResult)
            assert len(result) == 0
            assert result.n_pairs == 0
            assert result.as_dict() == {}

    def test_non_positive_masses_skipped(self):
        master = FeatureCollection(mass=[0.0, -5.0, np.nan, 1000.0], scan=[1, 1, 1, 1])
        slave = FeatureCollection(mass=[0.0, 1000.0], scan=[1, 1])

        result = match_features(master, slave)

        assert result.as_dict() == {3: [1]}
        np.testing.assert_array_equal(result.unmatched_master_indices(), [0, 1, 2])
        np.testing.assert_array_equal(result.unmatched_slave_indices(), [0])

    def test_queries(self):
        master = FeatureCollection(mass=[1000.0, 2000.0, 3000.0], scan=[1, 1, 1])
        slave = FeatureCollection(mass=[1000.0, 1000.001, 3000.0], scan=[1, 1, 1])

        result = match_features(master, slave)

        assert len(result) == 2
        assert result.n_pairs == 3
        assert result.best_match(1) is None
        assert len(result.matches_for(1)) == 0
        np.testing.assert_array_equal(result.matched_slave_indices(), [0, 1, 2])
        np.testing.assert_array_equal(result.unmatched_master_indices(), [1])

        masters, slaves = result.pair_arrays()
        np.testing.assert_array_equal(masters, [0, 0, 2])
        np.testing.assert_array_equal(slaves, [0, 1, 2])

        best_masters, best_slaves = result.best_pairs()
        np.testing.assert_array_equal(best_masters, [0, 2])
        np.testing.assert_array_equal(best_slaves, [0, 2])

        np.testing.assert_allclose(result.mass_differences, [0.0, 0.001, 0.0], atol=1e-9)

    def test_match_many(self, rng):
        master = random_features(30, rng)
        slaves = [random_features(30, rng), random_features(20, rng)]
        matcher = ToleranceMatcher(ToleranceSpec(delta_mass=1000.0))

        results = matcher.match_many(master, slaves)

        assert len(results) == 2
        assert results[1].n_slave == 20
        assert pair_set(results[0]) == pair_set(matcher.match(master, slaves[0]))


class TestToleranceSpec(unittest.TestCase):
    """Test tolerance settings."""

    def test_defaults_per_mode(self):
        self.assertEqual(ToleranceSpec.default(ElutionMode.SCAN).delta_elution, 3.0)
        self.assertEqual(ToleranceSpec.default(ElutionMode.TIME).delta_elution, 20.0)
        self.assertEqual(ToleranceSpec.default(ElutionMode.HYDROPHOBICITY).delta_elution, 0.05)

    def test_default_mass_by_unit(self):
        self.assertEqual(ToleranceSpec.default().delta_mass, 5.0)
        absolute = ToleranceSpec.default(delta_mass_type=MassToleranceType.ABSOLUTE)
        self.assertEqual(absolute.delta_mass, 0.2)

    def test_negative_rejected(self):
        with self.assertRaises(ValueError):
            ToleranceSpec(delta_mass=-1.0)
        with self.assertRaises(ValueError):
            ToleranceSpec(delta_elution=-1.0)

    def test_symmetric_bounds_by_default(self):
        spec = ToleranceSpec(delta_mass=5.0, delta_elution=3.0)
        self.assertEqual(spec.mass_bounds, (-5.0, 5.0))
        self.assertEqual(spec.elution_bounds, (-3.0, 3.0))

    def test_invalid_windows(self):
        with self.assertRaises(ValueError):
            ToleranceSpec(mass_window=(2.0, 1.0))
        with self.assertRaises(ValueError):
            ToleranceSpec(mass_window=(1.0,))
        with self.assertRaises(ValueError):
            ToleranceSpec(elution_window=(0.0, np.inf))
        with self.assertRaises(ValueError):
            ToleranceSpec(mass_window=(-2e6, 0.0))


class TestAsymmetricWindows:
    """Matching at a known mass shift and retention lag."""

    def test_known_shift(self):
        master = FeatureCollection(mass=[1000.0], scan=[100])
        slave = FeatureCollection(mass=[1016.0, 984.0, 1016.0, 1000.0], scan=[105, 105, 95, 100])
        spec = ToleranceSpec(delta_mass_type=MassToleranceType.ABSOLUTE,
                             mass_window=(15.99, 16.01), elution_window=(0.0, 10.0))

        result = ToleranceMatcher(spec).match(master, slave)

        assert result.as_dict() == {0: [0]}
        assert result.mass_differences[0] == pytest.approx(16.0)

    def test_ppm_window(self):
        master = FeatureCollection(mass=[1000.0], scan=[1])
        slave = FeatureCollection(mass=[1000.004, 999.996, 1000.012], scan=[1, 1, 1])
        spec = ToleranceSpec(mass_window=(2.0, 10.0))

        result = ToleranceMatcher(spec).match(master, slave)

        assert result.as_dict() == {0: [0]}
