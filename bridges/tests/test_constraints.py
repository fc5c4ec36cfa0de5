"""
Tests for local → global conversion, constraint / energy sets and their
globalised forms.
"""

import unittest

import numpy as np

from bridges.catalog import CoherentLength, SegmentLength
from bridges.catalog.energies import SegmentOrthogonality
from bridges.errors import (
    ConfigurationError,
    DimensionMismatchError,
    NumericalDegeneracyError,
)
from bridges.kernel.constraint import ConstraintSet
from bridges.kernel.constraint_types import ConstraintKind
from bridges.kernel.converter import Converter
from bridges.kernel.energy import EnergySet
from bridges.kernel.variable_set import VariableRegistry


class TestConverter(unittest.TestCase):

    def setUp(self):
        self.registry = VariableRegistry()
        self.points = self.registry.register(2, 3)
        self.lengths = self.registry.register(1, 1)

    def test_local_to_global(self):
        """Reduced positions map to global indices in reference order."""
        converter = Converter([self.points[1], self.lengths[0]])
        np.testing.assert_array_equal(converter.local_to_global, [3, 4, 5, 6])
        self.assertEqual(converter[3], 6)
        self.assertEqual(converter.reduced_size, 4)

    def test_reference_order_is_kept(self):
        """Global indices are sorted even when references are not."""
        converter = Converter([self.lengths[0], self.points[0]])
        np.testing.assert_array_equal(converter.local_to_global, [6, 0, 1, 2])
        np.testing.assert_array_equal(converter.indices, [0, 1, 2, 6])

    def test_round_trip_through_locate(self):
        """Every reduced position locates back to its variable and component."""
        converter = Converter([self.points[0], self.points[1], self.lengths[0]])
        expected = [(0, c) for c in range(3)] + [(1, c) for c in range(3)] + [(0, 0)]
        for k, (instance, component) in enumerate(expected):
            _, found_instance, found_component = self.registry.locate(converter[k])
            self.assertEqual((found_instance, found_component), (instance, component))

    def test_duplicate_references_accumulate(self):
        """A variable referenced twice sums its local entries."""
        converter = Converter([self.points[0], self.points[0]])
        np.testing.assert_array_equal(converter.indices, [0, 1, 2])
        block = converter.globalise_matrix(np.ones((6, 6)))
        np.testing.assert_array_equal(block, np.full((3, 3), 4.0))
        vector = converter.globalise_vector(np.arange(6.0))
        np.testing.assert_array_equal(vector, [3.0, 5.0, 7.0])


class TestConstraintSet(unittest.TestCase):
    """Globalisation of quadratic and linearised constraint types."""

    def setUp(self):
        self.registry = VariableRegistry()
        self.points = self.registry.register(2, 3, values=[[0, 0, 0], [1, 0, 0]])
        self.lengths = self.registry.register(1, 1, values=[2.0])

    def _coherent(self, **kwargs):
        constraint_set = ConstraintSet(CoherentLength(), 0, self.registry)
        constraint = constraint_set.add_constraint(
            [self.points[0], self.points[1], self.lengths[0]], **kwargs
        )
        return constraint_set, constraint

    def test_quadratic_residual(self):
        """A quadratic constraint evaluates its form at X."""
        constraint_set, constraint = self._coherent()
        x = self.registry.seal()
        constraint_set.compute_and_globalise(x)
        # ‖p0 − p1‖² − l² = 1 − 4
        self.assertAlmostEqual(constraint.residual(x), -3.0)
        self.assertIs(constraint_set.kind, ConstraintKind.QUADRATIC)

    def test_global_hi_is_symmetric(self):
        """The globalised Hi is symmetric."""
        constraint_set, constraint = self._coherent()
        constraint_set.compute_and_globalise(self.registry.seal())
        entries = constraint.global_hi
        self.assertEqual(entries[(0, 3)], -2.0)
        self.assertEqual(entries[(6, 6)], -2.0)
        for (row, col), value in entries.items():
            self.assertEqual(entries[(col, row)], value)
        self.assertEqual(constraint.global_bi, {})

    def test_ci_override(self):
        """A per-constraint Ci replaces the type's Ci."""
        constraint_set, constraint = self._coherent(ci=1.0)
        x = self.registry.seal()
        constraint_set.compute_and_globalise(x)
        self.assertEqual(constraint.ci, 1.0)
        self.assertAlmostEqual(constraint.residual(x), -2.0)

    def test_quadratic_forms_are_cached(self):
        """Quadratic forms are globalised once and reused."""
        constraint_set, constraint = self._coherent()
        x = self.registry.seal()
        constraint_set.compute_and_globalise(x)
        form = constraint.global_form
        self.registry.set_value(self.points[1], [3, 0, 0])
        constraint_set.compute_and_globalise(x)
        self.assertIs(constraint.global_form, form)
        self.assertAlmostEqual(constraint.residual(x), 5.0)

    def test_dimension_mismatch(self):
        """Variables must add up to the type's reduced dimension."""
        constraint_set = ConstraintSet(CoherentLength(), 0, self.registry)
        with self.assertRaises(DimensionMismatchError):
            constraint_set.add_constraint([self.points[0], self.points[1]])

    def test_invalid_weight(self):
        """Weights must be finite and non-negative."""
        constraint_set = ConstraintSet(CoherentLength(), 0, self.registry)
        refs = [self.points[0], self.points[1], self.lengths[0]]
        with self.assertRaises(ConfigurationError):
            constraint_set.add_constraint(refs, weight=-1.0)
        constraint = constraint_set.add_constraint(refs, weight=2.0)
        with self.assertRaises(ConfigurationError):
            constraint.weight = float("nan")
        constraint.weight = 0.0
        self.assertEqual(constraint.weight, 0.0)

    def test_residual_before_globalisation(self):
        """A residual needs a globalised form."""
        _, constraint = self._coherent()
        with self.assertRaises(ConfigurationError):
            constraint.residual(self.registry.seal())

    def test_not_a_constraint_type(self):
        """Only constraint types can back a constraint set."""
        with self.assertRaises(ConfigurationError):
            ConstraintSet(object(), 0, self.registry)

    def test_source_names_the_constraint(self):
        """The source string names the set, type and constraint."""
        _, constraint = self._coherent()
        self.assertEqual(constraint.source, "constraint set 0 [CoherentLength], constraint 0")


class TestLinearisedConstraintSet(unittest.TestCase):

    def setUp(self):
        self.registry = VariableRegistry()
        self.points = self.registry.register(2, 3, values=[[0, 0, 0], [3, 4, 0]])
        self.constraint_set = ConstraintSet(SegmentLength(2.0), 0, self.registry)
        self.constraint = self.constraint_set.add_constraint([self.points[0], self.points[1]])

    def test_linearised_residual(self):
        """A linearised constraint is centred on the current direction."""
        x = self.registry.seal()
        self.constraint_set.compute_and_globalise(x)
        self.assertAlmostEqual(self.constraint.residual(x), 3.0)
        bi = self.constraint.global_bi
        self.assertAlmostEqual(bi[3], 0.6)
        self.assertAlmostEqual(bi[1], -0.8)
        self.assertIs(self.constraint_set.kind, ConstraintKind.LINEARISED)

    def test_recomputed_when_x_changes(self):
        """Linearised forms are recomputed only when X has changed."""
        x = self.registry.seal()
        self.constraint_set.compute_and_globalise(x)
        first = self.constraint.global_form
        self.constraint_set.compute_and_globalise(x)
        self.assertIs(self.constraint.global_form, first)

        self.registry.set_value(self.points[1], [0, 5, 0])
        self.assertFalse(self.constraint.is_current(x))
        self.constraint_set.compute_and_globalise(x)
        self.assertIsNot(self.constraint.global_form, first)
        self.assertAlmostEqual(self.constraint.global_bi[4], 1.0)
        self.assertAlmostEqual(self.constraint.residual(x), 3.0)

    def test_degenerate_segment(self):
        """A degenerate linearisation names the failing constraint."""
        x = self.registry.seal()
        self.registry.set_value(self.points[1], [0, 0, 0])
        with self.assertRaises(NumericalDegeneracyError) as ctx:
            self.constraint_set.compute_and_globalise(x)
        self.assertEqual(ctx.exception.source, self.constraint.source)
        self.assertIn("[SegmentLength]", str(ctx.exception))


class TestEnergySet(unittest.TestCase):

    def setUp(self):
        self.registry = VariableRegistry()
        self.points = self.registry.register(2, 3, values=[[0, 0, 0], [0, 0, 3]])

    def test_residual_and_entries(self):
        """An energy evaluates Ki x minus Si over its global indices."""
        energy_set = EnergySet(SegmentOrthogonality((0, 0, 2)), 0, self.registry)
        energy = energy_set.add_energy([self.points[0], self.points[1]], weight=0.5)
        x = self.registry.seal()
        energy_set.compute_and_globalise(x)
        self.assertAlmostEqual(energy.residual(x), 3.0)
        self.assertEqual(energy.global_ki, {2: -1.0, 5: 1.0})
        self.assertEqual(energy.weight, 0.5)
        self.assertEqual(energy.si, 0.0)

    def test_dimension_mismatch(self):
        """Energy variables must add up to the Ki length."""
        energy_set = EnergySet(SegmentOrthogonality((1, 0, 0)), 0, self.registry)
        with self.assertRaises(DimensionMismatchError):
            energy_set.add_energy([self.points[0]])

    def test_not_an_energy_type(self):
        """Only energy types can back an energy set."""
        with self.assertRaises(ConfigurationError):
            EnergySet(CoherentLength(), 0, self.registry)


if __name__ == "__main__":
    unittest.main()
