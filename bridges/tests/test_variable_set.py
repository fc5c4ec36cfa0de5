"""
Tests for variable sets, the registry and the global vector.
"""

import unittest

import numpy as np

from bridges.errors import (
    ConfigurationError,
    DimensionMismatchError,
    OutOfRangeError,
    UnregisteredVariableError,
)
from bridges.kernel.variable_set import VariableReference, VariableRegistry


class TestRegistration(unittest.TestCase):
    """Sets partition the global vector in registration order."""

    def setUp(self):
        self.registry = VariableRegistry()
        self.points = self.registry.register(2, 3, values=[[0, 0, 0], [1, 2, 3]])
        self.lengths = self.registry.register(1, 1, values=[4.0])

    def test_first_ranks_are_contiguous(self):
        """Sets take consecutive slots of the global vector."""
        self.assertEqual(self.points.first_rank, 0)
        self.assertEqual(self.lengths.first_rank, 6)
        self.assertEqual(self.registry.total_dof, 7)

    def test_set_indices(self):
        """Sets know their index and size."""
        self.assertEqual(self.points.set_index, 0)
        self.assertEqual(self.lengths.set_index, 1)
        self.assertEqual(len(self.points), 2)

    def test_get_range(self):
        """get_range returns the half-open slot range of a variable."""
        self.assertEqual(self.points.get_range(1), (3, 6))
        self.assertEqual(self.lengths.get_range(0), (6, 7))

    def test_global_index(self):
        """global_index checks the component range."""
        self.assertEqual(self.points.global_index(1, 2), 5)
        with self.assertRaises(OutOfRangeError):
            self.points.global_index(1, 3)

    def test_index_out_of_range(self):
        """Variable indices outside the set raise."""
        with self.assertRaises(OutOfRangeError):
            self.points.get_range(2)
        with self.assertRaises(IndexError):
            self.points[-1]

    def test_invalid_dimension_or_count(self):
        """Zero dimensions and negative counts are rejected."""
        with self.assertRaises(OutOfRangeError):
            self.registry.register(1, 0)
        with self.assertRaises(OutOfRangeError):
            self.registry.register(-1, 3)

    def test_initial_value_shape_mismatch(self):
        """Initial values must match count by dimension."""
        with self.assertRaises(DimensionMismatchError):
            self.registry.register(2, 3, values=[[0, 0], [1, 1]])

    def test_default_values_are_zero(self):
        """Variables without initial values start at zero."""
        vectors = self.registry.register(2, 2)
        x = self.registry.seal()
        start, stop = vectors.get_range(0)
        np.testing.assert_array_equal(x.values[start:vectors.get_range(1)[1]], np.zeros(4))
        self.assertEqual(stop - start, 2)

    def test_empty_set_with_empty_values(self):
        """An empty set accepts an empty list of initial values."""
        empty = self.registry.register(0, 3, values=[])
        self.assertEqual(empty.size, 0)
        self.assertEqual(self.registry.total_dof, 7)
        np.testing.assert_array_equal(self.registry.seal().values, [0, 0, 0, 1, 2, 3, 4])

    def test_seal_builds_global_vector(self):
        """Sealing concatenates the initial values once."""
        x = self.registry.seal()
        np.testing.assert_array_equal(x.values, [0, 0, 0, 1, 2, 3, 4])
        self.assertIs(self.registry.seal(), x)
        self.assertTrue(self.registry.sealed)

    def test_register_after_seal_fails(self):
        """Registration after sealing raises OutOfRangeError."""
        self.registry.seal()
        with self.assertRaises(OutOfRangeError):
            self.registry.register(1, 1)
        self.assertEqual(self.registry.total_dof, 7)


class TestResolve(unittest.TestCase):

    def setUp(self):
        self.registry = VariableRegistry()
        self.points = self.registry.register(2, 3)

    def test_pairs_and_references(self):
        """References and (set, index) pairs resolve alike."""
        refs = self.registry.resolve([self.points[0], (self.points, 1)])
        self.assertEqual(refs[0], VariableReference(self.points, 0))
        self.assertEqual(refs[1].index, 1)
        self.assertEqual(refs[1].global_range(), (3, 6))

    def test_foreign_set_is_unregistered(self):
        """Sets of another registry are unregistered."""
        other = VariableRegistry().register(2, 3)
        with self.assertRaises(UnregisteredVariableError):
            self.registry.resolve([(other, 0)])

    def test_bad_index(self):
        """Out-of-range indices fail to resolve."""
        with self.assertRaises(OutOfRangeError):
            self.registry.resolve([(self.points, 5)])

    def test_malformed_item(self):
        """Items that are neither references nor pairs are rejected."""
        with self.assertRaises(ConfigurationError):
            self.registry.resolve([42])
        with self.assertRaises(ConfigurationError):
            self.registry.resolve([("points", 0)])


class TestValues(unittest.TestCase):

    def setUp(self):
        self.registry = VariableRegistry()
        self.points = self.registry.register(2, 3)
        self.scalars = self.registry.register(3, 1, values=[1.0, 2.0, 3.0])

    def test_set_value_before_seal(self):
        """Values written before sealing end up in X."""
        self.registry.set_value(self.points[1], [7, 8, 9])
        np.testing.assert_array_equal(self.registry.get_value(self.points[1]), [7, 8, 9])
        x = self.registry.seal()
        np.testing.assert_array_equal(x.values[3:6], [7, 8, 9])

    def test_set_value_after_seal_bumps_version(self):
        """Writing after sealing bumps the vector version."""
        x = self.registry.seal()
        version = x.version
        self.registry.set_value(self.scalars[2], [5.0])
        self.assertEqual(x.version, version + 1)
        self.assertEqual(x.values[8], 5.0)

    def test_set_value_wrong_size(self):
        """Writes with the wrong number of components raise."""
        with self.assertRaises(DimensionMismatchError):
            self.registry.set_value(self.points[0], [1, 2])
        self.registry.seal()
        with self.assertRaises(DimensionMismatchError):
            self.registry.set_value(self.points[0], [1, 2, 3, 4])

    def test_values_view_is_read_only(self):
        """The values view of X cannot be written."""
        x = self.registry.seal()
        with self.assertRaises(ValueError):
            x.values[0] = 1.0

    def test_replace_checks_shape(self):
        """replace swaps the iterate only when the shape matches."""
        x = self.registry.seal()
        x.replace(np.arange(9.0))
        self.assertEqual(x.version, 1)
        np.testing.assert_array_equal(x.copy(), np.arange(9.0))
        with self.assertRaises(DimensionMismatchError):
            x.replace(np.zeros(4))


class TestLocate(unittest.TestCase):

    def setUp(self):
        self.registry = VariableRegistry()
        self.points = self.registry.register(2, 3)
        self.empty = self.registry.register(0, 2)
        self.lengths = self.registry.register(2, 1)

    def test_locate_every_index(self):
        """locate maps every global index to its variable and component."""
        expected = [
            (self.points, 0, 0), (self.points, 0, 1), (self.points, 0, 2),
            (self.points, 1, 0), (self.points, 1, 1), (self.points, 1, 2),
            (self.lengths, 0, 0), (self.lengths, 1, 0),
        ]
        for global_index, (variable_set, instance, component) in enumerate(expected):
            found = self.registry.locate(global_index)
            self.assertIs(found[0], variable_set)
            self.assertEqual(found[1:], (instance, component))

    def test_locate_inverts_global_index(self):
        """locate inverts global_index."""
        for instance in range(2):
            for component in range(3):
                g = self.points.global_index(instance, component)
                self.assertEqual(self.registry.locate(g)[1:], (instance, component))

    def test_locate_out_of_range(self):
        """Indices outside the vector cannot be located."""
        with self.assertRaises(OutOfRangeError):
            self.registry.locate(8)
        with self.assertRaises(OutOfRangeError):
            self.registry.locate(-1)


if __name__ == "__main__":
    unittest.main()
