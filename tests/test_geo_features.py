"""Tests for great-circle distance and border connectivity lookups."""

from __future__ import annotations

import math
import unittest


class TestHaversine(unittest.TestCase):

    def test_one_degree_on_equator(self):
        from migration_markov.features.geo_features import haversine_km
        expected = 6371.0 * math.pi / 180.0
        self.assertAlmostEqual(haversine_km(0.0, 0.0, 0.0, 1.0), expected, places=6)

    def test_same_point_is_zero(self):
        from migration_markov.features.geo_features import haversine_km
        self.assertAlmostEqual(haversine_km(51.1657, 10.4515, 51.1657, 10.4515), 0.0)

    def test_antipodal_is_half_circumference(self):
        from migration_markov.features.geo_features import haversine_km
        self.assertAlmostEqual(haversine_km(0.0, 0.0, 0.0, 180.0), 6371.0 * math.pi, places=4)


class TestGeoTable(unittest.TestCase):

    def _table(self):
        from migration_markov.features.geo_features import GeoTable
        return GeoTable.from_dict({
            "coordinates": {"A": [0.0, 0.0], "B": [0.0, 1.0], "Bad": ["x"]},
            "neighbors": {"A": ["B"]},
        })

    def test_distance_known_locations(self):
        table = self._table()
        self.assertAlmostEqual(table.distance("A", "B"), 6371.0 * math.pi / 180.0, places=6)
        self.assertAlmostEqual(table.distance("A", "B"), table.distance("B", "A"))

    def test_distance_to_self_is_zero(self):
        table = self._table()
        self.assertEqual(table.distance("A", "A"), 0.0)
        self.assertEqual(table.distance("Nowhere", "Nowhere"), 0.0)

    def test_unknown_location_uses_default_distance(self):
        table = self._table()
        self.assertEqual(table.distance("A", "Nowhere"), 3000.0)
        self.assertEqual(table.distance("Nowhere", "B"), 3000.0)

    def test_malformed_coordinates_are_skipped(self):
        table = self._table()
        self.assertNotIn("Bad", table)
        self.assertEqual(table.distance("A", "Bad"), 3000.0)

    def test_connectivity_is_directional(self):
        table = self._table()
        self.assertEqual(table.connectivity("A", "B"), 1.0)
        self.assertEqual(table.connectivity("B", "A"), 0.0)
        self.assertEqual(table.connectivity("Nowhere", "A"), 0.0)

    def test_matrices_have_zero_diagonal(self):
        table = self._table()
        dist = table.distance_matrix(["A", "B", "Nowhere"])
        conn = table.connectivity_matrix(["A", "B", "Nowhere"])
        self.assertEqual(dist.shape, (3, 3))
        for i in range(3):
            self.assertEqual(dist[i, i], 0.0)
            self.assertEqual(conn[i, i], 0.0)
        self.assertEqual(dist[0, 2], 3000.0)
        self.assertEqual(conn[0, 1], 1.0)
        self.assertEqual(conn[1, 0], 0.0)

    def test_table_is_read_only(self):
        table = self._table()
        with self.assertRaises(TypeError):
            table.coordinates["C"] = None  # type: ignore[index]


class TestLoadGeoTable(unittest.TestCase):

    def test_loaded_once(self):
        from migration_markov.features.geo_features import load_geo_table
        self.assertIs(load_geo_table(), load_geo_table())

    def test_static_tables(self):
        from migration_markov.features.geo_features import load_geo_table
        table = load_geo_table()
        self.assertIn("Germany", table)
        self.assertEqual(table.connectivity("Germany", "France"), 1.0)
        self.assertEqual(table.connectivity("Germany", "Spain"), 0.0)
        self.assertEqual(table.connectivity("Greece", "Italy"), 0.0)
        # Berlin-ish centroid to Paris-ish centroid is well under 1500 km.
        self.assertLess(table.distance("Germany", "France"), 1500.0)
        self.assertGreater(table.distance("Germany", "Australia"), 10000.0)


if __name__ == "__main__":
    unittest.main()
