"""Smoke tests -- verify imports, configs, and basic module structure."""

from __future__ import annotations

import unittest


class TestImports(unittest.TestCase):
    """Verify all modules import without error."""

    def test_package_import(self):
        import migration_markov
        self.assertTrue(hasattr(migration_markov, "__version__"))

    def test_constants_import(self):
        from migration_markov.constants import (
            DEFAULT_DISTANCE_KM, EARTH_RADIUS_KM, ROW_SUM_TOLERANCE, STOCK_HEADERS,
        )
        self.assertEqual(EARTH_RADIUS_KM, 6371.0)
        self.assertEqual(DEFAULT_DISTANCE_KM, 3000.0)
        self.assertEqual(ROW_SUM_TOLERANCE, 1e-9)
        self.assertEqual(len(STOCK_HEADERS), 2)

    def test_config_loader_import(self):
        from migration_markov.config_loader import get_model_config, load_config
        self.assertTrue(callable(load_config))
        self.assertTrue(callable(get_model_config))

    def test_subpackage_imports(self):
        import migration_markov.features
        import migration_markov.models
        import migration_markov.pipeline
        import migration_markov.report
        import migration_markov.steps


class TestConfigs(unittest.TestCase):
    """Verify YAML config files parse correctly."""

    def test_model_config(self):
        from migration_markov.config_loader import load_config
        cfg = load_config("model_config")
        self.assertEqual(cfg["ensemble_size"], 100)
        self.assertEqual(cfg["ensemble_min"], 10)
        self.assertEqual(cfg["ensemble_max"], 2000)
        self.assertEqual(cfg["default_distance_km"], 3000)
        self.assertAlmostEqual(cfg["lower_quantile"], 0.025)
        self.assertAlmostEqual(cfg["upper_quantile"], 0.975)

    def test_geography_config(self):
        from migration_markov.config_loader import load_config
        cfg = load_config("geography")
        self.assertIn("Germany", cfg["coordinates"])
        self.assertIn("France", cfg["neighbors"]["Germany"])
        self.assertEqual(cfg["neighbors"]["Greece"], [])
        # Every neighbour list belongs to a country with coordinates.
        for name in cfg["neighbors"]:
            self.assertIn(name, cfg["coordinates"])

    def test_missing_config_raises(self):
        from migration_markov.config_loader import load_config
        with self.assertRaises(FileNotFoundError):
            load_config("nonexistent_config")

    def test_reload_bypasses_cache(self):
        from migration_markov.config_loader import load_config
        first = load_config("model_config")
        again = load_config("model_config")
        reloaded = load_config("model_config", reload=True)
        self.assertIs(first, again)
        self.assertEqual(first, reloaded)

    def test_config_dir_override(self):
        import os
        import tempfile
        from unittest.mock import patch

        from migration_markov.config_loader import CONFIG_DIR_ENV, load_config

        with tempfile.TemporaryDirectory() as tmp:
            with open(os.path.join(tmp, "model_config.yml"), "w", encoding="utf-8") as fh:
                fh.write("ensemble_size: 42\n")
            with open(os.path.join(tmp, "empty.yml"), "w", encoding="utf-8") as fh:
                fh.write("")
            with open(os.path.join(tmp, "listy.yml"), "w", encoding="utf-8") as fh:
                fh.write("- 1\n- 2\n")

            with patch.dict(os.environ, {CONFIG_DIR_ENV: tmp}):
                self.assertEqual(load_config("model_config")["ensemble_size"], 42)
                self.assertEqual(load_config("empty"), {})
                with self.assertRaises(ValueError):
                    load_config("listy")

        self.assertEqual(load_config("model_config")["ensemble_size"], 100)


if __name__ == "__main__":
    unittest.main()
