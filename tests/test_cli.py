"""Tests for the command-line entry point."""

from __future__ import annotations

import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from unittest.mock import patch

STOCK = "Stock of foreign population by nationality(Total)"
INFLOW = "Inflows of foreign population by nationality(Total)"
OUTFLOW = "Outflows of foreign population by nationality(Total)"


def _write_years(data_dir, years=range(2002, 2007)):
    import pandas as pd

    for year in years:
        growth = 1.0 + 0.01 * (year - 2002)
        pd.DataFrame([
            {"Country": "Germany", STOCK: 7_000_000 * growth, INFLOW: 600_000, OUTFLOW: 450_000},
            {"Country": "France", STOCK: 3_500_000 * growth, INFLOW: 200_000, OUTFLOW: 120_000},
            {"Country": "Atlantis", STOCK: 10, INFLOW: 1, OUTFLOW: 1},
        ]).to_csv(os.path.join(data_dir, f"migration_{year}.csv"), index=False)


def _run_main(*argv):
    import main

    out = io.StringIO()
    with patch("sys.argv", ["main.py", *argv]), redirect_stdout(out):
        code = main.main()
    return code, out.getvalue()


class TestParseYears(unittest.TestCase):

    def test_lists_and_ranges(self):
        from main import _parse_years
        self.assertEqual(_parse_years("2005, 2010"), [2005, 2010])
        self.assertEqual(_parse_years("2005-2007,2006"), [2005, 2006, 2007])
        self.assertEqual(_parse_years(""), [])


class TestMain(unittest.TestCase):

    def test_full_run_writes_outputs(self):
        with tempfile.TemporaryDirectory() as tmp:
            _write_years(tmp)
            out_dir = os.path.join(tmp, "out")
            code, stdout = _run_main(
                "--data-dir", tmp,
                "--locations", "Germany,France",
                "--input-year", "2004",
                "--target-year", "2006",
                "--ensemble-size", "10",
                "--seed", "cli",
                "--no-offload",
                "--output-dir", out_dir,
            )
            self.assertEqual(code, 0)
            self.assertIn("Forecast summary", stdout)
            self.assertIn("Validation:", stdout)
            for name in ("transition_matrix.csv", "forecast.csv", "results.json"):
                self.assertTrue(os.path.exists(os.path.join(out_dir, name)))
            with open(os.path.join(out_dir, "results.json"), encoding="utf-8") as fh:
                payload = json.load(fh)
            self.assertEqual(payload["sampler"], "local")
            self.assertEqual(payload["locations"], ["Germany", "France"])

    def test_list_locations(self):
        with tempfile.TemporaryDirectory() as tmp:
            _write_years(tmp, [2005])
            code, stdout = _run_main("--data-dir", tmp, "--list-locations")
        self.assertEqual(code, 0)
        self.assertIn("Germany", stdout)
        self.assertNotIn("Atlantis", stdout)

    def test_invalid_target_year(self):
        with tempfile.TemporaryDirectory() as tmp:
            _write_years(tmp)
            code, _ = _run_main(
                "--data-dir", tmp,
                "--locations", "Germany,France",
                "--input-year", "2004",
                "--target-year", "2004",
            )
        self.assertEqual(code, 1)

    def test_missing_start_year(self):
        with tempfile.TemporaryDirectory() as tmp:
            _write_years(tmp)
            code, _ = _run_main(
                "--data-dir", tmp,
                "--locations", "Germany,France",
                "--input-year", "2010",
                "--target-year", "2012",
                "--no-offload",
            )
        self.assertEqual(code, 1)

    def test_no_data(self):
        with tempfile.TemporaryDirectory() as tmp:
            code, _ = _run_main("--data-dir", tmp, "--target-year", "2010")
        self.assertEqual(code, 1)


if __name__ == "__main__":
    unittest.main()
