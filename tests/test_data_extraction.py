"""Tests for defensive parsing, year records and CSV loading."""

from __future__ import annotations

import math
import os
import tempfile
import unittest

STOCK = "Stock of foreign population by nationality(Total)"
STOCK_BORN = "Stock of foreign-born population by country of birth(Total)"
INFLOW = "Inflows of foreign population by nationality(Total)"
OUTFLOW = "Outflows of foreign population by nationality(Total)"


class TestSafeParseFloat(unittest.TestCase):

    def test_plain_numbers(self):
        from migration_markov.steps.data_extraction import safe_parse_float
        self.assertEqual(safe_parse_float("1234"), 1234.0)
        self.assertEqual(safe_parse_float(" 12.5 "), 12.5)
        self.assertEqual(safe_parse_float("-3"), -3.0)
        self.assertEqual(safe_parse_float("1e3"), 1000.0)
        self.assertEqual(safe_parse_float(".5"), 0.5)
        self.assertEqual(safe_parse_float(7), 7.0)

    def test_leading_prefix(self):
        from migration_markov.steps.data_extraction import safe_parse_float
        self.assertEqual(safe_parse_float("12.5abc"), 12.5)
        self.assertEqual(safe_parse_float("1,234"), 1.0)

    def test_unparsable_is_zero(self):
        from migration_markov.steps.data_extraction import safe_parse_float
        for value in ("", "abc", "..", None, "nan", "Infinity", float("nan"),
                      float("inf"), True, [1], {"a": 1}):
            self.assertEqual(safe_parse_float(value), 0.0, msg=repr(value))

    def test_result_always_finite(self):
        from migration_markov.steps.data_extraction import safe_parse_float
        self.assertTrue(math.isfinite(safe_parse_float("1e999")))


class TestYearRecord(unittest.TestCase):

    def _record(self):
        from migration_markov.steps.data_extraction import YearRecord
        return YearRecord.from_rows(2010, [
            {"Country": "A", STOCK: "1000", INFLOW: "50", OUTFLOW: "100"},
            {"Country": "B", STOCK: "", STOCK_BORN: "500", INFLOW: "200", OUTFLOW: "n/a"},
            {"Country": "C", "Other": "5", "Another": "7"},
        ])

    def test_flows(self):
        from migration_markov.steps.data_extraction import FlowRecord
        flows = self._record().flows(["A", "B", "Missing"])
        self.assertEqual(flows["A"], FlowRecord(inflow=50.0, outflow=100.0, stock=1000.0))
        self.assertEqual(flows["B"], FlowRecord(inflow=200.0, outflow=0.0, stock=500.0))
        self.assertEqual(flows["Missing"], FlowRecord())

    def test_population_stock_headers(self):
        stock = self._record().population_stock(["A", "B"])
        self.assertEqual(stock, {"A": 1000.0, "B": 500.0})

    def test_population_stock_last_numeric_fallback(self):
        stock = self._record().population_stock(["C"])
        self.assertEqual(stock["C"], 7.0)

    def test_population_stock_later_nonzero_header_wins(self):
        from migration_markov.steps.data_extraction import YearRecord
        record = YearRecord.from_rows(2010, [
            {"Country": "A", STOCK: "0", STOCK_BORN: "900"},
            {"Country": "B", STOCK: "300", STOCK_BORN: "0"},
        ])
        self.assertEqual(record.population_stock(["A", "B"]), {"A": 900.0, "B": 300.0})

    def test_population_stock_present_zero_is_not_missing(self):
        from migration_markov.steps.data_extraction import YearRecord
        record = YearRecord.from_rows(2010, [
            {"Country": "A", STOCK: "0", "Other": "55"},
            {"Country": "B", STOCK: "..", "Other": "66"},
        ])
        self.assertEqual(record.population_stock(["A", "B"]), {"A": 0.0, "B": 0.0})

    def test_population_stock_missing_row(self):
        self.assertEqual(self._record().population_stock(["Z"]), {"Z": 0.0})

    def test_countries(self):
        self.assertEqual(self._record().countries(), ["A", "B", "C"])

    def test_record_is_frozen(self):
        import dataclasses
        record = self._record()
        with self.assertRaises(dataclasses.FrozenInstanceError):
            record.year = 2011  # type: ignore[misc]


class TestCSVLoading(unittest.TestCase):

    def _write(self, folder, year, text):
        with open(os.path.join(folder, f"migration_{year}.csv"), "w", encoding="utf-8") as fh:
            fh.write(text)

    def test_load_year_records(self):
        from migration_markov.steps.data_extraction import load_year_records

        header = f"Country,{STOCK},{INFLOW},{OUTFLOW}\n"
        with tempfile.TemporaryDirectory() as tmp:
            self._write(tmp, 2003, header + "Germany,7000000,600000,300000\n")
            self._write(tmp, 2001, header + "Germany,6800000,650000,x\nFrance,3200000,,\n")
            self._write(tmp, 2002, header)  # header only

            records = load_year_records(tmp, range(2000, 2005))

        self.assertEqual([r.year for r in records], [2001, 2003])
        flows = records[0].flows(["Germany", "France"])
        self.assertEqual(flows["Germany"].outflow, 0.0)
        self.assertEqual(flows["France"].stock, 3200000.0)
        self.assertEqual(flows["France"].inflow, 0.0)

    def test_missing_directory_yields_nothing(self):
        from migration_markov.steps.data_extraction import load_year_records
        with tempfile.TemporaryDirectory() as tmp:
            records = load_year_records(os.path.join(tmp, "absent"), range(2000, 2003))
        self.assertEqual(records, [])

    def test_available_locations(self):
        from migration_markov.features.geo_features import load_geo_table
        from migration_markov.steps.data_extraction import YearRecord, available_locations

        records = [
            YearRecord.from_rows(2001, [{"Country": "Germany"}, {"Country": "Atlantis"}]),
            YearRecord.from_rows(2002, [{"Country": "France"}, {"Country": "Germany"}]),
        ]
        self.assertEqual(available_locations(records, load_geo_table()), ["France", "Germany"])


if __name__ == "__main__":
    unittest.main()
