"""Year records and defensive parsing of migration flow tables.

Each ``migration_<year>.csv`` holds one row per country with free-text
numeric columns for the foreign-resident stock, inflows and outflows.
Nothing here raises on bad numbers: unparsable, missing, NaN or
infinite values become ``0.0``.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import pandas as pd

from migration_markov.constants import (
    COUNTRY_FIELD,
    CSV_FILENAME_TEMPLATE,
    INFLOW_HEADER,
    OUTFLOW_HEADER,
    STOCK_HEADERS,
)
from migration_markov.features.geo_features import GeoTable

logger = logging.getLogger(__name__)

# Leading decimal literal, the way a lenient float parser reads "1234 (est.)".
_NUMERIC_PREFIX = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def safe_parse_float(value: Any) -> float:
    """Parse *value* to a finite float, returning 0.0 on any failure."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else 0.0

    match = _NUMERIC_PREFIX.match(str(value))
    if not match:
        return 0.0
    try:
        number = float(match.group(0))
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() == ""


@dataclass(frozen=True)
class FlowRecord:
    """Inflow, outflow and stock of one location in one year."""

    inflow: float = 0.0
    outflow: float = 0.0
    stock: float = 0.0


@dataclass(frozen=True)
class YearRecord:
    """All per-location rows delivered for one year.  Read-only."""

    year: int
    rows: tuple[Mapping[str, Any], ...] = ()

    @classmethod
    def from_rows(cls, year: int, rows: Iterable[Mapping[str, Any]]) -> YearRecord:
        return cls(year=int(year), rows=tuple(dict(r) for r in rows if isinstance(r, Mapping)))

    def find_row(self, location: str) -> Mapping[str, Any] | None:
        for row in self.rows:
            if row.get(COUNTRY_FIELD) == location:
                return row
        return None

    def countries(self) -> list[str]:
        return [str(r[COUNTRY_FIELD]) for r in self.rows if not _is_blank(r.get(COUNTRY_FIELD))]

    def flows(self, locations: Sequence[str]) -> dict[str, FlowRecord]:
        """Flow figures per location; locations with no row get zeros."""
        result: dict[str, FlowRecord] = {}
        for loc in locations:
            row = self.find_row(loc)
            if row is None:
                result[loc] = FlowRecord()
                continue

            stock_raw = None
            for header in STOCK_HEADERS:
                if not _is_blank(row.get(header)):
                    stock_raw = row.get(header)
                    break

            result[loc] = FlowRecord(
                inflow=safe_parse_float(row.get(INFLOW_HEADER)),
                outflow=safe_parse_float(row.get(OUTFLOW_HEADER)),
                stock=safe_parse_float(stock_raw),
            )
        return result

    def population_stock(self, locations: Sequence[str]) -> dict[str, float]:
        """Foreign-resident stock per location.

        Stock headers are read in order and a later non-zero value wins.
        When neither header carries a value the last numeric cell of the
        row is used instead.
        """
        result: dict[str, float] = {}
        for loc in locations:
            row = self.find_row(loc)
            if row is None:
                result[loc] = 0.0
                continue

            stock: float | None = None
            for header in STOCK_HEADERS:
                if _is_blank(row.get(header)):
                    continue
                # A present "0" or ".." counts as a stock of 0, not as missing.
                parsed = safe_parse_float(row.get(header))
                if stock is None or parsed:
                    stock = parsed

            if stock is None:
                numeric = [
                    safe_parse_float(v)
                    for k, v in row.items()
                    if k != COUNTRY_FIELD and not _is_blank(v) and _NUMERIC_PREFIX.match(str(v))
                ]
                stock = numeric[-1] if numeric else 0.0

            result[loc] = stock
        return result


# ---------------------------------------------------------------------------
# CSV loading
# ---------------------------------------------------------------------------


def read_year_csv(path: Path | str, year: int) -> YearRecord | None:
    """Read a single year's CSV; returns None when missing or empty."""
    path = Path(path)
    if not path.exists():
        logger.debug("No data file for %d: %s", year, path)
        return None

    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
    except (OSError, ValueError, pd.errors.ParserError) as exc:
        logger.warning("Failed to load year %d from %s: %s", year, path, exc)
        return None

    if df.empty:
        logger.warning("Empty data file for %d: %s", year, path)
        return None

    df.columns = [str(c).strip() for c in df.columns]
    return YearRecord.from_rows(year, df.to_dict(orient="records"))


def load_year_records(
    data_dir: Path | str,
    years: Iterable[int],
) -> list[YearRecord]:
    """Load every available ``migration_<year>.csv`` under *data_dir*.

    Missing or unreadable years are skipped.  Records come back sorted
    by year.
    """
    data_dir = Path(data_dir)
    records: list[YearRecord] = []

    for year in years:
        record = read_year_csv(data_dir / CSV_FILENAME_TEMPLATE.format(year=year), year)
        if record is not None:
            records.append(record)

    records.sort(key=lambda r: r.year)
    logger.info(
        "Loaded %d year files from %s%s",
        len(records),
        data_dir,
        f" ({records[0].year}-{records[-1].year})" if records else "",
    )
    return records


def available_locations(records: Iterable[YearRecord], geo: GeoTable) -> list[str]:
    """Countries appearing in any record that have known coordinates."""
    found: set[str] = set()
    for record in records:
        found.update(c for c in record.countries() if c in geo)
    return sorted(found)
