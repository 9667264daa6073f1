"""Pairwise geographic features between locations.

Distances are great-circle (haversine) kilometres between country
centroids; connectivity is a binary indicator read from a hand-curated,
directional neighbour table.  Both tables are process-wide constants
loaded once from ``config/geography.yml`` into an immutable ``GeoTable``.

Locations absent from the coordinate table are not an error: they get
``DEFAULT_DISTANCE_KM`` to every other location and no connectivity.
"""

from __future__ import annotations

import functools
import logging
import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Sequence

import numpy as np

from migration_markov.config_loader import get_geography_config, get_model_config
from migration_markov.constants import DEFAULT_DISTANCE_KM, EARTH_RADIUS_KM

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Location:
    """A named location with a fixed centroid."""

    name: str
    lat: float
    lon: float


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres between two lat/lon points."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


@dataclass(frozen=True, eq=False)
class GeoTable:
    """Immutable coordinate + adjacency lookup."""

    coordinates: Mapping[str, Location] = field(
        default_factory=lambda: MappingProxyType({}),
    )
    neighbors: Mapping[str, frozenset[str]] = field(
        default_factory=lambda: MappingProxyType({}),
    )
    default_distance_km: float = DEFAULT_DISTANCE_KM

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        default_distance_km: float = DEFAULT_DISTANCE_KM,
    ) -> GeoTable:
        """Build a table from ``{"coordinates": ..., "neighbors": ...}``."""
        coords: dict[str, Location] = {}
        for name, pair in (data.get("coordinates") or {}).items():
            try:
                lat, lon = float(pair[0]), float(pair[1])
            except (TypeError, ValueError, IndexError):
                logger.warning("Skipping malformed coordinates for %s: %r", name, pair)
                continue
            coords[str(name)] = Location(str(name), lat, lon)

        adjacency = {
            str(name): frozenset(str(n) for n in (listed or []))
            for name, listed in (data.get("neighbors") or {}).items()
        }

        return cls(
            coordinates=MappingProxyType(coords),
            neighbors=MappingProxyType(adjacency),
            default_distance_km=float(default_distance_km),
        )

    def __contains__(self, name: object) -> bool:
        return name in self.coordinates

    def distance(self, a: str, b: str) -> float:
        """Great-circle distance in km; ``distance(a, a) == 0``."""
        if a == b:
            return 0.0
        loc_a = self.coordinates.get(a)
        loc_b = self.coordinates.get(b)
        if loc_a is None or loc_b is None:
            return self.default_distance_km
        return haversine_km(loc_a.lat, loc_a.lon, loc_b.lat, loc_b.lon)

    def connectivity(self, a: str, b: str) -> float:
        """1.0 if *b* is listed as a neighbour of *a*, else 0.0.

        Not necessarily symmetric.
        """
        return 1.0 if b in self.neighbors.get(a, frozenset()) else 0.0

    def distance_matrix(self, locations: Sequence[str]) -> np.ndarray:
        n = len(locations)
        out = np.zeros((n, n))
        for i, a in enumerate(locations):
            for j, b in enumerate(locations):
                if i != j:
                    out[i, j] = self.distance(a, b)
        return out

    def connectivity_matrix(self, locations: Sequence[str]) -> np.ndarray:
        n = len(locations)
        out = np.zeros((n, n))
        for i, a in enumerate(locations):
            for j, b in enumerate(locations):
                if i != j:
                    out[i, j] = self.connectivity(a, b)
        return out


@functools.lru_cache(maxsize=1)
def load_geo_table() -> GeoTable:
    """Load the process-wide geography table from config (once)."""
    default_km = get_model_config().get("default_distance_km", DEFAULT_DISTANCE_KM)
    table = GeoTable.from_dict(get_geography_config(), default_distance_km=default_km)
    logger.debug(
        "Geography table: %d coordinates, %d neighbour lists",
        len(table.coordinates),
        len(table.neighbors),
    )
    return table
