"""Global constants for the migration Markov forecaster."""

# ---------------------------------------------------------------------------
# Numerical safety
# ---------------------------------------------------------------------------
ROW_SUM_TOLERANCE: float = 1e-9

# ---------------------------------------------------------------------------
# Geography
# ---------------------------------------------------------------------------
EARTH_RADIUS_KM: float = 6371.0
DEFAULT_DISTANCE_KM: float = 3000.0

# ---------------------------------------------------------------------------
# Transition estimation
# ---------------------------------------------------------------------------
STAY_PROBABILITY_FLOOR: float = 0.5
ATTRACTIVENESS_OFFSET: float = 10.0
MIN_DESTINATION_WEIGHT: float = 0.0001
DISTANCE_SCALE_KM: float = 1000.0

# ---------------------------------------------------------------------------
# Ensemble sampling
# ---------------------------------------------------------------------------
DEFAULT_ENSEMBLE_SIZE: int = 100
ENSEMBLE_SIZE_MIN: int = 10
ENSEMBLE_SIZE_MAX: int = 2000
DIRICHLET_ALPHA_SCALE: float = 100.0
MIN_DIRICHLET_ALPHA: float = 1e-6
MIN_UNIFORM_DRAW: float = 1e-12
LOWER_QUANTILE: float = 0.025
UPPER_QUANTILE: float = 0.975

# ---------------------------------------------------------------------------
# Source data layout (OECD international migration tables)
# ---------------------------------------------------------------------------
COUNTRY_FIELD: str = "Country"
STOCK_HEADERS: tuple[str, ...] = (
    "Stock of foreign population by nationality(Total)",
    "Stock of foreign-born population by country of birth(Total)",
)
INFLOW_HEADER: str = "Inflows of foreign population by nationality(Total)"
OUTFLOW_HEADER: str = "Outflows of foreign population by nationality(Total)"
CSV_FILENAME_TEMPLATE: str = "migration_{year}.csv"
