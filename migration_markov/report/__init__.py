"""Result export (percentage matrix table, forecast table, JSON dump).

Public API:
    - ``matrix_to_frame``: transition matrix as origin x destination percentages.
    - ``forecast_to_frame``: long-format forecast table with credible bands.
    - ``write_results``: persist both tables plus a JSON summary.
"""

from migration_markov.report.export import forecast_to_frame, matrix_to_frame, write_results

__all__ = [
    "forecast_to_frame",
    "matrix_to_frame",
    "write_results",
]
