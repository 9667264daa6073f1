"""Pipeline input steps (record parsing and CSV loading)."""
