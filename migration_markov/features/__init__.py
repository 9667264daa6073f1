"""Model inputs derived from static tables and year availability.

geo_features   -- great-circle distance and border connectivity
year_expander  -- training-year expansion and consecutive pair detection
"""
