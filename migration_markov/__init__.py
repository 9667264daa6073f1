"""Migration Markov -- foreign-resident stock forecasting.

Estimates row-stochastic transition matrices from yearly bilateral flow
data (adjusted by great-circle distance and border connectivity), averages
them across training year-pairs, propagates a population vector forward
and quantifies uncertainty with a seeded stochastic ensemble.
"""

__version__ = "0.1.0"
