"""Markov-chain modelling modules.

transition   -- per-year transition matrix estimation and averaging
propagation  -- one-step and multi-step population propagation
ensemble     -- seeded Dirichlet-like ensemble for credible intervals,
                local and background (process pool) samplers
metrics      -- RMSE / MAE / interval coverage against held-out years
"""
