"""
Test Suite

This module contains tests for:
- The missing-data model (imputation, statistics, likelihood)
- The EM driver and starting values
- Regularized solvers
- EBIC and k-fold tuning-parameter selection
- Utilities (grid, logging, monitoring)
"""
