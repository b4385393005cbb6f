"""
Utility Functions

This module contains utilities for:
- Matrix helpers
- Tuning-parameter grids
- Metrics computation
- Fit logging
- Resource monitoring
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .linalg import symmetrize, safe_inv, vechr, vechr_reverse, cov2cor
    from .grid import rho_grid, validate_grid
    from .metrics import count_edges, ebic_score, partial_correlation, check_monotonicity
    from .logging_utils import FitLogger
    from .timing import ResourceMonitor
