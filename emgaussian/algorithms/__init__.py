"""
EM Algorithm and Model Selection

This module contains implementations of:
- EMDriver: EM loop for Gaussian data with missing values
- Regularized precision solvers (graphical lasso via scikit-learn)
- Cross-validation and EBIC selection of the tuning parameter
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .em_driver import EMDriver, em_prec, em_cov, resolve_starting_values
    from .solvers import PrecisionSolver, GraphicalLassoCD, GraphicalLassoLars, create_solver
    from .cross_validation import create_folds, cross_validate
    from .selection import SelectionResult, em_ggm, select_ebic, select_kfold
