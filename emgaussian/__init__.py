"""
emgaussian: EM Estimation of Gaussian Graphical Models with Missing Data

A Python package for estimating the mean and covariance/precision matrix of
a multivariate normal distribution from data with arbitrary missing-value
patterns, with optional L1 (graphical lasso) regularization and tuning
parameter selection by EBIC or k-fold cross-validation.

Quick Start
-----------
>>> from emgaussian import em_ggm, rho_grid, generate_ggm_data
>>>
>>> # Generate sample data with 10% of entries missing
>>> X, theta_true = generate_ggm_data(n=200, p=5, missing_prop=0.1, seed=1)
>>>
>>> # Select the tuning parameter by EBIC
>>> rho = rho_grid(20, method='qgraph', X=X)
>>> result = em_ggm(X, rho=rho, rho_select='ebic')
>>>
>>> print(f"Selected rho = {result.selected_rho:.3f}")
>>> print(result.graph)

Estimators
----------
- em_prec: Regularized EM estimate of mean and precision matrix
- em_cov: Saturated EM estimate of mean and covariance matrix
- em_ggm: Grid fit plus EBIC or k-fold selection

Solvers
-------
- GraphicalLassoCD: scikit-learn graphical lasso, coordinate descent
- GraphicalLassoLars: scikit-learn graphical lasso, LARS
- ExactInverseSolver: Plain inverse (no regularization)

Installation
------------
pip install -e .
"""

__version__ = "0.1.0"
__author__ = "emgaussian developers"

# Configuration and errors
from .config import EMConfig, SelectionConfig
from .exceptions import (
    EMGaussianError,
    SingularMatrixError,
    InvalidGridValueError,
    EmptyRowError,
    FoldFitFailure,
    NonConvergenceError,
    NoValidFitError,
    NonConvergenceWarning,
)

# Models and algorithms
from .models.missing_gaussian import MissingDataGaussian, nll_missing
from .algorithms.em_driver import EMDriver, em_prec, em_cov, resolve_starting_values
from .algorithms.solvers import (
    ExactInverseSolver,
    GraphicalLassoCD,
    GraphicalLassoLars,
    create_solver,
)
from .algorithms.cross_validation import create_folds
from .algorithms.selection import SelectionResult, em_ggm, select_ebic, select_kfold, ebic

# Utilities
from .utils.grid import rho_grid
from .utils.metrics import partial_correlation, pairwise_sample_size

# Data generation
from .data.generate_ggm import generate_ggm_data, add_missing

__all__ = [
    # Version info
    "__version__",
    "__author__",
    # Configuration and errors
    "EMConfig",
    "SelectionConfig",
    "EMGaussianError",
    "SingularMatrixError",
    "InvalidGridValueError",
    "EmptyRowError",
    "FoldFitFailure",
    "NonConvergenceError",
    "NoValidFitError",
    "NonConvergenceWarning",
    # Models and algorithms
    "MissingDataGaussian",
    "nll_missing",
    "EMDriver",
    "em_prec",
    "em_cov",
    "resolve_starting_values",
    "ExactInverseSolver",
    "GraphicalLassoCD",
    "GraphicalLassoLars",
    "create_solver",
    "create_folds",
    "SelectionResult",
    "em_ggm",
    "select_ebic",
    "select_kfold",
    "ebic",
    # Utilities
    "rho_grid",
    "partial_correlation",
    "pairwise_sample_size",
    # Data generation
    "generate_ggm_data",
    "add_missing",
]
