"""
Exceptions and Warnings

Error types raised by the EM engine and the model-selection layer.

- SingularMatrixError: a required inversion or factorization failed
- InvalidGridValueError: bad tuning-parameter grid (raised before fitting)
- EmptyRowError: an observation with no observed values
- FoldFitFailure: a single grid/fold fit failed (recorded, never raised)
- NonConvergenceError: strict mode and the driver hit max_iter
- NoValidFitError: every grid point was invalid
"""

import numpy as np


class EMGaussianError(Exception):
    """Base class for all emgaussian errors."""


class SingularMatrixError(EMGaussianError, np.linalg.LinAlgError):
    """
    A matrix that must be inverted is singular or not positive definite.

    Subclasses numpy's LinAlgError so callers catching the numpy error
    keep working.
    """


class InvalidGridValueError(EMGaussianError, ValueError):
    """A tuning-parameter grid value is negative or not finite."""


class EmptyRowError(EMGaussianError, ValueError):
    """An observation row has no observed values."""


class FoldFitFailure(EMGaussianError):
    """
    Wraps an exception raised while fitting one grid point or fold.

    Attributes:
        rho: Tuning parameter of the failed fit.
        fold: Fold index, or None for full-data fits.
        cause: The original exception.
    """

    def __init__(self, rho: float, fold=None, cause: Exception = None):
        self.rho = rho
        self.fold = fold
        self.cause = cause
        where = f"rho={rho}" if fold is None else f"rho={rho}, fold={fold}"
        super().__init__(f"EM fit failed at {where}: {cause}")


class NonConvergenceError(EMGaussianError):
    """The EM driver reached max_iter without meeting the tolerance."""


class NoValidFitError(EMGaussianError, RuntimeError):
    """No grid point produced a usable criterion value."""


class NonConvergenceWarning(UserWarning):
    """A fit did not converge and a fallback was used."""
