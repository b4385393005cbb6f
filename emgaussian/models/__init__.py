"""
Statistical Models for EM

This module contains model implementations:
- MissingDataGaussian: multivariate normal with arbitrary missing patterns
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .missing_gaussian import MissingDataGaussian, MissingPattern, nll_missing
