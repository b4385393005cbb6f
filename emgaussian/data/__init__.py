"""
Data Generation Utilities

This module contains data generators for:
- GGM: Gaussian graphical model data with known precision matrix
- MCAR missingness
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .generate_ggm import generate_ggm_data, generate_precision, add_missing
