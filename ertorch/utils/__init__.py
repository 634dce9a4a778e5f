"""
Utility functions for ertorch.

This module provides synthetic electrode layouts, data and models for
testing and demonstrating inversions.
"""

from .model_builder import (
    get_indices_box,
    layered_model,
    create_block_in_halfspace,
)
from .survey_builder import (
    dipole_dipole_line,
    wenner_line,
    schlumberger_line,
    make_survey,
    simulate_data,
)


__all__ = [
    "get_indices_box",
    "layered_model",
    "create_block_in_halfspace",
    "dipole_dipole_line",
    "wenner_line",
    "schlumberger_line",
    "make_survey",
    "simulate_data",
]
