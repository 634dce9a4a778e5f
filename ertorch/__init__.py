"""
ertorch: 2D ERT/IP inversion in PyTorch.

Reconstructs a 2D resistivity or chargeability section from 4-electrode
apparent measurements with a geometry-weighted forward operator and a
damped, smoothness-regularized Gauss-Newton solve.
"""

from .config import Constraints, DataType, InversionParameters
from .discretize import GridGeometry, ModelGrid, build_grid
from .errors import (
    DegenerateGeometryError,
    InsufficientDataError,
    InversionError,
    NumericalInstabilityError,
    RejectedDataWarning,
)
from .inversion import Inversion, InversionResult, InversionState, invert
from .quality import QualityIndicators
from .survey import DataPoint, Survey
from .worker import CancellationToken, InversionWorker, ProgressChannel, ProgressUpdate

__version__ = "0.1.0"

__all__ = [
    "CancellationToken",
    "Constraints",
    "DataPoint",
    "DataType",
    "DegenerateGeometryError",
    "GridGeometry",
    "InsufficientDataError",
    "Inversion",
    "InversionError",
    "InversionParameters",
    "InversionResult",
    "InversionState",
    "InversionWorker",
    "ModelGrid",
    "NumericalInstabilityError",
    "ProgressChannel",
    "ProgressUpdate",
    "QualityIndicators",
    "RejectedDataWarning",
    "Survey",
    "build_grid",
    "invert",
]
