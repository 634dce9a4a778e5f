"""
Convergence tests and quality indicators of an inversion run.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np
import torch

from .data_misfit import mean_absolute_misfit, rms
from .regularization import Roughness, model_roughness
from .survey import Survey

DOI_FACTOR = 0.35
# RMS treated as an exact fit
RMS_TOLERANCE = 1e-12


@dataclass(frozen=True)
class QualityIndicators:
    """
    Diagnostics of the final model.

    Parameters
    ----------
    rms_error : float
        RMS of the final residuals in the solve space
    data_misfit : float
        Equal to ``rms_error``
    model_roughness : float
        Norm of the roughness of the final solve-space model
    depth_of_investigation : float
        Empirical depth below which the model is poorly resolved, in metres
    mean_absolute_misfit : float
        Mean absolute residual
    cumulative_sensitivity : numpy.ndarray, optional
        Per-cell sum of the absolute sensitivities, row-major by depth
    """

    rms_error: float
    data_misfit: float
    model_roughness: float
    depth_of_investigation: float
    mean_absolute_misfit: float = 0.0
    cumulative_sensitivity: Optional[np.ndarray] = None

    def to_dict(self) -> Dict[str, Any]:
        sensitivity = self.cumulative_sensitivity
        return {
            "rmsError": self.rms_error,
            "dataMisfit": self.data_misfit,
            "modelRoughness": self.model_roughness,
            "depthOfInvestigation": self.depth_of_investigation,
            "meanAbsoluteMisfit": self.mean_absolute_misfit,
            "cumulativeSensitivity": (
                sensitivity.tolist() if sensitivity is not None else None
            ),
        }


def relative_change(current: float, previous: float) -> float:
    """
    Relative RMS change between two iterations.

    A previous RMS at round-off level means the data are already fitted
    exactly; the change is reported as zero so the run counts as converged.
    """
    if previous <= RMS_TOLERANCE:
        return 0.0
    return abs(current - previous) / previous


def has_converged(current: float, previous: float, threshold: float) -> bool:
    """True when the relative RMS change is at or below ``threshold``."""
    return relative_change(current, previous) <= threshold


def depth_of_investigation(survey: Survey, doi_factor: float = DOI_FACTOR) -> float:
    """
    Empirical depth of investigation: a fraction of the largest array length.

    This is a rule of thumb, not a resolution analysis of the forward model.
    """
    lengths = survey.array_lengths[torch.isfinite(survey.array_lengths)]
    if lengths.numel() == 0:
        return 0.0
    return doi_factor * lengths.max().item()


def cumulative_sensitivity(jacobian: torch.Tensor) -> np.ndarray:
    """Column sums of |J|: how strongly each cell is seen by the data."""
    return torch.abs(jacobian).sum(dim=0).detach().cpu().numpy()


def evaluate(
    params: torch.Tensor,
    residual: torch.Tensor,
    survey: Survey,
    regularization: Roughness,
    jacobian: Optional[torch.Tensor] = None,
    doi_factor: float = DOI_FACTOR,
) -> QualityIndicators:
    """
    Quality indicators of a solve-space model.

    Parameters
    ----------
    params : torch.Tensor
        Final solve-space model
    residual : torch.Tensor
        Final weighted residual
    survey : Survey
        Readings used in the inversion
    regularization : Roughness
        Roughness operator of the run
    jacobian : torch.Tensor, optional
        Sensitivity matrix, for the cumulative sensitivity
    doi_factor : float, optional
        Depth of investigation factor (default: 0.35)
    """
    final_rms = rms(residual)
    return QualityIndicators(
        rms_error=final_rms,
        data_misfit=final_rms,
        model_roughness=model_roughness(params, regularization),
        depth_of_investigation=depth_of_investigation(survey, doi_factor),
        mean_absolute_misfit=mean_absolute_misfit(residual),
        cumulative_sensitivity=(
            cumulative_sensitivity(jacobian) if jacobian is not None else None
        ),
    )
