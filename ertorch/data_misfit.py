"""
Data misfit for ertorch inversions.

Residuals are ``observed - predicted`` in the solve space (log apparent
resistivity, or chargeability), scaled by the per-reading data weights.
"""

from typing import Optional

import numpy as np
import torch
import torch.nn as nn


class DataMisfit(nn.Module):
    """
    Weighted least-squares data misfit φ_d = ||W_d(d_obs - F(p))||².

    Parameters
    ----------
    simulation : ForwardOperator
        Forward operator mapping solve-space parameters to predicted data
    data : torch.Tensor
        Observed data in the solve space
    weights : torch.Tensor, optional
        Data weights (default: uniform weighting)
    device : str, optional
        PyTorch device ('cpu' or 'cuda')
    dtype : torch.dtype, optional
        Data type for computations
    """

    def __init__(
        self,
        simulation,
        data: torch.Tensor,
        weights: Optional[torch.Tensor] = None,
        device: str = "cpu",
        dtype: torch.dtype = torch.float64,
    ):
        super().__init__()
        self.simulation = simulation
        self.device = device
        self.dtype = dtype

        if isinstance(data, np.ndarray):
            data = torch.tensor(data, dtype=dtype, device=device)
        self.register_buffer("data_obs", data.to(dtype=dtype, device=device))

        if weights is not None:
            if isinstance(weights, np.ndarray):
                weights = torch.tensor(weights, dtype=dtype, device=device)
            if weights.shape != self.data_obs.shape:
                raise ValueError(
                    f"weights have shape {tuple(weights.shape)}, "
                    f"data have shape {tuple(self.data_obs.shape)}"
                )
            self.register_buffer("weights", weights.to(dtype=dtype, device=device))
        else:
            self.register_buffer("weights", torch.ones_like(self.data_obs))

        self.n_data = len(self.data_obs)

    def residual(self, params: torch.Tensor) -> torch.Tensor:
        """Weighted residual W_d(d_obs - F(p))."""
        return self.weights * (self.data_obs - self.simulation(params))

    def forward(self, params: torch.Tensor) -> torch.Tensor:
        """
        Compute data misfit: φ_d = ||W_d(d_obs - F(p))||²

        Parameters
        ----------
        params : torch.Tensor
            Solve-space model

        Returns
        -------
        torch.Tensor
            Data misfit value
        """
        return torch.sum(self.residual(params) ** 2)

    def rms(self, params: torch.Tensor) -> float:
        return rms(self.residual(params))


def rms(residual: torch.Tensor) -> float:
    """Root-mean-square of a residual vector."""
    if residual.numel() == 0:
        return 0.0
    return torch.sqrt(torch.mean(residual**2)).item()


def mean_absolute_misfit(residual: torch.Tensor) -> float:
    if residual.numel() == 0:
        return 0.0
    return torch.mean(torch.abs(residual)).item()
