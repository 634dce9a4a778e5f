"""
Roughness regularization on the 2D inversion grid.
"""

from typing import Optional, Sequence

import torch
import torch.nn as nn

from .discretize.grid import GridGeometry
from .discretize.operators import roughness_operator


class Roughness(nn.Module):
    """
    Second-order smoothness regularization: φ_m = α ||W C p||²

    ``C`` stacks the second differences of the model along x and along z
    (first differences along an axis with fewer than three cells). ``W`` is
    diagonal and weights each row by the mean depth weight of the cells in
    its stencil.

    Parameters
    ----------
    geometry : GridGeometry
        Inversion grid
    alpha : float, optional
        Regularization parameter (default: 1.0)
    depth_weights : sequence of float, optional
        Weight of each grid layer, from the surface down (default: uniform)
    device : str, optional
        PyTorch device ('cpu' or 'cuda')
    dtype : torch.dtype, optional
        Data type for computations
    """

    def __init__(
        self,
        geometry: GridGeometry,
        alpha: float = 1.0,
        depth_weights: Optional[Sequence[float]] = None,
        device: str = "cpu",
        dtype: torch.dtype = torch.float64,
    ):
        super().__init__()
        self.geometry = geometry
        self.alpha = alpha
        self.device = device
        self.dtype = dtype
        self.register_buffer(
            "operator",
            roughness_operator(geometry.nx, geometry.nz, dtype=dtype, device=device),
        )

        if depth_weights is None:
            self.register_buffer("row_weights", None)
        else:
            if len(depth_weights) != geometry.nz:
                raise ValueError(
                    f"depth_weights has {len(depth_weights)} values, grid has "
                    f"{geometry.nz} layers"
                )
            layer = torch.tensor(depth_weights, dtype=dtype, device=device)
            cell_weights = layer.repeat_interleave(geometry.nx)
            stencil = (self.operator.to_dense() != 0).to(dtype)
            self.register_buffer(
                "row_weights", (stencil @ cell_weights) / stencil.sum(dim=1)
            )

    def apply(self, params: torch.Tensor) -> torch.Tensor:
        """W C p"""
        cp = torch.sparse.mm(self.operator, params.unsqueeze(1)).squeeze(1)
        if self.row_weights is not None:
            cp = self.row_weights * cp
        return cp

    def forward(self, params: torch.Tensor) -> torch.Tensor:
        """
        Compute roughness: α × ||W C p||²

        Returns
        -------
        torch.Tensor
            Regularization objective value
        """
        return self.alpha * torch.sum(self.apply(params) ** 2)

    def gram(self) -> torch.Tensor:
        """Dense (WC)ᵀ(WC), the roughness block of the normal matrix."""
        dense = self.operator.to_dense()
        if self.row_weights is not None:
            dense = self.row_weights.unsqueeze(1) * dense
        return dense.T @ dense

    def gradient(self, params: torch.Tensor) -> torch.Tensor:
        """(WC)ᵀ(WC) p (half the gradient of ||W C p||²)."""
        wcp = self.apply(params)
        if self.row_weights is not None:
            wcp = self.row_weights * wcp
        return torch.sparse.mm(self.operator.t(), wcp.unsqueeze(1)).squeeze(1)


def model_roughness(params: torch.Tensor, regularization: Roughness) -> float:
    """Norm ||W C p|| of the model roughness."""
    return torch.linalg.vector_norm(regularization.apply(params)).item()
