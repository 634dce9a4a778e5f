"""
Model building utilities for ertorch.

This module provides utility functions for creating synthetic models on the
inversion grid and extracting indices of geometric shapes.
"""

from typing import Sequence, Union

import numpy as np
import torch

from ..discretize.grid import GridGeometry


def get_indices_box(
    center: Union[torch.Tensor, np.ndarray, list],
    dimensions: Union[torch.Tensor, np.ndarray, list],
    cell_centers: Union[torch.Tensor, np.ndarray],
) -> torch.Tensor:
    """
    Get boolean indices for cells whose centers lie inside a box.

    Parameters
    ----------
    center : torch.Tensor, numpy.ndarray, or list
        (x, z) location of the center of the box
    dimensions : torch.Tensor, numpy.ndarray, or list
        Half-widths of the box along x and z
    cell_centers : torch.Tensor or numpy.ndarray
        Cell center locations with shape (n_cells, 2). Can also be a
        GridGeometry.

    Returns
    -------
    torch.Tensor
        Boolean tensor of shape (n_cells,) indicating which cells are inside the box

    Examples
    --------
    >>> cell_centers = torch.tensor([[0.0, 0.0], [1.0, 1.0], [2.0, 2.0]])
    >>> mask = get_indices_box([1.0, 1.0], [0.8, 0.8], cell_centers)
    """
    if isinstance(cell_centers, GridGeometry):
        cell_centers = cell_centers.cell_centers()

    if not isinstance(center, torch.Tensor):
        center = torch.tensor(center, dtype=torch.float64)
    if not isinstance(dimensions, torch.Tensor):
        dimensions = torch.tensor(dimensions, dtype=torch.float64)
    if not isinstance(cell_centers, torch.Tensor):
        cell_centers = torch.tensor(cell_centers, dtype=torch.float64)

    if center.shape != (2,) or dimensions.shape != (2,) or cell_centers.shape[1] != 2:
        raise ValueError(
            "Dimension mismatch between center, dimensions, and cell_centers"
        )

    lower_bounds = center - dimensions
    upper_bounds = center + dimensions
    return torch.all(
        (cell_centers >= lower_bounds) & (cell_centers <= upper_bounds), dim=1
    )


def layered_model(
    geometry: GridGeometry,
    interfaces: Sequence[float],
    values: Sequence[float],
) -> torch.Tensor:
    """
    Horizontally layered model.

    Parameters
    ----------
    geometry : GridGeometry
        Inversion grid
    interfaces : sequence of float
        Increasing depths of the layer boundaries, in metres
    values : sequence of float
        Property of each layer, from the surface down; one more than
        ``interfaces``

    Returns
    -------
    torch.Tensor
        Model with shape (n_cells,), row-major by depth

    Examples
    --------
    >>> # conductive overburden on a resistive basement
    >>> model = layered_model(geometry, [2.0], [10.0, 100.0])
    """
    if len(values) != len(interfaces) + 1:
        raise ValueError(
            f"{len(interfaces)} interfaces need {len(interfaces) + 1} layer values, "
            f"got {len(values)}"
        )
    if any(b <= a for a, b in zip(interfaces, interfaces[1:])):
        raise ValueError(f"Interfaces must increase with depth, got {interfaces}")

    z = geometry.cell_centers()[:, 1]
    layer = torch.bucketize(z, torch.tensor(interfaces, dtype=z.dtype))
    return torch.tensor(values, dtype=torch.float64)[layer]


def create_block_in_halfspace(
    geometry: GridGeometry,
    block_center: Union[torch.Tensor, np.ndarray, list],
    block_dimensions: Union[torch.Tensor, np.ndarray, list],
    background_value: float = 100.0,
    block_value: float = 10.0,
) -> torch.Tensor:
    """
    Create a rectangular anomaly in a homogeneous half-space.

    Parameters
    ----------
    geometry : GridGeometry
        Inversion grid
    block_center : torch.Tensor, numpy.ndarray, or list
        (x, z) center of the block
    block_dimensions : torch.Tensor, numpy.ndarray, or list
        Half-widths of the block along x and z
    background_value : float, default=100.0
        Physical property value for the background
    block_value : float, default=10.0
        Physical property value for the block

    Returns
    -------
    torch.Tensor
        Physical property model with shape (n_cells,)
    """
    model = torch.full((geometry.n_cells,), background_value, dtype=torch.float64)
    block_mask = get_indices_box(block_center, block_dimensions, geometry)
    model[block_mask] = block_value
    return model
