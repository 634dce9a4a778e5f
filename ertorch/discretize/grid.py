"""
Rectangular inversion grid derived from the electrode layout.

The horizontal extent covers the electrode span with one cell per electrode
spacing; the depth extent is twice the deepest pseudo-depth of the survey with
one layer per electrode spacing. Both counts are capped to bound solver cost.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np
import torch

from ..errors import DegenerateGeometryError, InsufficientDataError
from ..survey import Survey

logger = logging.getLogger(__name__)

MIN_DATA = 4
MIN_SEPARATIONS = 2
MAX_CELLS = (64, 32)
MIN_CELLS = 2
# grid depth as a multiple of the deepest pseudo-depth
DEPTH_EXTENT_FACTOR = 2.0
# relative span below which the electrode layout is considered collapsed
DEGENERATE_TOLERANCE = 1e-9


@dataclass(frozen=True, eq=False)
class GridGeometry:
    """
    Discretization of the 2D cross-section.

    Depth ``z`` is positive downwards from the surface. Cells are uniform with
    size ``dx`` by ``dz``.
    """

    nx: int
    nz: int
    x_origin: float
    dx: float
    dz: float
    electrode_spacing: float
    max_separation: float

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.nx, self.nz)

    @property
    def n_cells(self) -> int:
        return self.nx * self.nz

    @property
    def width(self) -> float:
        return self.nx * self.dx

    @property
    def depth(self) -> float:
        return self.nz * self.dz

    @property
    def x_edges(self) -> np.ndarray:
        return self.x_origin + self.dx * np.arange(self.nx + 1)

    @property
    def z_edges(self) -> np.ndarray:
        return self.dz * np.arange(self.nz + 1)

    def cell_centers(self, dtype=torch.float64, device=None) -> torch.Tensor:
        """
        Cell centres, row-major by depth.

        Returns
        -------
        torch.Tensor
            (n_cells, 2) tensor of (x, z)
        """
        x = self.x_origin + self.dx * (
            torch.arange(self.nx, dtype=dtype, device=device) + 0.5
        )
        z = self.dz * (torch.arange(self.nz, dtype=dtype, device=device) + 0.5)
        zz, xx = torch.meshgrid(z, x, indexing="ij")
        return torch.stack([xx.reshape(-1), zz.reshape(-1)], dim=1)

    def contains(self, x: torch.Tensor, z: torch.Tensor) -> torch.Tensor:
        """Points inside the grid (edges included)."""
        tol = DEGENERATE_TOLERANCE * self.width
        return (
            (x >= self.x_origin - tol)
            & (x <= self.x_origin + self.width + tol)
            & (z >= 0)
            & (z <= self.depth + tol)
        )

    def to_dict(self):
        return {
            "origin": {"x": self.x_origin, "z": 0.0},
            "spacing": {"dx": self.dx, "dz": self.dz},
            "cellCount": {"nx": self.nx, "nz": self.nz},
            "depth": self.depth,
            "electrodeSpacing": self.electrode_spacing,
            "maxSeparation": self.max_separation,
        }


@dataclass(frozen=True, eq=False)
class ModelGrid:
    """
    Property model on the inversion grid.

    ``values`` holds one value per cell, row-major by depth (``iz * nx + ix``);
    ``coordinates`` holds the matching (x, z) cell centres.
    """

    grid_geometry: GridGeometry
    values: np.ndarray
    coordinates: np.ndarray = field(default=None)

    def __post_init__(self):
        values = np.array(self.values, dtype=float).reshape(-1)
        if values.size != self.grid_geometry.n_cells:
            raise ValueError(
                f"Model has {values.size} values, grid has "
                f"{self.grid_geometry.n_cells} cells"
            )
        values.setflags(write=False)
        object.__setattr__(self, "values", values)
        if self.coordinates is None:
            coordinates = self.grid_geometry.cell_centers().numpy()
            coordinates.setflags(write=False)
            object.__setattr__(self, "coordinates", coordinates)

    @property
    def dimensions(self) -> Tuple[int, int]:
        return self.grid_geometry.shape

    def as_section(self) -> np.ndarray:
        """Values as an (nz, nx) array, shallowest row first."""
        return self.values.reshape(self.grid_geometry.nz, self.grid_geometry.nx)

    def with_values(self, values) -> "ModelGrid":
        return ModelGrid(self.grid_geometry, values, self.coordinates)

    def to_dict(self):
        return {
            "dimensions": {"x": self.grid_geometry.nx, "z": self.grid_geometry.nz},
            "values": self.values.tolist(),
            "coordinates": {
                "x": self.coordinates[: self.grid_geometry.nx, 0].tolist(),
                "z": self.coordinates[:: self.grid_geometry.nx, 1].tolist(),
            },
            "gridGeometry": self.grid_geometry.to_dict(),
        }


def build_grid(
    survey: Survey,
    max_cells: Optional[Tuple[int, int]] = None,
) -> GridGeometry:
    """
    Build the inversion grid of a survey.

    Parameters
    ----------
    survey : Survey
        Survey whose readings define the electrode span and pseudo-depths
    max_cells : tuple of int, optional
        Cap on (nx, nz), default (64, 32)

    Returns
    -------
    GridGeometry

    Raises
    ------
    InsufficientDataError
        If the survey has fewer than four readings
    DegenerateGeometryError
        If the electrode span or the pseudo-depth extent is zero
    """
    if survey.n_data < MIN_DATA:
        raise InsufficientDataError(
            f"At least {MIN_DATA} data points are required, got {survey.n_data}",
            n_data=survey.n_data,
        )
    max_nx, max_nz = max_cells or MAX_CELLS
    spacing = survey.electrode_spacing

    x_min, x_max = survey.electrode_span()
    span = x_max - x_min
    if not span > DEGENERATE_TOLERANCE * spacing:
        raise DegenerateGeometryError(
            f"Electrodes span {span:.3g} m; the grid would have zero extent"
        )

    depths = survey.pseudo_depths[torch.isfinite(survey.pseudo_depths)]
    max_depth = depths.max().item() if depths.numel() else 0.0
    if not max_depth > DEGENERATE_TOLERANCE * spacing:
        raise DegenerateGeometryError(
            "All readings have zero electrode separation; the grid would have zero depth"
        )
    depth = DEPTH_EXTENT_FACTOR * max_depth

    nx = int(min(max(round(span / spacing), MIN_CELLS), max_nx))
    nz = int(min(max(math.ceil(depth / spacing - 1e-9), MIN_CELLS), max_nz))

    lengths = survey.array_lengths[torch.isfinite(survey.array_lengths)]
    geometry = GridGeometry(
        nx=nx,
        nz=nz,
        x_origin=x_min,
        dx=span / nx,
        dz=depth / nz,
        electrode_spacing=spacing,
        max_separation=lengths.max().item() if lengths.numel() else 0.0,
    )
    logger.debug(
        "Grid %dx%d cells, dx=%.3g m, dz=%.3g m, depth=%.3g m",
        nx,
        nz,
        geometry.dx,
        geometry.dz,
        geometry.depth,
    )
    return geometry


def locate(survey: Survey, geometry: GridGeometry) -> torch.Tensor:
    """Readings whose pseudo-location maps to a grid cell."""
    return geometry.contains(survey.pseudo_x, survey.pseudo_depths)
