from .grid import GridGeometry, ModelGrid, build_grid, locate
from .operators import d2dx2, ddx, kron, roughness_operator, sdiag, speye

__all__ = [
    "GridGeometry",
    "ModelGrid",
    "build_grid",
    "locate",
    "d2dx2",
    "ddx",
    "kron",
    "roughness_operator",
    "sdiag",
    "speye",
]
