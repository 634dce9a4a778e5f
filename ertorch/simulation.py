"""
Approximate forward operator for 2D ERT/IP pseudo-section data.

Each reading is modelled as a weighted average of the mapped model parameter
over the cells of the inversion grid. The weights (the reading's "footprint")
depend only on the survey geometry: a Gaussian window centred on the
pseudo-location, widening with electrode separation, and attenuated with
depth relative to the reading's pseudo-depth. With ``p = log(resistivity)``
the predicted apparent resistivity is a weighted geometric mean of the cell
resistivities.

Because the prediction is linear in ``p`` the sensitivity matrix equals the
footprint matrix and is model independent.
"""

import logging
from typing import Optional

import torch
import torch.nn as nn

from .discretize.grid import GridGeometry
from .maps import LogMapping
from .survey import Survey

logger = logging.getLogger(__name__)

# fraction of the electrode separation used as lateral footprint width
LATERAL_WIDTH_FACTOR = 0.25


def footprint_weights(
    survey: Survey,
    geometry: GridGeometry,
    dtype: torch.dtype = torch.float64,
    device: Optional[str] = None,
) -> torch.Tensor:
    r"""
    Footprint weights of every reading over the grid cells.

    .. math::
        w_{ij} \propto \frac{\exp\left(-\frac{1}{2}\left(\frac{\Delta x}{\sigma_x}\right)^2
        - \frac{1}{2}\left(\frac{\Delta z}{\sigma_z}\right)^2\right)}{1 + z_j / z_i}

    with :math:`\sigma_x = \max(dx, s_i / 4)` and :math:`\sigma_z = \max(dz, z_i)`,
    where :math:`s_i` is the separation and :math:`z_i` the pseudo-depth of
    reading i.

    Parameters
    ----------
    survey : Survey
        Readings with their pseudo-locations
    geometry : GridGeometry
        Inversion grid

    Returns
    -------
    torch.Tensor
        (n_data, n_cells) dense tensor whose rows sum to one
    """
    device = device if device is not None else survey.device
    centers = geometry.cell_centers(dtype=dtype, device=device)
    x_cell = centers[:, 0].unsqueeze(0)
    z_cell = centers[:, 1].unsqueeze(0)

    x_data = survey.pseudo_x.to(dtype=dtype, device=device).unsqueeze(1)
    z_data = survey.pseudo_depths.to(dtype=dtype, device=device).unsqueeze(1)
    separation = survey.separations.to(dtype=dtype, device=device).unsqueeze(1)

    sigma_x = torch.clamp(LATERAL_WIDTH_FACTOR * separation, min=geometry.dx)
    sigma_z = torch.clamp(z_data, min=geometry.dz)

    gaussian = torch.exp(
        -0.5 * ((x_cell - x_data) / sigma_x) ** 2
        - 0.5 * ((z_cell - z_data) / sigma_z) ** 2
    )
    weights = gaussian / (1.0 + z_cell / z_data)

    # never all-zero: sigma_x >= dx keeps the nearest column of cells in reach
    return weights / weights.sum(dim=1, keepdim=True)


class ForwardOperator(nn.Module):
    """
    Linear forward operator ``d = W p`` in the solve space.

    Parameters
    ----------
    survey : Survey
        Readings to predict
    geometry : GridGeometry
        Inversion grid
    mapping : torch.nn.Module, optional
        Mapping from solve-space parameters to the physical property
        (default: LogMapping)
    dtype : torch.dtype, optional
        Data type for computations (default: torch.float64)
    device : str, optional
        PyTorch device ('cpu' or 'cuda')

    Examples
    --------
    >>> fwd = ForwardOperator(survey, geometry)
    >>> log_rho = torch.full((geometry.n_cells,), math.log(100.0))
    >>> dpred = fwd(log_rho)            # log apparent resistivity
    >>> rho_a = fwd.dpred(torch.exp(log_rho))  # apparent resistivity
    """

    def __init__(
        self,
        survey: Survey,
        geometry: GridGeometry,
        mapping: Optional[nn.Module] = None,
        dtype: torch.dtype = torch.float64,
        device: str = "cpu",
    ):
        super().__init__()
        self.survey = survey
        self.geometry = geometry
        self.mapping = mapping if mapping is not None else LogMapping()
        self.dtype = dtype
        self.device = device

        self.register_buffer(
            "weights", footprint_weights(survey, geometry, dtype=dtype, device=device)
        )
        logger.debug(
            "Forward operator: %d readings x %d cells", *tuple(self.weights.shape)
        )

    @property
    def n_data(self) -> int:
        return self.weights.shape[0]

    @property
    def n_cells(self) -> int:
        return self.weights.shape[1]

    def forward(self, params: torch.Tensor) -> torch.Tensor:
        """
        Predicted data in the solve space.

        Parameters
        ----------
        params : torch.Tensor
            (n_cells,) solve-space model

        Returns
        -------
        torch.Tensor
            (n_data,) predicted data, in the same space as ``params``
        """
        if params.shape[-1] != self.n_cells:
            raise ValueError(
                f"Model has {params.shape[-1]} parameters, grid has {self.n_cells} cells"
            )
        return self.weights @ params.to(dtype=self.dtype, device=self.weights.device)

    def dpred(self, model: torch.Tensor) -> torch.Tensor:
        """Apparent values predicted for a model in physical units."""
        return self.mapping(self.forward(self.mapping.inverse(model)))

    def getJ(self, params: Optional[torch.Tensor] = None) -> torch.Tensor:
        """
        Sensitivity matrix d(dpred)/d(params).

        The operator is linear so ``params`` does not affect the result; it is
        accepted for symmetry with model-dependent operators.
        """
        return self.weights.clone()


def sensitivity_matrix(operator: ForwardOperator) -> torch.Tensor:
    """(n_data, n_cells) Jacobian of the forward operator in the solve space."""
    return operator.getJ()
