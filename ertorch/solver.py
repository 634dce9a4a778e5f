"""
Regularized Gauss-Newton / Levenberg-Marquardt update.

Solves the normal equations

    (JᵀJ + μI + λCᵀC) Δp = Jᵀr [- λCᵀC p] [+ μ(p_ref - p)]

for the model update, where μ is the damping factor and λ the product of the
regularization and smoothing factors. The Jacobian of the footprint operator
does not depend on the model, so the normal matrix is factorised once per run
and reused for every iteration.
"""

import logging
from typing import Optional, Tuple

import torch

from .config import Constraints
from .errors import NumericalInstabilityError
from .maps import LinearMapping, LogMapping
from .regularization import Roughness

logger = logging.getLogger(__name__)

# reciprocal condition estimate below which the factorisation is rejected
RCOND_TOLERANCE = 1e-14
# first damping tried when escalating from zero damping
DAMPING_FLOOR = 1e-8
DAMPING_ESCALATION = 10.0
# smallest resistivity a model cell may take, in ohm·m
MIN_RESISTIVITY = 1e-6


class RegularizedSolver:
    """
    Damped, smoothness-regularized least-squares model update.

    Parameters
    ----------
    jacobian : torch.Tensor
        (n_data, n_cells) sensitivity matrix, already scaled by the data weights
    regularization : Roughness
        Roughness term providing CᵀC
    damping : float, optional
        Marquardt damping μ added to the diagonal
    smoothness : float, optional
        Roughness weight λ
    smooth_model : bool, optional
        Subtract the roughness gradient of the current model from the
        right-hand side, so that smoothness constrains the model rather than
        only the update (default: True)
    max_retries : int, optional
        Number of x10 damping escalations before giving up (default: 5)
    log_space : bool, optional
        Parameters are log resistivity (True) or chargeability (False)
    constraints : Constraints, optional
        Bounds applied to the physical model after each update
    reference : torch.Tensor, optional
        (n_cells,) solve-space reference model; the damping term pulls the
        model towards it instead of only limiting the step
    """

    def __init__(
        self,
        jacobian: torch.Tensor,
        regularization: Roughness,
        damping: float = 0.01,
        smoothness: float = 0.01,
        smooth_model: bool = True,
        max_retries: int = 5,
        log_space: bool = True,
        constraints: Optional[Constraints] = None,
        reference: Optional[torch.Tensor] = None,
    ):
        self.jacobian = jacobian
        self.regularization = regularization
        self.damping = float(damping)
        self.smoothness = float(smoothness)
        self.smooth_model = smooth_model
        self.max_retries = max_retries
        self.log_space = log_space
        self.constraints = constraints
        self.reference = reference
        self.mapping = LogMapping() if log_space else LinearMapping()

        self.retries = 0
        self._factor = None
        self._roughness_gram = None

    @property
    def n_cells(self) -> int:
        return self.jacobian.shape[1]

    def normal_matrix(self) -> torch.Tensor:
        """JᵀJ + μI + λCᵀC at the current damping."""
        J = self.jacobian
        if self._roughness_gram is None:
            self._roughness_gram = self.regularization.gram()
        eye = torch.eye(self.n_cells, dtype=J.dtype, device=J.device)
        return J.T @ J + self.damping * eye + self.smoothness * self._roughness_gram

    def _escalate(self, reason: str):
        if self.retries >= self.max_retries:
            raise NumericalInstabilityError(
                f"Normal equations remain unsolvable after {self.retries} damping "
                f"escalations (damping={self.damping:.3g}): {reason}",
                damping=self.damping,
                retries=self.retries,
            )
        previous = self.damping
        self.damping = (
            self.damping * DAMPING_ESCALATION if self.damping > 0 else DAMPING_FLOOR
        )
        self.retries += 1
        self._factor = None
        logger.warning(
            "%s; damping raised from %.3g to %.3g (retry %d of %d)",
            reason,
            previous,
            self.damping,
            self.retries,
            self.max_retries,
        )

    def factorize(self) -> torch.Tensor:
        """
        Cholesky factor of the normal matrix, escalating damping until it is
        well conditioned.

        Raises
        ------
        NumericalInstabilityError
            If the matrix is still singular after ``max_retries`` escalations
        """
        while self._factor is None:
            N = self.normal_matrix()
            if not torch.isfinite(N).all():
                self._escalate("Normal matrix has non-finite entries")
                continue

            L, info = torch.linalg.cholesky_ex(N)
            if info.item() != 0 or not torch.isfinite(L).all():
                self._escalate("Cholesky factorisation failed")
                continue

            diag = torch.diagonal(L)
            rcond = (diag.min() / diag.max()).item() ** 2
            if rcond < RCOND_TOLERANCE:
                self._escalate(f"Normal matrix is ill-conditioned (rcond={rcond:.2e})")
                continue

            logger.debug(
                "Normal matrix factorised: n=%d, damping=%.3g, rcond~%.2e",
                self.n_cells,
                self.damping,
                rcond,
            )
            self._factor = L
        return self._factor

    def step(self, params: torch.Tensor, residual: torch.Tensor) -> torch.Tensor:
        """
        Model update Δp for the current model and weighted residual.

        Parameters
        ----------
        params : torch.Tensor
            (n_cells,) current solve-space model
        residual : torch.Tensor
            (n_data,) weighted residual, observed minus predicted

        Returns
        -------
        torch.Tensor
            (n_cells,) update Δp
        """
        while True:
            L = self.factorize()
            rhs = self.jacobian.T @ residual
            if self.smooth_model:
                rhs = rhs - self.smoothness * (self._roughness_gram @ params)
            if self.reference is not None:
                rhs = rhs + self.damping * (self.reference - params)
            dp = torch.cholesky_solve(rhs.unsqueeze(1), L).squeeze(1)
            if torch.isfinite(dp).all():
                return dp
            self._escalate("Model update has non-finite entries")

    def update(
        self, params: torch.Tensor, residual: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Apply one regularized update.

        Returns
        -------
        params : torch.Tensor
            New solve-space model
        values : torch.Tensor
            New model in physical units, within the constraints
        """
        dp = self.step(params, residual)
        values = apply_constraints(
            self.mapping(params + dp), self.constraints, positive=self.log_space
        )
        return self.mapping.inverse(values), values


def apply_constraints(
    values: torch.Tensor,
    constraints: Optional[Constraints] = None,
    positive: bool = False,
) -> torch.Tensor:
    """Clip a physical model to its bounds; resistivity stays above 1e-6 ohm·m."""
    lower = constraints.min if constraints is not None else None
    upper = constraints.max if constraints is not None else None
    if positive:
        lower = MIN_RESISTIVITY if lower is None else max(lower, MIN_RESISTIVITY)
    if lower is None and upper is None:
        return values
    return torch.clamp(values, min=lower, max=upper)
