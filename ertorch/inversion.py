"""
Iteration controller for 2D ERT/IP inversions.

A run moves through ``INIT -> ITERATING`` and ends in one of ``CONVERGED``,
``MAX_ITERATIONS``, ``CANCELLED`` or ``FAILED``. Stopping rules and progress
reporting are directives called at the end of every iteration.
"""

import logging
import time
import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import torch

from .config import InversionParameters, as_parameters
from .data_misfit import DataMisfit, rms
from .discretize.grid import (
    MIN_DATA,
    MIN_SEPARATIONS,
    GridGeometry,
    ModelGrid,
    build_grid,
    locate,
)
from .errors import (
    DegenerateGeometryError,
    InsufficientDataError,
    RejectedDataWarning,
)
from .maps import mapping_for
from .quality import QualityIndicators, evaluate, has_converged, relative_change
from .regularization import Roughness
from .simulation import ForwardOperator, sensitivity_matrix
from .solver import RegularizedSolver, apply_constraints
from .survey import Survey, as_data_points

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, float, float], None]


class InversionState(str, Enum):
    INIT = "init"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class InversionResult:
    """
    Outcome of an inversion run.

    Parameters
    ----------
    model : ModelGrid
        Recovered model (the lowest-RMS model for a cancelled run)
    iterations : int
        Number of completed iterations
    final_rms : float
        RMS of the returned model
    convergence : tuple of float
        RMS after each iteration
    quality_indicators : QualityIndicators
        Diagnostics of the returned model
    runtime : float
        Wall-clock seconds from setup to the end of the run
    converged : bool
        True only for the CONVERGED state
    state : InversionState
        Terminal state
    initial_rms : float
        RMS of the starting model
    stop_reason : str
        Human-readable reason for stopping
    rejected_points : tuple of int
        Indices of the input data points excluded from the inversion
    """

    model: ModelGrid
    iterations: int
    final_rms: float
    convergence: Tuple[float, ...]
    quality_indicators: QualityIndicators
    runtime: float
    converged: bool
    state: InversionState
    initial_rms: float
    stop_reason: str = ""
    rejected_points: Tuple[int, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model.to_dict(),
            "iterations": self.iterations,
            "finalRms": self.final_rms,
            "convergence": list(self.convergence),
            "qualityIndicators": self.quality_indicators.to_dict(),
            "runtime": self.runtime,
            "converged": self.converged,
            "state": self.state.value,
            "initialRms": self.initial_rms,
            "stopReason": self.stop_reason,
            "rejectedPoints": list(self.rejected_points),
        }


class InversionDirective:
    """
    Base class for inversion directives.

    Directives implement stopping rules and reporting; the controller calls
    them at the start of the run, after every iteration and at the end.
    """

    def __init__(self):
        self.inversion = None

    def initialize(self):
        """Called at start of inversion"""
        pass

    def endIter(self):
        """Called at end of each iteration"""
        pass

    def finish(self):
        """Called at end of inversion"""
        pass


class RelativeMisfitChange(InversionDirective):
    """
    Stop when the relative RMS change of an iteration is at or below
    ``threshold``.
    """

    def __init__(self, threshold: float = 1e-3):
        super().__init__()
        self.threshold = threshold

    def endIter(self):
        history = self.inversion.convergence
        previous = history[-2] if len(history) > 1 else self.inversion.initial_rms
        if has_converged(history[-1], previous, self.threshold):
            self.inversion.converged = True
            self.inversion.reason_for_stop = (
                f"Relative RMS change {self.inversion.convergence_delta:.2e} "
                f"<= {self.threshold:.2e}"
            )


class TargetMisfit(InversionDirective):
    """
    Stop when the RMS reaches ``target_rms``. A target of zero disables it.
    """

    def __init__(self, target_rms: float = 0.0):
        super().__init__()
        self.target_rms = target_rms

    def endIter(self):
        if self.target_rms <= 0:
            return
        current = self.inversion.convergence[-1]
        if current <= self.target_rms:
            self.inversion.converged = True
            self.inversion.reason_for_stop = (
                f"Target RMS reached: {current:.2e} <= {self.target_rms:.2e}"
            )


class ProgressReporter(InversionDirective):
    """
    Forward ``(iteration, rms, convergence_delta)`` to a callback after every
    iteration.
    """

    def __init__(self, callback: ProgressCallback):
        super().__init__()
        self.callback = callback

    def endIter(self):
        inv = self.inversion
        self.callback(inv.iteration, inv.convergence[-1], inv.convergence_delta)


def _is_cancelled(cancellation) -> bool:
    if cancellation is None:
        return False
    if hasattr(cancellation, "is_set"):
        return cancellation.is_set()
    return bool(cancellation())


class Inversion:
    """
    Regularized least-squares inversion of one dataset.

    Parameters
    ----------
    data_points : sequence of DataPoint or dict
        Imported readings
    parameters : InversionParameters or dict, optional
        Run configuration
    directives : list of InversionDirective, optional
        Stopping rules and reporters; by default the relative RMS change and
        target RMS rules derived from ``parameters``
    cancellation : threading.Event, CancellationToken or callable, optional
        Polled at the start of every iteration after the first
    dtype : torch.dtype, optional
        Data type for computations (default: torch.float64)
    device : str, optional
        PyTorch device ('cpu' or 'cuda')

    Examples
    --------
    >>> inv = Inversion(points, {"maxIterations": 10})
    >>> result = inv.run()
    >>> result.model.as_section()
    """

    def __init__(
        self,
        data_points: Sequence,
        parameters=None,
        directives: Optional[List[InversionDirective]] = None,
        cancellation=None,
        dtype: torch.dtype = torch.float64,
        device: str = "cpu",
    ):
        self.data_points = as_data_points(data_points)
        self.parameters: InversionParameters = as_parameters(
            parameters if parameters is not None else InversionParameters()
        )
        if directives is None:
            directives = [
                RelativeMisfitChange(self.parameters.convergence_threshold),
                TargetMisfit(self.parameters.target_rms),
            ]
        self.directives = directives
        self.cancellation = cancellation
        self.dtype = dtype
        self.device = device

        for directive in self.directives:
            directive.inversion = self

        self.state = InversionState.INIT
        self.survey: Optional[Survey] = None
        self.geometry: Optional[GridGeometry] = None
        self.rejected_points: Tuple[int, ...] = ()
        self.params = None
        self.residual = None
        self.iteration = 0
        self.initial_rms = None
        self.convergence: List[float] = []
        self.convergence_delta = float("inf")
        self.converged = False
        self.reason_for_stop = None

    def _reject(self, survey: Survey, indices: torch.Tensor, mask: torch.Tensor, reason):
        dropped = indices[~mask].tolist()
        if dropped:
            message = f"Rejected {len(dropped)} data point(s) {reason}: {dropped}"
            logger.warning(message)
            warnings.warn(message, RejectedDataWarning, stacklevel=4)
            self.rejected_points = self.rejected_points + tuple(dropped)
            survey = survey.subset(mask)
            indices = indices[mask]
        return survey, indices

    def setup(self):
        """
        Build the survey, grid, operators and starting model.

        Raises
        ------
        InsufficientDataError
            Fewer than four usable points or fewer than two distinct separations
        DegenerateGeometryError
            Electrodes collapse to a single position
        """
        params = self.parameters
        n_points = len(self.data_points)
        if n_points < MIN_DATA:
            raise InsufficientDataError(
                f"At least {MIN_DATA} data points are required, got {n_points}",
                n_data=n_points,
            )

        survey = Survey(
            self.data_points,
            electrode_spacing=params.electrode_spacing,
            dtype=self.dtype,
            device=self.device,
        )
        x_min, x_max = survey.electrode_span()
        if x_max - x_min <= 0:
            raise DegenerateGeometryError(
                "All electrodes share one position; the grid would have zero extent"
            )
        depths = survey.pseudo_depths[torch.isfinite(survey.pseudo_depths)]
        if not torch.any(depths > 0):
            raise DegenerateGeometryError(
                "Every reading has zero electrode separation; the grid would have "
                "zero depth"
            )

        indices = torch.arange(n_points)
        survey, indices = self._reject(
            survey,
            indices,
            survey.valid_mask(log_space=params.log_space).cpu(),
            "with invalid values or geometry",
        )
        geometry = build_grid(survey, max_cells=params.max_cells)
        survey, indices = self._reject(
            survey,
            indices,
            locate(survey, geometry).cpu(),
            "outside the inversion grid",
        )

        n_separations = survey.n_distinct_separations()
        if survey.n_data < MIN_DATA or n_separations < MIN_SEPARATIONS:
            raise InsufficientDataError(
                f"Need at least {MIN_DATA} usable points and {MIN_SEPARATIONS} "
                f"distinct separations, got {survey.n_data} points and "
                f"{n_separations} separations",
                n_data=survey.n_data,
                n_separations=n_separations,
            )

        self.survey = survey
        self.geometry = geometry
        self.mapping = mapping_for(params.data_type)

        self.simulation = ForwardOperator(
            survey, geometry, mapping=self.mapping, dtype=self.dtype, device=self.device
        )
        weights = survey.data_weights(log_space=params.log_space)
        self.dmisfit = DataMisfit(
            self.simulation,
            survey.observed(log_space=params.log_space),
            weights=weights,
            device=self.device,
            dtype=self.dtype,
        )
        constraints = params.constraints
        self.regularization = Roughness(
            geometry,
            depth_weights=self._per_grid(
                constraints.depth_weights if constraints else None,
                geometry.nz,
                "depth_weights",
                "layers",
            ),
            device=self.device,
            dtype=self.dtype,
        )

        # model independent: built once for the whole run
        self.jacobian = sensitivity_matrix(self.simulation)
        self.solver = RegularizedSolver(
            weights.unsqueeze(1) * self.jacobian,
            self.regularization,
            damping=params.damping_factor,
            smoothness=params.smoothness_weight,
            smooth_model=params.smooth_model,
            max_retries=params.max_damping_retries,
            log_space=params.log_space,
            constraints=params.constraints,
            reference=self.reference_model(),
        )

        self.params = self.starting_model()
        self.residual = self.dmisfit.residual(self.params)
        self.initial_rms = rms(self.residual)
        logger.info(
            "Inversion setup: %d data points, %dx%d grid, initial RMS %.4g",
            survey.n_data,
            geometry.nx,
            geometry.nz,
            self.initial_rms,
        )

    def _per_grid(self, values, expected: int, name: str, unit: str):
        """``values`` when its length matches the grid, otherwise None with a warning."""
        if values is None or len(values) == expected:
            return values
        message = (
            f"{name} has {len(values)} values but the grid has {expected} {unit}; "
            "ignoring it"
        )
        logger.warning(message)
        warnings.warn(message, UserWarning, stacklevel=4)
        return None

    def starting_model(self) -> torch.Tensor:
        """
        Solve-space starting model: ``initial_model`` when it matches the grid,
        otherwise a homogeneous half-space at the mean observed value (the
        geometric mean for resistivity).
        """
        n_cells = self.geometry.n_cells
        positive = self.parameters.log_space
        initial = self._per_grid(
            self.parameters.initial_model, n_cells, "initial_model", "cells"
        )

        if initial is not None:
            values = torch.tensor(initial, dtype=self.dtype, device=self.device)
        else:
            mean = self.dmisfit.data_obs.mean()
            values = self.mapping(
                torch.full((n_cells,), mean.item(), dtype=self.dtype, device=self.device)
            )
        values = apply_constraints(values, self.parameters.constraints, positive)
        return self.mapping.inverse(values)

    def reference_model(self) -> Optional[torch.Tensor]:
        """Solve-space reference model from the constraints, if it matches the grid."""
        constraints = self.parameters.constraints
        reference = self._per_grid(
            constraints.reference_model if constraints else None,
            self.geometry.n_cells,
            "reference_model",
            "cells",
        )
        if reference is None:
            return None
        values = torch.tensor(reference, dtype=self.dtype, device=self.device)
        values = apply_constraints(values, constraints, self.parameters.log_space)
        return self.mapping.inverse(values)

    def run(self) -> InversionResult:
        """
        Run the inversion to a terminal state.

        Returns
        -------
        InversionResult

        Raises
        ------
        InsufficientDataError, DegenerateGeometryError, NumericalInstabilityError
            The run fails; the error is logged and re-raised
        """
        start = time.perf_counter()
        try:
            self.setup()
            self._call_directives("initialize")

            best_params, best_residual = self.params, self.residual
            best_rms = self.initial_rms

            self.state = InversionState.ITERATING
            max_iter = self.parameters.max_iterations
            while self.iteration < max_iter:
                if self.iteration > 0 and _is_cancelled(self.cancellation):
                    self.state = InversionState.CANCELLED
                    self.reason_for_stop = (
                        f"Cancelled after {self.iteration} iterations"
                    )
                    break

                self.params, _ = self.solver.update(self.params, self.residual)
                self.residual = self.dmisfit.residual(self.params)
                current = rms(self.residual)
                previous = self.convergence[-1] if self.convergence else self.initial_rms
                self.convergence_delta = relative_change(current, previous)
                self.convergence.append(current)
                self.iteration += 1

                if current < best_rms or self.iteration == 1:
                    best_params, best_residual, best_rms = (
                        self.params,
                        self.residual,
                        current,
                    )

                logger.info(
                    "Iteration %3d: RMS = %.4e, relative change = %.3e",
                    self.iteration,
                    current,
                    self.convergence_delta,
                )
                self._call_directives("endIter")
                if self.converged:
                    self.state = InversionState.CONVERGED
                    break
            else:
                self.state = InversionState.MAX_ITERATIONS
                self.reason_for_stop = f"Reached {max_iter} iterations"

            if self.state is InversionState.CANCELLED:
                self.params, self.residual = best_params, best_residual

            self._call_directives("finish")
        except Exception:
            self.state = InversionState.FAILED
            logger.exception("Inversion failed after %d iterations", self.iteration)
            raise

        result = self._result(time.perf_counter() - start)
        logger.info(
            "Inversion finished (%s) after %d iterations in %.2fs: RMS %.4e",
            self.state.value,
            result.iterations,
            result.runtime,
            result.final_rms,
        )
        return result

    def _result(self, runtime: float) -> InversionResult:
        values = apply_constraints(
            self.mapping(self.params),
            self.parameters.constraints,
            positive=self.parameters.log_space,
        )
        quality = evaluate(
            self.params,
            self.residual,
            self.survey,
            self.regularization,
            jacobian=self.jacobian,
            doi_factor=self.parameters.doi_factor,
        )
        return InversionResult(
            model=ModelGrid(self.geometry, values.detach().cpu().numpy()),
            iterations=self.iteration,
            final_rms=quality.rms_error,
            convergence=tuple(self.convergence),
            quality_indicators=quality,
            runtime=runtime,
            converged=self.state is InversionState.CONVERGED,
            state=self.state,
            initial_rms=self.initial_rms,
            stop_reason=self.reason_for_stop or "",
            rejected_points=self.rejected_points,
        )

    def _call_directives(self, directive_type: str):
        """Call all directives of specified type"""
        for directive in self.directives:
            if hasattr(directive, directive_type):
                getattr(directive, directive_type)()


def invert(
    data_points: Sequence,
    parameters=None,
    progress_callback: Optional[ProgressCallback] = None,
    cancellation=None,
) -> InversionResult:
    """
    Invert apparent resistivity or chargeability data for a 2D model.

    Parameters
    ----------
    data_points : sequence of DataPoint or dict
        Imported readings (at least four, with two distinct separations)
    parameters : InversionParameters or dict, optional
        Run configuration; camelCase keys are accepted
    progress_callback : callable, optional
        Called as ``callback(iteration, rms, convergence_delta)`` after every
        iteration
    cancellation : threading.Event, CancellationToken or callable, optional
        Checked at the start of every iteration after the first; a cancelled
        run returns its lowest-RMS model with ``converged=False``

    Returns
    -------
    InversionResult

    Raises
    ------
    InsufficientDataError
    DegenerateGeometryError
    NumericalInstabilityError
    """
    parameters = as_parameters(
        parameters if parameters is not None else InversionParameters()
    )
    directives: List[InversionDirective] = []
    if progress_callback is not None:
        directives.append(ProgressReporter(progress_callback))
    directives.append(RelativeMisfitChange(parameters.convergence_threshold))
    directives.append(TargetMisfit(parameters.target_rms))

    return Inversion(
        data_points, parameters, directives=directives, cancellation=cancellation
    ).run()
