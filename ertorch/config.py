"""
Run configuration for ertorch inversions.

``InversionParameters`` is immutable and validated once, at the API boundary.
``from_dict`` accepts the host application's camelCase payload keys as well as
the snake_case attribute names.
"""

import math
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class DataType(str, Enum):
    """Measured property. Resistivity is inverted in log space."""

    RESISTIVITY = "resistivity"
    CHARGEABILITY = "chargeability"


# camelCase payload key -> attribute name
_PARAMETER_ALIASES = {
    "maxIterations": "max_iterations",
    "convergenceThreshold": "convergence_threshold",
    "regularizationFactor": "regularization_factor",
    "smoothingFactor": "smoothing_factor",
    "dampingFactor": "damping_factor",
    "initialModel": "initial_model",
    "dataType": "data_type",
    "electrodeSpacing": "electrode_spacing",
    "targetRms": "target_rms",
    "smoothModel": "smooth_model",
    "maxDampingRetries": "max_damping_retries",
    "maxCells": "max_cells",
    "doiFactor": "doi_factor",
}

_CONSTRAINT_ALIASES = {
    "minResistivity": "min",
    "maxResistivity": "max",
    "minChargeability": "min",
    "maxChargeability": "max",
    "referenceModel": "reference_model",
    "depthWeights": "depth_weights",
}


def _finite_tuple(name: str, values) -> Tuple[float, ...]:
    values = tuple(float(v) for v in values)
    if not all(math.isfinite(v) for v in values):
        raise ValueError(f"{name} must contain only finite values")
    return values


@dataclass(frozen=True)
class Constraints:
    """
    Bounds and prior information applied to the model.

    Parameters
    ----------
    min : float, optional
        Lower bound (ohm·m or ms)
    max : float, optional
        Upper bound (ohm·m or ms)
    reference_model : tuple of float, optional
        Physical model, one value per cell, that the damping term pulls the
        solution towards. Ignored with a warning if its length does not match
        the grid.
    depth_weights : tuple of float, optional
        Positive roughness weight of each grid layer, from the surface down.
        Ignored with a warning if its length does not match the grid.
    """

    min: Optional[float] = None
    max: Optional[float] = None
    reference_model: Optional[Tuple[float, ...]] = None
    depth_weights: Optional[Tuple[float, ...]] = None

    def __post_init__(self):
        for name in ("min", "max"):
            value = getattr(self, name)
            if value is not None and not math.isfinite(value):
                raise ValueError(f"Constraint '{name}' must be finite, got {value}")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(
                f"Constraint min ({self.min}) is larger than max ({self.max})"
            )
        if self.reference_model is not None:
            object.__setattr__(
                self,
                "reference_model",
                _finite_tuple("reference_model", self.reference_model),
            )
        if self.depth_weights is not None:
            weights = _finite_tuple("depth_weights", self.depth_weights)
            if any(w <= 0 for w in weights):
                raise ValueError(f"depth_weights must be positive, got {weights}")
            object.__setattr__(self, "depth_weights", weights)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Constraints":
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            name = _CONSTRAINT_ALIASES.get(key, key)
            if name not in known:
                continue
            if value is None:
                continue
            values[name] = float(value) if name in ("min", "max") else value
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min": self.min,
            "max": self.max,
            "referenceModel": (
                list(self.reference_model) if self.reference_model else None
            ),
            "depthWeights": list(self.depth_weights) if self.depth_weights else None,
        }


@dataclass(frozen=True)
class InversionParameters:
    """
    Immutable configuration for one inversion run.

    Parameters
    ----------
    max_iterations : int
        Iteration cap
    convergence_threshold : float
        Relative RMS change below which the run is considered converged
    regularization_factor : float
        Weight of the roughness term (multiplied by ``smoothing_factor``)
    smoothing_factor : float
        Weight of the roughness term (multiplied by ``regularization_factor``)
    damping_factor : float
        Marquardt damping added to the diagonal of the normal matrix
    initial_model : tuple of float, optional
        Starting model, one value per cell (row-major by depth). Ignored with a
        warning if its length does not match the grid.
    constraints : Constraints, optional
        Bounds applied after every update
    data_type : DataType
        Resistivity (log-space solve) or chargeability (linear-space solve)
    electrode_spacing : float
        Distance between consecutive electrode numbers, in metres
    target_rms : float
        RMS at or below which the run stops as converged; 0 disables it
    smooth_model : bool
        Penalize the roughness of the model itself (True) or only of the
        update (False, pure Levenberg-Marquardt)
    max_damping_retries : int
        Number of x10 damping escalations before giving up on a singular solve
    max_cells : tuple of int
        Grid cap as (max_nx, max_nz)
    doi_factor : float
        Depth of investigation as a fraction of the largest array length
    """

    max_iterations: int = 20
    convergence_threshold: float = 1e-3
    regularization_factor: float = 0.1
    smoothing_factor: float = 0.1
    damping_factor: float = 0.01
    initial_model: Optional[Tuple[float, ...]] = None
    constraints: Optional[Constraints] = None
    data_type: DataType = DataType.RESISTIVITY
    electrode_spacing: float = 1.0
    target_rms: float = 0.0
    smooth_model: bool = True
    max_damping_retries: int = 5
    max_cells: Tuple[int, int] = field(default=(64, 32))
    doi_factor: float = 0.35

    def __post_init__(self):
        # frozen: coerce through object.__setattr__
        object.__setattr__(self, "data_type", DataType(self.data_type))
        object.__setattr__(self, "max_cells", tuple(int(n) for n in self.max_cells))
        if self.initial_model is not None:
            object.__setattr__(
                self, "initial_model", _finite_tuple("initial_model", self.initial_model)
            )
        if isinstance(self.constraints, dict):
            object.__setattr__(
                self, "constraints", Constraints.from_dict(self.constraints)
            )

        if int(self.max_iterations) != self.max_iterations or self.max_iterations < 1:
            raise ValueError(
                f"max_iterations must be a positive integer, got {self.max_iterations}"
            )
        for name in (
            "convergence_threshold",
            "regularization_factor",
            "smoothing_factor",
            "damping_factor",
            "target_rms",
        ):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"{name} must be finite and >= 0, got {value}")
        if not math.isfinite(self.electrode_spacing) or self.electrode_spacing <= 0:
            raise ValueError(
                f"electrode_spacing must be positive, got {self.electrode_spacing}"
            )
        if not 0 < self.doi_factor <= 1:
            raise ValueError(f"doi_factor must be in (0, 1], got {self.doi_factor}")
        if self.max_damping_retries < 0:
            raise ValueError(
                f"max_damping_retries must be >= 0, got {self.max_damping_retries}"
            )
        if len(self.max_cells) != 2 or min(self.max_cells) < 2:
            raise ValueError(
                f"max_cells must be two integers >= 2, got {self.max_cells}"
            )

    @property
    def smoothness_weight(self) -> float:
        """Combined weight of the roughness term in the normal equations."""
        return self.regularization_factor * self.smoothing_factor

    @property
    def log_space(self) -> bool:
        return self.data_type is DataType.RESISTIVITY

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InversionParameters":
        """
        Build parameters from a JSON-like mapping.

        Unknown keys (e.g. ``progressCallback`` in host payloads) are ignored.
        ``None`` values fall back to the defaults.
        """
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            name = _PARAMETER_ALIASES.get(key, key)
            if name not in known or value is None:
                continue
            values[name] = value

        constraints = values.get("constraints")
        if isinstance(constraints, dict):
            values["constraints"] = Constraints.from_dict(constraints)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "maxIterations": self.max_iterations,
            "convergenceThreshold": self.convergence_threshold,
            "regularizationFactor": self.regularization_factor,
            "smoothingFactor": self.smoothing_factor,
            "dampingFactor": self.damping_factor,
            "initialModel": list(self.initial_model) if self.initial_model else None,
            "constraints": (
                self.constraints.to_dict() if self.constraints is not None else None
            ),
            "dataType": self.data_type.value,
            "electrodeSpacing": self.electrode_spacing,
            "targetRms": self.target_rms,
            "smoothModel": self.smooth_model,
            "maxDampingRetries": self.max_damping_retries,
            "maxCells": list(self.max_cells),
            "doiFactor": self.doi_factor,
        }


def as_parameters(options) -> InversionParameters:
    """Coerce a mapping or an ``InversionParameters`` into parameters."""
    if isinstance(options, InversionParameters):
        return options
    if isinstance(options, dict):
        return InversionParameters.from_dict(options)
    raise TypeError(
        f"options must be InversionParameters or dict, not {type(options).__name__}"
    )
