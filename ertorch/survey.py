"""
Survey geometry for 2D DC/IP data.

This module turns imported 4-electrode readings into the geometric quantities
used by the grid builder and the forward operator: electrode locations along
the line, electrode separations, array classification and pseudo-locations.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import torch

# Median depth of investigation (Edwards, 1977) normalised to half of the
# characteristic separation of each array type.
ARRAY_DEPTH_FACTORS = {
    "wenner": 0.35,
    "schlumberger": 0.38,
    "dipole-dipole": 0.48,
    "general": 0.42,
}
ARRAY_TYPES = tuple(ARRAY_DEPTH_FACTORS)

# Source and receiver midpoints closer than this (in electrode spacings) are
# treated as a symmetric (Wenner/Schlumberger) configuration.
SYMMETRY_TOLERANCE = 0.1

_DATAPOINT_ALIASES = {
    "electrodeA": "electrode_a",
    "electrodeB": "electrode_b",
    "electrodeM": "electrode_m",
    "electrodeN": "electrode_n",
    "standardDeviation": "standard_deviation",
}


@dataclass(frozen=True)
class DataPoint:
    """
    One field measurement.

    Parameters
    ----------
    x, y : float
        Pseudo-section location reported by the importer (carried through)
    value : float
        Apparent resistivity (ohm·m) or chargeability (ms)
    electrode_a, electrode_b, electrode_m, electrode_n : float
        Electrode numbers of the current (A, B) and potential (M, N) electrodes
    standard_deviation : float, optional
        Measurement error in the units of ``value``
    """

    x: float
    y: float
    value: float
    electrode_a: float
    electrode_b: float
    electrode_m: float
    electrode_n: float
    standard_deviation: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataPoint":
        values = {}
        for key, value in data.items():
            name = _DATAPOINT_ALIASES.get(key, key)
            if name in cls.__dataclass_fields__:
                values[name] = value
        missing = [
            name
            for name in ("value", "electrode_a", "electrode_b", "electrode_m", "electrode_n")
            if values.get(name) is None
        ]
        if missing:
            raise ValueError(f"Data point is missing {', '.join(missing)}")
        values.setdefault("x", math.nan)
        values.setdefault("y", math.nan)
        return cls(**values)

    @property
    def electrodes(self):
        return (self.electrode_a, self.electrode_b, self.electrode_m, self.electrode_n)


def as_data_points(data: Sequence[Union[DataPoint, Dict[str, Any]]]) -> List[DataPoint]:
    """Validate the shape of imported data once, at the API boundary."""
    points = []
    for item in data:
        if isinstance(item, DataPoint):
            points.append(item)
        elif isinstance(item, dict):
            points.append(DataPoint.from_dict(item))
        else:
            raise TypeError(
                f"Data points must be DataPoint or dict, not {type(item).__name__}"
            )
    return points


class Survey:
    """
    Geometry of a set of 4-electrode readings along one line.

    Parameters
    ----------
    data_points : sequence of DataPoint
        Imported readings
    electrode_spacing : float, optional
        Distance in metres between consecutive electrode numbers
    dtype : torch.dtype, optional
        Data type for computations (default: torch.float64)
    device : str, optional
        PyTorch device ('cpu' or 'cuda')
    """

    def __init__(
        self,
        data_points: Sequence[DataPoint],
        electrode_spacing: float = 1.0,
        dtype: torch.dtype = torch.float64,
        device: str = "cpu",
    ):
        self.data_points = tuple(data_points)
        self.electrode_spacing = float(electrode_spacing)
        self.dtype = dtype
        self.device = device

        electrodes = [p.electrodes for p in self.data_points]
        self.electrode_locations = (
            torch.tensor(electrodes, dtype=dtype, device=device).reshape(-1, 4)
            * self.electrode_spacing
        )
        self.values = torch.tensor(
            [p.value for p in self.data_points], dtype=dtype, device=device
        )
        self.standard_deviations = torch.tensor(
            [
                math.nan if p.standard_deviation is None else p.standard_deviation
                for p in self.data_points
            ],
            dtype=dtype,
            device=device,
        )

        self._classify()

    @property
    def n_data(self) -> int:
        return len(self.data_points)

    def electrode_separations(self, electrode_pair="all") -> Dict[str, torch.Tensor]:
        """
        Calculate the separation between specific or all electrode pairs.

        Parameters
        ----------
        electrode_pair : {'all', 'AB', 'MN', 'AM', 'AN', 'BM', 'BN'} or list
            Which electrode separation pairs to compute.

        Returns
        -------
        dict
            Separation tensor of shape (n_data,) for each requested pair
        """
        if isinstance(electrode_pair, str):
            if electrode_pair.lower() == "all":
                electrode_pair = ["AB", "MN", "AM", "AN", "BM", "BN"]
            else:
                electrode_pair = [electrode_pair]
        electrode_pair = [pair.upper() for pair in electrode_pair]

        columns = {"A": 0, "B": 1, "M": 2, "N": 3}
        separations = {}
        for pair in electrode_pair:
            if len(pair) != 2 or any(c not in columns for c in pair):
                raise ValueError(f"Unknown electrode pair '{pair}'")
            first = self.electrode_locations[:, columns[pair[0]]]
            second = self.electrode_locations[:, columns[pair[1]]]
            separations[pair] = torch.abs(first - second)
        return separations

    def _classify(self):
        loc = self.electrode_locations
        a, b, m, n = loc[:, 0], loc[:, 1], loc[:, 2], loc[:, 3]
        tol = SYMMETRY_TOLERANCE * self.electrode_spacing

        sep = self.electrode_separations(["AB", "MN"])
        src_mid = (a + b) / 2
        rx_mid = (m + n) / 2
        # distance between the source and receiver dipole centres
        ds = torch.abs(rx_mid - src_mid)

        symmetric = ds < tol
        wenner = symmetric & (torch.abs(sep["AB"] - 3 * sep["MN"]) < tol)
        disjoint = (torch.maximum(a, b) <= torch.minimum(m, n) + tol) | (
            torch.maximum(m, n) <= torch.minimum(a, b) + tol
        )
        dipole = ~symmetric & disjoint

        self.array_type_index = torch.full(
            (self.n_data,),
            ARRAY_TYPES.index("general"),
            dtype=torch.long,
            device=self.device,
        )
        self.array_type_index[symmetric] = ARRAY_TYPES.index("schlumberger")
        self.array_type_index[wenner] = ARRAY_TYPES.index("wenner")
        self.array_type_index[dipole] = ARRAY_TYPES.index("dipole-dipole")

        self.separations = torch.where(
            symmetric,
            sep["AB"],
            torch.where(disjoint, ds, torch.maximum(sep["AB"], ds)),
        )
        factors = torch.tensor(
            [ARRAY_DEPTH_FACTORS[name] for name in ARRAY_TYPES],
            dtype=self.dtype,
            device=self.device,
        )
        self.pseudo_depths = 0.5 * self.separations * factors[self.array_type_index]
        self.pseudo_x = (src_mid + rx_mid) / 2
        self.array_lengths = loc.max(dim=1).values - loc.min(dim=1).values

    @property
    def array_types(self) -> List[str]:
        return [ARRAY_TYPES[i] for i in self.array_type_index.tolist()]

    def pseudo_locations(self) -> torch.Tensor:
        """
        Pseudo-locations of the readings.

        Returns
        -------
        torch.Tensor
            (n_data, 2) tensor of along-line position and pseudo-depth
        """
        return torch.stack([self.pseudo_x, self.pseudo_depths], dim=1)

    def electrode_span(self):
        """Minimum and maximum electrode positions over all readings."""
        finite = self.electrode_locations[torch.isfinite(self.electrode_locations)]
        if finite.numel() == 0:
            return 0.0, 0.0
        return finite.min().item(), finite.max().item()

    def n_distinct_separations(self) -> int:
        scaled = torch.round(self.separations / self.electrode_spacing * 1e6)
        return int(torch.unique(scaled).numel())

    def valid_mask(self, log_space: bool = True) -> torch.Tensor:
        """
        Readings usable for inversion: finite geometry and value, a non-zero
        separation and, in log space, a strictly positive value.
        """
        mask = torch.isfinite(self.values)
        mask &= torch.isfinite(self.electrode_locations).all(dim=1)
        mask &= self.separations > 0
        mask &= self.pseudo_depths > 0
        if log_space:
            mask &= self.values > 0
        return mask

    def subset(self, mask: torch.Tensor) -> "Survey":
        keep = [p for p, k in zip(self.data_points, mask.tolist()) if k]
        return Survey(keep, self.electrode_spacing, dtype=self.dtype, device=self.device)

    def observed(self, log_space: bool = True) -> torch.Tensor:
        """Observed data in the solve space."""
        return torch.log(self.values) if log_space else self.values.clone()

    def data_weights(self, log_space: bool = True) -> torch.Tensor:
        """
        Data weights from the standard deviations, normalised to a mean of one.

        Readings without a (positive) standard deviation take the mean weight
        of the others; without any standard deviation all weights are one.
        """
        std = self.standard_deviations.clone()
        if log_space:
            # relative error is the standard deviation of log(value)
            std = std / torch.abs(self.values)
        known = torch.isfinite(std) & (std > 0)
        weights = torch.ones_like(std)
        if not torch.any(known):
            return weights
        weights[known] = 1.0 / std[known]
        weights[~known] = weights[known].mean()
        return weights / weights.mean()
