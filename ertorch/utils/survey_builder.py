"""
Synthetic electrode layouts and data for ertorch.

Electrode configurations are ``(a, b, m, n)`` tuples of electrode numbers
along a line of equally spaced electrodes numbered from zero.
"""

from typing import List, Optional, Sequence, Tuple

import torch

from ..config import DataType
from ..discretize.grid import GridGeometry
from ..maps import mapping_for
from ..simulation import ForwardOperator
from ..survey import DataPoint, Survey

Configuration = Tuple[int, int, int, int]


def dipole_dipole_line(
    n_electrodes: int, a: int = 1, n_max: int = 6
) -> List[Configuration]:
    """
    Dipole-dipole configurations A-B ... M-N along a line.

    Parameters
    ----------
    n_electrodes : int
        Number of electrodes on the line
    a : int, optional
        Dipole length, in electrode spacings
    n_max : int, optional
        Largest dipole separation factor

    Examples
    --------
    >>> len(dipole_dipole_line(9, a=1, n_max=5))
    20
    """
    configurations = []
    for n in range(1, n_max + 1):
        for i in range(n_electrodes):
            b = i + a
            m = b + n * a
            last = m + a
            if last >= n_electrodes:
                break
            configurations.append((i, b, m, last))
    return configurations


def wenner_line(n_electrodes: int, a_max: Optional[int] = None) -> List[Configuration]:
    """Wenner-alpha configurations A-M-N-B with equal spacings ``a``."""
    a_max = a_max or (n_electrodes - 1) // 3
    configurations = []
    for a in range(1, a_max + 1):
        for i in range(n_electrodes - 3 * a):
            configurations.append((i, i + 3 * a, i + a, i + 2 * a))
    return configurations


def schlumberger_line(
    n_electrodes: int, mn: int = 1, n_max: Optional[int] = None
) -> List[Configuration]:
    """
    Schlumberger configurations with a fixed M-N dipole of length ``mn`` and
    current electrodes ``n * mn`` away on either side.
    """
    configurations = []
    n = 1
    while n_max is None or n <= n_max:
        span = (2 * n + 1) * mn
        if span >= n_electrodes:
            break
        for i in range(n_electrodes - span):
            m = i + n * mn
            configurations.append((i, i + span, m, m + mn))
        n += 1
    return configurations


def _placeholder_points(configurations: Sequence[Configuration]) -> List[DataPoint]:
    return [DataPoint(float("nan"), float("nan"), 1.0, *c) for c in configurations]


def make_survey(
    configurations: Sequence[Configuration],
    electrode_spacing: float = 1.0,
    dtype: torch.dtype = torch.float64,
) -> Survey:
    """Survey geometry of a set of configurations, without measured values."""
    return Survey(
        _placeholder_points(configurations),
        electrode_spacing=electrode_spacing,
        dtype=dtype,
    )


def simulate_data(
    configurations: Sequence[Configuration],
    model: torch.Tensor,
    geometry: GridGeometry,
    electrode_spacing: float = 1.0,
    data_type: DataType = DataType.RESISTIVITY,
    noise_level: float = 0.0,
    seed: Optional[int] = None,
) -> List[DataPoint]:
    """
    Synthetic readings predicted by the forward operator.

    Parameters
    ----------
    configurations : sequence of tuple
        Electrode numbers (a, b, m, n) of every reading
    model : torch.Tensor
        Physical model on ``geometry``, row-major by depth
    geometry : GridGeometry
        Grid the model is defined on; normally ``build_grid(make_survey(...))``
    electrode_spacing : float, optional
        Distance between consecutive electrodes, in metres
    data_type : DataType, optional
        Resistivity or chargeability
    noise_level : float, optional
        Relative Gaussian noise added to the predicted values; when positive
        it is also reported as the standard deviation of each reading
    seed : int, optional
        Seed of the noise generator

    Returns
    -------
    list of DataPoint
    """
    survey = make_survey(configurations, electrode_spacing)
    simulation = ForwardOperator(survey, geometry, mapping=mapping_for(data_type))
    values = simulation.dpred(torch.as_tensor(model, dtype=torch.float64))

    std = None
    if noise_level > 0:
        generator = torch.Generator()
        if seed is not None:
            generator.manual_seed(seed)
        noise = torch.randn(values.shape, generator=generator, dtype=values.dtype)
        std = noise_level * torch.abs(values)
        values = values + std * noise

    points = []
    for i, configuration in enumerate(configurations):
        points.append(
            DataPoint(
                x=survey.pseudo_x[i].item(),
                y=survey.pseudo_depths[i].item(),
                value=values[i].item(),
                electrode_a=configuration[0],
                electrode_b=configuration[1],
                electrode_m=configuration[2],
                electrode_n=configuration[3],
                standard_deviation=std[i].item() if std is not None else None,
            )
        )
    return points
