"""
Shared synthetic survey fixtures.

The reference layout is a line of 9 electrodes with a dipole-dipole survey
(a = 1, n = 1..5), i.e. 20 readings over an 8 x 3 inversion grid.
"""

import pytest
import torch

from ertorch.discretize import build_grid
from ertorch.utils import dipole_dipole_line, layered_model, make_survey, simulate_data

torch.set_default_dtype(torch.float64)


@pytest.fixture
def configurations():
    return dipole_dipole_line(9, a=1, n_max=5)


@pytest.fixture
def survey(configurations):
    return make_survey(configurations)


@pytest.fixture
def geometry(survey):
    return build_grid(survey)


@pytest.fixture
def two_layer_model(geometry):
    """Conductive top row (10 ohm·m) over a resistive basement (100 ohm·m)."""
    return layered_model(geometry, [geometry.dz], [10.0, 100.0])


@pytest.fixture
def two_layer_points(configurations, geometry, two_layer_model):
    return simulate_data(configurations, two_layer_model, geometry)


@pytest.fixture
def homogeneous_points(configurations, geometry):
    model = torch.full((geometry.n_cells,), 100.0)
    return simulate_data(configurations, model, geometry)


@pytest.fixture
def scenario_parameters():
    return {
        "maxIterations": 20,
        "convergenceThreshold": 0.001,
        "dampingFactor": 0.01,
        "smoothingFactor": 0.1,
        "regularizationFactor": 0.1,
    }
