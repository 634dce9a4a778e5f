"""
Tests for the synthetic model and survey builders.
"""

import numpy as np
import pytest
import torch

from ertorch.utils import (
    create_block_in_halfspace,
    dipole_dipole_line,
    get_indices_box,
    layered_model,
    make_survey,
    schlumberger_line,
    simulate_data,
    wenner_line,
)

torch.set_default_dtype(torch.float64)


class TestModelBuilder:

    def test_get_indices_box(self):
        cell_centers = torch.tensor([[0.0, 0.0], [1.0, 1.0], [2.0, 2.0]])
        mask = get_indices_box([1.0, 1.0], [0.8, 0.8], cell_centers)
        assert mask.tolist() == [False, True, False]

    def test_get_indices_box_numpy(self):
        mask = get_indices_box(
            np.array([0.0, 0.0]), np.array([1.5, 1.5]), np.array([[0.0, 1.0], [2.0, 0.0]])
        )
        assert mask.tolist() == [True, False]

    def test_get_indices_box_shape(self):
        with pytest.raises(ValueError):
            get_indices_box([0.0, 0.0, 0.0], [1.0, 1.0], torch.zeros(3, 2))

    def test_layered_model(self, geometry):
        model = layered_model(geometry, [geometry.dz, 2 * geometry.dz], [1.0, 2.0, 3.0])
        section = model.reshape(geometry.nz, geometry.nx)
        for row, expected in enumerate([1.0, 2.0, 3.0]):
            assert torch.all(section[row] == expected)

    def test_layered_model_checks(self, geometry):
        with pytest.raises(ValueError):
            layered_model(geometry, [1.0], [1.0])
        with pytest.raises(ValueError):
            layered_model(geometry, [2.0, 1.0], [1.0, 2.0, 3.0])

    def test_block_in_halfspace(self, geometry):
        model = create_block_in_halfspace(
            geometry, [4.0, 1.44], [0.6, 0.1], background_value=100.0, block_value=10.0
        )
        assert model.shape == (24,)
        assert (model == 10.0).sum().item() == 2
        assert (model == 100.0).sum().item() == 22


class TestSurveyBuilder:

    def test_dipole_dipole_line(self):
        configurations = dipole_dipole_line(9, a=1, n_max=5)
        assert len(configurations) == 20
        assert configurations[0] == (0, 1, 2, 3)
        assert configurations[-1] == (0, 1, 7, 8)
        assert set(make_survey(configurations).array_types) == {"dipole-dipole"}

    def test_wenner_line(self):
        configurations = wenner_line(10)
        assert (0, 3, 1, 2) in configurations
        assert (0, 9, 3, 6) in configurations
        assert set(make_survey(configurations).array_types) == {"wenner"}

    def test_schlumberger_line(self):
        configurations = schlumberger_line(9, mn=1)
        assert (0, 5, 2, 3) in configurations
        survey = make_survey([c for c in configurations if c[1] - c[0] > 3])
        assert set(survey.array_types) == {"schlumberger"}

    def test_simulate_data(self, configurations, geometry, two_layer_model):
        points = simulate_data(configurations, two_layer_model, geometry)
        assert len(points) == 20
        assert all(p.standard_deviation is None for p in points)
        assert all(10.0 <= p.value <= 100.0 for p in points)
        assert points[0].electrodes == (0, 1, 2, 3)
        assert points[0].x == pytest.approx(1.5)

    def test_simulate_data_noise(self, configurations, geometry, two_layer_model):
        clean = simulate_data(configurations, two_layer_model, geometry)
        first = simulate_data(
            configurations, two_layer_model, geometry, noise_level=0.05, seed=7
        )
        second = simulate_data(
            configurations, two_layer_model, geometry, noise_level=0.05, seed=7
        )
        assert [p.value for p in first] == [p.value for p in second]
        assert [p.value for p in first] != [p.value for p in clean]
        for noisy, exact in zip(first, clean):
            assert noisy.standard_deviation == pytest.approx(0.05 * exact.value)
