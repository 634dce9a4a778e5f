"""
Tests for run configuration parsing and validation.
"""

import pytest

from ertorch.config import Constraints, DataType, InversionParameters, as_parameters


class TestInversionParameters:

    def test_defaults(self):
        params = InversionParameters()
        assert params.max_iterations == 20
        assert params.convergence_threshold == 1e-3
        assert params.data_type is DataType.RESISTIVITY
        assert params.log_space
        assert params.smooth_model
        assert params.max_cells == (64, 32)
        assert params.smoothness_weight == pytest.approx(0.01)

    def test_from_dict_camel_case(self):
        params = InversionParameters.from_dict(
            {
                "maxIterations": 5,
                "dampingFactor": 0.1,
                "initialModel": [1, 2, 3],
                "constraints": {"minResistivity": 1, "maxResistivity": 1000},
                "progressCallback": None,
                "somethingElse": 3,
            }
        )
        assert params.max_iterations == 5
        assert params.damping_factor == 0.1
        assert params.initial_model == (1.0, 2.0, 3.0)
        assert params.constraints == Constraints(min=1.0, max=1000.0)

    def test_from_dict_snake_case_and_none(self):
        params = InversionParameters.from_dict(
            {"max_iterations": 7, "damping_factor": None, "data_type": "chargeability"}
        )
        assert params.max_iterations == 7
        assert params.damping_factor == 0.01
        assert params.data_type is DataType.CHARGEABILITY
        assert not params.log_space

    def test_to_dict_is_accepted_by_from_dict(self):
        params = InversionParameters(
            max_iterations=3,
            constraints=Constraints(min=5.0),
            max_cells=[16, 8],
        )
        payload = params.to_dict()
        assert payload["maxCells"] == [16, 8]
        assert payload["dataType"] == "resistivity"
        assert InversionParameters.from_dict(payload) == params

    @pytest.mark.parametrize(
        "options",
        [
            {"max_iterations": 0},
            {"max_iterations": 2.5},
            {"damping_factor": -1.0},
            {"convergence_threshold": float("nan")},
            {"electrode_spacing": 0.0},
            {"doi_factor": 1.5},
            {"max_damping_retries": -1},
            {"max_cells": (64,)},
            {"data_type": "gravity"},
        ],
    )
    def test_invalid(self, options):
        with pytest.raises(ValueError):
            InversionParameters(**options)

    def test_as_parameters(self):
        params = InversionParameters(max_iterations=4)
        assert as_parameters(params) is params
        assert as_parameters({"maxIterations": 4}) == params
        with pytest.raises(TypeError):
            as_parameters(42)


class TestConstraints:

    def test_bounds_checked(self):
        with pytest.raises(ValueError):
            Constraints(min=10.0, max=1.0)
        with pytest.raises(ValueError):
            Constraints(max=float("inf"))

    def test_chargeability_aliases(self):
        constraints = Constraints.from_dict(
            {"minChargeability": 0, "maxChargeability": 50}
        )
        assert constraints.min == 0.0
        assert constraints.max == 50.0

    def test_prior_information(self):
        constraints = Constraints.from_dict(
            {"referenceModel": [10, 20], "depthWeights": [1, 2, 3], "minResistivity": 1}
        )
        assert constraints.reference_model == (10.0, 20.0)
        assert constraints.depth_weights == (1.0, 2.0, 3.0)
        assert constraints.min == 1.0

        params = InversionParameters(constraints=constraints)
        payload = params.to_dict()
        assert payload["constraints"]["referenceModel"] == [10.0, 20.0]
        assert InversionParameters.from_dict(payload) == params

    @pytest.mark.parametrize(
        "options",
        [
            {"reference_model": [1.0, float("nan")]},
            {"depth_weights": [1.0, 0.0]},
            {"depth_weights": [1.0, float("inf")]},
        ],
    )
    def test_invalid_prior_information(self, options):
        with pytest.raises(ValueError):
            Constraints(**options)


def test_initial_model_must_be_finite():
    with pytest.raises(ValueError, match="initial_model"):
        InversionParameters(initial_model=[1.0, float("nan")])
    with pytest.raises(ValueError):
        InversionParameters.from_dict({"initialModel": [float("inf")] * 3})
