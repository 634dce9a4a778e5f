"""
Test suite for the inversion controller in ertorch

Covers the INIT checks, the stopping rules, cancellation, and the synthetic
scenarios the engine is expected to solve.
"""

import threading
import warnings

import numpy as np
import pytest
import torch

import ertorch.inversion
from ertorch import (
    CancellationToken,
    Constraints,
    DataPoint,
    DegenerateGeometryError,
    InsufficientDataError,
    Inversion,
    InversionParameters,
    InversionState,
    NumericalInstabilityError,
    RejectedDataWarning,
    invert,
)
from ertorch.inversion import (
    InversionDirective,
    ProgressReporter,
    RelativeMisfitChange,
    TargetMisfit,
)
from ertorch.utils import layered_model, simulate_data

torch.set_default_dtype(torch.float64)


def shallow_and_deep(result):
    section = result.model.as_section()
    return section[0].mean(), section[1:].mean()


class TestInputChecks:

    def test_three_points(self, two_layer_points):
        with pytest.raises(InsufficientDataError):
            invert(two_layer_points[:3], InversionParameters())

    def test_single_separation(self):
        points = [
            DataPoint(0.0, 0.0, 50.0, i, i + 1, i + 2, i + 3) for i in range(6)
        ]
        with pytest.raises(InsufficientDataError) as excinfo:
            invert(points)
        assert excinfo.value.n_separations == 1

    def test_collapsed_electrodes(self):
        points = [DataPoint(0.0, 0.0, 50.0, 4, 4, 4, 4)] * 5
        with pytest.raises(DegenerateGeometryError):
            invert(points)

    def test_zero_separations(self):
        points = [DataPoint(0.0, 0.0, 50.0, i, i, i, i) for i in range(6)]
        with warnings.catch_warnings():
            warnings.simplefilter("error", RejectedDataWarning)
            with pytest.raises(DegenerateGeometryError):
                invert(points)

    def test_invalid_points_rejected(self, two_layer_points):
        bad = [
            DataPoint(0.0, 0.0, -5.0, 0, 1, 2, 3),
            DataPoint(0.0, 0.0, float("nan"), 0, 1, 2, 3),
        ]
        with pytest.warns(RejectedDataWarning):
            result = invert(two_layer_points + bad, {"maxIterations": 2})
        assert result.rejected_points == (20, 21)

    def test_too_many_rejected(self, two_layer_points):
        points = [
            DataPoint(p.x, p.y, -p.value, *p.electrodes) for p in two_layer_points[:17]
        ] + two_layer_points[17:]
        with pytest.warns(RejectedDataWarning):
            with pytest.raises(InsufficientDataError):
                invert(points)

    def test_dict_inputs(self, two_layer_points):
        payload = [
            {
                "x": p.x,
                "y": p.y,
                "value": p.value,
                "electrodeA": p.electrode_a,
                "electrodeB": p.electrode_b,
                "electrodeM": p.electrode_m,
                "electrodeN": p.electrode_n,
            }
            for p in two_layer_points
        ]
        result = invert(payload, {"maxIterations": 3, "convergenceThreshold": 0})
        assert result.iterations == 3
        assert result.state is InversionState.MAX_ITERATIONS
        assert not result.converged


class TestProperties:

    def test_determinism(self, two_layer_points, scenario_parameters):
        first = invert(two_layer_points, scenario_parameters)
        second = invert(two_layer_points, scenario_parameters)
        assert first.convergence == second.convergence
        assert np.array_equal(first.model.values, second.model.values)

    def test_monotonic_rms_update_only(self, two_layer_points):
        result = invert(
            two_layer_points,
            {"maxIterations": 6, "convergenceThreshold": 0, "smoothModel": False},
        )
        history = [result.initial_rms] + list(result.convergence)
        for previous, current in zip(history, history[1:]):
            assert current <= previous + 1e-12

    def test_first_step_improves(self, two_layer_points, scenario_parameters):
        result = invert(two_layer_points, scenario_parameters)
        assert result.convergence[0] <= result.initial_rms

    def test_homogeneous_round_trip(self, homogeneous_points):
        result = invert(homogeneous_points, InversionParameters())
        assert result.converged
        np.testing.assert_allclose(result.model.values, 100.0, rtol=1e-6)
        assert result.final_rms < 1e-10

    def test_round_trip_from_offset_start(self, homogeneous_points):
        result = invert(
            homogeneous_points, {"initialModel": [50.0] * 24, "maxIterations": 50}
        )
        assert result.initial_rms > 0.5
        np.testing.assert_allclose(result.model.values, 100.0, rtol=1e-2)

    def test_initial_model_is_used(self, two_layer_points, two_layer_model):
        result = invert(
            two_layer_points,
            {"initialModel": two_layer_model.tolist(), "smoothModel": False},
        )
        assert result.converged
        np.testing.assert_allclose(
            result.model.values, two_layer_model.numpy(), rtol=1e-6
        )

    def test_incompatible_initial_model_ignored(self, two_layer_points):
        with pytest.warns(UserWarning, match="initial_model"):
            result = invert(
                two_layer_points, {"initialModel": [1.0, 2.0], "maxIterations": 1}
            )
        assert result.iterations == 1

    def test_single_iteration(self, two_layer_points, scenario_parameters):
        scenario_parameters["maxIterations"] = 1
        result = invert(two_layer_points, scenario_parameters)
        assert len(result.convergence) == 1
        assert result.iterations == 1
        change = abs(result.convergence[0] - result.initial_rms) / result.initial_rms
        assert result.converged == (change <= 0.001)

    def test_positivity(self, configurations, geometry, two_layer_model):
        noisy = simulate_data(
            configurations, two_layer_model, geometry, noise_level=0.3, seed=3
        )
        result = invert(noisy, {"dampingFactor": 0.0, "maxIterations": 5})
        assert np.all(result.model.values > 0)

    def test_constraints(self, two_layer_points):
        result = invert(
            two_layer_points,
            InversionParameters(constraints=Constraints(min=20.0, max=50.0)),
        )
        assert np.all(result.model.values >= 20.0)
        assert np.all(result.model.values <= 50.0)


class TestScenarios:

    def test_two_layer_dipole_dipole(self, two_layer_points, scenario_parameters):
        assert len(two_layer_points) == 20
        result = invert(two_layer_points, scenario_parameters)

        assert result.converged
        assert result.state is InversionState.CONVERGED
        assert 1 <= result.iterations <= 20
        assert len(result.convergence) == result.iterations
        assert result.final_rms < result.initial_rms

        shallow, deep = shallow_and_deep(result)
        assert deep > 1.2 * shallow

        quality = result.quality_indicators
        assert quality.data_misfit == quality.rms_error == result.final_rms
        assert quality.depth_of_investigation == pytest.approx(2.45)
        assert quality.model_roughness >= 0
        assert result.runtime >= 0

    def test_noisy_data_with_errors(self, configurations, geometry, two_layer_model):
        noisy = simulate_data(
            configurations, two_layer_model, geometry, noise_level=0.02, seed=0
        )
        assert all(p.standard_deviation is not None for p in noisy)
        result = invert(noisy, {"maxIterations": 20})
        shallow, deep = shallow_and_deep(result)
        assert deep > shallow

    def test_chargeability(self, configurations, geometry):
        model = layered_model(geometry, [geometry.dz], [5.0, 25.0])
        points = simulate_data(configurations, model, geometry, data_type="chargeability")
        result = invert(points, {"dataType": "chargeability"})
        assert result.state in (InversionState.CONVERGED, InversionState.MAX_ITERATIONS)
        shallow, deep = shallow_and_deep(result)
        assert deep > shallow

    def test_cancel_after_second_iteration(self, two_layer_points, scenario_parameters):
        token = CancellationToken()
        seen = []

        def progress(iteration, rms, delta):
            seen.append(iteration)
            if iteration == 2:
                token.cancel()

        scenario_parameters["convergenceThreshold"] = 0.0
        result = invert(
            two_layer_points,
            scenario_parameters,
            progress_callback=progress,
            cancellation=token,
        )
        assert result.state is InversionState.CANCELLED
        assert result.iterations == 2
        assert not result.converged
        assert seen == [1, 2]
        assert result.final_rms == pytest.approx(min(result.convergence))

    def test_cancel_with_event(self, two_layer_points):
        event = threading.Event()
        event.set()
        result = invert(
            two_layer_points, {"convergenceThreshold": 0.0}, cancellation=event
        )
        # the first iteration always runs
        assert result.iterations == 1
        assert result.state is InversionState.CANCELLED


class TestController:

    def test_progress_callback(self, two_layer_points, scenario_parameters):
        calls = []
        result = invert(
            two_layer_points,
            scenario_parameters,
            progress_callback=lambda *args: calls.append(args),
        )
        assert [c[0] for c in calls] == list(range(1, result.iterations + 1))
        assert [c[1] for c in calls] == list(result.convergence)
        assert calls[0][2] == pytest.approx(
            abs(result.convergence[0] - result.initial_rms) / result.initial_rms
        )

    def test_target_rms(self, two_layer_points):
        result = invert(two_layer_points, {"targetRms": 10.0})
        assert result.converged
        assert result.iterations == 1
        assert "Target" in result.stop_reason

    def test_custom_directives(self, two_layer_points):
        class Counter(InversionDirective):
            def initialize(self):
                self.calls = ["initialize"]

            def endIter(self):
                self.calls.append("endIter")

            def finish(self):
                self.calls.append("finish")

        counter = Counter()
        inv = Inversion(
            two_layer_points,
            {"maxIterations": 2},
            directives=[counter, RelativeMisfitChange(0.0), TargetMisfit(0.0)],
        )
        result = inv.run()
        assert counter.calls == ["initialize", "endIter", "endIter", "finish"]
        assert result.state is InversionState.MAX_ITERATIONS
        assert "2 iterations" in result.stop_reason

    def test_progress_reporter(self, two_layer_points):
        calls = []
        inv = Inversion(
            two_layer_points,
            {"maxIterations": 1},
            directives=[ProgressReporter(lambda *args: calls.append(args))],
        )
        inv.run()
        assert len(calls) == 1

    def test_failure_is_raised(self, two_layer_points, monkeypatch):
        monkeypatch.setattr(
            ertorch.inversion,
            "sensitivity_matrix",
            lambda operator: torch.full_like(operator.weights, float("nan")),
        )
        inv = Inversion(two_layer_points)
        with pytest.raises(NumericalInstabilityError):
            inv.run()
        assert inv.state is InversionState.FAILED

    def test_to_dict(self, two_layer_points):
        result = invert(two_layer_points, {"maxIterations": 2})
        payload = result.to_dict()
        assert payload["model"]["dimensions"] == {"x": 8, "z": 3}
        assert len(payload["model"]["values"]) == 24
        assert payload["iterations"] == 2 or payload["converged"]
        assert payload["state"] == result.state.value
        assert payload["qualityIndicators"]["rmsError"] == result.final_rms
        assert len(payload["qualityIndicators"]["cumulativeSensitivity"]) == 24
        assert payload["rejectedPoints"] == []

    def test_concurrent_runs(self, two_layer_points, homogeneous_points):
        results = {}

        def run(name, points):
            results[name] = invert(points, {"maxIterations": 5})

        threads = [
            threading.Thread(target=run, args=("layered", two_layer_points)),
            threading.Thread(target=run, args=("homogeneous", homogeneous_points)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        expected = invert(two_layer_points, {"maxIterations": 5})
        assert results["layered"].convergence == expected.convergence
        np.testing.assert_allclose(results["homogeneous"].model.values, 100.0, rtol=1e-6)


class TestPriorInformation:

    def test_reference_model(self, homogeneous_points):
        free = invert(homogeneous_points, {"dampingFactor": 1.0})
        anchored = invert(
            homogeneous_points,
            {"dampingFactor": 1.0, "constraints": {"referenceModel": [50.0] * 24}},
        )
        np.testing.assert_allclose(free.model.values, 100.0, rtol=1e-6)
        assert anchored.converged
        assert anchored.iterations <= 3
        # the damping term trades data fit against closeness to 50 ohm·m
        assert np.exp(np.log(anchored.model.values).mean()) < 85.0
        assert anchored.final_rms > free.final_rms

    def test_reference_model_wrong_length(self, two_layer_points):
        with pytest.warns(UserWarning, match="reference_model"):
            result = invert(
                two_layer_points,
                {"maxIterations": 1, "constraints": {"referenceModel": [50.0] * 3}},
            )
        assert result.iterations == 1

    def test_uniform_depth_weights(self, two_layer_points, scenario_parameters):
        plain = invert(two_layer_points, scenario_parameters)
        scenario_parameters["constraints"] = {"depthWeights": [1.0, 1.0, 1.0]}
        weighted = invert(two_layer_points, scenario_parameters)
        assert weighted.convergence == plain.convergence

    def test_depth_weights_change_model(self, two_layer_points):
        plain = invert(two_layer_points, {"maxIterations": 5})
        stiff = invert(
            two_layer_points,
            {"maxIterations": 5, "constraints": {"depthWeights": [1.0, 10.0, 10.0]}},
        )
        assert not np.allclose(plain.model.values, stiff.model.values)

    def test_depth_weights_wrong_length(self, two_layer_points):
        with pytest.warns(UserWarning, match="depth_weights"):
            invert(
                two_layer_points,
                {"maxIterations": 1, "constraints": {"depthWeights": [1.0, 2.0]}},
            )

    def test_update_only_scenario(self, two_layer_points, scenario_parameters):
        # without the model-roughness term the step shrinks too slowly to meet
        # the relative threshold within the cap
        scenario_parameters["smoothModel"] = False
        result = invert(two_layer_points, scenario_parameters)
        assert result.state is InversionState.MAX_ITERATIONS
        assert result.final_rms < result.initial_rms
