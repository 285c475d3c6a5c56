"""
Tests for configuration, actuation limits and shared helpers.
"""

import pytest
import numpy as np


def _config(**overrides):
    from recede.control import SolverConfig

    params = dict(
        horizon=50,
        dt=0.02,
        terminal_cost=np.diag([100.0, 10.0]),
        stage_cost=np.diag([1.0, 0.0]),
        input_cost=np.eye(1),
    )
    params.update(overrides)
    return SolverConfig(**params)


class TestSolverConfig:
    """Test SolverConfig validation and helpers."""

    def test_defaults(self):
        from recede.control import ActuationLimits, DEFAULT_ITERATIONS

        config = _config()

        assert config.n_states == 2
        assert config.n_inputs == 1
        assert config.iterations == DEFAULT_ITERATIONS
        assert config.duration == pytest.approx(1.0)
        assert isinstance(config.input_limits, ActuationLimits)
        np.testing.assert_array_equal(config.input_limits.lower, [-1.0])
        np.testing.assert_array_equal(config.input_limits.upper, [1.0])
        assert config.step_sizes[0] == 1.0
        assert config.regularization == 0.0

    def test_arrays_are_frozen(self):
        config = _config()

        assert not config.stage_cost.flags.writeable
        with pytest.raises(ValueError):
            config.stage_cost[0, 0] = 5.0

    def test_is_immutable(self):
        import dataclasses

        config = _config()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.horizon = 10

    @pytest.mark.parametrize("overrides, match", [
        ({"horizon": 1}, "horizon"),
        ({"horizon": 10.5}, "horizon"),
        ({"dt": 0.0}, "dt"),
        ({"dt": float("nan")}, "dt"),
        ({"iterations": -1}, "iterations"),
        ({"feedforward_scale": -0.5}, "feedforward_scale"),
        ({"step_sizes": ()}, "step_sizes"),
        ({"step_sizes": (1.0, 1.5)}, "step_sizes"),
        ({"stage_cost": np.array([[1.0, 2.0], [0.0, 1.0]])}, "symmetric"),
        ({"stage_cost": -np.eye(2)}, "semidefinite"),
        ({"terminal_cost": np.eye(3)}, "terminal cost"),
        ({"regularization_factor": 1.0}, "regularization_factor"),
        ({"min_regularization": 0.0}, "regularization bounds"),
        ({"min_regularization": 10.0, "max_regularization": 1.0}, "regularization bounds"),
        ({"regularization": -1.0}, "regularization must"),
    ])
    def test_validation(self, overrides, match):
        from recede import InvalidInputError

        with pytest.raises(InvalidInputError, match=match):
            _config(**overrides)

    def test_nan_cost_rejected(self):
        from recede import InvalidInputError

        with pytest.raises(InvalidInputError, match="NaN"):
            _config(input_cost=np.array([[np.nan]]))

    def test_limits_dimension_checked(self):
        from recede.control import ActuationLimits
        from recede import InvalidInputError

        with pytest.raises(InvalidInputError, match="dimension"):
            _config(input_limits=ActuationLimits.normalized(2))

    def test_state_cost(self):
        config = _config()

        np.testing.assert_array_equal(config.state_cost(0), config.stage_cost)
        np.testing.assert_array_equal(config.state_cost(48), config.stage_cost)
        np.testing.assert_array_equal(config.state_cost(49), config.terminal_cost)
        np.testing.assert_array_equal(config.state_cost(50), config.terminal_cost)

    def test_with_costs(self):
        config = _config()
        updated = config.with_costs(stage_cost=np.eye(2))

        np.testing.assert_array_equal(updated.stage_cost, np.eye(2))
        np.testing.assert_array_equal(updated.terminal_cost, config.terminal_cost)
        np.testing.assert_array_equal(config.stage_cost, np.diag([1.0, 0.0]))

    def test_with_behavior(self):
        from recede.control import ControllerBehavior

        config = _config()
        aggressive = config.with_behavior(ControllerBehavior.AGGRESSIVE)

        np.testing.assert_allclose(aggressive.terminal_cost, 1000.0 * config.terminal_cost)
        np.testing.assert_array_equal(aggressive.stage_cost, config.stage_cost)

    def test_from_importance(self):
        from recede.control import ControllerBehavior, SolverConfig

        config = SolverConfig.from_importance(
            [1.0, 0.5, 1.0, 0.5, 2.0, 0.1], n_inputs=4, behavior=ControllerBehavior.SLOW
        )

        assert config.horizon == 500
        assert config.dt == pytest.approx(0.002)
        np.testing.assert_allclose(np.diag(config.terminal_cost), [10.0, 5.0, 10.0, 5.0, 20.0, 1.0])
        np.testing.assert_array_equal(config.stage_cost, 0.0)
        np.testing.assert_array_equal(config.input_cost, np.eye(4))

    def test_behavior_factors(self):
        from recede.control import ControllerBehavior

        assert ControllerBehavior.AGGRESSIVE.cost_factor == 1000.0
        assert ControllerBehavior.STANDARD.cost_factor == 100.0
        assert ControllerBehavior.SLOW.cost_factor == 10.0


class TestFromParams:
    """Test dictionary configuration."""

    def test_aliases_and_limits(self):
        from recede.control import SolverConfig

        config = SolverConfig.from_params({
            "horizon": 20,
            "dt": 0.05,
            "Qf": np.eye(2),
            "Q": np.eye(2),
            "R": [[2.0]],
            "u_min": -0.5,
            "u_max": 0.5,
            "iterations": 2,
        })

        assert config.horizon == 20
        assert config.iterations == 2
        np.testing.assert_array_equal(config.input_cost, [[2.0]])
        np.testing.assert_array_equal(config.input_limits.upper, [0.5])

    def test_regularization_settings(self):
        from recede.control import SolverConfig

        config = SolverConfig.from_params({
            "horizon": 20, "dt": 0.05,
            "Qf": np.eye(2), "Q": np.eye(2), "R": 1.0,
            "regularization": 1e-3,
            "regularization_factor": 4,
        })

        assert config.regularization == 1e-3
        assert config.regularization_factor == 4.0
        assert isinstance(config.regularization_factor, float)
        assert config.max_regularization == 1e6

    def test_missing_key(self):
        from recede.control import SolverConfig
        from recede import InvalidInputError

        with pytest.raises(InvalidInputError, match="dt"):
            SolverConfig.from_params({"horizon": 20, "Qf": np.eye(2), "Q": np.eye(2), "R": 1.0})

    def test_unknown_key(self):
        from recede.control import SolverConfig
        from recede import InvalidInputError

        with pytest.raises(InvalidInputError, match="unknown"):
            SolverConfig.from_params({
                "horizon": 20, "dt": 0.1,
                "Qf": np.eye(2), "Q": np.eye(2), "R": 1.0,
                "max_iter": 5,
            })


class TestActuationLimits:
    """Test ActuationLimits class."""

    def test_scalar_bounds(self):
        from recede.control import ActuationLimits

        limits = ActuationLimits(lower=-2.0, upper=2.0, dim=3)

        assert limits.dim == 3
        np.testing.assert_array_equal(limits.lower, [-2.0, -2.0, -2.0])

    def test_scalar_requires_dim(self):
        from recede.control import ActuationLimits
        from recede import InvalidInputError

        with pytest.raises(InvalidInputError, match="dim"):
            ActuationLimits(lower=-1.0, upper=1.0)

    def test_clip_and_violation(self):
        from recede.control import ActuationLimits

        limits = ActuationLimits.normalized(4)
        u = np.array([1.5, -0.2, -3.0, 0.0])

        np.testing.assert_array_equal(limits.clip(u), [1.0, -0.2, -1.0, 0.0])
        assert not limits.is_satisfied(u)
        assert limits.is_satisfied(limits.clip(u))
        assert limits.violation(u) == pytest.approx(2.0)

    def test_inverted_bounds(self):
        from recede.control import ActuationLimits
        from recede import InvalidInputError

        with pytest.raises(InvalidInputError):
            ActuationLimits(lower=[1.0], upper=[0.0])


class TestHelpers:
    """Test shared helpers."""

    def test_invert_rejects_singular(self):
        from recede.utils import invert

        with pytest.raises(np.linalg.LinAlgError):
            invert(np.zeros((2, 2)))
        with pytest.raises(np.linalg.LinAlgError):
            invert(np.diag([1.0, 1e-15]))
        np.testing.assert_allclose(invert(np.diag([2.0, 4.0])), np.diag([0.5, 0.25]))

    def test_validate_costs(self):
        from recede.utils import validate_costs

        assert validate_costs(np.eye(2), np.eye(2), np.eye(1)) == (True, "")

        is_valid, message = validate_costs(np.eye(3), np.eye(2), np.eye(1))
        assert not is_valid
        assert "terminal cost" in message

        is_valid, message = validate_costs(np.eye(2), np.eye(2), np.ones((1, 2)))
        assert not is_valid
        assert "input cost" in message

        nearly_psd = np.diag([1.0, -1e-12])
        assert validate_costs(nearly_psd, np.eye(2), np.eye(1))[0]
        assert not validate_costs(nearly_psd, np.eye(2), np.eye(1), tol=1e-15)[0]

    def test_project_psd(self):
        from recede.utils import project_psd

        projected = project_psd(np.diag([2.0, -1.0]))

        np.testing.assert_allclose(projected, np.diag([2.0, 0.0]), atol=1e-12)

    def test_embed(self):
        from recede.utils import embed

        M = embed(np.array([[1.0, 2.0], [2.0, 3.0]]), (0, 2), 3)
        v = embed(np.array([5.0, 6.0]), (0, 2), 3)

        np.testing.assert_array_equal(M, [[1.0, 0.0, 2.0], [0.0, 0.0, 0.0], [2.0, 0.0, 3.0]])
        np.testing.assert_array_equal(v, [5.0, 0.0, 6.0])

    def test_time_profiler(self):
        from recede.utils import TimeProfiler

        now = [10.0]
        profiler = TimeProfiler(clock=lambda: now[0])

        assert profiler.elapsed() == 0.0
        assert profiler.start() == 10.0
        now[0] = 10.25
        assert profiler.elapsed() == pytest.approx(0.25)
        assert profiler.lap() == pytest.approx(0.25)
        assert profiler.elapsed() == 0.0
        profiler.reset()
        assert not profiler.started
