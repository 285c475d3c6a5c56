"""
Tests for the iterative LQR engine.

Tests covering:
1. Iteration protocol order
2. Monotone predicted cost under the line search
3. Closed-loop regulation with the iLQR policy
4. Obstacle avoidance and waypoint attraction
5. Regularization after rejected forward passes
6. Singular-step degradation
"""

import logging

import pytest
import numpy as np


def _mpc(problem, contributors=None, **overrides):
    from recede.control import MPCSolver

    params = {k: problem[k] for k in (
        "horizon", "dt", "terminal_cost", "stage_cost", "input_cost", "model"
    )}
    params.update(overrides)
    return MPCSolver(contributors=contributors, **params)


class TestProtocol:
    """Test protocol ordering and state."""

    def test_simulate_before_initial_iteration(self, point_mass_problem):
        from recede import SolverStateError

        solver = _mpc(point_mass_problem)
        with pytest.raises(SolverStateError):
            solver.simulate_iteration()

    def test_run_before_simulate(self, point_mass_problem):
        from recede import SolverStateError

        solver = _mpc(point_mass_problem)
        solver.initial_iteration(
            point_mass_problem["initial_state"], point_mass_problem["desired_state"]
        )
        with pytest.raises(SolverStateError):
            solver.run_iteration()

    def test_optimal_input_before_solve(self, point_mass_problem):
        from recede import SolverStateError

        solver = _mpc(point_mass_problem)
        with pytest.raises(SolverStateError):
            solver.optimal_input(0, np.zeros(2))

    def test_initial_iteration_seeds_zero_affine_term(self, point_mass_problem):
        solver = _mpc(point_mass_problem)
        solver.initial_iteration(
            point_mass_problem["initial_state"], point_mass_problem["desired_state"]
        )

        assert solver.affine_term.shape == (100, 2)
        np.testing.assert_array_equal(solver.affine_term, 0.0)
        assert solver.iterations == 0

    def test_nominal_trajectory_shapes(self, point_mass_problem):
        solver = _mpc(point_mass_problem)
        solver.initial_iteration(
            point_mass_problem["initial_state"], point_mass_problem["desired_state"]
        )
        solver.simulate_iteration()
        trajectory = solver.nominal_trajectory()

        assert trajectory.states.shape == (101, 2)
        assert trajectory.inputs.shape == (100, 1)
        assert trajectory.time[-1] == pytest.approx(1.0)
        np.testing.assert_array_equal(trajectory.states[0], point_mass_problem["initial_state"])
        np.testing.assert_array_equal(trajectory.final_state, trajectory.states[100])
        assert (trajectory.horizon, trajectory.n_states, trajectory.n_inputs) == (100, 2, 1)

    def test_backward_pass_shapes(self, point_mass_problem):
        solver = _mpc(point_mass_problem)
        solver.initial_iteration(
            point_mass_problem["initial_state"], point_mass_problem["desired_state"]
        )
        solver.simulate_iteration()
        solver.run_iteration()

        assert solver.cost_to_go.shape == (100, 2, 2)
        assert solver.gains.shape == (99, 1, 2)
        assert solver.affine_term.shape == (100, 2)
        assert solver.iterations == 1

    def test_reinitialize_resets_iteration(self, point_mass_problem):
        solver = _mpc(point_mass_problem)
        solver.initialize_and_iterate(
            2, point_mass_problem["initial_state"], point_mass_problem["desired_state"]
        )
        solver.initial_iteration(
            point_mass_problem["initial_state"], point_mass_problem["desired_state"]
        )

        assert solver.iterations == 0
        assert solver.cost_history == []
        np.testing.assert_array_equal(solver.affine_term, 0.0)

    def test_summary(self, point_mass_problem):
        from recede import Status

        solver = _mpc(point_mass_problem)
        summary = solver.initialize_and_iterate(
            3, point_mass_problem["initial_state"], point_mass_problem["desired_state"]
        )

        assert summary.status == Status.OPTIMAL
        assert summary.iterations == 3
        assert len(summary.cost_history) == 3
        assert summary.cost == pytest.approx(solver.predicted_cost)
        assert summary.solve_time >= 0
        assert "optimal" in repr(summary)


class TestPointMass:
    """Obstacle-free regulation."""

    def test_zero_input_beyond_horizon(self, point_mass_problem):
        solver = _mpc(point_mass_problem)
        solver.initialize_and_iterate(
            2, point_mass_problem["initial_state"], point_mass_problem["desired_state"]
        )

        np.testing.assert_array_equal(solver.optimal_input(100, np.zeros(2)), [0.0])
        np.testing.assert_array_equal(solver.optimal_input(250, np.zeros(2)), [0.0])

    def test_time_index(self, point_mass_problem):
        solver = _mpc(point_mass_problem)

        assert solver.time_index(0.0) == 0
        assert solver.time_index(0.0149) == 1
        assert solver.time_index(0.579) == 57
        assert solver.time_index(-0.5) == 0

    def test_cost_never_increases(self, point_mass_problem):
        solver = _mpc(point_mass_problem)
        solver.initialize_and_iterate(
            5, point_mass_problem["initial_state"], point_mass_problem["desired_state"]
        )

        history = solver.cost_history
        assert len(history) == 5
        assert all(b <= a for a, b in zip(history, history[1:]))

    def test_closed_loop_reaches_goal(self, point_mass_problem):
        solver = _mpc(point_mass_problem)
        model = point_mass_problem["model"]
        dt = point_mass_problem["dt"]

        x = point_mass_problem["initial_state"]
        solver.initialize_and_iterate(5, x, point_mass_problem["desired_state"])
        for t in range(point_mass_problem["horizon"]):
            u = solver.optimal_input(t, x)
            assert abs(u[0]) <= 1.0
            x = model.simulate(x, u, dt)

        assert abs(x[0] - 1.0) < 1e-2

    def test_lqr_fallback_before_backward_pass(self, point_mass_problem):
        """Until a backward pass exists the base LQR policy is used."""
        from recede.control import LQRSolver

        problem = point_mass_problem
        solver = _mpc(problem)
        solver.initial_iteration(problem["initial_state"], problem["desired_state"])
        solver.simulate_iteration()

        lqr = LQRSolver(
            problem["horizon"], problem["dt"], problem["terminal_cost"],
            problem["stage_cost"], problem["input_cost"], problem["model"],
        )
        lqr.solve(problem["initial_state"])

        x = np.array([0.3, 0.2])
        np.testing.assert_allclose(
            solver.optimal_input(10, x),
            lqr.optimal_input(10, x, problem["desired_state"]),
        )


class TestObstacleAvoidance:
    """Tank drive around an obstacle."""

    def test_nominal_trajectory_stays_clear(self, obstacle_problem):
        obstacle = obstacle_problem["obstacle"]
        solver = _mpc(obstacle_problem, contributors=[obstacle])

        summary = solver.initialize_and_iterate(
            5, obstacle_problem["initial_state"], obstacle_problem["desired_state"]
        )

        history = summary.cost_history
        assert all(b <= a for a, b in zip(history, history[1:]))
        assert solver.nominal_trajectory().min_distance(obstacle) > obstacle.radius

    def test_inputs_within_limits(self, obstacle_problem):
        solver = _mpc(obstacle_problem, contributors=[obstacle_problem["obstacle"]])
        solver.initialize_and_iterate(
            3, obstacle_problem["initial_state"], obstacle_problem["desired_state"]
        )

        trajectory = solver.nominal_trajectory()
        assert np.all(np.abs(trajectory.inputs) <= 1.0)
        u = solver.optimal_input(0, obstacle_problem["initial_state"])
        assert np.all(np.abs(u) <= 1.0)

    def test_registry_edits_apply_to_next_solve(self, obstacle_problem):
        from recede.control import CostRegistry

        registry = CostRegistry([obstacle_problem["obstacle"]])
        solver = _mpc(obstacle_problem, contributors=registry)
        solver.initialize_and_iterate(
            1, obstacle_problem["initial_state"], obstacle_problem["desired_state"]
        )
        with_obstacle = solver.predicted_cost

        registry.clear()
        solver.initialize_and_iterate(
            1, obstacle_problem["initial_state"], obstacle_problem["desired_state"]
        )

        assert solver.predicted_cost < with_obstacle


class TestObstacleOnStraightPath:
    """Point mass whose straight path to the goal crosses an obstacle."""

    @pytest.mark.parametrize("cost_factor", [1e5, 1e7])
    def test_line_stays_clear(self, point_mass_problem, cost_factor):
        from recede.control import Obstacle

        obstacle = Obstacle(
            [0.5], radius=0.1, cost_factor=cost_factor,
            robot_radius=0.15, position_indices=(0,),
        )
        solver = _mpc(point_mass_problem, contributors=[obstacle])
        summary = solver.initialize_and_iterate(
            5, point_mass_problem["initial_state"], point_mass_problem["desired_state"]
        )

        trajectory = solver.nominal_trajectory()
        assert trajectory.min_distance(obstacle) > obstacle.radius
        assert np.all(np.abs(trajectory.inputs) <= 1.0)
        history = summary.cost_history
        assert all(b <= a for a, b in zip(history, history[1:]))

    @pytest.mark.parametrize("cost_factor", [1e5, 1e7])
    def test_plane_stays_clear(self, cost_factor):
        from recede.control import MPCSolver, Obstacle, planar_point_mass

        obstacle = Obstacle([0.5, 0.0], radius=0.1, cost_factor=cost_factor, robot_radius=0.15)
        solver = MPCSolver(
            horizon=100, dt=0.01,
            terminal_cost=1000.0 * np.eye(4),
            stage_cost=np.diag([1.0, 1.0, 0.0, 0.0]),
            input_cost=np.eye(2),
            model=planar_point_mass(max_acceleration=100.0),
            contributors=[obstacle],
        )
        summary = solver.initialize_and_iterate(
            5, np.zeros(4), np.array([1.0, 0.0, 0.0, 0.0])
        )

        trajectory = solver.nominal_trajectory()
        assert trajectory.min_distance(obstacle) > obstacle.radius
        assert np.all(np.abs(trajectory.inputs) <= 1.0)
        history = summary.cost_history
        assert all(b <= a for a, b in zip(history, history[1:]))

    def test_initial_nominal_is_cheaper_of_lqr_and_hold(self, point_mass_problem):
        from recede.control import Obstacle

        obstacle = Obstacle(
            [0.5], radius=0.1, cost_factor=1e5,
            robot_radius=0.15, position_indices=(0,),
        )
        solver = _mpc(point_mass_problem, contributors=[obstacle])
        solver.initial_iteration(
            point_mass_problem["initial_state"], point_mass_problem["desired_state"]
        )
        solver.simulate_iteration()

        # Holding still costs the state error plus a faint obstacle tail.
        assert solver.predicted_cost < 2200.0
        assert solver.nominal_trajectory().min_distance(obstacle) > obstacle.radius


class TestRegularization:
    """Damping after a rejected forward pass."""

    def _overshooting_solver(self, problem, **overrides):
        from recede.control import ActuationLimits, MPCSolver, SolverConfig

        # Wide limits keep the problem exactly linear-quadratic, and a
        # feedforward scale of 4 overshoots the undamped minimizer so the
        # first step is always rejected.
        params = dict(
            horizon=problem["horizon"],
            dt=problem["dt"],
            terminal_cost=problem["terminal_cost"],
            stage_cost=problem["stage_cost"],
            input_cost=problem["input_cost"],
            input_limits=ActuationLimits(-1e9, 1e9, dim=1),
            feedforward_scale=4.0,
            step_sizes=(1.0,),
            max_regularization=1e8,
        )
        params.update(overrides)
        return MPCSolver.from_config(SolverConfig(**params), problem["model"])

    def test_rejected_pass_raises_regularization(self, point_mass_problem):
        problem = point_mass_problem
        solver = self._overshooting_solver(problem)
        solver.initial_iteration(problem["initial_state"], problem["desired_state"])
        solver.iterate(1)

        assert solver.regularization == 0.0
        solver.simulate_iteration()

        history = solver.cost_history
        assert history[1] == history[0]
        assert solver.regularization == pytest.approx(solver.config.min_regularization)

    def test_cost_drops_after_rejected_pass(self, point_mass_problem):
        problem = point_mass_problem
        solver = self._overshooting_solver(problem)
        solver.initial_iteration(problem["initial_state"], problem["desired_state"])
        solver.iterate(1)
        solver.simulate_iteration()
        rejected = solver.cost_history
        assert rejected[1] == rejected[0]

        solver.run_iteration()
        solver.iterate(30)

        history = solver.cost_history
        assert solver.predicted_cost < history[0]
        assert all(b <= a for a, b in zip(history, history[1:]))
        assert solver.regularization <= solver.config.max_regularization

    def test_initial_iteration_resets_regularization(self, point_mass_problem):
        problem = point_mass_problem
        solver = self._overshooting_solver(problem, regularization=0.5)
        solver.initial_iteration(problem["initial_state"], problem["desired_state"])
        solver.iterate(2)
        assert solver.regularization == pytest.approx(5.0)

        solver.initial_iteration(problem["initial_state"], problem["desired_state"])
        assert solver.regularization == 0.5

    def test_improving_pass_relaxes_regularization(self, point_mass_problem):
        problem = point_mass_problem
        solver = self._overshooting_solver(
            problem, feedforward_scale=1.0, regularization=1e-3
        )
        solver.initial_iteration(problem["initial_state"], problem["desired_state"])
        solver.iterate(1)
        solver.simulate_iteration()

        history = solver.cost_history
        assert history[1] < history[0]
        assert solver.regularization == pytest.approx(1e-4)

    def test_relaxing_below_minimum_resets_to_zero(self, point_mass_problem):
        problem = point_mass_problem
        solver = self._overshooting_solver(
            problem, feedforward_scale=1.0, regularization=5e-6
        )
        solver.initial_iteration(problem["initial_state"], problem["desired_state"])
        solver.iterate(1)
        solver.simulate_iteration()

        assert solver.cost_history[1] < solver.cost_history[0]
        assert solver.regularization == 0.0


class TestWaypoint:
    """Waypoint attraction."""

    def test_trajectory_bends_toward_waypoint(self):
        from recede.control import MPCSolver, Waypoint, planar_point_mass

        waypoint = Waypoint(
            state=[0.25, 0.3, 0.0, 0.0],
            weight=np.diag([1000.0, 1000.0, 0.0, 0.0]),
            arrival_time=0.5,
            temporal_spread=100.0,
        )
        solver = MPCSolver(
            horizon=100, dt=0.01,
            terminal_cost=1000.0 * np.eye(4),
            stage_cost=np.diag([1.0, 1.0, 0.0, 0.0]),
            input_cost=np.eye(2),
            model=planar_point_mass(max_acceleration=100.0),
            contributors=[waypoint],
        )
        solver.initialize_and_iterate(5, np.zeros(4), np.array([0.5, 0.0, 0.0, 0.0]))

        trajectory = solver.nominal_trajectory()
        assert trajectory.states[50, 1] > 0.05
        assert solver.predicted_cost < solver.cost_history[0]


class TestSingularBackwardPass:
    """Degradation inside the backward pass."""

    def test_unactuated_model_degrades(self, caplog):
        from recede.control import MPCSolver, LinearSystem
        from recede import Status

        solver = MPCSolver(
            horizon=20, dt=0.1,
            terminal_cost=np.eye(2), stage_cost=np.eye(2), input_cost=np.zeros((1, 1)),
            model=LinearSystem(np.zeros((2, 2)), np.zeros((2, 1))),
        )
        with caplog.at_level(logging.WARNING, logger="recede.control"):
            summary = solver.initialize_and_iterate(2, np.ones(2), np.zeros(2))

        assert summary.status == Status.DEGRADED
        assert summary.singular_step == 18
        np.testing.assert_array_equal(solver.gains, 0.0)
        np.testing.assert_array_equal(solver.affine_term[:-1], 0.0)
        np.testing.assert_array_equal(solver.optimal_input(0, np.ones(2)), [0.0])
        assert "singular" in caplog.text
