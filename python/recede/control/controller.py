"""
MPC Controller
==============

Control-loop facade over the iLQR engine and the background runner.

Usage per control tick:

    controller.update(measured_state)   # swap in a new solve if one is ready
    u = controller.input                # latency-compensated policy input

Classes:
- MPCController: synchronous first solve, then compute-then-swap re-solves
"""

from __future__ import annotations

import logging
import numbers
from dataclasses import replace
from typing import Optional, Sequence, Union
import numpy as np

from ..exceptions import SolverStateError
from ..result import SolveSummary
from ..utils.timing import Clock
from ..utils.validation import as_vector
from .config import DEFAULT_ITERATIONS, ControllerBehavior, SolverConfig
from .constraints import ActuationLimits
from .costs import ContributorSource, check_contributors
from .dynamics import DynamicModel, validate_model
from .ilqr import MPCSolver
from .runner import SolverRunner

logger = logging.getLogger(__name__)


class MPCController:
    """
    Receding-horizon controller for a real-time loop.

    The first solve runs synchronously in ``initialize_and_iterate``; after
    that a ``SolverRunner`` keeps re-solving from the latest state on a
    background thread and ``update`` swaps each result in without blocking.

    Args:
        horizon: Number of steps N
        dt: Time step (s)
        terminal_cost: Qf (n, n)
        stage_cost: Q (n, n)
        input_cost: R (m, m)
        model: Dynamic model
        contributors: Obstacles, waypoints, ... (a ``CostRegistry`` can be
            edited while the controller runs)
        iterations: Refinement rounds per solve
        input_limits: Actuation limits, [-1, 1] by default
        feedforward_scale: Multiplier on the iLQR feedforward correction
        clock: Time source for latency compensation
        poll_interval: Background loop sleep (s)

    Example:
        >>> controller = MPCController(
        ...     horizon=100, dt=0.01,
        ...     terminal_cost=np.diag([1000.0, 1000.0]),
        ...     stage_cost=np.diag([1.0, 0.0]),
        ...     input_cost=np.eye(1),
        ...     model=point_mass(max_acceleration=100.0),
        ... )
        >>> with controller:
        ...     controller.initialize_and_iterate(5, x0, goal)
        ...     while running:
        ...         u = controller.update(read_sensors())
    """

    def __init__(
        self,
        horizon: int,
        dt: float,
        terminal_cost: np.ndarray,
        stage_cost: np.ndarray,
        input_cost: np.ndarray,
        model: DynamicModel,
        contributors: ContributorSource = None,
        iterations: int = DEFAULT_ITERATIONS,
        input_limits: Optional[ActuationLimits] = None,
        feedforward_scale: float = 1.0,
        clock: Optional[Clock] = None,
        poll_interval: float = 0.001,
    ) -> None:
        config = SolverConfig(
            horizon=horizon,
            dt=dt,
            terminal_cost=terminal_cost,
            stage_cost=stage_cost,
            input_cost=input_cost,
            iterations=iterations,
            input_limits=input_limits,
            feedforward_scale=feedforward_scale,
        )
        self._setup(config, model, contributors, clock, poll_interval)

    @classmethod
    def from_config(
        cls,
        config: SolverConfig,
        model: DynamicModel,
        contributors: ContributorSource = None,
        clock: Optional[Clock] = None,
        poll_interval: float = 0.001,
    ) -> "MPCController":
        controller = cls.__new__(cls)
        controller._setup(config, model, contributors, clock, poll_interval)
        return controller

    @classmethod
    def from_importance(
        cls,
        importance: Sequence[float],
        model: DynamicModel,
        behavior: ControllerBehavior = ControllerBehavior.STANDARD,
        contributors: ContributorSource = None,
        **kwargs,
    ) -> "MPCController":
        """
        Controller weighting only the terminal error, scaled by ``behavior``.

        Args:
            importance: Per-state terminal weight
            model: Dynamic model
            behavior: Aggressiveness preset
            contributors: Cost contributors
            **kwargs: ``horizon``, ``dt`` and other ``SolverConfig`` fields
        """
        config = SolverConfig.from_importance(
            importance, model.n_inputs, behavior=behavior, **kwargs
        )
        return cls.from_config(config, model, contributors=contributors)

    def _setup(
        self,
        config: SolverConfig,
        model: DynamicModel,
        contributors: ContributorSource,
        clock: Optional[Clock],
        poll_interval: float,
    ) -> None:
        self.model = validate_model(model)
        self.config = config
        self.contributors = check_contributors(contributors)
        self.clock = clock
        self.poll_interval = poll_interval

        self._solver: Optional[MPCSolver] = None
        self._runner: Optional[SolverRunner] = None
        self._state: Optional[np.ndarray] = None
        self._desired: Optional[np.ndarray] = None
        self._input = np.zeros(config.n_inputs)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def solver(self) -> Optional[MPCSolver]:
        """Solver whose policy is currently applied."""
        return self._solver

    @property
    def runner(self) -> Optional[SolverRunner]:
        return self._runner

    @property
    def state(self) -> Optional[np.ndarray]:
        """Latest measured state."""
        return self._state

    @property
    def input(self) -> np.ndarray:
        """Input computed by the latest ``update``."""
        return self._input

    @property
    def desired_state(self) -> Optional[np.ndarray]:
        return self._desired

    @property
    def is_running(self) -> bool:
        return self._runner is not None and self._runner.is_running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize_and_iterate(
        self,
        iterations: int,
        initial_state: np.ndarray,
        desired_state: np.ndarray,
        background: bool = True,
    ) -> SolveSummary:
        """
        Solve synchronously from ``initial_state``, then start re-solving.

        Args:
            iterations: Refinement rounds for this and every later solve
            initial_state: Current state (n,)
            desired_state: Target state (n,)
            background: Start the runner thread. With False the runner is
                created but the caller drives it through ``runner.run_once``.

        Returns:
            Summary of the synchronous solve
        """
        self.stop()
        if iterations != self.config.iterations:
            self.config = replace(self.config, iterations=iterations)

        self._state = as_vector("initial_state", initial_state, self.config.n_states)
        self._desired = as_vector("desired_state", desired_state, self.config.n_states)

        solver = MPCSolver.from_config(self.config, self.model, contributors=self.contributors)
        summary = solver.initialize_and_iterate(iterations, self._state, self._desired)
        self._solver = solver
        logger.info("initial solve %r", summary)

        self._runner = SolverRunner(
            self.config,
            self.model,
            self._latest_state,
            self._desired,
            contributors=self.contributors,
            clock=self.clock,
            poll_interval=self.poll_interval,
        )
        self._runner.begin_control()
        if background:
            self._runner.start()
        return summary

    def restart(self, config: Optional[SolverConfig] = None) -> SolveSummary:
        """
        Stop re-solving, optionally swap the configuration, and start over
        from the latest state.
        """
        if self._state is None or self._desired is None:
            raise SolverStateError("controller has not been initialized")
        if config is not None:
            self.config = config
            logger.info("controller reconfigured: horizon=%d dt=%g", config.horizon, config.dt)
        background = self._runner is not None and self._runner.is_running
        return self.initialize_and_iterate(
            self.config.iterations, self._state, self._desired, background=background
        )

    def stop(self, timeout: Optional[float] = 1.0) -> None:
        """Stop the background runner, if any."""
        if self._runner is not None:
            self._runner.stop(timeout)

    def __enter__(self) -> "MPCController":
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Control loop
    # ------------------------------------------------------------------

    def set_desired_state(self, state: np.ndarray) -> None:
        """New target, picked up by the next background solve."""
        self._desired = as_vector("desired_state", state, self.config.n_states)
        if self._runner is not None:
            self._runner.set_desired_state(self._desired)

    def get_updated_solver(self) -> Optional[MPCSolver]:
        """
        Non-blocking poll; swaps in and returns a fresh solver if one is ready.

        Raises:
            RunnerError: If the background solve failed
        """
        if self._runner is None:
            return None
        solver = self._runner.get_updated_solver()
        if solver is not None:
            self._solver = solver
        return solver

    def optimal_input(
        self,
        elapsed_or_step: Union[int, float],
        state: np.ndarray,
    ) -> np.ndarray:
        """
        Policy input of the active solver.

        Args:
            elapsed_or_step: A step index (int) or seconds into the
                active policy (float)
            state: Current state (n,)
        """
        if self._solver is None:
            raise SolverStateError("controller has not been initialized")
        if isinstance(elapsed_or_step, numbers.Integral):
            return self._solver.optimal_input(int(elapsed_or_step), state)
        return self._solver.optimal_input_at(float(elapsed_or_step), state)

    def update(self, state: np.ndarray) -> np.ndarray:
        """
        One control tick: record ``state``, poll for a new solve and compute
        the latency-compensated input.

        Returns:
            Input (m,) to apply
        """
        if self._runner is None:
            raise SolverStateError("controller has not been initialized")
        self._state = as_vector("state", state, self.config.n_states)
        self.get_updated_solver()
        step = self._runner.policy_step(self.config.dt)
        self._input = self._solver.optimal_input(step, self._state)
        return self._input

    def _latest_state(self) -> np.ndarray:
        return self._state
