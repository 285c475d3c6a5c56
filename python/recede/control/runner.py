"""
Background Solver Runner
========================

Compute-then-swap execution of iLQR solves next to a real-time loop.

One background thread repeatedly builds a *new* ``MPCSolver`` from the
latest state, desired state, cost configuration and contributors, solves
it, and publishes it by setting a ready flag. The control thread polls
``get_updated_solver`` every tick; it never blocks on a solve. A published
solver is never touched again by the background thread, so the flag (a
``threading.Event``) is the only synchronization point.

Latency compensation: a solve that started at time s and is picked up at
time w is a policy for the state at s, so the runner records
``policy_lag = w - s`` and the control loop indexes the policy with
``⌊(time since pickup + policy_lag) / dt⌋``.
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Callable, Optional
import numpy as np

from ..exceptions import DimensionError, RunnerError
from ..utils.timing import Clock, TimeProfiler
from ..utils.validation import as_vector
from .config import SolverConfig
from .costs import ContributorSource, check_contributors
from .dynamics import DynamicModel, validate_model
from .ilqr import MPCSolver

logger = logging.getLogger(__name__)

StateSupplier = Callable[[], np.ndarray]


class SolverRunner:
    """
    Runs iLQR solves on a background thread.

    Args:
        config: Horizon, costs and iteration count for each solve
        model: Dynamic model
        state_supplier: Returns the latest measured state
        desired_state: Initial target state
        contributors: Cost contributors passed to every solve
        clock: Time source in seconds (``time.perf_counter`` by default)
        poll_interval: Sleep between loop iterations (s)

    Example:
        >>> runner = SolverRunner(config, model, lambda: robot.state, goal)
        >>> runner.start()
        >>> ...
        >>> solver = runner.get_updated_solver()   # None if nothing new
        >>> u = solver.optimal_input(runner.policy_step(), robot.state)
        >>> runner.stop()
    """

    def __init__(
        self,
        config: SolverConfig,
        model: DynamicModel,
        state_supplier: StateSupplier,
        desired_state: np.ndarray,
        contributors: ContributorSource = None,
        clock: Optional[Clock] = None,
        poll_interval: float = 0.001,
    ) -> None:
        self.model = validate_model(model)
        self._config = config
        self._state_supplier = state_supplier
        self._desired = as_vector("desired_state", desired_state, config.n_states)
        self._contributors = check_contributors(contributors)
        self.poll_interval = poll_interval

        self._solve_timer = TimeProfiler(clock)
        self._control_timer = TimeProfiler(clock)
        self._ready = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._pending: Optional[MPCSolver] = None
        self._pending_started: Optional[float] = None
        self._error: Optional[BaseException] = None
        self._policy_lag = 0.0
        self._solves = 0

    # ------------------------------------------------------------------
    # Configuration (picked up by the next solve)
    # ------------------------------------------------------------------

    @property
    def config(self) -> SolverConfig:
        return self._config

    def set_config(self, config: SolverConfig) -> None:
        """Replace the solve configuration; dimensions must not change."""
        if (config.n_states, config.n_inputs) != (self._config.n_states, self._config.n_inputs):
            raise DimensionError(
                f"replacement config is {config.n_states}x{config.n_inputs}, "
                f"expected {self._config.n_states}x{self._config.n_inputs}"
            )
        self._config = config

    @property
    def desired_state(self) -> np.ndarray:
        return self._desired

    def set_desired_state(self, state: np.ndarray) -> None:
        self._desired = as_vector("desired_state", state, self._config.n_states)

    def set_contributors(self, contributors: ContributorSource) -> None:
        self._contributors = check_contributors(contributors)

    # ------------------------------------------------------------------
    # Background side
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def solves(self) -> int:
        """Number of solves completed by the background side."""
        return self._solves

    def begin_control(self) -> None:
        """Reset the control-time reference to now with zero policy lag."""
        self._control_timer.start()
        self._policy_lag = 0.0

    def start(self) -> None:
        """Start the background thread (and the control-time reference if unset)."""
        if self.is_running:
            raise RuntimeError("runner already started")
        self._stop.clear()
        if not self._control_timer.started:
            self.begin_control()
        self._thread = threading.Thread(
            target=self.run, name="recede-solver", daemon=True
        )
        self._thread.start()
        logger.info("solver runner started (horizon=%d)", self._config.horizon)

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Ask the background loop to stop and wait for it.

        Takes effect before the next solve starts; a solve in progress is
        finished first.
        """
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("solver runner did not stop within %.3fs", timeout)
            else:
                logger.info("solver runner stopped after %d solves", self._solves)

    def run(self) -> None:
        """Background loop; runs until ``stop`` or a solve raises."""
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception as exc:
                logger.exception("background solve failed; runner stopping")
                self._error = exc
                return
            self._stop.wait(self.poll_interval)

    def run_once(self) -> bool:
        """
        One background cycle: solve and publish unless a result is pending.

        Returns:
            True if a new solver was published
        """
        if self._ready.is_set():
            return False

        # Settings replaced mid-cycle apply to the next solve.
        config = self._config
        desired = self._desired
        contributors = self._contributors

        started = self._solve_timer.start()
        state = self._state_supplier()
        solver = MPCSolver.from_config(config, self.model, contributors=contributors)
        solver.initialize_and_iterate(config.iterations, state, desired)

        self._pending = solver
        self._pending_started = started
        self._solves += 1
        self._ready.set()
        logger.debug(
            "published solver %d (solve took %.4fs)",
            self._solves, self._solve_timer.elapsed(),
        )
        return True

    # ------------------------------------------------------------------
    # Control side
    # ------------------------------------------------------------------

    def get_updated_solver(self) -> Optional[MPCSolver]:
        """
        Non-blocking poll for a freshly solved solver.

        Returns:
            The new solver, or None if nothing new is ready

        Raises:
            RunnerError: If the background loop died on an exception
        """
        if self._error is not None:
            raise RunnerError(error=self._error) from self._error
        if not self._ready.is_set():
            return None

        solver = self._pending
        now = self._control_timer.start()
        self._policy_lag = now - self._pending_started
        self._pending = None
        self._ready.clear()
        logger.debug("swapped in new solver, policy lag %.4fs", self._policy_lag)
        return solver

    @property
    def policy_lag(self) -> float:
        """Age of the active policy when it was picked up (s)."""
        return self._policy_lag

    def controller_elapsed_time(self) -> float:
        """Time into the active policy: time since pickup plus policy lag (s)."""
        return self._control_timer.elapsed() + self._policy_lag

    def policy_step(self, dt: Optional[float] = None) -> int:
        """Latency-compensated step index into the active policy."""
        dt = self._config.dt if dt is None else dt
        return max(0, int(math.floor(self.controller_elapsed_time() / dt)))
