"""
Finite-Horizon LQR
==================

Backward Riccati recursion for

    minimize    Σ_t x_tᵀ Q x_t + u_tᵀ R u_t + x_Nᵀ Q_f x_N
    subject to  x_{t+1} = A x_t + B u_t

with (A, B) taken from the dynamic model at the initial state. The
resulting gains regulate the error ``state - desired_state``.

Numerical policy: a singular (R + BᵀPB) at any step does not raise. The
cost-to-go and gains at that step and every earlier one are left at zero,
a warning is logged and the solver reports ``Status.DEGRADED``; a zero
gain means zero input, which a real-time loop can survive.
"""

from __future__ import annotations

import logging
import time
from typing import Optional, Tuple
import numpy as np

from ..exceptions import DimensionError, InvalidInputError, SolverStateError
from ..result import Status
from ..utils.linalg import invert, symmetrize
from ..utils.validation import as_vector
from .config import SolverConfig
from .constraints import ActuationLimits
from .dynamics import DynamicModel, transition_matrices, validate_model

logger = logging.getLogger(__name__)


class LQRSolver:
    """
    Finite-horizon discrete LQR engine.

    Args:
        horizon: Number of steps N
        dt: Time step (s)
        terminal_cost: Qf (n, n)
        stage_cost: Q (n, n)
        input_cost: R (m, m)
        model: Dynamic model (linear or nonlinear specialization)
        input_limits: Actuation limits, [-1, 1] by default

    Raises:
        InvalidDynamicModelError: If the model implements neither specialization
        DimensionError: If cost matrices do not match the model

    Example:
        >>> from recede.control import LQRSolver, point_mass
        >>> lqr = LQRSolver(
        ...     horizon=100, dt=0.01,
        ...     terminal_cost=np.diag([1000.0, 1000.0]),
        ...     stage_cost=np.diag([1.0, 0.0]),
        ...     input_cost=np.eye(1),
        ...     model=point_mass(max_acceleration=100.0),
        ... )
        >>> lqr.solve(np.zeros(2))
        >>> u = lqr.optimal_input(0, np.zeros(2), np.array([1.0, 0.0]))
    """

    def __init__(
        self,
        horizon: int,
        dt: float,
        terminal_cost: np.ndarray,
        stage_cost: np.ndarray,
        input_cost: np.ndarray,
        model: DynamicModel,
        input_limits: Optional[ActuationLimits] = None,
    ) -> None:
        config = SolverConfig(
            horizon=horizon,
            dt=dt,
            terminal_cost=terminal_cost,
            stage_cost=stage_cost,
            input_cost=input_cost,
            input_limits=input_limits,
        )
        self._setup(config, model)

    @classmethod
    def from_config(cls, config: SolverConfig, model: DynamicModel, **kwargs):
        """Build a solver from an existing ``SolverConfig``."""
        solver = cls.__new__(cls)
        solver._setup(config, model, **kwargs)
        return solver

    def _setup(self, config: SolverConfig, model: DynamicModel) -> None:
        self.model = validate_model(model)
        if model.n_states != config.n_states:
            raise DimensionError(
                f"cost matrices are {config.n_states}x{config.n_states} but "
                f"{type(model).__name__} has {model.n_states} states"
            )
        if model.n_inputs != config.n_inputs:
            raise DimensionError(
                f"input cost is {config.n_inputs}x{config.n_inputs} but "
                f"{type(model).__name__} has {model.n_inputs} inputs"
            )
        self.config = config

        self._P: Optional[np.ndarray] = None
        self._K: Optional[np.ndarray] = None
        self._A: Optional[np.ndarray] = None
        self._B: Optional[np.ndarray] = None
        self._initial_state: Optional[np.ndarray] = None
        self._status = Status.UNSOLVED
        self._singular_step: Optional[int] = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def horizon(self) -> int:
        return self.config.horizon

    @property
    def dt(self) -> float:
        return self.config.dt

    @property
    def n_states(self) -> int:
        return self.config.n_states

    @property
    def n_inputs(self) -> int:
        return self.config.n_inputs

    @property
    def input_limits(self) -> ActuationLimits:
        return self.config.input_limits

    @property
    def status(self) -> Status:
        return self._status

    @property
    def singular_step(self) -> Optional[int]:
        """Highest step index zeroed by the singular fallback, if any."""
        return self._singular_step

    @property
    def is_solved(self) -> bool:
        return self._P is not None

    @property
    def cost_to_go(self) -> np.ndarray:
        """Riccati sequence P[0..N-1] (N, n, n)."""
        self._require_solved()
        return self._P

    @property
    def gains(self) -> np.ndarray:
        """Feedback gains K[0..N-2] (N-1, m, n)."""
        self._require_solved()
        return self._K

    def state_cost(self, time_step: int) -> np.ndarray:
        return self.config.state_cost(time_step)

    def _require_solved(self) -> None:
        if self._P is None:
            raise SolverStateError(f"{type(self).__name__} has not been solved")

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------

    def solve(self, initial_state: np.ndarray) -> None:
        """
        Run the backward Riccati recursion linearized at ``initial_state``.

        Fills P[N-1] = Qf and, for t = N-1 ... 1:

            inv    = (R + Bᵀ P[t] B)⁻¹
            P[t-1] = Q + Aᵀ P[t] A - Aᵀ P[t] B inv Bᵀ P[t] A
            K[t-1] = -inv Bᵀ P[t] A

        All arrays are rebuilt from scratch on every call.

        Args:
            initial_state: Linearization point (n,)
        """
        start = time.perf_counter()
        x0 = as_vector("initial_state", initial_state, self.n_states)
        A, B = transition_matrices(self.model, x0, self.dt)

        N, n, m = self.horizon, self.n_states, self.n_inputs
        R = self.config.input_cost

        P = np.zeros((N, n, n))
        K = np.zeros((N - 1, m, n))
        P[N - 1] = self.config.terminal_cost
        singular_step = None

        for t in range(N - 1, 0, -1):
            try:
                inv = invert(R + B.T @ P[t] @ B)
            except np.linalg.LinAlgError as exc:
                singular_step = t - 1
                logger.warning(
                    "LQR Riccati step %d is singular (%s); zeroing cost-to-go "
                    "and gains for steps 0..%d", t, exc, singular_step,
                )
                break

            BtPA = B.T @ P[t] @ A
            K[t - 1] = -inv @ BtPA
            P[t - 1] = symmetrize(
                self.state_cost(t) + A.T @ P[t] @ A + BtPA.T @ K[t - 1]
            )

        self._P, self._K = P, K
        self._A, self._B = A, B
        self._initial_state = x0
        self._singular_step = singular_step
        self._status = Status.OPTIMAL if singular_step is None else Status.DEGRADED

        logger.debug(
            "LQR solve: horizon=%d status=%s time=%.4fs",
            N, self._status, time.perf_counter() - start,
        )

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def _gain(self, P: np.ndarray, A: np.ndarray, B: np.ndarray) -> np.ndarray:
        inv = invert(self.config.input_cost + B.T @ P @ B)
        return -inv @ (B.T @ P @ A)

    def _feedback_input(
        self,
        time_step: int,
        state: np.ndarray,
        desired_state: np.ndarray,
        A: np.ndarray,
        B: np.ndarray,
    ) -> np.ndarray:
        if time_step >= len(self._K):
            return np.zeros(self.n_inputs)
        try:
            gain = self._gain(self._P[time_step], A, B)
        except np.linalg.LinAlgError:
            gain = self._K[time_step]
        return self.input_limits.clip(gain @ (state - desired_state))

    def optimal_input(
        self,
        time_step: int,
        state: np.ndarray,
        desired_state: np.ndarray,
    ) -> np.ndarray:
        """
        Clipped feedback input at ``time_step``.

        The gain is recomputed from P[time_step] with the model re-linearized
        at ``state``; if that is singular the stored K[time_step] is used.
        Steps beyond the gain array yield the zero input.

        Args:
            time_step: Step index into the horizon (>= 0)
            state: Current state (n,)
            desired_state: Target state (n,)

        Returns:
            Input (m,) within the actuation limits
        """
        self._require_solved()
        if time_step < 0:
            raise InvalidInputError(f"time_step must be >= 0, got {time_step}")
        x = as_vector("state", state, self.n_states)
        x_goal = as_vector("desired_state", desired_state, self.n_states)
        A, B = transition_matrices(self.model, x, self.dt)
        return self._feedback_input(int(time_step), x, x_goal, A, B)

    def steady_state_gain(
        self, state: Optional[np.ndarray] = None
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Infinite-horizon gain and cost-to-go at a linearization point.

        Solves the discrete algebraic Riccati equation with scipy, using the
        stage cost Q and input cost R.

        Args:
            state: Linearization point; defaults to the last solve's state

        Returns:
            (K, P) with K (m, n) and P (n, n)
        """
        from scipy.linalg import solve_discrete_are

        if state is None:
            self._require_solved()
            A, B = self._A, self._B
        else:
            x = as_vector("state", state, self.n_states)
            A, B = transition_matrices(self.model, x, self.dt)

        Q, R = self.config.stage_cost, self.config.input_cost
        P = solve_discrete_are(A, B, Q, R)
        return self._gain(P, A, B), P

    def fresh(self) -> "LQRSolver":
        """Unsolved solver with the same configuration and model."""
        return type(self).from_config(self.config, self.model)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(horizon={self.horizon}, dt={self.dt}, "
            f"n_states={self.n_states}, n_inputs={self.n_inputs}, "
            f"status={self._status})"
        )
