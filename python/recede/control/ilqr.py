"""
Iterative LQR (SLQ) Engine
==========================

Receding-horizon solver for nonlinear models and non-quadratic extra costs.

Protocol, in this order and repeatable for refinement:

1. ``initial_iteration(current_state, desired_state)``: LQR solve at the
   current state, affine term l seeded to zero.
2. ``simulate_iteration()``: forward-simulate the nominal trajectory
   x̄[0..N], ū[0..N-1] under the current policy, caching A_t, B_t.
3. ``run_iteration()``: backward pass along the nominal trajectory.

``initialize_and_iterate`` runs 1 and then ``iterations`` rounds of 2-3.

Backward pass
-------------
Written in deviation coordinates δx = x - x̄_t, δu = u - ū_t, with the
cost-to-go from step t+1 modelled as δxᵀ P[t] δx + 2 l[t]ᵀ δx:

    P[N-1] = Q_f + M_N
    l[N-1] = Q_f (x̄_N - x_d) + q_N

and for t = N-1 ... 1, with inv = (R + B_tᵀ P[t] B_t)⁻¹ and
K_t = -inv B_tᵀ P[t] A_t:

    P[t-1] = Q_t + M_t + A_tᵀ P[t] A_t + (B_tᵀ P[t] A_t)ᵀ K_t
    l[t-1] = Q_t (x̄_t - x_d) + q_t
             + A_tᵀ (I - P[t] B_t inv B_tᵀ) l[t] + K_tᵀ R ū_t
    K[t-1] = K_t

where M_t, q_t sum the cost contributors' local model at x̄_t. The factor
(I - P B inv Bᵀ) equals S P⁻¹ with S = P - P B inv Bᵀ P, without needing
P to be invertible.

Policy
------
    u_t(x) = clip(ū_t + K_t(x) (x - x̄_t) + α s k_t(x))
    k_t(x) = -inv (Bᵀ l[t] + R ū_t)

with the gain re-linearized at x, s = ``feedforward_scale`` and α the
line-search step. A forward pass is kept only if it does not increase the
predicted total cost; otherwise smaller α are tried, and if none helps the
previous nominal trajectory is kept.

The first forward pass rolls out both the LQR policy and the zero input
and keeps the cheaper one as the initial nominal trajectory. Because no
later pass may raise the cost, a region whose cost alone exceeds that of
the initial nominal (the inside of a heavily weighted obstacle) is never
entered.

Regularization
--------------
Every ``inv`` above is taken of R + BᵀPB + μI. μ starts at
``regularization`` (0 by default); when a line search rejects every step
size it is raised to max(μ_min, μ·factor), bounded by μ_max, so the next
backward pass yields a shorter, more conservative step instead of the same
rejected one. After a strictly improving pass μ is divided by the factor
and reset to 0 once it drops below μ_min.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable, List, Optional
import numpy as np

from ..exceptions import InvalidInputError, SolverStateError
from ..result import SolveSummary, Status
from ..utils.linalg import invert, symmetrize
from ..utils.validation import as_vector
from .config import SolverConfig
from .constraints import ActuationLimits
from .costs import (
    ContributorSource,
    check_contributors,
    local_cost_terms,
    snapshot_contributors,
    total_contributor_cost,
)
from .dynamics import DynamicModel, transition_matrices
from .lqr import LQRSolver
from .trajectory import Trajectory

logger = logging.getLogger(__name__)

Policy = Callable[[int, np.ndarray, np.ndarray, np.ndarray], np.ndarray]


class _Rollout:
    """Forward pass result, swapped in as a whole."""

    __slots__ = ("states", "inputs", "A", "B", "cost")

    def __init__(self, states, inputs, A, B, cost):
        self.states = states
        self.inputs = inputs
        self.A = A
        self.B = B
        self.cost = cost


class MPCSolver(LQRSolver):
    """
    Iterative LQR engine with pluggable cost contributors.

    Args:
        horizon: Number of steps N
        dt: Time step (s)
        terminal_cost: Qf (n, n)
        stage_cost: Q (n, n)
        input_cost: R (m, m)
        model: Dynamic model (linear or nonlinear specialization)
        contributors: Obstacles, waypoints, ... (a ``CostRegistry``, list or
            tuple; snapshotted once per pass)
        input_limits: Actuation limits, [-1, 1] by default
        feedforward_scale: Multiplier on the feedforward correction

    Example:
        >>> from recede.control import MPCSolver, Obstacle, DifferentialDriveModel
        >>> solver = MPCSolver(
        ...     horizon=100, dt=0.01,
        ...     terminal_cost=1000 * np.eye(5),
        ...     stage_cost=np.diag([1.0, 1.0, 0.1, 0.0, 0.0]),
        ...     input_cost=np.eye(2),
        ...     model=DifferentialDriveModel(),
        ...     contributors=[Obstacle([0.5, 0.0], radius=0.1, cost_factor=1e5)],
        ... )
        >>> summary = solver.initialize_and_iterate(5, x0, x_goal)
        >>> u = solver.optimal_input(0, x0)
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
        input_limits: Optional[ActuationLimits] = None,
        feedforward_scale: float = 1.0,
    ) -> None:
        config = SolverConfig(
            horizon=horizon,
            dt=dt,
            terminal_cost=terminal_cost,
            stage_cost=stage_cost,
            input_cost=input_cost,
            input_limits=input_limits,
            feedforward_scale=feedforward_scale,
        )
        self._setup(config, model, contributors)

    def _setup(
        self,
        config: SolverConfig,
        model: DynamicModel,
        contributors: ContributorSource = None,
    ) -> None:
        super()._setup(config, model)
        self.contributors = check_contributors(contributors)

        self._desired: Optional[np.ndarray] = None
        self._nominal: Optional[_Rollout] = None
        self._mpc_P: Optional[np.ndarray] = None
        self._mpc_K: Optional[np.ndarray] = None
        self._l: Optional[np.ndarray] = None
        # True while the backward pass matches the current nominal trajectory.
        self._policy_ready = False
        self._regularization = config.regularization
        # Damping the current backward pass was computed with.
        self._policy_regularization = 0.0
        self._cost_history: List[float] = []
        self._iterations = 0
        self._solve_time = 0.0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def desired_state(self) -> Optional[np.ndarray]:
        return self._desired

    @property
    def cost_to_go(self) -> np.ndarray:
        """Latest Riccati sequence (backward pass if available, else LQR)."""
        if self._mpc_P is not None:
            return self._mpc_P
        return super().cost_to_go

    @property
    def gains(self) -> np.ndarray:
        """Latest feedback gains (backward pass if available, else LQR)."""
        if self._mpc_K is not None:
            return self._mpc_K
        return super().gains

    @property
    def affine_term(self) -> np.ndarray:
        """Affine cost-to-go term l[0..N-1] (N, n)."""
        if self._l is None:
            raise SolverStateError("initial_iteration has not been run")
        return self._l

    @property
    def predicted_cost(self) -> float:
        """Predicted total cost of the current nominal trajectory."""
        if self._nominal is None:
            raise SolverStateError("no nominal trajectory; run simulate_iteration")
        return self._nominal.cost

    @property
    def cost_history(self) -> List[float]:
        """Predicted cost after each forward pass."""
        return list(self._cost_history)

    @property
    def iterations(self) -> int:
        """Completed backward passes."""
        return self._iterations

    @property
    def regularization(self) -> float:
        """Damping μ the next backward pass will use."""
        return self._regularization

    def nominal_trajectory(self) -> Trajectory:
        """Current nominal trajectory."""
        if self._nominal is None:
            raise SolverStateError("no nominal trajectory; run simulate_iteration")
        return Trajectory(
            states=self._nominal.states.copy(),
            inputs=self._nominal.inputs.copy(),
            time=np.arange(self.horizon + 1) * self.dt,
        )

    def fresh(self) -> "MPCSolver":
        return type(self).from_config(self.config, self.model, contributors=self.contributors)

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------

    def initial_iteration(
        self,
        current_state: np.ndarray,
        desired_state: np.ndarray,
    ) -> None:
        """Solve the LQR problem at ``current_state`` and reset the iteration."""
        self._desired = as_vector("desired_state", desired_state, self.n_states)
        self.solve(current_state)

        self._l = np.zeros((self.horizon, self.n_states))
        self._nominal = None
        self._mpc_P = None
        self._mpc_K = None
        self._policy_ready = False
        self._cost_history = []
        self._iterations = 0
        self._regularization = self.config.regularization
        self._policy_regularization = 0.0

    def simulate_iteration(self) -> None:
        """
        Forward-simulate the nominal trajectory under the current policy.

        The first pass rolls out the LQR gains and the zero input and keeps
        the cheaper trajectory. Later passes follow the iLQR policy with a
        backtracking line search on the feedforward term; a candidate is
        accepted only if it does not raise the predicted total cost, and
        the regularization is adapted to the outcome.
        """
        if not self.is_solved or self._desired is None:
            raise SolverStateError("initial_iteration must run before simulate_iteration")

        contributors = snapshot_contributors(self.contributors)

        if self._nominal is None or self._mpc_P is None:
            self._accept(self._initial_rollout(contributors))
        else:
            current = self._nominal.cost
            for alpha in self.config.step_sizes:
                rollout = self._rollout(
                    lambda t, x, A, B, alpha=alpha: self._policy(t, x, A, B, alpha),
                    contributors,
                )
                if rollout.cost <= current:
                    logger.debug(
                        "forward pass accepted: step=%g cost %.6g -> %.6g",
                        alpha, current, rollout.cost,
                    )
                    self._accept(rollout)
                    if rollout.cost < current:
                        self._decrease_regularization()
                    break
                logger.debug(
                    "forward pass rejected: step=%g cost %.6g > %.6g",
                    alpha, rollout.cost, current,
                )
            else:
                self._increase_regularization()
                logger.debug(
                    "line search found no improvement; keeping nominal trajectory, "
                    "regularization raised to %g", self._regularization,
                )

        self._cost_history.append(self._nominal.cost)

    def _initial_rollout(self, contributors) -> "_Rollout":
        desired = self._desired
        hold = self.input_limits.clip(np.zeros(self.n_inputs))
        lqr = self._rollout(
            lambda t, x, A, B: self._feedback_input(t, x, desired, A, B),
            contributors,
        )
        zero = self._rollout(lambda t, x, A, B: hold, contributors)
        if zero.cost < lqr.cost:
            logger.debug(
                "initial nominal: zero input (cost %.6g) beats LQR policy (cost %.6g)",
                zero.cost, lqr.cost,
            )
            return zero
        return lqr

    def _increase_regularization(self) -> None:
        config = self.config
        self._regularization = min(
            config.max_regularization,
            max(config.min_regularization, self._regularization * config.regularization_factor),
        )

    def _decrease_regularization(self) -> None:
        config = self.config
        mu = self._regularization / config.regularization_factor
        self._regularization = mu if mu >= config.min_regularization else 0.0

    def run_iteration(self) -> None:
        """Backward pass along the current nominal trajectory."""
        if self._nominal is None:
            raise SolverStateError("simulate_iteration must run before run_iteration")

        contributors = snapshot_contributors(self.contributors)
        nominal = self._nominal
        config = self.config
        N, n, m = self.horizon, self.n_states, self.n_inputs
        R = config.input_cost
        x_d = self._desired
        mu = self._regularization
        damping = mu * np.eye(m)

        P = np.zeros((N, n, n))
        K = np.zeros((N - 1, m, n))
        l = np.zeros((N, n))

        x_N = nominal.states[N]
        M_N, q_N = local_cost_terms(contributors, x_N, N, self.dt)
        P[N - 1] = symmetrize(config.terminal_cost + M_N)
        l[N - 1] = config.terminal_cost @ (x_N - x_d) + q_N
        singular_step = None

        for t in range(N - 1, 0, -1):
            A, B = nominal.A[t], nominal.B[t]
            x_t, u_t = nominal.states[t], nominal.inputs[t]
            Q_t = self.state_cost(t)
            M_t, q_t = local_cost_terms(contributors, x_t, t, self.dt)

            try:
                inv = invert(R + B.T @ P[t] @ B + damping)
            except np.linalg.LinAlgError as exc:
                singular_step = t - 1
                logger.warning(
                    "iLQR backward pass step %d is singular (%s); zeroing "
                    "cost-to-go, gains and affine term for steps 0..%d",
                    t, exc, singular_step,
                )
                break

            BtPA = B.T @ P[t] @ A
            gain = -inv @ BtPA
            PB = P[t] @ B

            K[t - 1] = gain
            P[t - 1] = symmetrize(Q_t + M_t + A.T @ P[t] @ A + BtPA.T @ gain)
            l[t - 1] = (
                Q_t @ (x_t - x_d)
                + q_t
                + A.T @ (l[t] - PB @ (inv @ (B.T @ l[t])))
                + gain.T @ (R @ u_t)
            )

        self._mpc_P, self._mpc_K, self._l = P, K, l
        self._policy_regularization = mu
        self._policy_ready = True
        self._iterations += 1
        if singular_step is not None:
            self._singular_step = singular_step
            self._status = Status.DEGRADED

    def iterate(self, iterations: int) -> None:
        """Run ``iterations`` simulate/backward rounds."""
        for _ in range(iterations):
            self.simulate_iteration()
            self.run_iteration()

    def initialize_and_iterate(
        self,
        iterations: int,
        initial_state: np.ndarray,
        desired_state: np.ndarray,
    ) -> SolveSummary:
        """
        Full solve: ``initial_iteration`` then ``iterations`` refinement rounds.

        Returns:
            SolveSummary with the final predicted cost and timing
        """
        start = time.perf_counter()
        self.initial_iteration(initial_state, desired_state)
        self.iterate(iterations)
        self._solve_time = time.perf_counter() - start

        cost = self._nominal.cost if self._nominal is not None else math.nan
        logger.debug(
            "iLQR solve: horizon=%d iterations=%d cost=%.6g time=%.4fs",
            self.horizon, iterations, cost, self._solve_time,
        )
        return self.summary()

    def summary(self) -> SolveSummary:
        cost = self._nominal.cost if self._nominal is not None else math.nan
        return SolveSummary(
            status=self._status,
            iterations=self._iterations,
            cost=cost,
            cost_history=self.cost_history,
            solve_time=self._solve_time,
            singular_step=self._singular_step,
        )

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def optimal_input(
        self,
        time_step: int,
        state: np.ndarray,
        desired_state: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Clipped policy input at ``time_step``.

        Uses the iLQR policy once a backward pass matches the nominal
        trajectory, otherwise the base LQR gains. Beyond the horizon the
        input is zero.

        Args:
            time_step: Step index (>= 0)
            state: Current state (n,)
            desired_state: Overrides the stored target for the LQR fallback

        Returns:
            Input (m,) within the actuation limits
        """
        self._require_solved()
        if time_step < 0:
            raise InvalidInputError(f"time_step must be >= 0, got {time_step}")
        time_step = int(time_step)
        if time_step >= self.horizon:
            return np.zeros(self.n_inputs)

        x = as_vector("state", state, self.n_states)
        A, B = transition_matrices(self.model, x, self.dt)
        if self._policy_ready:
            return self._policy(time_step, x, A, B, 1.0)

        if desired_state is None:
            if self._desired is None:
                raise SolverStateError("no desired state; run initial_iteration")
            desired_state = self._desired
        x_goal = as_vector("desired_state", desired_state, self.n_states)
        return self._feedback_input(time_step, x, x_goal, A, B)

    def optimal_input_at(self, elapsed: float, state: np.ndarray) -> np.ndarray:
        """Policy input at ``elapsed`` seconds into the horizon."""
        return self.optimal_input(self.time_index(elapsed), state)

    def time_index(self, elapsed: float) -> int:
        """Step index ⌊elapsed / dt⌋, clamped at zero."""
        return max(0, int(math.floor(elapsed / self.dt)))

    def _policy(
        self,
        t: int,
        x: np.ndarray,
        A: np.ndarray,
        B: np.ndarray,
        step_size: float,
    ) -> np.ndarray:
        nominal = self._nominal
        u_bar = nominal.inputs[t]
        deviation = x - nominal.states[t]
        P = self._mpc_P[t]
        R = self.config.input_cost
        damping = self._policy_regularization * np.eye(self.n_inputs)

        try:
            inv = invert(R + B.T @ P @ B + damping)
            gain = -inv @ (B.T @ P @ A)
            feedforward = -inv @ (B.T @ self._l[t] + R @ u_bar)
        except np.linalg.LinAlgError:
            gain = self._mpc_K[t] if t < len(self._mpc_K) else np.zeros((self.n_inputs, self.n_states))
            feedforward = np.zeros(self.n_inputs)

        scale = step_size * self.config.feedforward_scale
        return self.input_limits.clip(u_bar + gain @ deviation + scale * feedforward)

    # ------------------------------------------------------------------
    # Forward pass
    # ------------------------------------------------------------------

    def _rollout(self, policy: Policy, contributors) -> _Rollout:
        N, n, m = self.horizon, self.n_states, self.n_inputs
        states = np.zeros((N + 1, n))
        inputs = np.zeros((N, m))
        A_seq = np.zeros((N, n, n))
        B_seq = np.zeros((N, n, m))

        states[0] = self._initial_state
        for t in range(N):
            x = states[t]
            A, B = transition_matrices(self.model, x, self.dt)
            u = policy(t, x, A, B)
            A_seq[t], B_seq[t] = A, B
            inputs[t] = u
            states[t + 1] = self.model.simulate(x, u, self.dt)

        cost = self._trajectory_cost(states, inputs, contributors)
        return _Rollout(states, inputs, A_seq, B_seq, cost)

    def _accept(self, rollout: _Rollout) -> None:
        self._nominal = rollout
        self._policy_ready = False

    def _trajectory_cost(self, states: np.ndarray, inputs: np.ndarray, contributors) -> float:
        """
        Total predicted cost of a state/input sequence.

            Σ_{t=1}^{N} e_tᵀ W_t e_t + Σ_{t=0}^{N-1} u_tᵀ R u_t + Σ_{t=0}^{N} c(x_t)

        with e = x - x_d, W_t the state weight at step t (terminal cost at N)
        and c the contributors' cost.
        """
        N = self.horizon
        R = self.config.input_cost
        errors = states - self._desired

        cost = 0.0
        for t in range(1, N):
            cost += errors[t] @ self.state_cost(t) @ errors[t]
        cost += errors[N] @ self.config.terminal_cost @ errors[N]
        cost += float(np.einsum("ti,ij,tj->", inputs, R, inputs))
        if contributors:
            for t in range(N + 1):
                cost += total_contributor_cost(contributors, states[t], t, self.dt)
        return float(cost)
