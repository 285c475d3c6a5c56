"""
State Estimation
================

Finite-horizon Kalman filter obtained from the LQR engine by duality.

The predictor-form covariance recursion

    Σ_{k+1} = A Σ_k Aᵀ + W - A Σ_k Cᵀ (C Σ_k Cᵀ + V)⁻¹ C Σ_k Aᵀ

is the Riccati recursion of the dual system x' = Aᵀ x + Cᵀ u with state
cost W, input cost V and terminal cost Σ_0, run backward. The filter gain
at step k is L_k = -K_dualᵀ at the mirrored step.
"""

from __future__ import annotations

from typing import Optional
import numpy as np

from ..exceptions import DimensionError
from ..utils.validation import as_matrix, as_vector
from .config import SolverConfig
from .dynamics import DynamicModel, LinearDynamicModel, transition_matrices, validate_model
from .lqr import LQRSolver


class _DualModel(LinearDynamicModel):
    """(Aᵀ, Cᵀ) of a model linearized at a fixed state."""

    def __init__(self, model: DynamicModel, C: np.ndarray, state: np.ndarray) -> None:
        self.model = model
        self.C = C
        self.state = state

    @property
    def n_states(self) -> int:
        return self.model.n_states

    @property
    def n_inputs(self) -> int:
        return self.C.shape[0]

    def state_transition(self, dt: float) -> np.ndarray:
        A, _ = transition_matrices(self.model, self.state, dt)
        return A.T

    def input_transition(self, dt: float) -> np.ndarray:
        return self.C.T


class _DualLQR(LQRSolver):
    # Process noise enters every step, including the first one after Σ_0.
    def state_cost(self, time_step: int) -> np.ndarray:
        return self.config.stage_cost


class KalmanFilter:
    """
    Predictor-form Kalman filter with precomputed time-varying gains.

    Args:
        horizon: Number of filter steps with distinct gains
        dt: Time step (s)
        measurement_matrix: C (p, n), y = C x + v
        process_covariance: W (n, n)
        measurement_covariance: V (p, p), positive definite
        model: Dynamic model
        initial_covariance: Σ_0 (n, n), defaults to W

    Example:
        >>> kf = KalmanFilter(200, 0.1, np.array([[1.0, 0.0]]),
        ...                   np.eye(2), 0.01 * np.eye(1), point_mass())
        >>> kf.compute_gains(x_hat)
        >>> x_hat = kf.predict(x_hat, u, y, step=0)
    """

    def __init__(
        self,
        horizon: int,
        dt: float,
        measurement_matrix: np.ndarray,
        process_covariance: np.ndarray,
        measurement_covariance: np.ndarray,
        model: DynamicModel,
        initial_covariance: Optional[np.ndarray] = None,
    ) -> None:
        self.model = validate_model(model)
        self.C = as_matrix("measurement_matrix", measurement_matrix)
        if self.C.shape[1] != model.n_states:
            raise DimensionError(
                f"measurement_matrix has {self.C.shape[1]} columns, "
                f"expected {model.n_states}"
            )
        W = as_matrix("process_covariance", process_covariance)
        self.config = SolverConfig(
            horizon=horizon,
            dt=dt,
            terminal_cost=W if initial_covariance is None else initial_covariance,
            stage_cost=W,
            input_cost=measurement_covariance,
        )
        self._lqr: Optional[_DualLQR] = None

    @property
    def horizon(self) -> int:
        return self.config.horizon

    @property
    def is_ready(self) -> bool:
        return self._lqr is not None

    def compute_gains(self, state: np.ndarray) -> None:
        """Run the dual Riccati recursion with the model linearized at ``state``."""
        x = as_vector("state", state, self.model.n_states)
        dual = _DualModel(self.model, self.C, x)
        self._lqr = _DualLQR.from_config(self.config, dual)
        self._lqr.solve(x)

    def covariance(self, step: int) -> np.ndarray:
        """Prior error covariance Σ_step."""
        P = self._require_lqr().cost_to_go
        return P[max(0, self.horizon - 1 - step)]

    def gain(self, step: int) -> np.ndarray:
        """Filter gain L_step (n, p); the last gain is held past the horizon."""
        K = self._require_lqr().gains
        return -K[max(0, self.horizon - 2 - step)].T

    def predict(
        self,
        state_estimate: np.ndarray,
        input: np.ndarray,
        measurement: np.ndarray,
        step: int,
    ) -> np.ndarray:
        """
        Next state estimate from the current estimate and measurement.

            x̂_{k+1} = A x̂_k + B u_k + L_k (y_k - C x̂_k)

        Args:
            state_estimate: x̂_k (n,)
            input: u_k (m,)
            measurement: y_k (p,)
            step: Filter step k

        Returns:
            x̂_{k+1} (n,)
        """
        x_hat = as_vector("state_estimate", state_estimate, self.model.n_states)
        u = as_vector("input", input, self.model.n_inputs)
        y = as_vector("measurement", measurement, self.C.shape[0])
        A, B = transition_matrices(self.model, x_hat, self.config.dt)
        return A @ x_hat + B @ u + self.gain(step) @ (y - self.C @ x_hat)

    def _require_lqr(self) -> _DualLQR:
        if self._lqr is None:
            self.compute_gains(np.zeros(self.model.n_states))
        return self._lqr
