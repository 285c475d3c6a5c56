"""
Solver Configuration
====================

Horizon, time step, cost matrices and iteration settings shared by the
LQR/iLQR engines, the background runner and the controller facade.

A ``SolverConfig`` is immutable: its arrays are copied and made read-only.
Cost matrices are changed between re-solves by building a new config
(``with_costs``) and handing it to the runner; a solve in flight keeps the
config it started with.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple
import numpy as np

from ..exceptions import InvalidInputError
from ..utils.validation import as_matrix, validate_costs
from .constraints import ActuationLimits

DEFAULT_ITERATIONS = 5
DEFAULT_STEP_SIZES = (1.0, 0.5, 0.25, 0.125, 0.0625, 0.03125)

# Levenberg-Marquardt damping on R + BᵀPB: starts undamped, raised by the
# factor after a rejected forward pass, lowered after an improving one.
DEFAULT_MIN_REGULARIZATION = 1e-6
DEFAULT_MAX_REGULARIZATION = 1e6
DEFAULT_REGULARIZATION_FACTOR = 10.0

# Optional keys passed straight through by ``SolverConfig.from_params``.
_PARAM_FIELDS = frozenset({
    "iterations",
    "feedforward_scale",
    "step_sizes",
    "regularization",
    "min_regularization",
    "max_regularization",
    "regularization_factor",
})


class ControllerBehavior(Enum):
    """
    Cost-scaling presets for the terminal cost.

    Larger factors weigh reaching the goal more heavily against actuation
    effort, producing more aggressive motion.
    """
    AGGRESSIVE = 1000.0
    STANDARD = 100.0
    SLOW = 10.0

    @property
    def cost_factor(self) -> float:
        return self.value


def _frozen(matrix: np.ndarray) -> np.ndarray:
    matrix = np.array(matrix, dtype=np.float64)
    matrix.setflags(write=False)
    return matrix


@dataclass(frozen=True, eq=False)
class SolverConfig:
    """
    Configuration for one finite-horizon solve.

    Args:
        horizon: Number of steps N (the nominal trajectory has N + 1 states)
        dt: Time step in seconds
        terminal_cost: Qf (n, n), positive semidefinite
        stage_cost: Q (n, n), positive semidefinite
        input_cost: R (m, m), positive definite (singular R degrades gains)
        iterations: Simulate/backward passes per solve
        input_limits: Actuation limits, [-1, 1] per input by default
        feedforward_scale: Multiplier on the iLQR feedforward correction
        step_sizes: Line-search schedule for accepting a forward pass
        regularization: Initial damping μ added to R + BᵀPB in the backward pass
        min_regularization: Smallest nonzero μ; lowering below it resets μ to 0
        max_regularization: Upper bound on μ
        regularization_factor: Multiplier applied to μ on rejection/acceptance

    Example:
        >>> config = SolverConfig(
        ...     horizon=100, dt=0.01,
        ...     terminal_cost=np.diag([1000.0, 1000.0]),
        ...     stage_cost=np.diag([1.0, 0.0]),
        ...     input_cost=np.eye(1),
        ... )
        >>> config.n_states, config.n_inputs
        (2, 1)
    """
    horizon: int
    dt: float
    terminal_cost: np.ndarray
    stage_cost: np.ndarray
    input_cost: np.ndarray
    iterations: int = DEFAULT_ITERATIONS
    input_limits: Optional[ActuationLimits] = None
    feedforward_scale: float = 1.0
    step_sizes: Tuple[float, ...] = field(default=DEFAULT_STEP_SIZES)
    regularization: float = 0.0
    min_regularization: float = DEFAULT_MIN_REGULARIZATION
    max_regularization: float = DEFAULT_MAX_REGULARIZATION
    regularization_factor: float = DEFAULT_REGULARIZATION_FACTOR

    def __post_init__(self):
        """Validate and freeze."""
        if int(self.horizon) != self.horizon or self.horizon < 2:
            raise InvalidInputError(f"horizon must be an integer >= 2, got {self.horizon}")
        if not np.isfinite(self.dt) or self.dt <= 0:
            raise InvalidInputError(f"dt must be positive, got {self.dt}")
        if int(self.iterations) != self.iterations or self.iterations < 0:
            raise InvalidInputError(f"iterations must be >= 0, got {self.iterations}")
        if not np.isfinite(self.feedforward_scale) or self.feedforward_scale < 0:
            raise InvalidInputError("feedforward_scale must be non-negative")

        Qf = as_matrix("terminal_cost", self.terminal_cost)
        Q = as_matrix("stage_cost", self.stage_cost)
        R = as_matrix("input_cost", self.input_cost)
        is_valid, message = validate_costs(Qf, Q, R)
        if not is_valid:
            raise InvalidInputError(message)

        step_sizes = tuple(float(alpha) for alpha in self.step_sizes)
        if not step_sizes or any(not 0 < alpha <= 1 for alpha in step_sizes):
            raise InvalidInputError("step_sizes must be a non-empty sequence in (0, 1]")
        if not 0 < self.min_regularization <= self.max_regularization:
            raise InvalidInputError(
                "regularization bounds must satisfy 0 < min_regularization <= max_regularization"
            )
        if not 0 <= self.regularization <= self.max_regularization:
            raise InvalidInputError(
                f"regularization must lie in [0, {self.max_regularization}], "
                f"got {self.regularization}"
            )
        if not self.regularization_factor > 1:
            raise InvalidInputError("regularization_factor must be greater than 1")

        limits = self.input_limits
        if limits is None:
            limits = ActuationLimits.normalized(R.shape[0])
        elif limits.dim != R.shape[0]:
            raise InvalidInputError(
                f"input_limits has dimension {limits.dim}, expected {R.shape[0]}"
            )

        object.__setattr__(self, "horizon", int(self.horizon))
        object.__setattr__(self, "dt", float(self.dt))
        object.__setattr__(self, "iterations", int(self.iterations))
        object.__setattr__(self, "terminal_cost", _frozen(Qf))
        object.__setattr__(self, "stage_cost", _frozen(Q))
        object.__setattr__(self, "input_cost", _frozen(R))
        object.__setattr__(self, "input_limits", limits)
        object.__setattr__(self, "step_sizes", step_sizes)
        for name in ("regularization", "min_regularization", "max_regularization",
                     "regularization_factor"):
            object.__setattr__(self, name, float(getattr(self, name)))

    @property
    def n_states(self) -> int:
        """Number of states."""
        return self.stage_cost.shape[0]

    @property
    def n_inputs(self) -> int:
        """Number of inputs."""
        return self.input_cost.shape[0]

    @property
    def duration(self) -> float:
        """Horizon length in seconds."""
        return self.horizon * self.dt

    def state_cost(self, time_step: int) -> np.ndarray:
        """
        State weight applied at ``time_step``.

        The stage cost before the end of the horizon, the terminal cost at
        and beyond step N - 1 (the index of the terminal cost-to-go).
        """
        if time_step >= self.horizon - 1:
            return self.terminal_cost
        return self.stage_cost

    def with_costs(
        self,
        terminal_cost: Optional[np.ndarray] = None,
        stage_cost: Optional[np.ndarray] = None,
        input_cost: Optional[np.ndarray] = None,
    ) -> "SolverConfig":
        """Return a copy with some cost matrices replaced."""
        return replace(
            self,
            terminal_cost=self.terminal_cost if terminal_cost is None else terminal_cost,
            stage_cost=self.stage_cost if stage_cost is None else stage_cost,
            input_cost=self.input_cost if input_cost is None else input_cost,
        )

    def with_behavior(self, behavior: ControllerBehavior) -> "SolverConfig":
        """Return a copy with the terminal cost scaled by the behavior preset."""
        return self.with_costs(terminal_cost=self.terminal_cost * behavior.cost_factor)

    @classmethod
    def from_importance(
        cls,
        importance: Sequence[float],
        n_inputs: int,
        behavior: ControllerBehavior = ControllerBehavior.STANDARD,
        horizon: int = 500,
        dt: float = 0.002,
        **kwargs: Any,
    ) -> "SolverConfig":
        """
        Build a config from per-state importance weights.

        The terminal cost is ``diag(importance) * behavior.cost_factor``, the
        stage cost is zero and the input cost is the identity, so the
        solution trades terminal accuracy against total actuation.

        Args:
            importance: Weight for each state component
            n_inputs: Number of inputs
            behavior: Aggressiveness preset
            horizon: Number of steps
            dt: Time step in seconds
            **kwargs: Forwarded to ``SolverConfig``
        """
        weights = np.asarray(importance, dtype=np.float64)
        return cls(
            horizon=horizon,
            dt=dt,
            terminal_cost=np.diag(weights) * behavior.cost_factor,
            stage_cost=np.zeros((len(weights), len(weights))),
            input_cost=np.eye(n_inputs),
            **kwargs,
        )

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "SolverConfig":
        """
        Build a config from a plain parameter dictionary.

        Recognized keys: ``horizon``, ``dt``, ``terminal_cost`` (or ``Qf``),
        ``stage_cost`` (or ``Q``), ``input_cost`` (or ``R``), ``iterations``,
        ``u_min``, ``u_max``, ``feedforward_scale``, ``step_sizes`` and the
        regularization settings.
        """
        params = dict(params)
        try:
            horizon = params.pop("horizon")
            dt = params.pop("dt")
            Qf = params.pop("terminal_cost", None)
            Qf = params.pop("Qf") if Qf is None else Qf
            Q = params.pop("stage_cost", None)
            Q = params.pop("Q") if Q is None else Q
            R = params.pop("input_cost", None)
            R = params.pop("R") if R is None else R
        except KeyError as exc:
            raise InvalidInputError(f"missing solver parameter {exc.args[0]!r}") from exc

        R = as_matrix("input_cost", R)
        limits = None
        if "u_min" in params or "u_max" in params:
            limits = ActuationLimits(
                lower=params.pop("u_min", -1.0),
                upper=params.pop("u_max", 1.0),
                dim=R.shape[0],
            )

        unknown = set(params) - _PARAM_FIELDS
        if unknown:
            raise InvalidInputError(f"unknown solver parameters {sorted(unknown)}")

        return cls(
            horizon=horizon,
            dt=dt,
            terminal_cost=Qf,
            stage_cost=Q,
            input_cost=R,
            input_limits=limits,
            **params,
        )
