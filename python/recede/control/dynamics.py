"""
System Dynamics Models
======================

The dynamic-model contract consumed by the LQR and iLQR engines, plus a few
concrete models.

Every model advances a state with ``simulate(state, input, dt)`` and exposes
transition matrices in one of two specializations:

- ``LinearDynamicModel``: constant ``state_transition(dt)`` and
  ``input_transition(dt)``
- ``NonlinearDynamicModel``: state-dependent ``state_transition(state, dt)``
  and ``input_transition(state, dt)``, i.e. a local linearization written in
  state-dependent-coefficient form, x_{k+1} = A(x_k) x_k + B(x_k) u_k

A model implementing neither is a configuration error and raises
``InvalidDynamicModelError`` when a solver is built around it or, at the
latest, the first time its transition matrices are requested.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Tuple
import numpy as np

from ..exceptions import DimensionError, InvalidDynamicModelError, InvalidInputError


class DynamicModel(ABC):
    """
    Base class for all dynamic models.

    Subclasses must also derive from one of the two specializations.
    """

    @property
    @abstractmethod
    def n_states(self) -> int:
        """Number of states."""

    @property
    @abstractmethod
    def n_inputs(self) -> int:
        """Number of inputs."""

    def simulate(self, state: np.ndarray, input: np.ndarray, dt: float) -> np.ndarray:
        """
        Advance ``state`` by one step of length ``dt`` under ``input``.

        The default integrates the transition matrices, A x + B u; override
        for a more accurate integrator.
        """
        A, B = transition_matrices(self, state, dt)
        return A @ state + B @ input


class LinearDynamicModel(DynamicModel):
    """Model with constant transition matrices for a given dt."""

    @abstractmethod
    def state_transition(self, dt: float) -> np.ndarray:
        """Discrete state transition matrix A (n, n)."""

    @abstractmethod
    def input_transition(self, dt: float) -> np.ndarray:
        """Discrete input matrix B (n, m)."""


class NonlinearDynamicModel(DynamicModel):
    """Model whose transition matrices depend on the current state."""

    @abstractmethod
    def state_transition(self, state: np.ndarray, dt: float) -> np.ndarray:
        """Discrete state transition matrix A(x) (n, n)."""

    @abstractmethod
    def input_transition(self, state: np.ndarray, dt: float) -> np.ndarray:
        """Discrete input matrix B(x) (n, m)."""


def validate_model(model: object) -> DynamicModel:
    """
    Check that ``model`` implements one of the two specializations.

    Raises:
        InvalidDynamicModelError: If it implements neither
    """
    if not isinstance(model, (LinearDynamicModel, NonlinearDynamicModel)):
        raise InvalidDynamicModelError(model)
    return model


def transition_matrices(
    model: DynamicModel,
    state: np.ndarray,
    dt: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Transition matrices (A, B) of ``model`` at ``state``.

    Linear models ignore ``state``.

    Raises:
        InvalidDynamicModelError: If the model implements neither specialization
    """
    if isinstance(model, LinearDynamicModel):
        return model.state_transition(dt), model.input_transition(dt)
    if isinstance(model, NonlinearDynamicModel):
        return model.state_transition(state, dt), model.input_transition(state, dt)
    raise InvalidDynamicModelError(model)


@dataclass
class LinearSystem(LinearDynamicModel):
    """
    Linear Time-Invariant (LTI) continuous-time system.

    Dynamics: dx/dt = Ac @ x + Bc @ u, discretized on demand for each dt.

    Args:
        Ac: Continuous state matrix (n_x, n_x)
        Bc: Continuous input matrix (n_x, n_u)
        method: Discretization method ('zoh', 'euler', 'tustin')

    Example:
        >>> # Double integrator (position, velocity)
        >>> system = LinearSystem(
        ...     Ac=np.array([[0.0, 1.0], [0.0, 0.0]]),
        ...     Bc=np.array([[0.0], [1.0]]),
        ... )
        >>> A = system.state_transition(0.1)
        >>> x_next = system.simulate(np.array([0.0, 1.0]), np.array([0.5]), 0.1)
    """
    Ac: np.ndarray
    Bc: np.ndarray
    method: str = "zoh"
    _cache: Dict[float, Tuple[np.ndarray, np.ndarray]] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self):
        """Validate dimensions."""
        self.Ac = np.asarray(self.Ac, dtype=np.float64)
        self.Bc = np.asarray(self.Bc, dtype=np.float64)

        if self.Ac.ndim != 2:
            raise DimensionError(f"Ac must be 2D, got shape {self.Ac.shape}")
        if self.Bc.ndim != 2:
            raise DimensionError(f"Bc must be 2D, got shape {self.Bc.shape}")

        n_x = self.Ac.shape[0]
        if self.Ac.shape != (n_x, n_x):
            raise DimensionError(f"Ac must be square, got shape {self.Ac.shape}")
        if self.Bc.shape[0] != n_x:
            raise DimensionError(
                f"Bc rows ({self.Bc.shape[0]}) must match Ac ({n_x})"
            )
        if self.method not in ("zoh", "euler", "tustin"):
            raise InvalidInputError(f"Unknown method '{self.method}'")

    @property
    def n_states(self) -> int:
        """Number of states."""
        return self.Ac.shape[0]

    @property
    def n_inputs(self) -> int:
        """Number of inputs."""
        return self.Bc.shape[1]

    def discretize(self, dt: float) -> Tuple[np.ndarray, np.ndarray]:
        """
        Discrete (A, B) for sampling time ``dt``.

        Continuous: dx/dt = Ac @ x + Bc @ u
        Discrete:   x_{k+1} = A @ x_k + B @ u_k
        """
        cached = self._cache.get(dt)
        if cached is not None:
            return cached

        Ac, Bc = self.Ac, self.Bc
        n = Ac.shape[0]

        if self.method == "euler":
            # Forward Euler: A = I + Ac*dt, B = Bc*dt
            A = np.eye(n) + Ac * dt
            B = Bc * dt

        elif self.method == "zoh":
            # Zero-Order Hold (exact discretization)
            from scipy.linalg import expm

            m = Bc.shape[1]

            # Build augmented matrix [Ac, Bc; 0, 0]
            M = np.zeros((n + m, n + m))
            M[:n, :n] = Ac * dt
            M[:n, n:] = Bc * dt

            eM = expm(M)
            A = eM[:n, :n]
            B = eM[:n, n:]

        else:
            # Bilinear (Tustin) transform
            I = np.eye(n)
            inv_term = np.linalg.inv(I - (dt / 2) * Ac)
            A = inv_term @ (I + (dt / 2) * Ac)
            B = inv_term @ Bc * dt

        self._cache[dt] = (A, B)
        return A, B

    def state_transition(self, dt: float) -> np.ndarray:
        return self.discretize(dt)[0]

    def input_transition(self, dt: float) -> np.ndarray:
        return self.discretize(dt)[1]

    def is_stable(self, dt: float) -> bool:
        """Check if the discretized system is stable (eigenvalues inside unit circle)."""
        eigenvalues = np.linalg.eigvals(self.state_transition(dt))
        return bool(np.all(np.abs(eigenvalues) < 1.0))

    def is_controllable(self, dt: float) -> bool:
        """Check if the discretized system is controllable."""
        A, B = self.discretize(dt)
        n = self.n_states
        controllability = B

        for i in range(1, n):
            controllability = np.hstack([
                controllability,
                np.linalg.matrix_power(A, i) @ B
            ])

        return np.linalg.matrix_rank(controllability) == n


def point_mass(max_acceleration: float = 1.0, drag: float = 0.0) -> LinearSystem:
    """
    Create a point mass on a line driven by a normalized force command.

    States: [position, velocity]
    Input: normalized acceleration command in [-1, 1]

    Args:
        max_acceleration: Acceleration at full command (m/s^2)
        drag: Viscous drag coefficient (1/s)

    Returns:
        LinearSystem for the point mass
    """
    Ac = np.array([
        [0.0, 1.0],
        [0.0, -drag]
    ])
    Bc = np.array([
        [0.0],
        [max_acceleration]
    ])
    return LinearSystem(Ac, Bc)


def planar_point_mass(max_acceleration: float = 1.0, drag: float = 0.0) -> LinearSystem:
    """
    Create a point mass in the plane.

    States: [x, y, vx, vy]
    Inputs: normalized [ax, ay] commands

    Args:
        max_acceleration: Acceleration at full command (m/s^2)
        drag: Viscous drag coefficient (1/s)

    Returns:
        LinearSystem for the planar point mass
    """
    Ac = np.array([
        [0.0, 0.0, 1.0, 0.0],
        [0.0, 0.0, 0.0, 1.0],
        [0.0, 0.0, -drag, 0.0],
        [0.0, 0.0, 0.0, -drag]
    ])
    Bc = np.array([
        [0.0, 0.0],
        [0.0, 0.0],
        [max_acceleration, 0.0],
        [0.0, max_acceleration]
    ])
    return LinearSystem(Ac, Bc)


class DifferentialDriveModel(NonlinearDynamicModel):
    """
    Tank (differential) drive with first-order wheel response.

    States: [x, y, heading, v_left, v_right]
    Inputs: normalized [left, right] wheel commands

    Each wheel's ground speed relaxes toward ``command * max_wheel_speed``
    with time constant ``time_constant``; the body moves at the mean wheel
    speed along its heading and turns at the wheel speed difference over
    the track width.

    Args:
        track_width: Distance between the wheels (m)
        max_wheel_speed: Wheel ground speed at full command (m/s)
        time_constant: Wheel response time constant (s)
    """

    def __init__(
        self,
        track_width: float = 0.4,
        max_wheel_speed: float = 1.5,
        time_constant: float = 0.1,
    ) -> None:
        if track_width <= 0 or max_wheel_speed <= 0 or time_constant <= 0:
            raise InvalidInputError("drive parameters must be positive")
        self.track_width = track_width
        self.max_wheel_speed = max_wheel_speed
        self.time_constant = time_constant

    @property
    def n_states(self) -> int:
        return 5

    @property
    def n_inputs(self) -> int:
        return 2

    def state_transition(self, state: np.ndarray, dt: float) -> np.ndarray:
        heading = state[2]
        c, s = np.cos(heading), np.sin(heading)
        M = np.zeros((5, 5))
        M[0, 3] = M[0, 4] = c / 2
        M[1, 3] = M[1, 4] = s / 2
        M[2, 3] = -1.0 / self.track_width
        M[2, 4] = 1.0 / self.track_width
        M[3, 3] = M[4, 4] = -1.0 / self.time_constant
        return np.eye(5) + dt * M

    def input_transition(self, state: np.ndarray, dt: float) -> np.ndarray:
        B = np.zeros((5, 2))
        B[3, 0] = B[4, 1] = dt * self.max_wheel_speed / self.time_constant
        return B


class MecanumDriveModel(NonlinearDynamicModel):
    """
    Mecanum drive with first-order velocity response.

    States: [x, y, heading, vx, vy, omega] (field-frame velocities)
    Inputs: normalized wheel commands [front_left, front_right, back_left, back_right]

    Wheel commands map to a body twist through the mecanum inverse
    kinematics; the twist is rotated into the field frame by the current
    heading, which makes the input matrix state-dependent.

    Args:
        wheelbase: Front-to-back wheel distance (m)
        track_width: Left-to-right wheel distance (m)
        max_wheel_speed: Wheel surface speed at full command (m/s)
        time_constant: Velocity response time constant (s)
    """

    def __init__(
        self,
        wheelbase: float = 0.3,
        track_width: float = 0.35,
        max_wheel_speed: float = 1.5,
        time_constant: float = 0.15,
    ) -> None:
        if min(wheelbase, track_width, max_wheel_speed, time_constant) <= 0:
            raise InvalidInputError("drive parameters must be positive")
        self.wheelbase = wheelbase
        self.track_width = track_width
        self.max_wheel_speed = max_wheel_speed
        self.time_constant = time_constant

    @property
    def n_states(self) -> int:
        return 6

    @property
    def n_inputs(self) -> int:
        return 4

    def body_twist_matrix(self) -> np.ndarray:
        """Map from wheel commands to body twist [vx, vy, omega] (3, 4)."""
        k = 2.0 / (self.wheelbase + self.track_width)
        return (self.max_wheel_speed / 4.0) * np.array([
            [1.0, 1.0, 1.0, 1.0],
            [-1.0, 1.0, 1.0, -1.0],
            [-k, k, -k, k],
        ])

    def state_transition(self, state: np.ndarray, dt: float) -> np.ndarray:
        M = np.zeros((6, 6))
        M[0, 3] = M[1, 4] = M[2, 5] = 1.0
        M[3, 3] = M[4, 4] = M[5, 5] = -1.0 / self.time_constant
        return np.eye(6) + dt * M

    def input_transition(self, state: np.ndarray, dt: float) -> np.ndarray:
        heading = state[2]
        c, s = np.cos(heading), np.sin(heading)
        rotation = np.array([
            [c, -s, 0.0],
            [s, c, 0.0],
            [0.0, 0.0, 1.0],
        ])
        B = np.zeros((6, 4))
        B[3:, :] = (dt / self.time_constant) * rotation @ self.body_twist_matrix()
        return B
