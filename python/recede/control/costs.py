"""
Cost Contributors
=================

Pluggable, time-varying cost terms folded into the iLQR backward pass.

A contributor describes its cost locally around a simulated state x̄ at
step t as

    c(x) ≈ c(x̄) + δᵀ M δ + 2 qᵀ δ,    δ = x - x̄

where ``quadratic_cost`` returns M (n, n) and ``linear_cost`` returns q (n,).
This matches the xᵀQx convention of the stage costs, so for a smooth
potential φ, M = ½∇²φ and q = ½∇φ. Either may be ``None`` for "no
contribution at this step". ``cost`` returns c(x̄) itself and is used only
to score nominal trajectories.

Contributor collections may be edited by other threads while a solve is
running. The engines never iterate a live collection: they take a snapshot
(``snapshot_contributors``) once per pass. ``CostRegistry`` is a lock-guarded
collection for callers that need to edit obstacles on the fly.
"""

from __future__ import annotations

import math
import threading
from abc import ABC, abstractmethod
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple, Union
import numpy as np

from ..exceptions import DimensionError, InvalidInputError
from ..utils.linalg import embed, project_psd
from ..utils.validation import as_matrix, as_vector

# Gaussian length scale is (robot_radius + obstacle_radius) / this divisor.
LENGTH_SCALE_DIVISOR = 1.7


class CostContributor(ABC):
    """Base class for extra cost terms."""

    @abstractmethod
    def quadratic_cost(
        self, state: np.ndarray, time_step: int, dt: float
    ) -> Optional[np.ndarray]:
        """Local quadratic weight M (n, n) at ``state``, or None."""

    @abstractmethod
    def linear_cost(
        self, state: np.ndarray, time_step: int, dt: float
    ) -> Optional[np.ndarray]:
        """Local linear weight q (n,) at ``state``, or None."""

    def cost(self, state: np.ndarray, time_step: int, dt: float) -> float:
        """Value of the cost at ``state``; zero unless overridden."""
        return 0.0


class Obstacle(CostContributor):
    """
    Circular obstacle with a repulsive Gaussian potential.

    Potential over the position components p of the state:

        φ(x) = cost_factor * exp(-|p - c|² / ℓ²),
        ℓ = (robot_radius + radius) / 1.7

    The raw Hessian of φ is indefinite near the center (the potential is a
    bump, not a bowl). ``quadratic_cost`` returns its projection onto the
    PSD cone so the stage cost stays positive semidefinite; the repulsion
    itself is carried by the gradient in ``linear_cost``.

    Args:
        center: Obstacle position, one coordinate per position index
        radius: Obstacle radius (m)
        cost_factor: Potential height
        robot_radius: Robot footprint radius (m)
        position_indices: State components holding the robot position

    Example:
        >>> obstacle = Obstacle(center=[0.5, 0.0], radius=0.1, cost_factor=1e4)
        >>> obstacle.distance(np.array([0.0, 0.0, 0.0, 0.0]))
        0.5
    """

    def __init__(
        self,
        center: Sequence[float],
        radius: float,
        cost_factor: float,
        robot_radius: float = 0.3,
        position_indices: Sequence[int] = (0, 1),
    ) -> None:
        self.center = as_vector("center", center)
        self.position_indices = tuple(int(i) for i in position_indices)
        if len(self.center) != len(self.position_indices):
            raise DimensionError(
                f"center has {len(self.center)} coordinates but "
                f"{len(self.position_indices)} position indices were given"
            )
        if radius < 0 or robot_radius < 0 or radius + robot_radius <= 0:
            raise InvalidInputError("radii must be non-negative with a positive sum")
        if cost_factor < 0:
            raise InvalidInputError("cost_factor must be non-negative")
        self.radius = float(radius)
        self.robot_radius = float(robot_radius)
        self.cost_factor = float(cost_factor)

    @property
    def length_scale(self) -> float:
        """Gaussian length scale ℓ."""
        return (self.robot_radius + self.radius) / LENGTH_SCALE_DIVISOR

    def displacement(self, state: np.ndarray) -> np.ndarray:
        """Robot position minus obstacle center."""
        return np.asarray(state)[list(self.position_indices)] - self.center

    def distance(self, state: np.ndarray) -> float:
        """Distance from the robot position to the obstacle center."""
        return float(np.linalg.norm(self.displacement(state)))

    def is_colliding(self, state: np.ndarray) -> bool:
        """True if the robot footprint (shrunk by 10%) touches the obstacle."""
        return self.distance(state) - self.radius - 0.9 * self.robot_radius < 0

    def potential(self, state: np.ndarray) -> float:
        d = self.displacement(state)
        return self.cost_factor * math.exp(-float(d @ d) / self.length_scale ** 2)

    def hessian(self, state: np.ndarray) -> np.ndarray:
        """
        Raw Hessian of φ with respect to the position (k, k); may be indefinite.

            ∇²φ = φ / ℓ⁴ * (4 d dᵀ - 2 ℓ² I)
        """
        d = self.displacement(state)
        scale = self.length_scale ** 2
        return self.potential(state) / scale ** 2 * (
            4.0 * np.outer(d, d) - 2.0 * scale * np.eye(len(d))
        )

    def gradient(self, state: np.ndarray) -> np.ndarray:
        """Gradient of φ with respect to the position (k,)."""
        d = self.displacement(state)
        return -2.0 / self.length_scale ** 2 * self.potential(state) * d

    def quadratic_cost(self, state: np.ndarray, time_step: int, dt: float) -> np.ndarray:
        state = np.asarray(state)
        block = 0.5 * project_psd(self.hessian(state))
        return embed(block, self.position_indices, len(state))

    def linear_cost(self, state: np.ndarray, time_step: int, dt: float) -> np.ndarray:
        state = np.asarray(state)
        return embed(0.5 * self.gradient(state), self.position_indices, len(state))

    def cost(self, state: np.ndarray, time_step: int, dt: float) -> float:
        return self.potential(state)

    def __repr__(self) -> str:
        return (
            f"Obstacle(center={self.center.tolist()}, radius={self.radius}, "
            f"cost_factor={self.cost_factor})"
        )


class Waypoint(CostContributor):
    """
    Soft, time-scheduled attraction toward a target state.

    Cost at time t = time_step * dt:

        γ(t) (x - x_w)ᵀ W (x - x_w),
        γ(t) = sqrt(s / 2π) * exp(-s (t - t_w)² / 2)

    where s is the temporal precision (``temporal_spread``). The weight
    peaks at the desired arrival time and fades either side, so the
    trajectory is encouraged, not forced, to pass near x_w around t_w.

    Args:
        state: Target state x_w (n,)
        weight: State weight W (n, n), positive semidefinite
        arrival_time: Desired arrival time t_w (s)
        temporal_spread: Precision s of the temporal Gaussian (1/s²)
    """

    def __init__(
        self,
        state: Sequence[float],
        weight: np.ndarray,
        arrival_time: float,
        temporal_spread: float = 100.0,
    ) -> None:
        self.state = as_vector("state", state)
        n = len(self.state)
        self.weight = as_matrix("weight", weight, (n, n))
        if temporal_spread <= 0:
            raise InvalidInputError("temporal_spread must be positive")
        self.arrival_time = float(arrival_time)
        self.temporal_spread = float(temporal_spread)

    def temporal_weight(self, time: float) -> float:
        """Gaussian weight γ(t)."""
        s = self.temporal_spread
        return math.sqrt(s / (2.0 * math.pi)) * math.exp(
            -s * (time - self.arrival_time) ** 2 / 2.0
        )

    def quadratic_cost(self, state: np.ndarray, time_step: int, dt: float) -> np.ndarray:
        return self.temporal_weight(time_step * dt) * self.weight

    def linear_cost(self, state: np.ndarray, time_step: int, dt: float) -> np.ndarray:
        error = np.asarray(state) - self.state
        return self.temporal_weight(time_step * dt) * (self.weight @ error)

    def cost(self, state: np.ndarray, time_step: int, dt: float) -> float:
        error = np.asarray(state) - self.state
        return self.temporal_weight(time_step * dt) * float(error @ self.weight @ error)

    def __repr__(self) -> str:
        return (
            f"Waypoint(state={self.state.tolist()}, "
            f"arrival_time={self.arrival_time})"
        )


class CostRegistry:
    """
    Thread-safe collection of cost contributors.

    Editing methods and ``snapshot`` share one lock, so a solver reading a
    snapshot never observes a half-applied edit.

    Example:
        >>> registry = CostRegistry()
        >>> registry.add(Obstacle([1.0, 1.0], radius=0.2, cost_factor=1e3))
        >>> solver = MPCSolver(..., contributors=registry)
    """

    def __init__(self, contributors: Iterable[CostContributor] = ()) -> None:
        self._lock = threading.Lock()
        self._items: List[CostContributor] = list(contributors)

    def add(self, contributor: CostContributor) -> None:
        with self._lock:
            self._items.append(contributor)

    def extend(self, contributors: Iterable[CostContributor]) -> None:
        with self._lock:
            self._items.extend(contributors)

    def remove(self, contributor: CostContributor) -> None:
        """Remove a contributor; raises ValueError if absent."""
        with self._lock:
            self._items.remove(contributor)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def snapshot(self) -> Tuple[CostContributor, ...]:
        """Immutable copy of the current contents."""
        with self._lock:
            return tuple(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __iter__(self) -> Iterator[CostContributor]:
        return iter(self.snapshot())


ContributorSource = Union[
    CostRegistry, List[CostContributor], Tuple[CostContributor, ...], None
]


def check_contributors(source: ContributorSource) -> ContributorSource:
    """
    Validate a contributor source.

    Accepted: None, a ``CostRegistry``, a list or a tuple. Copying a list
    that another thread appends to or removes from never raises, so a plain
    list may be edited while solves run. Sets, dict views and generators
    can fail or be exhausted mid-copy and are rejected up front.

    Raises:
        InvalidInputError: For any other kind of collection
    """
    if source is None or isinstance(source, (CostRegistry, list, tuple)):
        return source
    raise InvalidInputError(
        "contributors must be a CostRegistry, list or tuple, "
        f"got {type(source).__name__}"
    )


def snapshot_contributors(source: ContributorSource) -> Tuple[CostContributor, ...]:
    """Take an immutable snapshot of a registry, list or tuple of contributors."""
    check_contributors(source)
    if source is None:
        return ()
    if isinstance(source, CostRegistry):
        return source.snapshot()
    return tuple(source)


def local_cost_terms(
    contributors: Sequence[CostContributor],
    state: np.ndarray,
    time_step: int,
    dt: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Sum the contributors' local model at ``state``.

    Returns:
        (M, q): total quadratic (n, n) and linear (n,) weights
    """
    n = len(state)
    M = np.zeros((n, n))
    q = np.zeros(n)
    for contributor in contributors:
        quadratic = contributor.quadratic_cost(state, time_step, dt)
        if quadratic is not None:
            M += quadratic
        linear = contributor.linear_cost(state, time_step, dt)
        if linear is not None:
            q += np.asarray(linear, dtype=np.float64).ravel()
    return M, q


def total_contributor_cost(
    contributors: Sequence[CostContributor],
    state: np.ndarray,
    time_step: int,
    dt: float,
) -> float:
    return sum(c.cost(state, time_step, dt) for c in contributors)
