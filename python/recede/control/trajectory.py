"""
Nominal Trajectories
====================

Record of a forward-simulated state/input sequence.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import numpy as np

from ..exceptions import DimensionError


@dataclass
class Trajectory:
    """
    State/input sequence over a horizon.

    Args:
        states: State trajectory (N + 1, n_x), including the initial state
        inputs: Input trajectory (N, n_u)
        time: Time stamps of the states (N + 1,), optional

    Example:
        >>> traj = solver.nominal_trajectory()
        >>> traj.final_state
        >>> traj.min_distance(obstacle)
    """
    states: np.ndarray
    inputs: np.ndarray
    time: Optional[np.ndarray] = None

    def __post_init__(self):
        """Validate trajectory."""
        self.states = np.asarray(self.states, dtype=np.float64)
        if self.states.ndim == 1:
            self.states = self.states.reshape(-1, 1)

        self.inputs = np.asarray(self.inputs, dtype=np.float64)
        if self.inputs.ndim == 1:
            self.inputs = self.inputs.reshape(-1, 1)

        if len(self.inputs) != len(self.states) - 1:
            raise DimensionError(
                f"{len(self.states)} states need {len(self.states) - 1} inputs, "
                f"got {len(self.inputs)}"
            )

        if self.time is not None:
            self.time = np.asarray(self.time, dtype=np.float64)
            if len(self.time) != len(self.states):
                raise DimensionError("time must have one entry per state")

    @property
    def horizon(self) -> int:
        """Number of steps."""
        return len(self.inputs)

    @property
    def n_states(self) -> int:
        """Number of states."""
        return self.states.shape[1]

    @property
    def n_inputs(self) -> int:
        """Number of inputs."""
        return self.inputs.shape[1]

    @property
    def final_state(self) -> np.ndarray:
        return self.states[-1]

    def min_distance(self, obstacle) -> float:
        """Closest approach of the trajectory to an ``Obstacle`` center."""
        return min(obstacle.distance(x) for x in self.states)
