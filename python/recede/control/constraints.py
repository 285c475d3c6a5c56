"""
Actuation Limits
================

Input saturation for the LQR and iLQR policies.

Limits are enforced after the fact by clipping each policy output. They
are not part of the optimization problem, so a saturated policy is only
approximately optimal.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union
import numpy as np

from ..exceptions import DimensionError, InvalidInputError


@dataclass
class ActuationLimits:
    """
    Box limits on the control input.

    Represents: lower <= u <= upper

    Args:
        lower: Lower bound (scalar or vector)
        upper: Upper bound (scalar or vector)
        dim: Input dimension (required if bounds are scalar)

    Example:
        >>> # Normalized motor commands for a 4-wheel drive
        >>> limits = ActuationLimits.normalized(4)
        >>> limits.clip(np.array([1.5, -0.2, -3.0, 0.0]))
        array([ 1. , -0.2, -1. ,  0. ])
    """
    lower: Union[float, np.ndarray]
    upper: Union[float, np.ndarray]
    dim: Optional[int] = None

    def __post_init__(self):
        """Process bounds."""
        if np.isscalar(self.lower):
            if self.dim is None:
                raise InvalidInputError("dim required when bounds are scalar")
            self.lower = np.full(self.dim, float(self.lower))
        else:
            self.lower = np.asarray(self.lower, dtype=np.float64)
            if self.dim is None:
                self.dim = len(self.lower)

        if np.isscalar(self.upper):
            self.upper = np.full(self.dim, float(self.upper))
        else:
            self.upper = np.asarray(self.upper, dtype=np.float64)

        if len(self.lower) != len(self.upper) or len(self.lower) != self.dim:
            raise DimensionError("lower and upper must have the same length as dim")
        if np.any(self.lower > self.upper):
            raise InvalidInputError("lower bound exceeds upper bound")

    def clip(self, u: np.ndarray) -> np.ndarray:
        """Saturate ``u`` component-wise."""
        return np.clip(u, self.lower, self.upper)

    def is_satisfied(self, u: np.ndarray, tol: float = 1e-9) -> bool:
        """Check if ``u`` lies within the limits."""
        return bool((u >= self.lower - tol).all() and (u <= self.upper + tol).all())

    def violation(self, u: np.ndarray) -> float:
        """Compute maximum limit violation."""
        lower_viol = np.maximum(self.lower - u, 0).max()
        upper_viol = np.maximum(u - self.upper, 0).max()
        return float(max(lower_viol, upper_viol))

    @classmethod
    def normalized(cls, dim: int) -> "ActuationLimits":
        """Create the standard [-1, 1] limits."""
        return cls(lower=-1.0, upper=1.0, dim=dim)
