"""
recede Result Classes
=====================

Status codes and solve summaries shared by the LQR and iLQR engines.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class Status(Enum):
    """
    Solver status codes.

    Attributes:
        OPTIMAL: Recursion completed over the whole horizon
        DEGRADED: A singular step was hit; gains at and before it are zero
        UNSOLVED: Solver not yet solved
    """
    OPTIMAL = "optimal"
    DEGRADED = "degraded"
    UNSOLVED = "unsolved"

    def __str__(self) -> str:
        return self.value

    @property
    def is_successful(self) -> bool:
        """True if the recursion completed without a singular step."""
        return self == Status.OPTIMAL

    @property
    def has_solution(self) -> bool:
        """True if gains are available (possibly zeroed in places)."""
        return self in (Status.OPTIMAL, Status.DEGRADED)


@dataclass
class SolveSummary:
    """
    Summary of one iLQR solve.

    Attributes:
        status: Final solver status
        iterations: Completed simulate/backward passes
        cost: Predicted total cost of the final nominal trajectory
        cost_history: Predicted cost after each forward pass
        solve_time: Wall clock time in seconds
        singular_step: Highest step index that was zeroed, if any

    Example:
        >>> summary = solver.initialize_and_iterate(5, x0, x_goal)
        >>> if summary.status.is_successful:
        ...     print(f"cost {summary.cost:.3f} in {summary.solve_time*1e3:.1f} ms")
    """

    status: Status
    iterations: int
    cost: float
    cost_history: List[float] = field(default_factory=list)
    solve_time: float = 0.0
    singular_step: Optional[int] = None

    def __repr__(self) -> str:
        return (
            f"SolveSummary(status={self.status}, "
            f"cost={self.cost:.6g}, "
            f"iterations={self.iterations}, "
            f"time={self.solve_time:.4f}s)"
        )
