"""
recede Exception Classes
========================

Custom exceptions for recede error handling.

Numerical trouble inside a Riccati recursion is *not* an exception: solvers
degrade to zero gains and report it through ``Status.DEGRADED``. Everything
below is a configuration or usage error that the caller must see.
"""

from typing import Optional


class RecedeError(Exception):
    """Base exception for all recede errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidDynamicModelError(RecedeError):
    """
    Raised when a dynamic model implements neither specialization.

    A model must derive from ``LinearDynamicModel`` (constant transition
    matrices) or ``NonlinearDynamicModel`` (state-dependent transition
    matrices). This is fatal; there is no sensible fallback.
    """

    def __init__(self, model: object) -> None:
        self.model = model
        super().__init__(
            f"{type(model).__name__} is neither a LinearDynamicModel nor a "
            "NonlinearDynamicModel"
        )


class DimensionError(RecedeError):
    """
    Raised when matrix/vector dimensions are incompatible.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Dimension mismatch: {message}")


class InvalidInputError(RecedeError):
    """
    Raised when input data is invalid.

    Examples: NaN values, non-positive horizon, negative time step.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Invalid input: {message}")


class SolverStateError(RecedeError):
    """
    Raised when the iteration protocol is invoked out of order.

    The MPC protocol is ``initial_iteration`` followed by alternating
    ``simulate_iteration`` / ``run_iteration`` calls.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Solver state: {message}")


class RunnerError(RecedeError):
    """
    Raised in the control thread when a background solve failed.

    The underlying exception is available as ``__cause__`` and ``error``.
    """

    def __init__(
        self,
        message: str = "Background solve failed",
        error: Optional[BaseException] = None,
    ) -> None:
        self.error = error
        super().__init__(message)
