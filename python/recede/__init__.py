"""
recede: Receding-Horizon Control for Real-Time Robots
=====================================================

recede computes optimal control inputs with finite-horizon LQR and
iterative LQR, and keeps re-solving on a background thread so a fixed-rate
control loop always has a fresh, latency-compensated policy.

Quick Start
-----------
>>> import numpy as np
>>> import recede
>>> solver = recede.MPCSolver(
...     horizon=100, dt=0.01,
...     terminal_cost=np.diag([1000.0, 1000.0]),
...     stage_cost=np.diag([1.0, 0.0]),
...     input_cost=np.eye(1),
...     model=recede.point_mass(max_acceleration=100.0),
... )
>>> summary = solver.initialize_and_iterate(5, np.zeros(2), np.array([1.0, 0.0]))
>>> print(summary.status)
optimal
>>> u = solver.optimal_input(0, np.zeros(2))
"""

__version__ = "0.1.0"
__author__ = "recede Contributors"

# Import public API
from .control import (
    LQRSolver,
    MPCSolver,
    SolverRunner,
    MPCController,
    KalmanFilter,
    SolverConfig,
    ControllerBehavior,
    ActuationLimits,
    DynamicModel,
    LinearDynamicModel,
    NonlinearDynamicModel,
    LinearSystem,
    DifferentialDriveModel,
    MecanumDriveModel,
    point_mass,
    planar_point_mass,
    CostContributor,
    CostRegistry,
    Obstacle,
    Waypoint,
    Trajectory,
)
from .result import SolveSummary, Status
from .exceptions import (
    RecedeError,
    InvalidDynamicModelError,
    DimensionError,
    InvalidInputError,
    SolverStateError,
    RunnerError,
)

__all__ = [
    # Version
    "__version__",

    # Engines
    "LQRSolver",
    "MPCSolver",

    # Runtime
    "SolverRunner",
    "MPCController",
    "KalmanFilter",

    # Configuration
    "SolverConfig",
    "ControllerBehavior",
    "ActuationLimits",

    # Dynamics
    "DynamicModel",
    "LinearDynamicModel",
    "NonlinearDynamicModel",
    "LinearSystem",
    "DifferentialDriveModel",
    "MecanumDriveModel",
    "point_mass",
    "planar_point_mass",

    # Costs
    "CostContributor",
    "CostRegistry",
    "Obstacle",
    "Waypoint",
    "Trajectory",

    # Results
    "SolveSummary",
    "Status",

    # Exceptions
    "RecedeError",
    "InvalidDynamicModelError",
    "DimensionError",
    "InvalidInputError",
    "SolverStateError",
    "RunnerError",
]


def info() -> str:
    """Return information about the recede installation."""
    import platform

    import numpy
    import scipy

    lines = [
        f"recede version: {__version__}",
        f"Python version: {platform.python_version()}",
        f"Platform: {platform.platform()}",
        f"NumPy version: {numpy.__version__}",
        f"SciPy version: {scipy.__version__}",
    ]
    return "\n".join(lines)
