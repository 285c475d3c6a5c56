"""
recede Receding-Horizon Control
===============================

LQR and iterative-LQR (SLQ) engines for real-time robot control, with a
background runner that re-solves while the control loop keeps running.

Quick Start
-----------
>>> from recede.control import LQRSolver, point_mass
>>>
>>> lqr = LQRSolver(
...     horizon=100, dt=0.01,
...     terminal_cost=np.diag([1000.0, 1000.0]),
...     stage_cost=np.diag([1.0, 0.0]),
...     input_cost=np.eye(1),
...     model=point_mass(max_acceleration=100.0),
... )
>>> lqr.solve(x0)
>>> u = lqr.optimal_input(0, x0, goal)

Obstacles and Waypoints
-----------------------
>>> from recede.control import MPCSolver, Obstacle, DifferentialDriveModel
>>>
>>> solver = MPCSolver(
...     horizon=100, dt=0.01,
...     terminal_cost=1000 * np.eye(5),
...     stage_cost=np.diag([1.0, 1.0, 0.1, 0.0, 0.0]),
...     input_cost=np.eye(2),
...     model=DifferentialDriveModel(),
...     contributors=[Obstacle([0.5, 0.0], radius=0.1, cost_factor=1e5)],
... )
>>> summary = solver.initialize_and_iterate(5, x0, goal)

Real-Time Loop
--------------
>>> from recede.control import MPCController
>>>
>>> with MPCController(..., model=DifferentialDriveModel()) as controller:
...     controller.initialize_and_iterate(5, x0, goal)
...     while running:
...         apply(controller.update(read_sensors()))

Classes
-------
LQRSolver
    Finite-horizon Riccati recursion with clipped feedback inputs
MPCSolver
    Iterative LQR with cost contributors and a line-searched forward pass
SolverRunner
    Background compute-then-swap re-solving with latency compensation
MPCController
    Control-loop facade combining the two
KalmanFilter
    Time-varying filter gains from the dual LQR problem

Theory
------
Each solve minimizes

    Σ_t (x_t - x_d)' Q (x_t - x_d) + u_t' R u_t + (x_N - x_d)' Q_f (x_N - x_d)
        + Σ_t c(x_t)
    subject to  x_{t+1} = A(x_t) x_t + B(x_t) u_t,   u_min <= u_t <= u_max

where c sums the cost contributors. iLQR repeatedly linearizes along a
nominal trajectory and solves the local LQR problem in deviation
coordinates; inputs are clipped to the actuation limits.

See Also
--------
- Li & Todorov (2004): "Iterative Linear Quadratic Regulator Design for
  Nonlinear Biological Movement Systems"
- Tassa, Erez & Todorov (2012): "Synthesis and Stabilization of Complex
  Behaviors through Online Trajectory Optimization"
"""

from .config import DEFAULT_ITERATIONS, ControllerBehavior, SolverConfig
from .constraints import ActuationLimits
from .dynamics import (
    DynamicModel,
    LinearDynamicModel,
    NonlinearDynamicModel,
    LinearSystem,
    DifferentialDriveModel,
    MecanumDriveModel,
    point_mass,
    planar_point_mass,
    transition_matrices,
    validate_model,
)
from .costs import CostContributor, CostRegistry, Obstacle, Waypoint
from .trajectory import Trajectory
from .lqr import LQRSolver
from .ilqr import MPCSolver
from .runner import SolverRunner
from .controller import MPCController
from .estimation import KalmanFilter

__all__ = [
    # Engines
    "LQRSolver",
    "MPCSolver",
    # Runtime
    "SolverRunner",
    "MPCController",
    # Configuration
    "SolverConfig",
    "ControllerBehavior",
    "ActuationLimits",
    "DEFAULT_ITERATIONS",
    # Dynamics
    "DynamicModel",
    "LinearDynamicModel",
    "NonlinearDynamicModel",
    "LinearSystem",
    "DifferentialDriveModel",
    "MecanumDriveModel",
    "point_mass",
    "planar_point_mass",
    "transition_matrices",
    "validate_model",
    # Costs
    "CostContributor",
    "CostRegistry",
    "Obstacle",
    "Waypoint",
    # Trajectories
    "Trajectory",
    # Estimation
    "KalmanFilter",
]
