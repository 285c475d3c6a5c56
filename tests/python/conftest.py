"""
pytest configuration and fixtures for recede tests.
"""

import pytest
import numpy as np


# ============================================================================
# Fixtures
# ============================================================================

class FakeClock:
    """Settable time source for deterministic timing tests."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock(5.0)


@pytest.fixture
def point_mass_problem():
    """
    Point mass on a line, driven from rest at 0 to rest at 1.

    One second horizon (N=100, dt=0.01), full command = 100 m/s^2, so the
    target is easily reachable with |u| <= 1.
    """
    from recede.control import point_mass

    return {
        "horizon": 100,
        "dt": 0.01,
        "terminal_cost": np.diag([1000.0, 1000.0]),
        "stage_cost": np.diag([1.0, 0.0]),
        "input_cost": np.eye(1),
        "model": point_mass(max_acceleration=100.0),
        "initial_state": np.array([0.0, 0.0]),
        "desired_state": np.array([1.0, 0.0]),
    }


@pytest.fixture
def point_mass_config(point_mass_problem):
    from recede.control import SolverConfig

    p = point_mass_problem
    return SolverConfig(
        horizon=p["horizon"],
        dt=p["dt"],
        terminal_cost=p["terminal_cost"],
        stage_cost=p["stage_cost"],
        input_cost=p["input_cost"],
        iterations=3,
    )


@pytest.fixture
def obstacle_problem():
    """
    Tank-drive robot facing +y at the origin, asked to reach (1, 0) facing +x,
    with an obstacle on the straight line between them.
    """
    from recede.control import DifferentialDriveModel, Obstacle

    return {
        "horizon": 100,
        "dt": 0.01,
        "terminal_cost": 1000.0 * np.eye(5),
        "stage_cost": np.diag([1.0, 1.0, 0.1, 0.0, 0.0]),
        "input_cost": np.eye(2),
        "model": DifferentialDriveModel(),
        "obstacle": Obstacle([0.5, 0.0], radius=0.1, cost_factor=1e5, robot_radius=0.15),
        "initial_state": np.array([0.0, 0.0, np.pi / 2, 0.0, 0.0]),
        "desired_state": np.array([1.0, 0.0, 0.0, 0.0, 0.0]),
    }


# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")
