#!/usr/bin/env python3
"""
recede Solver Benchmark: LQR and iLQR solve time versus horizon
"""

import os
import sys
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', 'python'))

import numpy as np

import recede
from recede.control import (
    DifferentialDriveModel,
    LQRSolver,
    MPCSolver,
    Obstacle,
    point_mass,
)
from recede.utils import TimeProfiler

print(f"recede version: {recede.__version__}")
print()


def time_lqr(horizon, repeats=5):
    """Median LQR solve time for the point mass (seconds)."""
    solver = LQRSolver(
        horizon=horizon, dt=0.01,
        terminal_cost=np.diag([1000.0, 1000.0]),
        stage_cost=np.diag([1.0, 0.0]),
        input_cost=np.eye(1),
        model=point_mass(max_acceleration=100.0),
    )
    profiler = TimeProfiler()
    times = []
    for _ in range(repeats):
        profiler.start()
        solver.solve(np.zeros(2))
        times.append(profiler.elapsed())
    return float(np.median(times))


def time_ilqr(horizon, iterations=5, repeats=3):
    """Median iLQR solve time for the tank drive around one obstacle (seconds)."""
    obstacle = Obstacle([0.5, 0.0], radius=0.1, cost_factor=1e5, robot_radius=0.15)
    x0 = np.array([0.0, 0.0, np.pi / 2, 0.0, 0.0])
    goal = np.array([1.0, 0.0, 0.0, 0.0, 0.0])

    times = []
    costs = []
    for _ in range(repeats):
        solver = MPCSolver(
            horizon=horizon, dt=0.01,
            terminal_cost=1000.0 * np.eye(5),
            stage_cost=np.diag([1.0, 1.0, 0.1, 0.0, 0.0]),
            input_cost=np.eye(2),
            model=DifferentialDriveModel(),
            contributors=[obstacle],
        )
        summary = solver.initialize_and_iterate(iterations, x0, goal)
        times.append(summary.solve_time)
        costs.append(summary.cost)
    return float(np.median(times)), costs[-1]


def benchmark_scaling():
    """Benchmark across horizons."""
    print("=" * 70)
    print("Solve Time vs Horizon")
    print("=" * 70)

    horizons = [50, 100, 200, 500, 1000]
    all_results = []

    for horizon in horizons:
        lqr_time = time_lqr(horizon)
        ilqr_time, cost = time_ilqr(horizon)
        all_results.append((horizon, lqr_time, ilqr_time, cost))
        print(f"  N={horizon:5d}  LQR: {lqr_time*1000:8.2f} ms   "
              f"iLQR: {ilqr_time*1000:8.2f} ms   cost={cost:10.2f}")

    print("\n" + "=" * 70)
    print("Summary")
    print("=" * 70)
    print(f"{'N':>8} {'LQR (ms)':>12} {'iLQR (ms)':>12} {'per step (us)':>15}")
    print("-" * 70)

    for horizon, lqr_time, ilqr_time, _ in all_results:
        per_step = ilqr_time / horizon * 1e6
        print(f"{horizon:>8} {lqr_time*1000:>12.2f} {ilqr_time*1000:>12.2f} {per_step:>15.1f}")


def benchmark_iterations():
    """iLQR cost and time against the number of refinement iterations."""
    print("\n" + "=" * 70)
    print("iLQR Iterations (N=200)")
    print("=" * 70)

    for iterations in [0, 1, 2, 5, 10]:
        elapsed, cost = time_ilqr(200, iterations=iterations, repeats=1)
        print(f"  iterations={iterations:3d}  time={elapsed*1000:8.2f} ms  cost={cost:10.2f}")


if __name__ == "__main__":
    benchmark_scaling()
    benchmark_iterations()
