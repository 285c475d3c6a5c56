"""
Tests for the Kalman filter.
"""

import pytest
import numpy as np


def _filter(horizon=200, **kwargs):
    from recede.control import KalmanFilter, point_mass

    return KalmanFilter(
        horizon=horizon,
        dt=0.1,
        measurement_matrix=np.array([[1.0, 0.0]]),
        process_covariance=np.eye(2),
        measurement_covariance=0.01 * np.eye(1),
        model=point_mass(max_acceleration=1.0),
        **kwargs,
    )


class TestKalmanFilter:
    """Test gains and estimates."""

    def test_gain_shapes(self):
        kf = _filter()
        kf.compute_gains(np.zeros(2))

        assert kf.is_ready
        assert kf.gain(0).shape == (2, 1)
        assert kf.covariance(0).shape == (2, 2)

    def test_initial_covariance(self):
        kf = _filter(initial_covariance=5.0 * np.eye(2))
        kf.compute_gains(np.zeros(2))

        np.testing.assert_allclose(kf.covariance(0), 5.0 * np.eye(2))

    def test_steady_state_gain_matches_dare(self):
        """Long-horizon gain equals the stationary predictor gain."""
        from scipy.linalg import solve_discrete_are
        from recede.control import point_mass

        kf = _filter(horizon=300)
        kf.compute_gains(np.zeros(2))

        A, _ = point_mass(max_acceleration=1.0).discretize(0.1)
        C = np.array([[1.0, 0.0]])
        W, V = np.eye(2), 0.01 * np.eye(1)
        sigma = solve_discrete_are(A.T, C.T, W, V)
        L = A @ sigma @ C.T @ np.linalg.inv(C @ sigma @ C.T + V)

        np.testing.assert_allclose(kf.gain(250), L, rtol=1e-6)
        np.testing.assert_allclose(kf.gain(10_000), kf.gain(298))

    def test_estimate_converges(self):
        from recede.control import point_mass

        model = point_mass(max_acceleration=1.0)
        kf = _filter()
        kf.compute_gains(np.zeros(2))

        x = np.array([1.0, 0.5])
        x_hat = np.zeros(2)
        u = np.array([0.2])
        for step in range(300):
            y = np.array([x[0]])
            x_hat = kf.predict(x_hat, u, y, step)
            x = model.simulate(x, u, 0.1)

        np.testing.assert_allclose(x_hat, x, atol=1e-6)

    def test_measurement_dimension_checked(self):
        from recede.control import KalmanFilter, point_mass
        from recede import DimensionError

        with pytest.raises(DimensionError):
            KalmanFilter(
                horizon=10, dt=0.1,
                measurement_matrix=np.array([[1.0, 0.0, 0.0]]),
                process_covariance=np.eye(2),
                measurement_covariance=np.eye(1),
                model=point_mass(),
            )
