"""
pytest configuration and fixtures for diffopt tests.
"""

import numpy as np
import pytest
from scipy import sparse


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def unconstrained_qp():
    """
    Unconstrained QP with closed-form solution.

    minimize: (1/2)z'Qz + q'z
    where Q = [[3, 1], [1, 2]], q = [-1, 1]

    Solution: z = -Q^{-1} q = [0.6, -0.8]
    """
    Q = np.array([
        [3.0, 1.0],
        [1.0, 2.0],
    ])
    q = np.array([-1.0, 1.0])

    return {
        "Q": Q,
        "q": q,
        "expected_z": -np.linalg.solve(Q, q),
    }


@pytest.fixture
def constrained_qp():
    """
    QP with an active inequality, an inactive inequality and an equality.

    minimize: z'z - 2 z1 - 4 z2 - 6 z3
    subject to: z1 + z2 + z3 <= 3     (active, multiplier 2)
                -z1 <= 0              (inactive)
                z1 - z3 == -1         (multiplier -1)

    Optimal: z = [0.5, 1, 1.5], obj = -10.5
    """
    return {
        "Q": 2.0 * np.eye(3),
        "q": np.array([-2.0, -4.0, -6.0]),
        "G": np.array([
            [1.0, 1.0, 1.0],
            [-1.0, 0.0, 0.0],
        ]),
        "h": np.array([3.0, 0.0]),
        "A": np.array([[1.0, 0.0, -1.0]]),
        "b": np.array([-1.0]),
        "expected_z": np.array([0.5, 1.0, 1.5]),
        "expected_obj": -10.5,
        "expected_y_ineq": np.array([2.0, 0.0]),
        "expected_y_eq": np.array([-1.0]),
    }


@pytest.fixture
def simple_lp():
    """
    Simple LP problem for testing.

    minimize: -x - y
    subject to: x + 2y <= 10
                3x + y <= 15
                -x <= 0, -y <= 0

    Optimal: x=4, y=3, obj=-7
    """
    return {
        "c": np.array([-1.0, -1.0]),
        "G": np.array([
            [1.0, 2.0],
            [3.0, 1.0],
            [-1.0, 0.0],
            [0.0, -1.0],
        ]),
        "h": np.array([10.0, 15.0, 0.0, 0.0]),
        "expected_obj": -7.0,
        "expected_x": np.array([4.0, 3.0]),
        "expected_y": np.array([0.4, 0.2, 0.0, 0.0]),
    }


@pytest.fixture
def soc_problem():
    """
    Conic program with a zero, a nonnegative and a second-order cone block.

    minimize: x1 + 2 x2 + x3
    subject to: x3 - x1 == 0.3
                x1 + x2 <= 10
                ||(x1, x2)|| <= 1

    Optimal: (x1, x2) = -(2, 2) / sqrt(8), x3 = x1 + 0.3
    """
    x12 = -np.array([2.0, 2.0]) / np.sqrt(8.0)
    return {
        "expected_x": np.array([x12[0], x12[1], x12[0] + 0.3]),
    }


@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(42)


@pytest.fixture
def random_qp(rng):
    """Random strictly convex QP with a feasible interior."""
    n, m_ineq, m_eq = 6, 4, 2
    L = rng.standard_normal((n, n))
    Q = L @ L.T + n * np.eye(n)
    q = rng.standard_normal(n)
    G = rng.standard_normal((m_ineq, n))
    z_feas = rng.standard_normal(n)
    h = G @ z_feas + rng.uniform(0.1, 1.0, m_ineq)
    A = rng.standard_normal((m_eq, n))
    b = A @ z_feas
    return {
        "Q": sparse.csr_matrix(Q),
        "q": q,
        "G": G,
        "h": h,
        "A": A,
        "b": b,
    }


# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")
