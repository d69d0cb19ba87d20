#!/usr/bin/env python3
"""
diffopt Backward Benchmark: cost of the sensitivity passes vs. the solve
"""

import time

import numpy as np
from scipy import sparse

import diffopt
from diffopt import Model

print(f"diffopt version: {diffopt.__version__}")
print()


def generate_qp(n, m_ineq, m_eq, seed=42):
    """Generate a random strictly convex QP with a feasible interior."""
    rng = np.random.default_rng(seed)

    # Positive definite Q (diagonal + low rank)
    F = rng.standard_normal((n, 5)) / np.sqrt(5)
    Q = F @ F.T + np.diag(rng.random(n) + 0.1)

    q = rng.standard_normal(n)
    G = sparse.random(m_ineq, n, density=0.2, format="csr", random_state=seed) + sparse.eye(m_ineq, n) * 0.1
    z_feas = rng.standard_normal(n)
    h = G @ z_feas + rng.uniform(0.1, 1.0, m_ineq)
    A = rng.standard_normal((m_eq, n))
    b = A @ z_feas
    return Q, q, G, h, A, b


def benchmark_kkt(n, m_ineq, m_eq):
    """Time one solve and one full backward pass."""
    Q, q, G, h, A, b = generate_qp(n, m_ineq, m_eq)
    model = Model.from_matrices(q, G=G, h=h, A=A, b=b, Q=Q)

    start = time.perf_counter()
    result = model.optimize()
    solve_time = time.perf_counter() - start

    start = time.perf_counter()
    model.backward(["Q", "q", "G", "h", "A", "b"], np.ones(n))
    backward_time = time.perf_counter() - start

    return {
        "solve": solve_time,
        "backward": backward_time,
        "status": str(result.status),
    }


def benchmark_conic(n):
    """Time the conic backward pass on a norm-ball problem."""
    rng = np.random.default_rng(0)
    model = Model(solver="scs")
    x = model.add_vars(n)
    model.add_cone_constr([diffopt.LinearExpr(constant=1.0)] + x, diffopt.SecondOrderCone(n + 1))
    model.minimize(sum(float(c) * v for c, v in zip(rng.standard_normal(n), x)))

    start = time.perf_counter()
    result = model.optimize()
    solve_time = time.perf_counter() - start

    form = model.conic_data()
    start = time.perf_counter()
    model.backward_conic(
        rng.standard_normal((form.m, form.n)), rng.standard_normal(form.m), rng.standard_normal(form.n)
    )
    backward_time = time.perf_counter() - start

    return {
        "solve": solve_time,
        "backward": backward_time,
        "status": str(result.status),
    }


def benchmark_scaling():
    """Benchmark across different problem sizes."""
    print("=" * 70)
    print("KKT Backward Benchmark")
    print("=" * 70)

    sizes = [
        (10, 5, 2),
        (50, 25, 5),
        (100, 50, 10),
        (200, 100, 20),
    ]

    print(f"{'n':>8} {'m_ineq':>8} {'m_eq':>8} {'solve (ms)':>12} {'backward (ms)':>14} {'status':>12}")
    print("-" * 70)
    for n, m_ineq, m_eq in sizes:
        res = benchmark_kkt(n, m_ineq, m_eq)
        print(f"{n:>8} {m_ineq:>8} {m_eq:>8} {res['solve']*1000:>12.1f} "
              f"{res['backward']*1000:>14.1f} {res['status']:>12}")


def benchmark_cone():
    print("\n" + "=" * 70)
    print("Conic Backward Benchmark")
    print("=" * 70)

    print(f"{'n':>8} {'solve (ms)':>12} {'backward (ms)':>14} {'status':>12}")
    print("-" * 70)
    for n in (10, 50, 100):
        res = benchmark_conic(n)
        print(f"{n:>8} {res['solve']*1000:>12.1f} {res['backward']*1000:>14.1f} {res['status']:>12}")


if __name__ == "__main__":
    benchmark_scaling()
    benchmark_cone()
