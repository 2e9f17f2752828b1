from __future__ import annotations

import jax
import numpy as np


def assert_cpu_backend() -> None:
    backend = jax.default_backend()
    assert backend == "cpu", f"JAX backend is '{backend}', expected 'cpu' for tests."


def assert_permutations_work() -> None:
    # Every permutation test draws row orders with jax.random.permutation.
    perm = np.asarray(jax.random.permutation(jax.random.PRNGKey(0), 7))
    assert sorted(perm.tolist()) == list(range(7)), f"bad permutation {perm}"
