from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import jax
import jax.numpy as jnp
import numpy as np

from .errors import AnalysisError


@dataclass
class SPCAResult:
    """Spatial PCA of a centred allele-frequency table (Jombart et al. 2008).

    Axes 0..nfposi-1 are global (largest positive eigenvalues), the
    remaining nfnega axes are local (most negative eigenvalues, most
    negative first).
    """

    eigenvalues: np.ndarray  # (n_col,), all eigenvalues, descending
    axis_index: np.ndarray  # (n_axes,), position of each retained axis in eigenvalues
    loadings: np.ndarray  # (n_col, n_axes)
    scores: np.ndarray  # (n_ind, n_axes)
    lag_scores: np.ndarray  # (n_ind, n_axes), W @ scores
    variance: np.ndarray  # (n_axes,)
    moran: np.ndarray  # (n_axes,)
    nfposi: int
    nfnega: int

    @property
    def axis_labels(self) -> List[str]:
        return [f"Axis {int(i) + 1}" for i in self.axis_index]

    @property
    def n_axes(self) -> int:
        return int(self.scores.shape[1])


@dataclass
class RandTest:
    """Monte-Carlo test result with the usual one-sided p-value."""

    name: str
    observed: float
    sim: np.ndarray  # (nperm,)
    pvalue: float
    alter: str = "greater"

    @property
    def nperm(self) -> int:
        return int(self.sim.shape[0])

    def significant(self, alpha: float = 0.05) -> bool:
        return bool(self.pvalue < alpha)


def pvalue_greater(observed: float, sim: np.ndarray) -> float:
    """(#{sim >= observed} + 1) / (nperm + 1)."""
    sim = np.asarray(sim, dtype=np.float64)
    return float((np.sum(sim >= observed) + 1) / (sim.shape[0] + 1))


def _centre(X: np.ndarray) -> np.ndarray:
    X = np.asarray(X, dtype=np.float64)
    return X - X.mean(axis=0, keepdims=True)


def _sym(W: np.ndarray) -> np.ndarray:
    W = np.asarray(W, dtype=np.float64)
    return 0.5 * (W + W.T)


def _check_shapes(X: np.ndarray, W: np.ndarray) -> None:
    if X.ndim != 2:
        raise AnalysisError("Allele table must be 2D (samples x alleles).")
    n = X.shape[0]
    if n < 2:
        raise AnalysisError("sPCA needs at least two samples.")
    if W.shape != (n, n):
        raise AnalysisError(
            f"Weight matrix has shape {W.shape}, expected ({n}, {n}) for {n} samples."
        )


def _spca_eigh(Xc: jnp.ndarray, S: jnp.ndarray):
    """Eigen-decomposition of X^T S X / n, eigenvalues ascending."""
    n = Xc.shape[0]
    C = Xc.T @ S @ Xc / n
    C = 0.5 * (C + C.T)
    return jnp.linalg.eigh(C)


def run_spca(
    X: np.ndarray,
    W: np.ndarray,
    nfposi: int = 1,
    nfnega: int = 1,
) -> SPCAResult:
    """Spatial PCA of X (samples x allele frequencies) under weights W.

    Steps:
      1. Centre X with uniform row weights 1/n.
      2. Eigen-decompose X^T ((W + W^T) / 2) X / n.
      3. Keep the nfposi largest and nfnega smallest eigenvalues.
      4. Scores = X u, lag scores = W X u; each eigenvalue splits into
         variance(scores) * Moran's I(scores).
    """
    X = np.asarray(X, dtype=np.float64)
    W = np.asarray(W, dtype=np.float64)
    _check_shapes(X, W)
    if nfposi < 0 or nfnega < 0 or nfposi + nfnega == 0:
        raise AnalysisError("Retain at least one axis (nfposi + nfnega >= 1).")

    Xc = _centre(X)
    evals_j, evecs_j = _spca_eigh(jnp.asarray(Xc), jnp.asarray(_sym(W)))
    evals = np.asarray(evals_j, dtype=np.float64)[::-1]
    evecs = np.asarray(evecs_j, dtype=np.float64)[:, ::-1]

    tol = 1e-5 * max(float(np.abs(evals).max()), 1e-300)
    n_pos = int(np.sum(evals > tol))
    n_neg = int(np.sum(evals < -tol))
    if nfposi > n_pos:
        raise AnalysisError(
            f"Requested {nfposi} global axes but only {n_pos} positive eigenvalues exist."
        )
    if nfnega > n_neg:
        raise AnalysisError(
            f"Requested {nfnega} local axes but only {n_neg} negative eigenvalues exist."
        )

    p = evals.shape[0]
    axis_index = np.concatenate(
        [np.arange(nfposi), np.arange(p - 1, p - 1 - nfnega, -1)]
    ).astype(int)

    loadings = evecs[:, axis_index]
    scores = Xc @ loadings
    lag_scores = W @ scores

    n = Xc.shape[0]
    ss = np.sum(scores**2, axis=0)
    variance = ss / n
    with np.errstate(divide="ignore", invalid="ignore"):
        moran = np.where(ss > 0, np.sum(scores * lag_scores, axis=0) / ss, np.nan)

    return SPCAResult(
        eigenvalues=evals,
        axis_index=axis_index,
        loadings=loadings,
        scores=scores,
        lag_scores=lag_scores,
        variance=variance,
        moran=moran,
        nfposi=nfposi,
        nfnega=nfnega,
    )


def loading_contributions(result: SPCAResult, axis: int = 0) -> np.ndarray:
    """Squared loadings of one retained axis (they sum to 1)."""
    return result.loadings[:, axis] ** 2


def moran_eigenvectors(W: np.ndarray, sign: str = "positive") -> np.ndarray:
    """Moran eigenvector maps: eigenvectors of H ((W + W^T)/2) H, H the centring matrix.

    sign='positive' keeps maps of positive autocorrelation (global
    structures), sign='negative' those of negative autocorrelation (local).
    """
    S = _sym(W)
    n = S.shape[0]
    H = np.eye(n) - np.full((n, n), 1.0 / n)
    evals_j, evecs_j = jnp.linalg.eigh(jnp.asarray(H @ S @ H))
    evals = np.asarray(evals_j, dtype=np.float64)
    evecs = np.asarray(evecs_j, dtype=np.float64)
    tol = 1e-5 * max(float(np.abs(evals).max()), 1e-300)
    if sign == "positive":
        keep = evals > tol
    elif sign == "negative":
        keep = evals < -tol
    else:
        raise ValueError(f"sign must be 'positive' or 'negative', got '{sign}'.")
    return evecs[:, keep]


def _permutation_keys(nperm: int, seed: Optional[int]) -> jnp.ndarray:
    if nperm < 1:
        raise ValueError(f"nperm must be positive, got {nperm}.")
    if seed is None:
        seed = int(np.random.default_rng().integers(0, 2**31 - 1))
    return jax.random.split(jax.random.PRNGKey(seed), nperm)


def _run_permutations(stat_fn, n: int, nperm: int, seed: Optional[int]):
    """Observed statistic and nperm row-permuted replicates, compiled once."""
    keys = _permutation_keys(nperm, seed)

    @jax.jit
    def _all(keys):
        observed = stat_fn(jnp.arange(n))
        sim = jax.lax.map(lambda key: stat_fn(jax.random.permutation(key, n)), keys)
        return observed, sim

    observed, sim = _all(keys)
    return float(observed), np.asarray(sim, dtype=np.float64)


def _informative_columns(X: np.ndarray) -> np.ndarray:
    Xc = _centre(X)
    keep = np.sum(Xc**2, axis=0) > 1e-12
    if not keep.any():
        raise AnalysisError("All allele columns are constant; nothing to test.")
    return Xc[:, keep]


def _mem_r2_test(
    name: str,
    X: np.ndarray,
    W: np.ndarray,
    sign: str,
    nperm: int,
    k: int,
    seed: Optional[int],
) -> RandTest:
    X = np.asarray(X, dtype=np.float64)
    W = np.asarray(W, dtype=np.float64)
    _check_shapes(X, W)
    Z = _informative_columns(X)
    U = moran_eigenvectors(W, sign=sign)
    if U.shape[1] == 0:
        raise AnalysisError(f"The connection network has no {sign} Moran eigenvectors.")
    k = int(min(k, U.shape[1]))

    Zj = jnp.asarray(Z, dtype=jnp.float32)
    Uj = jnp.asarray(U, dtype=jnp.float32)
    ss = jnp.sum(Zj**2, axis=0)

    def stat(perm):
        proj = Uj.T @ Zj[perm, :]
        mean_r2 = jnp.mean(proj**2 / ss[None, :], axis=1)
        return jnp.sum(jnp.sort(mean_r2)[::-1][:k])

    observed, sim = _run_permutations(stat, Z.shape[0], nperm, seed)
    return RandTest(name=name, observed=observed, sim=sim, pvalue=pvalue_greater(observed, sim))


def global_test(
    X: np.ndarray,
    W: np.ndarray,
    nperm: int = 999,
    k: int = 1,
    seed: Optional[int] = None,
) -> RandTest:
    """Test for global structure: sum of the k largest mean R^2 of X on positive maps."""
    return _mem_r2_test("global", X, W, "positive", nperm, k, seed)


def local_test(
    X: np.ndarray,
    W: np.ndarray,
    nperm: int = 999,
    k: int = 1,
    seed: Optional[int] = None,
) -> RandTest:
    """Test for local structure: sum of the k largest mean R^2 of X on negative maps."""
    return _mem_r2_test("local", X, W, "negative", nperm, k, seed)


def combined_test(
    X: np.ndarray,
    W: np.ndarray,
    nperm: int = 999,
    nfposi: int = 1,
    nfnega: int = 1,
    seed: Optional[int] = None,
) -> RandTest:
    """Multi-axis test: sum of |eigenvalue| over the retained sPCA axes."""
    X = np.asarray(X, dtype=np.float64)
    W = np.asarray(W, dtype=np.float64)
    _check_shapes(X, W)
    p = X.shape[1]
    if nfposi + nfnega == 0 or nfposi + nfnega > p:
        raise AnalysisError(f"Cannot retain {nfposi}+{nfnega} axes from {p} allele columns.")

    Xj = jnp.asarray(_centre(X), dtype=jnp.float32)
    Sj = jnp.asarray(_sym(W), dtype=jnp.float32)

    def stat(perm):
        evals, _ = _spca_eigh(Xj[perm, :], Sj)
        top = jnp.sum(evals[p - nfposi :])
        bottom = jnp.sum(jnp.abs(evals[:nfnega]))
        return top + bottom

    observed, sim = _run_permutations(stat, X.shape[0], nperm, seed)
    return RandTest(
        name="combined", observed=observed, sim=sim, pvalue=pvalue_greater(observed, sim)
    )


def randtest_summary(tests: Sequence[RandTest], alpha: float = 0.05) -> List[dict]:
    """One dict per test: name, observed, pvalue, nperm, significant."""
    return [
        {
            "test": t.name,
            "observed": t.observed,
            "pvalue": t.pvalue,
            "nperm": t.nperm,
            "alter": t.alter,
            "significant": t.significant(alpha),
        }
        for t in tests
    ]
