from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .errors import AnalysisError

EARTH_RADIUS_KM = 6371.0


@dataclass
class ConnectionNetwork:
    """Row-standardized spatial weights between samples."""

    kind: str
    weights: np.ndarray  # (n_ind, n_ind), rows sum to 1, zero diagonal
    adjacency: np.ndarray  # (n_ind, n_ind), bool
    distances: np.ndarray  # (n_ind, n_ind), km

    @property
    def n_ind(self) -> int:
        return int(self.weights.shape[0])

    @property
    def n_neighbours(self) -> np.ndarray:
        return self.adjacency.sum(axis=1)

    @property
    def n_links(self) -> int:
        """Number of undirected links."""
        sym = self.adjacency | self.adjacency.T
        return int(np.triu(sym, k=1).sum())


def normalize_lon_360(lon):
    """Map longitudes to [0, 360): a negative value v becomes 360 + v."""
    lon = np.asarray(lon, dtype=np.float64)
    return np.where(lon < 0.0, lon + 360.0, lon)


def needs_360(lon: Sequence[float]) -> bool:
    """True when the points sit on both sides of the antimeridian.

    The span in [-180, 180] is wider than 180 degrees but narrower once
    shifted to [0, 360), so plotting in 0-360 keeps the cloud contiguous.
    """
    lon = np.asarray(lon, dtype=np.float64)
    lon = lon[np.isfinite(lon)]
    if lon.size < 2 or not ((lon < 0).any() and (lon > 0).any()):
        return False
    span = lon.max() - lon.min()
    shifted = normalize_lon_360(lon)
    return bool(span > 180.0 and shifted.max() - shifted.min() < span)


def haversine_km(lat: Sequence[float], lon: Sequence[float]) -> np.ndarray:
    """Great-circle distance matrix in km."""
    phi = np.radians(np.asarray(lat, dtype=np.float64))
    lam = np.radians(np.asarray(lon, dtype=np.float64))
    dphi = phi[:, None] - phi[None, :]
    dlam = lam[:, None] - lam[None, :]
    a = (
        np.sin(dphi / 2.0) ** 2
        + np.cos(phi[:, None]) * np.cos(phi[None, :]) * np.sin(dlam / 2.0) ** 2
    )
    return 2.0 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def _row_standardize(w: np.ndarray, sample_ids: Optional[Sequence[str]]) -> np.ndarray:
    rs = w.sum(axis=1)
    isolated = np.where(rs <= 0.0)[0]
    if isolated.size:
        if sample_ids is not None:
            names = [str(sample_ids[i]) for i in isolated[:5]]
        else:
            names = [str(i) for i in isolated[:5]]
        raise AnalysisError(
            f"{isolated.size} samples have no neighbour in the connection network "
            f"(e.g. {', '.join(names)}); widen the distance bounds."
        )
    return w / rs[:, None]


def connection_network(
    lat: Sequence[float],
    lon: Sequence[float],
    kind: str = "distance",
    d1: float = 0.0,
    d2: Optional[float] = None,
    k: int = 5,
    alpha: float = 1.0,
    sample_ids: Optional[Sequence[str]] = None,
) -> ConnectionNetwork:
    """Build a spatial connection network from sample coordinates.

    kinds:
      - 'distance': neighbours at great-circle distance d1 <= d <= d2 km
      - 'knn':      k nearest neighbours, symmetrized
      - 'inverse':  every pair, weighted by 1 / d**alpha
    Weights are row-standardized; self-links are excluded.
    """
    kind = kind.lower()
    if kind not in {"distance", "knn", "inverse"}:
        raise ValueError(
            f"Unsupported network type '{kind}' (expected 'distance', 'knn' or 'inverse')."
        )

    dist = haversine_km(lat, lon)
    n = dist.shape[0]
    if n < 2:
        raise AnalysisError("A connection network needs at least two samples.")
    off_diag = ~np.eye(n, dtype=bool)

    if kind == "distance":
        if d2 is None:
            raise ValueError("Distance-based networks need an upper bound d2 (km).")
        if d1 < 0 or d2 < d1:
            raise ValueError(f"Invalid distance bounds d1={d1}, d2={d2}.")
        adj = (dist >= d1) & (dist <= d2) & off_diag
        w = adj.astype(np.float64)
    elif kind == "knn":
        if not 1 <= k < n:
            raise ValueError(f"k must be between 1 and n-1 ({n - 1}), got {k}.")
        masked = np.where(off_diag, dist, np.inf)
        # stable sort keeps ties in sample order
        nearest = np.argsort(masked, axis=1, kind="stable")[:, :k]
        adj = np.zeros((n, n), dtype=bool)
        adj[np.repeat(np.arange(n), k), nearest.ravel()] = True
        adj = adj | adj.T
        w = adj.astype(np.float64)
    else:
        if np.any(dist[off_diag] == 0.0):
            raise AnalysisError(
                "Inverse-distance weights are undefined for samples sharing coordinates."
            )
        adj = off_diag.copy()
        with np.errstate(divide="ignore"):
            w = np.where(off_diag, 1.0 / dist**alpha, 0.0)

    weights = _row_standardize(w, sample_ids)
    return ConnectionNetwork(kind=kind, weights=weights, adjacency=adj, distances=dist)


def moran_i(x: np.ndarray, weights: np.ndarray) -> float:
    """Moran's I of a single variable under row-standardized weights."""
    x = np.asarray(x, dtype=np.float64)
    z = x - x.mean()
    denom = float(z @ z)
    if denom == 0.0:
        return float("nan")
    n = z.shape[0]
    return float((n / weights.sum()) * (z @ weights @ z) / denom)


def neighbour_pairs(network: ConnectionNetwork) -> List[tuple]:
    """Undirected (i, j) index pairs with i < j, for drawing the network."""
    sym = network.adjacency | network.adjacency.T
    ii, jj = np.where(np.triu(sym, k=1))
    return list(zip(ii.tolist(), jj.tolist()))
