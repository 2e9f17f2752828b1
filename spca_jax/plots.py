from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np

from .spatial import ConnectionNetwork, needs_360, neighbour_pairs, normalize_lon_360
from .spca import RandTest, SPCAResult


def _save(out_png: Path) -> None:
    plt.tight_layout()
    out_png.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(out_png, dpi=150)
    plt.close()


def _plot_lon(lon: np.ndarray) -> np.ndarray:
    lon = np.asarray(lon, dtype=np.float64)
    return normalize_lon_360(lon) if needs_360(lon) else lon


def lon_axis_label(lon: Sequence[float]) -> str:
    """X-axis label matching the longitudes drawn by _plot_lon."""
    return "Longitude (0-360)" if needs_360(lon) else "Longitude"


def _scatter_by_group(ax, x, y, groups, title: Optional[str] = None, z=None) -> None:
    labels = np.asarray(groups).astype(str)
    uniq = np.unique(labels)
    cmap = plt.get_cmap("tab10" if len(uniq) <= 10 else "tab20", max(len(uniq), 1))
    for i, lab in enumerate(uniq):
        mask = labels == lab
        coords = (x[mask], y[mask]) if z is None else (x[mask], y[mask], z[mask])
        ax.scatter(
            *coords,
            s=20,
            alpha=0.8,
            label=str(lab),
            color=cmap(i),
        )
    ax.legend(title=title, fontsize="small")


def plot_sample_map(
    lat: Sequence[float],
    lon: Sequence[float],
    groups: Sequence[str],
    out_png: Path,
    title: str = "Sample locations",
    scheme: Optional[str] = None,
    network: Optional[ConnectionNetwork] = None,
) -> None:
    """Sample locations coloured by group, optionally with network links.

    Longitudes are drawn on 0-360 when the samples straddle the antimeridian.
    """
    lat = np.asarray(lat, dtype=np.float64)
    x = _plot_lon(lon)

    fig, ax = plt.subplots(figsize=(7, 6))
    if network is not None:
        for i, j in neighbour_pairs(network):
            ax.plot([x[i], x[j]], [lat[i], lat[j]], color="lightgrey", linewidth=0.6, zorder=0)
    _scatter_by_group(ax, x, lat, groups, title=scheme)
    ax.set_xlabel(lon_axis_label(lon))
    ax.set_ylabel("Latitude")
    ax.set_title(title)
    _save(out_png)


def plot_eigenvalues(spca: SPCAResult, out_png: Path, title: str = "sPCA eigenvalues") -> None:
    """Barplot of all eigenvalues; retained global axes red, local axes blue."""
    evals = spca.eigenvalues
    colors = np.array(["lightgrey"] * evals.shape[0], dtype=object)
    colors[spca.axis_index[: spca.nfposi]] = "tab:red"
    colors[spca.axis_index[spca.nfposi :]] = "tab:blue"

    plt.figure(figsize=(8, 4))
    plt.bar(np.arange(1, evals.shape[0] + 1), evals, color=list(colors))
    plt.axhline(0.0, color="black", linewidth=0.8)
    plt.xlabel("Axis")
    plt.ylabel("Eigenvalue")
    plt.title(title)
    _save(out_png)


def plot_screeplot(
    spca: SPCAResult,
    out_png: Path,
    title: str = "sPCA eigenvalue decomposition",
) -> None:
    """Variance against Moran's I for each retained axis (eigenvalue = var * I)."""
    plt.figure(figsize=(6, 6))
    kinds = ["global"] * spca.nfposi + ["local"] * spca.nfnega
    for k, color in (("global", "tab:red"), ("local", "tab:blue")):
        mask = np.array([kk == k for kk in kinds])
        if mask.any():
            plt.scatter(spca.variance[mask], spca.moran[mask], color=color, label=k, s=30)
    for label, v, m in zip(spca.axis_labels, spca.variance, spca.moran):
        plt.annotate(label, (v, m), fontsize="x-small", xytext=(3, 3), textcoords="offset points")
    plt.axhline(0.0, color="grey", linewidth=1, linestyle="--")
    plt.xlabel("Variance")
    plt.ylabel("Spatial autocorrelation (Moran's I)")
    plt.title(title)
    plt.legend(fontsize="small")
    _save(out_png)


def plot_randtest(test: RandTest, out_png: Path, title: Optional[str] = None) -> None:
    """Histogram of the permutation null with the observed statistic marked."""
    plt.figure(figsize=(6, 4))
    plt.hist(test.sim, bins=30, color="lightgrey", edgecolor="grey")
    plt.axvline(test.observed, color="tab:red", linewidth=2)
    plt.annotate(
        f"obs = {test.observed:.4g}\np = {test.pvalue:.4g}",
        xy=(test.observed, 0),
        xytext=(5, 40),
        textcoords="offset points",
        color="tab:red",
        fontsize="small",
    )
    plt.xlabel("Statistic")
    plt.ylabel("Frequency")
    plt.title(title or f"{test.name.capitalize()} test ({test.nperm} permutations)")
    _save(out_png)


def plot_score_map(
    lat: Sequence[float],
    lon: Sequence[float],
    score: Sequence[float],
    out_png: Path,
    axis_label: str = "Axis 1",
    title: Optional[str] = None,
) -> None:
    """Scores on the map: colour gives the sign, marker size the magnitude."""
    lat = np.asarray(lat, dtype=np.float64)
    x = _plot_lon(lon)
    score = np.asarray(score, dtype=np.float64)
    vmax = float(np.max(np.abs(score))) or 1.0
    sizes = 10.0 + 90.0 * np.abs(score) / vmax

    plt.figure(figsize=(7, 6))
    sc = plt.scatter(
        x,
        lat,
        c=score,
        s=sizes,
        cmap="RdBu_r",
        vmin=-vmax,
        vmax=vmax,
        edgecolors="black",
        linewidths=0.3,
    )
    plt.colorbar(sc, label=f"{axis_label} score")
    plt.xlabel(lon_axis_label(lon))
    plt.ylabel("Latitude")
    plt.title(title or f"sPCA {axis_label} scores")
    _save(out_png)


def plot_interpolated_surface(
    lat: Sequence[float],
    lon: Sequence[float],
    score: Sequence[float],
    out_png: Path,
    axis_label: str = "Axis 1",
    title: Optional[str] = None,
    levels: int = 15,
) -> None:
    """Linear interpolation of a score over the Delaunay triangulation of the samples."""
    lat = np.asarray(lat, dtype=np.float64)
    x = _plot_lon(lon)
    score = np.asarray(score, dtype=np.float64)

    plt.figure(figsize=(7, 6))
    cs = plt.tricontourf(x, lat, score, levels=levels, cmap="RdBu_r")
    plt.colorbar(cs, label=f"{axis_label} score")
    plt.scatter(x, lat, s=6, color="black")
    plt.xlabel(lon_axis_label(lon))
    plt.ylabel("Latitude")
    plt.title(title or f"Interpolated {axis_label} scores")
    _save(out_png)


def plot_loadings(
    loci: Sequence[str],
    contributions: Sequence[float],
    out_png: Path,
    axis_label: str = "Axis 1",
    quantile: float = 0.75,
) -> None:
    """Per-locus loading contributions; loci above the quantile threshold in red."""
    contrib = np.asarray(contributions, dtype=np.float64)
    thresh = float(np.quantile(contrib, quantile))

    plt.figure(figsize=(max(6, 0.25 * len(loci)), 4))
    xs = np.arange(len(loci))
    plt.bar(xs, contrib, color=list(np.where(contrib > thresh, "tab:red", "lightgrey")))
    plt.axhline(thresh, color="grey", linewidth=1, linestyle="--")
    plt.xticks(xs, list(loci), rotation=90, fontsize="x-small")
    plt.ylabel("Contribution")
    plt.title(f"Locus contributions to {axis_label}")
    _save(out_png)


def plot_scores_2d(
    scores: np.ndarray,
    groups: Sequence[str],
    out_png: Path,
    axis_labels: Sequence[str] = ("Axis 1", "Axis 2"),
    scheme: Optional[str] = None,
) -> None:
    """Scatter of the first two retained axes, coloured by group."""
    scores = np.asarray(scores, dtype=np.float64)
    if scores.shape[1] < 2:
        raise ValueError("A 2-D score plot needs at least two retained axes.")
    fig, ax = plt.subplots(figsize=(6, 6))
    _scatter_by_group(ax, scores[:, 0], scores[:, 1], groups, title=scheme)
    ax.set_xlabel(axis_labels[0])
    ax.set_ylabel(axis_labels[1])
    ax.set_title("sPCA scores")
    _save(out_png)


def plot_scores_3d(
    scores: np.ndarray,
    groups: Sequence[str],
    out_png: Path,
    axis_labels: Sequence[str] = ("Axis 1", "Axis 2", "Axis 3"),
    scheme: Optional[str] = None,
) -> None:
    """3-D scatter of the first three retained axes, coloured by group."""
    scores = np.asarray(scores, dtype=np.float64)
    if scores.shape[1] < 3:
        raise ValueError("A 3-D score plot needs at least three retained axes.")
    fig = plt.figure(figsize=(7, 6))
    ax = fig.add_subplot(projection="3d")
    _scatter_by_group(ax, scores[:, 0], scores[:, 1], groups, title=scheme, z=scores[:, 2])
    ax.set_xlabel(axis_labels[0])
    ax.set_ylabel(axis_labels[1])
    ax.set_zlabel(axis_labels[2])
    ax.set_title("sPCA scores")
    _save(out_png)
