from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .genotypes import AlleleTable, expected_heterozygosity, observed_heterozygosity
from .qc import FilterResult
from .spca import RandTest, SPCAResult, loading_contributions, randtest_summary


def _typed(fr: FilterResult) -> np.ndarray:
    g = fr.genotypes
    return np.asarray(pd.notna(g.allele1) & pd.notna(g.allele2), dtype=bool)


def _het_rate(het: np.ndarray, typed: np.ndarray, axis: int) -> np.ndarray:
    n_typed = typed.sum(axis=axis)
    het_sum = np.nansum(np.where(typed, het, 0.0), axis=axis)
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(n_typed > 0, het_sum / n_typed, np.nan)


def per_sample_summary(fr: FilterResult, spca: Optional[SPCAResult] = None) -> pd.DataFrame:
    """One row per retained sample: group, coordinates, typing rate, heterozygosity, scores."""
    typed = _typed(fr)
    het = observed_heterozygosity(fr.genotypes)
    het_rate = _het_rate(het, typed, axis=1)

    df = pd.DataFrame(
        {
            "sample_id": fr.sample_ids,
            "group": fr.groups,
            "lat": fr.lat,
            "lon": fr.lon,
            "n_typed": typed.sum(axis=1),
            "missing_frac": 1.0 - typed.mean(axis=1),
            "het_obs": het_rate,
        }
    )
    if spca is not None:
        for j, label in enumerate(spca.axis_labels):
            df[label.replace(" ", "")] = spca.scores[:, j]
            df[f"lag_{label.replace(' ', '')}"] = spca.lag_scores[:, j]
    return df


def per_stratum_summary(fr: FilterResult) -> pd.DataFrame:
    """One row per stratum of the selected scheme."""
    samples = per_sample_summary(fr)
    # samples are already in stratum order
    grouped = samples.groupby("group", sort=False)
    out = grouped.agg(
        n_samples=("sample_id", "size"),
        lat_mean=("lat", "mean"),
        lat_min=("lat", "min"),
        lat_max=("lat", "max"),
        lon_mean=("lon", "mean"),
        lon_min=("lon", "min"),
        lon_max=("lon", "max"),
        missing_frac=("missing_frac", "mean"),
        het_obs=("het_obs", "mean"),
    ).reset_index()
    return out.rename(columns={"group": fr.scheme})


def per_locus_summary(
    fr: FilterResult,
    alleles: AlleleTable,
    spca: Optional[SPCAResult] = None,
    axis: int = 0,
) -> pd.DataFrame:
    """One row per polymorphic locus: alleles, typing, heterozygosity, loading share."""
    typed = _typed(fr)
    het = observed_heterozygosity(fr.genotypes)
    n_alleles = np.bincount(alleles.locus_of_column, minlength=len(alleles.loci))
    het_obs = _het_rate(het, typed, axis=0)

    df = pd.DataFrame(
        {
            "locus": alleles.loci,
            "n_alleles": n_alleles,
            "n_typed": typed.sum(axis=0),
            "missing_frac": 1.0 - typed.mean(axis=0),
            "het_obs": het_obs,
            "het_exp": expected_heterozygosity(alleles),
        }
    )
    if spca is not None:
        contrib = loading_contributions(spca, axis=axis)
        per_locus = np.bincount(
            alleles.locus_of_column, weights=contrib, minlength=len(alleles.loci)
        )
        df[f"contrib_{spca.axis_labels[axis].replace(' ', '')}"] = per_locus
    return df


def monomorphic_table(fr: FilterResult) -> pd.DataFrame:
    return pd.DataFrame({"locus": fr.monomorphic})


def randtest_table(tests: Sequence[RandTest], alpha: float = 0.05) -> pd.DataFrame:
    return pd.DataFrame(randtest_summary(tests, alpha=alpha))


def eigenvalue_table(spca: SPCAResult) -> pd.DataFrame:
    """Retained axes with eigenvalue = variance * Moran's I."""
    return pd.DataFrame(
        {
            "axis": spca.axis_labels,
            "kind": ["global"] * spca.nfposi + ["local"] * spca.nfnega,
            "eigenvalue": spca.eigenvalues[spca.axis_index],
            "variance": spca.variance,
            "moran": spca.moran,
        }
    )
