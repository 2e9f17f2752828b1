from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np
import pandas as pd

from .errors import DataQualityError, SchemaError
from .io import GenotypeTable, select_loci, select_samples


@dataclass
class FilterResult:
    """Outputs of the merge + filter stage for one stratification scheme."""

    scheme: str
    # retained samples, sorted by (group, sample id)
    genotypes: GenotypeTable  # polymorphic loci only
    groups: np.ndarray  # (n_ind,), str
    lat: np.ndarray  # (n_ind,), float64
    lon: np.ndarray  # (n_ind,), float64

    monomorphic: List[str]
    polymorphic: List[str]

    n_joined: int
    n_dropped_group: int
    n_dropped_coords: int

    @property
    def sample_ids(self) -> List[str]:
        return self.genotypes.sample_ids

    @property
    def n_retained(self) -> int:
        return self.genotypes.n_ind

    @property
    def n_dropped(self) -> int:
        return self.n_dropped_group + self.n_dropped_coords


def distinct_allele_counts(allele1: np.ndarray, allele2: np.ndarray) -> np.ndarray:
    """Number of distinct allele codes per locus (column).

    Only fully typed genotypes count: a genotype with one allele missing is
    missing as a whole, as it is in the composite and frequency tables.
    """
    n_loci = allele1.shape[1]
    counts = np.zeros(n_loci, dtype=np.int64)
    for j in range(n_loci):
        vals = set()
        for a, b in zip(allele1[:, j], allele2[:, j]):
            if a is not None and b is not None:
                vals.update((a, b))
        counts[j] = len(vals)
    return counts


def group_sort_keys(groups: np.ndarray) -> np.ndarray:
    """Sort keys for stratum labels: numeric when every label is a number."""
    as_num = pd.to_numeric(pd.Series(groups), errors="coerce")
    if len(groups) and as_num.notna().all():
        return as_num.to_numpy(dtype=np.float64)
    return np.asarray(groups).astype(str)


def monomorphic_mask(table: GenotypeTable) -> np.ndarray:
    """Boolean mask over loci: fewer than two distinct alleles in ``table``."""
    return distinct_allele_counts(table.allele1, table.allele2) < 2


def filter_for_scheme(
    genotypes: GenotypeTable,
    strata: pd.DataFrame,
    scheme: str,
) -> FilterResult:
    """Join genotypes with strata and keep analysable samples and loci.

    Steps:
      1. inner join on sample id, in genotype-table order
      2. drop samples with no group value for ``scheme``, then samples
         missing latitude or longitude
      3. classify loci on the retained samples: monomorphic (< 2 distinct
         alleles over fully typed genotypes) vs polymorphic; keep
         polymorphic loci only
      4. sort samples by (group, sample id); numeric labels sort as numbers
    """
    if scheme not in strata.columns or scheme in {"sample_id", "lat", "lon"}:
        schemes = [c for c in strata.columns if c not in {"sample_id", "lat", "lon"}]
        raise SchemaError(
            f"Unknown stratification scheme '{scheme}'; available: {', '.join(schemes)}."
        )

    strata_idx = strata.set_index("sample_id")
    geno_ids = pd.Index(genotypes.sample_ids)
    in_both = geno_ids.isin(strata_idx.index)
    joined_rows = np.where(in_both)[0]
    joined_ids = geno_ids[joined_rows]
    n_joined = int(joined_rows.size)

    group = strata_idx.loc[joined_ids, scheme]
    lat = strata_idx.loc[joined_ids, "lat"].astype(float)
    lon = strata_idx.loc[joined_ids, "lon"].astype(float)

    has_group = group.notna().to_numpy()
    has_coords = (lat.notna() & lon.notna()).to_numpy()
    n_dropped_group = int((~has_group).sum())
    n_dropped_coords = int((has_group & ~has_coords).sum())

    keep = has_group & has_coords
    if not keep.any():
        raise DataQualityError(
            f"No samples left for scheme '{scheme}': {genotypes.n_ind} genotyped, "
            f"{len(strata)} in strata, {n_joined} in both, "
            f"{n_dropped_group} without a group, {n_dropped_coords} without coordinates."
        )

    kept_rows = joined_rows[keep]
    kept_groups = group.to_numpy()[keep].astype(str)
    kept_ids = np.asarray(joined_ids)[keep].astype(str)
    order = np.lexsort((kept_ids, group_sort_keys(kept_groups)))

    table = select_samples(genotypes, kept_rows[order])

    mono = monomorphic_mask(table)
    monomorphic = [l for l, m in zip(table.loci, mono) if m]
    polymorphic = [l for l, m in zip(table.loci, mono) if not m]
    if not polymorphic:
        raise DataQualityError(
            f"No polymorphic loci for scheme '{scheme}': all {table.n_loci} loci are "
            f"monomorphic across {table.n_ind} retained samples."
        )

    return FilterResult(
        scheme=scheme,
        genotypes=select_loci(table, np.where(~mono)[0]),
        groups=kept_groups[order],
        lat=lat.to_numpy()[keep][order].astype(np.float64),
        lon=lon.to_numpy()[keep][order].astype(np.float64),
        monomorphic=monomorphic,
        polymorphic=polymorphic,
        n_joined=n_joined,
        n_dropped_group=n_dropped_group,
        n_dropped_coords=n_dropped_coords,
    )
