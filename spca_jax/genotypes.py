from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
import pandas as pd

from .io import GenotypeTable

DEFAULT_SEP = "/"


@dataclass
class AlleleTable:
    """Per-sample allele frequencies, one column per (locus, allele).

    freq[i, c] is the share of sample i's two alleles equal to allele c
    (0, 0.5 or 1); untyped samples carry the column mean.
    """

    sample_ids: List[str]
    loci: List[str]
    locus_of_column: np.ndarray  # (n_col,), index into loci
    labels: List[str]  # "locus.allele"
    freq: np.ndarray  # (n_ind, n_col), float64
    typed: np.ndarray  # (n_ind, n_loci), bool

    @property
    def n_col(self) -> int:
        return int(self.freq.shape[1])


def combine_alleles(table: GenotypeTable, sep: str = DEFAULT_SEP) -> pd.DataFrame:
    """One composite genotype string per locus, ``allele1 + sep + allele2``.

    A genotype with either allele missing is missing (None). The frame is
    indexed by sample id, columns are the locus names in input order.
    """
    out = np.empty(table.allele1.shape, dtype=object)
    for idx, a1 in np.ndenumerate(table.allele1):
        a2 = table.allele2[idx]
        out[idx] = None if a1 is None or a2 is None else f"{a1}{sep}{a2}"
    return pd.DataFrame(
        out,
        index=pd.Index(table.sample_ids, name="sample_id"),
        columns=list(table.loci),
    )


def split_genotypes(
    composite: pd.DataFrame, sep: str = DEFAULT_SEP
) -> Tuple[np.ndarray, np.ndarray]:
    """Inverse of combine_alleles: two (n_ind, n_loci) allele matrices."""
    vals = composite.to_numpy(dtype=object)
    a1 = np.empty(vals.shape, dtype=object)
    a2 = np.empty(vals.shape, dtype=object)
    for idx, g in np.ndenumerate(vals):
        if g is None or (isinstance(g, float) and np.isnan(g)):
            a1[idx] = None
            a2[idx] = None
            continue
        parts = str(g).split(sep)
        if len(parts) != 2:
            raise ValueError(f"Genotype '{g}' does not contain exactly one '{sep}'.")
        a1[idx], a2[idx] = parts
    return a1, a2


def allele_frequency_table(composite: pd.DataFrame, sep: str = DEFAULT_SEP) -> AlleleTable:
    """Expand composite genotypes into an allele-frequency table.

    Alleles are sorted within each locus. Missing genotypes are replaced by
    the mean frequency of each allele over typed samples.
    """
    a1, a2 = split_genotypes(composite, sep=sep)
    n_ind = a1.shape[0]
    typed = np.asarray(pd.notna(a1), dtype=bool)

    blocks = []
    labels: List[str] = []
    locus_of_column: List[int] = []
    for j, locus in enumerate(composite.columns):
        present = {a for a in a1[:, j] if a is not None}
        present.update(a for a in a2[:, j] if a is not None)
        alleles = sorted(present)
        block = np.zeros((n_ind, len(alleles)), dtype=np.float64)
        for k, allele in enumerate(alleles):
            block[:, k] = 0.5 * (
                (a1[:, j] == allele).astype(float) + (a2[:, j] == allele).astype(float)
            )
        rows = typed[:, j]
        if rows.any() and not rows.all():
            block[~rows, :] = block[rows, :].mean(axis=0)
        blocks.append(block)
        labels.extend(f"{locus}.{a}" for a in alleles)
        locus_of_column.extend([j] * len(alleles))

    freq = np.concatenate(blocks, axis=1) if blocks else np.zeros((n_ind, 0))
    return AlleleTable(
        sample_ids=[str(s) for s in composite.index],
        loci=[str(c) for c in composite.columns],
        locus_of_column=np.asarray(locus_of_column, dtype=int),
        labels=labels,
        freq=freq,
        typed=typed,
    )


def observed_heterozygosity(table: GenotypeTable) -> np.ndarray:
    """Per-sample, per-locus heterozygosity: 1.0 het, 0.0 hom, NaN missing."""
    het = np.full(table.allele1.shape, np.nan, dtype=np.float64)
    for idx, x in np.ndenumerate(table.allele1):
        y = table.allele2[idx]
        if x is not None and y is not None:
            het[idx] = float(x != y)
    return het


def expected_heterozygosity(freq: AlleleTable) -> np.ndarray:
    """Nei's expected heterozygosity per locus, 1 - sum(p^2) over typed samples."""
    he = np.full(len(freq.loci), np.nan, dtype=np.float64)
    for j in range(len(freq.loci)):
        rows = freq.typed[:, j]
        if not rows.any():
            continue
        cols = freq.locus_of_column == j
        p = freq.freq[rows][:, cols].mean(axis=0)
        he[j] = 1.0 - float(np.sum(p**2))
    return he
