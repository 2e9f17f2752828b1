from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import zarr

from .errors import SchemaError

MISSING_CODES = frozenset({"", "00", "000", "-999"})

SAMPLE_ALIASES = ("sample_id", "sample", "id", "ind", "individual")
LAT_ALIASES = ("lat", "latitude")
LON_ALIASES = ("lon", "long", "lng", "longitude")

# (first, second) suffixes accepted for the two allele columns of one locus.
_SUFFIX_PAIRS: Tuple[Tuple[str, str], ...] = (
    ("_1", "_2"),
    (".1", ".2"),
    ("-1", "-2"),
    ("_a", "_b"),
    (".a", ".b"),
    ("_A", "_B"),
    (".A", ".B"),
    ("a", "b"),
    ("A", "B"),
)


@dataclass
class GenotypeTable:
    """Diploid genotypes as two allele matrices sharing one locus order.

    - sample_ids: (n_ind,) sample identifiers, unique
    - loci:       (n_loci,) locus names, unique
    - allele1[i,l] / allele2[i,l]: allele codes as str, None when missing
    """

    sample_ids: List[str]
    loci: List[str]
    allele1: np.ndarray  # shape (n_ind, n_loci), object
    allele2: np.ndarray  # shape (n_ind, n_loci), object

    @property
    def n_ind(self) -> int:
        return int(self.allele1.shape[0])

    @property
    def n_loci(self) -> int:
        return int(self.allele1.shape[1])


def pair_locus_name(first: str, second: str) -> Optional[str]:
    """Locus name for two adjacent allele columns, or None if they do not pair.

    Accepts the duplicate-header mangling of pandas and R (``X``, ``X.1``) and
    a shared stem with one of the suffix pairs in ``_SUFFIX_PAIRS``; the
    suffix is stripped from the first column to recover the locus name.
    """
    first = first.strip()
    second = second.strip()
    if second == f"{first}.1":
        return first
    for s1, s2 in _SUFFIX_PAIRS:
        if first.endswith(s1) and second.endswith(s2):
            stem1 = first[: -len(s1)]
            stem2 = second[: -len(s2)]
            if stem1 and stem1 == stem2:
                return stem1
    return None


def locus_names_from_columns(columns: Sequence[str]) -> List[str]:
    """Validate the allele-column pairing and return one name per locus."""
    if len(columns) == 0:
        raise SchemaError("Genotype table has no allele columns.")
    if len(columns) % 2 != 0:
        raise SchemaError(
            f"Genotype table has {len(columns)} allele columns; expected two per locus."
        )

    loci: List[str] = []
    for j in range(0, len(columns), 2):
        name = pair_locus_name(str(columns[j]), str(columns[j + 1]))
        if name is None:
            raise SchemaError(
                f"Allele columns '{columns[j]}' and '{columns[j + 1]}' "
                "do not form a locus pair."
            )
        loci.append(name)

    dup = sorted({x for x in loci if loci.count(x) > 1})
    if dup:
        raise SchemaError(f"Duplicate locus names in genotype table: {', '.join(dup)}.")
    return loci


def clean_alleles(values: pd.DataFrame) -> np.ndarray:
    """Strip allele codes and map missing sentinels to None."""
    stripped = values.apply(lambda s: s.str.strip())
    mask = stripped.isna() | stripped.isin(sorted(MISSING_CODES))
    arr = stripped.to_numpy(dtype=object)
    arr[mask.to_numpy()] = None
    return arr


def read_genotype_table(path: str | Path) -> GenotypeTable:
    """Read a CSV genotype table into a GenotypeTable.

    The expected layout:
    - header row
    - first column: sample id
    - then two columns per locus (allele 1, allele 2), loci in fixed order.
    """
    path = Path(path)
    df = pd.read_csv(path, dtype=str)
    if df.shape[1] < 3:
        raise SchemaError(
            f"Genotype file {path} must have a sample id column and at least one allele pair"
        )

    sample_ids = df.iloc[:, 0].str.strip()
    if sample_ids.isna().any():
        raise SchemaError(f"Genotype file {path} has rows without a sample id.")
    dup = sample_ids[sample_ids.duplicated()].unique().tolist()
    if dup:
        raise SchemaError(
            f"Duplicate sample ids in genotype file {path}, e.g. {', '.join(dup[:5])}."
        )

    allele_cols: Sequence[str] = list(df.columns[1:])
    loci = locus_names_from_columns(allele_cols)
    alleles = clean_alleles(df.iloc[:, 1:])

    return GenotypeTable(
        sample_ids=sample_ids.tolist(),
        loci=loci,
        allele1=alleles[:, 0::2],
        allele2=alleles[:, 1::2],
    )


def _resolve_column(cols: Dict[str, str], aliases: Sequence[str], what: str, path: Path) -> str:
    for alias in aliases:
        if alias in cols:
            return cols[alias]
    raise SchemaError(
        f"Strata file {path} must have a {what} column (one of: {', '.join(aliases)})."
    )


def read_strata_table(path: str | Path) -> pd.DataFrame:
    """Read a strata CSV into columns sample_id, lat, lon + grouping schemes.

    Column names are matched case-insensitively against the usual aliases;
    every column that is not the id or a coordinate is a grouping scheme.
    Blank strings are missing; non-numeric coordinates become NaN.
    """
    path = Path(path)
    df = pd.read_csv(path, dtype=str)
    cols = {c.strip().lower(): c for c in df.columns}
    sample_col = _resolve_column(cols, SAMPLE_ALIASES, "sample id", path)
    lat_col = _resolve_column(cols, LAT_ALIASES, "latitude", path)
    lon_col = _resolve_column(cols, LON_ALIASES, "longitude", path)

    scheme_cols = [c for c in df.columns if c not in {sample_col, lat_col, lon_col}]
    if not scheme_cols:
        raise SchemaError(f"Strata file {path} has no grouping column.")

    df = df.apply(lambda s: s.str.strip())
    df = df.mask(df == "")

    if df[sample_col].isna().any():
        raise SchemaError(f"Strata file {path} has rows without a sample id.")
    dup = df.loc[df[sample_col].duplicated(), sample_col].unique().tolist()
    if dup:
        raise SchemaError(
            f"Duplicate sample ids in strata file {path}, e.g. {', '.join(dup[:5])}."
        )

    out = pd.DataFrame(
        {
            "sample_id": df[sample_col].astype(str),
            "lat": pd.to_numeric(df[lat_col], errors="coerce"),
            "lon": pd.to_numeric(df[lon_col], errors="coerce"),
        }
    )
    for c in scheme_cols:
        out[c.strip()] = df[c]
    return out.reset_index(drop=True)


def write_genotype_table(table: GenotypeTable, path: str | Path, missing: str = "00") -> None:
    """Write a GenotypeTable back to the paired-column CSV layout (``X``, ``X.1``)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data: Dict[str, object] = {"sample_id": table.sample_ids}
    for j, locus in enumerate(table.loci):
        data[locus] = [missing if a is None else a for a in table.allele1[:, j]]
        data[f"{locus}.1"] = [missing if a is None else a for a in table.allele2[:, j]]
    pd.DataFrame(data).to_csv(path, index=False)


def select_samples(table: GenotypeTable, sample_indices: Sequence[int]) -> GenotypeTable:
    """Return a GenotypeTable restricted to a subset of samples."""
    idx = np.asarray(sample_indices, dtype=int)
    return GenotypeTable(
        sample_ids=[table.sample_ids[i] for i in idx],
        loci=table.loci,
        allele1=table.allele1[idx, :],
        allele2=table.allele2[idx, :],
    )


def select_loci(table: GenotypeTable, locus_indices: Sequence[int]) -> GenotypeTable:
    """Return a GenotypeTable restricted to a subset of loci."""
    idx = np.asarray(locus_indices, dtype=int)
    return GenotypeTable(
        sample_ids=table.sample_ids,
        loci=[table.loci[j] for j in idx],
        allele1=table.allele1[:, idx],
        allele2=table.allele2[:, idx],
    )


@dataclass
class SessionState:
    """Everything held in memory at the end of a run, for the Zarr snapshot."""

    sample_ids: List[str]
    groups: np.ndarray  # (n_ind,) str
    lat: np.ndarray  # (n_ind,) float64
    lon: np.ndarray  # (n_ind,) float64
    loci: List[str]
    genotypes: np.ndarray  # (n_ind, n_loci) composite genotype strings, "" if missing
    monomorphic: List[str]
    allele_labels: List[str] = field(default_factory=list)
    eigenvalues: np.ndarray = field(default_factory=lambda: np.zeros(0))
    scores: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    lag_scores: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    loadings: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    freq: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))  # sPCA input table
    axis_index: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    variance: np.ndarray = field(default_factory=lambda: np.zeros(0))
    moran: np.ndarray = field(default_factory=lambda: np.zeros(0))
    weights: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    adjacency: np.ndarray = field(default_factory=lambda: np.zeros((0, 0), dtype=bool))
    tests: Dict[str, Dict[str, object]] = field(default_factory=dict)
    counts: Dict[str, int] = field(default_factory=dict)  # filter-stage row counts
    params: Dict[str, object] = field(default_factory=dict)


def write_session_store(session: SessionState, store_path: str | Path) -> None:
    """Write a SessionState to a Zarr store.

    Layout:
      - sample_ids, groups, lat, lon: (n_ind,)
      - loci:                        (n_loci,)
      - genotypes:                   (n_ind, n_loci)
      - monomorphic:                 (n_mono,)
      - allele_labels, freq:         (n_alleles,), (n_ind, n_alleles)
      - eigenvalues, axis_index, variance, moran, scores, lag_scores, loadings
      - weights, adjacency:          (n_ind, n_ind)
      - tests/<name>/sim:            (nperm,)
    Scalars (observed, pvalue, alter), filter counts and run parameters live
    in attrs.
    """
    store_path = Path(store_path)
    store_path.parent.mkdir(parents=True, exist_ok=True)

    g = zarr.open_group(store_path.as_posix(), mode="w")

    n_ind = len(session.sample_ids)
    for name, values in (
        ("sample_ids", session.sample_ids),
        ("groups", session.groups),
        ("loci", session.loci),
        ("monomorphic", session.monomorphic),
        ("allele_labels", session.allele_labels),
    ):
        g.create_dataset(
            name,
            data=np.asarray(list(values), dtype="U"),
            compressor=None,
            overwrite=True,
        )

    g.create_dataset("lat", data=np.asarray(session.lat, dtype=np.float64), overwrite=True)
    g.create_dataset("lon", data=np.asarray(session.lon, dtype=np.float64), overwrite=True)
    g.create_dataset(
        "genotypes",
        data=np.asarray(session.genotypes, dtype="U"),
        chunks=(max(n_ind, 1), min(max(len(session.loci), 1), 1024)),
        overwrite=True,
    )

    for name in (
        "freq",
        "eigenvalues",
        "variance",
        "moran",
        "scores",
        "lag_scores",
        "loadings",
        "weights",
    ):
        g.create_dataset(
            name,
            data=np.asarray(getattr(session, name), dtype=np.float64),
            overwrite=True,
        )

    tests_group = g.require_group("tests")
    for tname, res in session.tests.items():
        sub = tests_group.require_group(tname)
        sub.create_dataset(
            "sim",
            data=np.asarray(res["sim"], dtype=np.float64),
            overwrite=True,
        )
        sub.attrs["observed"] = float(res["observed"])  # type: ignore[arg-type]
        sub.attrs["pvalue"] = float(res["pvalue"])  # type: ignore[arg-type]
        sub.attrs["alter"] = str(res.get("alter", "greater"))

    g.create_dataset(
        "axis_index", data=np.asarray(session.axis_index, dtype=np.int64), overwrite=True
    )
    g.create_dataset(
        "adjacency", data=np.asarray(session.adjacency, dtype=bool), overwrite=True
    )

    g.attrs["params"] = dict(session.params)
    g.attrs["counts"] = {k: int(v) for k, v in session.counts.items()}


def read_session_store(store_path: str | Path) -> SessionState:
    """Read a Zarr store written by write_session_store into SessionState."""
    store_path = Path(store_path)
    g = zarr.open_group(store_path.as_posix(), mode="r")

    def _strs(name: str) -> List[str]:
        return [str(s) for s in np.asarray(g[name][:])]

    tests: Dict[str, Dict[str, object]] = {}
    if "tests" in g:
        for tname, sub in g["tests"].groups():
            tests[tname] = {
                "observed": float(sub.attrs["observed"]),
                "pvalue": float(sub.attrs["pvalue"]),
                "alter": str(sub.attrs.get("alter", "greater")),
                "sim": np.asarray(sub["sim"][:], dtype=np.float64),
            }

    return SessionState(
        sample_ids=_strs("sample_ids"),
        groups=np.asarray(g["groups"][:]).astype(str),
        lat=np.asarray(g["lat"][:], dtype=np.float64),
        lon=np.asarray(g["lon"][:], dtype=np.float64),
        loci=_strs("loci"),
        genotypes=np.asarray(g["genotypes"][:]).astype(str),
        monomorphic=_strs("monomorphic"),
        allele_labels=_strs("allele_labels"),
        eigenvalues=np.asarray(g["eigenvalues"][:], dtype=np.float64),
        scores=np.asarray(g["scores"][:], dtype=np.float64),
        lag_scores=np.asarray(g["lag_scores"][:], dtype=np.float64),
        loadings=np.asarray(g["loadings"][:], dtype=np.float64),
        freq=np.asarray(g["freq"][:], dtype=np.float64),
        axis_index=np.asarray(g["axis_index"][:], dtype=np.int64),
        variance=np.asarray(g["variance"][:], dtype=np.float64),
        moran=np.asarray(g["moran"][:], dtype=np.float64),
        weights=np.asarray(g["weights"][:], dtype=np.float64),
        adjacency=np.asarray(g["adjacency"][:], dtype=bool),
        tests=tests,
        params=dict(g.attrs.get("params", {})),
        counts={k: int(v) for k, v in g.attrs.get("counts", {}).items()},
    )
