from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .io import GenotypeTable, write_genotype_table


@dataclass
class SimulatedData:
    genotypes: GenotypeTable
    strata: pd.DataFrame  # sample_id, lat, lon, <scheme columns>


def simulate_cline(
    n_ind: int,
    n_loci: int,
    seed: Optional[int] = None,
    lat_range: tuple = (40.0, 50.0),
    lon_range: tuple = (-10.0, 10.0),
    cline_strength: float = 0.8,
    monomorphic: Sequence[int] = (),
    missing_rate: float = 0.0,
) -> SimulatedData:
    """Simulate diploid genotypes with a longitudinal allele-frequency cline.

    Allele "2" has frequency rising from west to east (scaled by
    cline_strength around 0.5); loci listed in ``monomorphic`` (0-based) are
    fixed for allele "1". Strata carry two schemes: 'region' (west/east
    halves) and 'all' (a single stratum).
    """
    rng = np.random.default_rng(seed)

    lat = rng.uniform(*lat_range, size=n_ind)
    lon = rng.uniform(*lon_range, size=n_ind)
    rel = (lon - lon_range[0]) / (lon_range[1] - lon_range[0])  # 0..1 west to east

    p2 = 0.5 + cline_strength * (rel[:, None] - 0.5)
    p2 = np.clip(np.broadcast_to(p2, (n_ind, n_loci)), 0.0, 1.0).copy()
    p2[:, list(monomorphic)] = 0.0

    draws1 = rng.random((n_ind, n_loci)) < p2
    draws2 = rng.random((n_ind, n_loci)) < p2
    allele1 = np.where(draws1, "2", "1").astype(object)
    allele2 = np.where(draws2, "2", "1").astype(object)

    if missing_rate > 0:
        miss = rng.random((n_ind, n_loci)) < missing_rate
        allele1[miss] = None
        allele2[miss] = None

    sample_ids = [f"S{i+1:03d}" for i in range(n_ind)]
    loci = [f"locus_{j+1}" for j in range(n_loci)]
    strata = pd.DataFrame(
        {
            "sample_id": sample_ids,
            "lat": lat,
            "lon": lon,
            "region": np.where(rel < 0.5, "west", "east"),
            "all": "A",
        }
    )
    return SimulatedData(
        genotypes=GenotypeTable(
            sample_ids=sample_ids, loci=loci, allele1=allele1, allele2=allele2
        ),
        strata=strata,
    )


def write_simulated(sim: SimulatedData, out_dir: Path, prefix: str = "sim") -> tuple:
    """Write <prefix>.genotypes.csv and <prefix>.strata.csv into out_dir."""
    out_dir.mkdir(parents=True, exist_ok=True)
    geno_path = out_dir / f"{prefix}.genotypes.csv"
    strata_path = out_dir / f"{prefix}.strata.csv"
    write_genotype_table(sim.genotypes, geno_path)
    sim.strata.to_csv(strata_path, index=False)
    return geno_path, strata_path
