from __future__ import annotations

import argparse
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from . import genotypes, io, plots, qc, sim, spatial, spca, summary
from .errors import AnalysisError, DataQualityError, SchemaError


@dataclass
class SPCAParams:
    """Run parameters, stored with the session snapshot."""

    scheme: str
    title: str
    network: str = "distance"
    d1: float = 0.0
    d2: Optional[float] = None
    k: int = 5
    alpha: float = 1.0
    nperm: int = 999
    nfposi: int = 1
    nfnega: int = 1
    sep: str = genotypes.DEFAULT_SEP
    significance: float = 0.05
    seed: int = 1


def _add_input_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("genotypes", type=Path, help="Genotype CSV: sample id + two columns per locus")
    p.add_argument("strata", type=Path, help="Strata CSV: sample id, latitude, longitude, schemes")
    p.add_argument(
        "--scheme",
        type=str,
        required=True,
        help="Strata column used as the stratification scheme.",
    )
    p.add_argument(
        "--prefix",
        type=str,
        required=True,
        help="Output file prefix (e.g. 'out/run1' will create out/run1.*.csv).",
    )
    p.add_argument(
        "--sep",
        type=str,
        default=genotypes.DEFAULT_SEP,
        help="Separator between the two alleles of a composite genotype (default: '/').",
    )


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="spca-jax",
        description="Spatial PCA of multilocus genotypes with permutation tests (Python/JAX).",
    )

    sub = p.add_subparsers(dest="command", required=True)

    # End-to-end analysis.
    run = sub.add_parser(
        "run",
        help=(
            "Filter, reshape, build the connection network, run sPCA and "
            "global/local/combined permutation tests, write tables and plots."
        ),
    )
    _add_input_args(run)
    run.add_argument("--title", type=str, default=None, help="Analysis title (default: scheme).")
    run.add_argument(
        "--network",
        choices=["distance", "knn", "inverse"],
        default="distance",
        help="Connection network type (default: distance).",
    )
    run.add_argument(
        "--d1",
        type=float,
        default=0.0,
        help="Lower neighbour distance in km for --network distance (default: 0).",
    )
    run.add_argument(
        "--d2",
        type=float,
        default=None,
        help="Upper neighbour distance in km for --network distance (required there).",
    )
    run.add_argument(
        "--k",
        type=int,
        default=5,
        help="Number of nearest neighbours for --network knn (default: 5).",
    )
    run.add_argument(
        "--alpha",
        type=float,
        default=1.0,
        help="Distance exponent for --network inverse (default: 1).",
    )
    run.add_argument(
        "--nperm",
        type=int,
        default=999,
        help="Number of permutations per test (default: 999).",
    )
    run.add_argument(
        "--nfposi",
        type=int,
        default=1,
        help="Number of retained global (positive) axes (default: 1).",
    )
    run.add_argument(
        "--nfnega",
        type=int,
        default=1,
        help="Number of retained local (negative) axes (default: 1).",
    )
    run.add_argument(
        "--significance",
        type=float,
        default=0.05,
        help="Significance threshold for the permutation tests (default: 0.05).",
    )
    run.add_argument(
        "--seed", type=int, default=1, help="Random seed for permutations (default: 1)."
    )
    run.add_argument("--no-plots", action="store_true", help="Skip the diagnostic plots.")

    # Filtering and summaries only.
    filt = sub.add_parser(
        "filter",
        help="Merge, filter and reshape for one scheme; write monomorphic loci and summaries.",
    )
    _add_input_args(filt)

    # Toy data.
    simp = sub.add_parser(
        "simulate",
        help="Simulate genotypes with a west-east allele-frequency cline and matching strata.",
    )
    simp.add_argument("--n-ind", type=int, default=100, help="Number of samples (default: 100).")
    simp.add_argument("--n-loci", type=int, default=20, help="Number of loci (default: 20).")
    simp.add_argument(
        "--cline-strength",
        type=float,
        default=0.8,
        help="Allele-frequency difference across the range (default: 0.8).",
    )
    simp.add_argument(
        "--missing-rate",
        type=float,
        default=0.0,
        help="Fraction of genotypes set missing (default: 0).",
    )
    simp.add_argument("--seed", type=int, default=None, help="Random seed.")
    simp.add_argument("--out-dir", type=Path, required=True, help="Output directory.")
    simp.add_argument("--prefix", type=str, default="sim", help="File prefix (default: sim).")

    # Sample map.
    pmap = sub.add_parser("plot-map", help="Map of sample locations coloured by a scheme.")
    pmap.add_argument("strata", type=Path, help="Strata CSV")
    pmap.add_argument("--scheme", type=str, default=None, help="Scheme used for colours.")
    pmap.add_argument("--out", type=Path, required=True, help="Output PNG.")

    return p


def _filter_stage(args: argparse.Namespace) -> tuple:
    geno = io.read_genotype_table(args.genotypes)
    strata = io.read_strata_table(args.strata)
    fr = qc.filter_for_scheme(geno, strata, args.scheme)

    print(
        f"Scheme '{fr.scheme}': {fr.n_joined} samples in both tables, "
        f"{fr.n_dropped_group} without a group, {fr.n_dropped_coords} without coordinates, "
        f"{fr.n_retained} retained in {len(np.unique(fr.groups))} strata."
    )
    print(
        f"Loci: {len(fr.polymorphic)} polymorphic, {len(fr.monomorphic)} monomorphic"
        + (f" ({', '.join(fr.monomorphic)})" if fr.monomorphic else "")
    )

    composite = genotypes.combine_alleles(fr.genotypes, sep=args.sep)
    alleles = genotypes.allele_frequency_table(composite, sep=args.sep)
    return fr, composite, alleles


def _write_filter_outputs(prefix: str, fr: qc.FilterResult, alleles, spca_res=None) -> None:
    summary.monomorphic_table(fr).to_csv(f"{prefix}.monomorphic.csv", index=False)
    summary.per_stratum_summary(fr).to_csv(f"{prefix}.strata_summary.csv", index=False)
    summary.per_locus_summary(fr, alleles, spca_res).to_csv(
        f"{prefix}.locus_summary.csv", index=False
    )
    summary.per_sample_summary(fr, spca_res).to_csv(
        f"{prefix}.sample_summary.csv", index=False
    )


def cmd_filter(args: argparse.Namespace) -> None:
    base = Path(args.prefix)
    base.parent.mkdir(parents=True, exist_ok=True)

    fr, composite, alleles = _filter_stage(args)
    composite.to_csv(f"{args.prefix}.composite.csv")
    _write_filter_outputs(args.prefix, fr, alleles)


def _write_plots(
    prefix: str,
    params: SPCAParams,
    fr: qc.FilterResult,
    alleles: genotypes.AlleleTable,
    network: spatial.ConnectionNetwork,
    res: spca.SPCAResult,
    tests: Sequence[spca.RandTest],
) -> None:
    plots.plot_sample_map(
        fr.lat,
        fr.lon,
        fr.groups,
        Path(f"{prefix}.map.png"),
        title=params.title,
        scheme=params.scheme,
        network=network,
    )
    plots.plot_eigenvalues(
        res, Path(f"{prefix}.eigenvalues.png"), title=f"{params.title}: sPCA eigenvalues"
    )
    plots.plot_screeplot(res, Path(f"{prefix}.screeplot.png"))
    for t in tests:
        plots.plot_randtest(t, Path(f"{prefix}.{t.name}_test.png"))

    for j, label in enumerate(res.axis_labels):
        tag = label.replace(" ", "").lower()
        plots.plot_score_map(
            fr.lat, fr.lon, res.scores[:, j], Path(f"{prefix}.scores_{tag}.png"), axis_label=label
        )
        contrib = np.bincount(
            alleles.locus_of_column,
            weights=spca.loading_contributions(res, axis=j),
            minlength=len(alleles.loci),
        )
        plots.plot_loadings(
            alleles.loci, contrib, Path(f"{prefix}.loadings_{tag}.png"), axis_label=label
        )

    lead = res.axis_labels[0]
    try:
        plots.plot_interpolated_surface(
            fr.lat,
            fr.lon,
            res.scores[:, 0],
            Path(f"{prefix}.surface_{lead.replace(' ', '').lower()}.png"),
            axis_label=lead,
        )
    except (ValueError, RuntimeError) as exc:
        # Triangulation fails for fewer than 3 distinct, non-collinear locations.
        print(f"Warning: skipped interpolated surface: {exc}")

    if res.n_axes >= 2:
        plots.plot_scores_2d(
            res.scores, fr.groups, Path(f"{prefix}.scores2d.png"), res.axis_labels, params.scheme
        )
    if res.n_axes >= 3:
        plots.plot_scores_3d(
            res.scores, fr.groups, Path(f"{prefix}.scores3d.png"), res.axis_labels, params.scheme
        )


def cmd_run(args: argparse.Namespace) -> None:
    """End-to-end pipeline driver."""
    params = SPCAParams(
        scheme=args.scheme,
        title=args.title or args.scheme,
        network=args.network,
        d1=args.d1,
        d2=args.d2,
        k=args.k,
        alpha=args.alpha,
        nperm=args.nperm,
        nfposi=args.nfposi,
        nfnega=args.nfnega,
        sep=args.sep,
        significance=args.significance,
        seed=args.seed,
    )
    if params.network == "distance" and params.d2 is None:
        raise SystemExit("--d2 is required for --network distance.")

    prefix = args.prefix
    base = Path(prefix)
    base.parent.mkdir(parents=True, exist_ok=True)

    fr, composite, alleles = _filter_stage(args)

    network = spatial.connection_network(
        fr.lat,
        fr.lon,
        kind=params.network,
        d1=params.d1,
        d2=params.d2,
        k=params.k,
        alpha=params.alpha,
        sample_ids=fr.sample_ids,
    )
    print(
        f"Connection network ({params.network}): {network.n_links} links, "
        f"{network.n_neighbours.mean():.2f} neighbours per sample on average."
    )

    res = spca.run_spca(alleles.freq, network.weights, nfposi=params.nfposi, nfnega=params.nfnega)

    tests = [
        spca.global_test(alleles.freq, network.weights, nperm=params.nperm, seed=params.seed),
        spca.local_test(alleles.freq, network.weights, nperm=params.nperm, seed=params.seed + 1),
        spca.combined_test(
            alleles.freq,
            network.weights,
            nperm=params.nperm,
            nfposi=params.nfposi,
            nfnega=params.nfnega,
            seed=params.seed + 2,
        ),
    ]

    _write_filter_outputs(prefix, fr, alleles, res)
    summary.eigenvalue_table(res).to_csv(f"{prefix}.eigenvalues.csv", index=False)
    summary.randtest_table(tests, alpha=params.significance).to_csv(
        f"{prefix}.randtests.csv", index=False
    )

    if not args.no_plots:
        _write_plots(prefix, params, fr, alleles, network, res, tests)

    session = io.SessionState(
        sample_ids=fr.sample_ids,
        groups=fr.groups,
        lat=fr.lat,
        lon=fr.lon,
        loci=list(composite.columns),
        genotypes=composite.fillna("").to_numpy(dtype=str),
        monomorphic=fr.monomorphic,
        allele_labels=alleles.labels,
        freq=alleles.freq,
        eigenvalues=res.eigenvalues,
        axis_index=res.axis_index,
        variance=res.variance,
        moran=res.moran,
        scores=res.scores,
        lag_scores=res.lag_scores,
        loadings=res.loadings,
        weights=network.weights,
        adjacency=network.adjacency,
        tests={
            t.name: {"observed": t.observed, "pvalue": t.pvalue, "alter": t.alter, "sim": t.sim}
            for t in tests
        },
        counts={
            "n_joined": fr.n_joined,
            "n_dropped_group": fr.n_dropped_group,
            "n_dropped_coords": fr.n_dropped_coords,
            "n_retained": fr.n_retained,
        },
        params=asdict(params),
    )
    io.write_session_store(session, f"{prefix}.session.zarr")

    for t in tests:
        verdict = "significant" if t.significant(params.significance) else "not significant"
        print(
            f"{t.name} test: obs={t.observed:.4g}  p={t.pvalue:.4g}  "
            f"({verdict} at {params.significance})"
        )
    retained = res.eigenvalues[res.axis_index]
    for label, ev, v, m in zip(res.axis_labels, retained, res.variance, res.moran):
        print(f"{label}: eigenvalue={ev:.4g}  variance={v:.4g}  Moran's I={m:.4g}")


def cmd_simulate(args: argparse.Namespace) -> None:
    data = sim.simulate_cline(
        n_ind=args.n_ind,
        n_loci=args.n_loci,
        seed=args.seed,
        cline_strength=args.cline_strength,
        missing_rate=args.missing_rate,
    )
    geno_path, strata_path = sim.write_simulated(data, args.out_dir, prefix=args.prefix)
    print(f"Wrote genotype table: {geno_path}")
    print(f"Wrote strata table: {strata_path}")


def cmd_plot_map(args: argparse.Namespace) -> None:
    strata = io.read_strata_table(args.strata)
    ok = strata["lat"].notna() & strata["lon"].notna()
    if args.scheme is not None:
        if args.scheme not in strata.columns:
            raise SystemExit(f"Unknown stratification scheme '{args.scheme}'.")
        ok &= strata[args.scheme].notna()
        groups = strata.loc[ok, args.scheme]
    else:
        groups = pd.Series(["all"] * int(ok.sum()))
    plots.plot_sample_map(
        strata.loc[ok, "lat"].to_numpy(),
        strata.loc[ok, "lon"].to_numpy(),
        groups.to_numpy(),
        args.out,
        scheme=args.scheme,
    )


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "run":
            cmd_run(args)
        elif args.command == "filter":
            cmd_filter(args)
        elif args.command == "simulate":
            cmd_simulate(args)
        elif args.command == "plot-map":
            cmd_plot_map(args)
        else:
            parser.error(f"Unknown command {args.command}")
    except (SchemaError, DataQualityError, AnalysisError) as exc:
        raise SystemExit(f"{type(exc).__name__}: {exc}") from exc


if __name__ == "__main__":
    main()
