"""
Bayesian-Network Mixture — EM Diagnostics

Fits a mixture of Bayesian networks to a synthetic dataset drawn from K known
networks, then inspects the fit: likelihood trajectories of every restart,
structural recovery (TPR/FPR) of the selected run's cluster centers, and a 2-D
MDS map of the samples' Jensen-Shannon dissimilarity.

Usage:
  uv run python analysis/em_diagnostics.py [--clusters 3] [--samples-per-group 400]
      [--variables 20] [--seeds 0 1 2 3 4] [--skip-embedding]

Outputs (in results/<experiment>/em_diagnostics/<date>/):
  - data/:   Parquet files (runs, trajectories, recovery, embedding)
  - plots/:  PNG visualizations (likelihood, recovery, embedding)
  - run_info.json, run_log.txt
"""

from __future__ import annotations

import argparse
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import networkx as nx
import numpy as np
import polars as pl
from matplotlib.patches import Patch

from bnmix.config import (
    CHI,
    EDGE_PENALTY,
    EPSILON,
    GENERATOR_SEED,
    INNER_ITERATIONS,
    MAX_OUTER_ITERATIONS,
    N_CLUSTERS,
    N_VARIABLES,
    PRIOR_COUNT,
    SAMPLES_PER_GROUP,
    SEEDS,
)
from bnmix.em import fit_mixture, summarize_runs
from bnmix.evaluation import dissimilarity_matrix, embed_dissimilarity, recovery_trajectory
from bnmix.models import EMConfig, MixtureFit, RunRecord
from bnmix.synthetic import make_mixture_dataset

try:
    from analysis.run_context import RunContext
except ModuleNotFoundError:
    from run_context import RunContext

# ── Primer ───────────────────────────────────────────────────────────────────

EM_DIAGNOSTICS_PRIMER = """\
# EM Diagnostics

## Purpose

Checks whether structural EM recovers both the sample grouping and the
generating network of each group on synthetic data with known ground truth.

## Method

Each restart starts from random responsibilities. An outer iteration learns
one network per cluster from that cluster's responsibility-weighted samples;
an inner loop then re-scores every sample against the fixed networks and
refreshes the responsibilities. A restart stops when the responsibilities
move less than epsilon (squared change) over an outer iteration, or at the
iteration cap. The restart with the highest terminal log-likelihood is the
reported solution.

## Outputs

### `data/`

| File | Description |
|------|-------------|
| `runs.parquet` | One row per restart: seed, convergence, iterations, log-likelihood, accuracy |
| `trajectory.parquet` | One row per restart per outer iteration |
| `recovery.parquet` | Selected run: TPR/FPR per cluster per outer iteration |
| `embedding.parquet` | Selected run: MDS coordinates of the JS dissimilarity |

### `plots/`

| File | Description |
|------|-------------|
| `likelihood_trajectories.png` | Log-likelihood per outer iteration, one line per seed |
| `recovery_trajectory.png` | TPR and FPR per cluster of the selected run |
| `embedding.png` | MDS map of samples, colored by true group |

## Interpretation Guide

- **Likelihood:** restarts that plateau lower than the best are local optima.
  They are kept for comparison, not discarded.
- **CAP HIT:** the restart stopped at the iteration cap without converging;
  its result is best-effort.
- **TPR / FPR:** fraction of true edges recovered / fraction of absent edges
  wrongly added, after matching clusters to groups.
- **Embedding:** well-separated blobs mean confident, distinct cluster
  memberships; points between blobs are ambiguous samples.
"""

# ── Constants ────────────────────────────────────────────────────────────────

GROUP_CMAP = "Set2"
EMBED_MAX_SAMPLES = 1500  # MDS cost grows quadratically


# ── Helpers ──────────────────────────────────────────────────────────────────


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bayesian-network mixture EM diagnostics")
    parser.add_argument("--clusters", type=int, default=N_CLUSTERS)
    parser.add_argument("--samples-per-group", type=int, default=SAMPLES_PER_GROUP)
    parser.add_argument("--variables", type=int, default=N_VARIABLES)
    parser.add_argument("--generator-seed", type=int, default=GENERATOR_SEED)
    parser.add_argument("--seeds", type=int, nargs="+", default=list(SEEDS))
    parser.add_argument("--chi", type=float, default=CHI)
    parser.add_argument("--prior-count", type=float, default=PRIOR_COUNT)
    parser.add_argument("--edge-penalty", type=float, default=EDGE_PENALTY)
    parser.add_argument("--epsilon", type=float, default=EPSILON)
    parser.add_argument("--inner-iterations", type=int, default=INNER_ITERATIONS)
    parser.add_argument("--max-outer-iterations", type=int, default=MAX_OUTER_ITERATIONS)
    parser.add_argument(
        "--skip-embedding",
        action="store_true",
        help="Skip the JS dissimilarity / MDS embedding",
    )
    parser.add_argument("--results-root", default=None, help="Override results directory")
    return parser.parse_args()


def print_header(title: str) -> None:
    width = 80
    print(f"\n{'=' * width}")
    print(f"  {title}")
    print(f"{'=' * width}")


def save_fig(fig: plt.Figure, path: Path, dpi: int = 150) -> None:
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    print(f"  Saved: {path.name}")


# ── Frames ───────────────────────────────────────────────────────────────────


def runs_frame(fit: MixtureFit) -> pl.DataFrame:
    """Run summary, best first."""
    return pl.DataFrame(
        summarize_runs(fit),
        schema={
            "rank": pl.Int64,
            "seed": pl.Int64,
            "converged": pl.Boolean,
            "hit_iteration_cap": pl.Boolean,
            "outer_iterations": pl.Int64,
            "log_likelihood": pl.Float64,
            "accuracy": pl.Float64,
        },
    )


def trajectory_frame(fit: MixtureFit) -> pl.DataFrame:
    """One row per run per outer iteration."""
    rows = []
    for run in fit.runs:
        for it in run.iterations:
            rows.append(
                {
                    "seed": run.seed,
                    "outer_iteration": it.index + 1,
                    "delta": it.delta,
                    "log_likelihood": it.log_likelihood,
                    "accuracy": it.match.accuracy if it.match is not None else None,
                }
            )
    return pl.DataFrame(
        rows,
        schema={
            "seed": pl.Int64,
            "outer_iteration": pl.Int64,
            "delta": pl.Float64,
            "log_likelihood": pl.Float64,
            "accuracy": pl.Float64,
        },
    )


def recovery_frame(
    run: RunRecord,
    true_structures: tuple[nx.DiGraph, ...] | list[nx.DiGraph],
) -> pl.DataFrame:
    """TPR/FPR of each center per outer iteration under the run's final permutation."""
    rows = []
    for t, step in enumerate(recovery_trajectory(run, true_structures)):
        for rates in step:
            rows.append(
                {
                    "outer_iteration": t + 1,
                    "cluster": rates.cluster,
                    "true_group": rates.true_group,
                    "tpr": rates.tpr,
                    "fpr": rates.fpr,
                }
            )
    return pl.DataFrame(
        rows,
        schema={
            "outer_iteration": pl.Int64,
            "cluster": pl.Int64,
            "true_group": pl.Int64,
            "tpr": pl.Float64,
            "fpr": pl.Float64,
        },
    )


def embedding_frame(
    embedding: np.ndarray,
    assignments: np.ndarray,
    true_labels: np.ndarray,
) -> pl.DataFrame:
    return pl.DataFrame(
        {
            "sample": np.arange(len(embedding)),
            "mds1": embedding[:, 0],
            "mds2": embedding[:, 1],
            "cluster": np.asarray(assignments),
            "true_group": np.asarray(true_labels),
        }
    )


# ── Plots ────────────────────────────────────────────────────────────────────


def plot_likelihood_trajectories(trajectory: pl.DataFrame, best_seed: int, out_dir: Path) -> None:
    fig, ax = plt.subplots(figsize=(10, 5))
    for seed in sorted(trajectory["seed"].unique().to_list()):
        sub = trajectory.filter(pl.col("seed") == seed).sort("outer_iteration")
        is_best = seed == best_seed
        ax.plot(
            sub["outer_iteration"].to_numpy(),
            sub["log_likelihood"].to_numpy(),
            "o-" if is_best else ".--",
            linewidth=2.0 if is_best else 1.0,
            alpha=1.0 if is_best else 0.6,
            label=f"seed {seed}" + (" (selected)" if is_best else ""),
        )
    ax.set_xlabel("Outer iteration")
    ax.set_ylabel("Log-likelihood")
    ax.set_title("Log-likelihood per restart")
    ax.legend(fontsize=8)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    fig.tight_layout()
    save_fig(fig, out_dir / "likelihood_trajectories.png")


def plot_recovery_trajectory(recovery: pl.DataFrame, out_dir: Path) -> None:
    fig, (ax_tpr, ax_fpr) = plt.subplots(1, 2, figsize=(12, 4.5))
    cmap = plt.get_cmap(GROUP_CMAP)
    for cluster in sorted(recovery["cluster"].unique().to_list()):
        sub = recovery.filter(pl.col("cluster") == cluster).sort("outer_iteration")
        group = sub["true_group"][0]
        color = cmap(cluster % 8)
        x = sub["outer_iteration"].to_numpy()
        label = f"cluster {cluster} → group {group}"
        ax_tpr.plot(x, sub["tpr"].to_numpy(), "o-", color=color, label=label)
        ax_fpr.plot(x, sub["fpr"].to_numpy(), "s--", color=color)
    ax_tpr.set_ylim(-0.02, 1.02)
    ax_tpr.set_title("True-positive rate (edges recovered)")
    ax_fpr.set_title("False-positive rate (edges added)")
    for ax in (ax_tpr, ax_fpr):
        ax.set_xlabel("Outer iteration")
        ax.spines["top"].set_visible(False)
        ax.spines["right"].set_visible(False)
    ax_tpr.legend(fontsize=8)
    fig.tight_layout()
    save_fig(fig, out_dir / "recovery_trajectory.png")


def plot_embedding(embedding: pl.DataFrame, out_dir: Path) -> None:
    fig, ax = plt.subplots(figsize=(7, 7))
    cmap = plt.get_cmap(GROUP_CMAP)
    groups = sorted(embedding["true_group"].unique().to_list())
    for g in groups:
        sub = embedding.filter(pl.col("true_group") == g)
        ax.scatter(
            sub["mds1"].to_numpy(),
            sub["mds2"].to_numpy(),
            s=12,
            alpha=0.6,
            color=cmap(g % 8),
            edgecolors="none",
        )
    handles = [Patch(facecolor=cmap(g % 8), label=f"Group {g}") for g in groups]
    ax.legend(handles=handles, loc="best", fontsize=8)
    ax.set_xlabel("MDS1")
    ax.set_ylabel("MDS2")
    ax.set_title("Samples by Jensen-Shannon dissimilarity of cluster scores")
    ax.set_aspect("equal", adjustable="datalim")
    fig.tight_layout()
    save_fig(fig, out_dir / "embedding.png")


# ── Main ─────────────────────────────────────────────────────────────────────


def main() -> None:
    args = parse_args()
    n_samples = args.clusters * args.samples_per_group
    experiment = f"k{args.clusters}_n{n_samples}_v{args.variables}_g{args.generator_seed}"
    results_root = Path(args.results_root) if args.results_root else None

    with RunContext(
        experiment=experiment,
        analysis_name="em_diagnostics",
        params=vars(args),
        results_root=results_root,
        primer=EM_DIAGNOSTICS_PRIMER,
    ) as ctx:
        print(f"Bayesian-Network Mixture EM Diagnostics — {experiment}")
        print(f"Output:    {ctx.run_dir}")

        # ── Phase 1: Data ──
        print_header("PHASE 1: SYNTHETIC DATA")
        dataset = make_mixture_dataset(
            n_groups=args.clusters,
            samples_per_group=args.samples_per_group,
            n_variables=args.variables,
            seed=args.generator_seed,
        )
        print(f"  Samples:   {dataset.n_samples}")
        print(f"  Variables: {dataset.n_variables}")
        for g, G in enumerate(dataset.structures):
            print(f"  Group {g}: {G.number_of_edges()} edges")

        # ── Phase 2: Fit ──
        print_header("PHASE 2: STRUCTURAL EM")
        config = EMConfig(
            n_clusters=args.clusters,
            chi=args.chi,
            prior_count=args.prior_count,
            edge_penalty=args.edge_penalty,
            epsilon=args.epsilon,
            inner_iterations=args.inner_iterations,
            max_outer_iterations=args.max_outer_iterations,
            seeds=tuple(args.seeds),
        )
        fit = fit_mixture(
            dataset.data,
            config,
            true_labels=dataset.labels,
            true_structures=dataset.structures,
        )
        runs = runs_frame(fit)
        trajectory = trajectory_frame(fit)
        runs.write_parquet(ctx.data_dir / "runs.parquet")
        trajectory.write_parquet(ctx.data_dir / "trajectory.parquet")
        print(runs)
        if fit.failures:
            print(f"  {len(fit.failures)} run(s) failed:")
            for failure in fit.failures:
                print(f"    seed={failure.seed}: {failure.error_type}: {failure.error_message}")
        plot_likelihood_trajectories(trajectory, fit.best.seed, ctx.plots_dir)

        # ── Phase 3: Structural recovery ──
        print_header("PHASE 3: STRUCTURAL RECOVERY (selected run)")
        best = fit.best
        recovery = recovery_frame(best, dataset.structures)
        recovery.write_parquet(ctx.data_dir / "recovery.parquet")
        final = recovery.filter(pl.col("outer_iteration") == best.n_outer)
        for row in final.iter_rows(named=True):
            print(
                f"  cluster {row['cluster']} -> group {row['true_group']}:"
                f" TPR={row['tpr']:.3f}, FPR={row['fpr']:.4f}"
            )
        plot_recovery_trajectory(recovery, ctx.plots_dir)

        # ── Phase 4: Embedding ──
        if args.skip_embedding:
            print("\n  Skipping embedding (--skip-embedding)")
        elif dataset.n_samples > EMBED_MAX_SAMPLES:
            print(f"\n  Skipping embedding: {dataset.n_samples} samples > {EMBED_MAX_SAMPLES}")
        else:
            print_header("PHASE 4: JS DISSIMILARITY EMBEDDING")
            D = dissimilarity_matrix(best.scores)
            coords = embed_dissimilarity(D, seed=best.seed)
            embedding = embedding_frame(coords, best.assignments, dataset.labels)
            embedding.write_parquet(ctx.data_dir / "embedding.parquet")
            plot_embedding(embedding, ctx.plots_dir)

        print_header("DONE")
        print(
            f"  Selected seed {best.seed}: LL={best.log_likelihood:.2f},"
            f" accuracy={best.accuracy:.3f}"
        )


if __name__ == "__main__":
    main()
