"""CSV output for mixture fits."""

import csv
from pathlib import Path

import numpy as np

from bnmix.em import summarize_runs
from bnmix.matching import relabel
from bnmix.models import MixtureFit, SyntheticDataset

RUN_FIELDS = [
    "rank",
    "seed",
    "converged",
    "hit_iteration_cap",
    "outer_iterations",
    "log_likelihood",
    "accuracy",
]

TRAJECTORY_FIELDS = [
    "seed",
    "outer_iteration",
    "delta",
    "log_likelihood",
    "n_correct",
    "accuracy",
    "mean_tpr",
    "mean_fpr",
]


def _write_rows(path: Path, fieldnames: list[str], rows: list[dict]) -> None:
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
    print(f"  {path} ({len(rows)} rows)")


def trajectory_rows(fit: MixtureFit) -> list[dict]:
    rows = []
    for run in fit.runs:
        for it in run.iterations:
            rows.append(
                {
                    "seed": run.seed,
                    "outer_iteration": it.index + 1,
                    "delta": it.delta,
                    "log_likelihood": it.log_likelihood,
                    "n_correct": it.match.n_correct if it.match else "",
                    "accuracy": it.match.accuracy if it.match else "",
                    "mean_tpr": float(np.mean([r.tpr for r in it.recovery])) if it.recovery else "",
                    "mean_fpr": float(np.mean([r.fpr for r in it.recovery])) if it.recovery else "",
                }
            )
    return rows


def assignment_rows(fit: MixtureFit, dataset: SyntheticDataset | None = None) -> list[dict]:
    best = fit.best
    assignments = best.assignments
    mapped = relabel(assignments, best.permutation) if best.permutation is not None else None
    rows = []
    for i, cluster in enumerate(assignments):
        row = {"sample": i, "cluster": int(cluster)}
        for k in range(best.responsibilities.shape[1]):
            row[f"resp_{k}"] = float(best.responsibilities[i, k])
        row["mapped_label"] = int(mapped[i]) if mapped is not None else ""
        row["true_label"] = int(dataset.labels[i]) if dataset is not None else ""
        rows.append(row)
    return rows


def save_csvs(
    output_dir: Path,
    output_name: str,
    fit: MixtureFit,
    dataset: SyntheticDataset | None = None,
    embedding: np.ndarray | None = None,
) -> None:
    """Save run summaries, trajectories, and the selected run's results."""
    print("\n" + "=" * 60)
    print("Saving CSV files...")
    print("=" * 60)
    output_dir.mkdir(parents=True, exist_ok=True)

    # Run summary (all runs, best first)
    _write_rows(output_dir / f"{output_name}_runs.csv", RUN_FIELDS, summarize_runs(fit))

    # Failed runs
    if fit.failures:
        _write_rows(
            output_dir / f"{output_name}_failures.csv",
            ["seed", "error_type", "error_message"],
            [
                {"seed": f.seed, "error_type": f.error_type, "error_message": f.error_message}
                for f in fit.failures
            ],
        )

    # Per-iteration trajectories
    _write_rows(
        output_dir / f"{output_name}_trajectory.csv", TRAJECTORY_FIELDS, trajectory_rows(fit)
    )

    # Selected run: assignments
    rows = assignment_rows(fit, dataset)
    k = fit.best.responsibilities.shape[1]
    fieldnames = (
        ["sample", "cluster"] + [f"resp_{j}" for j in range(k)] + ["mapped_label", "true_label"]
    )
    _write_rows(output_dir / f"{output_name}_assignments.csv", fieldnames, rows)

    # Selected run: learned edges
    edge_rows = [
        {"cluster": c.index, "mixing_weight": c.mixing_weight, "parent": u, "child": v}
        for c in fit.best.centers
        for u, v in sorted(c.structure.edges())
    ]
    _write_rows(
        output_dir / f"{output_name}_centers.csv",
        ["cluster", "mixing_weight", "parent", "child"],
        edge_rows,
    )

    if embedding is not None:
        _write_rows(
            output_dir / f"{output_name}_embedding.csv",
            ["sample", "x", "y"],
            [{"sample": i, "x": float(x), "y": float(y)} for i, (x, y) in enumerate(embedding)],
        )
