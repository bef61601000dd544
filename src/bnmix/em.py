"""EM orchestration for a mixture of Bayesian networks.

One run, from one seed:

  init:   random responsibilities (flat Dirichlet rows), empty centers
  outer:  tau <- prior-smoothed column sums
          learn each cluster's structure from its responsibility column,
          warm-started from the previous center
  score:  every sample against every (now fixed) center, once per outer step
  inner:  recompute responsibilities, refresh tau; repeated inner_iterations times
  check:  squared responsibility change over the outer step < epsilon

The driver repeats the run for every configured seed in parallel and keeps
all runs, best terminal log-likelihood first.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed

import networkx as nx
import numpy as np
from tqdm import tqdm

from bnmix.convergence import has_converged, log_likelihood, squared_difference
from bnmix.errors import NonConvergence, NoSuccessfulRun
from bnmix.evaluation import iteration_recovery
from bnmix.matching import hard_assignments, match_labels
from bnmix.models import (
    ClusterCenter,
    EMConfig,
    MixtureFit,
    OuterIteration,
    RunFailure,
    RunRecord,
)
from bnmix.responsibility import compute_responsibilities, mixing_weights
from bnmix.scoring import BDeScore
from bnmix.structure import empty_structure

ScoreFactory = Callable[..., BDeScore]


def initial_responsibilities(
    n_samples: int,
    n_clusters: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """Positive random rows summing to 1 (flat Dirichlet draw)."""
    return rng.dirichlet(np.ones(n_clusters), size=n_samples)


def _build_oracles(
    data: np.ndarray,
    responsibilities: np.ndarray,
    config: EMConfig,
    score_factory: ScoreFactory,
) -> list[BDeScore]:
    """One score configuration per cluster, weighted by its responsibility column."""
    return [
        score_factory(
            data,
            responsibilities[:, k],
            prior_count=config.prior_count,
            edge_penalty=config.edge_penalty,
            max_parents=config.max_parents,
            max_steps=config.max_search_steps,
        )
        for k in range(config.n_clusters)
    ]


def run_em(
    data: np.ndarray,
    config: EMConfig | None = None,
    seed: int = 0,
    true_labels: np.ndarray | None = None,
    true_structures: tuple[nx.DiGraph, ...] | list[nx.DiGraph] | None = None,
    score_factory: ScoreFactory = BDeScore,
    verbose: bool = False,
) -> RunRecord:
    """Fit the mixture from one random initialisation.

    Ground truth is optional and only feeds the per-iteration diagnostics
    (assignment accuracy, edge recovery); the fit never reads it.

    If the outer loop reaches config.max_outer_iterations without converging
    the record comes back with hit_iteration_cap set, or NonConvergence is
    raised when config.strict_convergence is on.
    """
    config = config or EMConfig()
    data = np.asarray(data)
    n_samples, n_variables = data.shape
    K = config.n_clusters

    n_groups = None
    if true_labels is not None:
        true_labels = np.asarray(true_labels)
        if true_labels.shape != (n_samples,):
            raise ValueError(f"Expected {n_samples} true labels, got shape {true_labels.shape}")
        if true_structures is not None:
            n_groups = len(true_structures)
        else:
            n_groups = int(true_labels.max()) + 1

    rng = np.random.default_rng(seed)
    resp = initial_responsibilities(n_samples, K, rng)
    record = RunRecord(
        seed=seed,
        centers=[ClusterCenter(index=k, structure=empty_structure(n_variables)) for k in range(K)],
    )
    scores = np.zeros((n_samples, K))
    tau = mixing_weights(resp, config.chi)
    match = None

    for outer in range(config.max_outer_iterations):
        previous = resp
        tau = mixing_weights(resp, config.chi)

        oracles = _build_oracles(data, resp, config, score_factory)
        for center, oracle in zip(record.centers, oracles):
            center.replace_structure(oracle.search(center.structure, rng))

        # Structures and their tables are fixed for the whole inner loop
        scores = np.column_stack(
            [
                oracle.sample_log_scores(center.structure)
                for center, oracle in zip(record.centers, oracles)
            ]
        )
        for inner in range(config.inner_iterations):
            if inner > 0:
                tau = mixing_weights(resp, config.chi)
            resp = compute_responsibilities(scores, tau)

        delta = squared_difference(previous, resp)
        ll = log_likelihood(scores, tau)

        recovery = ()
        if true_labels is not None:
            match = match_labels(true_labels, hard_assignments(resp), K, n_groups)
            if true_structures is not None:
                recovery = iteration_recovery(record.centers, true_structures, match.permutation)
        record.iterations.append(
            OuterIteration(
                index=outer, delta=delta, log_likelihood=ll, match=match, recovery=recovery
            )
        )

        if verbose:
            acc = f", acc={match.accuracy:.3f}" if match is not None else ""
            print(f"    seed={seed} outer={outer + 1}: delta={delta:.3g}, LL={ll:.2f}{acc}")

        if has_converged(delta, config.epsilon):
            record.converged = True
            break

    record.responsibilities = resp
    record.scores = scores
    record.permutation = match.permutation if match is not None else None
    for center in record.centers:
        center.mixing_weight = float(tau[center.index])

    if not record.converged:
        record.hit_iteration_cap = True
        msg = (
            f"Run seed={seed} hit the {config.max_outer_iterations}-iteration cap"
            f" (last delta={record.iterations[-1].delta:.3g}, epsilon={config.epsilon:g})"
        )
        if config.strict_convergence:
            raise NonConvergence(msg, record)
        print(f"  WARNING: {msg}; keeping best-effort result")

    return record


def rank_runs(runs: list[RunRecord]) -> list[RunRecord]:
    """Highest terminal log-likelihood first; equal likelihoods by lowest seed."""
    return sorted(runs, key=lambda r: (-r.log_likelihood, r.seed))


def fit_mixture(
    data: np.ndarray,
    config: EMConfig | None = None,
    true_labels: np.ndarray | None = None,
    true_structures: tuple[nx.DiGraph, ...] | list[nx.DiGraph] | None = None,
    score_factory: ScoreFactory = BDeScore,
    progress: bool = True,
) -> MixtureFit:
    """Run EM once per seed concurrently and rank the results.

    Runs share nothing but the read-only data. A run that raises becomes a
    RunFailure and does not affect the others; NoSuccessfulRun is raised only
    when every run failed.
    """
    config = config or EMConfig()
    data = np.asarray(data)
    runs: list[RunRecord] = []
    failures: list[RunFailure] = []

    workers = min(config.max_workers, len(config.seeds))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        future_to_seed = {
            executor.submit(
                run_em,
                data,
                config,
                seed,
                true_labels,
                true_structures,
                score_factory,
            ): seed
            for seed in config.seeds
        }
        for future in tqdm(
            as_completed(future_to_seed),
            total=len(future_to_seed),
            desc="EM restarts",
            unit="run",
            disable=not progress,
        ):
            seed = future_to_seed[future]
            try:
                runs.append(future.result())
            except Exception as e:
                failures.append(
                    RunFailure(seed=seed, error_type=type(e).__name__, error_message=str(e))
                )
                print(f"  Run seed={seed} failed: {type(e).__name__}: {e}")

    failures.sort(key=lambda f: f.seed)
    if not runs:
        raise NoSuccessfulRun(failures)
    return MixtureFit(runs=rank_runs(runs), failures=failures)


def summarize_runs(fit: MixtureFit) -> list[dict]:
    """One flat row per successful run, in ranking order."""
    rows = []
    for rank, run in enumerate(fit.runs):
        rows.append(
            {
                "rank": rank,
                "seed": run.seed,
                "converged": run.converged,
                "hit_iteration_cap": run.hit_iteration_cap,
                "outer_iterations": run.n_outer,
                "log_likelihood": run.log_likelihood,
                "accuracy": run.accuracy,
            }
        )
    return rows
