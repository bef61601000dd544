"""Run Evaluator: structural recovery and sample dissimilarity.

Recovery compares each learned cluster center with the true structure of the
group it was matched to. Dissimilarity turns every sample's score row into a
distribution over clusters and measures pairwise Jensen-Shannon divergence,
which feeds a 2-D MDS projection for plotting.
"""

from __future__ import annotations

import networkx as nx
import numpy as np
from scipy.special import logsumexp, rel_entr
from sklearn.manifold import MDS

from bnmix.models import ClusterCenter, RecoveryRates, RunRecord
from bnmix.structure import edge_set

DISSIMILARITY_BLOCK = 256  # rows per block when filling the N x N matrix
MDS_N_INIT = 4


# ── Structural recovery ─────────────────────────────────────────────────────


def recovery_rates(
    learned: nx.DiGraph,
    true: nx.DiGraph,
    cluster: int,
    true_group: int,
) -> RecoveryRates:
    """Directed-edge true/false positives of `learned` against `true`."""
    learned_edges = edge_set(learned)
    true_edges = edge_set(true)
    n = true.number_of_nodes()
    return RecoveryRates(
        cluster=cluster,
        true_group=true_group,
        true_positives=len(learned_edges & true_edges),
        false_positives=len(learned_edges - true_edges),
        n_true_edges=len(true_edges),
        n_possible_false=n * (n - 1) - len(true_edges),
    )


def iteration_recovery(
    centers: list[ClusterCenter],
    true_structures: tuple[nx.DiGraph, ...] | list[nx.DiGraph],
    permutation: tuple[int, ...],
) -> tuple[RecoveryRates, ...]:
    """Recovery of every matched center's current structure."""
    rates = []
    for c in centers:
        g = permutation[c.index]
        if g >= 0:
            rates.append(recovery_rates(c.structure, true_structures[g], c.index, g))
    return tuple(rates)


def recovery_trajectory(
    run: RunRecord,
    true_structures: tuple[nx.DiGraph, ...] | list[nx.DiGraph],
) -> list[list[RecoveryRates]]:
    """Per outer iteration, recovery of each center under the run's final permutation."""
    if run.permutation is None:
        raise ValueError(f"Run {run.seed} has no label permutation")
    trajectory = []
    for t in range(run.n_outer):
        step = []
        for c in run.centers:
            g = run.permutation[c.index]
            if g >= 0 and t < len(c.history):
                step.append(recovery_rates(c.history[t], true_structures[g], c.index, g))
        trajectory.append(step)
    return trajectory


# ── Dissimilarity ───────────────────────────────────────────────────────────


def score_distributions(scores: np.ndarray) -> np.ndarray:
    """Row-normalised exp(score), normalised in the log domain."""
    scores = np.asarray(scores, dtype=float)
    return np.exp(scores - logsumexp(scores, axis=1, keepdims=True))


def js_divergence(p: np.ndarray, q: np.ndarray) -> float:
    """Jensen-Shannon divergence (natural log) between two distributions."""
    p = np.asarray(p, dtype=float)
    q = np.asarray(q, dtype=float)
    m = 0.5 * (p + q)
    return float(0.5 * rel_entr(p, m).sum() + 0.5 * rel_entr(q, m).sum())


def dissimilarity_matrix(scores: np.ndarray, block: int = DISSIMILARITY_BLOCK) -> np.ndarray:
    """Symmetric N x N matrix of pairwise JS divergences between score rows."""
    P = score_distributions(scores)
    n = P.shape[0]
    D = np.zeros((n, n))
    for start in range(0, n, block):
        A = P[start : start + block, None, :]
        M = 0.5 * (A + P[None, :, :])
        D[start : start + block] = 0.5 * rel_entr(A, M).sum(axis=-1) + 0.5 * rel_entr(
            P[None, :, :], M
        ).sum(axis=-1)
    D = 0.5 * (D + D.T)
    np.fill_diagonal(D, 0.0)
    return np.maximum(D, 0.0)


def embed_dissimilarity(dissimilarity: np.ndarray, seed: int = 0) -> np.ndarray:
    """2-D metric MDS of a precomputed dissimilarity matrix (visualisation only)."""
    mds = MDS(
        n_components=2,
        dissimilarity="precomputed",
        n_init=MDS_N_INIT,
        random_state=seed,
    )
    return mds.fit_transform(dissimilarity)
