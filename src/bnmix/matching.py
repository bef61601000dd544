"""Label Matcher: map discovered clusters onto ground-truth groups."""

from __future__ import annotations

from itertools import permutations

import numpy as np
from scipy.optimize import linear_sum_assignment

from bnmix.models import LabelMatch

# Square problems up to this size are solved by enumerating permutations
EXHAUSTIVE_LIMIT = 8


def hard_assignments(responsibilities: np.ndarray) -> np.ndarray:
    """Arg-max cluster per sample (lowest index on ties)."""
    return np.argmax(np.asarray(responsibilities), axis=1)


def overlap_matrix(
    true_labels: np.ndarray,
    assignments: np.ndarray,
    n_clusters: int,
    n_groups: int,
) -> np.ndarray:
    """C[k, g] = number of samples in cluster k whose true group is g."""
    true_labels = np.asarray(true_labels, dtype=np.int64)
    assignments = np.asarray(assignments, dtype=np.int64)
    if true_labels.shape != assignments.shape:
        raise ValueError(
            f"Label length mismatch: {true_labels.shape[0]} true vs {assignments.shape[0]} found"
        )
    C = np.zeros((n_clusters, n_groups), dtype=np.int64)
    np.add.at(C, (assignments, true_labels), 1)
    return C


def match_labels(
    true_labels: np.ndarray,
    assignments: np.ndarray,
    n_clusters: int,
    n_groups: int | None = None,
) -> LabelMatch:
    """Permutation of cluster labels maximising agreement with the true labels.

    Square problems up to EXHAUSTIVE_LIMIT are enumerated in lexicographic
    order and the first optimum wins. Larger or rectangular problems go through
    the Hungarian algorithm. Clusters left without a group map to -1.
    """
    if n_groups is None:
        n_groups = int(np.max(true_labels)) + 1 if len(true_labels) else n_clusters
    C = overlap_matrix(true_labels, assignments, n_clusters, n_groups)
    n_samples = int(C.sum())

    if n_clusters == n_groups and n_clusters <= EXHAUSTIVE_LIMIT:
        best_perm: tuple[int, ...] = tuple(range(n_clusters))
        best_total = -1
        rows = np.arange(n_clusters)
        for perm in permutations(range(n_groups)):
            total = int(C[rows, list(perm)].sum())
            if total > best_total:
                best_total = total
                best_perm = perm
        return LabelMatch(permutation=tuple(best_perm), n_correct=best_total, n_samples=n_samples)

    row_ind, col_ind = linear_sum_assignment(-C)
    mapping = [-1] * n_clusters
    for k, g in zip(row_ind, col_ind):
        mapping[int(k)] = int(g)
    n_correct = int(C[row_ind, col_ind].sum())
    return LabelMatch(permutation=tuple(mapping), n_correct=n_correct, n_samples=n_samples)


def relabel(assignments: np.ndarray, permutation: tuple[int, ...]) -> np.ndarray:
    """Translate discovered cluster indices into true group indices."""
    lookup = np.asarray(permutation, dtype=np.int64)
    return lookup[np.asarray(assignments, dtype=np.int64)]


def correct_mask(
    true_labels: np.ndarray,
    assignments: np.ndarray,
    permutation: tuple[int, ...],
) -> np.ndarray:
    """Per-sample correctness under a label permutation."""
    return relabel(assignments, permutation) == np.asarray(true_labels)
