"""
Tests for label matching in matching.py.

Mixture components come out in arbitrary order, so accuracy is only
meaningful after mapping cluster indices onto true groups. These tests check
the mapping on permuted, noisy, and adversarial assignments.

Run: uv run pytest tests/test_matching.py -v
"""

import numpy as np
import pytest

from bnmix.matching import (
    EXHAUSTIVE_LIMIT,
    correct_mask,
    hard_assignments,
    match_labels,
    overlap_matrix,
    relabel,
)

# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def true_labels() -> np.ndarray:
    """12 samples, 3 groups of 4, stacked."""
    return np.repeat(np.arange(3), 4)


# ── overlap_matrix() ────────────────────────────────────────────────────────


class TestOverlapMatrix:
    def test_counts(self) -> None:
        C = overlap_matrix(np.array([0, 0, 1, 1]), np.array([1, 1, 1, 0]), 2, 2)
        np.testing.assert_array_equal(C, [[0, 1], [2, 1]])

    def test_total_is_n(self, true_labels: np.ndarray) -> None:
        rng = np.random.default_rng(0)
        found = rng.integers(0, 3, size=len(true_labels))
        assert overlap_matrix(true_labels, found, 3, 3).sum() == len(true_labels)

    def test_length_mismatch_raises(self) -> None:
        with pytest.raises(ValueError):
            overlap_matrix(np.array([0, 1]), np.array([0]), 2, 2)


# ── match_labels() ──────────────────────────────────────────────────────────


class TestMatchLabels:
    """Best permutation of discovered labels onto true labels."""

    def test_identical_assignment(self, true_labels: np.ndarray) -> None:
        match = match_labels(true_labels, true_labels.copy(), 3)
        assert match.n_correct == len(true_labels)
        assert match.permutation == (0, 1, 2)

    def test_permuted_assignment_is_fully_correct(self, true_labels: np.ndarray) -> None:
        """Same partition under different names: every sample counts as correct."""
        renamed = np.array([2, 0, 1])[true_labels]
        match = match_labels(true_labels, renamed, 3)
        assert match.n_correct == len(true_labels)
        assert match.accuracy == pytest.approx(1.0)
        # cluster 2 holds group 0, cluster 0 holds group 1, cluster 1 holds group 2
        assert match.permutation == (1, 2, 0)

    def test_noisy_assignment(self, true_labels: np.ndarray) -> None:
        found = np.array([1, 1, 1, 0, 0, 0, 0, 2, 2, 2, 2, 1])
        match = match_labels(true_labels, found, 3)
        assert match.permutation == (1, 0, 2)
        assert match.n_correct == 9

    def test_bounds_on_random_assignments(self, true_labels: np.ndarray) -> None:
        rng = np.random.default_rng(11)
        n = len(true_labels)
        for _ in range(25):
            found = rng.integers(0, 3, size=n)
            match = match_labels(true_labels, found, 3)
            assert 0 <= match.n_correct <= n
            # Some permutation always matches at least the average overlap
            assert match.n_correct >= n / 3

    def test_single_cluster_gets_largest_group(self) -> None:
        """Everything in one cluster: best score is the largest true group."""
        true = np.array([0, 0, 0, 1, 1, 2])
        match = match_labels(true, np.zeros(6, dtype=int), 3)
        assert match.n_correct == 3

    def test_deterministic_tie_break(self) -> None:
        """Two optimal permutations: the lexicographically first wins, every time."""
        true = np.array([0, 1])
        found = np.array([0, 0])
        results = {match_labels(true, found, 2).permutation for _ in range(5)}
        assert results == {(0, 1)}

    def test_more_clusters_than_groups(self) -> None:
        true = np.array([0, 0, 1, 1])
        found = np.array([2, 2, 0, 0])
        match = match_labels(true, found, 3, n_groups=2)
        assert match.n_correct == 4
        assert match.permutation[1] == -1
        assert match.permutation[2] == 0
        assert match.permutation[0] == 1

    def test_large_k_uses_assignment_solver(self) -> None:
        k = EXHAUSTIVE_LIMIT + 2
        true = np.repeat(np.arange(k), 3)
        shift = (np.arange(k) + 1) % k
        match = match_labels(true, shift[true], k)
        assert match.n_correct == len(true)
        assert sorted(match.permutation) == list(range(k))


# ── Helpers ──────────────────────────────────────────────────────────────────


class TestHelpers:
    def test_hard_assignments_lowest_index_on_tie(self) -> None:
        resp = np.array([[0.5, 0.5], [0.2, 0.8]])
        np.testing.assert_array_equal(hard_assignments(resp), [0, 1])

    def test_relabel(self) -> None:
        np.testing.assert_array_equal(relabel(np.array([0, 1, 2, 0]), (2, 0, 1)), [2, 0, 1, 2])

    def test_correct_mask(self, true_labels: np.ndarray) -> None:
        renamed = np.array([2, 0, 1])[true_labels]
        match = match_labels(true_labels, renamed, 3)
        assert correct_mask(true_labels, renamed, match.permutation).all()
