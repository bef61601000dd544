"""Convergence Tracker: responsibility change and data log-likelihood."""

from __future__ import annotations

import numpy as np
from scipy.special import logsumexp

from bnmix.errors import NumericDegeneracy
from bnmix.responsibility import weighted_log_scores


def squared_difference(previous: np.ndarray, current: np.ndarray) -> float:
    """Sum of squared element-wise differences between two responsibility matrices."""
    previous = np.asarray(previous, dtype=float)
    current = np.asarray(current, dtype=float)
    if previous.shape != current.shape:
        raise ValueError(f"Shape mismatch: {previous.shape} vs {current.shape}")
    return float(np.sum((current - previous) ** 2))


def log_likelihood(scores: np.ndarray, tau: np.ndarray) -> float:
    """sum_i log(sum_k exp(score[i, k]) * tau[k]), stabilised per row."""
    total = float(np.sum(logsumexp(weighted_log_scores(scores, tau), axis=1)))
    if not np.isfinite(total):
        raise NumericDegeneracy(f"Log-likelihood is not finite ({total})")
    return total


def has_converged(delta: float, epsilon: float) -> bool:
    return delta < epsilon
