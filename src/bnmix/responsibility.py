"""Responsibility Engine: the E-step in the log domain."""

from __future__ import annotations

import numpy as np
from scipy.special import logsumexp

from bnmix.errors import NumericDegeneracy


def mixing_weights(responsibilities: np.ndarray, chi: float) -> np.ndarray:
    """Cluster priors tau from column sums plus pseudo-count chi, normalised."""
    if chi <= 0:
        raise ValueError(f"chi must be positive, got {chi}")
    mass = np.asarray(responsibilities, dtype=float).sum(axis=0) + chi
    return mass / mass.sum()


def weighted_log_scores(scores: np.ndarray, tau: np.ndarray) -> np.ndarray:
    """score[i, k] + log tau[k], after checking the inputs are usable."""
    scores = np.asarray(scores, dtype=float)
    tau = np.asarray(tau, dtype=float)
    if scores.ndim != 2 or scores.shape[1] != tau.shape[0]:
        raise ValueError(f"Scores {scores.shape} do not match {tau.shape[0]} mixing weights")
    if np.isnan(scores).any():
        raise NumericDegeneracy("Score matrix contains NaN")
    if np.any(tau <= 0) or not np.all(np.isfinite(tau)):
        raise NumericDegeneracy("Mixing weights must be finite and strictly positive")
    return scores + np.log(tau)


def compute_responsibilities(scores: np.ndarray, tau: np.ndarray) -> np.ndarray:
    """Row-normalised exp(score[i, k]) * tau[k].

    Each row is shifted by its log-sum-exp before exponentiating, so finite
    scores of any magnitude give rows that sum to 1.
    """
    weighted = weighted_log_scores(scores, tau)
    row_norm = logsumexp(weighted, axis=1, keepdims=True)
    if not np.all(np.isfinite(row_norm)):
        bad = int(np.flatnonzero(~np.isfinite(row_norm.ravel()))[0])
        raise NumericDegeneracy(f"Row {bad} cannot be normalised (log-sum-exp not finite)")

    resp = np.exp(weighted - row_norm)
    row_sums = resp.sum(axis=1)
    if np.any(row_sums <= 0) or not np.all(np.isfinite(row_sums)):
        raise NumericDegeneracy("Responsibility row sum collapsed")
    return resp / row_sums[:, None]
