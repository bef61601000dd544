"""Data classes for fits, runs, and cluster centers."""

from __future__ import annotations

from dataclasses import dataclass, field

import networkx as nx
import numpy as np

from bnmix.config import (
    CHI,
    EDGE_PENALTY,
    EPSILON,
    INNER_ITERATIONS,
    MAX_OUTER_ITERATIONS,
    MAX_PARENTS,
    MAX_SEARCH_STEPS,
    MAX_WORKERS,
    N_CLUSTERS,
    PRIOR_COUNT,
    SEEDS,
)


@dataclass(frozen=True)
class EMConfig:
    """Numeric configuration for one mixture fit."""

    n_clusters: int = N_CLUSTERS
    chi: float = CHI
    prior_count: float = PRIOR_COUNT
    edge_penalty: float = EDGE_PENALTY
    epsilon: float = EPSILON
    inner_iterations: int = INNER_ITERATIONS
    max_outer_iterations: int = MAX_OUTER_ITERATIONS
    max_parents: int = MAX_PARENTS
    max_search_steps: int = MAX_SEARCH_STEPS
    seeds: tuple[int, ...] = SEEDS
    max_workers: int = MAX_WORKERS
    strict_convergence: bool = False

    def __post_init__(self) -> None:
        checks = {
            "n_clusters": self.n_clusters >= 1,
            "chi": self.chi > 0,
            "prior_count": self.prior_count > 0,
            "edge_penalty": self.edge_penalty >= 0,
            "epsilon": self.epsilon > 0,
            "inner_iterations": self.inner_iterations >= 1,
            "max_outer_iterations": self.max_outer_iterations >= 1,
            "max_parents": self.max_parents >= 0,
            "max_search_steps": self.max_search_steps >= 0,
            "seeds": len(self.seeds) > 0 and all(s >= 0 for s in self.seeds),
            "max_workers": self.max_workers >= 1,
        }
        bad = [name for name, ok in checks.items() if not ok]
        if bad:
            raise ValueError(f"Invalid EMConfig value(s): {', '.join(bad)}")


@dataclass
class ClusterCenter:
    """One mixture component: its current structure plus its history."""

    index: int
    structure: nx.DiGraph
    mixing_weight: float = 0.0
    history: list[nx.DiGraph] = field(default_factory=list)

    def replace_structure(self, structure: nx.DiGraph) -> None:
        """Swap in a newly learned structure and record it."""
        self.structure = structure
        self.history.append(structure)

    @property
    def n_edges(self) -> int:
        return self.structure.number_of_edges()


@dataclass(frozen=True)
class LabelMatch:
    """Best mapping of discovered cluster indices onto true group indices."""

    permutation: tuple[int, ...]  # discovered index -> true group, -1 if unmatched
    n_correct: int
    n_samples: int

    @property
    def accuracy(self) -> float:
        return self.n_correct / self.n_samples if self.n_samples else 0.0


@dataclass(frozen=True)
class RecoveryRates:
    """Edge recovery of one learned center against its true structure."""

    cluster: int
    true_group: int
    true_positives: int
    false_positives: int
    n_true_edges: int
    n_possible_false: int

    @property
    def tpr(self) -> float:
        return self.true_positives / self.n_true_edges if self.n_true_edges else 0.0

    @property
    def fpr(self) -> float:
        return self.false_positives / self.n_possible_false if self.n_possible_false else 0.0


@dataclass(frozen=True)
class OuterIteration:
    """Diagnostics recorded at the end of one outer iteration."""

    index: int
    delta: float  # squared responsibility change over the iteration
    log_likelihood: float
    match: LabelMatch | None = None
    recovery: tuple[RecoveryRates, ...] = ()


@dataclass
class RunRecord:
    """Everything one random initialisation produced."""

    seed: int
    iterations: list[OuterIteration] = field(default_factory=list)
    responsibilities: np.ndarray | None = None
    scores: np.ndarray | None = None
    centers: list[ClusterCenter] = field(default_factory=list)
    permutation: tuple[int, ...] | None = None
    converged: bool = False
    hit_iteration_cap: bool = False

    @property
    def n_outer(self) -> int:
        return len(self.iterations)

    @property
    def log_likelihood(self) -> float:
        """Terminal log-likelihood (-inf before the first outer iteration)."""
        if not self.iterations:
            return float("-inf")
        return self.iterations[-1].log_likelihood

    @property
    def accuracy(self) -> float | None:
        if not self.iterations or self.iterations[-1].match is None:
            return None
        return self.iterations[-1].match.accuracy

    @property
    def assignments(self) -> np.ndarray:
        if self.responsibilities is None:
            raise ValueError(f"Run {self.seed} has no responsibilities")
        return np.argmax(self.responsibilities, axis=1)

    @property
    def mixing_weights(self) -> np.ndarray:
        return np.array([c.mixing_weight for c in self.centers])


@dataclass(frozen=True)
class RunFailure:
    """Record of a restart that aborted."""

    seed: int
    error_type: str
    error_message: str


@dataclass
class MixtureFit:
    """All restarts of one fit, best first."""

    runs: list[RunRecord]  # sorted by terminal log-likelihood, ties by lowest seed
    failures: list[RunFailure] = field(default_factory=list)

    @property
    def best(self) -> RunRecord:
        return self.runs[0]


@dataclass(frozen=True)
class SyntheticDataset:
    """Stacked samples from several known Bayesian networks."""

    data: np.ndarray  # (N, n) ints
    labels: np.ndarray  # true group per sample
    structures: tuple[nx.DiGraph, ...]
    cpts: tuple[dict[int, np.ndarray], ...]  # per group: node -> P(x=1 | parent config)

    @property
    def n_samples(self) -> int:
        return self.data.shape[0]

    @property
    def n_variables(self) -> int:
        return self.data.shape[1]

    @property
    def n_groups(self) -> int:
        return len(self.structures)
