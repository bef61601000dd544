"""Score Oracle: weighted BDe scoring and hill-climbing structure search.

A BDeScore is built once per (dataset, sample weights, hyperparameters)
and answers two questions:

  search(start, rng)           -> best structure reachable from `start`
  sample_log_scores(structure) -> per-sample log-probability under `structure`

The orchestrator treats it as a black box; anything with these two methods
can be injected in its place through a score factory.

Score of a DAG G:

  sum_i BDe_i(x_i | pa_i) - edge_penalty * |E(G)|

with equivalent sample size `prior_count` (alpha_ijk = prior_count / (q_i r_i))
over weighted counts N_ijk = sum_s w_s [x_si = k, pa_s = j].
"""

from __future__ import annotations

import networkx as nx
import numpy as np
from scipy.special import gammaln

from bnmix.config import EDGE_PENALTY, MAX_PARENTS, MAX_SEARCH_STEPS, PRIOR_COUNT
from bnmix.errors import DegenerateAssignment, ScoreOracleError
from bnmix.structure import can_add_edge, can_reverse_edge, is_valid_structure, parent_sets

# Moves must improve the score by more than this to be taken
IMPROVEMENT_TOL = 1e-9
# Moves within this of the best delta count as tied
TIE_TOL = 1e-9


def parent_config_index(
    data: np.ndarray,
    parents: tuple[int, ...],
    arity: np.ndarray,
) -> np.ndarray:
    """Row-major index of each sample's parent configuration."""
    if not parents:
        return np.zeros(data.shape[0], dtype=np.int64)
    return np.ravel_multi_index(
        tuple(data[:, p] for p in parents),
        dims=tuple(int(arity[p]) for p in parents),
    )


def validate_weights(weights: np.ndarray, n_samples: int) -> np.ndarray:
    """Check a sample-weight vector before it reaches the counts."""
    w = np.asarray(weights, dtype=float)
    if w.shape != (n_samples,):
        raise DegenerateAssignment(f"Expected {n_samples} sample weights, got shape {w.shape}")
    if not np.all(np.isfinite(w)):
        raise DegenerateAssignment("Sample weights contain non-finite values")
    if np.any(w < 0):
        raise DegenerateAssignment("Sample weights must be non-negative")
    return w


class BDeScore:
    """Weighted BDe score configuration over one categorical dataset."""

    def __init__(
        self,
        data: np.ndarray,
        weights: np.ndarray,
        prior_count: float = PRIOR_COUNT,
        edge_penalty: float = EDGE_PENALTY,
        max_parents: int = MAX_PARENTS,
        max_steps: int = MAX_SEARCH_STEPS,
    ):
        data = np.asarray(data)
        if data.ndim != 2 or data.shape[0] == 0:
            raise ValueError(f"Expected a non-empty (N, n) data matrix, got shape {data.shape}")
        if not np.issubdtype(data.dtype, np.integer) or data.min() < 0:
            raise ValueError("Data must hold non-negative integer category codes")
        if prior_count <= 0:
            raise ValueError(f"prior_count must be positive, got {prior_count}")
        if edge_penalty < 0:
            raise ValueError(f"edge_penalty must be non-negative, got {edge_penalty}")

        self.data = data
        self.weights = validate_weights(weights, data.shape[0])
        self.prior_count = prior_count
        self.edge_penalty = edge_penalty
        self.max_parents = max_parents
        self.max_steps = max_steps
        self.arity = np.maximum(data.max(axis=0) + 1, 2)
        self._local_cache: dict[tuple[int, tuple[int, ...]], float] = {}

    @property
    def n_samples(self) -> int:
        return self.data.shape[0]

    @property
    def n_variables(self) -> int:
        return self.data.shape[1]

    # -- Counts and scores -----------------------------------------------------

    def counts(self, node: int, parents: tuple[int, ...]) -> np.ndarray:
        """Weighted counts N_ijk as a (parent configs, node states) array."""
        r = int(self.arity[node])
        q = int(np.prod([self.arity[p] for p in parents])) if parents else 1
        cfg = parent_config_index(self.data, parents, self.arity)
        flat = np.bincount(cfg * r + self.data[:, node], weights=self.weights, minlength=q * r)
        return flat.reshape(q, r)

    def local_score(self, node: int, parents: tuple[int, ...]) -> float:
        parents = tuple(sorted(parents))
        key = (node, parents)
        if key in self._local_cache:
            return self._local_cache[key]

        n_ijk = self.counts(node, parents)
        q, r = n_ijk.shape
        alpha_ijk = self.prior_count / (q * r)
        alpha_ij = self.prior_count / q
        n_ij = n_ijk.sum(axis=1)

        score = float(
            np.sum(gammaln(alpha_ij) - gammaln(alpha_ij + n_ij))
            + np.sum(gammaln(alpha_ijk + n_ijk) - gammaln(alpha_ijk))
        )
        self._local_cache[key] = score
        return score

    def structure_score(self, G: nx.DiGraph) -> float:
        total = sum(self.local_score(v, pa) for v, pa in parent_sets(G).items())
        return total - self.edge_penalty * G.number_of_edges()

    def conditional_tables(self, G: nx.DiGraph) -> dict[int, np.ndarray]:
        """Posterior-mean P(x_i = k | pa_i = j) per node, shape (q_i, r_i)."""
        tables: dict[int, np.ndarray] = {}
        for v, pa in parent_sets(G).items():
            n_ijk = self.counts(v, pa)
            q, r = n_ijk.shape
            alpha_ijk = self.prior_count / (q * r)
            alpha_ij = self.prior_count / q
            tables[v] = (n_ijk + alpha_ijk) / (n_ijk.sum(axis=1, keepdims=True) + alpha_ij)
        return tables

    def sample_log_scores(self, structure: nx.DiGraph) -> np.ndarray:
        """Log-probability of every sample under `structure` (length N)."""
        self._require_valid(structure)
        log_scores = np.zeros(self.n_samples)
        for v, table in self.conditional_tables(structure).items():
            pa = tuple(sorted(structure.predecessors(v)))
            cfg = parent_config_index(self.data, pa, self.arity)
            log_scores += np.log(table[cfg, self.data[:, v]])
        return log_scores

    # -- Search ----------------------------------------------------------------

    def search(self, start: nx.DiGraph, rng: np.random.Generator | None = None) -> nx.DiGraph:
        """Greedy hill climbing over single-edge moves, warm-started at `start`.

        Each step takes the best add / delete / reverse move that keeps the
        graph acyclic and within max_parents. Equally good moves are broken
        by `rng`. Stops at a local optimum or after max_steps moves.
        """
        self._require_valid(start)
        rng = rng if rng is not None else np.random.default_rng()
        G = nx.DiGraph(start)

        for _ in range(self.max_steps):
            moves = self._scored_moves(G)
            if not moves:
                break
            best_delta = max(m[0] for m in moves)
            if best_delta <= IMPROVEMENT_TOL:
                break
            tied = [m for m in moves if m[0] >= best_delta - TIE_TOL]
            _, op, u, v = tied[int(rng.integers(len(tied)))]
            if op == "add":
                G.add_edge(u, v)
            elif op == "delete":
                G.remove_edge(u, v)
            else:
                G.remove_edge(u, v)
                G.add_edge(v, u)

        if not nx.is_directed_acyclic_graph(G):
            raise ScoreOracleError("Structure search produced a cyclic graph")
        return G

    def _scored_moves(self, G: nx.DiGraph) -> list[tuple[float, str, int, int]]:
        parents = parent_sets(G)
        current = {v: self.local_score(v, pa) for v, pa in parents.items()}
        moves: list[tuple[float, str, int, int]] = []
        n = self.n_variables

        for u in range(n):
            for v in range(n):
                if u == v:
                    continue
                if G.has_edge(u, v):
                    without = tuple(p for p in parents[v] if p != u)
                    delta = self.local_score(v, without) - current[v] + self.edge_penalty
                    moves.append((delta, "delete", u, v))

                    if len(parents[u]) < self.max_parents and can_reverse_edge(G, u, v):
                        delta = (
                            self.local_score(v, without)
                            - current[v]
                            + self.local_score(u, parents[u] + (v,))
                            - current[u]
                        )
                        moves.append((delta, "reverse", u, v))
                elif len(parents[v]) < self.max_parents and can_add_edge(G, u, v):
                    delta = (
                        self.local_score(v, parents[v] + (u,)) - current[v] - self.edge_penalty
                    )
                    moves.append((delta, "add", u, v))
        return moves

    def _require_valid(self, G: nx.DiGraph) -> None:
        if not is_valid_structure(G, self.n_variables):
            raise ScoreOracleError(
                f"Expected an acyclic structure over nodes 0..{self.n_variables - 1}"
            )
