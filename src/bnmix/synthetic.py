"""Synthetic mixture data: power-law random DAGs, random CPTs, binary samples."""

from __future__ import annotations

import networkx as nx
import numpy as np

from bnmix.config import (
    CPT_CONCENTRATION,
    GENERATOR_SEED,
    MAX_PARENTS,
    N_CLUSTERS,
    N_VARIABLES,
    POWER_LAW_EXPONENT,
    SAMPLES_PER_GROUP,
)
from bnmix.models import SyntheticDataset
from bnmix.scoring import parent_config_index
from bnmix.structure import empty_structure

BINARY_ARITY = 2


def power_law_dag(
    n_variables: int,
    rng: np.random.Generator,
    max_parents: int = MAX_PARENTS,
    exponent: float = POWER_LAW_EXPONENT,
) -> nx.DiGraph:
    """Random DAG with power-law in-degrees and preferential parent choice.

    Nodes are visited in a random order. Each node draws its in-degree d from
    P(d) ∝ (d + 1)^-exponent, truncated to min(max_parents, nodes seen so far),
    then picks d earlier nodes with probability ∝ out-degree + 1.
    """
    G = empty_structure(n_variables)
    order = rng.permutation(n_variables)

    for pos, v in enumerate(order):
        max_d = min(max_parents, pos)
        if max_d == 0:
            continue
        degrees = np.arange(max_d + 1)
        p_degree = (degrees + 1.0) ** -exponent
        d = int(rng.choice(degrees, p=p_degree / p_degree.sum()))
        if d == 0:
            continue
        earlier = order[:pos]
        attractiveness = np.array([G.out_degree(int(u)) + 1.0 for u in earlier])
        chosen = rng.choice(earlier, size=d, replace=False, p=attractiveness / attractiveness.sum())
        G.add_edges_from((int(u), int(v)) for u in chosen)

    return G


def random_cpts(
    G: nx.DiGraph,
    rng: np.random.Generator,
    concentration: float = CPT_CONCENTRATION,
) -> dict[int, np.ndarray]:
    """P(x_v = 1 | parent configuration) per node, drawn from Beta(c, c)."""
    return {
        v: rng.beta(concentration, concentration, size=BINARY_ARITY ** G.in_degree(v))
        for v in sorted(G.nodes())
    }


def sample_binary(
    G: nx.DiGraph,
    cpts: dict[int, np.ndarray],
    n_samples: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """Ancestral sampling of binary observations, shape (n_samples, n)."""
    n = G.number_of_nodes()
    data = np.zeros((n_samples, n), dtype=np.int64)
    arity = np.full(n, BINARY_ARITY)
    for v in nx.topological_sort(G):
        parents = tuple(sorted(G.predecessors(v)))
        cfg = parent_config_index(data, parents, arity)
        p_one = cpts[v][cfg]
        data[:, v] = (rng.random(n_samples) < p_one).astype(np.int64)
    return data


def make_mixture_dataset(
    n_groups: int = N_CLUSTERS,
    samples_per_group: int = SAMPLES_PER_GROUP,
    n_variables: int = N_VARIABLES,
    seed: int = GENERATOR_SEED,
    max_parents: int = MAX_PARENTS,
    exponent: float = POWER_LAW_EXPONENT,
    concentration: float = CPT_CONCENTRATION,
) -> SyntheticDataset:
    """One random network per group, samples stacked group by group."""
    if n_groups < 1 or samples_per_group < 1 or n_variables < 1:
        raise ValueError("n_groups, samples_per_group and n_variables must be positive")

    rng = np.random.default_rng(seed)
    structures = []
    cpts = []
    blocks = []
    for _ in range(n_groups):
        G = power_law_dag(n_variables, rng, max_parents=max_parents, exponent=exponent)
        tables = random_cpts(G, rng, concentration=concentration)
        blocks.append(sample_binary(G, tables, samples_per_group, rng))
        structures.append(G)
        cpts.append(tables)

    labels = np.repeat(np.arange(n_groups), samples_per_group)
    return SyntheticDataset(
        data=np.vstack(blocks),
        labels=labels,
        structures=tuple(structures),
        cpts=tuple(cpts),
    )
