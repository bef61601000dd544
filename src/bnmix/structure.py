"""DAG helpers for cluster-center structures.

Structures are networkx DiGraphs over integer nodes 0..n-1, one node per
observed variable.
"""

from __future__ import annotations

import networkx as nx


def empty_structure(n_variables: int) -> nx.DiGraph:
    G = nx.DiGraph()
    G.add_nodes_from(range(n_variables))
    return G


def edge_set(G: nx.DiGraph) -> set[tuple[int, int]]:
    return set(G.edges())


def is_valid_structure(G: object, n_variables: int) -> bool:
    """True if G is a DAG over exactly the nodes 0..n_variables-1."""
    if not isinstance(G, nx.DiGraph):
        return False
    if set(G.nodes()) != set(range(n_variables)):
        return False
    return nx.is_directed_acyclic_graph(G)


def parent_sets(G: nx.DiGraph) -> dict[int, tuple[int, ...]]:
    """Sorted parent tuple per node."""
    return {v: tuple(sorted(G.predecessors(v))) for v in G.nodes()}


def can_add_edge(G: nx.DiGraph, u: int, v: int) -> bool:
    """Whether adding u -> v keeps G a simple DAG."""
    if u == v or G.has_edge(u, v):
        return False
    return not nx.has_path(G, v, u)


def can_reverse_edge(G: nx.DiGraph, u: int, v: int) -> bool:
    """Whether turning u -> v into v -> u keeps G acyclic."""
    if not G.has_edge(u, v):
        return False
    H = G.copy()
    H.remove_edge(u, v)
    return not nx.has_path(H, u, v)
