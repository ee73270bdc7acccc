# Packages
from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple
import networkx as nx
import numpy as np
from numpy.typing import NDArray

from network_topology import Arc, TopologyModel

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class PathChoice:
    """
    Path chosen to serve one demand under one coalition

    Attributes
    ----------
    demand : int
        Position of the demand in the input
    satisfied : float
        Served volume, min(path bottleneck, demand traffic)
    latency : float
        Sum of link latencies along the path
    links : Tuple[str, ...]
        Link identifiers in travel order
    operators : Tuple[str, ...]
        Distinct operators on the path in travel order (public links excluded)
    contiguous : bool
        True when every link on the path is a private link of one operator
    contribution : float
        Value the demand adds to the coalition
    """
    demand: int
    satisfied: float
    latency: float
    links: Tuple[str, ...]
    operators: Tuple[str, ...]
    contiguous: bool
    contribution: float

    def rank(self) -> Tuple[float, float, float, Tuple[str, ...]]:
        # smaller is better
        return (-self.contribution, -self.satisfied, self.latency, self.links)

# Helper utilities
def _graph(topology: TopologyModel, arcs: Iterable[Arc], start: int, end: int) -> nx.MultiDiGraph:
    # parallel links between two devices stay distinct, keyed by link identifier
    graph = nx.MultiDiGraph()
    graph.add_nodes_from((start, end))
    for a in arcs:
        graph.add_edge(a.tail, a.head, key=topology.link_keys[a.link], link=a.link,
                       capacity=topology.link_capacity[a.link], latency=topology.link_latency[a.link])
    return graph

def _carrying(graph: nx.MultiDiGraph, volume: float) -> nx.MultiDiGraph:
    return nx.subgraph_view(graph, filter_edge=lambda u, v, k: graph[u][v][k]["capacity"] >= volume)

def _widest(graph: nx.MultiDiGraph, start: int, end: int, cap: float) -> float:
    """
    Largest volume, at most `cap`, that a single start -> end path can carry

    Volumes above `cap` are equivalent, so capacities are clipped before the search. Connectivity is
    monotone in the threshold, which allows a bisection over the distinct clipped capacities.
    """
    levels = sorted({min(c, cap) for _, _, c in graph.edges(data="capacity") if c > 0})
    lo, hi, best = 0, len(levels) - 1, 0.0
    while lo <= hi:
        mid = (lo + hi) // 2
        if nx.has_path(_carrying(graph, levels[mid]), start, end):
            best, lo = levels[mid], mid + 1
        else:
            hi = mid - 1
    return best

def _fastest(
    graph: nx.MultiDiGraph,
    start: int,
    end: int,
    volume: float,
) -> Optional[Tuple[float, Tuple[str, ...], Tuple[int, ...]]]:
    # least-latency path over links carrying `volume`; ties go to the smallest identifier sequence
    usable = _carrying(graph, volume)
    try:
        routes = list(nx.all_shortest_paths(usable, start, end, weight="latency"))
    except nx.NetworkXNoPath:
        return None

    best = None
    for nodes in routes:
        names, links, latency = [], [], 0.0
        for u, v in zip(nodes[:-1], nodes[1:]):
            parallel = usable[u][v]
            hop = min(d["latency"] for d in parallel.values())
            key = min(k for k, d in parallel.items() if d["latency"] == hop)
            names.append(key)
            links.append(parallel[key]["link"])
            latency += hop
        found = (latency, tuple(names), tuple(links))
        if best is None or found[1] < best[1]:
            best = found
    return best


class CoalitionValuator:
    """
    Scores coalitions of operators by how well they serve the demand set.

    Every demand is routed independently. The open search uses every available link, and one
    contiguous search per coalition member uses only that member's private links; the demand takes
    the candidate with the highest contribution. Because a larger coalition only adds candidates,
    the value is monotone non-decreasing in the coalition.

    The worth of a coalition is its gross value minus the gross value of the public network alone,
    so the empty coalition is worth exactly zero.

    Contributions are memoized per demand in a float array indexed by the coalition restricted to
    the operators that can reach that demand, 2^k slots for k such operators.
    """

    def __init__(self, topology: TopologyModel) -> None:
        self.topology = topology
        self.contiguity_bonus = float(topology.shapley_input.contiguity_bonus)
        self.demand_multiplier = float(topology.shapley_input.demand_multiplier)
        self._relevant: List[Tuple[int, ...]] = [
            tuple(op for op in range(topology.n_operators) if mask >> op & 1)
            for mask in topology.demand_operator_mask
        ]
        self._contributions: List[Optional[NDArray]] = [None] * len(self._relevant)
        self._baseline: Optional[float] = None

    @property
    def baseline(self) -> float:
        """Gross value of the public network alone."""
        if self._baseline is None:
            self._baseline = self.gross_mask(0)
        return self._baseline

    @property
    def memo_size(self) -> int:
        """Number of allocated contribution slots across all demands."""
        return sum(t.size for t in self._contributions if t is not None)

    def value(self, coalition: Iterable[str]) -> float:
        return self.value_mask(self.topology.operator_mask(coalition))

    def value_mask(self, mask: int) -> float:
        if mask == 0:
            return 0.0
        return self.gross_mask(mask) - self.baseline

    def gross_mask(self, mask: int) -> float:
        return math.fsum(self._contribution(k, mask) for k in range(len(self._relevant)))

    def best_paths(self, coalition: Iterable[str]) -> List[Optional[PathChoice]]:
        """Chosen path per demand (None where the demand is not served)."""
        mask = self.topology.operator_mask(coalition)
        return [self._search(k, mask & self.topology.demand_operator_mask[k]) for k in range(len(self._relevant))]

    def _slot(self, k: int, mask: int) -> int:
        return sum(1 << j for j, op in enumerate(self._relevant[k]) if mask >> op & 1)

    def _contribution(self, k: int, mask: int) -> float:
        table = self._contributions[k]
        if table is None:
            table = self._contributions[k] = np.full(1 << len(self._relevant[k]), np.nan)
        slot = self._slot(k, mask)
        if np.isnan(table[slot]):
            choice = self._search(k, mask & self.topology.demand_operator_mask[k])
            table[slot] = 0.0 if choice is None else choice.contribution
        return float(table[slot])

    def _search(self, k: int, mask: int) -> Optional[PathChoice]:
        topo = self.topology
        if topo.demand_traffic[k] == 0:
            return None

        available = [a for a in topo.demand_arcs[k]
                     if topo.link_operator[a.link] < 0 or mask >> topo.link_operator[a.link] & 1]
        by_operator = {}
        for a in available:
            if topo.link_operator[a.link] >= 0:
                by_operator.setdefault(topo.link_operator[a.link], []).append(a)

        candidates = [self._best_path(k, available)]
        candidates += [self._best_path(k, by_operator[op]) for op in sorted(by_operator)]
        candidates = [c for c in candidates if c is not None]
        if not candidates:
            return None
        return min(candidates, key=PathChoice.rank)

    def _best_path(self, k: int, arcs: Sequence[Arc]) -> Optional[PathChoice]:
        topo = self.topology
        start, end = topo.demand_endpoints[k]
        graph = _graph(topo, arcs, start, end)

        # Serve as much of the demand as one path allows, then take the fastest such path
        satisfied = _widest(graph, start, end, topo.demand_traffic[k])
        if satisfied <= 0:
            return None
        found = _fastest(graph, start, end, satisfied)
        if found is None:
            return None
        latency, names, links = found

        owners = [topo.link_operator[link] for link in links]
        operators = tuple(topo.operators[op] for op in dict.fromkeys(owners) if op >= 0)
        contiguous = min(owners) >= 0 and len(operators) == 1
        weight = (1.0 + self.contiguity_bonus) if contiguous else 1.0
        contribution = satisfied * self.demand_multiplier * topo.demand_priority[k] * weight
        return PathChoice(demand=k, satisfied=satisfied, latency=latency, links=names, operators=operators,
                          contiguous=contiguous, contribution=contribution)
