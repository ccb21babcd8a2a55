"""
Dependency graph validation and ordering.

Edges are ``(from_id, to_id)`` pairs meaning "from depends on to": ``from``
cannot be ready until ``to`` is closed. Both functions take the complete node
set of a project and ignore edges that touch nodes outside it.
"""

import heapq
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .errors import GraphStructureError

logger = logging.getLogger(__name__)

Edge = Tuple[str, str]

WHITE, GRAY, BLACK = 0, 1, 2


@dataclass
class DagValidation:
    """Outcome of a cycle check. `cycle` reads root-to-repeat when invalid."""

    valid: bool
    cycle: Optional[List[str]] = field(default=None)


def _adjacency(nodes: List[str], edges: Iterable[Edge]) -> Dict[str, List[str]]:
    node_set = set(nodes)
    adjacency: Dict[str, List[str]] = {node: [] for node in nodes}
    seen: Set[Edge] = set()
    for source, target in edges:
        if source in node_set and target in node_set and (source, target) not in seen:
            seen.add((source, target))
            adjacency[source].append(target)
    return adjacency


def _cycle_path(parent: Dict[str, str], current: str, repeated: str) -> List[str]:
    path = [repeated]
    node = current
    while node != repeated:
        path.append(node)
        node = parent[node]
    path.append(repeated)
    path.reverse()
    return path


def validate_dag(nodes: Iterable[str], edges: Iterable[Edge]) -> DagValidation:
    """
    Check a dependency graph for cycles with three-color depth-first search.

    The search is iterative; each stack frame holds a node and an iterator
    over its remaining dependencies.

    Args:
        nodes: Every node id of the graph
        edges: (from, to) pairs, from depends on to

    Returns:
        DagValidation(valid=True) or DagValidation(valid=False, cycle=[...])
        where the cycle starts and ends with the same node
    """
    ordered = list(dict.fromkeys(nodes))
    adjacency = _adjacency(ordered, edges)
    color = {node: WHITE for node in ordered}
    parent: Dict[str, str] = {}

    for root in ordered:
        if color[root] != WHITE:
            continue
        color[root] = GRAY
        stack = [(root, iter(adjacency[root]))]
        while stack:
            node, pending = stack[-1]
            advanced = False
            for dep in pending:
                if color[dep] == GRAY:
                    return DagValidation(valid=False, cycle=_cycle_path(parent, node, dep))
                if color[dep] == WHITE:
                    parent[dep] = node
                    color[dep] = GRAY
                    stack.append((dep, iter(adjacency[dep])))
                    advanced = True
                    break
            if not advanced:
                color[node] = BLACK
                stack.pop()

    return DagValidation(valid=True)


def topological_sort(nodes: Iterable[str], edges: Iterable[Edge]) -> List[str]:
    """
    Order nodes so every dependency precedes its dependents (Kahn's algorithm).

    Among nodes that become eligible at the same time the lexicographically
    smallest id is emitted first, so identical input always yields identical
    output.

    Raises:
        GraphStructureError: If a cycle prevents a complete ordering
    """
    ordered = list(dict.fromkeys(nodes))
    adjacency = _adjacency(ordered, edges)

    dependents: Dict[str, List[str]] = {node: [] for node in ordered}
    in_degree: Dict[str, int] = {}
    for node, deps in adjacency.items():
        in_degree[node] = len(deps)
        for dep in deps:
            dependents[dep].append(node)

    heap = [node for node in ordered if in_degree[node] == 0]
    heapq.heapify(heap)

    result: List[str] = []
    while heap:
        node = heapq.heappop(heap)
        result.append(node)
        for dependent in dependents[node]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(heap, dependent)

    if len(result) != len(ordered):
        unsorted = sorted(node for node in ordered if in_degree[node] > 0)
        logger.error(
            f"Topological sort incomplete: {len(result)}/{len(ordered)} nodes ordered, "
            f"stuck nodes: {unsorted}"
        )
        raise GraphStructureError(
            "cycle detected: topological sort incomplete", {"unsorted": unsorted}
        )
    return result
