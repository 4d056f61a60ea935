"""Cycle detection and path queries over task adjacency snapshots.

All functions are pure: they read a ``dict[str, set[str]]`` adjacency mapping
(source -> targets) and never touch storage. Nodes that only appear as edge
targets are still counted as graph nodes.
"""

from collections import deque
from collections.abc import Iterable

from .models import DependencyEdge

Adjacency = dict[str, set[str]]


def build_adjacency(
    edges: Iterable[DependencyEdge],
    extra_pairs: Iterable[tuple[str, str]] = (),
) -> Adjacency:
    """Build an adjacency snapshot from structural edges plus pending pairs.

    Args:
        edges: Stored edges; ``related`` edges are skipped
        extra_pairs: (source, target) pairs a pending insertion would add

    Returns:
        Mapping of source id to the set of target ids
    """
    adjacency: Adjacency = {}
    for edge in edges:
        if not edge.is_structural:
            continue
        add_edge(adjacency, edge.source_task_id, edge.target_task_id)
    for source, target in extra_pairs:
        add_edge(adjacency, source, target)
    return adjacency


def add_edge(adjacency: Adjacency, source: str, target: str) -> None:
    """Register an edge in place."""
    adjacency.setdefault(source, set()).add(target)
    adjacency.setdefault(target, set())


def remove_edge(adjacency: Adjacency, source: str, target: str) -> bool:
    """Drop an edge in place.

    Returns:
        True if the edge was present
    """
    targets = adjacency.get(source)
    if not targets or target not in targets:
        return False
    targets.discard(target)
    return True


def _all_nodes(adjacency: Adjacency) -> list[str]:
    nodes: dict[str, None] = {}
    for source, targets in adjacency.items():
        nodes.setdefault(source, None)
        for target in sorted(targets):
            nodes.setdefault(target, None)
    return list(nodes)


def toposort_batches(adjacency: Adjacency) -> tuple[list[str], list[list[str]], set[str]]:
    """Compute a stable topo-order and parallel batches.

    Nodes are taken in first-seen order within each batch, so the same
    snapshot always yields the same plan.

    Returns:
        topo_order, parallel_batches, cycle_nodes
    """
    nodes = _all_nodes(adjacency)
    indegree: dict[str, int] = {node: 0 for node in nodes}
    for targets in adjacency.values():
        for target in targets:
            indegree[target] += 1

    topo_order: list[str] = []
    parallel_batches: list[list[str]] = []
    processed: set[str] = set()

    ready = [node for node in nodes if indegree[node] == 0]
    while ready:
        parallel_batches.append(ready)
        topo_order.extend(ready)
        processed.update(ready)

        next_ready: set[str] = set()
        for node in ready:
            for neighbor in adjacency.get(node, ()):
                indegree[neighbor] -= 1
                if indegree[neighbor] == 0:
                    next_ready.add(neighbor)

        ready = [node for node in nodes if node in next_ready and node not in processed]

    cycle_nodes = set(nodes) - processed
    return topo_order, parallel_batches, cycle_nodes


def has_cycle(adjacency: Adjacency) -> bool:
    """Check whether the snapshot contains a cycle (Kahn's algorithm).

    A cycle exists iff fewer nodes are processed than exist in the graph.
    """
    nodes = _all_nodes(adjacency)
    indegree: dict[str, int] = {node: 0 for node in nodes}
    for targets in adjacency.values():
        for target in targets:
            indegree[target] += 1

    queue = deque(node for node in nodes if indegree[node] == 0)
    processed = 0
    while queue:
        node = queue.popleft()
        processed += 1
        for neighbor in adjacency.get(node, ()):
            indegree[neighbor] -= 1
            if indegree[neighbor] == 0:
                queue.append(neighbor)

    return processed < len(nodes)


def find_cycle_path(adjacency: Adjacency) -> list[str]:
    """Extract one cycle for diagnostics.

    Depth-first search with an explicit stack. When an edge reaches a node that
    is still on the recursion stack, parent pointers are walked back from the
    current node to that node.

    Returns:
        Node ids in cycle order, first and last entries being the same node;
        empty if the snapshot is acyclic
    """
    visited: set[str] = set()
    on_stack: set[str] = set()
    parent: dict[str, str] = {}

    for root in _all_nodes(adjacency):
        if root in visited:
            continue

        visited.add(root)
        on_stack.add(root)
        stack = [(root, iter(sorted(adjacency.get(root, ()))))]

        while stack:
            node, neighbors = stack[-1]
            advanced = False
            for neighbor in neighbors:
                if neighbor not in visited:
                    visited.add(neighbor)
                    on_stack.add(neighbor)
                    parent[neighbor] = node
                    stack.append((neighbor, iter(sorted(adjacency.get(neighbor, ())))))
                    advanced = True
                    break
                if neighbor in on_stack:
                    path = [neighbor]
                    current = node
                    while current != neighbor:
                        path.append(current)
                        current = parent[current]
                    path.append(neighbor)
                    path.reverse()
                    return path
            if not advanced:
                on_stack.discard(node)
                stack.pop()

    return []


def has_path(adjacency: Adjacency, source: str, target: str) -> bool:
    """Breadth-first reachability check from source to target."""
    if source == target:
        return True

    visited = {source}
    queue = deque([source])
    while queue:
        current = queue.popleft()
        for neighbor in adjacency.get(current, ()):
            if neighbor == target:
                return True
            if neighbor not in visited:
                visited.add(neighbor)
                queue.append(neighbor)
    return False


def find_path_edges(adjacency: Adjacency, source: str, target: str) -> list[tuple[str, str]]:
    """Edges of the shortest path from source to target.

    Returns:
        (from, to) pairs in path order; empty if unreachable or source == target
    """
    if source == target:
        return []

    previous: dict[str, str] = {}
    visited = {source}
    queue = deque([source])
    while queue:
        current = queue.popleft()
        if current == target:
            break
        # sorted() keeps tie-breaking between equal-length paths deterministic
        for neighbor in sorted(adjacency.get(current, ())):
            if neighbor not in visited:
                visited.add(neighbor)
                previous[neighbor] = current
                queue.append(neighbor)

    if target not in previous:
        return []

    edges: list[tuple[str, str]] = []
    node = target
    while node != source:
        edges.append((previous[node], node))
        node = previous[node]
    edges.reverse()
    return edges
