"""Dependency graph utilities.

Provides topological sorting for determining release order in a monorepo.
Projects are released in dependency order so that when project A depends
on project B, B's new version is known before A is processed.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from .errors import CyclicDependency

Graph = Mapping[str, Iterable[str]]


def reverse_deps(graph: Graph) -> dict[str, list[str]]:
    """Map each node to the nodes that depend on it (within the graph)."""
    reverse: dict[str, list[str]] = {n: [] for n in graph}
    for name, deps in graph.items():
        for dep in deps:
            if dep in reverse:
                reverse[dep].append(name)
    return reverse


def dependents_closure(graph: Graph, roots: Iterable[str]) -> set[str]:
    """Return roots plus every node transitively depending on them.

    Example:
        If A depends on B, and B depends on C:
        dependents_closure(graph, ["C"]) → {"A", "B", "C"}
    """
    reverse = reverse_deps(graph)
    seen = set(roots)
    queue = sorted(seen)
    while queue:
        node = queue.pop(0)
        for dependent in reverse.get(node, []):
            if dependent not in seen:
                seen.add(dependent)
                queue.append(dependent)
    return seen


def find_cycle(graph: Graph) -> list[str] | None:
    """Return one dependency cycle as a closed path (first == last), or None."""
    state: dict[str, int] = {}  # 1 = on stack, 2 = done
    stack: list[str] = []

    def visit(node: str) -> list[str] | None:
        state[node] = 1
        stack.append(node)
        for dep in sorted(graph.get(node, ())):
            if dep not in graph:
                continue
            if state.get(dep) == 1:
                return stack[stack.index(dep):] + [dep]
            if dep not in state:
                cycle = visit(dep)
                if cycle:
                    return cycle
        stack.pop()
        state[node] = 2
        return None

    for node in sorted(graph):
        if node not in state:
            cycle = visit(node)
            if cycle:
                return cycle
    return None


def topo_sort(graph: Graph) -> list[str]:
    """Topologically sort nodes by their internal dependencies.

    Uses Kahn's algorithm to produce an order where dependencies come
    before dependents. Ready nodes are taken alphabetically for
    deterministic output. Dependencies outside the graph are ignored.

    Args:
        graph: Map of project name → names of projects it depends on.

    Returns:
        List of project names in release order (dependencies first).

    Raises:
        CyclicDependency: If a dependency cycle is detected.

    Example:
        If A depends on B, and B depends on C:
        topo_sort({A: [B], B: [C], C: []}) → [C, B, A]
    """
    in_degree = {n: 0 for n in graph}
    reverse = reverse_deps(graph)
    for name, deps in graph.items():
        in_degree[name] = len({d for d in deps if d in graph})

    queue = sorted(n for n, d in in_degree.items() if d == 0)
    order: list[str] = []

    while queue:
        node = queue.pop(0)
        order.append(node)
        for dependent in sorted(set(reverse[node])):
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)
        queue.sort()

    if len(order) != len(in_degree):
        remaining = {n: graph[n] for n in graph if n not in order}
        raise CyclicDependency(find_cycle(remaining) or sorted(remaining))

    return order
