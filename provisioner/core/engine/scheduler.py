"""
Dependency scheduler — order services by their ``depends_on`` edges (pure).

Topological sort with Kahn's algorithm. Among services whose
dependencies are all satisfied, the one declared first goes first, so
the same descriptor set always yields the same plan.
No I/O, no side effects: safe to run before anything is touched.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterable

from provisioner.core.errors import CycleError, UnknownDependencyError
from provisioner.core.models.descriptor import ServiceDescriptor


def validate_references(descriptors: Iterable[ServiceDescriptor]) -> None:
    """Fail if any service depends on an undeclared id.

    Raises:
        UnknownDependencyError: For the first offending service.
    """
    descriptors = list(descriptors)
    ids = {d.id for d in descriptors}
    for d in descriptors:
        missing = [dep for dep in d.depends_on if dep not in ids]
        if missing:
            raise UnknownDependencyError(d.id, missing)


def plan(descriptors: Iterable[ServiceDescriptor]) -> list[str]:
    """Compute the application order for a descriptor set.

    Args:
        descriptors: Services in declaration order.

    Returns:
        Service ids such that every id appears after all of its
        dependencies.

    Raises:
        UnknownDependencyError: A dependency names an undeclared id.
        CycleError: The graph has a cycle; names its participants.
    """
    descriptors = list(descriptors)
    validate_references(descriptors)

    order = {d.id: i for i, d in enumerate(descriptors)}
    in_degree: dict[str, int] = {d.id: len(d.depends_on) for d in descriptors}

    # dependency → services waiting on it
    dependents: dict[str, list[str]] = {d.id: [] for d in descriptors}
    for d in descriptors:
        for dep in d.depends_on:
            dependents[dep].append(d.id)

    ready = [order[sid] for sid, deg in in_degree.items() if deg == 0]
    heapq.heapify(ready)
    ids_by_index = [d.id for d in descriptors]

    result: list[str] = []
    while ready:
        sid = ids_by_index[heapq.heappop(ready)]
        result.append(sid)
        for successor in dependents[sid]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(ready, order[successor])

    if len(result) < len(descriptors):
        remaining = {d.id: d for d in descriptors if in_degree[d.id] > 0}
        raise CycleError(_find_cycle(remaining))

    return result


def _find_cycle(remaining: dict[str, ServiceDescriptor]) -> list[str]:
    """Walk dependency edges among unsorted nodes until one repeats.

    Every node left over by Kahn's algorithm has at least one
    dependency that is also left over, so the walk always closes.
    """
    start = next(iter(remaining))
    path: list[str] = []
    seen: dict[str, int] = {}
    node = start
    while node not in seen:
        seen[node] = len(path)
        path.append(node)
        node = next(dep for dep in remaining[node].depends_on if dep in remaining)
    return path[seen[node]:]


def dependents_of(service_id: str, descriptors: Iterable[ServiceDescriptor]) -> set[str]:
    """All services that transitively depend on ``service_id``."""
    descriptors = list(descriptors)
    reverse: dict[str, list[str]] = {d.id: [] for d in descriptors}
    for d in descriptors:
        for dep in d.depends_on:
            reverse.setdefault(dep, []).append(d.id)

    found: set[str] = set()
    stack = list(reverse.get(service_id, []))
    while stack:
        sid = stack.pop()
        if sid in found:
            continue
        found.add(sid)
        stack.extend(reverse.get(sid, []))
    return found
