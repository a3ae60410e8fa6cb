"""Dependency graph utilities: closure, reverse edges and removal order."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from updater.services.records import RecordStore

logger = logging.getLogger(__name__)

WHITE, GRAY, BLACK = 0, 1, 2


def break_cycles(
    edges: list[tuple[str, str]],
) -> tuple[list[tuple[str, str]], list[tuple[str, str]]]:
    """Remove back-edges to make an edge list acyclic.

    Uses iterative DFS with white/gray/black coloring. Edges that would
    close a cycle (back-edges to gray nodes) are dropped. O(V+E) time.
    Traverses dependent -> dependency direction.

    Args:
        edges: list of (dependent, dependency) tuples.

    Returns:
        (accepted_edges, dropped_edges)
    """
    adj: dict[str, list[str]] = {}
    nodes: list[str] = []
    seen: set[str] = set()
    for source, target in edges:
        adj.setdefault(source, []).append(target)
        for node in (source, target):
            if node not in seen:
                seen.add(node)
                nodes.append(node)

    color: dict[str, int] = {n: WHITE for n in nodes}
    accepted: list[tuple[str, str]] = []
    dropped: list[tuple[str, str]] = []

    for start in nodes:
        if color[start] != WHITE:
            continue
        # Stack entries: (node, edge_index). edge_index tracks iteration
        # progress through adj[node].
        stack: list[tuple[str, int]] = [(start, 0)]
        color[start] = GRAY
        while stack:
            node, idx = stack[-1]
            targets = adj.get(node, [])
            if idx < len(targets):
                stack[-1] = (node, idx + 1)
                target = targets[idx]
                if color[target] == GRAY:
                    dropped.append((node, target))
                elif color[target] == WHITE:
                    accepted.append((node, target))
                    color[target] = GRAY
                    stack.append((target, 0))
                else:  # BLACK
                    accepted.append((node, target))
            else:
                color[node] = BLACK
                stack.pop()

    return accepted, dropped


class DependencyGraph:
    """Filename-keyed adjacency built from the records' declared dependencies.

    Edges point from a file to the files it requires. Targets that are not
    tracked by the store are kept as edges and reported by ``missing``.
    """

    def __init__(self, edges: dict[str, list[str]], known: set[str]) -> None:
        self._edges = edges
        self._known = known
        self._reverse: dict[str, list[str]] = {}
        for source, targets in edges.items():
            for target in targets:
                self._reverse.setdefault(target, []).append(source)

    @classmethod
    def from_store(cls, store: RecordStore) -> DependencyGraph:
        edges: dict[str, list[str]] = {}
        known: set[str] = set()
        for record in store:
            known.add(record.filename)
            edges[record.filename] = []
            for dep in record.dependencies:
                target = store.get(dep.filename)
                edges[record.filename].append(
                    target.filename if target is not None else dep.filename
                )
        return cls(edges, known)

    def dependencies(self, name: str) -> list[str]:
        return list(self._edges.get(name, []))

    def dependents(self, name: str) -> list[str]:
        return list(self._reverse.get(name, []))

    def closure(self, name: str) -> set[str]:
        """Return ``name`` plus every file it transitively requires.

        Already visited files are skipped, so a cycle is a fixed point
        rather than an error. Untracked targets are not included.
        """
        if name not in self._known:
            return set()
        visited: set[str] = {name}
        stack = [name]
        while stack:
            node = stack.pop()
            for target in self._edges.get(node, []):
                if target in visited or target not in self._known:
                    continue
                visited.add(target)
                stack.append(target)
        return visited

    def missing(self, names: Iterable[str] | None = None) -> list[tuple[str, str]]:
        """Return (dependent, dependency) edges whose target is not tracked."""
        sources = list(names) if names is not None else sorted(self._edges)
        result: list[tuple[str, str]] = []
        for source in sources:
            for target in self._edges.get(source, []):
                if target not in self._known:
                    result.append((source, target))
        return result

    def still_needed(self, name: str, removing: set[str], installed: set[str]) -> list[str]:
        """Return the files that stay installed and still depend on ``name``.

        Files already slated for removal are excluded, so a dependency whose
        only dependents are also being removed is itself removable.
        """
        return sorted(
            dependent
            for dependent in self._reverse.get(name, [])
            if dependent not in removing and dependent in installed
        )

    def removal_order(self, names: Iterable[str]) -> list[str]:
        """Order ``names`` so that dependents are removed before their dependencies.

        Cycles are tolerated: the closing edge is dropped and logged.
        """
        selected = set(names)
        edges = [
            (source, target)
            for source in sorted(selected)
            for target in self._edges.get(source, [])
            if target in selected
        ]
        accepted, dropped = break_cycles(edges)
        for source, target in dropped:
            logger.debug("Dependency cycle: ignoring edge %s -> %s", source, target)

        adj: dict[str, list[str]] = {}
        for source, target in accepted:
            adj.setdefault(source, []).append(target)

        # Reverse post-order of dependent -> dependency edges puts dependents first.
        order: list[str] = []
        done: set[str] = set()
        for start in sorted(selected):
            if start in done:
                continue
            stack: list[tuple[str, int]] = [(start, 0)]
            done.add(start)
            while stack:
                node, idx = stack[-1]
                targets = adj.get(node, [])
                if idx < len(targets):
                    stack[-1] = (node, idx + 1)
                    target = targets[idx]
                    if target not in done:
                        done.add(target)
                        stack.append((target, 0))
                else:
                    order.append(node)
                    stack.pop()
        order.reverse()
        return order
