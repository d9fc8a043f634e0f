#!/usr/bin/env python3

"""Dependency graph over resolved declarations and its deterministic ordering."""

import heapq
import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum

from ffibind.diagnostics import DiagnosticKind, Diagnostics
from ffibind.ir import Declaration, DeclKind, DeclRef, walk_type
from ffibind.symbols import SymbolTable

logger = logging.getLogger(__name__)

# C cannot forward-declare these: referencing one needs its definition
NOT_FORWARD_DECLARABLE = {DeclKind.ENUM, DeclKind.TYPE_ALIAS, DeclKind.CONST}


class EdgeKind(str, Enum):
    BY_VALUE = "by-value"
    BY_POINTER = "by-pointer"


@dataclass(frozen=True)
class DependencyEdge:
    source: int  # index of the dependent declaration
    target: int  # index of the declaration it needs
    kind: EdgeKind


def references(decl: Declaration) -> list[tuple[str, bool]]:
    """Declaration names referenced by `decl` with an `indirect` flag, in member order."""
    found = []
    for ty in decl.member_types():
        for t, indirect in walk_type(ty):
            if isinstance(t, DeclRef):
                found.append((t.target, indirect))
    return found


class DependencyGraph:
    """Arena of emittable declarations; edges are index pairs.

    Building the graph also excludes every declaration that refers to an
    already excluded one, and every member of a by-value cycle.
    """

    def __init__(self, symbols: SymbolTable, diagnostics: Diagnostics):
        self.symbols = symbols
        self.diagnostics = diagnostics
        self.nodes: list[Declaration] = []
        self.index: dict[str, int] = {}
        self.edges: list[DependencyEdge] = []
        self.cycles: list[list[str]] = []

    def build(self) -> "DependencyGraph":
        self._propagate_exclusions()
        self._build_arena()
        self._detect_cycles()
        if self.cycles:
            self._propagate_exclusions()
            self._build_arena()
        logger.debug("dependency graph: %d nodes, %d edges", len(self.nodes), len(self.edges))
        return self

    def _candidates(self) -> list[Declaration]:
        return [d for d in self.symbols.declarations() if d.emittable and not self.symbols.is_skipped(d)]

    def _propagate_exclusions(self) -> None:
        changed = True
        while changed:
            changed = False
            for decl in self._candidates():
                for name, _ in references(decl):
                    kind = self.symbols.exclusion(name)
                    if kind is None:
                        continue
                    self.diagnostics.error(
                        kind,
                        f"`{decl.qualified_name}` depends on `{name}`, which cannot be emitted",
                        declarations=[decl.qualified_name, name],
                        location=decl.location,
                    )
                    self.symbols.exclude(decl.qualified_name, kind)
                    changed = True
                    break

    def _build_arena(self) -> None:
        self.nodes = self._candidates()
        self.index = {d.qualified_name: i for i, d in enumerate(self.nodes)}
        kinds: dict[tuple[int, int], EdgeKind] = {}
        for source, decl in enumerate(self.nodes):
            for name, indirect in references(decl):
                target = self.index.get(name)
                if target is None:
                    # skipped declarations are provided by the user
                    continue
                by_value = not indirect or self.nodes[target].kind in NOT_FORWARD_DECLARABLE
                if source == target and not by_value:
                    continue
                key = (source, target)
                if by_value:
                    kinds[key] = EdgeKind.BY_VALUE
                else:
                    kinds.setdefault(key, EdgeKind.BY_POINTER)
        self.edges = [DependencyEdge(s, t, k) for (s, t), k in kinds.items()]

    def by_value_dependencies(self) -> dict[int, list[int]]:
        adj_list = defaultdict(list)
        for edge in self.edges:
            if edge.kind == EdgeKind.BY_VALUE:
                adj_list[edge.source].append(edge.target)
        return adj_list

    def _detect_cycles(self) -> None:
        """Three-color DFS over by-value edges; every cycle found is reported once."""
        WHITE, GRAY, BLACK = 0, 1, 2
        color = [WHITE] * len(self.nodes)
        adj_list = self.by_value_dependencies()
        stack: list[int] = []
        seen: set[frozenset[int]] = set()

        def visit(node: int):
            color[node] = GRAY
            stack.append(node)
            for dep in sorted(adj_list[node]):
                if color[dep] == GRAY:
                    members = stack[stack.index(dep) :]
                    key = frozenset(members)
                    if key not in seen:
                        seen.add(key)
                        self._report_cycle(members)
                elif color[dep] == WHITE:
                    visit(dep)
            stack.pop()
            color[node] = BLACK

        for node in range(len(self.nodes)):
            if color[node] == WHITE:
                visit(node)

    def _report_cycle(self, members: list[int]) -> None:
        names = [self.nodes[i].qualified_name for i in sorted(members, key=lambda i: self.nodes[i].order)]
        self.cycles.append(names)
        self.diagnostics.error(
            DiagnosticKind.CYCLIC_LAYOUT,
            "declarations embed each other by value: " + " -> ".join(names + names[:1]),
            declarations=names,
            location=self.nodes[members[0]].location,
        )
        for name in names:
            self.symbols.exclude(name, DiagnosticKind.CYCLIC_LAYOUT)

    def topological_order(self) -> list[Declaration]:
        """Kahn's algorithm; ready declarations leave in source order."""
        adj_list = defaultdict(list)
        in_degree = [0] * len(self.nodes)
        for source, deps in self.by_value_dependencies().items():
            for dep in deps:
                if dep != source:
                    adj_list[dep].append(source)
                    in_degree[source] += 1

        ready = [(self.nodes[i].order, i) for i, degree in enumerate(in_degree) if degree == 0]
        heapq.heapify(ready)
        result = []
        while ready:
            _, current = heapq.heappop(ready)
            result.append(self.nodes[current])
            for neighbor in adj_list[current]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    heapq.heappush(ready, (self.nodes[neighbor].order, neighbor))

        if len(result) != len(self.nodes):
            # cycles are excluded while building, so this is a logic error
            raise RuntimeError("dependency graph still contains a by-value cycle")
        return result
