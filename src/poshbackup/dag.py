# dag.py
from __future__ import annotations

from collections import deque
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .model import DependencyMap, JobDefinition, PlanResult, ValidationMessage


# ----------------------------------------------------------------------
# Build
# ----------------------------------------------------------------------

def build_dependency_map(jobs: Mapping[str, JobDefinition]) -> DependencyMap:
    """
    Build job name -> prerequisite job names from ALL defined jobs.

    Disabled jobs are included so validation sees the whole universe.
    Entries are trimmed, blanks dropped, declaration order kept.
    """
    dep_map: DependencyMap = {}
    for name, job in jobs.items():
        deps: List[str] = []
        for raw in job.depends_on or []:
            dep = str(raw).strip()
            if dep:
                deps.append(dep)
        dep_map[name] = deps
    return dep_map


# ----------------------------------------------------------------------
# Validate
# ----------------------------------------------------------------------

class _Color(Enum):
    WHITE = 0  # not visited
    GRAY = 1   # on the current DFS path
    BLACK = 2  # fully processed


class _Messages:
    """Ordered message list that drops repeated texts."""

    def __init__(self) -> None:
        self.items: List[ValidationMessage] = []
        self._seen: set[str] = set()

    def add(self, kind: str, text: str, advice: str) -> None:
        if text in self._seen:
            return
        self._seen.add(text)
        self.items.append(ValidationMessage(kind=kind, text=text, advice=advice))


def _find_cycles(dep_map: DependencyMap) -> List[List[str]]:
    """
    Three-color DFS with an explicit stack.

    Returns each cycle as a closed path, e.g. ["A", "B", "C", "A"].
    Prerequisites that are not keys of the map are ignored here.
    """
    color: Dict[str, _Color] = {name: _Color.WHITE for name in dep_map}
    cycles: List[List[str]] = []

    for start in dep_map:
        if color[start] is not _Color.WHITE:
            continue

        color[start] = _Color.GRAY
        path: List[str] = [start]
        # (node, iterator over its prerequisites)
        stack: List[Tuple[str, Iterable[str]]] = [(start, iter(dep_map[start]))]

        while stack:
            node, deps = stack[-1]
            nxt: Optional[str] = next(deps, None)

            if nxt is None:
                stack.pop()
                path.pop()
                color[node] = _Color.BLACK
                continue

            if nxt not in color:
                continue

            if color[nxt] is _Color.GRAY:
                idx = path.index(nxt)
                cycles.append(path[idx:] + [nxt])
            elif color[nxt] is _Color.WHITE:
                color[nxt] = _Color.GRAY
                path.append(nxt)
                stack.append((nxt, iter(dep_map[nxt])))

    return cycles


def validate_dependency_map(
    jobs: Mapping[str, JobDefinition],
    dep_map: DependencyMap,
) -> List[ValidationMessage]:
    """
    Check the dependency map against the defined jobs.

    Order of checks:
      1. prerequisites that are not defined jobs   -> error
      2. prerequisites that are defined but disabled -> warning
      3. cycles                                   -> error

    Returns an empty list when the graph is valid. Does not mutate the map.
    """
    if jobs is None or dep_map is None:
        raise TypeError("validate_dependency_map() requires jobs and a dependency map")

    messages = _Messages()
    known = set(jobs)

    for job_name, deps in dep_map.items():
        for dep in deps:
            if dep not in known:
                messages.add(
                    "error",
                    f"Job '{job_name}' depends on undefined job '{dep}'.",
                    f"Check '{job_name}' depends_on for typos, or define a job named '{dep}'. "
                    f"Known jobs: {sorted(known)}",
                )

    for job_name, deps in dep_map.items():
        for dep in deps:
            if dep in known and not jobs[dep].enabled:
                messages.add(
                    "warning",
                    f"Job '{job_name}' depends on disabled job '{dep}'.",
                    f"'{job_name}' will be skipped at run time unless '{dep}' is enabled.",
                )

    for cycle in _find_cycles(dep_map):
        messages.add(
            "error",
            f"Circular dependency detected: {' -> '.join(cycle)}",
            "Remove one of the depends_on entries along this path so the jobs form a chain.",
        )

    return messages.items


def has_errors(messages: Iterable[ValidationMessage]) -> bool:
    return any(m.kind == "error" for m in messages)


# ----------------------------------------------------------------------
# Plan
# ----------------------------------------------------------------------

def _relevant_jobs(requested: List[str], dep_map: DependencyMap) -> Dict[str, None]:
    """Transitive closure of requested jobs over their prerequisites (BFS, discovery order)."""
    relevant: Dict[str, None] = dict.fromkeys(requested)
    q = deque(relevant)
    while q:
        name = q.popleft()
        for dep in dep_map.get(name, []):
            if dep not in relevant:
                relevant[dep] = None
                q.append(dep)
    return relevant


def get_execution_order(requested: Iterable[str], dep_map: DependencyMap) -> PlanResult:
    """
    Expand `requested` to all transitive prerequisites and order them so every
    job comes after all of its prerequisites (Kahn's algorithm).

    Ties are broken FIFO in discovery order: requested jobs first, in the order
    given, then prerequisites as the BFS reaches them.

    Never raises for an ordering problem; returns PlanResult(success=False, ...).
    """
    if dep_map is None or requested is None:
        raise TypeError("get_execution_order() requires requested jobs and a dependency map")

    requested = [str(r).strip() for r in requested if str(r).strip()]

    unknown = [r for r in requested if r not in dep_map]
    if unknown:
        return PlanResult(
            success=False,
            error_message=f"Requested job(s) not defined: {unknown}",
        )

    relevant = _relevant_jobs(requested, dep_map)

    missing = sorted(n for n in relevant if n not in dep_map)
    if missing:
        return PlanResult(
            success=False,
            error_message=f"Prerequisite job(s) not defined: {missing}",
        )

    adj: Dict[str, List[str]] = {n: [] for n in relevant}  # prerequisite -> dependents
    indeg: Dict[str, int] = {n: 0 for n in relevant}

    for name in relevant:
        for dep in dict.fromkeys(dep_map[name]):  # duplicate entries count once
            if dep in relevant:
                adj[dep].append(name)
                indeg[name] += 1

    q = deque(n for n in relevant if indeg[n] == 0)
    ordered: List[str] = []

    while q:
        node = q.popleft()
        ordered.append(node)
        for child in adj[node]:
            indeg[child] -= 1
            if indeg[child] == 0:
                q.append(child)

    if len(ordered) != len(relevant):
        stuck = [n for n in relevant if indeg[n] > 0]
        return PlanResult(
            success=False,
            ordered_jobs=ordered,
            error_message=f"Could not order jobs, circular dependency among: {stuck}",
        )

    return PlanResult(success=True, ordered_jobs=ordered)
