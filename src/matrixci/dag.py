# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Set, Tuple

from .errors import ConfigurationError
from .model import JobDefinition


def build_dag(jobs: Iterable[JobDefinition]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from job definitions.

    Requires:
      - job.name: str (unique)
      - job.needs: names of jobs that must finish successfully BEFORE this job

    Returns (adj, indeg) where adj maps a job to the jobs that need it.
    A workflow with no `needs` at all is a DAG with every node at depth 0.
    """
    jobs = list(jobs)
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ConfigurationError(f"Duplicate job names found: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for job in jobs:
        for need in job.needs or []:
            if need not in name_set:
                raise ConfigurationError(
                    f"Job '{job.name}' needs missing job '{need}'",
                    known=", ".join(sorted(name_set)),
                )
            if need == job.name:
                raise ConfigurationError(f"Job '{job.name}' needs itself")
            # Edge need -> job.name (need must finish before job)
            if job.name not in adj[need]:
                adj[need].add(job.name)
                indeg[job.name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Every job in a level can run in parallel.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted([n for n, d in indeg.items() if d == 0]))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        remaining = sorted([n for n, d in indeg.items() if d > 0])
        raise ConfigurationError(f"Job dependencies contain a cycle. Stuck jobs: {remaining}")

    return levels

