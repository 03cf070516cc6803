# matrix.py
from __future__ import annotations

import itertools
from typing import Any, Dict, List, Mapping, Optional

from .errors import ConfigurationError
from .expressions import interpolate, render_value
from .model import JobDefinition, JobInstance, Matrix


def _matches(combo: Mapping[str, Any], entry: Mapping[str, Any]) -> bool:
    return all(k in combo and combo[k] == v for k, v in entry.items())


def axis_assignments(job_name: str, matrix: Optional[Matrix]) -> List[Dict[str, Any]]:
    """
    Ordered list of axis assignments for one job.

    The product runs in declared axis order with the first axis varying
    slowest, so the same definition always yields the same sequence.
    """
    if matrix is None:
        return [{}]

    for axis, values in matrix.axes.items():
        if not values:
            raise ConfigurationError(
                f"Matrix axis {axis!r} has no values",
                job=job_name,
            )

    if matrix.axes:
        names = list(matrix.axes)
        combos = [dict(zip(names, vals)) for vals in itertools.product(*matrix.axes.values())]
    else:
        # include-only matrix: every include entry is its own combination
        combos = [] if matrix.include else [{}]

    if matrix.exclude:
        combos = [c for c in combos if not any(_matches(c, ex) for ex in matrix.exclude)]

    base = list(combos)
    for entry in matrix.include:
        original = {k: v for k, v in entry.items() if k in matrix.axes}
        extra = {k: v for k, v in entry.items() if k not in matrix.axes}
        targets = [c for c in base if _matches(c, original)] if matrix.axes else []
        if targets:
            for combo in targets:
                combo.update(extra)
        else:
            combos.append(dict(entry))

    if not combos:
        raise ConfigurationError(
            "Matrix expands to zero instances",
            job=job_name,
        )
    return combos


def instance_id(job_name: str, combo: Mapping[str, Any]) -> str:
    if not combo:
        return job_name
    parts = ", ".join(f"{k}={render_value(v)}" for k, v in combo.items())
    return f"{job_name}[{parts}]"


def expand(job: JobDefinition, github: Mapping[str, Any] | None = None) -> List[JobInstance]:
    """
    Turn one JobDefinition into its ordered JobInstances.

    Raises ConfigurationError for a zero-value axis, an empty expansion, or
    two combinations that collapse onto the same identifier.
    """
    instances: List[JobInstance] = []
    seen: Dict[str, int] = {}

    for idx, combo in enumerate(axis_assignments(job.name, job.matrix)):
        iid = instance_id(job.name, combo)
        if iid in seen:
            raise ConfigurationError(
                f"Matrix produces duplicate instance {iid!r}",
                job=job.name,
                positions=f"{seen[iid]},{idx}",
            )
        seen[iid] = idx

        contexts = {"matrix": combo, "github": dict(github or {}), "env": {}, "secrets": {}}
        display = interpolate(job.display_name, contexts) if job.display_name else iid
        runs_on = interpolate(job.runs_on, contexts)

        instances.append(
            JobInstance(
                job=job,
                matrix=combo,
                instance_id=iid,
                index=idx,
                display_name=display,
                runs_on=runs_on,
            )
        )
    return instances


def expand_all(jobs: Mapping[str, JobDefinition], github: Mapping[str, Any] | None = None) -> Dict[str, List[JobInstance]]:
    """Expand every job of a workflow, keeping job declaration order."""
    return {name: expand(job, github=github) for name, job in jobs.items()}
