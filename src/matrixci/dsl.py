# src/matrixci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Union

from .model import ActionReference, Command, JobDefinition, Matrix, RefFilter, StepDefinition, Trigger, Workflow


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None, env: Optional[Dict[str, str]] = None) -> Command:
    """Create a shell step."""
    return Command(run=cmd, name=name, working_directory=cwd, env=dict(env or {}))


def uses(action: str, *, name: str | None = None, env: Optional[Dict[str, str]] = None, **params: Any) -> ActionReference:
    """
    Create an action step.

        uses("actions-rs/cargo@v1", command="test", args="--release")
    """
    return ActionReference(uses=action, params=params, name=name, env=dict(env or {}))


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

def matrix(
    *,
    include: Optional[List[Dict[str, Any]]] = None,
    exclude: Optional[List[Dict[str, Any]]] = None,
    **axes: Iterable[Any],
) -> Matrix:
    """
    Example:
        matrix(target=["wasm32-unknown-unknown", "wasm32-wasi"])
    """
    return Matrix(
        axes={k: list(v) for k, v in axes.items()},
        include=list(include or []),
        exclude=list(exclude or []),
    )


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: StepDefinition,  # allow: job("x", sh(...), uses(...))
    steps_list: Optional[List[StepDefinition]] = None,  # allow: job("x", steps_list=[...])
    runs_on: str = "ubuntu-latest",
    display_name: str | None = None,
    matrix: Optional[Matrix] = None,
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    secrets: Optional[List[str]] = None,
    timeout_minutes: float | None = None,
    fail_fast: bool = True,
    max_parallel: int | None = None,
    cwd: str | None = None,  # default cwd applied to run steps missing one
) -> JobDefinition:
    steps_final: List[StepDefinition] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [
            replace(s, working_directory=cwd) if isinstance(s, Command) and s.working_directory is None else s
            for s in steps_final
        ]

    return JobDefinition(
        name=name,
        steps=steps_final,
        runs_on=runs_on,
        display_name=display_name,
        matrix=matrix,
        needs=list(needs or []),
        env=dict(env or {}),
        secrets=list(secrets or []),
        timeout_minutes=timeout_minutes,
        fail_fast=fail_fast,
        max_parallel=max_parallel,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._steps: list[StepDefinition] = []
        self._needs: list[str] = []
        self._env: dict[str, str] = {}
        self._secrets: list[str] = []
        self._runs_on = "ubuntu-latest"
        self._display_name: Optional[str] = None
        self._matrix: Optional[Matrix] = None
        self._timeout_minutes: Optional[float] = None
        self._fail_fast = True
        self._max_parallel: Optional[int] = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def runs_on(self, label: str):
        self._runs_on = label
        return self

    def named(self, display_name: str):
        self._display_name = display_name
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(sh(name, run, cwd=cwd))
        return self

    def use_action(self, action: str, name: str | None = None, **params: Any):
        self._steps.append(uses(action, name=name, **params))
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def with_secrets(self, *names: str):
        self._secrets.extend(names)
        return self

    def with_matrix(self, m: Union[Matrix, None] = None, **axes: Iterable[Any]):
        self._matrix = m if m is not None else matrix(**axes)
        return self

    def timeout(self, minutes: float):
        self._timeout_minutes = minutes
        return self

    def strategy(self, *, fail_fast: bool = True, max_parallel: int | None = None):
        self._fail_fast = fail_fast
        self._max_parallel = max_parallel
        return self

    def build(self) -> JobDefinition:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")

        return JobDefinition(
            name=self.name,
            steps=list(self._steps),
            runs_on=self._runs_on,
            display_name=self._display_name,
            matrix=self._matrix,
            needs=list(self._needs),
            env=dict(self._env),
            secrets=list(self._secrets),
            timeout_minutes=self._timeout_minutes,
            fail_fast=self._fail_fast,
            max_parallel=self._max_parallel,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def _ref_filter(value: Union[None, List[str], RefFilter]) -> Optional[RefFilter]:
    """A plain list is a branch filter."""
    if isinstance(value, RefFilter):
        return value
    return RefFilter(branches=list(value)) if value else None


def wf(
    name: str,
    *jobs: JobDefinition,
    on: Union[str, List[str], Dict[str, Union[None, List[str], RefFilter]]] = ("push", "pull_request"),
    env: Optional[Dict[str, str]] = None,
) -> Workflow:
    """
    Workflow definition helper.

    Users can write:
        from matrixci import wf, job, sh

        def workflow():
            return wf(
                "ci",
                job(...),
                job(...),
            )
    """
    if isinstance(on, str):
        events: Dict[str, Optional[RefFilter]] = {on: None}
    elif isinstance(on, dict):
        events = {k: _ref_filter(v) for k, v in on.items()}
    else:
        events = {k: None for k in on}

    by_name: Dict[str, JobDefinition] = {}
    for j in jobs:
        if j.name in by_name:
            raise ValueError(f"Duplicate job name: {j.name}")
        by_name[j.name] = j

    return Workflow(name=name, trigger=Trigger(events=events), jobs=by_name, env=dict(env or {}))
