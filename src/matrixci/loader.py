# loader.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml
from pydantic import ValidationError

from . import expressions
from .errors import ConfigurationError
from .model import ActionReference, Command, JobDefinition, Matrix, RefFilter, StepDefinition, Trigger, Workflow
from .schema import JobSchema, StepSchema, WorkflowSchema
from .ui.console import get_console


# ----------------------------------------------------------------------
# Triggers
# ----------------------------------------------------------------------

def _as_str_list(value: Any, where: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigurationError("Expected a string or a list of strings", where=where)


REF_FILTER_KEYS = {
    "branches": "branches",
    "branches-ignore": "branches_ignore",
    "tags": "tags",
    "tags-ignore": "tags_ignore",
}


def parse_ref_filter(kind: str, cfg: Any) -> Optional[RefFilter]:
    if cfg is None:
        return None
    if not isinstance(cfg, dict):
        # e.g. schedule: [{cron: ...}]
        get_console().print_warning(f"on.{kind}: ignoring unsupported configuration")
        return None

    values = {
        attr: _as_str_list(cfg[key], where=f"on.{kind}.{key}") or None
        for key, attr in REF_FILTER_KEYS.items()
        if key in cfg
    }
    for key in ("branches", "tags"):
        if f"{key}-ignore" in cfg and key in cfg:
            raise ConfigurationError(
                f"'{key}' and '{key}-ignore' cannot be combined",
                where=f"on.{kind}",
            )
    # paths, types, ...: nothing in an Event to match them against
    _warn_unsupported(f"on.{kind}", {k: v for k, v in cfg.items() if k not in REF_FILTER_KEYS})

    flt = RefFilter(**values)
    return None if flt.empty else flt


def parse_trigger(on: Any) -> Trigger:
    """
    Accepts the three `on:` forms:
      on: push
      on: [push, pull_request]
      on: {push: {branches: [main], tags: [v*]}, pull_request: null}
    """
    if isinstance(on, str):
        return Trigger(events={on: None})
    if isinstance(on, list):
        return Trigger(events={str(k): None for k in on})
    if isinstance(on, dict):
        return Trigger(events={str(kind): parse_ref_filter(str(kind), cfg) for kind, cfg in on.items()})
    raise ConfigurationError("'on' must be a string, list or mapping")


# ----------------------------------------------------------------------
# Jobs
# ----------------------------------------------------------------------

def parse_matrix(job_name: str, raw: Dict[str, Any]) -> Matrix:
    axes: Dict[str, List[Any]] = {}
    include: List[Dict[str, Any]] = []
    exclude: List[Dict[str, Any]] = []

    for key, value in raw.items():
        if key in ("include", "exclude"):
            if not isinstance(value, list) or not all(isinstance(e, dict) for e in value):
                raise ConfigurationError(f"matrix.{key} must be a list of mappings", job=job_name)
            (include if key == "include" else exclude).extend(dict(e) for e in value)
            continue
        if not isinstance(value, list):
            raise ConfigurationError(f"Matrix axis {key!r} must be a list", job=job_name)
        if not value:
            raise ConfigurationError(f"Matrix axis {key!r} has no values", job=job_name)
        axes[str(key)] = list(value)

    for entry in exclude:
        unknown = [k for k in entry if k not in axes]
        if unknown:
            raise ConfigurationError(
                f"matrix.exclude references unknown axis {unknown[0]!r}",
                job=job_name,
            )
    return Matrix(axes=axes, include=include, exclude=exclude)


def _warn_unsupported(where: str, extra: Optional[Dict[str, Any]]) -> None:
    if extra:
        get_console().print_warning(f"{where}: ignoring unsupported keys {sorted(extra)}")


def parse_step(raw: StepSchema, where: str) -> StepDefinition:
    _warn_unsupported(where, raw.model_extra)
    env = {str(k): v for k, v in raw.env.items()}
    if raw.uses is not None:
        if "@" not in raw.uses or raw.uses.endswith("@"):
            raise ConfigurationError(
                f"Action reference {raw.uses!r} must be pinned as name@version",
                where=where,
            )
        return ActionReference(uses=raw.uses, params=dict(raw.with_), name=raw.name, id=raw.id, env=env)
    return Command(
        run=raw.run or "",
        name=raw.name,
        id=raw.id,
        working_directory=raw.working_directory,
        env=env,
    )


def parse_job(job_id: str, raw: JobSchema) -> JobDefinition:
    _warn_unsupported(f"jobs.{job_id}", raw.model_extra)
    strategy = raw.strategy
    matrix = None
    fail_fast = True
    max_parallel = None
    if strategy is not None:
        _warn_unsupported(f"jobs.{job_id}.strategy", strategy.model_extra)
        fail_fast = strategy.fail_fast
        max_parallel = strategy.max_parallel
        if strategy.matrix is not None:
            matrix = parse_matrix(job_id, strategy.matrix)

    runs_on = raw.runs_on if isinstance(raw.runs_on, str) else ",".join(raw.runs_on)
    steps = [parse_step(s, f"jobs.{job_id}.steps[{i}]") for i, s in enumerate(raw.steps)]

    return JobDefinition(
        name=job_id,
        steps=steps,
        runs_on=runs_on,
        display_name=raw.name,
        matrix=matrix,
        timeout_minutes=raw.timeout_minutes,
        fail_fast=fail_fast,
        max_parallel=max_parallel,
        needs=list(raw.needs),
        env={str(k): v for k, v in raw.env.items()},
        secrets=list(raw.secrets),
    )


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

def matrix_keys(job: JobDefinition) -> Optional[List[str]]:
    if job.matrix is None:
        return None
    keys = list(job.matrix.axes)
    for entry in job.matrix.include:
        keys.extend(k for k in entry if k not in keys)
    return keys


def validate_workflow(workflow: Workflow) -> Workflow:
    """
    Load-time checks that do not need an event: expression references,
    `needs` targets, step shape. Matrix expansion is checked by the
    expander itself.
    """
    expressions.validate(workflow.env, matrix_keys=None, where="env")
    for job in workflow.jobs.values():
        keys = matrix_keys(job)
        where = f"jobs.{job.name}"
        if not job.steps:
            raise ConfigurationError("Job has no steps", job=job.name)
        if job.max_parallel is not None and job.max_parallel < 1:
            raise ConfigurationError("max-parallel must be at least 1", job=job.name)
        for need in job.needs:
            if need not in workflow.jobs:
                raise ConfigurationError(
                    f"Job '{job.name}' needs missing job '{need}'",
                    known=", ".join(sorted(workflow.jobs)),
                )
        expressions.validate(job.display_name, matrix_keys=keys, where=f"{where}.name")
        expressions.validate(job.runs_on, matrix_keys=keys, where=f"{where}.runs-on")
        expressions.validate(job.env, matrix_keys=keys, where=f"{where}.env")
        for i, step in enumerate(job.steps):
            swhere = f"{where}.steps[{i}]"
            expressions.validate(step.name, matrix_keys=keys, where=swhere)
            expressions.validate(step.env, matrix_keys=keys, where=swhere)
            if isinstance(step, Command):
                expressions.validate(step.run, matrix_keys=keys, where=swhere)
            else:
                expressions.validate(step.params, matrix_keys=keys, where=swhere)
    return workflow


# ----------------------------------------------------------------------
# Entry points
# ----------------------------------------------------------------------

def _format_validation_error(e: ValidationError) -> List[str]:
    lines = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        lines.append(f"{loc}: {err.get('msg')}")
    return lines


def parse_workflow(data: Any, *, default_name: str = "workflow", source: str | None = None) -> Workflow:
    """Build a Workflow from an already-parsed YAML document."""
    if not isinstance(data, dict):
        raise ConfigurationError("Workflow document must be a mapping", source=source)

    # YAML 1.1 reads a bare `on` key as boolean True
    if True in data and "on" not in data:
        data = dict(data)
        data["on"] = data.pop(True)

    try:
        raw = WorkflowSchema.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid workflow definition",
            source=source,
            errors="; ".join(_format_validation_error(e)),
        ) from e

    _warn_unsupported("workflow", raw.model_extra)
    jobs = {str(job_id): parse_job(str(job_id), job) for job_id, job in raw.jobs.items()}
    workflow = Workflow(
        name=raw.name or default_name,
        trigger=parse_trigger(raw.on),
        jobs=jobs,
        env={str(k): v for k, v in raw.env.items()},
        source=source,
    )
    return validate_workflow(workflow)


def loads(text: str, *, default_name: str = "workflow", source: str | None = None) -> Workflow:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError("Workflow is not valid YAML", source=source, error=str(e)) from e
    return parse_workflow(data, default_name=default_name, source=source)


def _load_python(wf_path: Path) -> Workflow:
    """
    The file must define either:
      - workflow() -> Workflow
      - WORKFLOW = Workflow(...)
    """
    module_name = f"matrixci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    wf = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        wf = globals_dict["workflow"]()
    elif "WORKFLOW" in globals_dict:
        wf = globals_dict["WORKFLOW"]

    if not isinstance(wf, Workflow):
        raise ConfigurationError(
            "Python workflow must define workflow() -> Workflow or WORKFLOW = Workflow(...)",
            source=str(wf_path),
        )
    if wf.source is None:
        wf.source = str(wf_path)
    return validate_workflow(wf)


def load_workflow(path: str | Path) -> Workflow:
    """Load a workflow from a .yml/.yaml definition or a Python DSL module."""
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix in (".yml", ".yaml"):
        return loads(wf_path.read_text(encoding="utf-8"), default_name=wf_path.stem, source=str(wf_path))
    if wf_path.suffix == ".py":
        return _load_python(wf_path)
    raise ConfigurationError(f"Unsupported workflow file type: {wf_path.name}", source=str(wf_path))


def load_workflows(paths: Iterable[str | Path]) -> List[Workflow]:
    workflows = [load_workflow(p) for p in paths]
    names = [w.name for w in workflows]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ConfigurationError(f"Duplicate workflow names: {dupes}")
    return workflows
