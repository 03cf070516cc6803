# context.py
from __future__ import annotations

import hashlib
import re
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .expressions import interpolate_env, render_value
from .model import JobInstance, Workflow
from .ui.console import get_console

MASK = "***"
DEADLINE_REASON = "deadline: workflow deadline elapsed"


class CancelToken:
    """Cooperative cancellation signal, checked by the step runner at step boundaries."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self.reason: str | None = None

    def cancel(self, reason: str) -> bool:
        """Returns False if the token was already cancelled (first reason wins)."""
        with self._lock:
            if self._event.is_set():
                return False
            self.reason = reason
            self._event.set()
            return True

    def is_set(self) -> bool:
        return self._event.is_set()


def safe_dirname(instance_id: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9._-]+", "_", instance_id).strip("_") or "job"
    digest = hashlib.sha1(instance_id.encode("utf-8")).hexdigest()[:8]
    return f"{slug}-{digest}"


def matrix_env_name(axis: str) -> str:
    return "MATRIX_" + re.sub(r"[^A-Za-z0-9]+", "_", axis).upper()


@dataclass
class ExecutionContext:
    """
    Everything one JobInstance may see while its steps run.

    Built per instance and never shared: each instance gets its own working
    directory, environment and copy of the secrets it was given.
    """
    instance_id: str
    workdir: Path
    env: Dict[str, str]
    secrets: Dict[str, str] = field(default_factory=dict)
    matrix: Dict[str, Any] = field(default_factory=dict)
    github: Dict[str, Any] = field(default_factory=dict)
    deadline: Optional[float] = None  # time.monotonic() based
    start_deadline: Optional[float] = None  # workflow deadline: the instance may not start after it
    cancel: CancelToken = field(default_factory=CancelToken)

    def expression_contexts(self, env: Mapping[str, str] | None = None) -> Dict[str, Any]:
        return {
            "matrix": self.matrix,
            "secrets": self.secrets,
            "env": dict(env if env is not None else self.env),
            "github": self.github,
        }

    def step_env(self, step_env: Mapping[str, Any]) -> Dict[str, str]:
        env = dict(self.env)
        env.update(interpolate_env(step_env, self.expression_contexts()))
        return env

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def start_expired(self) -> bool:
        return self.start_deadline is not None and time.monotonic() >= self.start_deadline

    def mask(self, text: str) -> str:
        """Replace every secret value in captured output."""
        for value in sorted((v for v in self.secrets.values() if v), key=len, reverse=True):
            text = text.replace(value, MASK)
        return text


def build_context(
    workflow: Workflow,
    instance: JobInstance,
    *,
    work_root: Path,
    github: Mapping[str, Any] | None = None,
    secrets: Mapping[str, str] | None = None,
    extra_env: Mapping[str, str] | None = None,
    timeout: float | None = None,
    start_deadline: float | None = None,
    cancel: CancelToken | None = None,
) -> ExecutionContext:
    """
    Construct the context for one instance.

    Environment layering, lowest first:
      run-level env -> workflow env -> job env -> matrix variables
      -> secrets the job declares -> runner variables
    """
    job = instance.job
    secrets = dict(secrets or {})
    github = dict(github or {})

    workdir = (work_root / safe_dirname(instance.instance_id)).resolve()
    workdir.mkdir(parents=True, exist_ok=True)

    env: Dict[str, str] = {str(k): str(v) for k, v in (extra_env or {}).items()}

    def _contexts() -> Dict[str, Any]:
        return {"matrix": instance.matrix, "secrets": secrets, "env": dict(env), "github": github}

    env.update(interpolate_env(workflow.env, _contexts()))
    env.update(interpolate_env(job.env, _contexts()))

    for axis, value in instance.matrix.items():
        env[matrix_env_name(axis)] = render_value(value)

    for name in job.secrets:
        if name not in secrets:
            get_console().print_warning(f"[{instance.instance_id}] secret {name!r} is not set")
        env[name] = secrets.get(name, "")

    env.update({
        "CI": "true",
        "MATRIXCI": "true",
        "MATRIXCI_WORKFLOW": workflow.name,
        "MATRIXCI_JOB": job.name,
        "MATRIXCI_INSTANCE": instance.instance_id,
        "MATRIXCI_WORKSPACE": str(workdir),
        "GITHUB_WORKSPACE": str(workdir),
        "GITHUB_EVENT_NAME": str(github.get("event_name", "")),
        "GITHUB_REF": str(github.get("ref", "")),
        "GITHUB_SHA": str(github.get("sha", "")),
        "RUNNER_LABEL": instance.runs_on,
    })

    return ExecutionContext(
        instance_id=instance.instance_id,
        workdir=workdir,
        env=env,
        secrets=secrets,
        matrix=dict(instance.matrix),
        github=github,
        deadline=(time.monotonic() + timeout) if timeout is not None else None,
        start_deadline=start_deadline,
        cancel=cancel if cancel is not None else CancelToken(),
    )
