# model.py
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Status(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL

    @property
    def is_failure(self) -> bool:
        return self in (Status.FAILED, Status.TIMED_OUT)


TERMINAL = frozenset({Status.SUCCEEDED, Status.FAILED, Status.CANCELLED, Status.TIMED_OUT})


# ---------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Command:
    """A `run:` step: an opaque command string handed to the shell."""
    run: str
    name: str | None = None
    id: str | None = None
    working_directory: str | None = None
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        first = self.run.strip().splitlines()[0] if self.run.strip() else ""
        return f"Run {first}"


@dataclass(frozen=True)
class ActionReference:
    """A `uses:` step: reference to a reusable action plus its `with:` parameters."""
    uses: str
    params: Dict[str, Any] = field(default_factory=dict)
    name: str | None = None
    id: str | None = None
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def action(self) -> str:
        return self.uses.split("@", 1)[0]

    @property
    def version(self) -> str | None:
        if "@" not in self.uses:
            return None
        return self.uses.split("@", 1)[1]

    @property
    def label(self) -> str:
        return self.name or self.uses


StepDefinition = Union[Command, ActionReference]


# ---------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Matrix:
    """
    Axis name -> ordered values. Axis order is declaration order and fixes
    instance order. `include`/`exclude` follow the usual CI strategy semantics.
    """
    axes: Dict[str, List[Any]] = field(default_factory=dict)
    include: List[Dict[str, Any]] = field(default_factory=list)
    exclude: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class RefFilter:
    """
    Glob filters for one event kind, as in `on.push.branches`.

    A branch ref is checked against branches/branches_ignore, a tag ref
    against tags/tags_ignore. When only tag filters are given, branch refs
    never match (and the other way round).
    """
    branches: Optional[List[str]] = None
    branches_ignore: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    tags_ignore: Optional[List[str]] = None

    @property
    def empty(self) -> bool:
        return not any((self.branches, self.branches_ignore, self.tags, self.tags_ignore))


@dataclass(frozen=True)
class Trigger:
    """
    Event kind -> optional ref filter.
    `None` means every ref activates the workflow for that kind.
    """
    events: Dict[str, Optional[RefFilter]] = field(default_factory=dict)

    @property
    def kinds(self) -> frozenset[str]:
        return frozenset(self.events)


@dataclass
class JobDefinition:
    """
    A named unit of work. Expanded over `matrix` into one JobInstance per
    axis combination.
    """
    name: str
    steps: List[StepDefinition]
    runs_on: str = "ubuntu-latest"
    display_name: str | None = None
    matrix: Optional[Matrix] = None
    timeout_minutes: float | None = None
    fail_fast: bool = True
    max_parallel: int | None = None
    needs: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    secrets: List[str] = field(default_factory=list)

    @property
    def timeout_seconds(self) -> float | None:
        if self.timeout_minutes is None:
            return None
        return float(self.timeout_minutes) * 60.0


@dataclass
class Workflow:
    name: str
    trigger: Trigger
    jobs: Dict[str, JobDefinition]
    env: Dict[str, str] = field(default_factory=dict)
    source: str | None = None

    def __post_init__(self) -> None:
        for key, job in self.jobs.items():
            if key != job.name:
                raise ValueError(f"Job registered as {key!r} is named {job.name!r}")


# ---------------------------------------------------------------------
# Runtime records
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class StepResult:
    index: int
    name: str
    status: str  # "success" | "failure" | "timed_out"
    exit_code: int | None
    output: str
    duration: float
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "name": self.name,
            "status": self.status,
            "exit_code": self.exit_code,
            "duration": round(self.duration, 3),
            "output": self.output,
            "error": self.error,
        }


class InvalidTransition(RuntimeError):
    pass


class JobInstance:
    """
    One concrete, schedulable execution of a JobDefinition for one axis
    combination.

    Pending -> Running -> {Succeeded, Failed, Cancelled, TimedOut}
    Pending -> Cancelled (never started)

    Terminal states are final: a second terminal transition raises.
    """

    def __init__(
        self,
        job: JobDefinition,
        matrix: Dict[str, Any],
        instance_id: str,
        index: int,
        display_name: str | None = None,
        runs_on: str | None = None,
    ):
        self.job = job
        self.matrix = dict(matrix)
        self.instance_id = instance_id
        self.index = index
        self.display_name = display_name or instance_id
        self.runs_on = runs_on or job.runs_on
        self.status = Status.PENDING
        self.reason: str | None = None
        self.steps: List[StepResult] = []
        self.started_at: datetime | None = None
        self.finished_at: datetime | None = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"JobInstance({self.instance_id!r}, status={self.status.value})"

    @property
    def job_name(self) -> str:
        return self.job.name

    @property
    def terminal(self) -> bool:
        return self.status.terminal

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def start(self) -> None:
        with self._lock:
            if self.status is not Status.PENDING:
                raise InvalidTransition(f"{self.instance_id}: cannot start from {self.status.value}")
            self.status = Status.RUNNING
            self.started_at = now_utc()

    def finish(self, status: Status, reason: str | None = None) -> None:
        if not status.terminal:
            raise InvalidTransition(f"{self.instance_id}: {status.value} is not a terminal state")
        with self._lock:
            if self.status.terminal:
                raise InvalidTransition(
                    f"{self.instance_id}: already {self.status.value}, cannot become {status.value}"
                )
            if self.status is Status.PENDING and status is not Status.CANCELLED:
                raise InvalidTransition(f"{self.instance_id}: pending instance can only be cancelled")
            self.status = status
            self.reason = reason
            self.finished_at = now_utc()

    def record(self, result: StepResult) -> None:
        with self._lock:
            if self.status is not Status.RUNNING:
                raise InvalidTransition(f"{self.instance_id}: cannot record steps while {self.status.value}")
            self.steps.append(result)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job.name,
            "instance": self.instance_id,
            "display_name": self.display_name,
            "runs_on": self.runs_on,
            "matrix": dict(self.matrix),
            "status": self.status.value,
            "reason": self.reason,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration": round(self.duration, 3) if self.duration is not None else None,
            "steps": [s.to_dict() for s in self.steps],
        }
