# report.py
from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .model import JobInstance, Status, StepResult, now_utc


@dataclass(frozen=True)
class InstanceRecord:
    """Terminal, immutable snapshot of one JobInstance."""
    job: str
    instance_id: str
    index: int
    display_name: str
    runs_on: str
    matrix: Tuple[Tuple[str, Any], ...]
    status: Status
    reason: Optional[str]
    steps: Tuple[StepResult, ...]
    started_at: Optional[datetime]
    finished_at: Optional[datetime]

    @classmethod
    def from_instance(cls, inst: JobInstance) -> "InstanceRecord":
        if not inst.terminal:
            raise ValueError(f"{inst.instance_id} is not terminal ({inst.status.value})")
        return cls(
            job=inst.job.name,
            instance_id=inst.instance_id,
            index=inst.index,
            display_name=inst.display_name,
            runs_on=inst.runs_on,
            matrix=tuple(inst.matrix.items()),
            status=inst.status,
            reason=inst.reason,
            steps=tuple(inst.steps),
            started_at=inst.started_at,
            finished_at=inst.finished_at,
        )

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
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


def verdict_of(statuses: Iterable[Status]) -> Status:
    """
    Failed if anything Failed or TimedOut, else Cancelled if anything was
    Cancelled, else Succeeded.
    """
    statuses = list(statuses)
    if any(not s.terminal for s in statuses):
        raise ValueError("verdict requested before every instance is terminal")
    if any(s.is_failure for s in statuses):
        return Status.FAILED
    if any(s is Status.CANCELLED for s in statuses):
        return Status.CANCELLED
    return Status.SUCCEEDED


@dataclass(frozen=True)
class RunReport:
    workflow: str
    event: Dict[str, Any]
    verdict: Status
    instances: Tuple[InstanceRecord, ...]
    started_at: datetime
    finished_at: datetime
    run_id: str = ""

    @property
    def exit_code(self) -> int:
        return 0 if self.verdict is Status.SUCCEEDED else 1

    @property
    def succeeded(self) -> bool:
        return self.verdict is Status.SUCCEEDED

    def get(self, instance_id: str) -> InstanceRecord:
        for rec in self.instances:
            if rec.instance_id == instance_id:
                return rec
        raise KeyError(instance_id)

    def by_job(self, job: str) -> List[InstanceRecord]:
        return [r for r in self.instances if r.job == job]

    def summary(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for rec in self.instances:
            counts[rec.status.value] = counts.get(rec.status.value, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "workflow": self.workflow,
            "event": dict(self.event),
            "verdict": self.verdict.value,
            "exit_code": self.exit_code,
            "summary": self.summary(),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "instances": [r.to_dict() for r in self.instances],
        }


class DuplicateRecord(RuntimeError):
    pass


class ReportCollector:
    """
    Append-only collection of terminal instance records, shared by every
    worker thread of one run. Each instance contributes exactly one record.
    """

    def __init__(self, workflow: str, event: Dict[str, Any] | None = None, job_order: Iterable[str] = (), run_id: str = ""):
        self.workflow = workflow
        self.event = dict(event or {})
        self.run_id = run_id
        self._job_order = {name: i for i, name in enumerate(job_order)}
        self._records: Dict[str, InstanceRecord] = {}
        self._lock = threading.Lock()
        self.started_at = now_utc()

    def add(self, inst: JobInstance) -> InstanceRecord:
        rec = InstanceRecord.from_instance(inst)
        with self._lock:
            if rec.instance_id in self._records:
                raise DuplicateRecord(f"{rec.instance_id} already reported")
            self._records[rec.instance_id] = rec
        return rec

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, instance_id: str) -> bool:
        with self._lock:
            return instance_id in self._records

    def _sort_key(self, rec: InstanceRecord):
        return (self._job_order.get(rec.job, len(self._job_order)), rec.job, rec.index)

    def build(self) -> RunReport:
        """Freeze the records. Ordering never depends on completion order."""
        with self._lock:
            records = sorted(self._records.values(), key=self._sort_key)
        return RunReport(
            workflow=self.workflow,
            event=self.event,
            verdict=verdict_of(r.status for r in records),
            instances=tuple(records),
            started_at=self.started_at,
            finished_at=now_utc(),
            run_id=self.run_id,
        )


def aggregate(
    instances: Iterable[JobInstance],
    *,
    workflow: str = "",
    event: Dict[str, Any] | None = None,
    job_order: Iterable[str] = (),
) -> RunReport:
    """Build a RunReport from already-terminal instances."""
    collector = ReportCollector(workflow, event=event, job_order=job_order)
    for inst in instances:
        collector.add(inst)
    return collector.build()


def write_report(reports: Iterable[RunReport], path: str | Path) -> Path:
    """Write one or more run reports as a JSON document."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    reports = list(reports)
    doc = {
        "verdict": verdict_of(r.verdict for r in reports).value if reports else Status.SUCCEEDED.value,
        "runs": [r.to_dict() for r in reports],
    }
    out.write_text(json.dumps(doc, indent=2, sort_keys=False) + "\n", encoding="utf-8")
    return out
