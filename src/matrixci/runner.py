# runner.py
from __future__ import annotations

import time
import uuid
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Deque, Dict, List, Mapping, Optional, Tuple

from . import settings
from .context import DEADLINE_REASON, CancelToken, build_context
from .dag import build_dag, topo_levels
from .errors import ConfigurationError
from .matrix import expand_all
from .model import JobInstance, Status, Workflow
from .report import ReportCollector, RunReport
from .steps import StepRunner
from .triggers import Event
from .ui.console import get_console

FAIL_FAST_SCOPES = ("job", "workflow")


def plan(workflow: Workflow, event: Event | None = None) -> Dict[str, List[JobInstance]]:
    """
    Validate the job graph and expand every job.

    Raises ConfigurationError for cycles, unknown `needs` and bad matrices;
    nothing has started when it does.
    """
    adj, indeg = build_dag(workflow.jobs.values())
    topo_levels(adj, indeg)
    github = event.github_context() if event is not None else {}
    return expand_all(workflow.jobs, github=github)


class Scheduler:
    """
    Runs the instances of one workflow activation.

    Jobs form a DAG through `needs`; a job becomes ready once every job it
    needs has finished. Instances of ready jobs are submitted to a thread
    pool, one unit per instance. All bookkeeping happens on the calling
    thread; workers only run steps and signal through cancel tokens.
    """

    def __init__(
        self,
        workflow: Workflow,
        event: Event | None = None,
        *,
        step_runner: StepRunner | None = None,
        work_dir: str | Path | None = None,
        max_workers: int | None = None,
        secrets: Mapping[str, str] | None = None,
        env: Mapping[str, str] | None = None,
        fail_fast_scope: str = "job",
        deadline: float | None = None,
        repository: str | None = None,
        run_id: str | None = None,
    ):
        if fail_fast_scope not in FAIL_FAST_SCOPES:
            raise ConfigurationError(
                f"Unknown fail-fast scope {fail_fast_scope!r}",
                allowed=", ".join(FAIL_FAST_SCOPES),
            )
        self.workflow = workflow
        self.event = event or Event(kind="push")
        self.step_runner = step_runner or StepRunner()
        self.max_workers = max(1, max_workers or settings.NUM_WORKERS)
        self.secrets = dict(secrets or {})
        self.env = dict(env or {})
        self.fail_fast_scope = fail_fast_scope
        self.deadline = deadline
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.work_root = Path(work_dir or settings.WORK_DIR) / self.run_id

        self.github = self.event.github_context()
        if repository:
            self.github.setdefault("repository", repository)

    # ---- helpers ----

    def _event_dict(self) -> Dict[str, str]:
        return {"kind": self.event.kind, "ref": self.event.ref, "sha": self.event.sha}

    def _execute(self, inst: JobInstance, token: CancelToken, deadline_at: float | None = None) -> JobInstance:
        ctx = build_context(
            self.workflow,
            inst,
            work_root=self.work_root,
            github=self.github,
            secrets=self.secrets,
            extra_env=self.env,
            timeout=inst.job.timeout_seconds,
            start_deadline=deadline_at,
            cancel=token,
        )
        return self.step_runner.run(inst, ctx)

    # ---- main loop ----

    def run(self) -> RunReport:
        console = get_console()
        workflow = self.workflow

        adj, indeg = build_dag(workflow.jobs.values())
        topo_levels(adj, indeg)
        instances = expand_all(workflow.jobs, github=self.github)

        total = sum(len(v) for v in instances.values())
        console.print_run_started(
            repository=str(self.github.get("repository") or "."),
            workflow=workflow.name,
            event=self.event.kind,
            instance_count=total,
        )

        collector = ReportCollector(
            workflow.name,
            event=self._event_dict(),
            job_order=list(workflow.jobs),
            run_id=self.run_id,
        )
        tokens: Dict[str, CancelToken] = {name: CancelToken() for name in workflow.jobs}
        remaining: Dict[str, int] = {name: len(insts) for name, insts in instances.items()}
        running: Dict[str, int] = {name: 0 for name in workflow.jobs}
        job_ok: Dict[str, bool] = {}
        indeg = dict(indeg)

        deadline_at = time.monotonic() + self.deadline if self.deadline is not None else None
        ready: Deque[str] = deque(name for name in workflow.jobs if indeg[name] == 0)
        queued: Dict[str, Deque[JobInstance]] = {}
        in_flight: Dict[Future, Tuple[str, JobInstance]] = {}

        def cancel_all(reason: str) -> None:
            for tok in tokens.values():
                tok.cancel(reason)

        def complete(name: str, inst: JobInstance) -> None:
            console.print_instance_finished(inst)
            collector.add(inst)
            remaining[name] -= 1

            if inst.status.is_failure and workflow.jobs[name].fail_fast:
                reason = f"fail-fast: {inst.instance_id} {inst.status.value}"
                if self.fail_fast_scope == "workflow":
                    cancel_all(reason)
                else:
                    tokens[name].cancel(reason)

            if remaining[name] == 0:
                job_ok[name] = all(i.status is Status.SUCCEEDED for i in instances[name])
                for child in sorted(adj[name]):
                    indeg[child] -= 1
                    if indeg[child] == 0:
                        ready.append(child)

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while ready or in_flight or any(queued.values()):
                # activate jobs whose needs are all finished
                while ready:
                    name = ready.popleft()
                    job = workflow.jobs[name]
                    failed_needs = [n for n in job.needs if not job_ok.get(n, False)]
                    if failed_needs:
                        tokens[name].cancel(f"needs: {', '.join(failed_needs)} did not succeed")
                    queued[name] = deque(instances[name])

                # submit whatever the limits allow
                for name, q in queued.items():
                    job = workflow.jobs[name]
                    token = tokens[name]
                    while q and (token.is_set() or job.max_parallel is None or running[name] < job.max_parallel):
                        inst = q.popleft()
                        if token.is_set():
                            inst.finish(Status.CANCELLED, reason=token.reason)
                            complete(name, inst)
                            continue
                        if deadline_at is not None and time.monotonic() >= deadline_at:
                            inst.finish(Status.CANCELLED, reason=DEADLINE_REASON)
                            complete(name, inst)
                            continue
                        fut = pool.submit(self._execute, inst, token, deadline_at)
                        in_flight[fut] = (name, inst)
                        running[name] += 1

                if not in_flight:
                    continue

                # wait for one completion, then loop to schedule newly-ready work
                fut = next(as_completed(list(in_flight.keys())))
                name, inst = in_flight.pop(fut)
                running[name] -= 1

                try:
                    fut.result()
                except Exception as e:
                    # failure outside a step (e.g. the workspace could not be created)
                    console.print_exception(e)
                    if inst.status is Status.PENDING:
                        inst.start()
                    if not inst.terminal:
                        inst.finish(Status.FAILED, reason=f"{type(e).__name__}: {e}")

                complete(name, inst)

        report = collector.build()
        console.print_results(report)
        return report


def run_workflow(workflow: Workflow, event: Event | None = None, **kwargs) -> RunReport:
    """Run one workflow activation and return its report."""
    return Scheduler(workflow, event, **kwargs).run()
