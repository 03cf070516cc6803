# cli.py
from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Tuple

import click

from . import settings
from .errors import ConfigurationError
from .git_facts.git import get_current_ref, head_sha, is_dirty, repo_root
from .loader import load_workflows
from .model import Workflow
from .report import write_report
from .runner import FAIL_FAST_SCOPES, plan as plan_workflow, run_workflow
from .triggers import Event, evaluate
from .ui.console import Console, get_console, set_console


def find_workflow_files(root: Path | None = None) -> list[Path]:
    """
    Find all workflow files under `root` (defaults to the current directory).

    Looks in the workflow directory for *.yml / *.yaml and at the top level
    for *_workflow.py DSL modules.
    """
    root = root or Path(".")
    workflow_files: list[Path] = []

    wf_dir = root / settings.WORKFLOW_DIR
    if wf_dir.is_dir():
        for pattern in ("*.yml", "*.yaml"):
            workflow_files.extend(wf_dir.glob(pattern))

    workflow_files.extend(root.glob("*_workflow.py"))
    return sorted(workflow_files)


def discover_workflows(workflow_args: Tuple[str, ...]) -> List[Path]:
    """
    Resolve --workflow arguments, or discover workflow files when none are given.

    Raises:
        SystemExit: If a named workflow is missing or nothing can be found
    """
    console = get_console()

    if workflow_args:
        paths = []
        for arg in workflow_args:
            workflow_path = Path(arg)
            if not workflow_path.exists():
                console.print_error(
                    "Workflow file not found",
                    f"Could not find workflow file: {arg}",
                    suggestion="Specify a different path:\n  matrixci run --workflow .github/workflows/ci.yml",
                )
                sys.exit(1)
            paths.append(workflow_path)
        return paths

    workflow_files = find_workflow_files()
    if not workflow_files:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                f"  {settings.WORKFLOW_DIR}/*.yml",
                f"  {settings.WORKFLOW_DIR}/*.yaml",
                "  *_workflow.py",
            ],
            suggestion="Specify a workflow explicitly:\n  matrixci run --workflow ci.yml",
        )
        sys.exit(1)
    return workflow_files


def _load(workflow_args: Tuple[str, ...]) -> List[Workflow]:
    console = get_console()
    paths = discover_workflows(workflow_args)
    try:
        workflows = load_workflows(paths)
    except ConfigurationError as e:
        console.print_error(
            "Invalid workflow",
            e.message,
            details=[f"{k}: {v}" for k, v in e.details.items()],
        )
        sys.exit(1)
    for wf in workflows:
        console.print_debug(f"Loaded {wf.name} ({len(wf.jobs)} job(s)) from {wf.source}")
    return workflows


def _git_or_default(fn, default: str) -> str:
    try:
        return fn()
    except (subprocess.CalledProcessError, FileNotFoundError):
        return default


def _build_event(kind: str, ref: str | None, sha: str | None) -> Event:
    return Event(
        kind=kind,
        ref=ref if ref is not None else _git_or_default(get_current_ref, ""),
        sha=sha if sha is not None else _git_or_default(head_sha, ""),
    )


def _parse_pairs(values: Tuple[str, ...], option: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not key:
            raise click.BadParameter(f"expected NAME=VALUE, got {item!r}", param_hint=option)
        if not sep:
            if option == "--secret":
                # NAME alone: take the value from the calling environment
                if key not in os.environ:
                    get_console().print_warning(f"secret {key!r} not found in environment")
                    continue
                value = os.environ[key]
            else:
                raise click.BadParameter(f"expected NAME=VALUE, got {item!r}", param_hint=option)
        out[key] = value
    return out


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and full step output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Only print failures and results")
@click.pass_context
def cli(ctx, debug, quiet):
    """matrixci: run CI workflow definitions locally."""
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", "workflows", multiple=True, help="Workflow file (repeatable; default: discover)")
@click.option("--event", default="push", show_default=True, help="Event kind to simulate")
@click.option("--ref", default=None, help="Git ref for the event (default: current branch)")
@click.option("--sha", default=None, help="Commit for the event (default: HEAD)")
@click.option("--workers", default=None, type=int, help="Number of parallel instances")
@click.option("--work-dir", default=None, help="Root for per-instance workspaces")
@click.option("--secret", "secrets", multiple=True, help="NAME=VALUE, or NAME to read it from the environment")
@click.option("--env", "env", multiple=True, help="NAME=VALUE passed to every instance")
@click.option(
    "--fail-fast-scope",
    type=click.Choice(FAIL_FAST_SCOPES),
    default="job",
    show_default=True,
    help="What a fail-fast failure cancels: its own matrix, or the whole run",
)
@click.option("--deadline-minutes", default=None, type=float, help="Start no instance after this many minutes")
@click.option("--report", "report_path", default=None, help="Write a JSON run report to this file")
@click.pass_context
def run(ctx, workflows, event, ref, sha, workers, work_dir, secrets, env, fail_fast_scope, deadline_minutes, report_path):
    """Run every workflow the event triggers."""
    console = get_console()
    loaded = _load(workflows)

    secret_map = _parse_pairs(secrets, "--secret")
    env_map = _parse_pairs(env, "--env")
    ev = _build_event(event, ref, sha)

    try:
        repository = str(repo_root())
        if is_dirty():
            console.print_warning("working tree has uncommitted changes; checkout steps use committed state")
    except (subprocess.CalledProcessError, FileNotFoundError):
        repository = str(Path(".").resolve())

    activated = evaluate(ev, loaded)
    if not activated:
        console.print_info(f"No workflow is triggered by '{ev.kind}'.")
        return

    reports = []
    try:
        # expand everything up front: a bad matrix must fail before any step runs
        for wf in loaded:
            if wf.name in activated:
                plan_workflow(wf, ev)

        for wf in loaded:
            if wf.name not in activated:
                console.print_debug(f"{wf.name}: not triggered by {ev.kind}")
                continue
            reports.append(
                run_workflow(
                    wf,
                    ev,
                    work_dir=work_dir or settings.WORK_DIR,
                    max_workers=workers,
                    secrets=secret_map,
                    env=env_map,
                    fail_fast_scope=fail_fast_scope,
                    deadline=deadline_minutes * 60 if deadline_minutes is not None else None,
                    repository=repository,
                )
            )
    except ConfigurationError as e:
        console.print_error(
            "Invalid workflow",
            e.message,
            details=[f"{k}: {v}" for k, v in e.details.items()],
        )
        sys.exit(1)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)

    if report_path:
        out = write_report(reports, report_path)
        console.print_info(f"Report written to {out}")

    if any(not r.succeeded for r in reports):
        sys.exit(1)


@cli.command()
@click.option("--workflow", "workflows", multiple=True, help="Workflow file (repeatable; default: discover)")
@click.option("--event", default="push", show_default=True, help="Event kind to simulate")
@click.option("--ref", default=None, help="Git ref for the event (default: current branch)")
@click.pass_context
def plan(ctx, workflows, event, ref):
    """Show the job instances an event would run, without running them."""
    console = get_console()
    loaded = _load(workflows)
    ev = _build_event(event, ref, "")

    activated = evaluate(ev, loaded)
    try:
        for wf in loaded:
            if wf.name not in activated:
                console.print_plan_skipped(wf.name, f"not triggered by {ev.kind}")
                continue
            expanded = plan_workflow(wf, ev)
            console.print_plan(wf.name, [inst for insts in expanded.values() for inst in insts])
    except ConfigurationError as e:
        console.print_error(
            "Invalid workflow",
            e.message,
            details=[f"{k}: {v}" for k, v in e.details.items()],
        )
        sys.exit(1)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
