# steps.py
from __future__ import annotations

import contextlib
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from . import settings
from .actions.registry import ActionRegistry, builtin_registry
from .context import DEADLINE_REASON, ExecutionContext
from .errors import ActionResolutionError, StepFailure, StepTimeout
from .expressions import interpolate, interpolate_all
from .model import ActionReference, Command, JobInstance, Status, StepDefinition, StepResult
from .ui.console import get_console


TOOL_HINTS = {
    "cargo": "Install Rust (https://rustup.rs) or fix PATH.",
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "git": "Install Git or fix PATH.",
    "codecovcli": "Install the codecov CLI (e.g., pip install codecov-cli).",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "ruff": "Install ruff (e.g., pip install ruff).",
    "python": "Install Python or fix PATH.",
}


def tool_hint(cmd: str, exit_code: int | None) -> str | None:
    """Exit code 127 is the shell's "command not found"."""
    if exit_code != 127:
        return None
    parts = cmd.strip().split()
    if not parts:
        return None
    tool = os.path.basename(parts[0])
    return TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    output: str


CommandExecutor = Callable[..., CommandResult]


def _text(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def subprocess_executor(
    cmd: str,
    *,
    cwd: Path,
    env: Dict[str, str],
    timeout: float | None = None,
) -> CommandResult:
    """
    Run one command through the shell. stdout and stderr are captured
    together, in order; bytes that are not valid UTF-8 are replaced.

    The shell runs in its own process group. When `timeout` elapses the
    whole group is killed, so nothing the step forked outlives it, and
    subprocess.TimeoutExpired is raised with the output captured so far.
    """
    full_env = os.environ.copy()
    full_env.update(env)

    proc = subprocess.Popen(
        cmd,
        shell=True,
        cwd=str(cwd),
        env=full_env,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        encoding="utf-8",
        errors="replace",
        start_new_session=True,
    )
    try:
        output, _ = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        # kill the process group so children die too
        with contextlib.suppress(ProcessLookupError):
            os.killpg(proc.pid, signal.SIGKILL)
        output, _ = proc.communicate()
        raise subprocess.TimeoutExpired(cmd, timeout, output=output)
    return CommandResult(exit_code=proc.returncode, output=output or "")


# ----------------------------------------------------------------------
# Step runner
# ----------------------------------------------------------------------

class StepRunner:
    """
    Executes one JobInstance's steps strictly in declared order.

    The first non-success step ends the instance: it becomes Failed (or
    TimedOut) and no later step is invoked or recorded. Cancellation and the
    instance deadline are checked between steps; a step already running is
    always allowed to finish unless its own timeout fires.
    """

    def __init__(
        self,
        registry: ActionRegistry | None = None,
        executor: CommandExecutor | None = None,
        output_limit: int | None = None,
    ):
        self.registry = registry if registry is not None else builtin_registry()
        self.executor = executor or subprocess_executor
        self.output_limit = output_limit if output_limit is not None else settings.OUTPUT_LIMIT

    def run(self, instance: JobInstance, ctx: ExecutionContext) -> JobInstance:
        console = get_console()

        if ctx.cancel.is_set():
            instance.finish(Status.CANCELLED, reason=ctx.cancel.reason or "cancelled")
            return instance
        if ctx.start_expired():
            # queued behind busy workers past the workflow deadline
            instance.finish(Status.CANCELLED, reason=DEADLINE_REASON)
            return instance

        instance.start()
        console.print_instance_start(instance)

        for index, step in enumerate(instance.job.steps):
            if ctx.cancel.is_set():
                instance.finish(Status.CANCELLED, reason=ctx.cancel.reason or "cancelled")
                return instance
            if ctx.expired():
                instance.finish(Status.TIMED_OUT, reason=f"timed out before step {index}")
                return instance

            result = self.run_step(instance, ctx, index, step)
            instance.record(result)

            if result.status == "timed_out":
                instance.finish(Status.TIMED_OUT, reason=f"step '{result.name}' timed out")
                return instance
            if not result.ok:
                instance.finish(Status.FAILED, reason=f"step '{result.name}' failed")
                return instance
            if ctx.expired():
                instance.finish(Status.TIMED_OUT, reason=f"timed out after step '{result.name}'")
                return instance

        instance.finish(Status.SUCCEEDED)
        return instance

    # ---- single step ----

    def run_step(self, instance: JobInstance, ctx: ExecutionContext, index: int, step: StepDefinition) -> StepResult:
        console = get_console()
        contexts = ctx.expression_contexts()
        label = interpolate(step.label, contexts)
        console.print_step(instance.instance_id, label)

        start = time.monotonic()
        outputs: List[str] = []
        status = "success"
        exit_code: Optional[int] = 0
        error: Optional[str] = None
        hint: Optional[str] = None

        try:
            for cmd, cwd, env in self._prepare(step, ctx):
                outputs.append(self._exec(instance, label, cmd, cwd, env, ctx))
        except StepFailure as e:
            status, exit_code = "failure", e.exit_code
            outputs.append(e.output)
            hint = tool_hint(e.cmd, e.exit_code)
        except StepTimeout as e:
            status, exit_code = "timed_out", None
            outputs.append(e.output)
            error = str(e)
        except ActionResolutionError as e:
            status, exit_code = "failure", None
            error = e.message
        except Exception as e:
            # anything a step raises stays inside this instance
            status, exit_code = "failure", None
            error = f"{type(e).__name__}: {e}"

        output = ctx.mask("".join(outputs))
        if self.output_limit and len(output) > self.output_limit:
            output = output[-self.output_limit:]

        result = StepResult(
            index=index,
            name=label,
            status=status,
            exit_code=exit_code,
            output=output,
            duration=time.monotonic() - start,
            error=ctx.mask(error) if error else None,
        )
        if not result.ok:
            console.print_step_failure(instance.instance_id, result, hint=hint)
        return result

    def _prepare(self, step: StepDefinition, ctx: ExecutionContext) -> List[Tuple[str, Path, Dict[str, str]]]:
        """Resolve a step into concrete (command, cwd, env) triples."""
        env = ctx.step_env(step.env)
        contexts = ctx.expression_contexts(env)

        if isinstance(step, Command):
            cwd = self._cwd(ctx, step.working_directory)
            return [(interpolate(step.run, contexts), cwd, env)]

        if isinstance(step, ActionReference):
            spec = self.registry.resolve(step.uses)
            params = interpolate_all(dict(step.params), contexts)
            out = []
            for cmd in spec.fn(params, ctx):
                cmd_env = dict(env)
                cmd_env.update(cmd.env)
                out.append((cmd.run, self._cwd(ctx, cmd.working_directory), cmd_env))
            return out

        raise TypeError(f"Unsupported step type: {type(step).__name__}")

    @staticmethod
    def _cwd(ctx: ExecutionContext, rel: str | None) -> Path:
        return (ctx.workdir / (rel or ".")).resolve()

    def _exec(
        self,
        instance: JobInstance,
        label: str,
        cmd: str,
        cwd: Path,
        env: Dict[str, str],
        ctx: ExecutionContext,
    ) -> str:
        if not cwd.exists():
            raise FileNotFoundError(f"[{instance.instance_id}] step '{label}' cwd not found: {cwd}")

        timeout = ctx.remaining()
        if timeout is not None and timeout <= 0:
            raise StepTimeout(instance=instance.instance_id, step=label, timeout=0.0)

        try:
            res = self.executor(cmd, cwd=cwd, env=env, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise StepTimeout(
                instance=instance.instance_id,
                step=label,
                timeout=float(e.timeout or 0.0),
                output=_text(e.output),
            )

        if res.exit_code != 0:
            raise StepFailure(
                instance=instance.instance_id,
                step=label,
                cmd=cmd,
                exit_code=res.exit_code,
                output=res.output,
            )
        return res.output
