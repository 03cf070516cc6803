# tests/conftest.py
"""
Shared fixtures for the matrixci test-suite.

Engine tests never spawn real processes: `FakeExecutor` stands in for the
shell and answers from a script of command -> outcome rules. Only the CLI
and executor tests go through `subprocess`.
"""
from __future__ import annotations

import subprocess
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from matrixci.context import ExecutionContext
from matrixci.steps import CommandResult, StepRunner
from matrixci.ui.console import Console, set_console

FIXTURES = Path(__file__).parent / "fixtures"


class FakeExecutor:
    """
    Scripted command executor.

    rules: list of (substring, outcome). The first rule whose substring is
    found in the command decides; unmatched commands succeed.
    An outcome is an exit code, or a callable (cmd) -> exit code that may
    sleep, block, or raise subprocess.TimeoutExpired.
    """

    def __init__(self, rules: Optional[List[Tuple[str, object]]] = None, output: str = "ok\n"):
        self.rules = list(rules or [])
        self.output = output
        self.calls: List[Dict] = []
        self._lock = threading.Lock()

    def __call__(self, cmd: str, *, cwd: Path, env: Dict[str, str], timeout: float | None = None) -> CommandResult:
        with self._lock:
            self.calls.append({"cmd": cmd, "cwd": cwd, "env": dict(env), "timeout": timeout})
        for needle, outcome in self.rules:
            if needle in cmd:
                code = outcome(cmd) if callable(outcome) else outcome
                return CommandResult(exit_code=int(code), output=f"{cmd}\n")
        return CommandResult(exit_code=0, output=self.output)

    @property
    def commands(self) -> List[str]:
        with self._lock:
            return [c["cmd"] for c in self.calls]


def sleep_then(seconds: float, code: int = 0) -> Callable[[str], int]:
    def _outcome(cmd: str) -> int:
        time.sleep(seconds)
        return code
    return _outcome


def times_out(cmd: str) -> int:
    raise subprocess.TimeoutExpired(cmd, 1.0, output="partial output\n")


@pytest.fixture(autouse=True)
def quiet_console():
    console = Console(quiet=True)
    set_console(console)
    yield console
    set_console(Console())


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def make_runner():
    def _make(executor: FakeExecutor, **kwargs) -> StepRunner:
        return StepRunner(executor=executor, **kwargs)
    return _make


@pytest.fixture
def make_context(tmp_path):
    def _make(instance, **kwargs) -> ExecutionContext:
        kwargs.setdefault("env", {})
        kwargs.setdefault("matrix", dict(instance.matrix))
        return ExecutionContext(instance_id=instance.instance_id, workdir=tmp_path, **kwargs)
    return _make


@pytest.fixture
def halo2_yaml() -> str:
    return (FIXTURES / "halo2_ci.yml").read_text(encoding="utf-8")
