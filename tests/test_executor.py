"""The real shell executor: output decoding, timeouts and process cleanup."""
from __future__ import annotations

import subprocess
import time

import pytest

from matrixci.actions.registry import ActionRegistry
from matrixci.dsl import job, sh
from matrixci.matrix import expand
from matrixci.model import Status
from matrixci.steps import StepRunner, subprocess_executor, tool_hint


def test_output_that_is_not_utf8_is_replaced(tmp_path):
    res = subprocess_executor("printf '\\377\\376 binary'; exit 0", cwd=tmp_path, env={})

    assert res.exit_code == 0
    assert res.output.endswith(" binary")
    assert "�" in res.output


def test_binary_output_does_not_fail_the_step(make_context):
    inst = expand(job("j", sh("emit", "printf '\\377\\376 binary'; exit 0")))[0]

    StepRunner(registry=ActionRegistry()).run(inst, make_context(inst))

    assert inst.status is Status.SUCCEEDED
    assert inst.steps[0].status == "success"


def test_stdout_and_stderr_are_merged(tmp_path):
    res = subprocess_executor("echo out; echo err >&2; exit 3", cwd=tmp_path, env={"X": "1"})

    assert res.exit_code == 3
    assert res.output.splitlines() == ["out", "err"]


def test_timeout_kills_forked_children(tmp_path):
    with pytest.raises(subprocess.TimeoutExpired) as exc:
        subprocess_executor("echo started; (sleep 1; touch late); true", cwd=tmp_path, env={}, timeout=0.4)

    assert "started" in exc.value.output
    time.sleep(1.5)
    assert not (tmp_path / "late").exists()


def test_real_step_timeout_marks_instance_timed_out(make_context):
    inst = expand(job("j", sh("slow", "sleep 5"), sh("after", "true")))[0]

    started = time.monotonic()
    StepRunner(registry=ActionRegistry()).run(inst, make_context(inst, deadline=time.monotonic() + 0.3))

    assert time.monotonic() - started < 4
    assert inst.status is Status.TIMED_OUT
    assert [s.status for s in inst.steps] == ["timed_out"]


def test_tool_hint_only_for_command_not_found():
    assert tool_hint("cargo build", 127).startswith("Install Rust")
    assert tool_hint("cargo build", 101) is None
    assert tool_hint("docker build .", 127) == "Install docker or fix PATH."
