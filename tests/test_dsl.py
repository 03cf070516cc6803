from __future__ import annotations

import pytest

from matrixci import build, job, matrix, sh, uses, wf
from matrixci.model import ActionReference, Command, RefFilter


def test_job_helper_applies_default_cwd_to_run_steps():
    j = job("test", sh("a", "pytest"), sh("b", "ruff", cwd="src"), uses("actions/checkout@v4"), cwd="pkg")
    assert [getattr(s, "working_directory", None) for s in j.steps] == ["pkg", "src", None]


def test_job_requires_steps():
    with pytest.raises(ValueError):
        job("empty")


def test_builder():
    j = (
        build("test")
        .depends_on("lint")
        .named("Test ${{ matrix.py }}")
        .with_matrix(py=["3.11", "3.12"])
        .with_env(DEBUG=1)
        .with_secrets("TOKEN")
        .use_action("actions/checkout@v4")
        .define_step("pytest", "pytest -q")
        .timeout(15)
        .strategy(fail_fast=False, max_parallel=1)
        .build()
    )
    assert j.needs == ["lint"]
    assert j.matrix.axes == {"py": ["3.11", "3.12"]}
    assert j.env == {"DEBUG": "1"}
    assert j.secrets == ["TOKEN"]
    assert isinstance(j.steps[0], ActionReference)
    assert isinstance(j.steps[1], Command)
    assert j.timeout_seconds == 900.0
    assert (j.fail_fast, j.max_parallel) == (False, 1)


def test_wf_trigger_forms():
    one = job("a", sh("s", "true"))
    assert wf("w", one, on="push").trigger.events == {"push": None}
    assert wf("w", one).trigger.kinds == {"push", "pull_request"}
    assert wf("w", one, on={"push": ["main"]}).trigger.events == {"push": RefFilter(branches=["main"])}


def test_wf_rejects_duplicate_jobs():
    with pytest.raises(ValueError):
        wf("w", job("a", sh("s", "true")), job("a", sh("s", "true")))


def test_matrix_helper():
    m = matrix(os=("linux",), include=[{"os": "mac"}])
    assert m.axes == {"os": ["linux"]}
    assert m.include == [{"os": "mac"}]
    assert m.exclude == []
