"""Parsing YAML / Python workflow definitions into the workflow model."""
from __future__ import annotations

import textwrap

import pytest

from matrixci.errors import ConfigurationError
from matrixci.loader import load_workflow, loads
from matrixci.matrix import expand
from matrixci.model import ActionReference, Command, RefFilter


def _yaml(text: str):
    return loads(textwrap.dedent(text), default_name="test")


def test_halo2_workflow_shape(halo2_yaml):
    wf = loads(halo2_yaml, default_name="ci")

    assert wf.name == "CI checks"
    assert wf.trigger.kinds == {"push", "pull_request"}
    assert list(wf.jobs) == ["test", "build", "bitrot", "codecov", "doc-links", "fmt"]
    # no job declares a dependency
    assert all(not j.needs for j in wf.jobs.values())

    assert wf.jobs["fmt"].timeout_minutes == 30
    assert wf.jobs["test"].matrix.axes == {"os": ["ubuntu-latest"]}
    assert wf.jobs["build"].matrix.axes == {"target": ["wasm32-unknown-unknown", "wasm32-wasi"]}
    assert wf.jobs["bitrot"].matrix is None


def test_halo2_expansion(halo2_yaml):
    wf = loads(halo2_yaml)
    test = expand(wf.jobs["test"])
    build = expand(wf.jobs["build"])

    assert len(test) == 1
    assert test[0].display_name == "Test on ubuntu-latest"
    assert test[0].runs_on == "ubuntu-latest"
    assert [i.instance_id for i in build] == [
        "build[target=wasm32-unknown-unknown]",
        "build[target=wasm32-wasi]",
    ]


def test_halo2_steps(halo2_yaml):
    wf = loads(halo2_yaml)
    steps = wf.jobs["build"].steps

    assert isinstance(steps[0], ActionReference)
    assert steps[0].action == "actions/checkout"
    assert steps[0].version == "v2"
    assert steps[1].params == {"override": False}
    assert isinstance(steps[2], Command)
    assert steps[2].run == "rustup target add ${{ matrix.target }}"

    upload = wf.jobs["codecov"].steps[-1]
    assert upload.uses == "codecov/codecov-action@v1"
    assert upload.params == {"token": "${{secrets.CODECOV_TOKEN}}"}


def test_on_single_string_and_mapping_forms():
    wf = _yaml(
        """
        on: push
        jobs:
          a:
            steps: [{run: "true"}]
        """
    )
    assert wf.trigger.events == {"push": None}

    wf = _yaml(
        """
        on:
          push:
            branches: [main]
          pull_request:
        jobs:
          a:
            steps: [{run: "true"}]
        """
    )
    assert wf.trigger.events == {"push": RefFilter(branches=["main"]), "pull_request": None}


def test_strategy_options():
    wf = _yaml(
        """
        on: [push]
        jobs:
          a:
            needs: b
            strategy:
              fail-fast: false
              max-parallel: 2
              matrix:
                x: [1, 2, 3]
                exclude:
                  - x: 2
            steps:
              - run: echo ${{ matrix.x }}
          b:
            steps: [{run: "true"}]
        """
    )
    a = wf.jobs["a"]
    assert a.fail_fast is False
    assert a.max_parallel == 2
    assert a.needs == ["b"]
    assert [i.instance_id for i in expand(a)] == ["a[x=1]", "a[x=3]"]


@pytest.mark.parametrize(
    "body",
    [
        # zero-value axis
        """
        on: [push]
        jobs:
          a:
            strategy: {matrix: {os: []}}
            steps: [{run: "true"}]
        """,
        # run and uses on one step
        """
        on: [push]
        jobs:
          a:
            steps: [{run: "true", uses: "actions/checkout@v2"}]
        """,
        # neither run nor uses
        """
        on: [push]
        jobs:
          a:
            steps: [{name: nothing}]
        """,
        # unpinned action
        """
        on: [push]
        jobs:
          a:
            steps: [{uses: "actions/checkout"}]
        """,
        # no steps
        """
        on: [push]
        jobs:
          a:
            steps: []
        """,
        # unknown matrix key
        """
        on: [push]
        jobs:
          a:
            strategy: {matrix: {os: [linux]}}
            steps: [{run: "echo ${{ matrix.target }}"}]
        """,
        # matrix reference without a matrix
        """
        on: [push]
        jobs:
          a:
            steps: [{run: "echo ${{ matrix.os }}"}]
        """,
        # unknown context
        """
        on: [push]
        jobs:
          a:
            steps: [{run: "echo ${{ vars.X }}"}]
        """,
        # needs a missing job
        """
        on: [push]
        jobs:
          a:
            needs: [ghost]
            steps: [{run: "true"}]
        """,
        # missing trigger
        """
        jobs:
          a:
            steps: [{run: "true"}]
        """,
        # branches with branches-ignore
        """
        on:
          push: {branches: [main], branches-ignore: [dev]}
        jobs:
          a:
            steps: [{run: "true"}]
        """,
        # axis not a list
        """
        on: [push]
        jobs:
          a:
            strategy: {matrix: {os: linux}}
            steps: [{run: "true"}]
        """,
    ],
)
def test_malformed_definitions_raise_configuration_error(body):
    with pytest.raises(ConfigurationError):
        _yaml(body)


def test_invalid_yaml_raises_configuration_error():
    with pytest.raises(ConfigurationError):
        loads("on: [push\njobs: {")


def test_load_yaml_file_uses_stem_as_default_name(tmp_path):
    path = tmp_path / "lint.yml"
    path.write_text("on: [push]\njobs:\n  a:\n    steps: [{run: 'true'}]\n", encoding="utf-8")
    wf = load_workflow(path)
    assert wf.name == "lint"
    assert wf.source == str(path.resolve())


def test_load_python_workflow(tmp_path):
    path = tmp_path / "demo_workflow.py"
    path.write_text(
        textwrap.dedent(
            """
            from matrixci.dsl import wf, job, sh, matrix

            def workflow():
                return wf(
                    "demo",
                    job("build", sh("Build", "make ${{ matrix.target }}"), matrix=matrix(target=["a", "b"])),
                    on="push",
                )
            """
        ),
        encoding="utf-8",
    )
    wf = load_workflow(path)
    assert wf.name == "demo"
    assert len(expand(wf.jobs["build"])) == 2


def test_python_workflow_must_return_a_workflow(tmp_path):
    path = tmp_path / "bad_workflow.py"
    path.write_text("WORKFLOW = [1, 2, 3]\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_workflow(path)


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_workflow(tmp_path / "nope.yml")


def test_tag_and_ignore_filters_are_parsed():
    wf = _yaml(
        """
        on:
          push:
            tags: [v*]
            branches-ignore: [wip/*]
          pull_request: {}
        jobs:
          a:
            steps: [{run: "true"}]
        """
    )
    assert wf.trigger.events == {
        "push": RefFilter(tags=["v*"], branches_ignore=["wip/*"]),
        "pull_request": None,
    }


def test_unsupported_trigger_keys_warn(capsys):
    wf = _yaml(
        """
        on:
          push:
            branches: [main]
            paths: [src/**]
        jobs:
          a:
            steps: [{run: "true"}]
        """
    )
    assert wf.trigger.events == {"push": RefFilter(branches=["main"])}
    assert "on.push: ignoring unsupported keys ['paths']" in capsys.readouterr().err
