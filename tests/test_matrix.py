"""Matrix expansion: counts, ordering, identifiers and definition errors."""
from __future__ import annotations

import math

import pytest

from matrixci.dsl import job, matrix, sh
from matrixci.errors import ConfigurationError
from matrixci.matrix import axis_assignments, expand
from matrixci.model import Matrix, Status


def _job(m: Matrix | None = None, **kwargs):
    return job("build", sh("Build", "make"), matrix=m, **kwargs)


def test_no_matrix_yields_single_instance_named_after_job():
    instances = expand(_job())
    assert len(instances) == 1
    assert instances[0].instance_id == "build"
    assert instances[0].matrix == {}
    assert instances[0].status is Status.PENDING


def test_single_axis_single_value_expands_to_one_instance():
    instances = expand(_job(matrix(os=["ubuntu"])))
    assert [i.instance_id for i in instances] == ["build[os=ubuntu]"]


def test_two_targets_give_two_distinct_ids_embedding_target():
    targets = ["wasm32-unknown-unknown", "wasm32-wasi"]
    instances = expand(_job(matrix(target=targets)))

    assert len(instances) == 2
    ids = [i.instance_id for i in instances]
    assert len(set(ids)) == 2
    for target, iid in zip(targets, ids):
        assert target in iid


@pytest.mark.parametrize("sizes", [(1,), (3,), (2, 3), (2, 1, 4), (3, 3, 2)])
def test_instance_count_is_product_of_axis_sizes(sizes):
    axes = {f"a{i}": [f"v{j}" for j in range(n)] for i, n in enumerate(sizes)}
    instances = expand(_job(matrix(**axes)))
    assert len(instances) == math.prod(sizes)


def test_expansion_is_deterministic():
    definition = _job(matrix(os=["linux", "mac"], py=["3.10", "3.11", "3.12"]))
    first = [(i.instance_id, i.index) for i in expand(definition)]
    second = [(i.instance_id, i.index) for i in expand(definition)]
    assert first == second


def test_first_axis_varies_slowest():
    combos = axis_assignments("j", matrix(os=["linux", "mac"], py=["a", "b"]))
    assert combos == [
        {"os": "linux", "py": "a"},
        {"os": "linux", "py": "b"},
        {"os": "mac", "py": "a"},
        {"os": "mac", "py": "b"},
    ]


def test_zero_value_axis_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        expand(_job(Matrix(axes={"os": []})))


def test_exclude_removes_matching_combinations():
    m = matrix(os=["linux", "mac"], py=["a", "b"], exclude=[{"os": "mac", "py": "a"}])
    ids = [i.instance_id for i in expand(_job(m))]
    assert ids == ["build[os=linux, py=a]", "build[os=linux, py=b]", "build[os=mac, py=b]"]


def test_excluding_everything_is_a_configuration_error():
    m = matrix(os=["linux"], exclude=[{"os": "linux"}])
    with pytest.raises(ConfigurationError):
        expand(_job(m))


def test_include_extends_matching_and_appends_unmatched():
    m = matrix(
        os=["linux", "mac"],
        include=[{"os": "mac", "arch": "arm64"}, {"os": "windows"}],
    )
    combos = axis_assignments("build", m)
    assert combos == [{"os": "linux"}, {"os": "mac", "arch": "arm64"}, {"os": "windows"}]


def test_include_only_matrix_runs_each_entry():
    m = Matrix(include=[{"target": "x"}, {"target": "y"}])
    assert [i.instance_id for i in expand(_job(m))] == ["build[target=x]", "build[target=y]"]


def test_duplicate_values_collapse_to_same_id_and_are_rejected():
    with pytest.raises(ConfigurationError):
        expand(_job(matrix(os=["linux", "linux"])))


def test_display_name_and_runs_on_are_rendered_per_instance():
    definition = job(
        "test",
        sh("t", "true"),
        display_name="Test on ${{ matrix.os }}",
        runs_on="${{ matrix.os }}",
        matrix=matrix(os=["ubuntu-latest", "macos-latest"]),
    )
    instances = expand(definition)
    assert [i.display_name for i in instances] == ["Test on ubuntu-latest", "Test on macos-latest"]
    assert [i.runs_on for i in instances] == ["ubuntu-latest", "macos-latest"]


def test_non_string_values_render_in_ids():
    instances = expand(_job(matrix(debug=[True, False], n=[1])))
    assert [i.instance_id for i in instances] == ["build[debug=true, n=1]", "build[debug=false, n=1]"]
