# matrixci_workflow.py
# Workflow for testing matrixci itself.
from __future__ import annotations

from matrixci.dsl import job, matrix, sh, uses, wf


def workflow():
    return wf(
        "matrixci",
        job(
            "lint",
            uses("actions/checkout@v4"),
            sh("Ruff check", "ruff check src tests"),
            sh("Ruff format check", "ruff format --check src tests"),
        ),
        job(
            "test",
            uses("actions/checkout@v4"),
            sh("Install package", "python${{ matrix.python }} -m pip install -e '.[test]'"),
            sh("Run pytest", "python${{ matrix.python }} -m pytest -q"),
            display_name="Test on Python ${{ matrix.python }}",
            matrix=matrix(python=["3.10", "3.11", "3.12"]),
            timeout_minutes=30,
        ),
        job(
            "plan-smoke",
            uses("actions/checkout@v4"),
            sh("Install package", "python -m pip install -e ."),
            sh("Plan own workflow", "matrixci plan --workflow matrixci_workflow.py"),
            needs=["test"],
        ),
        on=["push", "pull_request"],
    )
