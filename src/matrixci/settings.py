from __future__ import annotations
import os


def _default_workers() -> int:
    raw = os.environ.get("MATRIXCI_NUM_WORKERS")
    if raw:
        try:
            return max(1, int(raw))
        except ValueError:
            pass
    return os.cpu_count() or 2


WORK_DIR = os.environ.get("MATRIXCI_WORK_DIR", ".matrixci/work")
WORKFLOW_DIR = os.environ.get("MATRIXCI_WORKFLOW_DIR", ".github/workflows")
NUM_WORKERS = _default_workers()
# tail of captured step output kept in the report
OUTPUT_LIMIT = int(os.environ.get("MATRIXCI_OUTPUT_LIMIT", "4000"))
