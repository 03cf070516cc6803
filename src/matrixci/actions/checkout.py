# actions/checkout.py
from __future__ import annotations

import shlex
from typing import Any, Dict, List

from ..model import Command


def checkout(params: Dict[str, Any], ctx) -> List[Command]:
    """
    Clone the repository into the instance workspace and check out the
    event's commit.

    with:
      repository: path or URL (defaults to the repository the run started in)
      ref:        branch, tag or sha (defaults to the event sha, then HEAD)
      path:       subdirectory of the workspace (defaults to the workspace itself)
    """
    repository = params.get("repository") or ctx.github.get("repository")
    if not repository:
        raise ValueError("checkout: no repository to clone (set with.repository)")
    ref = params.get("ref") or ctx.github.get("sha") or ""
    path = params.get("path") or "."

    steps = [
        Command(
            name="clone",
            run=f"git clone --quiet --no-checkout {shlex.quote(str(repository))} {shlex.quote(str(path))}",
        )
    ]
    target = shlex.quote(str(ref)) if ref else "HEAD"
    steps.append(
        Command(
            name="checkout",
            run=f"git checkout --quiet --detach {target}",
            working_directory=str(path),
        )
    )
    return steps


def register(registry) -> None:
    registry.add("actions/checkout", checkout, versions=["v1", "v2", "v3", "v4"])
