# actions/codecov.py
from __future__ import annotations

import shlex
from typing import Any, Dict, List

from ..model import Command
from .rust import _as_list, _truthy


def upload(params: Dict[str, Any], ctx) -> List[Command]:
    """
    Upload coverage reports with the codecov CLI.

    The token travels through the environment, never on the command line.
    Upload errors are ignored unless `fail_ci_if_error` is set.
    """
    cmd = ["codecovcli", "upload-process"]
    for f in _as_list(params.get("files") or params.get("file")):
        cmd += ["--file", f]
    for flag in _as_list(params.get("flags")):
        cmd += ["--flag", flag]
    if params.get("name"):
        cmd += ["--name", str(params["name"])]

    run = shlex.join(cmd)
    if not _truthy(params.get("fail_ci_if_error", False)):
        run += " || echo 'codecov: upload failed (ignored)'"

    env = {}
    if params.get("token"):
        env["CODECOV_TOKEN"] = str(params["token"])
    return [Command(name="codecov upload", run=run, env=env)]


def register(registry) -> None:
    registry.add("codecov/codecov-action", upload, versions=["v1", "v2", "v3", "v4"])
