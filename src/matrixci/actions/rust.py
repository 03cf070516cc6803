# actions/rust.py
# Thin wrappers around rustup / cargo, matching the actions-rs inputs.

from __future__ import annotations

import shlex
from typing import Any, Dict, List

from ..model import Command


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _as_list(value: Any) -> List[str]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [v for v in str(value).replace(",", " ").split() if v]


def toolchain(params: Dict[str, Any], ctx) -> List[Command]:
    """
    with:
      toolchain:  name (default: stable)
      profile:    rustup profile (default: minimal)
      components: comma/space separated list
      target:     extra compile target
      override:   pin the toolchain for the workspace
      default:    make it the rustup default
    """
    name = str(params.get("toolchain") or "stable")
    profile = str(params.get("profile") or "minimal")

    cmd = ["rustup", "toolchain", "install", name, "--profile", profile]
    for comp in _as_list(params.get("components")):
        cmd += ["--component", comp]
    for target in _as_list(params.get("target")):
        cmd += ["--target", target]

    steps = [Command(name=f"install {name}", run=shlex.join(cmd))]
    if _truthy(params.get("default", False)):
        steps.append(Command(name="default", run=shlex.join(["rustup", "default", name])))
    if _truthy(params.get("override", False)):
        steps.append(Command(name="override", run=shlex.join(["rustup", "override", "set", name])))
    return steps


def cargo(params: Dict[str, Any], ctx) -> List[Command]:
    """
    with:
      command:   cargo subcommand (required)
      args:      extra arguments, shell-split
      toolchain: run as `cargo +toolchain`
    """
    command = params.get("command")
    if not command:
        raise ValueError("cargo: missing required input 'command'")

    cmd = ["cargo"]
    if params.get("toolchain"):
        cmd.append(f"+{params['toolchain']}")
    cmd.append(str(command))
    cmd += shlex.split(str(params.get("args") or ""))
    return [Command(name=f"cargo {command}", run=shlex.join(cmd))]


def register(registry) -> None:
    registry.add("actions-rs/toolchain", toolchain, versions=["v1"])
    registry.add("actions-rs/cargo", cargo, versions=["v1"])
