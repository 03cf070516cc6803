# git.py
# Small, focused wrapper around the Git CLI.
# The CLI uses it to describe the event being run (ref, sha) and the
# repository the checkout action clones from.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError if git exits non-zero,
        FileNotFoundError if git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def repo_root(cwd: Optional[str] = None) -> Path:
    """Absolute path to the root of the enclosing Git repository."""
    # prints the top level regardless of where inside the repo we are
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def is_dirty(cwd: Optional[str] = None) -> bool:
    """
    True if the working tree has modified, staged or untracked files.

    The checkout action clones committed state only, so a dirty tree means
    local edits will not be seen by the run.
    """
    return _git(["status", "--porcelain"], cwd=cwd) != ""


def get_current_ref(cwd: Optional[str] = None) -> str:
    """
    Fully qualified ref for the current branch, e.g. refs/heads/main.
    Falls back to the HEAD sha on a detached HEAD.
    """
    try:
        return _git(["symbolic-ref", "-q", "HEAD"], cwd=cwd)
    except subprocess.CalledProcessError:
        return head_sha(cwd=cwd)
