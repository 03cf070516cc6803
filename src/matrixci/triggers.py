# triggers.py
from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatch
from typing import Any, Dict, Iterable, Set

from .model import RefFilter, Trigger, Workflow


def normalize_kind(kind: str) -> str:
    """`pull-request` and `pull_request` name the same event."""
    return kind.strip().lower().replace("-", "_")


@dataclass(frozen=True)
class Event:
    """An incoming event: push, pull_request, ..."""
    kind: str
    ref: str = ""
    sha: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_tag(self) -> bool:
        return self.ref.startswith("refs/tags/")

    @property
    def branch(self) -> str:
        for prefix in ("refs/heads/", "refs/tags/"):
            if self.ref.startswith(prefix):
                return self.ref[len(prefix):]
        return self.ref

    def github_context(self) -> Dict[str, Any]:
        """Values exposed to `${{ github.* }}` expressions."""
        ctx = {
            "event_name": normalize_kind(self.kind),
            "ref": self.ref,
            "ref_name": self.branch,
            "sha": self.sha,
        }
        ctx.update(self.metadata)
        return ctx


def _any(name: str, patterns) -> bool:
    return any(fnmatch(name, pat) for pat in patterns)


def ref_allowed(flt: RefFilter | None, event: Event) -> bool:
    if flt is None or flt.empty:
        return True

    if event.is_tag:
        include, ignore = flt.tags, flt.tags_ignore
    else:
        include, ignore = flt.branches, flt.branches_ignore

    if not include and not ignore:
        # only the other ref kind is filtered
        return False
    if include:
        return _any(event.branch, include)
    return not _any(event.branch, ignore)


def matches(trigger: Trigger, event: Event) -> bool:
    kind = normalize_kind(event.kind)
    kinds = {normalize_kind(k): v for k, v in trigger.events.items()}
    if kind not in kinds:
        return False
    return ref_allowed(kinds[kind], event)


def evaluate(event: Event, workflows: Iterable[Workflow]) -> Set[str]:
    """Names of the workflows this event activates. Pure; never raises."""
    return {wf.name for wf in workflows if matches(wf.trigger, event)}
