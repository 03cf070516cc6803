# actions/registry.py
# Lookup table for `uses:` steps.
#
# An action is a function (params, ctx) -> list[Command]. The step runner
# resolves `name@version` here at invocation time and runs the returned
# commands through the same executor as plain `run:` steps, so actions never
# touch processes or the filesystem themselves.

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, FrozenSet, Iterable, List, Optional

from ..errors import ActionResolutionError
from ..model import Command

if TYPE_CHECKING:
    from ..context import ExecutionContext

ActionFn = Callable[[Dict[str, Any], "ExecutionContext"], List[Command]]


@dataclass(frozen=True)
class ActionSpec:
    name: str
    fn: ActionFn
    versions: Optional[FrozenSet[str]] = None  # None accepts any version

    def supports(self, version: str) -> bool:
        if self.versions is None:
            return True
        major = version.split(".", 1)[0]
        return version in self.versions or major in self.versions


class ActionRegistry:
    def __init__(self) -> None:
        self._actions: Dict[str, ActionSpec] = {}

    def add(self, name: str, fn: ActionFn, versions: Iterable[str] | None = None) -> None:
        self._actions[name] = ActionSpec(
            name=name,
            fn=fn,
            versions=frozenset(versions) if versions is not None else None,
        )

    def register(self, name: str, versions: Iterable[str] | None = None) -> Callable[[ActionFn], ActionFn]:
        """Decorator form of add()."""
        def deco(fn: ActionFn) -> ActionFn:
            self.add(name, fn, versions)
            return fn
        return deco

    def names(self) -> List[str]:
        return sorted(self._actions)

    def __contains__(self, name: str) -> bool:
        return name in self._actions

    def resolve(self, uses: str) -> ActionSpec:
        name, sep, version = uses.partition("@")
        if not sep or not version:
            raise ActionResolutionError(f"Action reference {uses!r} has no version", uses=uses)

        spec = self._actions.get(name)
        if spec is None:
            raise ActionResolutionError(
                f"Unknown action {name!r}",
                uses=uses,
                known=", ".join(self.names()) or "(none)",
            )
        if not spec.supports(version):
            raise ActionResolutionError(
                f"Action {name!r} has no version {version!r}",
                uses=uses,
                versions=", ".join(sorted(spec.versions or ())),
            )
        return spec


def builtin_registry() -> ActionRegistry:
    """A fresh registry with every bundled action."""
    from . import checkout, codecov, rust

    registry = ActionRegistry()
    checkout.register(registry)
    rust.register(registry)
    codecov.register(registry)
    return registry
