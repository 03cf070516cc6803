# errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the run report
      - debugging without full tracebacks
    """
    kind = "ci_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigurationError(CIError):
    """Malformed workflow definition. Fatal: raised before any instance starts."""
    kind = "configuration_error"


class ActionResolutionError(CIError):
    """A `uses:` reference names an action (or version) the registry does not know."""
    kind = "action_unresolved"


@dataclass
class StepFailure(Exception):
    instance: str
    step: str
    cmd: str
    exit_code: int
    output: str = ""

    def __str__(self) -> str:
        return f"[{self.instance}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


@dataclass
class StepTimeout(Exception):
    instance: str
    step: str
    timeout: float
    output: str = ""

    def __str__(self) -> str:
        return f"[{self.instance}] step '{self.step}' timed out after {self.timeout:.1f}s"
