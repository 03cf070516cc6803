# expressions.py
# `${{ context.key }}` interpolation for workflow definitions.
# Only dotted property access is supported: no operators, no function calls.

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from .errors import ConfigurationError

EXPR_RE = re.compile(r"\$\{\{\s*(.*?)\s*\}\}")
REF_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_-]*)((?:\.[A-Za-z_][A-Za-z0-9_-]*)*)$")

KNOWN_CONTEXTS = ("matrix", "secrets", "env", "github")


def render_value(value: Any) -> str:
    """Render a context value the way it is substituted into strings."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"))
    return str(value)


def parse_reference(expr: str) -> Tuple[str, List[str]]:
    m = REF_RE.match(expr.strip())
    if not m:
        raise ConfigurationError(f"Unsupported expression: ${{{{ {expr} }}}}")
    context = m.group(1)
    path = [p for p in m.group(2).split(".") if p]
    return context, path


def references(text: str) -> List[Tuple[str, List[str]]]:
    """All (context, path) references found in `text`."""
    if not isinstance(text, str):
        return []
    return [parse_reference(m.group(1)) for m in EXPR_RE.finditer(text)]


def validate(text: Any, *, matrix_keys: Iterable[str] | None, where: str) -> None:
    """
    Check every reference in `text` at load time.

    matrix_keys=None means the job has no matrix, so any `matrix.*`
    reference is unresolvable.
    """
    if isinstance(text, Mapping):
        for v in text.values():
            validate(v, matrix_keys=matrix_keys, where=where)
        return
    if isinstance(text, (list, tuple)):
        for v in text:
            validate(v, matrix_keys=matrix_keys, where=where)
        return

    keys = set(matrix_keys or ())
    for context, path in references(text):
        if context not in KNOWN_CONTEXTS:
            raise ConfigurationError(
                f"Unknown expression context {context!r}",
                where=where,
                known=", ".join(KNOWN_CONTEXTS),
            )
        if context == "matrix":
            if not path:
                continue
            if path[0] not in keys:
                raise ConfigurationError(
                    f"Expression references undefined matrix key {path[0]!r}",
                    where=where,
                    matrix_keys=", ".join(sorted(keys)) or "(none)",
                )


def _lookup(contexts: Mapping[str, Any], context: str, path: List[str]) -> Any:
    if context not in contexts:
        raise ConfigurationError(f"Unknown expression context {context!r}")
    value: Any = contexts[context]
    for part in path:
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        else:
            # missing properties evaluate to an empty string
            return None
    return value


def interpolate(text: str, contexts: Mapping[str, Any]) -> str:
    if not isinstance(text, str) or "${{" not in text:
        return text

    def _sub(m: re.Match) -> str:
        context, path = parse_reference(m.group(1))
        return render_value(_lookup(contexts, context, path))

    return EXPR_RE.sub(_sub, text)


def interpolate_all(value: Any, contexts: Mapping[str, Any]) -> Any:
    """Interpolate strings nested inside dicts/lists; other values pass through."""
    if isinstance(value, str):
        return interpolate(value, contexts)
    if isinstance(value, Mapping):
        return {k: interpolate_all(v, contexts) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate_all(v, contexts) for v in value]
    return value


def interpolate_env(env: Mapping[str, Any], contexts: Mapping[str, Any]) -> Dict[str, str]:
    return {str(k): render_value(interpolate_all(v, contexts)) for k, v in env.items()}
