"""``{{var}}`` reference resolution against a workflow context."""

from __future__ import annotations

import re
from typing import Any, List, Mapping

from .errors import UnresolvedVariableError

_REFERENCE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")
_CONTEXT_PREFIX = "context."

_MISSING = object()


def find_references(text: str) -> List[str]:
    """Return the variable names referenced in ``text`` in order of appearance."""
    return [match.group(1) for match in _REFERENCE.finditer(text)]


def lookup(name: str, context: Mapping[str, Any]) -> Any:
    """Look ``name`` up in ``context``.

    ``context.`` prefixes are accepted for compatibility with documents that
    spell references as ``{{context.key}}``. Dotted names descend into nested
    mappings when no flat key matches. Returns a sentinel when missing.
    """
    if name.startswith(_CONTEXT_PREFIX):
        name = name[len(_CONTEXT_PREFIX) :]
    if name in context:
        return context[name]
    value: Any = context
    for part in name.split("."):
        if not isinstance(value, Mapping) or part not in value:
            return _MISSING
        value = value[part]
    return value


def render(text: str, context: Mapping[str, Any], strict: bool = True) -> str:
    """Substitute every reference in ``text``.

    Unresolved references are left in place when ``strict`` is false.

    Raises:
        UnresolvedVariableError: If ``strict`` and any reference has no value
            in ``context``.
    """
    missing: List[str] = []

    def _substitute(match: re.Match) -> str:
        value = lookup(match.group(1), context)
        if value is _MISSING:
            missing.append(match.group(1))
            return match.group(0)
        return "" if value is None else str(value)

    rendered = _REFERENCE.sub(_substitute, text)
    if missing and strict:
        raise UnresolvedVariableError(missing)
    return rendered


def resolve(value: Any, context: Mapping[str, Any]) -> Any:
    """Resolve references inside ``value`` recursively.

    A string consisting of exactly one reference resolves to the referenced
    value itself, preserving its type. Other strings are rendered.
    """
    if isinstance(value, str):
        match = _REFERENCE.fullmatch(value.strip())
        if match:
            resolved = lookup(match.group(1), context)
            if resolved is _MISSING:
                raise UnresolvedVariableError([match.group(1)])
            return resolved
        return render(value, context)
    if isinstance(value, Mapping):
        return {key: resolve(item, context) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve(item, context) for item in value]
    return value
