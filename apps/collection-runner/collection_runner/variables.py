"""Per-run variable store and ``${name}`` template substitution."""

from __future__ import annotations

import json
import re
from types import MappingProxyType
from typing import Any, Mapping

from .errors import UnresolvedVariable

PLACEHOLDER_PATTERN = re.compile(r"\$\{([^}]+)\}")


class _Missing:
    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def stringify(value: Any) -> str:
    """Render a value the way it appears inside a resolved template."""

    if isinstance(value, str):
        return value
    if isinstance(value, bool) or value is None:
        return json.dumps(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return str(value)


def placeholders(template: str) -> list[str]:
    return [match.group(1).strip() for match in PLACEHOLDER_PATTERN.finditer(template)]


def render_template(template: str, variables: Mapping[str, Any]) -> str:
    """Substitute every ``${name}`` in ``template`` from ``variables``.

    Pure function: raises ``UnresolvedVariable`` listing every unbound name.
    """

    missing = [name for name in placeholders(template) if name not in variables]
    if missing:
        raise UnresolvedVariable(dict.fromkeys(missing), template)
    return PLACEHOLDER_PATTERN.sub(lambda match: stringify(variables[match.group(1).strip()]), template)


def single_placeholder(template: str) -> str | None:
    """Return the variable name when ``template`` is exactly one placeholder."""

    match = PLACEHOLDER_PATTERN.fullmatch(template.strip())
    if match is None:
        return None
    return match.group(1).strip()


class VariableStore:
    """Mutable key/value context owned by a single run."""

    def __init__(self, seed: Mapping[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = dict(seed or {})

    def get(self, name: str) -> Any:
        return self._values.get(name, MISSING)

    def set(self, name: str, value: Any) -> None:
        self._values[name] = value

    def update(self, values: Mapping[str, Any]) -> None:
        for name, value in values.items():
            self.set(name, value)

    def snapshot(self) -> Mapping[str, Any]:
        """Read-only copy of the current bindings."""

        return MappingProxyType(dict(self._values))

    def resolve(self, template: str) -> str:
        return render_template(template, self._values)

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"VariableStore({sorted(self._values)})"
