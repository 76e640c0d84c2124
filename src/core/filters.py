"""Row filter expressions used by gateway queries and realtime scopes.

A filter can be evaluated against a plain record (``matches``) and rendered
to PostgREST syntax (``to_postgrest``), so the same expression serves the
backend adapter and in-memory checks.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Union

# Characters PostgREST treats as syntax inside or()/and() groups.
_RESERVED = re.compile(r'[,.:()"\s]')


def _render_value(value: Any) -> str:
    text = str(value)
    if _RESERVED.search(text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def _like_to_regex(pattern: str) -> str:
    parts: list[str] = []
    escaped = False
    for ch in pattern:
        if escaped:
            parts.append(re.escape(ch))
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return "".join(parts)


@dataclass(frozen=True)
class Eq:
    column: str
    value: Any

    def matches(self, record: Mapping[str, Any]) -> bool:
        return record.get(self.column) == self.value

    def to_postgrest(self) -> str:
        return f"{self.column}.eq.{_render_value(self.value)}"


@dataclass(frozen=True)
class Neq:
    column: str
    value: Any

    def matches(self, record: Mapping[str, Any]) -> bool:
        return record.get(self.column) != self.value

    def to_postgrest(self) -> str:
        return f"{self.column}.neq.{_render_value(self.value)}"


@dataclass(frozen=True)
class ILike:
    """Case-insensitive SQL LIKE; ``%`` matches any run, ``_`` one char."""

    column: str
    pattern: str

    def matches(self, record: Mapping[str, Any]) -> bool:
        value = record.get(self.column)
        if value is None:
            return False
        return re.fullmatch(_like_to_regex(self.pattern), str(value), re.IGNORECASE | re.DOTALL) is not None

    def to_postgrest(self) -> str:
        return f"{self.column}.ilike.{_render_value(self.pattern)}"


@dataclass(frozen=True)
class AllOf:
    filters: tuple["Filter", ...]

    def __init__(self, *filters: "Filter") -> None:
        object.__setattr__(self, "filters", tuple(filters))

    def matches(self, record: Mapping[str, Any]) -> bool:
        return all(item.matches(record) for item in self.filters)

    def to_postgrest(self) -> str:
        return f"and({','.join(item.to_postgrest() for item in self.filters)})"


@dataclass(frozen=True)
class AnyOf:
    filters: tuple["Filter", ...]

    def __init__(self, *filters: "Filter") -> None:
        object.__setattr__(self, "filters", tuple(filters))

    def matches(self, record: Mapping[str, Any]) -> bool:
        return any(item.matches(record) for item in self.filters)

    def to_postgrest(self) -> str:
        return f"or({','.join(item.to_postgrest() for item in self.filters)})"

    def inner_postgrest(self) -> str:
        """Render the members without the outer ``or(...)`` wrapper."""

        return ",".join(item.to_postgrest() for item in self.filters)


Filter = Union[Eq, Neq, ILike, AllOf, AnyOf]
