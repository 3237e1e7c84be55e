"""
Query expressions understood by the reference server.

    [select <path>, <path> from] <Type> [where <path> is <value> [and ...]] [limit <n>]

Paths are dotted attribute names that may follow references, e.g.
`status.name`. Values are bare words or quoted strings, where a backslash
escapes the next character; `None` matches a missing or null attribute.
"""

import re
from typing import List, NamedTuple, Optional, Tuple

_EXPRESSION = re.compile(
    r"^\s*(?:select\s+(?P<fields>.+?)\s+from\s+)?"
    r"(?P<type>\w+)"
    r"(?:\s+where\s+(?P<where>.+?))?"
    r"(?:\s+limit\s+(?P<limit>\d+))?\s*$",
    re.IGNORECASE,
)
_CRITERION = re.compile(
    r"""\s*(?P<path>[\w.]+)\s+is\s+"""
    r"""(?P<value>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*'|[^\s"']+)"""
    r"""\s*(?P<tail>\band\b|$)""",
    re.IGNORECASE,
)
_ESCAPE = re.compile(r"\\(.)")


class Criterion(NamedTuple):
    path: Tuple[str, ...]
    value: Optional[str]


class Expression(NamedTuple):
    entity_type: str
    fields: Optional[List[Tuple[str, ...]]]     # None selects every attribute
    criteria: List[Criterion]
    limit: Optional[int]


def _path(text: str) -> Tuple[str, ...]:
    parts = tuple(p for p in text.strip().split("."))
    if not parts or not all(parts):
        raise ValueError(f"invalid attribute path: {text!r}")
    return parts


def _value(text: str) -> Optional[str]:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        return _ESCAPE.sub(r"\1", text[1:-1])
    if text == "None":
        return None
    return text


def parse_expression(text: str) -> Expression:
    """Parse a query expression. Raises ValueError on unsupported syntax."""
    match = _EXPRESSION.match(text)
    if not match:
        raise ValueError(f"unsupported query expression: {text!r}")

    fields = None
    if match.group("fields"):
        fields = [_path(f) for f in match.group("fields").split(",")]

    criteria = []
    if match.group("where"):
        where = match.group("where").strip()
        position = 0
        while position < len(where):
            criterion = _CRITERION.match(where, position)
            if not criterion or (
                criterion.group("tail") and criterion.end() == len(where)
            ):
                raise ValueError(f"unsupported criterion: {where[position:]!r}")
            criteria.append(Criterion(
                path=_path(criterion.group("path")),
                value=_value(criterion.group("value")),
            ))
            position = criterion.end()

    limit = match.group("limit")
    return Expression(
        entity_type=match.group("type"),
        fields=fields,
        criteria=criteria,
        limit=int(limit) if limit is not None else None,
    )
