"""Filter expression parsing.

Filters arrive as a JSON array of arrays::

    [["name,email", "like", "abc"], ["OR"], ["id", ">", 1]]

Each inner array is either a ``[column, operator, value]`` clause, a bare
``["AND"]`` / ``["OR"]`` connective, or itself an array of arrays (an explicit
sub-group). The result is an immutable ``FilterGroup`` tree.
"""

from __future__ import annotations

import json
import re
from typing import Any

from paginate.core.errors import MalformedFilterError
from paginate.schemas.filters import (
    CONNECTIVES,
    LIKE_OPERATORS,
    LIST_OPERATORS,
    OPERATORS,
    RANGE_OPERATORS,
    FilterConnector,
    FilterGroup,
    FilterLeaf,
    FilterNode,
    FilterValue,
    Scalar,
)

_WS_RE = re.compile(r"\s+")
_OPERATOR_ALIASES = {"==": "=", "<>": "!="}


def _normalize_operator(raw: Any) -> str:
    if not isinstance(raw, str):
        raise MalformedFilterError(f"Filter operator must be a string, got {raw!r}")
    operator = " ".join(raw.split()).upper()
    operator = _OPERATOR_ALIASES.get(operator, operator)
    if operator not in OPERATORS:
        raise MalformedFilterError(f'Unknown filter operator "{raw}"')
    return operator


def _scalar(value: Any, *, allow_null: bool = True) -> Scalar:
    if value is None:
        if allow_null:
            return None
        raise MalformedFilterError("Null is not allowed inside a filter value list")
    if isinstance(value, (bool, int, float, str)):
        return value
    raise MalformedFilterError(f"Unsupported filter value {value!r}")


def _like_text(value: Scalar) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _clause_value(operator: str, value: Any, smart_search: bool) -> FilterValue:
    if operator in LIST_OPERATORS:
        if not isinstance(value, list) or not value:
            raise MalformedFilterError(f"{operator} expects a non-empty array value")
        return tuple(_scalar(v, allow_null=False) for v in value)
    if operator in RANGE_OPERATORS:
        if not isinstance(value, list) or len(value) != 2:
            raise MalformedFilterError(f"{operator} expects an array of two values")
        return tuple(_scalar(v, allow_null=False) for v in value)

    scalar = _scalar(value)
    if operator in LIKE_OPERATORS:
        if scalar is None:
            raise MalformedFilterError(f"{operator} expects a non-null value")
        text = _like_text(scalar)
        if smart_search:
            text = _WS_RE.sub("%", text)
        return f"%{text}%"
    return scalar


def _is_connector(item: list) -> bool:
    return len(item) == 1 and isinstance(item[0], str) and item[0].strip().upper() in CONNECTIVES


def _is_nested_group(item: list) -> bool:
    return all(isinstance(member, list) for member in item)


def _parse_clause(item: list, smart_search: bool) -> FilterNode:
    if len(item) != 3:
        raise MalformedFilterError(f"Filter clause must be [column, operator, value], got {item!r}")
    column, raw_operator, raw_value = item
    if not isinstance(column, str):
        raise MalformedFilterError(f"Filter column must be a string, got {column!r}")
    names = [name.strip() for name in column.split(",") if name.strip()]
    if not names:
        raise MalformedFilterError("Filter column must not be empty")

    operator = _normalize_operator(raw_operator)
    value = _clause_value(operator, raw_value, smart_search)
    if len(names) == 1:
        return FilterLeaf(column=names[0], operator=operator, value=value)

    fanned: list[FilterNode] = []
    for name in names:
        if fanned:
            fanned.append(FilterConnector("OR"))
        fanned.append(FilterLeaf(column=name, operator=operator, value=value))
    return FilterGroup(children=(FilterGroup(children=tuple(fanned), fanned=True),))


def _parse_group(items: list, operator: str, smart_search: bool) -> FilterGroup:
    children: list[FilterNode] = []
    pending: FilterConnector | None = None
    for item in items:
        if not isinstance(item, list):
            raise MalformedFilterError(f"Filter element must be an array, got {item!r}")
        if _is_connector(item):
            if not children or pending is not None:
                raise MalformedFilterError(f'Unexpected connective "{item[0]}"')
            pending = FilterConnector(item[0].strip().upper())
            continue

        if item and _is_nested_group(item):
            node: FilterNode = _parse_group(item, operator, smart_search)
        else:
            node = _parse_clause(item, smart_search)
        if children:
            children.append(pending or FilterConnector(operator))
        children.append(node)
        pending = None

    if pending is not None:
        raise MalformedFilterError(f'Dangling connective "{pending.operator}"')
    if not children:
        raise MalformedFilterError("Filter group must not be empty")
    return FilterGroup(children=tuple(children))


def decode_filters(raw: Any) -> list | None:
    """Turn raw filter input (JSON text or decoded value) into a list."""
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise MalformedFilterError(f"Filter is not valid JSON: {exc.msg}") from exc
    if not isinstance(raw, list):
        raise MalformedFilterError("Filter must be a JSON array")
    if not raw:
        return None
    # A lone clause such as ["id", ">", 1] is accepted as [["id", ">", 1]].
    if isinstance(raw[0], str) and not _is_connector(raw):
        raw = [raw]
    return raw


def parse_filters(raw: Any, *, operator: str = "AND", smart_search: bool = False) -> FilterGroup | None:
    """Parse a filter expression into a root ``FilterGroup``.

    Returns ``None`` when there is nothing to filter on. ``operator`` is the
    connective inserted between sibling clauses that are not separated by an
    explicit ``["AND"]`` / ``["OR"]``.

    Raises:
        MalformedFilterError: on undecodable JSON, wrong clause arity, an
            unknown operator or a value of the wrong shape.
    """
    items = decode_filters(raw)
    if items is None:
        return None
    connective = str(operator or "AND").strip().upper()
    if connective not in CONNECTIVES:
        raise MalformedFilterError(f'Unknown default connective "{operator}"')
    return _parse_group(items, connective, smart_search)
