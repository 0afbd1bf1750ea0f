from __future__ import annotations

import re
from collections.abc import Collection
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import text
from sqlalchemy.sql.elements import TextClause

from paginate.core.errors import ForbiddenColumnError, MalformedFilterError
from paginate.schemas.filters import (
    LIKE_OPERATORS,
    LIST_OPERATORS,
    RANGE_OPERATORS,
    FilterConnector,
    FilterGroup,
    FilterLeaf,
)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


def check_column(column: str, allowed_columns: Collection[str] | None = None) -> str:
    """Validate a column reference used in WHERE / ORDER BY / field selection."""
    if not _IDENTIFIER_RE.fullmatch(column or ""):
        raise ForbiddenColumnError(column)
    if allowed_columns is not None and column not in allowed_columns:
        raise ForbiddenColumnError(column)
    return column


@dataclass
class Predicate:
    fragments: list[str] = field(default_factory=list)
    params: list[Any] = field(default_factory=list)

    @property
    def sql(self) -> str:
        # Only the grouping fragments are glued; clause text is kept as written.
        sql = ""
        previous = None
        for fragment in self.fragments:
            if previous is not None and previous != "(" and fragment != ")":
                sql += " "
            sql += fragment
            previous = fragment
        return sql

    def to_clause(self) -> TextClause:
        """Render as a SQLAlchemy text clause with named binds ``:p0``, ``:p1``..."""
        parts = self.sql.split("?")
        if len(parts) - 1 != len(self.params):
            raise MalformedFilterError("Placeholder count does not match bound parameters")
        sql = parts[0]
        for index, part in enumerate(parts[1:]):
            sql += f":p{index}{part}"
        return text(sql).bindparams(**{f"p{index}": value for index, value in enumerate(self.params)})


class _Compiler:
    def __init__(
        self,
        *,
        allowed_columns: Collection[str] | None,
        ilike_disabled: bool,
        field_wrapper: str | None,
        value_wrapper: str | None,
    ):
        self.allowed_columns = allowed_columns
        self.ilike_disabled = ilike_disabled
        self.field_wrapper = field_wrapper
        self.value_wrapper = value_wrapper
        self.predicate = Predicate()

    def root(self, group: FilterGroup) -> None:
        # Every top-level clause gets its own parentheses.
        out = self.predicate.fragments
        out.append("(")
        for child in group.children:
            if isinstance(child, FilterConnector):
                out.append(child.operator)
            elif isinstance(child, FilterLeaf):
                out.append("(")
                self.leaf(child)
                out.append(")")
            else:
                out.append("(")
                self.group(child)
                out.append(")")
        out.append(")")

    def group(self, group: FilterGroup) -> None:
        out = self.predicate.fragments
        out.append("(")
        for child in group.children:
            if isinstance(child, FilterConnector):
                out.append(child.operator)
            elif isinstance(child, FilterLeaf):
                self.leaf(child)
            else:
                self.group(child)
        out.append(")")

    def leaf(self, leaf: FilterLeaf) -> None:
        column = check_column(leaf.column, self.allowed_columns)
        operator = leaf.operator
        value = leaf.value
        out = self.predicate.fragments
        params = self.predicate.params

        if operator in LIKE_OPERATORS:
            if self.ilike_disabled:
                operator = operator.replace("ILIKE", "LIKE")
            target = self.field_wrapper % column if self.field_wrapper else column
            placeholder = self.value_wrapper % "?" if self.value_wrapper else "?"
            out.append(f"{target} {operator} {placeholder}")
            params.append(value)
        elif operator in LIST_OPERATORS:
            values = list(value)
            out.append(f"{column} {operator} ({', '.join('?' for _ in values)})")
            params.extend(values)
        elif operator in RANGE_OPERATORS:
            low, high = value
            out.append(f"{column} {operator} ? AND ?")
            params.extend([low, high])
        elif value is None:
            if operator in ("=", "IS"):
                out.append(f"{column} IS NULL")
            elif operator in ("!=", "IS NOT"):
                out.append(f"{column} IS NOT NULL")
            else:
                raise MalformedFilterError(f'Operator "{operator}" cannot compare with null')
        else:
            out.append(f"{column} {operator} ?")
            params.append(value)


def compile_filters(
    root: FilterGroup | None,
    *,
    allowed_columns: Collection[str] | None = None,
    ilike_disabled: bool = False,
    field_wrapper: str | None = None,
    value_wrapper: str | None = None,
) -> Predicate | None:
    """Compile a parsed filter tree into predicate fragments and parameters.

    Fragment and parameter order follow the filter input order exactly.
    Returns ``None`` for an absent filter.
    """
    if root is None or not root.children:
        return None
    compiler = _Compiler(
        allowed_columns=allowed_columns,
        ilike_disabled=ilike_disabled,
        field_wrapper=field_wrapper,
        value_wrapper=value_wrapper,
    )
    compiler.root(root)
    return compiler.predicate
