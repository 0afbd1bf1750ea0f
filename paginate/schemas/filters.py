from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Union

Scalar = Union[None, bool, int, float, str]
FilterValue = Union[Scalar, tuple[Scalar, ...]]
Connective = Literal["AND", "OR"]

LIKE_OPERATORS = frozenset({"LIKE", "NOT LIKE", "ILIKE", "NOT ILIKE"})
LIST_OPERATORS = frozenset({"IN", "NOT IN"})
RANGE_OPERATORS = frozenset({"BETWEEN"})
NULL_OPERATORS = frozenset({"IS", "IS NOT"})
COMPARISON_OPERATORS = frozenset({"=", "!=", ">", ">=", "<", "<="})

OPERATORS = LIKE_OPERATORS | LIST_OPERATORS | RANGE_OPERATORS | NULL_OPERATORS | COMPARISON_OPERATORS
CONNECTIVES = frozenset({"AND", "OR"})


@dataclass(frozen=True)
class FilterLeaf:
    column: str
    operator: str
    value: FilterValue = None


@dataclass(frozen=True)
class FilterConnector:
    operator: Connective


@dataclass(frozen=True)
class FilterGroup:
    children: tuple["FilterNode", ...]
    fanned: bool = False

    def __len__(self) -> int:
        return len(self.children)

    def leaves(self) -> list[FilterLeaf]:
        out: list[FilterLeaf] = []
        for child in self.children:
            if isinstance(child, FilterLeaf):
                out.append(child)
            elif isinstance(child, FilterGroup):
                out.extend(child.leaves())
        return out


FilterNode = Union[FilterLeaf, FilterGroup, FilterConnector]
