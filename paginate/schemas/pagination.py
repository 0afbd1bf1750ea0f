from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from paginate.schemas.filters import FilterGroup

Direction = Literal["ASC", "DESC"]


class SortDirective(BaseModel):
    model_config = ConfigDict(frozen=True)

    column: str
    direction: Direction = "ASC"


@dataclass(frozen=True)
class PaginationRequest:
    page: int = 0
    size: int = 10
    sorts: Tuple[SortDirective, ...] = ()
    filters: Optional[FilterGroup] = None
    raw_filters: str = ""
    fields: Tuple[str, ...] = ()
    cache_prefix: Optional[str] = None


class PaginationResult(BaseModel):
    items: List[Any] = []
    page: int = 0
    size: int = 0
    total: int = 0
    total_pages: int = 0
    max_page: int = 0
    first: bool = False
    last: bool = False
    visible: int = 0
    error: bool = False
    error_message: Optional[str] = None
