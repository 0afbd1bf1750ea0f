from __future__ import annotations

from typing import Any

from paginate.schemas.pagination import SortDirective


def _tokens(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        chunks = [str(item) for item in raw if item is not None]
    else:
        chunks = [str(raw)]
    tokens: list[str] = []
    for chunk in chunks:
        tokens.extend(token.strip() for token in chunk.split(","))
    return [token for token in tokens if token]


def parse_sorts(raw: Any) -> tuple[SortDirective, ...]:
    """Parse ``"user.name,-id"`` into ordered sort directives (``-`` means DESC)."""
    sorts: list[SortDirective] = []
    for token in _tokens(raw):
        direction = "ASC"
        if token.startswith("-"):
            direction = "DESC"
            token = token[1:].strip()
        elif token.startswith("+"):
            token = token[1:].strip()
        if token:
            sorts.append(SortDirective(column=token, direction=direction))
    return tuple(sorts)


def parse_fields(raw: Any) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for token in _tokens(raw):
        seen.setdefault(token, None)
    return tuple(seen)
