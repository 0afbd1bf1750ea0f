from __future__ import annotations

import json
from typing import Any

from fastapi import HTTPException, Request

from paginate.core.config import PaginatorConfig
from paginate.services.paginator import Paginator

_BODY_METHODS = {"POST", "PUT", "PATCH"}

_cached_paginator: Paginator | None = None


async def read_pagination_params(request: Request) -> dict[str, Any]:
    """Pagination parameters from the query string, or from the JSON body for POST-style calls."""
    if request.method.upper() not in _BODY_METHODS:
        return dict(request.query_params)
    body = await request.body()
    if not body.strip():
        return {}
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Request body is not valid JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return data


def get_paginator() -> Paginator:
    global _cached_paginator
    if _cached_paginator is None:
        _cached_paginator = Paginator(PaginatorConfig.from_settings())
    return _cached_paginator


def reset_paginator_for_tests() -> None:
    global _cached_paginator
    _cached_paginator = None
