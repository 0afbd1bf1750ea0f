from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from fastapi import Request

from paginate.core.config import PaginatorConfig
from paginate.core.errors import MalformedFilterError
from paginate.schemas.pagination import PaginationRequest
from paginate.services.directives import parse_fields, parse_sorts
from paginate.services.filter_parser import parse_filters

RequestSource = PaginationRequest | Mapping[str, Any] | bytes | str | Request


def _params_from_source(source: Any) -> Mapping[str, Any]:
    if isinstance(source, Request):
        return source.query_params
    if isinstance(source, Mapping):
        return source
    if isinstance(source, (bytes, bytearray, str)):
        body = source.decode("utf-8", errors="replace") if isinstance(source, (bytes, bytearray)) else source
        if not body.strip():
            return {}
        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise MalformedFilterError(f"Request body is not valid JSON: {exc.msg}") from exc
        if not isinstance(data, dict):
            raise MalformedFilterError("Request body must be a JSON object")
        return data
    raise TypeError(f"Unsupported pagination request source: {type(source).__name__}")


def _first(params: Mapping[str, Any], names: tuple[str, ...]) -> Any:
    for name in names:
        value = params.get(name)
        if value is not None and value != "":
            return value
    return None


def _to_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        try:
            return int(value)
        except (ValueError, OverflowError):
            return default
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        return default


def _canonical_filters(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, (bytes, bytearray)):
        return raw.decode("utf-8", errors="replace").strip()
    if isinstance(raw, str):
        return raw.strip()
    return json.dumps(raw, separators=(",", ":"), ensure_ascii=False)


def parse_request(source: RequestSource, config: PaginatorConfig) -> PaginationRequest:
    """Build a ``PaginationRequest`` from query-string params or a JSON body.

    ``page`` and ``size`` are parsed permissively: anything that is not a
    number falls back to the configured default. A non-positive size uses
    ``default_size``, an oversized one is capped at ``max_size`` and a page
    below ``page_start`` is raised to ``page_start``.

    Raises:
        MalformedFilterError: for an undecodable body or filter expression.
    """
    if isinstance(source, PaginationRequest):
        return source
    params = _params_from_source(source)

    page = max(_to_int(_first(params, config.page_params), config.page_start), config.page_start)
    size = _to_int(_first(params, config.size_params), config.default_size)
    if size <= 0:
        size = config.default_size
    size = min(size, config.max_size)

    raw_filters = _first(params, config.filter_params)
    filters = parse_filters(raw_filters, operator=config.operator, smart_search=config.smart_search)

    return PaginationRequest(
        page=page,
        size=size,
        sorts=parse_sorts(_first(params, config.sort_params)),
        filters=filters,
        raw_filters=_canonical_filters(raw_filters) if filters is not None else "",
        fields=parse_fields(_first(params, config.fields_params)),
    )
