"""Page assembly over SQLAlchemy ORM queries.

Usage::

    paginator = Paginator(PaginatorConfig(page_start=1, error_enabled=True))
    result = (
        paginator.with_query(db.query(Article).join(Article.user))
        .request(request.query_params)
        .cache("articles")
        .response(ArticleOut)
    )

The filtered query is counted once, then ordered, limited and fetched. All
request-level failures end up in the result instead of being raised.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

from pydantic import BaseModel
from sqlalchemy import inspect as sa_inspect
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, load_only

from paginate.core.config import PaginatorConfig
from paginate.core.errors import ForbiddenColumnError, PaginationError, QueryFailedError
from paginate.schemas.pagination import PaginationRequest, PaginationResult
from paginate.services.cache import CacheAdapter, CacheMiss, build_cache_key
from paginate.services.predicate_compiler import check_column, compile_filters
from paginate.services.request_parser import RequestSource, parse_request

_LOG = logging.getLogger("paginate.paginator")


def _row_to_dict(row: Any) -> dict[str, Any]:
    if hasattr(row, "_asdict"):
        return dict(row._asdict())
    state = sa_inspect(row)
    return {
        attr.key: getattr(row, attr.key)
        for attr in state.mapper.column_attrs
        if attr.key not in state.unloaded
    }


class Paginator:
    def __init__(self, config: PaginatorConfig | None = None, **options: Any):
        if config is not None and options:
            raise TypeError("Pass either a PaginatorConfig or keyword options, not both")
        self.config = config if config is not None else PaginatorConfig(**options)

    def with_query(self, query: Query) -> "PageBuilder":
        return PageBuilder(self, query)

    def clear_cache(self, *prefixes: str) -> bool:
        """Drop cached pages under each prefix. Adapter failures are logged, not raised."""
        adapter = self.config.cache_adapter
        if adapter is None:
            return True
        ok = True
        for prefix in prefixes:
            try:
                adapter.clear_prefix(prefix)
            except Exception:
                _LOG.warning("Failed to clear cache prefix %s", prefix, exc_info=True)
                ok = False
        return ok

    def clear_all_cache(self) -> bool:
        adapter = self.config.cache_adapter
        if adapter is None:
            return True
        try:
            adapter.clear_all()
        except Exception:
            _LOG.warning("Failed to clear cache", exc_info=True)
            return False
        return True


class PageBuilder:
    def __init__(self, paginator: Paginator, query: Query):
        self.config = paginator.config
        self._query = query
        self._request: PaginationRequest | None = None
        self._error: PaginationError | None = None
        self._fields: tuple[str, ...] | None = None
        self._cache_prefix: str | None = None

    def request(self, source: RequestSource) -> "PageBuilder":
        # Parse errors are reported by response(), same as query errors.
        try:
            self._request = parse_request(source, self.config)
            self._error = None
        except PaginationError as exc:
            self._request = None
            self._error = exc
        return self

    def fields(self, fields: Iterable[str]) -> "PageBuilder":
        self._fields = tuple(fields)
        return self

    def cache(self, prefix: str) -> "PageBuilder":
        self._cache_prefix = prefix
        return self

    def response(
        self,
        schema: type[BaseModel] | None = None,
        into: list | None = None,
    ) -> PaginationResult:
        """Run the page query and build the result envelope.

        Args:
            schema: optional pydantic model; rows are validated into it.
            into: optional list extended in place with the page items.
        """
        request = self._normalized_request()
        if self._error is not None:
            result = self._failure(request, self._error)
        else:
            result = self._cached_or_run(request, schema)
        if into is not None:
            into.extend(result.items)
        return result

    def _normalized_request(self) -> PaginationRequest:
        cfg = self.config
        request = self._request or PaginationRequest(page=cfg.page_start, size=cfg.default_size)
        size = request.size if request.size > 0 else cfg.default_size
        return replace(
            request,
            page=max(request.page, cfg.page_start),
            size=min(size, cfg.max_size),
            cache_prefix=self._cache_prefix or request.cache_prefix,
        )

    def _effective_fields(self, request: PaginationRequest) -> tuple[str, ...]:
        if not self.config.field_selector_enabled:
            return ()
        if self._fields is not None:
            return self._fields
        return request.fields

    def _cached_or_run(self, request: PaginationRequest, schema: type[BaseModel] | None) -> PaginationResult:
        fields = self._effective_fields(request)
        adapter: CacheAdapter | None = self.config.cache_adapter
        key = None
        if request.cache_prefix and adapter is not None:
            key = build_cache_key(request.cache_prefix, request, fields)
            cached = self._read_cache(adapter, key, schema)
            if cached is not None:
                return cached

        try:
            result = self._run(request, fields, schema, plain=key is not None)
        except PaginationError as exc:
            return self._failure(request, exc)

        if key is not None:
            self._write_cache(adapter, key, result)
        return result

    def _run(
        self,
        request: PaginationRequest,
        fields: tuple[str, ...],
        schema: type[BaseModel] | None,
        *,
        plain: bool,
    ) -> PaginationResult:
        cfg = self.config
        predicate = compile_filters(
            request.filters,
            allowed_columns=cfg.allowed_columns,
            ilike_disabled=cfg.like_as_ilike_disabled,
            field_wrapper=cfg.field_wrapper,
            value_wrapper=cfg.value_wrapper,
        )
        ordering = [
            text(f"{check_column(sort.column, cfg.allowed_columns)} {sort.direction}")
            for sort in request.sorts
        ]

        query = self._query
        if predicate is not None:
            query = query.filter(predicate.to_clause())
        fetch = query
        if ordering:
            fetch = fetch.order_by(*ordering)
        if fields:
            fetch = fetch.options(self._load_only(fields))

        offset = (request.page - cfg.page_start) * request.size
        try:
            total = query.order_by(None).count()
            # Pages past the end are empty and never fetched.
            rows = fetch.limit(request.size).offset(offset).all() if offset < total else []
        except SQLAlchemyError as exc:
            message = str(getattr(exc, "orig", None) or exc)
            _LOG.warning("Pagination query failed: %s", message)
            raise QueryFailedError(message) from exc
        except (OverflowError, ValueError, TypeError) as exc:
            # Raised by DBAPI drivers while binding parameters, e.g. sqlite3 and oversized ints.
            _LOG.warning("Pagination query failed: %s", exc)
            raise QueryFailedError(str(exc)) from exc

        if schema is not None:
            items: list[Any] = [schema.model_validate(row, from_attributes=True) for row in rows]
        elif plain:
            items = [_row_to_dict(row) for row in rows]
        else:
            items = list(rows)
        return self._assemble(request, total, items)

    def _load_only(self, fields: tuple[str, ...]):
        description = self._query.column_descriptions[0] if self._query.column_descriptions else {}
        entity = description.get("entity")
        if entity is None:
            raise ForbiddenColumnError(fields[0])
        mapper = sa_inspect(entity).mapper
        attrs = []
        for name in fields:
            check_column(name, self.config.allowed_columns)
            if name not in mapper.column_attrs:
                raise ForbiddenColumnError(name)
            attrs.append(getattr(entity, name))
        return load_only(*attrs)

    def _assemble(self, request: PaginationRequest, total: int, items: list[Any]) -> PaginationResult:
        start = self.config.page_start
        total_pages = math.ceil(total / request.size) if total > 0 else 0
        max_page = total_pages - 1 + start if total_pages > 0 else start
        return PaginationResult(
            items=items,
            page=request.page,
            size=request.size,
            total=total,
            total_pages=total_pages,
            max_page=max_page,
            first=request.page == start,
            last=request.page == max_page,
            visible=len(items),
        )

    def _failure(self, request: PaginationRequest, exc: PaginationError) -> PaginationResult:
        result = self._assemble(request, 0, [])
        if not self.config.error_enabled:
            return result
        return result.model_copy(update={"error": True, "error_message": exc.message or exc.kind.value})

    def _read_cache(
        self,
        adapter: CacheAdapter,
        key: str,
        schema: type[BaseModel] | None,
    ) -> PaginationResult | None:
        try:
            if not adapter.is_valid(key):
                _LOG.debug("Cache miss for %s", key)
                return None
            result = PaginationResult.model_validate_json(adapter.get(key))
        except CacheMiss:
            _LOG.debug("Cache miss for %s", key)
            return None
        except Exception:
            _LOG.warning("Cache read failed for %s; falling back to the database", key, exc_info=True)
            return None

        _LOG.debug("Serving page from cache %s", key)
        if schema is not None:
            result = result.model_copy(update={"items": [schema.model_validate(item) for item in result.items]})
        return result

    def _write_cache(self, adapter: CacheAdapter, key: str, result: PaginationResult) -> None:
        try:
            adapter.set(key, result.model_dump_json())
        except Exception:
            _LOG.warning("Cache write failed for %s", key, exc_info=True)
