from paginate.core.config import PaginatorConfig, Settings
from paginate.core.errors import (
    ErrorKind,
    ForbiddenColumnError,
    MalformedFilterError,
    PaginationError,
    QueryFailedError,
)
from paginate.schemas.filters import FilterConnector, FilterGroup, FilterLeaf
from paginate.schemas.pagination import PaginationRequest, PaginationResult, SortDirective
from paginate.services.cache import (
    CacheAdapter,
    InMemoryCacheAdapter,
    NoOpCacheAdapter,
    RedisCacheAdapter,
    build_cache_adapter,
)
from paginate.services.directives import parse_fields, parse_sorts
from paginate.services.filter_parser import parse_filters
from paginate.services.paginator import PageBuilder, Paginator
from paginate.services.predicate_compiler import Predicate, compile_filters
from paginate.services.request_parser import parse_request

__all__ = [
    "CacheAdapter",
    "ErrorKind",
    "FilterConnector",
    "FilterGroup",
    "FilterLeaf",
    "ForbiddenColumnError",
    "InMemoryCacheAdapter",
    "MalformedFilterError",
    "NoOpCacheAdapter",
    "PageBuilder",
    "PaginationError",
    "PaginationRequest",
    "PaginationResult",
    "Paginator",
    "PaginatorConfig",
    "Predicate",
    "QueryFailedError",
    "RedisCacheAdapter",
    "Settings",
    "SortDirective",
    "build_cache_adapter",
    "compile_filters",
    "parse_fields",
    "parse_filters",
    "parse_request",
    "parse_sorts",
]
