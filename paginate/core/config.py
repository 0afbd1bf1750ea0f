from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PAGINATE_",
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    PAGE_START: int = 0
    DEFAULT_SIZE: int = 10
    MAX_SIZE: int = 100
    OPERATOR: str = "AND"  # AND | OR
    ERROR_ENABLED: bool = False
    LIKE_AS_ILIKE_DISABLED: bool = False
    FIELD_SELECTOR_ENABLED: bool = False
    SMART_SEARCH: bool = False

    # Empty URL means no shared cache; callers may still pass an adapter explicitly.
    REDIS_URL: str = ""
    CACHE_TTL_SECONDS: int = 0


class PaginatorConfig(BaseModel):
    """Immutable per-paginator configuration.

    Every option is optional; the defaults match a paginator built with no
    configuration at all.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    page_start: int = 0
    operator: Literal["AND", "OR"] = "AND"
    like_as_ilike_disabled: bool = False
    error_enabled: bool = False
    field_selector_enabled: bool = False
    cache_adapter: Any = None
    default_size: int = 10
    max_size: int = 100

    smart_search: bool = False
    field_wrapper: str | None = None
    value_wrapper: str | None = None
    allowed_columns: frozenset[str] | None = None

    page_params: tuple[str, ...] = ("page",)
    size_params: tuple[str, ...] = ("size",)
    sort_params: tuple[str, ...] = ("sort",)
    filter_params: tuple[str, ...] = ("filters",)
    fields_params: tuple[str, ...] = ("fields",)

    @field_validator("operator", mode="before")
    @classmethod
    def _normalize_operator(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper() or "AND"
        return value

    @field_validator("field_wrapper", "value_wrapper")
    @classmethod
    def _check_wrapper(cls, value: str | None) -> str | None:
        if value is None:
            return value
        if value.count("%s") != 1:
            raise ValueError('wrapper must contain exactly one "%s" placeholder')
        # "?" marks bound parameters in compiled predicates.
        if "?" in value:
            raise ValueError('wrapper must not contain "?"')
        return value

    @model_validator(mode="after")
    def _check_sizes(self) -> "PaginatorConfig":
        if self.default_size < 1:
            raise ValueError("default_size must be positive")
        if self.max_size < self.default_size:
            raise ValueError("max_size must not be lower than default_size")
        return self

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides: Any) -> "PaginatorConfig":
        settings = settings or Settings()
        values: dict[str, Any] = {
            "page_start": settings.PAGE_START,
            "default_size": settings.DEFAULT_SIZE,
            "max_size": settings.MAX_SIZE,
            "operator": settings.OPERATOR,
            "error_enabled": settings.ERROR_ENABLED,
            "like_as_ilike_disabled": settings.LIKE_AS_ILIKE_DISABLED,
            "field_selector_enabled": settings.FIELD_SELECTOR_ENABLED,
            "smart_search": settings.SMART_SEARCH,
        }
        if settings.REDIS_URL and "cache_adapter" not in overrides:
            from paginate.services.cache import build_cache_adapter

            values["cache_adapter"] = build_cache_adapter(
                settings.REDIS_URL,
                ttl_seconds=settings.CACHE_TTL_SECONDS or None,
            )
        values.update(overrides)
        return cls(**values)
