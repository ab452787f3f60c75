"""Offset pagination for ledger and rollback listings."""

from dataclasses import dataclass
from typing import Generic, TypeVar

from fastapi import Query
from pydantic import BaseModel, computed_field

from app.core.config import get_settings

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    items: list[T]
    limit: int
    offset: int
    total: int

    @computed_field
    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass(frozen=True)
class PageParams:
    limit: int | None = None
    offset: int | None = None


def page_params(
    limit: int | None = Query(None, ge=1, description="Defaults to DEFAULT_PAGE_SIZE, capped at MAX_PAGE_SIZE"),
    offset: int = Query(0, ge=0),
) -> PageParams:
    """Dependency: raw paging query parameters; services clamp them with paginate()."""
    return PageParams(limit=limit, offset=offset)


def paginate(limit: int | None, offset: int | None, max_limit: int | None = None) -> tuple[int, int]:
    """Clamp limit/offset; return (limit, offset). Missing values fall back to settings."""
    settings = get_settings()
    if max_limit is None:
        max_limit = settings.max_page_size
    if limit is None:
        limit = settings.default_page_size
    limit = max(1, min(limit, max_limit))
    offset = max(0, offset or 0)
    return limit, offset
