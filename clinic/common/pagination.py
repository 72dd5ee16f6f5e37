"""Page-number pagination for list endpoints: query parsing, envelope, query helper."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Generic, Optional, Sequence, TypeVar

from fastapi import Query
from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

T = TypeVar("T")


@dataclass(frozen=True)
class PageRequest:
    """Which slice of a listing the caller wants, already clamped to limits."""

    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    sort: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "page", max(self.page, 1))
        object.__setattr__(self, "page_size", min(max(self.page_size, 1), MAX_PAGE_SIZE))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


def page_request(
    page: int = Query(default=1, ge=1, description="1-based page number"),
    page_size: int = Query(
        default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE,
        description=f"Rows per page, at most {MAX_PAGE_SIZE}",
    ),
    sort: Optional[str] = Query(
        default=None, description='Column to sort by; a leading "-" sorts descending',
    ),
) -> PageRequest:
    """FastAPI dependency for ``page``, ``page_size`` and ``sort`` query parameters."""
    return PageRequest(page=page, page_size=page_size, sort=sort)


class PaginationMeta(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def for_total(cls, request: PageRequest, total: int) -> "PaginationMeta":
        pages = math.ceil(total / request.page_size) if total else 0
        return cls(
            page=request.page,
            page_size=request.page_size,
            total=total,
            total_pages=pages,
            has_next=request.page < pages,
            has_prev=request.page > 1,
        )


class PaginatedResponse(BaseModel, Generic[T]):
    """List envelope: ``{"data": [...], "meta": {...}}``."""

    data: Sequence[T]
    meta: PaginationMeta


def _apply_sort(query: Select, sort: Optional[str], model: Any) -> Select:
    if not sort or model is None:
        return query
    column = model.__table__.columns.get(sort.lstrip("-"))
    if column is None:
        return query
    # An explicit sort replaces the query's default ordering
    ordered = column.desc() if sort.startswith("-") else column.asc()
    return query.order_by(None).order_by(ordered)


async def paginate(
    session: AsyncSession,
    query: Select,
    *,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    sort: Optional[str] = None,
    model: Any = None,
) -> tuple[Sequence[Any], PaginationMeta]:
    """Run one page of ``query`` and count the full result set.

    ``sort`` names a column of ``model``'s table. Names that are not
    columns leave the query's ordering untouched.
    """
    request = PageRequest(page=page, page_size=page_size, sort=sort)
    query = _apply_sort(query, request.sort, model)

    total = (
        await session.execute(
            select(func.count()).select_from(query.order_by(None).subquery())
        )
    ).scalar_one()
    rows = (
        await session.execute(query.offset(request.offset).limit(request.page_size))
    ).scalars().all()
    return rows, PaginationMeta.for_total(request, total)
