from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlalchemy.orm import Query

T = TypeVar("T")

MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.limit)) if self.limit else 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1


def clamp_page(page: int, limit: int) -> tuple[int, int]:
    return max(1, int(page)), max(1, min(int(limit), MAX_PAGE_SIZE))


def paginate(query: Query, *, page: int = 1, limit: int = 20) -> Page:
    """Run ``query`` for one page; ``query`` must already be ordered."""

    page, limit = clamp_page(page, limit)
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return Page(items=items, total=int(total), page=page, limit=limit)
