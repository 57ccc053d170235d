from __future__ import annotations

import math
from typing import Generic, TypeVar

from pydantic import BaseModel, computed_field
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

T = TypeVar("T")

MAX_PAGE_SIZE = 100


def paginate(
    session: Session, stmt: Select, page_number: int = 1, page_size: int = 10
) -> tuple[list, int]:
    """Count ``stmt`` and return one 1-indexed page of its scalar rows.

    A page past the end is an empty list with the full count.
    """
    if page_number < 1:
        raise ValueError("Page number must be greater than 0")
    if page_size < 1:
        raise ValueError("Page size must be greater than 0")

    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = int(session.execute(count_stmt).scalar_one() or 0)
    if total == 0:
        return [], 0

    offset = (page_number - 1) * page_size
    items = session.scalars(stmt.offset(offset).limit(page_size)).all()
    return list(items), total


class Page(BaseModel, Generic[T]):
    data: list[T]
    page_number: int
    page_size: int
    total_records: int

    @computed_field
    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_records / self.page_size)

    @computed_field
    @property
    def has_previous(self) -> bool:
        return self.page_number > 1

    @computed_field
    @property
    def has_next(self) -> bool:
        return self.page_number < self.total_pages
