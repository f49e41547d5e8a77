from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from vector_store_manager.core.errors import ValidationError
from vector_store_manager.domain.models.page import Page

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

ORDER_ASC = "asc"
ORDER_DESC = "desc"

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class PageRequest:
    limit: int = DEFAULT_PAGE_SIZE
    order: str = ORDER_DESC
    after: str = ""

    @classmethod
    def build(cls, *, limit: int | None = None, order: str | None = None, after: str | None = None) -> "PageRequest":
        raw_limit = 0 if limit is None else int(limit)
        if raw_limit < 0:
            raise ValidationError("limit must be non-negative")
        if raw_limit == 0:
            raw_limit = DEFAULT_PAGE_SIZE
        normalized_order = (order or ORDER_DESC).strip().lower()
        if normalized_order not in {ORDER_ASC, ORDER_DESC}:
            raise ValidationError("order must be one of 'asc' or 'desc'")
        return cls(
            limit=min(raw_limit, MAX_PAGE_SIZE),
            order=normalized_order,
            after=(after or "").strip(),
        )

    @property
    def is_asc(self) -> bool:
        return self.order == ORDER_ASC


@dataclass(frozen=True, slots=True)
class Cursor:
    created_at: str
    row_id: int


def keyset_clause(order: str, cursor: Cursor | None) -> tuple[str, str, tuple[Any, ...]]:
    """Return (where-fragment, order-by, params) for a (created_at, id) keyset.

    The fragment is empty when there is no cursor. Rows are filtered strictly
    beyond the cursor in the requested direction; id breaks created_at ties.
    """
    if order == ORDER_ASC:
        order_by = "created_at ASC, id ASC"
        comparison = ">"
    else:
        order_by = "created_at DESC, id DESC"
        comparison = "<"
    if cursor is None:
        return "", order_by, ()
    fragment = f" AND (created_at {comparison} ? OR (created_at = ? AND id {comparison} ?))"
    return fragment, order_by, (cursor.created_at, cursor.created_at, cursor.row_id)


def fetch_page(
    conn: sqlite3.Connection,
    *,
    base_sql: str,
    base_params: tuple[Any, ...],
    order: str,
    cursor: Cursor | None,
    limit: int,
    to_model: Callable[[sqlite3.Row], T],
    external_id: Callable[[T], str],
) -> Page[T]:
    fragment, order_by, cursor_params = keyset_clause(order, cursor)
    rows = conn.execute(
        f"{base_sql}{fragment} ORDER BY {order_by} LIMIT ?",
        (*base_params, *cursor_params, limit + 1),
    ).fetchall()
    items = [to_model(row) for row in rows]
    has_more = len(items) > limit
    if has_more:
        items = items[:limit]
    return Page(
        data=items,
        first_id=external_id(items[0]) if items else "",
        last_id=external_id(items[-1]) if items else "",
        has_more=has_more,
    )
