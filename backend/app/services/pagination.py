"""
Billow Backend — Offset Paginator
==================================

What:  Turns (page, limit, total) into a query window plus neighbour links.
Why:   GET /homes exposes page numbers, so the list is offset-based:
       offset = (page - 1) * limit.
How:   `paginate()` is pure arithmetic; HomeService runs the query with the
       resulting offset/limit and wraps the rows in a HomePage.

Edge cases:
    - A page past the end yields an empty window (the query returns no rows),
      never an error. `previous` is still reported so a client can step back.
    - `next` only appears while offset + limit < total.
"""

from dataclasses import dataclass
from typing import Optional

from app.schemas.home import PageRef


@dataclass(frozen=True)
class PageWindow:
    offset: int
    limit: int
    previous: Optional[PageRef]
    next: Optional[PageRef]


def offset_for(page: int, limit: int) -> int:
    """First record index of `page` (1-based)."""
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    return (page - 1) * limit


def paginate(page: int, limit: int, total: int) -> PageWindow:
    """
    Compute the window and links for one page.

    Args:
        page:  1-based page number
        limit: page size
        total: number of records in the whole collection

    Returns:
        PageWindow with `previous` iff offset > 0 and `next` iff
        offset + limit < total.
    """
    offset = offset_for(page, limit)
    previous = PageRef(page=page - 1, limit=limit) if offset > 0 else None
    following = PageRef(page=page + 1, limit=limit) if offset + limit < total else None
    return PageWindow(offset=offset, limit=limit, previous=previous, next=following)
