"""
api/concurrency.py -- Request-scoped helpers shared by the resource routers.

gather_blocking() runs independent, read-only repository calls on Starlette's
thread pool and waits for all of them. The store is synchronous (SQLAlchemy
Core), so each call occupies one worker thread and one pooled connection; the
event loop stays free while they run. It is a join point: the response is
composed only after every call has returned, and the first failure propagates.

page_params() and resource_id() normalize query and path input the lenient
way every route shares: malformed pagination falls back to defaults, and a
non-numeric id is a 404.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Optional

from fastapi import Query, Request
from starlette.concurrency import run_in_threadpool

from core.errors import NotFoundError
from core.pagination import DEFAULT_PER_PAGE, PageMeta, PageRequest, paginate
from core.query import MAX_SQL_INTEGER, parse_int


async def gather_blocking(*calls: tuple[Callable[..., Any], ...]) -> list[Any]:
    """Run (func, *args) tuples concurrently in the thread pool, preserving order."""
    return list(await asyncio.gather(*(run_in_threadpool(func, *args) for func, *args in calls)))


def page_params(default_per_page: int = DEFAULT_PER_PAGE) -> Callable[..., PageRequest]:
    """Build a dependency that parses page/per_page with a route-specific default."""

    def dependency(
        page: Optional[str] = Query(default=None),
        per_page: Optional[str] = Query(default=None),
    ) -> PageRequest:
        return PageRequest.parse(page, per_page, default_per_page)

    return dependency


def resource_id(raw: str, resource: str) -> int:
    """Parse a path id. Non-numeric, non-positive or out-of-range ids are reported as missing."""
    value = parse_int(raw, None, 1, MAX_SQL_INTEGER)
    if value is None:
        raise NotFoundError(f"{resource} not found.")
    return value


def envelope(
    request: Request,
    total: int,
    rows: list[dict],
    page: PageRequest,
    filters: Optional[dict[str, str]] = None,
) -> dict[str, Any]:
    """Shape the {count, next, previous, results} body for one page of rows.

    Links are absolute, built from the request URL without its query string,
    and carry the route's active filters.
    """
    base_url = str(request.url.replace(query=""))
    meta: PageMeta = paginate(total, page.page, page.per_page, base_url, filters)
    return {"count": meta.count, "next": meta.next, "previous": meta.previous, "results": rows}
