"""
core/pagination.py -- Offset pagination shared by every list endpoint.

Pure arithmetic and URL templating over a count supplied by the caller; this
module never queries the store.

Envelope invariants:
  next      present iff offset + per_page < count
  previous  present iff page > 1
  count     always the caller's total, independent of the page slice size
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlencode

from core.query import MAX_SQL_INTEGER, parse_int

DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100
# Keeps the offset inside a BIGINT for any per_page; pages past the data are empty.
MAX_PAGE = MAX_SQL_INTEGER // MAX_PER_PAGE


def clamp_per_page(per_page: int) -> int:
    return max(1, min(per_page, MAX_PER_PAGE))


@dataclass(frozen=True)
class PageRequest:
    """Normalized page position. 1 <= page <= MAX_PAGE and 1 <= per_page <= 100."""

    page: int = 1
    per_page: int = DEFAULT_PER_PAGE

    def __post_init__(self) -> None:
        # frozen=True requires object.__setattr__ for normalization
        object.__setattr__(self, "page", max(1, min(self.page, MAX_PAGE)))
        object.__setattr__(self, "per_page", clamp_per_page(self.per_page))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    @classmethod
    def parse(
        cls,
        raw_page: Optional[str],
        raw_per_page: Optional[str],
        default_per_page: int = DEFAULT_PER_PAGE,
    ) -> "PageRequest":
        """Build from query-string values. Malformed input falls back to defaults."""
        return cls(
            page=parse_int(raw_page, 1),
            per_page=parse_int(raw_per_page, default_per_page),
        )


@dataclass(frozen=True)
class PageMeta:
    count: int
    next: Optional[str]
    previous: Optional[str]
    page: int
    per_page: int
    offset: int


def page_url(base_url: str, page: int, per_page: int, extra_query: Optional[Mapping[str, Any]] = None) -> str:
    query = dict(extra_query or {})
    query["page"] = page
    query["per_page"] = per_page
    return f"{base_url}?{urlencode(query)}"


def paginate(
    total_count: int,
    page: int,
    per_page: int,
    base_url: str,
    extra_query: Optional[Mapping[str, Any]] = None,
) -> PageMeta:
    """Compute the envelope metadata for one page of a list response.

    extra_query holds the route's active filters; they are preserved in the
    next/previous links with page overridden.
    """
    request = PageRequest(page=page, per_page=per_page)
    offset = request.offset
    next_url = None
    if offset + request.per_page < total_count:
        next_url = page_url(base_url, request.page + 1, request.per_page, extra_query)
    previous_url = None
    if request.page > 1:
        previous_url = page_url(base_url, request.page - 1, request.per_page, extra_query)
    return PageMeta(
        count=total_count,
        next=next_url,
        previous=previous_url,
        page=request.page,
        per_page=request.per_page,
        offset=offset,
    )
