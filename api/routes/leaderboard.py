"""
api/routes/leaderboard.py -- Ranked leaderboards.

Routes:
  GET    /api/leaderboard           -- type=users (default) | organizations, paginated
  GET    /api/leaderboard/monthly   -- top scorer of each month in ?year=

Ranks are assigned after the store returns one ordered page: the row at
index i gets rank offset + i + 1. The count and the page come from the same
plan, so ranks are contiguous across pages. Ties are broken by ascending id.

year and month apply to the users board only; month needs a year, and
malformed values are ignored rather than rejected.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from starlette.concurrency import run_in_threadpool

from api.concurrency import envelope, page_params
from api.models import MonthlyLeaderboardResponse, Page
from core.pagination import PageRequest
from core.query import MONTH_RANGE, YEAR_RANGE, parse_int
from core.ranking import assign_ranks, monthly_winners
from tracker.store import TrackerStore

router = APIRouter()

LEADERBOARD_PER_PAGE = 50


@router.get("", response_model=Page)
def get_leaderboard(
    request: Request,
    page: PageRequest = Depends(page_params(LEADERBOARD_PER_PAGE)),
    board: Optional[str] = Query(default=None, alias="type"),
    year: Optional[str] = Query(default=None),
    month: Optional[str] = Query(default=None),
) -> dict:
    store: TrackerStore = request.app.state.store
    if board == "organizations":
        total, rows = store.organization_leaderboard(page)
        return envelope(request, total, assign_ranks(rows, page.offset), page, {"type": "organizations"})

    parsed_year = parse_int(year, None, *YEAR_RANGE)
    parsed_month = parse_int(month, None, *MONTH_RANGE) if parsed_year is not None else None
    total, rows = store.user_leaderboard(parsed_year, parsed_month, page)
    links: dict[str, object] = {}
    if parsed_year is not None:
        links["year"] = parsed_year
    if parsed_month is not None:
        links["month"] = parsed_month
    return envelope(request, total, assign_ranks(rows, page.offset), page, links)


@router.get("/monthly", response_model=MonthlyLeaderboardResponse)
async def get_monthly_leaderboard(request: Request, year: Optional[str] = Query(default=None)) -> dict:
    """Twelve entries, January to December; months without points have no winner."""
    store: TrackerStore = request.app.state.store
    target = parse_int(year, None, *YEAR_RANGE)
    if target is None:
        target = datetime.now(timezone.utc).year
    rows = await run_in_threadpool(store.monthly_user_scores, target)
    return {"year": target, "months": monthly_winners(rows)}
