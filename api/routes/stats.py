"""
api/routes/stats.py -- Platform-wide statistics.

Routes:
  GET    /api/stats                  -- headline totals plus last-7-days activity
  GET    /api/stats/activity         -- visible issues per day, ?days= (1..365, default 30)
  GET    /api/stats/issues-by-label  -- issue counts per label
  GET    /api/stats/top-domains      -- domains with most issues, ?limit= (1..50, default 10)

Hidden issues are excluded from every figure.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Query, Request
from starlette.concurrency import run_in_threadpool

from api.concurrency import gather_blocking
from api.models import ActivityResponse, StatsResponse
from core.query import parse_int
from tracker.store import TrackerStore

router = APIRouter()

RECENT_DAYS = 7
DEFAULT_ACTIVITY_DAYS = 30
MAX_ACTIVITY_DAYS = 365
DEFAULT_TOP_DOMAINS = 10
MAX_TOP_DOMAINS = 50


def _clamp(raw: Optional[str], default: int, upper: int) -> int:
    return max(1, min(parse_int(raw, default), upper))


@router.get("", response_model=StatsResponse)
async def get_stats(request: Request) -> StatsResponse:
    """Headline counts. Each figure is an independent query run concurrently."""
    store: TrackerStore = request.app.state.store
    since = datetime.now(timezone.utc) - timedelta(days=RECENT_DAYS)
    (
        total_issues,
        total_users,
        total_domains,
        total_organizations,
        total_hunts,
        total_points,
        issues_this_week,
        new_users_this_week,
    ) = await gather_blocking(
        (store.count_public_issues,),
        (store.count_active_users,),
        (store.count_active_domains,),
        (store.count_active_organizations,),
        (store.count_published_hunts,),
        (store.sum_points,),
        (store.count_public_issues, since),
        (store.count_active_users, since),
    )
    return StatsResponse(
        total_issues=total_issues,
        total_users=total_users,
        total_domains=total_domains,
        total_organizations=total_organizations,
        total_hunts=total_hunts,
        total_points=total_points,
        issues_this_week=issues_this_week,
        new_users_this_week=new_users_this_week,
    )


@router.get("/activity", response_model=ActivityResponse)
async def get_activity(request: Request, days: Optional[str] = Query(default=None)) -> ActivityResponse:
    store: TrackerStore = request.app.state.store
    window = _clamp(days, DEFAULT_ACTIVITY_DAYS, MAX_ACTIVITY_DAYS)
    since = datetime.now(timezone.utc) - timedelta(days=window)
    rows = await run_in_threadpool(store.issue_activity, since)
    return ActivityResponse(days=window, activity=rows)


@router.get("/issues-by-label")
def get_issues_by_label(request: Request) -> list[dict]:
    store: TrackerStore = request.app.state.store
    return store.issues_by_label()


@router.get("/top-domains")
def get_top_domains(request: Request, limit: Optional[str] = Query(default=None)) -> list[dict]:
    store: TrackerStore = request.app.state.store
    return store.top_domains(_clamp(limit, DEFAULT_TOP_DOMAINS, MAX_TOP_DOMAINS))
