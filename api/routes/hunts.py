"""
api/routes/hunts.py -- Bug hunt routes.

Routes:
  GET    /api/hunts                    -- published hunts, filter=active|upcoming|previous, search
  GET    /api/hunts/{hunt_id}          -- detail with prizes and the top-10 hunt leaderboard
  GET    /api/hunts/{hunt_id}/issues   -- issues submitted to the hunt, paginated

Phases are evaluated against the server's current UTC time, passed to the
store as a bound parameter. Prize lists for a page of hunts are fetched
concurrently, one query per hunt, and attached before the response is sent.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from starlette.concurrency import run_in_threadpool

from api.concurrency import envelope, gather_blocking, page_params, resource_id
from api.models import Page
from auth.dependencies import try_get_current_user
from auth.models import Identity
from core.errors import NotFoundError
from core.pagination import PageRequest
from core.ranking import assign_ranks
from tracker.filters import HUNT_FILTERS
from tracker.store import HUNT_PHASES, TrackerStore

router = APIRouter()

LEADERBOARD_SIZE = 10


@router.get("", response_model=Page)
async def list_hunts(
    request: Request,
    page: PageRequest = Depends(page_params()),
    phase: Optional[str] = Query(default=None, alias="filter"),
) -> dict:
    """List hunts, running ones first. Unknown filter values are ignored."""
    store: TrackerStore = request.app.state.store
    filters = dict(request.query_params)
    phase = phase if phase in HUNT_PHASES else None
    total, rows = await run_in_threadpool(store.list_hunts, filters, phase, page, datetime.now(timezone.utc))

    prizes = await gather_blocking(*((store.get_hunt_prizes, row["id"]) for row in rows))
    for row, hunt_prizes in zip(rows, prizes):
        row["prizes"] = hunt_prizes

    links = HUNT_FILTERS.active(filters)
    if phase:
        links["filter"] = phase
    return envelope(request, total, rows, page, links)


@router.get("/{hunt_id}")
async def get_hunt(request: Request, hunt_id: str) -> dict:
    store: TrackerStore = request.app.state.store
    pk = resource_id(hunt_id, "Hunt")
    hunt = await run_in_threadpool(store.get_hunt, pk)
    if hunt is None:
        raise NotFoundError("Hunt not found.")
    prizes, leaders = await gather_blocking(
        (store.get_hunt_prizes, pk),
        (store.get_hunt_leaderboard, pk, LEADERBOARD_SIZE),
    )
    hunt["prizes"] = prizes
    hunt["leaderboard"] = assign_ranks(leaders)
    return hunt


@router.get("/{hunt_id}/issues", response_model=Page)
def list_hunt_issues(
    request: Request,
    hunt_id: str,
    page: PageRequest = Depends(page_params()),
    viewer: Optional[Identity] = Depends(try_get_current_user),
) -> dict:
    store: TrackerStore = request.app.state.store
    pk = resource_id(hunt_id, "Hunt")
    total, rows = store.list_hunt_issues(pk, page, viewer_id=viewer.id if viewer else None)
    return envelope(request, total, rows, page)
