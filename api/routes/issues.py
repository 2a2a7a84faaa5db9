"""
api/routes/issues.py -- Bug report routes.

Routes:
  GET    /api/issues                 -- filtered, paginated list (optional auth)
  GET    /api/issues/{issue_id}      -- detail with screenshots, tags, caller state
  POST   /api/issues/{issue_id}/like -- toggle the caller's upvote (auth required)
  POST   /api/issues/{issue_id}/flag -- toggle the caller's flag (auth required)

Visibility: hidden issues are returned only to their reporter. A hidden issue
requested by anyone else is a 404, indistinguishable from a missing one.

Filters on the list: status (exact), domain (domain URL substring),
search (description or URL substring).
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from api.concurrency import envelope, gather_blocking, page_params, resource_id
from api.models import Page, ReactionResponse
from auth.dependencies import get_current_user, try_get_current_user
from auth.models import Identity
from core.errors import NotFoundError
from core.pagination import PageRequest
from tracker.filters import ISSUE_FILTERS
from tracker.store import TrackerStore

router = APIRouter()


@router.get("", response_model=Page)
def list_issues(
    request: Request,
    page: PageRequest = Depends(page_params()),
    viewer: Optional[Identity] = Depends(try_get_current_user),
) -> dict:
    """List issues, newest first."""
    store: TrackerStore = request.app.state.store
    filters = dict(request.query_params)
    total, rows = store.list_issues(filters, page, viewer_id=viewer.id if viewer else None)
    return envelope(request, total, rows, page, ISSUE_FILTERS.active(filters))


@router.get("/{issue_id}")
async def get_issue(
    request: Request,
    issue_id: str,
    viewer: Optional[Identity] = Depends(try_get_current_user),
) -> dict:
    """Issue detail. Screenshots, tags and the caller's reactions load concurrently."""
    store: TrackerStore = request.app.state.store
    pk = resource_id(issue_id, "Issue")
    viewer_id = viewer.id if viewer else None
    issue = await run_in_threadpool(store.get_issue, pk, viewer_id)
    if issue is None:
        raise NotFoundError("Issue not found.")

    calls = [(store.get_issue_screenshots, pk), (store.get_issue_tags, pk)]
    if viewer is not None:
        calls += [(store.has_upvoted, viewer.id, pk), (store.has_flagged, viewer.id, pk)]
    results = await gather_blocking(*calls)

    issue["screenshots"] = results[0]
    issue["tags"] = results[1]
    if viewer is not None:
        issue["is_upvoted"], issue["is_flagged"] = results[2], results[3]
    return issue


def _toggle(request: Request, issue_id: str, user: Identity, kind: str) -> ReactionResponse:
    store: TrackerStore = request.app.state.store
    pk = resource_id(issue_id, "Issue")
    if store.get_issue(pk, user.id) is None:
        raise NotFoundError("Issue not found.")
    profile_id = store.get_profile_id(user.id)
    if profile_id is None:
        raise NotFoundError("User profile not found.")
    toggle = store.toggle_upvote if kind == "like" else store.toggle_flag
    active, count = toggle(profile_id, pk)
    return ReactionResponse(issue_id=pk, active=active, count=count)


@router.post("/{issue_id}/like", response_model=ReactionResponse)
def like_issue(request: Request, issue_id: str, user: Identity = Depends(get_current_user)) -> ReactionResponse:
    """Upvote the issue, or remove the caller's existing upvote."""
    return _toggle(request, issue_id, user, "like")


@router.post("/{issue_id}/flag", response_model=ReactionResponse)
def flag_issue(request: Request, issue_id: str, user: Identity = Depends(get_current_user)) -> ReactionResponse:
    """Flag the issue, or remove the caller's existing flag."""
    return _toggle(request, issue_id, user, "flag")
