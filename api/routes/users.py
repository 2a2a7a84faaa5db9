"""
api/routes/users.py -- Contributor profile routes.

Routes:
  GET    /api/users/{user_id}         -- profile, team, score, badges (optional auth)
  PUT    /api/users/{user_id}         -- edit own profile fields (auth required)
  GET    /api/users/{user_id}/issues  -- the user's reports, paginated (optional auth)
  GET    /api/users/{user_id}/points  -- point-award history, paginated

Privacy: email is only included when the caller is that user or staff.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from api.concurrency import envelope, gather_blocking, page_params, resource_id
from api.models import Page, ProfileUpdate
from auth.dependencies import get_current_user, try_get_current_user
from auth.models import Identity
from core.errors import AuthorizationError, BadRequestError, NotFoundError
from core.pagination import PageRequest
from tracker.store import TrackerStore

router = APIRouter()


def _redact(user: dict, viewer: Optional[Identity]) -> dict:
    if viewer is None or (viewer.id != user["id"] and not viewer.is_privileged):
        user.pop("email", None)
    return user


@router.get("/{user_id}")
async def get_user(
    request: Request,
    user_id: str,
    viewer: Optional[Identity] = Depends(try_get_current_user),
) -> dict:
    store: TrackerStore = request.app.state.store
    pk = resource_id(user_id, "User")
    user = await run_in_threadpool(store.get_user, pk)
    if user is None:
        raise NotFoundError("User not found.")
    total_score, issue_count, badges = await gather_blocking(
        (store.get_user_total_score, pk),
        (store.count_user_issues, pk, viewer.id if viewer else None),
        (store.get_user_badges, pk),
    )
    user.update(total_score=total_score, issue_count=issue_count, badges=badges)
    return _redact(user, viewer)


@router.put("/{user_id}")
def update_user(
    request: Request,
    user_id: str,
    body: ProfileUpdate,
    user: Identity = Depends(get_current_user),
) -> dict:
    """Patch the caller's own profile. Only fields present in the body change."""
    store: TrackerStore = request.app.state.store
    pk = resource_id(user_id, "User")
    if pk != user.id:
        raise AuthorizationError("You can only update your own profile.")
    fields = body.model_dump(exclude_unset=True)
    if not fields:
        raise BadRequestError("No valid fields to update.")
    updated = store.update_profile(pk, fields)
    if updated is None:
        raise NotFoundError("User profile not found.")
    return updated


@router.get("/{user_id}/issues", response_model=Page)
def list_user_issues(
    request: Request,
    user_id: str,
    page: PageRequest = Depends(page_params()),
    viewer: Optional[Identity] = Depends(try_get_current_user),
) -> dict:
    store: TrackerStore = request.app.state.store
    pk = resource_id(user_id, "User")
    total, rows = store.list_user_issues(pk, page, viewer_id=viewer.id if viewer else None)
    return envelope(request, total, rows, page)


@router.get("/{user_id}/points", response_model=Page)
def list_user_points(
    request: Request,
    user_id: str,
    page: PageRequest = Depends(page_params()),
) -> dict:
    store: TrackerStore = request.app.state.store
    pk = resource_id(user_id, "User")
    total, rows = store.list_user_points(pk, page)
    return envelope(request, total, rows, page)
