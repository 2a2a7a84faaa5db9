"""
api/routes/organizations.py -- Organization routes.

Routes:
  GET    /api/organizations                          -- active orgs, search by name or description
  GET    /api/organizations/{org_id}                 -- detail plus tags and managers
  GET    /api/organizations/{org_id}/repositories    -- repos, most-starred first
  GET    /api/organizations/{org_id}/members         -- team members by lifetime points
"""

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from api.concurrency import envelope, gather_blocking, page_params, resource_id
from api.models import Page
from core.errors import NotFoundError
from core.pagination import PageRequest
from tracker.filters import ORGANIZATION_FILTERS
from tracker.store import TrackerStore

router = APIRouter()


@router.get("", response_model=Page)
def list_organizations(request: Request, page: PageRequest = Depends(page_params())) -> dict:
    store: TrackerStore = request.app.state.store
    filters = dict(request.query_params)
    total, rows = store.list_organizations(filters, page)
    return envelope(request, total, rows, page, ORGANIZATION_FILTERS.active(filters))


@router.get("/{org_id}")
async def get_organization(request: Request, org_id: str) -> dict:
    store: TrackerStore = request.app.state.store
    pk = resource_id(org_id, "Organization")
    organization = await run_in_threadpool(store.get_organization, pk)
    if organization is None:
        raise NotFoundError("Organization not found.")
    organization["tags"], organization["managers"] = await gather_blocking(
        (store.get_organization_tags, pk),
        (store.get_organization_managers, pk),
    )
    return organization


@router.get("/{org_id}/repositories", response_model=Page)
def list_repositories(request: Request, org_id: str, page: PageRequest = Depends(page_params())) -> dict:
    store: TrackerStore = request.app.state.store
    pk = resource_id(org_id, "Organization")
    total, rows = store.list_organization_repositories(pk, page)
    return envelope(request, total, rows, page)


@router.get("/{org_id}/members", response_model=Page)
def list_members(request: Request, org_id: str, page: PageRequest = Depends(page_params())) -> dict:
    store: TrackerStore = request.app.state.store
    pk = resource_id(org_id, "Organization")
    total, rows = store.list_organization_members(pk, page)
    return envelope(request, total, rows, page)
