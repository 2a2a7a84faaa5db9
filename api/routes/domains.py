"""
api/routes/domains.py -- Tested-domain routes.

Routes:
  GET    /api/domains                      -- active domains, search by name or URL
  GET    /api/domains/{domain_id}          -- detail plus top tester and tags
  GET    /api/domains/{domain_id}/issues   -- the domain's visible issues, filter by status
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from api.concurrency import envelope, gather_blocking, page_params, resource_id
from api.models import Page
from auth.dependencies import try_get_current_user
from auth.models import Identity
from core.errors import NotFoundError
from core.pagination import PageRequest
from tracker.filters import DOMAIN_FILTERS, SCOPED_ISSUE_FILTERS
from tracker.store import TrackerStore

router = APIRouter()


@router.get("", response_model=Page)
def list_domains(request: Request, page: PageRequest = Depends(page_params())) -> dict:
    store: TrackerStore = request.app.state.store
    filters = dict(request.query_params)
    total, rows = store.list_domains(filters, page)
    return envelope(request, total, rows, page, DOMAIN_FILTERS.active(filters))


@router.get("/{domain_id}")
async def get_domain(request: Request, domain_id: str) -> dict:
    store: TrackerStore = request.app.state.store
    pk = resource_id(domain_id, "Domain")
    domain = await run_in_threadpool(store.get_domain, pk)
    if domain is None:
        raise NotFoundError("Domain not found.")
    domain["top_tester"], domain["tags"] = await gather_blocking(
        (store.get_domain_top_tester, pk),
        (store.get_domain_tags, pk),
    )
    return domain


@router.get("/{domain_id}/issues", response_model=Page)
def list_domain_issues(
    request: Request,
    domain_id: str,
    page: PageRequest = Depends(page_params()),
    viewer: Optional[Identity] = Depends(try_get_current_user),
) -> dict:
    store: TrackerStore = request.app.state.store
    pk = resource_id(domain_id, "Domain")
    filters = dict(request.query_params)
    total, rows = store.list_domain_issues(pk, filters, page, viewer_id=viewer.id if viewer else None)
    return envelope(request, total, rows, page, SCOPED_ISSUE_FILTERS.active(filters))
