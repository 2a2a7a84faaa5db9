"""
tests/conftest.py -- Shared test fixtures for BLT API tests.

This module provides:
  - make_test_url(): a named shared-memory SQLite URL per test module
  - seed_database(): creates the BLT schema and loads a small, fixed dataset
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient over the seeded dataset for route tests
  - seeded_store / credential_store: repositories for unit-level store tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any api/ import so get_settings()
falls back to the development database instead of raising ValueError.

Dataset summary (see seed_database for the rows):
  users    alice(1) bob(2) carol(3, inactive) dave(4, staff) eve(5) frank(6)
  issues   1-25 "Bulk report n" by bob on example.com, 26 public by alice,
           27 hidden by alice, 28 by carol; 27 public issues in total
  points   alice 115 (100 in 2023), bob 17, dave 7, carol 50 (inactive),
           eve 0, frank -3
  hunts    1 active, 2 previous, 3 upcoming, 4 unpublished
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any api/core import so get_settings() does not
# raise for a missing DATABASE_URL.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.limiter import AdmissionController
from api.main import app
from auth.store import CredentialStore
from tracker import schema
from tracker.store import TrackerStore

ALICE_TOKEN = "a1" * 20
BOB_TOKEN = "b2" * 20
CAROL_TOKEN = "c3" * 20  # inactive account
DAVE_TOKEN = "d4" * 20  # staff

BULK_ISSUES = 25
PUBLIC_ISSUES = 27

# ---------------------------------------------------------------------------
# Dataset
# ---------------------------------------------------------------------------


def make_test_url(suffix: str) -> str:
    return f"sqlite:///file:test_blt_{suffix}?mode=memory&cache=shared&uri=true"


def _user(uid: int, username: str, joined: datetime, is_active: bool = True, is_staff: bool = False) -> dict:
    return {
        "id": uid,
        "username": username,
        "email": f"{username}@example.org",
        "first_name": username.title(),
        "last_name": "",
        "is_active": is_active,
        "is_staff": is_staff,
        "is_superuser": False,
        "date_joined": joined,
    }


def _profile(uid: int, team_id: int | None) -> dict:
    return {
        "id": 100 + uid,
        "user_id": uid,
        "user_avatar": f"avatars/{uid}.png",
        "title": 1,
        "role": None,
        "description": None,
        "team_id": team_id,
        "x_username": None,
        "discounted_hourly_rate": 0,
    }


def _issue(iid: int, user_id: int, domain_id: int, description: str, created: datetime, **extra) -> dict:
    row = {
        "id": iid,
        "user_id": user_id,
        "domain_id": domain_id,
        "hunt_id": None,
        "url": f"https://example.com/page/{iid}",
        "description": description,
        "label": 0,
        "status": "open",
        "score": 1,
        "is_hidden": False,
        "reporter_ip_address": "192.0.2.10",
        "created": created,
        "modified": created,
    }
    row.update(extra)
    return row


def _points(pid: int, user_id: int, score: int, created: datetime) -> dict:
    return {"id": pid, "user_id": user_id, "score": score, "reason": "Issue accepted", "created": created}


def seed_database(engine: Engine, now: datetime | None = None) -> datetime:
    """Create the schema on engine and load the fixed dataset. Returns the reference now."""
    now = now or datetime.now(timezone.utc)
    month_ago = now - timedelta(days=30)
    schema.metadata.create_all(engine)

    issues = [
        _issue(
            i,
            2,
            1,
            f"Bulk report {i}",
            now - timedelta(days=20) + timedelta(minutes=i),
            hunt_id=1 if i <= 5 else None,
        )
        for i in range(1, BULK_ISSUES + 1)
    ]
    issues += [
        _issue(
            26,
            1,
            2,
            "Discount 100%_off banner broken",
            now - timedelta(days=2),
            url="https://test_site.org/promo",
            label=4,
            status="closed",
            score=5,
            hunt_id=1,
        ),
        _issue(27, 1, 2, "Secret hidden report", now - timedelta(days=1), label=4, is_hidden=True),
        _issue(28, 3, 1, "Typo on landing page", now - timedelta(days=3), label=5),
    ]

    with engine.begin() as conn:
        conn.execute(
            schema.users.insert(),
            [
                _user(1, "alice", month_ago),
                _user(2, "bob", month_ago),
                _user(3, "carol", month_ago, is_active=False),
                _user(4, "dave", month_ago, is_staff=True),
                _user(5, "eve", month_ago),
                _user(6, "frank", now - timedelta(days=1)),
            ],
        )
        conn.execute(
            schema.tokens.insert(),
            [
                {"key": ALICE_TOKEN, "user_id": 1, "created": month_ago},
                {"key": BOB_TOKEN, "user_id": 2, "created": month_ago},
                {"key": CAROL_TOKEN, "user_id": 3, "created": month_ago},
                {"key": DAVE_TOKEN, "user_id": 4, "created": month_ago},
            ],
        )
        conn.execute(
            schema.organizations.insert(),
            [
                {"id": 1, "admin_id": 1, "name": "Acme Security", "slug": "acme", "description": "Web app testing",
                 "is_active": True, "team_points": 40, "created": month_ago},
                {"id": 2, "admin_id": 4, "name": "Beta Labs", "slug": "beta", "description": "Mobile research",
                 "is_active": True, "team_points": 10, "created": month_ago + timedelta(days=1)},
                {"id": 3, "admin_id": 4, "name": "Dormant Org", "slug": "dormant", "description": "Inactive",
                 "is_active": False, "team_points": 0, "created": month_ago},
            ],
        )
        conn.execute(
            schema.profiles.insert(),
            [_profile(1, 1), _profile(2, 1), _profile(3, None), _profile(4, 2), _profile(5, None), _profile(6, None)],
        )
        conn.execute(
            schema.domains.insert(),
            [
                {"id": 1, "organization_id": 1, "name": "example.com", "url": "https://example.com",
                 "is_active": True, "created": month_ago},
                {"id": 2, "organization_id": 2, "name": "test_site.org", "url": "https://test_site.org",
                 "is_active": True, "created": month_ago + timedelta(days=1)},
                {"id": 3, "organization_id": 3, "name": "retired.net", "url": "https://retired.net",
                 "is_active": False, "created": month_ago},
            ],
        )
        conn.execute(
            schema.hunts.insert(),
            [
                {"id": 1, "domain_id": 1, "name": "Spring Hunt", "is_published": True,
                 "starts_on": now - timedelta(days=10), "end_on": now + timedelta(days=10), "created": month_ago},
                {"id": 2, "domain_id": 1, "name": "Winter Hunt", "is_published": True,
                 "starts_on": now - timedelta(days=60), "end_on": now - timedelta(days=30), "created": month_ago},
                {"id": 3, "domain_id": 2, "name": "Autumn Hunt", "is_published": True,
                 "starts_on": now + timedelta(days=5), "end_on": now + timedelta(days=20), "created": month_ago},
                {"id": 4, "domain_id": 2, "name": "Draft Hunt", "is_published": False,
                 "starts_on": now - timedelta(days=1), "end_on": now + timedelta(days=1), "created": month_ago},
            ],
        )
        conn.execute(
            schema.hunt_prizes.insert(),
            [
                {"id": 1, "hunt_id": 1, "name": "Second", "value": 250},
                {"id": 2, "hunt_id": 1, "name": "First", "value": 500},
                {"id": 3, "hunt_id": 2, "name": "Grand", "value": 1000},
            ],
        )
        conn.execute(schema.issues.insert(), issues)
        conn.execute(
            schema.issue_screenshots.insert(),
            [
                {"id": 1, "issue_id": 26, "image": "screenshots/26-a.png"},
                {"id": 2, "issue_id": 26, "image": "screenshots/26-b.png"},
            ],
        )
        conn.execute(schema.issue_upvotes.insert(), [{"id": 1, "userprofile_id": 102, "issue_id": 26}])
        conn.execute(
            schema.tags.insert(),
            [{"id": 1, "name": "xss", "slug": "xss"}, {"id": 2, "name": "csrf", "slug": "csrf"}],
        )
        conn.execute(schema.issue_tags.insert(), [{"id": 1, "issue_id": 26, "tag_id": 1}])
        conn.execute(schema.domain_tags.insert(), [{"id": 1, "domain_id": 1, "tag_id": 2}])
        conn.execute(schema.organization_tags.insert(), [{"id": 1, "organization_id": 1, "tag_id": 1}])
        conn.execute(schema.organization_managers.insert(), [{"id": 1, "organization_id": 1, "user_id": 2}])
        conn.execute(
            schema.projects.insert(),
            [{"id": 1, "organization_id": 1, "name": "BLT"}, {"id": 2, "organization_id": 1, "name": "BLT Flutter"}],
        )
        conn.execute(
            schema.repos.insert(),
            [
                {"id": 1, "organization_id": 1, "name": "blt", "slug": "blt", "stars": 50},
                {"id": 2, "organization_id": 1, "name": "blt-flutter", "slug": "blt-flutter", "stars": 50},
                {"id": 3, "organization_id": 1, "name": "tiny", "slug": "tiny", "stars": 1},
            ],
        )
        conn.execute(schema.badges.insert(), [{"id": 1, "title": "First Bug", "description": "Reported a bug"}])
        conn.execute(schema.user_badges.insert(), [{"id": 1, "user_id": 1, "badge_id": 1, "awarded_at": month_ago}])
        conn.execute(
            schema.points.insert(),
            [
                _points(1, 1, 10, datetime(2024, 1, 10, 12, 0)),
                _points(2, 1, 5, datetime(2024, 3, 5, 12, 0)),
                _points(3, 1, 100, datetime(2023, 12, 31, 12, 0)),
                _points(4, 2, 10, datetime(2024, 1, 20, 12, 0)),
                _points(5, 2, 7, datetime(2024, 2, 14, 12, 0)),
                _points(6, 3, 50, datetime(2024, 1, 15, 12, 0)),
                _points(7, 4, 7, datetime(2024, 2, 1, 12, 0)),
                _points(8, 5, 0, datetime(2024, 4, 1, 12, 0)),
                _points(9, 6, -3, datetime(2024, 4, 2, 12, 0)),
            ],
        )
    return now


# ---------------------------------------------------------------------------
# Lifespan patch
# ---------------------------------------------------------------------------


def _patch_lifespan(store: TrackerStore, credential_store: CredentialStore, limiter: AdmissionController):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    the seeded in-memory database rather than the configured one.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.credential_store = credential_store
        app.state.limiter = limiter
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one seeded database per test module
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def seeded_store(request) -> Generator[TrackerStore, None, None]:
    """A TrackerStore over a freshly seeded database unique to the test module."""
    store = TrackerStore(make_test_url(request.module.__name__.rsplit(".", 1)[-1]))
    seed_database(store.engine)
    yield store
    store.close()


@pytest.fixture(scope="module")
def credential_store(request, seeded_store: TrackerStore) -> Generator[CredentialStore, None, None]:
    """A CredentialStore on the same seeded database as seeded_store."""
    creds = CredentialStore(make_test_url(request.module.__name__.rsplit(".", 1)[-1]))
    yield creds
    creds.close()


@pytest.fixture(scope="module")
def api_client(seeded_store: TrackerStore, credential_store: CredentialStore) -> Generator[TestClient, None, None]:
    """TestClient over the real app with a patched lifespan.

    The limiter allows far more requests than any module makes, so only the
    tests that replace it ever see a 429.
    """
    limiter = AdmissionController(max_requests=100_000, window_ms=60_000)
    app.router.lifespan_context = _patch_lifespan(seeded_store, credential_store, limiter)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def auth_headers():
    """Return a builder for Authorization headers: auth_headers("alice")."""
    tokens = {"alice": ALICE_TOKEN, "bob": BOB_TOKEN, "carol": CAROL_TOKEN, "dave": DAVE_TOKEN}

    def build(user: str, scheme: str = "Token") -> dict[str, str]:
        return {"Authorization": f"{scheme} {tokens[user]}"}

    return build
