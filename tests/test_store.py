"""Repository tests for tracker/store.py against the seeded in-memory database.

Covers:
- Issue visibility: hidden issues only for their reporter, IP never selected
- Count and page agree across a full walk of a filtered list
- LIKE wildcards in search input match literally
- Leaderboard sums are not inflated by joins; zero/negative totals excluded
- Period filters, ties, hunt phases relative to a supplied now
- Toggle and profile update writes
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import delete

from conftest import BULK_ISSUES, PUBLIC_ISSUES
from core.pagination import PageRequest
from tracker.schema import issues, points, users


@pytest.fixture
def profileless_user(seeded_store):
    """An active user with points and a hunt issue but no profile row, removed afterwards."""
    created = datetime(2024, 1, 5, 12, 0)
    with seeded_store.engine.begin() as conn:
        conn.execute(
            users.insert().values(
                id=7, username="grace", email="grace@example.org", first_name="Grace", last_name="",
                is_active=True, is_staff=False, is_superuser=False, date_joined=created,
            )
        )
        conn.execute(points.insert().values(id=50, user_id=7, score=500, reason="Issue accepted", created=created))
        conn.execute(
            issues.insert().values(
                id=29, user_id=7, domain_id=2, hunt_id=1, url="https://test_site.org/x", description="Grace report",
                label=0, status="open", score=9, is_hidden=False, created=created, modified=created,
            )
        )
    yield 7
    with seeded_store.engine.begin() as conn:
        conn.execute(delete(issues).where(issues.c.id == 29))
        conn.execute(delete(points).where(points.c.id == 50))
        conn.execute(delete(users).where(users.c.id == 7))


class TestIssueQueries:
    def test_anonymous_count_excludes_hidden(self, seeded_store):
        total, _ = seeded_store.list_issues({}, PageRequest(1, 100))
        assert total == PUBLIC_ISSUES

    def test_reporter_sees_own_hidden_issue(self, seeded_store):
        total, rows = seeded_store.list_issues({}, PageRequest(1, 100), viewer_id=1)
        assert total == PUBLIC_ISSUES + 1
        assert 27 in {r["id"] for r in rows}

    def test_other_viewer_does_not(self, seeded_store):
        total, _ = seeded_store.list_issues({}, PageRequest(1, 100), viewer_id=2)
        assert total == PUBLIC_ISSUES

    def test_walking_pages_covers_every_row_once(self, seeded_store):
        seen = []
        for page in range(1, 5):
            total, rows = seeded_store.list_issues({"search": "bulk"}, PageRequest(page, 7))
            assert total == BULK_ISSUES
            seen.extend(r["id"] for r in rows)
        assert sorted(seen) == list(range(1, BULK_ISSUES + 1))

    def test_newest_first(self, seeded_store):
        _, rows = seeded_store.list_issues({"search": "bulk"}, PageRequest(1, 3))
        assert [r["id"] for r in rows] == [25, 24, 23]

    def test_percent_in_search_is_literal(self, seeded_store):
        total, rows = seeded_store.list_issues({"search": "%"}, PageRequest(1, 100))
        assert total == 1
        assert rows[0]["id"] == 26

    def test_underscore_in_search_is_literal(self, seeded_store):
        total, _ = seeded_store.list_issues({"search": "100%_off"}, PageRequest(1, 100))
        assert total == 1
        total, _ = seeded_store.list_issues({"search": "100%xoff"}, PageRequest(1, 100))
        assert total == 0

    def test_search_is_case_insensitive(self, seeded_store):
        total, _ = seeded_store.list_issues({"search": "BULK REPORT"}, PageRequest(1, 1))
        assert total == BULK_ISSUES

    def test_detail_never_selects_reporter_ip(self, seeded_store):
        issue = seeded_store.get_issue(26)
        assert "reporter_ip_address" not in issue
        assert issue["user_username"] == "alice"
        assert issue["upvotes"] >= 0

    def test_hidden_detail_is_absent_for_others(self, seeded_store):
        assert seeded_store.get_issue(27) is None
        assert seeded_store.get_issue(27, viewer_id=2) is None
        assert seeded_store.get_issue(27, viewer_id=1)["description"] == "Secret hidden report"


class TestLeaderboards:
    def test_global_totals_are_not_multiplied_by_issue_joins(self, seeded_store):
        total, rows = seeded_store.user_leaderboard(None, None, PageRequest(1, 50))
        scores = {r["username"]: r["total_score"] for r in rows}
        assert scores == {"alice": 115, "bob": 17, "dave": 7}
        assert total == 3

    def test_issue_count_is_public_issues_only(self, seeded_store):
        _, rows = seeded_store.user_leaderboard(None, None, PageRequest(1, 50))
        counts = {r["username"]: r["issue_count"] for r in rows}
        assert counts["bob"] == BULK_ISSUES
        assert counts["alice"] == 1

    def test_year_filter(self, seeded_store):
        _, rows = seeded_store.user_leaderboard(2024, None, PageRequest(1, 50))
        assert [(r["username"], r["total_score"]) for r in rows] == [("bob", 17), ("alice", 15), ("dave", 7)]

    def test_month_tie_broken_by_user_id(self, seeded_store):
        _, rows = seeded_store.user_leaderboard(2024, 1, PageRequest(1, 50))
        assert [r["id"] for r in rows] == [1, 2]

    def test_count_matches_rows_across_pages(self, seeded_store):
        total, first = seeded_store.user_leaderboard(None, None, PageRequest(1, 2))
        _, second = seeded_store.user_leaderboard(None, None, PageRequest(2, 2))
        assert total == len(first) + len(second)

    def test_organization_board(self, seeded_store):
        total, rows = seeded_store.organization_leaderboard(PageRequest(1, 50))
        assert total == 2
        assert [(r["name"], r["issue_count"]) for r in rows] == [("Acme Security", 26), ("Beta Labs", 1)]
        assert rows[0]["member_count"] == 2

    def test_monthly_rows_skip_inactive_and_non_positive(self, seeded_store):
        rows = seeded_store.monthly_user_scores(2024)
        users = {r["username"] for r in rows}
        assert "carol" not in users
        assert "eve" not in users
        assert "frank" not in users
        january = sorted((r["user_id"], r["total_score"]) for r in rows if int(r["month"]) == 1)
        assert january == [(1, 10), (2, 10)]

    def test_hunt_leaderboard_secondary_key(self, seeded_store):
        rows = seeded_store.get_hunt_leaderboard(1)
        assert [(r["username"], r["score"], r["issue_count"]) for r in rows] == [("bob", 5, 5), ("alice", 5, 1)]


class TestHunts:
    def test_phases_relative_to_now(self, seeded_store):
        now = datetime.now(timezone.utc)
        page = PageRequest(1, 20)
        assert [r["name"] for r in seeded_store.list_hunts({}, "active", page, now)[1]] == ["Spring Hunt"]
        assert [r["name"] for r in seeded_store.list_hunts({}, "upcoming", page, now)[1]] == ["Autumn Hunt"]
        assert [r["name"] for r in seeded_store.list_hunts({}, "previous", page, now)[1]] == ["Winter Hunt"]

    def test_running_hunts_first_and_unpublished_hidden(self, seeded_store):
        total, rows = seeded_store.list_hunts({}, None, PageRequest(1, 20), datetime.now(timezone.utc))
        assert total == 3
        assert [r["name"] for r in rows] == ["Autumn Hunt", "Spring Hunt", "Winter Hunt"]

    def test_moving_now_changes_phase(self, seeded_store):
        later = datetime.now(timezone.utc) + timedelta(days=15)
        _, rows = seeded_store.list_hunts({}, "active", PageRequest(1, 20), later)
        assert [r["name"] for r in rows] == ["Autumn Hunt"]

    def test_prizes_ordered_by_value(self, seeded_store):
        assert [p["name"] for p in seeded_store.get_hunt_prizes(1)] == ["First", "Second"]

    def test_unpublished_detail_is_absent(self, seeded_store):
        assert seeded_store.get_hunt(4) is None
        assert seeded_store.get_hunt(1)["participant_count"] == 2


class TestDomainsAndOrganizations:
    def test_domain_counts(self, seeded_store):
        domain = seeded_store.get_domain(2)
        assert (domain["open_issues"], domain["closed_issues"]) == (0, 1)

    def test_inactive_domains_are_not_listed(self, seeded_store):
        total, rows = seeded_store.list_domains({}, PageRequest(1, 20))
        assert total == 2
        assert "retired.net" not in {r["name"] for r in rows}

    def test_top_tester(self, seeded_store):
        tester = seeded_store.get_domain_top_tester(1)
        assert tester["username"] == "bob"
        assert tester["issue_count"] == BULK_ISSUES

    def test_repositories_tie_on_stars(self, seeded_store):
        _, rows = seeded_store.list_organization_repositories(1, PageRequest(1, 20))
        assert [r["name"] for r in rows] == ["blt", "blt-flutter", "tiny"]

    def test_members_by_lifetime_points(self, seeded_store):
        total, rows = seeded_store.list_organization_members(1, PageRequest(1, 20))
        assert total == 2
        assert [(r["username"], r["total_score"]) for r in rows] == [("alice", 115), ("bob", 17)]


class TestStats:
    def test_totals(self, seeded_store):
        assert seeded_store.count_public_issues() == PUBLIC_ISSUES
        assert seeded_store.count_active_users() == 5
        assert seeded_store.sum_points() == 186

    def test_recent_windows(self, seeded_store):
        since = datetime.now(timezone.utc) - timedelta(days=7)
        assert seeded_store.count_public_issues(since) == 2
        assert seeded_store.count_active_users(since) == 1

    def test_labels_named(self, seeded_store):
        rows = seeded_store.issues_by_label()
        assert [(r["label_name"], r["count"]) for r in rows] == [("General", 25), ("Security", 1), ("Typo", 1)]

    def test_activity_sums_to_public_issues(self, seeded_store):
        rows = seeded_store.issue_activity(datetime.now(timezone.utc) - timedelta(days=30))
        assert sum(r["issues_count"] for r in rows) == PUBLIC_ISSUES


class TestWrites:
    def test_toggle_upvote_round_trip(self, seeded_store):
        profile_id = seeded_store.get_profile_id(4)
        before = seeded_store.get_issue(26)["upvotes"]
        assert seeded_store.toggle_upvote(profile_id, 26) == (True, before + 1)
        assert seeded_store.has_upvoted(4, 26)
        assert seeded_store.toggle_upvote(profile_id, 26) == (False, before)
        assert not seeded_store.has_upvoted(4, 26)

    def test_update_profile_ignores_unknown_fields(self, seeded_store):
        updated = seeded_store.update_profile(5, {"role": "Pentester", "is_staff": True, "email": "x@y"})
        assert updated["role"] == "Pentester"
        assert updated["is_staff"] is False
        assert updated["email"] == "eve@example.org"

    def test_update_profile_without_profile_row(self, seeded_store):
        assert seeded_store.update_profile(999, {"role": "Ghost"}) is None


class TestProfileRequiredOnBoards:
    def test_user_board_skips_users_without_profile(self, seeded_store, profileless_user):
        total, rows = seeded_store.user_leaderboard(None, None, PageRequest(1, 50))
        assert profileless_user not in {r["id"] for r in rows}
        assert total == len(rows) == 3

    def test_monthly_rows_skip_users_without_profile(self, seeded_store, profileless_user):
        rows = seeded_store.monthly_user_scores(2024)
        assert profileless_user not in {r["user_id"] for r in rows}

    def test_hunt_board_skips_users_without_profile(self, seeded_store, profileless_user):
        rows = seeded_store.get_hunt_leaderboard(1)
        assert [r["username"] for r in rows] == ["bob", "alice"]
