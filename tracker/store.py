"""
tracker/store.py -- Read-mostly repository over the BLT bug-tracker tables.

Uses SQLAlchemy Core so the same statements run against PostgreSQL in
production and SQLite in tests. Route handlers never build SQL; they call one
method per question and get plain dicts back.

Pattern: Repository. TrackerStore holds the engine; every list method builds a
single QueryPlan and hands it to _fetch_page(), which issues the count query
and then the page query. The two are separate round trips and not a snapshot,
so a concurrent write may make count and rows disagree by a few entries.

Security: every user-derived value (filters, ids, viewer id, "now", cutoffs)
is a bound parameter. Hidden issues are excluded everywhere unless the viewer
is their reporter; reporter_ip_address is never selected.

Usage:
    store = TrackerStore("postgresql+psycopg://user:pw@host/blt")
    total, rows = store.list_issues({"status": "open"}, PageRequest(1, 20), viewer_id=None)
    store.close()
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import and_, case, extract, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.sql.elements import ColumnElement

from core.database import make_engine
from core.pagination import PageRequest
from core.query import QueryPlan, WhereBuilder
from tracker.filters import (
    DOMAIN_FILTERS,
    HUNT_FILTERS,
    ISSUE_FILTERS,
    LEADERBOARD_FILTERS,
    MONTHLY_FILTERS,
    ORGANIZATION_FILTERS,
    SCOPED_ISSUE_FILTERS,
)
from tracker.schema import (
    badges,
    domain_tags,
    domains,
    hunt_prizes,
    hunts,
    issue_flags,
    issue_screenshots,
    issue_tags,
    issue_upvotes,
    issues,
    organization_managers,
    organization_tags,
    organizations,
    points,
    profiles,
    projects,
    repos,
    tags,
    user_badges,
    users,
)

logger = logging.getLogger("bltapi.store")

# Integer issue labels as stored by the main application.
LABEL_NAMES: dict[int, str] = {
    0: "General",
    1: "Number Error",
    2: "Functional",
    3: "Performance",
    4: "Security",
    5: "Typo",
    6: "Design",
    7: "Server Down",
    8: "Trademark Squatting",
}

HUNT_PHASES = ("active", "upcoming", "previous")

# Profile fields a user may change through PUT /api/users/{id}.
EDITABLE_PROFILE_FIELDS = (
    "role",
    "description",
    "btc_address",
    "bch_address",
    "eth_address",
    "x_username",
    "linkedin_url",
    "github_url",
    "website_url",
    "discounted_hourly_rate",
)

_PUBLIC_ISSUES = issues.c.is_hidden.is_(False)
_ACTIVE_USERS = users.c.is_active.is_(True)


def _visible_to(where: WhereBuilder, viewer_id: Optional[int]) -> WhereBuilder:
    """Restrict issues to public ones, plus the viewer's own hidden reports."""
    if viewer_id is None:
        return where.always(_PUBLIC_ISSUES)
    return where.always(or_(_PUBLIC_ISSUES, issues.c.user_id == where.param(viewer_id)))


def _hunt_phase(where: WhereBuilder, phase: Optional[str], now: ColumnElement) -> WhereBuilder:
    if phase == "active":
        return where.always(and_(hunts.c.starts_on <= now, hunts.c.end_on >= now))
    if phase == "upcoming":
        return where.always(hunts.c.starts_on > now)
    if phase == "previous":
        return where.always(hunts.c.end_on < now)
    return where


def _count_of(table, *criteria) -> ColumnElement:
    """Correlated COUNT(*) over table matching criteria."""
    return select(func.count()).select_from(table).where(*criteria).scalar_subquery()


def _issue_summary_columns() -> tuple:
    return (
        issues.c.id,
        issues.c.url,
        issues.c.description,
        issues.c.label,
        issues.c.verified,
        issues.c.score,
        issues.c.status,
        issues.c.screenshot,
        issues.c.views,
        issues.c.rewarded,
        issues.c.cve_id,
        issues.c.cve_score,
        issues.c.created,
        issues.c.modified,
        issues.c.user_id,
        users.c.username.label("user_username"),
        issues.c.domain_id,
        domains.c.name.label("domain_name"),
        domains.c.url.label("domain_url"),
        issues.c.hunt_id,
        hunts.c.name.label("hunt_name"),
    )


def _issue_summary_from():
    return (
        issues.outerjoin(users, issues.c.user_id == users.c.id)
        .outerjoin(domains, issues.c.domain_id == domains.c.id)
        .outerjoin(hunts, issues.c.hunt_id == hunts.c.id)
    )


class TrackerStore:
    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _fetch_page(self, plan: QueryPlan, page: PageRequest) -> tuple[int, list[dict]]:
        """Run the count query, then the page query, for one plan."""
        with self.engine.connect() as conn:
            total = conn.execute(plan.count_statement()).scalar() or 0
            rows = conn.execute(plan.page_statement(page.offset, page.per_page)).mappings().all()
        return int(total), [dict(r) for r in rows]

    def _fetch_all(self, statement) -> list[dict]:
        with self.engine.connect() as conn:
            return [dict(r) for r in conn.execute(statement).mappings().all()]

    def _fetch_one(self, statement) -> Optional[dict]:
        with self.engine.connect() as conn:
            row = conn.execute(statement).mappings().first()
        return dict(row) if row is not None else None

    def _scalar(self, statement) -> Any:
        with self.engine.connect() as conn:
            return conn.execute(statement).scalar()

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        return self._scalar(select(1)) == 1

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def list_issues(
        self, filters: Mapping[str, Any], page: PageRequest, viewer_id: Optional[int] = None
    ) -> tuple[int, list[dict]]:
        where = ISSUE_FILTERS.apply(_visible_to(WhereBuilder(), viewer_id), filters).build()
        statement = (
            select(*_issue_summary_columns())
            .select_from(_issue_summary_from())
            .where(where.where)
            .order_by(issues.c.created.desc(), issues.c.id.desc())
        )
        return self._fetch_page(QueryPlan(statement), page)

    def get_issue(self, issue_id: int, viewer_id: Optional[int] = None) -> Optional[dict]:
        """Full issue row with reporter, domain, hunt and closer names."""
        closer = users.alias("closer")
        where = _visible_to(WhereBuilder(), viewer_id)
        where.always(issues.c.id == where.param(issue_id))
        statement = (
            select(
                *[c for c in issues.c if c.name != "reporter_ip_address"],
                users.c.username.label("user_username"),
                domains.c.name.label("domain_name"),
                domains.c.url.label("domain_url"),
                domains.c.logo.label("domain_logo"),
                hunts.c.name.label("hunt_name"),
                closer.c.username.label("closed_by_username"),
                _count_of(issue_upvotes, issue_upvotes.c.issue_id == issues.c.id).label("upvotes"),
                _count_of(issue_flags, issue_flags.c.issue_id == issues.c.id).label("flags"),
            )
            .select_from(_issue_summary_from().outerjoin(closer, issues.c.closed_by_id == closer.c.id))
            .where(where.build().where)
        )
        return self._fetch_one(statement)

    def get_issue_screenshots(self, issue_id: int) -> list[dict]:
        return self._fetch_all(
            select(issue_screenshots.c.id, issue_screenshots.c.image, issue_screenshots.c.created)
            .where(issue_screenshots.c.issue_id == issue_id)
            .order_by(issue_screenshots.c.id.asc())
        )

    def get_issue_tags(self, issue_id: int) -> list[dict]:
        return self._fetch_all(
            select(tags.c.id, tags.c.name, tags.c.slug)
            .select_from(tags.join(issue_tags, issue_tags.c.tag_id == tags.c.id))
            .where(issue_tags.c.issue_id == issue_id)
            .order_by(tags.c.name.asc(), tags.c.id.asc())
        )

    def get_profile_id(self, user_id: int) -> Optional[int]:
        return self._scalar(select(profiles.c.id).where(profiles.c.user_id == user_id))

    def _has_reaction(self, link, user_id: int, issue_id: int) -> bool:
        statement = (
            select(func.count())
            .select_from(link.join(profiles, link.c.userprofile_id == profiles.c.id))
            .where(profiles.c.user_id == user_id, link.c.issue_id == issue_id)
        )
        return (self._scalar(statement) or 0) > 0

    def has_upvoted(self, user_id: int, issue_id: int) -> bool:
        return self._has_reaction(issue_upvotes, user_id, issue_id)

    def has_flagged(self, user_id: int, issue_id: int) -> bool:
        return self._has_reaction(issue_flags, user_id, issue_id)

    def _toggle_reaction(self, link, profile_id: int, issue_id: int) -> tuple[bool, int]:
        """Flip the (profile, issue) link. Returns (now_set, total_for_issue)."""
        match = and_(link.c.userprofile_id == profile_id, link.c.issue_id == issue_id)
        with self.engine.begin() as conn:
            existing = conn.execute(select(link.c.id).where(match)).first()
            if existing is not None:
                conn.execute(link.delete().where(match))
            else:
                conn.execute(link.insert().values(userprofile_id=profile_id, issue_id=issue_id))
            total = conn.execute(select(func.count()).select_from(link).where(link.c.issue_id == issue_id)).scalar()
        return existing is None, int(total or 0)

    def toggle_upvote(self, profile_id: int, issue_id: int) -> tuple[bool, int]:
        return self._toggle_reaction(issue_upvotes, profile_id, issue_id)

    def toggle_flag(self, profile_id: int, issue_id: int) -> tuple[bool, int]:
        return self._toggle_reaction(issue_flags, profile_id, issue_id)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user(self, user_id: int) -> Optional[dict]:
        """Active user joined with profile and team. Includes email; callers redact."""
        statement = (
            select(
                users.c.id,
                users.c.username,
                users.c.email,
                users.c.first_name,
                users.c.last_name,
                users.c.date_joined,
                users.c.is_staff,
                profiles.c.user_avatar,
                profiles.c.title,
                profiles.c.role,
                profiles.c.description,
                profiles.c.winnings,
                profiles.c.btc_address,
                profiles.c.bch_address,
                profiles.c.eth_address,
                profiles.c.visit_count,
                profiles.c.merged_pr_count,
                profiles.c.contribution_rank,
                profiles.c.current_streak,
                profiles.c.longest_streak,
                profiles.c.x_username,
                profiles.c.linkedin_url,
                profiles.c.github_url,
                profiles.c.website_url,
                profiles.c.discounted_hourly_rate,
                profiles.c.team_id,
                organizations.c.name.label("team_name"),
            )
            .select_from(
                users.outerjoin(profiles, profiles.c.user_id == users.c.id).outerjoin(
                    organizations, profiles.c.team_id == organizations.c.id
                )
            )
            .where(users.c.id == user_id, _ACTIVE_USERS)
        )
        return self._fetch_one(statement)

    def get_user_total_score(self, user_id: int) -> int:
        return int(self._scalar(select(func.coalesce(func.sum(points.c.score), 0)).where(points.c.user_id == user_id)))

    def count_user_issues(self, user_id: int, viewer_id: Optional[int] = None) -> int:
        where = _visible_to(WhereBuilder(), viewer_id)
        where.always(issues.c.user_id == where.param(user_id))
        return int(self._scalar(select(func.count()).select_from(issues).where(where.build().where)) or 0)

    def get_user_badges(self, user_id: int) -> list[dict]:
        return self._fetch_all(
            select(badges.c.id, badges.c.title, badges.c.description, badges.c.icon, user_badges.c.awarded_at)
            .select_from(badges.join(user_badges, user_badges.c.badge_id == badges.c.id))
            .where(user_badges.c.user_id == user_id)
            .order_by(user_badges.c.awarded_at.desc(), badges.c.id.asc())
        )

    def update_profile(self, user_id: int, fields: Mapping[str, Any]) -> Optional[dict]:
        """Write the editable subset of fields and return the user's fresh record.

        Keys outside EDITABLE_PROFILE_FIELDS are ignored. Returns None if the
        user has no profile row.
        """
        values = {k: fields[k] for k in EDITABLE_PROFILE_FIELDS if k in fields}
        if values:
            values["modified"] = datetime.now(timezone.utc)
            with self.engine.begin() as conn:
                result = conn.execute(profiles.update().where(profiles.c.user_id == user_id).values(**values))
            if result.rowcount == 0:
                return None
            logger.info("Profile updated for user %s: %s", user_id, ", ".join(sorted(k for k in values if k != "modified")))
        return self.get_user(user_id)

    def list_user_issues(
        self, user_id: int, page: PageRequest, viewer_id: Optional[int] = None
    ) -> tuple[int, list[dict]]:
        where = _visible_to(WhereBuilder(), viewer_id)
        where.always(issues.c.user_id == where.param(user_id))
        statement = (
            select(*_issue_summary_columns())
            .select_from(_issue_summary_from())
            .where(where.build().where)
            .order_by(issues.c.created.desc(), issues.c.id.desc())
        )
        return self._fetch_page(QueryPlan(statement), page)

    def list_user_points(self, user_id: int, page: PageRequest) -> tuple[int, list[dict]]:
        statement = (
            select(
                points.c.id,
                points.c.score,
                points.c.reason,
                points.c.created,
                points.c.issue_id,
                points.c.domain_id,
                domains.c.name.label("domain_name"),
            )
            .select_from(points.outerjoin(domains, points.c.domain_id == domains.c.id))
            .where(points.c.user_id == user_id)
            .order_by(points.c.created.desc(), points.c.id.desc())
        )
        return self._fetch_page(QueryPlan(statement), page)

    # ------------------------------------------------------------------
    # Domains
    # ------------------------------------------------------------------

    def list_domains(self, filters: Mapping[str, Any], page: PageRequest) -> tuple[int, list[dict]]:
        where = DOMAIN_FILTERS.compile(filters, base=[domains.c.is_active.is_(True)])
        statement = (
            select(
                domains.c.id,
                domains.c.name,
                domains.c.url,
                domains.c.logo,
                domains.c.webshot,
                domains.c.created,
                domains.c.organization_id,
                organizations.c.name.label("organization_name"),
                _count_of(issues, issues.c.domain_id == domains.c.id, issues.c.status == "open", _PUBLIC_ISSUES).label(
                    "open_issues"
                ),
                _count_of(
                    issues, issues.c.domain_id == domains.c.id, issues.c.status == "closed", _PUBLIC_ISSUES
                ).label("closed_issues"),
            )
            .select_from(domains.outerjoin(organizations, domains.c.organization_id == organizations.c.id))
            .where(where.where)
            .order_by(domains.c.created.desc(), domains.c.id.desc())
        )
        return self._fetch_page(QueryPlan(statement), page)

    def get_domain(self, domain_id: int) -> Optional[dict]:
        statement = (
            select(
                *domains.c,
                organizations.c.name.label("organization_name"),
                organizations.c.slug.label("organization_slug"),
                _count_of(issues, issues.c.domain_id == domains.c.id, issues.c.status == "open", _PUBLIC_ISSUES).label(
                    "open_issues"
                ),
                _count_of(
                    issues, issues.c.domain_id == domains.c.id, issues.c.status == "closed", _PUBLIC_ISSUES
                ).label("closed_issues"),
            )
            .select_from(domains.outerjoin(organizations, domains.c.organization_id == organizations.c.id))
            .where(domains.c.id == domain_id)
        )
        return self._fetch_one(statement)

    def get_domain_top_tester(self, domain_id: int) -> Optional[dict]:
        """Reporter with the most public issues on the domain; ties go to the lowest user id."""
        issue_count = func.count(issues.c.id).label("issue_count")
        statement = (
            select(users.c.id, users.c.username, profiles.c.user_avatar, issue_count)
            .select_from(
                issues.join(users, issues.c.user_id == users.c.id).outerjoin(profiles, profiles.c.user_id == users.c.id)
            )
            .where(issues.c.domain_id == domain_id, _PUBLIC_ISSUES, _ACTIVE_USERS)
            .group_by(users.c.id, users.c.username, profiles.c.user_avatar)
            .order_by(issue_count.desc(), users.c.id.asc())
            .limit(1)
        )
        return self._fetch_one(statement)

    def get_domain_tags(self, domain_id: int) -> list[dict]:
        return self._fetch_all(
            select(tags.c.id, tags.c.name, tags.c.slug)
            .select_from(tags.join(domain_tags, domain_tags.c.tag_id == tags.c.id))
            .where(domain_tags.c.domain_id == domain_id)
            .order_by(tags.c.name.asc(), tags.c.id.asc())
        )

    def list_domain_issues(
        self, domain_id: int, filters: Mapping[str, Any], page: PageRequest, viewer_id: Optional[int] = None
    ) -> tuple[int, list[dict]]:
        where = _visible_to(WhereBuilder(), viewer_id)
        where.always(issues.c.domain_id == where.param(domain_id))
        SCOPED_ISSUE_FILTERS.apply(where, filters)
        statement = (
            select(*_issue_summary_columns())
            .select_from(_issue_summary_from())
            .where(where.build().where)
            .order_by(issues.c.created.desc(), issues.c.id.desc())
        )
        return self._fetch_page(QueryPlan(statement), page)

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    def list_organizations(self, filters: Mapping[str, Any], page: PageRequest) -> tuple[int, list[dict]]:
        where = ORGANIZATION_FILTERS.compile(filters, base=[organizations.c.is_active.is_(True)])
        statement = (
            select(
                organizations.c.id,
                organizations.c.name,
                organizations.c.slug,
                organizations.c.description,
                organizations.c.logo,
                organizations.c.url,
                organizations.c.type,
                organizations.c.tagline,
                organizations.c.team_points,
                organizations.c.created,
                _count_of(domains, domains.c.organization_id == organizations.c.id).label("domain_count"),
                _count_of(projects, projects.c.organization_id == organizations.c.id).label("project_count"),
                _count_of(profiles, profiles.c.team_id == organizations.c.id).label("member_count"),
            )
            .where(where.where)
            .order_by(organizations.c.created.desc(), organizations.c.id.desc())
        )
        return self._fetch_page(QueryPlan(statement), page)

    def get_organization(self, organization_id: int) -> Optional[dict]:
        admin = users.alias("org_admin")
        statement = (
            select(
                *organizations.c,
                admin.c.username.label("admin_username"),
                _count_of(domains, domains.c.organization_id == organizations.c.id).label("domain_count"),
                _count_of(projects, projects.c.organization_id == organizations.c.id).label("project_count"),
                _count_of(repos, repos.c.organization_id == organizations.c.id).label("repository_count"),
                _count_of(profiles, profiles.c.team_id == organizations.c.id).label("member_count"),
            )
            .select_from(organizations.outerjoin(admin, organizations.c.admin_id == admin.c.id))
            .where(organizations.c.id == organization_id)
        )
        return self._fetch_one(statement)

    def get_organization_tags(self, organization_id: int) -> list[dict]:
        return self._fetch_all(
            select(tags.c.id, tags.c.name, tags.c.slug)
            .select_from(tags.join(organization_tags, organization_tags.c.tag_id == tags.c.id))
            .where(organization_tags.c.organization_id == organization_id)
            .order_by(tags.c.name.asc(), tags.c.id.asc())
        )

    def get_organization_managers(self, organization_id: int) -> list[dict]:
        return self._fetch_all(
            select(users.c.id, users.c.username, profiles.c.user_avatar)
            .select_from(
                organization_managers.join(users, organization_managers.c.user_id == users.c.id).outerjoin(
                    profiles, profiles.c.user_id == users.c.id
                )
            )
            .where(organization_managers.c.organization_id == organization_id, _ACTIVE_USERS)
            .order_by(users.c.username.asc(), users.c.id.asc())
        )

    def list_organization_repositories(self, organization_id: int, page: PageRequest) -> tuple[int, list[dict]]:
        statement = (
            select(
                repos.c.id,
                repos.c.name,
                repos.c.slug,
                repos.c.github_url,
                repos.c.description,
                repos.c.stars,
                repos.c.forks,
                repos.c.watchers,
                repos.c.open_issues,
                repos.c.language,
                repos.c.homepage,
                repos.c.topics,
                repos.c.archived,
                repos.c.last_pushed,
                repos.c.created,
            )
            .where(repos.c.organization_id == organization_id)
            .order_by(repos.c.stars.desc(), repos.c.id.asc())
        )
        return self._fetch_page(QueryPlan(statement), page)

    def list_organization_members(self, organization_id: int, page: PageRequest) -> tuple[int, list[dict]]:
        """Team members ordered by lifetime points, ties by user id."""
        totals = (
            select(points.c.user_id, func.sum(points.c.score).label("total_score"))
            .group_by(points.c.user_id)
            .subquery("member_totals")
        )
        total_score = func.coalesce(totals.c.total_score, 0)
        statement = (
            select(
                users.c.id,
                users.c.username,
                profiles.c.user_avatar,
                profiles.c.title,
                total_score.label("total_score"),
            )
            .select_from(
                profiles.join(users, profiles.c.user_id == users.c.id).outerjoin(
                    totals, totals.c.user_id == users.c.id
                )
            )
            .where(profiles.c.team_id == organization_id, _ACTIVE_USERS)
            .order_by(total_score.desc(), users.c.id.asc())
        )
        return self._fetch_page(QueryPlan(statement), page)

    # ------------------------------------------------------------------
    # Hunts
    # ------------------------------------------------------------------

    def _hunt_columns(self) -> tuple:
        return (
            hunts.c.id,
            hunts.c.name,
            hunts.c.description,
            hunts.c.url,
            hunts.c.prize,
            hunts.c.prize_winner,
            hunts.c.prize_runner,
            hunts.c.prize_second_runner,
            hunts.c.logo,
            hunts.c.banner,
            hunts.c.plan,
            hunts.c.color,
            hunts.c.starts_on,
            hunts.c.end_on,
            hunts.c.result_published,
            hunts.c.created,
            hunts.c.domain_id,
            domains.c.name.label("domain_name"),
            domains.c.url.label("domain_url"),
            _count_of(issues, issues.c.hunt_id == hunts.c.id, _PUBLIC_ISSUES).label("issue_count"),
        )

    def list_hunts(
        self,
        filters: Mapping[str, Any],
        phase: Optional[str],
        page: PageRequest,
        now: Optional[datetime] = None,
    ) -> tuple[int, list[dict]]:
        """Published hunts, still-running ones first, then latest end date.

        phase is one of HUNT_PHASES relative to now; anything else is ignored.
        """
        where = WhereBuilder().always(hunts.c.is_published.is_(True))
        current = where.param(now or datetime.now(timezone.utc))
        _hunt_phase(where, phase, current)
        HUNT_FILTERS.apply(where, filters)
        running_first = case((hunts.c.end_on >= current, 0), else_=1)
        statement = (
            select(*self._hunt_columns())
            .select_from(hunts.outerjoin(domains, hunts.c.domain_id == domains.c.id))
            .where(where.build().where)
            .order_by(running_first.asc(), hunts.c.end_on.desc(), hunts.c.id.desc())
        )
        return self._fetch_page(QueryPlan(statement), page)

    def get_hunt(self, hunt_id: int) -> Optional[dict]:
        statement = (
            select(
                *self._hunt_columns(),
                hunts.c.is_published,
                hunts.c.modified,
                select(func.count(func.distinct(issues.c.user_id)))
                .where(issues.c.hunt_id == hunts.c.id, _PUBLIC_ISSUES)
                .scalar_subquery()
                .label("participant_count"),
            )
            .select_from(hunts.outerjoin(domains, hunts.c.domain_id == domains.c.id))
            .where(hunts.c.id == hunt_id, hunts.c.is_published.is_(True))
        )
        return self._fetch_one(statement)

    def get_hunt_prizes(self, hunt_id: int) -> list[dict]:
        return self._fetch_all(
            select(
                hunt_prizes.c.id,
                hunt_prizes.c.name,
                hunt_prizes.c.value,
                hunt_prizes.c.no_of_eligible_projects,
                hunt_prizes.c.valid_submissions_eligible,
                hunt_prizes.c.prize_in_crypto,
                hunt_prizes.c.description,
            )
            .where(hunt_prizes.c.hunt_id == hunt_id)
            .order_by(hunt_prizes.c.value.desc(), hunt_prizes.c.id.asc())
        )

    def get_hunt_leaderboard(self, hunt_id: int, limit: int = 10) -> list[dict]:
        """Reporters in a hunt by summed issue score, then issue count, then user id."""
        score = func.coalesce(func.sum(issues.c.score), 0).label("score")
        issue_count = func.count(issues.c.id).label("issue_count")
        statement = (
            select(users.c.id, users.c.username, profiles.c.user_avatar, score, issue_count)
            .select_from(
                issues.join(users, issues.c.user_id == users.c.id).join(profiles, profiles.c.user_id == users.c.id)
            )
            .where(issues.c.hunt_id == hunt_id, _PUBLIC_ISSUES, _ACTIVE_USERS)
            .group_by(users.c.id, users.c.username, profiles.c.user_avatar)
            .order_by(score.desc(), issue_count.desc(), users.c.id.asc())
            .limit(limit)
        )
        return self._fetch_all(statement)

    def list_hunt_issues(
        self, hunt_id: int, page: PageRequest, viewer_id: Optional[int] = None
    ) -> tuple[int, list[dict]]:
        where = _visible_to(WhereBuilder(), viewer_id)
        where.always(issues.c.hunt_id == where.param(hunt_id))
        statement = (
            select(*_issue_summary_columns())
            .select_from(_issue_summary_from())
            .where(where.build().where)
            .order_by(issues.c.created.desc(), issues.c.id.desc())
        )
        return self._fetch_page(QueryPlan(statement), page)

    # ------------------------------------------------------------------
    # Leaderboards
    # ------------------------------------------------------------------

    def user_leaderboard(
        self, year: Optional[int], month: Optional[int], page: PageRequest
    ) -> tuple[int, list[dict]]:
        """Active users with a profile, by summed points in the optional period.

        Points are aggregated in a subquery before joining, so the total is
        never multiplied by other one-to-many joins. month without year is
        ignored. Users with a period total of zero or less are excluded.
        """
        window = LEADERBOARD_FILTERS.compile({"year": year, "month": month if year is not None else None})
        totals = (
            select(points.c.user_id, func.sum(points.c.score).label("total_score"))
            .where(window.where)
            .group_by(points.c.user_id)
            .subquery("period_totals")
        )
        statement = (
            select(
                users.c.id,
                users.c.username,
                profiles.c.user_avatar,
                profiles.c.title,
                totals.c.total_score,
                _count_of(issues, issues.c.user_id == users.c.id, _PUBLIC_ISSUES).label("issue_count"),
            )
            .select_from(
                users.join(totals, totals.c.user_id == users.c.id).join(profiles, profiles.c.user_id == users.c.id)
            )
            .where(_ACTIVE_USERS, totals.c.total_score > 0)
            .order_by(totals.c.total_score.desc(), users.c.id.asc())
        )
        return self._fetch_page(QueryPlan(statement), page)

    def organization_leaderboard(self, page: PageRequest) -> tuple[int, list[dict]]:
        """Active organizations by public issue count across their domains."""
        org_issues = (
            select(domains.c.organization_id, func.count(issues.c.id).label("issue_count"))
            .select_from(domains.join(issues, issues.c.domain_id == domains.c.id))
            .where(_PUBLIC_ISSUES)
            .group_by(domains.c.organization_id)
            .subquery("org_issues")
        )
        statement = (
            select(
                organizations.c.id,
                organizations.c.name,
                organizations.c.slug,
                organizations.c.logo,
                organizations.c.team_points,
                org_issues.c.issue_count,
                _count_of(profiles, profiles.c.team_id == organizations.c.id).label("member_count"),
            )
            .select_from(organizations.join(org_issues, org_issues.c.organization_id == organizations.c.id))
            .where(organizations.c.is_active.is_(True), org_issues.c.issue_count > 0)
            .order_by(org_issues.c.issue_count.desc(), organizations.c.id.asc())
        )
        return self._fetch_page(QueryPlan(statement), page)

    def monthly_user_scores(self, year: int) -> list[dict]:
        """Per-(month, user) point sums for one year. Winners are picked in core.ranking."""
        month = extract("month", points.c.created)
        window = MONTHLY_FILTERS.compile({"year": year}, base=[_ACTIVE_USERS])
        statement = (
            select(
                month.label("month"),
                users.c.id.label("user_id"),
                users.c.username,
                profiles.c.user_avatar,
                func.sum(points.c.score).label("total_score"),
            )
            .select_from(
                points.join(users, points.c.user_id == users.c.id).join(profiles, profiles.c.user_id == users.c.id)
            )
            .where(window.where)
            .group_by(month, users.c.id, users.c.username, profiles.c.user_avatar)
            .having(func.sum(points.c.score) > 0)
        )
        return self._fetch_all(statement)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def count_public_issues(self, since: Optional[datetime] = None) -> int:
        where = WhereBuilder().always(_PUBLIC_ISSUES)
        if since is not None:
            where.always(issues.c.created >= where.param(since))
        return int(self._scalar(select(func.count()).select_from(issues).where(where.build().where)) or 0)

    def count_active_users(self, since: Optional[datetime] = None) -> int:
        where = WhereBuilder().always(_ACTIVE_USERS)
        if since is not None:
            where.always(users.c.date_joined >= where.param(since))
        return int(self._scalar(select(func.count()).select_from(users).where(where.build().where)) or 0)

    def count_active_domains(self) -> int:
        statement = select(func.count()).select_from(domains).where(domains.c.is_active.is_(True))
        return int(self._scalar(statement) or 0)

    def count_active_organizations(self) -> int:
        statement = select(func.count()).select_from(organizations).where(organizations.c.is_active.is_(True))
        return int(self._scalar(statement) or 0)

    def count_published_hunts(self) -> int:
        statement = select(func.count()).select_from(hunts).where(hunts.c.is_published.is_(True))
        return int(self._scalar(statement) or 0)

    def sum_points(self) -> int:
        return int(self._scalar(select(func.coalesce(func.sum(points.c.score), 0))) or 0)

    def issue_activity(self, since: datetime) -> list[dict]:
        """Public issues reported per calendar day since the cutoff, newest first."""
        day = func.date(issues.c.created)
        where = WhereBuilder().always(_PUBLIC_ISSUES)
        where.always(issues.c.created >= where.param(since))
        statement = (
            select(day.label("date"), func.count().label("issues_count"))
            .select_from(issues)
            .where(where.build().where)
            .group_by(day)
            .order_by(day.desc())
        )
        return self._fetch_all(statement)

    def issues_by_label(self) -> list[dict]:
        count = func.count().label("count")
        statement = (
            select(issues.c.label, count)
            .where(_PUBLIC_ISSUES)
            .group_by(issues.c.label)
            .order_by(count.desc(), issues.c.label.asc())
        )
        return [
            {**row, "label_name": LABEL_NAMES.get(row["label"], "Unknown")} for row in self._fetch_all(statement)
        ]

    def top_domains(self, limit: int) -> list[dict]:
        """Active domains by public issue count, ties by domain id."""
        issue_count = func.count(issues.c.id).label("issue_count")
        statement = (
            select(domains.c.id, domains.c.name, domains.c.url, domains.c.logo, issue_count)
            .select_from(domains.join(issues, issues.c.domain_id == domains.c.id))
            .where(domains.c.is_active.is_(True), _PUBLIC_ISSUES)
            .group_by(domains.c.id, domains.c.name, domains.c.url, domains.c.logo)
            .order_by(issue_count.desc(), domains.c.id.asc())
            .limit(limit)
        )
        return self._fetch_all(statement)

    def close(self) -> None:
        """Dispose of the connection pool."""
        self.engine.dispose()
