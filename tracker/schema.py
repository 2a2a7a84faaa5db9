"""
tracker/schema.py -- SQLAlchemy Core table catalogue for the BLT database.

The schema belongs to the main BLT application (Django models); this service
only reads it, plus the few link-table writes done by the like/flag toggles.
metadata.create_all() is never called at runtime -- tests use it to build an
in-memory copy.

Only the columns this API reads are declared. Array columns are PostgreSQL
ARRAY(TEXT) in production and JSON under SQLite so the same Table objects
work in tests.
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, MetaData, String, Table, Text
from sqlalchemy.dialects import postgresql

metadata = MetaData()

_TextArray = JSON().with_variant(postgresql.ARRAY(Text), "postgresql")

# ---------------------------------------------------------------------------
# Accounts and credentials
# ---------------------------------------------------------------------------

users = Table(
    "auth_user",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("username", String(150), nullable=False, unique=True),
    Column("email", String(254), nullable=False, server_default=""),
    Column("first_name", String(150), nullable=False, server_default=""),
    Column("last_name", String(150), nullable=False, server_default=""),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("is_staff", Boolean, nullable=False, default=False),
    Column("is_superuser", Boolean, nullable=False, default=False),
    Column("date_joined", DateTime(timezone=True)),
)

# Django REST Framework token table: one opaque key per user.
tokens = Table(
    "authtoken_token",
    metadata,
    Column("key", String(40), primary_key=True),
    Column("user_id", Integer, ForeignKey("auth_user.id"), nullable=False, unique=True),
    Column("created", DateTime(timezone=True)),
)

profiles = Table(
    "website_userprofile",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("auth_user.id"), nullable=False, unique=True),
    Column("user_avatar", String(200)),
    Column("title", Integer, nullable=False, default=0),  # 0=Unrated .. 4=Platinum
    Column("role", Text),
    Column("description", Text),
    Column("winnings", Float),
    Column("btc_address", String(100)),
    Column("bch_address", String(100)),
    Column("eth_address", String(100)),
    Column("visit_count", Integer, nullable=False, default=0),
    Column("team_id", Integer, ForeignKey("website_organization.id")),
    Column("merged_pr_count", Integer, nullable=False, default=0),
    Column("contribution_rank", Integer, nullable=False, default=0),
    Column("current_streak", Integer, nullable=False, default=0),
    Column("longest_streak", Integer, nullable=False, default=0),
    Column("x_username", String(50)),
    Column("linkedin_url", String(200)),
    Column("github_url", String(200)),
    Column("website_url", String(200)),
    Column("discounted_hourly_rate", Float, nullable=False, default=0),
    Column("modified", DateTime(timezone=True)),
)

# ---------------------------------------------------------------------------
# Organizations, domains, repositories
# ---------------------------------------------------------------------------

organizations = Table(
    "website_organization",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("admin_id", Integer, ForeignKey("auth_user.id")),
    Column("name", String(255), nullable=False),
    Column("slug", String(255), nullable=False),
    Column("description", Text),
    Column("logo", String(255)),
    Column("url", String(200), nullable=False, server_default=""),
    Column("email", String(254)),
    Column("twitter", String(30)),
    Column("created", DateTime(timezone=True)),
    Column("modified", DateTime(timezone=True)),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("type", String(15), nullable=False, server_default="organization"),
    Column("team_points", Integer, nullable=False, default=0),
    Column("tagline", String(255)),
    Column("license", String(100)),
    Column("categories", _TextArray),
    Column("tech_tags", _TextArray),
    Column("topic_tags", _TextArray),
)

organization_managers = Table(
    "website_organization_managers",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("organization_id", Integer, ForeignKey("website_organization.id"), nullable=False),
    Column("user_id", Integer, ForeignKey("auth_user.id"), nullable=False),
)

domains = Table(
    "website_domain",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("organization_id", Integer, ForeignKey("website_organization.id")),
    Column("name", String(255), nullable=False),
    Column("url", String(200), nullable=False),
    Column("logo", String(255)),
    Column("webshot", String(255)),
    Column("email", String(254)),
    Column("twitter", String(30)),
    Column("facebook", String(200)),
    Column("created", DateTime(timezone=True)),
    Column("modified", DateTime(timezone=True)),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("has_security_txt", Boolean, nullable=False, default=False),
)

projects = Table(
    "website_project",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("organization_id", Integer, ForeignKey("website_organization.id")),
    Column("name", String(255), nullable=False),
)

repos = Table(
    "website_repo",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("organization_id", Integer, ForeignKey("website_organization.id")),
    Column("name", String(255), nullable=False),
    Column("slug", String(255), nullable=False),
    Column("github_url", String(200)),
    Column("description", Text),
    Column("stars", Integer, nullable=False, default=0),
    Column("forks", Integer, nullable=False, default=0),
    Column("watchers", Integer, nullable=False, default=0),
    Column("open_issues", Integer, nullable=False, default=0),
    Column("language", String(50)),
    Column("homepage", String(200)),
    Column("topics", _TextArray),
    Column("archived", Boolean, nullable=False, default=False),
    Column("disabled", Boolean, nullable=False, default=False),
    Column("created", DateTime(timezone=True)),
    Column("modified", DateTime(timezone=True)),
    Column("last_pushed", DateTime(timezone=True)),
)

# ---------------------------------------------------------------------------
# Hunts
# ---------------------------------------------------------------------------

hunts = Table(
    "website_hunt",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("domain_id", Integer, ForeignKey("website_domain.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("url", String(200), nullable=False, server_default=""),
    Column("prize", Integer),
    Column("prize_winner", Float, nullable=False, default=0),
    Column("prize_runner", Float, nullable=False, default=0),
    Column("prize_second_runner", Float, nullable=False, default=0),
    Column("logo", String(255)),
    Column("banner", String(255)),
    Column("plan", String(10), nullable=False, server_default=""),
    Column("color", String(20)),
    Column("created", DateTime(timezone=True)),
    Column("starts_on", DateTime(timezone=True)),
    Column("end_on", DateTime(timezone=True)),
    Column("is_published", Boolean, nullable=False, default=False),
    Column("result_published", Boolean, nullable=False, default=False),
    Column("modified", DateTime(timezone=True)),
)

hunt_prizes = Table(
    "website_huntprize",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("hunt_id", Integer, ForeignKey("website_hunt.id"), nullable=False),
    Column("name", String(50), nullable=False),
    Column("value", Integer, nullable=False, default=0),
    Column("no_of_eligible_projects", Integer, nullable=False, default=1),
    Column("valid_submissions_eligible", Boolean, nullable=False, default=False),
    Column("prize_in_crypto", Boolean, nullable=False, default=False),
    Column("description", Text),
    Column("created", DateTime(timezone=True)),
)

# ---------------------------------------------------------------------------
# Issues and their satellites
# ---------------------------------------------------------------------------

issues = Table(
    "website_issue",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("auth_user.id")),
    Column("hunt_id", Integer, ForeignKey("website_hunt.id")),
    Column("domain_id", Integer, ForeignKey("website_domain.id")),
    Column("url", String(200), nullable=False, server_default=""),
    Column("description", Text, nullable=False, server_default=""),
    Column("label", Integer, nullable=False, default=0),
    Column("views", Integer),
    Column("verified", Boolean, nullable=False, default=False),
    Column("score", Integer),
    Column("status", String(10), nullable=False, server_default="open"),
    Column("screenshot", String(255)),
    Column("closed_by_id", Integer, ForeignKey("auth_user.id")),
    Column("closed_date", DateTime(timezone=True)),
    Column("github_url", String(200)),
    Column("created", DateTime(timezone=True)),
    Column("modified", DateTime(timezone=True)),
    Column("is_hidden", Boolean, nullable=False, default=False),
    Column("rewarded", Integer, nullable=False, default=0),
    Column("reporter_ip_address", String(45)),
    Column("cve_id", String(16)),
    Column("cve_score", Float),
)

issue_screenshots = Table(
    "website_issuescreenshot",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("issue_id", Integer, ForeignKey("website_issue.id"), nullable=False),
    Column("image", String(255), nullable=False),
    Column("created", DateTime(timezone=True)),
)

issue_upvotes = Table(
    "website_userprofile_issue_upvoted",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("userprofile_id", Integer, ForeignKey("website_userprofile.id"), nullable=False),
    Column("issue_id", Integer, ForeignKey("website_issue.id"), nullable=False),
)

issue_flags = Table(
    "website_userprofile_issue_flaged",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("userprofile_id", Integer, ForeignKey("website_userprofile.id"), nullable=False),
    Column("issue_id", Integer, ForeignKey("website_issue.id"), nullable=False),
)

points = Table(
    "website_points",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("auth_user.id"), nullable=False),
    Column("issue_id", Integer, ForeignKey("website_issue.id")),
    Column("domain_id", Integer, ForeignKey("website_domain.id")),
    Column("score", Integer, nullable=False),
    Column("reason", Text),
    Column("created", DateTime(timezone=True)),
    Column("modified", DateTime(timezone=True)),
)

# ---------------------------------------------------------------------------
# Tags and badges
# ---------------------------------------------------------------------------

tags = Table(
    "website_tag",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(255), nullable=False),
    Column("slug", String(255), nullable=False),
)

issue_tags = Table(
    "website_issue_tags",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("issue_id", Integer, ForeignKey("website_issue.id"), nullable=False),
    Column("tag_id", Integer, ForeignKey("website_tag.id"), nullable=False),
)

domain_tags = Table(
    "website_domain_tags",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("domain_id", Integer, ForeignKey("website_domain.id"), nullable=False),
    Column("tag_id", Integer, ForeignKey("website_tag.id"), nullable=False),
)

organization_tags = Table(
    "website_organization_tags",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("organization_id", Integer, ForeignKey("website_organization.id"), nullable=False),
    Column("tag_id", Integer, ForeignKey("website_tag.id"), nullable=False),
)

badges = Table(
    "website_badge",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("title", String(100), nullable=False),
    Column("description", Text),
    Column("icon", String(255)),
)

user_badges = Table(
    "website_userbadge",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("auth_user.id"), nullable=False),
    Column("badge_id", Integer, ForeignKey("website_badge.id"), nullable=False),
    Column("awarded_at", DateTime(timezone=True)),
)
