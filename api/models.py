"""
API request and response models for the BLT REST endpoints.

These Pydantic v2 models define the HTTP transport contract. Repository
methods in tracker/store.py return plain dicts; list rows are passed through
as-is inside the Page envelope, while fixed-shape responses (errors, health,
leaderboards, stats) get explicit models here.

Separation of concerns: tracker/ = data access; api/ models = API contract.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class Page(BaseModel):
    """{count, next, previous, results} envelope returned by every list route."""

    count: int = Field(ge=0)
    next: Optional[str] = None
    previous: Optional[str] = None
    results: list[dict[str, Any]]


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


# ---------------------------------------------------------------------------
# Service info
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Response for GET /."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    name: str
    version: str
    database: str = "ok"


class ApiIndexResponse(BaseModel):
    """Response for GET /api: resource name -> base path."""

    model_config = ConfigDict(frozen=True)

    version: str
    endpoints: dict[str, str]


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/users/{id}.

    Only these fields may be changed; unknown keys are ignored. At least one
    field must be present, checked in the route so the error is a 400 in the
    shared envelope rather than a validation dump.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    role: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    btc_address: Optional[str] = Field(default=None, max_length=100)
    bch_address: Optional[str] = Field(default=None, max_length=100)
    eth_address: Optional[str] = Field(default=None, max_length=100)
    x_username: Optional[str] = Field(default=None, max_length=50)
    linkedin_url: Optional[str] = Field(default=None, max_length=200)
    github_url: Optional[str] = Field(default=None, max_length=200)
    website_url: Optional[str] = Field(default=None, max_length=200)
    discounted_hourly_rate: Optional[float] = Field(default=None, ge=0)

    @field_validator("x_username", mode="before")
    @classmethod
    def strip_at_sign(cls, value: Any) -> Any:
        """Store X handles without the leading '@'."""
        if isinstance(value, str):
            return value.strip().lstrip("@")
        return value


class ReactionResponse(BaseModel):
    """Response for POST /api/issues/{id}/like and /flag."""

    model_config = ConfigDict(frozen=True)

    issue_id: int
    active: bool
    count: int


# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------


class MonthlyWinner(BaseModel):
    user_id: int
    username: str
    user_avatar: Optional[str] = None
    total_score: int
    rank: int
    month: int


class MonthlyEntry(BaseModel):
    month: str
    month_number: int = Field(ge=1, le=12)
    winner: Optional[MonthlyWinner] = None


class MonthlyLeaderboardResponse(BaseModel):
    """Response for GET /api/leaderboard/monthly. Always twelve months."""

    year: int
    months: list[MonthlyEntry]


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


class StatsResponse(BaseModel):
    """Response for GET /api/stats."""

    total_issues: int
    total_users: int
    total_domains: int
    total_organizations: int
    total_hunts: int
    total_points: int
    issues_this_week: int
    new_users_this_week: int


class ActivityResponse(BaseModel):
    days: int
    activity: list[dict[str, Any]]
