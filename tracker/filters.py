"""
tracker/filters.py -- Declared query-string filters per resource.

Each FilterSet names the only columns its route may filter on. A field that
points anywhere else raises ConfigurationError when this module is imported,
i.e. at application startup.
"""

from core.query import FilterField, FilterSet, Match
from tracker.schema import domains, hunts, issues, organizations, points

ISSUE_FILTERS = FilterSet(
    [
        FilterField("status", (issues.c.status,)),
        FilterField("domain", (domains.c.url,), Match.CONTAINS),
        FilterField("search", (issues.c.description, issues.c.url), Match.CONTAINS),
    ],
    allowed=(issues.c.status, issues.c.description, issues.c.url, domains.c.url),
)

# Issues scoped to one domain: only the status filter is recognized.
SCOPED_ISSUE_FILTERS = FilterSet(
    [FilterField("status", (issues.c.status,))],
    allowed=(issues.c.status,),
)

DOMAIN_FILTERS = FilterSet(
    [FilterField("search", (domains.c.name, domains.c.url), Match.CONTAINS)],
    allowed=(domains.c.name, domains.c.url),
)

ORGANIZATION_FILTERS = FilterSet(
    [FilterField("search", (organizations.c.name, organizations.c.description), Match.CONTAINS)],
    allowed=(organizations.c.name, organizations.c.description),
)

HUNT_FILTERS = FilterSet(
    [FilterField("search", (hunts.c.name,), Match.CONTAINS)],
    allowed=(hunts.c.name,),
)

# Point-award window for the global leaderboard. month is only honoured
# together with year (see TrackerStore.user_leaderboard).
LEADERBOARD_FILTERS = FilterSet(
    [
        FilterField("year", (points.c.created,), Match.YEAR),
        FilterField("month", (points.c.created,), Match.MONTH),
    ],
    allowed=(points.c.created,),
)

MONTHLY_FILTERS = FilterSet(
    [FilterField("year", (points.c.created,), Match.YEAR)],
    allowed=(points.c.created,),
)
