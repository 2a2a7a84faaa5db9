"""
core/ranking.py -- Rank assignment for leaderboards.

Ordering happens in the store for paginated leaderboards (ORDER BY score DESC,
id ASC); this module turns an ordered page into ranked rows. Because the page
is a slice of one globally consistent ordering, the row at index i of a page
starting at offset gets rank offset + i + 1, which is gapless and unique
across pages.

Ties on the score are broken by ascending entity id. The same key is used by
rank_rows() for in-memory ranking (monthly winners), so rank assignment is
reproducible across repeated calls on identical data.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

MONTH_NAMES: tuple[str, ...] = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


def assign_ranks(rows: Iterable[Mapping[str, Any]], offset: int = 0) -> list[dict[str, Any]]:
    """Attach rank = offset + index + 1 to already-ordered rows."""
    return [{**row, "rank": offset + index + 1} for index, row in enumerate(rows)]


def rank_rows(
    rows: Iterable[Mapping[str, Any]],
    score_key: str,
    id_key: str = "id",
    secondary_keys: Sequence[str] = (),
) -> list[dict[str, Any]]:
    """Order rows by score DESC, then each secondary key DESC, then id ASC, and rank them."""

    def sort_key(row: Mapping[str, Any]) -> tuple:
        return (
            -(row.get(score_key) or 0),
            *(-(row.get(k) or 0) for k in secondary_keys),
            row[id_key],
        )

    return assign_ranks(sorted(rows, key=sort_key))


def monthly_winners(
    rows: Iterable[Mapping[str, Any]],
    score_key: str = "total_score",
    id_key: str = "user_id",
) -> list[dict[str, Any]]:
    """Pick the top scorer of each calendar month.

    rows are per-(month, user) aggregates for one year; month may arrive as a
    Decimal or float from EXTRACT and is normalized to int. The result always
    has twelve entries; months without rows have winner None.
    """
    partitions: dict[int, list[Mapping[str, Any]]] = {}
    for row in rows:
        partitions.setdefault(int(row["month"]), []).append(row)

    months: list[dict[str, Any]] = []
    for number, name in enumerate(MONTH_NAMES, start=1):
        winner = None
        partition = partitions.get(number)
        if partition:
            top = rank_rows(partition, score_key=score_key, id_key=id_key)[0]
            top["month"] = number
            winner = top
        months.append({"month": name, "month_number": number, "winner": winner})
    return months
