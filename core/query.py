"""
core/query.py -- Filter compiler and shared query plans.

Every list route turns an untrusted bag of query-string values into a WHERE
clause. This module is the only place that happens:

  FilterField -- one recognized query parameter bound to one or more columns
                 and a comparison kind. Declared once per route at import time.
  FilterSet   -- a route's declared filters plus its fixed column allow-list.
                 Construction fails with ConfigurationError if a field targets
                 a column outside the allow-list, so a bad declaration stops
                 the process at startup instead of reaching a request.
  WhereBuilder -- accumulates predicates and positional parameters for one
                 statement. Placeholders are named p1, p2, ... in strictly
                 increasing order and never reused across filters; a single
                 filter may reference its placeholder more than once (search
                 across two columns).
  QueryPlan   -- a filtered, ordered SELECT compiled once. The count query and
                 the page query are both derived from it, so they can never
                 disagree on WHERE / HAVING / ORDER BY.

User input selects values only. Columns, tables and operators come from the
declarations; every value travels as a bound parameter.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import Column, and_, bindparam, extract, func, or_, select, true
from sqlalchemy.sql.elements import BindParameter, ColumnElement
from sqlalchemy.sql.selectable import Select

from core.errors import ConfigurationError

# LIKE escape character used for CONTAINS filters. Chosen because it is not a
# LIKE wildcard and renders identically on PostgreSQL and SQLite.
_LIKE_ESCAPE = "/"


class Match(str, Enum):
    EXACT = "exact"  # column = value
    CONTAINS = "contains"  # case-insensitive substring, wildcards in input escaped
    YEAR = "year"  # EXTRACT(YEAR FROM column) = int(value)
    MONTH = "month"  # EXTRACT(MONTH FROM column) = int(value)


# Largest value a BIGINT bind parameter can carry.
MAX_SQL_INTEGER = 2**63 - 1

YEAR_RANGE = (1, 9999)
MONTH_RANGE = (1, 12)

_INTEGER_MATCHES = {Match.YEAR: YEAR_RANGE, Match.MONTH: MONTH_RANGE}


def column_name(column: Column) -> str:
    """Return the table-qualified name used for allow-list checks."""
    return f"{column.table.name}.{column.name}"


def escape_like(value: str) -> str:
    return (
        value.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", f"{_LIKE_ESCAPE}%")
        .replace("_", f"{_LIKE_ESCAPE}_")
    )


def parse_int(
    raw: Any,
    default: int | None = None,
    low: int | None = None,
    high: int | None = None,
) -> int | None:
    """Parse a query-string integer, returning default on anything malformed.

    Values outside [low, high] count as malformed when a bound is given.
    """
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        return default
    if (low is not None and value < low) or (high is not None and value > high):
        return default
    return value


@dataclass(frozen=True)
class FilterField:
    param: str
    columns: tuple[Column, ...]
    match: Match = Match.EXACT


@dataclass(frozen=True)
class CompiledFilter:
    """The output of the compiler: predicates plus their ordered parameters."""

    clauses: tuple[ColumnElement, ...]
    params: tuple[Any, ...]

    @property
    def where(self) -> ColumnElement:
        return and_(*self.clauses) if self.clauses else true()

    @property
    def sql(self) -> str:
        """Render the WHERE fragment with placeholders (never values)."""
        return str(self.where.compile())


class WhereBuilder:
    """Accumulates the predicates and positional parameters of one statement."""

    def __init__(self) -> None:
        self._clauses: list[ColumnElement] = []
        self._params: list[Any] = []

    def param(self, value: Any) -> BindParameter:
        """Allocate the next placeholder for value."""
        self._params.append(value)
        return bindparam(f"p{len(self._params)}", value)

    def always(self, clause: ColumnElement) -> WhereBuilder:
        """Append a trusted predicate built from declared columns."""
        self._clauses.append(clause)
        return self

    def build(self) -> CompiledFilter:
        return CompiledFilter(clauses=tuple(self._clauses), params=tuple(self._params))


class FilterSet:
    """A route's recognized filters, validated against its column allow-list."""

    def __init__(self, fields: Iterable[FilterField], allowed: Iterable[Column]) -> None:
        self._allowed = frozenset(column_name(c) for c in allowed)
        self.fields: tuple[FilterField, ...] = tuple(fields)
        for field in self.fields:
            if not field.columns:
                raise ConfigurationError(f"Filter '{field.param}' declares no columns.")
            for column in field.columns:
                if column_name(column) not in self._allowed:
                    raise ConfigurationError(
                        f"Filter '{field.param}' targets {column_name(column)}, which is not in the allow-list."
                    )

    def active(self, values: Mapping[str, Any]) -> dict[str, str]:
        """Return the recognized, well-formed values present in the input.

        Used to carry filters into next/previous links.
        """
        return {
            f.param: str(values[f.param]).strip()
            for f in self.fields
            if _coerce(f.match, values.get(f.param)) is not None
        }

    def apply(self, where: WhereBuilder, values: Mapping[str, Any]) -> WhereBuilder:
        for field in self.fields:
            value = _coerce(field.match, values.get(field.param))
            if value is None:
                continue
            where.always(_predicate(field, where.param(value)))
        return where

    def compile(self, values: Mapping[str, Any], base: Iterable[ColumnElement] = ()) -> CompiledFilter:
        """Compile values into predicates, prefixed by the always-on base predicates."""
        where = WhereBuilder()
        for clause in base:
            where.always(clause)
        return self.apply(where, values).build()


def _coerce(match: Match, raw: Any) -> Any:
    """Normalize a raw query value; None means "filter not supplied"."""
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    if match in _INTEGER_MATCHES:
        return parse_int(text, None, *_INTEGER_MATCHES[match])
    if match is Match.CONTAINS:
        return f"%{escape_like(text)}%"
    return text


def _predicate(field: FilterField, placeholder: BindParameter) -> ColumnElement:
    if field.match is Match.CONTAINS:
        terms = [c.ilike(placeholder, escape=_LIKE_ESCAPE) for c in field.columns]
    elif field.match is Match.YEAR:
        terms = [extract("year", c) == placeholder for c in field.columns]
    elif field.match is Match.MONTH:
        terms = [extract("month", c) == placeholder for c in field.columns]
    else:
        terms = [c == placeholder for c in field.columns]
    return or_(*terms) if len(terms) > 1 else terms[0]


@dataclass(frozen=True)
class QueryPlan:
    """A filtered and fully ordered SELECT; LIMIT/OFFSET are applied last."""

    statement: Select

    def count_statement(self) -> Select:
        return select(func.count()).select_from(self.statement.order_by(None).subquery())

    def page_statement(self, offset: int, limit: int) -> Select:
        return self.statement.limit(limit).offset(offset)
