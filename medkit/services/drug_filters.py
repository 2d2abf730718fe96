# FILE: medkit/services/drug_filters.py
"""
Search criteria -> SQL predicate for the drugs table.

The builder is pure: it never touches the session. Every filter it returns
starts with the owner clause, so a query built from it cannot see another
tenant's rows no matter which optional criteria were supplied.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, or_
from sqlalchemy.sql.elements import ColumnElement

from medkit.core.config import settings
from medkit.core.exceptions import InvalidDateRangeError, InvalidDrugFormError
from medkit.models.drug import Drug, DrugForm
from medkit.schemas.drug import DrugFormKind
from medkit.utils.timezone import build_expiration_date, start_of_day, start_of_today

logger = logging.getLogger(__name__)

MIN_EXPIRATION_YEAR = 2000
MAX_EXPIRATION_YEAR = 2100


@dataclass(frozen=True)
class DrugSearchCriteria:
    name: Optional[str] = None
    form: Optional[str] = None
    expired: Optional[bool] = None
    expiring_soon: Optional[bool] = None
    expiration_until_year: Optional[int] = None
    expiration_until_month: Optional[int] = None

    def is_empty(self) -> bool:
        return (not (self.name or "").strip()
                and not (self.form or "").strip()
                and self.expired is None
                and self.expiring_soon is None
                and self.expiration_until_year is None
                and self.expiration_until_month is None)

    def normalized(self) -> Dict[str, Any]:
        """Stable, JSON-friendly view used for cache keys."""
        kind = DrugFormKind.lookup(self.form)
        return {
            "name": (self.name or "").strip().lower(),
            "form": kind.value if kind else (self.form or "").strip().upper(),
            "expired": self.expired,
            "expiring_soon": self.expiring_soon,
            "until_year": self.expiration_until_year,
            "until_month": self.expiration_until_month,
        }


@dataclass(frozen=True)
class FilterClause:
    name: str
    expression: ColumnElement


@dataclass
class DrugFilter:
    owner_id: int
    clauses: List[FilterClause] = field(default_factory=list)

    @property
    def clause_names(self) -> List[str]:
        return [c.name for c in self.clauses]

    @property
    def where(self) -> ColumnElement:
        return and_(*[c.expression for c in self.clauses])


def resolve_expiration_until(
    year: Optional[int],
    month: Optional[int],
    today: datetime,
) -> Optional[datetime]:
    """
    year only  -> December of that year
    month only -> that month of the current year
    neither    -> no upper bound
    """
    if year is None and month is None:
        return None
    if month is not None and not 1 <= month <= 12:
        raise InvalidDateRangeError(
            "expiration_until_month", month,
            f"Invalid value for 'expiration_until_month': {month} (expected 1-12)")
    if year is not None and not MIN_EXPIRATION_YEAR <= year <= MAX_EXPIRATION_YEAR:
        raise InvalidDateRangeError(
            "expiration_until_year", year,
            f"Invalid value for 'expiration_until_year': {year} "
            f"(expected {MIN_EXPIRATION_YEAR}-{MAX_EXPIRATION_YEAR})")

    if month is None:
        month = 12
        logger.debug("Only year provided (%s). Defaulting month to December.", year)
    if year is None:
        year = today.year
        logger.debug("Only month provided (%s). Defaulting year to %s.", month, year)
    return build_expiration_date(year, month)


def expiry_window(today: datetime) -> Tuple[datetime, datetime]:
    return today, today + timedelta(days=settings.EXPIRING_SOON_DAYS)


def build_drug_filter(
    owner_id: int,
    criteria: Optional[DrugSearchCriteria] = None,
    now: Optional[datetime] = None,
) -> DrugFilter:
    criteria = criteria or DrugSearchCriteria()
    today = start_of_day(now) if now else start_of_today()

    flt = DrugFilter(owner_id=owner_id)
    flt.clauses.append(FilterClause("owner", Drug.owner_id == owner_id))

    name = (criteria.name or "").strip().lower()
    if name:
        pattern = f"%{name}%"
        flt.clauses.append(FilterClause(
            "name",
            or_(
                func.lower(Drug.name).like(pattern),
                func.lower(Drug.description).like(pattern),
            ),
        ))

    form = (criteria.form or "").strip()
    if form:
        kind = DrugFormKind.lookup(form)
        if kind is None:
            raise InvalidDrugFormError(criteria.form)
        flt.clauses.append(FilterClause(
            "form", Drug.form.has(DrugForm.name == kind.value)))

    if criteria.expiring_soon:
        start, end = expiry_window(today)
        flt.clauses.append(FilterClause(
            "expiring_soon",
            and_(Drug.expires_at >= start, Drug.expires_at <= end),
        ))
    elif criteria.expired is True:
        flt.clauses.append(FilterClause("expired", Drug.expires_at < today))
    elif criteria.expired is False:
        flt.clauses.append(FilterClause("not_expired", Drug.expires_at >= today))

    until = resolve_expiration_until(
        criteria.expiration_until_year,
        criteria.expiration_until_month,
        today,
    )
    if until is not None:
        flt.clauses.append(FilterClause(
            "expiration_until", Drug.expires_at <= until))

    return flt
