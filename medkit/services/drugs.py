# FILE: medkit/services/drugs.py
"""
Drug inventory operations for the acting user.

Every public write evicts the cache itself, once before touching the store
and once after commit. Nothing relies on a decorator or on being called
from outside the module for eviction to happen.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medkit.core.config import settings
from medkit.core.emailer import EmailSender, send_email
from medkit.core.exceptions import (
    DrugNotFoundError,
    InvalidInputError,
    InvalidPageRequestError,
    InvalidPasswordError,
    InvalidSortFieldError,
)
from medkit.core.security import verify_password
from medkit.crud import crud_drugs
from medkit.models.drug import Drug, DrugForm
from medkit.models.user import User
from medkit.schemas.drug import (
    AlertRunSummary,
    DrugCreate,
    DrugFormKind,
    DrugOut,
    DrugPage,
    DrugStatistics,
    SortField,
)
from medkit.services import drug_alerts
from medkit.services.cache import DRUG_BY_ID, DRUG_SEARCH, DRUG_STATISTICS, DrugCache
from medkit.services.drug_filters import DrugSearchCriteria, build_drug_filter
from medkit.services.drug_forms import resolve_drug_form
from medkit.utils.timezone import build_expiration_date, now_local, start_of_day

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    SortField.NAME: Drug.name,
    SortField.EXPIRATION: Drug.expires_at,
    SortField.FORM: DrugForm.name,
}


# ----------------------------
# Helpers
# ----------------------------
def drug_to_out(drug: Drug) -> DrugOut:
    form = DrugFormKind.lookup(drug.form.name) if drug.form is not None else None
    return DrugOut(
        id=drug.id,
        name=drug.name,
        form=form,
        expires_at=drug.expires_at,
        description=drug.description,
        alert_sent=bool(drug.alert_sent),
        alert_sent_at=drug.alert_sent_at,
    )


def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def _get_owned_drug(db: Session, user: User, drug_id: int) -> Drug:
    drug = crud_drugs.get_drug_for_owner(db, drug_id, user.id)
    if drug is None:
        raise DrugNotFoundError(drug_id)
    return drug


def parse_sort(sort: Optional[Sequence[str]]) -> List[Tuple[SortField, bool]]:
    """
    "expiration" / "expiration,desc" / "name,asc" -> [(field, descending)].
    Unknown fields or directions are rejected, never ignored.
    """
    allowed = [f.value for f in SortField]
    parsed: List[Tuple[SortField, bool]] = []
    for raw in sort or []:
        if raw is None or not raw.strip():
            continue
        parts = [p.strip() for p in raw.split(",")]
        field_name = parts[0].lower()
        try:
            field = SortField(field_name)
        except ValueError:
            raise InvalidSortFieldError(parts[0], allowed)

        direction = parts[1].lower() if len(parts) > 1 and parts[1] else "asc"
        if len(parts) > 2 or direction not in ("asc", "desc"):
            raise InvalidInputError("sort", raw,
                                    f"Invalid sort direction for 'sort': {raw!r}")
        parsed.append((field, direction == "desc"))
    return parsed


def _order_by(parsed: List[Tuple[SortField, bool]]) -> list:
    cols = []
    for field, desc in parsed:
        col = SORT_COLUMNS[field]
        cols.append(col.desc() if desc else col.asc())
    return cols


# ----------------------------
# Writes
# ----------------------------
def add_drug(db: Session, cache: DrugCache, user: User, payload: DrugCreate) -> DrugOut:
    logger.info("User %s attempting to add a new drug: %s", user.id, payload.name)

    form = resolve_drug_form(db, payload.form)
    cache.evict_owner(user.id)

    drug = Drug(
        owner_id=user.id,
        name=payload.name,
        form=form,
        expires_at=build_expiration_date(payload.expiration_year, payload.expiration_month),
        description=payload.description,
    )
    db.add(drug)
    _commit(db)
    db.refresh(drug)

    cache.evict_owner(user.id)
    logger.info("User %s successfully added the drug: %s (id=%s)", user.id, drug.name, drug.id)
    return drug_to_out(drug)


def update_drug(db: Session, cache: DrugCache, user: User, drug_id: int,
                payload: DrugCreate) -> DrugOut:
    logger.info("User %s attempting to update drug with ID: %s", user.id, drug_id)

    drug = _get_owned_drug(db, user, drug_id)
    form = resolve_drug_form(db, payload.form)
    cache.evict_owner(user.id)

    drug.name = payload.name
    drug.form = form
    drug.expires_at = build_expiration_date(payload.expiration_year, payload.expiration_month)
    drug.description = payload.description
    _commit(db)
    db.refresh(drug)

    cache.evict_owner(user.id)
    logger.info("User %s successfully updated drug with ID: %s", user.id, drug_id)
    return drug_to_out(drug)


def delete_drug(db: Session, cache: DrugCache, user: User, drug_id: int) -> None:
    logger.info("User %s attempting to delete drug with ID: %s", user.id, drug_id)

    drug = _get_owned_drug(db, user, drug_id)
    cache.evict_owner(user.id)

    db.delete(drug)
    _commit(db)

    cache.evict_owner(user.id)
    logger.info("User %s successfully deleted drug with ID: %s", user.id, drug_id)


def delete_all_drugs(db: Session, cache: DrugCache, user: User, password: str) -> int:
    logger.info("User %s attempting to delete all drugs", user.email)

    if not verify_password(password, user.password_hash):
        logger.warning("Invalid password provided by user %s for delete all drugs operation",
                       user.email)
        raise InvalidPasswordError()

    cache.evict_owner(user.id)
    deleted = crud_drugs.delete_all_for_owner(db, user.id)
    _commit(db)
    db.expire_all()

    cache.evict_owner(user.id)
    logger.info("User %s successfully deleted all %d drugs", user.email, deleted)
    return deleted


# ----------------------------
# Reads
# ----------------------------
def get_drug_by_id(db: Session, cache: DrugCache, user: User, drug_id: int) -> DrugOut:
    logger.info("User %s fetching drug with ID: %s", user.id, drug_id)

    def load() -> DrugOut:
        return drug_to_out(_get_owned_drug(db, user, drug_id))

    return cache.get_or_load(DRUG_BY_ID, user.id, {"id": drug_id}, load, DrugOut)


def search_drugs(
    db: Session,
    cache: DrugCache,
    user: User,
    criteria: Optional[DrugSearchCriteria] = None,
    page: int = 0,
    size: Optional[int] = None,
    sort: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None,
) -> DrugPage:
    criteria = criteria or DrugSearchCriteria()
    size = settings.SEARCH_DEFAULT_PAGE_SIZE if size is None else size
    logger.info("User %s searching drugs with filters: %s, page=%s, size=%s, sort=%s",
                user.id, criteria, page, size, sort)

    if page < 0:
        raise InvalidPageRequestError("page", page, f"Invalid value for 'page': {page} (must be >= 0)")
    if size < 1 or size > settings.SEARCH_MAX_PAGE_SIZE:
        raise InvalidPageRequestError(
            "size", size,
            f"Invalid value for 'size': {size}. Allowed maximum is {settings.SEARCH_MAX_PAGE_SIZE}")

    parsed_sort = parse_sort(sort)
    now = now or now_local()
    flt = build_drug_filter(user.id, criteria, now=now)

    def load() -> DrugPage:
        rows, total = crud_drugs.search_drugs(
            db,
            flt.where,
            order_by=_order_by(parsed_sort),
            offset=page * size,
            limit=size,
        )
        return DrugPage(
            items=[drug_to_out(d) for d in rows],
            total=total,
            page=page,
            size=size,
            pages=math.ceil(total / size) if total else 0,
        )

    # unfiltered scans are never cached
    if criteria.is_empty():
        return load()

    args = {
        "criteria": criteria.normalized(),
        "page": page,
        "size": size,
        "sort": [[f.value, desc] for f, desc in parsed_sort],
        "day": start_of_day(now).date().isoformat(),
    }
    return cache.get_or_load(DRUG_SEARCH, user.id, args, load, DrugPage,
                             store_if=lambda p: bool(p.items))


def _forms_breakdown(rows) -> Dict[str, int]:
    return {name: int(count) for name, count in rows if name is not None and count is not None}


def get_drug_statistics(db: Session, cache: DrugCache, user: User,
                        now: Optional[datetime] = None) -> DrugStatistics:
    logger.info("User %s fetching drug statistics.", user.id)
    today = start_of_day(now or now_local())

    def load() -> DrugStatistics:
        total = crud_drugs.count_for_owner(db, user.id)
        expired = crud_drugs.count_expired_for_owner(db, user.id, today)
        alerts_sent = crud_drugs.count_alert_sent_for_owner(db, user.id)
        by_form = _forms_breakdown(crud_drugs.count_by_form_for_owner(db, user.id))

        stats = DrugStatistics(
            total_drugs=total,
            expired_drugs=expired,
            active_drugs=total - expired,
            alert_sent_count=alerts_sent,
            drugs_by_form=by_form,
        )
        logger.info("User %s statistics fetched: total=%d expired=%d active=%d alerts_sent=%d",
                    user.id, stats.total_drugs, stats.expired_drugs, stats.active_drugs,
                    stats.alert_sent_count)
        return stats

    return cache.get_or_load(DRUG_STATISTICS, user.id,
                             {"day": today.date().isoformat()}, load, DrugStatistics)


# ----------------------------
# Expiry alerts
# ----------------------------
def _alert_cutoff(now: datetime, horizon_days: Optional[int]) -> datetime:
    days = settings.ALERT_HORIZON_DAYS if horizon_days is None else horizon_days
    if days < 0:
        raise InvalidInputError("horizon_days", days,
                                f"Invalid value for 'horizon_days': {days} (must be >= 0)")
    return now + timedelta(days=days)


def send_expiry_alerts_for_current_user(
    db: Session,
    cache: DrugCache,
    user: User,
    horizon_days: Optional[int] = None,
    timeout: Optional[float] = None,
    now: Optional[datetime] = None,
    sender: EmailSender = send_email,
) -> int:
    """
    On-demand alert for the caller's own drugs. A send failure propagates
    as EmailSendingError.
    """
    now = now or now_local()
    cutoff = _alert_cutoff(now, horizon_days)
    logger.info("User %s requested expiry alerts for drugs expiring up to %s", user.id, cutoff)

    cache.evict_owner(user.id)
    sent = drug_alerts.dispatch_for_owner(
        db,
        user,
        cutoff,
        now=now,
        sender=sender,
        timeout=settings.ALERT_SEND_TIMEOUT_SECONDS if timeout is None else timeout,
    )
    cache.evict_owner(user.id)
    return sent


def send_expiry_alerts_for_all_users(
    db: Session,
    cache: DrugCache,
    now: Optional[datetime] = None,
    horizon_days: Optional[int] = None,
    sender: EmailSender = send_email,
) -> AlertRunSummary:
    """
    Batch run over every user. Per-user send failures are logged and
    counted, never raised.
    """
    now = now or now_local()
    cutoff = _alert_cutoff(now, horizon_days)
    logger.info("Sending expiry alert emails for all users for drugs expiring up to %s", cutoff)

    cache.evict_all()
    summary = drug_alerts.dispatch_for_all_owners(db, cutoff, now=now, sender=sender)
    cache.evict_all()
    return summary
