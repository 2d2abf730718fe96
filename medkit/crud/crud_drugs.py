# FILE: medkit/crud/crud_drugs.py
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import Select, delete, func, select
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from medkit.models.drug import Drug, DrugForm
from medkit.models.user import User


# =========================================================
# Tenant directory
# =========================================================
def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.get(User, user_id)


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.execute(select(User).where(User.email == email)).scalar_one_or_none()


# =========================================================
# Owner-scoped reads
# =========================================================
def get_drug_for_owner(db: Session, drug_id: int, owner_id: int) -> Optional[Drug]:
    return db.execute(
        select(Drug).where(Drug.id == drug_id, Drug.owner_id == owner_id)
    ).scalar_one_or_none()


def search_drugs(
    db: Session,
    where: ColumnElement,
    order_by: Sequence = (),
    offset: int = 0,
    limit: int = 20,
) -> Tuple[List[Drug], int]:
    total = int(db.execute(
        select(func.count(Drug.id)).where(where)
    ).scalar() or 0)

    q = select(Drug).outerjoin(DrugForm, DrugForm.id == Drug.form_id).where(where)
    if order_by:
        q = q.order_by(*order_by)
    q = q.order_by(Drug.id.asc()).offset(offset).limit(limit)

    rows = list(db.execute(q).unique().scalars().all())
    return rows, total


def count_for_owner(db: Session, owner_id: int) -> int:
    return int(db.execute(
        select(func.count(Drug.id)).where(Drug.owner_id == owner_id)
    ).scalar() or 0)


def count_expired_for_owner(db: Session, owner_id: int, before: datetime) -> int:
    return int(db.execute(
        select(func.count(Drug.id)).where(
            Drug.owner_id == owner_id,
            Drug.expires_at < before,
        )).scalar() or 0)


def count_alert_sent_for_owner(db: Session, owner_id: int) -> int:
    return int(db.execute(
        select(func.count(Drug.id)).where(
            Drug.owner_id == owner_id,
            Drug.alert_sent.is_(True),
        )).scalar() or 0)


def count_by_form_for_owner(db: Session, owner_id: int) -> List[Tuple[Optional[str], Optional[int]]]:
    """Raw (form name, count) rows; a drug without a form shows up as (None, n)."""
    rows = db.execute(
        select(DrugForm.name, func.count(Drug.id))
        .select_from(Drug)
        .outerjoin(DrugForm, DrugForm.id == Drug.form_id)
        .where(Drug.owner_id == owner_id)
        .group_by(DrugForm.name)
    ).all()
    return [(r[0], r[1]) for r in rows]


# =========================================================
# Owner-scoped writes
# =========================================================
def delete_all_for_owner(db: Session, owner_id: int) -> int:
    result = db.execute(
        delete(Drug)
        .where(Drug.owner_id == owner_id)
        .execution_options(synchronize_session=False))
    return int(result.rowcount or 0)


# =========================================================
# Alert scan (cross-tenant, re-partitioned by owner)
# =========================================================
def owners_with_pending_alerts(db: Session, cutoff: datetime) -> List[int]:
    rows = db.execute(
        select(Drug.owner_id)
        .where(Drug.expires_at <= cutoff, Drug.alert_sent.is_(False))
        .distinct()
        .order_by(Drug.owner_id.asc())
    ).scalars().all()
    return list(rows)


def pending_alerts_query(owner_id: int, cutoff: datetime) -> Select:
    """
    Rows are locked FOR UPDATE until the caller commits or rolls back, so two
    compose-send-mark runs for one owner queue behind each other.
    """
    return (
        select(Drug)
        .where(
            Drug.owner_id == owner_id,
            Drug.expires_at <= cutoff,
            Drug.alert_sent.is_(False),
        )
        .order_by(Drug.expires_at.asc(), Drug.id.asc())
        .with_for_update(of=Drug)
    )


def pending_alerts_for_owner(db: Session, owner_id: int, cutoff: datetime) -> List[Drug]:
    return list(db.execute(
        pending_alerts_query(owner_id, cutoff)
    ).unique().scalars().all())


# =========================================================
# Category lookup table
# =========================================================
def get_form_by_name(db: Session, name: str) -> Optional[DrugForm]:
    return db.execute(
        select(DrugForm).where(func.upper(DrugForm.name) == name.strip().upper())
    ).scalar_one_or_none()


def existing_form_names(db: Session) -> Dict[str, int]:
    return {n: i for i, n in db.execute(select(DrugForm.id, DrugForm.name)).all()}
