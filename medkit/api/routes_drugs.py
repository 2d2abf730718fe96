# FILE: medkit/api/routes_drugs.py
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from medkit.api.deps import current_user, get_cache, get_db
from medkit.models.user import User
from medkit.schemas.drug import DeleteAllDrugsRequest, DrugCreate
from medkit.services import drugs as drug_service
from medkit.services.cache import DrugCache
from medkit.services.drug_filters import DrugSearchCriteria
from medkit.services.drug_forms import drug_forms_dictionary, list_drug_forms
from medkit.utils.resp import ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/drugs", tags=["Drugs"])


# ============================================================
# Lookups
# ============================================================
@router.get("/forms")
def get_available_drug_forms():
    return ok(list_drug_forms())


@router.get("/forms/dictionary")
def get_drug_forms_dictionary():
    return ok(drug_forms_dictionary())


# ============================================================
# Search / statistics
# ============================================================
@router.get("/search")
def search_drugs(
    db: Session = Depends(get_db),
    cache: DrugCache = Depends(get_cache),
    user: User = Depends(current_user),
    name: Optional[str] = Query(None),
    form: Optional[str] = Query(None),
    expired: Optional[bool] = Query(None),
    expiring_soon: Optional[bool] = Query(None),
    expiration_until_year: Optional[int] = Query(None),
    expiration_until_month: Optional[int] = Query(None),
    page: int = Query(0),
    size: Optional[int] = Query(None),
    sort: Optional[List[str]] = Query(None),
):
    criteria = DrugSearchCriteria(
        name=name,
        form=form,
        expired=expired,
        expiring_soon=expiring_soon,
        expiration_until_year=expiration_until_year,
        expiration_until_month=expiration_until_month,
    )
    data = drug_service.search_drugs(db, cache, user, criteria, page=page, size=size, sort=sort)
    return ok(data)


@router.get("/statistics")
def get_drug_statistics(
    db: Session = Depends(get_db),
    cache: DrugCache = Depends(get_cache),
    user: User = Depends(current_user),
):
    return ok(drug_service.get_drug_statistics(db, cache, user))


# ============================================================
# Bulk delete (password re-confirmation)
# ============================================================
@router.post("/delete-all")
def delete_all_drugs(
    body: DeleteAllDrugsRequest,
    db: Session = Depends(get_db),
    cache: DrugCache = Depends(get_cache),
    user: User = Depends(current_user),
):
    deleted = drug_service.delete_all_drugs(db, cache, user, body.password)
    return ok({"deleted_count": deleted})


# ============================================================
# Single drug CRUD
# ============================================================
@router.post("")
def add_drug(
    body: DrugCreate,
    db: Session = Depends(get_db),
    cache: DrugCache = Depends(get_cache),
    user: User = Depends(current_user),
):
    return ok(drug_service.add_drug(db, cache, user, body), status_code=201)


@router.get("/{drug_id}")
def get_drug(
    drug_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    cache: DrugCache = Depends(get_cache),
    user: User = Depends(current_user),
):
    return ok(drug_service.get_drug_by_id(db, cache, user, drug_id))


@router.put("/{drug_id}")
def update_drug(
    body: DrugCreate,
    drug_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    cache: DrugCache = Depends(get_cache),
    user: User = Depends(current_user),
):
    return ok(drug_service.update_drug(db, cache, user, drug_id, body))


@router.delete("/{drug_id}")
def delete_drug(
    drug_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    cache: DrugCache = Depends(get_cache),
    user: User = Depends(current_user),
):
    drug_service.delete_drug(db, cache, user, drug_id)
    return ok({"id": drug_id, "deleted": True})
