# FILE: medkit/api/routes_alerts.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from medkit.api.deps import current_admin, current_user, get_cache, get_db
from medkit.core.scheduling import run_alert_batch
from medkit.models.user import User
from medkit.services import drugs as drug_service
from medkit.services.cache import DrugCache
from medkit.utils.resp import ok

router = APIRouter(prefix="/alerts", tags=["Expiry Alerts"])


@router.post("/send")
def send_my_expiry_alerts(
    horizon_days: Optional[int] = Query(None, ge=0, le=3650),
    db: Session = Depends(get_db),
    cache: DrugCache = Depends(get_cache),
    user: User = Depends(current_user),
):
    """Email the caller about their own drugs expiring within `horizon_days`."""
    count = drug_service.send_expiry_alerts_for_current_user(
        db, cache, user, horizon_days=horizon_days)
    return ok({"drugs_notified": count})


@router.post("/run-all")
def run_expiry_alerts_for_all_users(
    horizon_days: Optional[int] = Query(None, ge=0, le=3650),
    db: Session = Depends(get_db),
    cache: DrugCache = Depends(get_cache),
    admin: User = Depends(current_admin),
):
    # shares the daily job guard; 409 while a run is in progress
    summary = run_alert_batch(db, cache, horizon_days=horizon_days)
    return ok(summary)
