# medkit/api/deps.py
from __future__ import annotations

from typing import Generator, Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from medkit.core.exceptions import ForbiddenError, UnauthenticatedError
from medkit.core.security import decode_access_token
from medkit.crud import crud_drugs
from medkit.db.session import SessionLocal
from medkit.models.user import User
from medkit.services.cache import DrugCache, get_drug_cache


# =========================================================
# DB / CACHE
# =========================================================
def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_cache() -> DrugCache:
    return get_drug_cache()


# =========================================================
# AUTH HELPERS
# =========================================================
def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> User:
    raw = _extract_bearer(authorization)
    if not raw:
        raise UnauthenticatedError("Missing token")

    payload = decode_access_token(raw)
    email = payload.get("sub")
    if not email:
        raise UnauthenticatedError("Invalid token payload")

    user = crud_drugs.get_user_by_email(db, email)
    if not user:
        raise UnauthenticatedError("User not found")
    if not user.is_active:
        raise UnauthenticatedError("User inactive")
    return user


def current_admin(user: User = Depends(current_user)) -> User:
    if not bool(user.is_admin):
        raise ForbiddenError("Forbidden: admin only")
    return user
