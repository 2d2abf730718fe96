"""
Shared fixtures: SQLite in-memory database, seeded drug forms, two tenants,
a fresh in-process cache and a recording email sender.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")
os.environ.setdefault("ALERTS_SCHEDULER_ENABLED", "false")
os.environ.setdefault("CACHE_BACKEND", "memory")

from datetime import datetime
from typing import List, Optional

import pytest
from passlib.hash import pbkdf2_sha256
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from medkit.db.base import Base
from medkit.models import Drug, User
from medkit.services.cache import DrugCache, MemoryCacheBackend
from medkit.services.drug_forms import resolve_drug_form, seed_drug_forms

NOW = datetime(2026, 3, 15, 10, 0, 0)
PASSWORD = "s3cret-pass"


class FakeSender:
    """Stands in for core.emailer.send_email; fails for listed recipients."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent: List[dict] = []
        self.attempts: List[str] = []

    def __call__(self, to_email, subject, body, timeout=None):
        self.attempts.append(to_email)
        if to_email in self.fail_for:
            raise ConnectionRefusedError(f"SMTP refused for {to_email}")
        self.sent.append({
            "to": to_email,
            "subject": subject,
            "body": body,
            "timeout": timeout,
        })

    def sent_to(self, email: str) -> List[dict]:
        return [m for m in self.sent if m["to"] == email]


class BrokenBackend:
    """Cache backend whose every call fails like an unreachable Redis."""

    def get(self, key):
        raise ConnectionError("cache down")

    def set(self, key, value, ttl_seconds):
        raise ConnectionError("cache down")

    def delete_prefix(self, prefix):
        raise ConnectionError("cache down")


def make_user(db, email: Optional[str], *, alerts_enabled: bool = True,
              is_admin: bool = False, name: str = "") -> User:
    user = User(
        name=name or (email or "anon"),
        email=email if email is not None else "",
        password_hash=pbkdf2_sha256.hash(PASSWORD),
        alerts_enabled=alerts_enabled,
        is_admin=is_admin,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def add_drug_row(db, owner: User, name: str, expires_at: datetime, *,
                 form: Optional[str] = "PILLS", description: Optional[str] = None,
                 alert_sent: bool = False) -> Drug:
    drug = Drug(
        owner_id=owner.id,
        name=name,
        form=resolve_drug_form(db, form) if form else None,
        expires_at=expires_at,
        description=description,
        alert_sent=alert_sent,
    )
    db.add(drug)
    db.commit()
    db.refresh(drug)
    return drug


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autoflush=False, future=True)
    session = Session()
    seed_drug_forms(session)
    yield session
    session.close()


@pytest.fixture
def alice(db):
    return make_user(db, "alice@example.com", name="Alice")


@pytest.fixture
def bob(db):
    return make_user(db, "bob@example.com", name="Bob")


@pytest.fixture
def cache():
    return DrugCache(MemoryCacheBackend(), ttl_seconds=300)


@pytest.fixture
def sender():
    return FakeSender()
