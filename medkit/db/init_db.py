# medkit/db/init_db.py
from __future__ import annotations

import argparse
import logging

from sqlalchemy.exc import SQLAlchemyError

from medkit.core.logging import configure_logging
from medkit.core.security import hash_password
from medkit.crud import crud_drugs
from medkit.db.base import Base
from medkit.db.session import SessionLocal, engine
from medkit.models import User  # noqa: F401  (registers every table)
from medkit.services.drug_forms import seed_drug_forms

logger = logging.getLogger(__name__)


def create_admin(db, email: str, password: str) -> User:
    user = crud_drugs.get_user_by_email(db, email)
    if user:
        logger.info("Admin %s already exists", email)
        return user
    user = User(name="Administrator",
                email=email,
                password_hash=hash_password(password),
                is_admin=True)
    db.add(user)
    db.commit()
    logger.info("Created admin %s", email)
    return user


def main() -> None:
    parser = argparse.ArgumentParser(description="Create tables and seed drug forms")
    parser.add_argument("--admin-email", default=None)
    parser.add_argument("--admin-password", default=None)
    args = parser.parse_args()

    configure_logging()
    Base.metadata.create_all(bind=engine)
    logger.info("Tables ready: %s", ", ".join(sorted(Base.metadata.tables)))

    db = SessionLocal()
    try:
        added = seed_drug_forms(db)
        logger.info("Seeded %d drug forms", added)
        if args.admin_email and args.admin_password:
            create_admin(db, args.admin_email, args.admin_password)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Database initialisation failed")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
