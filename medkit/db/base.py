# medkit/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All tables (users, drug forms, drugs) inherit from this."""
    pass
