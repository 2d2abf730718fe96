from datetime import datetime

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import relationship

from medkit.db.base import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False, default="")
    email = Column(String(191), unique=True,
                   nullable=False)  # <= 191, no index=True
    password_hash = Column(String(255), nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)

    # expiry emails are opt-out
    alerts_enabled = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    drugs = relationship("Drug",
                         back_populates="owner",
                         cascade="all, delete-orphan",
                         passive_deletes=True)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email}>"
