# FILE: medkit/models/drug.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from medkit.db.base import Base


class DrugForm(Base):
    """Category lookup; one row per DrugFormKind, seeded by init_db."""
    __tablename__ = "drug_forms"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(64), nullable=False, unique=True)

    drugs = relationship("Drug", back_populates="form")

    def __repr__(self) -> str:
        return f"<DrugForm id={self.id} name={self.name}>"


class Drug(Base):
    __tablename__ = "drugs"
    __table_args__ = (
        Index("ix_drugs_owner_expires", "owner_id", "expires_at"),
        Index("ix_drugs_alert_pending", "alert_sent", "expires_at"),
        {
            "mysql_engine": "InnoDB",
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    id = Column(Integer, primary_key=True, index=True)

    # tenant; never changes after insert
    owner_id = Column(Integer,
                      ForeignKey("users.id", ondelete="CASCADE"),
                      nullable=False,
                      index=True)

    name = Column(String(255), nullable=False)
    form_id = Column(Integer,
                     ForeignKey("drug_forms.id", ondelete="SET NULL"),
                     nullable=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    description = Column(Text, nullable=True)

    # False -> True only, after a confirmed send
    alert_sent = Column(Boolean, default=False, nullable=False)
    alert_sent_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    owner = relationship("User", back_populates="drugs")
    form = relationship("DrugForm", back_populates="drugs", lazy="joined")

    def __repr__(self) -> str:
        return f"<Drug id={self.id} owner={self.owner_id} name={self.name}>"
