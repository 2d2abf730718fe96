# FILE: medkit/schemas/drug.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# -------------------------
# Enums
# -------------------------
class DrugFormKind(str, Enum):
    GEL = "GEL"
    PILLS = "PILLS"
    SYRUP = "SYRUP"
    DROPS = "DROPS"
    SUPPOSITORIES = "SUPPOSITORIES"
    SACHETS = "SACHETS"
    CREAM = "CREAM"
    SPRAY = "SPRAY"
    OINTMENT = "OINTMENT"
    LIQUID = "LIQUID"
    POWDER = "POWDER"
    INJECTION = "INJECTION"
    BANDAGE = "BANDAGE"
    INHALER = "INHALER"
    PATCH = "PATCH"
    SOLUTION = "SOLUTION"
    OTHER = "OTHER"

    @property
    def label(self) -> str:
        return DRUG_FORM_LABELS[self]

    @classmethod
    def lookup(cls, value: Optional[str]) -> Optional["DrugFormKind"]:
        """Case-insensitive match on the enum name; None when unknown."""
        key = (value or "").strip().upper()
        return cls.__members__.get(key)


DRUG_FORM_LABELS: Dict[DrugFormKind, str] = {
    DrugFormKind.GEL: "Gel",
    DrugFormKind.PILLS: "Pills",
    DrugFormKind.SYRUP: "Syrup",
    DrugFormKind.DROPS: "Drops",
    DrugFormKind.SUPPOSITORIES: "Suppositories",
    DrugFormKind.SACHETS: "Sachets",
    DrugFormKind.CREAM: "Cream",
    DrugFormKind.SPRAY: "Spray",
    DrugFormKind.OINTMENT: "Ointment",
    DrugFormKind.LIQUID: "Liquid",
    DrugFormKind.POWDER: "Powder",
    DrugFormKind.INJECTION: "Injection",
    DrugFormKind.BANDAGE: "Bandage",
    DrugFormKind.INHALER: "Inhaler",
    DrugFormKind.PATCH: "Patch",
    DrugFormKind.SOLUTION: "Solution",
    DrugFormKind.OTHER: "Other",
}


class SortField(str, Enum):
    NAME = "name"
    EXPIRATION = "expiration"
    FORM = "form"


# -------------------------
# Requests
# -------------------------
class DrugCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    form: str = Field(..., min_length=1, max_length=64)
    expiration_year: int = Field(..., ge=2000, le=2100)
    expiration_month: int = Field(..., ge=1, le=12)
    description: Optional[str] = Field(None, max_length=2000)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class DeleteAllDrugsRequest(BaseModel):
    password: str = Field(..., min_length=1)


# -------------------------
# Responses
# -------------------------
class DrugOut(BaseModel):
    id: int
    name: str
    form: Optional[DrugFormKind] = None
    expires_at: datetime
    description: Optional[str] = None
    alert_sent: bool = False
    alert_sent_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DrugPage(BaseModel):
    items: List[DrugOut] = Field(default_factory=list)
    total: int = 0
    page: int = 0
    size: int = 20
    pages: int = 0


class DrugStatistics(BaseModel):
    total_drugs: int = 0
    expired_drugs: int = 0
    active_drugs: int = 0
    alert_sent_count: int = 0
    drugs_by_form: Dict[str, int] = Field(default_factory=dict)


class DrugFormOption(BaseModel):
    value: str
    label: str


class AlertRunSummary(BaseModel):
    cutoff: datetime
    owners_found: int = 0
    owners_notified: int = 0
    owners_skipped: int = 0
    owners_failed: int = 0
    drugs_notified: int = 0
