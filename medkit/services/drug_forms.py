# FILE: medkit/services/drug_forms.py
from __future__ import annotations

import logging
from typing import Dict, List

from sqlalchemy.orm import Session

from medkit.core.exceptions import InvalidDrugFormError
from medkit.crud import crud_drugs
from medkit.models.drug import DrugForm
from medkit.schemas.drug import DrugFormKind, DrugFormOption

logger = logging.getLogger(__name__)


def resolve_drug_form(db: Session, value: str) -> DrugForm:
    """
    Case-insensitive lookup of a drug form by its enum name.
    Unknown names (or a kind missing from the lookup table) are rejected.
    """
    kind = DrugFormKind.lookup(value)
    if kind is None:
        raise InvalidDrugFormError(value)

    form = crud_drugs.get_form_by_name(db, kind.value)
    if form is None:
        logger.error("Drug form %s is missing from drug_forms; run init_db", kind.value)
        raise InvalidDrugFormError(value)
    return form


def seed_drug_forms(db: Session) -> int:
    """Insert missing DrugFormKind rows; safe to run multiple times."""
    existing = crud_drugs.existing_form_names(db)
    added = 0
    for kind in DrugFormKind:
        if kind.value not in existing:
            db.add(DrugForm(name=kind.value))
            added += 1
    if added:
        db.commit()
    return added


def list_drug_forms() -> List[DrugFormOption]:
    return [DrugFormOption(value=k.value.lower(), label=k.label) for k in DrugFormKind]


def drug_forms_dictionary() -> Dict[str, str]:
    return {k.value: k.label for k in DrugFormKind}
