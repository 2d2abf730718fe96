"""
Tests for services/drug_filters.py: clause composition, owner scoping and
date-range resolution.
"""

from datetime import datetime

import pytest
from sqlalchemy import select

from medkit.core.exceptions import InvalidDateRangeError, InvalidDrugFormError
from medkit.models.drug import Drug
from medkit.services.drug_filters import (
    DrugSearchCriteria,
    build_drug_filter,
    expiry_window,
    resolve_expiration_until,
)
from tests.conftest import NOW, add_drug_row


def _names(db, flt):
    rows = db.execute(select(Drug).where(flt.where).order_by(Drug.name)).unique().scalars().all()
    return [d.name for d in rows]


class TestClauseComposition:
    def test_empty_criteria_is_owner_only(self):
        flt = build_drug_filter(7, DrugSearchCriteria(), now=NOW)
        assert flt.clause_names == ["owner"]
        assert flt.owner_id == 7

    def test_none_criteria_is_owner_only(self):
        assert build_drug_filter(7, None, now=NOW).clause_names == ["owner"]

    def test_owner_clause_always_first(self):
        criteria = DrugSearchCriteria(
            name="asp",
            form="pills",
            expired=False,
            expiration_until_year=2030,
        )
        names = build_drug_filter(3, criteria, now=NOW).clause_names
        assert names[0] == "owner"
        assert names == ["owner", "name", "form", "not_expired", "expiration_until"]

    def test_blank_name_and_form_are_ignored(self):
        criteria = DrugSearchCriteria(name="   ", form="")
        assert build_drug_filter(1, criteria, now=NOW).clause_names == ["owner"]

    def test_expiring_soon_wins_over_expired(self):
        criteria = DrugSearchCriteria(expired=True, expiring_soon=True)
        names = build_drug_filter(1, criteria, now=NOW).clause_names
        assert "expiring_soon" in names
        assert "expired" not in names

    def test_expiring_soon_false_falls_back_to_expired(self):
        criteria = DrugSearchCriteria(expired=True, expiring_soon=False)
        names = build_drug_filter(1, criteria, now=NOW).clause_names
        assert names == ["owner", "expired"]

    def test_unknown_form_rejected_before_any_query(self):
        with pytest.raises(InvalidDrugFormError, match="No such drug form"):
            build_drug_filter(1, DrugSearchCriteria(form="capsule"), now=NOW)

    def test_invalid_month_rejected(self):
        with pytest.raises(InvalidDateRangeError, match="expiration_until_month"):
            build_drug_filter(1, DrugSearchCriteria(expiration_until_month=13), now=NOW)


class TestExpirationUntil:
    def test_neither_part_means_no_bound(self):
        assert resolve_expiration_until(None, None, NOW) is None

    def test_year_only_defaults_to_december(self):
        assert resolve_expiration_until(2027, None, NOW) == datetime(2027, 12, 31)

    def test_month_only_uses_current_year(self):
        assert resolve_expiration_until(None, 5, NOW) == datetime(2026, 5, 31)

    def test_both_parts(self):
        assert resolve_expiration_until(2028, 2, NOW) == datetime(2028, 2, 29)

    def test_year_out_of_range(self):
        with pytest.raises(InvalidDateRangeError, match="expiration_until_year"):
            resolve_expiration_until(1999, 1, NOW)

    def test_expiry_window_spans_thirty_days(self):
        start, end = expiry_window(datetime(2026, 3, 15))
        assert start == datetime(2026, 3, 15)
        assert end == datetime(2026, 4, 14)


class TestAgainstStore:
    def test_owner_scope_hides_other_tenants(self, db, alice, bob):
        add_drug_row(db, alice, "Aspirin", datetime(2027, 1, 31))
        add_drug_row(db, bob, "Aspirin", datetime(2027, 1, 31))
        add_drug_row(db, bob, "Ibuprofen", datetime(2027, 1, 31))

        assert _names(db, build_drug_filter(alice.id, now=NOW)) == ["Aspirin"]
        assert _names(db, build_drug_filter(bob.id, now=NOW)) == ["Aspirin", "Ibuprofen"]

    def test_name_matches_description_case_insensitively(self, db, alice):
        add_drug_row(db, alice, "Nurofen", datetime(2027, 1, 31), description="IBUPROFEN 200mg")
        add_drug_row(db, alice, "Rutinoscorbin", datetime(2027, 1, 31))

        flt = build_drug_filter(alice.id, DrugSearchCriteria(name="ibuprofen"), now=NOW)
        assert _names(db, flt) == ["Nurofen"]

    def test_form_filter_is_case_insensitive(self, db, alice):
        add_drug_row(db, alice, "Voltaren", datetime(2027, 1, 31), form="GEL")
        add_drug_row(db, alice, "Apap", datetime(2027, 1, 31), form="PILLS")

        flt = build_drug_filter(alice.id, DrugSearchCriteria(form="Gel"), now=NOW)
        assert _names(db, flt) == ["Voltaren"]

    def test_expired_and_expiring_soon_partitions(self, db, alice):
        add_drug_row(db, alice, "Old", datetime(2026, 2, 28))
        add_drug_row(db, alice, "Today", datetime(2026, 3, 15))
        add_drug_row(db, alice, "Soon", datetime(2026, 4, 10))
        add_drug_row(db, alice, "Later", datetime(2026, 12, 31))

        expired = build_drug_filter(alice.id, DrugSearchCriteria(expired=True), now=NOW)
        not_expired = build_drug_filter(alice.id, DrugSearchCriteria(expired=False), now=NOW)
        soon = build_drug_filter(alice.id, DrugSearchCriteria(expiring_soon=True), now=NOW)

        assert _names(db, expired) == ["Old"]
        assert _names(db, not_expired) == ["Later", "Soon", "Today"]
        assert _names(db, soon) == ["Soon", "Today"]

    def test_expiration_until_bound_is_inclusive(self, db, alice):
        add_drug_row(db, alice, "June", datetime(2026, 6, 30))
        add_drug_row(db, alice, "July", datetime(2026, 7, 31))

        flt = build_drug_filter(alice.id, DrugSearchCriteria(expiration_until_month=6), now=NOW)
        assert _names(db, flt) == ["June"]
