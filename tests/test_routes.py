"""
HTTP-level tests: envelope shape, auth, error mapping and the drug routes.
"""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from medkit.api.deps import get_cache, get_db
from medkit.core import scheduling
from medkit.core.security import create_access_token
from medkit.crud import crud_drugs
from medkit.main import app
from tests.conftest import PASSWORD, add_drug_row, make_user


@pytest.fixture
def client(db, cache):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_cache] = lambda: cache
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _auth(user):
    return {"Authorization": f"Bearer {create_access_token(user.email)}"}


def _create(client, user, **overrides):
    body = {
        "name": "Aspirin",
        "form": "PILLS",
        "expiration_year": 2027,
        "expiration_month": 3,
        "description": "for headaches",
    }
    body.update(overrides)
    return client.post("/api/drugs", json=body, headers=_auth(user))


class TestAuth:
    def test_missing_token(self, client):
        res = client.get("/api/drugs/statistics")
        assert res.status_code == 401
        assert res.json()["status"] is False
        assert res.json()["error"]["code"] == "UNAUTHENTICATED"

    def test_garbage_token(self, client):
        res = client.get("/api/drugs/statistics", headers={"Authorization": "Bearer nope"})
        assert res.status_code == 401
        assert res.json()["error"]["msg"] == "Invalid token"

    def test_unknown_user(self, client):
        headers = {"Authorization": f"Bearer {create_access_token('ghost@example.com')}"}
        assert client.get("/api/drugs/statistics", headers=headers).status_code == 401

    def test_run_all_is_admin_only(self, client, alice):
        res = client.post("/api/alerts/run-all", headers=_auth(alice))
        assert res.status_code == 403
        assert res.json()["error"]["code"] == "FORBIDDEN"


class TestLookups:
    def test_forms_list(self, client):
        res = client.get("/api/drugs/forms")
        data = res.json()["data"]
        assert res.status_code == 200
        assert {"value": "gel", "label": "Gel"} in data
        assert len(data) == 17

    def test_forms_dictionary(self, client):
        data = client.get("/api/drugs/forms/dictionary").json()["data"]
        assert data["PILLS"] == "Pills"

    def test_health(self, client):
        assert client.get("/").status_code == 200


class TestDrugRoutes:
    def test_create_and_fetch(self, client, alice):
        res = _create(client, alice)
        assert res.status_code == 201
        created = res.json()["data"]
        assert created["form"] == "PILLS"
        assert created["expires_at"].startswith("2027-03-31")

        fetched = client.get(f"/api/drugs/{created['id']}", headers=_auth(alice))
        assert fetched.status_code == 200
        assert fetched.json()["data"]["name"] == "Aspirin"

    def test_create_with_unknown_form(self, client, alice):
        res = _create(client, alice, form="capsule")
        assert res.status_code == 400
        assert res.json()["error"]["code"] == "INVALID_DRUG_FORM"

    def test_create_with_bad_month_is_validation_error(self, client, alice):
        res = _create(client, alice, expiration_month=13)
        assert res.status_code == 422
        assert res.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_other_users_drug_is_404(self, client, alice, bob):
        drug_id = _create(client, bob).json()["data"]["id"]

        res = client.get(f"/api/drugs/{drug_id}", headers=_auth(alice))
        assert res.status_code == 404
        assert res.json()["error"]["msg"] == f"Drug not found with ID: {drug_id}"

    def test_update_and_delete(self, client, alice):
        drug_id = _create(client, alice).json()["data"]["id"]
        body = {"name": "Aspirin C", "form": "sachets", "expiration_year": 2028, "expiration_month": 1}

        updated = client.put(f"/api/drugs/{drug_id}", json=body, headers=_auth(alice))
        assert updated.json()["data"]["form"] == "SACHETS"

        deleted = client.delete(f"/api/drugs/{drug_id}", headers=_auth(alice))
        assert deleted.json()["data"] == {"id": drug_id, "deleted": True}
        assert client.get(f"/api/drugs/{drug_id}", headers=_auth(alice)).status_code == 404

    def test_search_with_filters_and_sort(self, client, alice):
        _create(client, alice, name="Voltaren", form="GEL")
        _create(client, alice, name="Apap", form="PILLS")
        _create(client, alice, name="Arnica", form="gel")

        res = client.get(
            "/api/drugs/search",
            params={"form": "Gel", "sort": "name,desc"},
            headers=_auth(alice),
        )
        page = res.json()["data"]
        assert [d["name"] for d in page["items"]] == ["Voltaren", "Arnica"]
        assert page["total"] == 2

    def test_search_with_unknown_sort_field(self, client, alice):
        res = client.get("/api/drugs/search", params={"sort": "price"}, headers=_auth(alice))
        assert res.status_code == 400
        assert res.json()["error"]["code"] == "INVALID_SORT_FIELD"

    def test_statistics(self, client, db, alice):
        add_drug_row(db, alice, "Old", datetime(2020, 1, 31))
        add_drug_row(db, alice, "New", datetime(2099, 1, 31), form="SPRAY")

        data = client.get("/api/drugs/statistics", headers=_auth(alice)).json()["data"]
        assert data["total_drugs"] == 2
        assert data["expired_drugs"] == 1
        assert data["drugs_by_form"] == {"PILLS": 1, "SPRAY": 1}


class TestDeleteAll:
    def test_wrong_password(self, client, db, alice):
        _create(client, alice)

        res = client.post("/api/drugs/delete-all", json={"password": "nope"}, headers=_auth(alice))
        assert res.status_code == 401
        assert res.json()["error"]["msg"] == "Invalid password"
        assert crud_drugs.count_for_owner(db, alice.id) == 1

    def test_correct_password(self, client, db, alice):
        _create(client, alice)
        _create(client, alice, name="Other")

        res = client.post("/api/drugs/delete-all", json={"password": PASSWORD}, headers=_auth(alice))
        assert res.json()["data"] == {"deleted_count": 2}
        assert crud_drugs.count_for_owner(db, alice.id) == 0


class TestAlertRoutes:
    def test_send_failure_maps_to_502(self, client, db, alice, monkeypatch):
        add_drug_row(db, alice, "Overdue", datetime(2025, 1, 31))

        def refuse(*args, **kwargs):
            raise ConnectionRefusedError("no smtp here")

        monkeypatch.setattr("medkit.core.emailer.smtplib.SMTP", refuse)

        res = client.post("/api/alerts/send", headers=_auth(alice))
        assert res.status_code == 502
        assert res.json()["error"]["code"] == "EMAIL_SEND_FAILED"

    def test_run_all_as_admin_with_nothing_pending(self, client, db):
        admin = make_user(db, "admin@example.com", is_admin=True)

        res = client.post("/api/alerts/run-all", headers=_auth(admin))
        body = res.json()["data"]
        assert res.status_code == 200
        assert body["owners_found"] == 0
        assert body["drugs_notified"] == 0

    def test_run_all_refused_while_scheduled_run_holds_guard(self, client, db, alice, monkeypatch):
        drug = add_drug_row(db, alice, "Overdue", datetime(2025, 1, 31))
        admin = make_user(db, "admin@example.com", is_admin=True)
        connections = []
        monkeypatch.setattr("medkit.core.emailer.smtplib.SMTP",
                            lambda *args, **kwargs: connections.append(args))

        guard = scheduling._local_lock(scheduling.ALERTS_JOB_NAME)
        assert guard.acquire(blocking=False)
        try:
            res = client.post("/api/alerts/run-all", headers=_auth(admin))
        finally:
            guard.release()

        assert res.status_code == 409
        assert res.json()["error"]["code"] == "JOB_ALREADY_RUNNING"
        assert connections == []
        db.refresh(drug)
        assert drug.alert_sent is False
