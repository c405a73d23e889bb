from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from recurring_ledger.api import app

TOKEN = "job-secret"
AUTH = {"Authorization": f"Bearer {TOKEN}"}

CHARGE = {
    "owner": "user-1",
    "name": "Streaming",
    "amount": 9.99,
    "currency": "usd",
    "interval": "month",
    "every": 1,
    "next_due_date": "2024-01-01",
    "account_id": "acct-1",
    "auto_post": True,
}


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("LEDGER_DB_FILE", str(tmp_path / "api.db"))
    monkeypatch.setenv("LEDGER_JOB_TOKEN", TOKEN)
    monkeypatch.setenv("LEDGER_REPORTING_CURRENCY", "USD")
    with TestClient(app) as test_client:
        yield test_client


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_autopost_job_end_to_end(client):
    created = client.post("/charges", json=CHARGE)
    assert created.status_code == 201
    charge_id = created.json()["id"]
    assert created.json()["currency"] == "USD"

    response = client.post("/jobs/autopost", params={"date": "2024-01-15"}, headers=AUTH)

    assert response.status_code == 200
    assert response.json() == {"posted": 1, "advanced": 1, "asOf": "2024-01-15", "skipped": 0, "failed": 0}
    assert client.get(f"/charges/{charge_id}").json()["next_due_date"] == "2024-02-01"

    ledger = client.get("/ledger", params={"start": "2024-01-01", "end": "2024-02-01"}).json()
    assert ledger["count"] == 1
    assert ledger["transactions"][0]["date"] == "2024-01-01"
    assert ledger["transactions"][0]["amount"] == 9.99

    repeat = client.post("/jobs/autopost", params={"date": "2024-01-15"}, headers=AUTH)
    assert repeat.json()["posted"] == 0
    assert repeat.json()["advanced"] == 0


def test_autopost_job_rejects_wrong_token(client):
    response = client.post("/jobs/autopost", headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401
    assert "error" in response.json()


def test_autopost_job_rejects_malformed_date(client):
    response = client.post("/jobs/autopost", params={"date": "15/01/2024"}, headers=AUTH)

    assert response.status_code == 422


def test_autopost_job_without_token_configured(tmp_path, monkeypatch):
    monkeypatch.setenv("LEDGER_DB_FILE", str(tmp_path / "api.db"))
    monkeypatch.delenv("LEDGER_JOB_TOKEN", raising=False)
    with TestClient(app) as test_client:
        response = test_client.post("/jobs/autopost", headers=AUTH)

    assert response.status_code == 500
    assert "LEDGER_JOB_TOKEN" in response.json()["error"]


def test_routes_without_storage_configured(monkeypatch):
    monkeypatch.setenv("LEDGER_DB_FILE", "")
    monkeypatch.setenv("LEDGER_JOB_TOKEN", TOKEN)
    with TestClient(app) as test_client:
        job = test_client.post("/jobs/autopost", headers=AUTH)
        charges = test_client.get("/charges")

    assert job.status_code == 500
    assert "LEDGER_DB_FILE" in job.json()["error"]
    assert charges.status_code == 500


def test_create_charge_validation(client):
    assert client.post("/charges", json={**CHARGE, "every": 0}).status_code == 422
    assert client.post("/charges", json={**CHARGE, "interval": "fortnight"}).status_code == 422
    assert client.post("/charges", json={**CHARGE, "currency": "dollars"}).status_code == 422


def test_charge_now_and_manual_post(client):
    charge_id = client.post("/charges", json={**CHARGE, "auto_post": False}).json()["id"]

    first = client.post(f"/charges/{charge_id}/charge-now")
    assert first.status_code == 200
    assert first.json()["posted"] == 1
    assert first.json()["next_due_date"] == "2024-02-01"

    batch = client.post(f"/charges/{charge_id}/post", json={"dates": ["2024-02-01", "2024-03-01"]})
    assert batch.json()["posted"] == 2
    assert batch.json()["next_due_date"] == "2024-04-01"

    assert client.post("/charges/missing/charge-now").status_code == 404

    off_schedule = client.post(f"/charges/{charge_id}/post", json={"dates": ["2024-04-15"]})
    assert off_schedule.status_code == 409
    assert client.get(f"/charges/{charge_id}").json()["next_due_date"] == "2024-04-01"


def test_charge_now_without_account_conflicts(client):
    charge_id = client.post("/charges", json={**CHARGE, "account_id": None}).json()["id"]

    response = client.post(f"/charges/{charge_id}/charge-now")

    assert response.status_code == 409
    assert "funding account" in response.json()["error"]


def test_pause_charge_stops_occurrences(client):
    charge_id = client.post("/charges", json={**CHARGE, "next_due_date": "2024-03-05"}).json()["id"]
    window = {"start": "2024-01-01", "end": "2024-06-01"}

    occurrences = client.get(f"/charges/{charge_id}/occurrences", params=window).json()["occurrences"]
    assert occurrences == ["2024-01-05", "2024-02-05", "2024-03-05", "2024-04-05", "2024-05-05"]

    assert client.patch(f"/charges/{charge_id}", json={"active": False}).json()["active"] is False
    assert client.get(f"/charges/{charge_id}/occurrences", params=window).json()["occurrences"] == []


def test_invalid_window(client):
    response = client.get("/ledger", params={"start": "2024-02-01", "end": "2024-01-01"})

    assert response.status_code == 422
    assert "error" in response.json()


def test_fx_rates_and_conversion(client):
    rates = [
        {"date": "2024-01-01", "from_currency": "EUR", "to_currency": "USD", "rate": 1.10},
        {"date": "2024-02-01", "from_currency": "eur", "to_currency": "usd", "rate": 1.08},
    ]
    assert client.put("/fx/rates", json=rates).json() == {"stored": 2}
    assert client.get("/fx/rates").json()["count"] == 2

    direct = client.get("/fx/convert", params={"amount": 100, "from": "EUR", "to": "USD", "date": "2024-01-15"}).json()
    assert direct["converted"] == pytest.approx(110)
    assert direct["fx_missing"] is False

    missing = client.get("/fx/convert", params={"amount": 100, "from": "GBP", "to": "USD", "date": "2024-01-15"}).json()
    assert missing["converted"] is None
    assert missing["fx_missing"] is True

    assert client.put("/fx/rates", json=[{**rates[0], "rate": 0}]).status_code == 422


def test_reports(client):
    client.put("/fx/rates", json=[{"date": "2024-01-01", "from_currency": "EUR", "to_currency": "USD", "rate": 1.10}])
    client.post("/charges", json={**CHARGE, "currency": "EUR", "amount": 10.0, "next_due_date": "2024-01-10"})
    client.post("/jobs/autopost", params={"date": "2024-01-31"}, headers=AUTH)

    upcoming = client.get("/charges/upcoming", params={"start": "2024-02-01", "end": "2024-03-01"}).json()
    assert upcoming["count"] == 1
    assert upcoming["items"][0]["date"] == "2024-02-10"
    assert upcoming["display_total"] == pytest.approx(11.0)

    summary = client.get("/ledger/summary", params={"start": "2024-01-01", "end": "2024-02-01"}).json()
    assert summary["expense"] == pytest.approx(11.0)
    assert summary["net"] == pytest.approx(-11.0)


def test_reporting_currency_setting(client):
    assert client.get("/settings/reporting-currency").json() == {"reporting_currency": "USD"}
    assert client.put("/settings/reporting-currency", params={"currency": "chf"}).json() == {"reporting_currency": "CHF"}
    assert client.get("/settings/reporting-currency").json() == {"reporting_currency": "CHF"}


def test_delete_ledger_entry(client):
    charge_id = client.post("/charges", json=CHARGE).json()["id"]
    client.post(f"/charges/{charge_id}/charge-now")
    entry_id = client.get("/ledger", params={"start": "2024-01-01", "end": "2024-02-01"}).json()["transactions"][0]["id"]

    assert client.delete(f"/ledger/{entry_id}").json() == {"deleted": entry_id}
    missing = client.delete(f"/ledger/{entry_id}")
    assert missing.status_code == 404
    assert missing.json() == {"error": f"Ledger entry {entry_id!r} does not exist"}
