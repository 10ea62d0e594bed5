import json
from datetime import date

import pytest
from fastapi.testclient import TestClient
from database import Base, build_engine, make_sessionmaker
from main import app, get_clock, get_db


TODAY = date(2026, 4, 10)


@pytest.fixture()
def client():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    TestingSession = make_sessionmaker(engine)

    def override_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_clock] = lambda: (lambda: TODAY)
    yield TestClient(app)
    app.dependency_overrides.clear()
    engine.dispose()


def _post(client, **overrides):
    payload = {
        "type": "expense",
        "description": "Groceries",
        "amount": "42.10",
        "category": "food",
        "date": "2026-04-02",
    }
    payload.update(overrides)
    resp = client.post("/api/transactions", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_transaction_crud(client):
    created = _post(client)
    assert created["amount"] == "42.10"
    assert created["recurring"] == "one-time"

    fetched = client.get(f"/api/transactions/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json() == created

    patched = client.patch(
        f"/api/transactions/{created['id']}", json={"description": "Market"}
    )
    assert patched.status_code == 200
    assert patched.json()["description"] == "Market"

    resp = client.delete(f"/api/transactions/{created['id']}")
    assert resp.status_code == 204
    assert client.get(f"/api/transactions/{created['id']}").status_code == 404


def test_create_rejects_bad_payload(client):
    resp = client.post(
        "/api/transactions",
        json={
            "type": "expense",
            "description": "Nope",
            "amount": "-3",
            "category": "food",
            "date": "2026-04-02",
        },
    )
    assert resp.status_code == 422

    resp = client.post(
        "/api/transactions",
        json={
            "type": "gift",
            "description": "Nope",
            "amount": "3",
            "category": "food",
            "date": "2026-04-02",
        },
    )
    assert resp.status_code == 422


def test_blank_description_rejected(client):
    resp = client.post(
        "/api/transactions",
        json={
            "type": "expense",
            "description": "   ",
            "amount": "3",
            "category": "food",
            "date": "2026-04-02",
        },
    )
    assert resp.status_code == 422

    created = _post(client)
    resp = client.patch(f"/api/transactions/{created['id']}", json={"category": " "})
    assert resp.status_code == 422


def test_patch_unknown_field_rejected(client):
    created = _post(client)
    resp = client.patch(f"/api/transactions/{created['id']}", json={"colour": "red"})
    assert resp.status_code == 422


def test_list_filters_by_preset_category_and_type(client):
    _post(client, description="March", date="2026-03-15")
    _post(client, description="April")
    _post(client, description="Bus", category="travel")
    _post(client, type="income", description="Pay", category="salary", amount="900")

    this_month = client.get("/api/transactions", params={"preset": "this-month"})
    assert this_month.json()["count"] == 3

    food = client.get(
        "/api/transactions", params={"preset": "all-time", "category": "food"}
    )
    assert {t["description"] for t in food.json()["items"]} == {"March", "April"}

    everything = client.get("/api/transactions", params={"category": "all"})
    assert everything.json()["count"] == 4

    income = client.get("/api/transactions", params={"type": "income"})
    assert [t["description"] for t in income.json()["items"]] == ["Pay"]

    custom = client.get(
        "/api/transactions", params={"from": "2026-03-01", "to": "2026-03-31"}
    )
    assert [t["description"] for t in custom.json()["items"]] == ["March"]


def test_list_rejects_bad_ranges(client):
    resp = client.get(
        "/api/transactions", params={"from": "2026-04-01", "to": "2026-03-01"}
    )
    assert resp.status_code == 400
    assert client.get("/api/transactions", params={"preset": "soon"}).status_code == 400
    assert client.get("/api/transactions", params={"type": "gift"}).status_code == 400


def test_reconcile_materialises_missed_occurrences(client):
    rent = _post(
        client,
        description="Rent",
        amount="900",
        category="housing",
        date="2026-01-31",
        recurring="monthly",
    )
    resp = client.post("/api/recurring/reconcile")
    assert resp.json() == {"created": 2}

    again = client.post("/api/recurring/reconcile")
    assert again.json() == {"created": 0}

    items = client.get("/api/transactions", params={"category": "housing"}).json()
    assert [t["date"] for t in items["items"]] == [
        "2026-03-31",
        "2026-02-28",
        "2026-01-31",
    ]

    occurrences = client.get(f"/api/recurring/{rent['id']}/occurrences")
    assert len(occurrences.json()["items"]) == 3

    recurring = client.get("/api/recurring").json()["items"]
    assert len(recurring) == 1
    assert recurring[0]["monthly"] == 900

    summary = client.get("/api/recurring/summary").json()
    assert summary["expenses"] == 900
    assert summary["net"] == -900
    assert summary["counts"]["total"] == 1


def test_occurrences_for_one_time_entry_is_rejected(client):
    created = _post(client)
    resp = client.get(f"/api/recurring/{created['id']}/occurrences")
    assert resp.status_code == 400
    assert client.get("/api/recurring/missing/occurrences").status_code == 404


def test_summary_breakdown_and_monthly(client):
    _post(client, amount="30", date="2026-03-10")
    _post(client, amount="10", category="travel")
    _post(client, type="income", description="Pay", category="salary", amount="100")

    summary = client.get("/api/summary").json()
    assert summary == {"income": 100, "expenses": 40, "net": 60}

    month = client.get("/api/summary", params={"preset": "this-month"}).json()
    assert month["expenses"] == 10

    breakdown = client.get("/api/category-breakdown").json()["items"]
    assert [row["category"] for row in breakdown] == ["food", "travel"]
    assert breakdown[0]["percent"] == pytest.approx(75.0)

    income = client.get("/api/category-breakdown", params={"type": "income"})
    assert [row["category"] for row in income.json()["items"]] == ["salary"]

    monthly = client.get("/api/monthly").json()["items"]
    assert [row["month"] for row in monthly] == ["2026-03", "2026-04"]
    assert monthly[1]["net"] == 90


def test_budgets(client):
    _post(client, amount="80")
    resp = client.put("/api/budgets/food", json={"limit": "50"})
    assert resp.status_code == 200

    rows = client.get("/api/budgets").json()["items"]
    assert rows[0]["category"] == "food"
    assert rows[0]["spent"] == 80
    assert rows[0]["over_budget"] is True

    assert client.delete("/api/budgets/food").status_code == 204
    assert client.delete("/api/budgets/food").status_code == 404


def test_savings_goals(client):
    resp = client.post("/api/savings-goals", json={"name": "Bike", "target": "200"})
    assert resp.status_code == 201
    goal = resp.json()

    deposited = client.post(
        f"/api/savings-goals/{goal['id']}/deposit", json={"amount": "50"}
    ).json()
    assert deposited["percent"] == 25
    assert deposited["complete"] is False

    resp = client.post("/api/savings-goals/missing/deposit", json={"amount": "5"})
    assert resp.status_code == 404

    assert len(client.get("/api/savings-goals").json()["items"]) == 1
    assert client.delete(f"/api/savings-goals/{goal['id']}").status_code == 204


def test_csv_import_and_export(client):
    content = (
        "Type,Description,Amount,Category,Date,Recurring\n"
        "expense,Coffee,3.50,food,2026-04-01,one-time\n"
        "income,Salary,2000,salary,2026-04-01,monthly\n"
    )
    files = {"file": ("data.csv", content.encode("utf-8-sig"), "text/csv")}

    preview = client.post("/api/import/preview", files=files).json()
    assert preview["errors"] == []
    assert len(preview["rows"]) == 2

    committed = client.post("/api/import/commit", files=files)
    assert committed.json() == {"imported": 2}

    exported = client.get("/api/export.csv")
    assert exported.headers["content-type"].startswith("text/csv")
    lines = exported.text.strip().split("\n")
    assert lines[0] == "Type,Description,Amount,Category,Date,Recurring"
    assert len(lines) == 3


def test_csv_commit_with_errors_is_rejected(client):
    content = "Type,Description,Amount,Category,Date,Recurring\nexpense,,1,food,x,\n"
    files = {"file": ("bad.csv", content.encode(), "text/csv")}
    resp = client.post("/api/import/commit", files=files)
    assert resp.status_code == 400
    assert "Row 2" in resp.json()["detail"]
    assert client.get("/api/transactions").json()["count"] == 0


def test_backup_round_trip(client):
    _post(client, recurring="weekly")
    client.put("/api/budgets/food", json={"limit": "120"})
    backup = client.get("/api/backup").json()
    assert set(backup) == {"transactions", "budgets", "savingsGoals"}

    client.delete(f"/api/transactions/{backup['transactions'][0]['id']}")
    restored = client.post("/api/backup", content=json.dumps(backup)).json()
    assert restored["transactions"] == 1
    assert restored["legacy"] is False
    assert client.get("/api/backup").json() == backup


def test_backup_rejects_invalid_json(client):
    resp = client.post("/api/backup", content="{not json")
    assert resp.status_code == 400
