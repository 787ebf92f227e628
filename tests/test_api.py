from typing import Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from identity import IdentityClaims, issue_identity_token
from main import app


@pytest.fixture()
def client() -> Iterator[TestClient]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def _get_db() -> Iterator[Session]:
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _auth(sub: str = "user-1", **claims) -> dict[str, str]:
    token = issue_identity_token(IdentityClaims(sub=sub, **claims))
    return {"Authorization": f"Bearer {token}"}


def test_reads_without_identity_are_empty(client: TestClient) -> None:
    assert client.get("/api/users/me").json() is None
    assert client.get("/api/categories").json() == []
    assert client.get("/api/transactions").json() == []
    assert client.get("/api/budgets", params={"month": "2025-01"}).json() == []
    assert client.get("/api/goals").json() == []
    assert client.get("/api/debts").json() == []
    assert client.get("/api/summary/monthly").json() is None
    assert client.get("/api/analytics").json() is None


def test_mutations_without_identity_are_rejected(client: TestClient) -> None:
    assert client.post("/api/users/me").status_code == 401
    resp = client.post(
        "/api/categories", json={"name": "Food", "type": "expense"}
    )
    assert resp.status_code == 401
    assert resp.json() == {"detail": "Not authenticated"}

    bad_token = {"Authorization": "Bearer not-a-real-token"}
    assert client.post("/api/categories/seed", headers=bad_token).status_code == 401


def test_store_user_seeds_once_and_patches_profile(client: TestClient) -> None:
    first = client.post("/api/users/me", headers=_auth(name="Ana", email="a@x.io"))
    assert first.status_code == 200
    body = first.json()
    assert body["created"] is True
    assert body["seeded_categories"] == 19
    assert body["user"]["country"] == ""

    again = client.post("/api/users/me", headers=_auth(name="Ana B"))
    assert again.json()["created"] is False
    assert again.json()["seeded_categories"] == 0
    assert again.json()["user"]["name"] == "Ana B"
    assert again.json()["user"]["email"] == "a@x.io"

    profile = client.put(
        "/api/users/me",
        headers=_auth(),
        json={"name": "Ana", "country": "DE", "currency": "EUR", "theme": "dark"},
    )
    assert profile.status_code == 200
    assert profile.json()["currency"] == "EUR"
    assert profile.json()["theme"] == "dark"
    assert len(client.get("/api/categories", headers=_auth()).json()) == 19


def test_ledger_flow(client: TestClient) -> None:
    headers = _auth()
    client.post("/api/users/me", headers=headers)
    categories = {
        c["name"]: c["id"] for c in client.get("/api/categories", headers=headers).json()
    }

    created = client.post(
        "/api/transactions",
        headers=headers,
        json={
            "amount": 1000,
            "type": "income",
            "category_id": categories["Salary"],
            "occurred_at": "2025-01-05T09:00:00",
        },
    )
    assert created.status_code == 201
    client.post(
        "/api/transactions",
        headers=headers,
        json={
            "amount": 200,
            "type": "expense",
            "category_id": categories["Groceries"],
            "occurred_at": "2025-01-10T12:00:00",
        },
    )

    yearly = client.get(
        "/api/summary/yearly", headers=headers, params={"year": 2025}
    ).json()
    assert yearly["months"][0] == {"income": 1000, "expense": 200, "balance": 800}

    budget = client.post(
        "/api/budgets",
        headers=headers,
        json={"category_id": categories["Groceries"], "month": "2025-01", "amount": 250},
    )
    assert budget.status_code == 200
    rows = client.get(
        "/api/budgets", headers=headers, params={"month": "2025-01"}
    ).json()
    assert rows[0]["spent"] == 200
    assert rows[0]["status"] == "warning"

    in_use = client.delete(
        f"/api/categories/{categories['Groceries']}", headers=headers
    )
    assert in_use.status_code == 400

    missing = client.delete("/api/transactions/9999", headers=headers)
    assert missing.status_code == 404

    export = client.get("/api/transactions/export.csv", headers=headers)
    assert export.headers["content-type"].startswith("text/csv")
    assert export.text.splitlines()[0] == "Date,Type,Amount,Category,Description"


def test_debt_settlement_endpoint(client: TestClient) -> None:
    headers = _auth()
    client.post("/api/users/me", headers=headers)
    debt = client.post(
        "/api/debts",
        headers=headers,
        json={"type": "lent", "person_name": "Sam", "amount": 30},
    ).json()

    settled = client.post(
        f"/api/debts/{debt['id']}/settle",
        headers=headers,
        json={"record_as_transaction": True},
    ).json()
    assert settled["debt"]["is_completed"] is True
    assert settled["transaction"]["type"] == "income"
    assert settled["transaction"]["amount"] == 30

    undone = client.post(f"/api/debts/{debt['id']}/undo", headers=headers).json()
    assert undone["is_completed"] is False
    assert len(client.get("/api/transactions", headers=headers).json()) == 1


def test_csv_import_endpoint(client: TestClient) -> None:
    headers = _auth()
    client.post("/api/users/me", headers=headers)
    content = (
        "Date,Type,Amount,Category,Description\n"
        "2025-01-03,Expense,12.50,Groceries,Market\n"
        "bad,Expense,1,Groceries,Broken\n"
    )

    resp = client.post(
        "/api/import/csv",
        headers=headers,
        files={"file": ("tx.csv", content.encode("utf-8"), "text/csv")},
    )

    assert resp.status_code == 200
    assert resp.json()["count"] == 1
    assert resp.json()["errors"][0].startswith("Row 2:")

    empty = client.post(
        "/api/import/csv",
        headers=headers,
        files={"file": ("tx.csv", b"Date,Type,Amount,Category,Description\n", "text/csv")},
    )
    assert empty.status_code == 400


def test_signed_in_but_unstored_user_cannot_write(client: TestClient) -> None:
    headers = _auth("never-stored")

    assert client.get("/api/categories", headers=headers).json() == []
    resp = client.post(
        "/api/categories", headers=headers, json={"name": "Food", "type": "expense"}
    )
    assert resp.status_code == 404
    assert resp.json() == {"detail": "User not found"}
    put = client.put(
        "/api/users/me",
        headers=headers,
        json={"name": "Ana", "country": "DE", "currency": "EUR"},
    )
    assert put.status_code == 404

    client.post("/api/users/me", headers=headers)
    created = client.post(
        "/api/categories", headers=headers, json={"name": "Food", "type": "expense"}
    )
    assert created.status_code == 201
