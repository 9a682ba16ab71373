import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from landed_cost.core.deps import get_db_session, get_idempotency_service, get_quote_service
from landed_cost.main import app
from landed_cost.models.enums import IdempotencyStatus, LookupStatus, VatBase
from landed_cost.services.fx.table import FxTable
from landed_cost.services.idempotency import IdempotencyService
from landed_cost.services.lookups import VatLookup
from landed_cost.services.rate_resolver import ResolveMeta


class MemoryIdempotencyRepo:
    def __init__(self):
        self.rows = {}

    async def insert_pending(self, scope, key, request_hash):
        if (scope, key) in self.rows:
            return False
        self.rows[(scope, key)] = SimpleNamespace(
            request_hash=request_hash,
            status=IdempotencyStatus.PENDING,
            response=None,
            locked_at=None,
            updated_at=datetime.now(timezone.utc),
        )
        return True

    async def claim(self, scope, key, request_hash):
        row = self.rows.get((scope, key))
        if row is None or row.request_hash != request_hash or row.status != IdempotencyStatus.PENDING:
            return False
        row.status = IdempotencyStatus.PROCESSING
        row.locked_at = datetime.now(timezone.utc)
        return True

    async def get(self, scope, key):
        return self.rows.get((scope, key))

    async def complete(self, scope, key, response):
        row = self.rows[(scope, key)]
        row.status = IdempotencyStatus.COMPLETED
        row.response = response

    async def fail(self, scope, key):
        self.rows[(scope, key)].status = IdempotencyStatus.FAILED

    async def rollback(self):
        pass

    async def refresh_response(self, scope, key, response):
        self.rows[(scope, key)].response = response


class CountingQuoteService:
    def __init__(self):
        self.calls = 0

    async def quote(self, data, merchant_id=None, opts=None):
        self.calls += 1
        await asyncio.sleep(0)
        payload = {"hs6": data.hs6, "currency": "EUR", "total": "151.20", "call": self.calls}
        return SimpleNamespace(to_payload=lambda: payload)


BODY = {
    "origin": "CN",
    "dest": "DE",
    "itemValue": {"amount": "100", "currency": "EUR"},
    "dimensions": {"l": 10, "w": 10, "h": 10},
    "weightKg": 2,
    "hs6": "851712",
}


@pytest.fixture
def client():
    quotes = CountingQuoteService()
    idempotency = IdempotencyService(MemoryIdempotencyRepo())
    app.dependency_overrides[get_quote_service] = lambda: quotes
    app.dependency_overrides[get_idempotency_service] = lambda: idempotency
    with TestClient(app) as test_client:
        test_client.quotes = quotes
        yield test_client
    app.dependency_overrides.clear()


def test_quote_computed_once_then_replayed(client):
    first = client.post("/api/quotes", json=BODY, headers={"Idempotency-Key": "order-1"})
    assert first.status_code == 200
    assert first.headers["Idempotency-Key"] == "order-1"
    assert first.headers["Idempotent-Replayed"] == "false"
    assert first.json()["total"] == "151.20"

    second = client.post("/api/quotes", json=BODY, headers={"Idempotency-Key": "order-1"})
    assert second.status_code == 200
    assert second.headers["Idempotent-Replayed"] == "true"
    assert second.json() == first.json()
    assert client.quotes.calls == 1


def test_missing_idempotency_key_is_rejected(client):
    response = client.post("/api/quotes", json=BODY)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_request"
    assert client.quotes.calls == 0


def test_reused_key_with_different_payload_conflicts(client):
    client.post("/api/quotes", json=BODY, headers={"Idempotency-Key": "order-2"})
    changed = {**BODY, "weightKg": 3}
    response = client.post("/api/quotes", json=changed, headers={"Idempotency-Key": "order-2"})
    assert response.status_code == 409
    assert response.json()["error"]["message"] == "payload mismatch"


def test_quote_by_key(client):
    client.post("/api/quotes", json=BODY, headers={"Idempotency-Key": "order-3"})
    cached = client.get("/api/quotes/by-key/order-3")
    assert cached.status_code == 200
    assert cached.json()["hs6"] == "851712"
    assert cached.headers["Idempotent-Replayed"] == "true"

    missing = client.get("/api/quotes/by-key/unknown")
    assert missing.status_code == 404


def test_health_reports_degraded_database():
    class BrokenSession:
        async def execute(self, statement):
            raise ConnectionRefusedError("database down")

    async def broken_session():
        yield BrokenSession()

    app.dependency_overrides[get_db_session] = broken_session
    try:
        with TestClient(app) as test_client:
            response = test_client.get("/api/health")
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 200
    assert response.json() == {"status": "degraded", "database": "unavailable"}


class FakeRateService:
    def __init__(self):
        self.lookups = self
        self.fx_loader = self
        self.seen = []

    async def vat(self, dest, hs6, as_of):
        self.seen.append((dest, hs6, as_of))
        return VatLookup(
            rate_pct=Decimal("19"),
            base=VatBase.CIF_PLUS_DUTY,
            rate_kind="STANDARD",
            meta=ResolveMeta(status=LookupStatus.OK, source="official"),
        )

    async def load(self, on_or_before=None):
        rows = [SimpleNamespace(provider="ecb", base="EUR", quote="USD", rate=Decimal("1.08"))]
        return FxTable.from_rows(date(2024, 5, 2), rows)


def test_rate_lookups():
    service = FakeRateService()
    app.dependency_overrides[get_quote_service] = lambda: service
    try:
        with TestClient(app) as test_client:
            vat = test_client.get("/api/rates/vat", params={"country": "de", "as_of": "2024-05-02"})
            fx = test_client.get("/api/rates/fx", params={"base": "usd", "quote": "eur"})
            bad = test_client.get("/api/rates/vat", params={"country": "DE", "as_of": "02/05/2024"})
    finally:
        app.dependency_overrides.clear()

    assert vat.status_code == 200
    assert vat.json()["country"] == "DE"
    assert Decimal(vat.json()["rate"]) == Decimal("19")
    assert vat.json()["vat_base"] == "CIF_PLUS_DUTY"
    assert service.seen == [("DE", None, date(2024, 5, 2))]

    assert fx.status_code == 200
    assert fx.json()["route"] == "USD->EUR"
    assert fx.json()["providers"] == ["ecb"]

    assert bad.status_code == 400
