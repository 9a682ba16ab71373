import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError

from landed_cost.core.errors import Conflict, InvalidRequest, NotFound
from landed_cost.models.enums import IdempotencyStatus
from landed_cost.services.idempotency import IdempotencyService, fingerprint


class FakeIdempotencyRepo:
    """In-memory stand-in with the same claim semantics as the Postgres repository."""

    def __init__(self):
        self.rows = {}
        self.rollbacks = 0
        self.fail_insert = False

    async def insert_pending(self, scope, key, request_hash):
        await asyncio.sleep(0)
        if self.fail_insert:
            raise OperationalError("INSERT", {}, Exception("connection reset"))
        if (scope, key) in self.rows:
            return False
        self.rows[(scope, key)] = SimpleNamespace(
            scope=scope,
            key=key,
            request_hash=request_hash,
            status=IdempotencyStatus.PENDING,
            response=None,
            locked_at=None,
            updated_at=datetime.now(timezone.utc),
        )
        return True

    async def claim(self, scope, key, request_hash):
        await asyncio.sleep(0)
        row = self.rows.get((scope, key))
        if row is None or row.request_hash != request_hash:
            return False
        if row.status != IdempotencyStatus.PENDING or row.locked_at is not None:
            return False
        row.status = IdempotencyStatus.PROCESSING
        row.locked_at = datetime.now(timezone.utc)
        return True

    async def get(self, scope, key):
        await asyncio.sleep(0)
        return self.rows.get((scope, key))

    async def complete(self, scope, key, response):
        row = self.rows[(scope, key)]
        row.status = IdempotencyStatus.COMPLETED
        row.response = response
        row.updated_at = datetime.now(timezone.utc)

    async def fail(self, scope, key):
        self.rollbacks += 1
        row = self.rows[(scope, key)]
        row.status = IdempotencyStatus.FAILED
        row.response = None

    async def rollback(self):
        self.rollbacks += 1

    async def refresh_response(self, scope, key, response):
        row = self.rows[(scope, key)]
        row.response = response
        row.updated_at = datetime.now(timezone.utc)


PAYLOAD = {"origin": "CN", "dest": "DE", "itemValue": {"amount": "100", "currency": "EUR"}}


def test_fingerprint_ignores_key_order():
    a = {"b": 1, "a": {"y": 2, "x": 3}}
    b = {"a": {"x": 3, "y": 2}, "b": 1}
    assert fingerprint(a) == fingerprint(b)
    assert fingerprint(a) != fingerprint({"b": 2, "a": {"y": 2, "x": 3}})


@pytest.mark.asyncio
async def test_first_call_computes_then_replays():
    repo = FakeIdempotencyRepo()
    service = IdempotencyService(repo)
    calls = []

    async def compute():
        calls.append(1)
        return {"total": "151.2"}

    first = await service.run("quotes", "k1", PAYLOAD, compute)
    second = await service.run("quotes", "k1", PAYLOAD, compute)

    assert first.replayed is False
    assert second.replayed is True
    assert second.value == {"total": "151.2"}
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_concurrent_requests_compute_once():
    repo = FakeIdempotencyRepo()
    service = IdempotencyService(repo)
    calls = []

    async def compute():
        calls.append(1)
        await asyncio.sleep(0.01)
        return {"ok": True}

    results = await asyncio.gather(
        *(service.run("quotes", "same", PAYLOAD, compute) for _ in range(5)),
        return_exceptions=True,
    )

    assert len(calls) == 1
    successes = [r for r in results if not isinstance(r, Exception)]
    conflicts = [r for r in results if isinstance(r, Conflict)]
    assert len([r for r in successes if not r.replayed]) == 1
    assert len(successes) + len(conflicts) == 5
    assert repo.rows[("quotes", "same")].status == IdempotencyStatus.COMPLETED


@pytest.mark.asyncio
async def test_payload_mismatch_conflicts():
    repo = FakeIdempotencyRepo()
    service = IdempotencyService(repo)

    async def compute():
        return {"ok": True}

    await service.run("quotes", "k2", PAYLOAD, compute)
    with pytest.raises(Conflict) as exc:
        await service.run("quotes", "k2", {**PAYLOAD, "dest": "FR"}, compute)
    assert exc.value.message == "payload mismatch"


@pytest.mark.asyncio
async def test_failed_compute_marks_row_failed_and_rejects_retry():
    repo = FakeIdempotencyRepo()
    service = IdempotencyService(repo)

    async def boom():
        raise RuntimeError("rates unavailable")

    with pytest.raises(RuntimeError):
        await service.run("quotes", "k3", PAYLOAD, boom)
    assert repo.rows[("quotes", "k3")].status == IdempotencyStatus.FAILED

    async def compute():
        return {"ok": True}

    with pytest.raises(Conflict) as exc:
        await service.run("quotes", "k3", PAYLOAD, compute)
    assert "new key" in exc.value.message


@pytest.mark.asyncio
async def test_missing_key_is_rejected():
    service = IdempotencyService(FakeIdempotencyRepo())

    async def compute():
        return {}

    with pytest.raises(InvalidRequest):
        await service.run("quotes", "  ", PAYLOAD, compute)


@pytest.mark.asyncio
async def test_insert_error_is_rolled_back_and_existing_row_replayed():
    repo = FakeIdempotencyRepo()
    service = IdempotencyService(repo)

    async def compute():
        return {"ok": 1}

    await service.run("quotes", "k4", PAYLOAD, compute)
    repo.fail_insert = True
    result = await service.run("quotes", "k4", PAYLOAD, compute)
    assert result.replayed is True
    assert repo.rollbacks == 1


@pytest.mark.asyncio
async def test_stale_replay_uses_fresh_value():
    repo = FakeIdempotencyRepo()
    service = IdempotencyService(repo)

    async def compute():
        return {"total": "1"}

    async def on_replay(cached):
        return {"total": "2"}

    await service.run("quotes", "k5", PAYLOAD, compute)
    repo.rows[("quotes", "k5")].updated_at = datetime.now(timezone.utc) - timedelta(hours=2)

    result = await service.run("quotes", "k5", PAYLOAD, compute, max_age=timedelta(minutes=5), on_replay=on_replay)
    assert result.replayed is True
    assert result.value == {"total": "2"}
    assert repo.rows[("quotes", "k5")].response == {"total": "2"}


@pytest.mark.asyncio
async def test_fresh_replay_keeps_cached_value():
    repo = FakeIdempotencyRepo()
    service = IdempotencyService(repo)

    async def compute():
        return {"total": "1"}

    async def on_replay(cached):
        raise AssertionError("should not recompute a fresh record")

    await service.run("quotes", "k6", PAYLOAD, compute)
    result = await service.run("quotes", "k6", PAYLOAD, compute, max_age=timedelta(hours=1), on_replay=on_replay)
    assert result.value == {"total": "1"}


@pytest.mark.asyncio
async def test_cached_requires_completed_record():
    repo = FakeIdempotencyRepo()
    service = IdempotencyService(repo)

    with pytest.raises(NotFound):
        await service.cached("quotes", "unknown")

    async def compute():
        return {"total": "3"}

    await service.run("quotes", "k7", PAYLOAD, compute)
    assert await service.cached("quotes", "k7") == {"total": "3"}
