from __future__ import annotations

import hashlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from landed_cost.core.errors import Conflict, InvalidRequest, NotFound
from landed_cost.core.logging import get_logger
from landed_cost.models.enums import IdempotencyStatus
from landed_cost.services.money import canonical_json

logger = get_logger()

Compute = Callable[[], Awaitable[dict[str, Any]]]
OnReplay = Callable[[dict[str, Any]], Awaitable[dict[str, Any] | None]]


def fingerprint(payload: Any) -> str:
    return hashlib.sha256(canonical_json(payload).encode()).hexdigest()


@dataclass
class IdempotentResult:
    value: dict[str, Any]
    replayed: bool


class IdempotencyService:
    """At-most-once execution of a compute per (scope, key).

    The unique (scope, key) insert decides who may claim a key; the claim is a
    conditional pending -> processing update, so only one caller ever runs the
    compute. Other callers replay, or get a Conflict.
    """

    def __init__(self, repo) -> None:
        self.repo = repo

    async def run(
        self,
        scope: str,
        key: str | None,
        payload: Any,
        compute: Compute,
        max_age: timedelta | None = None,
        on_replay: OnReplay | None = None,
    ) -> IdempotentResult:
        if not key or not key.strip():
            raise InvalidRequest("Idempotency-Key is required")
        request_hash = fingerprint(payload)

        try:
            await self.repo.insert_pending(scope, key, request_hash)
        except SQLAlchemyError as exc:
            logger.warning("idempotency_insert_failed", scope=scope, key=key, error=str(exc))
            await self.repo.rollback()

        if await self.repo.claim(scope, key, request_hash):
            value = await self._execute(scope, key, compute)
            return IdempotentResult(value=value, replayed=False)

        record = await self.repo.get(scope, key)
        if record is None:
            raise Conflict("Idempotency record missing; retry")
        if record.request_hash != request_hash:
            raise Conflict("payload mismatch")

        status = IdempotencyStatus(record.status)
        if status == IdempotencyStatus.COMPLETED:
            return await self._replay(scope, key, record, max_age, on_replay)
        if status == IdempotencyStatus.FAILED:
            raise Conflict("Previous attempt failed; use a new key")
        raise Conflict("Processing")

    async def cached(self, scope: str, key: str) -> dict[str, Any]:
        record = await self.repo.get(scope, key)
        if record is None or IdempotencyStatus(record.status) != IdempotencyStatus.COMPLETED:
            raise NotFound(f"No completed result for key {key}")
        return record.response

    async def _execute(self, scope: str, key: str, compute: Compute) -> dict[str, Any]:
        try:
            value = await compute()
            await self.repo.complete(scope, key, value)
        except BaseException:
            logger.warning("idempotency_compute_failed", scope=scope, key=key, exc_info=True)
            await self.repo.fail(scope, key)
            raise
        logger.info("idempotency_completed", scope=scope, key=key)
        return value

    async def _replay(
        self,
        scope: str,
        key: str,
        record: Any,
        max_age: timedelta | None,
        on_replay: OnReplay | None,
    ) -> IdempotentResult:
        cached = record.response
        if on_replay is not None and (max_age is None or self._is_stale(record, max_age)):
            fresh = await on_replay(cached)
            if fresh is not None:
                await self.repo.refresh_response(scope, key, fresh)
                logger.info("idempotency_refreshed", scope=scope, key=key)
                return IdempotentResult(value=fresh, replayed=True)
        logger.info("idempotency_replay", scope=scope, key=key)
        return IdempotentResult(value=cached, replayed=True)

    @staticmethod
    def _is_stale(record: Any, max_age: timedelta) -> bool:
        updated_at = record.updated_at
        if updated_at is None:
            return True
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - updated_at > max_age
