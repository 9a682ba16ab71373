from __future__ import annotations

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from landed_cost.core.errors import InvalidRequest
from landed_cost.db.session import get_session
from landed_cost.repositories.idempotency_repo import IdempotencyRepository
from landed_cost.services.idempotency import IdempotencyService
from landed_cost.services.quote import QuoteService

MAX_KEY_LENGTH = 128


async def get_db_session() -> AsyncSession:
    async for session in get_session():
        yield session


async def get_idempotency_key(idempotency_key: str | None = Header(default=None, alias="Idempotency-Key")) -> str:
    if not idempotency_key or not idempotency_key.strip():
        raise InvalidRequest("Idempotency-Key header is required")
    if len(idempotency_key) > MAX_KEY_LENGTH:
        raise InvalidRequest(f"Idempotency-Key must be at most {MAX_KEY_LENGTH} characters")
    return idempotency_key.strip()


def get_quote_service(session: AsyncSession = Depends(get_db_session)) -> QuoteService:
    return QuoteService(session)


def get_idempotency_service(session: AsyncSession = Depends(get_db_session)) -> IdempotencyService:
    return IdempotencyService(IdempotencyRepository(session))
