from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, Response

from landed_cost.core.config import get_settings
from landed_cost.core.deps import get_idempotency_key, get_idempotency_service, get_quote_service
from landed_cost.schemas.common import ErrorResponse
from landed_cost.schemas.quote import QuoteRequest
from landed_cost.services.idempotency import IdempotencyService
from landed_cost.services.quote import QuoteService

router = APIRouter(prefix="/quotes", tags=["quotes"])

SCOPE = "quotes"

ERRORS = {400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}


@router.post("", responses=ERRORS)
async def create_quote(
    body: QuoteRequest,
    response: Response,
    key: str = Depends(get_idempotency_key),
    quotes: QuoteService = Depends(get_quote_service),
    idempotency: IdempotencyService = Depends(get_idempotency_service),
):
    settings = get_settings()
    payload = body.model_dump(mode="json", by_alias=True)

    async def compute() -> dict:
        result = await quotes.quote(body, opts=body.options)
        return result.to_payload()

    async def recompute(_cached: dict) -> dict | None:
        return await compute()

    max_age = None
    on_replay = None
    if settings.quote_replay_max_age_seconds:
        max_age = timedelta(seconds=settings.quote_replay_max_age_seconds)
        on_replay = recompute

    outcome = await idempotency.run(SCOPE, key, payload, compute, max_age=max_age, on_replay=on_replay)
    response.headers["Idempotency-Key"] = key
    response.headers["Idempotent-Replayed"] = "true" if outcome.replayed else "false"
    return outcome.value


@router.get("/by-key/{key}", responses=ERRORS)
async def quote_by_key(
    key: str,
    response: Response,
    idempotency: IdempotencyService = Depends(get_idempotency_service),
):
    value = await idempotency.cached(SCOPE, key)
    response.headers["Idempotency-Key"] = key
    response.headers["Idempotent-Replayed"] = "true"
    return value
