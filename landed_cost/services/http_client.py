from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from landed_cost.core.config import get_settings
from landed_cost.core.errors import UpstreamUnavailable
from landed_cost.core.logging import get_logger

logger = get_logger()

RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


@dataclass
class CircuitBreaker:
    max_failures: int = 3
    reset_seconds: int = 30
    failures: int = 0
    last_failure_ts: float | None = None

    def allow(self) -> bool:
        if self.failures < self.max_failures:
            return True
        if self.last_failure_ts is None:
            return True
        if time.time() - self.last_failure_ts > self.reset_seconds:
            self.failures = 0
            self.last_failure_ts = None
            return True
        return False

    def record_failure(self) -> None:
        self.failures += 1
        self.last_failure_ts = time.time()

    def record_success(self) -> None:
        self.failures = 0
        self.last_failure_ts = None


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS
    return isinstance(exc, httpx.TransportError)


def default_wait():
    # 1s, 2s, 4s capped, plus up to 250ms of jitter
    return wait_exponential(multiplier=1, min=1, max=4) + wait_random(0, 0.25)


async def get_json(
    url: str,
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
    client: httpx.AsyncClient | None = None,
    attempts: int | None = None,
    wait=None,
) -> Any:
    """GET a JSON document with a timeout and jittered retries.

    Exhausted retries, non-retryable statuses and undecodable bodies all raise
    UpstreamUnavailable.
    """
    settings = get_settings()
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(attempts or settings.http_retries),
            wait=wait or default_wait(),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        ):
            with attempt:
                response = await client.get(url, headers=headers, params=params)
                response.raise_for_status()
                return response.json()
    except (httpx.HTTPError, RetryError) as exc:
        logger.warning("upstream_fetch_failed", url=url, error=str(exc))
        raise UpstreamUnavailable(f"Fetch failed for {url}", url=url) from exc
    except ValueError as exc:
        logger.warning("upstream_decode_failed", url=url, error=str(exc))
        raise UpstreamUnavailable(f"Invalid JSON from {url}", url=url) from exc
    finally:
        if owns_client:
            await client.aclose()
    raise UpstreamUnavailable(f"No response from {url}", url=url)
