from __future__ import annotations

from typing import Any


class FeedCache:
    """Parsed feed documents keyed by (url, language), owned by one ingestion service."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], Any] = {}

    def get(self, url: str, language: str = "en") -> Any | None:
        return self._entries.get((url, language))

    def put(self, url: str, payload: Any, language: str = "en") -> None:
        self._entries[(url, language)] = payload

    def invalidate(self, url: str, language: str = "en") -> None:
        self._entries.pop((url, language), None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
