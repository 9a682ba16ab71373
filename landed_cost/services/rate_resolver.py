from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol

from landed_cost.core.logging import get_logger
from landed_cost.models.enums import LookupStatus, RateKind
from landed_cost.repositories.rate_repo import RateScope

logger = get_logger()


class RateStore(Protocol):
    async def find_candidates(self, scope: RateScope, kind: RateKind) -> list[Any]: ...


@dataclass(frozen=True)
class PriorityTier:
    name: str
    predicate: Callable[[Any], bool]


@dataclass
class ResolveMeta:
    status: LookupStatus
    tier: str | None = None
    dataset: str | None = None
    source: str | None = None
    effective_from: date | None = None
    record_id: str | None = None
    note: str | None = None


@dataclass
class Resolved:
    value: Any | None
    meta: ResolveMeta


@dataclass
class ResolvedGroups:
    groups: dict[Hashable, Resolved] = field(default_factory=dict)
    meta: ResolveMeta = field(default_factory=lambda: ResolveMeta(status=LookupStatus.NO_DATASET))


def is_effective(record: Any, as_of: date) -> bool:
    """Half-open window check: effective_from <= as_of < effective_to."""
    if record.effective_from is not None and record.effective_from > as_of:
        return False
    if record.effective_to is not None and as_of >= record.effective_to:
        return False
    return True


def specificity(record: Any) -> int:
    return sum(
        1 for attr in ("partner", "hs6", "transport_mode") if getattr(record, attr, None) is not None
    )


def _rank(record: Any) -> tuple[int, date]:
    return specificity(record), record.effective_from or date.min


def select_tier(
    candidates: Iterable[Any], as_of: date, priority: list[PriorityTier]
) -> tuple[PriorityTier, list[Any]] | None:
    """First tier with any record valid at as_of, records ranked best first."""
    valid = [r for r in candidates if is_effective(r, as_of)]
    for tier in priority:
        matched = [r for r in valid if tier.predicate(r)]
        if matched:
            matched.sort(key=_rank, reverse=True)
            return tier, matched
    return None


def _meta_for(status: LookupStatus, tier: PriorityTier | None = None, record: Any | None = None) -> ResolveMeta:
    if record is None:
        return ResolveMeta(status=status, tier=tier.name if tier else None)
    source = getattr(record, "source", None)
    return ResolveMeta(
        status=status,
        tier=tier.name if tier else None,
        dataset=getattr(record, "dataset", None),
        source=getattr(source, "value", source),
        effective_from=getattr(record, "effective_from", None),
        record_id=str(record.id) if getattr(record, "id", None) is not None else None,
    )


class RateResolver:
    def __init__(self, store: RateStore, out_of_scope: Mapping[RateKind, set[str]] | None = None) -> None:
        self.store = store
        self.out_of_scope = out_of_scope or {}

    async def resolve(
        self,
        scope: RateScope,
        kind: RateKind,
        as_of: date,
        priority: list[PriorityTier],
    ) -> Resolved:
        candidates, meta = await self._load(scope, kind)
        if meta is not None:
            return Resolved(value=None, meta=meta)
        selected = select_tier(candidates, as_of, priority)
        if selected is None:
            return Resolved(value=None, meta=ResolveMeta(status=LookupStatus.NO_MATCH))
        tier, ranked = selected
        return Resolved(value=ranked[0], meta=_meta_for(LookupStatus.OK, tier, ranked[0]))

    async def resolve_all(
        self,
        scope: RateScope,
        kind: RateKind,
        as_of: date,
        priority: list[PriorityTier],
    ) -> tuple[list[Any], ResolveMeta]:
        """Every valid record of the winning tier, best first (freight steps)."""
        candidates, meta = await self._load(scope, kind)
        if meta is not None:
            return [], meta
        selected = select_tier(candidates, as_of, priority)
        if selected is None:
            return [], ResolveMeta(status=LookupStatus.NO_MATCH)
        tier, ranked = selected
        return ranked, _meta_for(LookupStatus.OK, tier, ranked[0])

    async def resolve_many(
        self,
        scope: RateScope,
        kind: RateKind,
        as_of: date,
        priority: list[PriorityTier],
        group_by: Callable[[Any], Hashable],
    ) -> ResolvedGroups:
        """Resolve each group independently; one winner per group key."""
        candidates, meta = await self._load(scope, kind)
        if meta is not None:
            return ResolvedGroups(meta=meta)
        grouped: dict[Hashable, list[Any]] = {}
        for record in candidates:
            grouped.setdefault(group_by(record), []).append(record)
        groups: dict[Hashable, Resolved] = {}
        for group_key, records in grouped.items():
            selected = select_tier(records, as_of, priority)
            if selected is None:
                continue
            tier, ranked = selected
            groups[group_key] = Resolved(value=ranked[0], meta=_meta_for(LookupStatus.OK, tier, ranked[0]))
        status = LookupStatus.OK if groups else LookupStatus.NO_MATCH
        return ResolvedGroups(groups=groups, meta=ResolveMeta(status=status))

    async def _load(self, scope: RateScope, kind: RateKind) -> tuple[list[Any], ResolveMeta | None]:
        if scope.dest.upper() in self.out_of_scope.get(kind, set()):
            return [], ResolveMeta(status=LookupStatus.OUT_OF_SCOPE, note=f"{kind.value} not resolved for {scope.dest}")
        try:
            candidates = await self.store.find_candidates(scope, kind)
        except Exception as exc:
            logger.error(
                "rate_lookup_failed",
                kind=kind.value,
                dest=scope.dest,
                hs6=scope.hs6,
                error=str(exc),
                exc_info=True,
            )
            return [], ResolveMeta(status=LookupStatus.ERROR, note=str(exc))
        if not candidates:
            return [], ResolveMeta(status=LookupStatus.NO_DATASET)
        return candidates, None
