from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import date
from pathlib import Path
from typing import Any

import pandas as pd

from landed_cost.core.errors import UpstreamUnavailable
from landed_cost.core.logging import get_logger
from landed_cost.repositories.rate_repo import RateRepository
from landed_cost.services.ingestion.adapters import (
    CandidateRate,
    RowError,
    from_frame_row,
    from_json_duty_row,
    normalize_columns,
)
from landed_cost.services.ingestion.feed_cache import FeedCache
from landed_cost.services.ingestion.jobs import JobContext
from landed_cost.services.ingestion.sdmx_mapper import flatten_series
from landed_cost.services.ingestion.wits import WitsClient, reporter_token

logger = get_logger()

HEARTBEAT_EVERY = 500


def latest_per_hs6(rows: Iterable[CandidateRate]) -> list[CandidateRate]:
    best: dict[tuple[str, str | None, str | None], CandidateRate] = {}
    for row in rows:
        key = (row.dest, row.partner, row.hs6)
        prev = best.get(key)
        if prev is None or row.effective_from > prev.effective_from:
            best[key] = row
    return list(best.values())


class DutyImporter:
    """Writes candidate duty rows as effective-dated versions."""

    def __init__(self, repo: RateRepository, wits: WitsClient | None = None) -> None:
        self.repo = repo
        self.feed_cache = FeedCache()
        self.wits = wits or WitsClient(self.feed_cache)

    async def write(self, ctx: JobContext, rows: Iterable[CandidateRate]) -> None:
        for n, row in enumerate(rows, start=1):
            created = await self.repo.upsert_version(
                row.to_values(), [c.to_values() for c in row.components] or None
            )
            if created:
                ctx.summary.inserted += 1
            if n % HEARTBEAT_EVERY == 0:
                await self.repo.commit()
                await ctx.heartbeat()
        await self.repo.commit()
        await ctx.heartbeat()

    def normalize(
        self,
        ctx: JobContext,
        raw_rows: Iterable[Any],
        adapter: Callable[[Any], CandidateRate],
    ) -> list[CandidateRate]:
        rows = []
        for raw in raw_rows:
            try:
                rows.append(adapter(raw))
            except RowError as exc:
                ctx.summary.skipped += 1
                logger.info("ingestion_row_skipped", error=str(exc))
        return rows

    async def import_json_rows(self, ctx: JobContext, raw_rows: list[dict[str, Any]], dataset: str) -> None:
        rows = self.normalize(ctx, raw_rows, lambda r: from_json_duty_row(r, dataset))
        await self.write(ctx, rows)

    async def import_frame(self, ctx: JobContext, df: pd.DataFrame, dataset: str) -> None:
        df = normalize_columns(df)
        records = df.to_dict(orient="records")
        rows = self.normalize(ctx, records, lambda r: from_frame_row(r, dataset))
        await self.write(ctx, rows)

    async def import_file(self, ctx: JobContext, path: Path, dataset: str | None = None) -> None:
        if path.suffix.lower() in {".xlsx", ".xls"}:
            df = pd.read_excel(path, dtype=str)
        else:
            df = pd.read_csv(path, dtype=str)
        await self.import_frame(ctx, df, dataset or path.stem)

    async def import_sdmx(
        self,
        ctx: JobContext,
        dests: list[str],
        year: int | None = None,
        backfill_years: int = 1,
        partners: list[str] | None = None,
    ) -> None:
        """MFN (world partner) and optional preferential rates per destination.

        A failed fetch for one destination is recorded and the rest continue.
        """
        target = year or date.today().year - 1
        for dest in dests:
            reporter, display = reporter_token(dest)
            lanes: list[tuple[str, str | None]] = [("mfn", None)] + [("prf", p) for p in partners or []]
            collected: list[CandidateRate] = []
            for duty_type, partner in lanes:
                partner_token = reporter_token(partner)[0] if partner else "000"
                for y in range(target, target - max(0, backfill_years) - 1, -1):
                    try:
                        feed = await self.wits.fetch(reporter, partner_token, y, y)
                    except UpstreamUnavailable as exc:
                        ctx.summary.failed.append(f"{display}:{duty_type}:{y}: {exc.message}")
                        continue
                    if feed is None:
                        continue
                    result = flatten_series(feed, display, y, duty_type, partner)
                    ctx.summary.skipped += result.dropped
                    collected.extend(result.rows)
            await self.write(ctx, latest_per_hs6(collected))
            logger.info("sdmx_import_dest_complete", dest=display, rows=len(collected))
        self.feed_cache.clear()
