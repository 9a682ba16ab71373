from __future__ import annotations

import argparse
import asyncio
import json
from datetime import date
from pathlib import Path

from landed_cost.core.logging import configure_logging, get_logger
from landed_cost.jobs.tasks import import_duties_file, import_duties_sdmx, refresh_fx

logger = get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="landed-cost-job")
    sub = parser.add_subparsers(dest="job", required=True)

    fx = sub.add_parser("fx:refresh", help="Fetch and merge reference FX rates")
    fx.add_argument("--date", dest="on", default=None, help="ISO date, defaults to the latest publication")

    sdmx = sub.add_parser("import:duties:sdmx", help="Import MFN/preferential duties from WITS SDMX")
    sdmx.add_argument("dests", help="Comma separated ISO2 destinations, EU allowed")
    sdmx.add_argument("--year", type=int, default=None)
    sdmx.add_argument("--backfill-years", type=int, default=1)
    sdmx.add_argument("--partners", default="", help="Comma separated ISO2 partners for preferential lanes")

    file_job = sub.add_parser("import:duties:file", help="Import duties from a CSV or XLSX file")
    file_job.add_argument("path")
    file_job.add_argument("--dataset", default=None)
    return parser


def _split(value: str) -> list[str]:
    return [v.strip().upper() for v in value.split(",") if v.strip()]


async def dispatch(args: argparse.Namespace) -> dict:
    if args.job == "fx:refresh":
        return await refresh_fx(date.fromisoformat(args.on) if args.on else None)
    if args.job == "import:duties:sdmx":
        return await import_duties_sdmx(
            _split(args.dests),
            year=args.year,
            backfill_years=args.backfill_years,
            partners=_split(args.partners) or None,
        )
    return await import_duties_file(Path(args.path), args.dataset)


def main(argv: list[str] | None = None) -> None:
    configure_logging()
    args = build_parser().parse_args(argv)
    result = asyncio.run(dispatch(args))
    logger.info("job_result", job=args.job, **result)
    print(json.dumps(result, default=str))


if __name__ == "__main__":
    main()
