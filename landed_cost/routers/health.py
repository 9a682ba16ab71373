from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text

from landed_cost.core.deps import get_db_session
from landed_cost.core.logging import get_logger

router = APIRouter(tags=["health"])
logger = get_logger()


@router.get("/health")
async def health(session=Depends(get_db_session)):
    try:
        await session.execute(text("SELECT 1"))
        database = "ok"
    except Exception as exc:
        logger.warning("health_database_unavailable", error=str(exc))
        database = "unavailable"
    return {"status": "ok" if database == "ok" else "degraded", "database": database}
