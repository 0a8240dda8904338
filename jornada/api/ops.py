import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from jornada.core.config import get_settings
from jornada.core.database import db_manager
from jornada.core.journey_workflow import registered_journeys
from jornada.db.session import get_db

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["infra"])


@router.get("/ready")
async def ready(session: AsyncSession = Depends(get_db)) -> Any:
    """Readiness: the database answers a trivial query."""
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Readiness check failed: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ok": False, "error": "database_unavailable"},
        )
    settings = get_settings()
    return {"ok": True, "env": settings.ENV, "journey_tables": registered_journeys()}


@router.get("/db/health")
async def db_health() -> Dict[str, Any]:
    """Connectivity, schema and migration status of the configured database."""
    return await db_manager.check_database_health()
