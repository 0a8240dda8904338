import logging
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from jornada.core.security import get_current_user_id
from jornada.db.session import get_db
from jornada.schemas.presence import ClockRequest, ClockResponse, CloseDayRequest, CloseDayResponse
from jornada.services.presence import PresenceService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/presence", tags=["presence"])


@router.post("/clock", response_model=ClockResponse)
async def clock(
    body: ClockRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db),
) -> Any:
    """Register a clock punch for the authenticated employee."""
    svc = PresenceService()
    result = await svc.clock(
        session,
        tenant_id=body.tenant_id,
        user_id=user_id,
        latitude=body.latitude,
        longitude=body.longitude,
        accuracy_meters=body.accuracy_meters,
        punch_type=body.type,
        source="APP",
    )
    await session.commit()
    return result


@router.post("/close-day", response_model=CloseDayResponse)
async def close_day(
    body: CloseDayRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db),
) -> Any:
    """Manager close of a presence day."""
    svc = PresenceService()
    result = await svc.close_day(session, tenant_id=body.tenant_id, user_id=user_id, case_id=body.case_id, note=body.note)
    await session.commit()
    return result
