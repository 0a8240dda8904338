from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from jornada.db.models import TimelineEvent
from jornada.repositories.timeline import TimelineRepository

logger = logging.getLogger(__name__)


class TimelineRecorder:
    """Timeline events (authoritative) plus best-effort audit and usage side channels."""

    def __init__(self) -> None:
        self.repo = TimelineRepository()

    async def record(
        self,
        session: AsyncSession,
        tenant_id: int,
        case_id: Optional[int],
        event_type: str,
        actor_type: str,
        actor_id: Any,
        message: Optional[str],
        meta: Optional[Dict[str, Any]] = None,
    ) -> TimelineEvent:
        return await self.repo.add_event(
            session,
            tenant_id=tenant_id,
            case_id=case_id,
            event_type=event_type,
            actor_type=actor_type,
            actor_id=str(actor_id) if actor_id is not None else None,
            message=message,
            meta_json=meta,
        )

    async def list_for_case(self, session: AsyncSession, tenant_id: int, case_id: int) -> List[TimelineEvent]:
        return await self.repo.list_for_case(session, tenant_id, case_id)

    async def has_correlation(self, session: AsyncSession, tenant_id: int, case_id: int, correlation_id: str) -> bool:
        """True when some event on the case was already recorded for this delivery."""
        events = await self.repo.list_for_case(session, tenant_id, case_id)
        return any((e.meta_json or {}).get("correlation_id") == correlation_id for e in events)

    async def append_audit(self, session: AsyncSession, tenant_id: int, kind: str, payload: Dict[str, Any]) -> bool:
        """Never fails the caller; a failed append is rolled back to its savepoint and logged."""
        try:
            async with session.begin_nested():
                await self.repo.add_audit(session, tenant_id, kind, payload)
            return True
        except SQLAlchemyError as exc:
            logger.warning(
                "Audit ledger append failed: %s", exc,
                extra={"tenant_id": tenant_id, "kind": kind, "correlation_id": payload.get("correlation_id")},
            )
            return False

    async def record_usage(
        self,
        session: AsyncSession,
        tenant_id: int,
        type: str,
        ref_type: Optional[str] = None,
        ref_id: Any = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> bool:
        try:
            async with session.begin_nested():
                await self.repo.add_usage(
                    session, tenant_id, type, ref_type, str(ref_id) if ref_id is not None else None, meta
                )
            return True
        except SQLAlchemyError as exc:
            logger.warning("Usage event append failed: %s", exc, extra={"tenant_id": tenant_id, "type": type})
            return False
