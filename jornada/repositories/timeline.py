from __future__ import annotations
from typing import Any, Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jornada.db.models import AuditLedger, TimelineEvent, UsageEvent, WaMessage


class TimelineRepository:
    """Append-only records: timeline, audit ledger, usage counters and the raw message log."""

    async def add_event(
        self,
        session: AsyncSession,
        tenant_id: int,
        case_id: Optional[int],
        event_type: str,
        actor_type: str,
        actor_id: Optional[str],
        message: Optional[str],
        meta_json: Optional[Dict[str, Any]] = None,
    ) -> TimelineEvent:
        entity = TimelineEvent(
            tenant_id=tenant_id,
            case_id=case_id,
            event_type=event_type,
            actor_type=actor_type,
            actor_id=actor_id,
            message=message,
            meta_json=meta_json or {},
        )
        session.add(entity)
        await session.flush()
        return entity

    async def list_for_case(self, session: AsyncSession, tenant_id: int, case_id: int) -> List[TimelineEvent]:
        stmt = (
            select(TimelineEvent)
            .where(TimelineEvent.tenant_id == tenant_id, TimelineEvent.case_id == case_id)
            .order_by(TimelineEvent.occurred_at.asc(), TimelineEvent.id.asc())
        )
        res = await session.execute(stmt)
        return list(res.scalars().all())

    async def add_audit(self, session: AsyncSession, tenant_id: int, kind: str, payload: Dict[str, Any]) -> AuditLedger:
        entity = AuditLedger(tenant_id=tenant_id, kind=kind, payload_json=payload)
        session.add(entity)
        await session.flush()
        return entity

    async def add_usage(
        self,
        session: AsyncSession,
        tenant_id: int,
        type: str,
        ref_type: Optional[str],
        ref_id: Optional[str],
        meta_json: Optional[Dict[str, Any]] = None,
    ) -> UsageEvent:
        entity = UsageEvent(tenant_id=tenant_id, type=type, qty=1, ref_type=ref_type, ref_id=ref_id, meta_json=meta_json)
        session.add(entity)
        await session.flush()
        return entity

    async def add_wa_message(
        self,
        session: AsyncSession,
        tenant_id: int,
        instance_id: int,
        type: str,
        from_phone: Optional[str],
        to_phone: Optional[str],
        body_text: Optional[str],
        media_url: Optional[str],
        payload: Dict[str, Any],
        correlation_id: str,
    ) -> WaMessage:
        entity = WaMessage(
            tenant_id=tenant_id,
            instance_id=instance_id,
            direction="inbound",
            type=type,
            from_phone=from_phone,
            to_phone=to_phone,
            body_text=body_text,
            media_url=media_url,
            payload_json=payload,
            correlation_id=correlation_id,
        )
        session.add(entity)
        await session.flush()
        return entity
