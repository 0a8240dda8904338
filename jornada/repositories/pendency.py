from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jornada.db.models import Pendency


class PendencyRepository:
    """Repository for case pendencies, scoped by tenant and case."""

    async def create(
        self,
        session: AsyncSession,
        tenant_id: int,
        case_id: int,
        type: str,
        assigned_to_role: str,
        question_text: str,
        required: bool,
        due_at: Optional[datetime] = None,
    ) -> Pendency:
        entity = Pendency(
            tenant_id=tenant_id,
            case_id=case_id,
            type=type,
            assigned_to_role=assigned_to_role,
            question_text=question_text,
            required=required,
            status="open",
            due_at=due_at,
        )
        session.add(entity)
        await session.flush()
        return entity

    async def oldest_open(
        self,
        session: AsyncSession,
        tenant_id: int,
        case_id: int,
        assigned_to_role: Optional[str] = None,
        type: Optional[str] = None,
    ) -> Optional[Pendency]:
        stmt = select(Pendency).where(
            Pendency.tenant_id == tenant_id,
            Pendency.case_id == case_id,
            Pendency.status == "open",
        )
        if assigned_to_role is not None:
            stmt = stmt.where(Pendency.assigned_to_role == assigned_to_role)
        if type is not None:
            stmt = stmt.where(Pendency.type == type)
        stmt = stmt.order_by(Pendency.created_at.asc(), Pendency.id.asc()).limit(1)
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def mark_answered(
        self,
        session: AsyncSession,
        tenant_id: int,
        pendency_id: int,
        answered_text: Optional[str],
        answered_payload: Optional[Dict[str, Any]],
        answered_at: datetime,
    ) -> bool:
        """Narrow update guarded by `status = 'open'`; an answered row is never rewritten."""
        stmt = (
            update(Pendency)
            .where(
                Pendency.id == pendency_id,
                Pendency.tenant_id == tenant_id,
                Pendency.status == "open",
            )
            .values(
                status="answered",
                answered_text=answered_text,
                answered_payload_json=answered_payload,
                answered_at=answered_at,
            )
        )
        res = await session.execute(stmt)
        return bool(res.rowcount)

    async def list_for_case(self, session: AsyncSession, tenant_id: int, case_id: int) -> List[Pendency]:
        stmt = (
            select(Pendency)
            .where(Pendency.tenant_id == tenant_id, Pendency.case_id == case_id)
            .order_by(Pendency.created_at.asc(), Pendency.id.asc())
            .execution_options(populate_existing=True)
        )
        res = await session.execute(stmt)
        return list(res.scalars().all())
