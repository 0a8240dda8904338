from __future__ import annotations
from datetime import date
from typing import Any, Dict, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jornada.core.timeutils import utcnow
from jornada.db.models import Case, CaseAttachment, CaseField
from jornada.db.upsert import insert_ignore, upsert


class CaseRepository:
    """Repository for cases, their fields and attachments, always tenant scoped."""

    async def get_by_id(self, session: AsyncSession, tenant_id: int, case_id: int) -> Optional[Case]:
        stmt = select(Case).where(Case.id == case_id, Case.tenant_id == tenant_id)
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def get_by_correlation(self, session: AsyncSession, tenant_id: int, correlation_id: str) -> Optional[Case]:
        stmt = select(Case).where(Case.tenant_id == tenant_id, Case.correlation_id == correlation_id)
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def insert_ignore(self, session: AsyncSession, values: Dict[str, Any]) -> bool:
        return await insert_ignore(session, Case, values)

    async def latest_open_for_vendor(
        self, session: AsyncSession, tenant_id: int, vendor_id: int, journey_id: int
    ) -> Optional[Case]:
        """Newest non-deleted, non-closed case of the vendor in the journey.

        Not locked: a concurrent event for the same vendor may see the previous case.
        """
        stmt = (
            select(Case)
            .where(
                Case.tenant_id == tenant_id,
                Case.assigned_vendor_id == vendor_id,
                Case.journey_id == journey_id,
                Case.deleted_at.is_(None),
                Case.status != "closed",
            )
            .order_by(Case.created_at.desc(), Case.id.desc())
            .limit(1)
        )
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def get_day_case(
        self, session: AsyncSession, tenant_id: int, case_type: str, entity_id: int, case_date: date
    ) -> Optional[Case]:
        stmt = select(Case).where(
            Case.tenant_id == tenant_id,
            Case.case_type == case_type,
            Case.entity_id == entity_id,
            Case.case_date == case_date,
            Case.deleted_at.is_(None),
        )
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def update_fields(self, session: AsyncSession, tenant_id: int, case_id: int, **values: Any) -> None:
        values["updated_at"] = utcnow()
        stmt = (
            update(Case)
            .where(Case.id == case_id, Case.tenant_id == tenant_id)
            .values(**values)
        )
        await session.execute(stmt)

    async def add_attachment(
        self,
        session: AsyncSession,
        case_id: int,
        kind: str,
        storage_path: str,
        original_filename: Optional[str] = None,
        content_type: Optional[str] = None,
        meta_json: Optional[Dict[str, Any]] = None,
    ) -> CaseAttachment:
        entity = CaseAttachment(
            case_id=case_id,
            kind=kind,
            storage_path=storage_path,
            original_filename=original_filename,
            content_type=content_type,
            meta_json=meta_json,
        )
        session.add(entity)
        await session.flush()
        return entity

    async def upsert_field(
        self,
        session: AsyncSession,
        case_id: int,
        key: str,
        value_text: Optional[str],
        value_json: Optional[Dict[str, Any]],
        confidence: Optional[float],
        source: str,
        last_updated_by: str,
    ) -> None:
        now = utcnow()
        await upsert(
            session,
            CaseField,
            {
                "case_id": case_id,
                "key": key,
                "value_text": value_text,
                "value_json": value_json,
                "confidence": confidence,
                "source": source,
                "last_updated_by": last_updated_by,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["case_id", "key"],
            update_fields=["value_text", "value_json", "confidence", "source", "last_updated_by", "updated_at"],
        )

    async def get_field(self, session: AsyncSession, case_id: int, key: str) -> Optional[CaseField]:
        stmt = (
            select(CaseField)
            .where(CaseField.case_id == case_id, CaseField.key == key)
            .execution_options(populate_existing=True)
        )
        res = await session.execute(stmt)
        return res.scalar_one_or_none()
