from __future__ import annotations
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jornada.db.models import Vendor
from jornada.db.upsert import insert_ignore


class VendorRepository:
    """Tenant-scoped vendor (actor) records keyed by normalized phone."""

    async def insert_ignore(
        self, session: AsyncSession, tenant_id: int, phone_e164: str, display_name: Optional[str]
    ) -> bool:
        return await insert_ignore(
            session,
            Vendor,
            {"tenant_id": tenant_id, "phone_e164": phone_e164, "display_name": display_name, "active": True},
        )

    async def get_by_phone(self, session: AsyncSession, tenant_id: int, phone_e164: str) -> Optional[Vendor]:
        stmt = select(Vendor).where(Vendor.tenant_id == tenant_id, Vendor.phone_e164 == phone_e164)
        res = await session.execute(stmt)
        return res.scalar_one_or_none()
