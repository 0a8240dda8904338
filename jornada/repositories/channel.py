from __future__ import annotations
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jornada.db.models import Journey, TenantJourney, WaInstance


class ChannelRepository:
    """Channel instances and journey configuration lookups."""

    async def get_instance(self, session: AsyncSession, zapi_instance_id: str) -> Optional[WaInstance]:
        stmt = select(WaInstance).where(WaInstance.zapi_instance_id == zapi_instance_id)
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def get_journey(self, session: AsyncSession, journey_id: int) -> Optional[Journey]:
        stmt = select(Journey).where(Journey.id == journey_id)
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def get_journey_by_key(self, session: AsyncSession, key: str) -> Optional[Journey]:
        stmt = select(Journey).where(Journey.key == key)
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def earliest_enabled_journey(
        self, session: AsyncSession, tenant_id: int, exclude_key: Optional[str] = None
    ) -> Optional[Journey]:
        stmt = (
            select(Journey)
            .join(TenantJourney, TenantJourney.journey_id == Journey.id)
            .where(TenantJourney.tenant_id == tenant_id, TenantJourney.enabled.is_(True))
        )
        if exclude_key:
            stmt = stmt.where(Journey.key != exclude_key)
        stmt = stmt.order_by(TenantJourney.created_at.asc(), TenantJourney.id.asc()).limit(1)
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def get_tenant_journey(
        self, session: AsyncSession, tenant_id: int, journey_id: int
    ) -> Optional[TenantJourney]:
        stmt = select(TenantJourney).where(
            TenantJourney.tenant_id == tenant_id, TenantJourney.journey_id == journey_id
        )
        res = await session.execute(stmt)
        return res.scalar_one_or_none()
