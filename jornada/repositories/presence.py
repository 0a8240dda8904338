from __future__ import annotations
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jornada.db.models import BankHourLedger, Employee, PresenceLocation, PresencePolicy, TimePunch
from jornada.db.upsert import insert_ignore


class PresenceRepository:
    """Employees, geofence policy, punches and the bank-hour ledger."""

    async def get_employee(self, session: AsyncSession, tenant_id: int, user_id: str) -> Optional[Employee]:
        stmt = select(Employee).where(
            Employee.tenant_id == tenant_id, Employee.user_id == user_id, Employee.active.is_(True)
        )
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def get_policy(self, session: AsyncSession, tenant_id: int) -> Optional[PresencePolicy]:
        stmt = select(PresencePolicy).where(PresencePolicy.tenant_id == tenant_id)
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def get_location(self, session: AsyncSession, tenant_id: int, location_id: int) -> Optional[PresenceLocation]:
        stmt = select(PresenceLocation).where(
            PresenceLocation.tenant_id == tenant_id, PresenceLocation.id == location_id
        )
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def add_punch(self, session: AsyncSession, punch: TimePunch) -> TimePunch:
        session.add(punch)
        await session.flush()
        return punch

    async def list_punches(self, session: AsyncSession, tenant_id: int, case_id: int) -> List[TimePunch]:
        stmt = (
            select(TimePunch)
            .where(TimePunch.tenant_id == tenant_id, TimePunch.case_id == case_id)
            .order_by(TimePunch.timestamp.asc(), TimePunch.id.asc())
        )
        res = await session.execute(stmt)
        return list(res.scalars().all())

    async def last_ledger_entry(self, session: AsyncSession, tenant_id: int, employee_id: int) -> Optional[BankHourLedger]:
        stmt = (
            select(BankHourLedger)
            .where(BankHourLedger.tenant_id == tenant_id, BankHourLedger.employee_id == employee_id)
            .order_by(BankHourLedger.created_at.desc(), BankHourLedger.id.desc())
            .limit(1)
        )
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def insert_ledger_ignore(
        self,
        session: AsyncSession,
        tenant_id: int,
        employee_id: int,
        case_id: int,
        minutes_delta: int,
        balance_after: int,
    ) -> bool:
        return await insert_ignore(
            session,
            BankHourLedger,
            {
                "tenant_id": tenant_id,
                "employee_id": employee_id,
                "case_id": case_id,
                "minutes_delta": minutes_delta,
                "balance_after": balance_after,
                "source": "day_close",
            },
        )

    async def get_ledger_for_case(self, session: AsyncSession, tenant_id: int, case_id: int) -> Optional[BankHourLedger]:
        stmt = select(BankHourLedger).where(
            BankHourLedger.tenant_id == tenant_id, BankHourLedger.case_id == case_id
        )
        res = await session.execute(stmt)
        return res.scalar_one_or_none()
