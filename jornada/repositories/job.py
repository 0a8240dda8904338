from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jornada.db.models import JobQueue
from jornada.db.upsert import insert_ignore


class JobRepository:
    """Job queue rows. Append-only from the core; workers own status changes."""

    async def insert_ignore(
        self,
        session: AsyncSession,
        tenant_id: int,
        job_type: str,
        idempotency_key: str,
        payload: Dict[str, Any],
        run_after: datetime,
    ) -> bool:
        return await insert_ignore(
            session,
            JobQueue,
            {
                "tenant_id": tenant_id,
                "type": job_type,
                "idempotency_key": idempotency_key,
                "payload_json": payload,
                "status": "pending",
                "run_after": run_after,
            },
        )

    async def list_for_tenant(
        self, session: AsyncSession, tenant_id: int, job_type: Optional[str] = None
    ) -> List[JobQueue]:
        stmt = select(JobQueue).where(JobQueue.tenant_id == tenant_id)
        if job_type is not None:
            stmt = stmt.where(JobQueue.type == job_type)
        stmt = stmt.order_by(JobQueue.id.asc())
        res = await session.execute(stmt)
        return list(res.scalars().all())
