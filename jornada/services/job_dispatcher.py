from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from jornada.core.exceptions import StoreError
from jornada.core.timeutils import utcnow
from jornada.repositories.job import JobRepository

logger = logging.getLogger(__name__)


def job_key(job_type: str, case_id: Any, recurring: bool = False, now: Optional[datetime] = None) -> str:
    """
    Idempotency key for a case job.

    `TYPE:<case>` runs at most once per case; `TYPE:<case>:<epoch ms>` names one
    attempt of work that may legitimately happen again.
    """
    if not recurring:
        return f"{job_type}:{case_id}"
    stamp = int((now or utcnow()).timestamp() * 1000)
    return f"{job_type}:{case_id}:{stamp}"


class JobDispatcher:
    """Schedules async work with insert-or-confirm-already-present semantics."""

    def __init__(self) -> None:
        self.repo = JobRepository()

    async def enqueue(
        self,
        session: AsyncSession,
        tenant_id: int,
        job_type: str,
        idempotency_key: str,
        payload: Optional[Dict[str, Any]] = None,
        run_after: Optional[datetime] = None,
    ) -> bool:
        """
        Args:
            session: Database session.
            tenant_id: Owning tenant.
            job_type: Worker job type (e.g. OCR_IMAGE).
            idempotency_key: Unique per tenant; see `job_key`.
            payload: Job payload.
            run_after: Earliest execution time, defaults to now.

        Returns:
            True when newly scheduled, False when the key was already scheduled.

        Raises:
            StoreError: any failure other than the key collision.
        """
        try:
            created = await self.repo.insert_ignore(
                session, tenant_id, job_type, idempotency_key, payload or {}, run_after or utcnow()
            )
        except SQLAlchemyError as exc:
            logger.exception(
                "Job enqueue failed",
                extra={"tenant_id": tenant_id, "job_type": job_type, "idempotency_key": idempotency_key},
            )
            raise StoreError(
                "Failed to enqueue job",
                {"job_type": job_type, "idempotency_key": idempotency_key},
                code="job_enqueue_failed",
            ) from exc

        if not created:
            logger.info(
                "Job already scheduled",
                extra={"tenant_id": tenant_id, "job_type": job_type, "idempotency_key": idempotency_key},
            )
        return created
