from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from jornada.core.journey_workflow import PendencySpec
from jornada.core.timeutils import utcnow
from jornada.db.models import Pendency
from jornada.repositories.pendency import PendencyRepository

logger = logging.getLogger(__name__)


class PendencyTracker:
    """Open/answered lifecycle of case pendencies."""

    def __init__(self) -> None:
        self.repo = PendencyRepository()

    async def seed(
        self,
        session: AsyncSession,
        tenant_id: int,
        case_id: int,
        specs: Iterable[PendencySpec],
        now: Optional[datetime] = None,
    ) -> List[Pendency]:
        now = now or utcnow()
        created = []
        for spec in specs:
            created.append(
                await self.repo.create(
                    session,
                    tenant_id=tenant_id,
                    case_id=case_id,
                    type=spec.type,
                    assigned_to_role=spec.assigned_to_role,
                    question_text=spec.question_text,
                    required=spec.required,
                    due_at=now + spec.due_in,
                )
            )
        return created

    async def answer_oldest_open(
        self,
        session: AsyncSession,
        tenant_id: int,
        case_id: int,
        assigned_to_role: str,
        answered_text: Optional[str],
        answered_payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[Pendency]:
        """Answer only the earliest-created open pendency for the role (FIFO)."""
        pendency = await self.repo.oldest_open(session, tenant_id, case_id, assigned_to_role=assigned_to_role)
        if pendency is None:
            return None
        return await self._answer(session, tenant_id, pendency, answered_text, answered_payload)

    async def answer_open_by_type(
        self,
        session: AsyncSession,
        tenant_id: int,
        case_id: int,
        type: str,
        answered_text: Optional[str],
        answered_payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[Pendency]:
        pendency = await self.repo.oldest_open(session, tenant_id, case_id, type=type)
        if pendency is None:
            return None
        return await self._answer(session, tenant_id, pendency, answered_text, answered_payload)

    async def _answer(
        self,
        session: AsyncSession,
        tenant_id: int,
        pendency: Pendency,
        answered_text: Optional[str],
        answered_payload: Optional[Dict[str, Any]],
    ) -> Optional[Pendency]:
        answered = await self.repo.mark_answered(
            session, tenant_id, pendency.id, answered_text, answered_payload, utcnow()
        )
        if not answered:
            # Lost the race to another reply
            logger.info("Pendency already answered", extra={"tenant_id": tenant_id, "pendency_id": pendency.id})
            return None
        return pendency

    async def ensure_open(
        self,
        session: AsyncSession,
        tenant_id: int,
        case_id: int,
        type: str,
        assigned_to_role: str,
        question_text: str,
        required: bool = True,
        due_at: Optional[datetime] = None,
    ) -> Pendency:
        """At most one open pendency per (case, type)."""
        existing = await self.repo.oldest_open(session, tenant_id, case_id, type=type)
        if existing is not None:
            return existing
        return await self.repo.create(
            session,
            tenant_id=tenant_id,
            case_id=case_id,
            type=type,
            assigned_to_role=assigned_to_role,
            question_text=question_text,
            required=required,
            due_at=due_at,
        )

    async def list_for_case(self, session: AsyncSession, tenant_id: int, case_id: int) -> List[Pendency]:
        return await self.repo.list_for_case(session, tenant_id, case_id)
