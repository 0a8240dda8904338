from __future__ import annotations
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from jornada.db.models import Vendor
from jornada.repositories.vendor import VendorRepository

logger = logging.getLogger(__name__)


class ActorResolver:
    """Maps a normalized sender phone to a tenant-scoped vendor, creating it on first contact."""

    def __init__(self) -> None:
        self.repo = VendorRepository()

    async def resolve(
        self,
        session: AsyncSession,
        tenant_id: int,
        phone_e164: Optional[str],
        display_name: Optional[str] = None,
    ) -> Optional[Vendor]:
        """
        Insert-or-ignore on (tenant, phone) followed by a scoped select.

        Safe under duplicate concurrent deliveries for the same phone: the loser of
        the race hits the unique constraint and simply reads the winner's row.

        Returns:
            The vendor, or None when the event carries no usable phone.
        """
        if not phone_e164:
            return None

        created = await self.repo.insert_ignore(session, tenant_id, phone_e164, display_name)
        if created:
            logger.info("Vendor created on first contact", extra={"tenant_id": tenant_id, "phone": phone_e164})
        return await self.repo.get_by_phone(session, tenant_id, phone_e164)
