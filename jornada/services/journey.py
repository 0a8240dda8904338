from __future__ import annotations
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from jornada.core.config import get_settings
from jornada.core.exceptions import ConfigurationError
from jornada.db.models import Journey, WaInstance
from jornada.repositories.channel import ChannelRepository

logger = logging.getLogger(__name__)


class JourneyResolver:
    """Decides which journey governs chat cases for a channel instance."""

    def __init__(self) -> None:
        self.repo = ChannelRepository()
        self.settings = get_settings()

    async def resolve(self, session: AsyncSession, instance: WaInstance) -> Journey:
        """
        First hit wins:
          1. the instance's default journey
          2. the tenant's earliest-created enabled journey (presence excluded)
          3. the global fallback journey key

        Raises:
            ConfigurationError: when no tier resolves.
        """
        if instance.default_journey_id:
            journey = await self.repo.get_journey(session, instance.default_journey_id)
            if journey:
                return journey
            logger.warning(
                "Instance default journey not found",
                extra={"tenant_id": instance.tenant_id, "journey_id": instance.default_journey_id},
            )

        journey = await self.repo.earliest_enabled_journey(
            session, instance.tenant_id, exclude_key=self.settings.PRESENCE_JOURNEY_KEY
        )
        if journey:
            return journey

        journey = await self.repo.get_journey_by_key(session, self.settings.FALLBACK_JOURNEY_KEY)
        if journey:
            return journey

        logger.error("No journey configured", extra={"tenant_id": instance.tenant_id})
        raise ConfigurationError(
            "No journey configured for this tenant",
            {"tenant_id": instance.tenant_id, "fallback_key": self.settings.FALLBACK_JOURNEY_KEY},
            code="journey_not_configured",
        )
