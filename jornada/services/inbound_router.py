"""
Inbound chat event routing.

Resolves tenant, vendor and journey for a provider webhook, then applies the
journey table's transition. Side effects run in a fixed order so a partial
failure leaves a readable trail:

    case -> pendencies -> timeline -> commit -> jobs -> audit
"""

from __future__ import annotations
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from jornada.core.config import get_settings
from jornada.core.exceptions import AuthenticationError, NotFoundError, ValidationError
from jornada.core.journey_workflow import OCR_IMAGE, SideEffect, Transition, JourneyTable, pick_initial_state, table_for
from jornada.core.normalizer import InboundEvent, normalize_inbound
from jornada.core.security import secrets_match
from jornada.core.timeutils import as_utc
from jornada.db.models import Case, Journey, Vendor, WaInstance
from jornada.repositories.case import CaseRepository
from jornada.repositories.channel import ChannelRepository
from jornada.repositories.timeline import TimelineRepository
from jornada.services.actor import ActorResolver
from jornada.services.job_dispatcher import JobDispatcher, job_key
from jornada.services.journey import JourneyResolver
from jornada.services.pendency import PendencyTracker
from jornada.services.timeline import TimelineRecorder

logger = logging.getLogger(__name__)

AUDIO_PENDING_TRANSCRIPTION = "(áudio recebido - transcrição pendente)"
LOCATION_ANSWER_TEXT = "Localização enviada"


class InboundRouter:
    """Entry point for `POST /webhooks/zapi/inbound`."""

    def __init__(self) -> None:
        self.settings = get_settings()
        self.channels = ChannelRepository()
        self.cases = CaseRepository()
        self.raw_log = TimelineRepository()
        self.actors = ActorResolver()
        self.journeys = JourneyResolver()
        self.jobs = JobDispatcher()
        self.pendencies = PendencyTracker()
        self.timeline = TimelineRecorder()

    async def route(
        self,
        session: AsyncSession,
        payload: Dict[str, Any],
        provided_secret: Optional[str],
    ) -> Dict[str, Any]:
        """
        Route one inbound webhook payload.

        Args:
            session: Database session; committed at the checkpoint, final commit is the caller's.
            payload: Provider JSON body.
            provided_secret: Secret taken from header or query string.

        Returns:
            `{ok, correlation_id, case_id?, journey_id?, note?}`

        Raises:
            ValidationError: no instance id, or required fields missing for the event type.
            NotFoundError: unknown channel instance.
            AuthenticationError: secret mismatch.
            ConfigurationError: no journey resolvable.
        """
        event = normalize_inbound(payload, self.settings.DEFAULT_COUNTRY_CODE)
        if not event.instance_id:
            raise ValidationError("Missing instance id", code="missing_instance_id")

        instance = await self.channels.get_instance(session, event.instance_id)
        if instance is None:
            raise NotFoundError("Unknown channel instance", {"instance_id": event.instance_id}, code="instance_not_found")
        if not secrets_match(instance.webhook_secret, provided_secret):
            logger.warning("Webhook secret mismatch", extra={"tenant_id": instance.tenant_id, "instance": event.instance_id})
            raise AuthenticationError("Invalid webhook secret", code="invalid_secret")

        correlation_id = str(payload.get("correlation_id") or uuid.uuid4())
        log_extra = {"tenant_id": instance.tenant_id, "correlation_id": correlation_id, "event_type": event.event_type}

        await self.raw_log.add_wa_message(
            session,
            tenant_id=instance.tenant_id,
            instance_id=instance.id,
            type=event.event_type,
            from_phone=event.from_phone,
            to_phone=event.to_phone,
            body_text=event.text,
            media_url=event.media_url,
            payload=payload,
            correlation_id=correlation_id,
        )
        await self.timeline.record_usage(
            session, instance.tenant_id, "wa_message", ref_type="wa_instance", ref_id=instance.id,
            meta={"correlation_id": correlation_id, "type": event.event_type},
        )

        vendor = await self.actors.resolve(session, instance.tenant_id, event.from_phone, event.sender_name)
        journey = await self.journeys.resolve(session, instance)
        table = table_for(journey.key)
        logger.info("Inbound event received", extra={**log_extra, "journey_key": journey.key})

        if event.event_type == "image":
            transition = table.resolve(None, event.event_type)
            if transition is None or not transition.creates_case:
                return self._ack(correlation_id, journey, note="ignored")
            return await self._on_image(session, instance, journey, table, transition, vendor, event, correlation_id)

        if event.event_type == "location":
            if vendor is None or event.location is None:
                raise ValidationError(
                    "Location events need a sender phone and coordinates",
                    {"has_vendor": vendor is not None, "has_location": event.location is not None},
                    code="missing_vendor_or_location",
                )
        elif vendor is None:
            return self._ack(correlation_id, journey, note="no_vendor")

        case = await self.cases.latest_open_for_vendor(session, instance.tenant_id, vendor.id, journey.id)
        if case is None:
            logger.info("No open case for vendor", extra={**log_extra, "vendor_id": vendor.id})
            return self._ack(correlation_id, journey, note="no_open_case")

        # The creating image shares the case's correlation id; any other match is a retried delivery
        if correlation_id != case.correlation_id and await self.timeline.has_correlation(
            session, instance.tenant_id, case.id, correlation_id
        ):
            logger.info("Event re-delivered for existing case", extra={**log_extra, "case_id": case.id})
            return self._ack(correlation_id, journey, case_id=case.id, note="duplicate")

        transition = table.resolve(case.state, event.event_type)
        if transition is None:
            return self._ack(correlation_id, journey, case_id=case.id, note="ignored")
        return await self._on_case_event(session, instance, journey, transition, vendor, case, event, correlation_id)

    async def _on_image(
        self,
        session: AsyncSession,
        instance: WaInstance,
        journey: Journey,
        table: JourneyTable,
        transition: Transition,
        vendor: Optional[Vendor],
        event: InboundEvent,
        correlation_id: str,
    ) -> Dict[str, Any]:
        if vendor is None:
            raise ValidationError("Image events need a sender phone", code="missing_vendor_phone")

        tenant_id = instance.tenant_id
        state = pick_initial_state(journey.default_state_machine_json, transition.next_state_hint)
        created = await self.cases.insert_ignore(
            session,
            {
                "tenant_id": tenant_id,
                "journey_id": journey.id,
                "case_type": table.case_type,
                "status": "in_progress",
                "state": state,
                "title": table.case_title,
                "created_by_channel": "whatsapp",
                "created_by_vendor_id": vendor.id,
                "assigned_vendor_id": vendor.id,
                "correlation_id": correlation_id,
                "meta_json": {"correlation_id": correlation_id, "journey_key": journey.key, "photo_attempt": 1},
            },
        )
        case = await self.cases.get_by_correlation(session, tenant_id, correlation_id)
        case_id = case.id

        if created:
            if SideEffect.ATTACH_MEDIA in transition.side_effects and event.media_url:
                await self.cases.add_attachment(
                    session,
                    case_id=case_id,
                    kind="image",
                    storage_path=event.media_url,
                    original_filename=event.file_name,
                    content_type=event.mime_type,
                    meta_json={"source": "zapi", "correlation_id": correlation_id},
                )
            if SideEffect.SEED_PENDENCIES in transition.side_effects:
                await self.pendencies.seed(session, tenant_id, case_id, transition.pendencies)
            await self.timeline.record(
                session, tenant_id, case_id, transition.timeline_event_type, "vendor", vendor.id,
                transition.message, {"correlation_id": correlation_id, "media_url": event.media_url},
            )
        else:
            logger.info("Image re-delivered for existing case", extra={"tenant_id": tenant_id, "correlation_id": correlation_id, "case_id": case_id})

        # Timeline must survive even if scheduling below fails
        await session.commit()

        if SideEffect.ENQUEUE_JOBS in transition.side_effects:
            # Keys are anchored on the case creation time so a retried delivery collides
            await self._enqueue_jobs(session, tenant_id, case_id, transition, correlation_id, journey, event, as_utc(case.created_at))

        await self._audit(session, tenant_id, correlation_id, case_id, event, journey)
        return self._ack(correlation_id, journey, case_id=case_id)

    async def _on_case_event(
        self,
        session: AsyncSession,
        instance: WaInstance,
        journey: Journey,
        transition: Transition,
        vendor: Vendor,
        case: Case,
        event: InboundEvent,
        correlation_id: str,
    ) -> Dict[str, Any]:
        tenant_id = instance.tenant_id
        case_id = case.id
        meta: Dict[str, Any] = {"correlation_id": correlation_id}

        if SideEffect.UPSERT_LOCATION_FIELD in transition.side_effects and event.location is not None:
            point = {"lat": event.location.lat, "lng": event.location.lng}
            await self.cases.upsert_field(
                session, case_id, "location",
                value_text=event.location.as_text(),
                value_json=point,
                confidence=1.0,
                source="vendor",
                last_updated_by="whatsapp_location",
            )
            meta["location"] = point

        if transition.next_state_hint is not None:
            next_state = pick_initial_state(journey.default_state_machine_json, transition.next_state_hint)
            await self.cases.update_fields(session, tenant_id, case_id, state=next_state)
            meta["state"] = next_state

        answered = None
        if SideEffect.ANSWER_NEED_LOCATION in transition.side_effects and event.location is not None:
            answered = await self.pendencies.answer_open_by_type(
                session, tenant_id, case_id, "need_location", LOCATION_ANSWER_TEXT, meta.get("location"),
            )
        if SideEffect.ANSWER_OLDEST_VENDOR_PENDENCY in transition.side_effects:
            answer_text = event.text
            if event.event_type == "audio":
                answer_text = AUDIO_PENDING_TRANSCRIPTION
            answered = await self.pendencies.answer_oldest_open(
                session, tenant_id, case_id, "vendor", answer_text,
                {"correlation_id": correlation_id, "type": event.event_type, "media_url": event.media_url},
            )
        if answered is not None:
            meta["answered_pendency_id"] = answered.id

        message = transition.message
        if transition.timeline_event_type == "vendor_reply":
            meta["text"] = AUDIO_PENDING_TRANSCRIPTION if event.event_type == "audio" else event.text
            meta["media_url"] = event.media_url
        await self.timeline.record(
            session, tenant_id, case_id, transition.timeline_event_type, "vendor", vendor.id, message, meta,
        )

        await session.commit()

        if SideEffect.ENQUEUE_JOBS in transition.side_effects:
            await self._enqueue_jobs(session, tenant_id, case_id, transition, correlation_id, journey, event, None)

        await self._audit(session, tenant_id, correlation_id, case_id, event, journey)
        return self._ack(correlation_id, journey, case_id=case_id)

    async def _enqueue_jobs(
        self,
        session: AsyncSession,
        tenant_id: int,
        case_id: int,
        transition: Transition,
        correlation_id: str,
        journey: Journey,
        event: InboundEvent,
        anchor: Optional[datetime],
    ) -> None:
        payload = {"case_id": case_id, "correlation_id": correlation_id, "journey_key": journey.key}
        for spec in transition.jobs:
            job_payload = dict(payload)
            if spec.job_type == OCR_IMAGE:
                job_payload["media_url"] = event.media_url
            await self.jobs.enqueue(
                session,
                tenant_id,
                spec.job_type,
                job_key(spec.job_type, case_id, recurring=spec.recurring, now=anchor),
                job_payload,
            )

    async def _audit(
        self,
        session: AsyncSession,
        tenant_id: int,
        correlation_id: str,
        case_id: int,
        event: InboundEvent,
        journey: Journey,
    ) -> None:
        await self.timeline.append_audit(
            session,
            tenant_id,
            "wa_inbound_routed",
            {
                "kind": "wa_inbound_routed",
                "correlation_id": correlation_id,
                "case_id": case_id,
                "from": event.from_phone,
                "instance": event.instance_id,
                "journey_id": journey.id,
                "journey_key": journey.key,
            },
        )

    @staticmethod
    def _ack(
        correlation_id: str, journey: Journey, case_id: Optional[int] = None, note: Optional[str] = None
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": True, "correlation_id": correlation_id, "journey_id": journey.id}
        if case_id is not None:
            body["case_id"] = case_id
        if note:
            body["note"] = note
        return body
