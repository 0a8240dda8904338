from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from jornada.core.config import get_settings
from jornada.core.exceptions import ConflictError, ForbiddenError, NotFoundError, PresenceRejected
from jornada.core.journey_workflow import pick_initial_state
from jornada.core.presence_workflow import (
    FLAG_STATES, MANAGER_ROLES, PRESENCE_CASE_TYPE, PRESENCE_STATE_MACHINE, TERMINAL_STATES,
    PresenceState, PresenceWorkflowEngine, PunchType, haversine_meters,
)
from jornada.core.timeutils import as_utc, local_day, resolve_zone, utcnow
from jornada.db.models import Case, Employee, Journey, PresencePolicy, TenantJourney, TimePunch
from jornada.repositories.case import CaseRepository
from jornada.repositories.channel import ChannelRepository
from jornada.repositories.presence import PresenceRepository
from jornada.services.pendency import PendencyTracker
from jornada.services.timeline import TimelineRecorder

logger = logging.getLogger(__name__)

JUSTIFICATION_QUESTIONS = {
    "outside_geofence": "Batida registrada fora do local de trabalho. Envie justificativa.",
    "location_required": "Batida registrada sem localização. Envie justificativa.",
}

CLOSE_QUESTIONS = {
    "missing_entry": "Faltou batida de ENTRADA. Envie justificativa.",
    "missing_exit": "Faltou batida de SAÍDA. Envie justificativa.",
    "missing_break": "Intervalo obrigatório não registrado (INÍCIO e FIM). Envie justificativa.",
}


def _presence_config(tenant_journey: TenantJourney) -> Dict[str, Any]:
    return ((tenant_journey.config_json or {}).get("presence")) or {}


class PresenceService:
    """Clock punches and manager day-close for presence days."""

    def __init__(self) -> None:
        self.settings = get_settings()
        self.repo = PresenceRepository()
        self.cases = CaseRepository()
        self.channels = ChannelRepository()
        self.pendencies = PendencyTracker()
        self.timeline = TimelineRecorder()
        self.workflow = PresenceWorkflowEngine()

    async def _member(self, session: AsyncSession, tenant_id: int, user_id: str) -> Employee:
        employee = await self.repo.get_employee(session, tenant_id, user_id)
        if employee is None:
            raise ForbiddenError("User is not a member of this tenant", {"tenant_id": tenant_id}, code="not_a_member")
        return employee

    async def _presence_journey(self, session: AsyncSession, tenant_id: int) -> Tuple[Journey, TenantJourney]:
        journey = await self.channels.get_journey_by_key(session, self.settings.PRESENCE_JOURNEY_KEY)
        tenant_journey = None
        if journey is not None:
            tenant_journey = await self.channels.get_tenant_journey(session, tenant_id, journey.id)
        flags = ((tenant_journey.config_json or {}).get("flags") or {}) if tenant_journey else {}
        if tenant_journey is None or not tenant_journey.enabled or flags.get("presence_enabled") is False:
            raise ForbiddenError("Presence is not enabled for this tenant", {"tenant_id": tenant_id}, code="presence_disabled")
        return journey, tenant_journey

    def _zone(self, employee: Employee, tenant_journey: TenantJourney) -> ZoneInfo:
        name = (
            employee.time_zone
            or _presence_config(tenant_journey).get("time_zone")
            or self.settings.PRESENCE_DEFAULT_TIME_ZONE
        )
        return resolve_zone(name)

    def _planned_minutes(self, tenant_journey: TenantJourney) -> int:
        cfg = _presence_config(tenant_journey)
        value = cfg.get("planned_minutes", cfg.get("plannedMinutes"))
        try:
            return int(value) if value is not None else self.settings.PRESENCE_PLANNED_MINUTES
        except (TypeError, ValueError):
            logger.warning("Invalid planned_minutes in tenant config: %r", value)
            return self.settings.PRESENCE_PLANNED_MINUTES

    async def get_or_create_day(
        self,
        session: AsyncSession,
        tenant_id: int,
        journey: Journey,
        employee: Employee,
        zone: ZoneInfo,
        instant: datetime,
    ) -> Case:
        """One presence case per (tenant, employee, zone-local date); insert-or-ignore on that key."""
        day = local_day(instant, zone)
        machine = journey.default_state_machine_json or PRESENCE_STATE_MACHINE
        created = await self.cases.insert_ignore(
            session,
            {
                "tenant_id": tenant_id,
                "journey_id": journey.id,
                "case_type": PRESENCE_CASE_TYPE,
                "status": "open",
                "state": pick_initial_state(machine, PresenceState.AGUARDANDO_ENTRADA.value),
                "title": f"Ponto {day.isoformat()}",
                "created_by_channel": "app",
                "entity_type": "employee",
                "entity_id": employee.id,
                "case_date": day,
                "meta_json": {"presence": {"time_zone": zone.key, "employee_id": employee.id}},
            },
        )
        if created:
            logger.info("Presence day opened", extra={"tenant_id": tenant_id, "employee_id": employee.id, "case_date": day.isoformat()})
        case = await self.cases.get_day_case(session, tenant_id, PRESENCE_CASE_TYPE, employee.id, day)
        if case is None:
            raise NotFoundError("Presence day not found", {"case_date": day.isoformat()}, code="presence_day_missing")
        return case

    async def _geofence(
        self,
        session: AsyncSession,
        tenant_id: int,
        policy: Optional[PresencePolicy],
        latitude: Optional[float],
        longitude: Optional[float],
    ) -> Tuple[Optional[float], Optional[bool], Optional[str]]:
        """Returns (distance, within_radius, flag_reason). No configured geofence means nothing to check."""
        if policy is None or policy.location_id is None:
            return None, None, None
        location = await self.repo.get_location(session, tenant_id, policy.location_id)
        if location is None:
            return None, None, None

        if latitude is None or longitude is None:
            distance, within, reason = None, False, "location_required"
        else:
            distance = round(haversine_meters(location.latitude, location.longitude, latitude, longitude), 2)
            within = distance <= policy.radius_meters
            reason = None if within else "outside_geofence"

        if reason and not policy.allow_outside_radius:
            raise PresenceRejected(
                "Punch rejected by the tenant geofence policy",
                {"distance_meters": distance, "radius_meters": policy.radius_meters},
                code=reason,
            )
        return distance, within, reason

    async def clock(
        self,
        session: AsyncSession,
        tenant_id: int,
        user_id: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        accuracy_meters: Optional[float] = None,
        punch_type: Optional[str] = None,
        source: str = "APP",
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Register a punch for the caller's current presence day.

        Args:
            session: Database session (caller commits).
            tenant_id: Tenant the punch belongs to.
            user_id: Subject of the verified bearer token.
            latitude: Optional device latitude.
            longitude: Optional device longitude.
            accuracy_meters: Optional device accuracy.
            punch_type: Forced punch type; inferred from the day state when omitted.
            source: Channel tag (APP, WHATSAPP, ...).
            now: Punch instant, server time by default.

        Raises:
            ForbiddenError: not a member, or presence disabled.
            PresenceRejected: illegal transition, closed day or geofence rejection.
        """
        employee = await self._member(session, tenant_id, user_id)
        journey, tenant_journey = await self._presence_journey(session, tenant_id)
        zone = self._zone(employee, tenant_journey)
        instant = as_utc(now) if now else utcnow()

        case = await self.get_or_create_day(session, tenant_id, journey, employee, zone, instant)
        policy = await self.repo.get_policy(session, tenant_id)
        break_required = policy.break_required if policy else True

        operational = self.workflow.operational_state(case.state, case.meta_json)
        requested = PunchType(punch_type) if punch_type else self.workflow.infer_punch_type(operational, break_required)
        next_operational = self.workflow.validate_transition(case.state, operational, requested)

        distance, within, reason = await self._geofence(session, tenant_id, policy, latitude, longitude)

        punch = await self.repo.add_punch(
            session,
            TimePunch(
                tenant_id=tenant_id,
                case_id=case.id,
                employee_id=employee.id,
                type=requested.value,
                timestamp=instant,
                latitude=latitude,
                longitude=longitude,
                accuracy_meters=accuracy_meters,
                distance_from_location=distance,
                within_radius=within,
                status="flagged" if reason else "valid",
                source=source,
            ),
        )

        meta = dict(case.meta_json or {})
        presence_meta = dict(meta.get("presence") or {})
        presence_meta["resume_state"] = next_operational.value
        presence_meta["last_punch"] = requested.value
        if reason:
            presence_meta["flags"] = list(presence_meta.get("flags") or []) + [reason]
        meta["presence"] = presence_meta

        if PresenceState(case.state) in FLAG_STATES:
            # A flagged day stays flagged until a manager resolves it
            new_state = case.state
        elif reason:
            new_state = policy.outside_radius_state
            if PresenceState(new_state) not in FLAG_STATES:
                new_state = PresenceState.PENDENTE_JUSTIFICATIVA.value
        else:
            new_state = next_operational.value

        await self.cases.update_fields(session, tenant_id, case.id, state=new_state, status="open", meta_json=meta)

        if reason:
            await self.pendencies.ensure_open(
                session, tenant_id, case.id, reason, "employee", JUSTIFICATION_QUESTIONS[reason], required=True,
            )

        await self.timeline.record(
            session,
            tenant_id,
            case.id,
            "presence_punch",
            "employee",
            employee.id,
            f"Batida {requested.value} registrada ({source}).",
            {
                "source": source,
                "punch_id": punch.id,
                "punch_type": requested.value,
                "within_radius": within,
                "distance_meters": distance,
                "flagged": bool(reason),
                "reason": reason,
                "state": new_state,
            },
        )
        logger.info(
            "Presence punch recorded",
            extra={"tenant_id": tenant_id, "case_id": case.id, "punch_type": requested.value, "flagged": bool(reason)},
        )

        return {
            "ok": True,
            "case_id": case.id,
            "case_date": case.case_date.isoformat(),
            "punch_id": punch.id,
            "punch_type": requested.value,
            "state": new_state,
            "within_radius": within,
            "distance_meters": distance,
            "flagged": bool(reason),
            "reason": reason,
        }

    @staticmethod
    def worked_minutes(punches) -> Optional[int]:
        """First ENTRY/BREAK_START/BREAK_END and last EXIT; each segment floored to minutes."""
        entry = break_start = break_end = exit_ = None
        for punch in punches:
            ts = as_utc(punch.timestamp)
            if punch.type == PunchType.ENTRY.value and entry is None:
                entry = ts
            elif punch.type == PunchType.BREAK_START.value and break_start is None:
                break_start = ts
            elif punch.type == PunchType.BREAK_END.value and break_end is None:
                break_end = ts
            elif punch.type == PunchType.EXIT.value:
                exit_ = ts if exit_ is None else max(exit_, ts)
        if entry is None or exit_ is None:
            return None
        if break_start is not None and break_end is not None:
            return int((break_start - entry).total_seconds() // 60) + int((exit_ - break_end).total_seconds() // 60)
        return int((exit_ - entry).total_seconds() // 60)

    async def close_day(
        self,
        session: AsyncSession,
        tenant_id: int,
        user_id: str,
        case_id: int,
        note: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Manager close of a presence day. Missing punches turn into pendencies instead of a close."""
        manager = await self._member(session, tenant_id, user_id)
        if manager.role not in MANAGER_ROLES:
            raise ForbiddenError("Only managers can close presence days", {"role": manager.role}, code="not_a_manager")
        _journey, tenant_journey = await self._presence_journey(session, tenant_id)

        case = await self.cases.get_by_id(session, tenant_id, case_id)
        if case is None or case.case_type != PRESENCE_CASE_TYPE:
            raise NotFoundError("Presence day not found", {"case_id": case_id}, code="case_not_found")
        if PresenceState(case.state) in TERMINAL_STATES:
            raise ConflictError("Presence day is already closed", {"case_id": case_id, "state": case.state}, code="day_already_closed")

        from_state = case.state
        policy = await self.repo.get_policy(session, tenant_id)
        break_required = policy.break_required if policy else True
        punches = await self.repo.list_punches(session, tenant_id, case.id)
        types = {p.type for p in punches}

        missing = None
        if PunchType.ENTRY.value not in types:
            missing = "missing_entry"
        elif PunchType.EXIT.value not in types:
            missing = "missing_exit"
        elif break_required and not {PunchType.BREAK_START.value, PunchType.BREAK_END.value} <= types:
            missing = "missing_break"

        result: Dict[str, Any] = {"ok": True, "case_id": case.id}
        if missing:
            await self.pendencies.ensure_open(
                session, tenant_id, case.id, missing, "admin", CLOSE_QUESTIONS[missing], required=True,
            )
            meta = dict(case.meta_json or {})
            presence_meta = dict(meta.get("presence") or {})
            presence_meta["resume_state"] = self.workflow.operational_state(case.state, case.meta_json).value
            meta["presence"] = presence_meta
            to_state = PresenceState.PENDENTE_JUSTIFICATIVA.value
            await self.cases.update_fields(session, tenant_id, case.id, state=to_state, status="open", meta_json=meta)
            result.update({"closed": False, "state": to_state, "missing": missing})
        else:
            to_state = PresenceState.FECHADO.value
            await self.cases.update_fields(session, tenant_id, case.id, state=to_state, status="closed")
            result.update({"closed": True, "state": to_state})
            result.update(await self._post_ledger(session, tenant_id, case, punches, tenant_journey, manager))

        await self.timeline.record(
            session,
            tenant_id,
            case.id,
            "presence_close_attempt",
            "admin",
            manager.id,
            "Tentativa de fechamento do dia.",
            {"from": from_state, "to": to_state, "note": note, "missing": missing},
        )
        return result

    async def _post_ledger(
        self,
        session: AsyncSession,
        tenant_id: int,
        case: Case,
        punches,
        tenant_journey: TenantJourney,
        manager: Employee,
    ) -> Dict[str, Any]:
        worked = self.worked_minutes(punches)
        if worked is None:
            return {}
        planned = self._planned_minutes(tenant_journey)
        delta = worked - planned
        previous = await self.repo.last_ledger_entry(session, tenant_id, case.entity_id)
        balance = (previous.balance_after if previous else 0) + delta

        inserted = await self.repo.insert_ledger_ignore(session, tenant_id, case.entity_id, case.id, delta, balance)
        if not inserted:
            logger.info("Bank-hour ledger already posted", extra={"tenant_id": tenant_id, "case_id": case.id})
            existing = await self.repo.get_ledger_for_case(session, tenant_id, case.id)
            return {"minutes_delta": existing.minutes_delta, "balance_after": existing.balance_after}

        await self.timeline.record(
            session,
            tenant_id,
            case.id,
            "bank_hour_ledger_posted",
            "system",
            manager.id,
            "Banco de horas atualizado.",
            {"worked_minutes": worked, "planned_minutes": planned, "minutes_delta": delta, "balance_after": balance},
        )
        return {"worked_minutes": worked, "minutes_delta": delta, "balance_after": balance}
