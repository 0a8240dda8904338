"""
Tests for presence clock punches, geofence policy and manager day close.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from httpx import AsyncClient
from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from jornada.core.exceptions import ConflictError, ForbiddenError, PresenceRejected
from jornada.db.models import BankHourLedger, Case, TimePunch
from jornada.repositories.presence import PresenceRepository
from jornada.services.pendency import PendencyTracker
from jornada.services.presence import PresenceService
from jornada.services.timeline import TimelineRecorder

BRT = timezone(timedelta(hours=-3))
OFFICE = (-23.5614, -46.6559)


def at(hour: int, minute: int = 0, day: int = 2) -> datetime:
    return datetime(2024, 1, day, hour, minute, tzinfo=BRT)


async def punch_day(session, tenant_id, day, schedule, user_id="emp-1"):
    """Punch with inferred types at each (hour, minute) in `schedule`."""
    svc = PresenceService()
    result = None
    for hour, minute in schedule:
        result = await svc.clock(session, tenant_id, user_id, now=at(hour, minute, day))
    return result


@pytest.mark.unit
class TestWorkedMinutes:

    def _punch(self, type, hour, minute=0):
        return SimpleNamespace(type=type, timestamp=at(hour, minute))

    def test_with_break(self):
        punches = [
            self._punch("ENTRY", 8),
            self._punch("BREAK_START", 12),
            self._punch("BREAK_END", 13),
            self._punch("EXIT", 17, 30),
        ]
        assert PresenceService.worked_minutes(punches) == 510

    def test_without_break(self):
        punches = [self._punch("ENTRY", 8), self._punch("EXIT", 12, 15)]
        assert PresenceService.worked_minutes(punches) == 255

    def test_last_exit_wins(self):
        punches = [self._punch("ENTRY", 8), self._punch("EXIT", 12), self._punch("EXIT", 13)]
        assert PresenceService.worked_minutes(punches) == 300

    def test_incomplete_day(self):
        assert PresenceService.worked_minutes([self._punch("ENTRY", 8)]) is None


@pytest.mark.integration
class TestClock:
    """Clock punches against the employee's presence day."""

    async def test_first_punch_opens_day(self, db_session: AsyncSession, presence_setup):
        tenant = presence_setup["tenant"]
        result = await PresenceService().clock(db_session, tenant.id, "emp-1", now=at(8))

        assert result["ok"] is True
        assert result["punch_type"] == "ENTRY"
        assert result["state"] == "EM_EXPEDIENTE"
        assert result["case_date"] == "2024-01-02"
        assert result["flagged"] is False
        assert result["within_radius"] is None

        case = await db_session.get(Case, result["case_id"])
        assert case.case_type == "PRESENCE_DAY"
        assert case.entity_id == presence_setup["employee"].id
        assert case.title == "Ponto 2024-01-02"

        events = await TimelineRecorder().list_for_case(db_session, tenant.id, case.id)
        assert [e.event_type for e in events] == ["presence_punch"]

    async def test_day_boundary_uses_tenant_zone(self, db_session: AsyncSession, presence_setup):
        tenant = presence_setup["tenant"]
        svc = PresenceService()

        late = await svc.clock(db_session, tenant.id, "emp-1", now=datetime(2024, 1, 1, 23, 59, tzinfo=BRT))
        early = await svc.clock(db_session, tenant.id, "emp-1", now=datetime(2024, 1, 2, 0, 1, tzinfo=BRT))

        assert late["case_date"] == "2024-01-01"
        assert early["case_date"] == "2024-01-02"
        assert late["case_id"] != early["case_id"]
        assert early["punch_type"] == "ENTRY"

    async def test_employee_zone_overrides_tenant(self, db_session: AsyncSession, presence_setup, test_factory):
        tenant = presence_setup["tenant"]
        await test_factory.create_employee(db_session, tenant.id, user_id="emp-utc", time_zone="UTC")
        await db_session.commit()

        # 22:30 in Sao Paulo is already the next day in UTC
        result = await PresenceService().clock(db_session, tenant.id, "emp-utc", now=at(22, 30, day=2))

        assert result["case_date"] == "2024-01-03"

    async def test_same_day_reuses_case(self, db_session: AsyncSession, presence_setup):
        tenant = presence_setup["tenant"]
        first = await PresenceService().clock(db_session, tenant.id, "emp-1", now=at(8))
        second = await PresenceService().clock(db_session, tenant.id, "emp-1", now=at(12))

        assert first["case_id"] == second["case_id"]
        assert second["punch_type"] == "BREAK_START"
        assert second["state"] == "EM_INTERVALO"

    async def test_illegal_punch_is_rejected_without_changes(self, db_session: AsyncSession, presence_setup, rows):
        tenant = presence_setup["tenant"]
        svc = PresenceService()
        first = await svc.clock(db_session, tenant.id, "emp-1", now=at(8))

        with pytest.raises(PresenceRejected) as exc_info:
            await svc.clock(db_session, tenant.id, "emp-1", punch_type="BREAK_END", now=at(9))

        assert exc_info.value.code == "invalid_transition"
        assert exc_info.value.details["state"] == "EM_EXPEDIENTE"
        assert await rows(db_session, TimePunch, case_id=first["case_id"]) == 1
        case = await db_session.get(Case, first["case_id"])
        assert case.state == "EM_EXPEDIENTE"

    async def test_exit_without_break_when_not_required(self, db_session: AsyncSession, presence_setup, test_factory):
        tenant = presence_setup["tenant"]
        await test_factory.create_geofence(db_session, tenant.id, break_required=False)
        await db_session.commit()

        svc = PresenceService()
        await svc.clock(db_session, tenant.id, "emp-1", latitude=OFFICE[0], longitude=OFFICE[1], now=at(8))
        result = await svc.clock(db_session, tenant.id, "emp-1", latitude=OFFICE[0], longitude=OFFICE[1], now=at(17))

        assert result["punch_type"] == "EXIT"
        assert result["state"] == "PENDENTE_APROVACAO"

    async def test_non_member_is_forbidden(self, db_session: AsyncSession, presence_setup):
        with pytest.raises(ForbiddenError) as exc_info:
            await PresenceService().clock(db_session, presence_setup["tenant"].id, "stranger", now=at(8))
        assert exc_info.value.code == "not_a_member"

    async def test_presence_disabled_for_tenant(self, db_session: AsyncSession, test_factory):
        tenant = await test_factory.create_tenant(db_session)
        journey = await test_factory.create_journey(db_session, "presence")
        await test_factory.enable_journey(db_session, tenant.id, journey.id, config={"flags": {"presence_enabled": False}})
        await test_factory.create_employee(db_session, tenant.id, user_id="emp-1")
        await db_session.commit()

        with pytest.raises(ForbiddenError) as exc_info:
            await PresenceService().clock(db_session, tenant.id, "emp-1", now=at(8))
        assert exc_info.value.code == "presence_disabled"


@pytest.mark.integration
class TestGeofence:

    async def test_inside_radius(self, db_session: AsyncSession, presence_setup, test_factory):
        tenant = presence_setup["tenant"]
        await test_factory.create_geofence(db_session, tenant.id)
        await db_session.commit()

        result = await PresenceService().clock(db_session, tenant.id, "emp-1", latitude=OFFICE[0], longitude=OFFICE[1], now=at(8))

        assert result["within_radius"] is True
        assert result["distance_meters"] == 0.0
        assert result["flagged"] is False
        assert result["state"] == "EM_EXPEDIENTE"

    async def test_outside_radius_is_flagged(self, db_session: AsyncSession, presence_setup, test_factory):
        tenant = presence_setup["tenant"]
        await test_factory.create_geofence(db_session, tenant.id)
        await db_session.commit()
        svc = PresenceService()

        result = await svc.clock(db_session, tenant.id, "emp-1", latitude=-23.60, longitude=OFFICE[1], now=at(8))

        assert result["within_radius"] is False
        assert result["distance_meters"] > 100
        assert result["flagged"] is True
        assert result["reason"] == "outside_geofence"
        assert result["state"] == "PENDENTE_JUSTIFICATIVA"

        pendencies = await PendencyTracker().list_for_case(db_session, tenant.id, result["case_id"])
        assert [(p.type, p.assigned_to_role, p.status) for p in pendencies] == [("outside_geofence", "employee", "open")]

        # Flagged day keeps punching from where it left off and stays flagged
        following = await svc.clock(db_session, tenant.id, "emp-1", latitude=OFFICE[0], longitude=OFFICE[1], now=at(12))
        assert following["punch_type"] == "BREAK_START"
        assert following["state"] == "PENDENTE_JUSTIFICATIVA"

    async def test_missing_location_is_flagged(self, db_session: AsyncSession, presence_setup, test_factory):
        tenant = presence_setup["tenant"]
        await test_factory.create_geofence(db_session, tenant.id)
        await db_session.commit()

        result = await PresenceService().clock(db_session, tenant.id, "emp-1", now=at(8))

        assert result["flagged"] is True
        assert result["reason"] == "location_required"
        assert result["within_radius"] is False

    async def test_outside_radius_rejected_by_policy(self, db_session: AsyncSession, presence_setup, test_factory, rows):
        tenant = presence_setup["tenant"]
        await test_factory.create_geofence(db_session, tenant.id, allow_outside_radius=False)
        await db_session.commit()

        with pytest.raises(PresenceRejected) as exc_info:
            await PresenceService().clock(db_session, tenant.id, "emp-1", latitude=-23.60, longitude=OFFICE[1], now=at(8))

        assert exc_info.value.code == "outside_geofence"
        assert await rows(db_session, TimePunch) == 0


@pytest.mark.integration
class TestCloseDay:

    async def test_complete_day_closes_and_posts_ledger(self, db_session: AsyncSession, presence_setup, rows):
        tenant = presence_setup["tenant"]
        last = await punch_day(db_session, tenant.id, 2, [(8, 0), (12, 0), (13, 0), (17, 30)])
        assert last["state"] == "PENDENTE_APROVACAO"
        svc = PresenceService()

        result = await svc.close_day(db_session, tenant.id, "mgr-1", last["case_id"], note="ok")

        assert result["closed"] is True
        assert result["state"] == "FECHADO"
        assert result["worked_minutes"] == 510
        assert result["minutes_delta"] == 30
        assert result["balance_after"] == 30
        assert await rows(db_session, BankHourLedger, case_id=last["case_id"]) == 1

        events = await TimelineRecorder().list_for_case(db_session, tenant.id, last["case_id"])
        assert [e.event_type for e in events][-2:] == ["bank_hour_ledger_posted", "presence_close_attempt"]
        assert events[-1].meta_json["to"] == "FECHADO"

        with pytest.raises(ConflictError):
            await svc.close_day(db_session, tenant.id, "mgr-1", last["case_id"])
        with pytest.raises(PresenceRejected) as exc_info:
            await svc.clock(db_session, tenant.id, "emp-1", now=at(18))
        assert exc_info.value.code == "day_closed"
        assert await rows(db_session, BankHourLedger, case_id=last["case_id"]) == 1

    async def test_balance_runs_across_days(self, db_session: AsyncSession, presence_setup):
        tenant = presence_setup["tenant"]
        svc = PresenceService()
        day_one = await punch_day(db_session, tenant.id, 2, [(8, 0), (12, 0), (13, 0), (17, 30)])
        day_two = await punch_day(db_session, tenant.id, 3, [(8, 0), (12, 0), (13, 0), (16, 30)])

        await svc.close_day(db_session, tenant.id, "mgr-1", day_one["case_id"])
        result = await svc.close_day(db_session, tenant.id, "mgr-1", day_two["case_id"])

        assert result["minutes_delta"] == -30
        assert result["balance_after"] == 0

    async def test_ledger_insert_is_idempotent(self, db_session: AsyncSession, presence_setup):
        tenant = presence_setup["tenant"]
        day = await punch_day(db_session, tenant.id, 2, [(8, 0)])
        employee_id = presence_setup["employee"].id
        repo = PresenceRepository()

        assert await repo.insert_ledger_ignore(db_session, tenant.id, employee_id, day["case_id"], 10, 10) is True
        assert await repo.insert_ledger_ignore(db_session, tenant.id, employee_id, day["case_id"], 99, 99) is False
        entry = await repo.get_ledger_for_case(db_session, tenant.id, day["case_id"])
        assert entry.minutes_delta == 10

    async def test_missing_exit_opens_pendency(self, db_session: AsyncSession, presence_setup, rows):
        tenant = presence_setup["tenant"]
        day = await punch_day(db_session, tenant.id, 2, [(8, 0)])

        result = await PresenceService().close_day(db_session, tenant.id, "mgr-1", day["case_id"])

        assert result["closed"] is False
        assert result["missing"] == "missing_exit"
        assert result["state"] == "PENDENTE_JUSTIFICATIVA"
        pendencies = await PendencyTracker().list_for_case(db_session, tenant.id, day["case_id"])
        assert [(p.type, p.assigned_to_role) for p in pendencies] == [("missing_exit", "admin")]
        assert await rows(db_session, BankHourLedger) == 0

        # The employee can still finish the day
        following = await PresenceService().clock(db_session, tenant.id, "emp-1", now=at(12))
        assert following["punch_type"] == "BREAK_START"
        assert following["state"] == "PENDENTE_JUSTIFICATIVA"

    async def test_missing_break_when_required(self, db_session: AsyncSession, presence_setup):
        tenant = presence_setup["tenant"]
        svc = PresenceService()
        await svc.clock(db_session, tenant.id, "emp-1", now=at(8))
        day = await svc.clock(db_session, tenant.id, "emp-1", punch_type="EXIT", now=at(16))

        result = await svc.close_day(db_session, tenant.id, "mgr-1", day["case_id"])

        assert result["missing"] == "missing_break"

    async def test_only_managers_close(self, db_session: AsyncSession, presence_setup):
        tenant = presence_setup["tenant"]
        day = await punch_day(db_session, tenant.id, 2, [(8, 0)])

        with pytest.raises(ForbiddenError) as exc_info:
            await PresenceService().close_day(db_session, tenant.id, "emp-1", day["case_id"])
        assert exc_info.value.code == "not_a_manager"


@pytest.mark.integration
class TestPresenceAPI:

    async def test_clock_requires_token(self, client: AsyncClient, presence_setup):
        response = await client.post("/api/presence/clock", json={"tenantId": presence_setup["tenant"].id})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error"] == "missing_token"

    async def test_clock_rejects_bad_token(self, client: AsyncClient, presence_setup):
        response = await client.post(
            "/api/presence/clock",
            json={"tenantId": presence_setup["tenant"].id},
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error"] == "invalid_token"

    async def test_clock_success(self, client: AsyncClient, presence_setup, auth_headers):
        response = await client.post(
            "/api/presence/clock",
            json={"tenantId": presence_setup["tenant"].id, "latitude": OFFICE[0], "longitude": OFFICE[1], "accuracyMeters": 8},
            headers=auth_headers("emp-1"),
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["punch_type"] == "ENTRY"
        assert data["state"] == "EM_EXPEDIENTE"

    async def test_clock_source_is_always_app(self, client: AsyncClient, db_session: AsyncSession, presence_setup, auth_headers):
        response = await client.post(
            "/api/presence/clock",
            json={"tenantId": presence_setup["tenant"].id, "latitude": OFFICE[0], "longitude": OFFICE[1], "source": "WHATSAPP"},
            headers=auth_headers("emp-1"),
        )

        assert response.status_code == status.HTTP_200_OK
        punch = await db_session.get(TimePunch, response.json()["punch_id"])
        assert punch.source == "APP"

    async def test_clock_non_member(self, client: AsyncClient, presence_setup, auth_headers):
        response = await client.post(
            "/api/presence/clock",
            json={"tenantId": presence_setup["tenant"].id},
            headers=auth_headers("someone-else"),
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["error"] == "not_a_member"

    async def test_clock_illegal_transition(self, client: AsyncClient, presence_setup, auth_headers):
        response = await client.post(
            "/api/presence/clock",
            json={"tenantId": presence_setup["tenant"].id, "type": "BREAK_END"},
            headers=auth_headers("emp-1"),
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        body = response.json()
        assert body["error"] == "invalid_transition"
        assert body["detail"]["allowed"] == ["ENTRY"]

    async def test_clock_invalid_body(self, client: AsyncClient, presence_setup, auth_headers):
        response = await client.post(
            "/api/presence/clock", json={"latitude": 200}, headers=auth_headers("emp-1")
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "invalid_body"

    async def test_close_day_flow(self, client: AsyncClient, presence_setup, auth_headers):
        tenant_id = presence_setup["tenant"].id
        clock = await client.post("/api/presence/clock", json={"tenantId": tenant_id}, headers=auth_headers("emp-1"))
        case_id = clock.json()["case_id"]

        by_employee = await client.post(
            "/api/presence/close-day", json={"tenantId": tenant_id, "caseId": case_id}, headers=auth_headers("emp-1")
        )
        by_manager = await client.post(
            "/api/presence/close-day",
            json={"tenantId": tenant_id, "caseId": case_id, "note": "sem saída"},
            headers=auth_headers("mgr-1"),
        )

        assert by_employee.status_code == status.HTTP_403_FORBIDDEN
        assert by_manager.status_code == status.HTTP_200_OK
        data = by_manager.json()
        assert data["closed"] is False
        assert data["missing"] == "missing_exit"

    async def test_close_unknown_case(self, client: AsyncClient, presence_setup, auth_headers):
        response = await client.post(
            "/api/presence/close-day",
            json={"tenantId": presence_setup["tenant"].id, "caseId": 9999},
            headers=auth_headers("mgr-1"),
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error"] == "case_not_found"
