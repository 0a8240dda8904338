"""
Presence day workflow: punch transitions, punch-type inference and geofence math.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from jornada.core.exceptions import PresenceRejected

logger = logging.getLogger(__name__)

PRESENCE_CASE_TYPE = "PRESENCE_DAY"
EARTH_RADIUS_METERS = 6371000.0
MANAGER_ROLES = frozenset({"admin", "manager", "supervisor", "leader"})


class PresenceState(str, Enum):
    AGUARDANDO_ENTRADA = "AGUARDANDO_ENTRADA"
    EM_EXPEDIENTE = "EM_EXPEDIENTE"
    EM_INTERVALO = "EM_INTERVALO"
    AGUARDANDO_SAIDA = "AGUARDANDO_SAIDA"
    PENDENTE_JUSTIFICATIVA = "PENDENTE_JUSTIFICATIVA"
    PENDENTE_APROVACAO = "PENDENTE_APROVACAO"
    FECHADO = "FECHADO"
    AJUSTADO = "AJUSTADO"


class PunchType(str, Enum):
    ENTRY = "ENTRY"
    BREAK_START = "BREAK_START"
    BREAK_END = "BREAK_END"
    EXIT = "EXIT"


FLAG_STATES = frozenset({PresenceState.PENDENTE_JUSTIFICATIVA, PresenceState.PENDENTE_APROVACAO})
TERMINAL_STATES = frozenset({PresenceState.FECHADO, PresenceState.AJUSTADO})

PRESENCE_STATE_MACHINE: Dict[str, Any] = {
    "states": [s.value for s in PresenceState],
    "default": PresenceState.AGUARDANDO_ENTRADA.value,
}


@dataclass(frozen=True)
class PunchTransition:
    from_state: PresenceState
    punch_type: PunchType
    to_state: PresenceState


class PresenceWorkflowEngine:
    """Validates punches against the day's operational state."""

    VALID_TRANSITIONS: List[PunchTransition] = [
        PunchTransition(PresenceState.AGUARDANDO_ENTRADA, PunchType.ENTRY, PresenceState.EM_EXPEDIENTE),
        PunchTransition(PresenceState.EM_EXPEDIENTE, PunchType.BREAK_START, PresenceState.EM_INTERVALO),
        PunchTransition(PresenceState.EM_EXPEDIENTE, PunchType.EXIT, PresenceState.PENDENTE_APROVACAO),
        PunchTransition(PresenceState.EM_INTERVALO, PunchType.BREAK_END, PresenceState.AGUARDANDO_SAIDA),
        PunchTransition(PresenceState.AGUARDANDO_SAIDA, PunchType.EXIT, PresenceState.PENDENTE_APROVACAO),
    ]

    def __init__(self):
        self._build_transition_map()

    def _build_transition_map(self) -> None:
        self.transition_map: Dict[PresenceState, Dict[PunchType, PresenceState]] = {}
        for transition in self.VALID_TRANSITIONS:
            self.transition_map.setdefault(transition.from_state, {})[transition.punch_type] = transition.to_state

    @staticmethod
    def operational_state(state: str, meta: Optional[Dict[str, Any]]) -> PresenceState:
        """A flagged day keeps punching from the state stored in `meta.presence.resume_state`."""
        current = PresenceState(state)
        if current in FLAG_STATES:
            resume = ((meta or {}).get("presence") or {}).get("resume_state")
            if resume:
                return PresenceState(resume)
        return current

    def infer_punch_type(self, operational: PresenceState, break_required: bool = True) -> Optional[PunchType]:
        if operational == PresenceState.AGUARDANDO_ENTRADA:
            return PunchType.ENTRY
        if operational == PresenceState.EM_EXPEDIENTE:
            return PunchType.BREAK_START if break_required else PunchType.EXIT
        if operational == PresenceState.EM_INTERVALO:
            return PunchType.BREAK_END
        if operational == PresenceState.AGUARDANDO_SAIDA:
            return PunchType.EXIT
        return None

    def validate_transition(
        self, state: str, operational: PresenceState, punch_type: Optional[PunchType]
    ) -> PresenceState:
        """
        Return the next operational state for `punch_type`.

        Raises:
            PresenceRejected: day already closed or punch illegal from the current state.
        """
        if PresenceState(state) in TERMINAL_STATES:
            raise PresenceRejected(
                "Presence day is already closed",
                {"state": state},
                code="day_closed",
            )
        allowed = self.transition_map.get(operational, {})
        next_state = allowed.get(punch_type) if punch_type is not None else None
        if next_state is None:
            label = punch_type.value if punch_type is not None else "punch"
            raise PresenceRejected(
                f"{label} is not allowed while {operational.value}",
                {
                    "state": operational.value,
                    "punch_type": punch_type.value if punch_type is not None else None,
                    "allowed": sorted(p.value for p in allowed),
                },
                code="invalid_transition",
            )
        return next_state


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(a))
