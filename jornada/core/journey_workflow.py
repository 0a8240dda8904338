"""
Journey transition tables for inbound chat events.
Maps (current state, event type) to the state hint and side effects the router applies.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

ANY_STATE = "*"
DEFAULT_STATE = "new"


class EventType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    LOCATION = "location"


class SideEffect(str, Enum):
    ATTACH_MEDIA = "attach_media"
    SEED_PENDENCIES = "seed_pendencies"
    UPSERT_LOCATION_FIELD = "upsert_location_field"
    ANSWER_NEED_LOCATION = "answer_need_location"
    ANSWER_OLDEST_VENDOR_PENDENCY = "answer_oldest_vendor_pendency"
    ENQUEUE_JOBS = "enqueue_jobs"


@dataclass(frozen=True)
class PendencySpec:
    type: str
    assigned_to_role: str
    question_text: str
    required: bool
    due_in: timedelta


@dataclass(frozen=True)
class JobSpec:
    """`recurring` jobs get a timestamp suffix on their idempotency key."""
    job_type: str
    recurring: bool = False


@dataclass(frozen=True)
class Transition:
    next_state_hint: Optional[str]
    timeline_event_type: str
    message: str
    creates_case: bool = False
    side_effects: Tuple[SideEffect, ...] = ()
    pendencies: Tuple[PendencySpec, ...] = ()
    jobs: Tuple[JobSpec, ...] = ()


@dataclass
class JourneyTable:
    journey_key: str
    case_type: str
    case_title: str
    transitions: Dict[Tuple[str, str], Transition] = field(default_factory=dict)

    def resolve(self, current_state: Optional[str], event_type: str) -> Optional[Transition]:
        """Exact state match first, then the wildcard row."""
        if current_state is not None:
            hit = self.transitions.get((current_state, event_type))
            if hit is not None:
                return hit
        return self.transitions.get((ANY_STATE, event_type))


def pick_initial_state(state_machine: Optional[Dict[str, Any]], hint: Optional[str]) -> str:
    """Hint if the journey declares it; else the journey default; else the first state."""
    machine = state_machine or {}
    states = [s for s in (machine.get("states") or []) if isinstance(s, str) and s]
    default = machine.get("default")
    if hint and hint in states:
        return hint
    if isinstance(default, str) and default in states:
        return default
    if states:
        return states[0]
    return default if isinstance(default, str) and default else DEFAULT_STATE


NEED_LOCATION = PendencySpec(
    type="need_location",
    assigned_to_role="vendor",
    question_text="Envie sua localização (WhatsApp: Compartilhar localização). Sem isso não conseguimos registrar o pedido.",
    required=True,
    due_in=timedelta(hours=4),
)

NEED_MORE_PAGES = PendencySpec(
    type="need_more_pages",
    assigned_to_role="vendor",
    question_text="Tem mais alguma folha desse pedido? Se sim, envie as próximas fotos. Se não, responda: última folha.",
    required=False,
    due_in=timedelta(minutes=10),
)

SALES_ORDER_STATE_MACHINE: Dict[str, Any] = {
    "states": [
        "new",
        "awaiting_ocr",
        "awaiting_location",
        "pending_vendor",
        "ready_for_review",
        "confirmed",
        "in_separation",
        "in_route",
        "delivered",
        "finalized",
    ],
    "default": "new",
}

OCR_IMAGE = "OCR_IMAGE"
VALIDATE_FIELDS = "VALIDATE_FIELDS"
ASK_PENDENCIES = "ASK_PENDENCIES"

_LOCATION_TRANSITION = Transition(
    next_state_hint="ready_for_review",
    timeline_event_type="wa_location_received",
    message="Localização recebida via WhatsApp.",
    side_effects=(SideEffect.UPSERT_LOCATION_FIELD, SideEffect.ANSWER_NEED_LOCATION),
)

SALES_ORDER_TABLE = JourneyTable(
    journey_key="sales_order",
    case_type="order",
    case_title="Pedido (foto recebida)",
    transitions={
        (ANY_STATE, EventType.IMAGE.value): Transition(
            next_state_hint="awaiting_ocr",
            timeline_event_type="wa_image_received",
            message="Foto do pedido recebida. Iniciando OCR e validações.",
            creates_case=True,
            side_effects=(SideEffect.ATTACH_MEDIA, SideEffect.SEED_PENDENCIES, SideEffect.ENQUEUE_JOBS),
            pendencies=(NEED_LOCATION, NEED_MORE_PAGES),
            jobs=(JobSpec(OCR_IMAGE), JobSpec(VALIDATE_FIELDS), JobSpec(ASK_PENDENCIES, recurring=True)),
        ),
        (ANY_STATE, EventType.LOCATION.value): _LOCATION_TRANSITION,
        (ANY_STATE, EventType.TEXT.value): Transition(
            next_state_hint=None,
            timeline_event_type="vendor_reply",
            message="Mensagem do vendedor recebida.",
            side_effects=(SideEffect.ANSWER_OLDEST_VENDOR_PENDENCY, SideEffect.ENQUEUE_JOBS),
            jobs=(JobSpec(VALIDATE_FIELDS, recurring=True), JobSpec(ASK_PENDENCIES, recurring=True)),
        ),
        (ANY_STATE, EventType.AUDIO.value): Transition(
            next_state_hint=None,
            timeline_event_type="vendor_reply",
            message="Mensagem do vendedor recebida (áudio).",
            side_effects=(SideEffect.ANSWER_OLDEST_VENDOR_PENDENCY, SideEffect.ENQUEUE_JOBS),
            jobs=(JobSpec(VALIDATE_FIELDS, recurring=True), JobSpec(ASK_PENDENCIES, recurring=True)),
        ),
    },
)

GENERIC_TABLE = JourneyTable(
    journey_key="*",
    case_type="generic",
    case_title="Imagem recebida",
    transitions={
        (ANY_STATE, EventType.IMAGE.value): Transition(
            next_state_hint="awaiting_ocr",
            timeline_event_type="wa_image_received",
            message="Imagem recebida via WhatsApp.",
            creates_case=True,
            side_effects=(SideEffect.ATTACH_MEDIA,),
        ),
        (ANY_STATE, EventType.LOCATION.value): _LOCATION_TRANSITION,
        (ANY_STATE, EventType.TEXT.value): Transition(
            next_state_hint=None,
            timeline_event_type="vendor_reply",
            message="Mensagem do vendedor recebida.",
        ),
        (ANY_STATE, EventType.AUDIO.value): Transition(
            next_state_hint=None,
            timeline_event_type="vendor_reply",
            message="Mensagem do vendedor recebida (áudio).",
        ),
    },
)

_REGISTRY: Dict[str, JourneyTable] = {}


def register_journey_table(table: JourneyTable) -> None:
    if table.journey_key in _REGISTRY:
        logger.info("Replacing transition table for journey %s", table.journey_key)
    _REGISTRY[table.journey_key] = table


def table_for(journey_key: str) -> JourneyTable:
    return _REGISTRY.get(journey_key, GENERIC_TABLE)


def registered_journeys() -> List[str]:
    return sorted(_REGISTRY)


register_journey_table(SALES_ORDER_TABLE)
