"""
Inbound payload normalization for chat-provider webhooks.

Provider payloads are untyped and vary between Z-API callback versions. Each
logical field is read by an ordered list of extractors (most specific path
first); the first one that yields a usable value wins. The result is a
fixed-shape event, one class per message type.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Optional, Sequence, Union

Extractor = Callable[[Dict[str, Any]], Any]

_NON_DIGITS = re.compile(r"\D+")


def normalize_phone(value: Any, default_country_code: str = "55") -> Optional[str]:
    """Canonical ``+<digits>`` form used as the actor uniqueness key.

    ``"11 99999-8888"`` and ``"+5511999998888"`` both become ``"+5511999998888"``.
    """
    if value is None:
        return None
    raw = str(value).strip()
    digits = _NON_DIGITS.sub("", raw)
    international = raw.startswith("+") or digits.startswith("00")
    if digits.startswith("00"):
        digits = digits[2:]
    elif digits.startswith("0"):
        digits = digits[1:]
    if not digits:
        return None
    # National number (area code + subscriber) without country prefix
    if not international and len(digits) in (10, 11) and default_country_code:
        digits = f"{default_country_code}{digits}"
    return f"+{digits}"


def classify_type(raw: Any) -> str:
    value = str(raw or "").lower()
    if "image" in value or "photo" in value:
        return "image"
    if "audio" in value or "ptt" in value:
        return "audio"
    if "location" in value:
        return "location"
    return "text"


def path(*keys: str) -> Extractor:
    """Extractor that walks nested dicts and returns None on any miss."""

    def _extract(payload: Dict[str, Any]) -> Any:
        node: Any = payload
        for key in keys:
            if not isinstance(node, dict):
                return None
            node = node.get(key)
        return node

    return _extract


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def pick_first(payload: Dict[str, Any], extractors: Sequence[Extractor], coerce=_as_str) -> Any:
    for extract in extractors:
        value = coerce(extract(payload))
        if value is not None:
            return value
    return None


INSTANCE_ID: List[Extractor] = [path("instanceId"), path("instance_id"), path("instance"), path("data", "instanceId")]
TYPE: List[Extractor] = [path("type"), path("messageType"), path("data", "type"), path("data", "messageType"), path("message", "type")]
FROM: List[Extractor] = [path("from"), path("data", "from"), path("sender", "phone"), path("phone"), path("data", "phone")]
TO: List[Extractor] = [path("to"), path("data", "to"), path("connectedPhone")]
TEXT: List[Extractor] = [
    path("text"), path("text", "message"), path("body"), path("message"),
    path("data", "text"), path("data", "body"), path("data", "message"),
    path("image", "caption"),
]
MEDIA_URL: List[Extractor] = [
    path("mediaUrl"), path("media_url"), path("url"),
    path("data", "mediaUrl"), path("data", "url"), path("data", "media_url"),
    path("image", "imageUrl"), path("audio", "audioUrl"), path("document", "documentUrl"),
]
LATITUDE: List[Extractor] = [
    path("latitude"), path("lat"), path("data", "latitude"),
    path("location", "latitude"), path("data", "location", "latitude"),
]
LONGITUDE: List[Extractor] = [
    path("longitude"), path("lng"), path("data", "longitude"),
    path("location", "longitude"), path("data", "location", "longitude"),
]
SENDER_NAME: List[Extractor] = [path("senderName"), path("sender", "name"), path("chatName")]
FILE_NAME: List[Extractor] = [path("fileName"), path("file_name"), path("document", "fileName")]
MIME_TYPE: List[Extractor] = [path("mimeType"), path("mime_type"), path("image", "mimeType"), path("audio", "mimeType")]

# Z-API "ReceivedCallback" carries the media kind as a nested object
_MEDIA_OBJECTS = ("image", "audio", "location")


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float

    def as_text(self) -> str:
        return f"{self.lat},{self.lng}"


@dataclass(frozen=True)
class _InboundEvent:
    instance_id: Optional[str]
    from_phone: Optional[str]
    to_phone: Optional[str]
    text: Optional[str] = None
    media_url: Optional[str] = None
    location: Optional[GeoPoint] = None
    sender_name: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    event_type: ClassVar[str] = "text"


@dataclass(frozen=True)
class TextEvent(_InboundEvent):
    event_type: ClassVar[str] = "text"


@dataclass(frozen=True)
class ImageEvent(_InboundEvent):
    event_type: ClassVar[str] = "image"


@dataclass(frozen=True)
class AudioEvent(_InboundEvent):
    event_type: ClassVar[str] = "audio"


@dataclass(frozen=True)
class LocationEvent(_InboundEvent):
    event_type: ClassVar[str] = "location"


InboundEvent = Union[TextEvent, ImageEvent, AudioEvent, LocationEvent]

_EVENT_CLASSES = {
    "text": TextEvent,
    "image": ImageEvent,
    "audio": AudioEvent,
    "location": LocationEvent,
}


def infer_type(payload: Dict[str, Any]) -> str:
    kind = classify_type(pick_first(payload, TYPE))
    if kind != "text":
        return kind
    for name in _MEDIA_OBJECTS:
        if isinstance(payload.get(name), dict):
            return name
    return kind


def normalize_inbound(payload: Dict[str, Any], default_country_code: str = "55") -> InboundEvent:
    """Build the canonical event for a provider payload. Pure; no I/O."""
    kind = infer_type(payload)

    location = None
    if kind == "location":
        lat = pick_first(payload, LATITUDE, coerce=_as_float)
        lng = pick_first(payload, LONGITUDE, coerce=_as_float)
        if lat is not None and lng is not None:
            location = GeoPoint(lat=lat, lng=lng)

    return _EVENT_CLASSES[kind](
        instance_id=pick_first(payload, INSTANCE_ID),
        from_phone=normalize_phone(pick_first(payload, FROM), default_country_code),
        to_phone=normalize_phone(pick_first(payload, TO), default_country_code),
        text=pick_first(payload, TEXT),
        media_url=pick_first(payload, MEDIA_URL),
        location=location,
        sender_name=pick_first(payload, SENDER_NAME),
        file_name=pick_first(payload, FILE_NAME),
        mime_type=pick_first(payload, MIME_TYPE),
        raw=payload,
    )
