"""
Unit tests for inbound payload normalization.
Covers phone canonicalization, event type inference and Z-API payload shapes.
"""

import pytest

from jornada.core.normalizer import (
    AudioEvent,
    GeoPoint,
    ImageEvent,
    LocationEvent,
    TextEvent,
    classify_type,
    normalize_inbound,
    normalize_phone,
)


@pytest.mark.unit
class TestNormalizePhone:
    """Phone numbers collapse to one canonical form per subscriber."""

    def test_national_and_international_forms_match(self):
        assert normalize_phone("11 99999-8888") == "+5511999998888"
        assert normalize_phone("+55 (11) 99999-8888") == "+5511999998888"
        assert normalize_phone("5511999998888") == "+5511999998888"

    def test_trunk_and_international_prefixes_are_stripped(self):
        assert normalize_phone("011 99999-8888") == "+5511999998888"
        assert normalize_phone("005511999998888") == "+5511999998888"

    def test_landline_gets_country_code(self):
        assert normalize_phone("(11) 3333-4444") == "+551133334444"

    def test_custom_country_code(self):
        assert normalize_phone("2025550123", default_country_code="1") == "+12025550123"

    def test_explicit_international_number_keeps_its_country(self):
        assert normalize_phone("+1 415 555 0100") == "+14155550100"
        assert normalize_phone("0014155550100") == "+14155550100"

    def test_empty_values(self):
        assert normalize_phone(None) is None
        assert normalize_phone("") is None
        assert normalize_phone("abc") is None

    def test_numeric_input(self):
        assert normalize_phone(5511999998888) == "+5511999998888"


@pytest.mark.unit
class TestClassifyType:

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("image", "image"),
            ("ImageMessage", "image"),
            ("photo", "image"),
            ("audio", "audio"),
            ("ptt", "audio"),
            ("location", "location"),
            ("LocationMessage", "location"),
            ("text", "text"),
            ("ReceivedCallback", "text"),
            (None, "text"),
        ],
    )
    def test_classify(self, raw, expected):
        assert classify_type(raw) == expected


@pytest.mark.unit
class TestNormalizeInbound:

    def test_flat_image_payload(self):
        event = normalize_inbound({
            "instanceId": "inst-1",
            "type": "image",
            "from": "11 99999-8888",
            "mediaUrl": "https://cdn.example/p.jpg",
        })
        assert isinstance(event, ImageEvent)
        assert event.event_type == "image"
        assert event.instance_id == "inst-1"
        assert event.from_phone == "+5511999998888"
        assert event.media_url == "https://cdn.example/p.jpg"
        assert event.location is None

    def test_zapi_received_callback_image(self):
        """Type comes from the nested media object when the top-level type is generic."""
        event = normalize_inbound({
            "instanceId": "inst-1",
            "type": "ReceivedCallback",
            "phone": "5511999998888",
            "senderName": "Joana",
            "image": {
                "imageUrl": "https://cdn.example/z.jpg",
                "caption": "pedido 12",
                "mimeType": "image/jpeg",
            },
        })
        assert isinstance(event, ImageEvent)
        assert event.media_url == "https://cdn.example/z.jpg"
        assert event.text == "pedido 12"
        assert event.mime_type == "image/jpeg"
        assert event.sender_name == "Joana"

    def test_zapi_text_message_object(self):
        event = normalize_inbound({
            "instanceId": "inst-1",
            "type": "ReceivedCallback",
            "phone": "5511999998888",
            "text": {"message": "ok, segue"},
        })
        assert isinstance(event, TextEvent)
        assert event.text == "ok, segue"

    def test_zapi_audio(self):
        event = normalize_inbound({
            "instanceId": "inst-1",
            "phone": "5511999998888",
            "audio": {"audioUrl": "https://cdn.example/a.ogg"},
        })
        assert isinstance(event, AudioEvent)
        assert event.media_url == "https://cdn.example/a.ogg"

    def test_location_with_nested_coordinates(self):
        event = normalize_inbound({
            "instanceId": "inst-1",
            "phone": "5511999998888",
            "location": {"latitude": -23.5, "longitude": "-46.6"},
        })
        assert isinstance(event, LocationEvent)
        assert event.location == GeoPoint(lat=-23.5, lng=-46.6)
        assert event.location.as_text() == "-23.5,-46.6"

    def test_location_without_coordinates(self):
        event = normalize_inbound({"instanceId": "inst-1", "type": "location", "from": "5511999998888"})
        assert isinstance(event, LocationEvent)
        assert event.location is None

    def test_coordinates_ignored_for_text(self):
        event = normalize_inbound({"instanceId": "inst-1", "type": "text", "latitude": 1, "longitude": 2})
        assert event.location is None

    def test_nested_data_fallbacks(self):
        event = normalize_inbound({
            "data": {"instanceId": "inst-9", "type": "text", "from": "11988887777", "body": "oi"},
        })
        assert event.instance_id == "inst-9"
        assert event.from_phone == "+5511988887777"
        assert event.text == "oi"

    def test_blank_strings_fall_through(self):
        event = normalize_inbound({"instanceId": "  ", "instance_id": "inst-2", "type": "text", "text": ""})
        assert event.instance_id == "inst-2"
        assert event.text is None

    def test_missing_everything(self):
        event = normalize_inbound({})
        assert isinstance(event, TextEvent)
        assert event.instance_id is None
        assert event.from_phone is None
