"""
Unit tests for core models
"""

import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from branchchat.core.models import (
    AiProvider, ApiKey, AppSettings, Conversation, Message, KNOWN_PROVIDERS,
    format_datetime, parse_datetime, parse_uuid, utc_now,
)


T0 = datetime(2024, 3, 1, 12, 0, 0, 250000, tzinfo=timezone.utc)
PLUS_TWO = timezone(timedelta(hours=2))


class TestDatetimeCodec:
    """Test datetime encoding and decoding"""

    @pytest.mark.unit
    def test_format_milliseconds_utc(self):
        assert format_datetime(T0) == "2024-03-01T12:00:00.250Z"

    @pytest.mark.unit
    def test_format_converts_offset_to_utc(self):
        local = datetime(2024, 3, 1, 14, 0, 0, tzinfo=PLUS_TWO)
        assert format_datetime(local) == "2024-03-01T12:00:00.000Z"

    @pytest.mark.unit
    def test_format_none(self):
        assert format_datetime(None) is None

    @pytest.mark.unit
    def test_parse_z_suffix(self):
        parsed = parse_datetime("2024-03-01T12:00:00.250Z")
        assert parsed == T0
        assert parsed.tzinfo == timezone.utc

    @pytest.mark.unit
    def test_parse_forces_utc_for_offset(self):
        """An embedded offset is converted, the result is always UTC"""
        parsed = parse_datetime("2024-03-01T14:00:00.250+02:00")
        assert parsed == T0
        assert parsed.tzinfo == timezone.utc
        assert parsed.hour == 12

    @pytest.mark.unit
    def test_parse_naive_read_as_utc(self):
        parsed = parse_datetime("2024-03-01T12:00:00.250")
        assert parsed == T0
        assert parsed.tzinfo == timezone.utc

    @pytest.mark.unit
    @pytest.mark.parametrize("value", [
        "", "   ", "not a date", "2024-13-45T99:00:00", None, 12345, {},
        "0001-01-01T00:00:00+01:00", "9999-12-31T23:59:59-01:00",
    ])
    def test_parse_malformed_is_unset(self, value):
        assert parse_datetime(value) is None

    @pytest.mark.unit
    def test_utc_now_is_millisecond_precision(self):
        now = utc_now()
        assert now.tzinfo == timezone.utc
        assert now.microsecond % 1000 == 0


class TestUuidCodec:
    """Test UUID parsing"""

    @pytest.mark.unit
    def test_canonical(self):
        value = uuid.uuid4()
        assert parse_uuid(str(value)) == value

    @pytest.mark.unit
    def test_braces_and_case(self):
        value = uuid.uuid4()
        assert parse_uuid("{" + str(value).upper() + "}") == value

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["", "abc", "1234", None, 42, [],
                                       "00000000-0000-0000-0000-000000000000"])
    def test_malformed_is_null(self, value):
        assert parse_uuid(value) is None


class TestAiProviderAndApiKey:
    """Test reference data and key records"""

    @pytest.mark.unit
    def test_provider_roundtrip(self):
        provider = AiProvider(id="openai", name="OpenAI")
        assert provider.to_dict() == {"id": "openai", "name": "OpenAI"}
        assert AiProvider.from_dict(provider.to_dict()) == provider

    @pytest.mark.unit
    def test_known_providers_unique(self):
        ids = [p.id for p in KNOWN_PROVIDERS]
        assert len(ids) == len(set(ids))

    @pytest.mark.unit
    def test_api_key_wire_names(self):
        key = ApiKey(provider_id="gemini", key="sk-123")
        assert key.to_dict() == {"providerId": "gemini", "key": "sk-123"}
        assert ApiKey.from_dict(key.to_dict()) == key

    @pytest.mark.unit
    def test_api_key_missing_fields(self):
        assert ApiKey.from_dict({}) == ApiKey(provider_id="", key="")


class TestMessage:
    """Test Message model"""

    @pytest.mark.unit
    def test_ids_generated_and_unique(self):
        a, b = Message(), Message()
        assert isinstance(a.id, uuid.UUID)
        assert a.id != b.id
        assert a.is_root

    @pytest.mark.unit
    def test_to_dict(self, sample_message):
        data = sample_message.to_dict()
        assert data == {
            "id": "00000000-0000-0000-0000-000000000001",
            "parentId": None,
            "role": "user",
            "content": "Hello, how are you?",
            "timestamp": "2024-03-01T12:00:00.250Z",
            "providerId": "",
        }

    @pytest.mark.unit
    def test_null_parent_is_explicit(self, sample_message):
        data = sample_message.to_dict()
        assert "parentId" in data
        assert data["parentId"] is None
        assert '"parentId": null' in json.dumps(data)

    @pytest.mark.unit
    def test_roundtrip_root_and_child(self):
        root = Message(role="user", content="hi", timestamp=T0)
        child = Message(parent_id=root.id, role="assistant", content="hello",
                        timestamp=T0, provider_id="openai")
        assert Message.from_dict(root.to_dict()) == root
        assert Message.from_dict(child.to_dict()) == child

    @pytest.mark.unit
    def test_roundtrip_non_utc_timestamp(self):
        """A timestamp with a +02:00 offset comes back as the same instant in UTC"""
        msg = Message(content="x", timestamp=datetime(2024, 1, 1, 10, 0, 0, 5000, tzinfo=PLUS_TWO))
        decoded = Message.from_dict(msg.to_dict())
        assert decoded == msg
        assert decoded.timestamp.tzinfo == timezone.utc
        assert decoded.timestamp.hour == 8

    @pytest.mark.unit
    def test_timestamp_truncated_to_milliseconds(self):
        msg = Message(timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc).replace(microsecond=123456))
        assert msg.timestamp.microsecond == 123000

    @pytest.mark.unit
    def test_from_dict_malformed_fields(self):
        msg = Message.from_dict({
            "id": "not-a-uuid",
            "parentId": "also-bad",
            "role": 7,
            "timestamp": "yesterday",
        })
        assert msg.id is None
        assert msg.parent_id is None
        assert msg.role == ""
        assert msg.content == ""
        assert msg.timestamp is None
        assert msg.provider_id == ""

    @pytest.mark.unit
    def test_from_dict_not_an_object(self):
        msg = Message.from_dict(["garbage"])
        assert msg.id is None


class TestConversation:
    """Test Conversation model"""

    @pytest.mark.unit
    def test_construction_defaults(self):
        conv = Conversation()
        assert isinstance(conv.id, uuid.UUID)
        assert conv.created_at is not None
        assert conv.created_at.tzinfo == timezone.utc
        assert conv.last_modified_at == conv.created_at
        assert conv.messages == []
        assert conv.is_valid

    @pytest.mark.unit
    def test_new_defaults_title(self):
        conv = Conversation.new()
        assert conv.title == "New Conversation"
        assert conv.created_at == conv.last_modified_at

    @pytest.mark.unit
    def test_display_title_fallback(self):
        assert Conversation(title="").display_title == "Untitled Conversation"
        assert Conversation(title="Trip").display_title == "Trip"

    @pytest.mark.unit
    def test_roundtrip(self, sample_conversation):
        data = sample_conversation.to_dict()
        assert Conversation.from_dict(data) == sample_conversation
        # survives real JSON text too
        assert Conversation.from_dict(json.loads(json.dumps(data))) == sample_conversation

    @pytest.mark.unit
    def test_roundtrip_empty_messages(self):
        conv = Conversation(title="Empty", created_at=T0)
        data = conv.to_dict()
        assert data["messages"] == []
        assert Conversation.from_dict(data) == conv

    @pytest.mark.unit
    def test_wire_keys(self, sample_conversation):
        data = sample_conversation.to_dict()
        assert set(data) == {"id", "title", "createdAt", "lastModifiedAt", "messages"}
        assert data["id"] == "00000000-0000-0000-0000-000000000064"
        assert data["createdAt"] == "2024-03-01T12:00:00.250Z"

    @pytest.mark.unit
    def test_from_dict_missing_everything(self):
        conv = Conversation.from_dict({})
        assert conv.id is None
        assert not conv.is_valid
        assert conv.title == ""
        assert conv.created_at is None
        assert conv.messages == []

    @pytest.mark.unit
    def test_from_dict_messages_not_a_list(self):
        conv = Conversation.from_dict({"id": str(uuid.uuid4()), "messages": "oops"})
        assert conv.messages == []

    @pytest.mark.unit
    def test_add_message_updates_last_modified(self, sample_conversation):
        before = sample_conversation.last_modified_at
        msg = sample_conversation.add_message("user", "Another question",
                                              parent_id=uuid.UUID(int=4))
        assert sample_conversation.messages[-1] is msg
        assert msg.parent_id == uuid.UUID(int=4)
        assert sample_conversation.last_modified_at > before

    @pytest.mark.unit
    def test_add_root_message(self):
        conv = Conversation()
        msg = conv.add_message("system", "Be brief")
        assert msg.is_root
        assert conv.get_message(msg.id) is msg

    @pytest.mark.unit
    def test_add_message_unknown_parent(self, sample_conversation):
        with pytest.raises(ValueError):
            sample_conversation.add_message("user", "x", parent_id=uuid.uuid4())
        assert len(sample_conversation.messages) == 4


class TestAppSettings:
    """Test AppSettings model"""

    @pytest.mark.unit
    def test_defaults(self):
        settings = AppSettings()
        assert settings.schema_version == 1
        assert settings.api_keys == []
        assert settings.conversation_order == []

    @pytest.mark.unit
    def test_to_dict_defaults(self):
        assert AppSettings().to_dict() == {
            "schemaVersion": 1,
            "apiKeys": [],
            "conversationOrder": [],
        }

    @pytest.mark.unit
    def test_roundtrip(self):
        settings = AppSettings(
            schema_version=1,
            api_keys=[ApiKey("openai", "sk-a"), ApiKey("gemini", "g-b")],
            conversation_order=[uuid.uuid4(), uuid.uuid4()],
        )
        assert AppSettings.from_dict(settings.to_dict()) == settings
        assert AppSettings.from_dict(AppSettings().to_dict()) == AppSettings()

    @pytest.mark.unit
    def test_missing_fields_take_defaults(self):
        assert AppSettings.from_dict({}) == AppSettings()

    @pytest.mark.unit
    @pytest.mark.parametrize("version", ["2", None, True, [1], 1.5, float("inf"), float("nan")])
    def test_bad_schema_version(self, version):
        assert AppSettings.from_dict({"schemaVersion": version}).schema_version == 1

    @pytest.mark.unit
    def test_schema_version_preserved(self):
        assert AppSettings.from_dict({"schemaVersion": 3}).schema_version == 3
        assert AppSettings.from_dict({"schemaVersion": 2.0}).schema_version == 2

    @pytest.mark.unit
    def test_order_drops_malformed_and_duplicates(self):
        a, b = uuid.uuid4(), uuid.uuid4()
        settings = AppSettings.from_dict({
            "conversationOrder": [str(a), "bogus", str(b), str(a), None]
        })
        assert settings.conversation_order == [a, b]

    @pytest.mark.unit
    def test_api_key_slots(self):
        settings = AppSettings()
        assert settings.get_api_key("openai") is None
        settings.set_api_key("openai", "first")
        settings.set_api_key("openai", "second")
        assert settings.get_api_key("openai") == "second"
        assert len(settings.api_keys) == 1
        assert settings.remove_api_key("openai")
        assert not settings.remove_api_key("openai")

    @pytest.mark.unit
    def test_prepend_keeps_ids_unique(self):
        a, b = uuid.uuid4(), uuid.uuid4()
        settings = AppSettings(conversation_order=[a, b])
        settings.prepend_conversation(b)
        assert settings.conversation_order == [b, a]
        assert settings.remove_conversation(a)
        assert not settings.remove_conversation(a)
