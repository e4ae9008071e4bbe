"""
Core data models for conversation storage

Every entity has a to_dict/from_dict pair producing the JSON records that
are written to disk. Decoding never raises on bad input: malformed UUIDs
decode to None (the null identifier) and malformed datetimes to None
(unset), so callers check for those instead of catching exceptions.
"""

from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import math
import uuid

from .constants import (
    DEFAULT_CONVERSATION_TITLE,
    SCHEMA_VERSION,
    UNTITLED_CONVERSATION_TITLE,
)

logger = logging.getLogger(__name__)


# --- Codec helpers ---

def utc_now() -> datetime:
    """Current UTC time truncated to millisecond precision"""
    return normalize_datetime(datetime.now(timezone.utc))


def normalize_datetime(value: Optional[datetime]) -> Optional[datetime]:
    """
    Convert to an aware UTC datetime with millisecond precision

    Naive datetimes are taken to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """
    Encode a datetime as ISO-8601 with milliseconds in UTC

    Examples:
        >>> format_datetime(datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc))
        '2024-01-02T03:04:05.678Z'
    """
    value = normalize_datetime(value)
    if value is None:
        return None
    return value.strftime('%Y-%m-%dT%H:%M:%S.') + f"{value.microsecond // 1000:03d}Z"


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Decode an ISO-8601 string, forcing the result to UTC

    An embedded offset is honoured and the instant converted to UTC; a
    string without offset is read as UTC. Anything unparsable gives None.
    """
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text[-1] in ('Z', 'z'):
        text = text[:-1] + '+00:00'

    try:
        # Shifting an edge-of-range instant to UTC can leave datetime's range
        return normalize_datetime(datetime.fromisoformat(text))
    except (ValueError, OverflowError):
        return None


def parse_uuid(value: Any) -> Optional[uuid.UUID]:
    """
    Decode a UUID string, with or without braces

    Returns None for missing, malformed or all-zero identifiers.
    """
    if isinstance(value, uuid.UUID):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.startswith('{') and text.endswith('}'):
            text = text[1:-1]
        try:
            parsed = uuid.UUID(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.int == 0:
        return None
    return parsed


def format_uuid(value: Optional[uuid.UUID]) -> Optional[str]:
    """Canonical hyphenated form without braces, or None"""
    return str(value) if value is not None else None


def _as_str(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


# --- Entities ---

@dataclass
class AiProvider:
    """An AI backend such as OpenAI or Gemini"""
    id: str = ""
    name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {'id': self.id, 'name': self.name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AiProvider':
        """Create from dictionary"""
        data = _as_dict(data)
        return cls(id=_as_str(data.get('id')), name=_as_str(data.get('name')))


KNOWN_PROVIDERS = (
    AiProvider(id="openai", name="OpenAI"),
    AiProvider(id="gemini", name="Google Gemini"),
    AiProvider(id="anthropic", name="Anthropic"),
)


@dataclass
class ApiKey:
    """
    API key for one provider slot

    WARNING: keys are stored in plaintext in the settings file. There is
    no encryption at rest.
    """
    provider_id: str = ""
    key: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {'providerId': self.provider_id, 'key': self.key}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ApiKey':
        """Create from dictionary"""
        data = _as_dict(data)
        return cls(provider_id=_as_str(data.get('providerId')), key=_as_str(data.get('key')))


@dataclass
class Message:
    """A single turn in a conversation, linked to its predecessor by parent_id"""
    id: Optional[uuid.UUID] = field(default_factory=uuid.uuid4)
    parent_id: Optional[uuid.UUID] = None
    role: str = "user"
    content: str = ""
    timestamp: Optional[datetime] = field(default_factory=utc_now)
    provider_id: str = ""

    def __post_init__(self):
        self.timestamp = normalize_datetime(self.timestamp)

    @property
    def is_root(self) -> bool:
        """True if this message starts a branch"""
        return self.parent_id is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'id': format_uuid(self.id),
            'parentId': format_uuid(self.parent_id),
            'role': self.role,
            'content': self.content,
            'timestamp': format_datetime(self.timestamp),
            'providerId': self.provider_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Message':
        """Create from dictionary"""
        data = _as_dict(data)
        return cls(
            id=parse_uuid(data.get('id')),
            parent_id=parse_uuid(data.get('parentId')),
            role=_as_str(data.get('role')),
            content=_as_str(data.get('content')),
            timestamp=parse_datetime(data.get('timestamp')),
            provider_id=_as_str(data.get('providerId')),
        )


@dataclass
class Conversation:
    """A titled owner of an ordered list of messages, persisted as one file"""
    id: Optional[uuid.UUID] = field(default_factory=uuid.uuid4)
    title: str = ""
    created_at: Optional[datetime] = field(default_factory=utc_now)
    last_modified_at: Optional[datetime] = None
    messages: List[Message] = field(default_factory=list)

    def __post_init__(self):
        self.created_at = normalize_datetime(self.created_at)
        self.last_modified_at = normalize_datetime(self.last_modified_at)
        if self.last_modified_at is None:
            self.last_modified_at = self.created_at

    @classmethod
    def new(cls, title: str = DEFAULT_CONVERSATION_TITLE) -> 'Conversation':
        """Fresh conversation whose created and modified times coincide"""
        now = utc_now()
        return cls(title=title, created_at=now, last_modified_at=now)

    @property
    def is_valid(self) -> bool:
        return self.id is not None

    @property
    def display_title(self) -> str:
        return self.title or UNTITLED_CONVERSATION_TITLE

    def touch(self) -> None:
        """Record that the message list changed"""
        self.last_modified_at = utc_now()

    def get_message(self, message_id: uuid.UUID) -> Optional[Message]:
        """Find a message by id"""
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def add_message(self, role: str, content: str,
                    parent_id: Optional[uuid.UUID] = None,
                    provider_id: str = "") -> Message:
        """
        Append a new message and update last_modified_at

        Args:
            role: e.g. "user" or "assistant"
            content: Message text
            parent_id: Id of an existing message in this conversation, or
                None to start a new branch root
            provider_id: Provider that produced the message, if any

        Raises:
            ValueError: If parent_id does not name a message in this conversation
        """
        if parent_id is not None and self.get_message(parent_id) is None:
            raise ValueError(f"Parent message {parent_id} not in conversation {self.id}")

        message = Message(parent_id=parent_id, role=role, content=content,
                          provider_id=provider_id)
        self.messages.append(message)
        self.touch()
        return message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'id': format_uuid(self.id),
            'title': self.title,
            'createdAt': format_datetime(self.created_at),
            'lastModifiedAt': format_datetime(self.last_modified_at),
            'messages': [msg.to_dict() for msg in self.messages],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Conversation':
        """Create from dictionary"""
        data = _as_dict(data)
        return cls(
            id=parse_uuid(data.get('id')),
            title=_as_str(data.get('title')),
            created_at=parse_datetime(data.get('createdAt')),
            last_modified_at=parse_datetime(data.get('lastModifiedAt')),
            messages=[Message.from_dict(m) for m in _as_list(data.get('messages'))],
        )


@dataclass
class AppSettings:
    """Installation-wide settings: API keys and the conversation order list"""
    schema_version: int = SCHEMA_VERSION
    api_keys: List[ApiKey] = field(default_factory=list)
    conversation_order: List[uuid.UUID] = field(default_factory=list)

    def get_api_key(self, provider_id: str) -> Optional[str]:
        """Key stored for a provider slot, if any"""
        for api_key in self.api_keys:
            if api_key.provider_id == provider_id:
                return api_key.key
        return None

    def set_api_key(self, provider_id: str, key: str) -> None:
        """Store a key, replacing any existing key in the same slot"""
        for api_key in self.api_keys:
            if api_key.provider_id == provider_id:
                api_key.key = key
                return
        self.api_keys.append(ApiKey(provider_id=provider_id, key=key))

    def remove_api_key(self, provider_id: str) -> bool:
        before = len(self.api_keys)
        self.api_keys = [k for k in self.api_keys if k.provider_id != provider_id]
        return len(self.api_keys) != before

    def prepend_conversation(self, conversation_id: uuid.UUID) -> None:
        """Put an id at the top of the display order, keeping it unique"""
        self.remove_conversation(conversation_id)
        self.conversation_order.insert(0, conversation_id)

    def remove_conversation(self, conversation_id: uuid.UUID) -> bool:
        if conversation_id in self.conversation_order:
            self.conversation_order.remove(conversation_id)
            return True
        return False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            'schemaVersion': self.schema_version,
            'apiKeys': [k.to_dict() for k in self.api_keys],
            'conversationOrder': [format_uuid(i) for i in self.conversation_order],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AppSettings':
        """
        Create from dictionary

        Malformed or duplicate order entries are dropped; the first
        occurrence of an id wins.
        """
        data = _as_dict(data)

        # TODO: run schema migrations here once a version 2 format exists
        version = data.get('schemaVersion', SCHEMA_VERSION)
        if isinstance(version, bool) or not isinstance(version, (int, float)):
            version = SCHEMA_VERSION
        elif isinstance(version, float) and not (math.isfinite(version) and version.is_integer()):
            logger.warning(f"Ignoring non-integral schemaVersion {version!r}")
            version = SCHEMA_VERSION

        order: List[uuid.UUID] = []
        for raw in _as_list(data.get('conversationOrder')):
            conversation_id = parse_uuid(raw)
            if conversation_id is None:
                logger.warning(f"Dropping malformed conversation id in order list: {raw!r}")
                continue
            if conversation_id in order:
                logger.warning(f"Dropping duplicate conversation id in order list: {conversation_id}")
                continue
            order.append(conversation_id)

        return cls(
            schema_version=int(version),
            api_keys=[ApiKey.from_dict(k) for k in _as_list(data.get('apiKeys'))],
            conversation_order=order,
        )
