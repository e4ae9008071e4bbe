"""
Pytest configuration and shared fixtures
"""

import json
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path

import pytest

from branchchat.core.models import Conversation, Message
from branchchat.core.store import ConversationStore


def make_id(n: int) -> uuid.UUID:
    """Deterministic UUID for readable fixtures"""
    return uuid.UUID(int=n)


T0 = datetime(2024, 3, 1, 12, 0, 0, 250000, tzinfo=timezone.utc)


@pytest.fixture
def temp_dir():
    """Create a temporary directory"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_dir):
    """Open an empty store in a temporary data directory"""
    return ConversationStore.open(temp_dir / "data")


@pytest.fixture
def sample_message():
    """Create a sample message"""
    return Message(
        id=make_id(1),
        parent_id=None,
        role="user",
        content="Hello, how are you?",
        timestamp=T0,
        provider_id="",
    )


@pytest.fixture
def sample_conversation():
    """Create a linear four-message conversation"""
    conv = Conversation(
        id=make_id(100),
        title="Test Conversation",
        created_at=T0,
        last_modified_at=T0,
    )
    conv.messages = [
        Message(id=make_id(1), parent_id=None, role="user", content="Hello", timestamp=T0),
        Message(id=make_id(2), parent_id=make_id(1), role="assistant", content="Hi there!",
                timestamp=T0, provider_id="openai"),
        Message(id=make_id(3), parent_id=make_id(2), role="user", content="How are you?",
                timestamp=T0),
        Message(id=make_id(4), parent_id=make_id(3), role="assistant",
                content="I'm doing great, thanks!", timestamp=T0, provider_id="openai"),
    ]
    return conv


@pytest.fixture
def branching_conversation():
    """Create a conversation with branches (regenerated responses)"""
    conv = Conversation(id=make_id(200), title="Branching Conversation", created_at=T0)
    conv.messages = [
        Message(id=make_id(1), parent_id=None, role="user", content="What's 2+2?", timestamp=T0),
        # First response
        Message(id=make_id(2), parent_id=make_id(1), role="assistant", content="2+2 equals 4",
                timestamp=T0),
        # Alternative response (regenerated)
        Message(id=make_id(3), parent_id=make_id(1), role="assistant", content="The answer is 4",
                timestamp=T0),
        # Continue from first branch
        Message(id=make_id(4), parent_id=make_id(2), role="user", content="What about 3+3?",
                timestamp=T0),
        Message(id=make_id(5), parent_id=make_id(4), role="assistant", content="3+3 equals 6",
                timestamp=T0),
        # A second root
        Message(id=make_id(6), parent_id=None, role="system", content="Be brief", timestamp=T0),
    ]
    return conv


@pytest.fixture
def write_raw():
    """Write raw JSON (or raw text) into a file, bypassing the codec"""
    def _write(directory: Path, name: str, data) -> Path:
        path = directory / name
        if isinstance(data, str):
            path.write_text(data, encoding="utf-8")
        else:
            path.write_text(json.dumps(data), encoding="utf-8")
        return path
    return _write
