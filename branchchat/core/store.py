"""
File-backed conversation store

Layout under the data root::

    settings.json
    conversations/<uuid>.json

The store keeps the current AppSettings and an in-memory cache of loaded
conversations. Files are the source of truth; the cache is refreshed from
them by load_all_conversations() and kept current by callers through
update_cache(). Expected failures (missing or corrupt files, write errors)
are reported through return values and logged, never raised.
"""

import json
import logging
import os
import tempfile
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from .config import StorePathError, StorePaths
from .constants import CONVERSATION_SUFFIX, DEFAULT_CONVERSATION_TITLE
from .models import AppSettings, Conversation, Message, parse_uuid

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    """Changes made to the order list by reconcile_order()"""
    purged: List[uuid.UUID] = field(default_factory=list)
    appended: List[uuid.UUID] = field(default_factory=list)
    saved: bool = True

    @property
    def changed(self) -> bool:
        return bool(self.purged or self.appended)


def _write_json_atomic(path: Path, data: Dict[str, Any]) -> None:
    """
    Replace path with the JSON encoding of data

    The document is written to a temporary file beside the target and
    moved over it, so readers see either the old or the new content.
    """
    payload = json.dumps(data, indent=2, ensure_ascii=False)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def _read_json_object(path: Path) -> Optional[Dict[str, Any]]:
    """Read a JSON object from path, or None if unreadable or not an object"""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse JSON in {path}: {e}")
        return None
    except (IOError, OSError, UnicodeDecodeError) as e:
        logger.warning(f"Couldn't open {path} for reading: {e}")
        return None

    if not isinstance(data, dict):
        logger.warning(f"JSON root in {path} is not an object")
        return None
    return data


class ConversationStore:
    """
    Persistence and cache for settings and conversations

    Create with ConversationStore.open(data_root); the owner calls
    save_settings()/save_conversation() before discarding it, since
    nothing is flushed implicitly.
    """

    def __init__(self, paths: StorePaths):
        """
        Args:
            paths: Resolved data locations. Directories are created lazily
                by every I/O entry point.
        """
        self.paths = paths
        self._settings = AppSettings()
        self._conversations: Dict[uuid.UUID, Conversation] = {}
        self._lock = threading.RLock()

    @classmethod
    def open(cls, data_root: Optional[Union[str, Path]] = None,
             load: bool = True) -> 'ConversationStore':
        """
        Open the store at data_root (platform default if None)

        Args:
            data_root: Directory holding settings.json and conversations/
            load: Load settings and all conversations immediately

        Raises:
            StorePathError: If the data directories cannot be resolved or created
        """
        paths = StorePaths.resolve(data_root)
        paths.ensure_exist()
        store = cls(paths)
        if load:
            if not store.load_settings():
                logger.warning("Could not load settings, using defaults")
            store.load_all_conversations()
        return store

    # --- Accessors ---

    @property
    def settings(self) -> AppSettings:
        """Current settings; mutate in place and call save_settings()"""
        return self._settings

    @property
    def conversations(self) -> Mapping[uuid.UUID, Conversation]:
        """Read-only view of the conversation cache"""
        return MappingProxyType(self._conversations)

    def get_cached(self, conversation_id: uuid.UUID) -> Optional[Conversation]:
        with self._lock:
            return self._conversations.get(conversation_id)

    def _ensure_paths(self) -> bool:
        try:
            self.paths.ensure_exist()
        except StorePathError as e:
            logger.error(str(e))
            return False
        return True

    # --- Settings ---

    def load_settings(self) -> bool:
        """
        Load settings.json, replacing the in-memory settings wholesale

        A missing file is bootstrapped with defaults and written back.
        An unreadable or malformed file resets settings to defaults and
        reports failure.

        Returns:
            True if settings were loaded (or bootstrapped and saved)
        """
        if not self._ensure_paths():
            return False

        path = self.paths.settings_file
        with self._lock:
            if not path.exists():
                logger.info(f"Settings file not found, creating default: {path}")
                self._settings = AppSettings()
                return self.save_settings()

            data = _read_json_object(path)
            if data is None:
                self._settings = AppSettings()
                return False

            self._settings = AppSettings.from_dict(data)
            logger.info(f"Settings loaded from {path}")
            return True

    def save_settings(self) -> bool:
        """Write the current settings, fully replacing the old file"""
        if not self._ensure_paths():
            return False

        path = self.paths.settings_file
        with self._lock:
            try:
                _write_json_atomic(path, self._settings.to_dict())
            except (IOError, OSError) as e:
                logger.warning(f"Failed to write settings file {path}: {e}")
                return False

        logger.info(f"Settings saved to {path}")
        return True

    # --- Conversations ---

    def load_conversation(self, conversation_id: Optional[uuid.UUID]) -> Optional[Conversation]:
        """
        Read one conversation from its file

        Does not touch the cache.

        Returns:
            The conversation, or None if the file is missing, unreadable,
            malformed, or holds a different conversation id
        """
        if conversation_id is None or not self._ensure_paths():
            return None

        path = self.paths.conversation_file(conversation_id)
        if not path.exists():
            logger.warning(f"Conversation file does not exist: {path}")
            return None

        data = _read_json_object(path)
        if data is None:
            return None

        conversation = Conversation.from_dict(data)
        if conversation.id != conversation_id:
            logger.warning(
                f"Conversation id mismatch in {path}: expected {conversation_id}, "
                f"got {conversation.id}"
            )
            return None

        return conversation

    def save_conversation(self, conversation: Conversation) -> bool:
        """Write a conversation to <id>.json, fully replacing the old file"""
        if not conversation.is_valid:
            logger.warning("Refusing to save conversation with null id")
            return False
        if not self._ensure_paths():
            return False

        path = self.paths.conversation_file(conversation.id)
        try:
            _write_json_atomic(path, conversation.to_dict())
        except (IOError, OSError) as e:
            logger.warning(f"Failed to write conversation file {path}: {e}")
            return False

        logger.debug(f"Saved conversation {conversation.id} to {path}")
        return True

    def load_all_conversations(self) -> bool:
        """
        Rebuild the cache from the conversations directory

        Ids in the order list are loaded first; ids without a file are
        skipped with a warning and left in the order list. Remaining
        files not named by the order list are loaded afterwards, so every
        readable conversation on disk ends up cached exactly once.

        Returns:
            False only if the directories could not be created or listed
        """
        if not self._ensure_paths():
            return False

        try:
            on_disk = sorted(
                p.name for p in self.paths.conversations_dir.iterdir()
                if p.is_file() and p.name.endswith(CONVERSATION_SUFFIX)
            )
        except OSError as e:
            logger.error(f"Cannot list {self.paths.conversations_dir}: {e}")
            return False

        remaining = set(on_disk)
        loaded: Dict[uuid.UUID, Conversation] = {}

        with self._lock:
            for conversation_id in self._settings.conversation_order:
                filename = self.paths.conversation_file(conversation_id).name
                if filename not in remaining:
                    logger.warning(
                        f"Conversation {conversation_id} listed in settings but file not found: {filename}"
                    )
                    continue
                remaining.discard(filename)
                conversation = self.load_conversation(conversation_id)
                if conversation is not None:
                    loaded[conversation.id] = conversation

            for filename in on_disk:
                if filename not in remaining:
                    continue
                conversation_id = parse_uuid(filename[:-len(CONVERSATION_SUFFIX)])
                if conversation_id is None or conversation_id in loaded:
                    continue
                if self.paths.conversation_file(conversation_id).name != filename:
                    logger.warning(f"Skipping conversation file with non-canonical name: {filename}")
                    continue
                conversation = self.load_conversation(conversation_id)
                if conversation is not None:
                    loaded[conversation.id] = conversation

            self._conversations = loaded

        logger.info(f"Loaded {len(loaded)} conversations.")
        return True

    def update_cache(self, conversation: Conversation) -> None:
        """
        Insert or replace a conversation in the cache

        Does not write files or change the order list.
        """
        if not conversation.is_valid:
            return
        with self._lock:
            self._conversations[conversation.id] = conversation

    def refresh_conversation(self, conversation_id: uuid.UUID) -> Optional[Conversation]:
        """
        Reload one conversation from disk into the cache

        On failure the existing cache entry, if any, is left untouched.
        """
        conversation = self.load_conversation(conversation_id)
        if conversation is not None:
            self.update_cache(conversation)
        return conversation

    def evict(self, conversation_id: uuid.UUID) -> Optional[Conversation]:
        """Drop a conversation from the cache"""
        with self._lock:
            return self._conversations.pop(conversation_id, None)

    # --- Workflows ---

    def create_conversation(self, title: str = DEFAULT_CONVERSATION_TITLE) -> Optional[Conversation]:
        """
        Create, cache and persist a new conversation at the top of the order

        If the conversation file cannot be written the order insertion and
        cache entry are rolled back and None is returned.
        """
        conversation = Conversation.new(title)

        with self._lock:
            self.update_cache(conversation)
            self._settings.prepend_conversation(conversation.id)

            if not self.save_conversation(conversation):
                self._settings.remove_conversation(conversation.id)
                self.evict(conversation.id)
                return None

            if not self.save_settings():
                logger.warning(f"Conversation {conversation.id} saved but settings were not")

        logger.info(f"Created conversation {conversation.id}")
        return conversation

    def remove_conversation(self, conversation_id: uuid.UUID) -> bool:
        """
        Remove a conversation from the order list, the cache and disk

        Returns:
            True if the updated settings were saved
        """
        with self._lock:
            self._settings.remove_conversation(conversation_id)
            self.evict(conversation_id)

            path = self.paths.conversation_file(conversation_id)
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not delete conversation file {path}: {e}")

            return self.save_settings()

    def append_message(self, conversation_id: uuid.UUID, role: str, content: str,
                       parent_id: Optional[uuid.UUID] = None,
                       provider_id: str = "") -> Optional[Message]:
        """
        Add a message to a conversation, save it and refresh the cache

        The conversation is read from the cache, falling back to disk.

        Returns:
            The new message, or None if the conversation could not be
            loaded or saved

        Raises:
            ValueError: If parent_id is not a message of that conversation
        """
        with self._lock:
            conversation = self.get_cached(conversation_id) or self.load_conversation(conversation_id)
            if conversation is None:
                logger.warning(f"Cannot append to unknown conversation {conversation_id}")
                return None

            previous_modified = conversation.last_modified_at
            message = conversation.add_message(role, content, parent_id=parent_id,
                                               provider_id=provider_id)
            if not self.save_conversation(conversation):
                conversation.messages.remove(message)
                conversation.last_modified_at = previous_modified
                return None

            self.update_cache(conversation)
            return message

    def ordered_conversations(self) -> Iterator[Conversation]:
        """Cached conversations in display order"""
        with self._lock:
            order = list(self._settings.conversation_order)
            cache = dict(self._conversations)

        for conversation_id in order:
            conversation = cache.get(conversation_id)
            if conversation is None:
                logger.warning(
                    f"Conversation {conversation_id} in order list but not found in loaded conversations"
                )
                continue
            yield conversation

    def unordered_conversation_ids(self) -> List[uuid.UUID]:
        """Cached conversations that the order list does not mention"""
        with self._lock:
            ordered = set(self._settings.conversation_order)
            unordered = [c for c in self._conversations.values() if c.id not in ordered]
        return [c.id for c in sorted(unordered, key=_creation_key)]

    def reconcile_order(self, purge_missing: bool = False,
                        append_unordered: bool = False) -> ReconcileReport:
        """
        Bring the order list in line with the cache

        Loading never changes the order list; this is the explicit way to
        heal it.

        Args:
            purge_missing: Remove ids that have no cached conversation
            append_unordered: Append cached ids the list does not mention,
                oldest first

        Returns:
            What changed; settings are saved only when something did
        """
        report = ReconcileReport()

        with self._lock:
            order = self._settings.conversation_order
            if purge_missing:
                report.purged = [i for i in order if i not in self._conversations]
                order[:] = [i for i in order if i in self._conversations]
            if append_unordered:
                report.appended = self.unordered_conversation_ids()
                order.extend(report.appended)

            if report.changed:
                report.saved = self.save_settings()

        return report


def _creation_key(conversation: Conversation):
    created = conversation.created_at
    return (created is None, created.isoformat() if created else "", str(conversation.id))
