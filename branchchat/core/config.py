"""
Data directory resolution for branchchat
"""

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
import uuid

from .constants import APP_NAME, CONVERSATIONS_DIRNAME, CONVERSATION_SUFFIX, SETTINGS_FILENAME


class StorePathError(Exception):
    """Raised when the data directories cannot be resolved or created"""


def default_data_root(app_name: str = APP_NAME) -> Optional[Path]:
    """
    Resolve the platform-standard application data directory

    Windows uses %APPDATA%, macOS ~/Library/Application Support and
    everything else $XDG_DATA_HOME (falling back to ~/.local/share).

    Returns:
        The directory for this application, or None if no home could be found
    """
    try:
        home = Path.home()
    except RuntimeError:
        home = None

    if sys.platform.startswith('win'):
        base = os.environ.get('APPDATA')
        if base:
            return Path(base) / app_name
        if home is None:
            return None
        return home / 'AppData' / 'Roaming' / app_name

    if home is None:
        return None

    if sys.platform == 'darwin':
        return home / 'Library' / 'Application Support' / app_name

    xdg = os.environ.get('XDG_DATA_HOME')
    if xdg:
        return Path(xdg) / app_name
    return home / '.local' / 'share' / app_name


@dataclass(frozen=True)
class StorePaths:
    """Locations of the settings file and per-conversation files"""
    root: Path

    @classmethod
    def resolve(cls, data_root: Optional[Union[str, Path]] = None) -> 'StorePaths':
        """Build paths from an explicit root or the platform default"""
        root = Path(data_root).expanduser() if data_root else default_data_root()
        if root is None:
            raise StorePathError("Cannot determine application data directory")
        return cls(root=root)

    @property
    def settings_file(self) -> Path:
        return self.root / SETTINGS_FILENAME

    @property
    def conversations_dir(self) -> Path:
        return self.root / CONVERSATIONS_DIRNAME

    def conversation_file(self, conversation_id: uuid.UUID) -> Path:
        """File holding one conversation, named by its canonical UUID"""
        return self.conversations_dir / f"{conversation_id}{CONVERSATION_SUFFIX}"

    def ensure_exist(self) -> None:
        """
        Create the root and conversations directories if absent

        Idempotent. Raises StorePathError if either cannot be created.
        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            self.conversations_dir.mkdir(parents=True, exist_ok=True)
        except (PermissionError, OSError) as e:
            raise StorePathError(f"Cannot create data directory {self.root}: {e}") from e
