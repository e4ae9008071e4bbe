"""
Global constants for branchchat.

File names, default titles and display widths live here instead of being
hardcoded across the store, tree builder and CLI.
"""

APP_NAME = "branchchat"

# --- On-disk layout ---

SETTINGS_FILENAME = "settings.json"
CONVERSATIONS_DIRNAME = "conversations"
CONVERSATION_SUFFIX = ".json"

# --- Schema ---

SCHEMA_VERSION = 1           # Current settings schema; absence means 1

# --- Defaults ---

DEFAULT_CONVERSATION_TITLE = "New Conversation"
UNTITLED_CONVERSATION_TITLE = "Untitled Conversation"

# --- Display ---

LABEL_CONTENT_WIDTH = 50     # Characters of content shown in a tree label
TITLE_TRUNCATE_WIDTH = 50    # Truncation width for titles in tables
