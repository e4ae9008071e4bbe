"""
branchchat - storage and tree reconstruction for branching AI-chat conversations
"""

__version__ = "0.1.0"
__author__ = "branchchat contributors"

from .core.models import (
    AiProvider,
    ApiKey,
    AppSettings,
    Conversation,
    Message,
    KNOWN_PROVIDERS,
)
from .core.config import StorePathError, StorePaths
from .core.store import ConversationStore, ReconcileReport
from .core.tree import (
    DisplayForest,
    ForestNode,
    NodeKind,
    build_display_forest,
    render_forest,
)

__all__ = [
    # Entity model
    'AiProvider',
    'ApiKey',
    'AppSettings',
    'Conversation',
    'Message',
    'KNOWN_PROVIDERS',
    # Store
    'ConversationStore',
    'ReconcileReport',
    'StorePathError',
    'StorePaths',
    # Tree builder
    'DisplayForest',
    'ForestNode',
    'NodeKind',
    'build_display_forest',
    'render_forest',
]
