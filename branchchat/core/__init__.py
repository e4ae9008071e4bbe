"""Core components of branchchat: entity model, file store and tree builder"""

from .config import StorePathError, StorePaths
from .store import ConversationStore, ReconcileReport
from .tree import DisplayForest, ForestNode, NodeKind, build_display_forest

__all__ = [
    'ConversationStore',
    'ReconcileReport',
    'StorePathError',
    'StorePaths',
    'DisplayForest',
    'ForestNode',
    'NodeKind',
    'build_display_forest',
]
