"""
Display forest for branching conversations.

A Conversation stores its messages as a flat list linked by parent_id.
build_display_forest() groups them by parent and walks depth-first from
the roots, producing ForestNode trees for display. The grouping is a
throwaway index (parent id -> positions in conversation.messages) that is
rebuilt on every call.

Every input message appears exactly once in the output. Messages whose
parent is not in the conversation become orphan roots; messages caught
in a parent cycle become cyclic roots and the edge closing the cycle is
reported in DisplayForest.cyclic instead of being followed.
"""

import logging
import uuid
from enum import Enum
from typing import Dict, Iterator, List, Optional, Set, Tuple

from rich.console import Console
from rich.text import Text
from rich.tree import Tree

from .constants import LABEL_CONTENT_WIDTH
from .models import Conversation, Message

logger = logging.getLogger(__name__)


class NodeKind(Enum):
    """How a node was reached while building the forest"""
    ROOT = "root"        # parent_id is None
    CHILD = "child"      # reached from its parent
    ORPHAN = "orphan"    # parent_id names no message in the conversation
    CYCLIC = "cyclic"    # entry point into a parent cycle


ROLE_STYLES = {
    'user': "bold green",
    'assistant': "bold magenta",
    'system': "bold yellow",
}


class ForestNode:
    """
    Message node in the display forest.

    Each node wraps one message and its ordered children (branches).
    """
    def __init__(self, message: Message, index: int, kind: NodeKind = NodeKind.ROOT,
                 parent: Optional['ForestNode'] = None):
        self.message = message
        self.index = index  # Position in conversation.messages
        self.kind = kind
        self.parent = parent
        self.children: List['ForestNode'] = []

        if parent:
            parent.children.append(self)

    @property
    def id(self) -> Optional[uuid.UUID]:
        return self.message.id

    def is_leaf(self) -> bool:
        """Check if this is a leaf node (no children)"""
        return len(self.children) == 0

    def get_depth(self) -> int:
        """Get depth in tree (root is 0)"""
        depth = 0
        current = self.parent
        while current:
            depth += 1
            current = current.parent
        return depth

    def get_path_to_root(self) -> List['ForestNode']:
        """Get path from root to this node"""
        path = []
        current = self
        while current:
            path.append(current)
            current = current.parent
        return list(reversed(path))

    def preview(self, max_content_length: int = LABEL_CONTENT_WIDTH) -> str:
        """Message content, truncated with an ellipsis"""
        content = self.message.content or ""
        if len(content) > max_content_length:
            return content[:max_content_length] + "..."
        return content

    def label(self, max_content_length: int = LABEL_CONTENT_WIDTH) -> str:
        """One-line summary: "[role] content" with content truncated"""
        return f"[{self.message.role}] {self.preview(max_content_length)}"

    def format_tree(self, prefix="", is_last=True, max_content_length=LABEL_CONTENT_WIDTH) -> str:
        """
        Format this node and its children as an indented text tree.

        Args:
            prefix: Current line prefix for indentation
            is_last: Whether this is the last child of its parent
            max_content_length: Maximum characters to show from content
        """
        lines = []

        connector = "└─" if is_last else "├─"
        marker = "" if self.kind in (NodeKind.ROOT, NodeKind.CHILD) else f"({self.kind.value}) "
        short_id = str(self.id)[:6] if self.id else "------"
        label = self.label(max_content_length).replace('\n', ' ')
        lines.append(f"{prefix}{connector}{marker}{short_id} {label}")

        if self.children:
            extension = "  " if is_last else "│ "
            new_prefix = prefix + extension
            for i, child in enumerate(self.children):
                is_last_child = (i == len(self.children) - 1)
                lines.append(child.format_tree(new_prefix, is_last_child, max_content_length))

        return '\n'.join(lines)

    def __repr__(self):
        return f"ForestNode(id={str(self.id)[:8]}..., kind={self.kind.value}, children={len(self.children)})"


class DisplayForest:
    """Roots of a conversation's message trees plus the anomalies found building them"""

    def __init__(self):
        self.roots: List[ForestNode] = []
        self.orphans: List[uuid.UUID] = []
        self.cyclic: List[uuid.UUID] = []
        self.node_count = 0

    def walk(self) -> Iterator[Tuple[int, ForestNode]]:
        """Yield (depth, node) depth-first in display order"""
        stack: List[Tuple[int, ForestNode]] = [(0, root) for root in reversed(self.roots)]
        while stack:
            depth, node = stack.pop()
            yield depth, node
            for child in reversed(node.children):
                stack.append((depth + 1, child))

    def find(self, message_id: uuid.UUID) -> Optional[ForestNode]:
        for _, node in self.walk():
            if node.id == message_id:
                return node
        return None

    def get_all_paths(self) -> List[List[ForestNode]]:
        """Get all branch paths from a root to a leaf"""
        return [leaf.get_path_to_root() for _, leaf in self.walk() if leaf.is_leaf()]

    @property
    def has_anomalies(self) -> bool:
        return bool(self.orphans or self.cyclic)

    def format_tree(self, max_content_length=LABEL_CONTENT_WIDTH) -> str:
        """Format the whole forest as text"""
        if not self.roots:
            return "No messages"
        return '\n'.join(
            root.format_tree(is_last=(i == len(self.roots) - 1),
                             max_content_length=max_content_length)
            for i, root in enumerate(self.roots)
        )


def build_children_index(messages: List[Message]) -> Tuple[List[int], Dict[uuid.UUID, List[int]]]:
    """
    Group message positions by parent in a single pass.

    Returns:
        (root positions, parent id -> child positions), each list in the
        original message order
    """
    roots: List[int] = []
    children: Dict[uuid.UUID, List[int]] = {}
    for i, message in enumerate(messages):
        if message.parent_id is None:
            roots.append(i)
        else:
            children.setdefault(message.parent_id, []).append(i)
    return roots, children


def build_display_forest(conversation: Conversation) -> DisplayForest:
    """
    Reconstruct the branching message trees of a conversation.

    Args:
        conversation: Conversation whose flat message list is read, not modified

    Returns:
        DisplayForest whose nodes cover every message exactly once
    """
    messages = conversation.messages
    forest = DisplayForest()
    root_positions, children = build_children_index(messages)
    known_ids: Set[uuid.UUID] = {m.id for m in messages if m.id is not None}
    visited: Set[int] = set()

    def emit(start: int, kind: NodeKind) -> None:
        # Iterative pre-order so long linear chats do not hit the recursion limit
        top = ForestNode(messages[start], start, kind)
        forest.roots.append(top)
        visited.add(start)
        stack: List[Tuple[int, ForestNode]] = []

        def push_children(node: ForestNode) -> None:
            if node.id is None:
                return
            for child in reversed(children.get(node.id, [])):
                stack.append((child, node))

        push_children(top)
        while stack:
            position, parent = stack.pop()
            if position in visited:
                repeated = messages[position].id
                logger.warning(
                    f"Conversation {conversation.id}: message {repeated} reached twice, "
                    f"not following parent link from {parent.id}"
                )
                forest.cyclic.append(repeated)
                continue
            visited.add(position)
            node = ForestNode(messages[position], position, NodeKind.CHILD, parent=parent)
            push_children(node)

    for position in root_positions:
        emit(position, NodeKind.ROOT)

    for position, message in enumerate(messages):
        if position not in visited and message.parent_id not in known_ids:
            logger.warning(
                f"Conversation {conversation.id}: orphaned message {message.id} "
                f"(parent {message.parent_id} not found)"
            )
            forest.orphans.append(message.id)
            emit(position, NodeKind.ORPHAN)

    # Anything still unreached hangs off a parent cycle
    for position in range(len(messages)):
        if position not in visited:
            emit(position, NodeKind.CYCLIC)

    forest.node_count = len(visited)
    return forest


def render_forest(forest: DisplayForest, title: str = "",
                  max_content_length: int = LABEL_CONTENT_WIDTH) -> Tree:
    """Build a rich Tree for terminal display"""
    tree = Tree(Text(title or "Conversation", style="bold cyan"))

    def add_node(branch: Tree, node: ForestNode) -> None:
        role_style = ROLE_STYLES.get(node.message.role.lower(), "bold white")
        line = Text()
        if node.kind in (NodeKind.ORPHAN, NodeKind.CYCLIC):
            line.append(f"({node.kind.value}) ", style="bold red")
        line.append(f"[{node.message.role}] ", style=role_style)
        line.append(str(node.id)[:8] if node.id else "--------", style="dim cyan")
        line.append(" ")
        line.append(node.preview(max_content_length).replace('\n', ' '), style="dim")

        child_branch = branch.add(line)
        for child in node.children:
            add_node(child_branch, child)

    if not forest.roots:
        tree.add(Text("No messages", style="yellow"))
    for root in forest.roots:
        add_node(tree, root)
    return tree


def print_forest(forest: DisplayForest, console: Optional[Console] = None, title: str = "") -> None:
    """
    Pretty-print a forest using Rich.

    Args:
        forest: Forest built by build_display_forest()
        console: Rich Console instance (creates new if None)
        title: Heading shown above the tree
    """
    if console is None:
        console = Console()

    console.print(render_forest(forest, title))
    if forest.orphans:
        console.print(f"[yellow]{len(forest.orphans)} orphaned message(s) shown as extra roots[/yellow]")
    if forest.cyclic:
        console.print(f"[red]{len(forest.cyclic)} cyclic parent link(s) not followed[/red]")
