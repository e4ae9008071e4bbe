"""
Rich formatting utilities for CLI output.
"""

from typing import Iterable, Optional

from rich.console import Console
from rich.table import Table

from .constants import TITLE_TRUNCATE_WIDTH
from .models import Conversation, format_datetime


def format_conversations_table(
    conversations: Iterable[Conversation], console: Optional[Console] = None
) -> None:
    """
    Format conversations as a Rich table, in the order given.

    Args:
        conversations: Conversations to list (usually store.ordered_conversations())
        console: Optional Console instance (creates new one if not provided)
    """
    if console is None:
        console = Console()

    conversations = list(conversations)

    table = Table(
        title=f"[bold cyan]{len(conversations)} conversation(s)[/bold cyan]",
        show_header=True,
        header_style="bold magenta",
        border_style="cyan",
    )
    table.add_column("#", style="dim", width=4)
    table.add_column("ID", style="cyan", width=38)
    table.add_column("Title", style="white", width=TITLE_TRUNCATE_WIDTH)
    table.add_column("Msgs", style="blue", width=6)
    table.add_column("Last Modified", style="green", width=20)

    for i, conv in enumerate(conversations, 1):
        title = conv.display_title
        if len(title) > TITLE_TRUNCATE_WIDTH - 3:
            title = title[:TITLE_TRUNCATE_WIDTH - 3] + "..."

        updated = format_datetime(conv.last_modified_at) or "Unknown"
        if len(updated) > 19:
            updated = updated[:19].replace('T', ' ')

        table.add_row(
            str(i),
            str(conv.id),
            title,
            str(len(conv.messages)),
            updated,
        )

    console.print(table)
