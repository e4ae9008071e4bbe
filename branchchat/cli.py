#!/usr/bin/env python3
"""
branchchat command line interface
"""

import argparse
import json
import sys
import logging
import uuid
from typing import List, Optional

from rich.console import Console

from branchchat.core.config import StorePathError
from branchchat.core.formatting import format_conversations_table
from branchchat.core.models import KNOWN_PROVIDERS, parse_uuid
from branchchat.core.store import ConversationStore
from branchchat.core.tree import build_display_forest, print_forest


def setup_logging(verbose: bool = False):
    """Setup logging configuration"""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def resolve_conversation_id(store: ConversationStore, identifier: str) -> Optional[uuid.UUID]:
    """
    Resolve a full id or unique id prefix against the loaded conversations

    Returns:
        The conversation id, or None if nothing or more than one matches
    """
    full = parse_uuid(identifier)
    if full is not None:
        return full

    prefix = identifier.strip().lower()
    if not prefix:
        return None
    matches = [cid for cid in store.conversations if str(cid).startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        print(f"Error: Ambiguous ID prefix '{identifier}' matches {len(matches)} conversations")
    return None


def cmd_list(store: ConversationStore, args) -> int:
    """List conversations in display order"""
    conversations = list(store.ordered_conversations())

    if args.json:
        print(json.dumps([c.to_dict() for c in conversations], indent=2, ensure_ascii=False))
        return 0

    format_conversations_table(conversations)

    unordered = store.unordered_conversation_ids()
    if unordered:
        print(f"{len(unordered)} conversation file(s) not in the order list "
              f"(use 'reconcile --append-unordered' to list them)")
    return 0


def cmd_new(store: ConversationStore, args) -> int:
    """Create a new conversation"""
    conversation = store.create_conversation(args.title)
    if conversation is None:
        print("Error: Could not save the new conversation file")
        return 1
    print(conversation.id)
    return 0


def cmd_show(store: ConversationStore, args) -> int:
    """Show the message tree of a conversation"""
    conversation_id = resolve_conversation_id(store, args.id)
    if conversation_id is None:
        print(f"Error: Conversation not found: {args.id}")
        return 1

    conversation = store.load_conversation(conversation_id)
    if conversation is None:
        print(f"Error: Could not load conversation data for ID: {conversation_id}")
        return 1

    forest = build_display_forest(conversation)
    if args.json:
        data = {
            'id': str(conversation.id),
            'title': conversation.title,
            'nodes': [
                {
                    'depth': depth,
                    'kind': node.kind.value,
                    'id': str(node.id) if node.id else None,
                    'label': node.label(),
                }
                for depth, node in forest.walk()
            ],
            'orphans': [str(i) for i in forest.orphans],
            'cyclic': [str(i) for i in forest.cyclic],
        }
        print(json.dumps(data, indent=2, ensure_ascii=False))
        return 0

    print_forest(forest, Console(), title=conversation.display_title)
    return 0


def cmd_add(store: ConversationStore, args) -> int:
    """Append a message to a conversation"""
    conversation_id = resolve_conversation_id(store, args.id)
    if conversation_id is None:
        print(f"Error: Conversation not found: {args.id}")
        return 1

    parent_id = None
    if args.parent:
        parent_id = parse_uuid(args.parent)
        if parent_id is None:
            print(f"Error: Invalid parent message ID: {args.parent}")
            return 1

    try:
        message = store.append_message(conversation_id, args.role, args.content,
                                       parent_id=parent_id, provider_id=args.provider or "")
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    if message is None:
        print(f"Error: Could not save conversation {conversation_id}")
        return 1
    print(message.id)
    return 0


def cmd_remove(store: ConversationStore, args) -> int:
    """Remove a conversation"""
    conversation_id = resolve_conversation_id(store, args.id)
    if conversation_id is None:
        print(f"Error: Conversation not found: {args.id}")
        return 1

    if not args.yes:
        conversation = store.get_cached(conversation_id)
        title = conversation.display_title if conversation else str(conversation_id)
        response = input(f"Delete '{title}'? [y/N] ")
        if response.strip().lower() not in ('y', 'yes'):
            print("Cancelled")
            return 0

    if not store.remove_conversation(conversation_id):
        print("Error: Could not save settings")
        return 1
    print(f"Removed {conversation_id}")
    return 0


def cmd_reconcile(store: ConversationStore, args) -> int:
    """Heal the order list against the files on disk"""
    report = store.reconcile_order(purge_missing=args.purge_missing,
                                   append_unordered=args.append_unordered)
    for conversation_id in report.purged:
        print(f"Purged missing: {conversation_id}")
    for conversation_id in report.appended:
        print(f"Appended: {conversation_id}")
    if not report.changed:
        print("Order list unchanged")
    if not report.saved:
        print("Error: Could not save settings")
        return 1
    return 0


def cmd_keys(store: ConversationStore, args) -> int:
    """Manage API keys (stored in plaintext)"""
    settings = store.settings

    if args.keys_command == 'set':
        settings.set_api_key(args.provider, args.key)
        if not store.save_settings():
            print("Error: Could not save settings")
            return 1
        print(f"Key stored for {args.provider} (plaintext, not encrypted)")
        return 0

    if args.keys_command == 'get':
        key = settings.get_api_key(args.provider)
        if key is None:
            print(f"No key stored for {args.provider}")
            return 1
        print(key)
        return 0

    if args.keys_command == 'remove':
        if not settings.remove_api_key(args.provider):
            print(f"No key stored for {args.provider}")
            return 1
        return 0 if store.save_settings() else 1

    # list
    known = {p.id: p.name for p in KNOWN_PROVIDERS}
    for provider in KNOWN_PROVIDERS:
        status = "set" if settings.get_api_key(provider.id) is not None else "-"
        print(f"{provider.id:<12} {provider.name:<20} {status}")
    for api_key in settings.api_keys:
        if api_key.provider_id not in known:
            print(f"{api_key.provider_id:<12} {'':<20} set")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='branchchat - Manage branching AI-chat conversations'
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    parser.add_argument('--data-dir', help='Data directory (default: platform application data dir)')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    list_parser = subparsers.add_parser('list', help='List conversations in display order')
    list_parser.add_argument('--json', action='store_true', help='Output as JSON')

    new_parser = subparsers.add_parser('new', help='Create a conversation')
    new_parser.add_argument('--title', default='New Conversation', help='Conversation title')

    show_parser = subparsers.add_parser('show', help='Show conversation tree structure')
    show_parser.add_argument('id', help='Conversation ID (full or prefix)')
    show_parser.add_argument('--json', action='store_true', help='Output as JSON')

    add_parser = subparsers.add_parser('add', help='Append a message to a conversation')
    add_parser.add_argument('id', help='Conversation ID (full or prefix)')
    add_parser.add_argument('--role', default='user', help='Message role (default: user)')
    add_parser.add_argument('--content', required=True, help='Message text')
    add_parser.add_argument('--parent', help='Parent message ID (omit to start a new branch root)')
    add_parser.add_argument('--provider', help='Provider ID that produced the message')

    remove_parser = subparsers.add_parser('remove', help='Delete a conversation')
    remove_parser.add_argument('id', help='Conversation ID (full or prefix)')
    remove_parser.add_argument('--yes', '-y', action='store_true', help='Skip confirmation')

    reconcile_parser = subparsers.add_parser('reconcile', help='Repair the conversation order list')
    reconcile_parser.add_argument('--purge-missing', action='store_true',
                                  help='Drop ids whose conversation file is missing')
    reconcile_parser.add_argument('--append-unordered', action='store_true',
                                  help='Append conversations not in the order list')

    keys_parser = subparsers.add_parser('keys', help='Manage API keys (plaintext storage)')
    keys_sub = keys_parser.add_subparsers(dest='keys_command')
    keys_sub.add_parser('list', help='Show which providers have keys')
    keys_set = keys_sub.add_parser('set', help='Store a key')
    keys_set.add_argument('provider', help='Provider ID')
    keys_set.add_argument('key', help='API key')
    keys_get = keys_sub.add_parser('get', help='Print a stored key')
    keys_get.add_argument('provider', help='Provider ID')
    keys_remove = keys_sub.add_parser('remove', help='Delete a stored key')
    keys_remove.add_argument('provider', help='Provider ID')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        'list': cmd_list,
        'new': cmd_new,
        'show': cmd_show,
        'add': cmd_add,
        'remove': cmd_remove,
        'reconcile': cmd_reconcile,
        'keys': cmd_keys,
    }

    try:
        store = ConversationStore.open(args.data_dir)
    except StorePathError as e:
        print(f"Error: {e}")
        return 1

    return commands[args.command](store, args)


if __name__ == '__main__':
    sys.exit(main())
