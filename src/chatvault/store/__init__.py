"""SQLite store: schema, transactional writer and full-text search."""

from .db import connect, create_schema, open_store
from .search import search_conversation_ids, search_messages
from .writer import check_search_index, delete_conversation, write_conversation

__all__ = [
    "check_search_index",
    "connect",
    "create_schema",
    "delete_conversation",
    "open_store",
    "search_conversation_ids",
    "search_messages",
    "write_conversation",
]
