from __future__ import annotations

import logging
import sqlite3
from typing import Iterable, Mapping, Sequence

from ..errors import WriteFailure
from ..models import AssetRecord, ConversationMeta, LinearMessage

logger = logging.getLogger(__name__)


def write_conversation(
    conn: sqlite3.Connection,
    meta: ConversationMeta,
    messages: Sequence[LinearMessage],
    assets_by_message: Mapping[str, Sequence[AssetRecord]],
) -> None:
    """Persist one conversation atomically.

    Existing rows for the same conversation id are replaced. The FTS triggers
    run inside this transaction, so index rows commit or roll back together
    with their messages.

    Raises:
        WriteFailure: any SQLite error; nothing of this conversation is kept
    """
    try:
        with conn:
            _delete_conversation_rows(conn, meta.conversation_id)
            insert_conversation(conn, meta)
            insert_messages(conn, messages)
            for message in messages:
                assets = assets_by_message.get(message.message_id, ())
                insert_assets(conn, _claim_asset_ids(conn, assets))
    except sqlite3.Error as e:
        logger.warning(f"Rolled back conversation {meta.conversation_id}: {e}")
        raise WriteFailure(meta.conversation_id, e) from e


def insert_conversation(conn: sqlite3.Connection, meta: ConversationMeta) -> None:
    conn.execute(
        """
        INSERT INTO conversations(id, title, create_time, update_time, model_slug, is_archived)
        VALUES(?, ?, ?, ?, ?, ?)
        """,
        (
            meta.conversation_id,
            meta.title,
            meta.create_time,
            meta.update_time,
            meta.model_slug,
            meta.is_archived,
        ),
    )


def insert_messages(conn: sqlite3.Connection, messages: Iterable[LinearMessage]) -> None:
    conn.executemany(
        """
        INSERT INTO messages(id, conversation_id, parent_id, author_role, content_type, text_content,
                             create_time, model_slug, message_order, has_assets)
        VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                m.message_id,
                m.conversation_id,
                m.parent_id,
                m.role.value,
                m.content_type,
                m.text_content,
                m.create_time,
                m.model_slug,
                m.message_order,
                m.has_assets,
            )
            for m in messages
        ],
    )


def insert_assets(conn: sqlite3.Connection, assets: Iterable[AssetRecord]) -> None:
    conn.executemany(
        """
        INSERT INTO assets(id, message_id, asset_pointer, content_type, size_bytes, width, height,
                           metadata, asset_order, file_content, file_name, mime_type)
        VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                a.asset_id,
                a.message_id,
                a.asset_pointer,
                a.content_type,
                a.size_bytes,
                a.width,
                a.height,
                a.metadata,
                a.asset_order,
                a.file_content,
                a.file_name,
                a.mime_type,
            )
            for a in assets
        ],
    )


def _claim_asset_ids(conn: sqlite3.Connection, assets: Iterable[AssetRecord]) -> list[AssetRecord]:
    """Qualify asset ids already owned by another conversation.

    The same upload can be referenced from several conversations, but
    assets.id is unique store-wide.
    """
    claimed = []
    for asset in assets:
        taken = conn.execute("SELECT 1 FROM assets WHERE id = ?", (asset.asset_id,)).fetchone()
        if taken is not None:
            asset_id = f"{asset.asset_id}-{asset.message_id}-{asset.asset_order}"
            logger.debug(f"Asset id {asset.asset_id} is taken, storing as {asset_id}")
            asset = asset.model_copy(update={"asset_id": asset_id})
        claimed.append(asset)
    return claimed


def _delete_conversation_rows(conn: sqlite3.Connection, conversation_id: str) -> int:
    # Cascades to messages and assets; the delete trigger drops index rows.
    cur = conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
    return cur.rowcount


def delete_conversation(conn: sqlite3.Connection, conversation_id: str) -> bool:
    """Delete a conversation with its messages, assets and index rows."""
    try:
        with conn:
            deleted = _delete_conversation_rows(conn, conversation_id)
    except sqlite3.Error as e:
        raise WriteFailure(conversation_id, e) from e
    return deleted > 0


def update_message_text(conn: sqlite3.Connection, message_id: str, text_content: str | None) -> bool:
    """Replace a message's text; the update trigger re-indexes it."""
    with conn:
        cur = conn.execute(
            "UPDATE messages SET text_content = ? WHERE id = ?",
            (text_content, message_id),
        )
    return cur.rowcount > 0


def check_search_index(conn: sqlite3.Connection) -> dict[str, int]:
    """Count index rows without a message and messages missing from the index."""
    orphaned = conn.execute(
        """
        SELECT COUNT(*) AS c
        FROM messages_fts f
        LEFT JOIN messages m ON m.rowid = f.rowid
        WHERE m.rowid IS NULL
        """
    ).fetchone()["c"]
    unindexed = conn.execute(
        """
        SELECT COUNT(*) AS c
        FROM messages m
        LEFT JOIN messages_fts f ON f.rowid = m.rowid
        WHERE f.rowid IS NULL AND m.text_content IS NOT NULL AND m.text_content != ''
        """
    ).fetchone()["c"]
    return {"orphaned": int(orphaned), "unindexed": int(unindexed)}
