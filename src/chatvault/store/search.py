from __future__ import annotations

import sqlite3


def search_messages(
    conn: sqlite3.Connection,
    *,
    query: str,
    limit: int = 20,
    conversation_id: str | None = None,
) -> list[sqlite3.Row]:
    match_query = _to_fts5_query(query)
    where = ["messages_fts MATCH ?"]
    params: list[object] = [match_query]

    if conversation_id is not None:
        where.append("m.conversation_id = ?")
        params.append(conversation_id)

    where_sql = " AND ".join(where)

    return conn.execute(
        f"""
        SELECT
          m.id AS message_id,
          m.conversation_id AS conversation_id,
          c.title AS title,
          m.author_role AS author_role,
          m.message_order AS message_order,
          m.create_time AS create_time,
          snippet(messages_fts, 0, '[', ']', '...', 12) AS snippet,
          bm25(messages_fts) AS bm25
        FROM messages_fts
        JOIN messages m ON m.rowid = messages_fts.rowid
        JOIN conversations c ON c.id = m.conversation_id
        WHERE {where_sql}
        ORDER BY bm25 ASC, c.update_time DESC, m.conversation_id ASC, m.message_order ASC
        LIMIT ?
        """,
        (*params, limit),
    ).fetchall()


def search_conversation_ids(conn: sqlite3.Connection, query: str, limit: int = 20) -> list[str]:
    """Distinct conversations with at least one matching message."""
    ids: list[str] = []
    for row in search_messages(conn, query=query, limit=max(limit * 10, limit)):
        if row["conversation_id"] not in ids:
            ids.append(row["conversation_id"])
        if len(ids) >= limit:
            break
    return ids


def _to_fts5_query(query: str) -> str:
    """Convert arbitrary user text into a safe FTS5 MATCH expression.

    The query is matched as a literal phrase.
    """
    q = (query or "").strip()
    if not q:
        return '""'

    q = q.replace('"', '""')
    return f"\"{q}\""
