from __future__ import annotations

import sqlite3
from pathlib import Path

from ..errors import StoreInitError

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS conversations(
  id TEXT PRIMARY KEY,
  title TEXT NOT NULL,
  create_time INTEGER NOT NULL,
  update_time INTEGER NOT NULL,
  model_slug TEXT,
  is_archived BOOLEAN DEFAULT 0
);

CREATE TABLE IF NOT EXISTS messages(
  id TEXT PRIMARY KEY,
  conversation_id TEXT NOT NULL,
  parent_id TEXT,
  author_role TEXT NOT NULL,
  content_type TEXT NOT NULL,
  text_content TEXT,
  create_time INTEGER,
  model_slug TEXT,
  message_order INTEGER,
  has_assets BOOLEAN DEFAULT 0,
  FOREIGN KEY(conversation_id) REFERENCES conversations(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS assets(
  id TEXT PRIMARY KEY,
  message_id TEXT NOT NULL,
  asset_pointer TEXT NOT NULL,
  content_type TEXT NOT NULL,
  size_bytes INTEGER,
  width INTEGER,
  height INTEGER,
  metadata TEXT,
  asset_order INTEGER,
  file_content BLOB,
  file_name TEXT,
  mime_type TEXT,
  FOREIGN KEY(message_id) REFERENCES messages(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_conversations_create_time ON conversations(create_time DESC);
CREATE INDEX IF NOT EXISTS idx_conversations_title ON conversations(title);
CREATE INDEX IF NOT EXISTS idx_messages_conversation_id ON messages(conversation_id);
CREATE INDEX IF NOT EXISTS idx_messages_create_time ON messages(create_time DESC);
CREATE INDEX IF NOT EXISTS idx_messages_content_type ON messages(content_type);
CREATE INDEX IF NOT EXISTS idx_messages_author_role ON messages(author_role);
CREATE INDEX IF NOT EXISTS idx_messages_has_assets ON messages(has_assets);
CREATE INDEX IF NOT EXISTS idx_assets_message_id ON assets(message_id);
CREATE INDEX IF NOT EXISTS idx_assets_content_type ON assets(content_type);

-- Index rows share the message's rowid.
CREATE VIRTUAL TABLE IF NOT EXISTS messages_fts USING fts5(
  text_content,
  conversation_title
);

CREATE TRIGGER IF NOT EXISTS messages_fts_insert AFTER INSERT ON messages BEGIN
  INSERT INTO messages_fts(rowid, text_content, conversation_title)
  SELECT
    NEW.rowid,
    NEW.text_content,
    (SELECT title FROM conversations WHERE id = NEW.conversation_id)
  WHERE NEW.text_content IS NOT NULL AND NEW.text_content != '';
END;

CREATE TRIGGER IF NOT EXISTS messages_fts_delete AFTER DELETE ON messages BEGIN
  DELETE FROM messages_fts WHERE rowid = OLD.rowid;
END;

CREATE TRIGGER IF NOT EXISTS messages_fts_update AFTER UPDATE ON messages BEGIN
  DELETE FROM messages_fts WHERE rowid = OLD.rowid;
  INSERT INTO messages_fts(rowid, text_content, conversation_title)
  SELECT
    NEW.rowid,
    NEW.text_content,
    (SELECT title FROM conversations WHERE id = NEW.conversation_id)
  WHERE NEW.text_content IS NOT NULL AND NEW.text_content != '';
END;
"""


def connect(db_path: Path) -> sqlite3.Connection:
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def create_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)


def drop_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        DROP TRIGGER IF EXISTS messages_fts_update;
        DROP TRIGGER IF EXISTS messages_fts_delete;
        DROP TRIGGER IF EXISTS messages_fts_insert;
        DROP TABLE IF EXISTS messages_fts;
        DROP TABLE IF EXISTS assets;
        DROP TABLE IF EXISTS messages;
        DROP TABLE IF EXISTS conversations;
        """
    )


def open_store(db_path: Path, *, fresh: bool = False) -> sqlite3.Connection:
    """Connect and ensure the schema exists.

    Raises:
        StoreInitError: the database cannot be opened or initialized
    """
    try:
        conn = connect(db_path)
    except (sqlite3.Error, OSError) as e:
        raise StoreInitError(f"Failed to open database {db_path}: {e}") from e
    try:
        if fresh:
            drop_schema(conn)
        create_schema(conn)
    except sqlite3.Error as e:
        conn.close()
        raise StoreInitError(f"Failed to create schema in {db_path}: {e}") from e
    return conn
