"""
SQLite connection management and schema creation.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

SCHEMA = """
CREATE TABLE IF NOT EXISTS system_settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS inflight_calls (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT,
    stage TEXT NOT NULL,
    activity TEXT NOT NULL,
    model TEXT NOT NULL,
    input TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_inflight_user_activity
    ON inflight_calls (user_id, activity);

CREATE TABLE IF NOT EXISTS prompt_metrics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    activity TEXT NOT NULL,
    model TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    latency_ms INTEGER NOT NULL,
    outcome TEXT NOT NULL CHECK (outcome IN ('success', 'error')),
    error_kind TEXT,
    tokens_in INTEGER NOT NULL DEFAULT 0,
    tokens_out INTEGER NOT NULL DEFAULT 0,
    cached_tokens_in INTEGER NOT NULL DEFAULT 0,
    cached_tokens_out INTEGER NOT NULL DEFAULT 0,
    user_id TEXT,
    attempts INTEGER NOT NULL DEFAULT 1,
    metadata TEXT
);

CREATE INDEX IF NOT EXISTS idx_prompt_metrics_activity_ts
    ON prompt_metrics (activity, timestamp);

CREATE TABLE IF NOT EXISTS characters (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    reference_image_url TEXT,
    thumbnail_url TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS stories (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'draft',
    wizard_state TEXT,
    cover_url TEXT,
    cover_updated_at TEXT,
    pdf_url TEXT,
    pdf_generated_at TEXT,
    export_claim_token TEXT,
    export_claim_expires_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS story_characters (
    story_id TEXT NOT NULL REFERENCES stories (id) ON DELETE CASCADE,
    character_id TEXT NOT NULL REFERENCES characters (id) ON DELETE CASCADE,
    PRIMARY KEY (story_id, character_id)
);

CREATE TABLE IF NOT EXISTS story_pages (
    id TEXT PRIMARY KEY,
    story_id TEXT NOT NULL REFERENCES stories (id) ON DELETE CASCADE,
    page_number INTEGER NOT NULL,
    text TEXT NOT NULL DEFAULT '',
    image_url TEXT,
    prompt TEXT,
    updated_at TEXT,
    UNIQUE (story_id, page_number)
);

CREATE TABLE IF NOT EXISTS orders (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    fulfillment_status TEXT,
    fulfilled_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS order_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id TEXT NOT NULL REFERENCES orders (id) ON DELETE CASCADE,
    story_id TEXT NOT NULL
);
"""


def get_connection(db_path: str = "storyforge.db") -> sqlite3.Connection:
    """Create and return a SQLite connection with foreign keys enabled.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection returning :class:`sqlite3.Row` rows
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=30.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def connect(db_path: str) -> Iterator[sqlite3.Connection]:
    """Open a connection, commit on success, roll back on error, always close."""
    conn = get_connection(db_path)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def initialize_schema(db_path: str = "storyforge.db") -> None:
    """Create every table used by the generation subsystem if missing."""
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA)
        conn.commit()
    finally:
        conn.close()
