"""
SQLite connection management and schema migrations.

Connections run in autocommit mode (``isolation_level=None``); callers open
explicit transactions so a dedup read and the write that follows it commit
together.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from gazetteer_geo.errors import StoreUnavailable

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def connect(path: str, busy_timeout_ms: int = 5000) -> sqlite3.Connection:
    """Open a connection with the PRAGMAs the store relies on."""
    in_memory = path == ":memory:" or path.startswith("file::memory:")
    try:
        if not in_memory:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            path,
            timeout=busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        if not in_memory:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
    except (sqlite3.OperationalError, OSError) as e:
        raise StoreUnavailable(f"cannot open gazetteer store at {path}: {e}") from e
    logger.debug("Opened gazetteer store at %s", path)
    return conn


def run_migrations(conn: sqlite3.Connection) -> int:
    """Execute SQL migrations in order (idempotent). Returns files applied."""
    migration_paths = sorted(MIGRATIONS_DIR.glob("*.sql"))
    try:
        for path in migration_paths:
            conn.executescript(path.read_text(encoding="utf-8"))
            logger.debug("Applied migration: %s", path.name)
    except sqlite3.OperationalError as e:
        raise StoreUnavailable(f"migration failed: {e}") from e
    logger.info("Migrations applied successfully (%d files)", len(migration_paths))
    return len(migration_paths)
