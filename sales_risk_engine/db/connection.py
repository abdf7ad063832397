"""
SQLite connection management.

``get_connection()`` yields a connection with foreign keys on, WAL journal
mode (so the batch orchestrator's sink writes do not block registry reads),
a busy timeout and ``sqlite3.Row`` rows.  It commits on clean exit and rolls
back on exception.

Connections are short-lived: open one per unit of work, from the thread
that uses it.  Worker threads never share a connection.

Usage::

    from sales_risk_engine.db.connection import get_connection

    with get_connection(config.database.db_path) as conn:
        RunRepository(conn).upsert(run)
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> Generator[sqlite3.Connection, None, None]:
    """Context manager yielding a configured SQLite connection.

    Args:
        db_path:         Database file path; parent directories are created.
                         ``":memory:"`` gives a throwaway in-memory database.
        wal_mode:        Enable WAL journal mode.
        busy_timeout_ms: How long to wait on a locked database.

    Raises:
        sqlite3.OperationalError: If the database cannot be opened or stays locked.
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path, timeout=busy_timeout_ms / 1000)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)};")
        if wal_mode and db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL;")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
