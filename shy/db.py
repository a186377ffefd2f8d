from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .errors import StoreBusyError

logger = logging.getLogger(__name__)

DEFAULT_BUSY_TIMEOUT_MS = 5000
DEFAULT_LOCK_RETRIES = 5
DEFAULT_LOCK_BACKOFF_MS = 10
WAL_ATTEMPTS = 5


def is_lock_error(exc: sqlite3.OperationalError) -> bool:
    text = str(exc).lower()
    return "locked" in text or "busy" in text


def connect(
    db_path: Path | str,
    *,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    check_same_thread: bool = True,
) -> sqlite3.Connection:
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    # Autocommit mode: every transaction is opened explicitly with BEGIN.
    conn = sqlite3.connect(
        path,
        timeout=busy_timeout_ms / 1000,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA case_sensitive_like = ON")
    _enable_wal(conn)
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def _enable_wal(conn: sqlite3.Connection) -> None:
    # Concurrent shells race to switch the journal mode on a fresh file.
    for attempt in range(WAL_ATTEMPTS):
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            return
        except sqlite3.OperationalError as exc:
            if is_lock_error(exc) and attempt + 1 < WAL_ATTEMPTS:
                time.sleep(0.01)
                continue
            if is_lock_error(exc):
                raise StoreBusyError(f"could not enable WAL mode: {exc}") from exc
            conn.execute("PRAGMA journal_mode = DELETE")
            return


def begin(
    conn: sqlite3.Connection,
    mode: str = "IMMEDIATE",
    *,
    retries: int = DEFAULT_LOCK_RETRIES,
    backoff_ms: int = DEFAULT_LOCK_BACKOFF_MS,
) -> None:
    """Open a transaction, retrying with exponential backoff while the lock is held.

    ``busy_timeout`` already makes SQLite wait inside each attempt; the retry
    loop covers the cases where SQLite gives up immediately (for example a
    deadlock between a reader upgrading to a writer and another writer).
    Exhausting the budget raises ``StoreBusyError``.
    """

    attempt = 0
    while True:
        try:
            conn.execute(f"BEGIN {mode}")
            return
        except sqlite3.OperationalError as exc:
            if not is_lock_error(exc):
                raise
            if attempt >= retries:
                logger.warning("lock retry budget exhausted (%s attempts, mode=%s)", attempt, mode)
                raise StoreBusyError(f"database is locked after {attempt} retries") from exc
            delay = backoff_ms * (2**attempt) / 1000
            logger.debug("database locked; retry %s in %.3fs", attempt + 1, delay)
            time.sleep(delay)
            attempt += 1


@contextmanager
def transaction(
    conn: sqlite3.Connection,
    mode: str = "IMMEDIATE",
    *,
    retries: int = DEFAULT_LOCK_RETRIES,
    backoff_ms: int = DEFAULT_LOCK_BACKOFF_MS,
) -> Iterator[sqlite3.Connection]:
    begin(conn, mode, retries=retries, backoff_ms=backoff_ms)
    try:
        yield conn
    except BaseException:
        if conn.in_transaction:
            conn.rollback()
        raise
    conn.commit()


def schema_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row else 0


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
    ).fetchone()
    return row is not None


def table_columns(conn: sqlite3.Connection, table: str) -> list[str]:
    return [str(row[1]) for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]
