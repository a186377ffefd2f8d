from __future__ import annotations

import sqlite3
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .. import db
from .types import COMMAND_COLUMNS, COMMAND_FROM, Command

if TYPE_CHECKING:
    from ._store import HistoryStore

DEFAULT_LIST_COUNT = 16


def escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def glob_to_like(pattern: str) -> str:
    """Translate a glob (``*`` any run, ``?`` one character) into a LIKE pattern.

    LIKE's own wildcards in the input are escaped first; use with ``ESCAPE '\\'``.
    """

    return escape_like(pattern).replace("*", "%").replace("?", "_")


def resolve_bound(value: int, max_id: int) -> int:
    if value < 0:
        return max(max_id + value + 1, 1)
    if value == 0:
        return max_id
    return value


def resolve_range(
    store: HistoryStore,
    first: int | None = None,
    last: int | None = None,
    *,
    default_count: int = DEFAULT_LIST_COUNT,
) -> tuple[int, int]:
    """Resolve shell-style history bounds against the current max id.

    Negative values count back from the most recent event (``-1`` is the most
    recent), ``0`` is the most recent event. With no bounds the last
    ``default_count`` events are selected; with only ``first`` the range runs
    to the most recent event. An empty store yields the empty range ``(0, -1)``.
    """

    max_id = store.most_recent_id()
    if max_id == 0:
        return 0, -1
    if first is None:
        return max(max_id - default_count + 1, 1), max_id
    start = resolve_bound(first, max_id)
    end = max_id if last is None else resolve_bound(last, max_id)
    return start, end


def commands_by_range(
    store: HistoryStore,
    first: int,
    last: int,
    *,
    pattern: str | None = None,
    session_pid: int | None = None,
) -> list[Command]:
    """Events with ``first <= id <= last``, keeping the highest id per command text.

    ``pattern`` is a glob matched against the whole command text;
    ``session_pid`` restricts to the active rows of that session.
    """

    if first > last:
        return []
    conn = store.conn
    with db.transaction(conn, "DEFERRED"):
        if pattern is None and session_pid is None and last >= _max_id(conn):
            return _range_by_flag(conn, first, last)
        return _range_by_aggregate(conn, first, last, pattern=pattern, session_pid=session_pid)


def _max_id(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT COALESCE(MAX(id), 0) FROM commands").fetchone()
    return int(row[0])


def _range_by_aggregate(
    conn: sqlite3.Connection,
    first: int,
    last: int,
    *,
    pattern: str | None = None,
    session_pid: int | None = None,
) -> list[Command]:
    joins = ""
    clauses = ["c2.id >= ?", "c2.id <= ?"]
    params: list[Any] = [first, last]
    if session_pid is not None:
        joins = "JOIN sources s2 ON s2.id = c2.source_id"
        clauses.append("s2.pid = ? AND s2.active = 1")
        params.append(session_pid)
    if pattern is not None:
        clauses.append("c2.command_text LIKE ? ESCAPE '\\'")
        params.append(glob_to_like(pattern))
    where = " AND ".join(clauses)
    rows = conn.execute(
        f"""
        SELECT {COMMAND_COLUMNS}
        FROM {COMMAND_FROM}
        WHERE c.id IN (
            SELECT MAX(c2.id)
            FROM commands c2
            {joins}
            WHERE {where}
            GROUP BY c2.command_text
        )
        ORDER BY c.id ASC
        """,
        params,
    ).fetchall()
    return [Command.from_row(row) for row in rows]


def _range_by_flag(conn: sqlite3.Connection, first: int, last: int) -> list[Command]:
    # Only valid when no row newer than ``last`` exists: the flag marks rows
    # that have a later twin anywhere in the table.
    rows = conn.execute(
        f"""
        SELECT {COMMAND_COLUMNS}
        FROM {COMMAND_FROM}
        WHERE c.id >= ? AND c.id <= ? AND c.is_duplicate = 0
        ORDER BY c.id ASC
        """,
        (first, last),
    ).fetchall()
    return [Command.from_row(row) for row in rows]


def iter_unique_commands(
    store: HistoryStore, callback: Callable[[int, str], bool | None]
) -> int:
    """Push each surviving ``(id, command_text)`` to ``callback``, newest first.

    Rows are streamed from the cursor. Returning ``False`` from the callback
    stops the export. Returns the number of entries delivered.
    """

    delivered = 0
    cursor = store.conn.execute(
        "SELECT id, command_text FROM commands WHERE is_duplicate = 0 ORDER BY id DESC"
    )
    try:
        for row in cursor:
            delivered += 1
            if callback(int(row[0]), str(row[1])) is False:
                break
    finally:
        cursor.close()
    return delivered
