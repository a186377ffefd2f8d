from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import closing
from typing import TYPE_CHECKING, Any

from .. import db
from ..errors import SessionRequiredError
from . import dimensions
from .ranges import escape_like
from .types import COMMAND_COLUMNS, COMMAND_FROM, Command, LikeRecentOptions

if TYPE_CHECKING:
    from ._store import HistoryStore

logger = logging.getLogger(__name__)

SELF_INVOCATION_FILTER = "c.command_text NOT LIKE 'shy %' AND c.command_text != 'shy'"
OVERPROVISION_FACTOR = 3
MIN_FETCH = 50
RECENT_MATCH_WINDOW = 200


def _prefix_clauses(
    prefix: str, *, include_shy: bool, exclude: str | None
) -> tuple[list[str], list[Any]]:
    clauses = ["c.command_text LIKE ? ESCAPE '\\'"]
    params: list[Any] = [escape_like(prefix) + "%"]
    if not include_shy:
        clauses.append(SELF_INVOCATION_FILTER)
    if exclude:
        clauses.append("c.command_text NOT GLOB ?")
        params.append(exclude)
    return clauses, params


def _scope_queries(options: LikeRecentOptions) -> list[tuple[str, list[str], list[Any]]]:
    base, base_params = _prefix_clauses(
        options.prefix, include_shy=options.include_shy, exclude=options.exclude
    )
    scopes: list[tuple[str, list[str], list[Any]]] = []
    if options.has_session():
        clauses = [*base, "s.app = ?", "s.pid = ?", "s.active = 1"]
        params = [*base_params, options.source_app, options.source_pid]
        if options.working_dir:
            clauses.append("w.path = ?")
            params.append(options.working_dir)
        scopes.append(("session", clauses, params))
    elif options.working_dir:
        scopes.append(("directory", [*base, "w.path = ?"], [*base_params, options.working_dir]))
    scopes.append(("global", base, base_params))
    return scopes


def _run_scope(store: HistoryStore, clauses: Sequence[str], params: Sequence[Any], limit: int) -> list[str]:
    where = " AND ".join(clauses)
    # One connection per worker thread.
    with closing(store.reader()) as conn:
        rows = conn.execute(
            f"""
            SELECT c.command_text
            FROM {COMMAND_FROM}
            WHERE {where}
            GROUP BY c.command_text
            ORDER BY MAX(c.timestamp) DESC, MAX(c.id) DESC
            LIMIT ?
            """,
            [*params, limit],
        ).fetchall()
    return [str(row[0]) for row in rows]


def like_recent(store: HistoryStore, options: LikeRecentOptions) -> list[str]:
    """Most recent commands starting with ``options.prefix`` from the narrowest scope that has any.

    Scopes, in priority order: the active session (narrowed to the working
    directory when both are given), the working directory (only when no session
    is given), then the whole history. All applicable scopes are queried in
    parallel; the first non-empty one in priority order wins.
    """

    limit = options.limit if options.limit > 0 else 1
    scopes = _scope_queries(options)
    with ThreadPoolExecutor(max_workers=len(scopes), thread_name_prefix="shy-scope") as pool:
        futures: list[Future[list[str]]] = [
            pool.submit(_run_scope, store, clauses, params, limit) for _, clauses, params in scopes
        ]
        try:
            for (scope, _, _), future in zip(scopes, futures):
                results = future.result()
                if results:
                    logger.debug("like_recent answered from %s scope", scope)
                    return results
            return []
        finally:
            # Queries already running are joined when the pool shuts down.
            for future in futures:
                future.cancel()


def like_recent_after(
    store: HistoryStore,
    prefix: str,
    prev_command: str,
    *,
    limit: int = 1,
    include_shy: bool = False,
    exclude: str | None = None,
) -> list[str]:
    clauses, params = _prefix_clauses(prefix, include_shy=include_shy, exclude=exclude)
    where = " AND ".join(clauses)
    rows = store.conn.execute(
        f"""
        WITH recent_matches AS (
            SELECT c.id, c.command_text, c.timestamp
            FROM commands c
            WHERE {where}
            ORDER BY c.timestamp DESC, c.id DESC
            LIMIT {RECENT_MATCH_WINDOW}
        )
        SELECT rm.command_text
        FROM recent_matches rm
        JOIN commands prev ON prev.id = (
            SELECT MAX(p.id) FROM commands p WHERE p.id < rm.id
        )
        WHERE prev.command_text = ?
        GROUP BY rm.command_text
        ORDER BY MAX(rm.timestamp) DESC, MAX(rm.id) DESC
        LIMIT ?
        """,
        [*params, prev_command, limit if limit > 0 else 1],
    ).fetchall()
    return [str(row[0]) for row in rows]


def _fetch_bucket(
    conn: sqlite3.Connection, clauses: Sequence[str], params: Sequence[Any], fetch: int
) -> list[Command]:
    where = " AND ".join(clauses)
    rows = conn.execute(
        f"""
        SELECT {COMMAND_COLUMNS}
        FROM {COMMAND_FROM}
        WHERE {where}
        ORDER BY c.timestamp DESC, c.id DESC
        LIMIT ?
        """,
        [*params, fetch],
    ).fetchall()
    return [Command.from_row(row) for row in rows]


def _append_without_adjacent(merged: list[Command], bucket: Sequence[Command], want: int) -> None:
    for command in bucket:
        if len(merged) >= want:
            return
        if merged and merged[-1].command_text == command.command_text:
            continue
        merged.append(command)


def _outside_sources(source_ids: Sequence[int]) -> tuple[str, list[Any]]:
    if not source_ids:
        return "1 = 1", []
    marks = ", ".join("?" for _ in source_ids)
    return f"(c.source_id IS NULL OR c.source_id NOT IN ({marks}))", list(source_ids)


def _recent_merged(
    store: HistoryStore,
    want: int,
    *,
    source_app: str | None,
    source_pid: int | None,
    working_dir: str | None,
) -> list[Command]:
    if not source_app or not source_pid:
        raise SessionRequiredError("both source app and source pid are required")
    fetch = max(want * OVERPROVISION_FACTOR, MIN_FETCH)
    merged: list[Command] = []
    conn = store.conn
    with db.transaction(conn, "DEFERRED"):
        session_ids = dimensions.active_source_ids(conn, source_app, source_pid)
        if session_ids:
            marks = ", ".join("?" for _ in session_ids)
            bucket = _fetch_bucket(conn, [f"c.source_id IN ({marks})"], session_ids, fetch)
            _append_without_adjacent(merged, bucket, want)
        if len(merged) >= want:
            return merged

        outside_session, outside_params = _outside_sources(session_ids)
        if working_dir:
            bucket = _fetch_bucket(
                conn, [outside_session, "w.path = ?"], [*outside_params, working_dir], fetch
            )
            _append_without_adjacent(merged, bucket, want)
            if len(merged) >= want:
                return merged

        clauses = [outside_session]
        params: list[Any] = list(outside_params)
        if working_dir:
            clauses.append("w.path != ?")
            params.append(working_dir)
        _append_without_adjacent(merged, _fetch_bucket(conn, clauses, params, fetch), want)
    return merged


def recent_without_duplicates(
    store: HistoryStore,
    limit: int,
    *,
    source_app: str | None,
    source_pid: int | None,
    working_dir: str | None = None,
) -> list[Command]:
    """Up to ``limit`` recent commands, session first, then directory, then global.

    Within the merged sequence a command is dropped only when its text equals
    the one directly before it.
    """

    if limit <= 0:
        return []
    return _recent_merged(
        store, limit, source_app=source_app, source_pid=source_pid, working_dir=working_dir
    )


def recent_at_offset(
    store: HistoryStore,
    offset: int,
    *,
    source_app: str | None,
    source_pid: int | None,
    working_dir: str | None = None,
) -> Command | None:
    if offset < 0:
        return None
    merged = _recent_merged(
        store, offset + 1, source_app=source_app, source_pid=source_pid, working_dir=working_dir
    )
    if len(merged) <= offset:
        return None
    return merged[offset]
