from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from typing import Any


def _get_or_create(
    conn: sqlite3.Connection,
    select_sql: str,
    select_args: Sequence[Any],
    insert_sql: str,
    insert_args: Sequence[Any],
) -> int:
    row = conn.execute(select_sql, select_args).fetchone()
    if row is not None:
        return int(row[0])
    try:
        cur = conn.execute(insert_sql, insert_args)
    except sqlite3.IntegrityError:
        # Another writer created the row between our read and insert.
        row = conn.execute(select_sql, select_args).fetchone()
        if row is None:
            raise
        return int(row[0])
    return int(cur.lastrowid or 0)


def working_dir_id(conn: sqlite3.Connection, path: str) -> int:
    return _get_or_create(
        conn,
        "SELECT id FROM working_dirs WHERE path = ?",
        (path,),
        "INSERT INTO working_dirs(path) VALUES (?)",
        (path,),
    )


def git_context_id(conn: sqlite3.Connection, repo: str | None, branch: str | None) -> int | None:
    # The unique index treats NULL and '' alike; store only NULL.
    repo = repo or None
    branch = branch or None
    if repo is None and branch is None:
        return None
    return _get_or_create(
        conn,
        "SELECT id FROM git_contexts WHERE repo IS ? AND branch IS ?",
        (repo, branch),
        "INSERT INTO git_contexts(repo, branch) VALUES (?, ?)",
        (repo, branch),
    )


def source_id(
    conn: sqlite3.Connection, app: str | None, pid: int | None, *, active: bool = True
) -> int | None:
    if not app or pid is None:
        return None
    flag = 1 if active else 0
    return _get_or_create(
        conn,
        "SELECT id FROM sources WHERE app = ? AND pid = ? AND active = ? ORDER BY id DESC LIMIT 1",
        (app, pid, flag),
        "INSERT INTO sources(app, pid, active) VALUES (?, ?, ?)",
        (app, pid, flag),
    )


def active_source_ids(conn: sqlite3.Connection, app: str, pid: int) -> list[int]:
    rows = conn.execute(
        "SELECT id FROM sources WHERE app = ? AND pid = ? AND active = 1", (app, pid)
    ).fetchall()
    return [int(row[0]) for row in rows]
