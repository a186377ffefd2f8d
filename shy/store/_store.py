from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .. import db, migrations
from ..config import ShyConfig
from ..errors import CommandNotFoundError
from . import dimensions
from . import ranges as store_ranges
from . import search as store_search
from .ranges import escape_like
from .types import COMMAND_COLUMNS, COMMAND_FROM, Command, ContextSummary, LikeRecentOptions

logger = logging.getLogger(__name__)


class HistoryStore:
    """Shell history on a single SQLite file.

    Opening the store runs pending schema migrations; a failed migration
    closes the connection and propagates ``MigrationError``.
    """

    def __init__(
        self,
        db_path: Path | str,
        *,
        config: ShyConfig | None = None,
        check_same_thread: bool = True,
    ):
        cfg = config or ShyConfig()
        self.db_path = Path(db_path)
        self.busy_timeout_ms = int(cfg.busy_timeout_ms)
        self.lock_retries = int(cfg.lock_retries)
        self.lock_backoff_ms = int(cfg.lock_backoff_ms)
        self.conn = db.connect(
            self.db_path,
            busy_timeout_ms=self.busy_timeout_ms,
            check_same_thread=check_same_thread,
        )
        try:
            migrations.migrate(
                self.conn, retries=self.lock_retries, backoff_ms=self.lock_backoff_ms
            )
        except Exception:
            self.conn.close()
            raise
        logger.info("opened %s at schema version %s", self.db_path, db.schema_version(self.conn))

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> HistoryStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def reader(self) -> sqlite3.Connection:
        """A fresh connection for use on another thread; the caller closes it."""
        return db.connect(
            self.db_path, busy_timeout_ms=self.busy_timeout_ms, check_same_thread=False
        )

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        with db.transaction(
            self.conn, "IMMEDIATE", retries=self.lock_retries, backoff_ms=self.lock_backoff_ms
        ) as conn:
            yield conn

    def insert_command(self, command: Command) -> int:
        """Append ``command`` and return its new id.

        Older rows with the same text are flagged ``is_duplicate`` in the same
        transaction.
        """

        with self._write() as conn:
            wd_id = dimensions.working_dir_id(conn, command.working_dir)
            git_id = dimensions.git_context_id(conn, command.git_repo, command.git_branch)
            src_id = dimensions.source_id(conn, command.source_app, command.source_pid)
            cur = conn.execute(
                """
                INSERT INTO commands(
                    timestamp, exit_status, duration, command_text,
                    working_dir_id, git_context_id, source_id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    int(command.timestamp),
                    int(command.exit_status),
                    command.duration,
                    command.command_text,
                    wd_id,
                    git_id,
                    src_id,
                ),
            )
            command_id = int(cur.lastrowid or 0)
            conn.execute(
                """
                UPDATE commands SET is_duplicate = 1
                WHERE command_text = ? AND id < ? AND is_duplicate = 0
                """,
                (command.command_text, command_id),
            )
        return command_id

    def ensure_working_dir(self, path: str) -> int:
        with self._write() as conn:
            return dimensions.working_dir_id(conn, path)

    def get_command(self, command_id: int) -> Command:
        row = self.conn.execute(
            f"SELECT {COMMAND_COLUMNS} FROM {COMMAND_FROM} WHERE c.id = ?", (command_id,)
        ).fetchone()
        if row is None:
            raise CommandNotFoundError(command_id)
        return Command.from_row(row)

    def count_commands(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) FROM commands").fetchone()
        return int(row[0])

    def most_recent_id(self) -> int:
        row = self.conn.execute("SELECT COALESCE(MAX(id), 0) FROM commands").fetchone()
        return int(row[0])

    def _select(self, where: str, params: list[Any], tail: str) -> list[Command]:
        rows = self.conn.execute(
            f"SELECT {COMMAND_COLUMNS} FROM {COMMAND_FROM} WHERE {where} {tail}", params
        ).fetchall()
        return [Command.from_row(row) for row in rows]

    def list_commands(
        self,
        limit: int = 0,
        *,
        source_app: str | None = None,
        source_pid: int | None = None,
        start: int | None = None,
        end: int | None = None,
    ) -> list[Command]:
        """The ``limit`` most recent commands, oldest first. ``limit <= 0`` lists all."""
        clauses = ["1 = 1"]
        params: list[Any] = []
        if source_app and source_pid:
            clauses.append("s.app = ? AND s.pid = ? AND s.active = 1")
            params.extend([source_app, source_pid])
        if start is not None:
            clauses.append("c.timestamp >= ?")
            params.append(start)
        if end is not None:
            clauses.append("c.timestamp < ?")
            params.append(end)
        tail = "ORDER BY c.timestamp DESC, c.id DESC"
        if limit > 0:
            tail += " LIMIT ?"
            params.append(limit)
        commands = self._select(" AND ".join(clauses), params, tail)
        commands.reverse()
        return commands

    def get_command_with_context(
        self, command_id: int, context_size: int = 3
    ) -> tuple[list[Command], Command, list[Command]]:
        target = self.get_command(command_id)
        if context_size <= 0:
            return [], target, []
        where_before = "c.id < ?"
        where_after = "c.id > ?"
        params: list[Any] = [command_id]
        if target.source_pid is not None:
            where_before += " AND s.pid = ?"
            where_after += " AND s.pid = ?"
            params.append(target.source_pid)
        before = self._select(where_before, [*params, context_size], "ORDER BY c.id DESC LIMIT ?")
        before.reverse()
        after = self._select(where_after, [*params, context_size], "ORDER BY c.id ASC LIMIT ?")
        return before, target, after

    def context_summary(self, start: int, end: int) -> list[ContextSummary]:
        rows = self.conn.execute(
            f"""
            SELECT
                w.path AS working_dir,
                g.branch AS git_branch,
                COUNT(*) AS command_count,
                MIN(c.timestamp) AS first_time,
                MAX(c.timestamp) AS last_time
            FROM {COMMAND_FROM}
            WHERE c.timestamp >= ? AND c.timestamp < ?
            GROUP BY w.path, g.branch
            ORDER BY (MAX(c.timestamp) - MIN(c.timestamp)) DESC, COUNT(*) DESC, w.path ASC
            """,
            (start, end),
        ).fetchall()
        return [
            ContextSummary(
                working_dir=str(row["working_dir"]),
                git_branch=row["git_branch"],
                command_count=int(row["command_count"]),
                first_time=int(row["first_time"]),
                last_time=int(row["last_time"]),
            )
            for row in rows
        ]

    def find_most_recent_matching(self, prefix: str, before_id: int | None = None) -> int | None:
        """Id of the newest command starting with ``prefix``, at or below ``before_id``."""
        sql = "SELECT id FROM commands WHERE command_text LIKE ? ESCAPE '\\'"
        params: list[Any] = [escape_like(prefix) + "%"]
        if before_id is not None:
            sql += " AND id <= ?"
            params.append(before_id)
        row = self.conn.execute(sql + " ORDER BY id DESC LIMIT 1", params).fetchone()
        return int(row[0]) if row else None

    # Session registry

    def is_session_active(self, app: str, pid: int) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM sources WHERE app = ? AND pid = ? AND active = 1 LIMIT 1", (app, pid)
        ).fetchone()
        return row is not None

    def close_session(self, pid: int) -> int:
        """Mark every active source row for ``pid`` closed; return how many changed."""
        with self._write() as conn:
            cur = conn.execute("UPDATE sources SET active = 0 WHERE pid = ? AND active = 1", (pid,))
            closed = cur.rowcount
        logger.debug("closed %s source rows for pid %s", closed, pid)
        return closed

    def active_session_pids(self) -> list[int]:
        rows = self.conn.execute(
            "SELECT DISTINCT pid FROM sources WHERE active = 1 ORDER BY pid"
        ).fetchall()
        return [int(row[0]) for row in rows]

    # Starred commands

    def star_command(self, command_id: int) -> None:
        with self._write() as conn:
            exists = conn.execute("SELECT 1 FROM commands WHERE id = ?", (command_id,)).fetchone()
            if exists is None:
                raise CommandNotFoundError(command_id)
            conn.execute(
                "INSERT OR IGNORE INTO starred_commands(command_id, starred_at) VALUES (?, ?)",
                (command_id, int(time.time())),
            )

    def unstar_command(self, command_id: int) -> bool:
        with self._write() as conn:
            cur = conn.execute("DELETE FROM starred_commands WHERE command_id = ?", (command_id,))
            return cur.rowcount > 0

    def is_starred(self, command_id: int) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM starred_commands WHERE command_id = ?", (command_id,)
        ).fetchone()
        return row is not None

    def list_starred(
        self,
        source_app: str | None = None,
        source_pid: int | None = None,
        working_dir: str | None = None,
    ) -> list[Command]:
        clauses = ["c.id IN (SELECT command_id FROM starred_commands)"]
        params: list[Any] = []
        if source_app and source_pid:
            clauses.append("s.app = ? AND s.pid = ?")
            params.extend([source_app, source_pid])
        if working_dir:
            clauses.append("w.path = ?")
            params.append(working_dir)
        return self._select(" AND ".join(clauses), params, "ORDER BY c.id ASC")

    # History resolution

    def like_recent(self, options: LikeRecentOptions) -> list[str]:
        return store_search.like_recent(self, options)

    def like_recent_after(
        self,
        prefix: str,
        prev_command: str,
        *,
        limit: int = 1,
        include_shy: bool = False,
        exclude: str | None = None,
    ) -> list[str]:
        return store_search.like_recent_after(
            self, prefix, prev_command, limit=limit, include_shy=include_shy, exclude=exclude
        )

    def recent_without_duplicates(
        self,
        limit: int,
        *,
        source_app: str | None,
        source_pid: int | None,
        working_dir: str | None = None,
    ) -> list[Command]:
        return store_search.recent_without_duplicates(
            self, limit, source_app=source_app, source_pid=source_pid, working_dir=working_dir
        )

    def recent_at_offset(
        self,
        offset: int,
        *,
        source_app: str | None,
        source_pid: int | None,
        working_dir: str | None = None,
    ) -> Command | None:
        return store_search.recent_at_offset(
            self, offset, source_app=source_app, source_pid=source_pid, working_dir=working_dir
        )

    def resolve_range(
        self, first: int | None = None, last: int | None = None, *, default_count: int = 16
    ) -> tuple[int, int]:
        return store_ranges.resolve_range(self, first, last, default_count=default_count)

    def commands_by_range(
        self,
        first: int,
        last: int,
        *,
        pattern: str | None = None,
        session_pid: int | None = None,
    ) -> list[Command]:
        return store_ranges.commands_by_range(
            self, first, last, pattern=pattern, session_pid=session_pid
        )

    def iter_unique_commands(self, callback: Callable[[int, str], bool | None]) -> int:
        return store_ranges.iter_unique_commands(self, callback)
