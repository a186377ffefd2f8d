"""Versioned schema upgrades for the history database.

The schema version lives in ``PRAGMA user_version``. ``MIGRATIONS[i]`` moves a
store from version ``i`` to ``i + 1``; steps are only ever appended.

Each step runs in its own ``BEGIN EXCLUSIVE`` transaction together with the
version bump, so a failing step leaves the store at the version it had before
that step. The version is re-read after the lock is taken: when two shells open
an old store at the same time, the second one finds the work already done.

Statements are issued one by one with ``execute``; ``executescript`` would
commit the open transaction before running.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from . import db
from .errors import MigrationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    apply: Callable[[sqlite3.Connection], None]


COMMANDS_TABLE = """
    CREATE TABLE IF NOT EXISTS {name} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp INTEGER NOT NULL,
        exit_status INTEGER NOT NULL,
        duration INTEGER,
        command_text TEXT NOT NULL,
        working_dir_id INTEGER NOT NULL REFERENCES working_dirs(id),
        git_context_id INTEGER REFERENCES git_contexts(id),
        source_id INTEGER REFERENCES sources(id),
        is_duplicate INTEGER NOT NULL DEFAULT 0
    )
"""

DIMENSION_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS working_dirs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        path TEXT NOT NULL UNIQUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS git_contexts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        repo TEXT,
        branch TEXT
    )
    """,
    # NULL members never compare equal in a plain UNIQUE constraint.
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_git_contexts_key
        ON git_contexts (IFNULL(repo, ''), IFNULL(branch, ''))
    """,
    """
    CREATE TABLE IF NOT EXISTS sources (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        app TEXT NOT NULL,
        pid INTEGER NOT NULL,
        active INTEGER NOT NULL DEFAULT 1
    )
    """,
    # One active row per (app, pid); closed rows accumulate.
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_sources_app_pid_active
        ON sources (app, pid, active) WHERE active = 1
    """,
    "CREATE INDEX IF NOT EXISTS idx_sources_pid_active ON sources (pid, active)",
)

COMMAND_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_source_timestamp ON commands (source_id, timestamp DESC)",
    "CREATE INDEX IF NOT EXISTS idx_working_dir_timestamp ON commands (working_dir_id, timestamp DESC)",
    "CREATE INDEX IF NOT EXISTS idx_timestamp_desc ON commands (timestamp DESC)",
    "CREATE INDEX IF NOT EXISTS idx_command_text_id ON commands (command_text, id DESC)",
    "CREATE INDEX IF NOT EXISTS idx_not_duplicate ON commands (id DESC) WHERE is_duplicate = 0",
)


def _is_legacy_layout(conn: sqlite3.Connection) -> bool:
    if not db.table_exists(conn, "commands"):
        return False
    return "working_dir" in db.table_columns(conn, "commands")


def _create_event_store(conn: sqlite3.Connection) -> None:
    for statement in DIMENSION_TABLES:
        conn.execute(statement)
    if _is_legacy_layout(conn):
        _rewrite_legacy_commands(conn)
    else:
        conn.execute(COMMANDS_TABLE.format(name="commands"))
    for statement in COMMAND_INDEXES:
        conn.execute(statement)


def _rewrite_legacy_commands(conn: sqlite3.Connection) -> None:
    """Rewrite the flat single-table layout into commands + dimension tables.

    Older builds stored working directory, git and source columns inline and
    added ``duration`` and the ``source_*`` columns over time, so any of those
    may be missing. Row ids are preserved.
    """

    columns = set(db.table_columns(conn, "commands"))

    def column(name: str, fallback: str = "NULL") -> str:
        return f"c.{name}" if name in columns else fallback

    repo = column("git_repo")
    branch = column("git_branch")
    app = column("source_app")
    pid = column("source_pid")
    active = f"COALESCE({column('source_active')}, 1)" if "source_active" in columns else "1"

    seq_row = None
    if db.table_exists(conn, "sqlite_sequence"):
        seq_row = conn.execute("SELECT seq FROM sqlite_sequence WHERE name = 'commands'").fetchone()

    conn.execute(COMMANDS_TABLE.format(name="commands_new"))
    conn.execute(
        "INSERT OR IGNORE INTO working_dirs(path) SELECT DISTINCT working_dir FROM commands"
    )
    conn.execute(
        f"""
        INSERT OR IGNORE INTO git_contexts(repo, branch)
        SELECT DISTINCT {repo}, {branch}
        FROM commands c
        WHERE {repo} IS NOT NULL OR {branch} IS NOT NULL
        """
    )
    if app != "NULL" and pid != "NULL":
        conn.execute(
            f"""
            INSERT INTO sources(app, pid, active)
            SELECT DISTINCT {app}, {pid}, {active}
            FROM commands c
            WHERE {app} IS NOT NULL AND {pid} IS NOT NULL
            """
        )
        source_expr = f"""(
            SELECT s.id FROM sources s
            WHERE s.app = {app} AND s.pid = {pid} AND s.active = {active}
        )"""
    else:
        source_expr = "NULL"
    conn.execute(
        f"""
        INSERT INTO commands_new (
            id, timestamp, exit_status, duration, command_text,
            working_dir_id, git_context_id, source_id
        )
        SELECT
            c.id,
            c.timestamp,
            c.exit_status,
            {column("duration")},
            c.command_text,
            w.id,
            (
                SELECT g.id FROM git_contexts g
                WHERE g.repo IS {repo} AND g.branch IS {branch}
            ),
            {source_expr}
        FROM commands c
        JOIN working_dirs w ON w.path = c.working_dir
        ORDER BY c.id
        """
    )
    conn.execute("DROP TABLE commands")
    conn.execute("ALTER TABLE commands_new RENAME TO commands")
    if seq_row is not None:
        conn.execute(
            "UPDATE sqlite_sequence SET seq = MAX(seq, ?) WHERE name = 'commands'",
            (int(seq_row[0]),),
        )
    conn.execute(
        """
        UPDATE commands SET is_duplicate = 1
        WHERE id NOT IN (SELECT MAX(id) FROM commands GROUP BY command_text)
        """
    )


def _create_starred_commands(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS starred_commands (
            command_id INTEGER PRIMARY KEY REFERENCES commands(id),
            starred_at INTEGER NOT NULL
        )
        """
    )


MIGRATIONS: tuple[Migration, ...] = (
    Migration(1, "event store", _create_event_store),
    Migration(2, "starred commands", _create_starred_commands),
)

LATEST_VERSION = len(MIGRATIONS)


def pending_versions(conn: sqlite3.Connection, migrations: Sequence[Migration] = MIGRATIONS) -> list[int]:
    current = db.schema_version(conn)
    return [step.version for step in migrations[current:]]


def migrate(
    conn: sqlite3.Connection,
    *,
    migrations: Sequence[Migration] = MIGRATIONS,
    retries: int = db.DEFAULT_LOCK_RETRIES,
    backoff_ms: int = db.DEFAULT_LOCK_BACKOFF_MS,
) -> list[int]:
    """Bring ``conn`` to the latest schema version; return the versions applied."""

    latest = len(migrations)
    applied: list[int] = []
    if db.schema_version(conn) >= latest:
        return applied

    while True:
        db.begin(conn, "EXCLUSIVE", retries=retries, backoff_ms=backoff_ms)
        target = 0
        try:
            current = db.schema_version(conn)
            if current >= latest:
                conn.rollback()
                return applied
            step = migrations[current]
            target = current + 1
            if step.version != target:
                raise RuntimeError(f"step {step.name!r} is numbered {step.version}, expected {target}")
            step.apply(conn)
            conn.execute(f"PRAGMA user_version = {target}")
            conn.commit()
        except Exception as exc:
            if conn.in_transaction:
                conn.rollback()
            logger.warning("schema migration to version %s failed", target, exc_info=exc)
            raise MigrationError(target, str(exc)) from exc
        logger.info("applied schema migration %s -> %s (%s)", current, target, step.name)
        applied.append(target)
