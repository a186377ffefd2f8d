from __future__ import annotations

import sqlite3
import time
from dataclasses import dataclass


@dataclass
class Command:
    command_text: str
    working_dir: str
    exit_status: int = 0
    timestamp: int = 0
    duration: int | None = None
    git_repo: str | None = None
    git_branch: str | None = None
    source_app: str | None = None
    source_pid: int | None = None
    source_active: bool | None = None
    id: int | None = None

    @classmethod
    def new(cls, command_text: str, working_dir: str, exit_status: int = 0) -> Command:
        return cls(
            command_text=command_text,
            working_dir=working_dir,
            exit_status=exit_status,
            timestamp=int(time.time()),
        )

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Command:
        active = row["source_active"]
        return cls(
            id=int(row["id"]),
            timestamp=int(row["timestamp"]),
            exit_status=int(row["exit_status"]),
            duration=None if row["duration"] is None else int(row["duration"]),
            command_text=str(row["command_text"]),
            working_dir=str(row["working_dir"]),
            git_repo=row["git_repo"],
            git_branch=row["git_branch"],
            source_app=row["source_app"],
            source_pid=None if row["source_pid"] is None else int(row["source_pid"]),
            source_active=None if active is None else bool(active),
        )


@dataclass
class LikeRecentOptions:
    prefix: str = ""
    limit: int = 1
    include_shy: bool = False
    exclude: str | None = None
    working_dir: str | None = None
    source_app: str | None = None
    source_pid: int | None = None

    def has_session(self) -> bool:
        return bool(self.source_app) and bool(self.source_pid)


@dataclass
class ContextSummary:
    working_dir: str
    git_branch: str | None
    command_count: int
    first_time: int
    last_time: int


# Joins every command to its dimension rows; aliased to the Command field names.
COMMAND_COLUMNS = """
    c.id AS id,
    c.timestamp AS timestamp,
    c.exit_status AS exit_status,
    c.duration AS duration,
    c.command_text AS command_text,
    w.path AS working_dir,
    g.repo AS git_repo,
    g.branch AS git_branch,
    s.app AS source_app,
    s.pid AS source_pid,
    s.active AS source_active
"""

COMMAND_FROM = """
    commands c
    JOIN working_dirs w ON w.id = c.working_dir_id
    LEFT JOIN git_contexts g ON g.id = c.git_context_id
    LEFT JOIN sources s ON s.id = c.source_id
"""
