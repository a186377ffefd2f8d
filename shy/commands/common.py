from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import typer
from rich import print

from ..config import load_config, read_config_file
from ..errors import CommandNotFoundError, MigrationError, SessionRequiredError, StoreBusyError
from ..session import SessionIdentity, detect_current_session, parse_session
from ..store import HistoryStore

STORE_ERRORS = (CommandNotFoundError, SessionRequiredError, StoreBusyError, MigrationError)


def store_from_path(db_path: str | None) -> HistoryStore:
    read_config_or_exit()
    cfg = load_config()
    path = Path(db_path).expanduser() if db_path else cfg.resolved_db_path()
    try:
        return HistoryStore(path, config=cfg)
    except STORE_ERRORS as exc:
        print(f"[red]Failed to open {path}: {exc}[/red]")
        raise typer.Exit(code=1) from exc


@contextmanager
def store_errors_to_exit() -> Iterator[None]:
    try:
        yield
    except STORE_ERRORS as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc


def read_config_or_exit() -> dict[str, Any]:
    try:
        return read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def resolve_session_or_exit(
    session: str | None, *, current_session: bool, required: bool = False
) -> SessionIdentity | None:
    """``--session app:pid`` wins; ``--current-session`` reads the environment."""

    if session:
        try:
            return parse_session(session)
        except ValueError as exc:
            print(f"[red]{exc}[/red]")
            raise typer.Exit(code=1) from exc
    identity = detect_current_session() if current_session else None
    if identity is None and (required or current_session):
        print("[red]Could not detect session: pass --session app:pid or set SHY_SESSION_PID[/red]")
        raise typer.Exit(code=1)
    return identity
