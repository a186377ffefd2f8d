from __future__ import annotations

import os

import typer
from rich import print

from ..db import schema_version
from ..session import session_state
from .common import resolve_session_or_exit, store_errors_to_exit

SELF_COMMAND = "shy"


def init_db_cmd(*, store_from_path, db_path: str | None) -> None:
    """Create the database or bring it to the current schema."""

    store = store_from_path(db_path)
    try:
        print(f"Database initialized: {store.db_path} (schema v{schema_version(store.conn)})")
    finally:
        store.close()


def close_session_cmd(*, store_from_path, db_path: str | None, pid: int) -> None:
    """Mark a shell session closed so session-scoped lookups skip it."""

    if pid <= 0:
        print("[red]--pid must be a positive integer[/red]")
        raise typer.Exit(code=1)
    store = store_from_path(db_path)
    try:
        with store_errors_to_exit():
            closed = store.close_session(pid)
        print(f"Closed session {pid} ({closed} source rows)")
    finally:
        store.close()


def sessions_cmd(*, store_from_path, db_path: str | None, session: str | None) -> None:
    """Print active session pids, or the state of one session."""

    identity = resolve_session_or_exit(session, current_session=False)
    store = store_from_path(db_path)
    try:
        with store_errors_to_exit():
            if identity is not None:
                typer.echo(f"{identity} {session_state(store, identity).value}")
                return
            for pid in store.active_session_pids():
                typer.echo(str(pid))
    finally:
        store.close()


def star_add_cmd(*, store_from_path, db_path: str | None, command_id: int) -> None:
    store = store_from_path(db_path)
    try:
        with store_errors_to_exit():
            store.star_command(command_id)
        print(f"Starred command {command_id}")
    finally:
        store.close()


def star_remove_cmd(*, store_from_path, db_path: str | None, command_id: int) -> None:
    store = store_from_path(db_path)
    try:
        with store_errors_to_exit():
            removed = store.unstar_command(command_id)
        if removed:
            print(f"Unstarred command {command_id}")
        else:
            print(f"[yellow]Command {command_id} was not starred[/yellow]")
    finally:
        store.close()


def star_list_cmd(
    *, store_from_path, db_path: str | None, pwd: bool, current_session: bool
) -> None:
    identity = resolve_session_or_exit(None, current_session=current_session)
    store = store_from_path(db_path)
    try:
        with store_errors_to_exit():
            commands = store.list_starred(
                source_app=identity.app if identity else None,
                source_pid=identity.pid if identity else None,
                working_dir=os.getcwd() if pwd else None,
            )
        for item in commands:
            typer.echo(f"{item.id}\t{item.command_text}")
    finally:
        store.close()


def _is_self_invocation(text: str) -> bool:
    return text == SELF_COMMAND or text.startswith(SELF_COMMAND + " ")


def star_last_cmd(*, store_from_path, db_path: str | None, session: str | None) -> None:
    """Star the most recent command of the current session."""

    identity = resolve_session_or_exit(session, current_session=True, required=True)
    assert identity is not None
    store = store_from_path(db_path)
    try:
        with store_errors_to_exit():
            recent = store.list_commands(50, source_app=identity.app, source_pid=identity.pid)
            target = next(
                (item for item in reversed(recent) if not _is_self_invocation(item.command_text)),
                None,
            )
            if target is None or target.id is None:
                print("[yellow]No command to star in this session[/yellow]")
                return
            store.star_command(target.id)
        typer.echo(f"Starred #{target.id}: {target.command_text}")
    finally:
        store.close()
