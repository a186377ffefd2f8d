from __future__ import annotations

import logging
import os

import typer
from rich import print

from . import __version__
from .commands.common import store_from_path
from .commands.history_cmds import (
    fc_list_cmd,
    fzf_cmd,
    insert_cmd,
    last_command_cmd,
    like_recent_after_cmd,
    like_recent_cmd,
    list_cmd,
    preview_cmd,
    recent_cmd,
    summary_cmd,
)
from .commands.session_cmds import (
    close_session_cmd,
    init_db_cmd,
    sessions_cmd,
    star_add_cmd,
    star_last_cmd,
    star_list_cmd,
    star_remove_cmd,
)
from .store import HistoryStore

LOG_LEVEL_ENV = "SHY_LOG_LEVEL"
DB_PATH_HELP = "Path to SQLite database"
SESSION_HELP = "Session as app:pid, e.g. zsh:12345"

app = typer.Typer(help="shy: shell history in SQLite", no_args_is_help=True)
star_app = typer.Typer(help="Star commands worth keeping", invoke_without_command=True)
app.add_typer(star_app, name="star")


def _store(db_path: str | None) -> HistoryStore:
    return store_from_path(db_path)


@app.callback()
def main() -> None:
    level = os.getenv(LOG_LEVEL_ENV)
    if level:
        logging.basicConfig(
            level=level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s"
        )


@app.command()
def version() -> None:
    """Print the shy version."""
    print(__version__)


@app.command("init-db")
def init_db(db_path: str = typer.Option(None, help=DB_PATH_HELP)) -> None:
    """Create the database, or upgrade it to the current schema."""
    init_db_cmd(store_from_path=_store, db_path=db_path)


@app.command()
def insert(
    command: str = typer.Option(..., help="Command text"),
    directory: str = typer.Option(..., "--dir", help="Working directory"),
    status: int = typer.Option(0, help="Exit status"),
    git_repo: str | None = typer.Option(None, help="Git remote URL (detected when omitted)"),
    git_branch: str | None = typer.Option(None, help="Git branch (detected when omitted)"),
    timestamp: int = typer.Option(0, help="Unix timestamp (default: now)"),
    duration: int | None = typer.Option(None, help="Duration in milliseconds"),
    session: str | None = typer.Option(None, help=SESSION_HELP),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """Record an executed command."""
    insert_cmd(
        store_from_path=_store,
        db_path=db_path,
        command=command,
        directory=directory,
        status=status,
        git_repo=git_repo,
        git_branch=git_branch,
        timestamp=timestamp,
        duration=duration,
        session=session,
    )


@app.command("like-recent")
def like_recent(
    prefix: str,
    limit: int = typer.Option(1, help="Number of suggestions"),
    include_shy: bool = typer.Option(False, help="Include shy's own invocations"),
    exclude: str | None = typer.Option(None, help="Skip commands matching this glob"),
    pwd: str | None = typer.Option(None, help="Prefer matches from this directory"),
    session: str | None = typer.Option(None, help=SESSION_HELP),
    current_session: bool = typer.Option(False, help="Prefer matches from the current session"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """Most recent commands starting with PREFIX, narrowest scope first."""
    like_recent_cmd(
        store_from_path=_store,
        db_path=db_path,
        prefix=prefix,
        limit=limit,
        include_shy=include_shy,
        exclude=exclude,
        working_dir=pwd,
        session=session,
        current_session=current_session,
    )


@app.command("like-recent-after")
def like_recent_after(
    prefix: str,
    prev: str = typer.Option(..., help="The command run just before"),
    limit: int = typer.Option(1, help="Number of suggestions"),
    include_shy: bool = typer.Option(False, help="Include shy's own invocations"),
    exclude: str | None = typer.Option(None, help="Skip commands matching this glob"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """Commands starting with PREFIX that were run right after --prev."""
    like_recent_after_cmd(
        store_from_path=_store,
        db_path=db_path,
        prefix=prefix,
        prev=prev,
        limit=limit,
        include_shy=include_shy,
        exclude=exclude,
    )


@app.command("last-command")
def last_command(
    offset: int = typer.Option(1, "--offset", "-n", help="1 is the most recent"),
    session: str | None = typer.Option(None, help=SESSION_HELP),
    current_session: bool = typer.Option(True, help="Use SHY_SESSION_PID and $SHELL"),
    pwd: str | None = typer.Option(None, help="Directory to fall back to after the session"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """Print the Nth most recent command without adjacent repeats."""
    last_command_cmd(
        store_from_path=_store,
        db_path=db_path,
        offset=offset,
        session=session,
        current_session=current_session,
        working_dir=pwd,
    )


@app.command()
def recent(
    limit: int = typer.Option(10, help="Max results"),
    session: str | None = typer.Option(None, help=SESSION_HELP),
    current_session: bool = typer.Option(True, help="Use SHY_SESSION_PID and $SHELL"),
    pwd: str | None = typer.Option(None, help="Directory to fall back to after the session"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """Recent commands: session, then directory, then everything."""
    recent_cmd(
        store_from_path=_store,
        db_path=db_path,
        limit=limit,
        session=session,
        current_session=current_session,
        working_dir=pwd,
    )


@app.command(context_settings={"ignore_unknown_options": True})
def fc(
    first: str | None = typer.Argument(
        None, help="First event: number (negative counts back) or command prefix"
    ),
    last: str | None = typer.Argument(
        None, help="Last event: number (negative counts back) or command prefix"
    ),
    match: str | None = typer.Option(None, "--match", "-m", help="Only commands matching this glob"),
    internal: bool = typer.Option(False, "--internal", "-I", help="Only the current session"),
    session: str | None = typer.Option(None, help="Only this session, as app:pid"),
    reverse: bool = typer.Option(False, "--reverse", "-r", help="Newest first"),
    no_numbers: bool = typer.Option(False, "--no-numbers", "-n", help="Omit event numbers"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """List history events (fc -l)."""
    fc_list_cmd(
        store_from_path=_store,
        db_path=db_path,
        first=first,
        last=last,
        match=match,
        internal=internal,
        session=session,
        reverse=reverse,
        no_numbers=no_numbers,
    )


app.command("history", context_settings={"ignore_unknown_options": True}, help="Same as fc.")(fc)


@app.command()
def preview(
    event: int = typer.Argument(..., help="Event number"),
    context: int = typer.Option(5, help="Commands to show before and after"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """Show an event with surrounding commands from its session."""
    preview_cmd(store_from_path=_store, db_path=db_path, event=event, context=context)


@app.command()
def fzf(db_path: str = typer.Option(None, help=DB_PATH_HELP)) -> None:
    """Stream unique history for fzf, NUL separated."""
    fzf_cmd(store_from_path=_store, db_path=db_path)


@app.command("close-session")
def close_session(
    pid: int = typer.Option(..., help="Shell session pid"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """Mark a shell session closed."""
    close_session_cmd(store_from_path=_store, db_path=db_path, pid=pid)


@app.command()
def sessions(
    session: str | None = typer.Option(None, help="Report one session, as app:pid"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """List active session pids."""
    sessions_cmd(store_from_path=_store, db_path=db_path, session=session)


@app.command("list")
def list_commands(
    limit: int = typer.Option(None, "--limit", "-n", help="Max commands (default from config)"),
    today: bool = typer.Option(False, help="Only commands from today"),
    yesterday: bool = typer.Option(False, help="Only commands from yesterday"),
    session: str | None = typer.Option(None, help=SESSION_HELP),
    current_session: bool = typer.Option(False, help="Only the current session"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """List recent commands, oldest first."""
    list_cmd(
        store_from_path=_store,
        db_path=db_path,
        limit=limit,
        today=today,
        yesterday=yesterday,
        session=session,
        current_session=current_session,
    )


@app.command()
def summary(
    date: str = typer.Option("yesterday", help="today, yesterday or YYYY-MM-DD"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """Summarize a day by directory and branch."""
    summary_cmd(store_from_path=_store, db_path=db_path, date=date)


@star_app.callback()
def star(
    ctx: typer.Context,
    session: str | None = typer.Option(None, help=SESSION_HELP),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """Star the last command of this session (or use a subcommand)."""
    if ctx.invoked_subcommand is None:
        star_last_cmd(store_from_path=_store, db_path=db_path, session=session)


@star_app.command("add")
def star_add(command_id: int, db_path: str = typer.Option(None, help=DB_PATH_HELP)) -> None:
    """Star a command by id."""
    star_add_cmd(store_from_path=_store, db_path=db_path, command_id=command_id)


@star_app.command("remove")
def star_remove(command_id: int, db_path: str = typer.Option(None, help=DB_PATH_HELP)) -> None:
    """Remove a star."""
    star_remove_cmd(store_from_path=_store, db_path=db_path, command_id=command_id)


@star_app.command("list")
def star_list(
    pwd: bool = typer.Option(False, help="Only commands run in the current directory"),
    current_session: bool = typer.Option(False, help="Only the current session"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """List starred commands."""
    star_list_cmd(
        store_from_path=_store, db_path=db_path, pwd=pwd, current_session=current_session
    )


if __name__ == "__main__":
    app()
