from __future__ import annotations

import datetime as dt
import time

import typer
from rich import print
from rich.markup import escape
from rich.table import Table

from ..config import load_config
from ..git_info import detect_git_context
from ..session import detect_current_session
from ..store import Command, LikeRecentOptions
from .common import resolve_session_or_exit, store_errors_to_exit


def insert_cmd(
    *,
    store_from_path,
    db_path: str | None,
    command: str,
    directory: str,
    status: int,
    git_repo: str | None,
    git_branch: str | None,
    timestamp: int,
    duration: int | None,
    session: str | None,
) -> None:
    """Record one executed command."""

    if not command.strip():
        print("[red]--command must not be empty[/red]")
        raise typer.Exit(code=1)
    identity = resolve_session_or_exit(session, current_session=False) or detect_current_session()
    if git_repo is None and git_branch is None:
        git_repo, git_branch = detect_git_context(directory)
    record = Command(
        command_text=command,
        working_dir=directory,
        exit_status=status,
        timestamp=timestamp or int(time.time()),
        duration=duration,
        git_repo=git_repo or None,
        git_branch=git_branch or None,
        source_app=identity.app if identity else None,
        source_pid=identity.pid if identity else None,
    )
    store = store_from_path(db_path)
    try:
        with store_errors_to_exit():
            command_id = store.insert_command(record)
        typer.echo(f"Inserted command with ID: {command_id}")
    finally:
        store.close()


def like_recent_cmd(
    *,
    store_from_path,
    db_path: str | None,
    prefix: str,
    limit: int,
    include_shy: bool,
    exclude: str | None,
    working_dir: str | None,
    session: str | None,
    current_session: bool,
) -> None:
    """Print the most recent commands starting with a prefix."""

    cfg = load_config()
    identity = resolve_session_or_exit(session, current_session=current_session)
    options = LikeRecentOptions(
        prefix=prefix,
        limit=limit,
        include_shy=include_shy or cfg.include_shy,
        exclude=exclude or None,
        working_dir=working_dir or None,
        source_app=identity.app if identity else None,
        source_pid=identity.pid if identity else None,
    )
    store = store_from_path(db_path)
    try:
        with store_errors_to_exit():
            for text in store.like_recent(options):
                typer.echo(text)
    finally:
        store.close()


def like_recent_after_cmd(
    *,
    store_from_path,
    db_path: str | None,
    prefix: str,
    prev: str,
    limit: int,
    include_shy: bool,
    exclude: str | None,
) -> None:
    """Print commands starting with a prefix that followed a given command."""

    store = store_from_path(db_path)
    try:
        with store_errors_to_exit():
            results = store.like_recent_after(
                prefix, prev, limit=limit, include_shy=include_shy, exclude=exclude or None
            )
        for text in results:
            typer.echo(text)
    finally:
        store.close()


def last_command_cmd(
    *,
    store_from_path,
    db_path: str | None,
    offset: int,
    session: str | None,
    current_session: bool,
    working_dir: str | None,
) -> None:
    """Print the Nth most recent command (1 is the most recent)."""

    if offset < 1:
        return
    identity = resolve_session_or_exit(session, current_session=current_session, required=True)
    assert identity is not None
    store = store_from_path(db_path)
    try:
        with store_errors_to_exit():
            found = store.recent_at_offset(
                offset - 1,
                source_app=identity.app,
                source_pid=identity.pid,
                working_dir=working_dir or None,
            )
        if found is not None:
            typer.echo(found.command_text)
    finally:
        store.close()


def recent_cmd(
    *,
    store_from_path,
    db_path: str | None,
    limit: int,
    session: str | None,
    current_session: bool,
    working_dir: str | None,
) -> None:
    """Print recent commands, session first, without adjacent repeats."""

    identity = resolve_session_or_exit(session, current_session=current_session, required=True)
    assert identity is not None
    store = store_from_path(db_path)
    try:
        with store_errors_to_exit():
            commands = store.recent_without_duplicates(
                limit,
                source_app=identity.app,
                source_pid=identity.pid,
                working_dir=working_dir or None,
            )
        for item in commands:
            typer.echo(item.command_text)
    finally:
        store.close()


def _parse_event(value: str | None) -> int | str | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        return value


def _event_id(store, value: str | None, *, before_id: int | None = None) -> int | None:
    """Numbers pass through; text picks the newest event starting with it."""

    event = _parse_event(value)
    if event is None or isinstance(event, int):
        return event
    found = store.find_most_recent_matching(event, before_id=before_id)
    if found is None:
        print(f"[red]shy fc: event not found: {escape(event)}[/red]")
        raise typer.Exit(code=1)
    return found


def fc_list_cmd(
    *,
    store_from_path,
    db_path: str | None,
    first: str | None,
    last: str | None,
    match: str | None,
    internal: bool,
    session: str | None,
    reverse: bool,
    no_numbers: bool,
) -> None:
    """List history events by id, keeping the newest copy of each command.

    Bounds are event numbers (negative counts back from the newest) or a
    command prefix naming the newest event that starts with it.
    """

    identity = resolve_session_or_exit(session, current_session=internal)
    store = store_from_path(db_path)
    try:
        with store_errors_to_exit():
            first_id = _event_id(store, first)
            last_id = _event_id(store, last, before_id=store.most_recent_id())
            start, end = store.resolve_range(first_id, last_id)
            commands = store.commands_by_range(
                start,
                end,
                pattern=match or None,
                session_pid=identity.pid if identity else None,
            )
        if reverse:
            commands.reverse()
        for item in commands:
            typer.echo(item.command_text if no_numbers else f"{item.id:5d}  {item.command_text}")
    finally:
        store.close()


def fzf_cmd(*, store_from_path, db_path: str | None) -> None:
    """Stream ``id<TAB>command<NUL>`` records, newest first."""

    store = store_from_path(db_path)
    try:

        def emit(command_id: int, text: str) -> None:
            typer.echo(f"{command_id}\t{text}\0", nl=False)

        with store_errors_to_exit():
            store.iter_unique_commands(emit)
    finally:
        store.close()


def _format_time(timestamp: int) -> str:
    return dt.datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def preview_cmd(*, store_from_path, db_path: str | None, event: int, context: int) -> None:
    """Show one event's details with its neighbours from the same session."""

    store = store_from_path(db_path)
    try:
        with store_errors_to_exit():
            before, target, after = store.get_command_with_context(event, context)
    finally:
        store.close()
    typer.echo(f"Event {target.id}")
    typer.echo(f"  Command:   {target.command_text}")
    typer.echo(f"  Directory: {target.working_dir}")
    typer.echo(f"  Time:      {_format_time(target.timestamp)}")
    typer.echo(f"  Exit:      {target.exit_status}")
    if target.duration is not None:
        typer.echo(f"  Duration:  {target.duration}ms")
    if target.git_repo or target.git_branch:
        typer.echo(f"  Git:       {target.git_repo or '-'} ({target.git_branch or '-'})")
    if target.source_app:
        state = "active" if target.source_active else "closed"
        typer.echo(f"  Session:   {target.source_app}:{target.source_pid} ({state})")
    if not before and not after:
        return
    typer.echo("")
    for item in before:
        typer.echo(f"  {item.id:5d}  {item.command_text}")
    typer.echo(f"> {target.id:5d}  {target.command_text}")
    for item in after:
        typer.echo(f"  {item.id:5d}  {item.command_text}")


def _day_bounds(day: dt.date) -> tuple[int, int]:
    start = dt.datetime.combine(day, dt.time.min)
    end = start + dt.timedelta(days=1)
    return int(start.timestamp()), int(end.timestamp())


def parse_day(value: str, *, today: dt.date | None = None) -> dt.date:
    base = today or dt.date.today()
    if value == "today":
        return base
    if value == "yesterday":
        return base - dt.timedelta(days=1)
    try:
        return dt.date.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(f"invalid date {value!r}: use today, yesterday or YYYY-MM-DD") from exc


def list_cmd(
    *,
    store_from_path,
    db_path: str | None,
    limit: int | None,
    today: bool,
    yesterday: bool,
    session: str | None,
    current_session: bool,
) -> None:
    """List recent commands, oldest first."""

    identity = resolve_session_or_exit(session, current_session=current_session)
    start = end = None
    if today or yesterday:
        start, end = _day_bounds(parse_day("today" if today else "yesterday"))
    count = load_config().list_limit if limit is None else limit
    store = store_from_path(db_path)
    try:
        with store_errors_to_exit():
            commands = store.list_commands(
                count,
                source_app=identity.app if identity else None,
                source_pid=identity.pid if identity else None,
                start=start,
                end=end,
            )
        if not commands:
            typer.echo("No commands found")
            return
        for item in commands:
            typer.echo(item.command_text)
    finally:
        store.close()


def summary_cmd(*, store_from_path, db_path: str | None, date: str) -> None:
    """Show where time went on one day, grouped by directory and branch."""

    try:
        day = parse_day(date)
    except ValueError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    start, end = _day_bounds(day)
    store = store_from_path(db_path)
    try:
        with store_errors_to_exit():
            rows = store.context_summary(start, end)
    finally:
        store.close()
    if not rows:
        print(f"No commands on {day.isoformat()}")
        return
    table = Table(title=f"Summary for {day.isoformat()}")
    table.add_column("Directory")
    table.add_column("Branch")
    table.add_column("Commands", justify="right")
    table.add_column("First")
    table.add_column("Last")
    for row in rows:
        table.add_row(
            row.working_dir,
            row.git_branch or "-",
            str(row.command_count),
            dt.datetime.fromtimestamp(row.first_time).strftime("%H:%M"),
            dt.datetime.fromtimestamp(row.last_time).strftime("%H:%M"),
        )
    print(table)
