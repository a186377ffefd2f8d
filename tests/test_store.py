from __future__ import annotations

import sqlite3
import threading
from collections.abc import Callable
from pathlib import Path

import pytest

from shy.errors import CommandNotFoundError
from shy.store import Command, HistoryStore
from shy.store import dimensions


def test_insert_and_get_round_trips_fields(
    store: HistoryStore, make_command: Callable[..., Command]
) -> None:
    cid = store.insert_command(
        make_command(
            "git push",
            timestamp=1700000000,
            working_dir="/src/shy",
            app="zsh",
            pid=42,
            exit_status=1,
            git_repo="git@github.com:me/shy.git",
            git_branch="main",
            duration=250,
        )
    )

    item = store.get_command(cid)

    assert item.id == cid
    assert item.command_text == "git push"
    assert item.working_dir == "/src/shy"
    assert item.exit_status == 1
    assert item.timestamp == 1700000000
    assert item.duration == 250
    assert (item.git_repo, item.git_branch) == ("git@github.com:me/shy.git", "main")
    assert (item.source_app, item.source_pid, item.source_active) == ("zsh", 42, True)


def test_optional_fields_stay_absent(
    store: HistoryStore, make_command: Callable[..., Command]
) -> None:
    cid = store.insert_command(make_command("ls", timestamp=1))

    item = store.get_command(cid)

    assert item.duration is None
    assert item.git_repo is None and item.git_branch is None
    assert item.source_app is None and item.source_pid is None and item.source_active is None
    row = store.conn.execute("SELECT git_context_id, source_id FROM commands WHERE id = ?", (cid,))
    assert tuple(row.fetchone()) == (None, None)


def test_ids_increase_and_dimensions_are_shared(
    store: HistoryStore, make_command: Callable[..., Command]
) -> None:
    first = store.insert_command(make_command("a", timestamp=1, git_branch="dev", app="zsh", pid=1))
    second = store.insert_command(make_command("b", timestamp=2, git_branch="dev", app="zsh", pid=1))

    assert second > first
    counts = {
        table: store.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        for table in ("working_dirs", "git_contexts", "sources")
    }
    assert counts == {"working_dirs": 1, "git_contexts": 1, "sources": 1}


def test_get_command_missing_raises(store: HistoryStore) -> None:
    with pytest.raises(CommandNotFoundError) as excinfo:
        store.get_command(999)
    assert excinfo.value.command_id == 999


def test_duplicate_flag_marks_older_twins(
    store: HistoryStore, make_command: Callable[..., Command]
) -> None:
    ids = [store.insert_command(make_command(text, timestamp=i)) for i, text in enumerate("abab")]

    flags = dict(store.conn.execute("SELECT id, is_duplicate FROM commands").fetchall())

    assert flags == {ids[0]: 1, ids[1]: 1, ids[2]: 0, ids[3]: 0}


def test_concurrent_get_or_create_returns_one_row(tmp_path: Path) -> None:
    path = tmp_path / "history.db"
    HistoryStore(path).close()
    barrier = threading.Barrier(4)
    results: list[int] = []
    errors: list[BaseException] = []

    def _worker() -> None:
        store = HistoryStore(path, check_same_thread=False)
        try:
            barrier.wait()
            results.append(store.ensure_working_dir("/x"))
        except BaseException as exc:  # pragma: no cover - surfaced via assertion
            errors.append(exc)
        finally:
            store.close()

    threads = [threading.Thread(target=_worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(set(results)) == 1
    store = HistoryStore(path)
    try:
        rows = store.conn.execute("SELECT COUNT(*) FROM working_dirs WHERE path = '/x'").fetchone()
        assert rows[0] == 1
    finally:
        store.close()


class _RacingConnection:
    """Hides the first lookup so the insert collides with an existing row."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self.hidden = False

    def execute(self, sql: str, params=()):
        if sql.startswith("SELECT") and not self.hidden:
            self.hidden = True
            return self.conn.execute("SELECT NULL WHERE 0")
        return self.conn.execute(sql, params)


def test_get_or_create_recovers_from_unique_violation(store: HistoryStore) -> None:
    existing = store.ensure_working_dir("/race")
    git_id = dimensions.git_context_id(store.conn, None, "main")

    assert dimensions.working_dir_id(_RacingConnection(store.conn), "/race") == existing
    assert dimensions.git_context_id(_RacingConnection(store.conn), None, "main") == git_id


def test_git_context_with_missing_member_is_unique(store: HistoryStore) -> None:
    one = dimensions.git_context_id(store.conn, "repo", None)
    two = dimensions.git_context_id(store.conn, "repo", None)

    assert one == two
    assert dimensions.git_context_id(store.conn, None, None) is None


def test_blank_git_members_share_the_null_context(
    store: HistoryStore, make_command: Callable[..., Command]
) -> None:
    store.insert_command(make_command("make", timestamp=1, git_branch="main"))
    blank_repo = store.insert_command(make_command("make", timestamp=2, git_repo="", git_branch="main"))
    blank_both = store.insert_command(make_command("ls", timestamp=3, git_repo="", git_branch=""))

    assert store.get_command(blank_repo).git_repo is None
    assert store.get_command(blank_repo).git_branch == "main"
    assert store.get_command(blank_both).git_branch is None
    assert store.conn.execute("SELECT COUNT(*) FROM git_contexts").fetchone()[0] == 1
    assert dimensions.git_context_id(store.conn, "", "main") == dimensions.git_context_id(
        store.conn, None, "main"
    )


def test_list_commands_returns_oldest_first(
    store: HistoryStore, make_command: Callable[..., Command]
) -> None:
    for i, text in enumerate(["one", "two", "three", "four"]):
        store.insert_command(make_command(text, timestamp=100 + i, app="zsh", pid=7 if i % 2 else 8))

    assert [c.command_text for c in store.list_commands(2)] == ["three", "four"]
    assert [c.command_text for c in store.list_commands(0)] == ["one", "two", "three", "four"]
    session = store.list_commands(10, source_app="zsh", source_pid=7)
    assert [c.command_text for c in session] == ["two", "four"]
    window = store.list_commands(10, start=101, end=103)
    assert [c.command_text for c in window] == ["two", "three"]


def test_command_with_context_stays_in_source_pid(
    store: HistoryStore, make_command: Callable[..., Command]
) -> None:
    ids = []
    for i in range(6):
        ids.append(store.insert_command(make_command(f"c{i}", timestamp=i, app="zsh", pid=1 if i != 2 else 2)))

    before, target, after = store.get_command_with_context(ids[3], 2)

    assert target.command_text == "c3"
    assert [c.command_text for c in before] == ["c0", "c1"]
    assert [c.command_text for c in after] == ["c4", "c5"]


def test_command_with_context_missing_raises(store: HistoryStore) -> None:
    with pytest.raises(CommandNotFoundError):
        store.get_command_with_context(5)


def test_context_summary_groups_by_directory_and_branch(
    store: HistoryStore, make_command: Callable[..., Command]
) -> None:
    store.insert_command(make_command("a", timestamp=100, working_dir="/p", git_branch="main"))
    store.insert_command(make_command("b", timestamp=400, working_dir="/p", git_branch="main"))
    store.insert_command(make_command("c", timestamp=150, working_dir="/q"))
    store.insert_command(make_command("d", timestamp=160, working_dir="/q"))
    store.insert_command(make_command("e", timestamp=9999, working_dir="/r"))

    summary = store.context_summary(0, 1000)

    assert [(s.working_dir, s.git_branch, s.command_count) for s in summary] == [
        ("/p", "main", 2),
        ("/q", None, 2),
    ]
    assert (summary[0].first_time, summary[0].last_time) == (100, 400)


def test_find_most_recent_matching(
    store: HistoryStore, make_command: Callable[..., Command]
) -> None:
    first = store.insert_command(make_command("git status", timestamp=1))
    store.insert_command(make_command("ls", timestamp=2))
    last = store.insert_command(make_command("git log", timestamp=3))

    assert store.find_most_recent_matching("git") == last
    assert store.find_most_recent_matching("git", before_id=last) == last
    assert store.find_most_recent_matching("git", before_id=last - 1) == first
    assert store.find_most_recent_matching("git", before_id=first - 1) is None
    assert store.find_most_recent_matching("100%") is None


def test_session_registry_close_is_bulk_and_reopen_is_new(
    store: HistoryStore, make_command: Callable[..., Command]
) -> None:
    store.insert_command(make_command("a", timestamp=1, app="zsh", pid=77))
    store.insert_command(make_command("b", timestamp=2, app="bash", pid=77))

    assert store.is_session_active("zsh", 77)
    assert store.active_session_pids() == [77]
    assert store.close_session(77) == 2
    assert not store.is_session_active("zsh", 77)
    assert store.close_session(77) == 0

    cid = store.insert_command(make_command("c", timestamp=3, app="zsh", pid=77))
    assert store.is_session_active("zsh", 77)
    assert store.get_command(cid).source_active is True
    rows = store.conn.execute("SELECT COUNT(*) FROM sources WHERE app = 'zsh' AND pid = 77").fetchone()
    assert rows[0] == 2


def test_starring(store: HistoryStore, make_command: Callable[..., Command]) -> None:
    a = store.insert_command(make_command("make test", timestamp=1, app="zsh", pid=1, working_dir="/p"))
    b = store.insert_command(make_command("make lint", timestamp=2, app="zsh", pid=2, working_dir="/q"))

    store.star_command(b)
    store.star_command(a)
    store.star_command(a)

    assert store.is_starred(a)
    assert [c.id for c in store.list_starred()] == [a, b]
    assert [c.id for c in store.list_starred(source_app="zsh", source_pid=2)] == [b]
    assert [c.id for c in store.list_starred(working_dir="/p")] == [a]
    assert store.unstar_command(a) is True
    assert store.unstar_command(a) is False
    with pytest.raises(CommandNotFoundError):
        store.star_command(12345)


def test_store_context_manager_closes(tmp_path: Path) -> None:
    with HistoryStore(tmp_path / "history.db") as store:
        store.insert_command(Command.new("true", "/"))
    with pytest.raises(sqlite3.ProgrammingError):
        store.conn.execute("SELECT 1")
