from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from shy.config import CONFIG_ENV_OVERRIDES
from shy.session import SESSION_PID_ENV
from shy.store import Command, HistoryStore


@pytest.fixture(autouse=True)
def _isolate_shy_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for env_var in CONFIG_ENV_OVERRIDES.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.delenv(SESSION_PID_ENV, raising=False)
    monkeypatch.delenv("SHY_LOG_LEVEL", raising=False)
    monkeypatch.setenv("SHY_CONFIG", str(tmp_path / "config" / "config.json"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))


@pytest.fixture
def store(tmp_path: Path):
    history = HistoryStore(tmp_path / "history.db")
    try:
        yield history
    finally:
        history.close()


@pytest.fixture
def make_command() -> Callable[..., Command]:
    def _make(
        text: str,
        *,
        timestamp: int,
        working_dir: str = "/home/user",
        app: str | None = None,
        pid: int | None = None,
        exit_status: int = 0,
        git_repo: str | None = None,
        git_branch: str | None = None,
        duration: int | None = None,
    ) -> Command:
        return Command(
            command_text=text,
            working_dir=working_dir,
            exit_status=exit_status,
            timestamp=timestamp,
            duration=duration,
            git_repo=git_repo,
            git_branch=git_branch,
            source_app=app,
            source_pid=pid,
        )

    return _make
