import json
from pathlib import Path

import pytest

from shy.config import (
    ShyConfig,
    default_db_path,
    get_config_path,
    get_env_overrides,
    load_config,
    read_config_file,
)


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_rejects_non_object(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2]")
    with pytest.raises(ValueError, match="config must be an object"):
        read_config_file(config_path)


def test_missing_or_blank_config_reads_as_empty(tmp_path: Path) -> None:
    assert read_config_file(tmp_path / "absent.json") == {}
    blank = tmp_path / "blank.json"
    blank.write_text("  \n")
    assert read_config_file(blank) == {}


def test_load_config_applies_file_values(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"list_limit": 7, "include_shy": True, "unknown": 1}))

    cfg = load_config(config_path)
    assert cfg.list_limit == 7
    assert cfg.include_shy is True


def test_env_overrides_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"busy_timeout_ms": 100, "db_path": "/from/file.db"}))
    monkeypatch.setenv("SHY_BUSY_TIMEOUT_MS", "2500")
    monkeypatch.setenv("SHY_INCLUDE_SHY", "yes")

    cfg = load_config(config_path)

    assert cfg.busy_timeout_ms == 2500
    assert cfg.include_shy is True
    assert cfg.db_path == "/from/file.db"
    assert get_env_overrides() == {"busy_timeout_ms": "2500", "include_shy": "yes"}


def test_invalid_values_warn_and_keep_defaults(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"lock_retries": "many", "include_shy": [1]}))

    with pytest.warns(RuntimeWarning):
        cfg = load_config(config_path)

    assert cfg.lock_retries == ShyConfig().lock_retries
    assert cfg.include_shy is False


def test_malformed_file_is_ignored_by_loader(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{oops")

    assert load_config(config_path) == ShyConfig()


def test_config_path_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SHY_CONFIG", str(tmp_path / "custom.json"))
    assert get_config_path() == tmp_path / "custom.json"


def test_db_path_resolution(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
    assert default_db_path() == tmp_path / "xdg" / "shy" / "history.db"
    assert ShyConfig().resolved_db_path() == default_db_path()

    monkeypatch.delenv("XDG_DATA_HOME")
    assert default_db_path() == Path.home() / ".local" / "share" / "shy" / "history.db"
    assert ShyConfig(db_path="~/h.db").resolved_db_path() == Path.home() / "h.db"
