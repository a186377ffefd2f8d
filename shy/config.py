from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/shy/config.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "db_path": "SHY_DB_PATH",
    "busy_timeout_ms": "SHY_BUSY_TIMEOUT_MS",
    "lock_retries": "SHY_LOCK_RETRIES",
    "lock_backoff_ms": "SHY_LOCK_BACKOFF_MS",
    "include_shy": "SHY_INCLUDE_SHY",
    "list_limit": "SHY_LIST_LIMIT",
}

INT_KEYS = {"busy_timeout_ms", "lock_retries", "lock_backoff_ms", "list_limit"}
BOOL_KEYS = {"include_shy"}


def default_db_path() -> Path:
    data_dir = os.getenv("XDG_DATA_HOME")
    base = Path(data_dir) if data_dir else Path.home() / ".local" / "share"
    return base / "shy" / "history.db"


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("SHY_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class ShyConfig:
    db_path: str | None = None
    busy_timeout_ms: int = 5000
    # Retries on top of busy_timeout for BEGIN IMMEDIATE/EXCLUSIVE.
    lock_retries: int = 5
    lock_backoff_ms: int = 10
    include_shy: bool = False
    list_limit: int = 20

    def resolved_db_path(self) -> Path:
        if self.db_path:
            return Path(self.db_path).expanduser()
        return default_db_path()


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def load_config(path: Path | None = None) -> ShyConfig:
    cfg = ShyConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_values(cfg, data)
    cfg = _apply_values(cfg, get_env_overrides())
    return cfg


def _apply_values(cfg: ShyConfig, data: dict[str, Any]) -> ShyConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        setattr(cfg, key, value)
    return cfg
