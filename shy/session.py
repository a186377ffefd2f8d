"""Current-session identity for the shell hooks.

A session is an (app, pid) pair. The shell integration exports
``SHY_SESSION_PID``; the app name is the basename of ``$SHELL``. Identities
are passed explicitly into every store call, never kept as global state.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .store import HistoryStore

logger = logging.getLogger(__name__)

SESSION_PID_ENV = "SHY_SESSION_PID"


class SessionState(Enum):
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionIdentity:
    app: str
    pid: int

    def __str__(self) -> str:
        return f"{self.app}:{self.pid}"


def parse_session(value: str) -> SessionIdentity:
    """Parse ``app:pid``; raises ValueError for anything else."""
    app, sep, pid_text = value.partition(":")
    if not sep or not app or ":" in pid_text:
        raise ValueError(f"invalid session {value!r}: expected app:pid (e.g. zsh:12345)")
    try:
        pid = int(pid_text)
    except ValueError as exc:
        raise ValueError(f"invalid session pid: {pid_text!r}") from exc
    if pid <= 0:
        raise ValueError("invalid session pid: must be positive")
    return SessionIdentity(app=app, pid=pid)


def detect_current_session(environ: Mapping[str, str] | None = None) -> SessionIdentity | None:
    env = os.environ if environ is None else environ
    pid_text = env.get(SESSION_PID_ENV, "").strip()
    if not pid_text:
        return None
    try:
        pid = int(pid_text)
    except ValueError:
        logger.warning("ignoring invalid %s value %r", SESSION_PID_ENV, pid_text)
        return None
    shell = env.get("SHELL", "")
    if pid <= 0 or not shell:
        logger.warning("cannot detect session: pid=%r SHELL=%r", pid_text, shell)
        return None
    return SessionIdentity(app=os.path.basename(shell.rstrip("/")), pid=pid)


def session_state(store: HistoryStore, identity: SessionIdentity) -> SessionState:
    if store.is_session_active(identity.app, identity.pid):
        return SessionState.ACTIVE
    return SessionState.CLOSED
