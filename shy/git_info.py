from __future__ import annotations

import subprocess
from collections.abc import Sequence


def run_command(cmd: Sequence[str], cwd: str | None = None) -> str | None:
    """Run ``cmd`` and return its stripped stdout, or None when it fails."""
    try:
        out = subprocess.check_output(cmd, cwd=cwd, stderr=subprocess.DEVNULL, text=True)
    except (subprocess.CalledProcessError, FileNotFoundError, OSError):
        return None
    return out.strip()


def detect_git_context(cwd: str) -> tuple[str | None, str | None]:
    """Return ``(remote_url, branch)`` for ``cwd``; ``(None, None)`` outside a repository."""

    if run_command(["git", "rev-parse", "--git-dir"], cwd=cwd) is None:
        return None, None
    remote = run_command(["git", "config", "--get", "remote.origin.url"], cwd=cwd) or None
    branch = run_command(["git", "rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd) or None
    return remote, branch
