from __future__ import annotations


class CommandNotFoundError(LookupError):
    def __init__(self, command_id: int):
        super().__init__(f"command {command_id} not found")
        self.command_id = command_id


class SessionRequiredError(ValueError):
    """Raised when a query needs a session identity the caller did not supply."""


class StoreBusyError(RuntimeError):
    """Lock contention outlasted the retry budget."""


class MigrationError(RuntimeError):
    def __init__(self, version: int, message: str):
        super().__init__(f"migration {version} failed: {message}")
        self.version = version
