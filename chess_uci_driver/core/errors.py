"""
Exception hierarchy for the UCI driver.

Every error raised by the engine session, the clock or the game orchestrator
derives from UCIError so callers can catch the whole family at once.
"""

from __future__ import annotations

import signal as _signal
from typing import Optional


class UCIError(Exception):
    """Base class for all driver errors."""
    pass


class SpawnError(UCIError):
    """The engine executable could not be started."""
    pass


class StartTimeout(UCIError):
    """The engine process did not confirm it was alive in time."""
    pass


class ProtocolError(UCIError):
    """The engine produced a terminator line that could not be parsed."""
    pass


class ResponseTimeout(UCIError):
    """No matching response line arrived before the command deadline."""
    pass


class IllegalMove(UCIError):
    """The rules collaborator rejected a move."""

    def __init__(self, move: str, message: Optional[str] = None):
        self.move = move
        super().__init__(message or f"Illegal move {move}")


class EngineExited(UCIError):
    """The engine process is gone while an operation needed it."""
    pass


class AbnormalExit(EngineExited):
    """The engine process terminated with a non-zero status or a signal."""

    def __init__(self, returncode: int, pid: Optional[int] = None):
        self.returncode = returncode
        self.pid = pid
        super().__init__(self._describe())

    @property
    def signal(self) -> Optional[int]:
        """Signal number that killed the process, if any."""
        # asyncio reports death-by-signal as a negative return code
        return -self.returncode if self.returncode < 0 else None

    def _describe(self) -> str:
        who = f"Engine with process id {self.pid}" if self.pid else "Engine"
        if self.signal is not None:
            try:
                name = _signal.Signals(self.signal).name
            except ValueError:
                name = str(self.signal)
            return f"{who} killed by signal {name}"
        return f"{who} terminated abnormally with code {self.returncode}"


class ConfigError(UCIError):
    """Invalid configuration, such as a badly ordered time control."""
    pass


class UsageError(UCIError, RuntimeError):
    """An operation was called in a state that does not allow it."""
    pass
