"""
Typed events published by the engine session and the game orchestrator.

Events are frozen dataclasses, so they are safe to hand across task
boundaries. Consumers subscribe a single callable to an EventHub and
dispatch on the event type.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from .models import EngineIdentity, Move, Side

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineReady:
    identity: EngineIdentity


@dataclass(frozen=True)
class NewGameStarted:
    engine_side: Side
    fen: str


@dataclass(frozen=True)
class MoveApplied:
    move: Move
    side: Side
    by_engine: bool
    from_book: bool
    fen: str


@dataclass(frozen=True)
class GameEnded:
    result: str  # "1-0", "0-1", "1/2-1/2" or "*"
    reason: str


@dataclass(frozen=True)
class ErrorOccurred:
    error: Exception


@dataclass(frozen=True)
class ProcessExited:
    returncode: Optional[int]
    abnormal: bool


@dataclass(frozen=True)
class EngineInfo:
    line: str


Event = Union[
    EngineReady,
    NewGameStarted,
    MoveApplied,
    GameEnded,
    ErrorOccurred,
    ProcessExited,
    EngineInfo,
]

EventHandler = Callable[[Event], None]


class EventHub:
    """Fan-out of events to subscribed handlers, in subscription order."""

    def __init__(self):
        self._handlers: List[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """
        Register a handler.

        Returns:
            A callable that removes the handler again
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def emit(self, event: Event) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Event handler failed on {type(event).__name__}")


class EventRecorder:
    """Handler that keeps every event it receives, mostly for tests and logs."""

    def __init__(self):
        self.events: List[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> List[Event]:
        return [event for event in self.events if isinstance(event, event_type)]
