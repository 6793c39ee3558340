"""
Core package for the UCI driver.

This package contains the engine session and its line framer, the chess
clock, the game orchestrator, and the rules, book and discovery
collaborators they are composed with.
"""

from .models import (
    Side,
    Move,
    EngineOption,
    EngineIdentity,
    SearchLimits,
    BestMove,
    EngineProfile,
    Config,
    coerce_move,
)

from .errors import (
    UCIError,
    SpawnError,
    StartTimeout,
    ProtocolError,
    ResponseTimeout,
    IllegalMove,
    EngineExited,
    AbnormalExit,
    ConfigError,
    UsageError,
)

from .events import (
    EngineReady,
    NewGameStarted,
    MoveApplied,
    GameEnded,
    ErrorOccurred,
    ProcessExited,
    EngineInfo,
    EventHub,
    EventRecorder,
)

from .framing import LineFramer, split_lines
from .engine import EngineSession, SessionState
from .clock import ChessClock, ClockSide, ClockState, TimeControl
from .rules import RulesEngine, BoardRules
from .openings import OpeningBook, PolyglotBook
from .discovery import find_all_files, find_books, find_uci_engines, make_executable
from .game import GameOrchestrator, GamePhase

__all__ = [
    # Data models
    "Side",
    "Move",
    "EngineOption",
    "EngineIdentity",
    "SearchLimits",
    "BestMove",
    "EngineProfile",
    "Config",
    "coerce_move",

    # Errors
    "UCIError",
    "SpawnError",
    "StartTimeout",
    "ProtocolError",
    "ResponseTimeout",
    "IllegalMove",
    "EngineExited",
    "AbnormalExit",
    "ConfigError",
    "UsageError",

    # Events
    "EngineReady",
    "NewGameStarted",
    "MoveApplied",
    "GameEnded",
    "ErrorOccurred",
    "ProcessExited",
    "EngineInfo",
    "EventHub",
    "EventRecorder",

    # Engine components
    "LineFramer",
    "split_lines",
    "EngineSession",
    "SessionState",

    # Clock
    "ChessClock",
    "ClockSide",
    "ClockState",
    "TimeControl",

    # Game components
    "RulesEngine",
    "BoardRules",
    "OpeningBook",
    "PolyglotBook",
    "find_all_files",
    "find_books",
    "find_uci_engines",
    "make_executable",
    "GameOrchestrator",
    "GamePhase",
]
