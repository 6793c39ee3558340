"""
Chess UCI Driver - drive UCI chess engines and run timed games against them.

This package talks to external engine processes over the Universal Chess
Interface, keeps a multi-stage chess clock, and orchestrates games between a
player and an engine with optional opening-book support.
"""

__version__ = "0.1.0"
__author__ = "Chess UCI Driver Team"
__license__ = "MIT"

# Core imports
from .core.models import Config, Move, Side
from .core.engine import EngineSession
from .core.clock import ChessClock, TimeControl
from .core.game import GameOrchestrator
from .logs import setup_logging

__all__ = [
    "Config",
    "Move",
    "Side",
    "EngineSession",
    "ChessClock",
    "TimeControl",
    "GameOrchestrator",
    "setup_logging",
]
