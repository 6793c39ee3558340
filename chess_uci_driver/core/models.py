"""
Core data models for the UCI driver.

This module defines the plain data structures shared by the engine session,
the clock and the game orchestrator: sides, moves in UCI notation, engine
identity and options, search limits and results, and the configuration.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import chess

MOVE_REGEX = re.compile(r"^([a-h][1-8])([a-h][1-8])([qrbn])?$")

# Tokens an engine sends in place of a move when it has none to offer
NULL_MOVES = ("(none)", "0000")


class Side(str, Enum):
    """A side of the board."""

    WHITE = "white"
    BLACK = "black"

    @property
    def opposite(self) -> Side:
        return Side.BLACK if self is Side.WHITE else Side.WHITE

    @property
    def is_white(self) -> bool:
        return self is Side.WHITE

    @classmethod
    def from_chess(cls, color: chess.Color) -> Side:
        """Convert a python-chess color (True for white) to a Side."""
        return cls.WHITE if color == chess.WHITE else cls.BLACK

    @classmethod
    def parse(cls, value: Union[str, Side]) -> Side:
        """
        Parse a side from a string such as "white", "b" or "Black".

        Raises:
            ValueError: If the value does not name a side
        """
        if isinstance(value, Side):
            return value
        text = str(value).strip().lower()
        if text in ("white", "w"):
            return cls.WHITE
        if text in ("black", "b"):
            return cls.BLACK
        raise ValueError(f"Invalid side {value!r}")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Move:
    """A move in structured form, interconvertible with UCI notation."""

    from_square: str
    to_square: str
    promotion: Optional[str] = None

    @classmethod
    def from_uci(cls, text: str) -> Move:
        """
        Parse a 4 or 5 character UCI move such as "e2e4" or "e7e8q".

        Raises:
            ValueError: If the string is not a well-formed move
        """
        match = MOVE_REGEX.match(text.strip()) if isinstance(text, str) else None
        if not match:
            raise ValueError(f"Malformed move {text!r}")
        return cls(match.group(1), match.group(2), match.group(3))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Move:
        """Create a move from a {from, to, promotion?} mapping."""
        try:
            text = f"{data['from']}{data['to']}{data.get('promotion') or ''}"
        except KeyError as e:
            raise ValueError(f"Move mapping is missing {e}") from e
        return cls.from_uci(text)

    @classmethod
    def from_chess(cls, move: chess.Move) -> Move:
        return cls.from_uci(move.uci())

    def uci(self) -> str:
        return f"{self.from_square}{self.to_square}{self.promotion or ''}"

    def to_dict(self) -> Dict[str, str]:
        """Structured form; the promotion key is present only for promotions."""
        result = {"from": self.from_square, "to": self.to_square}
        if self.promotion:
            result["promotion"] = self.promotion
        return result

    def to_chess(self) -> chess.Move:
        return chess.Move.from_uci(self.uci())

    def __str__(self) -> str:
        return self.uci()


MoveLike = Union[Move, str, Mapping[str, Any], chess.Move]


def coerce_move(value: MoveLike) -> Move:
    """
    Convert any supported move representation into a Move.

    Args:
        value: A Move, a UCI string, a {from, to, promotion?} mapping
            or a python-chess move

    Returns:
        The equivalent Move

    Raises:
        ValueError: If the value cannot be read as a move
    """
    if isinstance(value, Move):
        return value
    if isinstance(value, str):
        return Move.from_uci(value)
    if isinstance(value, chess.Move):
        return Move.from_chess(value)
    if isinstance(value, Mapping):
        return Move.from_dict(value)
    raise ValueError(f"Cannot interpret {value!r} as a move")


@dataclass
class EngineOption:
    """A parsed `option name ... type ...` declaration."""

    name: str
    type: str
    default: Optional[str] = None
    min: Optional[int] = None
    max: Optional[int] = None
    vars: List[str] = field(default_factory=list)

    _KEYWORDS = ("name", "type", "default", "min", "max", "var")

    @classmethod
    def parse(cls, line: str) -> Optional[EngineOption]:
        """
        Parse a raw option line.

        Option names and defaults may contain spaces, so the line is split on
        the known keywords rather than on whitespace.

        Returns:
            The parsed option, or None if the line has no name or type
        """
        tokens = line.split()
        if not tokens or tokens[0] != "option":
            return None

        fields: Dict[str, List[str]] = {}
        current: Optional[str] = None
        values: List[str] = []
        var_values: List[str] = []
        for token in tokens[1:]:
            if token in cls._KEYWORDS:
                if current == "var":
                    var_values.append(" ".join(values))
                elif current is not None:
                    fields[current] = values
                current, values = token, []
            else:
                values.append(token)
        if current == "var":
            var_values.append(" ".join(values))
        elif current is not None:
            fields[current] = values

        name = " ".join(fields.get("name", []))
        option_type = " ".join(fields.get("type", []))
        if not name or not option_type:
            return None

        def _int(key: str) -> Optional[int]:
            try:
                return int(fields[key][0])
            except (KeyError, IndexError, ValueError):
                return None

        default = " ".join(fields["default"]) if "default" in fields else None
        if default == "<empty>":
            default = ""
        return cls(name, option_type, default, _int("min"), _int("max"), var_values)


@dataclass
class EngineIdentity:
    """Identity and declared options captured from the `uci` handshake."""

    name: Optional[str] = None
    author: Optional[str] = None
    options: List[str] = field(default_factory=list)

    def parsed_options(self) -> Dict[str, EngineOption]:
        """Declared options keyed by name, skipping lines that do not parse."""
        parsed = {}
        for line in self.options:
            option = EngineOption.parse(line)
            if option is not None:
                parsed[option.name] = option
        return parsed


@dataclass
class SearchLimits:
    """
    Bounds for a `go` command.

    Clock times and increments are in milliseconds and are sent only when
    both clocks are given. Fixed-depth, node, mate and move-time bounds may
    be combined with them or used alone; searchmoves restricts the root
    moves considered.
    """

    wtime: Optional[float] = None
    btime: Optional[float] = None
    winc: float = 0
    binc: float = 0
    movestogo: Optional[int] = None
    depth: Optional[int] = None
    nodes: Optional[int] = None
    mate: Optional[int] = None
    movetime: Optional[float] = None
    searchmoves: Sequence[MoveLike] = ()

    @property
    def has_clock(self) -> bool:
        return self.wtime is not None and self.btime is not None

    def to_command(self) -> str:
        parts = ["go"]
        if self.has_clock:
            parts += [
                "wtime", str(_ms(self.wtime)),
                "btime", str(_ms(self.btime)),
                "winc", str(_ms(self.winc)),
                "binc", str(_ms(self.binc)),
            ]
            if self.movestogo:
                parts += ["movestogo", str(self.movestogo)]
        for key in ("depth", "nodes", "mate"):
            value = getattr(self, key)
            if value is not None:
                parts += [key, str(int(value))]
        if self.movetime is not None:
            parts += ["movetime", str(_ms(self.movetime))]
        if self.searchmoves:
            # Engines read searchmoves up to the end of the line
            parts += ["searchmoves"] + [coerce_move(move).uci() for move in self.searchmoves]
        return " ".join(parts)

    def longest_ms(self) -> int:
        if not self.has_clock:
            return 0
        return max(_ms(self.wtime), _ms(self.btime))

    def budget_ms(self) -> Optional[int]:
        """Longest time the search may take, or None when nothing bounds its time."""
        if self.movetime is not None:
            return max(_ms(self.movetime), self.longest_ms())
        if self.has_clock:
            return self.longest_ms()
        return None


def _ms(value: float) -> int:
    return max(0, int(round(value)))


@dataclass(frozen=True)
class BestMove:
    """Result of a search: the chosen move and optional ponder move."""

    move: Optional[Move]
    ponder: Optional[Move] = None
    line: str = ""

    @classmethod
    def parse(cls, line: str) -> BestMove:
        """
        Parse a `bestmove <move> [ponder <move>]` terminator line.

        Raises:
            ValueError: If the move token is missing or malformed
        """
        tokens = line.split()
        if len(tokens) < 2 or tokens[0] != "bestmove":
            raise ValueError(
                f'Invalid format of bestmove. Expected "bestmove <move>". Returned "{line}"'
            )
        move = None if tokens[1] in NULL_MOVES else Move.from_uci(tokens[1])
        ponder = None
        if len(tokens) >= 4 and tokens[2] == "ponder" and tokens[3] not in NULL_MOVES:
            try:
                ponder = Move.from_uci(tokens[3])
            except ValueError:
                ponder = None
        return cls(move, ponder, line)


@dataclass
class EngineProfile:
    """A discovered engine: where it lives and which options to apply on start."""

    executable_path: str
    name: str
    author: Optional[str] = None
    options: List[str] = field(default_factory=list)
    set_options: Dict[str, Optional[str]] = field(default_factory=dict)
    args: Sequence[str] = ()


@dataclass
class Config:
    """Configuration settings for engine sessions, clocks and games."""

    # Process startup
    start_timeout: float = 2.0
    launch_poll_interval: float = 0.1
    require_startup_output: bool = False

    # Command deadlines (seconds)
    command_timeout: float = 5.0
    search_timeout_margin: float = 5.0
    # Searches bounded only by depth, nodes or mate
    analysis_timeout: float = 60.0
    shutdown_timeout: float = 2.0

    # Clock
    tick_interval: float = 0.25

    # Opening book
    book_strict: bool = False

    # Library locations and per-engine option overrides
    engines_dir: Optional[str] = None
    books_dir: Optional[str] = None
    engine_options: Dict[str, Dict[str, Optional[str]]] = field(default_factory=dict)
    # Add execute permission to engine candidates that lack it
    fix_permissions: bool = False

    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            field.name: getattr(self, field.name)
            for field in self.__dataclass_fields__.values()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Config:
        """Create config from dictionary."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """
        Create config from environment variables.

        Reads UCI_ENGINES_DIR, UCI_BOOKS_DIR, UCI_COMMAND_TIMEOUT and
        UCI_LOG_LEVEL. Keyword overrides take precedence.
        """
        data: Dict[str, Any] = {}
        if os.getenv("UCI_ENGINES_DIR"):
            data["engines_dir"] = os.getenv("UCI_ENGINES_DIR")
        if os.getenv("UCI_BOOKS_DIR"):
            data["books_dir"] = os.getenv("UCI_BOOKS_DIR")
        timeout = os.getenv("UCI_COMMAND_TIMEOUT")
        if timeout:
            try:
                data["command_timeout"] = float(timeout)
            except ValueError:
                raise ValueError(f"UCI_COMMAND_TIMEOUT must be a number, got {timeout!r}")
        if os.getenv("UCI_LOG_LEVEL"):
            data["log_level"] = os.getenv("UCI_LOG_LEVEL").upper()
        data.update(overrides)
        return cls.from_dict(data)
