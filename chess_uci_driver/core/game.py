"""
Game orchestration between a human player and a UCI engine.

The orchestrator composes an engine session, a chess clock and the rules and
book collaborators into one running game. It decides whose turn it is,
whether the next engine move comes from the book or from a search, and when
the game is over. Time-up from the clock pre-empts any search still in
flight: a move that arrives after the game ended is discarded.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import chess.pgn as chess_pgn

from .clock import ChessClock, TimeControl
from .discovery import find_all_files, find_books, find_uci_engines
from .engine import EngineSession
from .errors import (
    AbnormalExit,
    IllegalMove,
    ProtocolError,
    ResponseTimeout,
    UCIError,
    UsageError,
)
from .events import (
    EngineInfo,
    ErrorOccurred,
    Event,
    EventHub,
    GameEnded,
    MoveApplied,
    NewGameStarted,
    ProcessExited,
)
from .models import Config, EngineProfile, Move, MoveLike, SearchLimits, Side, coerce_move
from .openings import OpeningBook, PolyglotBook
from .rules import BoardRules, RulesEngine

logger = logging.getLogger(__name__)

EngineRef = Union[str, Path, EngineProfile]

# Errors the session has already published as events
_REPORTED_BY_SESSION = (ProtocolError, ResponseTimeout, AbnormalExit)


class GamePhase(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    IN_PROGRESS = "in_progress"
    ENDED = "ended"


class GameOrchestrator:
    """
    Runs one game at a time between a caller-supplied player and an engine.

    The player submits moves with submit_move(); engine replies are computed
    in a background task and announced through MoveApplied events. The
    orchestrator owns the session and clock of the current game and releases
    both when the game ends.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        events: Optional[EventHub] = None,
        rules_factory: Callable[[], RulesEngine] = BoardRules,
        session_factory: Callable[..., EngineSession] = EngineSession,
        book: Optional[OpeningBook] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Session, clock and library settings
            events: Hub receiving game and engine events
            rules_factory: Builds a fresh rules instance for each game
            session_factory: Builds the engine session; called with the
                executable path, args, config and an event hub
            book: Opening book consulted before every engine search
        """
        self.config = config or Config()
        self.events = events or EventHub()
        self.rules_factory = rules_factory
        self.session_factory = session_factory
        self.book = book if book is not None else PolyglotBook()

        self.phase = GamePhase.IDLE
        self.session: Optional[EngineSession] = None
        self.clock: Optional[ChessClock] = None
        self.rules: Optional[RulesEngine] = None
        self.engine_side: Optional[Side] = None
        self.book_id: Optional[str] = None
        self.result: Optional[str] = None
        self.reason: Optional[str] = None

        self._game_counter = 0
        self._analysis_task: Optional[asyncio.Task] = None
        self._shutdown_task: Optional[asyncio.Task] = None
        self._engines: Dict[str, EngineProfile] = {}
        self._books: List[str] = []

    async def load_library(
        self,
        engines_dir: Optional[Union[str, Path]] = None,
        books_dir: Optional[Union[str, Path]] = None,
    ) -> Dict[str, EngineProfile]:
        """
        Discover UCI engines and opening books.

        Args:
            engines_dir: Directory searched recursively for engines;
                defaults to Config.engines_dir
            books_dir: Directory searched recursively for .bin books;
                defaults to Config.books_dir

        Returns:
            Discovered engines keyed by name
        """
        engines_dir = engines_dir or self.config.engines_dir
        books_dir = books_dir or self.config.books_dir

        self._books = find_books(books_dir) if books_dir else []
        if engines_dir:
            self._engines = await find_uci_engines(
                find_all_files(engines_dir),
                self.config,
                fix_permissions=self.config.fix_permissions,
            )
        else:
            self._engines = {}
        logger.info(f"Library loaded: {len(self._engines)} engines, {len(self._books)} books")
        return self._engines

    def available_engines(self) -> List[EngineProfile]:
        return list(self._engines.values())

    def available_books(self) -> List[str]:
        return list(self._books)

    @property
    def is_in_progress(self) -> bool:
        return self.phase is GamePhase.IN_PROGRESS

    @property
    def side_to_move(self) -> Optional[Side]:
        return self.rules.turn() if self.rules is not None else None

    async def start_new_game(
        self,
        engine: EngineRef,
        side: Union[Side, str],
        minutes: float,
        book: Optional[str] = None,
        time_controls: Optional[Sequence[TimeControl]] = None,
    ) -> None:
        """
        Start a game against an engine.

        Args:
            engine: Executable path, name of a discovered engine, or a profile
            side: Side the engine plays
            minutes: Sudden-death time per side, used when time_controls
                is not given
            book: Opening book path passed to the book collaborator
            time_controls: Explicit clock stages

        Raises:
            ValueError: If side is not a valid side
            UsageError: If a game is already starting or in progress
            ConfigError: If the time controls are invalid
            SpawnError: If the engine cannot be started
        """
        if self.phase in (GamePhase.STARTING, GamePhase.IN_PROGRESS):
            raise UsageError(f"Cannot start a new game while one is {self.phase.value}")
        engine_side = Side.parse(side)
        path, args, set_options = self._resolve_engine(engine)
        clock = ChessClock(
            time_controls or [TimeControl.from_minutes(minutes)],
            tick_interval=self.config.tick_interval,
        )

        await self.wait_closed()
        self.phase = GamePhase.STARTING
        self.result = self.reason = None

        session_events = EventHub()
        session = self.session_factory(path, args=args, config=self.config, events=session_events)
        session_events.subscribe(self.events.emit)
        session_events.subscribe(lambda event: self._on_session_event(session, event))

        try:
            await session.launch()
            await session.handshake()
            options = dict(set_options)
            options.update(self.config.engine_options.get(session.name, {}))
            for name, value in options.items():
                await session.set_option(name, value)
            await session.new_game()
            await session.set_position("startpos")
        except BaseException:
            self.phase = GamePhase.IDLE
            await session.shutdown()
            raise

        self._game_counter += 1
        self.session = session
        self.rules = self.rules_factory()
        self.clock = clock
        self.engine_side = engine_side
        self.book_id = book
        self._analysis_task = None

        clock.add_time_up_handler(lambda flagged: self._on_time_up(clock, flagged))
        self.phase = GamePhase.IN_PROGRESS
        clock.start()
        logger.info(f"New game: {session.name} plays {engine_side}")
        self.events.emit(NewGameStarted(engine_side, self.rules.fen()))

        if self.rules.turn() is engine_side:
            self._start_analysis()

    def submit_move(self, move: MoveLike) -> Move:
        """
        Play the caller's move.

        Args:
            move: A Move, UCI string, {from, to, promotion?} mapping
                or python-chess move

        Returns:
            The applied move

        Raises:
            UsageError: If no game is in progress or the engine is to move
            IllegalMove: If the move is malformed or illegal; nothing changes
        """
        if self.phase is GamePhase.IN_PROGRESS:
            # Settle the clock first so a flag that already fell ends the game
            self.clock.tick()
        if self.phase is not GamePhase.IN_PROGRESS:
            raise UsageError("No game in progress")

        mover = self.rules.turn()
        if mover is self.engine_side:
            raise UsageError("It is the engine's turn to move")

        try:
            text = coerce_move(move).uci()
        except ValueError as e:
            raise IllegalMove(str(move), f"Invalid move {move}: {e}") from e
        applied = self.rules.apply_move(text)
        if applied is None:
            raise IllegalMove(text)

        self._record_move(applied, mover, by_engine=False, from_book=False)
        if self.phase is GamePhase.IN_PROGRESS and self.rules.turn() is self.engine_side:
            self._start_analysis()
        return applied

    async def wait_for_engine(self) -> None:
        """Wait until the engine's pending move, if any, has been handled."""
        task = self._analysis_task
        if task is not None:
            await asyncio.wait([task])

    async def end_game(self, reason: str = "game ended by user") -> None:
        """
        End the current game without a result and release the engine.

        Raises:
            UsageError: If no game is in progress
        """
        if self.phase is not GamePhase.IN_PROGRESS:
            raise UsageError("No game in progress")
        self._finish("*", reason)
        await self.wait_closed()

    async def wait_closed(self) -> None:
        """Wait for the analysis task and the engine shutdown of the last game."""
        pending = [task for task in (self._analysis_task, self._shutdown_task) if task is not None]
        if pending:
            await asyncio.wait(pending)

    def export_pgn(self) -> chess_pgn.Game:
        """
        Build a PGN record of the current or last game.

        Raises:
            UsageError: If no game has been started
        """
        if self.rules is None:
            raise UsageError("No game has been played")

        game = chess_pgn.Game()
        game.headers["Event"] = "UCI engine game"
        game.headers["Site"] = "chess-uci-driver"
        game.headers["Date"] = datetime.now().strftime("%Y.%m.%d")
        game.headers["Round"] = str(self._game_counter)
        engine_name = self.session.name if self.session else "Engine"
        if self.engine_side is Side.WHITE:
            game.headers["White"], game.headers["Black"] = engine_name, "Player"
        else:
            game.headers["White"], game.headers["Black"] = "Player", engine_name
        game.headers["Result"] = self.result or "*"
        if self.reason:
            game.headers["Termination"] = self.reason

        node = game
        for move in self.rules.moves():
            node = node.add_variation(move.to_chess())
        return game

    def _resolve_engine(self, engine: EngineRef) -> Tuple[str, Sequence[str], Dict[str, Optional[str]]]:
        if isinstance(engine, EngineProfile):
            profile = engine
        elif str(engine) in self._engines:
            profile = self._engines[str(engine)]
        else:
            return str(engine), (), {}
        return profile.executable_path, profile.args, profile.set_options

    def _start_analysis(self) -> None:
        self._analysis_task = asyncio.get_running_loop().create_task(
            self._play_engine_move(self.session, self.rules, self.clock)
        )

    async def _play_engine_move(self, session: EngineSession, rules: RulesEngine, clock: ChessClock) -> None:
        try:
            move, from_book = await self._find_engine_move(session, rules, clock)
        except UCIError as e:
            if self.phase is not GamePhase.IN_PROGRESS or rules is not self.rules:
                logger.debug(f"Ignoring engine error after game end: {e}")
                return
            logger.error(f"Engine failed to move: {e}")
            if not isinstance(e, _REPORTED_BY_SESSION):
                self.events.emit(ErrorOccurred(e))
            return

        if self.phase is not GamePhase.IN_PROGRESS or rules is not self.rules:
            logger.debug(f"Discarding engine move {move} that arrived after the game ended")
            return

        if move is None:
            error = ProtocolError("Engine reported no move in a running game")
            logger.error(str(error))
            self.events.emit(ErrorOccurred(error))
            return

        applied = rules.apply_move(move)
        if applied is None:
            error = IllegalMove(move.uci(), f"Engine played illegal move {move.uci()}")
            logger.error(str(error))
            self.events.emit(ErrorOccurred(error))
            self._finish(_loss_for(self.engine_side), "engine played an illegal move")
            return

        self._record_move(applied, self.engine_side, by_engine=True, from_book=from_book)

    async def _find_engine_move(
        self, session: EngineSession, rules: RulesEngine, clock: ChessClock
    ) -> Tuple[Optional[Move], bool]:
        fen = rules.fen()
        if self.book is not None:
            book_move = self.book.find_move(fen, self.book_id, strict=self.config.book_strict)
            if book_move is not None:
                logger.debug(f"Playing book move {book_move}")
                return book_move, True

        await session.set_position(fen)
        limits = SearchLimits(
            wtime=clock.remaining_ms(Side.WHITE),
            btime=clock.remaining_ms(Side.BLACK),
            winc=clock.increment_ms(Side.WHITE),
            binc=clock.increment_ms(Side.BLACK),
            movestogo=clock.moves_to_go(self.engine_side),
        )
        best = await session.search(limits, on_info=lambda line: self.events.emit(EngineInfo(line)))
        return best.move, False

    def _record_move(self, move: Move, side: Side, by_engine: bool, from_book: bool) -> None:
        self.clock.move()
        if self.phase is not GamePhase.IN_PROGRESS:
            # The mover's flag fell while the move was being made
            return
        logger.debug(f"{side} played {move}{' (book)' if from_book else ''}")
        self.events.emit(MoveApplied(move, side, by_engine, from_book, self.rules.fen()))
        self._check_game_end()

    def _check_game_end(self) -> bool:
        rules = self.rules
        turn = rules.turn()
        if rules.is_checkmate():
            result, reason = _loss_for(turn), f"{turn} is checkmated"
        elif rules.is_stalemate():
            result, reason = "1/2-1/2", f"{turn} is stalemated"
        elif rules.is_threefold_repetition():
            result, reason = "1/2-1/2", "draw due to threefold repetition"
        elif rules.is_insufficient_material():
            result, reason = "1/2-1/2", "draw due to insufficient material"
        elif rules.is_draw():
            result, reason = "1/2-1/2", "game is a draw"
        else:
            return False
        self._finish(result, reason)
        return True

    def _on_time_up(self, clock: ChessClock, side: Side) -> None:
        if clock is not self.clock:
            return
        self._finish(_loss_for(side), f"{side}'s time is up")

    def _on_session_event(self, session: EngineSession, event: Event) -> None:
        if not isinstance(event, ProcessExited):
            return
        if session is not self.session or self.phase is not GamePhase.IN_PROGRESS:
            return
        reason = "engine terminated abnormally" if event.abnormal else "engine exited unexpectedly"
        self._finish("*", reason)

    def _finish(self, result: str, reason: str) -> None:
        if self.phase is GamePhase.ENDED:
            return
        self.phase = GamePhase.ENDED
        self.result, self.reason = result, reason
        if self.clock is not None:
            self.clock.stop()
        logger.info(f"Game over: {result} ({reason})")
        self.events.emit(GameEnded(result, reason))

        task = self._analysis_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

        if self.session is not None:
            self._shutdown_task = asyncio.get_running_loop().create_task(
                self._close_session(self.session)
            )

    async def _close_session(self, session: EngineSession) -> None:
        try:
            await session.shutdown()
        except UCIError as e:
            logger.warning(f"Engine shutdown failed: {e}")
            self.events.emit(ErrorOccurred(e))


def _loss_for(side: Side) -> str:
    return "0-1" if side is Side.WHITE else "1-0"
