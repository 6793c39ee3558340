"""
UCI engine session management.

This module drives one external engine process over the Universal Chess
Interface. It turns the engine's line-oriented, sometimes silent output into
discrete awaitable operations: every command registers a single primary
listener that is resolved by the command's terminator line, and an unbounded
search additionally installs an info sink that streams progress lines until
the search is stopped.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Sequence, Union

from .errors import (
    AbnormalExit,
    EngineExited,
    ProtocolError,
    ResponseTimeout,
    SpawnError,
    StartTimeout,
    UsageError,
)
from .events import EngineReady, ErrorOccurred, EventHub, ProcessExited
from .framing import LineFramer
from .models import BestMove, Config, EngineIdentity, MoveLike, SearchLimits, coerce_move

logger = logging.getLogger(__name__)

_ID_NAME = re.compile(r"^id name\s+(.+)$")
_ID_AUTHOR = re.compile(r"^id author\s+(.+)$")

InfoSink = Callable[[str], None]


class SessionState(enum.Enum):
    NEW = "new"
    STARTING = "starting"
    ALIVE = "alive"
    CLOSING = "closing"
    DEAD = "dead"


def _token_is(token: str) -> Callable[[str], bool]:
    return lambda line: line.strip() == token


def _starts_with(prefix: str) -> Callable[[str], bool]:
    return lambda line: line.startswith(prefix)


@dataclass
class _PendingCommand:
    """The primary listener slot: one command awaiting its terminator line."""

    name: str
    is_terminator: Callable[[str], bool]
    parse: Callable[[str], Any]
    future: asyncio.Future
    on_line: Optional[Callable[[str], None]] = None
    on_complete: Optional[Callable[[], None]] = None
    completed: bool = False

    def finish(self, line: str) -> None:
        self.completed = True
        if self.on_complete is not None:
            self.on_complete()
        if self.future.done():
            return
        try:
            self.future.set_result(self.parse(line))
        except ProtocolError as e:
            self.future.set_exception(e)


class EngineSession:
    """
    One UCI engine subprocess and the command/response traffic with it.

    At most one command consumes the primary listener at a time. During an
    infinite search an auxiliary info sink coexists with it, receiving `info`
    lines until stop_search() deregisters it.
    """

    def __init__(
        self,
        executable: Union[str, Path],
        args: Sequence[str] = (),
        config: Optional[Config] = None,
        events: Optional[EventHub] = None,
    ):
        """
        Initialize the engine session.

        Args:
            executable: Path to the engine executable, or a command on PATH
            args: Extra command-line arguments for the engine
            config: Timeouts and startup behaviour
            events: Hub receiving engine-ready, error and process-exit events
        """
        self.executable = str(executable)
        self.args = list(args)
        self.config = config or Config()
        self.events = events or EventHub()
        self.identity: Optional[EngineIdentity] = None

        self._state = SessionState.NEW
        self._process: Optional[asyncio.subprocess.Process] = None
        self._framer = LineFramer()
        self._output_seen = False
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._exit_future: Optional[asyncio.Future] = None

        self._primary: Optional[_PendingCommand] = None
        self._info_sink: Optional[InfoSink] = None
        self._infinite_active = False
        self._unclaimed_bestmove: Optional[str] = None
        # Searches that timed out and still owe a bestmove
        self._stale_bestmoves = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_alive(self) -> bool:
        """True once launched and until the process exits."""
        return (
            self._state in (SessionState.ALIVE, SessionState.CLOSING)
            and self._process is not None
            and self._process.returncode is None
        )

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process else None

    @property
    def is_searching_infinite(self) -> bool:
        return self._infinite_active

    @property
    def name(self) -> str:
        if self.identity and self.identity.name:
            return self.identity.name
        return Path(self.executable).name

    async def launch(self) -> None:
        """
        Start the engine process and wait until it is confirmed alive.

        Raises:
            SpawnError: If the executable is missing, not runnable, or exits
                during startup
            StartTimeout: If liveness is not confirmed within start_timeout
        """
        if self._state is not SessionState.NEW:
            raise UsageError(f"Session for {self.executable} was already launched")

        resolved = self._resolve_executable()
        self._state = SessionState.STARTING
        try:
            self._process = await asyncio.create_subprocess_exec(
                resolved,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._state = SessionState.DEAD
            raise SpawnError(f"Unable to start engine {self.executable}: {e}") from e

        loop = asyncio.get_running_loop()
        self._exit_future = loop.create_future()
        self._reader_task = loop.create_task(self._read_stdout())
        self._stderr_task = loop.create_task(self._read_stderr())

        deadline = loop.time() + self.config.start_timeout
        while True:
            await asyncio.sleep(self.config.launch_poll_interval)
            if self._process.returncode is not None:
                self._state = SessionState.DEAD
                raise SpawnError(
                    f"Engine {self.executable} exited during startup "
                    f"with code {self._process.returncode}"
                )
            if self._confirmed_alive():
                break
            if loop.time() >= deadline:
                await self._abort_start()
                raise StartTimeout(
                    f"Engine {self.executable} did not start within "
                    f"{self.config.start_timeout:.1f}s"
                )

        self._state = SessionState.ALIVE
        logger.info(f"Started engine: {self.executable} (pid {self._process.pid})")

    async def handshake(self) -> EngineIdentity:
        """
        Send `uci` and collect the engine identity and declared options.

        Returns:
            Identity with name, author and raw option lines in arrival order
        """
        self._ensure_idle("uci")
        identity = EngineIdentity()

        def collect(line: str) -> None:
            if line.startswith("option"):
                identity.options.append(line)
                return
            match = _ID_NAME.match(line)
            if match:
                identity.name = match.group(1).strip()
                return
            match = _ID_AUTHOR.match(line)
            if match:
                identity.author = match.group(1).strip()

        await self._command(
            "uci",
            ["uci"],
            _token_is("uciok"),
            lambda line: identity,
            on_line=collect,
            timeout=self.config.command_timeout,
        )
        self.identity = identity
        logger.info(f"Engine name: {identity.name or 'Unknown'} by {identity.author or 'Unknown'}")
        self.events.emit(EngineReady(identity))
        return identity

    async def ready(self) -> None:
        """Send `isready` and wait for `readyok`."""
        await self._command(
            "isready",
            ["isready"],
            _token_is("readyok"),
            lambda line: None,
            timeout=self.config.command_timeout,
        )

    async def set_option(self, name: str, value: Optional[Any] = None) -> None:
        """
        Set an engine option and wait until the engine has processed it.

        Args:
            name: Option name as declared by the engine
            value: Option value; omitted for button options
        """
        command = f"setoption name {name}"
        if value is not None:
            if isinstance(value, bool):
                value = "true" if value else "false"
            command += f" value {value}"
        await self._synchronized("setoption", command)

    async def new_game(self) -> None:
        """Send `ucinewgame` and wait until the engine has processed it."""
        await self._synchronized("ucinewgame", "ucinewgame")

    async def set_position(
        self,
        fen: str = "startpos",
        moves: Union[None, str, Iterable[MoveLike]] = None,
    ) -> None:
        """
        Set the position to search from.

        Args:
            fen: A FEN string, or "startpos" for the initial position
            moves: Moves to play from that position, as a list or a
                space-separated string
        """
        command = "position startpos" if fen == "startpos" else f"position fen {fen}"
        if moves:
            if isinstance(moves, str):
                move_text = moves.strip()
            else:
                move_text = " ".join(coerce_move(move).uci() for move in moves)
            if move_text:
                command += f" moves {move_text}"
        await self._synchronized("position", command)

    async def search(
        self,
        limits: SearchLimits,
        on_info: Optional[InfoSink] = None,
        timeout: Optional[float] = None,
    ) -> BestMove:
        """
        Run a bounded search and return the engine's chosen move.

        When the deadline passes the engine is told to stop, and the
        `bestmove` it still owes is discarded on arrival so it cannot answer
        a later search.

        Args:
            limits: Clock times, depth, node or move-time bounds
            on_info: Receives every `info` line seen before `bestmove`
            timeout: Deadline in seconds; defaults to the longest time the
                limits allow plus search_timeout_margin, or to
                analysis_timeout when the limits set no time at all

        Raises:
            ProtocolError: If the `bestmove` line is malformed
            ResponseTimeout: If no `bestmove` arrives in time
        """
        self._ensure_idle("go")
        if timeout is None:
            budget = limits.budget_ms()
            if budget is None:
                timeout = self.config.analysis_timeout
            else:
                timeout = budget / 1000 + self.config.search_timeout_margin

        def forward(line: str) -> None:
            if on_info is not None and line.startswith("info"):
                on_info(line)

        try:
            return await self._command(
                "go",
                [limits.to_command()],
                _starts_with("bestmove"),
                self._parse_bestmove,
                on_line=forward,
                timeout=timeout,
            )
        except ResponseTimeout:
            await self._abandon_search()
            raise

    async def search_infinite(self, sink: InfoSink) -> None:
        """
        Start an unbounded search that streams `info` lines to sink.

        Returns once the engine confirms it is searching; the move itself is
        collected with stop_search().
        """
        self._ensure_idle("go infinite")
        self._info_sink = sink
        self._infinite_active = True
        self._unclaimed_bestmove = None
        try:
            await self._command(
                "go infinite",
                ["go infinite", "isready"],
                _token_is("readyok"),
                lambda line: None,
                timeout=self.config.command_timeout,
            )
        except BaseException:
            self._clear_infinite()
            raise

    async def stop_search(self) -> BestMove:
        """
        Stop the running infinite search and return its best move.

        Raises:
            UsageError: If no infinite search is active
        """
        if not self._infinite_active:
            raise UsageError("stop requested but no infinite search is active")

        if self._unclaimed_bestmove is not None:
            # The engine already finished on its own; nothing left to stop.
            line = self._unclaimed_bestmove
            self._clear_infinite()
            return self._parse_bestmove(line)

        return await self._command(
            "stop",
            ["stop"],
            _starts_with("bestmove"),
            self._parse_bestmove,
            timeout=self.config.command_timeout,
            on_complete=self._clear_infinite,
        )

    async def shutdown(self) -> Optional[int]:
        """
        Send `quit` and wait for the process to exit.

        Safe to call more than once and after the process has died. Abnormal
        termination is reported through the event hub, not raised.

        Returns:
            The process exit status, or None if it was never started
        """
        if self._process is None:
            self._state = SessionState.DEAD
            return None

        if self._process.returncode is None and self._state is not SessionState.CLOSING:
            self._state = SessionState.CLOSING
            self._clear_infinite()
            try:
                await self._write("quit")
            except EngineExited as e:
                logger.debug(f"Engine closed its input before quit: {e}")

        try:
            await asyncio.wait_for(
                asyncio.shield(self._exit_future), self.config.shutdown_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Engine {self.name} did not exit after quit, killing it")
            self._kill()
            await self._exit_future
        return self._process.returncode

    async def __aenter__(self) -> EngineSession:
        """Async context manager entry: launch and handshake."""
        await self.launch()
        try:
            await self.handshake()
        except BaseException:
            await self.shutdown()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit with cleanup."""
        await self.shutdown()

    async def _abandon_search(self) -> None:
        self._stale_bestmoves += 1
        try:
            await self._write("stop")
        except EngineExited as e:
            logger.debug(f"Could not stop abandoned search: {e}")

    async def _synchronized(self, name: str, command: str) -> None:
        # These commands have no acknowledgement of their own, so an isready
        # probe follows them and readyok marks completion.
        self._ensure_idle(name)
        await self._command(
            name,
            [command, "isready"],
            _token_is("readyok"),
            lambda line: None,
            timeout=self.config.command_timeout,
        )

    async def _command(
        self,
        name: str,
        lines: List[str],
        is_terminator: Callable[[str], bool],
        parse: Callable[[str], Any],
        on_line: Optional[Callable[[str], None]] = None,
        timeout: Optional[float] = None,
        on_complete: Optional[Callable[[], None]] = None,
    ) -> Any:
        self._ensure_alive()
        if self._primary is not None:
            raise UsageError(
                f"Cannot send {name!r} while {self._primary.name!r} is awaiting a response"
            )

        command = _PendingCommand(
            name,
            is_terminator,
            parse,
            asyncio.get_running_loop().create_future(),
            on_line,
            on_complete,
        )
        self._primary = command
        try:
            for line in lines:
                await self._write(line)
            return await asyncio.wait_for(command.future, timeout)
        except asyncio.TimeoutError:
            error = ResponseTimeout(f"No response to {name!r} within {timeout:.1f}s")
            logger.warning(str(error))
            self.events.emit(ErrorOccurred(error))
            raise error from None
        except ProtocolError as e:
            logger.warning(f"Protocol error on {name!r}: {e}")
            self.events.emit(ErrorOccurred(e))
            raise
        finally:
            if self._primary is command:
                self._primary = None
            if not command.completed and command.on_complete is not None:
                command.on_complete()

    async def _write(self, command: str) -> None:
        if self._process is None or self._process.returncode is not None:
            raise EngineExited(f"Engine {self.name} is not running")
        logger.debug(f">> {command}")
        try:
            self._process.stdin.write(f"{command}\n".encode())
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise EngineExited(f"Engine {self.name} stopped accepting input: {e}") from e

    def _dispatch_line(self, line: str) -> None:
        """Classify one complete output line against the active listeners."""
        logger.debug(f"<< {line}")
        if not line.strip():
            return

        if self._stale_bestmoves and line.startswith(("info", "bestmove")):
            # Output of a search abandoned after its deadline
            if line.startswith("bestmove"):
                self._stale_bestmoves -= 1
                logger.debug(f"Discarded late answer: {line}")
            return

        if self._info_sink is not None and line.startswith("info"):
            try:
                self._info_sink(line)
            except Exception:
                logger.exception("Info sink failed")
            return

        command = self._primary
        if command is not None:
            if command.is_terminator(line):
                self._primary = None
                command.finish(line)
                return
            if command.on_line is not None:
                try:
                    command.on_line(line)
                except Exception:
                    logger.exception(f"Line handler for {command.name!r} failed")
                return

        if self._infinite_active and line.startswith("bestmove"):
            self._unclaimed_bestmove = line
            return

        logger.debug(f"Unclaimed engine output: {line}")

    def _parse_bestmove(self, line: str) -> BestMove:
        try:
            return BestMove.parse(line)
        except ValueError as e:
            raise ProtocolError(str(e)) from e

    def _clear_infinite(self) -> None:
        self._info_sink = None
        self._infinite_active = False
        self._unclaimed_bestmove = None

    def _ensure_alive(self) -> None:
        if self._state is SessionState.NEW:
            raise UsageError("Engine session has not been launched")
        if self._process is None or self._process.returncode is not None:
            raise EngineExited(f"Engine {self.name} is not running")
        if self._state is SessionState.DEAD:
            raise EngineExited(f"Engine {self.name} is no longer usable")

    def _ensure_idle(self, name: str) -> None:
        self._ensure_alive()
        if self._infinite_active:
            raise UsageError(
                f"Cannot send {name!r} during an infinite search; call stop_search() first"
            )

    def _resolve_executable(self) -> str:
        path = Path(self.executable)
        if not path.exists():
            found = shutil.which(self.executable)
            if not found:
                self._state = SessionState.DEAD
                raise SpawnError(f"Engine executable not found: {self.executable}")
            path = Path(found)
        if path.is_dir() or not os.access(path, os.X_OK):
            self._state = SessionState.DEAD
            raise SpawnError(f"Engine executable is not runnable: {path}")
        return str(path)

    def _confirmed_alive(self) -> bool:
        if self._process is None or self._process.returncode is not None:
            return False
        return self._output_seen or not self.config.require_startup_output

    async def _abort_start(self) -> None:
        self._state = SessionState.DEAD
        self._kill()
        try:
            await asyncio.wait_for(asyncio.shield(self._exit_future), self.config.shutdown_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Engine {self.executable} did not exit after kill")

    def _kill(self) -> None:
        try:
            self._process.kill()
        except ProcessLookupError:
            pass

    async def _read_stdout(self) -> None:
        stdout = self._process.stdout
        while True:
            chunk = await stdout.read(4096)
            if not chunk:
                break
            self._output_seen = True
            for line in self._framer.feed(chunk):
                self._dispatch_line(line)
        tail = self._framer.flush()
        if tail is not None:
            self._dispatch_line(tail)
        returncode = await self._process.wait()
        self._handle_exit(returncode)

    async def _read_stderr(self) -> None:
        framer = LineFramer()
        while True:
            chunk = await self._process.stderr.read(4096)
            if not chunk:
                break
            for line in framer.feed(chunk):
                logger.debug(f"stderr: {line}")

    def _handle_exit(self, returncode: int) -> None:
        was_live = self._state in (SessionState.ALIVE, SessionState.CLOSING)
        quitting = self._state is SessionState.CLOSING
        self._state = SessionState.DEAD
        self._clear_infinite()

        abnormal = returncode != 0
        if abnormal:
            error: EngineExited = AbnormalExit(returncode, self.pid)
        else:
            error = EngineExited(f"Engine with process id {self.pid} exited")

        pending, self._primary = self._primary, None
        if pending is not None and not pending.future.done():
            pending.future.set_exception(error)

        if was_live:
            if abnormal:
                logger.warning(str(error))
            elif quitting:
                logger.info(f"Engine with process id {self.pid} shutdown successfully")
            else:
                logger.info(f"Engine with process id {self.pid} exited on its own")
            self.events.emit(ProcessExited(returncode, abnormal))
            if abnormal:
                self.events.emit(ErrorOccurred(error))

        if self._exit_future is not None and not self._exit_future.done():
            self._exit_future.set_result(returncode)
