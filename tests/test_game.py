"""
Tests for the game orchestrator.

End-to-end scenarios run the scripted engine in tests/fake_engine.py; rule
and timing edge cases use an in-process scripted session so they do not
depend on subprocess scheduling.
"""

import asyncio
import functools
import os
import sys
import tempfile
import unittest
from pathlib import Path

import chess

from chess_uci_driver.core.clock import ClockState, TimeControl
from chess_uci_driver.core.errors import IllegalMove, ProtocolError, ResponseTimeout, SpawnError, UsageError
from chess_uci_driver.core.events import (
    ErrorOccurred,
    EventHub,
    EventRecorder,
    GameEnded,
    MoveApplied,
    NewGameStarted,
    ProcessExited,
)
from chess_uci_driver.core.game import GameOrchestrator, GamePhase
from chess_uci_driver.core.models import BestMove, Config, EngineIdentity, EngineProfile, Move, Side

FAKE_ENGINE = str(Path(__file__).with_name("fake_engine.py"))


def async_test(coro):
    """Decorator to run async tests."""
    @functools.wraps(coro)
    def wrapper(*args, **kwargs):
        return asyncio.run(coro(*args, **kwargs))
    return wrapper


class ScriptedSession:
    """In-process stand-in for EngineSession that plays a fixed list of moves."""

    def __init__(self, moves, events, search_delay=0.0):
        self.moves = list(moves)
        self.events = events
        self.search_delay = search_delay
        self.sent = []
        self.name = "Scripted"
        self.shutdowns = 0

    async def launch(self):
        self.sent.append("launch")

    async def handshake(self):
        self.sent.append("uci")
        return EngineIdentity(self.name, "Tests")

    async def set_option(self, name, value=None):
        self.sent.append(f"setoption {name} {value}")

    async def new_game(self):
        self.sent.append("ucinewgame")

    async def set_position(self, fen="startpos", moves=None):
        self.sent.append(f"position {fen}")

    async def search(self, limits, on_info=None, timeout=None):
        self.sent.append(limits.to_command())
        if on_info is not None:
            on_info("info depth 1 score cp 0")
        await asyncio.sleep(self.search_delay)
        return BestMove(Move.from_uci(self.moves.pop(0)) if self.moves else None)

    async def shutdown(self):
        self.shutdowns += 1
        return 0

    def crash(self):
        self.events.emit(ProcessExited(-9, True))


class TimingOutSession(ScriptedSession):
    """Scripted session whose searches never answer in time."""

    async def search(self, limits, on_info=None, timeout=None):
        self.sent.append(limits.to_command())
        error = ResponseTimeout("No response to 'go' within 0.1s")
        self.events.emit(ErrorOccurred(error))
        raise error


class FixedBook:
    """Opening book returning preset moves for preset positions."""

    def __init__(self, entries):
        self.entries = entries
        self.lookups = []

    def find_move(self, fen, book_id=None, strict=False):
        self.lookups.append((fen, book_id, strict))
        move = self.entries.get(fen)
        return Move.from_uci(move) if move else None


class ScriptedGameTests(unittest.TestCase):
    """Test game flow with a scripted in-process engine."""

    def setUp(self):
        self.recorder = EventRecorder()
        self.events = EventHub()
        self.events.subscribe(self.recorder)
        self.sessions = []

    def orchestrator(self, moves, book=None, search_delay=0.0, session_class=None, **config):
        def factory(path, args=(), config=None, events=None):
            session = (session_class or ScriptedSession)(moves, events, search_delay)
            self.sessions.append(session)
            return session

        return GameOrchestrator(
            config=Config(tick_interval=0.05, **config),
            events=self.events,
            session_factory=factory,
            book=book,
        )

    def moves_applied(self):
        return [
            (event.move.uci(), event.side, event.by_engine, event.from_book)
            for event in self.recorder.of_type(MoveApplied)
        ]

    @async_test
    async def test_fools_mate_ends_game(self):
        game = self.orchestrator(["e7e5", "d8h4"])
        await game.start_new_game("scripted", "black", 5)
        self.assertEqual(self.recorder.of_type(NewGameStarted)[0].engine_side, Side.BLACK)

        game.submit_move("f2f3")
        await game.wait_for_engine()
        game.submit_move({"from": "g2", "to": "g4"})
        await game.wait_for_engine()

        self.assertEqual(self.moves_applied(), [
            ("f2f3", Side.WHITE, False, False),
            ("e7e5", Side.BLACK, True, False),
            ("g2g4", Side.WHITE, False, False),
            ("d8h4", Side.BLACK, True, False),
        ])
        self.assertEqual(self.recorder.of_type(GameEnded), [GameEnded("0-1", "white is checkmated")])
        self.assertIs(game.phase, GamePhase.ENDED)
        self.assertIs(game.clock.state, ClockState.STOPPED)

        await game.wait_closed()
        self.assertEqual(self.sessions[0].shutdowns, 1)
        with self.assertRaises(UsageError):
            game.submit_move("a2a3")

        pgn = game.export_pgn()
        self.assertEqual(pgn.headers["Result"], "0-1")
        self.assertEqual(pgn.headers["Black"], "Scripted")
        self.assertEqual(len(list(pgn.mainline_moves())), 4)

    @async_test
    async def test_engine_moves_first_as_white(self):
        game = self.orchestrator(["e2e4"])
        await game.start_new_game("scripted", Side.WHITE, 1)
        await game.wait_for_engine()

        self.assertEqual(self.moves_applied(), [("e2e4", Side.WHITE, True, False)])
        session = self.sessions[0]
        self.assertIn("position startpos", session.sent)
        go = [line for line in session.sent if line.startswith("go ")][0]
        self.assertTrue(go.startswith("go wtime "))
        self.assertIs(game.side_to_move, Side.BLACK)
        await game.end_game()

    @async_test
    async def test_book_move_is_tagged_and_skips_search(self):
        book = FixedBook({chess.STARTING_FEN: "e2e4"})
        game = self.orchestrator(["d2d4"], book=book, book_strict=True)
        await game.start_new_game("scripted", "white", 1, book="main.bin")
        await game.wait_for_engine()

        self.assertEqual(self.moves_applied(), [("e2e4", Side.WHITE, True, True)])
        self.assertEqual(book.lookups, [(chess.STARTING_FEN, "main.bin", True)])
        self.assertFalse(any(line.startswith("go ") for line in self.sessions[0].sent))
        await game.end_game()

    @async_test
    async def test_illegal_human_move_leaves_state_unchanged(self):
        game = self.orchestrator([])
        await game.start_new_game("scripted", "black", 5)
        fen = game.rules.fen()

        for move in ["e2e5", "e7e5", "zz", {"from": "e2"}]:
            with self.subTest(move=move):
                with self.assertRaises(IllegalMove):
                    game.submit_move(move)
        self.assertEqual(game.rules.fen(), fen)
        self.assertIs(game.clock.active_side, Side.WHITE)
        self.assertEqual(self.recorder.of_type(MoveApplied), [])
        self.assertIs(game.phase, GamePhase.IN_PROGRESS)
        await game.end_game()

    @async_test
    async def test_move_rejected_on_engine_turn(self):
        game = self.orchestrator(["e2e4"], search_delay=0.2)
        await game.start_new_game("scripted", "white", 1)
        with self.assertRaises(UsageError):
            game.submit_move("e2e4")
        await game.wait_for_engine()
        await game.end_game()

    @async_test
    async def test_illegal_engine_move_forfeits(self):
        game = self.orchestrator(["e2e5"])
        await game.start_new_game("scripted", "white", 1)
        await game.wait_for_engine()

        self.assertEqual(self.recorder.of_type(GameEnded), [GameEnded("0-1", "engine played an illegal move")])
        errors = self.recorder.of_type(ErrorOccurred)
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0].error, IllegalMove)
        await game.wait_closed()

    @async_test
    async def test_engine_without_move_fails_only_that_analysis(self):
        game = self.orchestrator([])
        await game.start_new_game("scripted", "white", 1)
        await game.wait_for_engine()

        errors = self.recorder.of_type(ErrorOccurred)
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0].error, ProtocolError)
        self.assertEqual(self.recorder.of_type(MoveApplied), [])
        self.assertEqual(self.recorder.of_type(GameEnded), [])
        self.assertIs(game.phase, GamePhase.IN_PROGRESS)
        await game.end_game()

    @async_test
    async def test_search_timeout_reported_once(self):
        game = self.orchestrator([], session_class=TimingOutSession)
        await game.start_new_game("scripted", "white", 1)
        await game.wait_for_engine()

        errors = self.recorder.of_type(ErrorOccurred)
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0].error, ResponseTimeout)
        self.assertEqual(self.recorder.of_type(MoveApplied), [])
        self.assertIs(game.phase, GamePhase.IN_PROGRESS)
        self.assertTrue(any(line.startswith("go ") for line in self.sessions[0].sent))
        await game.end_game()

    @async_test
    async def test_time_up_preempts_pending_search(self):
        game = self.orchestrator(["e2e4"], search_delay=2.0)
        await game.start_new_game(
            "scripted", "white", 0, time_controls=[TimeControl(300)]
        )
        await asyncio.sleep(0.8)

        self.assertEqual(self.recorder.of_type(GameEnded), [GameEnded("0-1", "white's time is up")])
        self.assertEqual(self.recorder.of_type(MoveApplied), [])
        await game.wait_closed()
        self.assertEqual(self.recorder.of_type(MoveApplied), [])
        self.assertEqual(self.sessions[0].shutdowns, 1)

    @async_test
    async def test_abnormal_engine_exit_ends_game(self):
        game = self.orchestrator([])
        await game.start_new_game("scripted", "black", 5)
        self.sessions[0].crash()

        self.assertEqual(self.recorder.of_type(GameEnded), [GameEnded("*", "engine terminated abnormally")])
        self.assertIs(game.clock.state, ClockState.STOPPED)
        await game.wait_closed()

    @async_test
    async def test_end_game_and_restart(self):
        game = self.orchestrator(["e7e5"])
        await game.start_new_game("scripted", "black", 5)
        with self.assertRaises(UsageError):
            await game.start_new_game("scripted", "black", 5)

        await game.end_game()
        self.assertEqual(self.recorder.of_type(GameEnded), [GameEnded("*", "game ended by user")])
        with self.assertRaises(UsageError):
            await game.end_game()

        await game.start_new_game("scripted", "white", 5)
        self.assertIs(game.phase, GamePhase.IN_PROGRESS)
        self.assertEqual(len(self.sessions), 2)
        await game.end_game()

    @async_test
    async def test_invalid_side(self):
        game = self.orchestrator([])
        with self.assertRaises(ValueError):
            await game.start_new_game("scripted", "green", 5)
        self.assertIs(game.phase, GamePhase.IDLE)
        self.assertEqual(self.sessions, [])

    @async_test
    async def test_profile_options_applied(self):
        profile = EngineProfile("scripted", "Scripted", set_options={"Hash": "64"})
        game = self.orchestrator([], engine_options={"Scripted": {"Threads": "2"}})
        await game.start_new_game(profile, "black", 5)
        sent = self.sessions[0].sent
        self.assertLess(sent.index("setoption Hash 64"), sent.index("ucinewgame"))
        self.assertLess(sent.index("setoption Threads 2"), sent.index("ucinewgame"))
        await game.end_game()


class EngineGameTests(unittest.TestCase):
    """End-to-end games against the scripted engine process."""

    def setUp(self):
        self.recorder = EventRecorder()
        self.events = EventHub()
        self.events.subscribe(self.recorder)
        self.tmpdir = tempfile.TemporaryDirectory()
        self.log_path = os.path.join(self.tmpdir.name, "commands.log")
        self.config = Config(start_timeout=10.0, launch_poll_interval=0.05, command_timeout=10.0)

    def tearDown(self):
        self.tmpdir.cleanup()

    def profile(self, *flags, **kwargs):
        return EngineProfile(
            executable_path=sys.executable,
            name="Fake Engine",
            args=[FAKE_ENGINE, "--log", self.log_path, *flags],
            **kwargs,
        )

    def commands(self):
        with open(self.log_path, encoding="utf-8") as f:
            return [line.rstrip("\n") for line in f]

    @async_test
    async def test_engine_as_black_ten_minutes(self):
        game = GameOrchestrator(self.config, self.events)
        await game.start_new_game(self.profile("--bestmove", "e7e5"), "black", 10)
        self.assertIn("position startpos", self.commands())

        applied = game.submit_move("e2e4")
        self.assertEqual(applied, Move("e2", "e4"))
        await game.wait_for_engine()

        events = self.recorder.of_type(MoveApplied)
        self.assertEqual(len(events), 2)
        self.assertEqual(events[0].move.uci(), "e2e4")
        self.assertFalse(events[0].by_engine)
        self.assertEqual(events[1].move.uci(), "e7e5")
        self.assertEqual(events[1].side, Side.BLACK)
        self.assertTrue(events[1].by_engine)
        self.assertFalse(events[1].from_book)

        commands = self.commands()
        board = chess.Board()
        board.push_uci("e2e4")
        self.assertIn(f"position fen {board.fen()}", commands)
        go = [line for line in commands if line.startswith("go ")]
        self.assertEqual(len(go), 1)
        tokens = go[0].split()
        wtime, btime = int(tokens[2]), int(tokens[4])
        self.assertTrue(590000 < wtime <= 600000)
        self.assertTrue(590000 < btime <= 600000)

        await game.end_game()
        self.assertEqual(self.commands()[-1], "quit")
        self.assertEqual(self.recorder.of_type(GameEnded), [GameEnded("*", "game ended by user")])

    @async_test
    async def test_options_sent_before_new_game(self):
        game = GameOrchestrator(self.config, self.events)
        await game.start_new_game(self.profile(set_options={"Hash": "32"}), "black", 1)
        await game.end_game()

        commands = self.commands()
        self.assertLess(
            commands.index("setoption name Hash value 32"),
            commands.index("ucinewgame"),
        )

    @async_test
    async def test_engine_crash_ends_game(self):
        game = GameOrchestrator(self.config, self.events)
        await game.start_new_game(self.profile("--crash-on", "go"), "white", 1)
        await game.wait_for_engine()
        await game.wait_closed()

        self.assertEqual(self.recorder.of_type(GameEnded), [GameEnded("*", "engine terminated abnormally")])
        self.assertIs(game.phase, GamePhase.ENDED)
        self.assertEqual(self.recorder.of_type(MoveApplied), [])

    @async_test
    async def test_time_up_discards_late_engine_move(self):
        game = GameOrchestrator(Config(launch_poll_interval=0.05, tick_interval=0.05), self.events)
        await game.start_new_game(
            self.profile("--search-delay", "1.5"), "white", 0, time_controls=[TimeControl(400)]
        )
        await asyncio.sleep(1.0)
        await game.wait_closed()

        self.assertEqual(self.recorder.of_type(GameEnded), [GameEnded("0-1", "white's time is up")])
        self.assertEqual(self.recorder.of_type(MoveApplied), [])
        self.assertEqual(self.commands()[-1], "quit")

    @async_test
    async def test_missing_engine_leaves_orchestrator_idle(self):
        game = GameOrchestrator(self.config, self.events)
        with self.assertRaises(SpawnError):
            await game.start_new_game(os.path.join(self.tmpdir.name, "nothing"), "black", 1)
        self.assertIs(game.phase, GamePhase.IDLE)


if __name__ == "__main__":
    unittest.main()
