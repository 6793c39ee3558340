"""
Chess rules collaborator.

The orchestrator never decides legality or game termination itself. It asks
a RulesEngine, one instance per game, so fixture rules can be injected in
tests. BoardRules is the production implementation on top of python-chess.
"""

from __future__ import annotations

from typing import List, Optional, Protocol

import chess

from .models import Move, MoveLike, Side, coerce_move


class RulesEngine(Protocol):
    """Board state and rule queries needed to run a game."""

    def reset(self) -> None: ...

    def fen(self) -> str: ...

    def turn(self) -> Side: ...

    def apply_move(self, move: MoveLike) -> Optional[Move]: ...

    def moves(self) -> List[Move]: ...

    def is_checkmate(self) -> bool: ...

    def is_stalemate(self) -> bool: ...

    def is_threefold_repetition(self) -> bool: ...

    def is_insufficient_material(self) -> bool: ...

    def is_draw(self) -> bool: ...


class BoardRules:
    """RulesEngine backed by a chess.Board."""

    def __init__(self, fen: Optional[str] = None):
        self.board = chess.Board(fen) if fen else chess.Board()

    def reset(self) -> None:
        self.board.reset()

    def fen(self) -> str:
        return self.board.fen()

    def turn(self) -> Side:
        return Side.from_chess(self.board.turn)

    def apply_move(self, move: MoveLike) -> Optional[Move]:
        """
        Play a move if it is legal in the current position.

        Returns:
            The applied move, or None if it was malformed or illegal
        """
        try:
            parsed = coerce_move(move)
            chess_move = parsed.to_chess()
        except ValueError:
            return None
        if chess_move not in self.board.legal_moves:
            return None
        self.board.push(chess_move)
        return parsed

    def moves(self) -> List[Move]:
        """Moves played so far, oldest first."""
        return [Move.from_chess(move) for move in self.board.move_stack]

    def is_checkmate(self) -> bool:
        return self.board.is_checkmate()

    def is_stalemate(self) -> bool:
        return self.board.is_stalemate()

    def is_threefold_repetition(self) -> bool:
        return self.board.is_repetition(3)

    def is_insufficient_material(self) -> bool:
        return self.board.is_insufficient_material()

    def is_draw(self) -> bool:
        """Any other drawn position: fifty-move rule or a claimable draw."""
        return self.board.is_fifty_moves() or self.board.can_claim_draw()
