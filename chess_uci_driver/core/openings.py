"""
Opening book lookup for engine games.

Books are Polyglot .bin files, the format shipped with most engine GUIs. A
game consults its book before asking the engine to search; a position with no
book entry falls through to engine analysis.
"""

from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

import chess
import chess.polyglot

from .models import Move

logger = logging.getLogger(__name__)


class OpeningBook(Protocol):
    """Anything that can suggest a move for a position."""

    def find_move(self, fen: str, book_id: Optional[str] = None, strict: bool = False) -> Optional[Move]: ...


class PolyglotBook:
    """
    Polyglot opening books addressed by file path.

    Readers are opened lazily and kept until close(), so repeated lookups in
    the same game do not reopen the file.
    """

    def __init__(self, default_book: Optional[Union[str, Path]] = None, rng: Optional[random.Random] = None):
        """
        Args:
            default_book: Book used when find_move() is not given one
            rng: Random source for weighted move choice
        """
        self.default_book = str(default_book) if default_book else None
        self._rng = rng or random.Random()
        self._readers: Dict[str, chess.polyglot.MemoryMappedReader] = {}

    def find_move(self, fen: str, book_id: Optional[str] = None, strict: bool = False) -> Optional[Move]:
        """
        Look up a book move for a position.

        Args:
            fen: Position to look up
            book_id: Path to a .bin book; defaults to default_book
            strict: Always take the highest-weighted entry instead of a
                weighted random choice

        Returns:
            A book move, or None if there is no book or no entry
        """
        path = book_id or self.default_book
        if not path:
            return None
        reader = self._reader(path)
        if reader is None:
            return None

        board = chess.Board(fen)
        try:
            if strict:
                entry = reader.find(board)
            else:
                entry = reader.weighted_choice(board, random=self._rng)
        except IndexError:
            return None
        logger.debug(f"Book move {entry.move.uci()} (weight {entry.weight}) from {path}")
        return Move.from_chess(entry.move)

    def close(self) -> None:
        for reader in self._readers.values():
            reader.close()
        self._readers.clear()

    def _reader(self, path: str) -> Optional[chess.polyglot.MemoryMappedReader]:
        if path in self._readers:
            return self._readers[path]
        if not Path(path).is_file():
            logger.warning(f"Opening book not found: {path}")
            return None
        try:
            reader = chess.polyglot.open_reader(path)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not open opening book {path}: {e}")
            return None
        self._readers[path] = reader
        return reader

    def __enter__(self) -> PolyglotBook:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
