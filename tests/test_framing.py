"""
Unit tests for engine output line framing.

The framer must produce the same lines however the output stream is chunked.
"""

import random
import unittest

from chess_uci_driver.core.framing import LineFramer, split_lines


STREAM = (
    "id name Fake Engine\n"
    "id author Test Suite\r\n"
    "option name Hash type spin default 16 min 1 max 1024\n"
    "uciok\r\n"
    "info depth 1 score cp 13 pv e2e4\n"
    "bestmove e2e4 ponder e7e5\n"
)

EXPECTED = [
    "id name Fake Engine",
    "id author Test Suite",
    "option name Hash type spin default 16 min 1 max 1024",
    "uciok",
    "info depth 1 score cp 13 pv e2e4",
    "bestmove e2e4 ponder e7e5",
]


def frame_in_chunks(data, boundaries):
    framer = LineFramer()
    lines = []
    start = 0
    for end in list(boundaries) + [len(data)]:
        lines.extend(framer.feed(data[start:end]))
        start = end
    tail = framer.flush()
    if tail is not None:
        lines.append(tail)
    return lines


class SplitLinesTests(unittest.TestCase):
    """Test the pure splitting function."""

    def test_complete_and_incomplete(self):
        self.assertEqual(split_lines("abc\ndef\ngh"), (["abc", "def"], "gh"))

    def test_pending_fragment_is_prefixed(self):
        lines, pending = split_lines("ame X\nuci", pending="id n")
        self.assertEqual(lines, ["id name X"])
        self.assertEqual(pending, "uci")

    def test_no_terminator(self):
        self.assertEqual(split_lines("readyo"), ([], "readyo"))

    def test_trailing_carriage_return_is_held(self):
        lines, pending = split_lines("uciok\r")
        self.assertEqual(lines, [])
        self.assertEqual(pending, "uciok\r")

        lines, pending = split_lines("\nreadyok\n", pending)
        self.assertEqual(lines, ["uciok", "readyok"])
        self.assertEqual(pending, "")

    def test_lone_carriage_return_separates_lines(self):
        self.assertEqual(split_lines("a\rb\n"), (["a", "b"], ""))


class LineFramerTests(unittest.TestCase):
    """Test incremental framing over arbitrary chunk boundaries."""

    def test_whole_stream(self):
        self.assertEqual(frame_in_chunks(STREAM, []), EXPECTED)

    def test_every_single_split_point(self):
        for split in range(1, len(STREAM)):
            with self.subTest(split=split):
                self.assertEqual(frame_in_chunks(STREAM, [split]), EXPECTED)

    def test_random_chunkings(self):
        rng = random.Random(1234)
        for _ in range(200):
            count = rng.randint(1, 20)
            boundaries = sorted(rng.sample(range(1, len(STREAM)), count))
            self.assertEqual(frame_in_chunks(STREAM, boundaries), EXPECTED)

    def test_byte_at_a_time(self):
        data = STREAM.encode()
        framer = LineFramer()
        lines = []
        for i in range(len(data)):
            lines.extend(framer.feed(data[i:i + 1]))
        self.assertEqual(lines, EXPECTED)

    def test_multibyte_character_split_across_chunks(self):
        data = "id author Stéphane\n".encode("utf-8")
        split = data.index(b"\xc3") + 1
        framer = LineFramer()
        self.assertEqual(framer.feed(data[:split]), [])
        self.assertEqual(framer.feed(data[split:]), ["id author Stéphane"])

    def test_invalid_bytes_are_replaced(self):
        framer = LineFramer()
        lines = framer.feed(b"id name \xff\xfe\n")
        self.assertEqual(len(lines), 1)
        self.assertTrue(lines[0].startswith("id name "))

    def test_flush_returns_unterminated_tail(self):
        framer = LineFramer()
        self.assertEqual(framer.feed("uciok\nbestmo"), ["uciok"])
        self.assertEqual(framer.pending, "bestmo")
        self.assertEqual(framer.flush(), "bestmo")
        self.assertIsNone(framer.flush())

    def test_flush_strips_dangling_carriage_return(self):
        framer = LineFramer()
        framer.feed("readyok\r")
        self.assertEqual(framer.flush(), "readyok")


if __name__ == "__main__":
    unittest.main()
