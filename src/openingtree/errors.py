"""Exception types raised by the notation engine.

Malformed headers and empty movetext are deliberately *not* errors: the
tokenizer degrades to empty values and the builder produces a root-only tree.
"""

from __future__ import annotations


class OpeningTreeError(Exception):
    """Base class for every error raised by this package."""


# ---------------------------------------------------------------------------
# Building a tree from one game
# ---------------------------------------------------------------------------


class IllegalMove(OpeningTreeError, ValueError):
    """A move token does not correspond to a legal move in its position."""

    def __init__(self, move: str, ply: int | None = None, fen: str | None = None) -> None:
        self.move = move
        self.ply = ply
        self.fen = fen
        where = f" at ply {ply}" if ply is not None else ""
        super().__init__(f"illegal move {move!r}{where}")


class CustomStartingPosition(OpeningTreeError, ValueError):
    """The game declares a non-standard starting position via SetUp/FEN."""

    def __init__(self, fen: str) -> None:
        self.fen = fen
        super().__init__(f"custom starting position not supported: {fen}")


# ---------------------------------------------------------------------------
# Merging trees
# ---------------------------------------------------------------------------


class MixedColors(OpeningTreeError, ValueError):
    """Attempt to merge repertoires prepared for different colours."""

    def __init__(self, first: str, second: str) -> None:
        super().__init__(f"cannot merge a {first} repertoire with a {second} one")


class RootMismatch(OpeningTreeError, ValueError):
    """Two trees (or a tree and a game) start from different positions."""

    def __init__(self, expected: str, got: str) -> None:
        self.expected = expected
        self.got = got
        super().__init__(f"root position mismatch: {expected!r} != {got!r}")


# ---------------------------------------------------------------------------
# Editing and lookup
# ---------------------------------------------------------------------------


class NotFound(OpeningTreeError, KeyError):
    """No object with the requested id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "not found"


class NodeNotFound(NotFound):
    pass


class MoveExists(OpeningTreeError, ValueError):
    pass


class CannotDeleteRoot(OpeningTreeError, ValueError):
    pass


class EmptyStudy(OpeningTreeError, ValueError):
    """A study PGN held no chapters, or none of them could be built."""


class CannotExtractRoot(OpeningTreeError, ValueError):
    pass
