"""Chess rule engine seam.

The tree builder, merge engine and game matcher only ever talk to a
:class:`RuleEngine`; :class:`ChessRules` is the python-chess backed
implementation used by default.  Any deterministic object with the same
methods can be swapped in (tests use this to count calls).

FEN handling
------------
Positions are stored *normalised*: the first four FEN fields (placement,
side to move, castling, en-passant).  Move counters are dropped because
transposition detection must not depend on how many moves it took to get
somewhere.  Position *equality* is stricter still and compares only
placement plus side to move – see :func:`position_key`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import chess

from .errors import IllegalMove
from .pgn import strip_decorations

STARTING_FEN = chess.STARTING_FEN


def normalize_fen(fen: str) -> str:
    """Keep placement, side, castling and en-passant; drop the move counters."""
    parts = fen.split()
    return " ".join(parts[:4]) if len(parts) >= 4 else fen.strip()


def ensure_full_fen(fen: str) -> str:
    """Pad a normalised FEN back to six fields so a board can be built from it."""
    parts = fen.split()
    if len(parts) >= 6:
        return fen
    defaults = ["w", "-", "-", "0", "1"]
    return " ".join(parts + defaults[len(parts) - 1:])


def position_key(fen: str) -> str:
    """Equality key for positions: piece placement plus side to move."""
    return " ".join(fen.split()[:2])


def side_to_move(fen: str) -> str:
    parts = fen.split()
    return "b" if len(parts) >= 2 and parts[1] == "b" else "w"


STARTING_POSITION = normalize_fen(STARTING_FEN)


@dataclass(frozen=True)
class LegalMove:
    san: str     # canonical SAN, no check/mate decorations
    uci: str
    dest: str    # destination square name, e.g. "e4"


class RuleEngine(Protocol):
    """Contract the notation engine needs from a chess implementation."""

    def apply_move(self, fen: str, move: str) -> tuple[str, str]:
        """Return ``(new_fen, canonical_san)`` or raise :class:`IllegalMove`."""
        ...

    def legal_moves(self, fen: str) -> list[LegalMove]:
        ...


class ChessRules:
    """:class:`RuleEngine` backed by python-chess.

    Accepts SAN (with or without ``+``/``#``) and falls back to UCI
    coordinates (``e2e4``, ``e7e8q``).  Returned FENs are normalised.
    """

    def apply_move(self, fen: str, move: str) -> tuple[str, str]:
        board = self._board(fen)
        parsed = self._parse(board, move)
        san = strip_decorations(board.san(parsed))
        board.push(parsed)
        return normalize_fen(board.fen()), san

    def legal_moves(self, fen: str) -> list[LegalMove]:
        board = self._board(fen)
        return [
            LegalMove(
                san=strip_decorations(board.san(m)),
                uci=m.uci(),
                dest=chess.square_name(m.to_square),
            )
            for m in board.legal_moves
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _board(fen: str) -> chess.Board:
        try:
            return chess.Board(ensure_full_fen(fen))
        except ValueError as exc:
            raise IllegalMove("", fen=fen) from exc

    @staticmethod
    def _parse(board: chess.Board, move: str) -> chess.Move:
        text = move.strip()
        try:
            parsed = board.parse_san(text)
        except ValueError:
            pass
        else:
            if not parsed:
                # python-chess reads "--" as a null move.
                raise IllegalMove(move, fen=board.fen())
            return parsed
        try:
            candidate = chess.Move.from_uci(text)
        except ValueError:
            raise IllegalMove(move, fen=board.fen()) from None
        if candidate not in board.legal_moves:
            raise IllegalMove(move, fen=board.fen())
        return candidate


_DEFAULT_RULES = ChessRules()


def default_rules() -> ChessRules:
    return _DEFAULT_RULES
