"""Shared data-model types used across all modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Closed variants
# ---------------------------------------------------------------------------


class Color(str, Enum):
    """Repertoire / player colour."""

    WHITE = "white"
    BLACK = "black"

    @property
    def fen_side(self) -> str:
        return "w" if self is Color.WHITE else "b"

    @property
    def opposite(self) -> "Color":
        return Color.BLACK if self is Color.WHITE else Color.WHITE

    @classmethod
    def from_fen_side(cls, side: str) -> "Color":
        return cls.BLACK if side == "b" else cls.WHITE


class TokenKind(str, Enum):
    MOVE_NUMBER = "move_number"
    MOVE = "move"
    COMMENT = "comment"
    NAG = "nag"
    RESULT = "result"
    VARIATION_START = "variation_start"
    VARIATION_END = "variation_end"


class MoveStatus(str, Enum):
    """Per-ply classification emitted by the game matcher."""

    IN_REPERTOIRE = "in-repertoire"
    OUT_OF_REPERTOIRE = "out-of-repertoire"
    OPPONENT_NEW = "opponent-new"
    NEUTRAL = "neutral"


# ---------------------------------------------------------------------------
# Tokenizer / parsed games
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Token:
    """One movetext token.

    For ``MOVE`` tokens ``value`` is the SAN without ``+``/``#`` and ``text``
    is the move as written (decorations kept, annotation glyphs removed).
    """

    kind: TokenKind
    value: str
    text: str = ""


@dataclass
class GamePly:
    """A single half-move of a parsed game."""

    ply: int            # 0-indexed from the game's starting position
    san: str            # canonical SAN, no check/mate decorations
    display: str        # SAN as it should be shown (decorations kept)
    fen_before: str     # normalised FEN of the position the move was played from
    fen: str            # normalised FEN after the move
    mover: Color        # side that played the move
    comment: str | None = None


@dataclass
class ParsedGame:
    """Headers plus the replayed move list of one PGN game."""

    headers: dict[str, str]
    start_fen: str
    plies: list[GamePly] = field(default_factory=list)
    result: str = "*"
    warnings: list[str] = field(default_factory=list)

    @property
    def sans(self) -> list[str]:
        return [p.san for p in self.plies]


# ---------------------------------------------------------------------------
# Game analysis
# ---------------------------------------------------------------------------


@dataclass
class MoveAnalysis:
    ply: int
    san: str
    fen: str                       # position *before* the move
    status: MoveStatus
    is_user_move: bool
    expected_move: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "plyNumber":  self.ply,
            "san":        self.san,
            "fen":        self.fen,
            "status":     self.status.value,
            "isUserMove": self.is_user_move,
        }
        if self.expected_move:
            out["expectedMove"] = self.expected_move
        return out


@dataclass(frozen=True)
class RepertoireRef:
    """Lightweight pointer to a stored repertoire."""

    id: str
    name: str


@dataclass
class GameAnalysis:
    game_index: int
    headers: dict[str, str]
    moves: list[MoveAnalysis]
    user_color: Color
    matched_repertoire: RepertoireRef | None = None
    match_score: int = 0
    fingerprint: str = ""

    def to_dict(self) -> dict[str, Any]:
        matched = None
        if self.matched_repertoire is not None:
            matched = {
                "id":   self.matched_repertoire.id,
                "name": self.matched_repertoire.name,
            }
        return {
            "gameIndex":         self.game_index,
            "headers":           dict(self.headers),
            "moves":             [m.to_dict() for m in self.moves],
            "userColor":         self.user_color.value,
            "matchedRepertoire": matched,
            "matchScore":        self.match_score,
            "fingerprint":       self.fingerprint,
        }


# ---------------------------------------------------------------------------
# Trees and batch imports
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TreeMetadata:
    total_nodes: int
    total_moves: int     # every node except the root
    deepest_depth: int   # deepest ply reached


@dataclass
class ChapterInfo:
    index: int
    name: str
    orientation: Color
    move_count: int


@dataclass
class StudyInfo:
    study_id: str
    study_name: str
    chapters: list[ChapterInfo] = field(default_factory=list)


@dataclass
class SkipRecord:
    """An item of a batch (game or chapter) that could not be processed."""

    index: int
    name: str
    reason: str     # short machine-friendly code, e.g. "custom-start"
    error: str = ""
