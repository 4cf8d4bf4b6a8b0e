"""Compare played games against repertoire trees.

State machine
-------------
Each game is walked ply by ply from the repertoire root.

  * **Tracking** – the current node is known.  If it has a child with the
    ply's SAN the ply is ``in-repertoire`` and tracking moves to that child.
    Otherwise the user's own move is ``out-of-repertoire`` (with the
    expected move when it can be named) and an opponent move is
    ``opponent-new``; either way the walk switches to *Stopped*.

  * **Stopped** – every remaining ply is ``neutral``.  The walk never
    re-enters Tracking, even if a later move happens to match a deeper
    node via a transposition.

The match score is the number of ``in-repertoire`` plies; the repertoire
with the highest score wins, ties going to the most recently updated one.
"""

from __future__ import annotations

import hashlib
from typing import Mapping, Sequence

from .builder import parse_games
from .errors import IllegalMove, RootMismatch
from .models import (
    Color,
    GameAnalysis,
    MoveAnalysis,
    MoveStatus,
    ParsedGame,
    RepertoireRef,
    SkipRecord,
)
from .rules import RuleEngine, default_rules, position_key
from .tree import Repertoire, RepertoireTree

_DEFAULT_HEADERS = {
    "Event":  "Unknown",
    "White":  "Unknown",
    "Black":  "Unknown",
    "Result": "*",
}
_FINGERPRINT_MOVES = 10


# ---------------------------------------------------------------------------
# Single game
# ---------------------------------------------------------------------------


def _expected_move(
    tree: RepertoireTree,
    node_id: str,
    known_choices: Mapping[str, str] | None,
) -> str | None:
    children = tree.children(node_id)
    if known_choices:
        preferred = known_choices.get(tree.get(node_id).position_key)
        if preferred is not None and any(c.move == preferred for c in children):
            return preferred
    if len(children) == 1:
        return children[0].move
    return None


def classify_game(
    game: ParsedGame,
    tree: RepertoireTree | None,
    user_color: Color,
    *,
    known_choices: Mapping[str, str] | None = None,
    rules: RuleEngine | None = None,
) -> list[MoveAnalysis]:
    """Classify every ply of *game* against *tree*.

    *tree* may be ``None`` (no repertoire): the first ply then leaves the
    repertoire immediately.  *known_choices* maps a position key to the SAN
    the user historically plays there and is preferred as the expected move.

    Raises
    ------
    RootMismatch
        The tree does not start from the game's starting position.
    IllegalMove
        A ply is not legal in the tracked repertoire position.
    """
    if tree is not None and tree.root.position_key != position_key(game.start_fen):
        raise RootMismatch(tree.root.fen, game.start_fen)

    rules = rules or default_rules()
    current: str | None = tree.root_id if tree is not None else None
    moves: list[MoveAnalysis] = []

    for ply in game.plies:
        is_user = ply.mover is user_color

        if tree is None or current is None:
            status = MoveStatus.NEUTRAL if moves else (
                MoveStatus.OUT_OF_REPERTOIRE if is_user else MoveStatus.OPPONENT_NEW
            )
            moves.append(MoveAnalysis(ply.ply, ply.san, ply.fen_before, status, is_user))
            continue

        node = tree.get(current)
        if not is_user:
            legal = {m.san for m in rules.legal_moves(node.fen)}
            if ply.san not in legal:
                raise IllegalMove(ply.san, ply=ply.ply, fen=node.fen)

        child = tree.find_child(current, ply.san)
        if child is not None:
            moves.append(
                MoveAnalysis(ply.ply, ply.san, ply.fen_before, MoveStatus.IN_REPERTOIRE, is_user)
            )
            current = child.id
            continue

        if is_user:
            moves.append(
                MoveAnalysis(
                    ply.ply,
                    ply.san,
                    ply.fen_before,
                    MoveStatus.OUT_OF_REPERTOIRE,
                    True,
                    expected_move=_expected_move(tree, current, known_choices),
                )
            )
        else:
            moves.append(
                MoveAnalysis(ply.ply, ply.san, ply.fen_before, MoveStatus.OPPONENT_NEW, False)
            )
        current = None

    return moves


def match_score(moves: Sequence[MoveAnalysis]) -> int:
    return sum(1 for m in moves if m.status is MoveStatus.IN_REPERTOIRE)


def analyse_game(
    game: ParsedGame,
    tree: RepertoireTree | None,
    user_color: Color,
    game_index: int = 0,
    *,
    known_choices: Mapping[str, str] | None = None,
    rules: RuleEngine | None = None,
) -> GameAnalysis:
    """Classify *game* and wrap the result with headers, score and fingerprint."""
    moves = classify_game(
        game, tree, user_color, known_choices=known_choices, rules=rules
    )
    headers = {**_DEFAULT_HEADERS, **game.headers}
    return GameAnalysis(
        game_index=game_index,
        headers=headers,
        moves=moves,
        user_color=user_color,
        match_score=match_score(moves),
        fingerprint=compute_fingerprint(game.headers, [m.san for m in moves]),
    )


# ---------------------------------------------------------------------------
# Repertoire selection
# ---------------------------------------------------------------------------


def find_best_repertoire(
    game: ParsedGame,
    repertoires: Sequence[Repertoire],
    user_color: Color,
    rules: RuleEngine | None = None,
) -> tuple[Repertoire | None, int]:
    """Pick the repertoire of *user_color* that *game* follows the longest.

    Returns ``(None, 0)`` when no candidate of that colour applies.
    """
    best: Repertoire | None = None
    best_score = -1
    for rep in repertoires:
        if rep.color is not user_color:
            continue
        try:
            score = match_score(classify_game(game, rep.tree, user_color, rules=rules))
        except RootMismatch:
            continue
        if score > best_score or (
            score == best_score and best is not None and rep.updated_at > best.updated_at
        ):
            best, best_score = rep, score
    if best is None:
        return None, 0
    return best, best_score


def determine_user_color(headers: Mapping[str, str], username: str) -> Color | None:
    """Colour *username* played in a game, or ``None`` if they did not play."""
    name = username.strip().lower()
    if not name:
        return None
    if headers.get("White", "").strip().lower() == name:
        return Color.WHITE
    if headers.get("Black", "").strip().lower() == name:
        return Color.BLACK
    return None


def compute_fingerprint(headers: Mapping[str, str], sans: Sequence[str]) -> str:
    """Stable identity for a game, used to drop duplicate imports.

    Lichess and Chess.com games carry their URL in ``Site`` / ``Link``; for
    anything else the key headers and the first moves are hashed.
    """
    site = headers.get("Site", "")
    if "lichess.org/" in site:
        return site
    link = headers.get("Link", "")
    if "chess.com/" in link:
        return link

    parts = [headers.get(k, "") for k in ("White", "Black", "Date", "Result", "Event")]
    payload = "|".join(parts) + "|" + " ".join(sans[:_FINGERPRINT_MOVES])
    return "sha256:" + hashlib.sha256(payload.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


def analyse_games(
    raw_pgn: str,
    username: str,
    repertoires: Sequence[Repertoire],
    rules: RuleEngine | None = None,
    verbose: bool = False,
) -> tuple[list[GameAnalysis], list[SkipRecord]]:
    """Analyse every game in *raw_pgn* that *username* played.

    Games that fail to parse, were not played by *username*, or repeat an
    earlier game's fingerprint are skipped and reported; the rest of the
    batch always continues.
    """
    parsed, skipped = parse_games(raw_pgn, rules)
    if verbose and skipped:
        print(f"[analyse] {len(skipped)} game(s) could not be parsed.", flush=True)

    results: list[GameAnalysis] = []
    seen: set[str] = set()

    for index, game in parsed:
        label = f"{game.headers.get('White', '?')} vs {game.headers.get('Black', '?')}"
        user_color = determine_user_color(game.headers, username)
        if user_color is None:
            skipped.append(SkipRecord(index, label, "not-a-player"))
            continue
        if not game.plies:
            skipped.append(SkipRecord(index, label, "no-moves"))
            continue

        best, score = find_best_repertoire(game, repertoires, user_color, rules)
        analysis = analyse_game(
            game,
            best.tree if best is not None else None,
            user_color,
            game_index=len(results),
            rules=rules,
        )
        if best is not None:
            analysis.matched_repertoire = RepertoireRef(id=best.id, name=best.name)
        analysis.match_score = score

        if analysis.fingerprint in seen:
            skipped.append(SkipRecord(index, label, "duplicate"))
            continue
        seen.add(analysis.fingerprint)
        results.append(analysis)

    skipped.sort(key=lambda s: s.index)
    if verbose:
        print(
            f"[analyse] {len(results)} game(s) analysed, {len(skipped)} skipped.",
            flush=True,
        )
    return results, skipped
