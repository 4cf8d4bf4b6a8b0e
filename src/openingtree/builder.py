"""Replay PGN games through the rule engine and grow repertoire trees.

A game is first *parsed* (:func:`parse_game`): every mainline move token is
applied to the current position and the canonical SAN, resulting FEN and
mover are recorded.  The first illegal token aborts the whole game – no
partially parsed game ever leaves this module.

The parsed plies are then *built* into a tree (:func:`build_tree`): starting
at the root, each ply either reuses an existing child with the same SAN or
appends a new one, so replaying the same game twice adds nothing.

Side-lines in parentheses are not followed; each skipped top-level
variation is noted in :attr:`ParsedGame.warnings`.
"""

from __future__ import annotations

from typing import Iterable

from .errors import CustomStartingPosition, IllegalMove, OpeningTreeError, RootMismatch
from .models import Color, GamePly, ParsedGame, SkipRecord, TokenKind
from .pgn import header_color, split_games, split_headers_and_movetext, tokenize
from .rules import (
    STARTING_POSITION,
    RuleEngine,
    default_rules,
    normalize_fen,
    position_key,
    side_to_move,
)
from .tree import RepertoireTree


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def starting_position(headers: dict[str, str]) -> str:
    """Return the standard start, or raise if the headers set up another one."""
    fen = headers.get("FEN", "").strip()
    if fen and normalize_fen(fen) != STARTING_POSITION:
        raise CustomStartingPosition(fen)
    return STARTING_POSITION


def parse_game(chunk: str, rules: RuleEngine | None = None) -> ParsedGame:
    """Parse one game chunk (headers + movetext) into a :class:`ParsedGame`.

    Raises
    ------
    CustomStartingPosition
        The ``FEN`` header points away from the standard array.
    IllegalMove
        A mainline move could not be played; ``ply`` is its 0-based index.
    """
    rules = rules or default_rules()
    headers, movetext = split_headers_and_movetext(chunk)
    start = starting_position(headers)

    game = ParsedGame(
        headers=headers,
        start_fen=start,
        result=headers.get("Result", "*") or "*",
    )

    fen = start
    depth = 0
    for tok in tokenize(movetext):
        if tok.kind is TokenKind.VARIATION_START:
            if depth == 0:
                game.warnings.append(
                    f"variation after ply {len(game.plies)} skipped"
                )
            depth += 1
            continue
        if tok.kind is TokenKind.VARIATION_END:
            depth = max(0, depth - 1)
            continue
        if depth:
            continue

        if tok.kind is TokenKind.MOVE:
            ply = len(game.plies)
            try:
                new_fen, san = rules.apply_move(fen, tok.value)
            except IllegalMove as exc:
                raise IllegalMove(tok.text or tok.value, ply=ply, fen=fen) from exc
            game.plies.append(
                GamePly(
                    ply=ply,
                    san=san,
                    display=tok.text or san,
                    fen_before=fen,
                    fen=new_fen,
                    mover=Color.from_fen_side(side_to_move(fen)),
                )
            )
            fen = new_fen
        elif tok.kind is TokenKind.COMMENT:
            # A comment annotates the move before it; the first one sticks.
            if game.plies and tok.value and game.plies[-1].comment is None:
                game.plies[-1].comment = tok.value
        elif tok.kind is TokenKind.RESULT:
            game.result = tok.value

    return game


def _describe_headers(headers: dict[str, str], index: int) -> str:
    white = headers.get("White")
    black = headers.get("Black")
    if white or black:
        return f"{white or '?'} vs {black or '?'}"
    return headers.get("Event") or f"Game {index + 1}"


def _describe(chunk: str, index: int) -> str:
    headers, _ = split_headers_and_movetext(chunk)
    return _describe_headers(headers, index)


def _skip_reason(exc: OpeningTreeError) -> str:
    if isinstance(exc, CustomStartingPosition):
        return "custom-start"
    if isinstance(exc, IllegalMove):
        return "illegal-move"
    return "error"


def parse_games(
    raw: str,
    rules: RuleEngine | None = None,
) -> tuple[list[tuple[int, ParsedGame]], list[SkipRecord]]:
    """Parse every game in *raw*, collecting per-game failures.

    Returns ``(parsed, skipped)`` where ``parsed`` pairs each game with its
    0-based position in the input.
    """
    parsed: list[tuple[int, ParsedGame]] = []
    skipped: list[SkipRecord] = []
    for index, chunk in enumerate(split_games(raw)):
        try:
            parsed.append((index, parse_game(chunk, rules)))
        except (CustomStartingPosition, IllegalMove) as exc:
            skipped.append(
                SkipRecord(
                    index=index,
                    name=_describe(chunk, index),
                    reason=_skip_reason(exc),
                    error=str(exc),
                )
            )
    return parsed, skipped


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------


def build_tree(
    game: ParsedGame,
    into: RepertoireTree | None = None,
    color: Color | None = None,
) -> RepertoireTree:
    """Build *game* into a tree.

    With *into* the game is replayed into a copy of that tree (the argument
    itself is never modified); otherwise a fresh tree is rooted at the
    game's starting position.  *color* defaults to the ``Orientation``
    header for fresh trees.
    """
    if into is None:
        tree = RepertoireTree(game.start_fen, color or header_color(game.headers))
    else:
        _check_root(into, game)
        tree = into.copy()
    _replay(tree, game)
    return tree


def _check_root(tree: RepertoireTree, game: ParsedGame) -> None:
    if position_key(tree.root.fen) != position_key(game.start_fen):
        raise RootMismatch(tree.root.fen, game.start_fen)


def _replay(tree: RepertoireTree, game: ParsedGame) -> None:
    cursor = tree.root_id
    for ply in game.plies:
        child = tree.find_child(cursor, ply.san)
        if child is None:
            child = tree.attach(cursor, ply.fen, ply.san, comment=ply.comment)
        elif child.comment is None and ply.comment:
            child.comment = ply.comment
        cursor = child.id


def parse_pgn_to_tree(
    chunk: str,
    rules: RuleEngine | None = None,
) -> tuple[RepertoireTree, dict[str, str]]:
    """Parse a single game and build it into a fresh tree.

    Returns ``(tree, headers)``.  Empty movetext yields a root-only tree.
    """
    game = parse_game(chunk, rules)
    return build_tree(game), game.headers


def build_from_games(
    games: Iterable[ParsedGame],
    color: Color,
    tree: RepertoireTree | None = None,
) -> RepertoireTree:
    """Replay every game into one tree (idempotent on repeated lines).

    All root checks happen before the first game is replayed, so a
    mismatching game leaves nothing half-built.
    """
    games = list(games)
    result = tree.copy() if tree is not None else RepertoireTree(STARTING_POSITION, color)
    for game in games:
        _check_root(result, game)
    for game in games:
        _replay(result, game)
    return result


def import_games(
    raw: str,
    color: Color,
    tree: RepertoireTree | None = None,
    rules: RuleEngine | None = None,
    verbose: bool = False,
) -> tuple[RepertoireTree, list[SkipRecord]]:
    """Build every game of a multi-game PGN into one tree.

    Games that cannot be parsed are skipped and reported; games starting
    from a different root than *tree* are skipped as ``root-mismatch``.
    """
    parsed, skipped = parse_games(raw, rules)
    result = tree.copy() if tree is not None else RepertoireTree(STARTING_POSITION, color)
    imported = 0

    for index, game in parsed:
        try:
            _check_root(result, game)
        except RootMismatch as exc:
            skipped.append(
                SkipRecord(index, _describe_headers(game.headers, index), "root-mismatch", str(exc))
            )
            continue
        if verbose:
            for warning in game.warnings:
                print(f"[import] Game {index}: {warning}", flush=True)
        _replay(result, game)
        imported += 1

    skipped.sort(key=lambda s: s.index)
    if verbose:
        for skip in skipped:
            print(f"[import] Skipping game {skip.index} ({skip.name}): {skip.reason}", flush=True)
        print(
            f"[import] {imported} game(s) imported, "
            f"{len(result) - 1} move(s) in tree.",
            flush=True,
        )
    return result, skipped
