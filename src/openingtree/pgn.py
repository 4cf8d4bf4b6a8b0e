"""PGN text splitting and movetext tokenization.

Three stages, each usable on its own:

  1. :func:`split_games` – cut a multi-game PGN blob into per-game chunks.
     A new game starts at a header line (``[Key "Value"]``) that follows a
     result token, or a well-formed tag pair after unterminated movetext.
     Lines inside an open ``{...}`` comment never split a game, nor do blank
     lines between headers and moves.

  2. :func:`split_headers_and_movetext` – separate the tag pairs from the
     movetext of one chunk.  Malformed tag lines, including ones missing a
     bracket or a closing quote, degrade to an empty value instead of raising.

  3. :func:`tokenize` – turn movetext into a flat list of :class:`Token`.
     Comments, NAGs, move numbers, results and variation brackets are all
     emitted as their own token kinds; it is up to the consumer to skip them.
"""

from __future__ import annotations

import re
from typing import Iterator

from .models import Color, Token, TokenKind

RESULTS = frozenset({"1-0", "0-1", "1/2-1/2", "*"})

# Longest first so "!!" is not read as two "!" glyphs.
_GLYPHS = ("!!", "??", "!?", "?!", "!", "?")

_TOKEN_RE = re.compile(
    r"""
      (?P<comment>\{[^}]*\}?)        # brace comment (unterminated runs to end)
    | (?P<line_comment>;[^\n]*)      # rest-of-line comment
    | (?P<var_start>\()
    | (?P<var_end>\))
    | (?P<nag>\$\d*)
    | (?P<word>[^\s{}();$]+)
    """,
    re.VERBOSE,
)
_MOVE_NUMBER_RE = re.compile(r"^(\d+)(\.+)(.*)$")
_DIGITS_RE = re.compile(r"\d+")
_TAG_PAIR_RE = re.compile(r'^\[\s*[A-Za-z0-9_]+\s+".*"\s*\]$')
_OPEN_BRACKET_MISSING_RE = re.compile(r'^[A-Za-z][A-Za-z0-9_]*\s+".*\]$')


# ---------------------------------------------------------------------------
# Game / header splitting
# ---------------------------------------------------------------------------


def _is_header_line(stripped: str) -> bool:
    return stripped.startswith("[") or bool(_OPEN_BRACKET_MISSING_RE.match(stripped))


def _scan_movetext_line(line: str, in_comment: bool) -> tuple[bool, bool]:
    """Return ``(in_comment, saw_result)`` after reading one movetext line."""
    outside: list[str] = []
    for ch in line:
        if in_comment:
            if ch == "}":
                in_comment = False
                outside.append(" ")
        elif ch == "{":
            in_comment = True
            outside.append(" ")
        elif ch == ";":
            break
        else:
            outside.append(ch)
    words = "".join(outside).split()
    return in_comment, any(word in RESULTS for word in words)


def split_games(raw: str) -> Iterator[str]:
    """Yield the raw text of each game in *raw*.

    A header line only opens a new game once the previous game has
    movetext, and never inside an open ``{...}`` comment.  After movetext
    without a result token, only a well-formed tag pair starts a new game,
    so wrapped ``[%clk ...]`` payloads stay with their game.

    The generator is lazy and has no limit on the number of games; call the
    function again to restart from the first game.
    """
    current: list[str] = []
    seen_moves = False
    seen_result = False
    in_comment = False

    for line in raw.splitlines():
        stripped = line.strip()

        if not in_comment and _is_header_line(stripped):
            if not seen_moves:
                current.append(line)
                continue
            if seen_result or _TAG_PAIR_RE.match(stripped):
                chunk = "\n".join(current).strip()
                if chunk:
                    yield chunk
                current = [line]
                seen_moves = False
                seen_result = False
                continue

        if stripped:
            seen_moves = True
            in_comment, saw_result = _scan_movetext_line(line, in_comment)
            seen_result = seen_result or saw_result

        current.append(line)

    chunk = "\n".join(current).strip()
    if chunk:
        yield chunk


def _parse_header_line(stripped: str) -> tuple[str, str] | None:
    # Anything without both brackets keeps its key with an empty value.
    well_formed = stripped.startswith("[") and stripped.endswith("]")
    content = stripped[1:] if stripped.startswith("[") else stripped
    if content.endswith("]"):
        content = content[:-1]
    content = content.strip()
    if not content:
        return None
    parts = content.split(None, 1)
    key = parts[0].strip('"')
    if not key:
        return None
    if len(parts) < 2 or not well_formed:
        return key, ""
    value = parts[1].strip()
    if value.startswith('"'):
        value = value[1:]
    if value.endswith('"') and not value.endswith('\\"'):
        value = value[:-1]
    value = value.replace('\\"', '"').replace("\\\\", "\\")
    return key, value


def split_headers_and_movetext(chunk: str) -> tuple[dict[str, str], str]:
    """Return ``(headers, movetext)`` for a single game chunk.

    Headers keep declaration order; on a duplicate key the last value wins.
    """
    headers: dict[str, str] = {}
    lines = chunk.splitlines()
    movetext_start = 0

    for i, line in enumerate(lines):
        stripped = line.strip()
        if _is_header_line(stripped):
            parsed = _parse_header_line(stripped)
            if parsed is not None:
                key, value = parsed
                headers[key] = value
            movetext_start = i + 1
        elif not stripped and movetext_start == i:
            movetext_start = i + 1
        elif stripped:
            break

    return headers, "\n".join(lines[movetext_start:])


# ---------------------------------------------------------------------------
# Movetext tokenizer
# ---------------------------------------------------------------------------


def strip_decorations(san: str) -> str:
    """Remove check / mate markers from a SAN string."""
    return san.rstrip("+#")


def _strip_glyph(word: str) -> tuple[str, str]:
    for glyph in _GLYPHS:
        if word.endswith(glyph) and len(word) > len(glyph):
            return word[: -len(glyph)], glyph
    return word, ""


def _normalise_castling(word: str) -> str:
    # 0-0-0 before 0-0 to avoid a partial replacement.
    return word.replace("0-0-0", "O-O-O").replace("0-0", "O-O")


def _move_tokens(word: str) -> list[Token]:
    move, glyph = _strip_glyph(word)
    move = _normalise_castling(move)
    tokens = [Token(TokenKind.MOVE, strip_decorations(move), move)]
    if glyph:
        tokens.append(Token(TokenKind.NAG, glyph, glyph))
    return tokens


def _word_tokens(word: str) -> list[Token]:
    if word in RESULTS:
        return [Token(TokenKind.RESULT, word, word)]
    if word in _GLYPHS:
        return [Token(TokenKind.NAG, word, word)]

    m = _MOVE_NUMBER_RE.match(word)
    if m:
        number = m.group(1) + m.group(2)
        tokens = [Token(TokenKind.MOVE_NUMBER, m.group(1), number)]
        rest = m.group(3)
        if rest:
            tokens.extend(_word_tokens(rest))
        return tokens

    if _DIGITS_RE.fullmatch(word):
        # Bare number without dots; treat as a move number.
        return [Token(TokenKind.MOVE_NUMBER, word, word)]

    return _move_tokens(word)


def tokenize(movetext: str) -> list[Token]:
    """Split *movetext* into tokens.

    ``;`` comments are dropped; ``{}`` comments are returned with their
    inner text stripped.
    """
    tokens: list[Token] = []
    for m in _TOKEN_RE.finditer(movetext):
        kind = m.lastgroup
        text = m.group()
        if kind == "comment":
            inner = text[1:-1] if text.endswith("}") else text[1:]
            tokens.append(Token(TokenKind.COMMENT, inner.strip(), text))
        elif kind == "line_comment":
            continue
        elif kind == "var_start":
            tokens.append(Token(TokenKind.VARIATION_START, "(", "("))
        elif kind == "var_end":
            tokens.append(Token(TokenKind.VARIATION_END, ")", ")"))
        elif kind == "nag":
            tokens.append(Token(TokenKind.NAG, text, text))
        else:
            tokens.extend(_word_tokens(text))
    return tokens


def count_moves(tokens: list[Token]) -> int:
    return sum(1 for t in tokens if t.kind is TokenKind.MOVE)


# ---------------------------------------------------------------------------
# Header helpers
# ---------------------------------------------------------------------------


def header_color(headers: dict[str, str]) -> Color:
    """Colour from the ``Orientation`` header; white when absent or unknown."""
    orientation = headers.get("Orientation", "").strip().lower()
    return Color.BLACK if orientation == "black" else Color.WHITE


def classify_time_control(tc: str) -> str:
    """Map a ``TimeControl`` header (``"300+3"``) to a speed class."""
    tc = tc.strip()
    if tc in ("", "-"):
        return "daily"

    parts = tc.split("+")
    try:
        base = int(parts[0])
    except ValueError:
        return ""
    if base >= 86_400:
        return "daily"

    increment = 0
    if len(parts) > 1:
        try:
            increment = int(parts[1])
        except ValueError:
            increment = 0
    estimate = base + increment * 40

    if estimate < 180:
        return "bullet"
    if estimate < 600:
        return "blitz"
    if estimate < 1800:
        return "rapid"
    return "daily"
