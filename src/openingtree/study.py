"""Import Lichess-style study PGNs (one game per chapter) as repertoires.

Chapters are either imported one repertoire each (:func:`import_chapters`)
or merged into a single repertoire (:func:`import_chapters_merged`).  A
chapter that cannot be built – a custom starting position or an illegal
move – is skipped and reported; the remaining chapters are still imported.

Chapter naming follows the Lichess export convention
``[Event "Study Name: Chapter Name"]``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .builder import build_tree, parse_game
from .errors import CustomStartingPosition, EmptyStudy, IllegalMove, MixedColors
from .merge import merge_all
from .models import ChapterInfo, Color, SkipRecord, StudyInfo
from .pgn import count_moves, header_color, split_games, split_headers_and_movetext, tokenize
from .rules import RuleEngine
from .tree import Repertoire, RepertoireTree


@dataclass
class StudyImportResult:
    repertoires: list[Repertoire] = field(default_factory=list)
    skipped: list[SkipRecord] = field(default_factory=list)


def split_event(event: str) -> tuple[str, str]:
    """``"Study: Chapter"`` → ``("Study", "Chapter")``; no colon → same name twice."""
    parts = event.split(": ", 1)
    if len(parts) == 2:
        return parts[0], parts[1]
    return event, event


def _chapter_name(headers: dict[str, str], index: int) -> str:
    event = headers.get("Event", "")
    if not event:
        return f"Chapter {index + 1}"
    return split_event(event)[1]


def _study_name(chunks: list[tuple[int, str]]) -> str:
    for _, chunk in chunks:
        headers, _ = split_headers_and_movetext(chunk)
        event = headers.get("Event", "")
        if event:
            return split_event(event)[0]
    return ""


def _selected(raw_pgn: str, indices: list[int] | None) -> list[tuple[int, str]]:
    chapters = list(enumerate(split_games(raw_pgn)))
    if not chapters:
        raise EmptyStudy("no chapters found in study")
    if indices is None:
        return chapters
    wanted = set(indices)
    return [(i, c) for i, c in chapters if i in wanted]


# ---------------------------------------------------------------------------
# Preview
# ---------------------------------------------------------------------------


def preview_study(raw_pgn: str, study_id: str = "") -> StudyInfo:
    """Describe every chapter without building any tree."""
    chapters = _selected(raw_pgn, None)
    info = StudyInfo(study_id=study_id, study_name=_study_name(chapters))
    for index, chunk in chapters:
        headers, movetext = split_headers_and_movetext(chunk)
        info.chapters.append(
            ChapterInfo(
                index=index,
                name=_chapter_name(headers, index),
                orientation=header_color(headers),
                move_count=count_moves(tokenize(movetext)),
            )
        )
    return info


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def _build_chapters(
    chapters: list[tuple[int, str]],
    rules: RuleEngine | None,
    verbose: bool,
) -> tuple[list[tuple[int, str, RepertoireTree]], list[SkipRecord]]:
    built: list[tuple[int, str, RepertoireTree]] = []
    skipped: list[SkipRecord] = []

    for index, chunk in chapters:
        headers, _ = split_headers_and_movetext(chunk)
        name = _chapter_name(headers, index)
        try:
            game = parse_game(chunk, rules)
        except CustomStartingPosition as exc:
            if verbose:
                print(f"[study] Skipping chapter {index}: custom starting position", flush=True)
            skipped.append(SkipRecord(index, name, "custom-start", str(exc)))
            continue
        except IllegalMove as exc:
            if verbose:
                print(f"[study] Skipping chapter {index}: {exc}", flush=True)
            skipped.append(SkipRecord(index, name, "illegal-move", str(exc)))
            continue

        if verbose:
            for warning in game.warnings:
                print(f"[study] Chapter {index}: {warning}", flush=True)
        built.append((index, name, build_tree(game, color=header_color(headers))))

    return built, skipped


def import_chapters(
    raw_pgn: str,
    indices: list[int] | None = None,
    rules: RuleEngine | None = None,
    verbose: bool = False,
) -> StudyImportResult:
    """Build one repertoire per selected chapter (all chapters by default)."""
    chapters = _selected(raw_pgn, indices)
    built, skipped = _build_chapters(chapters, rules, verbose)

    result = StudyImportResult(skipped=skipped)
    for _, name, tree in built:
        result.repertoires.append(Repertoire(name=name, color=tree.color, tree=tree))

    if verbose:
        print(
            f"[study] Imported {len(result.repertoires)} chapter(s), "
            f"skipped {len(skipped)}.",
            flush=True,
        )
    return result


def import_chapters_merged(
    raw_pgn: str,
    indices: list[int] | None = None,
    name: str | None = None,
    rules: RuleEngine | None = None,
    verbose: bool = False,
) -> tuple[Repertoire, list[SkipRecord]]:
    """Merge every selected chapter into one repertoire.

    Raises
    ------
    MixedColors
        The chapters that could be built have different orientations.
    EmptyStudy
        No chapter could be built.
    """
    chapters = _selected(raw_pgn, indices)
    built, skipped = _build_chapters(chapters, rules, verbose)
    if not built:
        raise EmptyStudy("no chapters could be parsed")

    color: Color = built[0][2].color
    for _, _, tree in built[1:]:
        if tree.color is not color:
            raise MixedColors(color.value, tree.color.value)

    merged = merge_all(tree for _, _, tree in built)
    title = name or _study_name(chapters) or "Merged Study"

    if verbose:
        print(
            f"[study] Merged {len(built)} chapter(s) into '{title}' "
            f"({len(merged)} positions), skipped {len(skipped)}.",
            flush=True,
        )
    return Repertoire(name=title, color=color, tree=merged), skipped
