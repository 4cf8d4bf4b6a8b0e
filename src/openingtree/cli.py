"""Command-line entry-point for openingtree.

Usage
-----
  openingtree import-pgn    games.pgn --name "1.e4" --color white
  openingtree import-study  study.pgn --merge
  openingtree analyse       my_games.pgn --username alice --out report.json
  openingtree show          <REPERTOIRE_ID>

Run ``openingtree <command> --help`` for full option listings.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from .builder import import_games
from .errors import EmptyStudy, MixedColors, NotFound, OpeningTreeError
from .matcher import analyse_games
from .models import Color, MoveStatus, SkipRecord
from .study import import_chapters, import_chapters_merged, preview_study
from .store import _DEFAULT_DB, RepertoireStore
from .tree import Repertoire, RepertoireTree


@click.group()
def main() -> None:
    """openingtree – build, merge and check opening repertoires from PGN.

    \b
    Commands:
      import-pgn     Build every game of a PGN file into one repertoire.
      import-study   Import study chapters, one repertoire each or merged.
      preview-study  List the chapters of a study PGN.
      analyse        Compare your games against stored repertoires.
      list           List stored repertoires.
      show           Print a repertoire tree with its node ids.
      delete-branch  Remove a node and everything below it.
    """


_db_option = click.option(
    "--db",
    "db_path",
    default=str(_DEFAULT_DB),
    show_default=True,
    help="Path to the SQLite repertoire database.",
)

_pgn_argument = click.argument(
    "pgn_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)


def _read(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def _echo_skipped(tag: str, skipped: list[SkipRecord]) -> None:
    for skip in skipped:
        detail = f": {skip.error}" if skip.error else ""
        click.echo(f"[{tag}] Skipped #{skip.index} {skip.name} ({skip.reason}){detail}")


def _summary(rep: Repertoire) -> str:
    meta = rep.tree.metadata()
    return (
        f"{rep.id}  {rep.color.value:<5}  {rep.name}  "
        f"({meta.total_moves} moves, depth {meta.deepest_depth})"
    )


def _parse_chapters(value: str | None) -> list[int] | None:
    if not value:
        return None
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError:
        raise click.BadParameter(
            f"Expected comma-separated chapter numbers, got {value!r}",
            param_hint="--chapters",
        )


# ---------------------------------------------------------------------------
# import-pgn
# ---------------------------------------------------------------------------


@main.command("import-pgn")
@_pgn_argument
@click.option("--name", required=True, help="Name of the new repertoire.")
@click.option(
    "--color",
    required=True,
    type=click.Choice(["white", "black"]),
    help="Side the repertoire is prepared for.",
)
@_db_option
@click.option("--verbose", is_flag=True, help="Print per-game progress.")
def import_pgn_cmd(
    pgn_file: Path,
    name: str,
    color: str,
    db_path: str,
    verbose: bool,
) -> None:
    """Build every game of PGN_FILE into one new repertoire."""
    tree, skipped = import_games(_read(pgn_file), Color(color), verbose=verbose)
    _echo_skipped("import", skipped)

    if not tree.root.children:
        click.echo("Error: no game could be imported.", err=True)
        sys.exit(1)

    with RepertoireStore(Path(db_path)) as store:
        rep = store.create(name, Color(color), tree)
    click.echo(f"[openingtree] Created {_summary(rep)}")


# ---------------------------------------------------------------------------
# import-study / preview-study
# ---------------------------------------------------------------------------


@main.command("preview-study")
@_pgn_argument
def preview_study_cmd(pgn_file: Path) -> None:
    """List the chapters of a study PGN without importing anything."""
    try:
        info = preview_study(_read(pgn_file))
    except EmptyStudy as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    click.echo(f"[openingtree] Study: {info.study_name or '(unnamed)'}")
    for chapter in info.chapters:
        click.echo(
            f"  {chapter.index:>3}  {chapter.orientation.value:<5}  "
            f"{chapter.move_count:>3} moves  {chapter.name}"
        )


@main.command("import-study")
@_pgn_argument
@click.option(
    "--chapters",
    default=None,
    help="Comma-separated 0-based chapter indices to import (default: all).",
)
@click.option("--merge", is_flag=True, help="Merge the chapters into one repertoire.")
@click.option("--name", default=None, help="Name of the merged repertoire.")
@_db_option
@click.option("--verbose", is_flag=True, help="Print per-chapter progress.")
def import_study_cmd(
    pgn_file: Path,
    chapters: str | None,
    merge: bool,
    name: str | None,
    db_path: str,
    verbose: bool,
) -> None:
    """Import the chapters of a study PGN as repertoires."""
    indices = _parse_chapters(chapters)
    raw = _read(pgn_file)

    try:
        if merge:
            rep, skipped = import_chapters_merged(raw, indices, name=name, verbose=verbose)
            created = [rep]
        else:
            result = import_chapters(raw, indices, verbose=verbose)
            created, skipped = result.repertoires, result.skipped
    except (EmptyStudy, MixedColors) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    _echo_skipped("study", skipped)
    with RepertoireStore(Path(db_path)) as store:
        for rep in created:
            store.add(rep)
            click.echo(f"[openingtree] Created {_summary(rep)}")


# ---------------------------------------------------------------------------
# analyse
# ---------------------------------------------------------------------------


@main.command("analyse")
@_pgn_argument
@click.option("--username", required=True, help="Your name as it appears in the PGN headers.")
@_db_option
@click.option(
    "--out",
    "out_path",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the full analysis as JSON to this file.",
)
@click.option("--verbose", is_flag=True, help="Print batch progress.")
def analyse_cmd(
    pgn_file: Path,
    username: str,
    db_path: str,
    out_path: Path | None,
    verbose: bool,
) -> None:
    """Compare the games in PGN_FILE against every stored repertoire."""
    with RepertoireStore(Path(db_path)) as store:
        repertoires = store.list()

    results, skipped = analyse_games(
        _read(pgn_file), username, repertoires, verbose=verbose
    )
    _echo_skipped("analyse", skipped)

    for analysis in results:
        headers = analysis.headers
        matched = (
            f"'{analysis.matched_repertoire.name}'"
            if analysis.matched_repertoire is not None
            else "no repertoire"
        )
        deviation = next(
            (m for m in analysis.moves if m.status is not MoveStatus.IN_REPERTOIRE), None
        )
        where = (
            f", left book at ply {deviation.ply} with {deviation.san} ({deviation.status.value})"
            if deviation is not None
            else ""
        )
        click.echo(
            f"[openingtree] Game {analysis.game_index}: {headers['White']} vs "
            f"{headers['Black']}, {matched} (score {analysis.match_score}){where}"
        )

    if out_path is not None:
        out_path.write_text(
            json.dumps([a.to_dict() for a in results], indent=2),
            encoding="utf-8",
        )
        click.echo(f"[openingtree] Wrote {len(results)} analysis record(s) → {out_path}")


# ---------------------------------------------------------------------------
# list / show / delete-branch
# ---------------------------------------------------------------------------


@main.command("list")
@click.option(
    "--color",
    default=None,
    type=click.Choice(["white", "black"]),
    help="Only list repertoires for this colour.",
)
@_db_option
def list_cmd(color: str | None, db_path: str) -> None:
    """List stored repertoires, most recently updated first."""
    with RepertoireStore(Path(db_path)) as store:
        reps = store.list(Color(color) if color else None)
    if not reps:
        click.echo("[openingtree] No repertoires stored.")
        return
    for rep in reps:
        click.echo(_summary(rep))


def _echo_tree(tree: RepertoireTree) -> None:
    for node in tree.walk():
        if node.id == tree.root_id:
            continue
        dots = "." if node.color_to_move == "b" else "..."
        link = f"  = {node.transposition_of}" if node.transposition_of else ""
        note = f"  {{{node.comment}}}" if node.comment else ""
        click.echo(
            f"{'  ' * (node.ply - 1)}{node.move_number}{dots} {node.move}  "
            f"[{node.id}]{link}{note}"
        )


@main.command("show")
@click.argument("repertoire_id")
@_db_option
def show_cmd(repertoire_id: str, db_path: str) -> None:
    """Print a repertoire tree, one move per line with its node id."""
    try:
        with RepertoireStore(Path(db_path)) as store:
            rep = store.get(repertoire_id)
    except NotFound as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    click.echo(_summary(rep))
    _echo_tree(rep.tree)


@main.command("delete-branch")
@click.argument("repertoire_id")
@click.argument("node_id")
@_db_option
def delete_branch_cmd(repertoire_id: str, node_id: str, db_path: str) -> None:
    """Remove NODE_ID and its subtree from a stored repertoire."""
    try:
        with RepertoireStore(Path(db_path)) as store:
            rep = store.get(repertoire_id)
            tree = rep.tree.copy()
            removed = tree.delete_branch(node_id)
            store.save_tree(repertoire_id, tree)
    except OpeningTreeError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    click.echo(f"[openingtree] Removed {removed} node(s) from '{rep.name}'.")
