"""Tests for transposition-aware tree merging."""

from __future__ import annotations

import pytest

from openingtree.builder import build_tree, parse_game
from openingtree.errors import MixedColors, RootMismatch
from openingtree.merge import count_transpositions, merge_all, merge_trees
from openingtree.models import Color
from openingtree.tree import RepertoireNode, RepertoireTree


def _tree(movetext: str, color: Color = Color.WHITE) -> RepertoireTree:
    return build_tree(parse_game(movetext), color=color)


def _leaf(tree: RepertoireTree, *moves: str) -> RepertoireNode:
    cursor = tree.root
    for move in moves:
        cursor = tree.find_child(cursor.id, move)
        assert cursor is not None, f"{move} missing"
    return cursor


def _has_path(tree: RepertoireTree, line: tuple[str, ...]) -> bool:
    cursor = tree.root_id
    for move in line:
        child = tree.find_child(cursor, move)
        if child is None:
            return False
        cursor = child.id
    return True


# ---------------------------------------------------------------------------
# Basic merging
# ---------------------------------------------------------------------------


def test_disjoint_chapters_merge_without_transpositions() -> None:
    merged = merge_trees(_tree("1. e4 e5 *"), _tree("1. d4 d5 2. c4 e6 *"))
    assert [c.move for c in merged.children(merged.root_id)] == ["e4", "d4"]
    assert sorted(merged.lines()) == [("d4", "d5", "c4", "e6"), ("e4", "e5")]
    assert count_transpositions(merged) == 0


def test_shared_prefix_is_not_duplicated() -> None:
    merged = merge_trees(_tree("1. e4 e5 2. Nf3 *"), _tree("1. e4 e5 2. Bc4 *"))
    assert len(merged) == 5
    assert [c.move for c in merged.children(_leaf(merged, "e4", "e5").id)] == ["Nf3", "Bc4"]


def test_existing_node_ids_are_preserved() -> None:
    existing = _tree("1. e4 e5 *")
    merged = merge_trees(existing, _tree("1. e4 c5 *"))
    assert set(existing.nodes) <= set(merged.nodes)
    assert merged.root_id == existing.root_id


def test_merge_does_not_modify_inputs() -> None:
    existing = _tree("1. e4 e5 *")
    incoming = _tree("1. d4 *")
    before = (len(existing), len(incoming))
    merge_trees(existing, incoming)
    assert (len(existing), len(incoming)) == before


def test_existing_comment_wins_missing_comment_filled() -> None:
    existing = _tree("1. e4 {mine} e5 *")
    incoming = _tree("1. e4 {theirs} e5 {new} *")
    merged = merge_trees(existing, incoming)
    assert _leaf(merged, "e4").comment == "mine"
    assert _leaf(merged, "e4", "e5").comment == "new"


def test_merge_with_empty_tree_is_identity_on_lines() -> None:
    tree = _tree("1. e4 e5 2. Nf3 *")
    assert merge_trees(tree, RepertoireTree()).lines() == tree.lines()
    assert merge_trees(RepertoireTree(), tree).lines() == tree.lines()


# ---------------------------------------------------------------------------
# Transpositions
# ---------------------------------------------------------------------------


def test_transposed_move_orders_are_linked_not_collapsed() -> None:
    first = _tree("1. e4 Nf6 2. Nc3 *")
    second = _tree("1. Nc3 Nf6 2. e4 *")
    merged = merge_trees(first, second)

    a = _leaf(merged, "e4", "Nf6", "Nc3")
    b = _leaf(merged, "Nc3", "Nf6", "e4")
    assert a.id != b.id
    assert a.position_key == b.position_key
    assert b.transposition_of == a.id
    assert a.transposition_of is None
    assert count_transpositions(merged) == 1
    # Every node still has exactly one parent.
    for node in merged.walk():
        if node.id != merged.root_id:
            assert node.id in merged.get(node.parent_id).children


def test_transposition_subtrees_stay_independent() -> None:
    first = _tree("1. e4 Nf6 2. Nc3 d5 *")
    second = _tree("1. Nc3 Nf6 2. e4 e5 *")
    merged = merge_trees(first, second)
    a = _leaf(merged, "e4", "Nf6", "Nc3")
    b = _leaf(merged, "Nc3", "Nf6", "e4")
    assert [c.move for c in merged.children(a.id)] == ["d5"]
    assert [c.move for c in merged.children(b.id)] == ["e5"]


def test_first_seen_node_stays_canonical() -> None:
    merged = merge_all(
        [
            _tree("1. e4 Nf6 2. Nc3 *"),
            _tree("1. Nc3 Nf6 2. e4 *"),
            _tree("1. Nc3 e6 2. e4 Nf6 *"),
        ]
    )
    canonical = _leaf(merged, "e4", "Nf6", "Nc3")
    assert _leaf(merged, "Nc3", "Nf6", "e4").transposition_of == canonical.id
    # Position after 1.Nc3 e6 2.e4 Nf6 differs (e6 pawn), so no link.
    assert _leaf(merged, "Nc3", "e6", "e4", "Nf6").transposition_of is None


def test_repetition_on_own_path_is_not_a_transposition() -> None:
    existing = _tree("1. e4 *")
    incoming = _tree("1. Nf3 Nf6 2. Ng1 Ng8 3. Nf3 *")
    merged = merge_trees(existing, incoming)
    back_home = _leaf(merged, "Nf3", "Nf6", "Ng1", "Ng8")
    again = _leaf(merged, "Nf3", "Nf6", "Ng1", "Ng8", "Nf3")
    assert back_home.transposition_of is None
    first_nf3 = _leaf(merged, "Nf3")
    assert again.position_key == first_nf3.position_key
    assert again.transposition_of is None


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


_GAMES = [
    "1. e4 e5 2. Nf3 Nc6 3. Bb5 *",
    "1. e4 c5 2. Nf3 d6 *",
    "1. Nf3 Nc6 2. e4 e5 *",
    "1. d4 d5 2. c4 *",
]


def test_merge_commutative_on_lines() -> None:
    trees = [_tree(g) for g in _GAMES]
    forward = merge_all(trees)
    backward = merge_all(reversed(trees))
    assert sorted(forward.lines()) == sorted(backward.lines())
    assert len(forward) == len(backward)


def test_merge_is_loss_free() -> None:
    trees = [_tree(g) for g in _GAMES]
    merged = merge_all(trees)
    for tree in trees:
        for line in tree.lines():
            assert _has_path(merged, line), line


def test_merge_very_long_line() -> None:
    incoming = RepertoireTree()
    cursor = incoming.root_id
    for i in range(1100):
        cursor = incoming.add_move(cursor, ("Nf3", "Nf6", "Ng1", "Ng8")[i % 4]).id
    merged = merge_trees(RepertoireTree(), incoming)
    assert len(merged) == 1101
    assert merged.lines() == incoming.lines()
    assert count_transpositions(merged) == 0


def test_merge_all_does_not_return_first_input() -> None:
    first = _tree("1. e4 *")
    merged = merge_all([first])
    assert merged is not first
    assert merged.lines() == first.lines()


def test_merge_all_empty() -> None:
    with pytest.raises(ValueError):
        merge_all([])


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


def test_mixed_colors_rejected() -> None:
    with pytest.raises(MixedColors):
        merge_trees(_tree("1. e4 *", Color.WHITE), _tree("1. e4 *", Color.BLACK))


def test_root_mismatch_rejected() -> None:
    other = RepertoireTree("8/8/8/8/8/8/8/K6k w - -")
    with pytest.raises(RootMismatch):
        merge_trees(_tree("1. e4 *"), other)
