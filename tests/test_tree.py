"""Tests for the arena-backed repertoire tree."""

from __future__ import annotations

import json

import pytest

from openingtree.errors import (
    CannotDeleteRoot,
    CannotExtractRoot,
    IllegalMove,
    MoveExists,
    NodeNotFound,
    NotFound,
)
from openingtree.models import Color
from openingtree.rules import STARTING_POSITION
from openingtree.tree import Repertoire, RepertoireTree


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _line(tree: RepertoireTree, *moves: str, start: str | None = None) -> str:
    """Play *moves* from *start* (root by default), reusing existing children."""
    cursor = start or tree.root_id
    for move in moves:
        child = tree.find_child(cursor, move)
        cursor = child.id if child is not None else tree.add_move(cursor, move).id
    return cursor


def _sample() -> RepertoireTree:
    tree = RepertoireTree()
    _line(tree, "e4", "e5", "Nf3", "Nc6")
    _line(tree, "e4", "c5", "Nf3")
    _line(tree, "d4", "d5")
    return tree


# ---------------------------------------------------------------------------
# Construction and lookup
# ---------------------------------------------------------------------------


def test_new_tree_has_only_root() -> None:
    tree = RepertoireTree()
    assert len(tree) == 1
    assert tree.root.fen == STARTING_POSITION
    assert tree.root.move is None
    assert tree.root.ply == 0
    assert tree.color is Color.WHITE


def test_add_move_sets_ply_parent_and_fen() -> None:
    tree = RepertoireTree()
    node = tree.add_move(tree.root_id, "e4")
    assert node.move == "e4"
    assert node.ply == 1
    assert node.parent_id == tree.root_id
    assert node.color_to_move == "b"
    assert node.move_number == 1
    assert tree.root.children == [node.id]


def test_move_number_and_color_to_move_follow_ply() -> None:
    tree = RepertoireTree()
    leaf = tree.get(_line(tree, "e4", "e5", "Nf3"))
    assert leaf.ply == 3
    assert leaf.move_number == 2
    assert leaf.color_to_move == "b"


def test_add_move_canonicalises_san() -> None:
    tree = RepertoireTree()
    node = tree.add_move(tree.root_id, "g1f3")
    assert node.move == "Nf3"


def test_add_move_illegal() -> None:
    tree = RepertoireTree()
    with pytest.raises(IllegalMove):
        tree.add_move(tree.root_id, "e5")
    assert len(tree) == 1


def test_add_move_duplicate_sibling_rejected() -> None:
    tree = RepertoireTree()
    tree.add_move(tree.root_id, "e4")
    with pytest.raises(MoveExists):
        tree.add_move(tree.root_id, "e4")


def test_get_unknown_node() -> None:
    tree = RepertoireTree()
    with pytest.raises(NodeNotFound):
        tree.get("missing")
    with pytest.raises(NotFound):
        tree.get("missing")


def test_path_to_and_parent() -> None:
    tree = RepertoireTree()
    leaf = _line(tree, "e4", "e5", "Nf3")
    assert [n.move for n in tree.path_to(leaf)] == [None, "e4", "e5", "Nf3"]
    assert tree.parent(leaf).move == "e5"
    assert tree.parent(tree.root_id) is None


def test_is_ancestor() -> None:
    tree = _sample()
    e4 = tree.find_child(tree.root_id, "e4").id
    leaf = _line(tree, "e4", "e5", "Nf3", "Nc6")
    d4 = tree.find_child(tree.root_id, "d4").id
    assert tree.is_ancestor(e4, leaf)
    assert tree.is_ancestor(leaf, leaf)
    assert not tree.is_ancestor(d4, leaf)
    assert not tree.is_ancestor(leaf, e4)


def test_walk_is_pre_order_in_insertion_order() -> None:
    tree = _sample()
    moves = [n.move for n in tree.walk()]
    assert moves == [None, "e4", "e5", "Nf3", "Nc6", "c5", "Nf3", "d4", "d5"]


def test_lines() -> None:
    tree = _sample()
    assert sorted(tree.lines()) == sorted(
        [
            ("e4", "e5", "Nf3", "Nc6"),
            ("e4", "c5", "Nf3"),
            ("d4", "d5"),
        ]
    )


def test_lines_of_empty_tree() -> None:
    assert RepertoireTree().lines() == [()]


def test_metadata() -> None:
    meta = _sample().metadata()
    assert meta.total_nodes == 9
    assert meta.total_moves == 8
    assert meta.deepest_depth == 4


def test_position_index_first_seen_wins() -> None:
    tree = RepertoireTree()
    first = _line(tree, "e4", "Nf6", "Nc3")
    second = _line(tree, "Nc3", "Nf6", "e4")
    index = tree.position_index()
    assert tree.get(first).position_key == tree.get(second).position_key
    assert index[tree.get(first).position_key] == first


# ---------------------------------------------------------------------------
# Editing
# ---------------------------------------------------------------------------


def test_delete_branch_removes_subtree() -> None:
    tree = _sample()
    e4 = tree.find_child(tree.root_id, "e4").id
    removed = tree.delete_branch(e4)
    assert removed == 6
    assert len(tree) == 3
    assert [c.move for c in tree.children(tree.root_id)] == ["d4"]


def test_delete_branch_root_rejected() -> None:
    tree = _sample()
    with pytest.raises(CannotDeleteRoot):
        tree.delete_branch(tree.root_id)


def test_delete_branch_clears_dangling_transposition_links() -> None:
    tree = RepertoireTree()
    first = _line(tree, "e4", "Nf6", "Nc3")
    second = _line(tree, "Nc3", "Nf6", "e4")
    tree.get(second).transposition_of = first
    tree.delete_branch(tree.find_child(tree.root_id, "e4").id)
    assert tree.get(second).transposition_of is None


def test_set_comment() -> None:
    tree = RepertoireTree()
    node = tree.add_move(tree.root_id, "e4")
    tree.set_comment(node.id, "  best by test ")
    assert tree.get(node.id).comment == "best by test"
    tree.set_comment(node.id, "   ")
    assert tree.get(node.id).comment is None


# ---------------------------------------------------------------------------
# Copies
# ---------------------------------------------------------------------------


def test_copy_is_independent_and_keeps_ids() -> None:
    tree = _sample()
    clone = tree.copy()
    assert set(clone.nodes) == set(tree.nodes)
    clone.add_move(clone.root_id, "c4")
    assert len(clone) == len(tree) + 1
    assert tree.find_child(tree.root_id, "c4") is None


def test_extract_subtree_keeps_spine_and_below() -> None:
    tree = _sample()
    e4 = tree.find_child(tree.root_id, "e4").id
    c5 = tree.find_child(e4, "c5").id
    out = tree.extract_subtree(c5)
    assert out.lines() == [("e4", "c5", "Nf3")]
    assert not set(out.nodes) & set(tree.nodes)
    assert out.color is tree.color


def test_extract_subtree_remaps_inner_transpositions() -> None:
    tree = RepertoireTree()
    e4 = _line(tree, "e4")
    first = _line(tree, "Nf6", "Nc3", start=e4)
    second = _line(tree, "Nc6", "Nc3", "Nf6", start=e4)
    other = _line(tree, "Nf6", "Nc3", "Nc6", start=e4)
    tree.get(second).transposition_of = other
    tree.get(other).transposition_of = first

    out = tree.extract_subtree(e4)
    linked = [n for n in out.walk() if n.transposition_of is not None]
    assert len(linked) == 2
    for node in linked:
        assert node.transposition_of in out


def test_extract_subtree_drops_links_leaving_the_subtree() -> None:
    tree = RepertoireTree()
    first = _line(tree, "e4", "Nf6", "Nc3")
    second = _line(tree, "Nc3", "Nf6", "e4")
    tree.get(second).transposition_of = first
    out = tree.extract_subtree(tree.find_child(tree.root_id, "Nc3").id)
    assert all(n.transposition_of is None for n in out.walk())


def test_extract_root_rejected() -> None:
    tree = _sample()
    with pytest.raises(CannotExtractRoot):
        tree.extract_subtree(tree.root_id)


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


def test_to_dict_shape() -> None:
    tree = RepertoireTree(color=Color.BLACK)
    node = tree.add_move(tree.root_id, "e4")
    tree.set_comment(node.id, "main")
    data = tree.to_dict()
    assert data["color"] == "black"
    child = data["root"]["children"][0]
    assert child["move"] == "e4"
    assert child["moveNumber"] == 1
    assert child["colorToMove"] == "b"
    assert child["parentId"] == tree.root_id
    assert child["comment"] == "main"
    assert child["transpositionOf"] is None


def test_from_dict_round_trip() -> None:
    tree = _sample()
    leaf = _line(tree, "d4", "d5")
    tree.get(leaf).transposition_of = tree.root_id
    restored = RepertoireTree.from_dict(json.loads(json.dumps(tree.to_dict())))
    assert restored.root_id == tree.root_id
    assert set(restored.nodes) == set(tree.nodes)
    assert sorted(restored.lines()) == sorted(tree.lines())
    assert restored.get(leaf).transposition_of == tree.root_id
    assert restored.get(leaf).ply == tree.get(leaf).ply


def test_deep_line_extract_and_round_trip() -> None:
    tree = RepertoireTree()
    shuffle = ("Nf3", "Nf6", "Ng1", "Ng8")
    leaf = _line(tree, *(shuffle[i % 4] for i in range(1200)))
    assert tree.get(leaf).ply == 1200

    restored = RepertoireTree.from_dict(tree.to_dict())
    assert restored.get(leaf).ply == 1200
    assert restored.lines() == tree.lines()

    second = tree.find_child(tree.root_id, "Nf3").children[0]
    out = tree.extract_subtree(second)
    assert len(out) == len(tree)
    assert out.metadata().deepest_depth == 1200


def test_repertoire_to_dict() -> None:
    tree = _sample()
    rep = Repertoire(name="1.e4 / 1.d4", color=Color.WHITE, tree=tree)
    data = rep.to_dict()
    assert data["name"] == "1.e4 / 1.d4"
    assert data["color"] == "white"
    assert data["treeData"]["id"] == tree.root_id
    assert data["metadata"] == {"totalNodes": 9, "totalMoves": 8, "deepestDepth": 4}
