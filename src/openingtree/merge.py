"""Transposition-aware merging of repertoire trees.

Algorithm
---------
Both trees are walked together from their roots.  For every incoming child:

  * A child with the same SAN already exists → keep the existing node (its
    id, comment and links win; a missing comment is filled in) and recurse.

  * Otherwise a new node is appended.  If the resulting position already
    occurs anywhere else in the merged tree, the new node's
    ``transposition_of`` points at the first node seen with that position.
    The subtrees stay separate: different move orders can carry different
    comments and must not be collapsed into a node with two parents.  A
    position repeated on the node's own path (a repetition, not a
    transposition) is never linked.

The lookup "does this position exist elsewhere" uses a position-key index
built once per merge and extended as nodes are added, so the first node
registered for a position stays canonical (first seen wins).

Purity
------
:func:`merge_trees` never touches its inputs.  It works on a copy of the
existing tree and returns it only once everything succeeded; callers swap
their stored tree for the result.
"""

from __future__ import annotations

from typing import Iterable

from .errors import MixedColors, RootMismatch
from .rules import position_key
from .tree import RepertoireTree


def merge_trees(existing: RepertoireTree, incoming: RepertoireTree) -> RepertoireTree:
    """Return a new tree holding every line of *existing* and *incoming*.

    Node ids of *existing* are preserved; nodes added from *incoming* get
    fresh ids.

    Raises
    ------
    MixedColors
        The trees are repertoires for different colours.
    RootMismatch
        The trees start from different positions.
    """
    if existing.color is not incoming.color:
        raise MixedColors(existing.color.value, incoming.color.value)
    if existing.root.position_key != incoming.root.position_key:
        raise RootMismatch(existing.root.fen, incoming.root.fen)

    result = existing.copy()
    if result.root.comment is None:
        result.root.comment = incoming.root.comment
    index = result.position_index()
    _merge_children(result, index, result.root_id, incoming, incoming.root_id)
    return result


def _merge_children(
    result: RepertoireTree,
    index: dict[str, str],
    target_id: str,
    incoming: RepertoireTree,
    source_id: str,
) -> None:
    # Pre-order over *incoming*, so the first-seen position stays canonical.
    stack = [(target_id, src) for src in reversed(incoming.children(source_id))]
    while stack:
        parent_id, src = stack.pop()
        matched = result.find_child(parent_id, src.move or "")
        if matched is not None:
            if matched.comment is None and src.comment:
                matched.comment = src.comment
        else:
            matched = result.attach(parent_id, src.fen, src.move or "", comment=src.comment)
            key = position_key(src.fen)
            seen = index.get(key)
            if seen is None:
                index[key] = matched.id
            elif not result.is_ancestor(seen, matched.id):
                matched.transposition_of = seen
        stack.extend((matched.id, child) for child in reversed(incoming.children(src.id)))


def merge_all(trees: Iterable[RepertoireTree]) -> RepertoireTree:
    """Left fold of :func:`merge_trees`; the first tree is canonical."""
    it = iter(trees)
    try:
        merged = next(it)
    except StopIteration:
        raise ValueError("merge_all() needs at least one tree") from None
    # Copy so the caller's first tree is never the object returned.
    merged = merged.copy()
    for tree in it:
        merged = merge_trees(merged, tree)
    return merged


def count_transpositions(tree: RepertoireTree) -> int:
    return sum(1 for node in tree.walk() if node.transposition_of is not None)
