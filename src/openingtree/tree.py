"""Repertoire trees stored as an arena of nodes addressed by opaque ids.

Ownership flows strictly root → leaf through ``children`` id lists.
``parent_id`` is a lookup-only back-reference and ``transposition_of``
points sideways at another node with the same position; neither is ever
followed for ownership, so deleting a branch never touches nodes outside
it and serialisation is a plain walk over ``children``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator

from .errors import CannotDeleteRoot, CannotExtractRoot, MoveExists, NodeNotFound
from .models import Color, TreeMetadata
from .rules import (
    STARTING_POSITION,
    RuleEngine,
    default_rules,
    normalize_fen,
    position_key,
    side_to_move,
)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class RepertoireNode:
    """One position in a repertoire tree."""

    id: str
    fen: str                         # normalised FEN
    move: str | None                 # SAN that produced this node; None at root
    ply: int                         # 0 at root
    parent_id: str | None = None
    transposition_of: str | None = None
    comment: str | None = None
    children: list[str] = field(default_factory=list)

    @property
    def color_to_move(self) -> str:
        return side_to_move(self.fen)

    @property
    def move_number(self) -> int:
        return (self.ply + 1) // 2

    @property
    def position_key(self) -> str:
        return position_key(self.fen)


class RepertoireTree:
    """A move tree with exactly one root.

    Parameters
    ----------
    root_fen:
        Starting position of the tree; the standard array by default.
    color:
        The side this repertoire is prepared for.
    """

    def __init__(
        self,
        root_fen: str = STARTING_POSITION,
        color: Color = Color.WHITE,
        *,
        root_id: str | None = None,
    ) -> None:
        self.color = Color(color)
        self.nodes: dict[str, RepertoireNode] = {}
        root = RepertoireNode(
            id=root_id or new_id(),
            fen=normalize_fen(root_fen),
            move=None,
            ply=0,
        )
        self.nodes[root.id] = root
        self.root_id = root.id

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def root(self) -> RepertoireNode:
        return self.nodes[self.root_id]

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def get(self, node_id: str) -> RepertoireNode:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise NodeNotFound(f"node {node_id} not found") from None

    def children(self, node_id: str) -> list[RepertoireNode]:
        return [self.nodes[cid] for cid in self.get(node_id).children]

    def find_child(self, node_id: str, move: str) -> RepertoireNode | None:
        """Child of *node_id* reached by *move*, or ``None``."""
        for cid in self.get(node_id).children:
            child = self.nodes[cid]
            if child.move == move:
                return child
        return None

    def parent(self, node_id: str) -> RepertoireNode | None:
        pid = self.get(node_id).parent_id
        return self.nodes[pid] if pid is not None else None

    def path_to(self, node_id: str) -> list[RepertoireNode]:
        """Nodes from the root down to *node_id* inclusive."""
        path: list[RepertoireNode] = []
        node: RepertoireNode | None = self.get(node_id)
        while node is not None:
            path.append(node)
            node = self.nodes[node.parent_id] if node.parent_id is not None else None
        path.reverse()
        return path

    def is_ancestor(self, ancestor_id: str, node_id: str) -> bool:
        """True when *ancestor_id* is *node_id* or lies on its path to the root."""
        node: RepertoireNode | None = self.get(node_id)
        while node is not None:
            if node.id == ancestor_id:
                return True
            node = self.nodes[node.parent_id] if node.parent_id is not None else None
        return False

    def walk(self, start_id: str | None = None) -> Iterator[RepertoireNode]:
        """Pre-order traversal, children in insertion order."""
        stack = [self.get(start_id or self.root_id)]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(self.nodes[cid] for cid in reversed(node.children))

    def lines(self) -> list[tuple[str, ...]]:
        """Every root-to-leaf move sequence."""
        out: list[tuple[str, ...]] = []
        for node in self.walk():
            if node.children or node.id == self.root_id:
                continue
            out.append(tuple(n.move for n in self.path_to(node.id)[1:] if n.move))
        if not self.root.children:
            out.append(())
        return out

    def position_index(self) -> dict[str, str]:
        """Map position key → id of the first node (pre-order) holding it."""
        index: dict[str, str] = {}
        for node in self.walk():
            index.setdefault(node.position_key, node.id)
        return index

    def metadata(self) -> TreeMetadata:
        total = 0
        deepest = 0
        for node in self.walk():
            total += 1
            deepest = max(deepest, node.ply)
        return TreeMetadata(
            total_nodes=total,
            total_moves=total - 1,
            deepest_depth=deepest,
        )

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def attach(
        self,
        parent_id: str,
        fen: str,
        move: str,
        *,
        comment: str | None = None,
        transposition_of: str | None = None,
    ) -> RepertoireNode:
        """Append a new child without any rule checking.

        Callers are responsible for *fen* being the result of *move*; the
        builder and merge engine only pass positions they got from a
        :class:`~openingtree.rules.RuleEngine` or from another valid tree.
        """
        parent = self.get(parent_id)
        if self.find_child(parent_id, move) is not None:
            raise MoveExists(f"{move} already exists under node {parent_id}")
        node = RepertoireNode(
            id=new_id(),
            fen=normalize_fen(fen),
            move=move,
            ply=parent.ply + 1,
            parent_id=parent.id,
            transposition_of=transposition_of,
            comment=comment,
        )
        self.nodes[node.id] = node
        parent.children.append(node.id)
        return node

    def add_move(
        self,
        parent_id: str,
        move: str,
        rules: RuleEngine | None = None,
    ) -> RepertoireNode:
        """Validate *move* from *parent_id* and add it as a new child."""
        rules = rules or default_rules()
        parent = self.get(parent_id)
        fen, san = rules.apply_move(parent.fen, move)
        return self.attach(parent_id, fen, san)

    def delete_branch(self, node_id: str) -> int:
        """Remove *node_id* and its whole subtree.  Returns nodes removed."""
        if node_id == self.root_id:
            raise CannotDeleteRoot("cannot delete the root node")
        node = self.get(node_id)

        doomed = {n.id for n in self.walk(node_id)}
        parent = self.nodes[node.parent_id]  # non-root, so parent exists
        parent.children.remove(node_id)
        for nid in doomed:
            del self.nodes[nid]

        for other in self.nodes.values():
            if other.transposition_of in doomed:
                other.transposition_of = None
        return len(doomed)

    def set_comment(self, node_id: str, comment: str | None) -> None:
        text = (comment or "").strip()
        self.get(node_id).comment = text or None

    # ------------------------------------------------------------------
    # Copies
    # ------------------------------------------------------------------

    def copy(self) -> "RepertoireTree":
        """Deep copy keeping every id."""
        clone = RepertoireTree.__new__(RepertoireTree)
        clone.color = self.color
        clone.root_id = self.root_id
        clone.nodes = {
            nid: RepertoireNode(
                id=n.id,
                fen=n.fen,
                move=n.move,
                ply=n.ply,
                parent_id=n.parent_id,
                transposition_of=n.transposition_of,
                comment=n.comment,
                children=list(n.children),
            )
            for nid, n in self.nodes.items()
        }
        return clone

    def extract_subtree(self, node_id: str) -> "RepertoireTree":
        """New tree: the spine root → *node_id* plus that node's subtree.

        Every node gets a fresh id; transposition links inside the copied
        subtree are remapped and links pointing outside it are dropped.
        """
        if node_id == self.root_id:
            raise CannotExtractRoot("cannot extract the root node")
        path = self.path_to(node_id)

        out = RepertoireTree(self.root.fen, self.color)
        out.root.comment = self.root.comment
        remap: dict[str, str] = {self.root_id: out.root_id}

        cursor = out.root_id
        for spine in path[1:]:
            created = out.attach(cursor, spine.fen, spine.move or "", comment=spine.comment)
            remap[spine.id] = created.id
            cursor = created.id

        stack = [(node_id, cursor)]
        while stack:
            src_id, dst_id = stack.pop()
            for child in self.children(src_id):
                created = out.attach(dst_id, child.fen, child.move or "", comment=child.comment)
                remap[child.id] = created.id
                stack.append((child.id, created.id))

        for src_id, dst_id in remap.items():
            target = self.nodes[src_id].transposition_of
            if target is not None and target in remap:
                out.nodes[dst_id].transposition_of = remap[target]
        return out

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Nested JSON-ready dict (children inline, camelCase keys)."""

        def encode(node: RepertoireNode) -> dict[str, Any]:
            return {
                "id":              node.id,
                "fen":             node.fen,
                "move":            node.move,
                "moveNumber":      node.move_number,
                "colorToMove":     node.color_to_move,
                "parentId":        node.parent_id,
                "comment":         node.comment,
                "transpositionOf": node.transposition_of,
                "children":        [],
            }

        root = encode(self.root)
        stack = [(self.root, root)]
        while stack:
            node, out = stack.pop()
            for cid in node.children:
                child = self.nodes[cid]
                encoded = encode(child)
                out["children"].append(encoded)
                stack.append((child, encoded))
        return {"color": self.color.value, "root": root}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RepertoireTree":
        root_data = data["root"]
        tree = cls(root_data["fen"], Color(data.get("color", "white")), root_id=root_data["id"])
        tree.root.comment = root_data.get("comment")
        tree.root.transposition_of = root_data.get("transpositionOf")

        stack: list[tuple[dict[str, Any], RepertoireNode]] = [(root_data, tree.root)]
        while stack:
            raw, node = stack.pop()
            for child_raw in raw.get("children", []):
                child = RepertoireNode(
                    id=child_raw["id"],
                    fen=child_raw["fen"],
                    move=child_raw.get("move"),
                    ply=node.ply + 1,
                    parent_id=node.id,
                    transposition_of=child_raw.get("transpositionOf"),
                    comment=child_raw.get("comment"),
                )
                tree.nodes[child.id] = child
                node.children.append(child.id)
                stack.append((child_raw, child))
        return tree


# ---------------------------------------------------------------------------
# Stored repertoires
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Repertoire:
    """A named tree prepared for one colour."""

    name: str
    color: Color
    tree: RepertoireTree
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        meta = self.tree.metadata()
        return {
            "id":        self.id,
            "name":      self.name,
            "color":     self.color.value,
            "treeData":  self.tree.to_dict()["root"],
            "metadata": {
                "totalNodes":   meta.total_nodes,
                "totalMoves":   meta.total_moves,
                "deepestDepth": meta.deepest_depth,
            },
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
