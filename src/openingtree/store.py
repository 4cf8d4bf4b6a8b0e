"""SQLite-backed store for repertoires and their trees."""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path

from .errors import NotFound
from .merge import merge_trees
from .models import Color
from .tree import Repertoire, RepertoireTree, new_id

_DEFAULT_DB = Path("data/repertoires.sqlite")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _stamp(when: datetime) -> str:
    # Fixed width so ORDER BY on the text column is chronological.
    return when.isoformat(timespec="microseconds")


class RepertoireStore:
    """Persistent repertoires keyed by id.

    Thread-safe: a threading.Lock serialises all connection access so the
    single sqlite3.Connection can be shared across threads.  The same lock
    is held across the read-merge-write of :meth:`merge_into`, so two merges
    into one repertoire can never interleave.
    """

    def __init__(self, db_path: Path = _DEFAULT_DB) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(db_path),
            check_same_thread=False,
        )
        self._lock = threading.Lock()
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_table()

    def _create_table(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS repertoires (
                    id            TEXT PRIMARY KEY,
                    name          TEXT NOT NULL,
                    color         TEXT NOT NULL,
                    tree          TEXT NOT NULL,
                    total_nodes   INTEGER NOT NULL,
                    total_moves   INTEGER NOT NULL,
                    deepest_depth INTEGER NOT NULL,
                    created_at    TEXT NOT NULL,
                    updated_at    TEXT NOT NULL
                )
                """
            )
            self._conn.commit()

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(
        self,
        name: str,
        color: Color,
        tree: RepertoireTree | None = None,
    ) -> Repertoire:
        """Insert a new repertoire; an empty (root-only) tree by default."""
        color = Color(color)
        now = _now()
        rep = Repertoire(
            name=name,
            color=color,
            tree=tree if tree is not None else RepertoireTree(color=color),
            id=new_id(),
            created_at=now,
            updated_at=now,
        )
        self.add(rep)
        return rep

    def add(self, rep: Repertoire) -> None:
        """Insert an already-built :class:`Repertoire` (e.g. from a study import)."""
        meta = rep.tree.metadata()
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO repertoires
                    (id, name, color, tree, total_nodes, total_moves,
                     deepest_depth, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    rep.id,
                    rep.name,
                    rep.color.value,
                    json.dumps(rep.tree.to_dict()),
                    meta.total_nodes,
                    meta.total_moves,
                    meta.deepest_depth,
                    _stamp(rep.created_at),
                    _stamp(rep.updated_at),
                ),
            )
            self._conn.commit()

    def get(self, repertoire_id: str) -> Repertoire:
        with self._lock:
            return self._get_locked(repertoire_id)

    def list(self, color: Color | None = None) -> list[Repertoire]:
        """All repertoires (optionally of one colour), most recently updated first."""
        query = "SELECT id, name, color, tree, created_at, updated_at FROM repertoires"
        params: tuple[str, ...] = ()
        if color is not None:
            query += " WHERE color = ?"
            params = (Color(color).value,)
        query += " ORDER BY updated_at DESC"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [_row_to_repertoire(row) for row in rows]

    def save_tree(self, repertoire_id: str, tree: RepertoireTree) -> Repertoire:
        """Replace the tree of *repertoire_id*."""
        with self._lock:
            self._get_locked(repertoire_id)
            self._write_tree_locked(repertoire_id, tree)
            return self._get_locked(repertoire_id)

    def rename(self, repertoire_id: str, name: str) -> Repertoire:
        with self._lock:
            self._get_locked(repertoire_id)
            self._conn.execute(
                "UPDATE repertoires SET name = ?, updated_at = ? WHERE id = ?",
                (name, _stamp(_now()), repertoire_id),
            )
            self._conn.commit()
            return self._get_locked(repertoire_id)

    def delete(self, repertoire_id: str) -> None:
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM repertoires WHERE id = ?", (repertoire_id,)
            )
            self._conn.commit()
        if cur.rowcount == 0:
            raise NotFound(f"repertoire {repertoire_id} not found")

    def merge_into(self, repertoire_id: str, incoming: RepertoireTree) -> Repertoire:
        """Merge *incoming* into the stored tree and persist the result.

        The stored tree is only replaced after :func:`merge_trees` returns;
        a failed merge leaves the database untouched.
        """
        with self._lock:
            current = self._get_locked(repertoire_id)
            merged = merge_trees(current.tree, incoming)
            self._write_tree_locked(repertoire_id, merged)
            return self._get_locked(repertoire_id)

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _get_locked(self, repertoire_id: str) -> Repertoire:
        row = self._conn.execute(
            "SELECT id, name, color, tree, created_at, updated_at "
            "FROM repertoires WHERE id = ?",
            (repertoire_id,),
        ).fetchone()
        if row is None:
            raise NotFound(f"repertoire {repertoire_id} not found")
        return _row_to_repertoire(row)

    def _write_tree_locked(self, repertoire_id: str, tree: RepertoireTree) -> None:
        meta = tree.metadata()
        self._conn.execute(
            """
            UPDATE repertoires
               SET tree = ?, total_nodes = ?, total_moves = ?,
                   deepest_depth = ?, updated_at = ?
             WHERE id = ?
            """,
            (
                json.dumps(tree.to_dict()),
                meta.total_nodes,
                meta.total_moves,
                meta.deepest_depth,
                _stamp(_now()),
                repertoire_id,
            ),
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "RepertoireStore":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _row_to_repertoire(row: tuple) -> Repertoire:
    rep_id, name, color, tree_json, created_at, updated_at = row
    return Repertoire(
        name=name,
        color=Color(color),
        tree=RepertoireTree.from_dict(json.loads(tree_json)),
        id=rep_id,
        created_at=datetime.fromisoformat(created_at),
        updated_at=datetime.fromisoformat(updated_at),
    )
