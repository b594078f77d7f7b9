"""Versioned branch store - the durable main line and its workspaces.

A minimal content store with git-like history, kept in SQLite:

::

    harvest_commits     one row per commit; ``line`` is 'main' or a workspace id,
                        ``merge_parent_id`` set on merge commits
    harvest_files       full file snapshot of every commit (path → content)
    harvest_refs        'main' → head commit
    harvest_workspaces  open workspaces, unique by name
    harvest_artifacts   raw artifacts of open workspaces (transient)

Only :class:`~harvest.isolation.manager.IsolationManager` writes to the
main line, through :meth:`BranchStore.merge`.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

from harvest.core.connection import SqliteConnection
from harvest.core.errors import WorkspaceCollision, WorkspaceNotFound
from harvest.core.hashing import compute_hash
from harvest.core.models import RawArtifact, Workspace, utcnow

MAIN = "main"

SCHEMA = """
CREATE TABLE IF NOT EXISTS harvest_commits (
    commit_id INTEGER PRIMARY KEY AUTOINCREMENT,
    line TEXT NOT NULL,
    parent_id INTEGER,
    merge_parent_id INTEGER,
    run_id TEXT,
    message TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_harvest_commits_line ON harvest_commits(line);

CREATE TABLE IF NOT EXISTS harvest_files (
    commit_id INTEGER NOT NULL REFERENCES harvest_commits(commit_id) ON DELETE CASCADE,
    path TEXT NOT NULL,
    content TEXT NOT NULL,
    digest TEXT NOT NULL,
    PRIMARY KEY (commit_id, path)
);

CREATE TABLE IF NOT EXISTS harvest_refs (
    name TEXT PRIMARY KEY,
    commit_id INTEGER
);

CREATE TABLE IF NOT EXISTS harvest_workspaces (
    name TEXT PRIMARY KEY,
    workspace_id TEXT NOT NULL UNIQUE,
    run_id TEXT NOT NULL,
    base_commit INTEGER,
    head_commit INTEGER,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS harvest_artifacts (
    workspace_id TEXT NOT NULL,
    source_id TEXT NOT NULL,
    fetched_at TEXT NOT NULL,
    content_type TEXT,
    url TEXT,
    payload BLOB NOT NULL,
    PRIMARY KEY (workspace_id, source_id)
);
"""


@dataclass(frozen=True)
class Commit:
    commit_id: int
    line: str
    parent_id: int | None
    merge_parent_id: int | None
    run_id: str | None
    message: str
    created_at: datetime

    @property
    def is_merge(self) -> bool:
        return self.merge_parent_id is not None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Commit:
        return cls(
            commit_id=row["commit_id"],
            line=row["line"],
            parent_id=row["parent_id"],
            merge_parent_id=row["merge_parent_id"],
            run_id=row["run_id"],
            message=row["message"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )


def _workspace_from_row(row: sqlite3.Row) -> Workspace:
    return Workspace(
        name=row["name"],
        workspace_id=row["workspace_id"],
        run_id=row["run_id"],
        base_commit=row["base_commit"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class BranchStore:
    """SQLite-backed versioned store with one main line and named workspaces."""

    def __init__(self, conn: SqliteConnection) -> None:
        self.conn = conn
        self.conn.executescript(SCHEMA)
        self.conn.execute("INSERT OR IGNORE INTO harvest_refs (name, commit_id) VALUES (?, NULL)", (MAIN,))

    # === Reads ===

    def main_head(self) -> int | None:
        row = self.conn.fetchone("SELECT commit_id FROM harvest_refs WHERE name = ?", (MAIN,))
        return row["commit_id"] if row else None

    def tree(self, commit_id: int | None) -> dict[str, str]:
        """Full file snapshot of a commit (empty for None)."""
        if commit_id is None:
            return {}
        rows = self.conn.fetchall(
            "SELECT path, content FROM harvest_files WHERE commit_id = ? ORDER BY path", (commit_id,)
        )
        return {r["path"]: r["content"] for r in rows}

    def digests(self, commit_id: int | None) -> dict[str, str]:
        if commit_id is None:
            return {}
        rows = self.conn.fetchall("SELECT path, digest FROM harvest_files WHERE commit_id = ?", (commit_id,))
        return {r["path"]: r["digest"] for r in rows}

    def get_commit(self, commit_id: int) -> Commit | None:
        row = self.conn.fetchone("SELECT * FROM harvest_commits WHERE commit_id = ?", (commit_id,))
        return Commit.from_row(row) if row else None

    def main_history(self, limit: int = 50) -> list[Commit]:
        """Main-line commits, newest first, following first parents."""
        commits = []
        current = self.main_head()
        while current is not None and len(commits) < limit:
            commit = self.get_commit(current)
            if commit is None:
                break
            commits.append(commit)
            current = commit.parent_id
        return commits

    def get_workspace(self, name: str) -> Workspace | None:
        row = self.conn.fetchone("SELECT * FROM harvest_workspaces WHERE name = ?", (name,))
        return _workspace_from_row(row) if row else None

    def workspace_head(self, workspace: Workspace) -> int | None:
        row = self.conn.fetchone(
            "SELECT head_commit FROM harvest_workspaces WHERE workspace_id = ?", (workspace.workspace_id,)
        )
        if row is None:
            raise WorkspaceNotFound(workspace.name)
        return row["head_commit"]

    def list_workspaces(self) -> list[Workspace]:
        rows = self.conn.fetchall("SELECT * FROM harvest_workspaces ORDER BY created_at")
        return [_workspace_from_row(r) for r in rows]

    def artifacts(self, workspace: Workspace) -> list[RawArtifact]:
        rows = self.conn.fetchall(
            "SELECT * FROM harvest_artifacts WHERE workspace_id = ? ORDER BY source_id",
            (workspace.workspace_id,),
        )
        return [
            RawArtifact(
                source_id=r["source_id"],
                fetched_at=datetime.fromisoformat(r["fetched_at"]),
                payload=bytes(r["payload"]),
                content_type=r["content_type"] or "application/octet-stream",
                url=r["url"],
            )
            for r in rows
        ]

    # === Writes ===

    def create_workspace(self, name: str, run_id: str) -> Workspace:
        """Record a workspace branched from the current main head.

        Raises:
            WorkspaceCollision: If a workspace with this name exists
        """
        with self.conn.transaction():
            existing = self.conn.fetchone("SELECT run_id FROM harvest_workspaces WHERE name = ?", (name,))
            if existing is not None:
                raise WorkspaceCollision(name, owner_run_id=existing["run_id"])
            base = self.main_head()
            workspace = Workspace(
                name=name,
                workspace_id=str(uuid4()),
                run_id=run_id,
                base_commit=base,
                created_at=utcnow(),
            )
            self.conn.execute(
                "INSERT INTO harvest_workspaces (name, workspace_id, run_id, base_commit, head_commit, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (name, workspace.workspace_id, run_id, base, base, workspace.created_at.isoformat()),
            )
        return workspace

    def put_artifact(self, workspace: Workspace, artifact: RawArtifact) -> bool:
        """Store a raw artifact; the first write for a source wins. Returns True if stored."""
        cursor = self.conn.execute(
            "INSERT OR IGNORE INTO harvest_artifacts"
            " (workspace_id, source_id, fetched_at, content_type, url, payload) VALUES (?, ?, ?, ?, ?, ?)",
            (
                workspace.workspace_id,
                artifact.source_id,
                artifact.fetched_at.isoformat(),
                artifact.content_type,
                artifact.url,
                artifact.payload,
            ),
        )
        return cursor.rowcount > 0

    def _insert_commit(
        self,
        line: str,
        parent_id: int | None,
        files: Mapping[str, str],
        message: str,
        run_id: str | None,
        merge_parent_id: int | None = None,
    ) -> int:
        cursor = self.conn.execute(
            "INSERT INTO harvest_commits (line, parent_id, merge_parent_id, run_id, message, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?)",
            (line, parent_id, merge_parent_id, run_id, message, utcnow().isoformat()),
        )
        commit_id = cursor.lastrowid
        self.conn.executemany(
            "INSERT INTO harvest_files (commit_id, path, content, digest) VALUES (?, ?, ?, ?)",
            [(commit_id, path, content, compute_hash(content, length=64)) for path, content in sorted(files.items())],
        )
        return commit_id

    def commit(self, workspace: Workspace, files: Mapping[str, str], message: str) -> int:
        """Commit *files* on top of the workspace head."""
        with self.conn.transaction():
            head = self.workspace_head(workspace)
            tree = self.tree(head)
            tree.update(files)
            commit_id = self._insert_commit(workspace.workspace_id, head, tree, message, workspace.run_id)
            self.conn.execute(
                "UPDATE harvest_workspaces SET head_commit = ? WHERE workspace_id = ?",
                (commit_id, workspace.workspace_id),
            )
        return commit_id

    def merge(self, workspace: Workspace, message: str) -> int | None:
        """Merge the workspace into main and delete it.

        Files the workspace changed relative to its base are laid over the
        current main tree, so a main line that moved on (or a workspace
        whose base is unrelated) still merges. Returns the merge commit id,
        or None when the workspace committed nothing.
        """
        with self.conn.transaction():
            head = self.workspace_head(workspace)
            merge_id = None
            if head is not None and head != workspace.base_commit:
                base_digests = self.digests(workspace.base_commit)
                ws_tree = self.tree(head)
                ws_digests = self.digests(head)
                changed = {p: c for p, c in ws_tree.items() if base_digests.get(p) != ws_digests[p]}

                main = self.main_head()
                tree = self.tree(main)
                tree.update(changed)
                merge_id = self._insert_commit(MAIN, main, tree, message, workspace.run_id, merge_parent_id=head)
                self.conn.execute("UPDATE harvest_refs SET commit_id = ? WHERE name = ?", (merge_id, MAIN))
            self._drop_workspace(workspace)
        return merge_id

    def discard(self, workspace: Workspace) -> None:
        """Delete the workspace and its unmerged commits."""
        with self.conn.transaction():
            self.conn.execute("DELETE FROM harvest_commits WHERE line = ?", (workspace.workspace_id,))
            self._drop_workspace(workspace)

    def _drop_workspace(self, workspace: Workspace) -> None:
        self.conn.execute("DELETE FROM harvest_artifacts WHERE workspace_id = ?", (workspace.workspace_id,))
        cursor = self.conn.execute(
            "DELETE FROM harvest_workspaces WHERE workspace_id = ?", (workspace.workspace_id,)
        )
        if cursor.rowcount == 0:
            raise WorkspaceNotFound(workspace.name)
