"""Isolation manager - one ephemeral workspace per Run.

Lifecycle::

    open_workspace(run_id)        branch from main head
        │                         (WorkspaceCollision if the name is taken)
        ├── put_artifact(...)     transient raw artifacts
        ├── commit(files)         files destined for the main line
        │
        ├── merge_and_close(ws)   merge commit on main (2 parents), delete ws
        └── abandon(ws)           delete ws + unmerged commits, main untouched

The workspace name is ``{prefix}{pipeline}``, fixed per pipeline. A second
concurrent Run, or a Run after a crash that left its workspace behind,
therefore collides instead of silently overwriting. Clearing a stale
workspace is an operator action (``harvest workspace abandon``).
"""

from __future__ import annotations

from collections.abc import Mapping

from harvest.core.errors import WorkspaceNotFound
from harvest.core.logging import get_logger
from harvest.core.models import AggregatedDataset, RawArtifact, Workspace
from harvest.isolation.store import BranchStore, Commit

logger = get_logger(__name__)


class IsolationManager:
    def __init__(self, store: BranchStore, pipeline: str, prefix: str = "scrape/") -> None:
        self.store = store
        self.pipeline = pipeline
        self.prefix = prefix

    @property
    def workspace_name(self) -> str:
        return f"{self.prefix}{self.pipeline}"

    @property
    def dataset_path(self) -> str:
        return f"data/{self.pipeline}/dataset.json"

    @property
    def index_path(self) -> str:
        return f"data/{self.pipeline}/skus.json"

    # === Workspace lifecycle ===

    def open_workspace(self, run_id: str) -> Workspace:
        """Allocate the pipeline's workspace for *run_id*.

        Raises:
            WorkspaceCollision: A workspace with the same name still exists
        """
        workspace = self.store.create_workspace(self.workspace_name, run_id)
        logger.info(
            "workspace.opened",
            workspace=workspace.name,
            workspace_id=workspace.workspace_id,
            base_commit=workspace.base_commit,
        )
        return workspace

    def merge_and_close(self, workspace: Workspace) -> int | None:
        """Merge the workspace into the main line, then delete it.

        Returns the merge commit id (None if nothing was committed).
        """
        merge_id = self.store.merge(
            workspace,
            message=f"Merge workspace '{workspace.name}' (run {workspace.run_id})",
        )
        logger.info("workspace.merged", workspace=workspace.name, merge_commit=merge_id)
        return merge_id

    def abandon(self, workspace: Workspace) -> None:
        """Delete the workspace without merging."""
        self.store.discard(workspace)
        logger.info("workspace.abandoned", workspace=workspace.name, run_id=workspace.run_id)

    def abandon_by_name(self, name: str) -> Workspace:
        """Operator clean-up of a stale workspace.

        Raises:
            WorkspaceNotFound: No workspace with that name
        """
        workspace = self.store.get_workspace(name)
        if workspace is None:
            raise WorkspaceNotFound(name)
        self.abandon(workspace)
        return workspace

    # === Workspace contents ===

    def put_artifact(self, workspace: Workspace, artifact: RawArtifact) -> bool:
        return self.store.put_artifact(workspace, artifact)

    def artifacts(self, workspace: Workspace) -> list[RawArtifact]:
        return self.store.artifacts(workspace)

    def commit(self, workspace: Workspace, files: Mapping[str, str], message: str) -> int:
        return self.store.commit(workspace, files, message)

    def commit_dataset(self, workspace: Workspace, dataset: AggregatedDataset) -> int:
        """Commit the dataset and its SKU index into the workspace."""
        return self.commit(
            workspace,
            {self.dataset_path: dataset.to_json(), self.index_path: dataset.index_json()},
            message=f"Aggregate {dataset.record_count} records (run {workspace.run_id})",
        )

    # === Main line (read-only) ===

    def main_head(self) -> int | None:
        return self.store.main_head()

    def main_files(self) -> dict[str, str]:
        return self.store.tree(self.store.main_head())

    def read_main(self, path: str) -> str | None:
        return self.main_files().get(path)

    def published_dataset(self) -> AggregatedDataset | None:
        """The dataset currently on the main line, if any."""
        text = self.read_main(self.dataset_path)
        return AggregatedDataset.from_json(text) if text is not None else None

    def history(self, limit: int = 50) -> list[Commit]:
        return self.store.main_history(limit)

    def list_workspaces(self) -> list[Workspace]:
        return self.store.list_workspaces()

    def get_workspace(self, name: str | None = None) -> Workspace | None:
        return self.store.get_workspace(name or self.workspace_name)
