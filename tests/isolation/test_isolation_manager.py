"""Tests for the IsolationManager."""

import json

import pytest

from harvest.core.errors import WorkspaceCollision, WorkspaceNotFound
from harvest.pipeline.aggregator import Aggregator
from tests._support.builders import make_artifact, product


@pytest.fixture
def dataset():
    return Aggregator().aggregate([make_artifact("p1", [product("B"), product("A")])])


class TestNaming:
    def test_paths(self, isolation):
        assert isolation.workspace_name == "scrape/products"
        assert isolation.dataset_path == "data/products/dataset.json"
        assert isolation.index_path == "data/products/skus.json"


class TestLifecycle:
    """Test workspace open, merge and abandon."""

    def test_second_open_collides(self, isolation):
        isolation.open_workspace("run-1")
        with pytest.raises(WorkspaceCollision):
            isolation.open_workspace("run-2")
        assert len(isolation.list_workspaces()) == 1

    def test_main_changes_only_on_merge(self, isolation, dataset):
        ws = isolation.open_workspace("run-1")
        isolation.commit_dataset(ws, dataset)
        assert isolation.published_dataset() is None

        merge_id = isolation.merge_and_close(ws)

        assert merge_id == isolation.main_head()
        assert isolation.published_dataset() == dataset
        assert json.loads(isolation.read_main(isolation.index_path)) == ["A", "B"]
        assert isolation.get_workspace() is None

    def test_abandon_keeps_main(self, isolation, dataset):
        ws = isolation.open_workspace("run-1")
        isolation.commit_dataset(ws, dataset)
        isolation.merge_and_close(ws)
        before = isolation.main_files()

        ws = isolation.open_workspace("run-2")
        isolation.put_artifact(ws, make_artifact("p1", product("C")))
        isolation.commit(ws, {isolation.dataset_path: "{}"}, "partial")
        isolation.abandon(ws)

        assert isolation.main_files() == before
        assert isolation.artifacts(ws) == []
        assert isolation.list_workspaces() == []

    def test_reopen_after_abandon(self, isolation):
        isolation.abandon(isolation.open_workspace("run-1"))
        assert isolation.open_workspace("run-2").run_id == "run-2"

    def test_abandon_by_name(self, isolation):
        isolation.open_workspace("run-1")
        ws = isolation.abandon_by_name("scrape/products")
        assert ws.run_id == "run-1"
        assert isolation.get_workspace() is None

    def test_abandon_by_unknown_name(self, isolation):
        with pytest.raises(WorkspaceNotFound):
            isolation.abandon_by_name("scrape/nothing")


class TestHistory:
    def test_merge_messages_name_run(self, isolation, dataset):
        ws = isolation.open_workspace("run-1")
        isolation.commit_dataset(ws, dataset)
        isolation.merge_and_close(ws)

        (merge,) = isolation.history()
        assert merge.is_merge
        assert "run-1" in merge.message
