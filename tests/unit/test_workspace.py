"""Unit tests for Strategy Sync workspace functionality.

This module tests workspace initialization and the paused approval
sessions kept on disk between review steps.
"""

import json
import tempfile
from pathlib import Path

import pytest

from strategy_sync.errors import ApprovalSessionNotFoundError
from strategy_sync.models import Aspect, SyncScope, Task
from strategy_sync.store import JsonSessionStore
from strategy_sync.workspace import Workspace

SCOPE = SyncScope("proj-1", "user-1")


def sample_aspects():
    return [Aspect(
        id="aspect_1",
        title="Phase 1: Storage",
        status="approved",
        children=[Task(id="task_2", title="Buy disks", user_comment="SSD only")],
    )]


class TestWorkspaceInitialization:
    """Test cases for workspace initialization."""

    def test_workspace_creation(self, tmp_path, monkeypatch):
        """Test creating a new workspace."""
        monkeypatch.delenv("STRATEGY_SYNC_STORAGE_DIR", raising=False)
        workspace = Workspace(tmp_path)

        assert workspace.root == tmp_path.resolve()
        assert workspace.base_dir == tmp_path.resolve() / ".strategy-sync"
        assert workspace.sessions_dir.exists()
        assert workspace.approvals_dir.exists()

    def test_workspace_with_custom_storage_dir(self, tmp_path, monkeypatch):
        """Test workspace with a storage directory from the environment."""
        monkeypatch.setenv("STRATEGY_SYNC_STORAGE_DIR", ".custom-sync")
        workspace = Workspace(tmp_path)

        assert workspace.base_dir == tmp_path.resolve() / ".custom-sync"
        assert workspace.base_dir.exists()

    def test_storage_dir_argument_wins(self, tmp_path, monkeypatch):
        """Test that an explicit storage directory overrides the environment."""
        monkeypatch.setenv("STRATEGY_SYNC_STORAGE_DIR", ".custom-sync")
        workspace = Workspace(tmp_path, storage_dir=".explicit")

        assert workspace.base_dir.name == ".explicit"

    def test_workspace_with_string_path(self):
        """Test workspace creation with a string path."""
        with tempfile.TemporaryDirectory() as temp_dir:
            workspace = Workspace(temp_dir)
            assert workspace.root == Path(temp_dir).resolve()

    def test_session_store_is_shared(self, tmp_path):
        """Test that the workspace hands out one JSON store."""
        workspace = Workspace(tmp_path)
        store = workspace.session_store()

        assert isinstance(store, JsonSessionStore)
        assert store is workspace.session_store()
        assert store.base_dir == workspace.sessions_dir


class TestApprovalSessions:
    """Test cases for paused approval sessions."""

    def test_save_and_load(self, tmp_path):
        """Test that a saved review restores unchanged."""
        workspace = Workspace(tmp_path)
        path = workspace.save_approval_session(SCOPE, sample_aspects())

        assert path == workspace.approval_path(SCOPE)
        assert workspace.approval_exists(SCOPE)
        assert workspace.load_approval_session(SCOPE) == sample_aspects()

    def test_saved_file_format(self, tmp_path):
        """Test the stored JSON array."""
        workspace = Workspace(tmp_path)
        path = workspace.save_approval_session(SCOPE, sample_aspects())

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data[0]["originalTitle"] == "Phase 1: Storage"
        assert data[0]["children"][0]["userComment"] == "SSD only"
        assert data[0]["children"][0]["depth"] == 1

    def test_load_missing(self, tmp_path):
        """Test loading a review that was never saved."""
        workspace = Workspace(tmp_path)

        with pytest.raises(ApprovalSessionNotFoundError, match="Ingest a strategy document first"):
            workspace.load_approval_session(SCOPE)

    def test_load_corrupt(self, tmp_path):
        """Test loading a damaged review file."""
        workspace = Workspace(tmp_path)
        path = workspace.approval_path(SCOPE)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("[{broken", encoding="utf-8")

        with pytest.raises(ApprovalSessionNotFoundError, match="unreadable"):
            workspace.load_approval_session(SCOPE)

    def test_discard(self, tmp_path):
        """Test removing a review."""
        workspace = Workspace(tmp_path)
        workspace.save_approval_session(SCOPE, sample_aspects())

        assert workspace.discard_approval_session(SCOPE) is True
        assert not workspace.approval_exists(SCOPE)
        assert workspace.discard_approval_session(SCOPE) is False

    def test_list_approval_sessions(self, tmp_path):
        """Test describing every review in the workspace."""
        workspace = Workspace(tmp_path)
        workspace.save_approval_session(SCOPE, sample_aspects())
        workspace.save_approval_session(SyncScope("proj-2", "user-1"), [])

        sessions = workspace.list_approval_sessions()

        assert [(s["owner_id"], s["project_id"], s["aspect_count"]) for s in sessions] == [
            ("user-1", "proj-1", 1),
            ("user-1", "proj-2", 0),
        ]
        assert all("updated_at" in s for s in sessions)

    def test_similar_scope_ids_keep_separate_reviews(self, tmp_path):
        """Test that look-alike project ids never overwrite each other's review."""
        workspace = Workspace(tmp_path)
        spaced = SyncScope("alpha beta", "user 1")
        dashed = SyncScope("alpha-beta", "user-1")
        workspace.save_approval_session(spaced, sample_aspects())

        assert not workspace.approval_exists(dashed)
        workspace.save_approval_session(dashed, [])
        assert workspace.load_approval_session(spaced) == sample_aspects()

        listed = {(s["owner_id"], s["project_id"]): s["aspect_count"] for s in workspace.list_approval_sessions()}
        assert listed == {("user 1", "alpha beta"): 1, ("user-1", "alpha-beta"): 0}

    def test_save_leaves_no_temporary_file(self, tmp_path):
        """Test that saving a review replaces the file in one step."""
        workspace = Workspace(tmp_path)
        path = workspace.save_approval_session(SCOPE, sample_aspects())

        assert [p.name for p in path.parent.iterdir()] == ["proj-1.json"]

    def test_failed_save_leaves_no_temporary_file(self, tmp_path, monkeypatch):
        """Test that a failed save cleans up and reports the error."""
        workspace = Workspace(tmp_path)

        def fail_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("strategy_sync.store.os.replace", fail_replace)
        with pytest.raises(OSError, match="disk full"):
            workspace.save_approval_session(SCOPE, sample_aspects())

        assert list(workspace.approvals_dir.rglob("*.tmp")) == []
        assert not workspace.approval_exists(SCOPE)

    def test_list_skips_unreadable_files(self, tmp_path):
        """Test that a damaged review does not hide the others."""
        workspace = Workspace(tmp_path)
        workspace.save_approval_session(SCOPE, sample_aspects())
        broken = workspace.approvals_dir / "user-2" / "proj-9.json"
        broken.parent.mkdir(parents=True)
        broken.write_text("not json", encoding="utf-8")

        assert [s["owner_id"] for s in workspace.list_approval_sessions()] == ["user-1"]
