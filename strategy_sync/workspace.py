"""Workspace management for Strategy Sync.

A workspace is a directory holding a ``.strategy-sync/`` folder with the
persisted session forests (one JSON file per scope) and the approval
sessions that were paused mid-review.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import load_config
from .errors import ApprovalSessionNotFoundError
from .models import Aspect, SyncScope, sections_from_json, sections_to_json
from .store import JsonSessionStore, decode_scope_part, scope_file_path, write_text_atomic
from .sync_logging import log_error_with_context, log_performance, observability_hooks

logger = logging.getLogger("strategy_sync.workspace")


class Workspace:
    """On-disk home of session stores and paused approval sessions."""

    def __init__(self, root: Path | str, storage_dir: Optional[str] = None):
        """Initialize workspace with given root directory."""
        try:
            self.root = Path(root).expanduser().resolve()
            name = storage_dir or load_config().storage_dir

            self.base_dir = self.root / name
            self.sessions_dir = self.base_dir / "sessions"
            self.approvals_dir = self.base_dir / "approvals"

            try:
                self.sessions_dir.mkdir(parents=True, exist_ok=True)
                self.approvals_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error(f"Failed to create workspace directories: {e}")
                raise RuntimeError(f"Could not initialize workspace at {self.root}: {e}") from e

            self._store: Optional[JsonSessionStore] = None
            logger.info(f"Workspace initialized at {self.root}")
            observability_hooks.log_workflow_event("workspace_initialized", root=str(self.root))

        except Exception as e:
            logger.error(f"Failed to initialize workspace: {e}")
            log_error_with_context(e, {"operation": "workspace_init", "root": str(root)})
            raise

    # ------------------------------------------------------------------
    # Session store
    # ------------------------------------------------------------------

    def session_store(self) -> JsonSessionStore:
        """The JSON session store backing this workspace."""
        if self._store is None:
            self._store = JsonSessionStore(self.sessions_dir)
        return self._store

    # ------------------------------------------------------------------
    # Paused approval sessions
    # ------------------------------------------------------------------

    def approval_path(self, scope: SyncScope) -> Path:
        return self.approvals_dir / scope_file_path(scope)

    def approval_exists(self, scope: SyncScope) -> bool:
        return self.approval_path(scope).exists()

    @log_performance("save_approval_session")
    def save_approval_session(self, scope: SyncScope, aspects: List[Aspect]) -> Path:
        """Persist an in-progress review so it survives reloads."""
        path = self.approval_path(scope)
        payload = json.dumps(sections_to_json(aspects), indent=2, ensure_ascii=False)
        write_text_atomic(path, payload + "\n")
        logger.info(f"Saved approval session for {scope.key} ({len(aspects)} aspects)")
        return path

    def load_approval_session(self, scope: SyncScope) -> List[Aspect]:
        """Restore a paused review."""
        path = self.approval_path(scope)
        if not path.exists():
            raise ApprovalSessionNotFoundError(
                f"No approval session for scope '{scope.key}'. Ingest a strategy document first."
            )
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt approval session at {path}: {e}")
            raise ApprovalSessionNotFoundError(
                f"Approval session for scope '{scope.key}' is unreadable: {e}"
            ) from e
        return sections_from_json(data)

    def discard_approval_session(self, scope: SyncScope) -> bool:
        """Remove the paused review once it has been synced."""
        path = self.approval_path(scope)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"Discarded approval session for {scope.key}")
        return True

    def list_approval_sessions(self) -> List[Dict[str, Any]]:
        """Describe every paused review in the workspace."""
        sessions = []
        for path in sorted(self.approvals_dir.glob("*/*.json")):
            try:
                count = len(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, json.JSONDecodeError, TypeError):
                logger.warning(f"Skipping unreadable approval session {path}")
                continue
            modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
            sessions.append({
                "owner_id": decode_scope_part(path.parent.name),
                "project_id": decode_scope_part(path.stem),
                "path": str(path),
                "aspect_count": count,
                "updated_at": modified.isoformat(timespec="seconds"),
            })
        return sessions
