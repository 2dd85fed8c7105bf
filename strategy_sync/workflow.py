"""Workflow management for Strategy Sync.

This module ties the pieces together for the tool surface: ingesting expert
markdown into a paused approval session, letting a reviewer change it,
previewing the sync plan and applying it. Every operation returns a plain
dict; failures are reported through an ``error`` key instead of raising.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .applier import apply_sync_plan
from .config import SyncPolicy, load_config
from .errors import SectionNotFoundError
from .models import (
    APPROVAL_STATUSES,
    WORKFLOW_STEPS,
    Aspect,
    SectionIdGenerator,
    SyncScope,
    combine_expert_sections,
    find_section,
    iter_sections,
)
from .parser import compute_approval_diff, parse_strategy_markdown
from .planner import count_cascaded, plan_sync
from .store import SessionStore
from .sync_logging import (
    log_error_with_context,
    log_operation,
    log_workflow_step,
    observability_hooks,
)
from .workspace import Workspace

logger = logging.getLogger("strategy_sync.workflow")


class StrategySyncManager:
    """Runs the ingest, review, preview and apply workflow for a workspace."""

    def __init__(
        self,
        root: Path | str,
        *,
        store: Optional[SessionStore] = None,
        policy: Optional[SyncPolicy] = None,
        storage_dir: Optional[str] = None,
    ):
        """Initialize the manager with a workspace root.

        ``store`` defaults to the workspace's JSON session store and
        ``policy`` to the one configured through the environment.
        """
        config = load_config()
        self.workspace = Workspace(root, storage_dir=storage_dir or config.storage_dir)
        self.store: SessionStore = store if store is not None else self.workspace.session_store()
        self.policy = policy or config.policy

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    def ingest_markdown(
        self,
        project_id: str,
        owner_id: str,
        markdown: str,
        source: str = "strategist",
        mode: str = "replace",
    ) -> Dict[str, Any]:
        """Parse an expert response and store it as the scope's approval session.

        ``mode="append"`` adds the new aspects after those already under
        review, which is how the responses of several experts are combined.
        """
        try:
            if mode not in {"replace", "append"}:
                raise ValueError("Mode must be 'replace' or 'append'")
            scope = SyncScope(project_id, owner_id)

            with log_operation("ingest_markdown", scope=scope.key, source=source, mode=mode):
                existing: List[Aspect] = []
                if mode == "append" and self.workspace.approval_exists(scope):
                    existing = self.workspace.load_approval_session(scope)
                ids = SectionIdGenerator(reserved=(s.id for s in iter_sections(existing)))
                aspects = existing + parse_strategy_markdown(markdown, source=source, ids=ids)
                path = self.workspace.save_approval_session(scope, aspects)
                log_workflow_step("ingest", scope=scope.key, aspect_count=len(aspects))

            if not aspects:
                message = "No sections found in the document. Check that it uses markdown headings or lists."
            else:
                message = f"Parsed {len(aspects)} aspects for review."

            return {
                "scope": scope.key,
                "approval_path": str(path),
                "sections": [aspect.to_dict() for aspect in aspects],
                "summary": compute_approval_diff(aspects).to_dict(),
                "next_suggested_step": "update_section",
                "workflow_tip": "Next: Approve or reject sections with update_section or approve_all",
                "message": message,
            }

        except Exception as e:
            logger.error(f"Failed to ingest markdown for {owner_id}/{project_id}: {e}")
            log_error_with_context(e, {
                "operation": "ingest_markdown",
                "project_id": project_id,
                "owner_id": owner_id,
                "source": source,
            })
            return {
                "error": f"Failed to ingest strategy: {e}",
                "suggestion": "Check the project and owner identifiers and the markdown content",
                "next_suggested_step": "ingest_strategy",
                "message": f"Error: {e}",
            }

    def ingest_expert_responses(
        self,
        project_id: str,
        owner_id: str,
        visionary: Optional[str] = None,
        strategist: Optional[str] = None,
        patent: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Parse the responses of all three experts into one approval session."""
        try:
            scope = SyncScope(project_id, owner_id)
            ids = SectionIdGenerator()
            with log_operation("ingest_expert_responses", scope=scope.key):
                aspects = combine_expert_sections(
                    parse_strategy_markdown(visionary or "", source="visionary", ids=ids),
                    parse_strategy_markdown(strategist or "", source="strategist", ids=ids),
                    parse_strategy_markdown(patent or "", source="patent", ids=ids),
                )
                path = self.workspace.save_approval_session(scope, aspects)

            counts = {source: 0 for source in ("visionary", "strategist", "patent")}
            for aspect in aspects:
                counts[aspect.source] += 1

            return {
                "scope": scope.key,
                "approval_path": str(path),
                "sections": [aspect.to_dict() for aspect in aspects],
                "aspects_by_source": counts,
                "summary": compute_approval_diff(aspects).to_dict(),
                "next_suggested_step": "update_section",
                "message": f"Parsed {len(aspects)} aspects from {sum(1 for c in counts.values() if c)} experts.",
            }
        except Exception as e:
            logger.error(f"Failed to ingest expert responses for {owner_id}/{project_id}: {e}")
            log_error_with_context(e, {
                "operation": "ingest_expert_responses",
                "project_id": project_id,
                "owner_id": owner_id,
            })
            return {
                "error": f"Failed to ingest expert responses: {e}",
                "next_suggested_step": "ingest_strategy",
                "message": f"Error: {e}",
            }

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def get_approval(self, project_id: str, owner_id: str) -> Dict[str, Any]:
        """Return the sections under review for a scope."""
        try:
            scope = SyncScope(project_id, owner_id)
            aspects = self.workspace.load_approval_session(scope)
            return {
                "scope": scope.key,
                "sections": [aspect.to_dict() for aspect in aspects],
                "summary": compute_approval_diff(aspects).to_dict(),
            }
        except Exception as e:
            return {
                "error": f"Failed to load approval session: {e}",
                "suggestion": "Ingest a strategy document for this project first",
                "next_suggested_step": "ingest_strategy",
                "message": f"Error: {e}",
            }

    def update_section(
        self,
        project_id: str,
        owner_id: str,
        section_id: str,
        *,
        status: Optional[str] = None,
        title: Optional[str] = None,
        body: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Apply a reviewer's decision or edit to one section."""
        try:
            if status is not None and status not in APPROVAL_STATUSES:
                raise ValueError(f"Status must be one of {', '.join(APPROVAL_STATUSES)}")
            if title is not None and not title.strip():
                raise ValueError("Title cannot be empty")

            scope = SyncScope(project_id, owner_id)
            aspects = self.workspace.load_approval_session(scope)
            section = find_section(aspects, section_id)
            if section is None:
                raise SectionNotFoundError(f"Section '{section_id}' not found in approval session for '{scope.key}'")

            if status is not None:
                section.set_status(status, comment)
            elif comment is not None:
                section.user_comment = comment
            if title is not None:
                section.title = title.strip()
            if body is not None:
                section.body = body

            self.workspace.save_approval_session(scope, aspects)
            observability_hooks.log_workflow_event(
                "section_updated",
                scope=scope.key,
                section_id=section_id,
                status=section.status,
            )
            return {
                "scope": scope.key,
                "section": section.to_dict(),
                "summary": compute_approval_diff(aspects).to_dict(),
                "next_suggested_step": "preview_sync",
                "message": f"Section '{section.title}' is now {section.status}.",
            }

        except Exception as e:
            logger.error(f"Failed to update section '{section_id}': {e}")
            return {
                "error": f"Failed to update section: {e}",
                "suggestion": "Use get_approval to list section ids",
                "next_suggested_step": "get_approval",
                "message": f"Error: {e}",
            }

    def approve_all(self, project_id: str, owner_id: str, status: str = "approved") -> Dict[str, Any]:
        """Set every section still pending to ``status``."""
        try:
            if status not in APPROVAL_STATUSES:
                raise ValueError(f"Status must be one of {', '.join(APPROVAL_STATUSES)}")
            scope = SyncScope(project_id, owner_id)
            aspects = self.workspace.load_approval_session(scope)

            changed = 0
            for section in iter_sections(aspects):
                if section.status == "pending":
                    section.set_status(status)
                    changed += 1

            self.workspace.save_approval_session(scope, aspects)
            return {
                "scope": scope.key,
                "changed": changed,
                "summary": compute_approval_diff(aspects).to_dict(),
                "next_suggested_step": "preview_sync",
                "message": f"Marked {changed} pending sections as {status}.",
            }
        except Exception as e:
            return {
                "error": f"Failed to update sections: {e}",
                "next_suggested_step": "get_approval",
                "message": f"Error: {e}",
            }

    def approval_summary(self, project_id: str, owner_id: str) -> Dict[str, Any]:
        """Review statistics for a scope's approval session."""
        try:
            scope = SyncScope(project_id, owner_id)
            aspects = self.workspace.load_approval_session(scope)
            return {"scope": scope.key, "summary": compute_approval_diff(aspects).to_dict()}
        except Exception as e:
            return {
                "error": f"Failed to summarize approval session: {e}",
                "next_suggested_step": "ingest_strategy",
                "message": f"Error: {e}",
            }

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def preview_sync(self, project_id: str, owner_id: str) -> Dict[str, Any]:
        """Compute, without writing anything, what a sync would change."""
        try:
            scope = SyncScope(project_id, owner_id)
            aspects = self.workspace.load_approval_session(scope)
            plan = plan_sync(self.store, scope, aspects, self.policy)
            return {
                "scope": scope.key,
                "plan": plan.to_dict(),
                "cascaded_archives": count_cascaded(plan),
                "noop": plan.is_noop(),
                "next_suggested_step": "apply_sync",
                "message": _plan_message(plan.stats.to_dict()),
            }
        except Exception as e:
            logger.error(f"Failed to preview sync for {owner_id}/{project_id}: {e}")
            log_error_with_context(e, {"operation": "preview_sync", "project_id": project_id, "owner_id": owner_id})
            return {
                "error": f"Failed to compute sync plan: {e}",
                "suggestion": "Check that the session store for this project is readable",
                "next_suggested_step": "preview_sync",
                "message": f"Error: {e}",
            }

    def apply_sync(self, project_id: str, owner_id: str, keep_approval: bool = False) -> Dict[str, Any]:
        """Plan against the current session tree and apply the plan.

        The paused approval session is discarded once everything applied,
        unless ``keep_approval`` is set.
        """
        try:
            scope = SyncScope(project_id, owner_id)
            aspects = self.workspace.load_approval_session(scope)

            with log_operation("apply_sync", scope=scope.key):
                plan = plan_sync(self.store, scope, aspects, self.policy)
                result = apply_sync_plan(
                    self.store, scope, plan, archive_reason=self.policy.archive_reason
                )

            discarded = False
            if result.fully_applied and not keep_approval:
                discarded = self.workspace.discard_approval_session(scope)

            if not result.success:
                message = f"Sync failed: {result.error}"
                next_step = "apply_sync"
            elif result.fully_applied:
                message = f"Sync applied. {_plan_message(plan.stats.to_dict())}"
                next_step = "list_sessions"
            else:
                message = (
                    f"Sync applied partially: {len(result.failed_results)} steps failed. "
                    "Run apply_sync again to retry them."
                )
                next_step = "apply_sync"

            response = {
                "scope": scope.key,
                "plan": plan.to_dict(),
                "result": result.to_dict(),
                "approval_discarded": discarded,
                "next_suggested_step": next_step,
                "message": message,
            }
            if not result.success:
                response["error"] = result.error
            return response

        except Exception as e:
            logger.error(f"Failed to apply sync for {owner_id}/{project_id}: {e}")
            log_error_with_context(e, {"operation": "apply_sync", "project_id": project_id, "owner_id": owner_id})
            return {
                "error": f"Failed to apply sync: {e}",
                "suggestion": "Preview the sync first and check the session store",
                "next_suggested_step": "preview_sync",
                "message": f"Error: {e}",
            }

    def list_sessions(self, project_id: str, owner_id: str, include_archived: bool = False) -> Dict[str, Any]:
        """List the persisted session tree of a scope."""
        try:
            scope = SyncScope(project_id, owner_id)
            sessions = [
                s for s in self.store.list(scope)
                if s.is_active or include_archived
            ]
            top_level = [s for s in sessions if s.parent_id is None]
            tree = [
                {
                    **parent.to_dict(),
                    "children": [c.to_dict() for c in sessions if c.parent_id == parent.id],
                }
                for parent in top_level
            ]
            return {
                "scope": scope.key,
                "sessions": tree,
                "count": len(sessions),
                "message": f"Found {len(sessions)} sessions" if sessions else "No sessions synced yet.",
            }
        except Exception as e:
            return {
                "error": f"Failed to list sessions: {e}",
                "next_suggested_step": "list_sessions",
                "message": f"Error: {e}",
            }

    # ------------------------------------------------------------------
    # Workflow guidance
    # ------------------------------------------------------------------

    @staticmethod
    def get_workflow_guide() -> Dict[str, Any]:
        """Describe the workflow steps in order."""
        return {
            "workflow_overview": "Review expert strategies and sync them into the project's session tree",
            "steps": [step.to_dict() for step in WORKFLOW_STEPS],
            "tips": [
                "Only approved sections are synced; rejected ones archive their matching sessions",
                "Sections left pending or in rework are not touched by a sync",
                "Preview before applying; the preview reads the session tree fresh",
                "A partial apply can be retried by applying again",
            ],
        }


def _plan_message(stats: Dict[str, int]) -> str:
    return (
        f"{stats['create']} to create, {stats['rename']} to rename, "
        f"{stats['keep']} unchanged, {stats['archive']} to archive."
    )
