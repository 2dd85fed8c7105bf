"""Sync applier.

Executes a sync plan against a session store. Calls are issued one at a
time, in plan order, so sort indexes are assigned deterministically. The
apply is best-effort rather than atomic: every persistence call is tried on
its own, failures are logged and recorded as per-item results, and the walk
carries on. Recovering from a partial apply means planning again; work that
already landed shows up as ``keep`` in the new plan.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .config import DEFAULT_ARCHIVE_REASON
from .errors import StaleSessionError
from .models import (
    OUTCOME_APPLIED,
    OUTCOME_CONFLICT,
    OUTCOME_FAILED,
    OUTCOME_SKIPPED,
    ApplyResult,
    ItemResult,
    SyncItem,
    SyncPlan,
    SyncScope,
)
from .store import SessionStore
from .sync_logging import (
    log_error_with_context,
    log_performance,
    log_session_archived,
    log_sync_applied,
)

logger = logging.getLogger("strategy_sync.applier")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class SyncApplier:
    """Applies one plan to one scope and collects per-item results."""

    def __init__(
        self,
        store: SessionStore,
        scope: SyncScope,
        *,
        archive_reason: str = DEFAULT_ARCHIVE_REASON,
        clock: Callable[[], str] = _utc_now,
    ):
        self.store = store
        self.scope = scope
        self.archive_reason = archive_reason
        self.clock = clock
        self.results: List[ItemResult] = []

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def apply(self, plan: SyncPlan) -> ApplyResult:
        """Apply ``plan``; only a failure to reach the scope makes it unsuccessful."""
        self.results = []
        try:
            self.store.list(self.scope)

            for sort_order, item in enumerate(plan.items):
                if item.action == "create":
                    self._create_aspect(item, sort_order)
                elif item.action in ("rename", "keep"):
                    self._update_existing(item, sort_order)
                    if item.existing_session_id:
                        self._apply_children(item.children, item.existing_session_id)
                else:
                    logger.warning(f"Ignoring '{item.action}' item among plan items: '{item.title}'")

            for item in plan.iter_archives():
                if item.existing_session_id:
                    self._archive(item.existing_session_id, item, item.existing_version)

            return ApplyResult(success=True, results=self.results)

        except Exception as e:
            logger.error(f"Sync plan apply failed for {self.scope.key}: {e}")
            log_error_with_context(e, {"operation": "apply_sync_plan", "scope": self.scope.key})
            return ApplyResult(success=False, error=str(e), results=self.results)

    # ------------------------------------------------------------------
    # Result bookkeeping
    # ------------------------------------------------------------------

    def _record(
        self,
        item: SyncItem,
        outcome: str,
        session_id: Optional[str] = None,
        error: Optional[str] = None,
        *,
        action: Optional[str] = None,
        title: Optional[str] = None,
    ) -> None:
        self.results.append(ItemResult(
            action=action or item.action,
            title=title if title is not None else item.title,
            outcome=outcome,
            session_id=session_id,
            error=error,
            item=item,
        ))

    def _record_failure(self, item: SyncItem, error: Exception, session_id: Optional[str] = None, **kwargs) -> None:
        outcome = OUTCOME_CONFLICT if isinstance(error, StaleSessionError) else OUTCOME_FAILED
        logger.error(f"Failed to {kwargs.get('action', item.action)} session '{kwargs.get('title', item.title)}': {error}")
        log_error_with_context(error, {
            "operation": f"sync_{kwargs.get('action', item.action)}",
            "scope": self.scope.key,
            "session_id": session_id,
            "section_id": item.section.id,
        })
        self._record(item, outcome, session_id, str(error), **kwargs)

    # ------------------------------------------------------------------
    # create / rename / keep
    # ------------------------------------------------------------------

    def _insert(self, item: SyncItem, sort_order: int, parent_id: Optional[str] = None) -> Optional[str]:
        try:
            session_id = self.store.insert(self.scope, {
                "title": item.section.title,
                "description": item.section.body or None,
                "is_active": True,
                "sort_order": sort_order,
            }, parent_id=parent_id)
        except Exception as e:
            self._record_failure(item, e)
            return None
        self._record(item, OUTCOME_APPLIED, session_id)
        return session_id

    def _create_aspect(self, item: SyncItem, sort_order: int) -> None:
        session_id = self._insert(item, sort_order)
        children = [child for child in item.children if child.action == "create"]
        if session_id is None:
            for child in children:
                self._record(child, OUTCOME_SKIPPED, error="Parent session was not created")
            return
        for child_order, child in enumerate(children):
            self._insert(child, child_order, parent_id=session_id)

    def _update_existing(self, item: SyncItem, sort_order: int) -> None:
        if not item.existing_session_id:
            self._record(item, OUTCOME_SKIPPED, error="No matched session to update")
            return

        fields = {"sort_order": sort_order}
        if item.action == "rename":
            fields["title"] = item.section.title
            if item.section.body:
                fields["description"] = item.section.body

        try:
            self.store.update(
                self.scope,
                item.existing_session_id,
                fields,
                expected_version=item.existing_version,
            )
        except Exception as e:
            self._record_failure(item, e, item.existing_session_id)
            return
        self._record(item, OUTCOME_APPLIED, item.existing_session_id)

    def _apply_children(self, children: List[SyncItem], parent_id: str) -> None:
        child_order = 0
        for child in children:
            if child.action == "create":
                self._insert(child, child_order, parent_id=parent_id)
            elif child.action in ("rename", "keep"):
                self._update_existing(child, child_order)
            else:
                # archives run after every create/rename/keep
                continue
            child_order += 1

    # ------------------------------------------------------------------
    # archive
    # ------------------------------------------------------------------

    def _archive(self, session_id: str, item: SyncItem, expected_version: Optional[int] = None) -> None:
        """Archive a session and, depth first, all of its active descendants."""
        try:
            session = self.store.get(self.scope, session_id)
        except Exception as e:
            self._record_failure(item, e, session_id, action="archive")
            return

        if session.is_active:
            metadata = dict(session.metadata)
            metadata.update({
                "archived": True,
                "archived_at": self.clock(),
                "archive_reason": self.archive_reason,
            })
            try:
                self.store.update(
                    self.scope,
                    session_id,
                    {"is_active": False, "metadata": metadata},
                    expected_version=expected_version,
                )
            except Exception as e:
                self._record_failure(item, e, session_id, action="archive", title=session.title)
                return
            self._record(item, OUTCOME_APPLIED, session_id, action="archive", title=session.title)
            log_session_archived(self.scope.key, session_id, self.archive_reason)
        else:
            self._record(item, OUTCOME_SKIPPED, session_id, "Session already archived",
                         action="archive", title=session.title)

        try:
            children = [s for s in self.store.list(self.scope) if s.parent_id == session_id and s.is_active]
        except Exception as e:
            self._record_failure(item, e, session_id, action="archive", title=session.title)
            return
        for child in children:
            self._archive(child.id, item)


@log_performance("apply_sync_plan")
def apply_sync_plan(
    store: SessionStore,
    scope: SyncScope,
    plan: SyncPlan,
    *,
    archive_reason: str = DEFAULT_ARCHIVE_REASON,
) -> ApplyResult:
    """Apply ``plan`` to the sessions of ``scope`` in ``store``."""
    result = SyncApplier(store, scope, archive_reason=archive_reason).apply(plan)
    log_sync_applied(
        scope.key,
        result.success,
        result.fully_applied,
        failed=len(result.failed_results),
        error=result.error,
    )
    if result.success and not result.fully_applied:
        logger.warning(f"Sync for {scope.key} applied partially: {len(result.failed_results)} failed steps")
    return result
