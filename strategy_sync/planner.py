"""Sync planner.

Compares a reviewed approval forest with the persisted session forest of a
scope and decides, for every approved or rejected section, whether a
session has to be created, renamed, kept or archived. Planning has no side
effects and can be repeated for previews.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Set

from .config import SyncPolicy
from .errors import StoreReadError
from .matcher import find_best_match, titles_match
from .models import (
    ApprovalSection,
    Aspect,
    ExistingSession,
    SyncItem,
    SyncPlan,
    SyncScope,
    SyncStats,
    Task,
)
from .store import SessionStore
from .sync_logging import log_performance, log_sync_planned

logger = logging.getLogger("strategy_sync.planner")


def section_from_session(session: ExistingSession) -> Task:
    """Stand-in section for a persisted session no approval section names."""
    return Task(
        id=f"session:{session.id}",
        title=session.title,
        body=session.description or "",
        status="rejected",
    )


def _group_children(sessions: Iterable[ExistingSession]) -> Dict[str, List[ExistingSession]]:
    children: Dict[str, List[ExistingSession]] = {}
    for session in sessions:
        if session.parent_id is not None and session.is_active:
            children.setdefault(session.parent_id, []).append(session)
    return children


def _cascade_items(
    session: ExistingSession,
    children_by_parent: Dict[str, List[ExistingSession]],
    seen: Optional[Set[str]] = None,
) -> List[SyncItem]:
    """Archive items for every active descendant of ``session``."""
    seen = seen if seen is not None else {session.id}
    items = []
    for child in children_by_parent.get(session.id, []):
        if child.id in seen:
            continue
        seen.add(child.id)
        items.append(SyncItem(
            action="archive",
            section=section_from_session(child),
            existing_session_id=child.id,
            existing_title=child.title,
            existing_version=child.version,
            children=_cascade_items(child, children_by_parent, seen),
        ))
    return items


def _matched_item(
    section: ApprovalSection,
    match: ExistingSession,
    children: List[SyncItem],
) -> SyncItem:
    action = "keep" if titles_match(match.title, section.title) else "rename"
    return SyncItem(
        action=action,
        section=section,
        existing_session_id=match.id,
        existing_title=match.title,
        existing_version=match.version,
        children=children,
    )


def _reconcile_tasks(
    aspect: Aspect,
    existing_children: List[ExistingSession],
    children_by_parent: Dict[str, List[ExistingSession]],
    policy: SyncPolicy,
    stats: SyncStats,
) -> List[SyncItem]:
    # Matches are scoped to this parent so tasks of different aspects never collide.
    used: Set[str] = set()
    items: List[SyncItem] = []

    for task in aspect.children:
        if task.status not in policy.sync_statuses:
            continue
        match = find_best_match(task.title, existing_children, used)
        if match is None:
            item = SyncItem(action="create", section=task)
        else:
            used.add(match.id)
            item = _matched_item(task, match, [])
        stats.record(item.action)
        items.append(item)

    for task in aspect.children:
        if task.status not in policy.archive_statuses:
            continue
        match = find_best_match(task.title, existing_children, used)
        if match is None:
            continue
        used.add(match.id)
        stats.record("archive")
        items.append(SyncItem(
            action="archive",
            section=task,
            existing_session_id=match.id,
            existing_title=match.title,
            existing_version=match.version,
            children=_cascade_items(match, children_by_parent),
        ))

    return items


@log_performance("compute_sync_plan")
def compute_sync_plan(
    existing: Iterable[ExistingSession],
    sections: Iterable[Aspect],
    policy: Optional[SyncPolicy] = None,
) -> SyncPlan:
    """Compute the reconciliation plan for ``sections`` against ``existing``.

    Only top-level sections whose status is in ``policy.sync_statuses`` or
    ``policy.archive_statuses`` take part. ``stats`` counts one decision per
    approval section; sessions archived only because their parent is
    archived appear as nested items and are not counted there.
    """
    policy = policy or SyncPolicy()
    sessions = list(existing)
    top_level = [s for s in sessions if s.parent_id is None and s.is_active]
    children_by_parent = _group_children(sessions)

    aspects = [s for s in sections if isinstance(s, Aspect)]
    stats = SyncStats()
    plan = SyncPlan(stats=stats)
    used: Set[str] = set()

    for aspect in aspects:
        if aspect.status not in policy.sync_statuses:
            continue
        match = find_best_match(aspect.title, top_level, used)
        if match is not None:
            used.add(match.id)
            children = _reconcile_tasks(
                aspect, children_by_parent.get(match.id, []), children_by_parent, policy, stats
            )
            item = _matched_item(aspect, match, children)
        else:
            # Nothing persisted yet, so rejected tasks have nothing to archive.
            children = [
                SyncItem(action="create", section=task)
                for task in aspect.children
                if task.status in policy.sync_statuses
            ]
            for _ in children:
                stats.record("create")
            item = SyncItem(action="create", section=aspect, children=children)
        stats.record(item.action)
        plan.items.append(item)

    for aspect in aspects:
        if aspect.status not in policy.archive_statuses:
            continue
        match = find_best_match(aspect.title, top_level, used)
        if match is None:
            logger.debug(f"Rejected aspect '{aspect.title}' has no persisted session")
            continue
        used.add(match.id)
        stats.record("archive")
        plan.archive_items.append(SyncItem(
            action="archive",
            section=aspect,
            existing_session_id=match.id,
            existing_title=match.title,
            existing_version=match.version,
            children=_cascade_items(match, children_by_parent),
        ))

    logger.info(
        f"Computed sync plan: {stats.create} create, {stats.rename} rename, "
        f"{stats.keep} keep, {stats.archive} archive"
    )
    return plan


def plan_sync(
    store: SessionStore,
    scope: SyncScope,
    sections: Iterable[Aspect],
    policy: Optional[SyncPolicy] = None,
) -> SyncPlan:
    """Read the scope's sessions fresh from ``store`` and compute a plan.

    A failed read raises StoreReadError; it is never mistaken for an empty
    forest.
    """
    try:
        existing = store.list(scope)
    except StoreReadError:
        raise
    except Exception as e:
        logger.error(f"Failed to read sessions for {scope.key}: {e}")
        raise StoreReadError(f"Could not read sessions for scope '{scope.key}': {e}") from e

    plan = compute_sync_plan(existing, sections, policy)
    log_sync_planned(scope.key, plan.stats.to_dict(), archive_cascade=count_cascaded(plan))
    return plan


def count_cascaded(plan: SyncPlan) -> int:
    """Number of sessions that will be archived only because an ancestor is."""

    def walk(items: List[SyncItem]) -> int:
        return sum(1 + walk(item.children) for item in items)

    return sum(walk(item.children) for item in plan.iter_archives())
