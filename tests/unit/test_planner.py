"""Unit tests for the sync planner."""

import pytest

from strategy_sync.config import SyncPolicy
from strategy_sync.errors import StoreReadError
from strategy_sync.models import Aspect, ExistingSession, SyncScope, Task
from strategy_sync.planner import compute_sync_plan, count_cascaded, plan_sync, section_from_session
from strategy_sync.store import InMemorySessionStore


def aspect(title, status="approved", tasks=()):
    return Aspect(id=f"a:{title}", title=title, status=status, children=list(tasks))


def task(title, status="approved"):
    return Task(id=f"t:{title}", title=title, status=status)


def row(session_id, title, parent_id=None, sort_order=0, is_active=True, version=1):
    return ExistingSession(
        id=session_id,
        title=title,
        parent_id=parent_id,
        sort_order=sort_order,
        is_active=is_active,
        version=version,
    )


class TestTopLevelReconciliation:
    """Test cases for matching aspects against top-level sessions."""

    def test_create_against_empty_forest(self):
        """Test that everything approved is created when nothing is persisted."""
        plan = compute_sync_plan([], [aspect("Phase 1: Storage", tasks=[task("Buy disks"), task("Configure RAID")])])

        assert len(plan.items) == 1
        item = plan.items[0]
        assert item.action == "create"
        assert item.existing_session_id is None
        assert [(c.action, c.title) for c in item.children] == [
            ("create", "Buy disks"),
            ("create", "Configure RAID"),
        ]
        assert plan.stats.to_dict() == {"create": 3, "rename": 0, "archive": 0, "keep": 0}

    def test_create_skips_undecided_tasks(self):
        """Test that only approved tasks of a new aspect are created."""
        sections = [aspect("Storage", tasks=[task("A"), task("B", "pending"), task("C", "rejected")])]
        plan = compute_sync_plan([], sections)

        assert [c.title for c in plan.items[0].children] == ["A"]

    def test_keep_on_normalized_match(self):
        """Test that a case and whitespace difference is still a keep."""
        plan = compute_sync_plan([row("s1", "Phase 1: Data", version=3)], [aspect("phase 1:  data ")])

        item = plan.items[0]
        assert item.action == "keep"
        assert item.existing_session_id == "s1"
        assert item.existing_version == 3

    def test_rename_on_containment_match(self):
        """Test that a containment match renames the session."""
        plan = compute_sync_plan([row("s1", "Storage")], [aspect("Phase 1: Storage")])

        item = plan.items[0]
        assert item.action == "rename"
        assert item.existing_title == "Storage"
        assert item.title == "Phase 1: Storage"
        assert plan.stats.rename == 1

    def test_each_session_matches_once(self):
        """Test that two aspects cannot claim the same session."""
        plan = compute_sync_plan([row("s1", "Storage")], [aspect("Storage"), aspect("storage")])

        assert [item.action for item in plan.items] == ["keep", "create"]

    def test_pending_and_rework_are_left_out(self):
        """Test that undecided aspects do not take part."""
        existing = [row("s1", "Storage")]
        plan = compute_sync_plan(existing, [aspect("Storage", "pending"), aspect("Network", "rework")])

        assert plan.items == []
        assert plan.archive_items == []
        assert plan.is_noop()

    def test_rework_policy(self):
        """Test that a rework-including policy syncs rework aspects."""
        plan = compute_sync_plan([], [aspect("Network", "rework")], SyncPolicy.including_rework())

        assert [item.action for item in plan.items] == ["create"]

    def test_archived_sessions_are_not_matched(self):
        """Test that inactive sessions are ignored."""
        plan = compute_sync_plan([row("s1", "Storage", is_active=False)], [aspect("Storage")])

        assert plan.items[0].action == "create"

    def test_non_aspect_sections_are_ignored(self):
        """Test that stray tasks at the top level are not planned."""
        plan = compute_sync_plan([], [task("Loose task")])

        assert plan.items == []


class TestTaskReconciliation:
    """Test cases for tasks under a matched aspect."""

    def test_task_actions(self):
        """Test create, keep and rename of tasks under a kept aspect."""
        existing = [
            row("s1", "Storage"),
            row("c1", "Buy disks", parent_id="s1"),
            row("c2", "RAID", parent_id="s1", sort_order=1),
        ]
        sections = [aspect("Storage", tasks=[task("buy disks"), task("Configure RAID"), task("Backups")])]

        plan = compute_sync_plan(existing, sections)
        children = plan.items[0].children

        assert [(c.action, c.title, c.existing_session_id) for c in children] == [
            ("keep", "buy disks", "c1"),
            ("rename", "Configure RAID", "c2"),
            ("create", "Backups", None),
        ]
        assert plan.stats.to_dict() == {"create": 1, "rename": 1, "archive": 0, "keep": 2}

    def test_rejected_task_archives_its_session(self):
        """Test that a rejected task archives the matching child session."""
        existing = [
            row("s1", "Storage"),
            row("c1", "Buy tapes", parent_id="s1"),
            row("g1", "Pick vendor", parent_id="c1"),
        ]
        sections = [aspect("Storage", tasks=[task("Buy tapes", "rejected")])]

        plan = compute_sync_plan(existing, sections)
        archive = plan.items[0].children[0]

        assert archive.action == "archive"
        assert archive.existing_session_id == "c1"
        assert [c.existing_session_id for c in archive.children] == ["g1"]
        assert plan.stats.archive == 1
        assert count_cascaded(plan) == 1

    def test_rejected_task_without_match_is_dropped(self):
        """Test that rejecting something never persisted plans nothing."""
        plan = compute_sync_plan([row("s1", "Storage")], [aspect("Storage", tasks=[task("Tapes", "rejected")])])

        assert plan.items[0].children == []
        assert plan.stats.archive == 0

    def test_approved_tasks_claim_matches_before_rejected_ones(self):
        """Test that a rejected task cannot archive a session an approved task kept."""
        existing = [row("s1", "Storage"), row("c1", "Disks", parent_id="s1")]
        sections = [aspect("Storage", tasks=[task("Disks", "rejected"), task("Disks")])]

        plan = compute_sync_plan(existing, sections)

        assert [c.action for c in plan.items[0].children] == ["keep"]

    def test_task_matches_are_scoped_to_their_parent(self):
        """Test that tasks only match children of their own aspect."""
        existing = [
            row("s1", "Storage"),
            row("s2", "Network", sort_order=1),
            row("c1", "Budget", parent_id="s2"),
        ]
        sections = [aspect("Storage", tasks=[task("Budget")]), aspect("Network", tasks=[task("Budget")])]

        plan = compute_sync_plan(existing, sections)

        assert plan.items[0].children[0].action == "create"
        assert plan.items[1].children[0].action == "keep"


class TestArchivePlanning:
    """Test cases for rejected aspects."""

    def test_rejected_aspect_cascades(self):
        """Test that a rejected aspect archives its session and every descendant."""
        existing = [
            row("s1", "Phase 2: API"),
            row("c1", "Design endpoints", parent_id="s1"),
            row("c2", "Write docs", parent_id="s1", sort_order=1),
            row("c3", "Old", parent_id="s1", is_active=False),
        ]
        plan = compute_sync_plan(existing, [aspect("Phase 2: API", "rejected")])

        assert plan.items == []
        assert len(plan.archive_items) == 1
        archive = plan.archive_items[0]
        assert archive.existing_session_id == "s1"
        assert [c.existing_session_id for c in archive.children] == ["c1", "c2"]
        assert all(c.section.status == "rejected" for c in archive.children)
        assert plan.stats.archive == 1
        assert count_cascaded(plan) == 2

    def test_rejected_aspect_without_match(self):
        """Test that rejecting an unknown aspect plans nothing."""
        plan = compute_sync_plan([row("s1", "Storage")], [aspect("Hiring", "rejected")])

        assert plan.archive_items == []
        assert plan.is_noop()

    def test_approved_aspects_claim_matches_first(self):
        """Test that a rejected aspect cannot archive a session an approved one kept."""
        plan = compute_sync_plan([row("s1", "Storage")], [aspect("Storage", "rejected"), aspect("Storage")])

        assert [item.action for item in plan.items] == ["keep"]
        assert plan.archive_items == []

    def test_cyclic_parents_do_not_loop(self):
        """Test that a corrupt parent cycle terminates."""
        existing = [
            row("s1", "Storage"),
            row("c1", "A", parent_id="s1"),
            row("c2", "B", parent_id="c1"),
            row("c3", "C", parent_id="c2"),
        ]
        existing.append(row("c1", "A", parent_id="c3"))

        plan = compute_sync_plan(existing, [aspect("Storage", "rejected")])

        assert count_cascaded(plan) <= 3

    def test_section_from_session(self):
        """Test the stand-in section for cascaded sessions."""
        stand_in = section_from_session(ExistingSession(id="c1", title="Docs", description="Write docs"))

        assert stand_in.id == "session:c1"
        assert stand_in.body == "Write docs"
        assert stand_in.status == "rejected"


class TestPlanSync:
    """Test cases for planning against a store."""

    def test_reads_fresh_from_store(self):
        """Test that plan_sync plans against the store's current rows."""
        scope = SyncScope("proj", "owner")
        store = InMemorySessionStore()
        store.seed(scope, [row("s1", "Storage")])

        plan = plan_sync(store, scope, [aspect("Storage")])

        assert plan.items[0].action == "keep"

    def test_read_failure_is_surfaced(self):
        """Test that an unreadable store is an error, not an empty forest."""

        class BrokenStore(InMemorySessionStore):
            def list(self, scope):
                raise ConnectionError("database offline")

        with pytest.raises(StoreReadError, match="database offline"):
            plan_sync(BrokenStore(), SyncScope("proj", "owner"), [aspect("Storage")])

    def test_planning_has_no_side_effects(self):
        """Test that planning leaves the store untouched."""
        scope = SyncScope("proj", "owner")
        store = InMemorySessionStore()
        store.seed(scope, [row("s1", "Old storage")])

        plan_sync(store, scope, [aspect("Old storage", "rejected"), aspect("Network")])

        assert [(s.title, s.is_active, s.version) for s in store.list(scope)] == [("Old storage", True, 1)]
