"""Data models for Strategy Sync.

This module contains the core data structures used throughout the system:
the two-level approval tree produced by the markdown parser, the persisted
session rows it is reconciled against, and the sync plan and apply results
computed from the two.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Iterable, Iterator, List, Optional

logger = logging.getLogger("strategy_sync.models")

APPROVAL_STATUSES = ("pending", "approved", "rejected", "rework")
SECTION_SOURCES = ("visionary", "strategist", "patent")
SYNC_ACTIONS = ("create", "rename", "archive", "keep")

OUTCOME_APPLIED = "applied"
OUTCOME_FAILED = "failed"
OUTCOME_CONFLICT = "conflict"
OUTCOME_SKIPPED = "skipped"
ITEM_OUTCOMES = (OUTCOME_APPLIED, OUTCOME_FAILED, OUTCOME_CONFLICT, OUTCOME_SKIPPED)


class SectionIdGenerator:
    """Hands out ``<prefix>_<n>`` ids for one parse or restore call.

    Each parse owns its own counter, so concurrent parses never share state.
    Ids listed in ``reserved`` are never handed out.
    """

    def __init__(self, reserved: Iterable[str] = ()):
        self._counter = itertools.count(1)
        self._reserved = set(reserved)

    def next_id(self, prefix: str) -> str:
        while True:
            candidate = f"{prefix}_{next(self._counter)}"
            if candidate not in self._reserved:
                self._reserved.add(candidate)
                return candidate


# ----------------------------------------------------------------------
# Approval tree
# ----------------------------------------------------------------------

@dataclass(slots=True)
class ApprovalSection:
    """Fields shared by aspects and tasks of an approval tree.

    ``original_title`` and ``original_body`` keep the AI-generated text so
    renames and edits can be detected after review. When omitted they
    default to the current title and body.
    """

    id: str
    title: str
    original_title: Optional[str] = None
    body: str = ""
    original_body: Optional[str] = None
    status: str = "pending"
    user_comment: str = ""
    source: str = "strategist"

    depth: ClassVar[int] = 0

    def __post_init__(self):
        if self.original_title is None:
            self.original_title = self.title
        if self.original_body is None:
            self.original_body = self.body

    @property
    def is_edited(self) -> bool:
        return self.body != self.original_body

    @property
    def is_renamed(self) -> bool:
        return self.title != self.original_title

    def set_status(self, status: str, comment: Optional[str] = None) -> None:
        """Change the review status, optionally recording a reviewer comment."""
        if status not in APPROVAL_STATUSES:
            raise ValueError(f"Invalid status: {status}")
        self.status = status
        if comment is not None:
            self.user_comment = comment

    def validate(self) -> List[str]:
        """Validate the section and return any issues."""
        issues = []

        if not self.id:
            issues.append("Section ID is required")
        if not self.title or not self.title.strip():
            issues.append("Title is required")
        if self.status not in APPROVAL_STATUSES:
            issues.append(f"Invalid status: {self.status}")
        if self.source not in SECTION_SOURCES:
            issues.append(f"Invalid source: {self.source}")

        return issues

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the stored JSON representation."""
        return {
            "id": self.id,
            "title": self.title,
            "originalTitle": self.original_title,
            "body": self.body,
            "originalBody": self.original_body,
            "status": self.status,
            "userComment": self.user_comment,
            "depth": self.depth,
            "source": self.source,
            "children": [],
        }


@dataclass(slots=True)
class Task(ApprovalSection):
    """One actionable item under an aspect. Tasks never have children."""

    depth: ClassVar[int] = 1


@dataclass(slots=True)
class Aspect(ApprovalSection):
    """A top-level "Phase + topic" grouping holding its tasks."""

    children: List[Task] = field(default_factory=list)

    depth: ClassVar[int] = 0

    def to_dict(self) -> Dict[str, Any]:
        data = ApprovalSection.to_dict(self)
        data["children"] = [task.to_dict() for task in self.children]
        return data

    def walk(self) -> Iterator[ApprovalSection]:
        """Yield this aspect followed by its tasks."""
        yield self
        yield from self.children

    def find(self, section_id: str) -> Optional[ApprovalSection]:
        for section in self.walk():
            if section.id == section_id:
                return section
        return None


def iter_sections(aspects: Iterable[Aspect]) -> Iterator[ApprovalSection]:
    """Yield every section of a forest, aspects before their tasks."""
    for aspect in aspects:
        yield from aspect.walk()


def find_section(aspects: Iterable[Aspect], section_id: str) -> Optional[ApprovalSection]:
    for section in iter_sections(aspects):
        if section.id == section_id:
            return section
    return None


def sections_to_json(aspects: Iterable[Aspect]) -> List[Dict[str, Any]]:
    """Serialize an approval forest for storage."""
    return [aspect.to_dict() for aspect in aspects]


def _collect_ids(data: List[Any]) -> Iterator[str]:
    for item in data:
        if not isinstance(item, dict):
            continue
        if item.get("id"):
            yield str(item["id"])
        children = item.get("children")
        if isinstance(children, list):
            yield from _collect_ids(children)


def _section_kwargs(item: Dict[str, Any], ids: SectionIdGenerator) -> Dict[str, Any]:
    title = item.get("title") or ""
    status = item.get("status") or "pending"
    if status not in APPROVAL_STATUSES:
        logger.warning(f"Unknown status '{status}' on restored section, using 'pending'")
        status = "pending"
    source = item.get("source") or "strategist"
    if source not in SECTION_SOURCES:
        logger.warning(f"Unknown source '{source}' on restored section, using 'strategist'")
        source = "strategist"

    original_title = item.get("originalTitle")
    original_body = item.get("originalBody")

    return {
        "id": str(item.get("id") or ids.next_id("restored")),
        "title": title,
        "original_title": title if original_title is None else original_title,
        "body": item.get("body") or "",
        "original_body": original_body or "",
        "status": status,
        "user_comment": item.get("userComment") or "",
        "source": source,
    }


def sections_from_json(data: Any) -> List[Aspect]:
    """Restore an approval forest from its stored JSON form.

    Entries without an id get a fresh ``restored_<n>`` id that does not clash
    with any id already present in ``data``. Anything nested below a task is
    dropped, since a tree can only be two levels deep.
    """
    if not isinstance(data, list):
        return []

    ids = SectionIdGenerator(reserved=_collect_ids(data))
    aspects: List[Aspect] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        tasks: List[Task] = []
        children = item.get("children")
        for child in children if isinstance(children, list) else []:
            if not isinstance(child, dict):
                continue
            if child.get("children"):
                logger.warning(
                    f"Dropping {len(child['children'])} sections nested under task '{child.get('title', '')}'"
                )
            tasks.append(Task(**_section_kwargs(child, ids)))
        aspects.append(Aspect(children=tasks, **_section_kwargs(item, ids)))
    return aspects


def combine_expert_sections(
    visionary: List[Aspect],
    strategist: List[Aspect],
    patent: List[Aspect],
) -> List[Aspect]:
    """Combine the forests of all three experts into one review list."""
    return [*visionary, *strategist, *patent]


@dataclass(slots=True)
class ApprovalDiff:
    """Review statistics over an approval forest."""

    approved: int = 0
    rejected: int = 0
    rework: int = 0
    edited: int = 0
    renamed: int = 0
    total: int = 0

    @property
    def pending(self) -> int:
        return self.total - self.approved - self.rejected - self.rework

    def to_dict(self) -> Dict[str, int]:
        """Convert to dictionary representation."""
        return {
            "approved": self.approved,
            "rejected": self.rejected,
            "rework": self.rework,
            "edited": self.edited,
            "renamed": self.renamed,
            "total": self.total,
            "pending": self.pending,
        }


# ----------------------------------------------------------------------
# Persisted sessions
# ----------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class SyncScope:
    """Identifies one persisted session forest (a project of one owner)."""

    project_id: str
    owner_id: str

    def __post_init__(self):
        if not self.project_id or not str(self.project_id).strip():
            raise ValueError("Project ID cannot be empty")
        if not self.owner_id or not str(self.owner_id).strip():
            raise ValueError("Owner ID cannot be empty")

    @property
    def key(self) -> str:
        return f"{self.owner_id}/{self.project_id}"

    def __str__(self) -> str:
        return self.key


@dataclass(slots=True)
class ExistingSession:
    """A persisted work-breakdown node.

    ``parent_id`` is None for top-level sessions (aspects). Sessions are
    never deleted; archiving sets ``is_active`` to False and stamps
    ``metadata``. ``version`` increases with every update and lets writers
    detect that a row changed after a plan was computed.
    """

    id: str
    title: str
    parent_id: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    version: int = 1

    @property
    def is_top_level(self) -> bool:
        return self.parent_id is None

    @property
    def is_archived(self) -> bool:
        return not self.is_active and bool(self.metadata.get("archived"))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "title": self.title,
            "parent_id": self.parent_id,
            "description": self.description,
            "is_active": self.is_active,
            "sort_order": self.sort_order,
            "metadata": dict(self.metadata),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExistingSession":
        """Create from dictionary representation."""
        return cls(
            id=data["id"],
            title=data["title"],
            parent_id=data.get("parent_id"),
            description=data.get("description"),
            is_active=data.get("is_active", True),
            sort_order=data.get("sort_order", 0),
            metadata=dict(data.get("metadata") or {}),
            version=data.get("version", 1),
        )


# ----------------------------------------------------------------------
# Sync plan
# ----------------------------------------------------------------------

@dataclass(slots=True)
class SyncItem:
    """One reconciliation decision, with the decisions for its children."""

    action: str
    section: ApprovalSection
    existing_session_id: Optional[str] = None
    existing_title: Optional[str] = None
    existing_version: Optional[int] = None
    children: List["SyncItem"] = field(default_factory=list)

    def __post_init__(self):
        if self.action not in SYNC_ACTIONS:
            raise ValueError(f"Invalid sync action: {self.action}")

    @property
    def title(self) -> str:
        return self.section.title

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "action": self.action,
            "section_id": self.section.id,
            "title": self.section.title,
            "existing_session_id": self.existing_session_id,
            "existing_title": self.existing_title,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass(slots=True)
class SyncStats:
    """Number of planned actions of each kind."""

    create: int = 0
    rename: int = 0
    archive: int = 0
    keep: int = 0

    def record(self, action: str) -> None:
        if action not in SYNC_ACTIONS:
            raise ValueError(f"Invalid sync action: {action}")
        setattr(self, action, getattr(self, action) + 1)

    @property
    def total(self) -> int:
        return self.create + self.rename + self.archive + self.keep

    def to_dict(self) -> Dict[str, int]:
        """Convert to dictionary representation."""
        return {
            "create": self.create,
            "rename": self.rename,
            "archive": self.archive,
            "keep": self.keep,
        }


@dataclass(slots=True)
class SyncPlan:
    """Everything a sync will create, rename, keep or archive."""

    items: List[SyncItem] = field(default_factory=list)
    archive_items: List[SyncItem] = field(default_factory=list)
    stats: SyncStats = field(default_factory=SyncStats)

    def is_noop(self) -> bool:
        """True when applying the plan would only confirm the current state."""
        return self.stats.create == 0 and self.stats.rename == 0 and self.stats.archive == 0

    def iter_archives(self) -> Iterator[SyncItem]:
        """Yield the archive decisions in the order they are applied."""
        yield from self.archive_items
        for item in self.items:
            for child in item.children:
                if child.action == "archive":
                    yield child

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "items": [item.to_dict() for item in self.items],
            "archive_items": [item.to_dict() for item in self.archive_items],
            "stats": self.stats.to_dict(),
        }


# ----------------------------------------------------------------------
# Apply results
# ----------------------------------------------------------------------

@dataclass(slots=True)
class ItemResult:
    """Outcome of one persistence step while applying a plan."""

    action: str
    title: str
    outcome: str
    session_id: Optional[str] = None
    error: Optional[str] = None
    item: Optional[SyncItem] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "action": self.action,
            "title": self.title,
            "outcome": self.outcome,
            "session_id": self.session_id,
            "error": self.error,
        }


@dataclass(slots=True)
class ApplyResult:
    """Result of applying a sync plan.

    ``success`` is False only when the apply could not run at all.
    Individual persistence failures are listed in ``results`` and make
    ``fully_applied`` False.
    """

    success: bool
    error: Optional[str] = None
    results: List[ItemResult] = field(default_factory=list)

    @property
    def failed_results(self) -> List[ItemResult]:
        return [r for r in self.results if r.outcome in (OUTCOME_FAILED, OUTCOME_CONFLICT)]

    @property
    def fully_applied(self) -> bool:
        return self.success and not self.failed_results

    def failed_items(self) -> List[SyncItem]:
        """Sync items that have to be retried."""
        seen = set()
        items = []
        for result in self.failed_results:
            if result.item is not None and id(result.item) not in seen:
                seen.add(id(result.item))
                items.append(result.item)
        return items

    def count(self, outcome: str) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "success": self.success,
            "fully_applied": self.fully_applied,
            "error": self.error,
            "counts": {outcome: self.count(outcome) for outcome in ITEM_OUTCOMES},
            "results": [r.to_dict() for r in self.results],
        }


# ----------------------------------------------------------------------
# Workflow guidance
# ----------------------------------------------------------------------

@dataclass(slots=True)
class WorkflowStep:
    """Represents a single step of the review and sync workflow."""

    step_number: int
    name: str
    tool_name: str
    description: str
    prerequisites: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "step": self.step_number,
            "name": self.name,
            "tool": self.tool_name,
            "description": self.description,
            "prerequisites": list(self.prerequisites),
        }


WORKFLOW_STEPS = [
    WorkflowStep(
        step_number=1,
        name="Ingest",
        tool_name="ingest_strategy",
        description="Parse an expert's strategy markdown into aspects and tasks awaiting review",
    ),
    WorkflowStep(
        step_number=2,
        name="Review",
        tool_name="update_section, approve_all",
        description="Approve, reject or send sections back for rework; edit titles and bodies",
        prerequisites=["Ingest"],
    ),
    WorkflowStep(
        step_number=3,
        name="Preview",
        tool_name="preview_sync",
        description="Compute what the sync would create, rename, keep and archive",
        prerequisites=["Review"],
    ),
    WorkflowStep(
        step_number=4,
        name="Apply",
        tool_name="apply_sync",
        description="Write the plan to the persisted session tree",
        prerequisites=["Preview"],
    ),
]
