"""Strategy Sync - strategy review and session tree reconciliation."""

from .applier import SyncApplier, apply_sync_plan
from .config import SyncConfig, SyncPolicy, load_config
from .errors import (
    ApprovalSessionNotFoundError,
    SectionNotFoundError,
    SessionNotFoundError,
    StaleSessionError,
    StoreError,
    StoreReadError,
    StoreWriteError,
    StrategySyncError,
)
from .matcher import find_best_match, normalize_title, titles_match
from .models import (
    ApplyResult,
    ApprovalDiff,
    ApprovalSection,
    Aspect,
    ExistingSession,
    ItemResult,
    SectionIdGenerator,
    SyncItem,
    SyncPlan,
    SyncScope,
    SyncStats,
    Task,
    combine_expert_sections,
    sections_from_json,
    sections_to_json,
)
from .parser import StrategyMarkdownParser, compute_approval_diff, parse_strategy_markdown
from .planner import compute_sync_plan, count_cascaded, plan_sync
from .store import InMemorySessionStore, JsonSessionStore, SessionStore
from .sync_logging import setup_logging
from .workflow import StrategySyncManager
from .workspace import Workspace

__all__ = [
    "ApplyResult",
    "ApprovalDiff",
    "ApprovalSection",
    "ApprovalSessionNotFoundError",
    "Aspect",
    "ExistingSession",
    "InMemorySessionStore",
    "ItemResult",
    "JsonSessionStore",
    "SectionIdGenerator",
    "SectionNotFoundError",
    "SessionNotFoundError",
    "SessionStore",
    "StaleSessionError",
    "StoreError",
    "StoreReadError",
    "StoreWriteError",
    "StrategyMarkdownParser",
    "StrategySyncError",
    "StrategySyncManager",
    "SyncApplier",
    "SyncConfig",
    "SyncItem",
    "SyncPlan",
    "SyncPolicy",
    "SyncScope",
    "SyncStats",
    "Task",
    "Workspace",
    "apply_sync_plan",
    "combine_expert_sections",
    "compute_approval_diff",
    "compute_sync_plan",
    "count_cascaded",
    "find_best_match",
    "load_config",
    "normalize_title",
    "parse_strategy_markdown",
    "plan_sync",
    "sections_from_json",
    "sections_to_json",
    "setup_logging",
    "titles_match",
]
