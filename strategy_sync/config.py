"""Environment-driven configuration for Strategy Sync."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Optional

ROOT_ENV = "STRATEGY_SYNC_ROOT"
STORAGE_DIR_ENV = "STRATEGY_SYNC_STORAGE_DIR"
LOG_LEVEL_ENV = "STRATEGY_SYNC_LOG_LEVEL"
LOG_FILE_ENV = "STRATEGY_SYNC_LOG_FILE"
SYNC_REWORK_ENV = "STRATEGY_SYNC_SYNC_REWORK"
ARCHIVE_REASON_ENV = "STRATEGY_SYNC_ARCHIVE_REASON"

DEFAULT_STORAGE_DIR = ".strategy-sync"
DEFAULT_ARCHIVE_REASON = "strategy_rejected"


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class SyncPolicy:
    """Which top-level section statuses take part in a sync.

    Sections whose status is in ``sync_statuses`` are created, renamed or
    kept; sections whose status is in ``archive_statuses`` archive their
    matching persisted session. Everything else is left out of the plan.
    """

    sync_statuses: FrozenSet[str] = frozenset({"approved"})
    archive_statuses: FrozenSet[str] = frozenset({"rejected"})
    archive_reason: str = DEFAULT_ARCHIVE_REASON

    def __post_init__(self):
        overlap = self.sync_statuses & self.archive_statuses
        if overlap:
            raise ValueError(f"Statuses cannot both sync and archive: {sorted(overlap)}")

    @classmethod
    def including_rework(cls) -> "SyncPolicy":
        """Policy that also syncs sections still marked for rework."""
        return cls(sync_statuses=frozenset({"approved", "rework"}))


@dataclass(frozen=True)
class SyncConfig:
    """Resolved runtime settings."""

    root: Optional[Path] = None
    storage_dir: str = DEFAULT_STORAGE_DIR
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    policy: SyncPolicy = field(default_factory=SyncPolicy)


def load_config() -> SyncConfig:
    """Build a SyncConfig from the process environment."""
    root = os.getenv(ROOT_ENV)
    log_file = os.getenv(LOG_FILE_ENV)
    sync_statuses = {"approved"}
    if _env_flag(SYNC_REWORK_ENV):
        sync_statuses.add("rework")

    return SyncConfig(
        root=Path(root).expanduser().resolve() if root else None,
        storage_dir=os.getenv(STORAGE_DIR_ENV, DEFAULT_STORAGE_DIR),
        log_level=os.getenv(LOG_LEVEL_ENV, "INFO").upper(),
        log_file=Path(log_file).expanduser() if log_file else None,
        policy=SyncPolicy(
            sync_statuses=frozenset(sync_statuses),
            archive_reason=os.getenv(ARCHIVE_REASON_ENV, DEFAULT_ARCHIVE_REASON),
        ),
    )
