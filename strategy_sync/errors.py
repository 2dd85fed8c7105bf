"""Exception hierarchy for Strategy Sync."""

from __future__ import annotations

from typing import Optional


class StrategySyncError(Exception):
    """Base class for all Strategy Sync errors."""


class StoreError(StrategySyncError):
    """A persistence call against a session store failed."""


class StoreReadError(StoreError):
    """The persisted session forest for a scope could not be read."""


class StoreWriteError(StoreError):
    """An insert or update against a session store failed."""


class SessionNotFoundError(StoreError):
    """No persisted session exists with the requested id."""

    def __init__(self, session_id: str, scope: Optional[str] = None):
        self.session_id = session_id
        self.scope = scope
        where = f" in scope '{scope}'" if scope else ""
        super().__init__(f"Session '{session_id}' not found{where}")


class StaleSessionError(StoreError):
    """An update carried a version token older than the stored one."""

    def __init__(self, session_id: str, expected_version: int, actual_version: int):
        self.session_id = session_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Session '{session_id}' changed since planning "
            f"(expected version {expected_version}, found {actual_version})"
        )


class ApprovalSessionNotFoundError(StrategySyncError):
    """No paused approval session is stored under the requested name."""


class SectionNotFoundError(StrategySyncError):
    """An approval tree holds no section with the requested id."""
