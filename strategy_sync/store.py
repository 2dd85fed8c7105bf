"""Persisted session stores.

A session store is the hierarchical entity store the applier writes to. It
only needs three calls, ``list``, ``insert`` and ``update``, plus ``get`` for
walking archive cascades. Two implementations are provided: an in-memory
store for previews and tests, and a JSON-file store with one file per scope.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable
from urllib.parse import quote, unquote

from .errors import SessionNotFoundError, StaleSessionError, StoreReadError, StoreWriteError
from .models import ExistingSession, SyncScope

logger = logging.getLogger("strategy_sync.store")

# Columns callers may set through insert/update.
WRITABLE_FIELDS = frozenset({"title", "description", "is_active", "sort_order", "metadata"})


def encode_scope_part(value: str) -> str:
    """File name for one scope id.

    Percent-encodes everything but unreserved characters, dots included, so
    distinct ids never share a file and no id resolves to ``.`` or ``..``.
    """
    return quote(value, safe="").replace(".", "%2E")


def decode_scope_part(name: str) -> str:
    return unquote(name)


def scope_file_path(scope: SyncScope) -> Path:
    """Relative ``<owner>/<project>.json`` path of a scope."""
    return Path(encode_scope_part(scope.owner_id)) / f"{encode_scope_part(scope.project_id)}.json"


@runtime_checkable
class SessionStore(Protocol):
    """Hierarchical entity store holding the persisted session forest."""

    def list(self, scope: SyncScope) -> List[ExistingSession]:
        """Return every session of the scope, active or archived."""
        ...

    def get(self, scope: SyncScope, session_id: str) -> ExistingSession:
        ...

    def insert(self, scope: SyncScope, fields: Dict[str, Any], parent_id: Optional[str] = None) -> str:
        """Create a session and return its id."""
        ...

    def update(
        self,
        scope: SyncScope,
        session_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> ExistingSession:
        """Apply ``fields`` to a session, rejecting stale version tokens."""
        ...


def _copy(session: ExistingSession) -> ExistingSession:
    return ExistingSession.from_dict(session.to_dict())


class _RowStore:
    """Shared insert/update logic over a per-scope ``{id: session}`` mapping."""

    def _load(self, scope: SyncScope) -> Dict[str, ExistingSession]:
        raise NotImplementedError

    def _save(self, scope: SyncScope, rows: Dict[str, ExistingSession]) -> None:
        raise NotImplementedError

    def list(self, scope: SyncScope) -> List[ExistingSession]:
        rows = self._load(scope)
        ordered = sorted(rows.values(), key=lambda s: s.sort_order)
        return [_copy(s) for s in ordered]

    def get(self, scope: SyncScope, session_id: str) -> ExistingSession:
        rows = self._load(scope)
        if session_id not in rows:
            raise SessionNotFoundError(session_id, scope.key)
        return _copy(rows[session_id])

    def children_of(self, scope: SyncScope, parent_id: str, *, active_only: bool = True) -> List[ExistingSession]:
        return [
            s for s in self.list(scope)
            if s.parent_id == parent_id and (s.is_active or not active_only)
        ]

    def insert(self, scope: SyncScope, fields: Dict[str, Any], parent_id: Optional[str] = None) -> str:
        unknown = set(fields) - WRITABLE_FIELDS
        if unknown:
            raise StoreWriteError(f"Cannot set unknown session fields: {sorted(unknown)}")
        if not fields.get("title"):
            raise StoreWriteError("Session title is required")

        rows = self._load(scope)
        if parent_id is not None and parent_id not in rows:
            raise SessionNotFoundError(parent_id, scope.key)

        session_id = uuid.uuid4().hex
        rows[session_id] = ExistingSession(
            id=session_id,
            title=fields["title"],
            parent_id=parent_id,
            description=fields.get("description"),
            is_active=fields.get("is_active", True),
            sort_order=fields.get("sort_order", 0),
            metadata=dict(fields.get("metadata") or {}),
        )
        self._save(scope, rows)
        logger.debug(f"Inserted session {session_id} '{fields['title']}' in {scope.key}")
        return session_id

    def update(
        self,
        scope: SyncScope,
        session_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> ExistingSession:
        unknown = set(fields) - WRITABLE_FIELDS
        if unknown:
            raise StoreWriteError(f"Cannot set unknown session fields: {sorted(unknown)}")

        rows = self._load(scope)
        session = rows.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id, scope.key)
        if expected_version is not None and session.version != expected_version:
            raise StaleSessionError(session_id, expected_version, session.version)

        for name, value in fields.items():
            setattr(session, name, dict(value) if name == "metadata" else value)
        session.version += 1
        self._save(scope, rows)
        logger.debug(f"Updated session {session_id} in {scope.key}: {sorted(fields)}")
        return _copy(session)


class InMemorySessionStore(_RowStore):
    """Session store kept in process memory."""

    def __init__(self, sessions: Optional[Dict[str, List[ExistingSession]]] = None):
        self._scopes: Dict[str, Dict[str, ExistingSession]] = {}
        for key, rows in (sessions or {}).items():
            self._scopes[key] = {s.id: _copy(s) for s in rows}

    def seed(self, scope: SyncScope, sessions: List[ExistingSession]) -> None:
        """Replace the scope's sessions, keeping their ids."""
        self._scopes[scope.key] = {s.id: _copy(s) for s in sessions}

    def _load(self, scope: SyncScope) -> Dict[str, ExistingSession]:
        return self._scopes.setdefault(scope.key, {})

    def _save(self, scope: SyncScope, rows: Dict[str, ExistingSession]) -> None:
        self._scopes[scope.key] = rows


class JsonSessionStore(_RowStore):
    """Session store persisting each scope as a JSON file under ``base_dir``.

    Layout: ``<base_dir>/<owner>/<project>.json`` holding a list of session
    objects. Writes go through a temporary file and ``os.replace``.
    """

    def __init__(self, base_dir: Path | str):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def scope_path(self, scope: SyncScope) -> Path:
        return self.base_dir / scope_file_path(scope)

    def _load(self, scope: SyncScope) -> Dict[str, ExistingSession]:
        path = self.scope_path(scope)
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return {row["id"]: ExistingSession.from_dict(row) for row in data}
        except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
            logger.error(f"Failed to read sessions for {scope.key} from {path}: {e}")
            raise StoreReadError(f"Could not read sessions for scope '{scope.key}': {e}") from e

    def _save(self, scope: SyncScope, rows: Dict[str, ExistingSession]) -> None:
        path = self.scope_path(scope)
        payload = json.dumps([s.to_dict() for s in rows.values()], indent=2, ensure_ascii=False)
        try:
            write_text_atomic(path, payload + "\n")
        except OSError as e:
            logger.error(f"Failed to write sessions for {scope.key} to {path}: {e}")
            raise StoreWriteError(f"Could not write sessions for scope '{scope.key}': {e}") from e


def write_text_atomic(path: Path, text: str) -> None:
    """Write ``text`` through a sibling temporary file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".write-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp_name, path)
    except OSError:
        _remove_quietly(Path(tmp_name))
        raise


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove temporary file {path}: {e}")
