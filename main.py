"""MCP server exposing the strategy review and session sync tools."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from strategy_sync import StrategySyncManager, Workspace, load_config, setup_logging
from strategy_sync.config import ROOT_ENV

mcp = FastMCP("strategy-sync")


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    bases: List[Path] = [cwd]
    bases.extend(cwd.parents)
    seen: set[Path] = set()
    ordered: List[Path] = []
    for base in bases:
        if base not in seen:
            seen.add(base)
            ordered.append(base)
    return ordered


def _locate_workspace_root(storage_dir: str) -> Optional[Path]:
    for base in _candidate_bases():
        if (base / storage_dir).exists():
            return base
    return None


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    config = load_config()
    if config.root is not None:
        if not config.root.exists():
            raise ValueError(
                f"Environment variable {ROOT_ENV} points to '{config.root}', which does not exist."
            )
        return config.root

    detected_root = _locate_workspace_root(config.storage_dir)
    if detected_root:
        return detected_root

    # First run in a fresh project: the workspace is created under cwd.
    return Path.cwd().resolve()


def _manager(root: Optional[str]) -> StrategySyncManager:
    return StrategySyncManager(_resolve_root(root))


@mcp.tool()
def ingest_strategy(
    project_id: str,
    owner_id: str,
    markdown: str,
    source: str = "strategist",
    mode: str = "replace",
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 1: Parse an expert's strategy markdown into aspects and tasks awaiting approval.
    Use mode='append' to add another expert's response to the sections already under review."""

    return _manager(root).ingest_markdown(project_id, owner_id, markdown, source=source, mode=mode)


@mcp.tool()
def ingest_experts(
    project_id: str,
    owner_id: str,
    visionary: Optional[str] = None,
    strategist: Optional[str] = None,
    patent: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 1 (alternative): Parse the visionary, strategist and patent responses in one call.
    Aspects are ordered visionary first, then strategist, then patent."""

    return _manager(root).ingest_expert_responses(
        project_id,
        owner_id,
        visionary=visionary,
        strategist=strategist,
        patent=patent,
    )


@mcp.tool()
def get_approval(project_id: str, owner_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Return the aspects and tasks currently under review, with their ids and statuses."""

    return _manager(root).get_approval(project_id, owner_id)


@mcp.tool()
def update_section(
    project_id: str,
    owner_id: str,
    section_id: str,
    status: Optional[str] = None,
    title: Optional[str] = None,
    body: Optional[str] = None,
    comment: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 2: Approve, reject or send a section to rework, optionally editing its title or body.
    Status must be one of pending, approved, rejected, rework."""

    return _manager(root).update_section(
        project_id,
        owner_id,
        section_id,
        status=status,
        title=title,
        body=body,
        comment=comment,
    )


@mcp.tool()
def approve_all(
    project_id: str,
    owner_id: str,
    status: str = "approved",
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Set every section still pending to the given status (approved by default)."""

    return _manager(root).approve_all(project_id, owner_id, status=status)


@mcp.tool()
def approval_summary(project_id: str, owner_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Count the sections under review by status."""

    return _manager(root).approval_summary(project_id, owner_id)


@mcp.tool()
def preview_sync(project_id: str, owner_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 3: Show which sessions a sync would create, rename, keep or archive. Writes nothing."""

    return _manager(root).preview_sync(project_id, owner_id)


@mcp.tool()
def apply_sync(
    project_id: str,
    owner_id: str,
    keep_approval: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 4: Apply the approved strategy to the project's session tree.
    Steps that fail are reported individually; calling apply_sync again retries them."""

    return _manager(root).apply_sync(project_id, owner_id, keep_approval=keep_approval)


@mcp.tool()
def list_sessions(
    project_id: str,
    owner_id: str,
    include_archived: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """List the persisted session tree of a project."""

    return _manager(root).list_sessions(project_id, owner_id, include_archived=include_archived)


@mcp.tool()
def get_workflow_guide() -> Dict[str, Any]:
    """Describe the review and sync workflow and the tool to call at each step."""

    return StrategySyncManager.get_workflow_guide()


@mcp.resource("strategy-sync://approvals")
def resource_approvals() -> str:
    """Resource view listing the approval sessions still under review."""

    try:
        workspace = Workspace(_resolve_root(None))
    except ValueError as e:
        return str(e)

    sessions = workspace.list_approval_sessions()
    if not sessions:
        return "No approval sessions are in progress."

    lines = ["Strategy Approval Sessions"]
    for session in sessions:
        lines.append("")
        lines.append(f"- {session['owner_id']}/{session['project_id']}: {session['aspect_count']} aspects")
        lines.append(f"  Updated: {session['updated_at']}")
        lines.append(f"  Path: {session['path']}")

    return "\n".join(lines)


if __name__ == "__main__":
    config = load_config()
    setup_logging(config.log_level, config.log_file)
    mcp.run(transport="stdio")
