"""Markdown strategy parser.

Turns an expert's strategy response into a two-level approval tree. Experts
write "Phase -> Aspect -> Task" documents::

    # Title
    ## Phase 1: Data infrastructure
    ### Storage
    - Buy disks
    - Configure RAID
    ### Ingestion
    ...

The top two levels are merged: "Phase 1" and "Storage" become one aspect
titled ``"Phase 1: Storage"``, and list items under it become its tasks.
Malformed documents never raise; they degrade into orphan tasks, loosely
titled aspects or body text.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional

from .models import (
    SECTION_SOURCES,
    ApprovalDiff,
    ApprovalSection,
    Aspect,
    SectionIdGenerator,
    Task,
    iter_sections,
)
from .sync_logging import log_performance, log_sections_parsed

logger = logging.getLogger("strategy_sync.parser")

# List items indented this far or deeper are sub-bullets of the open task.
SUB_ITEM_INDENT = 4
SUB_ITEM_MARKER = "  • "


class StrategyMarkdownParser:
    """Single-pass line scanner building aspects and tasks.

    One instance parses one document. Ids are drawn from ``ids`` when given,
    which lets several documents share one id space; otherwise the instance
    owns a fresh generator.
    """

    _HEADING_PATTERN = re.compile(r"^(#{1,4})\s+(.+)$")
    _PHASE_PATTERN = re.compile(r"^(?:фаза|phase|этап)\s*\d+\b[:\s.\-–—]*", re.IGNORECASE)
    _BULLET_PATTERN = re.compile(r"^(\s*)[-*+]\s+(.+)$")
    _NUMBERED_PATTERN = re.compile(r"^(\s*)\d+[.)]\s+(.+)$")
    _CYRILLIC_PATTERN = re.compile(r"[а-яё]", re.IGNORECASE)

    def __init__(self, source: str = "strategist", ids: Optional[SectionIdGenerator] = None):
        if source not in SECTION_SOURCES:
            logger.warning(f"Unknown section source '{source}', using 'strategist'")
            source = "strategist"
        self.source = source
        self._ids = ids if ids is not None else SectionIdGenerator()
        self._placeholder_title = "General"

        self._result: List[Aspect] = []
        self._phase_label = ""
        self._aspect: Optional[Aspect] = None
        self._task_lines: Optional[List[str]] = None
        self._body_lines: List[str] = []

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def parse(self, markdown: str) -> List[Aspect]:
        """Parse ``markdown`` into aspects with their tasks."""
        if self._CYRILLIC_PATTERN.search(markdown):
            self._placeholder_title = "Общее"

        for raw_line in markdown.splitlines():
            line = raw_line.expandtabs(SUB_ITEM_INDENT)
            heading = self._HEADING_PATTERN.match(line)
            if heading:
                self._handle_heading(len(heading.group(1)), heading.group(2).strip())
                continue

            item = self._BULLET_PATTERN.match(line) or self._NUMBERED_PATTERN.match(line)
            if item:
                self._handle_list_item(len(item.group(1)), item.group(2).strip())
                continue

            if line.strip():
                if self._task_lines is not None:
                    self._task_lines.append(line)
                else:
                    self._body_lines.append(line)

        self._flush_aspect()
        return self._result

    # ------------------------------------------------------------------
    # Line handlers
    # ------------------------------------------------------------------

    def _handle_heading(self, level: int, text: str) -> None:
        if level == 1:
            # Document title
            return
        if level == 2:
            self._handle_phase_heading(text)
        elif level == 3:
            self._handle_aspect_heading(text)
        else:
            self._handle_task_heading(text)

    def _handle_phase_heading(self, text: str) -> None:
        self._flush_aspect()

        phase = self._PHASE_PATTERN.match(text)
        if phase:
            self._phase_label = re.sub(r"[:\s.\-–—]+$", "", phase.group(0))
            remainder = text[phase.end():].strip()
            if remainder:
                self._aspect = self._new_aspect(f"{self._phase_label}: {remainder}")
            # A bare "## Phase 1" only groups the headings that follow it.
            return

        self._aspect = self._new_aspect(self._qualified(text))

    def _handle_aspect_heading(self, text: str) -> None:
        self._flush_task()
        if self._aspect is not None:
            self._attach_body()

        if self._aspect is None:
            self._aspect = self._new_aspect(self._qualified(text))
            return

        if self._phase_label and not self._aspect.children and not self._aspect.body:
            # First h3 under a phase heading becomes the aspect itself.
            title = f"{self._phase_label}: {text}"
            self._aspect.title = title
            self._aspect.original_title = title
            return

        self._flush_aspect()
        self._aspect = self._new_aspect(self._qualified(text))

    def _handle_task_heading(self, text: str) -> None:
        self._flush_task()
        if self._aspect is None:
            self._aspect = self._new_aspect(self._qualified(self._placeholder_title))
        self._task_lines = [text]

    def _handle_list_item(self, indent: int, text: str) -> None:
        if indent < SUB_ITEM_INDENT and self._aspect is not None:
            self._flush_task()
            self._task_lines = [text]
        elif self._task_lines is not None:
            self._task_lines.append(SUB_ITEM_MARKER + text)
        elif self._aspect is not None:
            # Deeply indented item with no task to attach to
            self._task_lines = [text]
        else:
            logger.debug(f"Ignoring list item outside any aspect: {text[:60]}")

    # ------------------------------------------------------------------
    # Accumulator flushing
    # ------------------------------------------------------------------

    def _flush_task(self) -> None:
        if self._task_lines is not None and self._aspect is not None:
            text = "\n".join(self._task_lines).strip()
            title = _task_title(text)
            if not title:
                if text:
                    logger.debug(f"Dropping task block with no title text: {text[:60]}")
            else:
                self._aspect.children.append(Task(
                    id=self._ids.next_id("task"),
                    title=title,
                    original_title=title,
                    body=text,
                    original_body=text,
                    source=self.source,
                ))
        self._task_lines = None

    def _attach_body(self) -> None:
        body = "\n".join(self._body_lines).strip()
        self._body_lines = []
        if not body or self._aspect is None:
            return
        if not self._aspect.children:
            self._aspect.body = body
        else:
            self._aspect.body = body + ("\n" + self._aspect.body if self._aspect.body else "")
        self._aspect.original_body = self._aspect.body

    def _flush_aspect(self) -> None:
        self._flush_task()
        if self._aspect is not None:
            self._attach_body()
            self._result.append(self._aspect)
        self._aspect = None
        self._body_lines = []

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _qualified(self, text: str) -> str:
        return f"{self._phase_label}: {text}" if self._phase_label else text

    def _new_aspect(self, title: str) -> Aspect:
        return Aspect(
            id=self._ids.next_id("aspect"),
            title=title,
            original_title=title,
            body="",
            original_body="",
            source=self.source,
        )


def _task_title(text: str) -> str:
    """First non-empty line of a task block with bold markers removed."""
    for line in text.split("\n"):
        title = line.removeprefix(SUB_ITEM_MARKER).replace("**", "").strip()
        if title:
            return title
    return ""


@log_performance("parse_strategy_markdown")
def parse_strategy_markdown(
    markdown: str,
    source: str = "strategist",
    ids: Optional[SectionIdGenerator] = None,
) -> List[Aspect]:
    """Parse a strategy document into an ordered list of aspects.

    Every returned aspect is depth 0 and every task depth 1. Empty or
    whitespace-only input yields an empty list.
    """
    if not isinstance(markdown, str) or not markdown.strip():
        return []

    aspects = StrategyMarkdownParser(source, ids).parse(markdown)
    task_count = sum(len(aspect.children) for aspect in aspects)
    log_sections_parsed(source, len(aspects), task_count)
    return aspects


def compute_approval_diff(sections: Iterable[Aspect]) -> ApprovalDiff:
    """Count review outcomes and edits over every section of a forest."""
    diff = ApprovalDiff()
    for section in iter_sections(sections):
        _count_section(diff, section)
    return diff


def _count_section(diff: ApprovalDiff, section: ApprovalSection) -> None:
    diff.total += 1
    if section.status == "approved":
        diff.approved += 1
    elif section.status == "rejected":
        diff.rejected += 1
    elif section.status == "rework":
        diff.rework += 1
    if section.is_edited:
        diff.edited += 1
    if section.is_renamed:
        diff.renamed += 1
