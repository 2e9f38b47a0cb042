"""Marker and section parsing for free-text agent output.

Agents answer in loosely structured markdown. This module pulls out the
``## Progress`` / ``## Learnings`` / ``## Status`` sections, detects the exact
completion markers and turns reviewer text into an approve/feedback verdict.
Headers inside fenced code blocks are ignored.
"""

from __future__ import annotations

import logging
import re

from ralph.engine.markers import (
    CODE_FENCE,
    DEV_DONE_MARKER,
    DONE_MARKER,
    FEEDBACK_PREFIXES,
    ISSUE_HEADERS,
    LEARNINGS_HEADER,
    LEGACY_APPROVAL_NEGATIONS,
    LEGACY_APPROVED,
    NO_ISSUES,
    PROGRESS_HEADER,
    REVIEWER_APPROVED_MARKER,
    STATUS_HEADER,
)
from ralph.engine.models import AgentRole, ParseResult, ReviewVerdict, RoleParseResult

logger = logging.getLogger(__name__)

_SECTION_HEADERS = (PROGRESS_HEADER, LEARNINGS_HEADER, STATUS_HEADER)
_NEXT_HEADER_RE = re.compile(r"^##", re.MULTILINE)
_LEGACY_APPROVED_RE = re.compile(rf"\b{LEGACY_APPROVED}\b", re.IGNORECASE)
_FEEDBACK_PREFIX_RES = tuple(
    re.compile(re.escape(prefix), re.IGNORECASE) for prefix in FEEDBACK_PREFIXES
)
_NON_NEWLINE_RE = re.compile(r"[^\n]")


def parse(raw: str) -> ParseResult:
    """Parse output with the generic done marker."""

    return _parse_sections(raw, done_markers=(DONE_MARKER,))


def parse_for_role(raw: str, role: AgentRole | str) -> RoleParseResult:
    """Parse output with markers scoped to the agent role."""

    agent_role = AgentRole(role)
    if agent_role is AgentRole.REVIEWER:
        sections = _parse_sections(raw, done_markers=())
        verdict = parse_reviewer_verdict(raw)
        return RoleParseResult(
            progress=sections.progress,
            learnings=sections.learnings,
            done=verdict.approved,
            verdict=verdict,
        )

    done_markers: tuple[str, ...] = (DONE_MARKER,)
    if agent_role is AgentRole.DEVELOPER:
        done_markers = (DEV_DONE_MARKER, DONE_MARKER)
    sections = _parse_sections(raw, done_markers=done_markers)
    return RoleParseResult(
        progress=sections.progress,
        learnings=sections.learnings,
        done=sections.is_done,
    )


def parse_reviewer_verdict(raw: str) -> ReviewVerdict:
    """Extract approval or feedback from reviewer output."""

    text = raw.strip()
    if not text:
        return ReviewVerdict(approved=False)

    if contains_marker(text, REVIEWER_APPROVED_MARKER) or _has_legacy_approval(text):
        return ReviewVerdict(approved=True)

    feedback = _prefixed_feedback(text) or _issue_feedback(text) or text
    return ReviewVerdict(approved=False, feedback=feedback)


def contains_marker(text: str, marker: str) -> bool:
    """True if ``marker`` occurs and is not followed by another ``!``."""

    return re.search(re.escape(marker) + r"(?!!)", text) is not None


def extract_section(text: str, header: str) -> str | None:
    """Content under ``header`` outside code fences, or None when absent."""

    return _extract_section(text, _mask_code_blocks(text), header)


def _parse_sections(raw: str, *, done_markers: tuple[str, ...]) -> ParseResult:
    trimmed = raw.strip()
    if not trimmed:
        return ParseResult(raw=raw)

    masked = _mask_code_blocks(raw)
    progress = _extract_section(raw, masked, PROGRESS_HEADER)
    learnings = _extract_section(raw, masked, LEARNINGS_HEADER)
    status = _extract_section(raw, masked, STATUS_HEADER)
    is_done = any(contains_marker(raw, marker) for marker in done_markers)

    if progress is None and not _mentions_any_header(raw):
        logger.warning(
            "Malformed agent output: no sections found, treating %d chars as progress",
            len(raw),
        )
        return ParseResult(progress=trimmed, is_done=is_done, raw=raw)

    return ParseResult(
        progress=progress or "",
        learnings=learnings or "",
        status=status or "",
        is_done=is_done,
        raw=raw,
    )


def _mentions_any_header(text: str) -> bool:
    return any(_header_match(text, header) is not None for header in _SECTION_HEADERS)


def _header_match(masked: str, header: str) -> re.Match[str] | None:
    pattern = rf"^{re.escape(header)}(?![\w#])[^\n]*"
    return re.search(pattern, masked, re.IGNORECASE | re.MULTILINE)


def _extract_section(raw: str, masked: str, header: str) -> str | None:
    match = _header_match(masked, header)
    if match is None:
        return None

    content_start = match.end()
    if content_start < len(masked) and masked[content_start] == "\n":
        content_start += 1

    next_header = _NEXT_HEADER_RE.search(masked, content_start)
    content_end = next_header.start() if next_header else len(raw)
    return raw[content_start:content_end].strip()


def _mask_code_blocks(text: str) -> str:
    """Blank out fenced block bodies, keeping offsets and newlines intact."""

    masked: list[str] = []
    in_fence = False
    for line in text.splitlines(keepends=True):
        if line.startswith(CODE_FENCE):
            in_fence = not in_fence
            masked.append(line)
        elif in_fence:
            masked.append(_NON_NEWLINE_RE.sub(" ", line))
        else:
            masked.append(line)
    return "".join(masked)


def _has_legacy_approval(text: str) -> bool:
    for match in _LEGACY_APPROVED_RE.finditer(text):
        preceding = text[: match.end()]
        if not preceding.upper().endswith(LEGACY_APPROVAL_NEGATIONS):
            return True
    return False


def _prefixed_feedback(text: str) -> str:
    for prefix_re in _FEEDBACK_PREFIX_RES:
        match = prefix_re.search(text)
        if match is not None:
            return text[match.end() :].strip()
    return ""


def _issue_feedback(text: str) -> str:
    masked = _mask_code_blocks(text)
    parts: list[str] = []
    for header in ISSUE_HEADERS:
        body = _extract_section(text, masked, header)
        if not body or body == NO_ISSUES:
            continue
        parts.append(f"{header}\n{body}")
    return "\n\n".join(parts)
