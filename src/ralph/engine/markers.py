"""Exact-match markers agents use to signal completion and verdicts."""

from __future__ import annotations

DONE_MARKER = "DONE DONE DONE!!!"
DEV_DONE_MARKER = "DEV_DONE DEV_DONE DEV_DONE!!!"
REVIEWER_APPROVED_MARKER = "REVIEWER_APPROVED REVIEWER_APPROVED!!!"
RUNNING_MARKER = "RUNNING RUNNING RUNNING"

LEGACY_APPROVED = "APPROVED"
LEGACY_APPROVAL_NEGATIONS = (
    "NOT APPROVED",
    "NOT YET APPROVED",
    "CANNOT BE APPROVED",
)

FEEDBACK_PREFIXES = ("REVIEWER_FEEDBACK:", "FEEDBACK:")

PROGRESS_HEADER = "## Progress"
LEARNINGS_HEADER = "## Learnings"
STATUS_HEADER = "## Status"

ISSUE_HEADERS = (
    "### Critical Issues",
    "### Major Issues",
    "### Minor Issues",
)
VERDICT_HEADER = "### Verdict"
NO_ISSUES = "None"

CODE_FENCE = "```"

AGENTS_MD_HEADER = "### AGENTS.md Content"
README_MD_HEADER = "### README.md Content"
