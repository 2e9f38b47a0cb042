from __future__ import annotations

import allure
import pytest

from ralph.engine.markers import DEV_DONE_MARKER, DONE_MARKER, REVIEWER_APPROVED_MARKER
from ralph.engine.models import AgentRole
from ralph.engine.parser import (
    contains_marker,
    extract_section,
    parse,
    parse_for_role,
    parse_reviewer_verdict,
)

pytestmark = [
    allure.epic("Orchestration Engine"),
    allure.feature("Output Parser"),
]


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        (f"All good.\n{DONE_MARKER}", True),
        (f"## Status\n{DONE_MARKER}\n", True),
        ("DONE DONE DONE!!", False),
        ("DONE DONE DONE!!!!", False),
        ("done done done!!!", False),
        ("DONE DONE!!!", False),
    ],
)
def test_done_marker_requires_exact_literal(text: str, expected: bool) -> None:
    assert parse(text).is_done is expected


def test_sections_are_extracted_in_any_order() -> None:
    forward = parse("## Progress\nA\n\n## Learnings\nB")
    backward = parse("## Learnings\nB\n\n## Progress\nA")

    assert (forward.progress, forward.learnings) == ("A", "B")
    assert (backward.progress, backward.learnings) == ("A", "B")


def test_headers_are_case_insensitive_and_first_occurrence_wins() -> None:
    result = parse("## PROGRESS\nfirst\n## progress\nsecond\n## status\nRUNNING")

    assert result.progress == "first"
    assert result.status == "RUNNING"


def test_section_content_is_trimmed_of_blank_lines() -> None:
    result = parse("## Progress\n\n\n  built the parser  \n\n\n## Learnings\n\nuse regex\n\n")

    assert result.progress == "built the parser"
    assert result.learnings == "use regex"


def test_header_inside_code_fence_is_ignored() -> None:
    text = "Here is the template:\n```\n## Progress\nfake\n```\n"

    result = parse(text)

    assert result.progress == ""
    assert result.learnings == ""


def test_real_header_outside_fence_still_wins_over_fenced_one() -> None:
    text = "```md\n## Progress\nfake\n```\n\n## Progress\nreal work\n"

    assert parse(text).progress == "real work"


def test_fenced_headers_inside_section_do_not_end_it() -> None:
    text = "## Progress\nwrote docs:\n```\n## Learnings\nexample\n```\ndone\n## Learnings\nB"

    result = parse(text)

    assert result.progress == "wrote docs:\n```\n## Learnings\nexample\n```\ndone"
    assert result.learnings == "B"


def test_text_without_sections_falls_back_to_progress() -> None:
    result = parse("   I changed three files and ran nothing.   \n")

    assert result.progress == "I changed three files and ran nothing."
    assert result.learnings == ""
    assert result.status == ""


def test_learnings_without_progress_header_keeps_progress_empty() -> None:
    result = parse("## Learnings\nonly learnings")

    assert result.progress == ""
    assert result.learnings == "only learnings"


@pytest.mark.parametrize("text", ["", "   ", "\n\n\t"])
def test_blank_input_parses_to_empty_result(text: str) -> None:
    result = parse(text)

    assert (result.progress, result.learnings, result.status) == ("", "", "")
    assert result.is_done is False


def test_role_markers_are_isolated() -> None:
    dev_done = f"## Progress\nfinished\n\n## Status\n{DEV_DONE_MARKER}"

    developer = parse_for_role(dev_done, AgentRole.DEVELOPER)
    reviewer = parse_for_role(dev_done, "reviewer")

    assert developer.done is True
    assert developer.progress == "finished"
    assert reviewer.done is False
    assert reviewer.verdict is not None
    assert reviewer.verdict.approved is False


def test_developer_ignores_reviewer_approval_marker() -> None:
    result = parse_for_role(f"## Status\n{REVIEWER_APPROVED_MARKER}", AgentRole.DEVELOPER)

    assert result.done is False
    assert result.verdict is None


def test_generic_parse_does_not_accept_developer_marker() -> None:
    assert parse(DEV_DONE_MARKER).is_done is False
    assert parse_for_role(DONE_MARKER, AgentRole.DEVELOPER).done is True


def test_reviewer_approval_marker() -> None:
    verdict = parse_reviewer_verdict(f"### Verdict\n{REVIEWER_APPROVED_MARKER}")

    assert verdict.approved is True
    assert verdict.feedback == ""


@pytest.mark.parametrize(
    ("text", "approved"),
    [
        ("Looks fine. APPROVED", True),
        ("This is NOT APPROVED", False),
        ("NOT YET APPROVED, see issues", False),
        ("The change CANNOT BE APPROVED as is", False),
        ("NOT APPROVED at first, but now APPROVED", True),
        ("UNAPPROVED change", False),
        ("This change is not APPROVED yet.", False),
        ("Not yet APPROVED", False),
        ("It cannot be APPROVED until tests pass", False),
        ("Not Approved", False),
        ("Looks good, approved.", True),
    ],
)
def test_legacy_approval_respects_negations(text: str, approved: bool) -> None:
    assert parse_reviewer_verdict(text).approved is approved


def test_feedback_prefix_takes_priority() -> None:
    text = (
        "### Critical Issues\nNone\n\n### Major Issues\n- wrong loop bound\n\n"
        "### Verdict\nREVIEWER_FEEDBACK:   fix the loop bound  \n"
    )

    verdict = parse_reviewer_verdict(text)

    assert verdict.approved is False
    assert verdict.feedback == "fix the loop bound"


def test_plain_feedback_prefix() -> None:
    assert parse_reviewer_verdict("FEEDBACK: rename x").feedback == "rename x"
    assert parse_reviewer_verdict("Feedback: rename y").feedback == "rename y"


def test_issue_sections_are_concatenated_without_none() -> None:
    text = (
        "### Critical Issues\n- SQL injection in query()\n\n"
        "### Major Issues\nNone\n\n"
        "### Minor Issues\n- unclear name `tmp`\n"
    )

    feedback = parse_reviewer_verdict(text).feedback

    assert "SQL injection in query()" in feedback
    assert "unclear name `tmp`" in feedback
    assert "Major Issues" not in feedback


def test_feedback_falls_back_to_whole_text() -> None:
    verdict = parse_reviewer_verdict("  Please add tests for the edge cases.  ")

    assert verdict.approved is False
    assert verdict.feedback == "Please add tests for the edge cases."


def test_empty_reviewer_output_is_not_approved() -> None:
    verdict = parse_reviewer_verdict("")

    assert verdict.approved is False
    assert verdict.feedback == ""


def test_contains_marker_and_extract_section_helpers() -> None:
    assert contains_marker(f"x {DONE_MARKER} y", DONE_MARKER) is True
    assert contains_marker(f"{DONE_MARKER}!", DONE_MARKER) is False
    assert extract_section("### Notes\nhello\n## Next", "### Notes") == "hello"
    assert extract_section("nothing here", "### Notes") is None
