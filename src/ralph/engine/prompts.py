"""Prompt templates for developer, reviewer, planner and documenter agents."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ralph.engine.markers import (
    AGENTS_MD_HEADER,
    DEV_DONE_MARKER,
    README_MD_HEADER,
    REVIEWER_APPROVED_MARKER,
    RUNNING_MARKER,
    VERDICT_HEADER,
)
from ralph.engine.models import AgentRole, TaskView

PLAN_START_MARKER = "<plan>"
PLAN_END_MARKER = "</plan>"

DEVELOPER_PROMPT = f"""\
# Instructions

You are a developer agent implementing one task of a larger plan.

## Current Task
**Title:** {{task_title}}
**Description:** {{task_description}}

## Guidelines
1. Focus on the specific task requirements
2. Follow existing patterns in the codebase
3. Do NOT run tests, builds, or linting - the reviewer handles that
4. Keep changes scoped to this task
{{feedback_section}}
## Output Format

Always answer with these sections:

## Progress
[What you built and the current state]

## Learnings
[Insights about the codebase, patterns discovered, approaches that did not work]

## Status
{RUNNING_MARKER}

When the task is complete, change the Status section to:

## Status
{DEV_DONE_MARKER}

---

# Plan (for context)

{{plan}}
"""

DEVELOPER_FEEDBACK_SECTION = """
## Reviewer Feedback (from last review - MUST ADDRESS)

The reviewer rejected your previous attempt. Address every item below:

{feedback}
"""

REVIEWER_PROMPT = f"""\
# Instructions

You are a VERY HARD CRITIC code reviewer. Review the changes made for this task.

## Task Being Reviewed
**Title:** {{task_title}}
**Description:** {{task_description}}

## Changes to Review
```diff
{{diff}}
```

If the diff is empty, no code was modified; judge the task on its own terms.

You will ONLY approve code with zero critical issues (security, crashes, data loss),
zero major issues (bugs, incorrect logic, missing error handling) and zero minor issues
(style violations, unclear naming, dead code).

## Output Format

## Progress
[Summary of what you reviewed]

## Learnings
[Patterns you noticed, potential systemic issues]

### Critical Issues
[Each critical issue with file:line reference, or "None"]

### Major Issues
[Each major issue with file:line reference, or "None"]

### Minor Issues
[Each minor issue with file:line reference, or "None"]

{VERDICT_HEADER}

If ALL issue lists above are exactly "None":
{REVIEWER_APPROVED_MARKER}

Otherwise:
REVIEWER_FEEDBACK: [Summarize what needs to be fixed]

---

# Plan (for context)

{{plan}}
"""

PLANNER_PROMPT = f"""\
You are a planner agent. Break the development plan below into discrete tasks.

## Plan to Decompose
{PLAN_START_MARKER}
{{plan}}
{PLAN_END_MARKER}

## Guidelines
1. Each task should be completable in one development session
2. Tasks should have clear acceptance criteria
3. Later tasks can depend on earlier ones
4. Keep tasks focused - one concern per task

## Output Format

Return only a JSON array of tasks:

[
  {{{{
    "title": "Short descriptive title",
    "description": "Detailed description of what to implement",
    "sequence": 1
  }}}}
]

Order tasks by sequence number. Lower sequence numbers run first.
"""

DOCUMENTER_PROMPT = f"""\
You are a documentation agent. Capture learnings from the development session.

## Changes Made
{{changes_summary}}

## Tasks Completed
{{task_list}}

## Your Tasks
1. AGENTS.md: document coding conventions, architecture patterns, testing approaches
   and things to avoid for future agent sessions.
2. README.md: document user-facing changes, usage examples and configuration changes.

## Output Format

{AGENTS_MD_HEADER}
```markdown
[content to append to AGENTS.md]
```

{README_MD_HEADER}
```markdown
[content to append to README.md]
```

Be concise but comprehensive.
"""

DEFAULT_TEMPLATES: dict[AgentRole, str] = {
    AgentRole.DEVELOPER: DEVELOPER_PROMPT,
    AgentRole.REVIEWER: REVIEWER_PROMPT,
    AgentRole.PLANNER: PLANNER_PROMPT,
    AgentRole.DOCUMENTER: DOCUMENTER_PROMPT,
}


@dataclass(slots=True)
class PromptLibrary:
    """Renders role prompts, preferring template files configured per role."""

    template_paths: Mapping[AgentRole, Path] = field(default_factory=dict)
    _cache: dict[AgentRole, str] = field(default_factory=dict, init=False, repr=False)

    def template(self, role: AgentRole) -> str:
        if role not in self._cache:
            path = self.template_paths.get(role)
            self._cache[role] = path.read_text("utf-8") if path else DEFAULT_TEMPLATES[role]
        return self._cache[role]

    def developer(self, *, plan: str, task: TaskView, feedback: str = "") -> str:
        feedback_section = DEVELOPER_FEEDBACK_SECTION.format(feedback=feedback) if feedback else ""
        return _render(
            self.template(AgentRole.DEVELOPER),
            role=AgentRole.DEVELOPER,
            plan=plan,
            task_title=task.title,
            task_description=task.description,
            feedback=feedback,
            feedback_section=feedback_section,
        )

    def reviewer(self, *, plan: str, task: TaskView, diff: str) -> str:
        return _render(
            self.template(AgentRole.REVIEWER),
            role=AgentRole.REVIEWER,
            plan=plan,
            task_title=task.title,
            task_description=task.description,
            diff=diff.strip() or "No code changes to review",
        )

    def planner(self, *, plan: str) -> str:
        return _render(self.template(AgentRole.PLANNER), role=AgentRole.PLANNER, plan=plan)

    def documenter(self, *, changes_summary: str, tasks: Sequence[TaskView]) -> str:
        task_list = "\n".join(f"- {task.title}: {task.description}" for task in tasks)
        return _render(
            self.template(AgentRole.DOCUMENTER),
            role=AgentRole.DOCUMENTER,
            changes_summary=changes_summary,
            task_list=task_list or "- (none)",
        )


def _render(template: str, *, role: AgentRole, **values: str) -> str:
    try:
        return template.format(**values)
    except (KeyError, IndexError) as error:
        raise ValueError(f"Unknown placeholder {error} in {role.value} prompt template") from error
