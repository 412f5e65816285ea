"""Answer reviewer -- checks a finished answer against the data it used.

Runs only when the client asks for auditing. Two auditors, fail-fast:

1. Filter auditor: could the question be answered with the filters the
   model actually applied (assignee, sprint, status)?
2. Facts auditor: do the counts, points and issues in the answer match
   a facts sheet built from the fetched data?

Also audits proposed mutations before they are shown for confirmation.
Every auditor is advisory: a model failure is logged and reported as a
skipped check, never as a failed one.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Protocol

from sprintwise.api.models import AuditContext, ReviewVerdict

logger = logging.getLogger(__name__)

FILTER_MAX_TOKENS = 40
MAX_ACTIVITY_DETAILS = 30
MUTATION_SUMMARY_PREVIEW = 5


class ReviewModel(Protocol):
    async def review(self, prompt: str, max_tokens: int | None = None) -> str: ...


@dataclass
class AuditorResult:
    passed: bool
    reason: str
    errored: bool = False


def _short_name(assignee: str | None) -> str:
    return assignee.split("@")[0] if assignee else "Unassigned"


def _fmt(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ---------------------------------------------------------------------------
# Facts sheets
# ---------------------------------------------------------------------------


def build_assignee_map(issues: list[dict[str, Any]]) -> dict[str, str]:
    """Short name -> full assignee id, first occurrence wins."""
    mapping: dict[str, str] = {}
    for issue in issues:
        assignee = issue.get("assignee")
        if assignee:
            mapping.setdefault(assignee.split("@")[0], assignee)
    return mapping


def build_facts_sheet(issues: list[dict[str, Any]], total_points: float) -> str:
    by_assignee: dict[str, list[float]] = {}
    for issue in issues:
        entry = by_assignee.setdefault(_short_name(issue.get("assignee")), [0, 0])
        entry[0] += 1
        entry[1] += issue.get("points") or 0

    summary_lines = [
        f"{name}: {int(count)} tasks, {_fmt(points)} pts"
        for name, (count, points) in sorted(by_assignee.items(), key=lambda kv: kv[1][1], reverse=True)
    ]
    valid_keys = ", ".join(str(i.get("key")) for i in issues)
    details = "\n".join(
        f'{i.get("key")}: "{i.get("summary") or ""}" ({_short_name(i.get("assignee"))}, {_fmt(i.get("points") or 0)} pts)'
        for i in issues
    )
    return (
        f"NUMBERS:\nTotal: {len(issues)} tasks, {_fmt(total_points)} pts\n"
        + "\n".join(summary_lines)
        + f"\n\nVALID ISSUES:\n{valid_keys}\n\nISSUE DETAILS:\n{details}"
    )


def build_activity_facts_sheet(
    changes: list[dict[str, Any]],
    total_changes: int,
    period: dict[str, Any] | None = None,
) -> str:
    by_status: Counter[str] = Counter()
    by_person: Counter[str] = Counter()
    issue_keys: dict[str, None] = {}

    for change in changes:
        issue_keys[change.get("issue_key", "")] = None
        if str(change.get("field", "")).lower() == "status" and change.get("to"):
            by_status[change["to"]] += 1
        by_person[str(change.get("changed_by") or "").split(" ")[0]] += 1

    status_lines = "\n".join(f"→ {status}: {count}" for status, count in by_status.most_common())
    person_lines = "\n".join(f"{person}: {count} changes" for person, count in by_person.most_common())
    period_line = f"Period: {period.get('since')} to {period.get('until')}" if period else ""

    return (
        f"ACTIVITY SUMMARY:\n{period_line}\n"
        f"Total: {total_changes} changes across {len(issue_keys)} issues\n"
        "(Note: One issue can have multiple status changes, so changes > issues is normal)\n\n"
        f"STATUS TRANSITIONS:\n{status_lines or 'No status changes'}\n\n"
        f"BY PERSON:\n{person_lines}\n\n"
        f"AFFECTED ISSUES:\n{', '.join(issue_keys)}"
    )


def build_breakdown(ctx: AuditContext) -> str:
    parts: list[str] = []
    if ctx.issue_count is not None:
        parts.append(f"{ctx.issue_count} issues")
    if ctx.total_points is not None:
        parts.append(f"{_fmt(ctx.total_points)} pts")
    if ctx.change_count is not None:
        parts.append(f"{ctx.change_count} changes")
    if ctx.sprint_name:
        parts.append(f"Sprint: {ctx.sprint_name}")
    if ctx.activity_period:
        parts.append(f"Period: {ctx.activity_period.get('since')} to {ctx.activity_period.get('until')}")
    if ctx.issues:
        counts = Counter(_short_name(i.get("assignee")) for i in ctx.issues)
        parts.append("By assignee: " + ", ".join(f"{name}: {count}" for name, count in counts.items()))
    return ". ".join(parts)


def build_proposed_action(tool_name: str, args: dict[str, Any]) -> str:
    issues = args.get("issues") or []
    lines = [f"Tool: {tool_name}", f"Count: {len(issues)} issue(s)"]
    if not issues:
        return "\n".join(lines)

    first = issues[0]
    if tool_name == "create_issues":
        for label, key in (("Issue Type", "issue_type"), ("Assignee", "assignee"),
                           ("Sprint ID", "sprint_id"), ("Priority", "priority")):
            if first.get(key):
                lines.append(f"{label}: {first[key]}")
        summaries = "\n".join(
            f"  {n}. {issue.get('summary') or '(no summary)'}"
            for n, issue in enumerate(issues[:MUTATION_SUMMARY_PREVIEW], start=1)
        )
        if len(issues) > MUTATION_SUMMARY_PREVIEW:
            lines.append(f"Summaries (first {MUTATION_SUMMARY_PREVIEW} of {len(issues)}):\n{summaries}")
        else:
            lines.append(f"Summaries:\n{summaries}")
    else:
        keys = [str(i["issue_key"]) for i in issues if i.get("issue_key")]
        lines.append(f"Keys: {', '.join(keys) or '(none)'}")
        changes = []
        if first.get("status"):
            changes.append(f"status: {first['status']}")
        if first.get("assignee"):
            changes.append(f"assignee: {first['assignee']}")
        if first.get("story_points") is not None:
            changes.append(f"points: {_fmt(first['story_points'])}")
        if changes:
            lines.append(f"Changes: {', '.join(changes)}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

TOOL_TYPINGS = """TOOL TYPINGS:

get_sprint_issues(sprint_ids: number[], assignees?: string[], status_filters?: string[], keyword?: string)
→ No assignees param = ALL assignees
→ No status_filters param = ALL statuses

get_activity(since: string, sprint_ids?: number[], assignees?: string[], to_status?: string)
→ No assignees param = ALL assignees
→ No to_status param = ALL status changes"""

FILTER_PROMPT = """{typings}

Q: "{question}"
Filters used: {filters}

Can the question be answered with these filters?
Answer: YES or NO: [missing filter]"""

FACTS_PROMPT = """Verify the answer against the actual data.

ACTUAL DATA:
{facts}

ANSWER:
"{answer}"

Check: totals, per-person counts/points, issue information, any made-up data.
Answer: PASS or FAIL: [what's wrong]"""

MUTATION_PROMPT = """You are verifying an issue-tracker mutation. Only flag CRITICAL problems.

Tool behavior:
- create_issues defaults: issue_type=Story, status=To Do, priority=Medium
- Omitted optional fields use defaults; that is not an error
- Only "summary" is required

User requested: "{request}"

Proposed:
{proposed}

Answer NO only for a count mismatch, a wrong assignee, or summaries unrelated
to the request. Otherwise answer YES.
Answer YES or NO: [brief critical issue]"""


def _parse_answer(text: str, ok: str, bad: str, default_reason: str) -> AuditorResult:
    answer = (text or "").strip().upper()
    if answer.startswith(ok):
        return AuditorResult(True, "")
    reason = answer[len(bad):].lstrip(":").strip() if answer.startswith(bad) else answer
    return AuditorResult(False, reason or default_reason)


def _describe_filters(filters: dict[str, Any], sprint_name: str | None, assignees: dict[str, str]) -> str:
    lines = []
    if filters.get("assignees"):
        if assignees:
            names = ", ".join(f"{name} ({full})" for name, full in assignees.items())
        else:
            names = ", ".join(str(a) for a in filters["assignees"])
        lines.append(f"assignees: [{names}]")
    else:
        lines.append("assignees: undefined (returns ALL)")
    if filters.get("sprint_ids"):
        lines.append(f"sprint: {sprint_name or 'ID ' + ', '.join(str(s) for s in filters['sprint_ids'])}")
    else:
        lines.append("sprint: none")
    if filters.get("status_filters"):
        lines.append(f"status_filters: [{', '.join(filters['status_filters'])}]")
    else:
        lines.append("status_filters: undefined (returns ALL)")
    return ", ".join(lines)


# ---------------------------------------------------------------------------
# AnswerReviewer
# ---------------------------------------------------------------------------


class AnswerReviewer:
    """Post-hoc answer review and pre-confirmation mutation audit."""

    def __init__(self, llm: ReviewModel) -> None:
        self._llm = llm

    async def _ask(self, name: str, prompt: str, ok: str, bad: str, default_reason: str,
                   max_tokens: int | None = None) -> AuditorResult:
        try:
            text = await self._llm.review(prompt, max_tokens=max_tokens)
        except Exception as e:
            logger.warning("%s auditor failed: %s", name, e)
            return AuditorResult(True, "Skipped (error)", errored=True)
        return _parse_answer(text, ok, bad, default_reason)

    async def check_filters(self, ctx: AuditContext) -> AuditorResult:
        filters = _describe_filters(ctx.applied_filters or {}, ctx.sprint_name, build_assignee_map(ctx.issues))
        prompt = FILTER_PROMPT.format(typings=TOOL_TYPINGS, question=ctx.user_question, filters=filters)
        return await self._ask("Filter", prompt, "YES", "NO", "Filter mismatch", FILTER_MAX_TOKENS)

    async def check_facts(self, answer: str, facts: str) -> AuditorResult:
        prompt = FACTS_PROMPT.format(facts=facts, answer=answer)
        return await self._ask("Facts", prompt, "PASS", "FAIL", "Fact mismatch")

    async def review(self, answer: str, ctx: AuditContext) -> ReviewVerdict:
        issue_count = ctx.issue_count or 0
        change_count = ctx.change_count or 0
        has_issues = bool(ctx.issues) or issue_count > 0
        has_activity = bool(ctx.activity_changes) or change_count > 0
        if not has_issues and not has_activity:
            return ReviewVerdict(passed=True, skipped=True)

        summary = (
            f"{change_count} changes" if has_activity
            else f"{issue_count} issues, {_fmt(ctx.total_points or 0)} pts"
        )
        breakdown = build_breakdown(ctx)
        results: list[AuditorResult] = []

        if ctx.user_question and ctx.applied_filters and ctx.tool_used:
            result = await self.check_filters(ctx)
            if not result.passed:
                return ReviewVerdict(passed=False, reason=f"⚠ {result.reason}. {breakdown}", summary="Missing filter")
            results.append(result)

        facts_sheets = []
        if answer and ctx.issues:
            facts_sheets.append(build_facts_sheet(ctx.issues, ctx.total_points or 0))
        if answer and ctx.activity_changes:
            facts_sheets.append(build_activity_facts_sheet(ctx.activity_changes, change_count, ctx.activity_period))
        for facts in facts_sheets:
            result = await self.check_facts(answer, facts)
            if not result.passed:
                return ReviewVerdict(passed=False, reason=f"⚠ {result.reason}. {breakdown}", summary=summary)
            results.append(result)

        if not results:
            return ReviewVerdict(passed=True, skipped=True)
        if any(r.errored for r in results):
            return ReviewVerdict(passed=True, reason="Skipped (error)", summary=summary, skipped=True)
        return ReviewVerdict(passed=True, reason=f"✓ Verified. {breakdown}", summary=summary)

    async def audit_mutation(self, request: str, tool_name: str, args: dict[str, Any]) -> ReviewVerdict:
        prompt = MUTATION_PROMPT.format(request=request, proposed=build_proposed_action(tool_name, args))
        result = await self._ask("Mutation", prompt, "YES", "NO", "Argument mismatch")
        if result.errored:
            return ReviewVerdict(passed=True, reason=result.reason, skipped=True)
        return ReviewVerdict(passed=result.passed, reason=result.reason or "Arguments match request")
