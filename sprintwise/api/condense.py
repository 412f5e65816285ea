"""Result condenser: reshape raw tool results for the LLM, the log and the UI.

Every tool result is turned into a CondensedResult:

- for_llm: what goes back into the conversation. For list-shaped results
  this carries aggregates only (counts, points, per-assignee/status
  breakdowns, frequent topics), never the rows themselves; the UI gets the
  rows through the structured payloads instead.
- for_human: a one-line digest for the reasoning log.
- structured: zero or more UI payloads (issue_list, activity_list,
  epic_progress).

Pure functions, no I/O. Unknown tool names pass through unchanged.
"""

from __future__ import annotations

import json
import re
from collections import Counter
from typing import Any

from sprintwise.api.models import CondensedResult

UI_LIST_NOTICE = (
    "UI DISPLAYS FULL ISSUE LIST - do NOT list issue names/summaries in your response. "
    "Reference topics/assignees/statuses above for analysis."
)
MAX_TOPICS = 8

STOP_WORDS = frozenset(
    """
    the a an and or but in on at to for of with by from as is was are were been be
    have has had do does did will would could should may might must shall can need
    this that these those i you he she it we they what which who whom where when why
    how all each every both few more most other some such no nor not only own same so
    than too very just also now new first last get set add update fix create delete
    remove dev spike
    """.split()
)

_BRACKETS = re.compile(r"[\[\](){}]")
_NON_WORD = re.compile(r"[^a-zA-Z0-9\s-]")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _num(value: Any) -> int | float:
    """Render point totals without a trailing .0."""
    if value is None:
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return int(number) if number.is_integer() else number


def _points(issues: list[dict[str, Any]]) -> int | float:
    return _num(sum(_num(i.get("story_points")) for i in issues))


def _display_name(assignee: str) -> str:
    return assignee.split("@")[0].replace(".", " ", 1)


def _to_text(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    return json.dumps(raw, default=str)


def extract_topics(summaries: list[str]) -> list[tuple[str, int]]:
    """Frequent 2- and 3-word phrases across issue summaries.

    Returns (phrase, count) pairs with count >= 2, most frequent first.
    """
    counts: Counter[str] = Counter()
    for summary in summaries:
        cleaned = _NON_WORD.sub("", _BRACKETS.sub(" ", summary or "")).lower()
        words = [w for w in cleaned.split() if len(w) > 2]

        for i in range(len(words) - 1):
            if words[i] in STOP_WORDS or words[i + 1] in STOP_WORDS:
                continue
            counts[f"{words[i]} {words[i + 1]}"] += 1

        # trigrams may carry a stop word in the middle ("login with sso")
        for i in range(len(words) - 2):
            if words[i] in STOP_WORDS or words[i + 2] in STOP_WORDS:
                continue
            counts[f"{words[i]} {words[i + 1]} {words[i + 2]}"] += 1

    frequent = [(phrase, c) for phrase, c in counts.items() if c >= 2]
    frequent.sort(key=lambda pc: -pc[1])
    return frequent


def _sprint_entries(result: dict[str, Any]) -> list[tuple[str, list[dict[str, Any]], int]]:
    entries = []
    for name, sprint in (result.get("sprints") or {}).items():
        issues = list((sprint or {}).get("issues") or [])
        count = sprint.get("issue_count", len(issues)) if sprint else 0
        entries.append((name, issues, count))
    return entries


def _sprint_totals(result: dict[str, Any]) -> tuple[int, int | float]:
    entries = _sprint_entries(result)
    all_issues = [i for _, issues, _ in entries for i in issues]
    total_issues = result.get("total_issues")
    if total_issues is None:
        total_issues = len(all_issues)
    total_points = result.get("total_story_points")
    total_points = _points(all_issues) if total_points is None else _num(total_points)
    return total_issues, total_points


# ---------------------------------------------------------------------------
# for_llm
# ---------------------------------------------------------------------------


def _condense_sprint_issues(result: dict[str, Any], args: dict[str, Any]) -> str:
    entries = _sprint_entries(result)
    total_issues, total_points = _sprint_totals(result)
    all_issues = [i for _, issues, _ in entries for i in issues]

    lines = [f"SUMMARY: {total_issues} issues | {total_points} story points", ""]

    if len(entries) > 1:
        lines.append("SPRINT BREAKDOWN (sorted by points, lowest first):")
        stats = sorted(((name, count, _points(issues)) for name, issues, count in entries), key=lambda s: s[2])
        for name, count, pts in stats:
            lines.append(f"- {name}: {count} issues, {pts} pts")
        lines.append("")

    by_assignee: dict[str, list[float]] = {}
    for issue in all_issues:
        entry = by_assignee.setdefault(issue.get("assignee") or "Unassigned", [0, 0])
        entry[0] += _num(issue.get("story_points"))
        entry[1] += 1
    ranked = sorted(by_assignee.items(), key=lambda kv: -kv[1][0])

    if args.get("include_breakdown") is True:
        top_name, top_pts = (_display_name(ranked[0][0]), _num(ranked[0][1][0])) if ranked else ("N/A", 0)
        lines.append(f"TOP PERFORMER: {top_name} ({top_pts} pts)")
        lines.append("COMPONENT DISPLAYS FULL BREAKDOWN - do not list assignees yourself.")
    else:
        lines.append("BREAKDOWN BY ASSIGNEE (sorted by points):")
        for assignee, (pts, tasks) in ranked:
            lines.append(f"- {_display_name(assignee)}: {_num(pts)} pts ({tasks} tasks)")

    topics = extract_topics([i.get("summary") or "" for i in all_issues])
    if topics:
        lines.append("")
        lines.append("TOP TOPICS (by frequency):")
        for phrase, count in topics[:MAX_TOPICS]:
            lines.append(f'- "{phrase}" ({count} issues)')

    statuses = Counter(i.get("status") or "Unknown" for i in all_issues)
    lines.append("")
    lines.append("STATUS BREAKDOWN:")
    for status, count in statuses.most_common():
        lines.append(f"- {status}: {count}")

    lines.append("")
    lines.append(UI_LIST_NOTICE)
    return "\n".join(lines)


def _condense_prepare_issues(result: dict[str, Any]) -> str:
    if not result.get("ready_for_creation"):
        return _to_text(result)

    issues = []
    for item in result.get("preview") or []:
        # drop empty fields so the create call carries only what was mapped
        issues.append({k: v for k, v in item.items() if v not in (None, "", [])})
    preview_count = len(issues)
    return (
        f"Ready to create {preview_count} issues. "
        f"Call create_issues with: {json.dumps({'issues': issues})}"
    )


def _condense_cached(result: dict[str, Any]) -> str:
    issues = result.get("issues") or []
    if issues:
        return (
            f"RESULT: {len(issues)} issues ({_points(issues)} story points). "
            "UI DISPLAYS THE LIST - do NOT list issue names/summaries in your response."
        )
    return str(result.get("message", ""))


def condense_for_llm(tool_name: str, result: Any, args: dict[str, Any] | None = None) -> str:
    """The tool-response content appended to the conversation."""
    args = args or {}
    if isinstance(result, dict):
        if tool_name == "get_sprint_issues":
            return _condense_sprint_issues(result, args)
        if tool_name == "prepare_issues":
            return _condense_prepare_issues(result)
        if tool_name == "analyze_cached_data":
            return _condense_cached(result)
    return _to_text(result)


# ---------------------------------------------------------------------------
# for_human
# ---------------------------------------------------------------------------


def _summarize_prepare_search(data: dict[str, Any]) -> str:
    sprint_names = ", ".join(s.get("name", "") for s in data.get("sprints") or [])
    if data.get("all_team"):
        return f"All team ({len(data.get('team_members') or [])} members) | Sprints: {sprint_names}"

    people = []
    for person in data.get("people") or []:
        matches = person.get("possible_matches") or []
        if len(matches) > 1:
            people.append(f"{person.get('name')}: clarify ({' or '.join(matches)})")
        elif person.get("resolved_email"):
            people.append(f"{person.get('name')}: {person['resolved_email']}")
        else:
            people.append(f"{person.get('name')}: not found")
    return f"{', '.join(people)} | Sprints: {sprint_names}"


def _summarize_query(data: dict[str, Any]) -> str:
    summary = data.get("summary") or {}
    found = len(data.get("rows") or [])
    if "row_indices" in summary:
        requested = summary["row_indices"]
        if found == 0:
            return f"Rows {', '.join(str(r) for r in requested)} not found (CSV has {summary.get('total_rows', 0)} rows)"
        if len(requested) == 1:
            return f"Retrieved row {requested[0]}"
        return f"Retrieved {found} of {len(requested)} requested rows"

    applied = summary.get("filters_applied") or []
    text = f"Found {summary.get('filtered_rows', 0)} of {summary.get('total_rows', 0)} rows"
    if applied:
        text += f" (filtered by: {', '.join(applied)})"
    else:
        columns = list((summary.get("available_filters") or {}).keys())
        if columns:
            text += f" | Filterable columns: {', '.join(columns[:5])}"
    return text


def _summarize_prepare_issues(data: dict[str, Any]) -> str:
    errors = data.get("errors") or []
    if errors and not data.get("ready_for_creation"):
        return f"Error: {', '.join(errors)}"

    preview = data.get("preview") or []
    count = len(preview)
    text = f"Prepared {count} issue{'s' if count != 1 else ''}"
    if preview:
        first = str(preview[0].get("summary") or "")
        text += f' (e.g. "{first[:40]}{"..." if len(first) > 40 else ""}")'
    warnings = [e for e in errors if e.startswith("Warning")]
    if warnings:
        text += f" - {'; '.join(warnings)}"
    return text


def _summarize_write(tool_name: str, data: dict[str, Any]) -> str:
    verb = "Created" if tool_name == "create_issues" else "Updated"
    succeeded = data.get("succeeded", 0)
    failed = data.get("failed", 0)
    text = f"{verb} {succeeded} issue{'s' if succeeded != 1 else ''}"
    if failed:
        text += f", {failed} failed"
    return text


def summarize_for_human(tool_name: str, result: Any) -> str:
    """A short digest for the reasoning log."""
    if not result:
        return "No results found"
    if not isinstance(result, dict):
        return "Tool executed successfully"

    if tool_name == "prepare_search":
        return _summarize_prepare_search(result)
    if tool_name == "get_sprint_issues":
        total_issues, total_points = _sprint_totals(result)
        return f"SUMMARY: {total_issues} issues | {total_points} story points"
    if tool_name == "query_csv":
        return _summarize_query(result)
    if tool_name == "prepare_issues":
        return _summarize_prepare_issues(result)
    if tool_name == "analyze_cached_data":
        return str(result.get("message", ""))
    if tool_name == "get_activity":
        period = result.get("period") or {}
        return f"Found {result.get('total_changes', 0)} changes since {period.get('since', '?')}"
    if tool_name == "list_epics":
        return f"Found {result.get('total_epics', len(result.get('epics') or []))} epics"
    if tool_name in ("create_issues", "update_issues"):
        return _summarize_write(tool_name, result)
    return "Tool executed successfully"


# ---------------------------------------------------------------------------
# structured
# ---------------------------------------------------------------------------


def _issue_list(label: str, issues: list[dict[str, Any]], count: int | None = None,
                points: int | float | None = None, summary: str | None = None) -> dict[str, Any]:
    count = len(issues) if count is None else count
    points = _points(issues) if points is None else points
    return {
        "type": "issue_list",
        "summary": summary or f"{count} issues ({points} story points)",
        "total_issues": count,
        "total_story_points": points,
        "sprint_name": label,
        "issues": issues,
    }


def extract_structured(tool_name: str, result: Any) -> list[dict[str, Any]]:
    """UI payloads for a tool result (empty for tools without one)."""
    if not isinstance(result, dict):
        return []

    if tool_name == "get_sprint_issues":
        return [_issue_list(name, issues, count) for name, issues, count in _sprint_entries(result)]

    if tool_name == "analyze_cached_data":
        issues = result.get("issues") or []
        return [_issue_list("Filtered Results", issues)] if issues else []

    if tool_name == "get_activity":
        changes = result.get("changes") or []
        if not changes:
            return []
        return [{
            "type": "activity_list",
            "period": result.get("period"),
            "total_changes": result.get("total_changes", len(changes)),
            "changes": changes,
        }]

    if tool_name == "get_epic_progress":
        return [{
            "type": "epic_progress",
            "epic": result.get("epic"),
            "progress": result.get("progress"),
            "breakdown_by_status": result.get("breakdown_by_status"),
        }]

    if tool_name == "list_epics":
        epics = result.get("epics") or []
        if not epics:
            return []
        total = result.get("total_epics", len(epics))
        issues = [{**epic, "story_points": None, "issue_type": "Epic"} for epic in epics]
        return [_issue_list("Project Epics", issues, total, 0, summary=f"{total} epics")]

    return []


def condense(tool_name: str, result: Any, args: dict[str, Any] | None = None) -> CondensedResult:
    """Reshape one raw tool result. Total over all tool names."""
    return CondensedResult(
        for_llm=condense_for_llm(tool_name, result, args),
        for_human=summarize_for_human(tool_name, result),
        structured=extract_structured(tool_name, result),
    )
