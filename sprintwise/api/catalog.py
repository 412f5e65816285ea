"""Tool catalog: names, classes and JSON schemas offered to the LLM.

Descriptions are what the model sees when choosing a tool; keep them
short and example-driven.
"""

from __future__ import annotations

from typing import Any

WRITE_TOOLS = frozenset({"create_issues", "update_issues"})
TABULAR_TOOLS = frozenset({"query_csv", "prepare_issues"})

# Keywords that keep a tabular conversation going without asking the classifier
TABULAR_CONTEXT_KEYWORDS = ("csv", "row", "rows", "file", "spreadsheet", "upload", "column")
# Keywords that unlock the tabular tools for the current turn
TABULAR_TOOL_KEYWORDS = ("csv", "spreadsheet", "file", "import", "rows", "upload")


def _fn(name: str, description: str, properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required or [],
            },
        },
    }


_ISSUE_FIELDS: dict[str, Any] = {
    "summary": {"type": "string", "description": "Issue title"},
    "description": {"type": "string", "description": "Issue description"},
    "issue_type": {"type": "string", "description": "Story (default) or Bug"},
    "assignee": {"type": "string", "description": "Assignee name from TEAM MEMBERS"},
    "sprint_id": {"type": "number", "description": "Sprint ID (defaults to active sprint)"},
    "story_points": {"type": "number", "description": "Story point estimate"},
    "status": {"type": "string", "description": "Status from AVAILABLE STATUSES"},
    "priority": {"type": "string", "description": "Priority, e.g. 'High', 'Medium', 'Low'"},
    "labels": {"type": "array", "items": {"type": "string"}},
    "fix_versions": {"type": "array", "items": {"type": "string"}},
    "components": {"type": "array", "items": {"type": "string"}},
    "due_date": {"type": "string", "description": "YYYY-MM-DD"},
    "parent_key": {"type": "string", "description": "Parent/epic key"},
}

TOOL_SCHEMAS: list[dict[str, Any]] = [
    _fn(
        "list_sprints",
        "Get available sprints with their IDs. Call this FIRST when the user mentions sprints. "
        "The 'id' is a 4-5 digit number; use it with get_sprint_issues.",
        {
            "state": {"type": "string", "description": "'active', 'closed' or 'all' (default 'all')"},
            "limit": {"type": "number", "description": "Max sprints (default 20)"},
        },
    ),
    _fn(
        "get_context",
        "Get team members, statuses, priorities, versions and components.",
        {},
    ),
    _fn(
        "prepare_search",
        "Resolve people names to emails. prepare_search() returns the whole team for the active sprint.",
        {
            "names": {"type": "array", "items": {"type": "string"}, "description": "Names to resolve"},
            "sprint_ids": {"type": "array", "items": {"type": "number"}},
        },
    ),
    _fn(
        "get_sprint_issues",
        "Get issues from sprints with filtering. "
        "include_breakdown=true shows an assignee chart (productivity questions only).",
        {
            "sprint_ids": {"type": "array", "items": {"type": "number"}},
            "assignees": {"type": "array", "items": {"type": "string"}},
            "status_filters": {"type": "array", "items": {"type": "string"}},
            "keyword": {"type": "string", "description": "Filter by keyword in summary"},
            "include_breakdown": {"type": "boolean"},
        },
        ["sprint_ids"],
    ),
    _fn(
        "get_issue",
        "Get details of a specific issue by key, including comments.",
        {"issue_key": {"type": "string", "description": "e.g. PROJ-1097"}},
        ["issue_key"],
    ),
    _fn(
        "get_activity",
        "Get status changes for issues since a date, e.g. get_activity(since: '2025-12-01', to_status: 'Done').",
        {
            "since": {"type": "string", "description": "YYYY-MM-DD"},
            "sprint_ids": {"type": "array", "items": {"type": "number"}},
            "to_status": {"type": "string"},
            "assignees": {"type": "array", "items": {"type": "string"}},
        },
        ["since"],
    ),
    _fn(
        "list_epics",
        "List the project's epics.",
        {},
    ),
    _fn(
        "get_epic_progress",
        "Get completion progress of an epic, broken down by status.",
        {
            "epic_key": {"type": "string"},
            "include_subtasks": {"type": "boolean"},
        },
        ["epic_key"],
    ),
    _fn(
        "analyze_cached_data",
        "Analyze previously fetched issues without new API calls. "
        "operation: count | filter | sum | group; field: story_points | status | assignee; "
        "condition: {gt, gte, lt, lte, eq}.",
        {
            "operation": {"type": "string"},
            "field": {"type": "string"},
            "condition": {"type": "object"},
        },
        ["operation"],
    ),
    _fn(
        "query_csv",
        "Query the uploaded CSV file to EXPLORE data, e.g. query_csv({row_range: '100-200'}), "
        "query_csv({rowIndices: [103, 105]}), query_csv({filters: {'Status': 'Done'}}).",
        {
            "row_range": {"type": "string", "description": "e.g. '100-200'"},
            "rowIndices": {"type": "array", "items": {"type": "number"}, "description": "1-based row numbers"},
            "filters": {"type": "object", "description": "Column filters: string (contains) or array (any match)"},
            "limit": {"type": "number", "description": "Max rows to return (default 50)"},
        },
    ),
    _fn(
        "prepare_issues",
        "Prepare issues from CSV rows for creation. For 10+ rows ALWAYS use row_range. "
        "mapping: {summary_column, description_column, assignee, story_points, sprint_id, "
        "issue_type, priority, labels, fix_versions (column name or array), components, due_date}.",
        {
            "row_range": {"type": "string"},
            "row_indices": {"type": "array", "items": {"type": "number"}},
            "mapping": {"type": "object"},
        },
        ["mapping"],
    ),
    _fn(
        "create_issues",
        "Create issues in bulk. REQUIRES USER CONFIRMATION. Use prepare_issues first when importing from CSV.",
        {"issues": {"type": "array", "items": {"type": "object", "properties": _ISSUE_FIELDS}}},
        ["issues"],
    ),
    _fn(
        "update_issues",
        "Update existing issues in bulk (issue_key required per item). REQUIRES USER CONFIRMATION.",
        {"issues": {"type": "array", "items": {"type": "object", "properties": _ISSUE_FIELDS}}},
        ["issues"],
    ),
]

TOOL_NAMES: tuple[str, ...] = tuple(s["function"]["name"] for s in TOOL_SCHEMAS)


def tool_catalog(include_tabular: bool) -> list[dict[str, Any]]:
    """Tool definitions for one LLM call; tabular tools only when unlocked."""
    if include_tabular:
        return list(TOOL_SCHEMAS)
    return [s for s in TOOL_SCHEMAS if s["function"]["name"] not in TABULAR_TOOLS]


def mentions_any(text: str, keywords: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(kw in lowered for kw in keywords)
