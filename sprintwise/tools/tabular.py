"""Local tools over uploaded tabular rows: query_csv and prepare_issues.

Pure functions over already-parsed rows (list of column -> value dicts).
No I/O. Row numbers are 1-based everywhere.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from sprintwise.api.schemas import PrepareIssuesArgs, QueryCsvArgs, ToolValidationError

logger = logging.getLogger(__name__)

MAX_UNIQUE_VALUES_FOR_FILTER = 20
MAX_VALUES_TO_SHOW = 10
MIN_FILL_RATE = 0.3
DEFAULT_QUERY_LIMIT = 50
DEFAULT_ISSUE_TYPE = "Story"

_ROW_RANGE = re.compile(r"^(\d+)-(\d+)$")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def parse_row_range(range_str: str, max_rows: int) -> list[int] | None:
    """Parse "start-end" into 1-based row numbers, clamping end to max_rows.

    Returns None for malformed input, start < 1, end < start or a start
    beyond the data.
    """
    match = _ROW_RANGE.match(range_str.strip())
    if not match:
        return None
    start, end = int(match.group(1)), int(match.group(2))
    if start < 1 or end < start or start > max_rows:
        return None
    return list(range(start, min(end, max_rows) + 1))


def _describe_range(range_str: str, indices: list[int]) -> str:
    requested = f"rows {range_str.strip()}"
    actual = f"{indices[0]}-{indices[-1]}"
    if range_str.strip() != actual:
        return f"{requested} (clamped to {actual})"
    return requested


def find_column(columns: list[str], name: str) -> str | None:
    """Case-insensitive column lookup; returns the column's real name."""
    lowered = name.lower()
    for col in columns:
        if col.lower() == lowered:
            return col
    return None


def compute_available_filters(rows: list[dict[str, str]], columns: list[str]) -> dict[str, list[str]]:
    """Columns worth filtering on, with a sample of their values.

    A column qualifies when at least 30% of rows fill it and it has no
    more than MAX_UNIQUE_VALUES_FOR_FILTER distinct values.
    """
    available: dict[str, list[str]] = {}
    if not rows:
        return available

    for column in columns:
        unique: set[str] = set()
        filled = 0
        for row in rows:
            value = str(row.get(column) or "").strip()
            if value:
                unique.add(value)
                filled += 1
            if len(unique) > MAX_UNIQUE_VALUES_FOR_FILTER:
                break

        if filled / len(rows) < MIN_FILL_RATE:
            continue
        if 0 < len(unique) <= MAX_UNIQUE_VALUES_FOR_FILTER:
            available[column] = sorted(unique)[:MAX_VALUES_TO_SHOW]

    return available


def _cell(row: dict[str, Any], column: str) -> str:
    return str(row.get(column) or "").lower()


# ---------------------------------------------------------------------------
# query_csv
# ---------------------------------------------------------------------------


def query_rows(rows: list[dict[str, str]] | None, args: QueryCsvArgs) -> dict[str, Any]:
    """Look up rows by range, by explicit numbers, or by column filters."""
    if not rows:
        return {
            "rows": [],
            "summary": {"total_rows": 0, "filtered_rows": 0, "columns": [], "filters_applied": []},
        }

    total = len(rows)
    columns = list(rows[0].keys())

    if args.row_range:
        indices = parse_row_range(args.row_range, total)
        if indices is None:
            raise ToolValidationError(
                f'Invalid row_range "{args.row_range}". Use "start-end" with '
                f"1 <= start <= end and start <= {total}."
            )
        selected = [rows[i - 1] for i in indices]
        return {
            "rows": selected,
            "summary": {
                "total_rows": total,
                "filtered_rows": len(selected),
                "columns": columns,
                "filters_applied": [_describe_range(args.row_range, indices)],
            },
        }

    if args.row_indices is not None:
        requested = list(args.row_indices)
        selected = [rows[i - 1] for i in requested if 1 <= i <= total]
        return {
            "rows": selected,
            "summary": {
                "total_rows": total,
                "filtered_rows": len(selected),
                "columns": columns,
                "filters_applied": [],
                "row_indices": requested,
            },
        }

    filtered = rows
    applied: list[str] = []
    for column, value in (args.filters or {}).items():
        if value is None or value == "" or value == []:
            continue
        if isinstance(value, list):
            wanted = [str(v).lower() for v in value]
            filtered = [r for r in filtered if any(w in _cell(r, column) for w in wanted)]
            applied.append(f"{column} IN [{', '.join(str(v) for v in value)}]")
        else:
            wanted_one = str(value).lower()
            filtered = [r for r in filtered if wanted_one in _cell(r, column)]
            applied.append(f'{column}="{value}"')

    limit = args.limit or DEFAULT_QUERY_LIMIT
    return {
        "rows": filtered[:limit],
        "summary": {
            "total_rows": total,
            "filtered_rows": len(filtered),
            "columns": columns,
            "available_filters": compute_available_filters(rows, columns),
            "filters_applied": applied,
        },
    }


# ---------------------------------------------------------------------------
# prepare_issues
# ---------------------------------------------------------------------------


def _not_ready(*errors: str) -> dict[str, Any]:
    return {"preview": [], "ready_for_creation": False, "errors": list(errors)}


def prepare_issues(rows: list[dict[str, str]] | None, args: PrepareIssuesArgs) -> dict[str, Any]:
    """Build a creation preview from rows and a column mapping.

    Errors are returned in the result, not raised: the preview is the
    structured report the model reads to fix its mapping. Entries that
    start with "Warning" do not block creation.
    """
    if not rows:
        return _not_ready("No CSV data available")

    total = len(rows)
    if args.row_range:
        indices = parse_row_range(args.row_range, total)
        if indices is None:
            return _not_ready(f'Invalid row_range "{args.row_range}". Use format "1-100".')
    else:
        indices = list(args.row_indices or [])

    if not indices:
        return _not_ready("row_range or row_indices is required")

    mapping = args.mapping
    if mapping is None:
        return _not_ready("mapping is required")

    columns = list(rows[0].keys())
    if not mapping.summary_column:
        return _not_ready(f"summary_column is required. Available columns: {', '.join(columns)}")

    summary_col = find_column(columns, mapping.summary_column)
    if summary_col is None:
        return _not_ready(f'Column "{mapping.summary_column}" not found. Available: {", ".join(columns)}')

    errors: list[str] = []
    description_col = None
    if mapping.description_column:
        description_col = find_column(columns, mapping.description_column)
        if description_col is None:
            errors.append(
                f'Warning: Column "{mapping.description_column}" not found, description will be empty'
            )

    # fix_versions is either a column name or a literal list of versions
    fix_versions_col = None
    if isinstance(mapping.fix_versions, str):
        fix_versions_col = find_column(columns, mapping.fix_versions)

    preview: list[dict[str, Any]] = []
    for idx in indices:
        if idx < 1 or idx > total:
            errors.append(f"Row {idx} out of range (1-{total})")
            continue
        row = rows[idx - 1]

        fix_versions: list[str] | None = None
        if fix_versions_col and row.get(fix_versions_col):
            fix_versions = [row[fix_versions_col]]
        elif isinstance(mapping.fix_versions, list):
            fix_versions = mapping.fix_versions

        preview.append({
            "summary": row.get(summary_col) or f"Row {idx}",
            "description": (row.get(description_col) or "") if description_col else "",
            "assignee": mapping.assignee or "",
            "story_points": mapping.story_points,
            "sprint_id": mapping.sprint_id,
            "issue_type": mapping.issue_type or DEFAULT_ISSUE_TYPE,
            "priority": mapping.priority or None,
            "labels": mapping.labels or None,
            "fix_versions": fix_versions,
            "components": mapping.components or None,
            "due_date": mapping.due_date or None,
            "parent_key": mapping.parent_key or None,
        })

    blocking = [e for e in errors if not e.startswith("Warning")]
    logger.debug("Prepared %d issue(s) from %d requested rows", len(preview), len(indices))
    return {
        "preview": preview,
        "ready_for_creation": bool(preview) and not blocking,
        "errors": errors,
    }
