"""Unit tests for sprintwise/tools/tabular.py -- query_csv and prepare_issues.

Pure functions over in-memory rows; no fixtures beyond sample data.
"""

import pytest

from sprintwise.api.schemas import PrepareIssuesArgs, QueryCsvArgs, ToolValidationError
from sprintwise.tools.tabular import (
    compute_available_filters,
    find_column,
    parse_row_range,
    prepare_issues,
    query_rows,
)

ROWS = [
    {"Title": "Login page", "Team": "Web", "Notes": "first"},
    {"Title": "Signup flow", "Team": "Web", "Notes": ""},
    {"Title": "Push alerts", "Team": "Mobile", "Notes": "third"},
    {"Title": "Offline mode", "Team": "Mobile", "Notes": ""},
]


# ---------------------------------------------------------------------------
# parse_row_range
# ---------------------------------------------------------------------------


class TestParseRowRange:
    def test_simple_range(self):
        assert parse_row_range("2-3", 4) == [2, 3]

    def test_end_clamped_to_data_length(self):
        assert parse_row_range("1-10", 4) == [1, 2, 3, 4]

    def test_reversed_range_rejected(self):
        assert parse_row_range("5-3", 10) is None

    def test_zero_start_rejected(self):
        assert parse_row_range("0-2", 4) is None

    def test_start_beyond_data_rejected(self):
        assert parse_row_range("7-9", 4) is None

    def test_malformed_rejected(self):
        assert parse_row_range("1..4", 4) is None
        assert parse_row_range("abc", 4) is None

    def test_whitespace_tolerated(self):
        assert parse_row_range(" 1-2 ", 4) == [1, 2]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestColumns:
    def test_find_column_case_insensitive(self):
        assert find_column(["Title", "Team"], "title") == "Title"
        assert find_column(["Title"], "missing") is None

    def test_available_filters_skip_sparse_columns(self):
        rows = [{"A": "x", "B": ""} for _ in range(9)] + [{"A": "y", "B": "z"}]
        filters = compute_available_filters(rows, ["A", "B"])
        assert filters == {"A": ["x", "y"]}

    def test_available_filters_skip_high_cardinality(self):
        rows = [{"Id": str(i)} for i in range(30)]
        assert compute_available_filters(rows, ["Id"]) == {}

    def test_available_filters_show_first_ten_sorted(self):
        rows = [{"Tag": f"t{i:02d}"} for i in range(15)]
        values = compute_available_filters(rows, ["Tag"])["Tag"]
        assert values == [f"t{i:02d}" for i in range(10)]


# ---------------------------------------------------------------------------
# query_rows
# ---------------------------------------------------------------------------


class TestQueryRows:
    def test_no_rows(self):
        result = query_rows(None, QueryCsvArgs())
        assert result["rows"] == []
        assert result["summary"]["total_rows"] == 0

    def test_range_reports_requested_and_clamped(self):
        result = query_rows(ROWS, QueryCsvArgs(row_range="1-10"))
        assert len(result["rows"]) == 4
        assert result["summary"]["filters_applied"] == ["rows 1-10 (clamped to 1-4)"]

    def test_exact_range_not_marked_clamped(self):
        result = query_rows(ROWS, QueryCsvArgs(row_range="2-3"))
        assert [r["Title"] for r in result["rows"]] == ["Signup flow", "Push alerts"]
        assert result["summary"]["filters_applied"] == ["rows 2-3"]

    def test_invalid_range_raises(self):
        with pytest.raises(ToolValidationError, match="Invalid row_range"):
            query_rows(ROWS, QueryCsvArgs(row_range="5-3"))

    def test_row_indices_drop_out_of_range(self):
        result = query_rows(ROWS, QueryCsvArgs(row_indices=[1, 9, 3]))
        assert [r["Title"] for r in result["rows"]] == ["Login page", "Push alerts"]
        assert result["summary"]["row_indices"] == [1, 9, 3]
        assert result["summary"]["filtered_rows"] == 2

    def test_row_index_alias_accepts_single_value(self):
        args = QueryCsvArgs.model_validate({"rowIndex": 2})
        result = query_rows(ROWS, args)
        assert result["rows"] == [ROWS[1]]

    def test_contains_filter(self):
        result = query_rows(ROWS, QueryCsvArgs(filters={"Team": "mob"}))
        assert result["summary"]["filtered_rows"] == 2
        assert result["summary"]["filters_applied"] == ['Team="mob"']
        assert "Team" in result["summary"]["available_filters"]

    def test_list_filter(self):
        result = query_rows(ROWS, QueryCsvArgs(filters={"Title": ["login", "offline"]}))
        assert [r["Title"] for r in result["rows"]] == ["Login page", "Offline mode"]
        assert result["summary"]["filters_applied"] == ["Title IN [login, offline]"]

    def test_limit(self):
        result = query_rows(ROWS, QueryCsvArgs(limit=1))
        assert len(result["rows"]) == 1
        assert result["summary"]["filtered_rows"] == 4


# ---------------------------------------------------------------------------
# prepare_issues
# ---------------------------------------------------------------------------


def _prepare(**kwargs):
    return prepare_issues(ROWS, PrepareIssuesArgs.model_validate(kwargs))


class TestPrepareIssues:
    def test_ready_preview(self):
        result = _prepare(
            row_range="1-2",
            mapping={"summary_column": "title", "description_column": "Notes", "sprint_id": 42},
        )
        assert result["ready_for_creation"] is True
        assert result["errors"] == []
        first = result["preview"][0]
        assert first["summary"] == "Login page"
        assert first["description"] == "first"
        assert first["sprint_id"] == 42
        assert first["issue_type"] == "Story"

    def test_no_rows(self):
        result = prepare_issues([], PrepareIssuesArgs(row_range="1-2"))
        assert result["ready_for_creation"] is False
        assert result["errors"] == ["No CSV data available"]

    def test_requires_rows_selection(self):
        result = _prepare(mapping={"summary_column": "Title"})
        assert result["errors"] == ["row_range or row_indices is required"]

    def test_requires_mapping(self):
        result = _prepare(row_range="1-2")
        assert result["errors"] == ["mapping is required"]

    def test_unknown_summary_column(self):
        result = _prepare(row_range="1-2", mapping={"summary_column": "Name"})
        assert result["ready_for_creation"] is False
        assert 'Column "Name" not found' in result["errors"][0]

    def test_invalid_range(self):
        result = _prepare(row_range="3-1", mapping={"summary_column": "Title"})
        assert result["ready_for_creation"] is False
        assert "Invalid row_range" in result["errors"][0]

    def test_missing_description_column_is_warning(self):
        result = _prepare(row_range="1-1", mapping={"summary_column": "Title", "description_column": "Body"})
        assert result["ready_for_creation"] is True
        assert result["errors"][0].startswith("Warning")

    def test_out_of_range_index_blocks_creation(self):
        result = _prepare(row_indices=[1, 8], mapping={"summary_column": "Title"})
        assert len(result["preview"]) == 1
        assert result["errors"] == ["Row 8 out of range (1-4)"]
        assert result["ready_for_creation"] is False

    def test_fix_versions_from_column(self):
        result = _prepare(row_range="1-1", mapping={"summary_column": "Title", "fix_versions": "Team"})
        assert result["preview"][0]["fix_versions"] == ["Web"]

    def test_fix_versions_literal_list(self):
        result = _prepare(row_range="1-1", mapping={"summary_column": "Title", "fix_versions": ["v2"]})
        assert result["preview"][0]["fix_versions"] == ["v2"]
