"""Tests for tool argument validation (sprintwise/api/schemas.py) and the catalog."""

import pytest

from sprintwise.api.catalog import TOOL_NAMES, WRITE_TOOLS, mentions_any, tool_catalog
from sprintwise.api.schemas import (
    CreateIssuesArgs,
    GetSprintIssuesArgs,
    QueryCsvArgs,
    ToolValidationError,
    UpdateIssuesArgs,
    dump_args,
    parse_tool_args,
)


class TestParseToolArgs:
    def test_unknown_tool(self):
        with pytest.raises(ToolValidationError, match="Unknown tool: delete_everything"):
            parse_tool_args("delete_everything", {})

    def test_dispatches_on_name(self):
        args = parse_tool_args("get_sprint_issues", {"sprint_ids": [4521], "assignees": ["alice"]})
        assert isinstance(args, GetSprintIssuesArgs)
        assert args.sprint_ids == [4521]

    def test_missing_required_field(self):
        with pytest.raises(ToolValidationError, match="Invalid arguments for get_sprint_issues"):
            parse_tool_args("get_sprint_issues", {"assignees": ["alice"]})

    def test_none_arguments(self):
        args = parse_tool_args("list_epics", None)
        assert dump_args(args) == {}

    def test_remote_args_pass_unknown_fields(self):
        args = parse_tool_args("list_sprints", {"state": "active", "board": 7})
        assert dump_args(args) == {"state": "active", "board": 7}

    def test_local_args_drop_unknown_fields(self):
        args = parse_tool_args("query_csv", {"limit": 3, "junk": True})
        assert dump_args(args) == {"limit": 3}


class TestWriteArgs:
    def test_create_requires_summary(self):
        with pytest.raises(ToolValidationError, match="summary is required for issue\\(s\\) \\[2\\]"):
            parse_tool_args("create_issues", {"issues": [{"summary": "A"}, {"description": "no title"}]})

    def test_create_requires_issues(self):
        with pytest.raises(ToolValidationError):
            parse_tool_args("create_issues", {"issues": []})

    def test_update_requires_key(self):
        with pytest.raises(ToolValidationError, match="issue_key is required"):
            parse_tool_args("update_issues", {"issues": [{"status": "Done"}]})

    def test_single_label_coerced_to_list(self):
        args = parse_tool_args("create_issues", {"issues": [{"summary": "A", "labels": "backend"}]})
        assert isinstance(args, CreateIssuesArgs)
        assert args.issues[0].labels == ["backend"]

    def test_dump_drops_tag_and_nulls(self):
        args = parse_tool_args("update_issues", {"issues": [{"issue_key": "APP-1", "status": "Done"}]})
        assert isinstance(args, UpdateIssuesArgs)
        assert dump_args(args) == {"issues": [{"issue_key": "APP-1", "status": "Done"}]}


class TestQueryCsvAliases:
    def test_camel_case_indices(self):
        args = QueryCsvArgs.model_validate({"rowIndices": [1, 2]})
        assert args.row_indices == [1, 2]

    def test_snake_case_indices(self):
        assert QueryCsvArgs.model_validate({"row_indices": [3]}).row_indices == [3]

    def test_single_index(self):
        assert QueryCsvArgs.model_validate({"rowIndex": "4"}).row_indices == [4]


class TestCatalog:
    def test_write_tools_in_catalog(self):
        assert WRITE_TOOLS <= set(TOOL_NAMES)

    def test_tabular_tools_hidden_by_default(self):
        names = {t["function"]["name"] for t in tool_catalog(include_tabular=False)}
        assert "query_csv" not in names
        assert "prepare_issues" not in names
        assert "analyze_cached_data" in names

    def test_tabular_tools_unlocked(self):
        assert len(tool_catalog(include_tabular=True)) == len(TOOL_NAMES)

    def test_mentions_any(self):
        assert mentions_any("Import the CSV please", ("csv",))
        assert not mentions_any("list sprints", ("csv",))
