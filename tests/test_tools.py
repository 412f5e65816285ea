"""Tests for ToolExecutor -- validation, local routing, remote delegation."""

from unittest.mock import AsyncMock

import pytest

from sprintwise.api.models import CachedData, SideChannel
from sprintwise.api.schemas import ToolValidationError
from sprintwise.api.tools import ExecutionContext, ToolExecutor, register_local_tools
from sprintwise.tools.cached import NO_CACHE_MESSAGE


@pytest.fixture
def remote():
    mock = AsyncMock()
    mock.execute.return_value = {"sprints": []}
    return mock


@pytest.fixture
def executor(remote):
    executor = ToolExecutor(remote)
    register_local_tools(executor)
    return executor


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegistration:
    async def test_local_tools_run_without_remote(self):
        executor = ToolExecutor()
        register_local_tools(executor)
        args = executor.validate("analyze_cached_data", {"operation": "count"})
        result = await executor.execute("analyze_cached_data", args, ExecutionContext())
        assert result == {"message": NO_CACHE_MESSAGE}

    def test_register_unknown_name_rejected(self, executor):
        with pytest.raises(ValueError, match="Unknown tool"):
            executor.register("rm_rf", lambda args, side: None)

    def test_is_known(self, executor):
        assert executor.is_known("get_issue")
        assert not executor.is_known("rm_rf")


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class TestExecute:
    async def test_remote_tool_delegated_with_dumped_args(self, executor, remote):
        args = executor.validate("list_sprints", {"state": "active"})
        ctx = ExecutionContext(credential="tok", config_id="cfg-1")

        result = await executor.execute("list_sprints", args, ctx)

        assert result == {"sprints": []}
        remote.execute.assert_awaited_once_with("list_sprints", {"state": "active"}, "tok", "cfg-1")

    async def test_local_tool_reads_side_channel(self, executor, remote):
        side = SideChannel(rows=[{"Title": "A"}, {"Title": "B"}])
        args = executor.validate("query_csv", {"limit": 1})

        result = await executor.execute("query_csv", args, ExecutionContext(side_channel=side))

        assert result["rows"] == [{"Title": "A"}]
        remote.execute.assert_not_called()

    async def test_cached_tool(self, executor):
        side = SideChannel(cached=CachedData(issues=[{"key": "A-1", "story_points": 3}]))
        args = executor.validate("analyze_cached_data", {"operation": "sum", "field": "story_points"})

        result = await executor.execute("analyze_cached_data", args, ExecutionContext(side_channel=side))

        assert result["message"] == "Total story points: 3 (from 1 issues)"

    async def test_write_tool_refused_without_confirmation(self, executor, remote):
        args = executor.validate("create_issues", {"issues": [{"summary": "A"}]})
        with pytest.raises(PermissionError, match="requires client confirmation"):
            await executor.execute("create_issues", args, ExecutionContext())
        remote.execute.assert_not_called()

    async def test_write_tool_confirmed(self, executor, remote):
        remote.execute.return_value = {"succeeded": 1, "failed": 0, "results": []}
        args = executor.validate("create_issues", {"issues": [{"summary": "A"}]})

        await executor.execute("create_issues", args, ExecutionContext(), confirmed=True)

        remote.execute.assert_awaited_once_with("create_issues", {"issues": [{"summary": "A"}]}, "", "")

    async def test_no_remote_configured(self):
        executor = ToolExecutor()
        args = executor.validate("list_epics", {})
        with pytest.raises(RuntimeError, match="No remote executor"):
            await executor.execute("list_epics", args, ExecutionContext())

    def test_validate_unknown(self, executor):
        with pytest.raises(ToolValidationError, match="Unknown tool"):
            executor.validate("nope", {})

    async def test_remote_error_propagates(self, executor, remote):
        remote.execute.side_effect = RuntimeError("boom")
        args = executor.validate("get_issue", {"issue_key": "A-1"})
        with pytest.raises(RuntimeError, match="boom"):
            await executor.execute("get_issue", args, ExecutionContext())
