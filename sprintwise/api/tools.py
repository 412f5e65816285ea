"""Tool registry and executor.

Provides:
- ToolExecutor: validates arguments into per-tool models and routes each
  call to a local handler or to the remote tool service
- register_local_tools(): wires the side-channel tools (query_csv,
  prepare_issues, analyze_cached_data)

Write tools are refused unless the caller passes confirmed=True; only the
confirmed-action path does.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import BaseModel

from sprintwise.api.catalog import TOOL_NAMES, WRITE_TOOLS
from sprintwise.api.models import SideChannel
from sprintwise.api.schemas import ToolValidationError, dump_args, parse_tool_args
from sprintwise.tools.cached import analyze_cached_data
from sprintwise.tools.tabular import prepare_issues, query_rows

logger = logging.getLogger(__name__)

LocalHandler = Callable[[BaseModel, SideChannel], Any]


class RemoteExecutor(Protocol):
    async def execute(
        self, tool_name: str, arguments: dict[str, Any], credential: str, config_id: str
    ) -> Any: ...


@dataclass
class ExecutionContext:
    """Per-request data a tool call may need."""

    credential: str = ""
    config_id: str = ""
    side_channel: SideChannel = field(default_factory=SideChannel)


class ToolExecutor:
    """Validates and executes tool calls.

    Local handlers are plain callables taking (args_model, side_channel);
    every other known tool is delegated to the remote executor.
    """

    def __init__(self, remote: RemoteExecutor | None = None) -> None:
        self._remote = remote
        self._local: dict[str, LocalHandler] = {}

    def register(self, name: str, handler: LocalHandler) -> None:
        """Register a local handler for a catalog tool."""
        if name not in TOOL_NAMES:
            raise ValueError(f"Unknown tool: {name}")
        self._local[name] = handler

    def is_known(self, name: str) -> bool:
        return name in TOOL_NAMES

    def validate(self, name: str, arguments: dict[str, Any] | None) -> BaseModel:
        """Raises ToolValidationError for unknown names or bad arguments."""
        return parse_tool_args(name, arguments)

    async def execute(
        self,
        name: str,
        args: BaseModel,
        ctx: ExecutionContext,
        *,
        confirmed: bool = False,
    ) -> Any:
        """Execute a validated call and return the raw result.

        Errors propagate to the caller (ToolExecutionError from the
        service, ToolValidationError from local handlers).
        """
        if name in WRITE_TOOLS and not confirmed:
            raise PermissionError(f"{name} requires client confirmation")

        handler = self._local.get(name)
        if handler is not None:
            logger.debug("Local tool %s", name)
            return handler(args, ctx.side_channel)

        if not self.is_known(name):
            raise ToolValidationError(f"Unknown tool: {name}")
        if self._remote is None:
            raise RuntimeError(f"No remote executor configured for {name}")

        logger.debug("Remote tool %s (config=%s)", name, ctx.config_id)
        return await self._remote.execute(name, dump_args(args), ctx.credential, ctx.config_id)


# ---------------------------------------------------------------------------
# Local side-channel tools
# ---------------------------------------------------------------------------


def register_local_tools(executor: ToolExecutor) -> None:
    executor.register("query_csv", lambda args, side: query_rows(side.rows, args))
    executor.register("prepare_issues", lambda args, side: prepare_issues(side.rows, args))
    executor.register("analyze_cached_data", lambda args, side: analyze_cached_data(side.cached, args))
