"""Write-action gate.

Create/update calls proposed by the model are never executed inside the
tool loop. The gate turns them into a PendingAction, hands it to the
client and ends the turn. The only path that mutates the tracker is
execute_confirmed(), reached from a separate request that carries the
action back.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncGenerator
from typing import Any, Protocol

from sprintwise.api.catalog import WRITE_TOOLS
from sprintwise.api.condense import summarize_for_human
from sprintwise.api.models import AgentEvent, PendingAction, ReviewVerdict, ToolCall
from sprintwise.api.schemas import CreateIssuesArgs, ToolValidationError, UpdateIssuesArgs, dump_args, parse_tool_args
from sprintwise.api.tools import ExecutionContext, ToolExecutor
from sprintwise.events import CancellationToken

logger = logging.getLogger(__name__)

WriteArgs = CreateIssuesArgs | UpdateIssuesArgs


class MutationAuditor(Protocol):
    async def audit_mutation(self, request: str, tool_name: str, args: dict[str, Any]) -> ReviewVerdict: ...


def _verb(tool_name: str, past: bool = False) -> str:
    if tool_name == "create_issues":
        return "created" if past else "create"
    return "updated" if past else "update"


def result_message(tool_name: str, result: Any) -> str:
    """One-line outcome of a confirmed write, counting partial success."""
    data = result if isinstance(result, dict) else {}
    succeeded = int(data.get("succeeded") or 0)
    failed = int(data.get("failed") or 0)
    results = data.get("results") or []

    if failed:
        message = f"Completed with {succeeded} succeeded, {failed} failed."
        errors = "; ".join(
            f"{r.get('key') or 'Unknown'}: {r['error']}" for r in results if r.get("error")
        )
        if errors:
            message += f" Errors: {errors}"
        return message

    if succeeded:
        message = f"Successfully {_verb(tool_name, past=True)} {succeeded} issue{'s' if succeeded != 1 else ''}."
        keys = ", ".join(r["key"] for r in results if r.get("key"))
        if keys:
            message += f" Keys: {keys}"
        return message

    return "No issues were changed."


class WriteActionGate:
    """Intercepts write-tool calls and runs confirmed actions."""

    def __init__(self, executor: ToolExecutor, auditor: MutationAuditor | None = None) -> None:
        self._executor = executor
        self._auditor = auditor

    @staticmethod
    def is_write(tool_name: str) -> bool:
        return tool_name in WRITE_TOOLS

    def validate(self, tool_name: str, arguments: dict[str, Any] | None) -> WriteArgs:
        """Validate a write call. Raises ToolValidationError."""
        if not self.is_write(tool_name):
            raise ToolValidationError(f"Not a write tool: {tool_name}")
        return parse_tool_args(tool_name, arguments)  # type: ignore[return-value]

    def build_pending(self, tool_name: str, args: WriteArgs, audit: ReviewVerdict | None = None) -> PendingAction:
        return PendingAction(
            id=str(uuid.uuid4()),
            tool_name=tool_name,
            issues=[issue.model_dump() for issue in args.issues],
            audit=audit,
        )

    # ------------------------------------------------------------------
    # Pause
    # ------------------------------------------------------------------

    async def intercept(
        self,
        call: ToolCall,
        *,
        assistant_text: str = "",
        user_question: str | None = None,
        audit_enabled: bool = False,
    ) -> AsyncGenerator[AgentEvent, None]:
        """Emit the preview of a write call and end the turn.

        Raises ToolValidationError before emitting anything if the call's
        arguments do not validate.
        """
        args = self.validate(call.name, call.arguments)

        if assistant_text:
            yield AgentEvent(type="chunk", content=assistant_text)
        yield AgentEvent(type="reasoning", content=f"Preparing to {_verb(call.name)} issues...")
        yield AgentEvent(type="tool_call", tool=call.name, arguments=call.arguments)

        audit = None
        if audit_enabled and user_question and self._auditor is not None:
            yield AgentEvent(type="reasoning", content="Auditing mutation arguments...")
            audit = await self._auditor.audit_mutation(user_question, call.name, dump_args(args))
            if audit.passed:
                yield AgentEvent(type="reasoning", content=f"Auditor: ✓ {audit.reason or 'Arguments match request'}")
            else:
                yield AgentEvent(type="warning", content=f"Auditor: ⚠ {audit.reason or 'Argument mismatch'}")

        pending = self.build_pending(call.name, args, audit)
        logger.info("Write action %s pending confirmation (%s, %d issues)", pending.id, call.name, len(pending.issues))
        yield AgentEvent(type="confirmation_required", pending_action=pending)
        yield AgentEvent(type="done")

    # ------------------------------------------------------------------
    # Confirmed execution
    # ------------------------------------------------------------------

    async def execute_confirmed(
        self,
        tool_name: str,
        issues: list[dict[str, Any]],
        ctx: ExecutionContext,
        token: CancellationToken | None = None,
    ) -> AsyncGenerator[AgentEvent, None]:
        """Run a client-confirmed write, bypassing the model entirely."""
        yield AgentEvent(type="tool_call", tool=tool_name, arguments={"issues": issues})

        try:
            args = self.validate(tool_name, {"issues": issues})
            if token is not None and token.cancelled:
                logger.info("Confirmed %s cancelled before execution", tool_name)
                return
            result = await self._executor.execute(tool_name, args, ctx, confirmed=True)
        except Exception as e:
            logger.error("Confirmed %s failed: %s", tool_name, e)
            yield AgentEvent(type="error", content=str(e) or "Tool execution failed")
            yield AgentEvent(type="done")
            return

        yield AgentEvent(type="tool_result", tool=tool_name, content=summarize_for_human(tool_name, result))
        yield AgentEvent(type="chunk", content=result_message(tool_name, result))
        yield AgentEvent(type="done")
