"""Agent runner -- the tool-calling loop behind POST /ask.

One request, one turn:

1. Decide whether the new question continues the prior data context
   (ContinuityClassifier) and trim history if it does not.
2. Ask the model for the next action, up to max_tool_iterations times.
   A tool call is executed, condensed and fed back; a write-tool call is
   handed to the WriteActionGate and the turn ends; no tool call means
   the answer is streamed.
3. After the answer: token accounting and, when enabled, review.

Every path through run() ends with exactly one ``done`` event.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from datetime import datetime
from typing import Any, Protocol

from sprintwise.api.catalog import (
    TABULAR_CONTEXT_KEYWORDS,
    TABULAR_TOOL_KEYWORDS,
    mentions_any,
    tool_catalog,
)
from sprintwise.api.condense import condense
from sprintwise.api.gate import WriteActionGate
from sprintwise.api.llm import StreamChunk
from sprintwise.api.models import (
    AgentEvent,
    AuditContext,
    LLMResponse,
    ReviewVerdict,
    SideChannel,
    TokenUsage,
    Turn,
)
from sprintwise.api.schemas import ToolValidationError, dump_args
from sprintwise.api.tools import ExecutionContext, ToolExecutor
from sprintwise.cognitive.continuity import Continuity, ContinuityClassifier
from sprintwise.config import Settings
from sprintwise.events import CancellationToken

logger = logging.getLogger(__name__)

APOLOGY = "Sorry, I had trouble connecting to the AI. Please try again."


class ChatModel(Protocol):
    async def chat_with_tools(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]) -> LLMResponse: ...

    def stream_answer(self, messages: list[dict[str, Any]]) -> AsyncGenerator[StreamChunk, None]: ...


class Reviewer(Protocol):
    async def review(self, answer: str, ctx: AuditContext) -> ReviewVerdict: ...


SYSTEM_PROMPT = """You are a project-management assistant for an issue tracker. Answer questions about sprints, issues, epics and team activity, and create or update issues when asked.

Today is {today} ({timezone}).

Rules:
- Use prepare_search to resolve people's names before filtering by assignee.
- Tool results arrive as summaries; the UI already shows the full issue lists. Do not list issues one by one, answer with the numbers and highlights.
- For follow-up questions about data you already fetched, prefer analyze_cached_data over fetching again.
- create_issues and update_issues require user confirmation; call them once with all issues and wait.
- Keep answers short and concrete."""

TABULAR_PROMPT = """
Uploaded data:
- query_csv filters the uploaded rows (row_range like "1-10", row_indices, filters by column).
- prepare_issues maps rows to issues; call create_issues with exactly the arguments it returns."""


def _sum_points(values: Any) -> int | float:
    return sum(v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool))


def record_audit(ctx: AuditContext, tool_name: str, result: Any, args: dict[str, Any]) -> None:
    """Fold a tool result into the facts the answer reviewer checks."""
    if not isinstance(result, dict):
        return

    if tool_name == "get_sprint_issues":
        sprints = result.get("sprints") or {}
        issues = [
            {
                "key": issue.get("key"),
                "assignee": issue.get("assignee"),
                "points": issue.get("story_points"),
                "summary": issue.get("summary"),
            }
            for sprint in sprints.values()
            for issue in (sprint.get("issues") or [])
        ]
        ctx.issues = issues
        ctx.issue_count = result.get("total_issues", len(issues))
        ctx.total_points = result.get("total_story_points")
        if ctx.total_points is None:
            ctx.total_points = _sum_points(i["points"] for i in issues)
        ctx.sprint_name = ", ".join(sprints) or None
        ctx.tool_used = tool_name
        ctx.applied_filters = {
            "assignees": args.get("assignees"),
            "sprint_ids": args.get("sprint_ids"),
            "status_filters": args.get("status_filters"),
        }

    elif tool_name == "analyze_cached_data":
        found = result.get("issues") or []
        if not found:
            return
        ctx.issues = [
            {
                "key": i.get("key"),
                "assignee": i.get("assignee"),
                "points": i.get("story_points"),
                "summary": i.get("summary"),
            }
            for i in found
        ]
        ctx.issue_count = len(found)
        ctx.total_points = _sum_points(i.get("story_points") for i in found)
        condition = args.get("condition") or {}
        ctx.applied_filters = {"assignees": [condition["eq"]] if condition.get("eq") else None}

    elif tool_name == "get_activity":
        period = result.get("period") or {}
        filters = result.get("filters_applied") or {}
        changes = result.get("changes") or []
        ctx.activity_changes = [
            {k: c.get(k) for k in ("issue_key", "summary", "field", "from", "to", "changed_by")}
            for c in changes
        ]
        ctx.change_count = result.get("total_changes", len(changes))
        ctx.activity_period = period or None
        ctx.tool_used = tool_name
        ctx.applied_filters = {
            "since": period.get("since"),
            "until": period.get("until"),
            "to_status": filters.get("to_status"),
            "assignees": filters.get("assignees"),
        }


class AgentRunner:
    """Runs one conversational turn and yields AgentEvents."""

    def __init__(
        self,
        llm: ChatModel,
        executor: ToolExecutor,
        classifier: ContinuityClassifier,
        gate: WriteActionGate,
        settings: Settings,
        reviewer: Reviewer | None = None,
    ) -> None:
        self._llm = llm
        self._executor = executor
        self._classifier = classifier
        self._gate = gate
        self._settings = settings
        self._reviewer = reviewer

    def _build_system_prompt(self, include_tabular: bool) -> str:
        now = datetime.now().astimezone()
        prompt = SYSTEM_PROMPT.format(today=now.strftime("%Y-%m-%d"), timezone=now.tzname() or "local")
        if include_tabular:
            prompt += TABULAR_PROMPT
        return prompt

    def _token_line(self, usage: TokenUsage) -> str:
        warning = " ⚠ high usage" if usage.total > self._settings.token_warning_threshold else ""
        return f"~ Tokens: {usage.prompt:,} in / {usage.completion:,} out ({usage.total:,} total){warning} ~"

    async def run(
        self,
        history: list[Turn],
        side_channel: SideChannel | None = None,
        *,
        audit_enabled: bool = False,
        credential: str = "",
        config_id: str = "",
        token: CancellationToken | None = None,
    ) -> AsyncGenerator[AgentEvent, None]:
        """Run one turn. ``history`` must end with the user's question."""
        if not history or history[-1].role != "user":
            raise ValueError("Conversation must end with a user message")

        side = side_channel or SideChannel()
        token = token or CancellationToken()
        prior, current = history[:-1], history[-1]
        turns = list(history)
        strategy = self._classifier.strategy

        # -- continuity --------------------------------------------------
        data_hint: str | None = None
        fresh = False
        if prior:
            if side.has_rows and mentions_any(current.content, TABULAR_CONTEXT_KEYWORDS):
                data_hint = strategy.extract_data_context(prior)
                yield AgentEvent(type="reasoning", content="Continuing tabular context")
            else:
                summary = strategy.summarize_history(prior)
                if summary:
                    decision = await self._classifier.classify(current.content, summary)
                    if token.cancelled:
                        return
                    if decision is Continuity.FRESH:
                        turns = [current]
                        fresh = True
                        yield AgentEvent(type="reasoning", content="New task detected, starting fresh")
                    else:
                        data_hint = strategy.extract_data_context(prior)
                        yield AgentEvent(type="reasoning", content="Continuing previous context")

        # -- messages ----------------------------------------------------
        include_tabular = side.has_rows and mentions_any(current.content, TABULAR_TOOL_KEYWORDS)
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": self._build_system_prompt(include_tabular)},
        ]
        if include_tabular:
            messages.append({
                "role": "system",
                "content": f"[CSV AVAILABLE: {len(side.rows or [])} rows. "
                           "Use prepare_issues to create issues from the uploaded CSV data.]",
            })
        if not fresh and side.cached and side.cached.issues:
            source = f" from {side.cached.label}" if side.cached.label else ""
            messages.append({
                "role": "system",
                "content": f"[CACHED DATA AVAILABLE: {len(side.cached.issues)} issues{source}. "
                           "Use analyze_cached_data tool for follow-up questions about this data.]",
            })
        if data_hint:
            messages.append({
                "role": "system",
                "content": "[AVAILABLE DATA from previous query - use this to answer follow-ups "
                           f"without new API calls: {data_hint}]",
            })
        messages.extend({"role": t.role, "content": t.content} for t in turns)

        tools = tool_catalog(include_tabular)
        ctx = ExecutionContext(credential=credential, config_id=config_id, side_channel=side)
        usage = TokenUsage()
        audit = AuditContext(user_question=current.content)

        # -- tool loop ---------------------------------------------------
        for iteration in range(self._settings.max_tool_iterations):
            if token.cancelled:
                return
            try:
                response = await self._llm.chat_with_tools(messages, tools)
            except Exception as e:
                logger.error("chat_with_tools failed (iteration %d): %s", iteration + 1, e)
                yield AgentEvent(type="chunk", content=APOLOGY)
                yield AgentEvent(type="done")
                return
            usage.add(response.usage)

            if not response.tool_calls:
                async for event in self._answer(messages, usage, token, audit if audit_enabled else None):
                    yield event
                return

            call = response.tool_calls[0]
            if len(response.tool_calls) > 1:
                logger.debug("Ignoring %d extra tool call(s)", len(response.tool_calls) - 1)

            assistant_turn = {
                "role": "assistant",
                "content": response.content,
                "tool_calls": response.raw_tool_calls[:1],
            }

            if self._gate.is_write(call.name):
                try:
                    async for event in self._gate.intercept(
                        call,
                        assistant_text=response.content,
                        user_question=current.content,
                        audit_enabled=audit_enabled,
                    ):
                        yield event
                    return
                except ToolValidationError as e:
                    # intercept validates before its first event
                    logger.info("Rejected %s call: %s", call.name, e)
                    yield AgentEvent(type="tool_result", tool=call.name, content=f"Error: {e}")
                    messages.append(assistant_turn)
                    messages.append({"role": "tool", "tool_call_id": call.id, "content": json.dumps({"error": str(e)})})
                    continue

            yield AgentEvent(type="reasoning", content=response.content or f"Calling {call.name}...")
            yield AgentEvent(type="tool_call", tool=call.name, arguments=call.arguments)
            if token.cancelled:
                return

            try:
                args = self._executor.validate(call.name, call.arguments)
                result = await self._executor.execute(call.name, args, ctx)
                arg_dict = dump_args(args)
                condensed = condense(call.name, result, arg_dict)
                record_audit(audit, call.name, result, arg_dict)
            except Exception as e:
                message = str(e) or "Tool execution failed"
                logger.warning("Tool %s failed: %s", call.name, message)
                yield AgentEvent(type="tool_result", tool=call.name, content=f"Error: {message}")
                messages.append(assistant_turn)
                messages.append({"role": "tool", "tool_call_id": call.id, "content": json.dumps({"error": message})})
                continue

            yield AgentEvent(type="tool_result", tool=call.name, content=condensed.for_human)
            for payload in condensed.structured:
                yield AgentEvent(type="structured_data", data=payload)

            messages.append(assistant_turn)
            messages.append({"role": "tool", "tool_call_id": call.id, "content": condensed.for_llm})

        logger.warning("Tool loop reached max_tool_iterations=%d", self._settings.max_tool_iterations)
        yield AgentEvent(type="reasoning", content="Reached maximum tool iterations, generating summary...")
        async for event in self._answer(messages, usage, token, None):
            yield event

    async def _answer(
        self,
        messages: list[dict[str, Any]],
        usage: TokenUsage,
        token: CancellationToken,
        audit: AuditContext | None,
    ) -> AsyncGenerator[AgentEvent, None]:
        """Stream the final answer, then tokens, review and done."""
        parts: list[str] = []
        try:
            async for chunk in self._llm.stream_answer(messages):
                if token.cancelled:
                    return
                if chunk.text:
                    parts.append(chunk.text)
                    yield AgentEvent(type="chunk", content=chunk.text)
                usage.add(chunk.usage)
        except Exception as e:
            logger.error("Answer stream failed: %s", e)
            if not parts:
                yield AgentEvent(type="chunk", content=APOLOGY)
            yield AgentEvent(type="done")
            return

        yield AgentEvent(type="reasoning", content=self._token_line(usage))

        if audit is not None and self._reviewer is not None and not token.cancelled:
            verdict = await self._reviewer.review("".join(parts), audit)
            yield AgentEvent(type="review_complete", review=verdict)

        yield AgentEvent(type="done")
