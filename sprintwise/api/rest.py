"""REST API for the PM agent.

Endpoints:
  POST /ask                  - Run a turn (NDJSON stream or JSON) or execute
                               a confirmed write action
  GET  /ask                  - Status + available tool names
  POST /epics/progress/bulk  - Progress for many epics at once
  GET  /health               - Health check
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from sprintwise.api.catalog import TOOL_NAMES
from sprintwise.api.gate import WriteActionGate
from sprintwise.api.models import AgentEvent, CachedData, SideChannel, Turn
from sprintwise.api.remote import RemoteToolClient
from sprintwise.api.runner import AgentRunner
from sprintwise.api.schemas import ToolValidationError
from sprintwise.api.tools import ExecutionContext
from sprintwise.config import Settings
from sprintwise.events import CancellationToken, stream_events
from sprintwise.session import SessionStore

logger = logging.getLogger(__name__)

NDJSON = "application/x-ndjson"
_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}
_CACHED_ISSUE_FIELDS = ("key", "key_link", "summary", "status", "assignee", "story_points")


class BadRequest(ValueError):
    pass


def parse_turns(raw: Any) -> list[Turn]:
    """Validate the request's messages. Raises BadRequest."""
    if not raw or not isinstance(raw, list):
        raise BadRequest("Messages are required")
    turns: list[Turn] = []
    for item in raw:
        if not isinstance(item, dict) or item.get("role") not in ("user", "assistant"):
            raise BadRequest("Each message needs a role of 'user' or 'assistant'")
        content = item.get("content")
        if not isinstance(content, str):
            raise BadRequest("Each message needs string content")
        turns.append(Turn(role=item["role"], content=content))
    if not any(t.role == "user" for t in turns):
        raise BadRequest("No user message found")
    if turns[-1].role != "user":
        raise BadRequest("Last message must be from the user")
    return turns


def parse_rows(raw: Any) -> list[dict[str, str]] | None:
    if raw is None:
        return None
    if not isinstance(raw, list) or not all(isinstance(r, dict) for r in raw):
        raise BadRequest("csvData must be a list of row objects")
    return raw


async def remember_results(
    events: AsyncIterator[AgentEvent],
    sessions: SessionStore,
    config_id: str,
) -> AsyncGenerator[AgentEvent, None]:
    """Pass events through, keeping the last issue list for the config."""
    async for event in events:
        if event.type == "structured_data" and event.data and event.data.get("type") == "issue_list":
            issues = [
                {k: issue.get(k) for k in _CACHED_ISSUE_FIELDS}
                for issue in event.data.get("issues") or []
            ]
            sessions.set(config_id, CachedData(issues=issues, label=event.data.get("sprint_name")))
        yield event


def create_app(
    runner: AgentRunner,
    gate: WriteActionGate,
    remote: RemoteToolClient,
    sessions: SessionStore,
    settings: Settings,
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    def _stream(events: AsyncIterator[AgentEvent], token: CancellationToken) -> StreamingResponse:
        return StreamingResponse(
            stream_events(events, token, settings.stream_queue_size),
            media_type=NDJSON,
            headers=_STREAM_HEADERS,
        )

    async def ask(request: Request) -> Response:
        """POST /ask - Run the agent, or execute a confirmed action."""
        try:
            body = await request.json()
        except Exception:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        config_id = body.get("configId") or settings.default_config_id
        credential = request.headers.get("cookie", "")
        token = CancellationToken()

        action = body.get("executeAction")
        if action is not None:
            if not isinstance(action, dict):
                return JSONResponse({"error": "executeAction must be an object"}, status_code=400)
            tool_name = str(action.get("toolName") or "")
            issues = action.get("issues")
            try:
                gate.validate(tool_name, {"issues": issues})
            except ToolValidationError as e:
                return JSONResponse({"error": str(e)}, status_code=400)
            ctx = ExecutionContext(credential=credential, config_id=config_id)
            logger.info("Executing confirmed %s (%d issues, config=%s)", tool_name, len(issues), config_id)
            return _stream(gate.execute_confirmed(tool_name, issues, ctx, token), token)

        try:
            turns = parse_turns(body.get("messages"))
            rows = parse_rows(body.get("csvData"))
        except BadRequest as e:
            return JSONResponse({"error": str(e)}, status_code=400)

        cached = CachedData.from_dict(body.get("cachedData")) or sessions.get(config_id)
        events = remember_results(
            runner.run(
                turns,
                SideChannel(rows=rows, cached=cached),
                audit_enabled=bool(body.get("useAuditor", False)),
                credential=credential,
                config_id=config_id,
                token=token,
            ),
            sessions,
            config_id,
        )

        if body.get("stream", True):
            return _stream(events, token)

        response_text = ""
        reasoning: list[str] = []
        try:
            async for event in events:
                if event.type == "chunk" and event.content:
                    response_text += event.content
                elif event.type == "reasoning" and event.content:
                    reasoning.append(event.content)
        except Exception as e:
            logger.error("Ask error: %s", e)
            return JSONResponse({"error": str(e) or "Internal server error"}, status_code=500)
        return JSONResponse({"response": response_text, "reasoning": reasoning})

    async def ask_info(request: Request) -> JSONResponse:
        """GET /ask - Status and tool names."""
        return JSONResponse({
            "status": "ok",
            "message": "Sprintwise PM agent API",
            "tools": list(TOOL_NAMES),
        })

    async def bulk_epic_progress(request: Request) -> JSONResponse:
        """POST /epics/progress/bulk - Progress for a list of epics."""
        try:
            body = await request.json()
        except Exception:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        epic_keys = body.get("epic_keys") if isinstance(body, dict) else None
        if not epic_keys or not isinstance(epic_keys, list):
            return JSONResponse({"error": "epic_keys array is required and cannot be empty"}, status_code=400)

        config_id = body.get("configId") or settings.default_config_id
        items = [{"epic_key": str(key), "include_subtasks": False} for key in epic_keys]
        try:
            outcome = await remote.execute_many(
                "get_epic_progress",
                items,
                request.headers.get("cookie", ""),
                config_id,
                key_field="epic_key",
            )
        except Exception as e:
            logger.error("Bulk epic progress error: %s", e)
            return JSONResponse({"error": str(e)}, status_code=500)

        data = outcome.to_dict()
        data["results"] = [
            {k: r.get(k) for k in ("epic", "progress", "breakdown_by_status")} if isinstance(r, dict) else r
            for r in outcome.results
        ]
        return JSONResponse(data)

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check."""
        return JSONResponse({"status": "healthy"})

    routes = [
        Route("/ask", ask, methods=["POST"]),
        Route("/ask", ask_info, methods=["GET"]),
        Route("/epics/progress/bulk", bulk_epic_progress, methods=["POST"]),
        Route("/health", health),
    ]

    kwargs: dict[str, Any] = {"routes": routes}
    if lifespan is not None:
        kwargs["lifespan"] = lifespan
    return Starlette(**kwargs)
