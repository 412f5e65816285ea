"""LLM client -- direct httpx calls to an Ollama-compatible chat API.

Operations consumed by the orchestration loop:

- chat_with_tools(): one non-streaming call with the tool catalog
- stream_answer(): the final answer, NDJSON-streamed chunk by chunk
- generate(): single-prompt completion, used by the continuity
  classifier and the reviewers (classify() / review() wrap it)
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Any

import httpx

from sprintwise.api.models import LLMResponse, TokenUsage, ToolCall
from sprintwise.config import Settings

logger = logging.getLogger(__name__)

_RETRY_STATUSES = (429, 500, 503)
_MAX_RETRY_AFTER = 30.0


@dataclass
class StreamChunk:
    """One parsed line of a streamed chat response."""

    text: str = ""
    done: bool = False
    usage: TokenUsage | None = None


def _usage_from(data: dict[str, Any]) -> TokenUsage | None:
    if "prompt_eval_count" not in data and "eval_count" not in data:
        return None
    return TokenUsage(
        prompt=int(data.get("prompt_eval_count") or 0),
        completion=int(data.get("eval_count") or 0),
    )


def _parse_stream_line(line: str) -> StreamChunk | None:
    """Parse one NDJSON line from /api/chat streaming.

    Blank and malformed lines are skipped. The final line carries
    done=true and the token counts.
    """
    if not line.strip():
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    if data.get("error"):
        raise RuntimeError(f"LLM stream error: {data['error']}")
    text = (data.get("message") or {}).get("content") or ""
    if data.get("done"):
        return StreamChunk(text=text, done=True, usage=_usage_from(data))
    if not text:
        return None
    return StreamChunk(text=text)


def _parse_tool_calls(raw_calls: list[dict[str, Any]]) -> list[ToolCall]:
    calls: list[ToolCall] = []
    for raw in raw_calls or []:
        fn = raw.get("function") or {}
        name = fn.get("name")
        if not name:
            continue
        arguments = fn.get("arguments")
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments else {}
            except json.JSONDecodeError:
                arguments = {}
        if not isinstance(arguments, dict):
            arguments = {}
        calls.append(ToolCall(
            id=raw.get("id") or f"call_{uuid.uuid4().hex[:12]}",
            name=name,
            arguments=arguments,
        ))
    return calls


class LLMClient:
    """Async client for the model host. Call start() before use."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._http: httpx.AsyncClient | None = None

    async def start(self) -> None:
        settings = self._settings
        timeout = httpx.Timeout(
            connect=settings.api_timeout_connect,
            read=settings.api_timeout_read,
            write=10.0,
            pool=10.0,
        )
        limits = httpx.Limits(max_connections=10, max_keepalive_connections=5)
        auth = None
        if settings.llm_auth_user and settings.llm_auth_pass:
            auth = httpx.BasicAuth(settings.llm_auth_user, settings.llm_auth_pass)

        self._http = httpx.AsyncClient(
            base_url=settings.llm_base_url,
            headers={"content-type": "application/json"},
            timeout=timeout,
            limits=limits,
            auth=auth,
        )
        logger.info("LLM client initialized (%s, model=%s)", settings.llm_base_url, settings.model)

    async def close(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None

    def _client(self) -> httpx.AsyncClient:
        if not self._http:
            raise RuntimeError("httpx client not initialized -- call start() first")
        return self._http

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST with one retry for 429/500/503 and timeouts.

        Raises RuntimeError on persistent errors.
        """
        http = self._client()
        last_error: Exception | None = None
        for attempt in range(2):  # initial + 1 retry
            try:
                response = await http.post(path, json=payload)
                if response.status_code == 200:
                    return response.json()

                error_msg = response.text[:500]
                if response.status_code in _RETRY_STATUSES and attempt == 0:
                    retry_after = min(float(response.headers.get("retry-after", "1")), _MAX_RETRY_AFTER)
                    logger.warning(
                        "LLM API error %d, retrying in %.1fs: %s",
                        response.status_code, retry_after, error_msg,
                    )
                    await asyncio.sleep(retry_after)
                    continue
                last_error = RuntimeError(f"LLM API error ({response.status_code}): {error_msg}")
                break
            except httpx.TimeoutException as e:
                last_error = RuntimeError(f"LLM request timed out: {e}")
                if attempt == 0:
                    logger.warning("LLM timeout, retrying: %s", e)
                    await asyncio.sleep(1)
                    continue
            except httpx.HTTPError as e:
                last_error = RuntimeError(f"HTTP error: {e}")
                break  # connection errors are not retried

        raise last_error or RuntimeError("LLM call failed with unknown error")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def chat_with_tools(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> LLMResponse:
        payload = {
            "model": self._settings.model,
            "messages": messages,
            "tools": tools,
            "stream": False,
            "options": {"num_predict": self._settings.max_tokens},
        }
        data = await self._post("/api/chat", payload)
        message = data.get("message") or {}
        raw_calls = message.get("tool_calls") or []
        return LLMResponse(
            content=message.get("content") or "",
            tool_calls=_parse_tool_calls(raw_calls),
            usage=_usage_from(data),
            raw_tool_calls=raw_calls,
        )

    async def stream_answer(self, messages: list[dict[str, Any]]) -> AsyncGenerator[StreamChunk, None]:
        """Stream the final answer. Raises RuntimeError on HTTP errors."""
        payload = {
            "model": self._settings.model,
            "messages": [{"role": m["role"], "content": m.get("content", "")} for m in messages],
            "stream": True,
            "options": {"num_predict": self._settings.max_tokens},
        }
        async with self._client().stream("POST", "/api/chat", json=payload) as response:
            if response.status_code != 200:
                body = await response.aread()
                raise RuntimeError(f"LLM API error ({response.status_code}): {body.decode()[:500]}")
            async for line in response.aiter_lines():
                chunk = _parse_stream_line(line)
                if chunk is None:
                    continue
                yield chunk
                if chunk.done:
                    return

    async def generate(self, prompt: str, *, model: str | None = None, max_tokens: int | None = None) -> str:
        options: dict[str, Any] = {"temperature": 0}
        if max_tokens:
            options["num_predict"] = max_tokens
        payload = {
            "model": model or self._settings.model,
            "prompt": prompt,
            "stream": False,
            "options": options,
        }
        data = await self._post("/api/generate", payload)
        return str(data.get("response") or "")

    async def classify(self, prompt: str) -> str:
        return await self.generate(prompt, model=self._settings.effective_classifier_model, max_tokens=8)

    async def review(self, prompt: str, max_tokens: int | None = None) -> str:
        return await self.generate(prompt, max_tokens=max_tokens)
