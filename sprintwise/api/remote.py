"""Remote tool execution -- forwards tool calls to the issue-tracker tool service.

The service contract: POST {tool_service_url}/api/jira/tools with
{tool, arguments, configId}; the caller's session credential travels as
the Cookie header. A 2xx body is {result} or {error}.

Also provides bulk execution for administrative callers: a bounded
concurrency window with exponential backoff on failures, reporting
per-item outcomes instead of failing the batch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from sprintwise.config import Settings

logger = logging.getLogger(__name__)

TOOLS_PATH = "/api/jira/tools"


class ToolExecutionError(RuntimeError):
    """A tool ran (or tried to) and failed; recoverable by the loop."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def is_rate_limit_error(error: Exception) -> bool:
    if isinstance(error, ToolExecutionError) and error.status_code == 429:
        return True
    text = str(error).lower()
    return "429" in text or "rate limit" in text or "too many requests" in text


@dataclass
class BulkResult:
    """Outcome of execute_many(): successes plus per-item failures."""

    total_requested: int
    results: list[Any] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)
    retried_count: int = 0
    retried_succeeded: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requested": self.total_requested,
            "total_succeeded": len(self.results),
            "retried_count": self.retried_count,
            "retried_succeeded": self.retried_succeeded,
            "results": self.results,
            "failed": self.failed,
        }


class RemoteToolClient:
    """httpx client for the tool service. Call start() before use."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._http: httpx.AsyncClient | None = None

    async def start(self) -> None:
        headers = {"content-type": "application/json"}
        if self._settings.tool_service_bypass_secret:
            headers["x-vercel-protection-bypass"] = self._settings.tool_service_bypass_secret
        self._http = httpx.AsyncClient(
            base_url=self._settings.tool_service_url,
            headers=headers,
            timeout=httpx.Timeout(
                connect=self._settings.api_timeout_connect,
                read=self._settings.api_timeout_read,
                write=10.0,
                pool=10.0,
            ),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
        logger.info("Tool service client initialized (%s)", self._settings.tool_service_url)

    async def close(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None

    async def execute(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        credential: str,
        config_id: str,
    ) -> Any:
        """Run one tool remotely and return its result.

        Raises ToolExecutionError with the service's message when it can
        be parsed, else a generic "Tool call failed: <status>".
        """
        if not self._http:
            raise RuntimeError("httpx client not initialized -- call start() first")

        headers = {"cookie": credential} if credential else {}
        try:
            response = await self._http.post(
                TOOLS_PATH,
                json={"tool": tool_name, "arguments": arguments, "configId": config_id},
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise ToolExecutionError(f"Tool call timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ToolExecutionError(f"Tool call failed: {e}") from e

        if response.status_code >= 300:
            try:
                body = response.json()
                message = (body.get("error") if isinstance(body, dict) else None) or (
                    f"Tool call failed: {response.status_code}"
                )
            except ValueError:
                message = f"Tool call failed: {response.status_code} - {response.text[:500]}"
            raise ToolExecutionError(message, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise ToolExecutionError(f"Tool call returned invalid JSON: {e}") from e

        if isinstance(data, dict) and data.get("error"):
            raise ToolExecutionError(str(data["error"]))
        return data.get("result") if isinstance(data, dict) else data

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    async def _execute_with_retry(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        credential: str,
        config_id: str,
        label: str,
    ) -> Any:
        max_retries = self._settings.max_retries
        for attempt in range(max_retries):
            try:
                return await self.execute(tool_name, arguments, credential, config_id)
            except ToolExecutionError as e:
                if attempt == max_retries - 1:
                    raise
                delay = self._settings.retry_delay * (2 ** attempt)
                if is_rate_limit_error(e):
                    logger.info(
                        "Rate limit for %s, waiting %.1fs before retry (attempt %d/%d)",
                        label, delay, attempt + 1, max_retries,
                    )
                else:
                    logger.info(
                        "Error for %s, retrying in %.1fs (attempt %d/%d): %s",
                        label, delay, attempt + 1, max_retries, e,
                    )
                await asyncio.sleep(delay)
        raise ToolExecutionError("Max retries exceeded")

    async def execute_many(
        self,
        tool_name: str,
        items: list[dict[str, Any]],
        credential: str,
        config_id: str,
        key_field: str,
    ) -> BulkResult:
        """Run ``tool_name`` once per argument dict, bounded by bulk_concurrency.

        Items that still fail after their retries get one more pass; what
        fails again is reported in BulkResult.failed.
        """
        semaphore = asyncio.Semaphore(self._settings.bulk_concurrency)
        outcome = BulkResult(total_requested=len(items))

        async def run_one(args: dict[str, Any]) -> tuple[bool, Any]:
            label = str(args.get(key_field, "unknown"))
            async with semaphore:
                try:
                    return True, await self._execute_with_retry(tool_name, args, credential, config_id, label)
                except ToolExecutionError as e:
                    logger.error("Bulk %s failed for %s: %s", tool_name, label, e)
                    return False, str(e)

        first = await asyncio.gather(*(run_one(args) for args in items))
        retry_items: list[dict[str, Any]] = []
        for args, (ok, value) in zip(items, first):
            if ok:
                outcome.results.append(value)
            else:
                retry_items.append(args)

        if retry_items:
            logger.info("Retrying %d failed %s call(s)", len(retry_items), tool_name)
            second = await asyncio.gather(*(run_one(args) for args in retry_items))
            outcome.retried_count = len(retry_items)
            for args, (ok, value) in zip(retry_items, second):
                if ok:
                    outcome.results.append(value)
                    outcome.retried_succeeded += 1
                else:
                    outcome.failed.append({"key": str(args.get(key_field, "unknown")), "error": value})

        return outcome
