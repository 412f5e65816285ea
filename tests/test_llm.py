"""Tests for LLMClient -- Ollama-style chat/generate over httpx.MockTransport."""

import json

import httpx
import pytest

from sprintwise.api import llm as llm_module
from sprintwise.api.llm import LLMClient, _parse_stream_line, _parse_tool_calls
from sprintwise.config import Settings


def _client(handler) -> LLMClient:
    client = LLMClient(Settings(_env_file=None, OLLAMA_MODEL="test-model"))
    client._http = httpx.AsyncClient(base_url="http://llm", transport=httpx.MockTransport(handler))
    return client


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    async def _sleep(_seconds):
        return None

    monkeypatch.setattr(llm_module.asyncio, "sleep", _sleep)


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


class TestParseStreamLine:
    def test_content_line(self):
        chunk = _parse_stream_line('{"message": {"content": "Hel"}, "done": false}')
        assert chunk.text == "Hel"
        assert not chunk.done

    def test_final_line_carries_usage(self):
        chunk = _parse_stream_line('{"message": {"content": ""}, "done": true, "prompt_eval_count": 10, "eval_count": 5}')
        assert chunk.done
        assert chunk.usage.total == 15

    def test_blank_and_malformed_skipped(self):
        assert _parse_stream_line("") is None
        assert _parse_stream_line("not json") is None
        assert _parse_stream_line('{"message": {"content": ""}, "done": false}') is None

    def test_error_line_raises(self):
        with pytest.raises(RuntimeError, match="model not found"):
            _parse_stream_line('{"error": "model not found"}')


class TestParseToolCalls:
    def test_object_and_string_arguments(self):
        calls = _parse_tool_calls([
            {"function": {"name": "list_sprints", "arguments": {"state": "active"}}},
            {"id": "c2", "function": {"name": "get_issue", "arguments": '{"issue_key": "A-1"}'}},
        ])
        assert calls[0].arguments == {"state": "active"}
        assert calls[0].id.startswith("call_")
        assert calls[1].id == "c2"
        assert calls[1].arguments == {"issue_key": "A-1"}

    def test_bad_arguments_become_empty(self):
        calls = _parse_tool_calls([{"function": {"name": "list_epics", "arguments": "{oops"}}])
        assert calls[0].arguments == {}

    def test_nameless_call_dropped(self):
        assert _parse_tool_calls([{"function": {"arguments": {}}}]) == []


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


class TestChatWithTools:
    async def test_tool_call_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "message": {
                    "content": "",
                    "tool_calls": [{"function": {"name": "list_sprints", "arguments": {}}}],
                },
                "prompt_eval_count": 120,
                "eval_count": 8,
            })

        client = _client(handler)
        response = await client.chat_with_tools([{"role": "user", "content": "hi"}], [{"type": "function"}])

        assert seen["path"] == "/api/chat"
        assert seen["body"]["model"] == "test-model"
        assert seen["body"]["stream"] is False
        assert response.tool_calls[0].name == "list_sprints"
        assert response.usage.prompt == 120
        assert len(response.raw_tool_calls) == 1

    async def test_retry_once_on_503(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json={"message": {"content": "ok"}})

        response = await _client(handler).chat_with_tools([], [])
        assert response.content == "ok"
        assert len(calls) == 2

    async def test_persistent_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="down")

        with pytest.raises(RuntimeError, match="LLM API error \\(500\\)"):
            await _client(handler).chat_with_tools([], [])

    async def test_client_error_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, text="bad request")

        with pytest.raises(RuntimeError):
            await _client(handler).chat_with_tools([], [])
        assert len(calls) == 1

    async def test_not_started(self):
        client = LLMClient(Settings(_env_file=None))
        with pytest.raises(RuntimeError, match="start\\(\\)"):
            await client.chat_with_tools([], [])


class TestStreamAnswer:
    async def test_streams_until_done(self):
        lines = [
            {"message": {"content": "Three "}, "done": False},
            {"message": {"content": "issues."}, "done": False},
            {"message": {"content": ""}, "done": True, "prompt_eval_count": 50, "eval_count": 4},
        ]
        body = "\n".join(json.dumps(line) for line in lines) + "\n"

        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["stream"] is True
            return httpx.Response(200, text=body)

        chunks = [c async for c in _client(handler).stream_answer([{"role": "user", "content": "q"}])]
        assert "".join(c.text for c in chunks) == "Three issues."
        assert chunks[-1].done
        assert chunks[-1].usage.completion == 4

    async def test_http_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="gateway")

        with pytest.raises(RuntimeError, match="502"):
            async for _ in _client(handler).stream_answer([]):
                pass


class TestGenerate:
    async def test_classify_uses_classifier_model(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": "FRESH"})

        client = LLMClient(Settings(_env_file=None, OLLAMA_MODEL="big", classifier_model="small"))
        client._http = httpx.AsyncClient(base_url="http://llm", transport=httpx.MockTransport(handler))

        assert await client.classify("prompt") == "FRESH"
        assert seen["path"] == "/api/generate"
        assert seen["body"]["model"] == "small"
        assert seen["body"]["options"] == {"temperature": 0, "num_predict": 8}

    async def test_review_passes_max_tokens(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": "YES"})

        assert await _client(handler).review("p", max_tokens=40) == "YES"
        assert seen["body"]["options"]["num_predict"] == 40
