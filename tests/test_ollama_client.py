"""
Tests for the Ollama client.

Wire-level with httpx.MockTransport; asyncio.sleep is patched so backoff
delays are recorded instead of waited.
"""

import asyncio
import json
from unittest.mock import AsyncMock, call, patch

import httpx
import pytest

from tipgen.llm.ollama_client import (
    OllamaAPIError,
    OllamaClient,
    OllamaConnectionError,
    OllamaUnexpectedError,
)

OK_BODY = {
    "model": "llama3.1:8b-instruct-q5_0",
    "created_at": "2026-11-06T18:00:00Z",
    "response": '{"title": "Weekend Picks", "selections": []}',
    "done": True,
    "prompt_eval_count": 812,
    "eval_count": 164,
}

REAL_SLEEP = asyncio.sleep


def make_client(settings, handler) -> OllamaClient:
    return OllamaClient(settings, transport=httpx.MockTransport(handler))


@pytest.fixture
def no_sleep():
    with patch("tipgen.llm.ollama_client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


class TestGenerate:
    """Request shape and response parsing."""

    @pytest.mark.asyncio
    async def test_request_payload(self, settings, no_sleep):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=OK_BODY)

        client = make_client(settings, handler)
        result = await client.generate("Analyze M1", system="You are an analyst")
        await client.close()

        assert seen["url"] == "http://ollama.test:11434/api/generate"
        assert seen["body"] == {
            "model": "llama3.1:8b-instruct-q5_0",
            "prompt": "Analyze M1",
            "system": "You are an analyst",
            "stream": False,
            "options": {
                "temperature": 0.3,
                "top_p": 0.9,
                "top_k": 40,
                "num_predict": 2000,
                "repeat_penalty": 1.1,
            },
        }
        assert result.text == OK_BODY["response"]
        assert result.tokens_in == 812
        assert result.tokens_out == 164
        assert result.attempts == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_numeric_token_counts(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=dict(OK_BODY, prompt_eval_count=None, eval_count="n/a"))

        client = make_client(settings, handler)
        result = await client.generate("prompt")
        await client.close()

        assert result.text == OK_BODY["response"]
        assert result.tokens_in == 0
        assert result.tokens_out == 0

    @pytest.mark.asyncio
    async def test_system_omitted_when_absent(self, settings):
        client = OllamaClient(settings)
        payload = client.build_payload("prompt", temperature=0.0, max_tokens=500)
        assert "system" not in payload
        assert payload["options"]["temperature"] == 0.0
        assert payload["options"]["num_predict"] == 500


class TestRetries:
    """Bounded retry loop with exponential backoff."""

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self, settings, no_sleep):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) < 3:
                return httpx.Response(500, json={"error": "model is loading"})
            return httpx.Response(200, json=OK_BODY)

        client = make_client(settings, handler)
        result = await client.generate("prompt")
        await client.close()

        assert len(attempts) == 3
        assert result.attempts == 3
        assert no_sleep.await_args_list == [call(1.0), call(2.0)]
        assert result.retry_delay_seconds >= 3.0

    @pytest.mark.asyncio
    async def test_always_failing_makes_three_attempts(self, settings, no_sleep):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(503, json={"error": f"overloaded #{len(attempts)}"})

        client = make_client(settings, handler)
        with pytest.raises(OllamaAPIError) as exc_info:
            await client.generate("prompt")
        await client.close()

        assert len(attempts) == 3
        assert no_sleep.await_count == 2
        # last attempt's error is the one propagated
        assert exc_info.value.message == "overloaded #3"
        assert exc_info.value.status_code == 503


class TestErrorClassification:
    """API error vs connection error vs unexpected."""

    @pytest.mark.asyncio
    async def test_connect_error(self, settings, no_sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(settings, handler)
        with pytest.raises(OllamaConnectionError):
            await client.generate("prompt")
        await client.close()

    @pytest.mark.asyncio
    async def test_timeout_is_connection_error(self, settings, no_sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(settings, handler)
        with pytest.raises(OllamaConnectionError) as exc_info:
            await client.generate("prompt")
        await client.close()

        assert "timed out" in str(exc_info.value)
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_slow_response_bounded_by_total_timeout(self, settings):
        async def handler(request: httpx.Request) -> httpx.Response:
            await REAL_SLEEP(5)
            return httpx.Response(200, json=OK_BODY)

        settings = settings.model_copy(update={"OLLAMA_TIMEOUT_SECONDS": 0.05, "OLLAMA_MAX_RETRIES": 1})
        client = make_client(settings, handler)
        with pytest.raises(OllamaConnectionError, match="timed out after 0.05s"):
            await client.generate("prompt")
        await client.close()

    @pytest.mark.asyncio
    async def test_malformed_body(self, settings, no_sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>proxy error</html>")

        client = make_client(settings, handler)
        with pytest.raises(OllamaAPIError) as exc_info:
            await client.generate("prompt")
        await client.close()

        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_error_payload_with_200(self, settings, no_sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"error": "model 'x' not found"})

        client = make_client(settings, handler)
        with pytest.raises(OllamaAPIError) as exc_info:
            await client.generate("prompt")
        await client.close()

        assert exc_info.value.message == "model 'x' not found"

    @pytest.mark.asyncio
    async def test_unexpected_error(self, settings, no_sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            raise RuntimeError("boom")

        client = make_client(settings, handler)
        with pytest.raises(OllamaUnexpectedError):
            await client.generate("prompt")
        await client.close()


class TestAuxiliary:
    """Health probe, model listing and verification."""

    @pytest.mark.asyncio
    async def test_health_ok(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/tags"
            return httpx.Response(200, json={"models": []})

        client = make_client(settings, handler)
        assert await client.health_check() is True
        await client.close()

    @pytest.mark.asyncio
    async def test_health_never_raises(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        client = make_client(settings, handler)
        assert await client.health_check() is False
        await client.close()

    @pytest.mark.asyncio
    async def test_health_non_200(self, settings):
        client = make_client(settings, lambda request: httpx.Response(500))
        assert await client.health_check() is False
        await client.close()

    @pytest.mark.asyncio
    async def test_list_and_verify_models(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"models": [
                {"name": "llama3.1:8b-instruct-q5_0"},
                {"name": "qwen2.5:7b"},
            ]})

        client = make_client(settings, handler)
        assert await client.list_models() == ["llama3.1:8b-instruct-q5_0", "qwen2.5:7b"]
        assert await client.verify_model() is True
        assert await client.verify_model("mistral:7b") is False
        await client.close()

    @pytest.mark.asyncio
    async def test_list_models_failure_is_empty(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        client = make_client(settings, handler)
        assert await client.list_models() == []
        assert await client.verify_model() is False
        await client.close()
