"""Tests for the assistant gateway and its retry policy."""

import httpx
import pytest

from conftest import ScriptedGateway
from teamchat.core.config import Settings
from teamchat.core.errors import AssistantError, AssistantRateLimited, AssistantUnavailable
from teamchat.services.assistant_gateway import (
    GeminiGateway,
    MockGateway,
    build_gateway,
    generate_with_retry,
)


def gemini(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiGateway(api_key="k", model="gemini-1.5-flash", base_url="https://ai.test/v1beta", client=client)


def ok_payload(*parts):
    return {"candidates": [{"content": {"parts": [{"text": p} for p in parts]}}]}


class TestGeminiGateway:

    @pytest.mark.asyncio
    async def test_returns_generated_text(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = request.url
            seen["body"] = request.content
            return httpx.Response(200, json=ok_payload("Hello ", "world"))

        gateway = gemini(handler)
        assert await gateway.generate("hi there") == "Hello world"
        assert seen["url"].path == "/v1beta/models/gemini-1.5-flash:generateContent"
        assert seen["url"].params["key"] == "k"
        assert b"hi there" in seen["body"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, error",
        [
            (429, AssistantRateLimited),
            (503, AssistantUnavailable),
            (502, AssistantUnavailable),
            (404, AssistantError),
            (400, AssistantError),
        ],
    )
    async def test_status_codes_map_to_errors(self, status, error):
        gateway = gemini(lambda request: httpx.Response(status, json={"error": {"message": "nope"}}))
        with pytest.raises(error):
            await gateway.generate("hi")

    @pytest.mark.asyncio
    async def test_rate_limit_is_not_reported_as_unavailable(self):
        gateway = gemini(lambda request: httpx.Response(429))
        with pytest.raises(AssistantRateLimited) as info:
            await gateway.generate("hi")
        assert not isinstance(info.value, AssistantUnavailable)
        assert "quota" in info.value.message

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(AssistantUnavailable):
            await gemini(handler).generate("hi")

    @pytest.mark.asyncio
    async def test_empty_prompt_and_empty_reply(self):
        gateway = gemini(lambda request: httpx.Response(200, json={"candidates": []}))
        with pytest.raises(AssistantError):
            await gateway.generate("   ")
        with pytest.raises(AssistantError):
            await gateway.generate("hi")

    @pytest.mark.asyncio
    async def test_health(self):
        healthy = await gemini(lambda r: httpx.Response(200, json=ok_payload("hi"))).health()
        quota = await gemini(lambda r: httpx.Response(429)).health()
        assert healthy["status"] == "healthy"
        assert quota == {"status": "error", "message": "Quota exceeded"}


class TestRetryPolicy:

    @pytest.mark.asyncio
    async def test_retries_unavailable_then_succeeds(self):
        gateway = ScriptedGateway([AssistantUnavailable("busy"), AssistantUnavailable("busy"), "ok"])
        assert await generate_with_retry(gateway, "p", max_retries=2, retry_delay=0) == "ok"
        assert gateway.calls == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        gateway = ScriptedGateway([AssistantUnavailable("busy")])
        with pytest.raises(AssistantUnavailable):
            await generate_with_retry(gateway, "p", max_retries=1, retry_delay=0)
        assert gateway.calls == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [AssistantRateLimited("quota"), AssistantError("bad")])
    async def test_terminal_errors_are_not_retried(self, error):
        gateway = ScriptedGateway([error, "ok"])
        with pytest.raises(type(error)):
            await generate_with_retry(gateway, "p", max_retries=2, retry_delay=0)
        assert gateway.calls == 1


class TestBuildGateway:

    def test_mock_without_key(self):
        settings = Settings(GOOGLE_AI_KEY="", ASSISTANT_PROVIDER="mock")
        assert isinstance(build_gateway(settings), MockGateway)

    def test_gemini_needs_key(self):
        with pytest.raises(RuntimeError):
            build_gateway(Settings(GOOGLE_AI_KEY="", ASSISTANT_PROVIDER="gemini"))
        assert isinstance(build_gateway(Settings(GOOGLE_AI_KEY="k", ASSISTANT_PROVIDER="gemini")), GeminiGateway)

    @pytest.mark.asyncio
    async def test_mock_cycles_canned_replies(self):
        gateway = MockGateway(responses=["one", "two"])
        assert [await gateway.generate("x") for _ in range(3)] == ["one", "two", "one"]
        with pytest.raises(AssistantError):
            await gateway.generate("")
