# teamchat/services/assistant_gateway.py

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Dict, Iterable, Optional, Protocol

import httpx

from teamchat.core.errors import (
    AssistantError,
    AssistantRateLimited,
    AssistantUnavailable,
)

logger = logging.getLogger(__name__)

QUOTA_EXCEEDED_MESSAGE = "API quota exceeded. Please wait and try again later."
OVERLOADED_MESSAGE = "AI service is currently overloaded. Please try again in a few minutes."
MODEL_MISSING_MESSAGE = (
    "The AI model is not available. This might be a temporary issue or the model name is incorrect."
)

MOCK_RESPONSES = (
    "That's an interesting point! Let me help you with that.",
    "I understand what you're asking. Here's my suggestion...",
    "Based on what you've shared, I think the best approach would be...",
    "Great question! Here's how I would tackle this problem...",
    "Let me break this down for you step by step.",
    "That sounds like a common challenge. Here's what I recommend...",
)


class AssistantGateway(Protocol):
    async def generate(self, prompt: str) -> str: ...

    async def health(self) -> Dict[str, str]: ...

    async def aclose(self) -> None: ...


# ============================================================================
# GEMINI
# ============================================================================

class GeminiGateway:
    """
    Google generative-language REST client.

    Maps provider status codes onto the assistant error taxonomy:
        429            -> AssistantRateLimited (terminal)
        502/503/504    -> AssistantUnavailable (retryable)
        timeouts, connection errors -> AssistantUnavailable
        404            -> AssistantError (model missing)
        anything else  -> AssistantError
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def generate(self, prompt: str) -> str:
        if not prompt or not prompt.strip():
            raise AssistantError("Prompt is required")

        url = f"{self.base_url}/models/{self.model}:generateContent"
        body = {"contents": [{"parts": [{"text": prompt}]}]}

        try:
            response = await self._client.post(url, params={"key": self.api_key}, json=body)
        except httpx.TimeoutException as e:
            logger.warning("Assistant request timed out: %s", type(e).__name__)
            raise AssistantUnavailable(OVERLOADED_MESSAGE) from e
        except httpx.TransportError as e:
            logger.warning("Assistant transport error: %s", type(e).__name__)
            raise AssistantUnavailable(OVERLOADED_MESSAGE) from e

        if response.status_code == 429:
            raise AssistantRateLimited(QUOTA_EXCEEDED_MESSAGE)
        if response.status_code in (502, 503, 504):
            raise AssistantUnavailable(OVERLOADED_MESSAGE)
        if response.status_code == 404:
            raise AssistantError(MODEL_MISSING_MESSAGE)
        if response.status_code >= 400:
            raise AssistantError(f"AI generation failed: {_error_detail(response)}")

        return _extract_text(response.json())

    async def health(self) -> Dict[str, str]:
        try:
            await self.generate("Hello")
        except AssistantRateLimited:
            return {"status": "error", "message": "Quota exceeded"}
        except AssistantError as e:
            return {"status": "error", "message": e.message}
        return {"status": "healthy", "message": "AI service is working"}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _error_detail(response: httpx.Response) -> str:
    try:
        return response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return f"HTTP {response.status_code}"


def _extract_text(payload: dict) -> str:
    try:
        parts = payload["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        raise AssistantError("AI generation failed: empty response")
    text = "".join(part.get("text", "") for part in parts)
    if not text:
        raise AssistantError("AI generation failed: empty response")
    return text


# ============================================================================
# MOCK
# ============================================================================

class MockGateway:
    """Canned replies; stands in for the real service when no key is set."""

    def __init__(self, responses: Optional[Iterable[str]] = None, delay: float = 0.0) -> None:
        self._responses = itertools.cycle(tuple(responses or MOCK_RESPONSES))
        self.delay = delay
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        if not prompt or not prompt.strip():
            raise AssistantError("Prompt is required")
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        return next(self._responses)

    async def health(self) -> Dict[str, str]:
        return {"status": "healthy", "message": "Mock AI service is working"}

    async def aclose(self) -> None:
        return None


# ============================================================================
# RETRY POLICY
# ============================================================================

async def generate_with_retry(
    gateway: AssistantGateway,
    prompt: str,
    max_retries: int = 2,
    retry_delay: float = 2.0,
) -> str:
    """
    Call the gateway, retrying only while it reports itself unavailable.

    At most ``max_retries`` extra attempts, ``retry_delay`` seconds apart.
    Rate limits and other errors propagate on the first occurrence.
    """
    attempt = 0
    while True:
        try:
            return await gateway.generate(prompt)
        except AssistantUnavailable:
            if attempt >= max_retries:
                raise
            attempt += 1
            logger.info("Assistant unavailable, retry %d/%d in %.1fs", attempt, max_retries, retry_delay)
            await asyncio.sleep(retry_delay)


def build_gateway(settings) -> AssistantGateway:
    if settings.ASSISTANT_PROVIDER == "gemini":
        if not settings.GOOGLE_AI_KEY:
            raise RuntimeError("GOOGLE_AI_KEY environment variable is not set")
        logger.info("Assistant provider: gemini (%s)", settings.ASSISTANT_MODEL)
        return GeminiGateway(
            api_key=settings.GOOGLE_AI_KEY,
            model=settings.ASSISTANT_MODEL,
            base_url=settings.ASSISTANT_BASE_URL,
            timeout=settings.ASSISTANT_TIMEOUT,
        )
    if settings.ASSISTANT_PROVIDER == "mock":
        logger.info("Assistant provider: mock")
        return MockGateway(delay=settings.MOCK_ASSISTANT_DELAY)
    raise RuntimeError(f"Unknown ASSISTANT_PROVIDER: {settings.ASSISTANT_PROVIDER}")
