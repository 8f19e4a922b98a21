# teamchat/core/errors.py

from __future__ import annotations


class TeamChatError(Exception):
    """Base error. ``code`` is what clients see in socket error events."""

    code = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class Unauthorized(TeamChatError):
    code = "unauthorized"


class Forbidden(TeamChatError):
    code = "forbidden"


class InvalidRequest(TeamChatError):
    code = "invalid_request"


class NotFound(TeamChatError):
    code = "not_found"


class Conflict(TeamChatError):
    code = "conflict"


class AssistantError(TeamChatError):
    """Terminal assistant failure; never retried."""

    code = "assistant_error"


class AssistantUnavailable(AssistantError):
    """Transient; the only assistant error the retry policy retries."""

    code = "assistant_unavailable"


class AssistantRateLimited(AssistantError):
    code = "assistant_rate_limited"
