# teamchat/core/state.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from starlette.requests import HTTPConnection

from teamchat.core.config import Settings
from teamchat.services.assistant_gateway import AssistantGateway, build_gateway
from teamchat.services.auth_service import TokenCredentialStore
from teamchat.services.chat_hub import ChatHub, Participant
from teamchat.services.store import (
    InMemoryProjectStore,
    InMemoryUserStore,
    ProjectStore,
    RedisProjectStore,
    RedisUserStore,
    UserStore,
    create_redis_client,
)


@dataclass
class AppState:
    """Everything a request handler needs, attached to ``app.state.chat``."""

    settings: Settings
    users: UserStore
    projects: ProjectStore
    credentials: TokenCredentialStore
    gateway: AssistantGateway
    hub: ChatHub
    redis: Optional[Any] = None
    app_start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def project_room_policy(projects: ProjectStore):
    """Rooms named after a project id are open to that project's members only."""

    async def allow(participant: Participant, room_name: str) -> bool:
        if await projects.get(room_name) is None:
            return True
        return await projects.is_member(room_name, participant.user_id)

    return allow


def build_state(
    settings: Settings,
    users: Optional[UserStore] = None,
    projects: Optional[ProjectStore] = None,
    gateway: Optional[AssistantGateway] = None,
    redis_client: Optional[Any] = None,
) -> AppState:
    if users is None or projects is None:
        if settings.STORAGE_BACKEND == "redis":
            redis_client = redis_client or create_redis_client(settings)
            users = users or RedisUserStore(redis_client)
            projects = projects or RedisProjectStore(redis_client)
        else:
            users = users or InMemoryUserStore()
            projects = projects or InMemoryProjectStore()

    gateway = gateway or build_gateway(settings)
    credentials = TokenCredentialStore(users, settings)
    hub = ChatHub(
        credentials=credentials,
        gateway=gateway,
        history_limit=settings.HISTORY_LIMIT,
        assistant_max_retries=settings.ASSISTANT_MAX_RETRIES,
        assistant_retry_delay=settings.ASSISTANT_RETRY_DELAY,
        room_policy=project_room_policy(projects),
    )
    return AppState(
        settings=settings,
        users=users,
        projects=projects,
        credentials=credentials,
        gateway=gateway,
        hub=hub,
        redis=redis_client,
    )


def get_state(conn: HTTPConnection) -> AppState:
    """FastAPI dependency; works for both HTTP requests and websockets."""
    return conn.app.state.chat
