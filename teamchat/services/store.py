# teamchat/services/store.py

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import WatchError
from pydantic import BaseModel, Field

from teamchat.core.errors import Conflict, InvalidRequest, NotFound

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# RECORDS
# ============================================================================

class UserRecord(BaseModel):
    id: str
    email: str
    password_hash: str
    created_at: datetime = Field(default_factory=_now)


class ProjectRecord(BaseModel):
    id: str
    name: str
    users: List[str] = []
    created_at: datetime = Field(default_factory=_now)


def normalise_email(email: str) -> str:
    return email.strip().lower()


def normalise_project_name(name: str) -> str:
    name = (name or "").strip().lower()
    if not name:
        raise InvalidRequest("Name is required")
    return name


class UserStore(Protocol):
    async def create(self, email: str, password_hash: str) -> UserRecord: ...
    async def get(self, user_id: str) -> Optional[UserRecord]: ...
    async def get_by_email(self, email: str) -> Optional[UserRecord]: ...
    async def list_all(self, exclude: Optional[str] = None) -> List[UserRecord]: ...


class ProjectStore(Protocol):
    async def create(self, name: str, owner_id: str) -> ProjectRecord: ...
    async def get(self, project_id: str) -> Optional[ProjectRecord]: ...
    async def list_for_user(self, user_id: str) -> List[ProjectRecord]: ...
    async def add_users(self, project_id: str, user_ids: Iterable[str]) -> ProjectRecord: ...
    async def is_member(self, project_id: str, user_id: str) -> bool: ...


# ============================================================================
# IN-MEMORY STORES
# ============================================================================

class InMemoryUserStore:
    """Dict-backed user store for development and tests. Lost on restart."""

    def __init__(self) -> None:
        self.users: Dict[str, UserRecord] = {}
        self._by_email: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def create(self, email: str, password_hash: str) -> UserRecord:
        email = normalise_email(email)
        async with self._lock:
            if email in self._by_email:
                raise Conflict("User already exists")
            user = UserRecord(id=uuid.uuid4().hex, email=email, password_hash=password_hash)
            self.users[user.id] = user
            self._by_email[email] = user.id
        logger.info("✓ Created user %s", user.id)
        return user

    async def get(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    async def get_by_email(self, email: str) -> Optional[UserRecord]:
        user_id = self._by_email.get(normalise_email(email))
        return self.users.get(user_id) if user_id else None

    async def list_all(self, exclude: Optional[str] = None) -> List[UserRecord]:
        return [u for u in self.users.values() if u.id != exclude]


class InMemoryProjectStore:
    """Dict-backed project store for development and tests."""

    def __init__(self) -> None:
        self.projects: Dict[str, ProjectRecord] = {}
        self._lock = asyncio.Lock()

    async def create(self, name: str, owner_id: str) -> ProjectRecord:
        name = normalise_project_name(name)
        if not owner_id:
            raise InvalidRequest("User ID is required")
        async with self._lock:
            if any(p.name == name for p in self.projects.values()):
                raise Conflict("Project name must be unique")
            project = ProjectRecord(id=uuid.uuid4().hex, name=name, users=[owner_id])
            self.projects[project.id] = project
        logger.info("✓ Created project: %s", project.name)
        return project

    async def get(self, project_id: str) -> Optional[ProjectRecord]:
        return self.projects.get(project_id)

    async def list_for_user(self, user_id: str) -> List[ProjectRecord]:
        return [p for p in self.projects.values() if user_id in p.users]

    async def add_users(self, project_id: str, user_ids: Iterable[str]) -> ProjectRecord:
        async with self._lock:
            project = self.projects.get(project_id)
            if not project:
                raise NotFound("Project not found")
            merged = list(project.users)
            for user_id in user_ids:
                if user_id not in merged:
                    merged.append(user_id)
            project = project.model_copy(update={"users": merged})
            self.projects[project_id] = project
        return project

    async def is_member(self, project_id: str, user_id: str) -> bool:
        project = self.projects.get(project_id)
        return bool(project and user_id in project.users)


# ============================================================================
# REDIS STORES
# ============================================================================

def create_redis_client(settings) -> redis.Redis:
    """Build the redis client for the persistent stores. Connects lazily; ping it on startup."""
    scheme = "rediss" if settings.REDIS_SSL else "redis"
    auth = f":{settings.REDIS_ACCESS_KEY}@" if settings.REDIS_ACCESS_KEY else ""
    client = redis.from_url(
        f"{scheme}://{auth}{settings.REDIS_HOST}:{settings.REDIS_PORT}",
        decode_responses=True,
    )
    logger.info("Redis store at %s:%s", settings.REDIS_HOST, settings.REDIS_PORT)
    return client


class RedisUserStore:
    """
    Users as JSON documents.

    Keys:
        user:{id}             -> UserRecord JSON
        user_email:{email}    -> user id (uniqueness index)
        users                 -> set of all user ids
    """

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    async def create(self, email: str, password_hash: str) -> UserRecord:
        email = normalise_email(email)
        user = UserRecord(id=uuid.uuid4().hex, email=email, password_hash=password_hash)
        # SET NX on the email index is the uniqueness check
        claimed = await self.client.set(f"user_email:{email}", user.id, nx=True)
        if not claimed:
            raise Conflict("User already exists")
        await self.client.set(f"user:{user.id}", user.model_dump_json())
        await self.client.sadd("users", user.id)
        logger.info("✓ Created user %s", user.id)
        return user

    async def get(self, user_id: str) -> Optional[UserRecord]:
        raw = await self.client.get(f"user:{user_id}")
        return UserRecord.model_validate_json(raw) if raw else None

    async def get_by_email(self, email: str) -> Optional[UserRecord]:
        user_id = await self.client.get(f"user_email:{normalise_email(email)}")
        return await self.get(user_id) if user_id else None

    async def list_all(self, exclude: Optional[str] = None) -> List[UserRecord]:
        ids = sorted(await self.client.smembers("users"))
        users = []
        for user_id in ids:
            if user_id == exclude:
                continue
            user = await self.get(user_id)
            if user:
                users.append(user)
        return users


class RedisProjectStore:
    """
    Projects as JSON documents.

    Keys:
        project:{id}            -> ProjectRecord JSON
        project_name:{name}     -> project id (uniqueness index)
        user_projects:{user_id} -> set of project ids the user belongs to
    """

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    async def create(self, name: str, owner_id: str) -> ProjectRecord:
        name = normalise_project_name(name)
        if not owner_id:
            raise InvalidRequest("User ID is required")
        project = ProjectRecord(id=uuid.uuid4().hex, name=name, users=[owner_id])
        claimed = await self.client.set(f"project_name:{name}", project.id, nx=True)
        if not claimed:
            raise Conflict("Project name must be unique")
        await self.client.set(f"project:{project.id}", project.model_dump_json())
        await self.client.sadd(f"user_projects:{owner_id}", project.id)
        logger.info("✓ Created project: %s", project.name)
        return project

    async def get(self, project_id: str) -> Optional[ProjectRecord]:
        raw = await self.client.get(f"project:{project_id}")
        return ProjectRecord.model_validate_json(raw) if raw else None

    async def list_for_user(self, user_id: str) -> List[ProjectRecord]:
        ids = sorted(await self.client.smembers(f"user_projects:{user_id}"))
        projects = []
        for project_id in ids:
            project = await self.get(project_id)
            if project:
                projects.append(project)
        return projects

    async def add_users(self, project_id: str, user_ids: Iterable[str]) -> ProjectRecord:
        user_ids = list(user_ids)
        # WATCH/MULTI so concurrent add_users calls don't drop each other's members
        async with self.client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(f"project:{project_id}")
                    raw = await pipe.get(f"project:{project_id}")
                    if not raw:
                        raise NotFound("Project not found")
                    project = ProjectRecord.model_validate_json(raw)
                    merged = list(project.users)
                    for user_id in user_ids:
                        if user_id not in merged:
                            merged.append(user_id)
                    project = project.model_copy(update={"users": merged})
                    pipe.multi()
                    pipe.set(f"project:{project_id}", project.model_dump_json())
                    for user_id in merged:
                        pipe.sadd(f"user_projects:{user_id}", project_id)
                    await pipe.execute()
                    return project
                except WatchError:
                    logger.info("Retrying add_users for project %s after concurrent write", project_id)
                    continue

    async def is_member(self, project_id: str, user_id: str) -> bool:
        return bool(await self.client.sismember(f"user_projects:{user_id}", project_id))
