# teamchat/services/chat_hub.py

from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from teamchat.core.errors import AssistantError, Forbidden, InvalidRequest, Unauthorized
from teamchat.models.chat import (
    ASSISTANT_SENDER,
    SYSTEM_SENDER,
    Message,
    MessageKind,
    PresenceEntry,
)
from teamchat.services.assistant_gateway import AssistantGateway, generate_with_retry

logger = logging.getLogger(__name__)

# Case-sensitive; the trailing space is part of the prefix
AI_PREFIX = "@ai "


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class Participant:
    """
    An authenticated connection's identity inside the hub.

    ``outbox`` is the only link to the transport: socket connections get a
    queue that their writer task drains, pollers have none and read the
    room history instead.
    """

    id: str
    user_id: str
    handle: str
    outbox: Optional[asyncio.Queue] = None
    room: Optional[str] = None
    last_activity: datetime = field(default_factory=_now)

    @property
    def entry(self) -> PresenceEntry:
        return PresenceEntry(id=self.user_id, handle=self.handle)


@dataclass(frozen=True)
class AssistantRequest:
    prompt: str
    room: str
    requested_by: PresenceEntry


class Room:
    """Membership and bounded history of one room. Created on first use."""

    def __init__(self, name: str, history_limit: int) -> None:
        self.name = name
        # participant id -> Participant, in join order
        self.members: Dict[str, Participant] = {}
        self.history: Deque[Message] = deque(maxlen=history_limit)
        self.lock = asyncio.Lock()


RoomPolicy = Callable[[Participant, str], Awaitable[bool]]


# ============================================================================
# ROOM / PRESENCE HUB
# ============================================================================

class ChatHub:
    """
    Owns connected participants, room membership and message fan-out.

    Every mutation of a room (membership or history) and the fan-out it
    causes happen while holding that room's lock, and fan-out only does
    non-blocking ``put_nowait`` calls, so all members of a room see the
    room's events in one order. Rooms never share a lock.

    Messages starting with ``"@ai "`` are broadcast like any other message
    and then handed to the assistant in a background task; its reply (or
    error) comes back into the room as an ``assistant`` message.

    Outbound events:
        {"type": "message",  "message": {...}}
        {"type": "system",   "message": {...}}
        {"type": "presence", "room": "general", "participants": [{"id", "handle"}]}
        {"type": "error",    "code": "...", "message": "..."}
    """

    def __init__(
        self,
        credentials,
        gateway: AssistantGateway,
        history_limit: int = 100,
        assistant_max_retries: int = 2,
        assistant_retry_delay: float = 2.0,
        room_policy: Optional[RoomPolicy] = None,
    ) -> None:
        self.credentials = credentials
        self.gateway = gateway
        self.history_limit = history_limit
        self.assistant_max_retries = assistant_max_retries
        self.assistant_retry_delay = assistant_retry_delay
        self.room_policy = room_policy

        # participant id -> Participant
        self.participants: Dict[str, Participant] = {}
        # room name -> Room
        self.rooms: Dict[str, Room] = {}

        self.message_counter = 0
        self._ids = itertools.count(1)
        self._assistant_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def authenticate(
        self,
        credential: Optional[str],
        outbox: Optional[asyncio.Queue] = None,
        participant_id: Optional[str] = None,
    ) -> Participant:
        """
        Verify a credential and register the participant for it.

        Raises Unauthorized for a missing or rejected credential. Passing an
        existing ``participant_id`` returns that participant, provided the
        credential belongs to the same user.
        """
        if not credential:
            raise Unauthorized("No token provided")

        try:
            identity = await self.credentials.verify(credential)
        except Unauthorized as e:
            logger.info("✗ Rejected connection: %s", e.message)
            raise

        if participant_id and participant_id in self.participants:
            existing = self.participants[participant_id]
            if existing.user_id != identity.participant_id:
                raise Unauthorized("Credential does not match this participant")
            existing.last_activity = _now()
            return existing

        participant = Participant(
            id=participant_id or uuid.uuid4().hex,
            user_id=identity.participant_id,
            handle=identity.handle,
            outbox=outbox,
        )
        self.participants[participant.id] = participant
        logger.info("✓ %s connected. Total: %d", participant.handle, len(self.participants))
        return participant

    async def leave(self, participant: Participant) -> None:
        """
        Disconnect cleanup. Safe to call more than once.

        Remaining members of the participant's room get one leave notice and
        one presence snapshot; nothing is broadcast if it was in no room.
        """
        await self.leave_room(participant)
        if self.participants.pop(participant.id, None) is not None:
            logger.info("✗ %s disconnected. Total: %d", participant.handle, len(self.participants))

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        return self.participants.get(participant_id)

    def touch(self, participant: Participant) -> None:
        participant.last_activity = _now()

    async def prune_idle(self, max_idle: float) -> int:
        """Leave every poller silent for more than ``max_idle`` seconds."""
        cutoff = _now() - timedelta(seconds=max_idle)
        stale = [
            p for p in self.participants.values()
            if p.outbox is None and p.last_activity < cutoff
        ]
        for participant in stale:
            logger.info("⏱ %s timed out", participant.handle)
            await self.leave(participant)
        return len(stale)

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    async def join_room(self, participant: Participant, room_name: str) -> None:
        """
        Move a participant into ``room_name``, leaving its previous room.

        The join notice (to the other members) and the presence snapshot (to
        everyone, joiner included) go out under the room lock as one event.
        Re-joining the current room only re-sends presence.
        """
        room_name = self._validate_room(room_name)
        if participant.id not in self.participants:
            raise InvalidRequest("Connection is closed")

        if self.room_policy and not await self.room_policy(participant, room_name):
            raise Forbidden("Not a member of this project")

        if participant.room and participant.room != room_name:
            await self.leave_room(participant)

        room = self._room(room_name)
        async with room.lock:
            joined = participant.id not in room.members
            participant.room = room_name
            participant.last_activity = _now()
            if joined:
                room.members[participant.id] = participant
                notice = self._new_message(
                    f"👋 {participant.handle} joined the chat",
                    SYSTEM_SENDER,
                    room_name,
                    MessageKind.SYSTEM,
                )
                self._record(room, notice)
                self._fanout(room, {"type": "system", "message": notice.to_wire()}, exclude=participant)
            self._fanout(room, self._presence_event(room))

        if joined:
            logger.info("→ %s joined '%s' (%d members)", participant.handle, room_name, len(room.members))

    async def leave_room(self, participant: Participant) -> bool:
        """Take a participant out of its room without disconnecting it."""
        room_name = participant.room
        if room_name is None:
            return False
        participant.room = None

        room = self.rooms.get(room_name)
        if room is None:
            return False

        async with room.lock:
            if room.members.pop(participant.id, None) is None:
                return False
            notice = self._new_message(
                f"👋 {participant.handle} left the chat",
                SYSTEM_SENDER,
                room_name,
                MessageKind.SYSTEM,
            )
            self._record(room, notice)
            self._fanout(room, {"type": "system", "message": notice.to_wire()})
            self._fanout(room, self._presence_event(room))

        logger.info("← %s left '%s' (%d members)", participant.handle, room_name, len(room.members))
        return True

    def presence(self, room_name: str) -> List[PresenceEntry]:
        if not isinstance(room_name, str):
            return []
        room = self.rooms.get(room_name)
        if room is None:
            return []
        return self._snapshot(room)

    def rooms_info(self) -> Dict[str, dict]:
        """Active rooms (with members) and their sizes. Used by /rooms and /health."""
        return {
            name: {
                "member_count": len(room.members),
                "history_size": len(room.history),
            }
            for name, room in self.rooms.items()
            if room.members
        }

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(self, participant: Participant, room_name: str, text: Optional[str]) -> Message:
        """
        Broadcast ``text`` to ``room_name`` as a user message.

        Raises InvalidRequest (nothing broadcast) for blank or non-string text,
        a missing or non-string room, a room the participant is not in, or
        ``"@ai "`` with no prompt.
        """
        room_name = self._validate_room(room_name)
        if text is not None and not isinstance(text, str):
            raise InvalidRequest("Message text must be a string")
        if not text or not text.strip():
            raise InvalidRequest("Message text is required")

        prompt = None
        if text.startswith(AI_PREFIX):
            prompt = text[len(AI_PREFIX):].strip()
            if not prompt:
                raise InvalidRequest("Prompt is required")

        room = self.rooms.get(room_name)
        if room is None or participant.room != room_name:
            raise InvalidRequest(f"Not in room '{room_name}'")

        async with room.lock:
            if participant.id not in room.members:
                raise InvalidRequest(f"Not in room '{room_name}'")
            message = self._new_message(text, participant.entry, room_name, MessageKind.USER)
            self._record(room, message)
            self._fanout(room, {"type": "message", "message": message.to_wire()})
            participant.last_activity = _now()

        self.message_counter += 1
        logger.info("📨 %s -> '%s' (%d members)", participant.handle, room_name, len(room.members))

        if prompt is not None:
            self._dispatch_assistant(AssistantRequest(prompt, room_name, participant.entry))
        return message

    def since(
        self,
        room_name: str,
        since: Optional[datetime] = None,
        after_id: Optional[int] = None,
    ) -> List[Message]:
        """Room history newer than ``since`` and/or after message ``after_id``."""
        room = self.rooms.get(room_name) if isinstance(room_name, str) else None
        if room is None:
            return []
        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)

        messages = list(room.history)
        if since is not None:
            messages = [m for m in messages if m.timestamp > since]
        if after_id is not None:
            messages = [m for m in messages if int(m.id) > after_id]
        return messages

    def notify(self, participant: Participant, event: Dict[str, Any]) -> None:
        """Deliver an event to a single connection."""
        self._deliver(participant, event)

    # ------------------------------------------------------------------
    # Assistant
    # ------------------------------------------------------------------

    def _dispatch_assistant(self, request: AssistantRequest) -> None:
        task = asyncio.create_task(self._run_assistant(request))
        self._assistant_tasks.add(task)
        task.add_done_callback(self._assistant_tasks.discard)

    async def _run_assistant(self, request: AssistantRequest) -> None:
        logger.info("🤖 Assistant request from %s in '%s'", request.requested_by.handle, request.room)
        try:
            reply = await generate_with_retry(
                self.gateway,
                request.prompt,
                max_retries=self.assistant_max_retries,
                retry_delay=self.assistant_retry_delay,
            )
        except AssistantError as e:
            logger.warning("Assistant error in '%s': %s", request.room, e.message)
            await self._post_assistant(request.room, f"AI Error: {e.message}", is_error=True)
            return
        except Exception:
            # The room still gets exactly one reply for the request
            logger.exception("Unexpected assistant failure in '%s'", request.room)
            await self._post_assistant(request.room, "AI Error: AI generation failed", is_error=True)
            return

        await self._post_assistant(request.room, reply, is_error=False)

    async def _post_assistant(self, room_name: str, text: str, is_error: bool) -> None:
        room = self._room(room_name)
        async with room.lock:
            message = self._new_message(
                text, ASSISTANT_SENDER, room_name, MessageKind.ASSISTANT, is_error=is_error
            )
            self._record(room, message)
            self._fanout(room, {"type": "message", "message": message.to_wire()})
        logger.info("🤖 Assistant %s sent to '%s'", "error" if is_error else "reply", room_name)

    @property
    def pending_assistant_requests(self) -> int:
        return len(self._assistant_tasks)

    async def wait_for_assistant(self) -> None:
        """Wait until every in-flight assistant request has posted its reply."""
        while self._assistant_tasks:
            await asyncio.gather(*list(self._assistant_tasks))

    async def close(self) -> None:
        """Cancel in-flight assistant requests on shutdown."""
        tasks = list(self._assistant_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def stats(self) -> Dict[str, int]:
        return {
            "connections": len(self.participants),
            "rooms": len(self.rooms),
            "active_rooms_with_members": sum(1 for r in self.rooms.values() if r.members),
            "messages": self.message_counter,
            "pending_assistant_requests": self.pending_assistant_requests,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_room(room_name: Optional[str]) -> str:
        if room_name is not None and not isinstance(room_name, str):
            raise InvalidRequest("Room must be a string")
        if not room_name or not room_name.strip():
            raise InvalidRequest("Room is required")
        return room_name.strip()

    def _room(self, room_name: str) -> Room:
        room = self.rooms.get(room_name)
        if room is None:
            room = Room(room_name, self.history_limit)
            self.rooms[room_name] = room
        return room

    def _new_message(
        self,
        text: str,
        sender,
        room_name: str,
        kind: MessageKind,
        is_error: bool = False,
    ) -> Message:
        return Message(
            id=str(next(self._ids)),
            text=text,
            sender=sender,
            room=room_name,
            kind=kind,
            timestamp=_now(),
            is_error=is_error,
        )

    @staticmethod
    def _record(room: Room, message: Message) -> None:
        # deque(maxlen=...) drops the oldest entry once full
        room.history.append(message)

    @staticmethod
    def _snapshot(room: Room) -> List[PresenceEntry]:
        # One entry per user even with several open connections
        seen: Dict[str, PresenceEntry] = {}
        for member in room.members.values():
            seen.setdefault(member.user_id, member.entry)
        return list(seen.values())

    def _presence_event(self, room: Room) -> Dict[str, Any]:
        return {
            "type": "presence",
            "room": room.name,
            "participants": [entry.model_dump() for entry in self._snapshot(room)],
        }

    def _fanout(self, room: Room, event: Dict[str, Any], exclude: Optional[Participant] = None) -> None:
        for member in list(room.members.values()):
            if member is exclude:
                continue
            self._deliver(member, event)

    @staticmethod
    def _deliver(participant: Participant, event: Dict[str, Any]) -> None:
        if participant.outbox is not None:
            participant.outbox.put_nowait(event)
