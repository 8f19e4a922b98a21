# teamchat/api/websocket.py

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from teamchat.core.errors import Forbidden, InvalidRequest, Unauthorized
from teamchat.core.state import get_state
from teamchat.services.auth_service import bearer_token
from teamchat.services.chat_hub import ChatHub, Participant

logger = logging.getLogger(__name__)

router = APIRouter()

# ============================================================================
# WEBSOCKET ENDPOINT
# ============================================================================

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = None):
    """
    WebSocket endpoint for real-time chat.

    Protocol:
    =========

    Connect:
        /ws?token=<jwt>   (or "Authorization: Bearer <jwt>")
        Bad or missing tokens are refused before the handshake completes.
        Response: {"type": "connected", "participant": {"id": "...", "handle": "..."}}

    Client -> Server Actions:
    -------------------------
    Join Room:
        {"action": "join", "room": "general"}
        Others get: {"type": "system", "message": {... "kind": "system"}}
        Everyone gets: {"type": "presence", "room": "general", "participants": [...]}

    Send Message:
        {"action": "send", "room": "general", "text": "hello"}
        Everyone gets: {"type": "message", "message": {... "kind": "user"}}
        "@ai <prompt>" additionally produces an "assistant" message later.

    Leave Room:
        {"action": "leave"}

    Presence:
        {"action": "presence", "room": "general"}
        Response: {"type": "presence", "room": "general", "participants": [...]}

    Keep-alive:
        {"action": "ping"}
        Response: {"type": "pong"}
        Clients that only listen send this within WS_IDLE_TIMEOUT seconds.

    Error (to this connection only, the connection stays open):
        {"type": "error", "code": "invalid_request", "message": "..."}

    Lifecycle:
    ==========
    1. Token verified, connection accepted
    2. A writer task drains the participant's outbox into the socket
    3. Any frame (ping included) is activity; none for WS_IDLE_TIMEOUT
       seconds closes the connection
    4. On any exit the participant leaves its room (leave notice + presence)
    """
    chat = get_state(websocket)
    hub = chat.hub
    credential = token or bearer_token(websocket.headers.get("authorization"))

    try:
        participant = await hub.authenticate(credential, outbox=asyncio.Queue())
    except Unauthorized as e:
        logger.info("WebSocket refused: %s", e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return

    await websocket.accept()
    writer = asyncio.create_task(_pump_outbox(websocket, participant))
    hub.notify(participant, {"type": "connected", "participant": participant.entry.model_dump()})

    try:
        while True:
            data = await asyncio.wait_for(
                websocket.receive_text(), timeout=chat.settings.WS_IDLE_TIMEOUT
            )
            hub.touch(participant)
            await _handle_frame(hub, participant, data)

    except WebSocketDisconnect:
        pass
    except asyncio.TimeoutError:
        logger.info("⏱ %s idle for %ss, closing", participant.handle, chat.settings.WS_IDLE_TIMEOUT)
        await websocket.close(code=status.WS_1001_GOING_AWAY)
    except Exception as e:
        logger.error("WebSocket error: %s", e)
    finally:
        await hub.leave(participant)
        writer.cancel()


async def _handle_frame(hub: ChatHub, participant: Participant, data: str) -> None:
    try:
        message = json.loads(data)
    except json.JSONDecodeError:
        hub.notify(participant, _error("invalid_request", "Invalid JSON"))
        return
    if not isinstance(message, dict):
        hub.notify(participant, _error("invalid_request", "Expected a JSON object"))
        return

    for field_name in ("room", "text"):
        value = message.get(field_name)
        if value is not None and not isinstance(value, str):
            hub.notify(participant, _error("invalid_request", f"'{field_name}' must be a string"))
            return

    action = message.get("action")
    logger.debug("Websocket input from %s: action=%s", participant.handle, action)

    try:
        if action == "join":
            await hub.join_room(participant, message.get("room"))

        elif action == "send":
            await hub.send_message(participant, message.get("room") or participant.room, message.get("text"))

        elif action == "leave":
            await hub.leave_room(participant)

        elif action == "ping":
            hub.notify(participant, {"type": "pong"})

        elif action == "presence":
            room = message.get("room") or participant.room
            hub.notify(
                participant,
                {
                    "type": "presence",
                    "room": room,
                    "participants": [e.model_dump() for e in hub.presence(room)] if room else [],
                },
            )

        else:
            hub.notify(participant, _error("invalid_request", f"Unknown action: {action}"))

    except (InvalidRequest, Forbidden) as e:
        hub.notify(participant, _error(e.code, e.message))


async def _pump_outbox(websocket: WebSocket, participant: Participant) -> None:
    """Deliver queued hub events to the socket in the order they were queued."""
    while True:
        event = await participant.outbox.get()
        try:
            await websocket.send_json(event)
        except Exception as e:
            logger.error("Send error to %s: %s", participant.handle, e)
            return


def _error(code: str, message: str) -> dict:
    return {"type": "error", "code": code, "message": message}
