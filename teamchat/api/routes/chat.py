# teamchat/api/routes/chat.py

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from teamchat.core.errors import Forbidden, InvalidRequest, Unauthorized
from teamchat.core.state import AppState, get_state
from teamchat.models.models import ChatPostRequest
from teamchat.services.auth_service import COOKIE_NAME, bearer_token
from teamchat.services.chat_hub import Participant

router = APIRouter(prefix="/chat", tags=["Chat"])

# ============================================================================
# POLLING TRANSPORT
# ============================================================================
#
# Same hub, no socket: each user gets one outbox-less participant
# ("poll:<user id>") that joins the room it polls. Clients read new
# messages from the room history with ?since=<timestamp> or ?after=<id>.
# Every poll is also a presence heartbeat; pollers silent for
# POLL_IDLE_TIMEOUT seconds are removed by the background sweeper.


async def _poller(request: Request, chat: AppState, room: str) -> Participant:
    token = bearer_token(request.headers.get("Authorization")) or request.cookies.get(COOKIE_NAME)
    try:
        # Participant id is derived from the token's user after verification
        identity = await chat.credentials.verify(token)
        participant = await chat.hub.authenticate(token, participant_id=f"poll:{identity.participant_id}")
        if participant.room != room:
            await chat.hub.join_room(participant, room)
    except Unauthorized as e:
        raise HTTPException(status_code=401, detail=e.message)
    except Forbidden as e:
        raise HTTPException(status_code=403, detail=e.message)
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=e.message)
    chat.hub.touch(participant)
    return participant


@router.get("/messages")
async def poll_messages(
    request: Request,
    room: Optional[str] = None,
    since: Optional[datetime] = None,
    after: Optional[int] = None,
    chat: AppState = Depends(get_state),
):
    """
    Messages of ``room`` newer than ``since`` / after message id ``after``,
    plus the room's current presence.
    """
    room = room or chat.settings.DEFAULT_ROOM
    await _poller(request, chat, room)
    messages = chat.hub.since(room, since=since, after_id=after)
    return {
        "success": True,
        "messages": [m.to_wire() for m in messages],
        "onlineUsers": [entry.model_dump() for entry in chat.hub.presence(room)],
    }


@router.post("/messages")
async def post_message(
    payload: ChatPostRequest,
    request: Request,
    chat: AppState = Depends(get_state),
):
    """
    Send a message as the polling participant. "@ai " works as on sockets:
    the assistant's reply shows up in a later poll.

    Raises:
        HTTPException: 400 for blank text, 401 without a valid token
    """
    room = payload.room or chat.settings.DEFAULT_ROOM
    participant = await _poller(request, chat, room)
    try:
        message = await chat.hub.send_message(participant, room, payload.message)
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=e.message)
    return {"success": True, "message": message.to_wire()}
