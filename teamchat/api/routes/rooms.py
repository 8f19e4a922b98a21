# teamchat/api/routes/rooms.py

from fastapi import APIRouter, Depends

from teamchat.core.state import AppState, get_state
from teamchat.services.auth_service import get_current_user

router = APIRouter(prefix="/rooms", tags=["Rooms"])


@router.get("")
async def list_active_rooms(chat: AppState = Depends(get_state), _user=Depends(get_current_user)):
    """
    List rooms that currently have members.

    Rooms exist only in memory; they appear on first join and drop out of
    this list once empty.

    Returns:
        dict: room name -> {"member_count", "history_size"}
    """
    return {"rooms": chat.hub.rooms_info()}


@router.get("/{room_name}/presence")
async def room_presence(room_name: str, chat: AppState = Depends(get_state), _user=Depends(get_current_user)):
    """Presence snapshot of one room."""
    return {
        "room": room_name,
        "participants": [entry.model_dump() for entry in chat.hub.presence(room_name)],
    }
