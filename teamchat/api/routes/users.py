# teamchat/api/routes/users.py

from typing import List

from fastapi import APIRouter, Depends

from teamchat.core.state import AppState, get_state
from teamchat.models.models import UserOut
from teamchat.services.auth_service import get_current_user, to_user_out
from teamchat.services.store import UserRecord

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/profile")
async def profile(current_user: UserRecord = Depends(get_current_user)):
    """The caller's own account."""
    return {"user": to_user_out(current_user).model_dump(mode="json", by_alias=True)}


@router.get("/all")
async def list_users(
    chat: AppState = Depends(get_state),
    current_user: UserRecord = Depends(get_current_user),
):
    """
    Every registered user except the caller.

    Used by the "add collaborators" picker on a project.
    """
    users: List[UserOut] = [to_user_out(u) for u in await chat.users.list_all(exclude=current_user.id)]
    return {
        "success": True,
        "users": [u.model_dump(mode="json", by_alias=True) for u in users],
    }
