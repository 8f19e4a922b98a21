# teamchat/api/routes/root.py

from fastapi import APIRouter

router = APIRouter()


@router.get("/")
async def root():
    """
    Root endpoint - API information.

    Returns basic info about the API and its features.
    """
    return {
        "message": "TeamChat - projects, rooms and an in-chat assistant",
        "version": "1.0",
        "transports": ["websocket", "polling"],
        "assistant_prefix": "@ai ",
        "endpoints": {
            "websocket": "/ws",
            "auth": "/auth",
            "users": "/users",
            "projects": "/projects",
            "chat": "/chat/messages",
            "ai": "/ai/get-result",
            "rooms": "/rooms",
            "health": "/health",
        },
    }
