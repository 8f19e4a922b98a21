# teamchat/api/routes/health.py
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from teamchat.core.state import AppState, get_state

router = APIRouter()


@router.get("/health")
async def health(chat: AppState = Depends(get_state)):
    """
    Health check endpoint.

    Returns current system status, connection counts, and room counts.
    Used by container health probes and monitoring.

    Returns:
        dict: Status, hub counters, uptime
    """
    uptime_seconds = (datetime.now(timezone.utc) - chat.app_start_time).total_seconds()
    return {
        "status": "healthy",
        "storage": chat.settings.STORAGE_BACKEND,
        "assistant": chat.settings.ASSISTANT_PROVIDER,
        "uptime_hours": round(uptime_seconds / 3600, 2),
        **chat.hub.stats(),
    }
