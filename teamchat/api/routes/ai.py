# teamchat/api/routes/ai.py

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from teamchat.core.errors import AssistantError, AssistantRateLimited, AssistantUnavailable
from teamchat.core.logging import get_logger
from teamchat.core.state import AppState, get_state
from teamchat.services.assistant_gateway import generate_with_retry
from teamchat.services.auth_service import get_current_user

logger = get_logger(__name__)

router = APIRouter(prefix="/ai", tags=["Assistant"])


@router.get("/get-result")
async def get_result(
    prompt: Optional[str] = None,
    chat: AppState = Depends(get_state),
    _user=Depends(get_current_user),
):
    """
    Ask the assistant directly, outside any room.

    Uses the same retry policy as "@ai" chat messages.

    Raises:
        HTTPException: 400 without a prompt, 429 on quota errors,
                       503 while the service stays unavailable, 500 otherwise
    """
    if not prompt or not prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt is required")

    try:
        result = await generate_with_retry(
            chat.gateway,
            prompt,
            max_retries=chat.settings.ASSISTANT_MAX_RETRIES,
            retry_delay=chat.settings.ASSISTANT_RETRY_DELAY,
        )
    except AssistantRateLimited as e:
        raise HTTPException(status_code=429, detail=e.message)
    except AssistantUnavailable as e:
        raise HTTPException(status_code=503, detail=e.message)
    except AssistantError as e:
        logger.error("AI API error: %s", e.message)
        raise HTTPException(status_code=500, detail=e.message)

    return {"result": result}


@router.get("/health")
async def health_check(chat: AppState = Depends(get_state)):
    """Probe the assistant; 200 when it answers, 503 otherwise."""
    health = await chat.gateway.health()
    return JSONResponse(status_code=200 if health["status"] == "healthy" else 503, content=health)
