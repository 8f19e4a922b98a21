"""
Email/password authentication with signed bearer tokens.

Features:
- bcrypt password hashes
- HS256 JWT access tokens (python-jose), 7 day expiry by default
- Bearer token from the Authorization header or a ``token`` cookie
- TokenCredentialStore: the identity check the chat hub runs for every
  new socket or poller
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from fastapi import APIRouter, Depends, HTTPException, Request, status
from jose import JWTError, jwt

from teamchat.core.errors import Conflict, Unauthorized
from teamchat.core.logging import get_logger
from teamchat.models.models import AuthResponse, LoginRequest, RegisterRequest, UserOut
from teamchat.services.store import UserRecord, UserStore

logger = get_logger(__name__)

COOKIE_NAME = "token"
BCRYPT_ROUNDS = 10

router = APIRouter(prefix="/auth", tags=["Authentication"])


# ============================================================================
# PASSWORDS & TOKENS
# ============================================================================

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def create_access_token(user: UserRecord, settings, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=settings.JWT_EXPIRE_DAYS))
    claims = {"sub": user.id, "email": user.email, "exp": expire}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str, settings) -> Dict[str, Any]:
    if not token:
        raise Unauthorized("No token provided")
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        raise Unauthorized("Invalid token") from e
    if not claims.get("sub"):
        raise Unauthorized("Invalid token")
    return claims


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


# ============================================================================
# CREDENTIAL STORE
# ============================================================================

@dataclass(frozen=True)
class Identity:
    participant_id: str
    handle: str


class TokenCredentialStore:
    """Verifies a bearer token and resolves it to a known user."""

    def __init__(self, users: UserStore, settings) -> None:
        self.users = users
        self.settings = settings

    async def resolve(self, token: Optional[str]) -> UserRecord:
        claims = decode_access_token(token or "", self.settings)
        user = await self.users.get(claims["sub"])
        if not user:
            raise Unauthorized("User not found")
        return user

    async def verify(self, token: Optional[str]) -> Identity:
        user = await self.resolve(token)
        return Identity(participant_id=user.id, handle=user.email)


def to_user_out(user: UserRecord) -> UserOut:
    return UserOut(id=user.id, email=user.email, created_at=user.created_at)


# ============================================================================
# DEPENDENCIES
# ============================================================================

async def get_current_user(request: Request) -> UserRecord:
    """
    Resolve the caller from its bearer token.
    Use as dependency for protected endpoints.
    """
    chat = request.app.state.chat
    token = bearer_token(request.headers.get("Authorization")) or request.cookies.get(COOKIE_NAME)
    if not token:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Not authenticated")
    try:
        return await chat.credentials.resolve(token)
    except Unauthorized as e:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, e.message)


# ============================================================================
# ROUTES
# ============================================================================

@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterRequest, request: Request):
    """Create an account and return it together with a fresh token."""
    chat = request.app.state.chat
    try:
        user = await chat.users.create(payload.email, hash_password(payload.password))
    except Conflict as e:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, e.message)

    logger.info("User registered: %s", user.id)
    return AuthResponse(user=to_user_out(user), token=create_access_token(user, chat.settings))


@router.post("/login", response_model=AuthResponse)
async def login(payload: LoginRequest, request: Request):
    """Exchange email and password for a token."""
    chat = request.app.state.chat
    if not payload.email or not payload.password:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Email and password are required")

    user = await chat.users.get_by_email(payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        logger.info("Failed login attempt")
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid email or password")

    logger.info("User logged in: %s", user.id)
    return AuthResponse(user=to_user_out(user), token=create_access_token(user, chat.settings))


@router.get("/me")
async def get_user_profile(current_user: UserRecord = Depends(get_current_user)):
    """Get current user profile."""
    return {
        "authenticated": True,
        "user": to_user_out(current_user).model_dump(mode="json", by_alias=True),
    }
