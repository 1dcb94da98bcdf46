"""Session identity using JWT tokens issued by the host application."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException, Request, status
from jose import JWTError, jwt
from pydantic import BaseModel

from caldesk.config import get_session_secret, get_settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
SESSION_COOKIE_NAME = "session"


class SessionData(BaseModel):
    """Session data stored in JWT."""
    user_id: str
    email: Optional[str] = None
    exp: datetime


class User(BaseModel):
    """Verified identity of the calendar owner making a request."""
    id: str
    email: Optional[str] = None


def create_session_token(user_id: str, email: Optional[str] = None) -> str:
    """Create a JWT session token."""
    settings = get_settings()
    expire = datetime.utcnow() + timedelta(days=settings.session_expire_days)
    data = {
        "user_id": user_id,
        "email": email,
        "exp": expire,
    }
    return jwt.encode(data, get_session_secret(), algorithm=ALGORITHM)


def verify_session_token(token: str) -> Optional[SessionData]:
    """Verify and decode a session token."""
    try:
        payload = jwt.decode(token, get_session_secret(), algorithms=[ALGORITHM])
        return SessionData(**payload)
    except JWTError as e:
        logger.warning(f"Invalid session token: {e}")
        return None


def _token_from_request(request: Request) -> Optional[str]:
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if token:
        return token

    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials
    return None


async def get_current_user(request: Request) -> User:
    """Get current user from session, raises 401 if not authenticated."""
    token = _token_from_request(request)
    session = verify_session_token(token) if token else None
    if not session:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return User(id=session.user_id, email=session.email)
