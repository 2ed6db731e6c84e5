"""
Caller identity from Supabase-issued bearer tokens
"""

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
from supabase import create_client, Client
from datetime import datetime, timezone
import uuid

from casedrills.config import settings
from casedrills.utils.constants import ERROR_MESSAGES
from casedrills.utils.error_handler import AuthenticationError
from casedrills.utils.logger import logger


security = HTTPBearer(auto_error=False)


_cached_client: Optional[Client] = None

def get_supabase_client() -> Optional[Client]:
    """Create and return the Supabase client used for token verification"""
    global _cached_client

    if _cached_client is not None:
        return _cached_client

    try:
        if not settings.supabase_configured:
            logger.warning("Supabase credentials not configured; bearer tokens cannot be verified")
            return None
        _cached_client = create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
        return _cached_client
    except Exception as e:
        logger.error(f"Failed to create Supabase client: {str(e)}")
        return None


def verify_jwt_token(token: str) -> Optional[dict]:
    """
    Verify JWT token and extract user information

    Args:
        token: JWT token string

    Returns:
        User information dictionary or None if invalid
    """
    try:
        supabase = get_supabase_client()
        if not supabase:
            return None

        user_response = supabase.auth.get_user(token)

        if user_response and user_response.user:
            user = user_response.user

            token_metadata = getattr(user_response, 'token_metadata', {}) or {}
            exp = token_metadata.get('exp')
            if exp and datetime.fromtimestamp(exp, tz=timezone.utc) < datetime.now(timezone.utc):
                logger.warning("Token has expired")
                return None

            return {
                "id": str(user.id),
                "email": user.email or "",
            }

        return None
    except Exception as e:
        logger.error(f"Token verification error: {str(e)}", exc_info=True)
        return None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> dict:
    """
    Dependency to get current authenticated user with request context

    Args:
        request: FastAPI request object
        credentials: HTTP Bearer token credentials

    Returns:
        User information dictionary

    Raises:
        AuthenticationError: If the token is missing or invalid
    """
    if not hasattr(request.state, "request_id"):
        request.state.request_id = str(uuid.uuid4())

    if not credentials:
        logger.warning(
            "Missing authentication credentials",
            extra={"request_id": request.state.request_id, "path": request.url.path}
        )
        raise AuthenticationError()

    user = verify_jwt_token(credentials.credentials)

    if not user:
        logger.warning(
            "Invalid or expired token",
            extra={"request_id": request.state.request_id, "path": request.url.path}
        )
        raise AuthenticationError(ERROR_MESSAGES["INVALID_TOKEN"])

    request.state.user_id = user["id"]

    logger.debug(
        "User authenticated",
        extra={
            "request_id": request.state.request_id,
            "user_id": user["id"],
            "path": request.url.path
        }
    )

    return user
