"""
FastAPI dependency injection functions.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from supabase import Client

from calendar_hub.core.database import get_supabase_client
from calendar_hub.core.exceptions import UnauthorizedError
from calendar_hub.core.security import decode_access_token

# Bearer token scheme for Swagger UI; missing header is reported as 401 below
bearer_scheme = HTTPBearer(auto_error=False)


def get_db() -> Client:
    """Dependency: get Supabase client."""
    return get_supabase_client()


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """Dependency: extract and validate user_id from JWT token.

    Returns:
        str: The user's id as string.

    Raises:
        UnauthorizedError: If token is missing, invalid or expired.
    """
    if credentials is None:
        raise UnauthorizedError()

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise UnauthorizedError("Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Token has no user identity")

    return user_id
