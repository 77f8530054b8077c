"""Bearer-token authentication against Supabase Auth."""

import asyncio
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from consultant.core.logging import get_logger

logger = get_logger(__name__)

# HTTP Bearer scheme for Authorization header
security = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Resolve the Supabase JWT in the Authorization header to a user id.

    Raises:
        HTTPException: 401 if the token is missing or rejected
    """
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    try:
        from consultant.db.supabase_client import get_supabase

        client = get_supabase()

        # Validates the JWT signature and expiration
        auth_response = await asyncio.to_thread(client.auth.get_user, credentials.credentials)
    except Exception as e:
        logger.warning(f"Token verification failed: {e}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized") from e

    if not auth_response or not auth_response.user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    return str(auth_response.user.id)
