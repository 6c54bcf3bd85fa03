# Bearer authentication
# middleware/auth.py
"""Authentication dependency for gateway routes"""

from fastapi import Request, HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional, Dict, Any
import structlog
from services.auth_service import AuthService


logger = structlog.get_logger()
security = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Dict[str, Any]:
    """
    Dependency resolving the authenticated caller.
    The user is also stored on ``request.state`` for the rate limiter.
    """

    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    auth_service = getattr(request.app.state, "auth_service", None) or AuthService()

    user_data = await auth_service.verify_token(credentials.credentials)
    request.state.user = user_data

    structlog.contextvars.bind_contextvars(user_id=user_data["id"])
    logger.debug("Authenticated request", path=request.url.path)
    return user_data
