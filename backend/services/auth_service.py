# Supabase JWT validation
# services/auth_service.py
"""
Authentication service integrating with Supabase Auth.
Tokens are verified locally when the project's JWT secret is configured,
otherwise by asking Supabase who the bearer is.
"""

import jwt
from typing import Dict, Any, Optional
import httpx
import structlog
from fastapi import HTTPException, status
from utils.config import settings


logger = structlog.get_logger()

# Fixed identity accepted for the debug-only bypass token
DEV_USER_ID = "00000000-0000-4000-8000-000000000000"


def unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"}
    )


class AuthService:
    """Resolves a bearer token to the calling user"""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self.jwt_secret = settings.supabase_jwt_secret
        self.jwt_algorithm = settings.jwt_algorithm
        self.jwt_audience = settings.jwt_audience
        self.supabase_url = settings.supabase_url
        self.supabase_anon_key = settings.supabase_anon_key
        self.http_client = http_client
        self.logger = logger.bind(service="AuthService")

    async def verify_token(self, token: str) -> Dict[str, Any]:
        """Return ``{id, email, role}`` for a valid token or raise 401"""

        if token == "demo-token" and settings.debug:
            self.logger.info("Using demo token bypass")
            return {"id": DEV_USER_ID, "email": "demo@example.com", "role": "authenticated"}

        if self.jwt_secret:
            return self._decode_local(token)

        if self.supabase_url:
            return await self.verify_supabase_token(token)

        self.logger.error("No token verification method configured")
        raise unauthorized("Authentication is not configured")

    def _decode_local(self, token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=[self.jwt_algorithm],
                audience=self.jwt_audience,
                options={"verify_exp": True}
            )
        except jwt.ExpiredSignatureError:
            self.logger.warning("Token expired")
            raise unauthorized("Token has expired")
        except jwt.InvalidTokenError as e:
            self.logger.warning("Invalid token", error=str(e))
            raise unauthorized("Invalid authentication token")

        user_id = payload.get("sub")
        if not user_id:
            self.logger.warning("Token missing user ID")
            raise unauthorized("Invalid token: missing user ID")

        return {
            "id": user_id,
            "email": payload.get("email"),
            "role": payload.get("role", "authenticated")
        }

    async def verify_supabase_token(self, token: str) -> Dict[str, Any]:
        """Verify the token against Supabase's ``/auth/v1/user`` endpoint"""

        headers = {"Authorization": f"Bearer {token}"}
        if self.supabase_anon_key:
            headers["apikey"] = self.supabase_anon_key

        try:
            if self.http_client is not None:
                response = await self.http_client.get(
                    f"{self.supabase_url}/auth/v1/user", headers=headers, timeout=10.0
                )
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    response = await client.get(f"{self.supabase_url}/auth/v1/user", headers=headers)

        except httpx.HTTPError as e:
            self.logger.error("Supabase verification failed", error=str(e))
            raise unauthorized("Authentication service unavailable")

        if response.status_code != 200:
            self.logger.warning("Supabase rejected token", status_code=response.status_code)
            raise unauthorized("Invalid authentication token")

        user_data = response.json()
        if not user_data.get("id"):
            raise unauthorized("Invalid token: missing user ID")

        return {
            "id": user_data["id"],
            "email": user_data.get("email"),
            "role": user_data.get("role", "authenticated")
        }
