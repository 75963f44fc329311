"""Caller authentication for the retrieval API.

Requests carry a bearer JWT issued by the application's identity provider
(Supabase-style project tokens: HS256, ``sub`` is the user id,
``aud=authenticated``). The service only verifies tokens; it never issues
them outside of tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = structlog.get_logger("auth")

# auto_error=False so a missing header becomes our own 401 instead of 403
security = HTTPBearer(auto_error=False)


class AuthManager:
    """Verifies end‑user JWTs.

    Keep payloads minimal (subject, role) and avoid sensitive data.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        audience: Optional[str] = None,
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.audience = audience

    def create_access_token(
        self,
        data: Dict[str, Any],
        expires_delta: Optional[timedelta] = None
    ) -> str:
        """Create a signed JWT access token."""
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))
        to_encode.update({"exp": expire})
        if self.audience and "aud" not in to_encode:
            to_encode["aud"] = self.audience
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Dict[str, Any]:
        """Verify and decode a JWT token.

        Raises ``HTTPException`` with 401 on invalid/expired tokens.
        """
        try:
            options = {"verify_aud": self.audience is not None}
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                options=options,
            )
        except jwt.ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
                headers={"WWW-Authenticate": "Bearer"},
            )
        except jwt.PyJWTError as e:
            logger.info("Rejected bearer token", error=str(e))
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Could not validate credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )


def get_auth_manager(request: Request) -> AuthManager:
    """Get the auth manager from application state."""
    return request.app.state.auth_manager


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth_manager: AuthManager = Depends(get_auth_manager),
) -> str:
    """FastAPI dependency resolving the caller's user id.

    Missing header, malformed token or a token without ``sub`` all map to 401.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = auth_manager.verify_token(credentials.credentials)
    user_id = payload.get("sub")
    if not user_id or not isinstance(user_id, str):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


def create_auth_manager_from_config(config) -> AuthManager:
    """Create auth manager from config."""
    return AuthManager(
        secret_key=config.rag_jwt_secret_key,
        algorithm=config.rag_jwt_algorithm,
        audience=config.rag_jwt_audience,
    )
