"""
Authentication service.

Issues and verifies the JWTs that identify users on both the WebSocket
handshake and the REST API.
"""
from typing import Optional, Dict, Any
from datetime import datetime, timedelta
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
import logging

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


class AuthenticationError(Exception):
    """Raised when a token cannot be turned into an identity."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class AuthService:
    """Handles token creation and verification."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expiration_hours: int = 24
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expiration_hours = expiration_hours

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "AuthService":
        cfg = cfg or get_settings()
        return cls(
            secret_key=cfg.secret_key.get_secret_value(),
            algorithm=cfg.jwt_algorithm,
            expiration_hours=cfg.jwt_expiration_hours
        )

    def create_token(self, user_id: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        """
        Create a JWT token.

        Args:
            user_id: User identifier
            metadata: Additional claims

        Returns:
            JWT token string
        """
        now = datetime.utcnow()
        payload = {
            "sub": str(user_id),
            "exp": now + timedelta(hours=self.expiration_hours),
            "iat": now,
            "type": "access"
        }

        if metadata:
            payload.update(metadata)

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

        logger.debug(f"Created token for user: {user_id}")
        return token

    def verify_token(self, token: str) -> Dict[str, Any]:
        """
        Verify and decode a JWT token.

        Raises:
            AuthenticationError: Expired or otherwise invalid token
        """
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])

        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired")

        except jwt.InvalidTokenError as e:
            logger.debug(f"Rejected token: {e}")
            raise AuthenticationError("Invalid token")

    def identity_from_token(self, token: Optional[str]) -> str:
        """
        Resolve a bearer token to the identity it names.

        The identity is the ``sub`` claim, falling back to ``id``.

        Raises:
            AuthenticationError: Missing, invalid or identity-less token
        """
        if not token:
            raise AuthenticationError("Authentication required")

        payload = self.verify_token(token)
        identity = payload.get("sub") or payload.get("id")
        if identity is None or str(identity) == "":
            raise AuthenticationError("Invalid token")
        return str(identity)


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth


def require_auth(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth: AuthService = Depends(get_auth_service)
) -> str:
    """
    Require authentication for an endpoint.

    Returns:
        Identity of the caller

    Raises:
        HTTPException: If not authenticated
    """
    try:
        return auth.identity_from_token(credentials.credentials if credentials else None)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.reason,
            headers={"WWW-Authenticate": "Bearer"}
        )


__all__ = [
    'AuthService',
    'AuthenticationError',
    'get_auth_service',
    'require_auth',
    'security',
]
