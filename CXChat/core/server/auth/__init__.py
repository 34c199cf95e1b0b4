"""
Authentication module for the server.

Identity is issued elsewhere; this module only verifies HS256 JWTs whose
``sub`` claim is the user id. Tokens are read from the ``?token=`` query
parameter, the auth cookie, or an ``Authorization: Bearer`` header.
"""

import logging
import time
from http.cookies import SimpleCookie
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

import jwt

from CXChat.config import config
from CXChat.core.message.records import is_valid_user_id
from CXChat.core.server.exceptions import AuthenticationError
from CXChat.core.server.interfaces import Authenticator, AuthResult

logger = logging.getLogger(__name__)


def issue_token(user_id: str, secret: str = None, expires_minutes: int = None) -> str:
    """
    Sign an access token for ``user_id``.

    Used by the CLI and tests; production tokens come from the identity
    provider with the same secret.
    """
    now = int(time.time())
    minutes = expires_minutes if expires_minutes is not None else config.JWT_EXPIRE_MINUTES
    payload = {"sub": user_id, "iat": now, "exp": now + minutes * 60}
    return jwt.encode(payload, secret or config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


class JWTAuthenticator:
    """
    JWT-based authenticator implementation.

    Handles token validation using JWT and extracts tokens from
    WebSocket handshakes.
    """

    def __init__(
        self,
        secret: str = None,
        algorithm: str = None,
        token_extractor=None
    ):
        """
        Initialize JWT authenticator.

        Args:
            secret: JWT secret key (defaults to config.JWT_SECRET)
            algorithm: JWT algorithm (defaults to config.JWT_ALGORITHM)
            token_extractor: Optional custom token extractor
        """
        self._secret = secret or config.JWT_SECRET
        self._algorithm = algorithm or config.JWT_ALGORITHM
        self._token_extractor = token_extractor or DefaultTokenExtractor()

    def verify(self, token: str) -> AuthResult:
        """Synchronous token check shared by the HTTP and WebSocket paths."""
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm]
            )
        except jwt.ExpiredSignatureError:
            logger.warning("Authentication failed: Token expired")
            return AuthResult(
                success=False,
                error_message="Token has expired",
                error_code="TOKEN_EXPIRED"
            )
        except jwt.InvalidTokenError as e:
            logger.warning("Authentication failed: Invalid token - %s", e)
            return AuthResult(
                success=False,
                error_message="Invalid token",
                error_code="INVALID_TOKEN"
            )

        user_id = payload.get("sub")
        if not isinstance(user_id, str) or not is_valid_user_id(user_id):
            return AuthResult(
                success=False,
                error_message="No valid user id in token payload",
                error_code="INVALID_PAYLOAD"
            )

        return AuthResult(success=True, user_id=user_id)

    async def authenticate(self, token: str) -> AuthResult:
        """
        Validate a JWT token.

        Args:
            token: JWT token string

        Returns:
            AuthResult with authentication status and user id
        """
        return self.verify(token)

    def require(self, token: Optional[str]) -> str:
        """
        Return the user id carried by ``token``.

        Raises:
            AuthenticationError: if the token is missing or invalid
        """
        if not token:
            raise AuthenticationError("Unauthorized - No token provided")
        result = self.verify(token)
        if not result.success:
            raise AuthenticationError("Unauthorized - Invalid token",
                                      {"code": result.error_code})
        return result.user_id

    def extract_token(self, transport_context: Any) -> Optional[str]:
        """
        Extract token from transport context.

        Args:
            transport_context: WebSocket or similar connection object

        Returns:
            Extracted token or None
        """
        return self._token_extractor.extract(transport_context)


class DefaultTokenExtractor:
    """
    Default token extractor for WebSocket handshakes.

    Supports extraction from:
    - URL query parameters (?token=xxx)
    - Cookie header (<AUTH_COOKIE_NAME>=xxx)
    - Authorization header (Bearer xxx)
    """

    def __init__(self, cookie_name: str = None):
        self._cookie_name = cookie_name or config.AUTH_COOKIE_NAME

    def extract(self, websocket: Any) -> Optional[str]:
        """
        Extract token from WebSocket connection.

        Args:
            websocket: WebSocket connection object

        Returns:
            Extracted token or None
        """
        return (
            self._extract_from_query(websocket)
            or self._extract_from_cookie(websocket)
            or self._extract_from_header(websocket)
        )

    def _extract_from_query(self, websocket: Any) -> Optional[str]:
        """Extract token from URL query parameters."""
        path = self._get_path(websocket)
        if path and "?" in path:
            _, query = path.split("?", 1)
            tokens = parse_qs(query).get("token", [])
            if tokens:
                return tokens[0]
        return None

    def _extract_from_cookie(self, websocket: Any) -> Optional[str]:
        """Extract token from Cookie header."""
        cookie_header = self._get_headers(websocket).get("Cookie", "")
        if not cookie_header:
            return None
        cookies = SimpleCookie()
        try:
            cookies.load(cookie_header)
        except Exception as e:
            logger.debug("Failed to parse cookie header: %s", e)
            return None
        morsel = cookies.get(self._cookie_name)
        return morsel.value if morsel and morsel.value else None

    def _extract_from_header(self, websocket: Any) -> Optional[str]:
        auth = self._get_headers(websocket).get("Authorization", "")
        if auth.lower().startswith("bearer "):
            return auth[7:].strip() or None
        return None

    def _get_path(self, websocket: Any) -> Optional[str]:
        """Extract path from WebSocket object."""
        request = getattr(websocket, "request", None)
        if request is not None:
            path = getattr(request, "path", None)
            if path:
                return path
        return getattr(websocket, "path", None)

    def _get_headers(self, websocket: Any) -> Dict[str, str]:
        """Extract headers from WebSocket object."""
        request = getattr(websocket, "request", None)
        headers = getattr(request, "headers", None)
        if headers is None:
            return {}
        # websockets Headers lookups are case-insensitive; plain dicts from tests are not
        return {
            "Cookie": headers.get("Cookie") or headers.get("cookie") or "",
            "Authorization": headers.get("Authorization") or headers.get("authorization") or "",
        }


class AuthenticationMiddleware:
    """
    Middleware that wraps authentication logic.

    Provides a clean interface for authenticating connections
    and handling authentication failures.
    """

    def __init__(self, authenticator: Authenticator):
        """
        Initialize middleware.

        Args:
            authenticator: Authenticator implementation
        """
        self._authenticator = authenticator

    async def authenticate_connection(self, transport_context: Any) -> AuthResult:
        """
        Authenticate a connection.

        Args:
            transport_context: Transport-specific context

        Returns:
            AuthResult with authentication status
        """
        token = self._authenticator.extract_token(transport_context)

        if not token:
            return AuthResult(
                success=False,
                error_message="No authentication token provided",
                error_code="NO_TOKEN"
            )

        return await self._authenticator.authenticate(token)

    async def authenticate_token(self, token: Any) -> AuthResult:
        """Authenticate a token delivered in a ``setup`` frame."""
        if not isinstance(token, str) or not token:
            return AuthResult(
                success=False,
                error_message="No authentication token provided",
                error_code="NO_TOKEN"
            )
        return await self._authenticator.authenticate(token)


__all__ = [
    'JWTAuthenticator',
    'DefaultTokenExtractor',
    'AuthenticationMiddleware',
    'issue_token',
]
