"""
Bearer-token identity for the HTTP surface.

Tokens are HS256 JWTs signed with ``JWT_SECRET`` whose ``sub`` claim is the
user id. Accounts and logins live elsewhere; ``TokenVerifier.issue`` exists
for local tooling and tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chatrelay.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Caller identity established from a verified token."""
    user_id: str


class TokenVerifier:
    """Verifies (and, for tooling, mints) signed bearer tokens."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        token_ttl: timedelta | None = None,
    ) -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.token_ttl = token_ttl or timedelta(days=7)

    def verify(self, token: str) -> AuthenticatedUser:
        """
        Decode and check a token.

        Raises:
            AuthenticationError: If the token is expired, malformed, signed
                with another key, or has no subject.
        """
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["sub"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Token expired") from e
        except jwt.InvalidTokenError as e:
            logger.debug(f"Rejected token: {e}")
            raise AuthenticationError("Token is not valid") from e

        user_id = claims.get("sub")
        if not isinstance(user_id, str) or not user_id:
            raise AuthenticationError("Token is not valid")
        return AuthenticatedUser(user_id=user_id)

    def issue(self, user_id: str, expires_in: timedelta | None = None) -> str:
        now = datetime.now(UTC)
        payload = {
            "sub": user_id,
            "iat": now,
            "exp": now + (expires_in or self.token_ttl),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)


def _verifier(request: Request) -> TokenVerifier:
    return request.app.state.token_verifier


async def require_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthenticatedUser:
    """Dependency for routes that need a signed-in caller."""
    if credentials is None:
        raise AuthenticationError("No token, authorization denied")
    return _verifier(request).verify(credentials.credentials)


async def optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthenticatedUser | None:
    """Dependency for routes open to anonymous callers; bad tokens count as none."""
    if credentials is None:
        return None
    try:
        return _verifier(request).verify(credentials.credentials)
    except AuthenticationError:
        return None
