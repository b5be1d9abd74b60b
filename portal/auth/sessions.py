"""
Session Service

Opaque bearer sessions: minting, resolving and revoking tokens, plus the
guards that protect user and admin routes.
"""

import logging
import re
import secrets
import sqlite3
from dataclasses import dataclass
from typing import Optional

from portal.database import Database
from portal.errors import AuthenticationError, AuthorizationError, PortalError
from portal.formatters import format_user_row


SESSION_PREFIX = "session-"
SESSION_TOKEN_BYTES = 16
# Insert attempts before the final unchecked insert
SESSION_INSERT_ATTEMPTS = 5

SESSION_HEADER = "x-session-token"
BEARER_PATTERN = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    """A resolved session: the public user record and the token it came from."""
    user: dict
    token: str


def generate_session_token() -> str:
    """Generate an unguessable session token with the fixed prefix."""
    return f"{SESSION_PREFIX}{secrets.token_hex(SESSION_TOKEN_BYTES)}"


def _is_token_collision(error: sqlite3.IntegrityError) -> bool:
    return "sessions.token" in str(error)


class SessionService:
    """Issue, resolve and revoke session tokens against the credential store."""

    def __init__(self, db: Database):
        self.db = db

    def create_session(self, user_id: int) -> str:
        """
        Mint a session for a user.

        A primary-key collision is retried a bounded number of times; after
        that one final insert is made without a collision guard.
        """
        for attempt in range(1, SESSION_INSERT_ATTEMPTS + 1):
            token = generate_session_token()
            try:
                self.db.insert_session(token, user_id)
            except sqlite3.IntegrityError as e:
                if not _is_token_collision(e):
                    raise
                logger.warning("Session token collision (attempt %d)", attempt)
                continue
            logger.debug("Session created for user %s", user_id)
            return token

        token = generate_session_token()
        self.db.insert_session(token, user_id)
        logger.debug("Session created for user %s", user_id)
        return token

    def revoke_session(self, token: Optional[str]) -> bool:
        """Delete a session. Returns whether a row was actually removed."""
        if not token:
            return False
        revoked = self.db.delete_session(token)
        if revoked:
            logger.debug("Session revoked")
        return revoked

    def get_session_user(self, token: Optional[str]) -> Optional[dict]:
        """Resolve a token to its public user record, or None."""
        if not token:
            return None
        return format_user_row(self.db.get_session_user(token))

    def get_session_token(self, request) -> Optional[str]:
        """
        Extract the bearer token from a request.

        The dedicated session header wins; Authorization: Bearer is only
        consulted when that header is absent.
        """
        header_token = request.headers.get(SESSION_HEADER)
        if header_token:
            return str(header_token)

        auth_header = request.headers.get("authorization")
        if auth_header:
            match = BEARER_PATTERN.match(auth_header)
            if match:
                return match.group(1).strip()

        return None

    def authenticate(self, request, admin: bool = False) -> SessionContext:
        """
        Resolve the request's session or raise.

        Raises:
            AuthenticationError: No token, or the token is unknown
            AuthorizationError: admin=True and the user is not an admin
        """
        token = self.get_session_token(request)
        if not token:
            if admin:
                raise AuthenticationError("Потрібен токен сесії адміністратора")
            raise AuthenticationError("Потрібен токен сесії")

        user = self.get_session_user(token)
        if user is None:
            raise AuthenticationError("Сесію не знайдено")

        if admin and not user["is_admin"]:
            raise AuthorizationError("Доступ дозволено лише адміністраторам")

        return SessionContext(user=user, token=token)

    def require_user(self, request, response) -> Optional[SessionContext]:
        """Guard for user routes. Writes the 401 itself and returns None on rejection."""
        try:
            return self.authenticate(request)
        except PortalError as e:
            response.send({"message": e.message}, e.status_code)
            return None

    def require_admin(self, request, response) -> Optional[dict]:
        """Guard for admin routes. Writes the 401/403 itself and returns None on rejection."""
        try:
            return self.authenticate(request, admin=True).user
        except PortalError as e:
            response.send({"message": e.message}, e.status_code)
            return None
