"""
Session tokens, password hashing and the admin capability check.

Sessions are stateless: the signed token is the only record of a login and
it dies with its expiry or with the cookie.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from pydantic import BaseModel

from somnus.core.config import SomnusConfig

logger = logging.getLogger("somnus.auth.session")

ALGORITHM = "HS256"
ADMIN_ROLE = "admin"
ADMIN_USER_ID = "admin"


class SessionClaims(BaseModel):
    user_id: str
    username: str

    class Config:
        frozen = True


class SessionIssuer:
    """Issues and verifies HS256 session tokens."""

    def __init__(self, secret: str, max_age_days: int = 7):
        self.secret = secret
        self.max_age = timedelta(days=max_age_days)

    @classmethod
    def from_config(cls, config: SomnusConfig) -> "SessionIssuer":
        return cls(config.session.secret, config.session.max_age_days)

    def issue(self, claims: SessionClaims) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "userId": claims.user_id,
            "username": claims.username,
            "iat": now,
            "exp": now + self.max_age,
        }
        return jwt.encode(payload, self.secret, algorithm=ALGORITHM)

    def verify(self, token: Optional[str]) -> Optional[SessionClaims]:
        """Returns the claims, or None for a missing, expired or forged token."""
        if not token:
            return None
        try:
            payload = jwt.decode(token, self.secret, algorithms=[ALGORITHM])
        except jwt.ExpiredSignatureError:
            logger.debug("Rejected expired session token.")
            return None
        except jwt.InvalidTokenError as e:
            logger.debug(f"Rejected invalid session token: {e}")
            return None

        user_id = payload.get("userId")
        username = payload.get("username")
        if not user_id or not username:
            return None
        return SessionClaims(user_id=str(user_id), username=str(username))


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def authenticate_admin(config: SomnusConfig, username: str, password: str) -> Optional[SessionClaims]:
    """
    Checks the environment-defined admin credentials.
    Only active when both ADMIN_USERNAME and ADMIN_PASSWORD are configured.
    """
    admin = config.admin
    if not admin.username or not admin.password:
        return None
    if username == admin.username and password == admin.password:
        return SessionClaims(user_id=ADMIN_USER_ID, username=admin.username)
    return None


def has_role(claims: Optional[SessionClaims], role: str, config: SomnusConfig) -> bool:
    """
    Capability check evaluated against configuration only.
    Whether a user row exists for the principal is irrelevant here.
    """
    if claims is None:
        return False
    if role != ADMIN_ROLE:
        return False
    admin_names = {name for name in (config.admin.username, config.admin.fallback_username) if name}
    return claims.username in admin_names


def is_reserved_username(config: SomnusConfig, username: str) -> bool:
    """
    Admin identities are granted by name, so nobody may register or rename
    into one of them. Compared case-insensitively.
    """
    reserved = {name.lower() for name in (config.admin.username, config.admin.fallback_username) if name}
    return username.strip().lower() in reserved
