"""
Authentication services

- PasswordService: bcrypt hashing
- JWTAuthService: 7-day HS256 session tokens with {userId, email, plan}

Hashing is CPU bound; routes call it through run_in_threadpool.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from jose import JWTError, jwt

from ..config import Settings, get_settings
from ..errors import ServerMisconfiguredError

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# bcrypt only looks at the first 72 bytes
BCRYPT_MAX_BYTES = 72


def fits_bcrypt(password: str) -> bool:
    return len(password.encode("utf-8")) <= BCRYPT_MAX_BYTES


class PasswordService:
    """Password hashing service"""

    def __init__(self, rounds: int = 10):
        self.rounds = rounds

    def hash_password(self, password: str) -> str:
        """Hash a password (bcrypt)"""
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode()

    def verify_password(self, password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Malformed stored hash
            logger.warning("Stored password hash is not a valid bcrypt hash")
            return False


class JWTAuthService:
    """
    Session token service

    Payload: userId, email, plan, iat, exp. A missing secret is a server
    misconfiguration, never a client error.
    """

    def __init__(self, secret: Optional[str], algorithm: str = "HS256", expiration_days: int = 7):
        self.secret = secret
        self.algorithm = algorithm
        self.expiration_days = expiration_days

    def _require_secret(self) -> str:
        if not self.secret:
            logger.error("JWT_SECRET is not configured")
            raise ServerMisconfiguredError(details="JWT_SECRET not set")
        return self.secret

    def create_access_token(self, user_id: str, email: str, plan: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "userId": user_id,
            "email": email,
            "plan": plan,
            "iat": now,
            "exp": now + timedelta(days=self.expiration_days),
        }
        return jwt.encode(payload, self._require_secret(), algorithm=self.algorithm)

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Decode and check a token

        Returns:
            the claims, or None when the token is invalid, expired or has no
            userId
        """
        secret = self._require_secret()
        try:
            claims = jwt.decode(token, secret, algorithms=[self.algorithm])
        except JWTError as e:
            logger.debug(f"Token rejected: {e}")
            return None
        if not claims.get("userId"):
            return None
        return claims


def get_password_service(settings: Settings = None) -> PasswordService:
    settings = settings or get_settings()
    return PasswordService(rounds=settings.BCRYPT_ROUNDS)


def get_jwt_service(settings: Settings = None) -> JWTAuthService:
    settings = settings or get_settings()
    return JWTAuthService(
        secret=settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
        expiration_days=settings.JWT_EXPIRATION_DAYS,
    )
