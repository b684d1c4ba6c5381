"""
Password hashing and token issuance.

CredentialStore wraps bcrypt (auto-salted, self-describing hashes with the
work factor embedded). TokenIssuer signs the authenticated username into a
JWT. Both take the Settings object explicitly at construction.
"""

import logging
import time
from typing import Any, Optional

import bcrypt
from jose import jwt

from messagely.config import Settings
from messagely.errors import BadRequestError

logger = logging.getLogger(__name__)

# bcrypt hard limit
MAX_PASSWORD_BYTES = 72


class CredentialStore:
    """Salted one-way password hashing with a configurable bcrypt cost."""

    def __init__(self, settings: Settings):
        self.work_factor = settings.BCRYPT_WORK_FACTOR

    def hash(self, plaintext: str) -> str:
        """
        Hash a plaintext password.

        Every call draws a fresh salt, so hashing the same password twice
        gives two different strings that both verify.

        Raises:
            BadRequestError: password not valid UTF-8, or longer than bcrypt can process
        """
        try:
            raw = plaintext.encode("utf-8")
        except UnicodeEncodeError:
            raise BadRequestError("Password must be valid UTF-8")
        if len(raw) > MAX_PASSWORD_BYTES:
            raise BadRequestError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

        salt = bcrypt.gensalt(rounds=self.work_factor)
        return bcrypt.hashpw(raw, salt).decode("ascii")

    def verify(self, plaintext: str, hashed: Optional[str]) -> bool:
        """
        Check a plaintext password against a stored hash.

        Returns False for a missing or malformed hash instead of raising.
        """
        if not hashed or plaintext is None:
            return False
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("ascii"))
        except (ValueError, TypeError, UnicodeEncodeError) as e:
            logger.warning(f"Password verification failed closed: {type(e).__name__}")
            return False


class TokenIssuer:
    """Signs claims into a bearer token. No expiry is set."""

    def __init__(self, settings: Settings):
        self._secret_key = settings.SECRET_KEY
        self.algorithm = settings.JWT_ALGORITHM

    def issue(self, claims: dict[str, Any]) -> str:
        to_encode = dict(claims)
        to_encode["iat"] = int(time.time())
        return jwt.encode(to_encode, self._secret_key, algorithm=self.algorithm)
