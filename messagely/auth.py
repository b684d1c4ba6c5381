"""
Login and registration.

AuthService ties the credential store, the user repository and the token
issuer together. It holds no state beyond the collaborators it is built
with, so a fresh instance is created per request.
"""

import logging
from typing import Mapping, Optional

from sqlalchemy.orm import Session

from messagely import storage
from messagely.errors import (
    BadRequestError,
    ConflictError,
    DuplicateKeyError,
    NotFoundError,
    UnauthorizedError,
)
from messagely.security import CredentialStore, TokenIssuer

logger = logging.getLogger(__name__)

REGISTER_FIELDS = ("username", "password", "first_name", "last_name", "phone")

INVALID_CREDENTIALS = "Invalid username/password"


def _require_utf8(fields: Mapping[str, str]) -> None:
    """Reject text the store and bcrypt cannot encode, such as lone surrogates."""
    for name, value in fields.items():
        try:
            value.encode("utf-8")
        except UnicodeEncodeError:
            raise BadRequestError(f"Field {name} must be valid UTF-8")


class AuthService:
    def __init__(self, db: Session, credentials: CredentialStore, tokens: TokenIssuer):
        self.db = db
        self.credentials = credentials
        self.tokens = tokens

    def login(self, username: Optional[str], password: Optional[str]) -> str:
        """
        Verify a username/password pair and return a token.

        Unknown usernames and wrong passwords raise the same
        UnauthorizedError. A failure while stamping last_login_at
        propagates and no token is issued.
        """
        if not username or not password:
            raise BadRequestError("Username and password required")
        _require_utf8({"username": username, "password": password})

        try:
            password_hash = storage.find_credential_hash(self.db, username)
        except NotFoundError:
            logger.warning(f"Failed login attempt for username: {username}")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        if not self.credentials.verify(password, password_hash):
            logger.warning(f"Failed login attempt for username: {username}")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        storage.touch_last_login(self.db, username)

        token = self.tokens.issue({"username": username})
        logger.info(f"User logged in: {username}")
        return token

    def register(self, fields: Mapping[str, Optional[str]]) -> str:
        """Create a user from the registration fields and return a token."""
        missing = [name for name in REGISTER_FIELDS if not fields.get(name)]
        if missing:
            raise BadRequestError(f"Missing required fields: {', '.join(missing)}")
        _require_utf8({name: fields[name] for name in REGISTER_FIELDS})

        password_hash = self.credentials.hash(fields["password"])

        try:
            user = storage.register_user(
                self.db,
                username=fields["username"],
                password_hash=password_hash,
                first_name=fields["first_name"],
                last_name=fields["last_name"],
                phone=fields["phone"],
            )
        except DuplicateKeyError:
            raise ConflictError(f"Username {fields['username']} already taken")

        return self.tokens.issue({"username": user.username})
