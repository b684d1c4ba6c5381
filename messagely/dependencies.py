"""
FastAPI dependencies: component wiring and bearer-token authentication.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Header
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from messagely.auth import AuthService
from messagely.config import Settings, get_settings
from messagely.errors import UnauthorizedError
from messagely.security import CredentialStore, TokenIssuer
from messagely.storage import get_db

logger = logging.getLogger(__name__)


def get_credential_store(settings: Annotated[Settings, Depends(get_settings)]) -> CredentialStore:
    return CredentialStore(settings)


def get_token_issuer(settings: Annotated[Settings, Depends(get_settings)]) -> TokenIssuer:
    return TokenIssuer(settings)


def get_auth_service(
    db: Annotated[Session, Depends(get_db)],
    credentials: Annotated[CredentialStore, Depends(get_credential_store)],
    tokens: Annotated[TokenIssuer, Depends(get_token_issuer)],
) -> AuthService:
    return AuthService(db, credentials, tokens)


def get_current_username(
    settings: Annotated[Settings, Depends(get_settings)],
    authorization: Annotated[Optional[str], Header()] = None,
) -> str:
    """
    Decode the `Authorization: Bearer <token>` header and return its username.

    Raises UnauthorizedError for a missing header, a non-bearer scheme,
    a bad signature, or a token without a username claim.
    """
    if not authorization:
        raise UnauthorizedError("Authentication required")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise UnauthorizedError("Authentication required")

    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"Failed to verify token: {e}")
        raise UnauthorizedError("Invalid token")

    username = payload.get("username")
    if not username:
        raise UnauthorizedError("Invalid token")
    return username


# Only "is the request authenticated" is checked
ensure_logged_in = get_current_username
