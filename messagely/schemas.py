"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses

Auth request fields are all optional at the schema level so that a
missing field is reported by the auth service as a 400, not a 422.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Pydantic Request Models
# =============================================================================

class LoginRequest(BaseModel):
    """Body of POST /auth/login."""
    username: Optional[str] = None
    password: Optional[str] = None


class RegisterRequest(BaseModel):
    """Body of POST /auth/register. Every field is required and non-empty."""
    username: Optional[str] = None
    password: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "username": "alice",
                    "password": "secret1",
                    "first_name": "A",
                    "last_name": "L",
                    "phone": "555",
                }
            ]
        }
    }


class MessageCreateRequest(BaseModel):
    """Body of POST /messages. The sender is the authenticated user."""
    to_username: str = Field(..., min_length=1, description="Recipient username")
    body: str = Field(..., min_length=1, description="Message text")


# =============================================================================
# Pydantic Response Models
# =============================================================================

class TokenResponse(BaseModel):
    token: str


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class UserSummary(BaseModel):
    username: str
    first_name: str
    last_name: str


class UserProfile(BaseModel):
    """Profile of a user as embedded in message listings."""
    username: str
    first_name: str
    last_name: str
    phone: str


class UserDetail(UserProfile):
    join_at: datetime
    last_login_at: Optional[datetime] = None


class UsersListResponse(BaseModel):
    users: list[UserSummary] = Field(default_factory=list)


class UserDetailResponse(BaseModel):
    user: UserDetail


class SentMessage(BaseModel):
    """A message as seen by its sender."""
    id: int
    to_user: UserProfile
    body: str
    sent_at: datetime
    read_at: Optional[datetime] = None


class ReceivedMessage(BaseModel):
    """A message as seen by its recipient."""
    id: int
    from_user: UserProfile
    body: str
    sent_at: datetime
    read_at: Optional[datetime] = None


class SentMessagesResponse(BaseModel):
    messages: list[SentMessage] = Field(default_factory=list)


class ReceivedMessagesResponse(BaseModel):
    messages: list[ReceivedMessage] = Field(default_factory=list)


class MessageOut(BaseModel):
    id: int
    from_username: str
    to_username: str
    body: str
    sent_at: datetime

    model_config = {"from_attributes": True}


class MessageCreateResponse(BaseModel):
    message: MessageOut


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
