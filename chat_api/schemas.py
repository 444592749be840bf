"""
Pydantic models for API request/response validation.
"""

from typing import Any, List, Optional
from pydantic import BaseModel, EmailStr, Field, field_validator
from uuid import UUID
from datetime import datetime, timezone


class ChatMessageIn(BaseModel):
    """A transcript entry as sent by the client. Any role other than 'user' is treated as 'ai'."""
    role: Any = None
    content: Any = ""

    @field_validator("role", mode="after")
    @classmethod
    def normalize_role(cls, v):
        return "user" if v == "user" else "ai"

    @field_validator("content", mode="after")
    @classmethod
    def coerce_content(cls, v):
        return "" if v is None else str(v)


class ChatRequest(BaseModel):
    """Request model for chat endpoint."""
    messages: List[ChatMessageIn] = Field(..., description="Transcript ending with the user's new message")


class ChatResponse(BaseModel):
    """Response model for chat endpoint."""
    message: str = Field(..., description="AI's reply to the last user message")


class HistoryMessage(BaseModel):
    role: str
    content: str


class HistoryResponse(BaseModel):
    messages: List[HistoryMessage] = Field(default_factory=list)


# Authentication Schemas
class UserRegister(BaseModel):
    """User registration request model. Password length is checked by the auth service."""
    email: EmailStr = Field(..., description="User's email address")
    password: str = Field(..., max_length=100, description="Password (at least 6 characters)")
    name: Optional[str] = Field(None, max_length=150, description="Display name")


class UserLogin(BaseModel):
    """User login request model."""
    email: EmailStr = Field(..., description="User's email address")
    password: str = Field(..., description="User's password")


class UserOut(BaseModel):
    id: UUID
    email: str
    name: Optional[str] = ""


class RegisterResponse(BaseModel):
    message: str = "User created successfully"
    user: UserOut


class LoginResponse(BaseModel):
    message: str = "Login successful"
    token: str = Field(..., description="JWT access token, valid for 7 days")
    user: UserOut


class CurrentUserResponse(BaseModel):
    user: UserOut


class ModelListResponse(BaseModel):
    models: List[str]


class ErrorResponse(BaseModel):
    """Model for error responses."""
    error: str = Field(..., description="Error message")
    detail: Optional[Any] = Field(None, description="Additional error details")


class HealthResponse(BaseModel):
    """Model for health check response."""
    status: str = Field(..., description="Health status")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Response timestamp")
