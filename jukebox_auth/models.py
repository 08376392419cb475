"""
Data Models Module

This module defines Pydantic models for the domain objects handled by the
service and for request/response serialization.

Models are organized by functional area:
- Domain models (users, provider tokens, provider profiles)
- Authentication API models (login parameters, session status)
- Health check and error models
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional

from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================================
# Domain Models
# ============================================================================

class ProviderToken(BaseModel):
    """OAuth access/refresh token pair issued by the provider for one user."""
    access_token: str = Field(..., description="Short-lived provider access token", min_length=1)
    refresh_token: str = Field(
        default="",
        description="Long-lived refresh token; empty when the provider response omitted it",
    )
    expiry: datetime = Field(..., description="Absolute UTC expiry of the access token")

    @field_validator("expiry")
    @classmethod
    def normalize_expiry(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def merged_onto(self, previous: Optional["ProviderToken"]) -> "ProviderToken":
        """
        Combine a freshly issued token with the one already stored.

        Access token and expiry always come from the new token. The refresh
        token is only replaced when the new one is non-empty, so a refresh
        response without a rotated refresh token keeps the stored value.
        """
        refresh_token = self.refresh_token
        if not refresh_token and previous is not None:
            refresh_token = previous.refresh_token

        return ProviderToken(
            access_token=self.access_token,
            refresh_token=refresh_token,
            expiry=self.expiry,
        )

    def expires_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        remaining = (self.expiry - now).total_seconds()
        return 0 <= remaining < seconds


class User(BaseModel):
    """An end user authenticated through the provider."""
    id: Optional[int] = Field(None, description="Persistence key, assigned on first save")
    provider_user_id: str = Field(..., description="Stable provider identity", min_length=1)
    display_name: Optional[str] = Field(None, description="Provider display name")
    email: Optional[str] = Field(None, description="Provider email address")
    token: Optional[ProviderToken] = Field(None, description="Stored provider tokens, if any")

    def attach_token(self, new_token: ProviderToken) -> None:
        """Attach a new provider token, preserving the stored refresh token if needed."""
        self.token = new_token.merged_onto(self.token)

    def apply_profile(self, profile: "ProviderProfile") -> None:
        """Overwrite descriptive fields with the latest provider profile."""
        self.display_name = profile.display_name
        self.email = profile.email


class ProviderProfile(BaseModel):
    """The provider's view of the current user."""
    provider_user_id: str = Field(..., description="Provider user identifier", min_length=1)
    display_name: Optional[str] = Field(None, description="Provider display name")
    email: Optional[EmailStr] = Field(None, description="Provider email address")

    @field_validator("email", mode="wrap")
    @classmethod
    def drop_unusable_email(cls, v: Any, handler) -> Optional[str]:
        # Descriptive only: addresses email-validator rejects are dropped
        try:
            return handler(v)
        except ValidationError:
            return None

    def to_user(self) -> User:
        return User(
            provider_user_id=self.provider_user_id,
            display_name=self.display_name,
            email=self.email,
        )


class ReconcileResult(NamedTuple):
    """Outgoing session credential and where to send the browser next."""
    credential: str
    redirect_uri: str


# ============================================================================
# Authentication API Models
# ============================================================================

class LoginResponse(BaseModel):
    """Parameters the front end needs to start the provider authorization flow."""
    authorization_url: str = Field(..., description="Provider authorization URL to redirect to")
    client_id: str = Field(..., description="Provider client ID")
    redirect_uri: str = Field(..., description="Callback URI registered with the provider")


class SessionStatus(BaseModel):
    """Result of a session validity check."""
    authenticated: bool = Field(..., description="Whether the session credential is valid")
    subject: Optional[str] = Field(None, description="Provider user ID of the session")


class LogoutResponse(BaseModel):
    """Result of a logout request."""
    logged_out: bool = Field(..., description="Whether stored provider tokens were cleared")


class SweepReport(BaseModel):
    """Outcome of one refresh sweep."""
    candidates: int = Field(0, description="Users with tokens inside the refresh window")
    refreshed: List[str] = Field(default_factory=list, description="Provider user IDs refreshed")
    failed: List[str] = Field(default_factory=list, description="Provider user IDs whose refresh failed")
    skipped: List[str] = Field(default_factory=list, description="Provider user IDs without a refresh token")


# ============================================================================
# Health Check Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    timestamp: datetime = Field(default_factory=utcnow, description="Check timestamp")
    dependencies: Optional[Dict[str, str]] = Field(None, description="Dependency health status")


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=utcnow, description="Error timestamp")
