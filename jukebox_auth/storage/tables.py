"""
Database tables for users and their provider tokens.

One users row per provider identity; at most one provider_tokens row per
user. Clearing a user's token deletes the token row and keeps the user.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, Relationship, SQLModel

from jukebox_auth.models import ensure_utc


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, returns timezone-aware UTC datetimes."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        return ensure_utc(value).replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class UserRecord(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    provider_user_id: str = Field(unique=True, index=True, max_length=255)
    display_name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=320)

    token: Optional["ProviderTokenRecord"] = Relationship(
        back_populates="user",
        sa_relationship_kwargs={
            "uselist": False,
            "lazy": "selectin",
            "cascade": "all, delete-orphan",
        },
    )


class ProviderTokenRecord(SQLModel, table=True):
    __tablename__ = "provider_tokens"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", unique=True, index=True)
    access_token: str = Field(max_length=2048)
    refresh_token: str = Field(default="", max_length=2048)
    expiry: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False, index=True))

    user: Optional[UserRecord] = Relationship(back_populates="token")


__all__ = ["UTCDateTime", "UserRecord", "ProviderTokenRecord"]
