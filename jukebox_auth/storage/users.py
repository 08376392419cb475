"""
User store contract and its relational backend.

The store is the only shared mutable resource in the service. Every write to
a user and its provider token happens in a single transaction, so readers
never observe a half-written user/token pair. Concurrent writers to the same
user are last-write-wins.
"""

import logging
from datetime import timedelta
from typing import List, Optional, Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jukebox_auth.exceptions import UserStoreError
from jukebox_auth.models import ProviderToken, User, utcnow
from jukebox_auth.storage.tables import ProviderTokenRecord, UserRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class UserStore(Protocol):
    async def find_by_provider_user_id(self, provider_user_id: str) -> Optional[User]: ...

    async def save(self, user: User) -> User: ...

    async def find_expiring_within(self, window: timedelta) -> List[User]: ...

    async def clear_token(self, provider_user_id: str) -> bool: ...


class SQLUserStore:
    """UserStore backed by SQLModel tables through an async session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_by_provider_user_id(self, provider_user_id: str) -> Optional[User]:
        try:
            async with self._session_factory() as session:
                record = await _load_user(session, provider_user_id)
        except SQLAlchemyError as e:
            raise UserStoreError(f"Failed to load user: {e}") from e

        return _to_user(record) if record is not None else None

    async def save(self, user: User) -> User:
        """
        Insert or update a user and its token, keyed by provider user ID.

        A concurrent first login for the same provider identity surfaces as
        a unique violation; the save is retried once as an update.
        """
        try:
            return await self._save_once(user)
        except IntegrityError:
            logger.warning(
                "Concurrent insert detected, retrying save as update",
                extra={"user_id": user.provider_user_id},
            )
        except SQLAlchemyError as e:
            raise UserStoreError(f"Failed to save user: {e}") from e

        try:
            return await self._save_once(user)
        except SQLAlchemyError as e:
            raise UserStoreError(f"Failed to save user: {e}") from e

    async def _save_once(self, user: User) -> User:
        async with self._session_factory() as session:
            async with session.begin():
                record = await _load_user(session, user.provider_user_id)
                if record is None:
                    record = UserRecord(provider_user_id=user.provider_user_id)
                    session.add(record)

                record.display_name = user.display_name
                record.email = user.email
                _apply_token(record, user.token)

        saved = _to_user(record)
        logger.info(
            "User saved",
            extra={
                "user_id": saved.provider_user_id,
                "token_expiry": saved.token.expiry.isoformat() if saved.token else None,
            },
        )
        return saved

    async def find_expiring_within(self, window: timedelta) -> List[User]:
        """Users whose token expiry falls in [now, now + window)."""
        now = utcnow()
        statement = (
            select(UserRecord)
            .join(ProviderTokenRecord, ProviderTokenRecord.user_id == UserRecord.id)
            .where(ProviderTokenRecord.expiry >= now)
            .where(ProviderTokenRecord.expiry < now + window)
            .order_by(ProviderTokenRecord.expiry)
        )

        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                records = result.scalars().all()
        except SQLAlchemyError as e:
            raise UserStoreError(f"Failed to query expiring tokens: {e}") from e

        return [_to_user(record) for record in records]

    async def clear_token(self, provider_user_id: str) -> bool:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    record = await _load_user(session, provider_user_id)
                    if record is None:
                        return False
                    record.token = None
        except SQLAlchemyError as e:
            raise UserStoreError(f"Failed to clear user tokens: {e}") from e

        logger.info("User's provider tokens cleared", extra={"user_id": provider_user_id})
        return True


# =============================================================================
# Row Mapping
# =============================================================================

async def _load_user(session: AsyncSession, provider_user_id: str) -> Optional[UserRecord]:
    statement = select(UserRecord).where(UserRecord.provider_user_id == provider_user_id)
    result = await session.execute(statement)
    return result.scalar_one_or_none()


def _apply_token(record: UserRecord, token: Optional[ProviderToken]) -> None:
    if token is None:
        record.token = None
        return

    existing = record.token
    previous = _to_token(existing) if existing is not None else None
    merged = token.merged_onto(previous)

    if existing is None:
        record.token = ProviderTokenRecord(
            access_token=merged.access_token,
            refresh_token=merged.refresh_token,
            expiry=merged.expiry,
        )
    else:
        existing.access_token = merged.access_token
        existing.refresh_token = merged.refresh_token
        existing.expiry = merged.expiry


def _to_token(record: ProviderTokenRecord) -> ProviderToken:
    return ProviderToken(
        access_token=record.access_token,
        refresh_token=record.refresh_token,
        expiry=record.expiry,
    )


def _to_user(record: UserRecord) -> User:
    return User(
        id=record.id,
        provider_user_id=record.provider_user_id,
        display_name=record.display_name,
        email=record.email,
        token=_to_token(record.token) if record.token is not None else None,
    )
