"""
Background provider token refresh.

A dedicated asyncio task sweeps the store every ``interval`` for tokens that
expire within ``window`` and renews them with the provider. One user's
refresh failure never aborts a sweep; the token is still expiring on the
next sweep, which retries it naturally.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from jukebox_auth.exceptions import ProviderAPIError, UserStoreError
from jukebox_auth.models import SweepReport, User
from jukebox_auth.provider.client import SpotifyClient
from jukebox_auth.storage.users import UserStore

logger = logging.getLogger(__name__)


class TokenRefreshScheduler:
    """
    Periodic refresh of provider tokens nearing expiry.

    Lifecycle is owned by the application lifespan:

        scheduler = TokenRefreshScheduler(provider, store)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        provider: SpotifyClient,
        store: UserStore,
        interval: timedelta = timedelta(minutes=3),
        window: timedelta = timedelta(minutes=5),
    ):
        self._provider = provider
        self._store = store
        self.interval = interval
        self.window = window
        self._task: Optional[asyncio.Task] = None
        self._sweep_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="token-refresh-scheduler")
        logger.info(
            "Token refresh scheduler started",
            extra={
                "interval_seconds": self.interval.total_seconds(),
                "window_seconds": self.window.total_seconds(),
            },
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Token refresh scheduler stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Token refresh sweep failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval.total_seconds())

    # =========================================================================
    # Sweep
    # =========================================================================

    async def sweep(self) -> SweepReport:
        """
        Refresh every token expiring within the window.

        Returns:
            SweepReport listing refreshed, failed and skipped users
        """
        async with self._sweep_lock:
            logger.info("Checking store for access tokens expiring soon")
            users = await self._store.find_expiring_within(self.window)
            report = SweepReport(candidates=len(users))

            for user in users:
                if user.token is None or not user.token.refresh_token:
                    logger.warning(
                        "No refresh token stored, skipping user",
                        extra={"user_id": user.provider_user_id},
                    )
                    report.skipped.append(user.provider_user_id)
                    continue

                logger.info("Access token expiring soon", extra={"user_id": user.provider_user_id})
                if await self._refresh_user(user):
                    report.refreshed.append(user.provider_user_id)
                else:
                    report.failed.append(user.provider_user_id)

            logger.info(
                "Token refresh sweep complete",
                extra={
                    "candidates": report.candidates,
                    "refreshed": len(report.refreshed),
                    "failed": len(report.failed),
                    "skipped": len(report.skipped),
                },
            )
            return report

    async def _refresh_user(self, user: User) -> bool:
        try:
            new_token = await self._provider.refresh(user.token.refresh_token)
        except ProviderAPIError as e:
            logger.error(
                f"Token refresh failed: {e.message}",
                extra={"user_id": user.provider_user_id, "status_code": e.status_code},
            )
            return False
        except Exception as e:
            logger.error(
                f"Unexpected error refreshing token: {e}",
                extra={"user_id": user.provider_user_id},
                exc_info=True,
            )
            return False

        user.attach_token(new_token)
        try:
            await self._store.save(user)
        except UserStoreError as e:
            logger.error(f"Failed to store refreshed token: {e}", extra={"user_id": user.provider_user_id})
            return False
        except Exception as e:
            logger.error(
                f"Unexpected error storing refreshed token: {e}",
                extra={"user_id": user.provider_user_id},
                exc_info=True,
            )
            return False
        return True
