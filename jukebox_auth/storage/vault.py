"""
Single-tenant user store kept in a HashiCorp Vault KV v2 secret.

Deployments that only ever authorize one provider identity can keep that
identity and its tokens in Vault instead of a database. The whole user (with
its token) is one secret; saving a different identity replaces it.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from jukebox_auth.config import Settings
from jukebox_auth.exceptions import UserStoreError
from jukebox_auth.models import User, utcnow

logger = logging.getLogger(__name__)

VAULT_TOKEN_HEADER = "X-Vault-Token"
VAULT_HEALTH_PATH = "/v1/sys/health"
SINGLE_TENANT_USER_ID = 1


class VaultUserStore:
    """UserStore holding one user in a KV v2 secret."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        vault_token: str,
        kv_path: str = "/v1/secret/data/",
        secret_key: str = "spotify-token",
        timeout: float = 10.0,
    ):
        self._http = http_client
        self.base_url = base_url.rstrip("/")
        self._vault_token = vault_token
        self.secret_url = f"{self.base_url}/{kv_path.strip('/')}/{secret_key}"
        self._timeout = httpx.Timeout(timeout)

    @classmethod
    def from_settings(cls, http_client: httpx.AsyncClient, settings: Settings) -> "VaultUserStore":
        return cls(
            http_client=http_client,
            base_url=settings.VAULT_BASE_URL,
            vault_token=settings.VAULT_TOKEN,
            kv_path=settings.VAULT_KV_PATH,
            secret_key=settings.VAULT_SECRET_KEY,
            timeout=settings.PROVIDER_HTTP_TIMEOUT_SECONDS,
        )

    # =========================================================================
    # UserStore
    # =========================================================================

    async def find_by_provider_user_id(self, provider_user_id: str) -> Optional[User]:
        user = await self._read()
        if user is None or user.provider_user_id != provider_user_id:
            return None
        return user

    async def save(self, user: User) -> User:
        stored = await self._read()

        if stored is not None and stored.provider_user_id != user.provider_user_id:
            logger.warning(
                "Replacing single-tenant identity",
                extra={"previous_user_id": stored.provider_user_id, "user_id": user.provider_user_id},
            )
            stored = None

        saved = user.model_copy(deep=True)
        saved.id = SINGLE_TENANT_USER_ID
        if saved.token is not None:
            saved.token = saved.token.merged_onto(stored.token if stored else None)

        await self._write(saved)
        logger.info("User saved to Vault", extra={"user_id": saved.provider_user_id})
        return saved

    async def find_expiring_within(self, window: timedelta) -> List[User]:
        user = await self._read()
        if user is None or user.token is None:
            return []
        if user.token.expires_within(window.total_seconds(), now=utcnow()):
            return [user]
        return []

    async def clear_token(self, provider_user_id: str) -> bool:
        user = await self.find_by_provider_user_id(provider_user_id)
        if user is None:
            return False

        user.token = None
        await self._write(user)
        logger.info("User's provider tokens cleared from Vault", extra={"user_id": provider_user_id})
        return True

    # =========================================================================
    # Vault API
    # =========================================================================

    async def is_healthy(self) -> bool:
        try:
            response = await self._http.get(f"{self.base_url}{VAULT_HEALTH_PATH}", timeout=self._timeout)
        except httpx.HTTPError as e:
            logger.error(f"Vault health check failed: {e}")
            return False

        if response.status_code == 200:
            logger.info("Vault is healthy", extra={"status_code": response.status_code})
            return True

        logger.error("Vault is not healthy", extra={"status_code": response.status_code})
        return False

    async def _read(self) -> Optional[User]:
        try:
            response = await self._http.get(self.secret_url, headers=self._headers(), timeout=self._timeout)
        except httpx.HTTPError as e:
            raise UserStoreError(f"Failed to read secret: {e}") from e

        if response.status_code == 404:
            return None
        if not response.is_success:
            raise UserStoreError(f"Failed to read secret. HTTP response code: {response.status_code}")

        try:
            payload: Dict[str, Any] = response.json()
            data = payload["data"]["data"]
        except (ValueError, KeyError, TypeError) as e:
            raise UserStoreError(f"Failed to read secret. Unexpected response body: {e}") from e

        # Soft-deleted secret versions come back with no data
        if not data:
            return None

        try:
            return User.model_validate(data)
        except ValidationError as e:
            raise UserStoreError(f"Failed to read secret. Invalid user data: {e}") from e

    async def _write(self, user: User) -> None:
        payload = {"data": user.model_dump(mode="json")}
        try:
            response = await self._http.post(
                self.secret_url,
                json=payload,
                headers=self._headers(),
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise UserStoreError(f"Failed to store secret: {e}") from e

        if not response.is_success:
            raise UserStoreError(f"Failed to store secret. HTTP response code: {response.status_code}")

    def _headers(self) -> Dict[str, str]:
        return {VAULT_TOKEN_HEADER: self._vault_token, "Content-Type": "application/json"}
