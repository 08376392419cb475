"""
Vault single-tenant store tests.

A small in-memory KV v2 double answers the store's HTTP calls.
"""

import json
from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from jukebox_auth.exceptions import UserStoreError
from jukebox_auth.storage import UserStore, VaultUserStore

from .conftest import make_token, make_user

VAULT_URL = "http://vault:8200"
SECRET_PATH = "/v1/secret/data/spotify-token"


class FakeVault:
    def __init__(self):
        self.secret: Optional[Dict[str, Any]] = None
        self.fail_with: Optional[int] = None
        self.sealed = False
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.path == "/v1/sys/health":
            return httpx.Response(503 if self.sealed else 200, json={"sealed": self.sealed})

        if request.url.path != SECRET_PATH:
            return httpx.Response(404, json={"errors": []})
        if self.fail_with:
            return httpx.Response(self.fail_with, json={"errors": ["permission denied"]})

        if request.method == "GET":
            if self.secret is None:
                return httpx.Response(404, json={"errors": []})
            return httpx.Response(200, json={"data": {"data": self.secret, "metadata": {"version": 1}}})

        self.secret = json.loads(request.content)["data"]
        return httpx.Response(200, json={"data": {"version": 1}})


@pytest.fixture
def fake_vault() -> FakeVault:
    return FakeVault()


@pytest_asyncio.fixture
async def vault_store(fake_vault):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_vault.handler)) as http_client:
        yield VaultUserStore(http_client, base_url=VAULT_URL, vault_token="test-vault-token")


@pytest.mark.asyncio
async def test_vault_store_satisfies_protocol(vault_store):
    assert isinstance(vault_store, UserStore)


@pytest.mark.asyncio
async def test_empty_vault_has_no_user(vault_store):
    assert await vault_store.find_by_provider_user_id("spotify-user-1") is None
    assert await vault_store.find_expiring_within(timedelta(minutes=5)) == []


@pytest.mark.asyncio
async def test_save_writes_user_with_vault_token(vault_store, fake_vault):
    saved = await vault_store.save(make_user(token=make_token()))

    assert saved.id == 1
    write = fake_vault.requests[-1]
    assert write.method == "POST"
    assert write.url == f"{VAULT_URL}{SECRET_PATH}"
    assert write.headers["X-Vault-Token"] == "test-vault-token"
    assert fake_vault.secret["provider_user_id"] == "spotify-user-1"
    assert fake_vault.secret["token"]["access_token"] == "access-1"

    found = await vault_store.find_by_provider_user_id("spotify-user-1")
    assert found.token.access_token == "access-1"
    assert found.token.expiry == saved.token.expiry


@pytest.mark.asyncio
async def test_other_identity_is_not_found(vault_store):
    await vault_store.save(make_user(token=make_token()))

    assert await vault_store.find_by_provider_user_id("someone-else") is None


@pytest.mark.asyncio
async def test_save_keeps_stored_refresh_token(vault_store):
    await vault_store.save(make_user(token=make_token(refresh_token="refresh-1")))

    saved = await vault_store.save(make_user(token=make_token(access_token="access-2", refresh_token="")))

    assert saved.token.refresh_token == "refresh-1"
    found = await vault_store.find_by_provider_user_id("spotify-user-1")
    assert found.token.access_token == "access-2"
    assert found.token.refresh_token == "refresh-1"


@pytest.mark.asyncio
async def test_new_identity_replaces_stored_one(vault_store):
    await vault_store.save(make_user("first", make_token(refresh_token="refresh-1")))

    saved = await vault_store.save(make_user("second", make_token(refresh_token="")))

    assert saved.token.refresh_token == ""
    assert await vault_store.find_by_provider_user_id("first") is None
    assert await vault_store.find_by_provider_user_id("second") is not None


@pytest.mark.asyncio
async def test_find_expiring_within(vault_store):
    await vault_store.save(make_user(token=make_token(expires_in=timedelta(minutes=4))))
    assert len(await vault_store.find_expiring_within(timedelta(minutes=5))) == 1

    await vault_store.save(make_user(token=make_token(expires_in=timedelta(minutes=10))))
    assert await vault_store.find_expiring_within(timedelta(minutes=5)) == []


@pytest.mark.asyncio
async def test_clear_token(vault_store, fake_vault):
    await vault_store.save(make_user(token=make_token()))

    assert await vault_store.clear_token("spotify-user-1") is True
    assert fake_vault.secret["token"] is None
    assert await vault_store.clear_token("someone-else") is False


@pytest.mark.asyncio
async def test_vault_errors_raise_store_error(vault_store, fake_vault):
    fake_vault.fail_with = 403

    with pytest.raises(UserStoreError):
        await vault_store.find_by_provider_user_id("spotify-user-1")

    with pytest.raises(UserStoreError):
        await vault_store.save(make_user(token=make_token()))


@pytest.mark.asyncio
async def test_is_healthy(vault_store, fake_vault):
    assert await vault_store.is_healthy() is True

    fake_vault.sealed = True
    assert await vault_store.is_healthy() is False
