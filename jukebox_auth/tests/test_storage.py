"""
SQL user store tests against in-memory SQLite.
"""

from datetime import timedelta, timezone

import pytest

from jukebox_auth.models import utcnow
from jukebox_auth.storage import UserStore

from .conftest import make_token, make_user


@pytest.mark.asyncio
async def test_sql_store_satisfies_protocol(sql_store):
    assert isinstance(sql_store, UserStore)


@pytest.mark.asyncio
async def test_save_new_user_assigns_id(sql_store):
    saved = await sql_store.save(make_user(token=make_token()))

    assert saved.id is not None
    found = await sql_store.find_by_provider_user_id("spotify-user-1")
    assert found.id == saved.id
    assert found.token.access_token == "access-1"


@pytest.mark.asyncio
async def test_find_unknown_user_returns_none(sql_store):
    assert await sql_store.find_by_provider_user_id("nobody") is None


@pytest.mark.asyncio
async def test_saving_same_identity_twice_keeps_one_row(sql_store, count_users):
    first = await sql_store.save(make_user(token=make_token(access_token="access-1")))
    second = await sql_store.save(make_user(token=make_token(access_token="access-2")))

    assert first.id == second.id
    assert await count_users() == 1
    found = await sql_store.find_by_provider_user_id("spotify-user-1")
    assert found.token.access_token == "access-2"


@pytest.mark.asyncio
async def test_save_keeps_stored_refresh_token_when_new_one_is_empty(sql_store):
    await sql_store.save(make_user(token=make_token(refresh_token="refresh-1")))

    saved = await sql_store.save(make_user(token=make_token(access_token="access-2", refresh_token="")))

    assert saved.token.access_token == "access-2"
    assert saved.token.refresh_token == "refresh-1"


@pytest.mark.asyncio
async def test_save_replaces_rotated_refresh_token(sql_store):
    await sql_store.save(make_user(token=make_token(refresh_token="refresh-1")))

    saved = await sql_store.save(make_user(token=make_token(refresh_token="refresh-2")))

    assert saved.token.refresh_token == "refresh-2"


@pytest.mark.asyncio
async def test_profile_fields_updated_on_save(sql_store):
    await sql_store.save(make_user(token=make_token()))

    user = await sql_store.find_by_provider_user_id("spotify-user-1")
    user.display_name = "Renamed"
    user.email = None
    await sql_store.save(user)

    found = await sql_store.find_by_provider_user_id("spotify-user-1")
    assert found.display_name == "Renamed"
    assert found.email is None


@pytest.mark.asyncio
async def test_expiry_round_trips_as_aware_utc(sql_store):
    token = make_token()
    await sql_store.save(make_user(token=token))

    found = await sql_store.find_by_provider_user_id("spotify-user-1")

    assert found.token.expiry.tzinfo == timezone.utc
    assert abs(found.token.expiry - token.expiry) < timedelta(seconds=1)


# ============================================================================
# Expiring tokens
# ============================================================================

@pytest.mark.asyncio
async def test_find_expiring_within_window(sql_store):
    await sql_store.save(make_user("soon", make_token(expires_in=timedelta(minutes=4))))
    await sql_store.save(make_user("later", make_token(expires_in=timedelta(minutes=10))))
    await sql_store.save(make_user("expired", make_token(expires_in=timedelta(minutes=-1))))
    await sql_store.save(make_user("no-token"))

    expiring = await sql_store.find_expiring_within(timedelta(minutes=5))

    assert [user.provider_user_id for user in expiring] == ["soon"]


@pytest.mark.asyncio
async def test_find_expiring_orders_by_expiry(sql_store):
    await sql_store.save(make_user("second", make_token(expires_in=timedelta(minutes=3))))
    await sql_store.save(make_user("first", make_token(expires_in=timedelta(minutes=1))))

    expiring = await sql_store.find_expiring_within(timedelta(minutes=5))

    assert [user.provider_user_id for user in expiring] == ["first", "second"]


# ============================================================================
# Clearing tokens
# ============================================================================

@pytest.mark.asyncio
async def test_clear_token_keeps_user(sql_store, count_users):
    await sql_store.save(make_user(token=make_token(expires_in=timedelta(minutes=2))))

    assert await sql_store.clear_token("spotify-user-1") is True

    found = await sql_store.find_by_provider_user_id("spotify-user-1")
    assert found is not None
    assert found.token is None
    assert await count_users() == 1
    assert await sql_store.find_expiring_within(timedelta(minutes=5)) == []


@pytest.mark.asyncio
async def test_clear_token_for_unknown_user(sql_store):
    assert await sql_store.clear_token("nobody") is False


@pytest.mark.asyncio
async def test_token_can_be_stored_again_after_clear(sql_store):
    await sql_store.save(make_user(token=make_token(refresh_token="refresh-1")))
    await sql_store.clear_token("spotify-user-1")

    saved = await sql_store.save(make_user(token=make_token(access_token="access-2", refresh_token="")))

    assert saved.token.access_token == "access-2"
    assert saved.token.refresh_token == ""
    assert saved.token.expiry > utcnow()
