"""
Shared fixtures for the jukebox auth test suite.

Provider and Vault HTTP traffic goes through ``httpx.MockTransport``; the SQL
store runs against in-memory SQLite.
"""

import os
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

# jukebox_auth.main builds an app at import time from the environment
os.environ.setdefault("SPOTIFY_CLIENT_ID", "test-client-id")
os.environ.setdefault("SPOTIFY_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("SPOTIFY_REDIRECT_URI", "http://testserver/auth/callback")
os.environ.setdefault("FRONTEND_REDIRECT_URI", "http://localhost:3000/")
os.environ.setdefault("SESSION_JWT_SECRET", "test-session-secret-0123456789abcdef")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("REFRESH_SCHEDULER_ENABLED", "false")

import httpx
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from jukebox_auth.auth.session import SessionSigner
from jukebox_auth.config import Settings
from jukebox_auth.models import ProviderToken, User, utcnow
from jukebox_auth.storage import SQLUserStore, create_db_and_tables, create_engine, create_session_factory

TEST_SECRET = "test-session-secret-0123456789abcdef"
TEST_ISSUER = "jukebox-auth"
FRONTEND_URI = "http://localhost:3000/"


def generate_test_keys():
    """Generate RSA key pair for testing"""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )

    return private_pem.decode(), public_pem.decode()


TEST_PRIVATE_KEY, TEST_PUBLIC_KEY = generate_test_keys()


def make_token(
    access_token: str = "access-1",
    refresh_token: str = "refresh-1",
    expires_in: timedelta = timedelta(hours=1),
    now: Optional[datetime] = None,
) -> ProviderToken:
    return ProviderToken(
        access_token=access_token,
        refresh_token=refresh_token,
        expiry=(now or utcnow()) + expires_in,
    )


def make_user(provider_user_id: str = "spotify-user-1", token: Optional[ProviderToken] = None) -> User:
    return User(
        provider_user_id=provider_user_id,
        display_name="Test Listener",
        email="listener@example.com",
        token=token,
    )


class FakeSpotify:
    """
    In-process stand-in for the Spotify accounts service and Web API.

    Queue token responses with ``token_responses``; every request seen is
    kept in ``requests``.
    """

    def __init__(self, profile: Optional[Dict[str, Any]] = None):
        self.profile = profile or {
            "id": "spotify-user-1",
            "display_name": "Test Listener",
            "email": "listener@example.com",
        }
        self.profile_status = 200
        self.token_responses: List[httpx.Response] = []
        self.requests: List[httpx.Request] = []

    def token_ok(self, access_token: str = "access-1", refresh_token: Optional[str] = "refresh-1", expires_in: int = 3600):
        body = {"access_token": access_token, "token_type": "Bearer", "expires_in": expires_in}
        if refresh_token is not None:
            body["refresh_token"] = refresh_token
        self.token_responses.append(httpx.Response(200, json=body))

    def token_error(self, status_code: int = 400, error: str = "invalid_grant"):
        self.token_responses.append(httpx.Response(status_code, json={"error": error}))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.path == "/api/token":
            if not self.token_responses:
                return httpx.Response(500, json={"error": "server_error"})
            return self.token_responses.pop(0)

        if request.url.path == "/v1/me":
            if self.profile_status != 200:
                return httpx.Response(self.profile_status, json={"error": {"status": self.profile_status}})
            return httpx.Response(200, json=self.profile)

        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def test_settings() -> Settings:
    """Settings for an app with in-memory SQLite and no background scheduler"""
    return Settings(
        SPOTIFY_CLIENT_ID="test-client-id",
        SPOTIFY_CLIENT_SECRET="test-client-secret",
        SPOTIFY_REDIRECT_URI="http://testserver/auth/callback",
        FRONTEND_REDIRECT_URI=FRONTEND_URI,
        SESSION_JWT_SECRET=TEST_SECRET,
        ALLOWED_ORIGINS="http://localhost:3000",
        DATABASE_URL="sqlite+aiosqlite://",
        REFRESH_SCHEDULER_ENABLED=False,
    )


@pytest.fixture
def signer() -> SessionSigner:
    return SessionSigner(
        algorithm="HS256",
        signing_key=TEST_SECRET,
        verification_key=TEST_SECRET,
        issuer=TEST_ISSUER,
        lifetime_minutes=60,
    )


@pytest.fixture
def expired_signer() -> SessionSigner:
    """Same key and issuer as ``signer`` but issues already-expired tokens"""
    return SessionSigner(
        algorithm="HS256",
        signing_key=TEST_SECRET,
        verification_key=TEST_SECRET,
        issuer=TEST_ISSUER,
        lifetime_minutes=-5,
    )


@pytest.fixture
def fake_spotify() -> FakeSpotify:
    return FakeSpotify()


@pytest_asyncio.fixture
async def http_client(fake_spotify):
    async with httpx.AsyncClient(transport=fake_spotify.transport) as client:
        yield client


@pytest_asyncio.fixture
async def db_engine():
    engine = create_engine("sqlite+aiosqlite://")
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def sql_store(db_engine) -> SQLUserStore:
    return SQLUserStore(create_session_factory(db_engine))


@pytest.fixture
def count_users(db_engine) -> Callable:
    """Async helper returning the number of user rows"""
    from sqlalchemy import func, select

    from jukebox_auth.storage.tables import UserRecord

    async def _count() -> int:
        async with create_session_factory(db_engine)() as session:
            result = await session.execute(select(func.count()).select_from(UserRecord))
            return result.scalar_one()

    return _count
