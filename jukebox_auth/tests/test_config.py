"""
Configuration Tests

Settings validation and the startup configuration report.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from jukebox_auth.config import Settings, validate_configuration

from .conftest import TEST_PRIVATE_KEY, TEST_PUBLIC_KEY, TEST_SECRET

REQUIRED = {
    "SPOTIFY_CLIENT_ID": "test-client-id",
    "SPOTIFY_CLIENT_SECRET": "test-client-secret",
    "SPOTIFY_REDIRECT_URI": "http://testserver/auth/callback",
    "FRONTEND_REDIRECT_URI": "http://localhost:3000/",
}


def build(**overrides) -> Settings:
    values = {**REQUIRED, "SESSION_JWT_SECRET": TEST_SECRET}
    values.update(overrides)
    return Settings(**values)


def test_defaults():
    settings = build()

    assert settings.jwt_algorithm == "HS256"
    assert settings.SESSION_COOKIE_NAME == "jwt"
    assert settings.session_lifetime == timedelta(minutes=60)
    assert settings.refresh_interval == timedelta(seconds=180)
    assert settings.refresh_window == timedelta(seconds=300)
    assert settings.USER_STORE_BACKEND == "database"


def test_allowed_origins_list():
    settings = build(ALLOWED_ORIGINS=" http://localhost:3000 , https://jukebox.example.com,")

    assert settings.allowed_origins_list == ["http://localhost:3000", "https://jukebox.example.com"]


def test_hmac_requires_secret():
    with pytest.raises(ValidationError):
        build(SESSION_JWT_SECRET=None)


def test_short_secret_rejected():
    with pytest.raises(ValidationError):
        build(SESSION_JWT_SECRET="too-short")


def test_unsupported_hmac_algorithm_rejected():
    with pytest.raises(ValidationError):
        build(SESSION_JWT_ALGORITHM="none")


def test_rs256_requires_both_keys():
    with pytest.raises(ValidationError):
        build(USE_RS256_JWT=True, JWT_PRIVATE_KEY=TEST_PRIVATE_KEY)


def test_rs256_settings():
    settings = build(
        SESSION_JWT_SECRET=None,
        USE_RS256_JWT=True,
        JWT_PRIVATE_KEY=TEST_PRIVATE_KEY,
        JWT_PUBLIC_KEY=TEST_PUBLIC_KEY,
    )

    assert settings.jwt_algorithm == "RS256"


def test_vault_backend_requires_url_and_token():
    with pytest.raises(ValidationError):
        build(USER_STORE_BACKEND="vault")

    settings = build(USER_STORE_BACKEND="Vault", VAULT_BASE_URL="http://vault:8200", VAULT_TOKEN="root")
    assert settings.USER_STORE_BACKEND == "vault"


def test_unknown_store_backend_rejected():
    with pytest.raises(ValidationError):
        build(USER_STORE_BACKEND="redis")


def test_redirect_uri_must_be_absolute_url():
    with pytest.raises(ValidationError):
        build(FRONTEND_REDIRECT_URI="/home")


class TestValidateConfiguration:

    def test_valid_configuration_reports_warnings(self):
        report = validate_configuration(build())

        assert report["valid"] is True
        assert report["errors"] == []
        assert any("SESSION_COOKIE_SECURE" in warning for warning in report["warnings"])
        assert report["store_backend"] == "database"

    def test_window_not_longer_than_interval_is_an_error(self):
        report = validate_configuration(build(REFRESH_INTERVAL_SECONDS=600, REFRESH_WINDOW_SECONDS=300))

        assert report["valid"] is False
        assert len(report["errors"]) == 1
