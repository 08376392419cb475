"""
Configuration module for the Jukebox authentication service.

This module uses Pydantic Settings to load and validate environment variables
for the Spotify OAuth client, session JWT signing, user persistence, the
background token refresh scheduler, and CORS settings.

Environment variables are loaded from .env file or system environment.
"""

from datetime import timedelta
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


HMAC_ALGORITHMS = ["HS256", "HS384", "HS512"]
STORE_BACKENDS = ["database", "vault"]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All configuration for the Spotify OAuth client, JWT sessions,
    persistence, token refresh and security policies are defined here.
    """

    # =========================================================================
    # Spotify OAuth Configuration
    # =========================================================================

    SPOTIFY_CLIENT_ID: str = Field(
        ...,
        description="Spotify application client ID",
        min_length=1,
    )

    SPOTIFY_CLIENT_SECRET: str = Field(
        ...,
        description="Spotify application client secret",
        min_length=1,
    )

    SPOTIFY_REDIRECT_URI: str = Field(
        ...,
        description="OAuth redirect URI registered with Spotify (e.g., https://api.example.com/auth/callback)",
        min_length=1,
    )

    SPOTIFY_AUTHORIZE_URI: str = Field(
        default="https://accounts.spotify.com/authorize",
        description="Spotify authorization endpoint",
    )

    SPOTIFY_TOKEN_URI: str = Field(
        default="https://accounts.spotify.com/api/token",
        description="Spotify token endpoint (code exchange and refresh)",
    )

    SPOTIFY_CURRENT_USER_URI: str = Field(
        default="https://api.spotify.com/v1/me",
        description="Spotify current user profile endpoint",
    )

    SPOTIFY_DEFAULT_SCOPE: str = Field(
        default="user-read-email user-read-private",
        description="Scope requested when /auth/login is called without one",
    )

    PROVIDER_HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout applied to every request sent to the provider",
        gt=0,
    )

    # =========================================================================
    # Session JWT Configuration
    # =========================================================================

    SESSION_JWT_SECRET: Optional[str] = Field(
        None,
        description="Secret key for signing session JWTs with HMAC (must be cryptographically secure)",
        min_length=32,
    )

    SESSION_JWT_ALGORITHM: str = Field(
        default="HS256",
        description="HMAC algorithm used when USE_RS256_JWT is disabled",
    )

    SESSION_JWT_EXPIRY_MINUTES: int = Field(
        default=60,
        description="Session JWT expiry time in minutes",
        ge=5,
        le=1440,  # Max 24 hours
    )

    JWT_ISSUER: str = Field(
        default="jukebox-auth",
        description="Issuer claim written into and required from session JWTs",
    )

    USE_RS256_JWT: bool = Field(
        default=False,
        description="Sign session JWTs with an RSA key pair instead of a shared secret",
    )

    JWT_PRIVATE_KEY: Optional[str] = Field(
        None,
        description="PEM encoded RSA private key (required when USE_RS256_JWT is set)",
    )

    JWT_PUBLIC_KEY: Optional[str] = Field(
        None,
        description="PEM encoded RSA public key (required when USE_RS256_JWT is set)",
    )

    # =========================================================================
    # Session Cookie Configuration
    # =========================================================================

    SESSION_COOKIE_NAME: str = Field(
        default="jwt",
        description="Cookie carrying the session JWT",
    )

    SESSION_COOKIE_SECURE: bool = Field(
        default=False,
        description="Mark the session cookie Secure (enable behind HTTPS)",
    )

    # =========================================================================
    # Front End Configuration
    # =========================================================================

    FRONTEND_REDIRECT_URI: str = Field(
        ...,
        description="Where the browser is sent after a successful login",
        min_length=1,
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    # =========================================================================
    # Persistence Configuration
    # =========================================================================

    USER_STORE_BACKEND: str = Field(
        default="database",
        description="User store backend: 'database' (multi-user) or 'vault' (single-tenant)",
    )

    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./jukebox_auth.db",
        description="SQLAlchemy async database URL",
    )

    DATABASE_ECHO: bool = Field(
        default=False,
        description="Log every SQL statement (debugging only)",
    )

    VAULT_BASE_URL: Optional[str] = Field(
        None,
        description="Vault server base URL (e.g., http://vault:8200)",
    )

    VAULT_TOKEN: Optional[str] = Field(
        None,
        description="Vault token sent in the X-Vault-Token header",
    )

    VAULT_KV_PATH: str = Field(
        default="/v1/secret/data/",
        description="KV v2 data path prefix",
    )

    VAULT_SECRET_KEY: str = Field(
        default="spotify-token",
        description="Secret name holding the single-tenant user and token",
    )

    # =========================================================================
    # Token Refresh Scheduler Configuration
    # =========================================================================

    REFRESH_SCHEDULER_ENABLED: bool = Field(
        default=True,
        description="Run the background token refresh sweep",
    )

    REFRESH_INTERVAL_SECONDS: int = Field(
        default=180,
        description="Seconds between refresh sweeps",
        ge=1,
    )

    REFRESH_WINDOW_SECONDS: int = Field(
        default=300,
        description="Tokens expiring within this many seconds are refreshed",
        ge=1,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the server",
    )

    PORT: int = Field(
        default=8080,
        description="Port to bind the server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra env vars not defined here
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        origins = [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]
        return origins

    @property
    def jwt_algorithm(self) -> str:
        """Algorithm used to sign and verify session JWTs."""
        return "RS256" if self.USE_RS256_JWT else self.SESSION_JWT_ALGORITHM

    @property
    def session_lifetime(self) -> timedelta:
        return timedelta(minutes=self.SESSION_JWT_EXPIRY_MINUTES)

    @property
    def refresh_interval(self) -> timedelta:
        return timedelta(seconds=self.REFRESH_INTERVAL_SECONDS)

    @property
    def refresh_window(self) -> timedelta:
        return timedelta(seconds=self.REFRESH_WINDOW_SECONDS)

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("SESSION_JWT_ALGORITHM")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """
        Validate JWT algorithm is one of the supported HMAC algorithms.

        Args:
            v: JWT algorithm string

        Returns:
            Validated algorithm string

        Raises:
            ValueError: If algorithm is not supported
        """
        if v not in HMAC_ALGORITHMS:
            raise ValueError(
                f"JWT algorithm must be one of {HMAC_ALGORITHMS}, got: {v}"
            )

        return v

    @field_validator("USER_STORE_BACKEND")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in STORE_BACKENDS:
            raise ValueError(
                f"USER_STORE_BACKEND must be one of {STORE_BACKENDS}, got: {v}"
            )
        return v

    @field_validator(
        "SPOTIFY_REDIRECT_URI",
        "SPOTIFY_AUTHORIZE_URI",
        "SPOTIFY_TOKEN_URI",
        "SPOTIFY_CURRENT_USER_URI",
        "FRONTEND_REDIRECT_URI",
    )
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """
        Validate that endpoint settings are absolute http(s) URLs.

        Raises:
            ValueError: If the value has no http:// or https:// scheme
        """
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(
                f"Invalid URL: '{v}'. Expected an absolute http(s) URL"
            )
        return v

    @model_validator(mode="after")
    def validate_signing_material(self) -> "Settings":
        """
        Ensure key material exists for the selected signing backend.

        HMAC signing needs SESSION_JWT_SECRET; RS256 needs both halves of
        the RSA key pair.
        """
        if self.USE_RS256_JWT:
            if not self.JWT_PRIVATE_KEY or not self.JWT_PUBLIC_KEY:
                raise ValueError(
                    "USE_RS256_JWT requires both JWT_PRIVATE_KEY and JWT_PUBLIC_KEY"
                )
        elif not self.SESSION_JWT_SECRET:
            raise ValueError("SESSION_JWT_SECRET is required for HMAC session JWTs")

        if self.USER_STORE_BACKEND == "vault":
            if not self.VAULT_BASE_URL or not self.VAULT_TOKEN:
                raise ValueError(
                    "USER_STORE_BACKEND=vault requires VAULT_BASE_URL and VAULT_TOKEN"
                )

        return self


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle. The cache is thread-safe.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.

    Example:
        >>> from jukebox_auth.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.SPOTIFY_CLIENT_ID)
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate critical configuration settings and return a status report.

    This is called during application startup so deployment problems show
    up in the logs before the first login attempt.

    Returns:
        Dictionary with validation status and any warnings.

    Example:
        >>> status = validate_configuration(get_settings())
        >>> if not status["valid"]:
        ...     print(status["errors"])
    """
    errors = []
    warnings = []

    if settings.REFRESH_WINDOW_SECONDS <= settings.REFRESH_INTERVAL_SECONDS:
        errors.append(
            "REFRESH_WINDOW_SECONDS must exceed REFRESH_INTERVAL_SECONDS, "
            "otherwise tokens can expire between two sweeps"
        )

    if not settings.SESSION_COOKIE_SECURE:
        warnings.append("SESSION_COOKIE_SECURE is disabled (session cookie sent over plain HTTP)")

    if settings.DATABASE_URL.startswith("sqlite") and settings.USER_STORE_BACKEND == "database":
        warnings.append("DATABASE_URL points to SQLite (not suitable for multiple workers)")

    if not settings.allowed_origins_list:
        warnings.append("ALLOWED_ORIGINS is empty (browser front end cannot send credentials)")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "jwt_algorithm": settings.jwt_algorithm,
        "jwt_expiry_minutes": settings.SESSION_JWT_EXPIRY_MINUTES,
        "store_backend": settings.USER_STORE_BACKEND,
    }
