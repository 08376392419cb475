"""
Spotify OAuth client.

This module talks to the provider's accounts service and Web API:
- Building the authorization URL the browser is sent to
- Exchanging an authorization code for an access/refresh token pair
- Refreshing an access token
- Fetching the current user's profile

Every failure (non-2xx status, malformed body, transport error) is raised as
ProviderAPIError so callers never see httpx exceptions.
"""

import logging
import math
from datetime import timedelta
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from jukebox_auth.config import Settings
from jukebox_auth.exceptions import ProviderAPIError
from jukebox_auth.models import ProviderProfile, ProviderToken, utcnow

logger = logging.getLogger(__name__)

ACCESS_TOKEN_LABEL = "access_token"
AUTHORIZATION_CODE_LABEL = "authorization_code"
EXPIRES_IN_LABEL = "expires_in"
GRANT_TYPE_LABEL = "grant_type"
REDIRECT_URI_LABEL = "redirect_uri"
REFRESH_TOKEN_LABEL = "refresh_token"

# Spotify issues hour-long tokens; anything beyond a day is not a real lifetime
MAX_EXPIRES_IN_SECONDS = 24 * 60 * 60


class SpotifyClient:
    """
    Provider client backed by a shared httpx.AsyncClient.

    The HTTP client is owned by the caller (the application lifespan) so
    connections are pooled across requests and refresh sweeps.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        authorize_uri: str,
        token_uri: str,
        current_user_uri: str,
        default_scope: str = "",
        timeout: float = 10.0,
    ):
        self._http = http_client
        self.client_id = client_id
        self._client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.authorize_uri = authorize_uri
        self.token_uri = token_uri
        self.current_user_uri = current_user_uri
        self.default_scope = default_scope
        self._timeout = httpx.Timeout(timeout)

    @classmethod
    def from_settings(cls, http_client: httpx.AsyncClient, settings: Settings) -> "SpotifyClient":
        return cls(
            http_client=http_client,
            client_id=settings.SPOTIFY_CLIENT_ID,
            client_secret=settings.SPOTIFY_CLIENT_SECRET,
            redirect_uri=settings.SPOTIFY_REDIRECT_URI,
            authorize_uri=settings.SPOTIFY_AUTHORIZE_URI,
            token_uri=settings.SPOTIFY_TOKEN_URI,
            current_user_uri=settings.SPOTIFY_CURRENT_USER_URI,
            default_scope=settings.SPOTIFY_DEFAULT_SCOPE,
            timeout=settings.PROVIDER_HTTP_TIMEOUT_SECONDS,
        )

    # =========================================================================
    # Authorization URL
    # =========================================================================

    def redirect_params(self) -> Dict[str, str]:
        """Client ID and redirect URI the front end needs to start a login."""
        return {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
        }

    def authorization_url(self, scope: Optional[str] = None, state: Optional[str] = None) -> str:
        """
        Build the provider authorization URL for the code flow.

        Args:
            scope: Space separated scopes; the configured default when empty
            state: Optional opaque value echoed back on the callback
        """
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": scope or self.default_scope,
        }
        if state:
            params["state"] = state

        return f"{self.authorize_uri}?{urlencode(params)}"

    # =========================================================================
    # Token Endpoint
    # =========================================================================

    async def exchange_authorization_code(self, code: str) -> ProviderToken:
        """
        Exchange an authorization code for a provider token pair.

        Raises:
            ProviderAPIError: If the provider rejects the code or the
                response is malformed
        """
        return await self._request_token({
            GRANT_TYPE_LABEL: AUTHORIZATION_CODE_LABEL,
            "code": code,
            REDIRECT_URI_LABEL: self.redirect_uri,
        })

    async def refresh(self, refresh_token: str) -> ProviderToken:
        """
        Obtain a new access token with a refresh token.

        The returned token's refresh_token is empty when the provider did not
        rotate it; callers keep the stored value in that case.

        Raises:
            ProviderAPIError: If the provider rejects the refresh token or
                the response is malformed
        """
        return await self._request_token({
            GRANT_TYPE_LABEL: REFRESH_TOKEN_LABEL,
            REFRESH_TOKEN_LABEL: refresh_token,
        })

    async def _request_token(self, form: Dict[str, str]) -> ProviderToken:
        grant_type = form[GRANT_TYPE_LABEL]

        try:
            response = await self._http.post(
                self.token_uri,
                data=form,
                auth=(self.client_id, self._client_secret),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"Token request failed: {e}", extra={"grant_type": grant_type})
            raise ProviderAPIError(f"Unable to reach provider token endpoint: {e}") from e

        if not response.is_success:
            error_msg = _error_message(response) or "Token request failed"
            logger.warning(
                "Provider rejected token request",
                extra={"grant_type": grant_type, "status_code": response.status_code},
            )
            raise ProviderAPIError(
                f"Provider token could not be retrieved: {error_msg}",
                status_code=response.status_code,
            )

        body = _json_body(response)
        received_at = utcnow()

        access_token = body.get(ACCESS_TOKEN_LABEL)
        expires_in = body.get(EXPIRES_IN_LABEL)

        if not isinstance(access_token, str) or not access_token:
            raise ProviderAPIError("Token response missing access_token", status_code=response.status_code)
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)) or expires_in <= 0:
            raise ProviderAPIError("Token response missing expires_in", status_code=response.status_code)
        if expires_in > MAX_EXPIRES_IN_SECONDS or not math.isfinite(expires_in):
            raise ProviderAPIError(
                f"Token response has unusable expires_in: {expires_in}",
                status_code=response.status_code,
            )

        refresh_token = body.get(REFRESH_TOKEN_LABEL)
        if not isinstance(refresh_token, str):
            refresh_token = ""

        try:
            expiry = received_at + timedelta(seconds=expires_in)
        except (OverflowError, ValueError) as e:
            raise ProviderAPIError(
                f"Token response has unusable expires_in: {expires_in}",
                status_code=response.status_code,
            ) from e

        token = ProviderToken(
            access_token=access_token,
            refresh_token=refresh_token,
            expiry=expiry,
        )

        logger.info(
            "Provider token retrieved",
            extra={
                "grant_type": grant_type,
                "expires_at": token.expiry.isoformat(),
                "refresh_token_rotated": bool(refresh_token),
            },
        )
        return token

    # =========================================================================
    # Profile Endpoint
    # =========================================================================

    async def fetch_profile(self, access_token: str) -> ProviderProfile:
        """
        Fetch the provider's view of the user owning an access token.

        Raises:
            ProviderAPIError: If the request fails or returns no usable profile
        """
        try:
            response = await self._http.get(
                self.current_user_uri,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"Profile request failed: {e}")
            raise ProviderAPIError(f"Unable to reach provider profile endpoint: {e}") from e

        if not response.is_success:
            raise ProviderAPIError(
                "No user returned from provider",
                status_code=response.status_code,
            )

        body = _json_body(response)

        try:
            profile = ProviderProfile(
                provider_user_id=body.get("id"),
                display_name=body.get("display_name"),
                email=body.get("email"),
            )
        except ValidationError as e:
            raise ProviderAPIError(f"Malformed profile returned from provider: {e}") from e

        logger.info("User returned from provider", extra={"user_id": profile.provider_user_id})
        return profile


# =============================================================================
# Response Helpers
# =============================================================================

def _json_body(response: httpx.Response) -> Dict[str, Any]:
    """Decode a JSON object body or raise ProviderAPIError."""
    if not response.content:
        raise ProviderAPIError("Empty response body from provider", status_code=response.status_code)

    try:
        body = response.json()
    except ValueError as e:
        raise ProviderAPIError("Provider response is not valid JSON", status_code=response.status_code) from e

    if not isinstance(body, dict) or not body:
        raise ProviderAPIError("Provider response is not a JSON object", status_code=response.status_code)

    return body


def _error_message(response: httpx.Response) -> str:
    """Best-effort OAuth error description from a failed response."""
    if not response.headers.get("content-type", "").startswith("application/json"):
        return ""
    try:
        error_data = response.json()
    except ValueError:
        return ""
    if not isinstance(error_data, dict):
        return ""
    return error_data.get("error_description") or error_data.get("error") or ""
