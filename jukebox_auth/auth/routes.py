"""
Authentication routes for the Spotify authorization code flow.

The routes are a thin HTTP shell: every state decision lives in the
SessionReconciler. They translate its outcomes into redirects, cookies and
status codes.
"""

import logging
import math
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response

from jukebox_auth.auth.middleware import get_current_credential, get_current_subject
from jukebox_auth.auth.session import SessionSigner
from jukebox_auth.config import Settings
from jukebox_auth.exceptions import ProviderAPIError, SessionInconsistencyError
from jukebox_auth.models import LoginResponse, LogoutResponse, SessionStatus, utcnow
from jukebox_auth.provider.client import SpotifyClient
from jukebox_auth.tokens.reconciler import SessionReconciler

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
)


# =============================================================================
# Dependencies
# =============================================================================

def _app_state_attr(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not initialized",
        )
    return value


def get_app_settings(request: Request) -> Settings:
    return _app_state_attr(request, "settings")


def get_provider(request: Request) -> SpotifyClient:
    return _app_state_attr(request, "provider")


def get_reconciler(request: Request) -> SessionReconciler:
    return _app_state_attr(request, "reconciler")


def get_signer(request: Request) -> SessionSigner:
    return _app_state_attr(request, "signer")


# =============================================================================
# Cookie Helpers
# =============================================================================

def set_session_cookie(
    response: Response,
    credential: str,
    settings: Settings,
    expires_at: Optional[datetime] = None,
) -> None:
    """
    Attach the session JWT as an HttpOnly cookie living as long as the JWT.

    A credential kept from an active session carries its own earlier expiry,
    so the cookie max-age follows expires_at when given.
    """
    lifetime = int(settings.session_lifetime.total_seconds())
    if expires_at is not None:
        lifetime = max(0, min(lifetime, math.ceil((expires_at - utcnow()).total_seconds())))

    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=credential,
        max_age=lifetime,
        path="/",
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )


def expire_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/login", response_model=LoginResponse)
async def login(
    scope: Optional[str] = Query(None, description="Space-separated Spotify scopes"),
    provider: SpotifyClient = Depends(get_provider),
) -> LoginResponse:
    """
    Return the parameters the front end needs to start the provider login.

    Query Parameters:
        scope: Scopes to request; the configured default when omitted

    Returns:
        LoginResponse with the authorization URL, client ID and redirect URI
    """
    logger.info("Authorization parameters requested")
    return LoginResponse(
        authorization_url=provider.authorization_url(scope=scope),
        **provider.redirect_params(),
    )


# =============================================================================
# Callback Endpoint
# =============================================================================

@auth_router.get("/callback", status_code=status.HTTP_303_SEE_OTHER)
async def callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code from Spotify"),
    error: Optional[str] = Query(None, description="Error code if authorization failed"),
    settings: Settings = Depends(get_app_settings),
    reconciler: SessionReconciler = Depends(get_reconciler),
    signer: SessionSigner = Depends(get_signer),
) -> RedirectResponse:
    """
    Handle the provider redirect after the user approved (or denied) access.

    Exchanges the code, reconciles it with any session cookie already present,
    and redirects to the front end with the outgoing session cookie set.
    """
    if error:
        logger.warning("Provider returned an authorization error", extra={"error": error})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Authorization failed")

    if not code:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing authorization code")

    incoming_credential = request.cookies.get(settings.SESSION_COOKIE_NAME)

    try:
        result = await reconciler.complete_authentication(code, incoming_credential)
    except ProviderAPIError as e:
        logger.error(f"Provider call failed during login: {e.message}", extra={"status_code": e.status_code})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Authorization failed")
    except SessionInconsistencyError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    response = RedirectResponse(url=result.redirect_uri, status_code=status.HTTP_303_SEE_OTHER)
    set_session_cookie(response, result.credential, settings, expires_at=signer.expires_at(result.credential))
    return response


# =============================================================================
# Session Endpoints
# =============================================================================

@auth_router.get("/session", response_model=SessionStatus)
async def session_status(subject: str = Depends(get_current_subject)) -> SessionStatus:
    """Report the caller's session; reaching this route means it is valid."""
    return SessionStatus(authenticated=True, subject=subject)


@auth_router.post("/logout", response_model=LogoutResponse)
async def logout(
    credential: str = Depends(get_current_credential),
    settings: Settings = Depends(get_app_settings),
    reconciler: SessionReconciler = Depends(get_reconciler),
) -> JSONResponse:
    """
    Clear the caller's stored provider tokens and expire the session cookie.

    Returns 404 when the session names no stored user.
    """
    logged_out = await reconciler.log_out(credential)

    response = JSONResponse(
        status_code=status.HTTP_200_OK if logged_out else status.HTTP_404_NOT_FOUND,
        content=LogoutResponse(logged_out=logged_out).model_dump(),
    )
    expire_session_cookie(response, settings)
    return response
