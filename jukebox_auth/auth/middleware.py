"""
Request authentication middleware.

Every request outside the exempt prefixes must carry a valid, unexpired
session JWT, either in the session cookie or as an ``Authorization: Bearer``
header. Rejections are a bare 401; the body never says why.
"""

import logging
from typing import Awaitable, Callable, Iterable, Optional, Tuple

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from jukebox_auth.auth.session import SessionSigner, extract_token_from_header
from jukebox_auth.exceptions import CredentialVerificationError

logger = logging.getLogger(__name__)

DEFAULT_EXEMPT_PREFIXES: Tuple[str, ...] = (
    "/auth/login",
    "/auth/callback",
    "/health",
    "/docs",
    "/openapi.json",
)

NOT_AUTHENTICATED = "Not authenticated"


class RequestAuthenticator:
    """
    Gatekeeper registered with ``app.middleware("http")``.

    On success the verified subject and raw credential are attached to
    ``request.state`` for the route dependencies below.
    """

    def __init__(
        self,
        signer: SessionSigner,
        cookie_name: str = "jwt",
        exempt_prefixes: Iterable[str] = DEFAULT_EXEMPT_PREFIXES,
    ):
        self._signer = signer
        self.cookie_name = cookie_name
        self.exempt_prefixes = tuple(exempt_prefixes)

    async def __call__(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if request.method == "OPTIONS" or self.is_exempt(request.url.path):
            return await call_next(request)

        credential = self.credential_from(request)
        subject = self.authenticate(credential)
        if not subject:
            logger.info(
                "Rejected unauthenticated request",
                extra={"path": request.url.path, "method": request.method},
            )
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": NOT_AUTHENTICATED},
                headers={"WWW-Authenticate": "Bearer"},
            )

        request.state.subject = subject
        request.state.credential = credential
        return await call_next(request)

    def is_exempt(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.exempt_prefixes)

    def credential_from(self, request: Request) -> str:
        """Session cookie first, then the Authorization header."""
        credential = request.cookies.get(self.cookie_name)
        if credential:
            return credential
        return extract_token_from_header(request.headers.get("Authorization"))

    def authenticate(self, credential: Optional[str]) -> str:
        """Return the credential's subject, or an empty string if it must be rejected."""
        try:
            claims = self._signer.decode(credential)
        except CredentialVerificationError:
            return ""
        if self._signer.claims_expired(claims):
            return ""
        subject = claims.get("sub")
        return subject if isinstance(subject, str) else ""


# ============================================================================
# Dependencies
# ============================================================================

def get_current_subject(request: Request) -> str:
    """Provider user ID of the authenticated caller."""
    subject = getattr(request.state, "subject", None)
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=NOT_AUTHENTICATED,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return subject


def get_current_credential(request: Request) -> str:
    """Session JWT the authenticated caller presented."""
    credential = getattr(request.state, "credential", None)
    if not credential:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=NOT_AUTHENTICATED,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credential
