"""
Session reconciliation.

Decides, for a freshly obtained provider token and an optional incoming
session JWT, which of three situations applies and what credential the
caller leaves with:

NO_SESSION      no usable incoming credential. The provider profile decides
                the identity; the user is either RETURNING (row exists) or
                NEW (row created). A fresh credential is issued.
ACTIVE_SESSION  the credential names an existing user. Its tokens are
                updated and the incoming credential is returned unchanged.
                If the user is missing, SessionInconsistencyError is raised.

A reconcile either persists the user/token and returns a credential, or
persists nothing and raises.
"""

import enum
import logging
from typing import Optional

from jukebox_auth.auth.session import SessionSigner
from jukebox_auth.exceptions import CredentialVerificationError, SessionInconsistencyError
from jukebox_auth.models import ProviderToken, ReconcileResult
from jukebox_auth.provider.client import SpotifyClient
from jukebox_auth.storage.users import UserStore

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    NO_SESSION = "no_session"
    RETURNING_USER = "returning_user"
    NEW_USER = "new_user"
    ACTIVE_SESSION = "active_session"


class SessionReconciler:
    """Maps (new provider token, incoming credential) to (saved user, outgoing credential)."""

    def __init__(
        self,
        provider: SpotifyClient,
        store: UserStore,
        signer: SessionSigner,
        redirect_uri: str,
    ):
        self._provider = provider
        self._store = store
        self._signer = signer
        self.redirect_uri = redirect_uri

    async def complete_authentication(
        self,
        code: str,
        incoming_credential: Optional[str] = None,
    ) -> ReconcileResult:
        """Exchange an authorization code and reconcile the resulting token."""
        new_token = await self._provider.exchange_authorization_code(code)
        return await self.reconcile(new_token, incoming_credential)

    async def reconcile(
        self,
        new_token: ProviderToken,
        incoming_credential: Optional[str] = None,
    ) -> ReconcileResult:
        """
        Persist a new provider token for the right user and pick the outgoing credential.

        Args:
            new_token: Token pair just obtained from the provider
            incoming_credential: Session JWT presented with the request, if any

        Returns:
            ReconcileResult with the outgoing credential and redirect target

        Raises:
            ProviderAPIError: If the profile lookup fails (nothing is written)
            SessionInconsistencyError: If the credential names an unknown user
        """
        subject = self._session_subject(incoming_credential)

        if subject:
            credential = await self._reconcile_active_session(subject, new_token, incoming_credential)
        else:
            credential = await self._reconcile_new_session(new_token)

        return ReconcileResult(credential=credential, redirect_uri=self.redirect_uri)

    async def log_out(self, credential: Optional[str]) -> bool:
        """Clear the provider tokens of the credential's user. The user row is kept."""
        subject = self._signer.subject_of(credential)
        if not subject:
            logger.error("Unable to extract user from session JWT")
            return False

        return await self._store.clear_token(subject)

    # =========================================================================
    # States
    # =========================================================================

    def _session_subject(self, incoming_credential: Optional[str]) -> str:
        try:
            claims = self._signer.decode(incoming_credential)
        except CredentialVerificationError:
            return ""

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            return ""
        if self._signer.claims_expired(claims):
            logger.info("Incoming session JWT expired, treating as no session", extra={"user_id": subject})
            return ""
        return subject

    async def _reconcile_active_session(
        self,
        subject: str,
        new_token: ProviderToken,
        incoming_credential: str,
    ) -> str:
        user = await self._store.find_by_provider_user_id(subject)
        if user is None:
            logger.error("Session JWT names an unknown user", extra={"user_id": subject})
            raise SessionInconsistencyError("No user found for session subject", subject=subject)

        user.attach_token(new_token)
        await self._store.save(user)
        logger.info(
            "Session exists for user",
            extra={"user_id": subject, "state": SessionState.ACTIVE_SESSION.value},
        )
        return incoming_credential

    async def _reconcile_new_session(self, new_token: ProviderToken) -> str:
        logger.info("No session exists for user", extra={"state": SessionState.NO_SESSION.value})
        profile = await self._provider.fetch_profile(new_token.access_token)

        user = await self._store.find_by_provider_user_id(profile.provider_user_id)
        if user is not None:
            state = SessionState.RETURNING_USER
            user.apply_profile(profile)
        else:
            state = SessionState.NEW_USER
            user = profile.to_user()
        user.attach_token(new_token)

        # Issue before saving: a signing failure must leave nothing written
        credential = self._signer.issue(profile.provider_user_id)
        await self._store.save(user)

        logger.info(
            "Provider tokens stored",
            extra={"user_id": profile.provider_user_id, "state": state.value},
        )
        return credential
