"""
JWT Session Management Module
==============================

Handles creation and verification of the stateless session JWT handed to the
browser after a successful provider login. Supports both HMAC (HS256/384/512,
shared secret) and RS256 (RSA key pair) signing; the contract is identical
either way.

Verification and expiry are deliberately separate checks: ``verify`` only
answers "did we sign this and is it well formed", while ``is_expired`` is
layered on by the request authenticator. Expiry policy can therefore change
without touching signing.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt
from jwt.exceptions import InvalidKeyError, InvalidTokenError

from jukebox_auth.config import Settings
from jukebox_auth.exceptions import CredentialVerificationError, SigningConfigurationError
from jukebox_auth.models import utcnow

logger = logging.getLogger(__name__)

DEFAULT_ROLES: List[str] = ["ROLE_USER"]
REQUIRED_CLAIMS: List[str] = ["sub", "iat", "exp"]


class SessionSigner:
    """
    Issues and verifies session JWTs.

    Example:
        >>> signer = SessionSigner.from_settings(get_settings())
        >>> token = signer.issue("spotify-user-1")
        >>> signer.verify(token)
        True
        >>> signer.subject_of(token)
        'spotify-user-1'
    """

    def __init__(
        self,
        algorithm: str,
        signing_key: Optional[str],
        verification_key: Optional[str],
        issuer: str,
        lifetime_minutes: int = 60,
    ):
        self.algorithm = algorithm
        self.issuer = issuer
        self.lifetime_minutes = lifetime_minutes
        self._signing_key = signing_key
        self._verification_key = verification_key

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionSigner":
        """Build a signer for the backend selected in settings."""
        if settings.USE_RS256_JWT:
            signing_key = settings.JWT_PRIVATE_KEY
            verification_key = settings.JWT_PUBLIC_KEY
        else:
            signing_key = verification_key = settings.SESSION_JWT_SECRET

        return cls(
            algorithm=settings.jwt_algorithm,
            signing_key=signing_key,
            verification_key=verification_key,
            issuer=settings.JWT_ISSUER,
            lifetime_minutes=settings.SESSION_JWT_EXPIRY_MINUTES,
        )

    # =========================================================================
    # Token Creation
    # =========================================================================

    def issue(self, subject: str) -> str:
        """
        Create a session JWT for a provider user.

        Args:
            subject: Provider user ID written into the 'sub' claim

        Returns:
            Encoded JWT string

        Raises:
            SigningConfigurationError: If key material is missing or unusable
        """
        if not subject:
            raise ValueError("Cannot issue a session JWT without a subject")

        now = utcnow()
        payload = {
            "sub": subject,
            "iat": now,
            "exp": now + timedelta(minutes=self.lifetime_minutes),
            "iss": self.issuer,
            "roles": DEFAULT_ROLES,
        }

        key = self._require_key(self._signing_key, "signing")
        try:
            token = jwt.encode(payload, key, algorithm=self.algorithm)
        except (ValueError, TypeError, jwt.exceptions.PyJWTError) as e:
            logger.error(f"Failed to create session JWT: {e}")
            raise SigningConfigurationError(f"Failed to create session JWT: {e}") from e

        logger.info(
            "Created session JWT",
            extra={"user_id": subject, "expires_in_minutes": self.lifetime_minutes},
        )
        return token

    # =========================================================================
    # Token Verification
    # =========================================================================

    def decode(self, token: Optional[str]) -> Dict[str, Any]:
        """
        Verify signature, issuer and required claims, and return the claims.

        Expiry is not enforced here; see ``is_expired``.

        Raises:
            CredentialVerificationError: If the token is missing, malformed
                or not signed by us
        """
        if not token:
            raise CredentialVerificationError("No session token provided")

        key = self._require_key(self._verification_key, "verification")
        try:
            return jwt.decode(
                token,
                key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={
                    "verify_signature": True,
                    "verify_exp": False,
                    "verify_iat": True,
                    "require": REQUIRED_CLAIMS,
                },
            )
        except InvalidKeyError as e:
            raise SigningConfigurationError(f"Unusable {self.algorithm} verification key: {e}") from e
        except InvalidTokenError as e:
            logger.debug(f"Session JWT rejected: {e}")
            raise CredentialVerificationError(f"Invalid session token: {e}") from e

    def verify(self, token: Optional[str]) -> bool:
        """Return True when the token is well formed and signed by us."""
        try:
            self.decode(token)
        except CredentialVerificationError:
            return False
        return True

    def subject_of(self, token: Optional[str]) -> str:
        """
        Return the token's subject, or an empty string when there is no
        usable session (missing, empty, unparseable or badly signed token).
        """
        try:
            claims = self.decode(token)
        except CredentialVerificationError:
            return ""
        subject = claims.get("sub")
        return subject if isinstance(subject, str) else ""

    def is_expired(self, token: Optional[str], leeway_seconds: int = 0) -> bool:
        """
        Check the 'exp' claim of a verified token.

        Tokens that fail verification count as expired.
        """
        try:
            claims = self.decode(token)
        except CredentialVerificationError:
            return True

        return self.claims_expired(claims, leeway_seconds)

    def claims_expired(self, claims: Dict[str, Any], leeway_seconds: int = 0) -> bool:
        """Check the 'exp' claim of already decoded claims."""
        expires_at = expiry_of(claims)
        if expires_at is None:
            return True
        return utcnow() > expires_at + timedelta(seconds=leeway_seconds)

    def expires_at(self, token: Optional[str]) -> Optional[datetime]:
        """Expiry of a verified token, or None when it fails verification."""
        try:
            claims = self.decode(token)
        except CredentialVerificationError:
            return None
        return expiry_of(claims)

    # =========================================================================
    # Helper Functions
    # =========================================================================

    def _require_key(self, key: Optional[str], purpose: str) -> str:
        if not key:
            raise SigningConfigurationError(
                f"{self.algorithm} enabled but no {purpose} key configured"
            )
        return key


def expiry_of(claims: Dict[str, Any]) -> Optional[datetime]:
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def extract_token_from_header(authorization: Optional[str]) -> str:
    """
    Extract Bearer token from Authorization header.

    Args:
        authorization: Authorization header value

    Returns:
        Extracted token string, or an empty string if the header is
        missing or not in 'Bearer <token>' form
    """
    if not authorization:
        return ""

    parts = authorization.split()

    if len(parts) != 2 or parts[0].lower() != "bearer":
        return ""

    return parts[1]


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    "SessionSigner",
    "expiry_of",
    "extract_token_from_header",
    "DEFAULT_ROLES",
]
