"""
Exception taxonomy for the authentication service.

Every component raises one of these kinds and never a raw transport,
database or JWT library error:

- ProviderAPIError: the OAuth provider returned a non-2xx status, a
  malformed body, or could not be reached.
- SessionInconsistencyError: a structurally valid credential names a user
  that does not exist.
- CredentialVerificationError: the bearer credential is malformed, expired
  or not signed by us.

Two configuration/infrastructure errors sit beside them:

- SigningConfigurationError: key material for the session JWT is missing or
  unusable. Fatal; indicates a deployment problem.
- UserStoreError: the persistence backend failed.
"""

from typing import Optional


class JukeboxAuthError(Exception):
    """Base exception for all service errors"""
    pass


class ProviderAPIError(JukeboxAuthError):
    """Raised when the OAuth provider cannot satisfy a request"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class SessionInconsistencyError(JukeboxAuthError):
    """Raised when a valid credential names a user that no longer exists"""

    def __init__(self, message: str, subject: str = ""):
        super().__init__(message)
        self.message = message
        self.subject = subject


class CredentialVerificationError(JukeboxAuthError):
    """Raised when a session credential fails verification"""
    pass


class SigningConfigurationError(JukeboxAuthError):
    """Raised when session JWT key material is missing or invalid"""
    pass


class UserStoreError(JukeboxAuthError):
    """Raised when the user store backend fails"""
    pass


__all__ = [
    "JukeboxAuthError",
    "ProviderAPIError",
    "SessionInconsistencyError",
    "CredentialVerificationError",
    "SigningConfigurationError",
    "UserStoreError",
]
