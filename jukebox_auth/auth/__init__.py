"""
Authentication Package

Session credentials and the HTTP surface of the login flow.

Modules:
- session: session JWT issuance and verification (HMAC or RS256)
- middleware: request authenticator and the current-user dependencies
- routes: /auth/login, /auth/callback, /auth/session, /auth/logout
  (imported directly by the application factory)

The authentication flow:
1. Front end fetches authorization parameters from /auth/login
2. User approves access at Spotify
3. Spotify redirects to /auth/callback with an authorization code
4. The code is exchanged and reconciled with any existing session
5. The browser is redirected back with a session JWT cookie
"""

from .middleware import RequestAuthenticator, get_current_credential, get_current_subject
from .session import SessionSigner

__all__ = [
    "RequestAuthenticator",
    "SessionSigner",
    "get_current_credential",
    "get_current_subject",
]
