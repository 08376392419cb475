"""
Provider Package

OAuth client for the third-party identity provider (Spotify): authorization
URL construction, code exchange, token refresh and profile lookup.
"""

from .client import SpotifyClient

__all__ = [
    "SpotifyClient",
]
