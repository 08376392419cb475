"""
Jukebox Auth
============

Spotify login for a browser front end. The service runs the OAuth
authorization code flow, hands the front end its own signed session JWT,
and keeps each user's Spotify access token valid by refreshing it in the
background before it expires.
"""

__version__ = "1.0.0"
