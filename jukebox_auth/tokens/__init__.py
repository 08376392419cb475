"""
Tokens Package

Provider token lifecycle: session reconciliation on login and the background
refresh sweep.

Modules:
- reconciler: first login / returning user / active session decisions
- scheduler: periodic refresh of tokens nearing expiry
"""

from .reconciler import SessionReconciler, SessionState
from .scheduler import TokenRefreshScheduler

__all__ = [
    "SessionReconciler",
    "SessionState",
    "TokenRefreshScheduler",
]
