"""
Storage Package

Persistence for users and their provider tokens.

Modules:
- tables: SQLModel tables (users, provider_tokens)
- database: async engine, session factory and schema bootstrap
- users: the UserStore contract and the relational backend
- vault: single-tenant backend kept in a Vault KV v2 secret
"""

from .database import create_db_and_tables, create_engine, create_session_factory
from .users import SQLUserStore, UserStore
from .vault import VaultUserStore

__all__ = [
    "UserStore",
    "SQLUserStore",
    "VaultUserStore",
    "create_engine",
    "create_session_factory",
    "create_db_and_tables",
]
