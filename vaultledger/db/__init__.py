"""
Persistence layer for the credential trust ledger.

Provides:
- DocumentStore abstraction (in-memory, JSON file, PostgreSQL)
- Environment-based configuration
"""

from .store import (
    DocumentStore,
    InMemoryDocumentStore,
    JsonFileDocumentStore,
    PostgresDocumentStore,
)
from .config import (
    DatabaseConfig,
    StoreDriver,
    get_data_dir,
    get_database_url,
    get_store_driver,
)

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "JsonFileDocumentStore",
    "PostgresDocumentStore",
    "DatabaseConfig",
    "StoreDriver",
    "get_data_dir",
    "get_database_url",
    "get_store_driver",
]
