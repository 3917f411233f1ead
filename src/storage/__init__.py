"""Persistence for credentials and tool usage.

Each contract has a volatile in-process implementation and a durable SQL
implementation with identical external behavior.
"""

from typing import Optional

from shared.config import StorageSettings
from shared.logging import get_logger
from storage.credentials import (
    CredentialStore,
    InMemoryCredentialStore,
    SQLCredentialStore,
)
from storage.database import Database
from storage.usage import FileUsageLog, InMemoryUsageLog, SQLUsageLog, UsageLog

logger = get_logger(__name__)


def create_stores(
    settings: StorageSettings,
    credential_store: Optional[CredentialStore] = None,
    usage_log: Optional[UsageLog] = None,
) -> tuple[CredentialStore, UsageLog]:
    """
    Build the credential store and usage log selected by configuration.

    Stores passed in are returned as is; only the missing ones are built.
    """
    if credential_store is not None and usage_log is not None:
        return credential_store, usage_log

    if settings.database_url:
        database = Database(settings.database_url)
        logger.info("Using SQL stores", dialect=database.dialect)
        if credential_store is None and usage_log is None:
            # the credential store closes the shared engine
            return SQLCredentialStore(database, owns_database=True), SQLUsageLog(database)
        if credential_store is None:
            return SQLCredentialStore(database, owns_database=True), usage_log
        return credential_store, SQLUsageLog(database, owns_database=True)

    if credential_store is None:
        logger.warning("Using in-memory credential store (not persistent). Set DATABASE_URL to persist.")
        credential_store = InMemoryCredentialStore()
    if usage_log is None:
        if settings.usage_log_path:
            usage_log = FileUsageLog(settings.usage_log_path)
        else:
            usage_log = InMemoryUsageLog()
    return credential_store, usage_log


__all__ = [
    "CredentialStore",
    "InMemoryCredentialStore",
    "SQLCredentialStore",
    "UsageLog",
    "InMemoryUsageLog",
    "SQLUsageLog",
    "FileUsageLog",
    "Database",
    "create_stores",
]
