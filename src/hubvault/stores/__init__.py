"""
Application state stores.

The backup engine reads from and writes to these stores through the
abstract interfaces in ``hubvault.stores.base``. Two families of
implementations are provided: SQLite-backed persistent stores and
in-memory stores.

Usage:
    from hubvault.stores import StateDatabase, open_sqlite_stores

    stores = open_sqlite_stores(data_dir, credential_store)
    widgets = stores.widgets.list()
"""

from __future__ import annotations

from pathlib import Path

from hubvault.stores.base import (
    AppStores,
    ProfileNotFoundError,
    SecureCredentialStore,
    ServiceConfigStore,
    SettingsStore,
    StoreError,
    WidgetProfileStore,
    WidgetStore,
)
from hubvault.stores.memory import (
    InMemorySecureCredentialStore,
    InMemoryServiceConfigStore,
    InMemorySettingsStore,
    InMemoryWidgetProfileStore,
    InMemoryWidgetStore,
    create_memory_stores,
)
from hubvault.stores.models import (
    ServiceConfig,
    Widget,
    WidgetProfile,
    WidgetSize,
)
from hubvault.stores.sqlite_store import (
    SQLiteServiceConfigStore,
    SQLiteSettingsStore,
    SQLiteWidgetProfileStore,
    SQLiteWidgetStore,
    StateDatabase,
)


def open_sqlite_stores(
    data_dir: Path | str, credentials: SecureCredentialStore
) -> AppStores:
    """
    Open the SQLite-backed stores in ``data_dir``.

    Credential bags live outside the database, so the credential store is
    passed in by the caller.
    """
    db = StateDatabase(data_dir)
    return AppStores(
        service_configs=SQLiteServiceConfigStore(db),
        widgets=SQLiteWidgetStore(db),
        widget_profiles=SQLiteWidgetProfileStore(db),
        credentials=credentials,
        settings=SQLiteSettingsStore(db),
    )


__all__ = [
    # Interfaces
    "AppStores",
    "ServiceConfigStore",
    "WidgetStore",
    "WidgetProfileStore",
    "SecureCredentialStore",
    "SettingsStore",
    # Models
    "ServiceConfig",
    "Widget",
    "WidgetProfile",
    "WidgetSize",
    # SQLite
    "StateDatabase",
    "SQLiteServiceConfigStore",
    "SQLiteWidgetStore",
    "SQLiteWidgetProfileStore",
    "SQLiteSettingsStore",
    "open_sqlite_stores",
    # In-memory
    "InMemoryServiceConfigStore",
    "InMemoryWidgetStore",
    "InMemoryWidgetProfileStore",
    "InMemorySecureCredentialStore",
    "InMemorySettingsStore",
    "create_memory_stores",
    # Exceptions
    "StoreError",
    "ProfileNotFoundError",
]
