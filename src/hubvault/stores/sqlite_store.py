"""
SQLite-backed application state stores.

This module provides persistent implementations of the service-config,
widget, widget-profile and settings stores. All four share one database
file so a single data directory holds the whole application state.

Storage Structure:
    data/
        hubvault.db        # SQLite database

Design Decisions:
    - Records are stored as JSON text next to a few indexed columns
    - Every replace_all runs inside one transaction, so readers never see a
      half-replaced collection
    - Connection-per-operation pattern; separate processes should use
      separate StateDatabase instances
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from hubvault.stores.base import (
    ProfileNotFoundError,
    ServiceConfigStore,
    SettingsStore,
    StoreError,
    WidgetProfileStore,
    WidgetStore,
)
from hubvault.stores.models import (
    ServiceConfig,
    Widget,
    WidgetProfile,
    copy_widgets,
    new_profile_id,
    utc_now,
)

logger = logging.getLogger(__name__)


# Database schema version for migrations
SCHEMA_VERSION = 1

DATABASE_FILE = "hubvault.db"


CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS service_configs (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    data_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS widgets (
    id TEXT PRIMARY KEY,
    position INTEGER NOT NULL,
    data_json TEXT NOT NULL
);

-- Cached remote data per widget
CREATE TABLE IF NOT EXISTS widget_cache (
    widget_id TEXT PRIMARY KEY,
    data_json TEXT NOT NULL,
    cached_at REAL NOT NULL,
    expires_at REAL
);

CREATE TABLE IF NOT EXISTS widget_profiles (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    data_json TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_profiles_created_at ON widget_profiles(created_at);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value_json TEXT NOT NULL
);
"""


class StateDatabase:
    """
    Shared SQLite database for the application state stores.

    Example:
        db = StateDatabase(data_dir=Path("./data"))
        services = SQLiteServiceConfigStore(db)
        widgets = SQLiteWidgetStore(db)

    Attributes:
        data_dir: Base directory for data storage.
        db_path: Path to the SQLite database file.
    """

    def __init__(self, data_dir: Path | str | None = None) -> None:
        """
        Initialize the database.

        Args:
            data_dir: Base directory for data storage. Defaults to ~/.hubvault/data
        """
        if data_dir is None:
            data_dir = Path.home() / ".hubvault" / "data"
        elif isinstance(data_dir, str):
            data_dir = Path(data_dir)

        self.data_dir = data_dir
        self.db_path = data_dir / DATABASE_FILE

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self) -> None:
        """Initialize the database schema."""
        with self.connection() as conn:
            conn.executescript(CREATE_TABLES_SQL)

            cursor = conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = cursor.fetchone()

            if row is None:
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, datetime.now(UTC).isoformat()),
                )
                logger.info(f"Initialized database schema version {SCHEMA_VERSION}")
            elif row[0] < SCHEMA_VERSION:
                logger.warning(
                    f"Database schema version {row[0]} is older than "
                    f"expected version {SCHEMA_VERSION}"
                )

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a database connection with proper settings.

        Yields:
            SQLite connection with row factory set.
        """
        conn = sqlite3.connect(
            str(self.db_path),
            isolation_level=None,  # Autocommit mode, we manage transactions manually
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Run statements in a single transaction.

        Commits on success and rolls back on any error. sqlite3 errors are
        re-raised as StoreError.
        """
        with self.connection() as conn:
            conn.execute("BEGIN")
            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise StoreError(f"Database write failed: {e}") from e
            except Exception:
                conn.execute("ROLLBACK")
                raise


def _load_record(row: sqlite3.Row, column: str = "data_json") -> dict[str, Any]:
    data: dict[str, Any] = json.loads(row[column])
    return data


class SQLiteServiceConfigStore(ServiceConfigStore):
    """Service connection profiles stored in SQLite."""

    def __init__(self, db: StateDatabase) -> None:
        self.db = db

    def list(self) -> list[ServiceConfig]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT data_json FROM service_configs ORDER BY name COLLATE NOCASE"
            ).fetchall()
        return [ServiceConfig.from_dict(_load_record(row)) for row in rows]

    def replace_all(self, configs: list[ServiceConfig]) -> None:
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM service_configs")
            conn.executemany(
                "INSERT INTO service_configs (id, name, data_json) VALUES (?, ?, ?)",
                [
                    (config.id, config.name, json.dumps(config.to_dict()))
                    for config in configs
                ],
            )
        logger.debug(f"Stored {len(configs)} service configs")


class SQLiteWidgetStore(WidgetStore):
    """Dashboard layout and per-widget cached data stored in SQLite."""

    def __init__(self, db: StateDatabase) -> None:
        self.db = db

    def list(self) -> list[Widget]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT data_json FROM widgets ORDER BY position, id"
            ).fetchall()
        return [Widget.from_dict(_load_record(row)) for row in rows]

    def replace_all(self, widgets: list[Widget]) -> None:
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM widgets")
            conn.executemany(
                "INSERT INTO widgets (id, position, data_json) VALUES (?, ?, ?)",
                [
                    (widget.id, widget.order, json.dumps(widget.to_dict()))
                    for widget in widgets
                ],
            )
        logger.debug(f"Stored {len(widgets)} widgets")

    def set_cached_data(
        self, widget_id: str, data: Any, ttl_seconds: float | None = None
    ) -> None:
        now = time.time()
        expires_at = now + ttl_seconds if ttl_seconds is not None else None
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO widget_cache
                    (widget_id, data_json, cached_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (widget_id, json.dumps(data), now, expires_at),
            )

    def get_cached_data(self, widget_id: str) -> Any | None:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT data_json, expires_at FROM widget_cache WHERE widget_id = ?",
                (widget_id,),
            ).fetchone()
        if row is None:
            return None
        if row["expires_at"] is not None and time.time() >= row["expires_at"]:
            self.invalidate_cached_data(widget_id)
            return None
        return json.loads(row["data_json"])

    def invalidate_cached_data(self, widget_id: str) -> None:
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM widget_cache WHERE widget_id = ?", (widget_id,))


class SQLiteWidgetProfileStore(WidgetProfileStore):
    """Named widget layout presets stored in SQLite."""

    def __init__(self, db: StateDatabase) -> None:
        self.db = db

    def list(self) -> list[WidgetProfile]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT data_json FROM widget_profiles ORDER BY created_at, id"
            ).fetchall()
        return [WidgetProfile.from_dict(_load_record(row)) for row in rows]

    def save(
        self, name: str, widgets: list[Widget], description: str | None = None
    ) -> WidgetProfile:
        now = utc_now()
        profile = WidgetProfile(
            id=new_profile_id(name),
            name=name,
            widgets=copy_widgets(widgets),
            description=description,
            created_at=now,
            updated_at=now,
        )
        with self.db.transaction() as conn:
            self._insert(conn, profile)
        logger.info(f"Widget profile saved: {profile.id} ({len(widgets)} widgets)")
        return profile

    def load(self, profile_id: str) -> WidgetProfile:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT data_json FROM widget_profiles WHERE id = ?", (profile_id,)
            ).fetchone()
        if row is None:
            raise ProfileNotFoundError(profile_id)
        return WidgetProfile.from_dict(_load_record(row))

    def update(self, profile_id: str, partial: dict[str, Any]) -> WidgetProfile:
        profile = self.load(profile_id)
        if "name" in partial:
            profile.name = partial["name"]
        if "description" in partial:
            profile.description = partial["description"]
        if "widgets" in partial:
            profile.widgets = copy_widgets(partial["widgets"])
        profile.updated_at = utc_now()
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE widget_profiles SET data_json = ? WHERE id = ?",
                (json.dumps(profile.to_dict()), profile_id),
            )
        return profile

    def delete(self, profile_id: str) -> None:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM widget_profiles WHERE id = ?", (profile_id,)
            )
            if cursor.rowcount == 0:
                raise ProfileNotFoundError(profile_id)
        logger.info(f"Widget profile deleted: {profile_id}")

    def delete_all(self) -> None:
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM widget_profiles")
        logger.info("All widget profiles deleted")

    def replace_all(self, profiles: list[WidgetProfile]) -> None:
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM widget_profiles")
            for profile in profiles:
                self._insert(conn, profile)
        logger.debug(f"Stored {len(profiles)} widget profiles")

    def _insert(self, conn: sqlite3.Connection, profile: WidgetProfile) -> None:
        conn.execute(
            "INSERT INTO widget_profiles (id, created_at, data_json) VALUES (?, ?, ?)",
            (
                profile.id,
                profile.created_at.isoformat(),
                json.dumps(profile.to_dict()),
            ),
        )


class SQLiteSettingsStore(SettingsStore):
    """Key/value preferences stored in SQLite."""

    def __init__(self, db: StateDatabase) -> None:
        self.db = db

    def get_all(self) -> dict[str, Any]:
        with self.db.connection() as conn:
            rows = conn.execute("SELECT key, value_json FROM settings").fetchall()
        return {row["key"]: json.loads(row["value_json"]) for row in rows}

    def replace_all(self, values: dict[str, Any]) -> None:
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM settings")
            conn.executemany(
                "INSERT INTO settings (key, value_json) VALUES (?, ?)",
                [(key, json.dumps(value)) for key, value in values.items()],
            )
