"""
Store interfaces consumed by the backup engine.

Each store owns one slice of application state. The backup engine only
talks to these abstract interfaces, so any implementation (SQLite, the
encrypted credential file, in-memory fakes) can be injected.

Replace Semantics:
    Every ``replace_all`` call swaps the whole collection for the given one.
    Records missing from the argument are deleted; nothing is merged.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from hubvault.stores.models import ServiceConfig, Widget, WidgetProfile


class StoreError(Exception):
    """Base exception for store errors."""

    pass


class ProfileNotFoundError(StoreError):
    """Raised when a widget profile id does not exist."""

    def __init__(self, profile_id: str) -> None:
        self.profile_id = profile_id
        super().__init__(f"Widget profile not found: {profile_id}")


class ServiceConfigStore(ABC):
    """Connection profiles for external services."""

    @abstractmethod
    def list(self) -> list[ServiceConfig]:
        """Return all service configs."""

    @abstractmethod
    def replace_all(self, configs: list[ServiceConfig]) -> None:
        """Replace every stored service config with ``configs``."""


class WidgetStore(ABC):
    """The live dashboard layout plus per-widget cached remote data."""

    @abstractmethod
    def list(self) -> list[Widget]:
        """Return all widgets sorted by their order."""

    @abstractmethod
    def replace_all(self, widgets: list[Widget]) -> None:
        """Replace the whole layout with ``widgets``."""

    @abstractmethod
    def set_cached_data(
        self, widget_id: str, data: Any, ttl_seconds: float | None = None
    ) -> None:
        """Cache fetched data for a widget."""

    @abstractmethod
    def get_cached_data(self, widget_id: str) -> Any | None:
        """Return cached data for a widget, or None if absent or expired."""

    @abstractmethod
    def invalidate_cached_data(self, widget_id: str) -> None:
        """Drop cached data for a widget so the next read refetches."""


class WidgetProfileStore(ABC):
    """Named widget layout presets."""

    @abstractmethod
    def list(self) -> list[WidgetProfile]:
        """Return all profiles, oldest first."""

    @abstractmethod
    def save(
        self, name: str, widgets: list[Widget], description: str | None = None
    ) -> WidgetProfile:
        """Save a copy of ``widgets`` as a new profile."""

    @abstractmethod
    def load(self, profile_id: str) -> WidgetProfile:
        """Return a profile. Raises ProfileNotFoundError if missing."""

    @abstractmethod
    def update(self, profile_id: str, partial: dict[str, Any]) -> WidgetProfile:
        """Update name, description and/or widgets of a profile."""

    def rename(self, profile_id: str, name: str) -> WidgetProfile:
        """Rename a profile."""
        return self.update(profile_id, {"name": name})

    @abstractmethod
    def delete(self, profile_id: str) -> None:
        """Delete one profile. Raises ProfileNotFoundError if missing."""

    @abstractmethod
    def delete_all(self) -> None:
        """Delete every profile."""

    @abstractmethod
    def replace_all(self, profiles: list[WidgetProfile]) -> None:
        """Replace every profile, keeping the given ids and timestamps."""


class SecureCredentialStore(ABC):
    """Per-widget credential bags kept outside the widget layout."""

    @abstractmethod
    def get(self, widget_id: str) -> dict[str, str] | None:
        """Return the bag for a widget, or None."""

    @abstractmethod
    def set(self, widget_id: str, bag: dict[str, str]) -> None:
        """Store ``bag`` for a widget, overwriting any previous bag."""

    @abstractmethod
    def remove(self, widget_id: str) -> None:
        """Remove the bag for a widget. Missing ids are ignored."""

    @abstractmethod
    def list_widget_ids(self) -> list[str]:
        """Return the ids of all widgets that have a bag."""


class SettingsStore(ABC):
    """Simple key/value user preferences."""

    @abstractmethod
    def get_all(self) -> dict[str, Any]:
        """Return all preferences."""

    @abstractmethod
    def replace_all(self, values: dict[str, Any]) -> None:
        """Replace all preferences with ``values``."""


@dataclass
class AppStores:
    """The set of stores the backup engine reads from and writes to."""

    service_configs: ServiceConfigStore
    widgets: WidgetStore
    widget_profiles: WidgetProfileStore
    credentials: SecureCredentialStore
    settings: SettingsStore
