"""
In-memory store implementations.

These keep all state in process memory. They are useful as drop-in fakes
for tests and for running the backup engine against state that has already
been loaded by another part of the application.
"""

from __future__ import annotations

import copy
import time
from typing import Any

from hubvault.stores.base import (
    AppStores,
    ProfileNotFoundError,
    SecureCredentialStore,
    ServiceConfigStore,
    SettingsStore,
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


class InMemoryServiceConfigStore(ServiceConfigStore):
    def __init__(self, configs: list[ServiceConfig] | None = None) -> None:
        self._configs: dict[str, ServiceConfig] = {}
        for config in configs or []:
            self._configs[config.id] = copy.deepcopy(config)

    def list(self) -> list[ServiceConfig]:
        configs = [copy.deepcopy(config) for config in self._configs.values()]
        return sorted(configs, key=lambda config: config.name.lower())

    def replace_all(self, configs: list[ServiceConfig]) -> None:
        self._configs = {config.id: copy.deepcopy(config) for config in configs}


class InMemoryWidgetStore(WidgetStore):
    def __init__(self, widgets: list[Widget] | None = None) -> None:
        self._widgets: dict[str, Widget] = {}
        self._cache: dict[str, tuple[Any, float | None]] = {}
        for widget in widgets or []:
            self._widgets[widget.id] = copy.deepcopy(widget)

    def list(self) -> list[Widget]:
        widgets = copy_widgets(list(self._widgets.values()))
        return sorted(widgets, key=lambda widget: widget.order)

    def replace_all(self, widgets: list[Widget]) -> None:
        self._widgets = {widget.id: copy.deepcopy(widget) for widget in widgets}

    def set_cached_data(
        self, widget_id: str, data: Any, ttl_seconds: float | None = None
    ) -> None:
        expires_at = time.time() + ttl_seconds if ttl_seconds is not None else None
        self._cache[widget_id] = (copy.deepcopy(data), expires_at)

    def get_cached_data(self, widget_id: str) -> Any | None:
        entry = self._cache.get(widget_id)
        if entry is None:
            return None
        data, expires_at = entry
        if expires_at is not None and time.time() >= expires_at:
            del self._cache[widget_id]
            return None
        return copy.deepcopy(data)

    def invalidate_cached_data(self, widget_id: str) -> None:
        self._cache.pop(widget_id, None)


class InMemoryWidgetProfileStore(WidgetProfileStore):
    def __init__(self) -> None:
        self._profiles: dict[str, WidgetProfile] = {}

    def list(self) -> list[WidgetProfile]:
        profiles = [copy.deepcopy(profile) for profile in self._profiles.values()]
        return sorted(profiles, key=lambda profile: (profile.created_at, profile.id))

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
        self._profiles[profile.id] = profile
        return copy.deepcopy(profile)

    def load(self, profile_id: str) -> WidgetProfile:
        if profile_id not in self._profiles:
            raise ProfileNotFoundError(profile_id)
        return copy.deepcopy(self._profiles[profile_id])

    def update(self, profile_id: str, partial: dict[str, Any]) -> WidgetProfile:
        if profile_id not in self._profiles:
            raise ProfileNotFoundError(profile_id)
        profile = self._profiles[profile_id]
        if "name" in partial:
            profile.name = partial["name"]
        if "description" in partial:
            profile.description = partial["description"]
        if "widgets" in partial:
            profile.widgets = copy_widgets(partial["widgets"])
        profile.updated_at = utc_now()
        return copy.deepcopy(profile)

    def delete(self, profile_id: str) -> None:
        if profile_id not in self._profiles:
            raise ProfileNotFoundError(profile_id)
        del self._profiles[profile_id]

    def delete_all(self) -> None:
        self._profiles.clear()

    def replace_all(self, profiles: list[WidgetProfile]) -> None:
        self._profiles = {profile.id: copy.deepcopy(profile) for profile in profiles}


class InMemorySecureCredentialStore(SecureCredentialStore):
    def __init__(self) -> None:
        self._bags: dict[str, dict[str, str]] = {}

    def get(self, widget_id: str) -> dict[str, str] | None:
        bag = self._bags.get(widget_id)
        return dict(bag) if bag is not None else None

    def set(self, widget_id: str, bag: dict[str, str]) -> None:
        self._bags[widget_id] = dict(bag)

    def remove(self, widget_id: str) -> None:
        self._bags.pop(widget_id, None)

    def list_widget_ids(self) -> list[str]:
        return sorted(self._bags)


class InMemorySettingsStore(SettingsStore):
    def __init__(self, values: dict[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = copy.deepcopy(values or {})

    def get_all(self) -> dict[str, Any]:
        return copy.deepcopy(self._values)

    def replace_all(self, values: dict[str, Any]) -> None:
        self._values = copy.deepcopy(values)


def create_memory_stores() -> AppStores:
    """Create a fresh, empty set of in-memory stores."""
    return AppStores(
        service_configs=InMemoryServiceConfigStore(),
        widgets=InMemoryWidgetStore(),
        widget_profiles=InMemoryWidgetProfileStore(),
        credentials=InMemorySecureCredentialStore(),
        settings=InMemorySettingsStore(),
    )
