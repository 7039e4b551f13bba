"""
Reads the selected categories out of the live stores.

The collector never writes. Secrets are split off their records here so
that the public categories are safe to write in plaintext on their own:
service configs lose their secret fields and widget configs lose their
credential-like keys. The split-off material lands in its own credential
category only when the matching export flag is set.
"""

from __future__ import annotations

import logging
from typing import Any

from hubvault.backup.options import ExportOptions
from hubvault.backup.partition import (
    SERVICE_CONFIGS,
    SERVICE_CREDENTIALS,
    SETTINGS,
    WIDGET_PROFILE_CREDENTIALS,
    WIDGET_PROFILES,
    WIDGET_SECURE_CREDENTIALS,
    WIDGETS_CONFIG,
    WIDGETS_CREDENTIALS,
    Snapshot,
    split_credentials,
)
from hubvault.stores.base import AppStores
from hubvault.stores.models import SERVICE_SECRET_FIELDS, Widget

logger = logging.getLogger(__name__)


def _widgets_to_public(
    widgets: list[Widget],
) -> tuple[list[dict[str, Any]], dict[str, dict[str, Any]]]:
    """Serialize widgets without credentials and collect what was removed."""
    public: list[dict[str, Any]] = []
    credentials: dict[str, dict[str, Any]] = {}
    for widget in widgets:
        data = widget.to_dict()
        data["config"], secrets = split_credentials(data["config"])
        if secrets:
            credentials[widget.id] = secrets
        public.append(data)
    return public, credentials


class DataCollector:
    """
    Collects a snapshot of application state.

    Example:
        collector = DataCollector(stores)
        snapshot = collector.collect(ExportOptions.defaults())
    """

    def __init__(self, stores: AppStores) -> None:
        self.stores = stores

    def collect(self, options: ExportOptions) -> Snapshot:
        """
        Read every enabled category from its store.

        Disabled categories are absent from the result. An enabled category
        backed by an empty store is present with an empty value.
        """
        snapshot = Snapshot()

        if options.include_settings:
            snapshot.categories[SETTINGS] = self.stores.settings.get_all()

        if options.include_service_configs:
            self._collect_service_configs(snapshot, options)

        if options.include_widgets_config:
            widgets, credentials = _widgets_to_public(self.stores.widgets.list())
            snapshot.categories[WIDGETS_CONFIG] = widgets
            if options.include_widget_config_credentials:
                snapshot.categories[WIDGETS_CREDENTIALS] = credentials

        if options.include_widget_profiles:
            self._collect_widget_profiles(snapshot, options)

        if options.include_widget_secure_credentials:
            bags: dict[str, dict[str, str]] = {}
            for widget_id in self.stores.credentials.list_widget_ids():
                bag = self.stores.credentials.get(widget_id)
                if bag is not None:
                    bags[widget_id] = bag
            snapshot.categories[WIDGET_SECURE_CREDENTIALS] = bags

        logger.debug(
            "Collected categories: "
            + ", ".join(
                f"{name} ({len(value)})" for name, value in snapshot.categories.items()
            )
        )
        return snapshot

    def _collect_service_configs(self, snapshot: Snapshot, options: ExportOptions) -> None:
        configs: list[dict[str, Any]] = []
        credentials: dict[str, dict[str, str]] = {}
        for config in self.stores.service_configs.list():
            data = config.to_dict()
            for key in SERVICE_SECRET_FIELDS:
                data.pop(key, None)
            configs.append(data)
            secrets = config.secrets()
            if secrets:
                credentials[config.id] = secrets

        snapshot.categories[SERVICE_CONFIGS] = configs
        if options.include_service_credentials:
            snapshot.categories[SERVICE_CREDENTIALS] = credentials

    def _collect_widget_profiles(self, snapshot: Snapshot, options: ExportOptions) -> None:
        profiles: list[dict[str, Any]] = []
        credentials: dict[str, dict[str, dict[str, Any]]] = {}
        for profile in self.stores.widget_profiles.list():
            data = profile.to_dict()
            data["widgets"], widget_credentials = _widgets_to_public(profile.widgets)
            if widget_credentials:
                credentials[profile.id] = widget_credentials
            profiles.append(data)

        snapshot.categories[WIDGET_PROFILES] = profiles
        if options.include_widget_profile_credentials:
            snapshot.categories[WIDGET_PROFILE_CREDENTIALS] = credentials
