"""
Category table and sensitive/public partitioning.

Every piece of state a backup can carry belongs to exactly one category.
Each category names the export flag that enables it, whether it holds
secrets, and (for credential sub-categories) the category it belongs to.
Adding a category means adding a row here plus its collector and
restorer hooks; the partitioning logic itself never changes.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from hubvault.backup.options import ExportOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Category:
    """
    One category of backed-up state.

    Attributes:
        name: Key of the category in the document's appData.
        export_flag: ExportOptions attribute that enables the category.
        sensitive: Whether the category is encrypted when encryption is on.
        parent: Category this one attaches to on restore, if any.
    """

    name: str
    export_flag: str
    sensitive: bool
    parent: str | None = None

    def enabled(self, options: ExportOptions) -> bool:
        return bool(getattr(options, self.export_flag))


SETTINGS = "settings"
SERVICE_CONFIGS = "serviceConfigs"
SERVICE_CREDENTIALS = "serviceCredentials"
WIDGETS_CONFIG = "widgetsConfig"
WIDGETS_CREDENTIALS = "widgetsCredentials"
WIDGET_PROFILES = "widgetProfiles"
WIDGET_PROFILE_CREDENTIALS = "widgetProfileCredentials"
WIDGET_SECURE_CREDENTIALS = "widgetSecureCredentials"

CATEGORIES: tuple[Category, ...] = (
    Category(SETTINGS, "include_settings", sensitive=False),
    Category(SERVICE_CONFIGS, "include_service_configs", sensitive=False),
    Category(
        SERVICE_CREDENTIALS,
        "include_service_credentials",
        sensitive=True,
        parent=SERVICE_CONFIGS,
    ),
    Category(WIDGETS_CONFIG, "include_widgets_config", sensitive=False),
    Category(
        WIDGETS_CREDENTIALS,
        "include_widget_config_credentials",
        sensitive=True,
        parent=WIDGETS_CONFIG,
    ),
    Category(WIDGET_PROFILES, "include_widget_profiles", sensitive=False),
    Category(
        WIDGET_PROFILE_CREDENTIALS,
        "include_widget_profile_credentials",
        sensitive=True,
        parent=WIDGET_PROFILES,
    ),
    Category(
        WIDGET_SECURE_CREDENTIALS, "include_widget_secure_credentials", sensitive=True
    ),
)

CATEGORIES_BY_NAME: dict[str, Category] = {category.name: category for category in CATEGORIES}

SENSITIVE_CATEGORIES = frozenset(c.name for c in CATEGORIES if c.sensitive)


# Widget config keys that hold credentials rather than display options.
# Matched against the key with separators removed, case-insensitive.
_CREDENTIAL_KEY_PATTERN = re.compile(
    r"(apikey|accesskey|secretkey|privatekey|token|secret|password|passwd|"
    r"passphrase|clientid|credential|authorization|cookie|sessionid)"
)


def is_credential_key(key: str) -> bool:
    """Return True if a widget config key looks like it holds a credential."""
    normalized = re.sub(r"[^a-z0-9]", "", key.lower())
    return bool(_CREDENTIAL_KEY_PATTERN.search(normalized))


def split_credentials(config: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Split a widget config into display options and credential-like keys.

    Credential keys are found at any depth. The credentials mirror the
    config's structure: nested objects become nested objects, and lists
    become lists of the same length with None where an item held nothing.

    Example:
        >>> split_credentials({"city": "Oslo", "auth": {"apiKey": "k"}})
        ({'city': 'Oslo', 'auth': {}}, {'auth': {'apiKey': 'k'}})

    Returns:
        Tuple of (config without credentials, credentials).
    """
    public: dict[str, Any] = {}
    credentials: dict[str, Any] = {}
    for key, value in config.items():
        if is_credential_key(key):
            credentials[key] = value
            continue
        public[key], secrets = _split_value(value)
        if secrets is not None:
            credentials[key] = secrets
    return public, credentials


def _split_value(value: Any) -> tuple[Any, Any]:
    if isinstance(value, dict):
        public, secrets = split_credentials(value)
        return public, secrets or None
    if isinstance(value, list):
        parts = [_split_value(item) for item in value]
        secrets = [part[1] for part in parts]
        public = [part[0] for part in parts]
        if all(secret is None for secret in secrets):
            return public, None
        return public, secrets
    return value, None


def merge_credentials(config: dict[str, Any], credentials: dict[str, Any]) -> dict[str, Any]:
    """
    Put credentials split off by ``split_credentials`` back into a config.

    Raises:
        ValueError: If the credentials do not fit the config's structure.
    """
    merged = copy.deepcopy(config)
    for key, secret in credentials.items():
        merged[key] = _merge_value(merged.get(key), secret, key)
    return merged


def _merge_value(public: Any, secret: Any, path: str) -> Any:
    if isinstance(public, dict) and isinstance(secret, dict):
        merged = dict(public)
        for key, value in secret.items():
            merged[key] = _merge_value(public.get(key), value, f"{path}.{key}")
        return merged
    if isinstance(public, list) and isinstance(secret, list):
        if len(secret) != len(public):
            raise ValueError(f"Credentials for {path} do not match the config list length")
        return [
            item if value is None else _merge_value(item, value, f"{path}[{index}]")
            for index, (item, value) in enumerate(zip(public, secret))
        ]
    return copy.deepcopy(secret)


@dataclass
class Snapshot:
    """
    In-memory copy of the state selected for export.

    ``categories`` maps category name to a JSON-ready value. A category that
    was not exported is absent; one that was exported from an empty store
    is present with an empty value.
    """

    categories: dict[str, Any] = field(default_factory=dict)

    def __contains__(self, name: str) -> bool:
        return name in self.categories

    def get(self, name: str) -> Any:
        return self.categories.get(name)


def partition(
    snapshot: Snapshot, options: ExportOptions
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Split a snapshot into public and sensitive categories.

    Categories whose export flag is off are dropped from both halves, so
    credential material the caller did not ask for is never written in any
    form.

    Raises:
        KeyError: If the snapshot holds a category missing from the table.
    """
    public: dict[str, Any] = {}
    sensitive: dict[str, Any] = {}

    for name, value in snapshot.categories.items():
        category = CATEGORIES_BY_NAME[name]
        if not category.enabled(options):
            logger.debug(f"Dropping {name}: {category.export_flag} is off")
            continue
        if category.parent is not None and not CATEGORIES_BY_NAME[category.parent].enabled(options):
            logger.debug(f"Dropping {name}: parent category {category.parent} is off")
            continue
        if category.sensitive:
            sensitive[name] = value
        else:
            public[name] = value

    return public, sensitive
