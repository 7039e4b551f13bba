"""
Restores a backup document into the live stores.

A restore runs in two phases:

    prepare     parse the document, decrypt the payload if there is one, and
                turn every category into typed records. Any failure here
                (ParseError, PasswordRequiredError, DecryptionError) is raised
                before a single store is touched.
    distribute  write each present category to its store as a full replace,
                then drop cached widget data that the new state invalidates.

Categories are written one at a time in a fixed order. A store failure
raises RestoreError naming the category; categories already written stay
written.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from hubvault.backup import codec, crypto
from hubvault.backup.document import ENCRYPTED_PAYLOAD_KEY, BackupDocument, BackupManifest
from hubvault.backup.errors import ParseError, PasswordRequiredError, RestoreError
from hubvault.backup.partition import (
    CATEGORIES_BY_NAME,
    SENSITIVE_CATEGORIES,
    SERVICE_CONFIGS,
    SERVICE_CREDENTIALS,
    SETTINGS,
    WIDGET_PROFILE_CREDENTIALS,
    WIDGET_PROFILES,
    WIDGET_SECURE_CREDENTIALS,
    WIDGETS_CONFIG,
    WIDGETS_CREDENTIALS,
    merge_credentials,
)
from hubvault.stores.base import AppStores
from hubvault.stores.models import (
    SERVICE_SECRET_FIELDS,
    ServiceConfig,
    Widget,
    WidgetProfile,
)

logger = logging.getLogger(__name__)


@dataclass
class PreparedRestore:
    """
    A fully decoded document, ready to be written.

    Each attribute is None when its category is absent from the document.
    """

    manifest: BackupManifest
    encrypted: bool
    settings: dict[str, Any] | None = None
    service_configs: list[ServiceConfig] | None = None
    widgets: list[Widget] | None = None
    widget_profiles: list[WidgetProfile] | None = None
    secure_credentials: dict[str, dict[str, str]] | None = None

    def categories(self) -> list[str]:
        present = {
            SETTINGS: self.settings,
            SERVICE_CONFIGS: self.service_configs,
            WIDGETS_CONFIG: self.widgets,
            WIDGET_PROFILES: self.widget_profiles,
            WIDGET_SECURE_CREDENTIALS: self.secure_credentials,
        }
        return [name for name, value in present.items() if value is not None]


@dataclass
class RestoreResult:
    """Result of a completed restore."""

    manifest: BackupManifest
    encrypted: bool
    categories_restored: list[str] = field(default_factory=list)
    item_counts: dict[str, int] = field(default_factory=dict)
    invalidated_widget_ids: list[str] = field(default_factory=list)


def _decrypt_payload(document: BackupDocument, password: str) -> dict[str, Any]:
    """Decrypt the payload. Key and plaintext never leave this function."""
    info = document.encryption_info
    if info is None:
        raise ParseError("Encrypted backup has no encryptionInfo")
    if info.algorithm != crypto.ALGORITHM_ID:
        raise ParseError(f"Unsupported encryption algorithm: {info.algorithm}")

    ciphertext = codec.decode_ciphertext(document.app_data[ENCRYPTED_PAYLOAD_KEY])
    key = crypto.derive_key(password, info.salt, info.iterations)
    plaintext = crypto.decrypt(key, info.iv, ciphertext)
    return codec.decode_payload(plaintext)


def _require_mapping(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ParseError(f"{what} must be an object")
    return value


def _require_list(value: Any, what: str) -> list[Any]:
    if not isinstance(value, list):
        raise ParseError(f"{what} must be a list")
    return value


def _string_bag(value: Any, what: str) -> dict[str, str]:
    bag = _require_mapping(value, what)
    for key, item in bag.items():
        if not isinstance(item, str):
            raise ParseError(f"{what}.{key} must be a string")
    return dict(bag)


def _decode_widgets(
    records: list[Any], credentials: dict[str, Any], what: str
) -> list[Widget]:
    """Decode widget records, putting split-off credentials back into config."""
    widgets: list[Widget] = []
    seen: set[str] = set()
    for index, record in enumerate(records):
        record = dict(_require_mapping(record, f"{what}[{index}]"))
        widget_id = record.get("id")
        extra = credentials.get(widget_id) if isinstance(widget_id, str) else None
        if extra is not None:
            config = record.get("config") or {}
            if not isinstance(config, dict):
                raise ParseError(f"{what}[{index}].config must be an object")
            extra = _require_mapping(extra, f"credentials for {widget_id}")
            try:
                record["config"] = merge_credentials(config, extra)
            except ValueError as e:
                raise ParseError(f"Invalid credentials for {widget_id}: {e}") from e
        try:
            widget = Widget.from_dict(record)
        except ValueError as e:
            raise ParseError(f"Invalid {what}[{index}]: {e}") from e
        if widget.id in seen:
            raise ParseError(f"Duplicate widget id in {what}: {widget.id}")
        seen.add(widget.id)
        widgets.append(widget)
    return widgets


class Restorer:
    """
    Writes backup documents into a set of stores.

    Example:
        restorer = Restorer(stores)
        try:
            result = restorer.restore(raw_bytes)
        except PasswordRequiredError:
            result = restorer.restore(raw_bytes, password=ask_user())
    """

    def __init__(self, stores: AppStores) -> None:
        self.stores = stores

    def prepare(
        self, source: bytes | str | BackupDocument, password: str | None = None
    ) -> PreparedRestore:
        """
        Parse, decrypt and decode a document without writing anything.

        Raises:
            ParseError: If the document or any category is malformed.
            PasswordRequiredError: If the document is encrypted and no
                password was given.
            DecryptionError: If the password is wrong or the payload was
                tampered with.
        """
        if isinstance(source, BackupDocument):
            document = source
            errors = document.invariant_errors()
            if errors:
                raise ParseError("; ".join(errors))
        else:
            document = codec.decode_document(source)

        combined = {
            name: value
            for name, value in document.app_data.items()
            if name != ENCRYPTED_PAYLOAD_KEY
        }

        if document.encrypted:
            if not password:
                raise PasswordRequiredError("This backup is encrypted; a password is required")
            decrypted = _decrypt_payload(document, password)
            for name in decrypted:
                if name not in SENSITIVE_CATEGORIES:
                    raise ParseError(f"Encrypted payload holds non-sensitive category: {name}")
                if name in combined:
                    raise ParseError(f"Category {name} is both encrypted and in plaintext")
            combined.update(decrypted)
            logger.debug(f"Decrypted sensitive categories: {', '.join(sorted(decrypted)) or 'none'}")
        elif password:
            logger.debug("Backup is not encrypted; ignoring supplied password")

        for name in combined:
            category = CATEGORIES_BY_NAME.get(name)
            if category is None:
                logger.warning(f"Ignoring unknown backup category: {name}")
            elif category.parent is not None and category.parent not in combined:
                raise ParseError(f"Category {name} requires {category.parent}")

        return self._decode(document, combined)

    def _decode(self, document: BackupDocument, data: dict[str, Any]) -> PreparedRestore:
        prepared = PreparedRestore(manifest=document.manifest, encrypted=document.encrypted)

        if SETTINGS in data:
            prepared.settings = dict(_require_mapping(data[SETTINGS], SETTINGS))

        if SERVICE_CONFIGS in data:
            credentials = _require_mapping(data.get(SERVICE_CREDENTIALS, {}), SERVICE_CREDENTIALS)
            configs: list[ServiceConfig] = []
            seen: set[str] = set()
            for index, record in enumerate(_require_list(data[SERVICE_CONFIGS], SERVICE_CONFIGS)):
                record = dict(_require_mapping(record, f"{SERVICE_CONFIGS}[{index}]"))
                config_id = record.get("id")
                secrets = credentials.get(config_id) if isinstance(config_id, str) else None
                if secrets is not None:
                    secrets = _string_bag(secrets, f"{SERVICE_CREDENTIALS}.{config_id}")
                    record.update(
                        {key: value for key, value in secrets.items() if key in SERVICE_SECRET_FIELDS}
                    )
                try:
                    config = ServiceConfig.from_dict(record)
                except ValueError as e:
                    raise ParseError(f"Invalid {SERVICE_CONFIGS}[{index}]: {e}") from e
                if config.id in seen:
                    raise ParseError(f"Duplicate service config id: {config.id}")
                seen.add(config.id)
                configs.append(config)
            prepared.service_configs = configs

        if WIDGETS_CONFIG in data:
            prepared.widgets = _decode_widgets(
                _require_list(data[WIDGETS_CONFIG], WIDGETS_CONFIG),
                _require_mapping(data.get(WIDGETS_CREDENTIALS, {}), WIDGETS_CREDENTIALS),
                WIDGETS_CONFIG,
            )

        if WIDGET_PROFILES in data:
            all_credentials = _require_mapping(
                data.get(WIDGET_PROFILE_CREDENTIALS, {}), WIDGET_PROFILE_CREDENTIALS
            )
            profiles: list[WidgetProfile] = []
            seen = set()
            for index, record in enumerate(_require_list(data[WIDGET_PROFILES], WIDGET_PROFILES)):
                record = dict(_require_mapping(record, f"{WIDGET_PROFILES}[{index}]"))
                profile_id = record.get("id")
                credentials = all_credentials.get(profile_id, {}) if isinstance(profile_id, str) else {}
                record["widgets"] = [
                    widget.to_dict()
                    for widget in _decode_widgets(
                        _require_list(record.get("widgets"), f"{WIDGET_PROFILES}[{index}].widgets"),
                        _require_mapping(credentials, f"{WIDGET_PROFILE_CREDENTIALS}.{profile_id}"),
                        f"{WIDGET_PROFILES}[{index}].widgets",
                    )
                ]
                try:
                    profile = WidgetProfile.from_dict(record)
                except ValueError as e:
                    raise ParseError(f"Invalid {WIDGET_PROFILES}[{index}]: {e}") from e
                if profile.id in seen:
                    raise ParseError(f"Duplicate widget profile id: {profile.id}")
                seen.add(profile.id)
                profiles.append(profile)
            prepared.widget_profiles = profiles

        if WIDGET_SECURE_CREDENTIALS in data:
            bags = _require_mapping(data[WIDGET_SECURE_CREDENTIALS], WIDGET_SECURE_CREDENTIALS)
            prepared.secure_credentials = {
                widget_id: _string_bag(bag, f"{WIDGET_SECURE_CREDENTIALS}.{widget_id}")
                for widget_id, bag in bags.items()
            }

        return prepared

    def restore(
        self, source: bytes | str | BackupDocument, password: str | None = None
    ) -> RestoreResult:
        """
        Restore a document into the stores.

        Raises:
            ParseError, PasswordRequiredError, DecryptionError: Before any
                store is modified.
            RestoreError: If a store write fails part way through.
        """
        prepared = self.prepare(source, password)
        return self.apply(prepared)

    def verify(
        self, source: bytes | str | BackupDocument, password: str | None = None
    ) -> PreparedRestore:
        """Check that a document would restore cleanly. Writes nothing."""
        prepared = self.prepare(source, password)
        logger.info(f"Backup verified: {', '.join(prepared.categories()) or 'no categories'}")
        return prepared

    def apply(self, prepared: PreparedRestore) -> RestoreResult:
        """Write a prepared restore to the stores and invalidate caches."""
        result = RestoreResult(manifest=prepared.manifest, encrypted=prepared.encrypted)
        affected_widgets: set[str] = set()
        refresh_all_widgets = False

        def run(category: str, count: int, write: Callable[[], None]) -> None:
            try:
                write()
            except Exception as e:
                logger.error(f"Restoring {category} failed: {e}")
                raise RestoreError(category, result.categories_restored, str(e)) from e
            result.categories_restored.append(category)
            result.item_counts[category] = count
            logger.debug(f"Restored {category} ({count} items)")

        if prepared.settings is not None:
            settings = prepared.settings
            run(SETTINGS, len(settings), lambda: self.stores.settings.replace_all(settings))

        if prepared.service_configs is not None:
            configs = prepared.service_configs
            run(SERVICE_CONFIGS, len(configs), lambda: self.stores.service_configs.replace_all(configs))
            # Widgets render data fetched through these connections
            refresh_all_widgets = True

        if prepared.widgets is not None:
            widgets = prepared.widgets

            def write_widgets() -> None:
                affected_widgets.update(widget.id for widget in self.stores.widgets.list())
                self.stores.widgets.replace_all(widgets)
                affected_widgets.update(widget.id for widget in widgets)

            run(WIDGETS_CONFIG, len(widgets), write_widgets)

        if prepared.widget_profiles is not None:
            profiles = prepared.widget_profiles
            run(
                WIDGET_PROFILES,
                len(profiles),
                lambda: self.stores.widget_profiles.replace_all(profiles),
            )

        if prepared.secure_credentials is not None:
            bags = prepared.secure_credentials

            def write_credentials() -> None:
                store = self.stores.credentials
                for widget_id in store.list_widget_ids():
                    if widget_id not in bags:
                        store.remove(widget_id)
                        affected_widgets.add(widget_id)
                for widget_id, bag in bags.items():
                    store.set(widget_id, bag)
                    affected_widgets.add(widget_id)

            run(WIDGET_SECURE_CREDENTIALS, len(bags), write_credentials)

        try:
            if refresh_all_widgets:
                affected_widgets.update(widget.id for widget in self.stores.widgets.list())
            for widget_id in sorted(affected_widgets):
                self.stores.widgets.invalidate_cached_data(widget_id)
        except Exception as e:
            raise RestoreError("widgetCache", result.categories_restored, str(e)) from e
        result.invalidated_widget_ids = sorted(affected_widgets)

        logger.info(
            f"Restore completed: {', '.join(result.categories_restored) or 'no categories'}"
        )
        return result
