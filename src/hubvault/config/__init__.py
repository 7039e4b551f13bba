"""
Configuration management for hubvault.

This module handles loading, validating, and saving configuration settings,
as well as encrypted storage of widget credential bags.
"""

from hubvault.config.credentials import (
    CredentialError,
    CredentialStoreLockedError,
    CredentialStoreNotInitializedError,
    EncryptedCredentialStore,
    InvalidPassphraseError,
)
from hubvault.config.settings import (
    BackupConfig,
    ConfigurationError,
    ExportDefaults,
    Settings,
    load_config,
    save_config,
)

__all__ = [
    # Settings
    "Settings",
    "BackupConfig",
    "ExportDefaults",
    "load_config",
    "save_config",
    "ConfigurationError",
    # Credentials
    "EncryptedCredentialStore",
    "CredentialError",
    "CredentialStoreNotInitializedError",
    "CredentialStoreLockedError",
    "InvalidPassphraseError",
]
