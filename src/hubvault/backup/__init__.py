"""
Backup and restore functionality for hubvault.

This module exports application state (settings, service connections,
widget layout, saved widget profiles and their credentials) to a single
JSON document and restores it. Credential categories can be encrypted
with a password; everything else stays readable.

Usage:
    from hubvault.backup import BackupManager, ExportOptions

    manager = BackupManager(stores)

    # Create an encrypted backup
    options = ExportOptions.defaults().with_encryption(password)
    result = manager.export_to_file(options, output_dir)

    # Restore from backup
    manager.restore_from_file(result.path, password=password)

    # Verify backup integrity
    valid, errors = manager.verify_backup(result.path, password=password)
"""

from hubvault.backup.collector import DataCollector
from hubvault.backup.document import (
    FORMAT_VERSION,
    BackupDocument,
    BackupManifest,
    EncryptionInfo,
)
from hubvault.backup.errors import (
    BackupError,
    DecryptionError,
    ParseError,
    PasswordRequiredError,
    RestoreError,
    UnsupportedVersionError,
    ValidationError,
)
from hubvault.backup.manager import (
    BackupManager,
    BackupResult,
    load_backup_document,
    read_backup_file,
)
from hubvault.backup.options import ExportOptions
from hubvault.backup.partition import CATEGORIES, Category, Snapshot
from hubvault.backup.restorer import PreparedRestore, Restorer, RestoreResult

__all__ = [
    # Facade
    "BackupManager",
    "BackupResult",
    "ExportOptions",
    "load_backup_document",
    "read_backup_file",
    # Engine
    "DataCollector",
    "Restorer",
    "PreparedRestore",
    "RestoreResult",
    "Snapshot",
    "Category",
    "CATEGORIES",
    # Document
    "BackupDocument",
    "BackupManifest",
    "EncryptionInfo",
    "FORMAT_VERSION",
    # Exceptions
    "BackupError",
    "ValidationError",
    "ParseError",
    "UnsupportedVersionError",
    "PasswordRequiredError",
    "DecryptionError",
    "RestoreError",
]
