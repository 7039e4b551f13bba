"""
Backup and restore manager for hubvault.

Ties the engine together: collect the selected categories from the stores,
split off the sensitive ones, encrypt them if asked, and write a single JSON
document. Restores go the other way through the Restorer.

Backup files are named ``hubvault-backup-YYYYmmdd-HHMMSS.json`` (with an
``-encrypted`` suffix when the sensitive categories are encrypted) and are
written atomically with owner-only permissions.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from hubvault.backup import codec, crypto
from hubvault.backup.collector import DataCollector
from hubvault.backup.document import (
    ENCRYPTED_PAYLOAD_KEY,
    BackupDocument,
    BackupManifest,
    EncryptionInfo,
    build,
)
from hubvault.backup.errors import BackupError, ValidationError
from hubvault.backup.options import ExportOptions
from hubvault.backup.partition import partition
from hubvault.backup.restorer import Restorer, RestoreResult
from hubvault.config.settings import DEFAULT_KDF_ITERATIONS
from hubvault.stores.base import AppStores

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "hubvault-backup"
BACKUP_SUFFIX = ".json"


@dataclass
class BackupResult:
    """Result of writing a backup file."""

    success: bool
    path: Path | None = None
    manifest: BackupManifest | None = None
    encrypted: bool = False
    categories: list[str] | None = None
    size_bytes: int = 0
    error: str | None = None


class BackupManager:
    """
    Exports application state to backup documents and restores it.

    Example:
        manager = BackupManager(stores)

        options = ExportOptions.defaults().with_encryption(password)
        result = manager.export_to_file(options, Path("~/backups").expanduser())

        manager.restore_from_file(result.path, password=password)
    """

    def __init__(
        self, stores: AppStores, kdf_iterations: int = DEFAULT_KDF_ITERATIONS
    ) -> None:
        """
        Initialize backup manager.

        Args:
            stores: The stores to export from and restore into.
            kdf_iterations: PBKDF2 cost for newly encrypted backups. Restores
                always use the cost recorded in the document.
        """
        self.stores = stores
        self.kdf_iterations = kdf_iterations
        self.collector = DataCollector(stores)
        self.restorer = Restorer(stores)

    def build_document(self, options: ExportOptions) -> BackupDocument:
        """
        Collect, partition and (optionally) encrypt into a document.

        Raises:
            ValidationError: If the options are invalid. Nothing is read.
        """
        options.validate()
        snapshot = self.collector.collect(options)
        public, sensitive = partition(snapshot, options)

        if not options.encrypt_sensitive:
            public.update(sensitive)
            document = build(public)
            if sensitive:
                logger.warning(
                    "Backup holds credentials in plaintext: "
                    f"{', '.join(sorted(sensitive))}"
                )
            return document

        if not options.password:
            raise ValidationError("Encryption needs a password")
        salt = crypto.generate_salt()
        iv = crypto.generate_iv()
        key = crypto.derive_key(options.password, salt, self.kdf_iterations)
        ciphertext = crypto.encrypt(key, iv, codec.encode_payload(sensitive))
        info = EncryptionInfo(
            algorithm=crypto.ALGORITHM_ID,
            salt=salt,
            iv=iv,
            iterations=self.kdf_iterations,
        )
        logger.debug(f"Encrypted sensitive categories: {', '.join(sorted(sensitive)) or 'none'}")
        return build(public, codec.encode_ciphertext(ciphertext), info)

    def export(self, options: ExportOptions) -> bytes:
        """
        Export the selected categories as document bytes.

        Raises:
            ValidationError: If the options are invalid.
        """
        document = self.build_document(options)
        data = codec.encode_document(document)
        logger.info(
            f"Export completed: {', '.join(document.categories()) or 'no categories'}"
            f"{' (encrypted)' if document.encrypted else ''}"
        )
        return data

    def export_to_file(self, options: ExportOptions, output_dir: Path | str) -> BackupResult:
        """
        Export to a new file in ``output_dir``.

        Raises:
            ValidationError: If the options are invalid.

        Returns:
            BackupResult; ``success`` is False if the file could not be written.
        """
        document = self.build_document(options)
        data = codec.encode_document(document)

        try:
            output_path = Path(output_dir)
            if output_path.is_file():
                return BackupResult(
                    success=False,
                    error=f"Output path is a file: {output_path}",
                )
            output_path.mkdir(parents=True, exist_ok=True)

            backup_path = self._next_backup_path(output_path, document.encrypted)
            _write_secure_file(backup_path, data)
        except OSError as e:
            logger.exception("Backup failed")
            return BackupResult(success=False, error=str(e))

        size_bytes = backup_path.stat().st_size
        logger.info(f"Backup created: {backup_path} ({size_bytes:,} bytes)")

        return BackupResult(
            success=True,
            path=backup_path,
            manifest=document.manifest,
            encrypted=document.encrypted,
            categories=document.categories(),
            size_bytes=size_bytes,
        )

    def restore(self, data: bytes | str, password: str | None = None) -> RestoreResult:
        """
        Restore from document bytes.

        Raises:
            ParseError, PasswordRequiredError, DecryptionError: Before any
                store is modified.
            RestoreError: If a store write fails.
        """
        return self.restorer.restore(data, password)

    def restore_from_file(
        self, backup_path: Path | str, password: str | None = None
    ) -> RestoreResult:
        """
        Restore from a backup file.

        Raises:
            BackupError: If the file cannot be read.
            ParseError, PasswordRequiredError, DecryptionError, RestoreError:
                As for ``restore``.
        """
        return self.restore(read_backup_file(backup_path), password)

    def load_document(self, backup_path: Path | str) -> BackupDocument:
        """
        Read and parse a backup file without decrypting it.

        Raises:
            BackupError: If the file cannot be read.
            ParseError: If it is not a valid backup document.
        """
        return load_backup_document(backup_path)

    def get_backup_info(self, backup_path: Path | str) -> BackupManifest | None:
        """
        Get the manifest of a backup file.

        Returns:
            BackupManifest or None if the file is unreadable or not a backup.
        """
        try:
            return self.load_document(backup_path).manifest
        except BackupError as e:
            logger.debug(f"Could not read backup info from {backup_path}: {e}")
            return None

    def verify_backup(
        self, backup_path: Path | str, password: str | None = None
    ) -> tuple[bool, list[str]]:
        """
        Check that a backup file would restore cleanly, without writing.

        Without a password, an encrypted backup is checked up to the
        encrypted payload; with one, the payload is decrypted and decoded
        too.

        Returns:
            Tuple of (is_valid, list_of_errors)
        """
        try:
            document = self.load_document(backup_path)
            if document.encrypted and not password:
                # Everything but the ciphertext is checkable
                codec.decode_ciphertext(document.encrypted_payload or "")
                self.restorer.prepare(
                    BackupDocument(
                        manifest=document.manifest,
                        app_data={
                            name: value
                            for name, value in document.app_data.items()
                            if name != ENCRYPTED_PAYLOAD_KEY
                        },
                    )
                )
            else:
                self.restorer.verify(document, password)
        except BackupError as e:
            return False, [str(e)]
        return True, []

    def _next_backup_path(self, output_path: Path, encrypted: bool) -> Path:
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        stem = f"{BACKUP_PREFIX}-{timestamp}{'-encrypted' if encrypted else ''}"
        backup_path = output_path / f"{stem}{BACKUP_SUFFIX}"
        counter = 1
        while backup_path.exists():
            backup_path = output_path / f"{stem}-{counter}{BACKUP_SUFFIX}"
            counter += 1
        return backup_path


def read_backup_file(backup_path: Path | str) -> bytes:
    """
    Read the raw bytes of a backup file.

    Raises:
        BackupError: If the file is missing or unreadable.
    """
    backup_path = Path(backup_path)
    try:
        return backup_path.read_bytes()
    except FileNotFoundError as e:
        raise BackupError(f"Backup file not found: {backup_path}") from e
    except OSError as e:
        raise BackupError(f"Could not read backup file {backup_path}: {e}") from e


def load_backup_document(backup_path: Path | str) -> BackupDocument:
    """Read and parse a backup file without decrypting it."""
    return codec.decode_document(read_backup_file(backup_path))


def _write_secure_file(path: Path, data: bytes) -> None:
    """
    Write data to file with restrictive permissions.

    Uses atomic write (write to temp, then rename) so a failed write never
    leaves a truncated backup behind.
    """
    temp_path = path.with_suffix(".tmp")

    try:
        fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        temp_path.replace(path)
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise
