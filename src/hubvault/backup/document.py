"""
The backup document and its builder.

A document has four parts:
    manifest        format version, creation time and producer
    encrypted       whether the sensitive categories are encrypted
    encryptionInfo  algorithm, salt, nonce and KDF cost (encrypted only)
    appData         category name -> value, plus ``encryptedPayload`` holding
                    the ciphertext of all sensitive categories when encrypted

Invariant: ``appData.encryptedPayload`` and plaintext sensitive categories
never appear together, and ``encrypted`` says which one is present.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from hubvault.backup.partition import SENSITIVE_CATEGORIES
from hubvault.config.settings import MAX_KDF_ITERATIONS

# Major.minor; readers accept any document with the same major version
FORMAT_VERSION = "2.0"

PRODUCER_NAME = "hubvault"

ENCRYPTED_PAYLOAD_KEY = "encryptedPayload"


def _producer_version() -> str:
    try:
        from hubvault import __version__

        return __version__
    except ImportError:
        return "unknown"


@dataclass
class BackupManifest:
    """Document metadata."""

    format_version: str
    created_at: str
    producer_name: str = PRODUCER_NAME
    producer_version: str = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {
            "formatVersion": self.format_version,
            "createdAt": self.created_at,
            "producer": {
                "name": self.producer_name,
                "version": self.producer_version,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupManifest:
        """Create manifest from dictionary."""
        producer = data.get("producer")
        if not isinstance(producer, dict):
            producer = {}
        return cls(
            format_version=str(data.get("formatVersion", "")),
            created_at=str(data.get("createdAt", "")),
            producer_name=str(producer.get("name", "unknown")),
            producer_version=str(producer.get("version", "unknown")),
        )


@dataclass
class EncryptionInfo:
    """
    Cleartext parameters needed to decrypt the payload.

    ``salt`` and ``iv`` are raw bytes here and hex text in the document.
    """

    algorithm: str
    salt: bytes
    iv: bytes
    iterations: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "algorithm": self.algorithm,
            "salt": self.salt.hex(),
            "iv": self.iv.hex(),
            "iterations": self.iterations,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EncryptionInfo:
        """
        Create from dictionary.

        Raises:
            ValueError: If a field is missing or not valid hex.
        """
        iterations = data.get("iterations")
        if not isinstance(iterations, int) or isinstance(iterations, bool) or iterations < 1:
            raise ValueError("encryptionInfo.iterations must be a positive integer")
        if iterations > MAX_KDF_ITERATIONS:
            raise ValueError(f"encryptionInfo.iterations exceeds {MAX_KDF_ITERATIONS:,}")
        algorithm = data.get("algorithm")
        if not isinstance(algorithm, str) or not algorithm:
            raise ValueError("encryptionInfo.algorithm is missing")
        return cls(
            algorithm=algorithm,
            salt=bytes.fromhex(str(data.get("salt", ""))),
            iv=bytes.fromhex(str(data.get("iv", ""))),
            iterations=iterations,
        )


@dataclass
class BackupDocument:
    """The persisted backup artifact."""

    manifest: BackupManifest
    encrypted: bool = False
    encryption_info: EncryptionInfo | None = None
    app_data: dict[str, Any] = field(default_factory=dict)

    @property
    def encrypted_payload(self) -> str | None:
        return self.app_data.get(ENCRYPTED_PAYLOAD_KEY)

    def sensitive_categories_present(self) -> list[str]:
        """Names of sensitive categories stored in plaintext."""
        return sorted(name for name in self.app_data if name in SENSITIVE_CATEGORIES)

    def categories(self) -> list[str]:
        """Names of the plaintext categories in appData."""
        return [name for name in self.app_data if name != ENCRYPTED_PAYLOAD_KEY]

    def invariant_errors(self) -> list[str]:
        """Describe every way this document breaks the format's invariants."""
        errors: list[str] = []
        has_payload = ENCRYPTED_PAYLOAD_KEY in self.app_data
        plaintext_sensitive = self.sensitive_categories_present()

        if has_payload and plaintext_sensitive:
            errors.append(
                "encryptedPayload present together with plaintext sensitive "
                f"categories: {', '.join(plaintext_sensitive)}"
            )
        if self.encrypted and not has_payload:
            errors.append("Document is marked encrypted but has no encryptedPayload")
        if not self.encrypted and has_payload:
            errors.append("Document has an encryptedPayload but is not marked encrypted")
        if self.encrypted and self.encryption_info is None:
            errors.append("Document is marked encrypted but has no encryptionInfo")
        if not self.encrypted and self.encryption_info is not None:
            errors.append("Document has encryptionInfo but is not marked encrypted")
        if has_payload and not isinstance(self.app_data[ENCRYPTED_PAYLOAD_KEY], str):
            errors.append("encryptedPayload must be a string")
        return errors

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "manifest": self.manifest.to_dict(),
            "encrypted": self.encrypted,
        }
        if self.encryption_info is not None:
            data["encryptionInfo"] = self.encryption_info.to_dict()
        data["appData"] = self.app_data
        return data


def build(
    public: dict[str, Any],
    encrypted_payload: str | None = None,
    encryption_info: EncryptionInfo | None = None,
    created_at: datetime | None = None,
) -> BackupDocument:
    """
    Assemble a document. Pure; performs no I/O.

    Args:
        public: Plaintext categories for appData.
        encrypted_payload: Encoded ciphertext of the sensitive categories.
        encryption_info: Parameters used to produce ``encrypted_payload``.
        created_at: Creation timestamp (defaults to now, UTC).

    Raises:
        ValueError: If only one of ``encrypted_payload`` and
            ``encryption_info`` is given, or ``public`` already holds an
            encryptedPayload key.
    """
    if (encrypted_payload is None) != (encryption_info is None):
        raise ValueError("encrypted_payload and encryption_info must be given together")
    if ENCRYPTED_PAYLOAD_KEY in public:
        raise ValueError(f"{ENCRYPTED_PAYLOAD_KEY} is reserved")

    app_data = dict(public)
    if encrypted_payload is not None:
        app_data[ENCRYPTED_PAYLOAD_KEY] = encrypted_payload

    manifest = BackupManifest(
        format_version=FORMAT_VERSION,
        created_at=(created_at or datetime.now(UTC)).isoformat(),
        producer_version=_producer_version(),
    )
    return BackupDocument(
        manifest=manifest,
        encrypted=encrypted_payload is not None,
        encryption_info=encryption_info,
        app_data=app_data,
    )
