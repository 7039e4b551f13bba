"""
JSON encoding of backup documents and of the sensitive payload.

Documents are written as indented UTF-8 JSON so they stay human-readable.
The sensitive payload is written compactly with sorted keys before it is
encrypted; its ciphertext is carried in the document as base64 text.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from hubvault.backup.document import (
    FORMAT_VERSION,
    BackupDocument,
    BackupManifest,
    EncryptionInfo,
)
from hubvault.backup.errors import ParseError, UnsupportedVersionError


def _major(version: str) -> str:
    return version.split(".", 1)[0]


def encode_document(document: BackupDocument) -> bytes:
    """Serialize a document to UTF-8 JSON bytes."""
    return json.dumps(document.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")


def decode_document(raw: bytes | str) -> BackupDocument:
    """
    Parse and validate a document.

    Raises:
        ParseError: If the bytes are not a well-formed backup document.
        UnsupportedVersionError: If the document's major format version
            differs from this reader's.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"Backup is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ParseError("Backup root must be a JSON object")

    manifest_data = data.get("manifest")
    if not isinstance(manifest_data, dict):
        raise ParseError("Backup has no manifest")
    manifest = BackupManifest.from_dict(manifest_data)
    if not manifest.format_version:
        raise ParseError("Backup manifest has no formatVersion")
    if _major(manifest.format_version) != _major(FORMAT_VERSION):
        raise UnsupportedVersionError(manifest.format_version, _major(FORMAT_VERSION))

    encrypted = data.get("encrypted", False)
    if not isinstance(encrypted, bool):
        raise ParseError("Backup field 'encrypted' must be a boolean")

    encryption_info = None
    info_data = data.get("encryptionInfo")
    if info_data is not None:
        if not isinstance(info_data, dict):
            raise ParseError("Backup field 'encryptionInfo' must be an object")
        try:
            encryption_info = EncryptionInfo.from_dict(info_data)
        except ValueError as e:
            raise ParseError(f"Invalid encryptionInfo: {e}") from e

    app_data = data.get("appData")
    if not isinstance(app_data, dict):
        raise ParseError("Backup has no appData object")

    document = BackupDocument(
        manifest=manifest,
        encrypted=encrypted,
        encryption_info=encryption_info,
        app_data=app_data,
    )
    errors = document.invariant_errors()
    if errors:
        raise ParseError("; ".join(errors))
    return document


def encode_payload(categories: dict[str, Any]) -> bytes:
    """Serialize the sensitive categories for encryption."""
    return json.dumps(categories, separators=(",", ":"), sort_keys=True).encode("utf-8")


def decode_payload(raw: bytes) -> dict[str, Any]:
    """
    Parse a decrypted payload.

    Raises:
        ParseError: If the payload is not a JSON object.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"Decrypted payload is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ParseError("Decrypted payload must be a JSON object")
    return data


def encode_ciphertext(ciphertext: bytes) -> str:
    return base64.b64encode(ciphertext).decode("ascii")


def decode_ciphertext(text: str) -> bytes:
    """
    Decode base64 ciphertext text.

    Raises:
        ParseError: If the text is not valid base64.
    """
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ParseError(f"encryptedPayload is not valid base64: {e}") from e
