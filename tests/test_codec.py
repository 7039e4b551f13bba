"""
Tests for the backup document and its JSON codec.

Tests cover:
- Manifest and encryption info serialization
- Document assembly
- Parsing and rejection of malformed documents
- Payload and ciphertext encoding
"""

import json
import unittest
from datetime import UTC, datetime

from hubvault.backup import codec
from hubvault.backup.document import (
    ENCRYPTED_PAYLOAD_KEY,
    FORMAT_VERSION,
    BackupDocument,
    BackupManifest,
    EncryptionInfo,
    build,
)
from hubvault.backup.errors import ParseError, UnsupportedVersionError
from hubvault.config.settings import MAX_KDF_ITERATIONS


def _info() -> EncryptionInfo:
    return EncryptionInfo(
        algorithm="AES-256-GCM/PBKDF2-SHA256",
        salt=bytes(range(32)),
        iv=bytes(range(12)),
        iterations=1000,
    )


def _raw(data: dict) -> bytes:
    return json.dumps(data).encode("utf-8")


def _minimal(**overrides) -> dict:
    data = {
        "manifest": {"formatVersion": FORMAT_VERSION, "createdAt": "2024-03-01T00:00:00+00:00"},
        "encrypted": False,
        "appData": {"settings": {"theme": "dark"}},
    }
    data.update(overrides)
    return data


class TestBackupManifest(unittest.TestCase):
    """Tests for BackupManifest dataclass."""

    def test_to_dict(self):
        """Test manifest serialization to dictionary."""
        manifest = BackupManifest(
            format_version="2.0",
            created_at="2024-03-01T09:30:00+00:00",
            producer_version="0.1.0",
        )

        data = manifest.to_dict()

        self.assertEqual(data["formatVersion"], "2.0")
        self.assertEqual(data["createdAt"], "2024-03-01T09:30:00+00:00")
        self.assertEqual(data["producer"], {"name": "hubvault", "version": "0.1.0"})

    def test_from_dict_missing_fields(self):
        """Test manifest creation handles missing producer gracefully."""
        manifest = BackupManifest.from_dict({"formatVersion": "2.0", "producer": "x"})

        self.assertEqual(manifest.format_version, "2.0")
        self.assertEqual(manifest.producer_name, "unknown")


class TestEncryptionInfo(unittest.TestCase):
    """Tests for EncryptionInfo."""

    def test_binary_fields_are_hex(self):
        """Test that salt and iv are written as hex text."""
        data = _info().to_dict()

        self.assertEqual(data["salt"], bytes(range(32)).hex())
        self.assertEqual(data["iv"], bytes(range(12)).hex())
        self.assertEqual(data["iterations"], 1000)
        self.assertEqual(EncryptionInfo.from_dict(data), _info())

    def test_invalid_hex_rejected(self):
        """Test that a non-hex salt raises ValueError."""
        data = _info().to_dict()
        data["salt"] = "not hex"

        with self.assertRaises(ValueError):
            EncryptionInfo.from_dict(data)

    def test_missing_iterations_rejected(self):
        """Test that iterations must be a positive integer."""
        data = _info().to_dict()
        del data["iterations"]

        with self.assertRaises(ValueError):
            EncryptionInfo.from_dict(data)

    def test_excessive_iterations_rejected(self):
        """Test that an iteration count above the ceiling raises ValueError."""
        data = _info().to_dict()
        data["iterations"] = MAX_KDF_ITERATIONS + 1

        with self.assertRaises(ValueError):
            EncryptionInfo.from_dict(data)

        data["iterations"] = MAX_KDF_ITERATIONS
        self.assertEqual(EncryptionInfo.from_dict(data).iterations, MAX_KDF_ITERATIONS)


class TestBuild(unittest.TestCase):
    """Tests for document assembly."""

    def test_plaintext_document(self):
        """Test building a document without encryption."""
        created = datetime(2024, 3, 1, tzinfo=UTC)
        document = build({"settings": {}}, created_at=created)

        self.assertFalse(document.encrypted)
        self.assertIsNone(document.encryption_info)
        self.assertEqual(document.manifest.format_version, FORMAT_VERSION)
        self.assertEqual(document.manifest.created_at, created.isoformat())
        self.assertEqual(document.invariant_errors(), [])

    def test_encrypted_document(self):
        """Test that a payload marks the document encrypted."""
        document = build({"settings": {}}, encrypted_payload="AAAA", encryption_info=_info())

        self.assertTrue(document.encrypted)
        self.assertEqual(document.encrypted_payload, "AAAA")
        self.assertEqual(document.categories(), ["settings"])
        self.assertEqual(document.invariant_errors(), [])

    def test_payload_without_info_rejected(self):
        """Test that payload and encryption info must come together."""
        with self.assertRaises(ValueError):
            build({}, encrypted_payload="AAAA")
        with self.assertRaises(ValueError):
            build({}, encryption_info=_info())

    def test_reserved_key_rejected(self):
        """Test that public data cannot smuggle in a payload key."""
        with self.assertRaises(ValueError):
            build({ENCRYPTED_PAYLOAD_KEY: "AAAA"})

    def test_input_not_aliased(self):
        """Test that adding the payload does not modify the caller's dict."""
        public = {"settings": {}}
        build(public, encrypted_payload="AAAA", encryption_info=_info())

        self.assertNotIn(ENCRYPTED_PAYLOAD_KEY, public)


class TestInvariants(unittest.TestCase):
    """Tests for BackupDocument.invariant_errors."""

    def test_payload_with_plaintext_sensitive_category(self):
        """Test that mixing a payload and plaintext credentials is flagged."""
        document = BackupDocument(
            manifest=BackupManifest(FORMAT_VERSION, ""),
            encrypted=True,
            encryption_info=_info(),
            app_data={ENCRYPTED_PAYLOAD_KEY: "AAAA", "serviceCredentials": {}},
        )

        errors = document.invariant_errors()

        self.assertEqual(len(errors), 1)
        self.assertIn("serviceCredentials", errors[0])

    def test_flag_disagrees_with_payload(self):
        """Test both directions of the encrypted flag check."""
        marked = BackupDocument(
            manifest=BackupManifest(FORMAT_VERSION, ""), encrypted=True, encryption_info=_info()
        )
        unmarked = BackupDocument(
            manifest=BackupManifest(FORMAT_VERSION, ""),
            app_data={ENCRYPTED_PAYLOAD_KEY: "AAAA"},
        )

        self.assertTrue(marked.invariant_errors())
        self.assertTrue(unmarked.invariant_errors())


class TestDecodeDocument(unittest.TestCase):
    """Tests for decode_document."""

    def test_round_trip(self):
        """Test that encode then decode preserves the document."""
        document = build(
            {"settings": {"theme": "dark"}, "widgetsConfig": []},
            encrypted_payload="AAAA",
            encryption_info=_info(),
        )

        decoded = codec.decode_document(codec.encode_document(document))

        self.assertEqual(decoded.to_dict(), document.to_dict())

    def test_encoded_as_indented_utf8(self):
        """Test that documents are human-readable JSON."""
        raw = codec.encode_document(build({"settings": {"title": "Café"}}))

        self.assertIn("Café".encode(), raw)
        self.assertIn(b"\n  ", raw)

    def test_not_json(self):
        """Test that garbage bytes raise ParseError."""
        with self.assertRaises(ParseError):
            codec.decode_document(b"\x00\xffnot json")

    def test_root_not_object(self):
        """Test that a JSON array root is rejected."""
        with self.assertRaises(ParseError):
            codec.decode_document(b"[]")

    def test_missing_manifest(self):
        """Test that a document without a manifest is rejected."""
        data = _minimal()
        del data["manifest"]

        with self.assertRaises(ParseError):
            codec.decode_document(_raw(data))

    def test_missing_app_data(self):
        """Test that a document without appData is rejected."""
        data = _minimal()
        del data["appData"]

        with self.assertRaises(ParseError):
            codec.decode_document(_raw(data))

    def test_encrypted_must_be_boolean(self):
        """Test that a string encrypted flag is rejected."""
        with self.assertRaises(ParseError):
            codec.decode_document(_raw(_minimal(encrypted="yes")))

    def test_encrypted_defaults_to_false(self):
        """Test that a missing encrypted flag means plaintext."""
        data = _minimal()
        del data["encrypted"]

        self.assertFalse(codec.decode_document(_raw(data)).encrypted)

    def test_newer_major_version_rejected(self):
        """Test that an incompatible format version raises UnsupportedVersionError."""
        data = _minimal()
        data["manifest"]["formatVersion"] = "3.0"

        with self.assertRaises(UnsupportedVersionError) as cm:
            codec.decode_document(_raw(data))

        self.assertEqual(cm.exception.version, "3.0")

    def test_newer_minor_version_accepted(self):
        """Test that minor version bumps stay readable."""
        data = _minimal()
        data["manifest"]["formatVersion"] = "2.7"

        self.assertEqual(codec.decode_document(_raw(data)).manifest.format_version, "2.7")

    def test_encrypted_without_info(self):
        """Test that an encrypted document must carry encryptionInfo."""
        data = _minimal(encrypted=True)
        data["appData"][ENCRYPTED_PAYLOAD_KEY] = "AAAA"

        with self.assertRaises(ParseError):
            codec.decode_document(_raw(data))

    def test_bad_encryption_info(self):
        """Test that malformed encryptionInfo raises ParseError."""
        data = _minimal(encrypted=True, encryptionInfo={"algorithm": "x", "iterations": 1})
        data["appData"][ENCRYPTED_PAYLOAD_KEY] = "AAAA"
        data["encryptionInfo"]["salt"] = "zz"

        with self.assertRaises(ParseError):
            codec.decode_document(_raw(data))

    def test_excessive_iterations(self):
        """Test that a huge iteration count is rejected before any key derivation."""
        data = _minimal(encrypted=True, encryptionInfo=_info().to_dict())
        data["appData"][ENCRYPTED_PAYLOAD_KEY] = "AAAA"
        data["encryptionInfo"]["iterations"] = 10**12

        with self.assertRaises(ParseError) as cm:
            codec.decode_document(_raw(data))

        self.assertIn("iterations", str(cm.exception))

    def test_mutual_exclusion_violation(self):
        """Test that a payload next to plaintext credentials is rejected."""
        data = _minimal(encrypted=True, encryptionInfo=_info().to_dict())
        data["appData"][ENCRYPTED_PAYLOAD_KEY] = "AAAA"
        data["appData"]["widgetSecureCredentials"] = {"youtube": {"apiKey": "k1"}}

        with self.assertRaises(ParseError):
            codec.decode_document(_raw(data))


class TestPayloadEncoding(unittest.TestCase):
    """Tests for payload and ciphertext helpers."""

    def test_payload_is_compact_and_sorted(self):
        """Test that payload bytes are deterministic."""
        self.assertEqual(codec.encode_payload({"b": 1, "a": [1, 2]}), b'{"a":[1,2],"b":1}')

    def test_payload_round_trip(self):
        """Test that decode_payload inverts encode_payload."""
        payload = {"serviceCredentials": {"svc": {"apiKey": "k"}}}
        self.assertEqual(codec.decode_payload(codec.encode_payload(payload)), payload)

    def test_payload_must_be_object(self):
        """Test that a non-object payload raises ParseError."""
        with self.assertRaises(ParseError):
            codec.decode_payload(b"[1, 2]")

    def test_ciphertext_is_base64(self):
        """Test the base64 text form of ciphertext."""
        text = codec.encode_ciphertext(b"\x00\x01\xff")

        self.assertEqual(text, "AAH/")
        self.assertEqual(codec.decode_ciphertext(text), b"\x00\x01\xff")

    def test_invalid_base64(self):
        """Test that corrupted ciphertext text raises ParseError."""
        with self.assertRaises(ParseError):
            codec.decode_ciphertext("not base64!")


if __name__ == "__main__":
    unittest.main()
