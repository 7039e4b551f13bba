"""
Exceptions raised by the backup engine.

Every failure of an export or restore surfaces as one of these types so
callers can tell a bad password from a corrupt file from a store failure.
"""

from __future__ import annotations


class BackupError(Exception):
    """Base exception for backup and restore errors."""

    pass


class ValidationError(BackupError):
    """
    Raised when export options are invalid.

    Nothing has been read or written when this is raised.
    """

    pass


class ParseError(BackupError):
    """Raised when a backup document is malformed. No store was modified."""

    pass


class UnsupportedVersionError(ParseError):
    """Raised when a document was written by an incompatible format version."""

    def __init__(self, version: str, supported: str) -> None:
        self.version = version
        self.supported = supported
        super().__init__(
            f"Unsupported backup format version {version!r} "
            f"(this version reads {supported}.x)"
        )


class PasswordRequiredError(BackupError):
    """
    Raised when an encrypted document is restored without a password.

    Recoverable: call restore again with the password.
    """

    pass


class DecryptionError(BackupError):
    """
    Raised when the encrypted payload cannot be decrypted.

    Either the password is wrong or the ciphertext was altered. No store was
    modified; the caller may retry with another password.
    """

    pass


class RestoreError(BackupError):
    """
    Raised when writing a category to its store fails.

    Attributes:
        category: The category whose write failed.
        completed: Categories that were fully written before the failure.
            They are not rolled back.
    """

    def __init__(self, category: str, completed: list[str], message: str) -> None:
        self.category = category
        self.completed = list(completed)
        super().__init__(f"Failed to restore {category}: {message}")
