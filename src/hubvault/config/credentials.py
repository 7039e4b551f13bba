"""
Secure storage for widget credential bags.

Widgets that talk to third-party APIs (YouTube, Twitch, RSS aggregators...)
keep their keys here rather than in the widget layout. Bags are held in one
file encrypted with Fernet symmetric encryption, keyed by a passphrase via
PBKDF2 key derivation.

Security Design:
    - Bags are never stored in plaintext
    - Encryption key derived from user passphrase using PBKDF2 (600,000 iterations)
    - Random 256-bit salt generated per installation and stored separately
    - Bags decrypted into memory only when needed
    - Minimum 12-character passphrase required
    - File permissions set to owner-only (0600)

Threat Model:
    - Protects against: filesystem access by unauthorized users, casual
      inspection of the config directory
    - Does NOT protect against: memory inspection, keyloggers, root access,
      or compromise of the running process
"""

import base64
import json
import os
import secrets
import time
from dataclasses import dataclass, field
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from hubvault.config.settings import DEFAULT_CONFIG_DIR
from hubvault.stores.base import SecureCredentialStore

# Security parameters - do not reduce these values
# OWASP 2023 recommends 600,000 iterations for PBKDF2-SHA256
PBKDF2_ITERATIONS = 600_000
SALT_LENGTH = 32  # 256 bits
SESSION_TIMEOUT_SECONDS = 3600  # 1 hour default
MIN_PASSPHRASE_LENGTH = 12


class CredentialError(Exception):
    """Base exception for credential-related errors."""

    pass


class CredentialStoreNotInitializedError(CredentialError):
    """Raised when credential store has not been initialized."""

    pass


class CredentialStoreLockedError(CredentialError):
    """Raised when credential store is locked and passphrase is required."""

    pass


class InvalidPassphraseError(CredentialError):
    """Raised when the provided passphrase is incorrect."""

    pass


@dataclass
class CredentialSession:
    """
    Represents an active credential session with decrypted access.

    The session tracks when it was created and enforces a timeout
    after which the passphrase must be re-entered.
    """

    fernet: Fernet
    created_at: float = field(default_factory=time.time)
    timeout_seconds: int = SESSION_TIMEOUT_SECONDS

    def is_expired(self) -> bool:
        """Check if this session has expired."""
        return time.time() - self.created_at > self.timeout_seconds

    def clear(self) -> None:
        """
        Drop the reference to the key.

        Python does not guarantee immediate memory clearing; the key may
        remain in memory until garbage collected.
        """
        self.fernet = None  # type: ignore


class EncryptedCredentialStore(SecureCredentialStore):
    """
    Encrypted per-widget credential storage with session-based access.

    Usage:
        store = EncryptedCredentialStore()

        # First time setup
        if not store.is_initialized():
            store.initialize("my-secure-passphrase")

        # Unlock to write bags
        store.unlock("my-secure-passphrase")
        store.set("youtube", {"apiKey": "AIza..."})

        bag = store.get("youtube")
        store.lock()

    File Structure:
        ~/.hubvault/salt             - Random salt for key derivation (32 bytes)
        ~/.hubvault/credentials.enc  - Encrypted JSON object {widget_id: bag}

    Reads on a store that was never initialized report that nothing is
    stored. Reads and writes on an initialized store require an unlocked
    session.
    """

    def __init__(
        self,
        config_dir: Path | None = None,
        iterations: int = PBKDF2_ITERATIONS,
    ) -> None:
        """
        Initialize the credential store.

        Args:
            config_dir: Directory for credential files. Defaults to ~/.hubvault
            iterations: PBKDF2 iteration count used to derive the file key.
        """
        self.config_dir = config_dir or DEFAULT_CONFIG_DIR
        self.salt_path = self.config_dir / "salt"
        self.credentials_path = self.config_dir / "credentials.enc"
        self.iterations = iterations
        self._session: CredentialSession | None = None

    def is_initialized(self) -> bool:
        """Check if the salt and credentials files exist."""
        return self.salt_path.exists() and self.credentials_path.exists()

    def initialize(self, passphrase: str) -> None:
        """
        Initialize a new credential store with the given passphrase.

        Creates the config directory if needed, generates a random salt,
        and creates an empty encrypted credentials file.

        Raises:
            CredentialError: If the store is already initialized.
            ValueError: If the passphrase is shorter than 12 characters.
        """
        if self.is_initialized():
            raise CredentialError(
                "Credential store already initialized. "
                f"Delete {self.salt_path} and {self.credentials_path} to reset."
            )

        if len(passphrase) < MIN_PASSPHRASE_LENGTH:
            raise ValueError(
                f"Passphrase must be at least {MIN_PASSPHRASE_LENGTH} characters. "
                "Longer passphrases provide better security."
            )

        self.config_dir.mkdir(parents=True, exist_ok=True)
        try:
            os.chmod(self.config_dir, 0o700)
        except OSError:
            # Windows or permission error - continue anyway
            pass

        salt = secrets.token_bytes(SALT_LENGTH)
        self._write_secure_file(self.salt_path, salt)

        fernet = self._derive_key(passphrase, salt)
        empty: dict[str, dict[str, str]] = {}
        self._write_secure_file(
            self.credentials_path, fernet.encrypt(json.dumps(empty).encode())
        )

        self._session = CredentialSession(fernet=fernet)

    def unlock(self, passphrase: str, timeout_seconds: int | None = None) -> None:
        """
        Unlock the credential store with the given passphrase.

        Raises:
            CredentialStoreNotInitializedError: If store not initialized.
            InvalidPassphraseError: If passphrase is incorrect.
        """
        if not self.is_initialized():
            raise CredentialStoreNotInitializedError(
                "Credential store not initialized. Run 'hubvault init' first."
            )

        salt = self.salt_path.read_bytes()
        fernet = self._derive_key(passphrase, salt)

        try:
            fernet.decrypt(self.credentials_path.read_bytes())
        except InvalidToken as e:
            raise InvalidPassphraseError(
                "Invalid passphrase. Cannot decrypt credentials."
            ) from e

        timeout = timeout_seconds or SESSION_TIMEOUT_SECONDS
        self._session = CredentialSession(fernet=fernet, timeout_seconds=timeout)

    def lock(self) -> None:
        """Lock the credential store, clearing the session."""
        if self._session is not None:
            self._session.clear()
            self._session = None

    def is_unlocked(self) -> bool:
        """Check if the store is unlocked and the session has not expired."""
        if self._session is None:
            return False
        if self._session.is_expired():
            self.lock()
            return False
        return True

    def get(self, widget_id: str) -> dict[str, str] | None:
        """
        Return the credential bag for a widget, or None.

        Raises:
            CredentialStoreLockedError: If the initialized store is locked.
        """
        if not self.is_initialized():
            return None
        self._require_unlocked()
        bag = self._load_bags().get(widget_id)
        return dict(bag) if bag is not None else None

    def set(self, widget_id: str, bag: dict[str, str]) -> None:
        """
        Store a credential bag, replacing any previous bag for the widget.

        Raises:
            CredentialStoreLockedError: If store is locked.
        """
        self._require_unlocked()
        bags = self._load_bags()
        bags[widget_id] = dict(bag)
        self._save_bags(bags)

    def remove(self, widget_id: str) -> None:
        """
        Remove the bag for a widget. Missing ids are ignored.

        Raises:
            CredentialStoreLockedError: If store is locked.
        """
        self._require_unlocked()
        bags = self._load_bags()
        if widget_id in bags:
            del bags[widget_id]
            self._save_bags(bags)

    def list_widget_ids(self) -> list[str]:
        """
        List all widgets with a stored bag.

        Raises:
            CredentialStoreLockedError: If the initialized store is locked.
        """
        if not self.is_initialized():
            return []
        self._require_unlocked()
        return sorted(self._load_bags())

    def change_passphrase(self, old_passphrase: str, new_passphrase: str) -> None:
        """
        Change the encryption passphrase.

        Decrypts all bags with the old passphrase, generates a new salt,
        and re-encrypts with the new passphrase.

        Raises:
            InvalidPassphraseError: If old passphrase is incorrect.
            ValueError: If new passphrase is too short.
        """
        if len(new_passphrase) < MIN_PASSPHRASE_LENGTH:
            raise ValueError(
                f"New passphrase must be at least {MIN_PASSPHRASE_LENGTH} characters."
            )

        self.unlock(old_passphrase)
        bags = self._load_bags()
        self.lock()

        new_salt = secrets.token_bytes(SALT_LENGTH)
        self._write_secure_file(self.salt_path, new_salt)

        new_fernet = self._derive_key(new_passphrase, new_salt)
        self._write_secure_file(
            self.credentials_path, new_fernet.encrypt(json.dumps(bags).encode())
        )

        self._session = CredentialSession(fernet=new_fernet)

    def _require_unlocked(self) -> None:
        """Raise an error if the store is not unlocked."""
        if not self.is_initialized():
            raise CredentialStoreNotInitializedError(
                "Credential store not initialized. Run 'hubvault init' first."
            )
        if not self.is_unlocked():
            raise CredentialStoreLockedError(
                "Credential store is locked. Call unlock() with passphrase first."
            )

    def _derive_key(self, passphrase: str, salt: bytes) -> Fernet:
        """Derive a Fernet key from passphrase and salt with PBKDF2-SHA256."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,  # Fernet requires 32-byte keys
            salt=salt,
            iterations=self.iterations,
        )
        key = base64.urlsafe_b64encode(kdf.derive(passphrase.encode()))
        return Fernet(key)

    def _load_bags(self) -> dict[str, dict[str, str]]:
        """Load and decrypt all bags from file."""
        assert self._session is not None

        encrypted = self.credentials_path.read_bytes()
        decrypted = self._session.fernet.decrypt(encrypted)
        data: dict[str, dict[str, str]] = json.loads(decrypted.decode())
        return data

    def _save_bags(self, bags: dict[str, dict[str, str]]) -> None:
        """Encrypt and save all bags to file."""
        assert self._session is not None

        encrypted = self._session.fernet.encrypt(json.dumps(bags).encode())
        self._write_secure_file(self.credentials_path, encrypted)

    def _write_secure_file(self, path: Path, data: bytes) -> None:
        """
        Write data to file with restrictive permissions.

        Uses atomic write (write to temp, then rename) to prevent
        partial writes from corrupting the file.
        """
        temp_path = path.with_suffix(".tmp")

        try:
            temp_path.write_bytes(data)

            try:
                os.chmod(temp_path, 0o600)
            except OSError:
                # Windows or permission error - continue anyway
                pass

            temp_path.replace(path)

        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise
