"""
Command-line interface for hubvault.

Provides commands to export hub state to a backup file, inspect and restore
backups, and manage saved widget profiles.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, NoReturn

from hubvault import __version__
from hubvault.backup import (
    CATEGORIES,
    BackupDocument,
    BackupError,
    BackupManager,
    DecryptionError,
    ExportOptions,
    ParseError,
    PasswordRequiredError,
    PreparedRestore,
    RestoreError,
    load_backup_document,
)
from hubvault.backup.document import ENCRYPTED_PAYLOAD_KEY
from hubvault.backup.partition import CATEGORIES_BY_NAME
from hubvault.config.credentials import (
    MIN_PASSPHRASE_LENGTH,
    CredentialError,
    CredentialStoreNotInitializedError,
    EncryptedCredentialStore,
)
from hubvault.config.settings import (
    ConfigurationError,
    Settings,
    get_config_path,
    load_config,
    save_config,
)
from hubvault.stores import AppStores, ProfileNotFoundError, open_sqlite_stores

# Set up logging
logger = logging.getLogger(__name__)

# Environment variables read instead of prompting
BACKUP_PASSWORD_ENV = "HUBVAULT_BACKUP_PASSWORD"
PASSPHRASE_ENV = "HUBVAULT_PASSPHRASE"

MAX_PASSWORD_ATTEMPTS = 3

# (option name, ExportOptions attribute, help)
EXPORT_SWITCHES: list[tuple[str, str, str]] = [
    ("settings", "include_settings", "application settings"),
    ("service-configs", "include_service_configs", "service connections"),
    ("service-credentials", "include_service_credentials", "service API keys and logins"),
    ("widgets", "include_widgets_config", "the current widget layout"),
    ("widget-credentials", "include_widget_config_credentials", "credentials in widget configs"),
    ("profiles", "include_widget_profiles", "saved widget profiles"),
    (
        "profile-credentials",
        "include_widget_profile_credentials",
        "credentials in saved widget profiles",
    ),
    (
        "secure-credentials",
        "include_widget_secure_credentials",
        "widget credential bags from the encrypted credential store",
    ),
]

# Global verbosity settings (set during main() based on args)
_quiet_mode = False
_verbose_level = 0


def set_output_mode(quiet: bool = False, verbose: int = 0) -> None:
    """
    Set the output mode for the CLI.

    Args:
        quiet: If True, suppress non-essential output.
        verbose: Verbosity level (0=normal, 1+=verbose).
    """
    global _quiet_mode, _verbose_level
    _quiet_mode = quiet
    _verbose_level = verbose


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for hubvault CLI."""
    parser = argparse.ArgumentParser(
        prog="hubvault",
        description="Backup and restore for dashboard hub state",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"hubvault {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.hubvault/config.yaml)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # init command
    init_parser = subparsers.add_parser(
        "init",
        help="Initialize hubvault configuration",
        description="Create the configuration file, data directory and credential store.",
    )
    init_parser.set_defaults(func=cmd_init)

    # export command
    export_parser = subparsers.add_parser(
        "export",
        help="Create a backup of hub state",
        description=(
            "Write the selected categories to a backup file. Categories default "
            "to backup.default_export in the config file."
        ),
    )
    export_parser.add_argument(
        "--output",
        "-o",
        metavar="DIR",
        help="Output directory for backup file (default: backup.output_dir)",
    )
    export_parser.add_argument(
        "--stdout",
        action="store_true",
        help="Write the backup document to stdout instead of a file",
    )
    export_parser.add_argument(
        "--encrypt",
        action="store_true",
        help=f"Encrypt credential categories with a password (read from {BACKUP_PASSWORD_ENV} or prompted)",
    )
    export_parser.add_argument(
        "--no-credentials",
        action="store_true",
        dest="no_credentials",
        help="Leave every credential category out of the backup",
    )
    for name, attr, description in EXPORT_SWITCHES:
        export_parser.add_argument(
            f"--{name}",
            action=argparse.BooleanOptionalAction,
            dest=attr,
            default=None,
            help=f"Include {description}",
        )
    export_parser.set_defaults(func=cmd_export)

    # info command
    info_parser = subparsers.add_parser(
        "info",
        help="Show information about a backup file",
        description="Display a backup's manifest and the categories it holds.",
    )
    info_parser.add_argument("backup_file", metavar="FILE", help="Path to backup file")
    info_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    info_parser.set_defaults(func=cmd_info)

    # restore command
    restore_parser = subparsers.add_parser(
        "restore",
        help="Restore from a backup file",
        description="Restore hub state from a backup file.",
    )
    restore_parser.add_argument("backup_file", metavar="FILE", help="Path to backup file")
    restore_parser.add_argument(
        "--password",
        action="store_true",
        help="Prompt for the backup password up front",
    )
    restore_parser.add_argument(
        "--verify-only",
        action="store_true",
        dest="verify_only",
        help="Verify the backup can be restored without restoring",
    )
    restore_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompts",
    )
    restore_parser.set_defaults(func=cmd_restore)

    # profiles command
    profiles_parser = subparsers.add_parser(
        "profiles",
        help="Manage saved widget profiles",
        description="List or delete saved widget profiles.",
    )
    profiles_sub = profiles_parser.add_subparsers(
        title="actions",
        dest="action",
        metavar="<action>",
    )

    profiles_list = profiles_sub.add_parser("list", help="List saved profiles")
    profiles_list.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )

    profiles_delete = profiles_sub.add_parser("delete", help="Delete one profile")
    profiles_delete.add_argument("profile_id", metavar="ID", help="Profile id")

    profiles_delete_all = profiles_sub.add_parser("delete-all", help="Delete every profile")
    profiles_delete_all.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompt",
    )

    profiles_parser.set_defaults(func=cmd_profiles)

    return parser


def setup_logging(verbose: int, quiet: bool) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _config_path(args: argparse.Namespace) -> Path:
    return Path(args.config) if args.config else get_config_path()


def _load_settings(args: argparse.Namespace) -> Settings:
    return load_config(_config_path(args))


def _credential_store(args: argparse.Namespace) -> EncryptedCredentialStore:
    """The credential store lives next to the config file."""
    return EncryptedCredentialStore(config_dir=_config_path(args).parent)


def _unlock_credentials(store: EncryptedCredentialStore) -> None:
    """
    Unlock the credential store, reading the passphrase from the environment
    or prompting for it.

    Raises:
        CredentialStoreNotInitializedError: If the store was never created.
        InvalidPassphraseError: If the passphrase is wrong.
    """
    if store.is_unlocked():
        return
    if not store.is_initialized():
        raise CredentialStoreNotInitializedError(
            "Credential store not initialized. Run 'hubvault init' first."
        )
    passphrase = os.environ.get(PASSPHRASE_ENV)
    if passphrase is None:
        passphrase = getpass.getpass("Enter passphrase to unlock credentials: ")
    store.unlock(passphrase)


def _open_stores(
    args: argparse.Namespace, settings: Settings
) -> tuple[AppStores, EncryptedCredentialStore]:
    credential_store = _credential_store(args)
    return open_sqlite_stores(settings.data_dir, credential_store), credential_store


def _read_new_backup_password() -> str:
    """Read a password for a new encrypted backup."""
    password = os.environ.get(BACKUP_PASSWORD_ENV)
    if password:
        return password

    while True:
        password = getpass.getpass("Backup password: ")
        if not password:
            output_error("Error: Password must not be empty.")
            continue

        confirm = getpass.getpass("Confirm backup password: ")
        if password != confirm:
            output_error("Error: Passwords do not match.")
            continue

        return password


def _build_export_options(args: argparse.Namespace, settings: Settings) -> ExportOptions:
    """Start from the configured defaults and apply command-line switches."""
    options = ExportOptions.from_defaults(settings.backup.default_export)

    for _, attr, _ in EXPORT_SWITCHES:
        value = getattr(args, attr)
        if value is not None:
            setattr(options, attr, value)

    for category in CATEGORIES:
        if category.parent is None:
            continue
        parent_flag = CATEGORIES_BY_NAME[category.parent].export_flag
        # Switching a category off takes its credentials with it unless asked otherwise
        if getattr(args, parent_flag) is False and getattr(args, category.export_flag) is None:
            setattr(options, category.export_flag, False)

    if args.no_credentials:
        for category in CATEGORIES:
            if category.sensitive:
                setattr(options, category.export_flag, False)

    if args.encrypt:
        options = options.with_encryption(_read_new_backup_password())
    return options


def _item_count(value: Any) -> int | None:
    if isinstance(value, (list, dict)):
        return len(value)
    return None


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize hubvault configuration."""
    output("hubvault Initialization")
    output("=" * 50)
    output()

    config_path = _config_path(args)
    credential_store = _credential_store(args)

    if credential_store.is_initialized():
        output(f"hubvault is already initialized at: {config_path.parent}")
        output()
        output(f"To reset, delete {credential_store.salt_path} and")
        output(f"{credential_store.credentials_path} and run init again.")
        return 0

    output("Credential Store Setup")
    output("-" * 30)
    output("Enter a passphrase to encrypt widget credentials at rest.")
    output(f"Minimum {MIN_PASSPHRASE_LENGTH} characters.")
    output()

    passphrase = os.environ.get(PASSPHRASE_ENV)
    while passphrase is None:
        candidate = getpass.getpass("Enter passphrase: ")
        if len(candidate) < MIN_PASSPHRASE_LENGTH:
            output_error(
                f"Error: Passphrase must be at least {MIN_PASSPHRASE_LENGTH} characters."
            )
            continue

        confirm = getpass.getpass("Confirm passphrase: ")
        if candidate != confirm:
            output_error("Error: Passphrases do not match.")
            continue

        passphrase = candidate

    try:
        credential_store.initialize(passphrase)
    except ValueError as e:
        output_error(f"Error: {e}")
        return 1
    output("Credential store initialized successfully.")

    if config_path.exists():
        settings = load_config(config_path)
    else:
        settings = Settings()
        save_config(settings, config_path)
        output(f"Configuration file created: {config_path}")

    Path(settings.data_dir).mkdir(parents=True, exist_ok=True)
    Path(settings.backup.output_dir).mkdir(parents=True, exist_ok=True)

    output()
    output("Initialization complete.")
    output()
    output("Next steps:")
    output("  1. Run 'hubvault export' to create a backup")
    output("  2. Run 'hubvault export --encrypt' to protect credentials with a password")
    output()
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Create a backup of hub state."""
    settings = _load_settings(args)
    options = _build_export_options(args, settings)
    options.validate()

    stores, credential_store = _open_stores(args, settings)
    if options.include_widget_secure_credentials:
        _unlock_credentials(credential_store)

    manager = BackupManager(stores, kdf_iterations=settings.backup.kdf_iterations)

    try:
        if args.stdout:
            output(manager.export(options).decode("utf-8"), force=True)
            return 0

        output_path = Path(args.output) if args.output else Path(settings.backup.output_dir)

        output("hubvault Export")
        output("=" * 50)
        output()
        output(f"Data directory: {settings.data_dir}")
        output(f"Output directory: {output_path}")
        output(f"Encrypt credentials: {options.encrypt_sensitive}")
        output()

        output("Creating backup...")
        result = manager.export_to_file(options, output_path)
    finally:
        credential_store.lock()

    if not result.success:
        output()
        output_error(f"Backup failed: {result.error}")
        return 1

    output()
    output("Backup created successfully!")
    output()
    output(f"  File: {result.path}")
    output(f"  Size: {result.size_bytes:,} bytes")
    output(f"  Categories: {', '.join(result.categories or []) or 'none'}")
    if result.encrypted:
        output("  Credentials: encrypted")
    elif any(CATEGORIES_BY_NAME[name].sensitive for name in result.categories or []):
        output("  WARNING: credentials are stored in plaintext in this file.")
    output()
    output("To restore from this backup, run:")
    output(f"  hubvault restore {result.path}")
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    """Show information about a backup file."""
    try:
        document = load_backup_document(args.backup_file)
    except BackupError as e:
        output_error(f"Error: Not a valid backup: {e}")
        return 1

    counts = {
        name: _item_count(value)
        for name, value in document.app_data.items()
        if name != ENCRYPTED_PAYLOAD_KEY
    }

    if args.json:
        info: dict[str, Any] = {
            "manifest": document.manifest.to_dict(),
            "encrypted": document.encrypted,
            "categories": counts,
        }
        if document.encryption_info is not None:
            info["encryption"] = {
                "algorithm": document.encryption_info.algorithm,
                "iterations": document.encryption_info.iterations,
            }
        output(json.dumps(info, indent=2), force=True)
        return 0

    manifest = document.manifest
    output("Backup information:")
    output(f"  File: {args.backup_file}")
    output(f"  Created: {manifest.created_at}")
    output(f"  Format version: {manifest.format_version}")
    output(f"  Producer: {manifest.producer_name} {manifest.producer_version}")
    output(f"  Encrypted: {document.encrypted}")
    if document.encryption_info is not None:
        output(f"  Algorithm: {document.encryption_info.algorithm}")
        output(f"  KDF iterations: {document.encryption_info.iterations:,}")
    output()
    output("Categories:")
    for name, count in counts.items():
        suffix = f" ({count})" if count is not None else ""
        output(f"  - {name}{suffix}")
    if document.encrypted:
        output("  - credential categories (encrypted)")
    return 0


def _prepare_restore(
    manager: BackupManager, document: BackupDocument, prompt_first: bool
) -> PreparedRestore:
    """
    Decode a document, asking for its password when it is encrypted.

    A password from the environment is tried once. A prompted password may
    be retried a few times.

    Raises:
        PasswordRequiredError: If no password could be obtained.
        DecryptionError: If every password tried was wrong.
    """
    password = os.environ.get(BACKUP_PASSWORD_ENV)
    if password is None and prompt_first and document.encrypted:
        password = getpass.getpass("Backup password: ")

    try:
        return manager.restorer.prepare(document, password)
    except PasswordRequiredError:
        if not sys.stdin.isatty():
            raise
    except DecryptionError:
        if os.environ.get(BACKUP_PASSWORD_ENV) is not None or not sys.stdin.isatty():
            raise
        output_error("Error: Wrong password or corrupted backup.")

    for attempt in range(MAX_PASSWORD_ATTEMPTS):
        password = getpass.getpass("Backup password: ")
        try:
            return manager.restorer.prepare(document, password)
        except DecryptionError:
            if attempt == MAX_PASSWORD_ATTEMPTS - 1:
                raise
            output_error("Error: Wrong password or corrupted backup.")

    raise PasswordRequiredError("This backup is encrypted; a password is required")


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore from a backup file."""
    backup_path = Path(args.backup_file)

    if not backup_path.exists():
        output_error(f"Error: Backup file not found: {backup_path}")
        return 1

    settings = _load_settings(args)

    output("hubvault Restore")
    output("=" * 50)
    output()
    output(f"Backup file: {backup_path}")
    output()

    try:
        document = load_backup_document(backup_path)
    except BackupError as e:
        output_error(f"Backup verification failed: {e}")
        return 1

    manifest = document.manifest
    output("Backup information:")
    output(f"  Created: {manifest.created_at}")
    output(f"  Producer: {manifest.producer_name} {manifest.producer_version}")
    output(f"  Encrypted: {document.encrypted}")
    output()

    stores, credential_store = _open_stores(args, settings)
    manager = BackupManager(stores, kdf_iterations=settings.backup.kdf_iterations)

    output("Verifying backup...")
    try:
        prepared = _prepare_restore(manager, document, args.password)
    except ParseError as e:
        output()
        output_error(f"Backup verification failed: {e}")
        return 1

    output("Backup verified successfully.")
    output(f"  Categories: {', '.join(prepared.categories()) or 'none'}")
    output()

    if args.verify_only:
        output("Verification complete (--verify-only specified)")
        return 0

    if not args.force:
        output("WARNING: This will replace the current contents of every category above.")
        output()
        response = input("Proceed with restore? [y/N]: ").strip().lower()
        if response not in ("y", "yes"):
            output("Restore cancelled.")
            return 0

    if prepared.secure_credentials is not None:
        _unlock_credentials(credential_store)

    output()
    output("Restoring...")
    try:
        result = manager.restorer.apply(prepared)
    except RestoreError as e:
        output()
        output_error(f"Restore failed: {e}")
        if e.completed:
            output_error(f"Already restored: {', '.join(e.completed)}")
        return 1
    finally:
        credential_store.lock()

    output()
    output("Restore completed successfully!")
    output()
    for name in result.categories_restored:
        output(f"  {name}: {result.item_counts.get(name, 0)}")
    if result.invalidated_widget_ids:
        output(f"  Widget caches cleared: {len(result.invalidated_widget_ids)}")
    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """Manage saved widget profiles."""
    if args.action is None:
        output_error("Error: Specify an action: list, delete or delete-all")
        return 1

    settings = _load_settings(args)
    stores, _ = _open_stores(args, settings)
    profile_store = stores.widget_profiles

    if args.action == "list":
        profiles = profile_store.list()
        if args.json:
            output(json.dumps([p.to_dict() for p in profiles], indent=2), force=True)
            return 0
        if not profiles:
            output("No saved profiles.")
            return 0
        output(f"{'ID':<50} {'NAME':<24} {'WIDGETS':>7}")
        for profile in profiles:
            output(f"{profile.id:<50} {profile.name:<24} {len(profile.widgets):>7}")
        return 0

    if args.action == "delete":
        try:
            profile_store.delete(args.profile_id)
        except ProfileNotFoundError as e:
            output_error(f"Error: {e}")
            return 1
        output(f"Deleted profile {args.profile_id}")
        return 0

    # delete-all
    count = len(profile_store.list())
    if count == 0:
        output("No saved profiles.")
        return 0
    if not args.force:
        response = input(f"Delete all {count} saved profiles? [y/N]: ").strip().lower()
        if response not in ("y", "yes"):
            output("Cancelled.")
            return 0
    profile_store.delete_all()
    output(f"Deleted {count} profiles.")
    return 0


def main() -> NoReturn:
    """Main entry point for hubvault CLI."""
    parser = create_parser()
    args = parser.parse_args()

    # Set up logging and output mode
    setup_logging(args.verbose, args.quiet)
    set_output_mode(args.quiet, args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(130)
    except (PasswordRequiredError, DecryptionError) as e:
        output_error(f"Password error: {e}")
        sys.exit(3)
    except CredentialError as e:
        output_error(f"Credential error: {e}")
        sys.exit(2)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(2)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
