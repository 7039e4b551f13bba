"""
Tests for the CLI commands.

Uses Python's unittest module.
Tests argument parsing, export option handling, and the export, info,
restore and profiles commands against a temporary data directory.
"""

from __future__ import annotations

import io
import json
import os
import shutil
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest.mock import patch

from sample_state import TEST_ITERATIONS, make_sample_stores, state_of

from hubvault.backup import BackupManager, ExportOptions, ValidationError
from hubvault.cli import (
    BACKUP_PASSWORD_ENV,
    _build_export_options,
    create_parser,
    main,
    set_output_mode,
)
from hubvault.config.settings import Settings
from hubvault.stores import AppStores, InMemorySecureCredentialStore, open_sqlite_stores


class TestArgumentParser(unittest.TestCase):
    """Tests for CLI argument parsing."""

    def setUp(self) -> None:
        """Set up parser for tests."""
        self.parser = create_parser()

    def test_version_argument(self) -> None:
        """Test --version argument."""
        with redirect_stdout(io.StringIO()):
            with self.assertRaises(SystemExit) as cm:
                self.parser.parse_args(["--version"])

        self.assertEqual(cm.exception.code, 0)

    def test_no_command_defaults(self) -> None:
        """Test parsing with no command."""
        args = self.parser.parse_args([])

        self.assertIsNone(args.command)
        self.assertEqual(args.verbose, 0)
        self.assertFalse(args.quiet)

    def test_export_switches_default_to_unset(self) -> None:
        """Test that category switches stay None unless given."""
        args = self.parser.parse_args(["export"])

        self.assertIsNone(args.include_settings)
        self.assertIsNone(args.include_widget_secure_credentials)
        self.assertFalse(args.encrypt)
        self.assertFalse(args.stdout)

    def test_export_switches(self) -> None:
        """Test --X and --no-X category switches."""
        args = self.parser.parse_args(
            ["export", "--no-profiles", "--secure-credentials", "-o", "/tmp/out"]
        )

        self.assertFalse(args.include_widget_profiles)
        self.assertTrue(args.include_widget_secure_credentials)
        self.assertEqual(args.output, "/tmp/out")

    def test_restore_arguments(self) -> None:
        """Test restore command arguments."""
        args = self.parser.parse_args(["restore", "backup.json", "--verify-only", "--force"])

        self.assertEqual(args.backup_file, "backup.json")
        self.assertTrue(args.verify_only)
        self.assertTrue(args.force)
        self.assertFalse(args.password)

    def test_profiles_actions(self) -> None:
        """Test profiles subcommands."""
        self.assertEqual(self.parser.parse_args(["profiles", "list"]).action, "list")
        args = self.parser.parse_args(["profiles", "delete", "profile-x"])
        self.assertEqual(args.profile_id, "profile-x")
        self.assertTrue(self.parser.parse_args(["profiles", "delete-all", "--force"]).force)


class TestBuildExportOptions(unittest.TestCase):
    """Tests for mapping command-line switches onto ExportOptions."""

    def setUp(self) -> None:
        """Set up parser and default settings."""
        self.parser = create_parser()
        self.settings = Settings()

    def _options(self, *argv: str) -> ExportOptions:
        args = self.parser.parse_args(["export", *argv])
        return _build_export_options(args, self.settings)

    def test_config_defaults(self) -> None:
        """Test that no switches give the configured defaults."""
        self.settings.backup.default_export.settings = False

        options = self._options()

        self.assertFalse(options.include_settings)
        self.assertTrue(options.include_widgets_config)
        self.assertFalse(options.include_widget_secure_credentials)

    def test_parent_off_takes_credentials(self) -> None:
        """Test that switching a category off drops its credentials too."""
        options = self._options("--no-widgets", "--no-service-configs")

        self.assertFalse(options.include_widgets_config)
        self.assertFalse(options.include_widget_config_credentials)
        self.assertFalse(options.include_service_credentials)
        options.validate()

    def test_explicit_child_kept(self) -> None:
        """Test that an explicit credential switch is left for validation."""
        options = self._options("--no-widgets", "--widget-credentials")

        self.assertTrue(options.include_widget_config_credentials)
        with self.assertRaises(ValidationError):
            options.validate()

    def test_no_credentials(self) -> None:
        """Test that --no-credentials drops every credential category."""
        options = self._options("--secure-credentials", "--no-credentials")

        self.assertFalse(options.include_service_credentials)
        self.assertFalse(options.include_widget_config_credentials)
        self.assertFalse(options.include_widget_profile_credentials)
        self.assertFalse(options.include_widget_secure_credentials)
        self.assertTrue(options.include_widgets_config)

    def test_encrypt_reads_password_from_environment(self) -> None:
        """Test that --encrypt takes the password from the environment."""
        with patch.dict(os.environ, {BACKUP_PASSWORD_ENV: "env-password"}):
            options = self._options("--encrypt")

        self.assertTrue(options.encrypt_sensitive)
        self.assertEqual(options.password, "env-password")


class CommandTestCase(unittest.TestCase):
    """Runs commands against a temporary config file and data directory."""

    def setUp(self) -> None:
        """Create temporary directories and point hubvault at them."""
        self.temp_dir = tempfile.mkdtemp()
        self.root = Path(self.temp_dir)
        self.config_path = self.root / "config.yaml"
        self.data_dir = self.root / "data"
        self.backup_dir = self.root / "backups"
        self.env = patch.dict(
            os.environ,
            {
                "HUBVAULT_DATA_DIR": str(self.data_dir),
                "HUBVAULT_KDF_ITERATIONS": "100000",
            },
            clear=True,
        )
        self.env.start()
        set_output_mode(quiet=False, verbose=0)

    def tearDown(self) -> None:
        """Restore the environment and clean up."""
        self.env.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def open_stores(self) -> AppStores:
        return open_sqlite_stores(self.data_dir, InMemorySecureCredentialStore())

    def seed(self) -> AppStores:
        """Copy the sample state into the SQLite data directory."""
        sample = make_sample_stores()
        stores = self.open_stores()
        stores.settings.replace_all(sample.settings.get_all())
        stores.service_configs.replace_all(sample.service_configs.list())
        stores.widgets.replace_all(sample.widgets.list())
        stores.widget_profiles.replace_all(sample.widget_profiles.list())
        return stores

    def run_command(self, *argv: str) -> tuple[int, str]:
        args = create_parser().parse_args(["--config", str(self.config_path), *argv])
        stdout = io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(io.StringIO()):
            code = args.func(args)
        return code, stdout.getvalue()

    def write_backup(self, password: str | None = None) -> Path:
        """Write a backup of the sample state into the backup directory."""
        options = ExportOptions.defaults()
        if password is not None:
            options = options.with_encryption(password)
        manager = BackupManager(make_sample_stores(), kdf_iterations=TEST_ITERATIONS)
        result = manager.export_to_file(options, self.backup_dir)
        assert result.path is not None
        return result.path


class TestExportCommand(CommandTestCase):
    """Tests for the export command."""

    def test_export_to_stdout(self) -> None:
        """Test that --stdout prints the backup document."""
        self.seed()

        code, out = self.run_command("export", "--stdout", "--no-profiles")

        self.assertEqual(code, 0)
        document = json.loads(out)
        self.assertFalse(document["encrypted"])
        self.assertNotIn("widgetProfiles", document["appData"])
        self.assertNotIn("widgetProfileCredentials", document["appData"])
        self.assertEqual(document["appData"]["settings"], {"theme": "dark", "refreshInterval": 30})

    def test_export_to_file(self) -> None:
        """Test writing a backup file into the output directory."""
        self.seed()

        code, out = self.run_command("export", "--output", str(self.backup_dir))

        self.assertEqual(code, 0)
        files = list(self.backup_dir.glob("hubvault-backup-*.json"))
        self.assertEqual(len(files), 1)
        self.assertIn("WARNING: credentials are stored in plaintext", out)

    def test_encrypted_export(self) -> None:
        """Test that --encrypt hides credentials in the written file."""
        self.seed()

        with patch.dict(os.environ, {BACKUP_PASSWORD_ENV: "backup-pw"}):
            code, out = self.run_command("export", "--encrypt", "-o", str(self.backup_dir))

        self.assertEqual(code, 0)
        self.assertIn("Credentials: encrypted", out)
        (path,) = self.backup_dir.glob("*-encrypted.json")
        data = path.read_bytes()
        self.assertNotIn(b"sonarr-key", data)
        self.assertNotIn(b"hunter2", data)

    def test_output_path_is_file(self) -> None:
        """Test that a file as output directory fails cleanly."""
        self.seed()
        blocker = self.root / "blocker"
        blocker.write_text("")

        code, _ = self.run_command("export", "-o", str(blocker))

        self.assertEqual(code, 1)

    def test_invalid_switches_touch_nothing(self) -> None:
        """Test that conflicting switches fail before the data directory is opened."""
        with self.assertRaises(ValidationError):
            self.run_command("export", "--no-widgets", "--widget-credentials", "--stdout")

        self.assertFalse(self.data_dir.exists())


class TestInfoCommand(CommandTestCase):
    """Tests for the info command."""

    def test_info_json(self) -> None:
        """Test JSON output for an encrypted backup."""
        path = self.write_backup(password="backup-pw")

        code, out = self.run_command("info", str(path), "--json")

        self.assertEqual(code, 0)
        info = json.loads(out)
        self.assertTrue(info["encrypted"])
        self.assertEqual(info["manifest"]["formatVersion"], "2.0")
        self.assertEqual(info["categories"]["widgetsConfig"], 2)
        self.assertEqual(info["encryption"]["iterations"], TEST_ITERATIONS)
        self.assertNotIn("serviceCredentials", info["categories"])

    def test_info_text(self) -> None:
        """Test the human-readable summary."""
        path = self.write_backup()

        code, out = self.run_command("info", str(path))

        self.assertEqual(code, 0)
        self.assertIn("Encrypted: False", out)
        self.assertIn("- serviceConfigs (2)", out)

    def test_info_invalid_file(self) -> None:
        """Test that a non-backup file is reported."""
        path = self.root / "not-a-backup.json"
        path.write_text("[1, 2, 3]")

        code, _ = self.run_command("info", str(path))

        self.assertEqual(code, 1)


class TestRestoreCommand(CommandTestCase):
    """Tests for the restore command."""

    def test_restore_plaintext(self) -> None:
        """Test restoring a plaintext backup into an empty data directory."""
        path = self.write_backup()

        code, out = self.run_command("restore", str(path), "--force")

        self.assertEqual(code, 0)
        self.assertIn("Restore completed successfully!", out)
        restored = state_of(self.open_stores())
        expected = state_of(make_sample_stores())
        self.assertEqual(restored["serviceConfigs"], expected["serviceConfigs"])
        self.assertEqual(restored["widgets"], expected["widgets"])
        self.assertEqual(restored["profiles"], expected["profiles"])
        self.assertEqual(restored["settings"], expected["settings"])

    def test_restore_encrypted_with_env_password(self) -> None:
        """Test restoring an encrypted backup with the password in the environment."""
        path = self.write_backup(password="backup-pw")

        with patch.dict(os.environ, {BACKUP_PASSWORD_ENV: "backup-pw"}):
            code, _ = self.run_command("restore", str(path), "--force")

        self.assertEqual(code, 0)
        configs = self.open_stores().service_configs.list()
        self.assertEqual({c.id: c.api_key for c in configs}["svc-sonarr"], "sonarr-key")

    def test_verify_only_writes_nothing(self) -> None:
        """Test that --verify-only leaves the stores untouched."""
        path = self.write_backup()
        before = state_of(self.open_stores())

        code, out = self.run_command("restore", str(path), "--verify-only")

        self.assertEqual(code, 0)
        self.assertIn("Verification complete", out)
        self.assertEqual(state_of(self.open_stores()), before)

    def test_restore_cancelled(self) -> None:
        """Test that declining the confirmation prompt restores nothing."""
        path = self.write_backup()
        before = state_of(self.open_stores())

        with patch("builtins.input", return_value="n"):
            code, out = self.run_command("restore", str(path))

        self.assertEqual(code, 0)
        self.assertIn("Restore cancelled.", out)
        self.assertEqual(state_of(self.open_stores()), before)

    def test_restore_missing_file(self) -> None:
        """Test that a missing backup file is reported."""
        code, _ = self.run_command("restore", str(self.root / "missing.json"), "--force")

        self.assertEqual(code, 1)


class TestProfilesCommand(CommandTestCase):
    """Tests for the profiles command."""

    def test_list_json(self) -> None:
        """Test listing profiles as JSON."""
        self.seed()

        code, out = self.run_command("profiles", "list", "--json")

        self.assertEqual(code, 0)
        self.assertEqual([p["id"] for p in json.loads(out)], ["profile-work-000000000001"])

    def test_delete(self) -> None:
        """Test deleting one profile and an unknown one."""
        self.seed()

        code, _ = self.run_command("profiles", "delete", "profile-work-000000000001")
        self.assertEqual(code, 0)
        self.assertEqual(self.open_stores().widget_profiles.list(), [])

        code, _ = self.run_command("profiles", "delete", "profile-work-000000000001")
        self.assertEqual(code, 1)

    def test_delete_all(self) -> None:
        """Test deleting every profile with --force."""
        stores = self.seed()
        stores.widget_profiles.save("Second", [])

        code, out = self.run_command("profiles", "delete-all", "--force")

        self.assertEqual(code, 0)
        self.assertIn("Deleted 2 profiles.", out)
        self.assertEqual(self.open_stores().widget_profiles.list(), [])


class TestMainExitCodes(CommandTestCase):
    """Tests for exit codes returned by main()."""

    def run_main(self, *argv: str) -> int:
        argv_list = ["hubvault", "--config", str(self.config_path), *argv]
        with patch.object(sys, "argv", argv_list), patch.object(sys, "stdin", io.StringIO()):
            with redirect_stdout(io.StringIO()), redirect_stderr(io.StringIO()):
                with self.assertRaises(SystemExit) as cm:
                    main()
        return int(cm.exception.code or 0)

    def test_missing_password(self) -> None:
        """Test that an encrypted backup without a password exits with 3."""
        path = self.write_backup(password="backup-pw")

        self.assertEqual(self.run_main("restore", str(path), "--force"), 3)

    def test_wrong_password(self) -> None:
        """Test that a wrong password from the environment exits with 3."""
        path = self.write_backup(password="backup-pw")

        with patch.dict(os.environ, {BACKUP_PASSWORD_ENV: "not-it"}):
            self.assertEqual(self.run_main("restore", str(path), "--force"), 3)

        self.assertEqual(self.open_stores().widgets.list(), [])

    def test_configuration_error(self) -> None:
        """Test that an invalid config file exits with 2."""
        self.config_path.write_text("hubvault:\n  log_level: chatty\n")

        self.assertEqual(self.run_main("profiles", "list"), 2)

    def test_success(self) -> None:
        """Test that a successful command exits with 0."""
        self.seed()

        self.assertEqual(self.run_main("profiles", "list"), 0)


if __name__ == "__main__":
    unittest.main()
