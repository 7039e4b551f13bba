"""Export options: which categories a backup includes and how it is protected."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace

from hubvault.backup.errors import ValidationError
from hubvault.config.settings import ExportDefaults


@dataclass(repr=False)
class ExportOptions:
    """
    Caller-supplied configuration for one export.

    Each ``include_*`` flag selects one category. The credential flags only
    make sense together with the category they belong to (service configs,
    widget layout, widget profiles).

    Attributes:
        encrypt_sensitive: Encrypt every sensitive category with ``password``.
        password: Backup password. Required when encrypting.
    """

    include_settings: bool = True
    include_service_configs: bool = True
    include_service_credentials: bool = True
    include_widgets_config: bool = True
    include_widget_config_credentials: bool = True
    include_widget_profiles: bool = True
    include_widget_profile_credentials: bool = True
    include_widget_secure_credentials: bool = False
    encrypt_sensitive: bool = False
    password: str | None = None

    @classmethod
    def defaults(cls) -> ExportOptions:
        """Everything except out-of-band widget credentials, unencrypted."""
        return cls()

    @classmethod
    def none(cls) -> ExportOptions:
        """Options with every category switched off."""
        return cls(**{f.name: False for f in fields(cls) if f.name.startswith("include_")})

    @classmethod
    def from_defaults(cls, defaults: ExportDefaults) -> ExportOptions:
        """Build options from the ``backup.default_export`` config section."""
        return cls(
            **{f"include_{f.name}": getattr(defaults, f.name) for f in fields(defaults)}
        )

    def with_encryption(self, password: str) -> ExportOptions:
        """Return a copy that encrypts sensitive categories with ``password``."""
        return replace(self, encrypt_sensitive=True, password=password)

    def validate(self) -> None:
        """
        Check the options before any store is read.

        Raises:
            ValidationError: If encryption is requested without a password,
                or a credential flag is set without its category.
        """
        if self.encrypt_sensitive and not self.password:
            raise ValidationError("A non-empty password is required for an encrypted backup")

        for credential_flag, parent_flag in (
            ("include_service_credentials", "include_service_configs"),
            ("include_widget_config_credentials", "include_widgets_config"),
            ("include_widget_profile_credentials", "include_widget_profiles"),
        ):
            if getattr(self, credential_flag) and not getattr(self, parent_flag):
                raise ValidationError(f"{credential_flag} requires {parent_flag}")

    def __repr__(self) -> str:
        flags = ", ".join(
            f"{f.name}={getattr(self, f.name)!r}" for f in fields(self) if f.name != "password"
        )
        return f"ExportOptions({flags}, password={'***' if self.password else None})"
