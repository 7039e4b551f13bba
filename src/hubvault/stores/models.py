"""
Data models for application state.

This module defines the dataclasses used to represent service connection
profiles, dashboard widgets and saved widget layouts.

Serialization Decisions:
    - Dictionaries use camelCase keys so documents stay readable by other
      clients of the same backup format
    - Timestamps are ISO format strings in UTC
    - Widget configs are deep-copied on the way in and out so a stored
      snapshot is never aliased to a live layout
"""

from __future__ import annotations

import copy
import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(UTC)


def _parse_timestamp(value: Any, field_name: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        raise ValueError(f"Missing or invalid timestamp: {field_name}")
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise ValueError(f"Invalid timestamp for {field_name}: {value!r}") from e


def _require_str(data: dict[str, Any], key: str, record: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"{record} is missing required field '{key}'")
    return value


# JSON names of the ServiceConfig fields that hold secrets
SERVICE_SECRET_FIELDS = ("apiKey", "username", "password")


class WidgetSize(str, Enum):
    """Size slot a widget occupies on the dashboard."""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


@dataclass
class ServiceConfig:
    """
    Connection profile for one external service.

    Attributes:
        id: Unique identifier for the connection.
        type: Service kind (e.g., "sonarr", "qbittorrent").
        name: Display name.
        url: Base URL of the service.
        api_key: API key, if the service uses one.
        username: Login name, if the service uses basic auth.
        password: Login password.
        proxy_url: Optional proxy to route requests through.
        timeout: Request timeout in seconds.
        enabled: Whether the connection is active.
        created_at: When the profile was created (UTC).
        updated_at: When the profile was last modified (UTC).
    """

    id: str
    type: str
    name: str
    url: str
    api_key: str | None = None
    username: str | None = None
    password: str | None = None
    proxy_url: str | None = None
    timeout: float | None = None
    enabled: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, including secret fields that are set."""
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "url": self.url,
            "enabled": self.enabled,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.proxy_url is not None:
            data["proxyUrl"] = self.proxy_url
        if self.timeout is not None:
            data["timeout"] = self.timeout
        for key, value in self.secrets().items():
            data[key] = value
        return data

    def secrets(self) -> dict[str, str]:
        """Return the secret fields that are set, keyed by their JSON names."""
        values = {
            "apiKey": self.api_key,
            "username": self.username,
            "password": self.password,
        }
        return {key: values[key] for key in SERVICE_SECRET_FIELDS if values[key] is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServiceConfig:
        """
        Create from dictionary.

        Raises:
            ValueError: If a required field is missing or malformed.
        """
        if not isinstance(data, dict):
            raise ValueError("Service config must be an object")
        enabled = data.get("enabled", True)
        if not isinstance(enabled, bool):
            raise ValueError("Service config field 'enabled' must be a boolean")
        timeout = data.get("timeout")
        if timeout is not None and not isinstance(timeout, (int, float)):
            raise ValueError("Service config field 'timeout' must be a number")
        for key in (*SERVICE_SECRET_FIELDS, "proxyUrl"):
            if data.get(key) is not None and not isinstance(data[key], str):
                raise ValueError(f"Service config field '{key}' must be a string")
        return cls(
            id=_require_str(data, "id", "Service config"),
            type=_require_str(data, "type", "Service config"),
            name=_require_str(data, "name", "Service config"),
            url=_require_str(data, "url", "Service config"),
            api_key=data.get("apiKey"),
            username=data.get("username"),
            password=data.get("password"),
            proxy_url=data.get("proxyUrl"),
            timeout=timeout,
            enabled=enabled,
            created_at=_parse_timestamp(data.get("createdAt"), "createdAt"),
            updated_at=_parse_timestamp(data.get("updatedAt"), "updatedAt"),
        )


@dataclass
class Widget:
    """
    A single dashboard widget.

    The config mapping is free-form and may hold credential-like keys
    (API keys, tokens) alongside display options.
    """

    id: str
    type: str
    title: str
    enabled: bool = True
    order: int = 0
    size: WidgetSize = WidgetSize.MEDIUM
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "enabled": self.enabled,
            "order": self.order,
            "size": self.size.value,
            "config": copy.deepcopy(self.config),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Widget:
        """
        Create from dictionary.

        Raises:
            ValueError: If a required field is missing or malformed.
        """
        if not isinstance(data, dict):
            raise ValueError("Widget must be an object")
        enabled = data.get("enabled")
        if not isinstance(enabled, bool):
            raise ValueError("Widget field 'enabled' must be a boolean")
        order = data.get("order")
        if not isinstance(order, int) or isinstance(order, bool):
            raise ValueError("Widget field 'order' must be an integer")
        try:
            size = WidgetSize(data.get("size"))
        except ValueError as e:
            raise ValueError(f"Invalid widget size: {data.get('size')!r}") from e
        config = data.get("config") or {}
        if not isinstance(config, dict):
            raise ValueError("Widget field 'config' must be an object")
        return cls(
            id=_require_str(data, "id", "Widget"),
            type=_require_str(data, "type", "Widget"),
            title=_require_str(data, "title", "Widget"),
            enabled=enabled,
            order=order,
            size=size,
            config=copy.deepcopy(config),
        )


@dataclass
class WidgetProfile:
    """
    A named snapshot of a full widget layout.

    Profiles hold their own copy of the widgets; editing the live layout or
    another profile never changes this one.
    """

    id: str
    name: str
    widgets: list[Widget] = field(default_factory=list)
    description: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "widgets": [widget.to_dict() for widget in self.widgets],
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.description is not None:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WidgetProfile:
        """
        Create from dictionary.

        Raises:
            ValueError: If the profile or any of its widgets is invalid.
        """
        if not isinstance(data, dict):
            raise ValueError("Widget profile must be an object")
        widgets = data.get("widgets")
        if not isinstance(widgets, list):
            raise ValueError("Widget profile field 'widgets' must be a list")
        description = data.get("description")
        if description is not None and not isinstance(description, str):
            raise ValueError("Widget profile field 'description' must be a string")
        created_at = _parse_timestamp(data.get("createdAt"), "createdAt")
        return cls(
            id=_require_str(data, "id", "Widget profile"),
            name=_require_str(data, "name", "Widget profile"),
            widgets=[Widget.from_dict(item) for item in widgets],
            description=description,
            created_at=created_at,
            updated_at=_parse_timestamp(
                data.get("updatedAt") or data.get("createdAt"), "updatedAt"
            ),
        )


def copy_widgets(widgets: list[Widget]) -> list[Widget]:
    """Deep copy a widget list so the result shares no state with the input."""
    return [copy.deepcopy(widget) for widget in widgets]


def new_profile_id(name: str) -> str:
    """Generate a profile id of the form ``profile-<slug>-<random>``."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")[:30]
    return f"profile-{slug or 'unnamed'}-{uuid.uuid4().hex[:12]}"
