"""Sample application state shared by the backup tests."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from hubvault.stores import (
    AppStores,
    ServiceConfig,
    Widget,
    WidgetProfile,
    WidgetSize,
    create_memory_stores,
)

# Low PBKDF2 cost so encrypted round trips stay fast
TEST_ITERATIONS = 1_000

CREATED = datetime(2024, 3, 1, 9, 30, tzinfo=UTC)


def sample_widgets() -> list[Widget]:
    return [
        Widget(
            id="w-clock",
            type="clock",
            title="Clock",
            order=0,
            size=WidgetSize.SMALL,
            config={"format": "24h"},
        ),
        Widget(
            id="youtube",
            type="youtube",
            title="YouTube",
            order=1,
            config={"channelId": "UC123", "apiKey": "yt-config-key"},
        ),
    ]


def make_sample_stores() -> AppStores:
    """Populate a fresh set of in-memory stores with one of everything."""
    stores = create_memory_stores()
    stores.settings.replace_all({"theme": "dark", "refreshInterval": 30})
    stores.service_configs.replace_all(
        [
            ServiceConfig(
                id="svc-sonarr",
                type="sonarr",
                name="Sonarr",
                url="http://sonarr.local:8989",
                api_key="sonarr-key",
                timeout=10,
                created_at=CREATED,
                updated_at=CREATED,
            ),
            ServiceConfig(
                id="svc-qbit",
                type="qbittorrent",
                name="qBittorrent",
                url="http://qbit.local",
                username="admin",
                password="hunter2",
                created_at=CREATED,
                updated_at=CREATED,
            ),
        ]
    )
    stores.widgets.replace_all(sample_widgets())
    stores.widget_profiles.replace_all(
        [
            WidgetProfile(
                id="profile-work-000000000001",
                name="Work",
                widgets=sample_widgets(),
                created_at=CREATED,
                updated_at=CREATED,
            )
        ]
    )
    stores.credentials.set("youtube", {"apiKey": "k1"})
    return stores


def state_of(stores: AppStores) -> dict[str, Any]:
    """Everything the stores hold, as comparable plain data."""
    return {
        "settings": stores.settings.get_all(),
        "serviceConfigs": [config.to_dict() for config in stores.service_configs.list()],
        "widgets": [widget.to_dict() for widget in stores.widgets.list()],
        "profiles": [profile.to_dict() for profile in stores.widget_profiles.list()],
        "credentials": {
            widget_id: stores.credentials.get(widget_id)
            for widget_id in stores.credentials.list_widget_ids()
        },
    }
