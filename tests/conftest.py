"""Shared fixtures for Family Stars tests."""

from collections.abc import Generator
from typing import Any
from unittest.mock import patch

import pytest
from homeassistant.core import HomeAssistant
from pytest_homeassistant_custom_component.common import MockConfigEntry

from custom_components.family_stars import const
from tests.helpers.fakes import FakeRemoteService

# pylint: disable=invalid-name
pytest_plugins = "pytest_homeassistant_custom_component"
# pylint: enable=invalid-name

TEST_FAMILY_ID = "family-test"
TEST_REMOTE_URL = "https://family-test.supabase.co"
TEST_API_KEY = "test-anon-key"
USER_NAMES = {
    "admin": "Admin User",
    "guardian1": "Parent One",
    "guardian2": "Parent Two",
    "dependent1": "Child One",
    "dependent2": "Child Two",
}


@pytest.fixture(autouse=True)
def auto_enable_custom_integrations(enable_custom_integrations: Any) -> Any:
    """Enable custom integrations in tests."""
    # pylint: disable=unused-argument
    yield


@pytest.fixture
async def mock_hass_users(hass: HomeAssistant) -> dict[str, Any]:
    """Create the Home Assistant users that scenario members link to.

    Only "admin" is in the admin group; guardians get their rights from the
    member role, not from Home Assistant.
    """
    users: dict[str, Any] = {}
    for key, name in USER_NAMES.items():
        group = "system-admin" if key == "admin" else "system-users"
        users[key] = await hass.auth.async_create_user(name, group_ids=[group])
    return users


@pytest.fixture
def fake_remote() -> FakeRemoteService:
    """Return an empty in-memory remote store shared by every entry."""
    return FakeRemoteService()


@pytest.fixture
def patch_remote(fake_remote: FakeRemoteService) -> Generator[FakeRemoteService]:
    """Make every config entry talk to the in-memory remote store."""
    with patch(
        "custom_components.family_stars.SupabaseRemoteService",
        return_value=fake_remote,
    ):
        yield fake_remote


@pytest.fixture
def mock_config_entry() -> MockConfigEntry:
    """Return a mock config entry (realtime off, so tests drive pushes)."""
    return MockConfigEntry(
        domain=const.DOMAIN,
        title=f"{const.FAMILY_STARS_TITLE} ({TEST_FAMILY_ID})",
        data={
            const.CONF_FAMILY_ID: TEST_FAMILY_ID,
            const.CONF_REMOTE_URL: TEST_REMOTE_URL,
            const.CONF_API_KEY: TEST_API_KEY,
        },
        options={
            const.CONF_SWEEP_INTERVAL: const.DEFAULT_SWEEP_INTERVAL,
            const.CONF_REALTIME_ENABLED: False,
        },
        entry_id="test_entry_id",
        unique_id=TEST_FAMILY_ID,
    )


@pytest.fixture
async def init_integration(
    hass: HomeAssistant,
    mock_config_entry: MockConfigEntry,
    patch_remote: FakeRemoteService,
) -> MockConfigEntry:
    """Set up Family Stars against an empty remote store."""
    # pylint: disable=unused-argument
    mock_config_entry.add_to_hass(hass)
    assert await hass.config_entries.async_setup(mock_config_entry.entry_id)
    await hass.async_block_till_done()
    return mock_config_entry
