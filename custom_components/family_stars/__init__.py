# File: __init__.py
"""Initialization file for the Family Stars integration.

Handles setting up the integration, including loading config entries,
initializing the local cache, connecting the remote store and preparing the
coordinator.

Key Features:
- Config entry setup, unload and removal.
- Offline start: an unreachable remote store never fails setup.
- Timers and the realtime subscription are torn down with the entry.
"""

from __future__ import annotations

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.util import dt as dt_util

from . import const
from .coordinator import FamilyStarsCoordinator
from .remote import SupabaseRemoteService
from .services import async_setup_services, async_unload_services
from .store import FamilyStarsStore
from .utils.dt_utils import set_default_timezone

type FamilyStarsConfigEntry = ConfigEntry[FamilyStarsCoordinator]


async def async_setup_entry(hass: HomeAssistant, entry: FamilyStarsConfigEntry) -> bool:
    """Set up the integration from a config entry."""
    const.LOGGER.info("INFO: Starting setup for Family Stars entry: %s", entry.entry_id)

    # Must be done before any engine computes a local day boundary
    set_default_timezone(dt_util.get_default_time_zone())

    store = FamilyStarsStore(hass, FamilyStarsStore.storage_key_for(entry.entry_id))
    await store.async_initialize()

    remote = SupabaseRemoteService(
        hass, entry.data[const.CONF_REMOTE_URL], entry.data[const.CONF_API_KEY]
    )
    coordinator = FamilyStarsCoordinator(hass, entry, store, remote)
    await coordinator.async_setup()

    # Full pull; failures are recorded and the cache is served
    await coordinator.async_config_entry_first_refresh()

    entry.runtime_data = coordinator

    async_setup_services(hass)

    await hass.config_entries.async_forward_entry_setups(entry, const.PLATFORMS)

    await coordinator.schedule_manager.async_start()
    await coordinator.sync_manager.async_start_realtime()

    entry.async_on_unload(entry.add_update_listener(_async_update_listener))

    const.LOGGER.info("INFO: Family Stars setup complete for entry: %s", entry.entry_id)
    return True


async def _async_update_listener(
    hass: HomeAssistant, entry: FamilyStarsConfigEntry
) -> None:
    """Reload the entry when options change (sweep interval, realtime)."""
    const.LOGGER.debug("DEBUG: Options updated, reloading entry %s", entry.entry_id)
    await hass.config_entries.async_reload(entry.entry_id)


async def async_unload_entry(hass: HomeAssistant, entry: FamilyStarsConfigEntry) -> bool:
    """Unload a config entry."""
    const.LOGGER.info("INFO: Unloading Family Stars entry: %s", entry.entry_id)

    unload_ok = await hass.config_entries.async_unload_platforms(entry, const.PLATFORMS)

    if unload_ok:
        await entry.runtime_data.async_shutdown()

        other_loaded = [
            other
            for other in hass.config_entries.async_loaded_entries(const.DOMAIN)
            if other.entry_id != entry.entry_id
        ]
        if not other_loaded:
            await async_unload_services(hass)

    return unload_ok


async def async_remove_entry(hass: HomeAssistant, entry: FamilyStarsConfigEntry) -> None:
    """Handle removal of a config entry: delete its local cache."""
    const.LOGGER.info("INFO: Removing Family Stars entry: %s", entry.entry_id)

    store = FamilyStarsStore(hass, FamilyStarsStore.storage_key_for(entry.entry_id))
    await store.async_delete_storage()

    const.LOGGER.info("INFO: Family Stars entry data cleared: %s", entry.entry_id)
