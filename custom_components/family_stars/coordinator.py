# File: coordinator.py
"""Coordinator for the Family Stars integration.

Owns the local storage document (the reactive cache) and the managers that
mutate it. Entities subscribe through the DataUpdateCoordinator listener API;
every mutation is persisted with a debounced save and pushed to listeners.

There is no polling: the cache is filled by the first refresh (a full pull
from the remote store), then kept current by realtime pushes, mutation
responses and the sync_now service.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from homeassistant.helpers.update_coordinator import DataUpdateCoordinator

from . import const
from .managers import (
    FamilyManager,
    LedgerManager,
    RewardManager,
    ScheduleManager,
    SyncManager,
    TaskManager,
)

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant

    from .remote import RemoteDataService
    from .store import FamilyStarsStore


class FamilyStarsCoordinator(DataUpdateCoordinator[dict[str, Any]]):
    """Coordinator for one family.

    Manages data primarily using internal_id for entities. Locally created
    entities carry a ``local-`` id until the remote confirms them.
    """

    config_entry: ConfigEntry

    def __init__(
        self,
        hass: HomeAssistant,
        config_entry: ConfigEntry,
        store: FamilyStarsStore,
        remote: RemoteDataService,
    ) -> None:
        """Initialize the FamilyStarsCoordinator."""
        super().__init__(
            hass,
            const.LOGGER,
            config_entry=config_entry,
            name=f"{const.DOMAIN}{const.COORDINATOR_SUFFIX}",
            update_interval=None,
        )
        self.store = store
        self.remote = remote
        self.family_id: str = config_entry.data[const.CONF_FAMILY_ID]
        self._data: dict[str, Any] = store.data

        # Order matters: the other managers call into sync and ledger
        self.sync_manager = SyncManager(hass, self)
        self.ledger_manager = LedgerManager(hass, self)
        self.family_manager = FamilyManager(hass, self)
        self.task_manager = TaskManager(hass, self)
        self.reward_manager = RewardManager(hass, self)
        self.schedule_manager = ScheduleManager(hass, self)

    async def async_setup(self) -> None:
        """Set up every manager (signal subscriptions, derived totals)."""
        for manager in (
            self.sync_manager,
            self.ledger_manager,
            self.family_manager,
            self.task_manager,
            self.reward_manager,
            self.schedule_manager,
        ):
            await manager.async_setup()

    # -------------------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------------------

    async def _async_update_data(self) -> dict[str, Any]:
        """Reconcile with the remote store.

        A remote that cannot be reached is recorded by SyncManager and the
        cached document is served as is.
        """
        if not await self.sync_manager.async_full_pull():
            const.LOGGER.warning(
                "WARNING: Family %s is running from the local cache", self.family_id
            )
        self._persist()
        return self._data

    # -------------------------------------------------------------------------------------
    # Properties for Easy Access
    # -------------------------------------------------------------------------------------

    @property
    def members_data(self) -> dict[str, Any]:
        """Return the members data."""
        return self._data.setdefault(const.DATA_MEMBERS, {})

    @property
    def templates_data(self) -> dict[str, Any]:
        """Return the task templates data."""
        return self._data.setdefault(const.DATA_TEMPLATES, {})

    @property
    def instances_data(self) -> dict[str, Any]:
        """Return the task instances data."""
        return self._data.setdefault(const.DATA_INSTANCES, {})

    @property
    def ledger_data(self) -> dict[str, Any]:
        """Return the ledger entries."""
        return self._data.setdefault(const.DATA_LEDGER, {})

    @property
    def rewards_data(self) -> dict[str, Any]:
        """Return the rewards data."""
        return self._data.setdefault(const.DATA_REWARDS, {})

    @property
    def meta(self) -> dict[str, Any]:
        """Return the bookkeeping metadata."""
        return self._data.setdefault(const.DATA_META, {})

    # -------------------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------------------

    def _persist(self) -> None:
        """Schedule a debounced save of the document."""
        self.store.set_data(self._data)
        self.store.async_delay_save()

    def _persist_and_update(self) -> None:
        """Save and notify every listener (entities, dashboards)."""
        self._persist()
        self.async_set_updated_data(self._data)

    async def async_shutdown(self) -> None:
        """Cancel listeners and flush the document to disk."""
        await super().async_shutdown()
        self.store.set_data(self._data)
        await self.store.async_save()
