"""Shared plumbing for the Family Stars managers."""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from typing import TYPE_CHECKING, Any

from homeassistant.helpers.dispatcher import (
    async_dispatcher_connect,
    async_dispatcher_send,
)

from .. import const
from ..helpers.entity_helpers import get_event_signal

if TYPE_CHECKING:
    from collections.abc import Callable

    from homeassistant.core import HomeAssistant

    from ..coordinator import FamilyStarsCoordinator


class BaseManager(ABC):
    """Common base for task, ledger, reward, family, schedule and sync managers.

    Managers talk to each other through dispatcher signals scoped to the
    config entry, so two family devices in one Home Assistant never see each
    other's events. Subscriptions made with listen() are dropped when the
    entry unloads.

    State changes a user can see go through coordinator._persist_and_update();
    bookkeeping such as meta timestamps only needs coordinator._persist().
    """

    def __init__(self, hass: HomeAssistant, coordinator: FamilyStarsCoordinator) -> None:
        """Bind the manager to its coordinator and config entry."""
        self.hass = hass
        self.coordinator = coordinator
        self.entry_id = coordinator.config_entry.entry_id
        self._keyed_locks: dict[str, asyncio.Lock] = {}

    def emit(self, suffix: str, **payload: Any) -> None:
        """Send a payload dict on this entry's signal for ``suffix``."""
        const.LOGGER.debug(
            "DEBUG: %s emits '%s' (%s) on entry %s",
            self.__class__.__name__,
            suffix,
            ", ".join(sorted(payload)),
            self.entry_id,
        )
        async_dispatcher_send(
            self.hass, get_event_signal(self.entry_id, suffix), payload
        )

    def listen(self, suffix: str, handler: Callable[[dict[str, Any]], Any]) -> None:
        """Call ``handler`` with the payload dict whenever ``suffix`` is emitted.

        Synchronous handlers should be decorated with ``@callback``.
        """
        self.coordinator.config_entry.async_on_unload(
            async_dispatcher_connect(
                self.hass, get_event_signal(self.entry_id, suffix), handler
            )
        )

    def keyed_lock(self, *parts: str) -> asyncio.Lock:
        """Return the lock serialising work on one key, e.g. ("redeem", reward_id)."""
        key = ":".join(parts)
        lock = self._keyed_locks.get(key)
        if lock is None:
            lock = self._keyed_locks[key] = asyncio.Lock()
        return lock

    @abstractmethod
    async def async_setup(self) -> None:
        """Subscribe to signals; runs once while the coordinator starts."""
