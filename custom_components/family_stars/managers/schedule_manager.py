"""Schedule Manager - Wall-clock driven task maintenance.

This manager is the timer owner for the integration:
- Expiration sweep every ``sweep_interval`` seconds (and once at start)
- Recurring regeneration at local midnight (and once at start)
- Regeneration when a recurring template is created on this device

Both jobs are idempotent. Regeneration relies on the per-day existence
check in ScheduleEngine; concurrent triggers on this device are serialized
with a lock. Duplicates created by several devices at once are tolerated.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

from homeassistant.core import callback
from homeassistant.helpers.event import (
    async_track_time_change,
    async_track_time_interval,
)

from .. import const
from ..engines.schedule_engine import ScheduleEngine
from ..utils.dt_utils import dt_now_utc, local_date_of
from .base_manager import BaseManager

if TYPE_CHECKING:
    from datetime import datetime


class ScheduleManager(BaseManager):
    """Manager for expiration sweeps and recurring regeneration."""

    async def async_setup(self) -> None:
        """Subscribe to template changes.

        Timers are started separately by async_start() once the platforms are
        set up, so the first sweep already updates entities.
        """
        self.listen(const.SIGNAL_SUFFIX_TEMPLATE_CHANGED, self._on_template_changed)

    async def async_start(self) -> None:
        """Run both jobs once, then register the timers."""
        await self.async_sweep()
        await self.async_regenerate()

        interval = self.coordinator.config_entry.options.get(
            const.CONF_SWEEP_INTERVAL, const.DEFAULT_SWEEP_INTERVAL
        )
        entry = self.coordinator.config_entry
        entry.async_on_unload(
            async_track_time_interval(
                self.hass,
                self._async_on_sweep_tick,
                timedelta(seconds=interval),
                name=f"{const.DOMAIN} expiration sweep",
            )
        )
        entry.async_on_unload(
            async_track_time_change(
                self.hass,
                self._async_on_midnight_tick,
                **const.DEFAULT_DAILY_REGENERATION_TIME,
            )
        )
        const.LOGGER.debug(
            "DEBUG: ScheduleManager timers registered for entry %s (sweep every %ss)",
            self.entry_id,
            interval,
        )

    # =========================================================================
    # Timer and signal handlers
    # =========================================================================

    async def _async_on_sweep_tick(self, now: datetime) -> None:
        await self.async_sweep(now)

    async def _async_on_midnight_tick(self, now: datetime) -> None:
        const.LOGGER.debug("DEBUG: ScheduleManager: midnight regeneration triggered")
        await self.async_regenerate(now)

    @callback
    def _on_template_changed(self, payload: dict[str, Any]) -> None:
        """Regenerate when a recurring template is created or edited here."""
        if payload.get("source") != "local":
            return
        template = self.coordinator.templates_data.get(payload.get("template_id", ""))
        if template is None or not ScheduleEngine.is_recurring_active(template):
            return
        self.hass.async_create_task(
            self.async_regenerate(), name=f"{const.DOMAIN} recurring regeneration"
        )

    # =========================================================================
    # Jobs
    # =========================================================================

    async def async_sweep(self, now: datetime | None = None) -> list[str]:
        """Expire every instance whose expiration guard holds."""
        return await self.coordinator.task_manager.async_expire_due(
            now or dt_now_utc()
        )

    async def async_regenerate(self, now: datetime | None = None) -> list[str]:
        """Create today's instances for recurring templates.

        Returns:
            Ids of the created instances
        """
        async with self.keyed_lock("regenerate"):
            now = now or dt_now_utc()
            planned = ScheduleEngine.plan_recurring(
                self.coordinator.templates_data,
                self.coordinator.members_data,
                self.coordinator.instances_data,
                now,
            )

            created: list[str] = []
            for template_id, member_id in planned:
                instance_id = await self.coordinator.task_manager.async_assign(
                    template_id, member_id, now=now
                )
                if instance_id is not None:
                    created.append(instance_id)

            self.coordinator.meta[const.DATA_META_LAST_REGENERATION_DAY] = (
                local_date_of(now).isoformat()
            )
            self.coordinator._persist()

            if created:
                const.LOGGER.info(
                    "INFO: Recurring regeneration created %d instance(s)", len(created)
                )
            else:
                const.LOGGER.debug("DEBUG: Recurring regeneration: nothing to create")
            return created
