# File: sensor.py
"""Sensors for the Family Stars integration.

- FamilyMemberStarsSensor: one per member, the visible star total
  (floored at zero) with the true ledger sum as an attribute
- FamilyPendingApprovalsSensor: one per family, instances waiting for a
  guardian decision

Members that appear later (added locally, pushed from another device, or
re-keyed after promotion) get their sensor added by a coordinator listener.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from homeassistant.components.sensor import SensorEntity, SensorStateClass
from homeassistant.core import callback

from . import const
from .entity import FamilyStarsCoordinatorEntity
from .helpers.entity_helpers import build_unique_id

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant
    from homeassistant.helpers.entity_platform import AddEntitiesCallback

    from . import FamilyStarsConfigEntry
    from .coordinator import FamilyStarsCoordinator


async def async_setup_entry(
    hass: HomeAssistant,
    entry: FamilyStarsConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up sensors for Family Stars integration."""
    coordinator = entry.runtime_data
    known_members: set[str] = set()

    @callback
    def _async_add_member_sensors() -> None:
        current = set(coordinator.members_data)
        new_members = current - known_members
        known_members.intersection_update(current)
        if not new_members:
            return
        known_members.update(new_members)
        async_add_entities(
            FamilyMemberStarsSensor(coordinator, member_id)
            for member_id in sorted(new_members)
        )
        const.LOGGER.debug("DEBUG: Added star sensors for %s", sorted(new_members))

    async_add_entities([FamilyPendingApprovalsSensor(coordinator)])
    _async_add_member_sensors()
    entry.async_on_unload(coordinator.async_add_listener(_async_add_member_sensors))


class FamilyMemberStarsSensor(FamilyStarsCoordinatorEntity, SensorEntity):
    """Sensor for a member's visible star total."""

    _attr_translation_key = "member_stars"
    _attr_state_class = SensorStateClass.MEASUREMENT
    _attr_native_unit_of_measurement = const.UNIT_STARS
    _attr_icon = const.DEFAULT_STARS_ICON

    def __init__(self, coordinator: FamilyStarsCoordinator, member_id: str) -> None:
        """Initialize the sensor for one member id."""
        super().__init__(coordinator)
        self._member_id = member_id
        self._attr_unique_id = build_unique_id(
            coordinator.config_entry.entry_id,
            member_id,
            const.SENSOR_SUFFIX_MEMBER_STARS,
        )
        member = coordinator.members_data.get(member_id, {})
        self._attr_translation_placeholders = {
            "member_name": str(member.get(const.DATA_MEMBER_NAME, member_id))
        }

    @property
    def available(self) -> bool:
        """Unavailable once the member is gone (deleted or re-keyed)."""
        return super().available and self._member_id in self.coordinator.members_data

    @property
    def native_value(self) -> int:
        """Return the display total (never negative)."""
        return self.coordinator.ledger_manager.display_total(self._member_id)

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        """Expose the true total, role and entry count."""
        member = self.coordinator.members_data.get(self._member_id, {})
        return {
            const.ATTR_RAW_TOTAL: self.coordinator.ledger_manager.total_for(
                self._member_id
            ),
            const.ATTR_ROLE: member.get(const.DATA_MEMBER_ROLE),
            const.ATTR_LEDGER_ENTRIES: len(
                self.coordinator.ledger_manager.entries_for(self._member_id)
            ),
        }


class FamilyPendingApprovalsSensor(FamilyStarsCoordinatorEntity, SensorEntity):
    """Sensor counting instances that wait for a guardian decision."""

    _attr_translation_key = "pending_approvals"
    _attr_icon = const.DEFAULT_PENDING_ICON

    def __init__(self, coordinator: FamilyStarsCoordinator) -> None:
        """Initialize the sensor."""
        super().__init__(coordinator)
        self._attr_unique_id = build_unique_id(
            coordinator.config_entry.entry_id,
            coordinator.family_id,
            const.SENSOR_SUFFIX_PENDING_APPROVALS,
        )

    @property
    def native_value(self) -> int:
        """Return the number of pending approvals."""
        return len(self.coordinator.task_manager.pending_approvals())

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        """List the pending instances and the last sync error."""
        members = self.coordinator.members_data
        return {
            const.ATTR_PENDING_INSTANCES: [
                {
                    "instance_id": instance[const.DATA_INTERNAL_ID],
                    "assignee": members.get(
                        instance.get(const.DATA_INSTANCE_ASSIGNEE_ID), {}
                    ).get(const.DATA_MEMBER_NAME),
                    "requested_at": instance.get(
                        const.DATA_INSTANCE_COMPLETION_REQUESTED_AT
                    ),
                }
                for instance in self.coordinator.task_manager.pending_approvals()
            ],
            const.ATTR_LAST_SYNC_ERROR: self.coordinator.meta.get(
                const.DATA_META_LAST_SYNC_ERROR
            ),
        }
