"""Base entity classes for Family Stars integration."""

from __future__ import annotations

from homeassistant.helpers.device_registry import DeviceEntryType, DeviceInfo
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from . import const
from .coordinator import FamilyStarsCoordinator


class FamilyStarsCoordinatorEntity(CoordinatorEntity[FamilyStarsCoordinator]):
    """Base entity class for Family Stars sensors with typed coordinator access.

    All entities of one config entry hang off a single family device.
    """

    _attr_has_entity_name = True

    def __init__(self, coordinator: FamilyStarsCoordinator) -> None:
        """Initialize the entity and attach it to the family device."""
        super().__init__(coordinator)
        entry = coordinator.config_entry
        self._attr_device_info = DeviceInfo(
            identifiers={(const.DOMAIN, entry.entry_id)},
            name=entry.title or const.FAMILY_STARS_TITLE,
            manufacturer=const.FAMILY_STARS_TITLE,
            entry_type=DeviceEntryType.SERVICE,
        )
