"""Diagnostics support for Family Stars integration.

Returns the raw cached document (identical to the storage file) plus the
config entry with the API key redacted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from homeassistant.components.diagnostics import async_redact_data

from . import const

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant

    from . import FamilyStarsConfigEntry

TO_REDACT = {const.CONF_API_KEY}


async def async_get_config_entry_diagnostics(
    hass: HomeAssistant, entry: FamilyStarsConfigEntry
) -> dict[str, Any]:
    """Return diagnostics for a config entry."""
    coordinator = entry.runtime_data
    return {
        "entry": async_redact_data(
            {"data": dict(entry.data), "options": dict(entry.options)}, TO_REDACT
        ),
        "storage": coordinator.store.data,
    }
