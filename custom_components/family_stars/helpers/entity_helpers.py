# File: helpers/entity_helpers.py
"""Signal names and entity registry cleanup for Family Stars."""

from __future__ import annotations

from typing import TYPE_CHECKING

from homeassistant.helpers.entity_registry import (
    async_entries_for_config_entry,
    async_get as async_get_entity_registry,
)

from .. import const

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant


def get_event_signal(entry_id: str, suffix: str) -> str:
    """Return the dispatcher signal for one config entry.

    >>> get_event_signal("abc123", const.SIGNAL_SUFFIX_LEDGER_APPENDED)
    'family_stars_abc123_ledger_appended'
    """
    return f"{const.DOMAIN}_{entry_id}_{suffix}"


def build_unique_id(entry_id: str, item_id: str, suffix: str) -> str:
    """Return the unique_id for an entity bound to one member or family."""
    return f"{entry_id}_{item_id}{suffix}"


def _references_item(unique_id: str, entry_id: str, item_id: str) -> bool:
    """Match item ids on delimiters so local-1 never matches local-10."""
    if not unique_id.startswith(f"{entry_id}_"):
        return False
    return f"_{item_id}_" in unique_id or unique_id.endswith(f"_{item_id}")


def remove_entities_by_item_id(
    hass: HomeAssistant,
    entry_id: str,
    item_id: str,
) -> int:
    """Drop registry entries of a member that was deleted or re-keyed.

    Returns the number of entities removed.
    """
    ent_reg = async_get_entity_registry(hass)
    stale = [
        entity_entry.entity_id
        for entity_entry in async_entries_for_config_entry(ent_reg, entry_id)
        if _references_item(str(entity_entry.unique_id), entry_id, item_id)
    ]
    for entity_id in stale:
        ent_reg.async_remove(entity_id)

    if stale:
        const.LOGGER.debug(
            "DEBUG: Removed %d entities for item %s: %s",
            len(stale),
            item_id,
            stale,
        )
    return len(stale)
