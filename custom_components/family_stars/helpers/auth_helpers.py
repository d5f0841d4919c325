# File: helpers/auth_helpers.py
"""Authorization helper functions for Family Stars.

Functions that check Home Assistant users against family members.
All functions here require a `hass` object for auth system access.

Rules:
  - Calls without a user (automations, scripts) act as the named member
  - Admin users may act as any member
  - Other users may only act as the member linked to them (ha_user_id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from homeassistant.config_entries import ConfigEntryState

from .. import const

if TYPE_CHECKING:
    from homeassistant.auth.models import User
    from homeassistant.core import HomeAssistant

    from ..coordinator import FamilyStarsCoordinator


# ==============================================================================
# Coordinator Access
# ==============================================================================


def get_family_stars_coordinator(
    hass: HomeAssistant, entry_id: str | None = None
) -> FamilyStarsCoordinator | None:
    """Retrieve a coordinator from config entry runtime_data.

    Args:
        hass: HomeAssistant instance
        entry_id: Specific entry to use; the first loaded entry when omitted

    Returns:
        FamilyStarsCoordinator if found and loaded, None otherwise
    """
    for entry in hass.config_entries.async_entries(const.DOMAIN):
        if entry_id is not None and entry.entry_id != entry_id:
            continue
        if entry.state is ConfigEntryState.LOADED:
            return entry.runtime_data
    return None


# ==============================================================================
# Member Lookup
# ==============================================================================


def get_member_id_for_user(
    coordinator: FamilyStarsCoordinator, user_id: str | None
) -> str | None:
    """Return the member linked to a Home Assistant user, if any."""
    if not user_id:
        return None
    for member_id, member in coordinator.members_data.items():
        if member.get(const.DATA_MEMBER_HA_USER_ID) == user_id:
            return member_id
    return None


# ==============================================================================
# Authorization Checks
# ==============================================================================


async def is_user_authorized_for_member(
    hass: HomeAssistant,
    coordinator: FamilyStarsCoordinator,
    user_id: str | None,
    member_id: str,
) -> bool:
    """Check if a user may act as a specific member.

    Args:
        hass: HomeAssistant instance
        coordinator: Coordinator holding the members
        user_id: User ID from the service call context (None for automations)
        member_id: The member the call wants to act as

    Returns:
        True if authorized, False otherwise
    """
    if not user_id:
        return True

    user: User | None = await hass.auth.async_get_user(user_id)
    if not user:
        const.LOGGER.warning("WARNING: Authorization: Invalid user ID '%s'", user_id)
        return False

    if user.is_admin:
        return True

    if get_member_id_for_user(coordinator, user.id) == member_id:
        return True

    const.LOGGER.warning(
        "WARNING: Authorization: Non-admin user '%s' attempted to act as member '%s'",
        user.name,
        coordinator.members_data.get(member_id, {}).get(const.DATA_MEMBER_NAME),
    )
    return False
