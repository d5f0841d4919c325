"""Family Manager - Members and task templates.

This manager handles the family roster and the template catalogue:
- Member creation, updates and removal (role is immutable; ha_user_id stays local)
- Template creation, updates and archiving (templates are never deleted)
- Name/title lookups used by the service layer
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from homeassistant.exceptions import HomeAssistantError

from .. import const, data_builders as db
from ..helpers.entity_helpers import remove_entities_by_item_id
from .base_manager import BaseManager

if TYPE_CHECKING:
    from ..type_defs import MemberData, TemplateData


class FamilyManager(BaseManager):
    """Manager for members and task templates.

    Creation is optimistic: the entity is stored under a local id, then
    mirrored through SyncManager, which promotes it to the remote id.
    """

    async def async_setup(self) -> None:
        """Set up the FamilyManager."""
        const.LOGGER.debug(
            "DEBUG: FamilyManager initialized for entry %s (%d members, %d templates)",
            self.entry_id,
            len(self.coordinator.members_data),
            len(self.coordinator.templates_data),
        )

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def find_member_by_name(self, name: str) -> str | None:
        """Return the id of the member with this name (case-insensitive)."""
        folded = name.strip().casefold()
        for member_id, member in self.coordinator.members_data.items():
            if str(member.get(const.DATA_MEMBER_NAME, "")).strip().casefold() == folded:
                return member_id
        return None

    def find_template_by_title(self, title: str) -> str | None:
        """Return a template id by title, or by id.

        Active templates win over archived ones with the same title.
        """
        if title in self.coordinator.templates_data:
            return title
        folded = title.strip().casefold()
        archived_match: str | None = None
        for template_id, template in self.coordinator.templates_data.items():
            if str(template.get(const.DATA_TEMPLATE_TITLE, "")).strip().casefold() != folded:
                continue
            if not template.get(const.DATA_TEMPLATE_ARCHIVED, False):
                return template_id
            archived_match = archived_match or template_id
        return archived_match

    def guardians(self) -> list[str]:
        """Return the ids of every guardian."""
        return [
            member_id
            for member_id, member in self.coordinator.members_data.items()
            if member.get(const.DATA_MEMBER_ROLE) == const.ROLE_GUARDIAN
        ]

    def dependents(self) -> list[str]:
        """Return the ids of every dependent."""
        return [
            member_id
            for member_id, member in self.coordinator.members_data.items()
            if member.get(const.DATA_MEMBER_ROLE) == const.ROLE_DEPENDENT
        ]

    # -------------------------------------------------------------------------
    # Member CRUD
    # -------------------------------------------------------------------------

    async def async_add_member(self, user_input: dict[str, Any]) -> str:
        """Create a member and mirror it.

        Args:
            user_input: DATA_MEMBER_* keyed values (name, role, age,
                capabilities, ha_user_id)

        Returns:
            The member id (the remote id once the insert is confirmed)

        Raises:
            EntityValidationError: invalid fields or a duplicate name + role
        """
        member = db.build_member(user_input)
        errors = db.validate_member_name_unique(
            member[const.DATA_MEMBER_NAME],
            member[const.DATA_MEMBER_ROLE],
            self.coordinator.members_data,
        )
        if errors:
            field, translation_key = next(iter(errors.items()))
            raise db.EntityValidationError(
                field, translation_key, {"name": member[const.DATA_MEMBER_NAME]}
            )

        member[const.DATA_SYNC_STATE] = const.SYNC_STATE_PENDING  # type: ignore[typeddict-unknown-key]
        local_id = member[const.DATA_INTERNAL_ID]  # type: ignore[literal-required]
        self.coordinator.members_data[local_id] = member

        const.LOGGER.info(
            "INFO: Added %s '%s' (ID: %s)",
            member[const.DATA_MEMBER_ROLE],
            member[const.DATA_MEMBER_NAME],
            local_id,
        )
        self.emit(const.SIGNAL_SUFFIX_MEMBER_CHANGED, member_id=local_id, source="local")
        self.coordinator._persist_and_update()

        remote_id = await self.coordinator.sync_manager.async_push_insert(
            const.DATA_MEMBERS, local_id
        )
        return remote_id or local_id

    async def async_update_member(self, member_id: str, updates: dict[str, Any]) -> None:
        """Update a member's fields and mirror the change.

        ``ha_user_id`` stays local; everything else is mirrored without a
        status guard (members have no status).

        Raises:
            HomeAssistantError: unknown member
            EntityValidationError: invalid fields or a role change
        """
        member_id = self.coordinator.sync_manager.resolve_id(
            const.DATA_MEMBERS, member_id
        )
        existing = self.coordinator.members_data.get(member_id)
        if existing is None:
            raise HomeAssistantError(
                translation_domain=const.DOMAIN,
                translation_key=const.TRANS_KEY_ERROR_MEMBER_NOT_FOUND,
                translation_placeholders={"name": member_id},
            )

        updated: dict[str, Any] = dict(existing)
        updated.update(db.build_member(updates, existing))
        others = {
            other_id: other
            for other_id, other in self.coordinator.members_data.items()
            if other_id != member_id
        }
        if errors := db.validate_member_name_unique(
            updated[const.DATA_MEMBER_NAME], updated[const.DATA_MEMBER_ROLE], others
        ):
            field, translation_key = next(iter(errors.items()))
            raise db.EntityValidationError(
                field, translation_key, {"name": updated[const.DATA_MEMBER_NAME]}
            )
        self.coordinator.members_data[member_id] = updated  # type: ignore[assignment]

        const.LOGGER.info(
            "INFO: Updated member '%s' (ID: %s)",
            updated.get(const.DATA_MEMBER_NAME),
            member_id,
        )
        self.emit(const.SIGNAL_SUFFIX_MEMBER_CHANGED, member_id=member_id, source="local")
        self.coordinator._persist_and_update()

        remote_fields = {
            key: value
            for key, value in updates.items()
            if key != const.DATA_MEMBER_HA_USER_ID
        }
        if remote_fields:
            await self.coordinator.sync_manager.async_push_update(
                const.DATA_MEMBERS, member_id, remote_fields
            )

    async def async_remove_member(self, member_id: str) -> None:
        """Remove a member and delete its profile remotely.

        Ledger entries and instances that reference the member stay; its
        sensor is dropped from the entity registry.

        Raises:
            HomeAssistantError: unknown member
        """
        member_id = self.coordinator.sync_manager.resolve_id(
            const.DATA_MEMBERS, member_id
        )
        member = self.coordinator.members_data.pop(member_id, None)
        if member is None:
            raise HomeAssistantError(
                translation_domain=const.DOMAIN,
                translation_key=const.TRANS_KEY_ERROR_MEMBER_NOT_FOUND,
                translation_placeholders={"name": member_id},
            )

        remove_entities_by_item_id(self.hass, self.entry_id, member_id)
        const.LOGGER.info(
            "INFO: Removed member '%s' (ID: %s)",
            member.get(const.DATA_MEMBER_NAME),
            member_id,
        )
        self.emit(const.SIGNAL_SUFFIX_MEMBER_CHANGED, member_id=member_id, source="local")
        self.coordinator._persist_and_update()

        await self.coordinator.sync_manager.async_push_delete(
            const.DATA_MEMBERS, member_id
        )

    # -------------------------------------------------------------------------
    # Template CRUD
    # -------------------------------------------------------------------------

    async def async_create_template(self, user_input: dict[str, Any]) -> str:
        """Create a task template and mirror it.

        Raises:
            EntityValidationError: invalid fields
        """
        template = db.build_template(user_input)
        template[const.DATA_SYNC_STATE] = const.SYNC_STATE_PENDING  # type: ignore[typeddict-unknown-key]
        local_id = template[const.DATA_INTERNAL_ID]  # type: ignore[literal-required]
        self.coordinator.templates_data[local_id] = template

        const.LOGGER.info(
            "INFO: Created template '%s' (%s, %d stars)",
            template[const.DATA_TEMPLATE_TITLE],
            template[const.DATA_TEMPLATE_SCHEDULE_TYPE],
            template[const.DATA_TEMPLATE_POINTS],
        )
        self.coordinator._persist_and_update()

        remote_id = await self.coordinator.sync_manager.async_push_insert(
            const.DATA_TEMPLATES, local_id
        )
        template_id = remote_id or local_id
        self.emit(
            const.SIGNAL_SUFFIX_TEMPLATE_CHANGED,
            template_id=template_id,
            source="local",
        )
        return template_id

    async def async_update_template(
        self, template_id: str, updates: dict[str, Any]
    ) -> None:
        """Update a template's fields and mirror the change.

        Raises:
            HomeAssistantError: unknown template
            EntityValidationError: invalid fields
        """
        template_id = self.coordinator.sync_manager.resolve_id(
            const.DATA_TEMPLATES, template_id
        )
        existing = self._require_template(template_id)

        updated: dict[str, Any] = dict(existing)
        updated.update(db.build_template(updates, existing))
        self.coordinator.templates_data[template_id] = updated  # type: ignore[assignment]
        self.coordinator._persist_and_update()

        await self.coordinator.sync_manager.async_push_update(
            const.DATA_TEMPLATES, template_id, dict(updates)
        )
        self.emit(
            const.SIGNAL_SUFFIX_TEMPLATE_CHANGED,
            template_id=template_id,
            source="local",
        )

    async def async_archive_template(self, template_id: str) -> None:
        """Archive a template. Existing instances keep referencing it.

        Raises:
            HomeAssistantError: unknown template
        """
        template_id = self.coordinator.sync_manager.resolve_id(
            const.DATA_TEMPLATES, template_id
        )
        template = self._require_template(template_id)
        if template.get(const.DATA_TEMPLATE_ARCHIVED, False):
            const.LOGGER.debug("DEBUG: Template %s already archived", template_id)
            return

        template[const.DATA_TEMPLATE_ARCHIVED] = True
        const.LOGGER.info(
            "INFO: Archived template '%s' (ID: %s)",
            template.get(const.DATA_TEMPLATE_TITLE),
            template_id,
        )
        self.coordinator._persist_and_update()

        await self.coordinator.sync_manager.async_push_update(
            const.DATA_TEMPLATES,
            template_id,
            {const.DATA_TEMPLATE_ARCHIVED: True},
        )
        self.emit(
            const.SIGNAL_SUFFIX_TEMPLATE_CHANGED,
            template_id=template_id,
            source="local",
        )

    def _require_template(self, template_id: str) -> TemplateData:
        template = self.coordinator.templates_data.get(template_id)
        if template is None:
            raise HomeAssistantError(
                translation_domain=const.DOMAIN,
                translation_key=const.TRANS_KEY_ERROR_TEMPLATE_NOT_FOUND,
                translation_placeholders={"name": template_id},
            )
        return template

    def get_member(self, member_id: str) -> MemberData | None:
        """Return a member by id (local ids are resolved after promotion)."""
        return self.coordinator.members_data.get(
            self.coordinator.sync_manager.resolve_id(const.DATA_MEMBERS, member_id)
        )
