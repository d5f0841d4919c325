# File: services.py
"""Defines custom services for the Family Stars integration.

These services allow direct actions through scripts, automations and
dashboards. Members, templates and rewards are addressed by name (or id);
task instances by id.

Actor resolution:
- ``actor_name`` given: that member acts (non-admin users may only name
  their own linked member)
- otherwise the member linked to the calling Home Assistant user acts
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import voluptuous as vol
from homeassistant.core import HomeAssistant, ServiceCall
from homeassistant.exceptions import HomeAssistantError, ServiceValidationError
from homeassistant.helpers import config_validation as cv

from . import const, data_builders as db
from .engines.ledger_engine import InsufficientFundsError
from .helpers.auth_helpers import (
    get_family_stars_coordinator,
    get_member_id_for_user,
    is_user_authorized_for_member,
)

if TYPE_CHECKING:
    from .coordinator import FamilyStarsCoordinator

# --- Service Schemas ---
_ENTRY = {vol.Optional(const.FIELD_CONFIG_ENTRY_ID): cv.string}
_ACTOR = {vol.Optional(const.FIELD_ACTOR_NAME): cv.string}

ASSIGN_TASK_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        **_ACTOR,
        vol.Required(const.FIELD_TEMPLATE): cv.string,
        vol.Required(const.FIELD_ASSIGNEE_NAME): cv.string,
        vol.Optional(const.FIELD_DUE_AT): cv.datetime,
    }
)

INSTANCE_ACTION_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        **_ACTOR,
        vol.Required(const.FIELD_INSTANCE_ID): cv.string,
    }
)

ADJUST_STARS_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        **_ACTOR,
        vol.Required(const.FIELD_MEMBER_NAME): cv.string,
        vol.Required(const.FIELD_STARS): cv.positive_int,
        vol.Optional(const.FIELD_REASON): cv.string,
    }
)

REDEEM_REWARD_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        **_ACTOR,
        vol.Required(const.FIELD_REWARD): cv.string,
        vol.Required(const.FIELD_MEMBER_NAME): cv.string,
    }
)

ADD_MEMBER_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        vol.Required(const.FIELD_NAME): cv.string,
        vol.Required(const.FIELD_ROLE): vol.In(const.MEMBER_ROLES),
        vol.Optional(const.FIELD_AGE): cv.positive_int,
        vol.Optional(const.FIELD_CAPABILITIES): vol.All(cv.ensure_list, [cv.string]),
        vol.Optional(const.FIELD_HA_USER_ID): cv.string,
    }
)

UPDATE_MEMBER_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        vol.Required(const.FIELD_MEMBER_NAME): cv.string,
        vol.Optional(const.FIELD_NEW_NAME): cv.string,
        vol.Optional(const.FIELD_AGE): cv.positive_int,
        vol.Optional(const.FIELD_CAPABILITIES): vol.All(cv.ensure_list, [cv.string]),
        vol.Optional(const.FIELD_HA_USER_ID): cv.string,
    }
)

REMOVE_MEMBER_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        vol.Required(const.FIELD_MEMBER_NAME): cv.string,
    }
)

CREATE_TEMPLATE_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        vol.Required(const.FIELD_TITLE): cv.string,
        vol.Optional(const.FIELD_CATEGORY): vol.In(const.TASK_CATEGORIES),
        vol.Optional(const.FIELD_POINTS): cv.positive_int,
        vol.Optional(const.FIELD_DIFFICULTY): vol.In(const.TASK_DIFFICULTIES),
        vol.Optional(const.FIELD_MIN_AGE): cv.positive_int,
        vol.Optional(const.FIELD_MAX_AGE): cv.positive_int,
        vol.Optional(const.FIELD_SCHEDULE_TYPE): vol.In(const.SCHEDULE_TYPES),
        vol.Optional(const.FIELD_TIME_WINDOW_MINUTES): cv.positive_int,
    }
)

UPDATE_TEMPLATE_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        vol.Required(const.FIELD_TEMPLATE): cv.string,
        vol.Optional(const.FIELD_NEW_TITLE): cv.string,
        vol.Optional(const.FIELD_CATEGORY): vol.In(const.TASK_CATEGORIES),
        vol.Optional(const.FIELD_POINTS): cv.positive_int,
        vol.Optional(const.FIELD_DIFFICULTY): vol.In(const.TASK_DIFFICULTIES),
        vol.Optional(const.FIELD_MIN_AGE): cv.positive_int,
        vol.Optional(const.FIELD_MAX_AGE): cv.positive_int,
        vol.Optional(const.FIELD_SCHEDULE_TYPE): vol.In(const.SCHEDULE_TYPES),
        vol.Optional(const.FIELD_TIME_WINDOW_MINUTES): cv.positive_int,
        vol.Optional(const.FIELD_ENABLED): cv.boolean,
    }
)

ARCHIVE_TEMPLATE_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        vol.Required(const.FIELD_TEMPLATE): cv.string,
    }
)

CREATE_REWARD_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        vol.Required(const.FIELD_TITLE): cv.string,
        vol.Optional(const.FIELD_DESCRIPTION): cv.string,
        vol.Required(const.FIELD_COST): cv.positive_int,
    }
)

UPDATE_REWARD_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        vol.Required(const.FIELD_REWARD): cv.string,
        vol.Optional(const.FIELD_NEW_TITLE): cv.string,
        vol.Optional(const.FIELD_DESCRIPTION): cv.string,
        vol.Optional(const.FIELD_COST): cv.positive_int,
    }
)

DELETE_REWARD_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        vol.Required(const.FIELD_REWARD): cv.string,
    }
)

ENTRY_ONLY_SCHEMA = vol.Schema(_ENTRY)

# service field -> DATA_* key, for the create services
_MEMBER_FIELDS = {
    const.FIELD_NAME: const.DATA_MEMBER_NAME,
    const.FIELD_ROLE: const.DATA_MEMBER_ROLE,
    const.FIELD_AGE: const.DATA_MEMBER_AGE,
    const.FIELD_CAPABILITIES: const.DATA_MEMBER_CAPABILITIES,
    const.FIELD_HA_USER_ID: const.DATA_MEMBER_HA_USER_ID,
}
_TEMPLATE_FIELDS = {
    const.FIELD_TITLE: const.DATA_TEMPLATE_TITLE,
    const.FIELD_CATEGORY: const.DATA_TEMPLATE_CATEGORY,
    const.FIELD_POINTS: const.DATA_TEMPLATE_POINTS,
    const.FIELD_DIFFICULTY: const.DATA_TEMPLATE_DIFFICULTY,
    const.FIELD_MIN_AGE: const.DATA_TEMPLATE_MIN_AGE,
    const.FIELD_MAX_AGE: const.DATA_TEMPLATE_MAX_AGE,
    const.FIELD_SCHEDULE_TYPE: const.DATA_TEMPLATE_SCHEDULE_TYPE,
    const.FIELD_TIME_WINDOW_MINUTES: const.DATA_TEMPLATE_TIME_WINDOW_MINUTES,
}
_REWARD_FIELDS = {
    const.FIELD_TITLE: const.DATA_REWARD_TITLE,
    const.FIELD_DESCRIPTION: const.DATA_REWARD_DESCRIPTION,
    const.FIELD_COST: const.DATA_REWARD_COST,
}

# service field -> DATA_* key, for the update services
_MEMBER_UPDATE_FIELDS = {
    const.FIELD_NEW_NAME: const.DATA_MEMBER_NAME,
    const.FIELD_AGE: const.DATA_MEMBER_AGE,
    const.FIELD_CAPABILITIES: const.DATA_MEMBER_CAPABILITIES,
    const.FIELD_HA_USER_ID: const.DATA_MEMBER_HA_USER_ID,
}
_TEMPLATE_UPDATE_FIELDS = {
    **{
        field: data_key
        for field, data_key in _TEMPLATE_FIELDS.items()
        if field != const.FIELD_TITLE
    },
    const.FIELD_NEW_TITLE: const.DATA_TEMPLATE_TITLE,
    const.FIELD_ENABLED: const.DATA_TEMPLATE_ENABLED,
}
_REWARD_UPDATE_FIELDS = {
    const.FIELD_NEW_TITLE: const.DATA_REWARD_TITLE,
    const.FIELD_DESCRIPTION: const.DATA_REWARD_DESCRIPTION,
    const.FIELD_COST: const.DATA_REWARD_COST,
}

SERVICES = (
    const.SERVICE_ASSIGN_TASK,
    const.SERVICE_REQUEST_COMPLETION,
    const.SERVICE_APPROVE_TASK,
    const.SERVICE_REJECT_TASK,
    const.SERVICE_AWARD_STARS,
    const.SERVICE_DEDUCT_STARS,
    const.SERVICE_REDEEM_REWARD,
    const.SERVICE_ADD_MEMBER,
    const.SERVICE_UPDATE_MEMBER,
    const.SERVICE_REMOVE_MEMBER,
    const.SERVICE_CREATE_TEMPLATE,
    const.SERVICE_UPDATE_TEMPLATE,
    const.SERVICE_ARCHIVE_TEMPLATE,
    const.SERVICE_CREATE_REWARD,
    const.SERVICE_UPDATE_REWARD,
    const.SERVICE_DELETE_REWARD,
    const.SERVICE_REGENERATE_RECURRING,
    const.SERVICE_SYNC_NOW,
)


# ==============================================================================
# Resolution helpers
# ==============================================================================


def _get_coordinator(hass: HomeAssistant, call: ServiceCall) -> FamilyStarsCoordinator:
    """Return the coordinator for the call's entry (first loaded entry by default)."""
    coordinator = get_family_stars_coordinator(
        hass, call.data.get(const.FIELD_CONFIG_ENTRY_ID)
    )
    if coordinator is None:
        raise HomeAssistantError(
            translation_domain=const.DOMAIN,
            translation_key=const.TRANS_KEY_ERROR_NO_ENTRY,
        )
    return coordinator


def _member_id(coordinator: FamilyStarsCoordinator, name: str) -> str:
    member_id = coordinator.family_manager.find_member_by_name(name)
    if member_id is None:
        raise ServiceValidationError(
            translation_domain=const.DOMAIN,
            translation_key=const.TRANS_KEY_ERROR_MEMBER_NOT_FOUND,
            translation_placeholders={"name": name},
        )
    return member_id


def _template_id(coordinator: FamilyStarsCoordinator, title: str) -> str:
    template_id = coordinator.family_manager.find_template_by_title(title)
    if template_id is None:
        raise ServiceValidationError(
            translation_domain=const.DOMAIN,
            translation_key=const.TRANS_KEY_ERROR_TEMPLATE_NOT_FOUND,
            translation_placeholders={"name": title},
        )
    return template_id


def _reward_id(coordinator: FamilyStarsCoordinator, name: str) -> str:
    reward_id = coordinator.reward_manager.find_reward(name)
    if reward_id is None:
        raise ServiceValidationError(
            translation_domain=const.DOMAIN,
            translation_key=const.TRANS_KEY_ERROR_REWARD_NOT_FOUND,
            translation_placeholders={"name": name},
        )
    return reward_id


def _instance(coordinator: FamilyStarsCoordinator, instance_id: str) -> dict[str, Any]:
    instance = coordinator.task_manager.get_instance(instance_id)
    if instance is None:
        raise ServiceValidationError(
            translation_domain=const.DOMAIN,
            translation_key=const.TRANS_KEY_ERROR_INSTANCE_NOT_FOUND,
            translation_placeholders={"name": instance_id},
        )
    return dict(instance)


async def _resolve_actor(
    hass: HomeAssistant,
    coordinator: FamilyStarsCoordinator,
    call: ServiceCall,
    *,
    required: bool,
) -> str | None:
    """Return the acting member id.

    Raises:
        ServiceValidationError: unknown actor, or an actor is required and
            none could be resolved
        HomeAssistantError: the calling user may not act as that member
    """
    user_id = call.context.user_id
    actor_name = call.data.get(const.FIELD_ACTOR_NAME)

    if actor_name:
        actor_id = _member_id(coordinator, actor_name)
        if not await is_user_authorized_for_member(hass, coordinator, user_id, actor_id):
            raise HomeAssistantError(
                translation_domain=const.DOMAIN,
                translation_key=const.TRANS_KEY_ERROR_NOT_AUTHORIZED,
                translation_placeholders={"name": actor_name},
            )
        return actor_id

    actor_id = get_member_id_for_user(coordinator, user_id)
    if actor_id is None and required:
        raise ServiceValidationError(
            translation_domain=const.DOMAIN,
            translation_key=const.TRANS_KEY_ERROR_ACTOR_UNKNOWN,
        )
    return actor_id


def _require_guardian(coordinator: FamilyStarsCoordinator, actor_id: str | None) -> None:
    if actor_id is None:
        return
    member = coordinator.members_data.get(actor_id, {})
    if member.get(const.DATA_MEMBER_ROLE) != const.ROLE_GUARDIAN:
        raise HomeAssistantError(
            translation_domain=const.DOMAIN,
            translation_key=const.TRANS_KEY_ERROR_GUARDIAN_REQUIRED,
            translation_placeholders={
                "name": str(member.get(const.DATA_MEMBER_NAME, actor_id))
            },
        )


def _validation_error(err: db.EntityValidationError) -> ServiceValidationError:
    return ServiceValidationError(
        translation_domain=const.DOMAIN,
        translation_key=err.translation_key,
        translation_placeholders=err.placeholders,
    )


def _map_fields(data: dict[str, Any], fields: dict[str, str]) -> dict[str, Any]:
    return {data_key: data[field] for field, data_key in fields.items() if field in data}


# ==============================================================================
# Registration
# ==============================================================================


def async_setup_services(hass: HomeAssistant) -> None:
    """Register Family Stars services (once for all entries)."""
    if hass.services.has_service(const.DOMAIN, const.SERVICE_SYNC_NOW):
        return

    async def handle_assign_task(call: ServiceCall) -> None:
        """Handle assigning a task template to a member."""
        coordinator = _get_coordinator(hass, call)
        creator_id = await _resolve_actor(hass, coordinator, call, required=False)
        _require_guardian(coordinator, creator_id)

        template_name = call.data[const.FIELD_TEMPLATE]
        template_id = _template_id(coordinator, template_name)
        if coordinator.templates_data[template_id].get(const.DATA_TEMPLATE_ARCHIVED):
            raise ServiceValidationError(
                translation_domain=const.DOMAIN,
                translation_key=const.TRANS_KEY_ERROR_TEMPLATE_ARCHIVED,
                translation_placeholders={"name": template_name},
            )
        assignee_id = _member_id(coordinator, call.data[const.FIELD_ASSIGNEE_NAME])

        instance_id = await coordinator.task_manager.async_assign(
            template_id,
            assignee_id,
            creator_id,
            due_at=call.data.get(const.FIELD_DUE_AT),
        )
        const.LOGGER.info(
            "INFO: Task '%s' assigned to '%s' (instance %s)",
            template_name,
            call.data[const.FIELD_ASSIGNEE_NAME],
            instance_id,
        )

    async def handle_request_completion(call: ServiceCall) -> None:
        """Handle a completion request; dependents may only complete their own tasks."""
        coordinator = _get_coordinator(hass, call)
        actor_id = await _resolve_actor(hass, coordinator, call, required=True)
        instance = _instance(coordinator, call.data[const.FIELD_INSTANCE_ID])

        actor = coordinator.members_data.get(actor_id, {})
        if (
            actor.get(const.DATA_MEMBER_ROLE) == const.ROLE_DEPENDENT
            and instance.get(const.DATA_INSTANCE_ASSIGNEE_ID) != actor_id
        ):
            const.LOGGER.warning(
                "WARNING: Request Completion: '%s' is not the assignee of %s",
                actor.get(const.DATA_MEMBER_NAME),
                instance[const.DATA_INTERNAL_ID],
            )
            raise HomeAssistantError(
                translation_domain=const.DOMAIN,
                translation_key=const.TRANS_KEY_ERROR_NOT_AUTHORIZED,
                translation_placeholders={
                    "name": str(actor.get(const.DATA_MEMBER_NAME, actor_id))
                },
            )

        await coordinator.task_manager.async_request_completion(
            instance[const.DATA_INTERNAL_ID], actor_id
        )

    async def handle_approve_task(call: ServiceCall) -> None:
        """Handle approving a pending task instance."""
        coordinator = _get_coordinator(hass, call)
        actor_id = await _resolve_actor(hass, coordinator, call, required=True)
        _require_guardian(coordinator, actor_id)
        instance = _instance(coordinator, call.data[const.FIELD_INSTANCE_ID])
        await coordinator.task_manager.async_approve(
            instance[const.DATA_INTERNAL_ID], actor_id
        )

    async def handle_reject_task(call: ServiceCall) -> None:
        """Handle rejecting a pending task instance."""
        coordinator = _get_coordinator(hass, call)
        actor_id = await _resolve_actor(hass, coordinator, call, required=True)
        _require_guardian(coordinator, actor_id)
        instance = _instance(coordinator, call.data[const.FIELD_INSTANCE_ID])
        await coordinator.task_manager.async_reject(
            instance[const.DATA_INTERNAL_ID], actor_id
        )

    async def handle_award_stars(call: ServiceCall) -> None:
        """Handle a manual star award."""
        coordinator = _get_coordinator(hass, call)
        actor_id = await _resolve_actor(hass, coordinator, call, required=False)
        _require_guardian(coordinator, actor_id)
        member_id = _member_id(coordinator, call.data[const.FIELD_MEMBER_NAME])
        await coordinator.ledger_manager.async_award(
            member_id,
            call.data[const.FIELD_STARS],
            call.data.get(const.FIELD_REASON),
            actor_id,
        )

    async def handle_deduct_stars(call: ServiceCall) -> None:
        """Handle a manual star deduction (may take the total below zero)."""
        coordinator = _get_coordinator(hass, call)
        actor_id = await _resolve_actor(hass, coordinator, call, required=False)
        _require_guardian(coordinator, actor_id)
        member_id = _member_id(coordinator, call.data[const.FIELD_MEMBER_NAME])
        await coordinator.ledger_manager.async_deduct(
            member_id,
            call.data[const.FIELD_STARS],
            call.data.get(const.FIELD_REASON),
            actor_id,
        )

    async def handle_redeem_reward(call: ServiceCall) -> None:
        """Handle redeeming a reward for a member."""
        coordinator = _get_coordinator(hass, call)
        member_name = call.data[const.FIELD_MEMBER_NAME]
        member_id = _member_id(coordinator, member_name)
        if not await is_user_authorized_for_member(
            hass, coordinator, call.context.user_id, member_id
        ):
            raise HomeAssistantError(
                translation_domain=const.DOMAIN,
                translation_key=const.TRANS_KEY_ERROR_NOT_AUTHORIZED,
                translation_placeholders={"name": member_name},
            )
        actor_id = await _resolve_actor(hass, coordinator, call, required=False)

        reward_name = call.data[const.FIELD_REWARD]
        reward_id = _reward_id(coordinator, reward_name)

        try:
            await coordinator.reward_manager.async_redeem(
                reward_id, member_id, actor_id or member_id
            )
        except InsufficientFundsError as err:
            const.LOGGER.warning(
                "WARNING: Redeem Reward: '%s' has %d stars, '%s' costs %d",
                member_name,
                err.current_balance,
                reward_name,
                err.requested_amount,
            )
            raise ServiceValidationError(
                translation_domain=const.DOMAIN,
                translation_key=const.TRANS_KEY_ERROR_INSUFFICIENT_STARS,
                translation_placeholders={
                    "name": member_name,
                    "current": str(err.current_balance),
                    "required": str(err.requested_amount),
                },
            ) from err

    async def handle_add_member(call: ServiceCall) -> None:
        """Handle adding a family member."""
        coordinator = _get_coordinator(hass, call)
        try:
            await coordinator.family_manager.async_add_member(
                _map_fields(dict(call.data), _MEMBER_FIELDS)
            )
        except db.EntityValidationError as err:
            raise _validation_error(err) from err

    async def handle_update_member(call: ServiceCall) -> None:
        """Handle editing a family member (the role cannot change)."""
        coordinator = _get_coordinator(hass, call)
        member_id = _member_id(coordinator, call.data[const.FIELD_MEMBER_NAME])
        try:
            await coordinator.family_manager.async_update_member(
                member_id, _map_fields(dict(call.data), _MEMBER_UPDATE_FIELDS)
            )
        except db.EntityValidationError as err:
            raise _validation_error(err) from err

    async def handle_remove_member(call: ServiceCall) -> None:
        """Handle removing a family member."""
        coordinator = _get_coordinator(hass, call)
        member_id = _member_id(coordinator, call.data[const.FIELD_MEMBER_NAME])
        await coordinator.family_manager.async_remove_member(member_id)

    async def handle_create_template(call: ServiceCall) -> None:
        """Handle creating a task template."""
        coordinator = _get_coordinator(hass, call)
        try:
            await coordinator.family_manager.async_create_template(
                _map_fields(dict(call.data), _TEMPLATE_FIELDS)
            )
        except db.EntityValidationError as err:
            raise _validation_error(err) from err

    async def handle_update_template(call: ServiceCall) -> None:
        """Handle editing a task template, including enabling or disabling it."""
        coordinator = _get_coordinator(hass, call)
        template_id = _template_id(coordinator, call.data[const.FIELD_TEMPLATE])
        try:
            await coordinator.family_manager.async_update_template(
                template_id, _map_fields(dict(call.data), _TEMPLATE_UPDATE_FIELDS)
            )
        except db.EntityValidationError as err:
            raise _validation_error(err) from err

    async def handle_archive_template(call: ServiceCall) -> None:
        """Handle archiving a task template."""
        coordinator = _get_coordinator(hass, call)
        template_id = _template_id(coordinator, call.data[const.FIELD_TEMPLATE])
        await coordinator.family_manager.async_archive_template(template_id)

    async def handle_create_reward(call: ServiceCall) -> None:
        """Handle creating a reward."""
        coordinator = _get_coordinator(hass, call)
        try:
            await coordinator.reward_manager.async_create_reward(
                _map_fields(dict(call.data), _REWARD_FIELDS)
            )
        except db.EntityValidationError as err:
            raise _validation_error(err) from err

    async def handle_update_reward(call: ServiceCall) -> None:
        """Handle editing a reward's title, description or cost."""
        coordinator = _get_coordinator(hass, call)
        reward_id = _reward_id(coordinator, call.data[const.FIELD_REWARD])
        try:
            await coordinator.reward_manager.async_update_reward(
                reward_id, _map_fields(dict(call.data), _REWARD_UPDATE_FIELDS)
            )
        except db.EntityValidationError as err:
            raise _validation_error(err) from err

    async def handle_delete_reward(call: ServiceCall) -> None:
        """Handle deleting a reward."""
        coordinator = _get_coordinator(hass, call)
        reward_id = _reward_id(coordinator, call.data[const.FIELD_REWARD])
        await coordinator.reward_manager.async_delete_reward(reward_id)

    async def handle_regenerate_recurring(call: ServiceCall) -> None:
        """Handle an on-demand recurring regeneration."""
        coordinator = _get_coordinator(hass, call)
        await coordinator.schedule_manager.async_regenerate()

    async def handle_sync_now(call: ServiceCall) -> None:
        """Handle an on-demand full pull from the remote store."""
        coordinator = _get_coordinator(hass, call)
        await coordinator.sync_manager.async_resync()

    # --- Register Services ---
    for service, handler, schema in (
        (const.SERVICE_ASSIGN_TASK, handle_assign_task, ASSIGN_TASK_SCHEMA),
        (
            const.SERVICE_REQUEST_COMPLETION,
            handle_request_completion,
            INSTANCE_ACTION_SCHEMA,
        ),
        (const.SERVICE_APPROVE_TASK, handle_approve_task, INSTANCE_ACTION_SCHEMA),
        (const.SERVICE_REJECT_TASK, handle_reject_task, INSTANCE_ACTION_SCHEMA),
        (const.SERVICE_AWARD_STARS, handle_award_stars, ADJUST_STARS_SCHEMA),
        (const.SERVICE_DEDUCT_STARS, handle_deduct_stars, ADJUST_STARS_SCHEMA),
        (const.SERVICE_REDEEM_REWARD, handle_redeem_reward, REDEEM_REWARD_SCHEMA),
        (const.SERVICE_ADD_MEMBER, handle_add_member, ADD_MEMBER_SCHEMA),
        (const.SERVICE_UPDATE_MEMBER, handle_update_member, UPDATE_MEMBER_SCHEMA),
        (const.SERVICE_REMOVE_MEMBER, handle_remove_member, REMOVE_MEMBER_SCHEMA),
        (const.SERVICE_CREATE_TEMPLATE, handle_create_template, CREATE_TEMPLATE_SCHEMA),
        (const.SERVICE_UPDATE_TEMPLATE, handle_update_template, UPDATE_TEMPLATE_SCHEMA),
        (
            const.SERVICE_ARCHIVE_TEMPLATE,
            handle_archive_template,
            ARCHIVE_TEMPLATE_SCHEMA,
        ),
        (const.SERVICE_CREATE_REWARD, handle_create_reward, CREATE_REWARD_SCHEMA),
        (const.SERVICE_UPDATE_REWARD, handle_update_reward, UPDATE_REWARD_SCHEMA),
        (const.SERVICE_DELETE_REWARD, handle_delete_reward, DELETE_REWARD_SCHEMA),
        (
            const.SERVICE_REGENERATE_RECURRING,
            handle_regenerate_recurring,
            ENTRY_ONLY_SCHEMA,
        ),
        (const.SERVICE_SYNC_NOW, handle_sync_now, ENTRY_ONLY_SCHEMA),
    ):
        hass.services.async_register(const.DOMAIN, service, handler, schema=schema)

    const.LOGGER.info("INFO: Family Stars services have been registered successfully")


async def async_unload_services(hass: HomeAssistant) -> None:
    """Unregister Family Stars services when the last entry unloads."""
    for service in SERVICES:
        if hass.services.has_service(const.DOMAIN, service):
            hass.services.async_remove(const.DOMAIN, service)

    const.LOGGER.info("INFO: Family Stars services have been unregistered")
