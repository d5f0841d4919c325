"""Entity building, validation and wire mapping.

This module is the SINGLE SOURCE OF TRUTH for:
- Entity field defaults
- Business logic validation
- Complete entity structure building
- DATA <-> remote column mapping (the wire codec)

### Build Functions
Each entity type has a `build_<entity>()` function that:
- Takes user_input with DATA_* keys (FIELD_* service keys share the values)
- Mints a local internal_id for new entities (promoted to the remote id later)
- Applies field defaults
- Returns a complete entity dict ready for storage

### Wire Codec
`entity_from_remote()` maps a remote row onto DATA_* keys and only emits the
keys present in the row, so partial rows merge without erasing cached
fields. `entity_to_remote()` / `fields_to_remote()` do the reverse and never
emit local-only bookkeeping.

Consumers:
- managers (create / mirror)
- services.py (validation errors surface as ServiceValidationError)
- engines.reconcile_engine (decoded rows)
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
import uuid

from . import const
from .type_defs import InstanceData, MemberData, RewardData, TemplateData
from .utils.dt_utils import dt_now_iso

# ==============================================================================
# EXCEPTIONS
# ==============================================================================


class EntityValidationError(Exception):
    """Validation error with field-specific information.

    Attributes:
        field: The DATA_* key that failed validation
        translation_key: The TRANS_KEY_* constant for the error message
        placeholders: Optional dict for translation string placeholders
    """

    def __init__(
        self,
        field: str,
        translation_key: str,
        placeholders: dict[str, str] | None = None,
    ) -> None:
        """Initialize EntityValidationError."""
        super().__init__(f"Invalid value for {field}")
        self.field = field
        self.translation_key = translation_key
        self.placeholders = placeholders or {"field": field}


# ==============================================================================
# IDENTIFIERS
# ==============================================================================


def new_local_id() -> str:
    """Mint an identifier for an entity not yet known to the remote."""
    return f"{const.LOCAL_ID_PREFIX}{uuid.uuid4().hex}"


def is_local_id(entity_id: str | None) -> bool:
    """Return True for identifiers minted on this device."""
    return bool(entity_id) and str(entity_id).startswith(const.LOCAL_ID_PREFIX)


# ==============================================================================
# FIELD HELPERS
# ==============================================================================


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _optional_int(value: Any, field: str) -> int | None:
    if value is None:
        return None
    if not _is_int(value) or value < 0:
        raise EntityValidationError(field, const.TRANS_KEY_ERROR_INVALID_FIELD)
    return value


def _required_text(value: Any, field: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise EntityValidationError(field, const.TRANS_KEY_ERROR_INVALID_FIELD)
    return text


def _choice(value: Any, choices: tuple[str, ...], field: str) -> str:
    if value not in choices:
        raise EntityValidationError(field, const.TRANS_KEY_ERROR_INVALID_FIELD)
    return value


# ==============================================================================
# BUILDERS
# ==============================================================================


def build_member(
    user_input: dict[str, Any],
    existing: MemberData | None = None,
) -> MemberData:
    """Build member data for create or update operations.

    One function handles both create (existing=None) and update. Role is
    immutable after creation.

    Raises:
        EntityValidationError: empty name, unknown role, role change, bad age
    """

    def get_field(data_key: str, default: Any) -> Any:
        """Get field value: user_input > existing > default."""
        if data_key in user_input:
            return user_input[data_key]
        if existing is not None:
            return existing.get(data_key, default)
        return default

    name = _required_text(get_field(const.DATA_MEMBER_NAME, ""), const.DATA_MEMBER_NAME)
    role = _choice(
        get_field(const.DATA_MEMBER_ROLE, const.ROLE_DEPENDENT),
        const.MEMBER_ROLES,
        const.DATA_MEMBER_ROLE,
    )
    if existing is not None and role != existing.get(const.DATA_MEMBER_ROLE):
        raise EntityValidationError(
            const.DATA_MEMBER_ROLE, const.TRANS_KEY_ERROR_ROLE_IMMUTABLE
        )

    capabilities = get_field(const.DATA_MEMBER_CAPABILITIES, [])
    if isinstance(capabilities, str):
        capabilities = [capabilities] if capabilities else []

    member: MemberData = {
        const.DATA_INTERNAL_ID: (  # type: ignore[misc]
            existing[const.DATA_INTERNAL_ID] if existing else new_local_id()
        ),
        const.DATA_MEMBER_NAME: name,
        const.DATA_MEMBER_ROLE: role,
        const.DATA_MEMBER_AGE: _optional_int(
            get_field(const.DATA_MEMBER_AGE, None), const.DATA_MEMBER_AGE
        ),
        const.DATA_MEMBER_CAPABILITIES: [str(tag) for tag in capabilities],
        const.DATA_MEMBER_POINT_TOTAL: get_field(const.DATA_MEMBER_POINT_TOTAL, 0),
        const.DATA_MEMBER_HA_USER_ID: get_field(const.DATA_MEMBER_HA_USER_ID, None),
    }
    return member


def build_template(
    user_input: dict[str, Any],
    existing: TemplateData | None = None,
) -> TemplateData:
    """Build task template data for create or update operations.

    Raises:
        EntityValidationError: empty title, unknown category / difficulty /
            schedule type, negative numbers, min_age > max_age
    """

    def get_field(data_key: str, default: Any) -> Any:
        """Get field value: user_input > existing > default."""
        if data_key in user_input:
            return user_input[data_key]
        if existing is not None:
            return existing.get(data_key, default)
        return default

    points = get_field(const.DATA_TEMPLATE_POINTS, const.DEFAULT_TASK_POINTS)
    if not _is_int(points) or points < 0:
        raise EntityValidationError(
            const.DATA_TEMPLATE_POINTS, const.TRANS_KEY_ERROR_INVALID_FIELD
        )

    min_age = _optional_int(
        get_field(const.DATA_TEMPLATE_MIN_AGE, None), const.DATA_TEMPLATE_MIN_AGE
    )
    max_age = _optional_int(
        get_field(const.DATA_TEMPLATE_MAX_AGE, None), const.DATA_TEMPLATE_MAX_AGE
    )
    if min_age is not None and max_age is not None and min_age > max_age:
        raise EntityValidationError(
            const.DATA_TEMPLATE_MAX_AGE, const.TRANS_KEY_ERROR_INVALID_FIELD
        )

    schedule_type = _choice(
        get_field(const.DATA_TEMPLATE_SCHEDULE_TYPE, const.SCHEDULE_ONE_TIME),
        const.SCHEDULE_TYPES,
        const.DATA_TEMPLATE_SCHEDULE_TYPE,
    )
    time_window = _optional_int(
        get_field(const.DATA_TEMPLATE_TIME_WINDOW_MINUTES, None),
        const.DATA_TEMPLATE_TIME_WINDOW_MINUTES,
    )
    if schedule_type == const.SCHEDULE_TIME_SENSITIVE and not time_window:
        time_window = const.DEFAULT_TIME_WINDOW_MINUTES

    template: TemplateData = {
        const.DATA_INTERNAL_ID: (  # type: ignore[misc]
            existing[const.DATA_INTERNAL_ID] if existing else new_local_id()
        ),
        const.DATA_TEMPLATE_TITLE: _required_text(
            get_field(const.DATA_TEMPLATE_TITLE, ""), const.DATA_TEMPLATE_TITLE
        ),
        const.DATA_TEMPLATE_CATEGORY: _choice(
            get_field(const.DATA_TEMPLATE_CATEGORY, const.DEFAULT_TASK_CATEGORY),
            const.TASK_CATEGORIES,
            const.DATA_TEMPLATE_CATEGORY,
        ),
        const.DATA_TEMPLATE_POINTS: points,
        const.DATA_TEMPLATE_DIFFICULTY: _choice(
            get_field(const.DATA_TEMPLATE_DIFFICULTY, const.DEFAULT_TASK_DIFFICULTY),
            const.TASK_DIFFICULTIES,
            const.DATA_TEMPLATE_DIFFICULTY,
        ),
        const.DATA_TEMPLATE_MIN_AGE: min_age,
        const.DATA_TEMPLATE_MAX_AGE: max_age,
        const.DATA_TEMPLATE_SCHEDULE_TYPE: schedule_type,
        const.DATA_TEMPLATE_TIME_WINDOW_MINUTES: time_window,
        const.DATA_TEMPLATE_ENABLED: bool(get_field(const.DATA_TEMPLATE_ENABLED, True)),
        const.DATA_TEMPLATE_ARCHIVED: bool(
            get_field(const.DATA_TEMPLATE_ARCHIVED, False)
        ),
    }
    return template


def build_instance(
    template_id: str,
    template: TemplateData,
    assignee_id: str,
    creator_id: str | None,
    *,
    due_at: str | None,
    expires_at: str | None,
    created_at: str | None = None,
) -> InstanceData:
    """Build a new open task instance.

    schedule_type is copied from the template here and never re-derived.
    """
    instance: InstanceData = {
        const.DATA_INTERNAL_ID: new_local_id(),  # type: ignore[misc]
        const.DATA_INSTANCE_TEMPLATE_ID: template_id,
        const.DATA_INSTANCE_ASSIGNEE_ID: assignee_id,
        const.DATA_INSTANCE_CREATOR_ID: creator_id,
        const.DATA_CREATED_AT: created_at or dt_now_iso(),
        const.DATA_INSTANCE_DUE_AT: due_at,
        const.DATA_INSTANCE_EXPIRES_AT: expires_at,
        const.DATA_INSTANCE_SCHEDULE_TYPE: template.get(
            const.DATA_TEMPLATE_SCHEDULE_TYPE, const.SCHEDULE_ONE_TIME
        ),
        const.DATA_INSTANCE_STATUS: const.TASK_STATUS_OPEN,
        const.DATA_INSTANCE_COMPLETION_REQUESTED_BY: None,
        const.DATA_INSTANCE_COMPLETION_REQUESTED_AT: None,
        const.DATA_INSTANCE_APPROVED_BY: None,
        const.DATA_INSTANCE_APPROVED_AT: None,
    }
    return instance


def build_reward(
    user_input: dict[str, Any],
    existing: RewardData | None = None,
) -> RewardData:
    """Build reward data for create or update operations.

    New rewards start available; an update keeps the redemption state.

    Raises:
        EntityValidationError: empty title or negative cost
    """

    def get_field(data_key: str, default: Any) -> Any:
        """Get field value: user_input > existing > default."""
        if data_key in user_input:
            return user_input[data_key]
        if existing is not None:
            return existing.get(data_key, default)
        return default

    cost = get_field(const.DATA_REWARD_COST, 0)
    if not _is_int(cost) or cost < 0:
        raise EntityValidationError(
            const.DATA_REWARD_COST, const.TRANS_KEY_ERROR_INVALID_FIELD
        )

    reward: RewardData = {
        const.DATA_INTERNAL_ID: (  # type: ignore[misc]
            existing[const.DATA_INTERNAL_ID] if existing else new_local_id()
        ),
        const.DATA_REWARD_TITLE: _required_text(
            get_field(const.DATA_REWARD_TITLE, ""), const.DATA_REWARD_TITLE
        ),
        const.DATA_REWARD_DESCRIPTION: str(
            get_field(const.DATA_REWARD_DESCRIPTION, "") or ""
        ),
        const.DATA_REWARD_COST: cost,
        const.DATA_REWARD_STATUS: (
            existing.get(const.DATA_REWARD_STATUS, const.REWARD_STATUS_AVAILABLE)
            if existing
            else const.REWARD_STATUS_AVAILABLE
        ),
        const.DATA_REWARD_REDEEMED_BY: (
            existing.get(const.DATA_REWARD_REDEEMED_BY) if existing else None
        ),
        const.DATA_REWARD_REDEEMED_AT: (
            existing.get(const.DATA_REWARD_REDEEMED_AT) if existing else None
        ),
    }
    return reward


def validate_member_name_unique(
    name: str,
    role: str,
    members: dict[str, MemberData],
) -> dict[str, str]:
    """Return {field: translation_key} if another member has the same name and role.

    Name + role is the match key used to promote locally created members, so
    two members sharing it would be indistinguishable.
    """
    folded = name.strip().casefold()
    for member in members.values():
        if (
            str(member.get(const.DATA_MEMBER_NAME, "")).strip().casefold() == folded
            and member.get(const.DATA_MEMBER_ROLE) == role
        ):
            return {const.DATA_MEMBER_NAME: const.TRANS_KEY_ERROR_DUPLICATE_MEMBER}
    return {}


# ==============================================================================
# WIRE CODEC (remote columns <-> DATA_* keys)
# ==============================================================================

# remote column -> local key, per table
_COLUMN_MAPS: dict[str, dict[str, str]] = {
    const.REMOTE_TABLE_PROFILES: {
        "id": const.DATA_INTERNAL_ID,
        "display_name": const.DATA_MEMBER_NAME,
        "role": const.DATA_MEMBER_ROLE,
        "age": const.DATA_MEMBER_AGE,
        "powers": const.DATA_MEMBER_CAPABILITIES,
        "created_at": const.DATA_CREATED_AT,
    },
    const.REMOTE_TABLE_TASKS: {
        "id": const.DATA_INTERNAL_ID,
        "title": const.DATA_TEMPLATE_TITLE,
        "category": const.DATA_TEMPLATE_CATEGORY,
        "default_stars": const.DATA_TEMPLATE_POINTS,
        "difficulty": const.DATA_TEMPLATE_DIFFICULTY,
        "min_age": const.DATA_TEMPLATE_MIN_AGE,
        "max_age": const.DATA_TEMPLATE_MAX_AGE,
        "schedule_type": const.DATA_TEMPLATE_SCHEDULE_TYPE,
        "time_window_minutes": const.DATA_TEMPLATE_TIME_WINDOW_MINUTES,
        "enabled": const.DATA_TEMPLATE_ENABLED,
        "is_archived": const.DATA_TEMPLATE_ARCHIVED,
    },
    const.REMOTE_TABLE_TASK_INSTANCES: {
        "id": const.DATA_INTERNAL_ID,
        "task_id": const.DATA_INSTANCE_TEMPLATE_ID,
        "assignee_profile_id": const.DATA_INSTANCE_ASSIGNEE_ID,
        "created_by_profile_id": const.DATA_INSTANCE_CREATOR_ID,
        "created_at": const.DATA_CREATED_AT,
        "due_at": const.DATA_INSTANCE_DUE_AT,
        "expires_at": const.DATA_INSTANCE_EXPIRES_AT,
        "schedule_type": const.DATA_INSTANCE_SCHEDULE_TYPE,
        "status": const.DATA_INSTANCE_STATUS,
        "completion_requested_by": const.DATA_INSTANCE_COMPLETION_REQUESTED_BY,
        "completion_requested_at": const.DATA_INSTANCE_COMPLETION_REQUESTED_AT,
        "approved_by": const.DATA_INSTANCE_APPROVED_BY,
        "approved_at": const.DATA_INSTANCE_APPROVED_AT,
    },
    const.REMOTE_TABLE_STARS_LEDGER: {
        "id": const.DATA_INTERNAL_ID,
        "profile_id": const.DATA_LEDGER_MEMBER_ID,
        "delta": const.DATA_LEDGER_DELTA,
        "reason": const.DATA_LEDGER_REASON,
        "created_by_profile_id": const.DATA_LEDGER_CREATOR_ID,
        "task_instance_id": const.DATA_LEDGER_TASK_INSTANCE_ID,
        "created_at": const.DATA_CREATED_AT,
    },
    const.REMOTE_TABLE_REWARDS: {
        "id": const.DATA_INTERNAL_ID,
        "name": const.DATA_REWARD_TITLE,
        "description": const.DATA_REWARD_DESCRIPTION,
        "star_cost": const.DATA_REWARD_COST,
        "status": const.DATA_REWARD_STATUS,
        "redeemed_by": const.DATA_REWARD_REDEEMED_BY,
        "redeemed_at": const.DATA_REWARD_REDEEMED_AT,
    },
}

# local key -> remote column, per collection
_FIELD_MAPS: dict[str, dict[str, str]] = {
    const.REMOTE_TABLE_TO_COLLECTION[table]: {
        local: column for column, local in columns.items()
    }
    for table, columns in _COLUMN_MAPS.items()
}

# Fields the remote may hold ids of other entities in (local key -> collection)
REFERENCE_FIELDS: dict[str, dict[str, str]] = {
    const.DATA_INSTANCES: {
        const.DATA_INSTANCE_TEMPLATE_ID: const.DATA_TEMPLATES,
        const.DATA_INSTANCE_ASSIGNEE_ID: const.DATA_MEMBERS,
        const.DATA_INSTANCE_CREATOR_ID: const.DATA_MEMBERS,
        const.DATA_INSTANCE_COMPLETION_REQUESTED_BY: const.DATA_MEMBERS,
        const.DATA_INSTANCE_APPROVED_BY: const.DATA_MEMBERS,
    },
    const.DATA_LEDGER: {
        const.DATA_LEDGER_MEMBER_ID: const.DATA_MEMBERS,
        const.DATA_LEDGER_CREATOR_ID: const.DATA_MEMBERS,
        const.DATA_LEDGER_TASK_INSTANCE_ID: const.DATA_INSTANCES,
    },
    const.DATA_REWARDS: {
        const.DATA_REWARD_REDEEMED_BY: const.DATA_MEMBERS,
    },
}

_REMOTE_ROLE_TO_LOCAL = {
    const.REMOTE_ROLE_KID: const.ROLE_DEPENDENT,
    const.REMOTE_ROLE_GUARDIAN: const.ROLE_GUARDIAN,
    const.REMOTE_ROLE_PARENT: const.ROLE_GUARDIAN,
}
_LOCAL_ROLE_TO_REMOTE = {
    const.ROLE_DEPENDENT: const.REMOTE_ROLE_KID,
    const.ROLE_GUARDIAN: const.REMOTE_ROLE_GUARDIAN,
}


def entity_from_remote(table: str, row: dict[str, Any]) -> dict[str, Any]:
    """Map a remote row onto DATA_* keys.

    Only columns present in the row are emitted; unknown columns are ignored.
    The echoed client_ref (the local id sent on insert) is kept under the
    same key for identity resolution. Unknown role labels pass through
    unchanged so the reconciliation layer can drop them.
    """
    columns = _COLUMN_MAPS.get(table, {})
    entity: dict[str, Any] = {}
    for column, value in row.items():
        local_key = columns.get(column)
        if local_key is not None:
            entity[local_key] = value
    if row.get(const.REMOTE_COLUMN_CLIENT_REF):
        entity[const.REMOTE_COLUMN_CLIENT_REF] = row[const.REMOTE_COLUMN_CLIENT_REF]

    if table == const.REMOTE_TABLE_PROFILES and const.DATA_MEMBER_ROLE in entity:
        raw_role = entity[const.DATA_MEMBER_ROLE]
        entity[const.DATA_MEMBER_ROLE] = _REMOTE_ROLE_TO_LOCAL.get(raw_role, raw_role)
    return entity


def fields_to_remote(
    collection: str,
    fields: dict[str, Any],
    resolve_id: Callable[[str, str], str] | None = None,
) -> dict[str, Any]:
    """Map DATA_* fields to remote columns for an insert or update payload.

    Args:
        collection: Local collection the fields belong to
        fields: DATA_* keyed values (may be partial)
        resolve_id: Optional (collection, id) -> id translator applied to
            reference fields so promoted local ids go out as remote ids

    Local-only bookkeeping, the internal id and derived totals are never
    emitted.
    """
    columns = _FIELD_MAPS.get(collection, {})
    references = REFERENCE_FIELDS.get(collection, {})
    row: dict[str, Any] = {}
    for key, value in fields.items():
        if key == const.DATA_INTERNAL_ID:
            continue
        column = columns.get(key)
        if column is None:
            continue
        if resolve_id is not None and key in references and value:
            value = resolve_id(references[key], value)
        if collection == const.DATA_MEMBERS and key == const.DATA_MEMBER_ROLE:
            value = _LOCAL_ROLE_TO_REMOTE.get(value, value)
        row[column] = value
    return row


def entity_to_remote(
    collection: str,
    entity: dict[str, Any],
    family_id: str,
    resolve_id: Callable[[str, str], str] | None = None,
) -> dict[str, Any]:
    """Build the insert payload for a locally created entity.

    Carries the partition key and the local id as client_ref so the echoed
    row can be matched back to the local entity.
    """
    row = fields_to_remote(collection, entity, resolve_id)
    row[const.REMOTE_COLUMN_FAMILY_ID] = family_id
    row[const.REMOTE_COLUMN_CLIENT_REF] = entity[const.DATA_INTERNAL_ID]
    return row
