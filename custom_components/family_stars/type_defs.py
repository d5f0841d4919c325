"""Type definitions for Family Stars data structures.

Hybrid approach: TypedDict for entities whose keys are fixed at design time,
``dict[str, Any]`` for the storage document buckets that are keyed by id at
runtime.

Entities arriving from the remote may be partial (fields missing during a
schema rollout), so most entity fields are NotRequired. TypedDict is static
analysis only; runtime code keeps using ``.get()`` with defaults.

IMPORTANT: This file must NOT import from coordinator.py or any module that
imports the coordinator, to avoid circular dependencies.
"""

from typing import Any, Literal, NotRequired, TypedDict

# =============================================================================
# Type Aliases (for readability)
# =============================================================================

MemberId = str  # remote UUID, or "local-<hex>" before promotion
TemplateId = str
InstanceId = str
LedgerEntryId = str
RewardId = str
ISODatetime = str  # ISO 8601 datetime string "2026-01-18T12:30:00+00:00"
ISODate = str  # ISO 8601 date string "2026-01-18"

MemberRole = Literal["guardian", "dependent"]
ScheduleType = Literal["one_time", "recurring_daily", "time_sensitive"]
TaskStatus = Literal["open", "pending_approval", "approved", "expired"]
SyncState = Literal["pending", "synced", "failed"]


# =============================================================================
# Entities
# =============================================================================


class MemberData(TypedDict):
    """A family member (guardian or dependent).

    ``point_total`` is derived from the ledger and rewritten by LedgerManager.
    ``ha_user_id`` is local-only and never sent to the remote.
    """

    internal_id: MemberId
    name: str
    role: MemberRole
    age: NotRequired[int | None]
    point_total: NotRequired[int]
    capabilities: NotRequired[list[str]]
    ha_user_id: NotRequired[str | None]
    sync_state: NotRequired[SyncState]
    sync_error: NotRequired[str | None]


class TemplateData(TypedDict):
    """A task template. Archived instead of deleted."""

    internal_id: TemplateId
    title: str
    category: NotRequired[str]
    points: NotRequired[int]
    difficulty: NotRequired[str]
    min_age: NotRequired[int | None]
    max_age: NotRequired[int | None]
    schedule_type: NotRequired[ScheduleType]
    time_window_minutes: NotRequired[int | None]
    enabled: NotRequired[bool]
    archived: NotRequired[bool]
    sync_state: NotRequired[SyncState]
    sync_error: NotRequired[str | None]


class InstanceData(TypedDict):
    """A concrete, assigned occurrence of a template."""

    internal_id: InstanceId
    template_id: TemplateId
    assignee_id: MemberId
    creator_id: NotRequired[MemberId | None]
    created_at: NotRequired[ISODatetime]
    due_at: NotRequired[ISODatetime | None]
    expires_at: NotRequired[ISODatetime | None]
    schedule_type: NotRequired[ScheduleType]
    status: TaskStatus
    completion_requested_by: NotRequired[MemberId | None]
    completion_requested_at: NotRequired[ISODatetime | None]
    approved_by: NotRequired[MemberId | None]
    approved_at: NotRequired[ISODatetime | None]
    sync_state: NotRequired[SyncState]
    sync_error: NotRequired[str | None]


class LedgerEntry(TypedDict):
    """A single signed star delta.

    Created by: LedgerEngine.create_entry()
    Stored in: data["ledger"] keyed by internal_id
    Managed by: LedgerManager (append, retract unconfirmed, persist)
    """

    internal_id: LedgerEntryId
    member_id: MemberId
    delta: int
    reason: str
    creator_id: NotRequired[MemberId | None]
    task_instance_id: NotRequired[InstanceId | None]
    created_at: ISODatetime
    sync_state: NotRequired[SyncState]
    sync_error: NotRequired[str | None]


class RewardData(TypedDict):
    """A reward in the family catalog."""

    internal_id: RewardId
    title: str
    description: NotRequired[str]
    cost: int
    status: NotRequired[Literal["available", "redeemed"]]
    redeemed_by: NotRequired[MemberId | None]
    redeemed_at: NotRequired[ISODatetime | None]
    sync_state: NotRequired[SyncState]
    sync_error: NotRequired[str | None]


# =============================================================================
# Storage document
# =============================================================================

MembersCollection = dict[MemberId, MemberData]
TemplatesCollection = dict[TemplateId, TemplateData]
InstancesCollection = dict[InstanceId, InstanceData]
LedgerCollection = dict[LedgerEntryId, LedgerEntry]
RewardsCollection = dict[RewardId, RewardData]

# identity_map[collection][local_id] = remote_id
IdentityMap = dict[str, dict[str, str]]

# Any collection row, as stored
EntityData = dict[str, Any]


# =============================================================================
# Event Payload Types (Manager-to-Manager Communication)
# =============================================================================


class TaskStatusChangedEvent(TypedDict, total=False):
    """Event payload for SIGNAL_SUFFIX_TASK_STATUS_CHANGED.

    Emitted by: TaskManager (local transitions), SyncManager (canonical merges)
    """

    instance_id: InstanceId
    assignee_id: MemberId
    old_status: str
    new_status: str
    actor_id: MemberId | None
    source: Literal["local", "remote"]


class LedgerAppendedEvent(TypedDict, total=False):
    """Event payload for SIGNAL_SUFFIX_LEDGER_APPENDED."""

    entry_id: LedgerEntryId
    member_id: MemberId
    delta: int
    new_total: int
    task_instance_id: InstanceId | None


class SyncFailedEvent(TypedDict, total=False):
    """Event payload for SIGNAL_SUFFIX_SYNC_FAILED."""

    operation: str
    collection: str
    entity_id: str | None
    code: str
    message: str


class IdentityPromotedEvent(TypedDict, total=False):
    """Event payload for SIGNAL_SUFFIX_IDENTITY_PROMOTED."""

    collection: str
    local_id: str
    remote_id: str
