# File: const.py
"""Constants for the Family Stars integration.

This file centralizes configuration keys, defaults, storage field names,
signal suffixes, service names and remote table names so the engines,
managers and platforms all speak the same vocabulary.
"""

import logging

from homeassistant.const import Platform


# ------------------------------------------------------------------------------------------------
# General / Integration Information
# ------------------------------------------------------------------------------------------------
FAMILY_STARS_TITLE = "Family Stars"

DOMAIN = "family_stars"

LOGGER = logging.getLogger(__package__)

PLATFORMS = [
    Platform.SENSOR,
]

COORDINATOR_SUFFIX = "_coordinator"

# Storage and Versioning
STORAGE_KEY_PREFIX = "family_stars"
STORAGE_VERSION = 1
SCHEMA_VERSION = 1

# Write coalescing window for the local cache (seconds)
STORAGE_SAVE_DELAY = 0.3

# ------------------------------------------------------------------------------------------------
# Configuration Keys
# ------------------------------------------------------------------------------------------------
CONF_FAMILY_ID = "family_id"
CONF_REMOTE_URL = "remote_url"
CONF_API_KEY = "api_key"
CONF_SWEEP_INTERVAL = "sweep_interval"
CONF_REALTIME_ENABLED = "realtime_enabled"

DEFAULT_SWEEP_INTERVAL = 60
MIN_SWEEP_INTERVAL = 15
MAX_SWEEP_INTERVAL = 3600
DEFAULT_REALTIME_ENABLED = True

# Recurring regeneration runs at local midnight
DEFAULT_DAILY_REGENERATION_TIME = {"hour": 0, "minute": 0, "second": 0}

# ------------------------------------------------------------------------------------------------
# Storage Buckets
# ------------------------------------------------------------------------------------------------
DATA_META = "meta"
DATA_MEMBERS = "members"
DATA_TEMPLATES = "templates"
DATA_INSTANCES = "instances"
DATA_LEDGER = "ledger"
DATA_REWARDS = "rewards"
DATA_IDENTITY_MAP = "identity_map"

# Collections that hold entities keyed by internal_id
DATA_COLLECTIONS = (
    DATA_MEMBERS,
    DATA_TEMPLATES,
    DATA_INSTANCES,
    DATA_LEDGER,
    DATA_REWARDS,
)

DATA_META_SCHEMA_VERSION = "schema_version"
DATA_META_LAST_REGENERATION_DAY = "last_regeneration_day"
DATA_META_LAST_FULL_SYNC = "last_full_sync"
DATA_META_LAST_SYNC_ERROR = "last_sync_error"

# ------------------------------------------------------------------------------------------------
# Common Entity Fields
# ------------------------------------------------------------------------------------------------
DATA_INTERNAL_ID = "internal_id"
DATA_CREATED_AT = "created_at"

# Local-only bookkeeping (never sent remote, never overwritten by canonical payloads)
DATA_SYNC_STATE = "sync_state"
DATA_SYNC_ERROR = "sync_error"

SYNC_STATE_PENDING = "pending"
SYNC_STATE_SYNCED = "synced"
SYNC_STATE_FAILED = "failed"

# Prefix for identifiers minted on this device before the remote assigns one
LOCAL_ID_PREFIX = "local-"

# ------------------------------------------------------------------------------------------------
# Members
# ------------------------------------------------------------------------------------------------
DATA_MEMBER_NAME = "name"
DATA_MEMBER_ROLE = "role"
DATA_MEMBER_AGE = "age"
DATA_MEMBER_POINT_TOTAL = "point_total"
DATA_MEMBER_CAPABILITIES = "capabilities"
DATA_MEMBER_HA_USER_ID = "ha_user_id"

ROLE_GUARDIAN = "guardian"
ROLE_DEPENDENT = "dependent"
MEMBER_ROLES = (ROLE_GUARDIAN, ROLE_DEPENDENT)

# ------------------------------------------------------------------------------------------------
# Task Templates
# ------------------------------------------------------------------------------------------------
DATA_TEMPLATE_TITLE = "title"
DATA_TEMPLATE_CATEGORY = "category"
DATA_TEMPLATE_POINTS = "points"
DATA_TEMPLATE_DIFFICULTY = "difficulty"
DATA_TEMPLATE_MIN_AGE = "min_age"
DATA_TEMPLATE_MAX_AGE = "max_age"
DATA_TEMPLATE_SCHEDULE_TYPE = "schedule_type"
DATA_TEMPLATE_TIME_WINDOW_MINUTES = "time_window_minutes"
DATA_TEMPLATE_ENABLED = "enabled"
DATA_TEMPLATE_ARCHIVED = "archived"

DEFAULT_TASK_POINTS = 1
DEFAULT_TIME_WINDOW_MINUTES = 30

SCHEDULE_ONE_TIME = "one_time"
SCHEDULE_RECURRING_DAILY = "recurring_daily"
SCHEDULE_TIME_SENSITIVE = "time_sensitive"
SCHEDULE_TYPES = (SCHEDULE_ONE_TIME, SCHEDULE_RECURRING_DAILY, SCHEDULE_TIME_SENSITIVE)

CATEGORY_CLEANING = "cleaning"
CATEGORY_KITCHEN = "kitchen"
CATEGORY_LEARNING = "learning"
CATEGORY_KINDNESS = "kindness"
CATEGORY_PRAYER = "prayer"
CATEGORY_OUTDOOR = "outdoor"
CATEGORY_PERSONAL = "personal"
TASK_CATEGORIES = (
    CATEGORY_CLEANING,
    CATEGORY_KITCHEN,
    CATEGORY_LEARNING,
    CATEGORY_KINDNESS,
    CATEGORY_PRAYER,
    CATEGORY_OUTDOOR,
    CATEGORY_PERSONAL,
)
DEFAULT_TASK_CATEGORY = CATEGORY_PERSONAL

DIFFICULTY_EASY = "easy"
DIFFICULTY_MEDIUM = "medium"
DIFFICULTY_HARD = "hard"
TASK_DIFFICULTIES = (DIFFICULTY_EASY, DIFFICULTY_MEDIUM, DIFFICULTY_HARD)
DEFAULT_TASK_DIFFICULTY = DIFFICULTY_EASY

# ------------------------------------------------------------------------------------------------
# Task Instances
# ------------------------------------------------------------------------------------------------
DATA_INSTANCE_TEMPLATE_ID = "template_id"
DATA_INSTANCE_ASSIGNEE_ID = "assignee_id"
DATA_INSTANCE_CREATOR_ID = "creator_id"
DATA_INSTANCE_DUE_AT = "due_at"
DATA_INSTANCE_EXPIRES_AT = "expires_at"
DATA_INSTANCE_SCHEDULE_TYPE = "schedule_type"
DATA_INSTANCE_STATUS = "status"
DATA_INSTANCE_COMPLETION_REQUESTED_BY = "completion_requested_by"
DATA_INSTANCE_COMPLETION_REQUESTED_AT = "completion_requested_at"
DATA_INSTANCE_APPROVED_BY = "approved_by"
DATA_INSTANCE_APPROVED_AT = "approved_at"

TASK_STATUS_OPEN = "open"
TASK_STATUS_PENDING_APPROVAL = "pending_approval"
TASK_STATUS_APPROVED = "approved"
TASK_STATUS_EXPIRED = "expired"
TASK_STATUSES = (
    TASK_STATUS_OPEN,
    TASK_STATUS_PENDING_APPROVAL,
    TASK_STATUS_APPROVED,
    TASK_STATUS_EXPIRED,
)
TASK_TERMINAL_STATUSES = (TASK_STATUS_APPROVED, TASK_STATUS_EXPIRED)

# Labels other clients may write remotely; normalized on ingestion
REMOTE_TASK_STATUS_REJECTED = "rejected"
REMOTE_TASK_STATUS_DONE = "done"

# ------------------------------------------------------------------------------------------------
# Ledger
# ------------------------------------------------------------------------------------------------
DATA_LEDGER_MEMBER_ID = "member_id"
DATA_LEDGER_DELTA = "delta"
DATA_LEDGER_REASON = "reason"
DATA_LEDGER_CREATOR_ID = "creator_id"
DATA_LEDGER_TASK_INSTANCE_ID = "task_instance_id"

LEDGER_REASON_TASK_COMPLETION = "Task completion"
LEDGER_REASON_MANUAL_AWARD = "Manual award"
LEDGER_REASON_MANUAL_DEDUCTION = "Manual deduction"
LEDGER_REASON_REWARD_PREFIX = "Reward: "

# ------------------------------------------------------------------------------------------------
# Rewards
# ------------------------------------------------------------------------------------------------
DATA_REWARD_TITLE = "title"
DATA_REWARD_DESCRIPTION = "description"
DATA_REWARD_COST = "cost"
DATA_REWARD_STATUS = "status"
DATA_REWARD_REDEEMED_BY = "redeemed_by"
DATA_REWARD_REDEEMED_AT = "redeemed_at"

REWARD_STATUS_AVAILABLE = "available"
REWARD_STATUS_REDEEMED = "redeemed"

# ------------------------------------------------------------------------------------------------
# Remote Store (Supabase / PostgREST)
# ------------------------------------------------------------------------------------------------
REMOTE_TABLE_PROFILES = "profiles"
REMOTE_TABLE_TASKS = "tasks"
REMOTE_TABLE_TASK_INSTANCES = "task_instances"
REMOTE_TABLE_TASK_APPROVALS = "task_approvals"
REMOTE_TABLE_STARS_LEDGER = "stars_ledger"
REMOTE_TABLE_REWARDS = "rewards"

# Local collection for each synced remote table
REMOTE_TABLE_TO_COLLECTION = {
    REMOTE_TABLE_PROFILES: DATA_MEMBERS,
    REMOTE_TABLE_TASKS: DATA_TEMPLATES,
    REMOTE_TABLE_TASK_INSTANCES: DATA_INSTANCES,
    REMOTE_TABLE_STARS_LEDGER: DATA_LEDGER,
    REMOTE_TABLE_REWARDS: DATA_REWARDS,
}
COLLECTION_TO_REMOTE_TABLE = {
    collection: table for table, collection in REMOTE_TABLE_TO_COLLECTION.items()
}

REMOTE_COLUMN_ID = "id"
REMOTE_COLUMN_FAMILY_ID = "family_id"
REMOTE_COLUMN_CLIENT_REF = "client_ref"
REMOTE_COLUMN_STATUS = "status"

REMOTE_ROLE_KID = "kid"
REMOTE_ROLE_GUARDIAN = "guardian"
REMOTE_ROLE_PARENT = "parent"

REMOTE_DECISION_APPROVED = "approved"
REMOTE_DECISION_REJECTED = "rejected"

CHANGE_INSERT = "insert"
CHANGE_UPDATE = "update"
CHANGE_DELETE = "delete"
CHANGE_KINDS = (CHANGE_INSERT, CHANGE_UPDATE, CHANGE_DELETE)

REST_PATH = "/rest/v1/"
REALTIME_PATH = "/realtime/v1/websocket"
REALTIME_HEARTBEAT_SECONDS = 30
REALTIME_RECONNECT_SECONDS = 10
REQUEST_TIMEOUT_SECONDS = 15

# Remote error codes
REMOTE_ERROR_NETWORK = "network"
REMOTE_ERROR_TIMEOUT = "timeout"
REMOTE_ERROR_AUTH = "auth"
REMOTE_ERROR_RATE_LIMIT = "rate_limit"
REMOTE_ERROR_VALIDATION = "validation"
REMOTE_ERROR_NOT_FOUND = "not_found"
REMOTE_ERROR_SERVER = "server"
REMOTE_ERROR_UNKNOWN = "unknown"

# PostgREST "no rows" error code
POSTGREST_NOT_FOUND_CODE = "PGRST116"

# ------------------------------------------------------------------------------------------------
# Signals (entry-scoped, see helpers.entity_helpers.get_event_signal)
# ------------------------------------------------------------------------------------------------
SIGNAL_SUFFIX_TASK_ASSIGNED = "task_assigned"
SIGNAL_SUFFIX_TASK_STATUS_CHANGED = "task_status_changed"
SIGNAL_SUFFIX_LEDGER_APPENDED = "ledger_appended"
SIGNAL_SUFFIX_LEDGER_RETRACTED = "ledger_retracted"
SIGNAL_SUFFIX_MEMBER_CHANGED = "member_changed"
SIGNAL_SUFFIX_TEMPLATE_CHANGED = "template_changed"
SIGNAL_SUFFIX_REWARD_REDEEMED = "reward_redeemed"
SIGNAL_SUFFIX_IDENTITY_PROMOTED = "identity_promoted"
SIGNAL_SUFFIX_SYNC_FAILED = "sync_failed"
SIGNAL_SUFFIX_SYNC_COMPLETED = "sync_completed"

# ------------------------------------------------------------------------------------------------
# Services
# ------------------------------------------------------------------------------------------------
SERVICE_ASSIGN_TASK = "assign_task"
SERVICE_REQUEST_COMPLETION = "request_completion"
SERVICE_APPROVE_TASK = "approve_task"
SERVICE_REJECT_TASK = "reject_task"
SERVICE_AWARD_STARS = "award_stars"
SERVICE_DEDUCT_STARS = "deduct_stars"
SERVICE_REDEEM_REWARD = "redeem_reward"
SERVICE_ADD_MEMBER = "add_member"
SERVICE_UPDATE_MEMBER = "update_member"
SERVICE_REMOVE_MEMBER = "remove_member"
SERVICE_CREATE_TEMPLATE = "create_template"
SERVICE_UPDATE_TEMPLATE = "update_template"
SERVICE_ARCHIVE_TEMPLATE = "archive_template"
SERVICE_CREATE_REWARD = "create_reward"
SERVICE_UPDATE_REWARD = "update_reward"
SERVICE_DELETE_REWARD = "delete_reward"
SERVICE_REGENERATE_RECURRING = "regenerate_recurring"
SERVICE_SYNC_NOW = "sync_now"

FIELD_CONFIG_ENTRY_ID = "config_entry_id"
FIELD_ACTOR_NAME = "actor_name"
FIELD_MEMBER_NAME = "member_name"
FIELD_ASSIGNEE_NAME = "assignee_name"
FIELD_TEMPLATE = "template"
FIELD_INSTANCE_ID = "instance_id"
FIELD_REWARD = "reward"
FIELD_DUE_AT = "due_at"
FIELD_STARS = "stars"
FIELD_REASON = "reason"
FIELD_NAME = "name"
FIELD_NEW_NAME = "new_name"
FIELD_ROLE = "role"
FIELD_AGE = "age"
FIELD_CAPABILITIES = "capabilities"
FIELD_HA_USER_ID = "ha_user_id"
FIELD_TITLE = "title"
FIELD_NEW_TITLE = "new_title"
FIELD_ENABLED = "enabled"
FIELD_CATEGORY = "category"
FIELD_POINTS = "points"
FIELD_DIFFICULTY = "difficulty"
FIELD_MIN_AGE = "min_age"
FIELD_MAX_AGE = "max_age"
FIELD_SCHEDULE_TYPE = "schedule_type"
FIELD_TIME_WINDOW_MINUTES = "time_window_minutes"
FIELD_DESCRIPTION = "description"
FIELD_COST = "cost"

# ------------------------------------------------------------------------------------------------
# Translation Keys (exceptions)
# ------------------------------------------------------------------------------------------------
TRANS_KEY_ERROR_NO_ENTRY = "no_entry"
TRANS_KEY_ERROR_MEMBER_NOT_FOUND = "member_not_found"
TRANS_KEY_ERROR_TEMPLATE_NOT_FOUND = "template_not_found"
TRANS_KEY_ERROR_TEMPLATE_ARCHIVED = "template_archived"
TRANS_KEY_ERROR_INSTANCE_NOT_FOUND = "instance_not_found"
TRANS_KEY_ERROR_REWARD_NOT_FOUND = "reward_not_found"
TRANS_KEY_ERROR_REWARD_REDEEMED = "reward_already_redeemed"
TRANS_KEY_ERROR_NOT_AUTHORIZED = "not_authorized"
TRANS_KEY_ERROR_ACTOR_UNKNOWN = "actor_unknown"
TRANS_KEY_ERROR_GUARDIAN_REQUIRED = "guardian_required"
TRANS_KEY_ERROR_ROLE_IMMUTABLE = "role_immutable"
TRANS_KEY_ERROR_DUPLICATE_MEMBER = "duplicate_member"
TRANS_KEY_ERROR_INVALID_FIELD = "invalid_field"
TRANS_KEY_ERROR_INSUFFICIENT_STARS = "insufficient_stars"

# Config flow errors
CFOP_ERROR_CANNOT_CONNECT = "cannot_connect"
CFOP_ERROR_INVALID_AUTH = "invalid_auth"
CFOP_ERROR_INVALID_URL = "invalid_url"

# ------------------------------------------------------------------------------------------------
# Sensors
# ------------------------------------------------------------------------------------------------
SENSOR_SUFFIX_MEMBER_STARS = "_member_stars"
SENSOR_SUFFIX_PENDING_APPROVALS = "_pending_approvals"

ATTR_RAW_TOTAL = "raw_total"
ATTR_LEDGER_ENTRIES = "ledger_entries"
ATTR_ROLE = "role"
ATTR_PENDING_INSTANCES = "pending_instances"
ATTR_LAST_SYNC_ERROR = "last_sync_error"

DEFAULT_STARS_ICON = "mdi:star"
DEFAULT_PENDING_ICON = "mdi:clipboard-clock-outline"

UNIT_STARS = "stars"
