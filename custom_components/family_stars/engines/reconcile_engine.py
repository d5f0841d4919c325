"""Reconcile Engine - Pure logic for folding canonical rows into the cache.

This engine provides stateless, pure Python functions for:
- Sanitizing decoded canonical rows (malformed fields are dropped)
- Merge-not-replace of canonical fields into cached entities
- Identity resolution between locally minted and remote identifiers
- Planning the reference rewrites a promotion requires
- Detecting confirmed entities that vanished from a full snapshot

Merging is idempotent (merging the same row twice changes nothing the second
time) and promotion is recorded once per local id, so a mutation response
and its push echo can arrive in either order.

ARCHITECTURE: This is a pure logic engine with NO Home Assistant dependencies.
All functions are static methods that operate on passed-in snapshots and
return new dicts. SyncManager applies the results to the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .. import const
from ..data_builders import REFERENCE_FIELDS, is_local_id
from ..utils.dt_utils import dt_parse
from .ledger_engine import LedgerEngine
from .task_engine import TaskEngine

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from ..type_defs import EntityData, IdentityMap


# Fields owned by this device; canonical payloads never overwrite them
LOCAL_ONLY_FIELDS: frozenset[str] = frozenset(
    {
        const.DATA_SYNC_STATE,
        const.DATA_SYNC_ERROR,
        const.DATA_MEMBER_HA_USER_ID,
        const.DATA_MEMBER_POINT_TOTAL,
    }
)

# Transient matching hint carried by decoded rows; never stored
CLIENT_REF = const.REMOTE_COLUMN_CLIENT_REF

_TIMESTAMP_FIELDS: dict[str, tuple[str, ...]] = {
    const.DATA_INSTANCES: (
        const.DATA_CREATED_AT,
        const.DATA_INSTANCE_DUE_AT,
        const.DATA_INSTANCE_EXPIRES_AT,
        const.DATA_INSTANCE_COMPLETION_REQUESTED_AT,
        const.DATA_INSTANCE_APPROVED_AT,
    ),
    const.DATA_LEDGER: (const.DATA_CREATED_AT,),
    const.DATA_REWARDS: (const.DATA_REWARD_REDEEMED_AT,),
    const.DATA_MEMBERS: (const.DATA_CREATED_AT,),
}

_INT_FIELDS: dict[str, tuple[str, ...]] = {
    const.DATA_MEMBERS: (const.DATA_MEMBER_AGE,),
    const.DATA_TEMPLATES: (
        const.DATA_TEMPLATE_POINTS,
        const.DATA_TEMPLATE_MIN_AGE,
        const.DATA_TEMPLATE_MAX_AGE,
        const.DATA_TEMPLATE_TIME_WINDOW_MINUTES,
    ),
    const.DATA_REWARDS: (const.DATA_REWARD_COST,),
}

_CHOICE_FIELDS: dict[str, dict[str, tuple[str, ...]]] = {
    const.DATA_MEMBERS: {const.DATA_MEMBER_ROLE: const.MEMBER_ROLES},
    const.DATA_TEMPLATES: {
        const.DATA_TEMPLATE_SCHEDULE_TYPE: const.SCHEDULE_TYPES,
        const.DATA_TEMPLATE_DIFFICULTY: const.TASK_DIFFICULTIES,
    },
    const.DATA_INSTANCES: {const.DATA_INSTANCE_SCHEDULE_TYPE: const.SCHEDULE_TYPES},
    const.DATA_REWARDS: {
        const.DATA_REWARD_STATUS: (
            const.REWARD_STATUS_AVAILABLE,
            const.REWARD_STATUS_REDEEMED,
        )
    },
}

_BOOL_FIELDS: dict[str, tuple[str, ...]] = {
    const.DATA_TEMPLATES: (const.DATA_TEMPLATE_ENABLED, const.DATA_TEMPLATE_ARCHIVED),
}

_TEXT_FIELDS: dict[str, tuple[str, ...]] = {
    const.DATA_MEMBERS: (const.DATA_MEMBER_NAME,),
    const.DATA_TEMPLATES: (const.DATA_TEMPLATE_TITLE, const.DATA_TEMPLATE_CATEGORY),
    const.DATA_LEDGER: (const.DATA_LEDGER_REASON,),
    const.DATA_REWARDS: (const.DATA_REWARD_TITLE, const.DATA_REWARD_DESCRIPTION),
}

# Fields that describe a decision; held back together by the stale-push guard
_DECISION_FIELDS: tuple[str, ...] = (
    const.DATA_INSTANCE_STATUS,
    const.DATA_INSTANCE_APPROVED_BY,
    const.DATA_INSTANCE_APPROVED_AT,
    const.DATA_INSTANCE_COMPLETION_REQUESTED_BY,
    const.DATA_INSTANCE_COMPLETION_REQUESTED_AT,
)


# =============================================================================
# RESULT STRUCTURES
# =============================================================================


@dataclass
class SanitizeResult:
    """A cleaned canonical row plus the names of the fields that were dropped."""

    entity: dict[str, Any]
    dropped: list[str] = field(default_factory=list)


@dataclass
class PromotionPlan:
    """Everything a local-id -> remote-id promotion changes.

    Attributes:
        collection: Collection of the promoted entity
        local_id: Identifier minted on this device
        remote_id: Identifier assigned by the remote
        entity: The entity to store under remote_id
        rewrites: collection -> entity_id -> updated entity, for every row
            that referenced local_id
    """

    collection: str
    local_id: str
    remote_id: str
    entity: dict[str, Any]
    rewrites: dict[str, dict[str, dict[str, Any]]] = field(default_factory=dict)


# =============================================================================
# RECONCILE ENGINE
# =============================================================================


class ReconcileEngine:
    """Pure logic for reconciliation. All methods are static."""

    # =========================================================================
    # Normalization / sanitizing
    # =========================================================================

    @staticmethod
    def normalize_status(raw: Any) -> str | None:
        """Map a remote status label onto the local state machine.

        ``rejected`` is a remote-only label for "back to open"; ``done`` is a
        legacy label for approved. Anything else unknown returns None.
        """
        if raw in const.TASK_STATUSES:
            return raw
        if raw == const.REMOTE_TASK_STATUS_REJECTED:
            return const.TASK_STATUS_OPEN
        if raw == const.REMOTE_TASK_STATUS_DONE:
            return const.TASK_STATUS_APPROVED
        return None

    @staticmethod
    def sanitize(
        collection: str,
        canonical: Mapping[str, Any],
        data: Mapping[str, Any],
        *,
        known: bool,
    ) -> SanitizeResult:
        """Drop malformed fields from a decoded canonical row.

        Args:
            collection: Target collection
            canonical: Row decoded by data_builders.entity_from_remote
            data: Current storage document (for reference checks)
            known: Whether the entity is already cached. Unknown references
                are only dropped for known entities; a new entity keeps them
                because the feed may deliver children before their parents.

        Returns:
            SanitizeResult with the cleaned row and dropped field names
        """
        entity = dict(canonical)
        dropped: list[str] = []

        def drop(key: str) -> None:
            entity.pop(key, None)
            dropped.append(key)

        for key in LOCAL_ONLY_FIELDS:
            entity.pop(key, None)

        if collection == const.DATA_INSTANCES and const.DATA_INSTANCE_STATUS in entity:
            status = ReconcileEngine.normalize_status(entity[const.DATA_INSTANCE_STATUS])
            if status is None:
                drop(const.DATA_INSTANCE_STATUS)
            else:
                entity[const.DATA_INSTANCE_STATUS] = status

        if collection == const.DATA_LEDGER and const.DATA_LEDGER_DELTA in entity:
            try:
                entity[const.DATA_LEDGER_DELTA] = LedgerEngine.validate_delta(
                    entity[const.DATA_LEDGER_DELTA]
                )
            except ValueError:
                drop(const.DATA_LEDGER_DELTA)

        for key in _INT_FIELDS.get(collection, ()):
            if key in entity and entity[key] is not None:
                value = entity[key]
                if isinstance(value, bool) or not isinstance(value, int):
                    drop(key)

        for key, choices in _CHOICE_FIELDS.get(collection, {}).items():
            if key in entity and entity[key] not in choices:
                drop(key)

        for key in _BOOL_FIELDS.get(collection, ()):
            if key in entity and not isinstance(entity[key], bool):
                drop(key)

        for key in _TEXT_FIELDS.get(collection, ()):
            if key in entity and not isinstance(entity[key], str):
                drop(key)

        for key in _TIMESTAMP_FIELDS.get(collection, ()):
            if key in entity and entity[key] is not None:
                if dt_parse(entity[key]) is None:
                    drop(key)

        if collection == const.DATA_MEMBERS and const.DATA_MEMBER_CAPABILITIES in entity:
            caps = entity[const.DATA_MEMBER_CAPABILITIES]
            if caps is None:
                entity[const.DATA_MEMBER_CAPABILITIES] = []
            elif not isinstance(caps, list):
                drop(const.DATA_MEMBER_CAPABILITIES)

        if known:
            for key, target in REFERENCE_FIELDS.get(collection, {}).items():
                ref = entity.get(key)
                if ref and ref not in data.get(target, {}):
                    drop(key)

        return SanitizeResult(entity=entity, dropped=dropped)

    # =========================================================================
    # Merge
    # =========================================================================

    @staticmethod
    def merge(
        collection: str,
        existing: Mapping[str, Any] | None,
        canonical: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Fold a sanitized canonical row into the cached entity.

        - Unknown entity: the canonical row becomes the entity.
        - Known entity: canonical fields win; fields the row does not carry
          and local-only fields are preserved.
        - Instances: expires_at keeps the earlier value and is never cleared;
          completion request fields are cleared outside pending_approval; a
          terminal status already confirmed by the remote is not regressed by
          an older push.

        The result is marked synced.
        """
        incoming = {
            key: value
            for key, value in canonical.items()
            if key not in LOCAL_ONLY_FIELDS and key != CLIENT_REF
        }

        if collection == const.DATA_INSTANCES and existing is not None:
            incoming = ReconcileEngine._guard_instance_fields(existing, incoming)

        merged: dict[str, Any] = dict(existing) if existing is not None else {}
        merged.update(incoming)

        if collection == const.DATA_INSTANCES:
            if merged.get(const.DATA_INSTANCE_STATUS) != const.TASK_STATUS_PENDING_APPROVAL:
                merged[const.DATA_INSTANCE_COMPLETION_REQUESTED_BY] = None
                merged[const.DATA_INSTANCE_COMPLETION_REQUESTED_AT] = None

        merged[const.DATA_SYNC_STATE] = const.SYNC_STATE_SYNCED
        merged[const.DATA_SYNC_ERROR] = None
        return merged

    @staticmethod
    def _guard_instance_fields(
        existing: Mapping[str, Any], incoming: dict[str, Any]
    ) -> dict[str, Any]:
        """Apply the instance invariants to an incoming canonical row."""
        guarded = dict(incoming)

        cached_expiry = existing.get(const.DATA_INSTANCE_EXPIRES_AT)
        if cached_expiry:
            canonical_expiry = guarded.get(const.DATA_INSTANCE_EXPIRES_AT)
            cached_dt = dt_parse(cached_expiry)
            canonical_dt = dt_parse(canonical_expiry)
            if canonical_dt is None or (cached_dt is not None and cached_dt < canonical_dt):
                guarded[const.DATA_INSTANCE_EXPIRES_AT] = cached_expiry

        cached_status = existing.get(const.DATA_INSTANCE_STATUS)
        incoming_status = guarded.get(const.DATA_INSTANCE_STATUS)
        if (
            TaskEngine.is_terminal(cached_status)
            and existing.get(const.DATA_SYNC_STATE) == const.SYNC_STATE_SYNCED
            and incoming_status is not None
            and incoming_status != cached_status
        ):
            for key in _DECISION_FIELDS:
                guarded.pop(key, None)

        return guarded

    # =========================================================================
    # Identity resolution
    # =========================================================================

    @staticmethod
    def resolve_id(identity_map: IdentityMap, collection: str, entity_id: str) -> str:
        """Translate a local id to its promoted remote id, if any."""
        return identity_map.get(collection, {}).get(entity_id, entity_id)

    @staticmethod
    def is_promoted(identity_map: IdentityMap, collection: str, local_id: str) -> bool:
        """Return True once a local id has been promoted."""
        return local_id in identity_map.get(collection, {})

    @staticmethod
    def find_local_match(
        collection: str,
        canonical: Mapping[str, Any],
        data: Mapping[str, Any],
    ) -> str | None:
        """Find the unpromoted local entity a canonical row corresponds to.

        Matching keys:
        - any collection: the echoed client_ref equals a cached local id
        - members: case-folded name + role among local members
        - ledger: an unconfirmed local award for the same (instance, member)

        Returns:
            The local id to promote, or None
        """
        remote_id = canonical.get(const.DATA_INTERNAL_ID)
        entities: Mapping[str, Any] = data.get(collection, {})
        if not remote_id or remote_id in entities:
            return None

        client_ref = canonical.get(CLIENT_REF)
        if client_ref and is_local_id(client_ref) and client_ref in entities:
            return client_ref

        if collection == const.DATA_MEMBERS:
            name = str(canonical.get(const.DATA_MEMBER_NAME) or "").strip().casefold()
            role = canonical.get(const.DATA_MEMBER_ROLE)
            if not name or role not in const.MEMBER_ROLES:
                return None
            for member_id, member in entities.items():
                if not is_local_id(member_id):
                    continue
                if (
                    str(member.get(const.DATA_MEMBER_NAME, "")).strip().casefold()
                    == name
                    and member.get(const.DATA_MEMBER_ROLE) == role
                ):
                    return member_id
            return None

        if collection == const.DATA_LEDGER:
            instance_id = canonical.get(const.DATA_LEDGER_TASK_INSTANCE_ID)
            member_id = canonical.get(const.DATA_LEDGER_MEMBER_ID)
            delta = canonical.get(const.DATA_LEDGER_DELTA)
            if not instance_id or not member_id or not isinstance(delta, int) or delta <= 0:
                return None
            local_awards = [
                entry for entry_id, entry in entities.items() if is_local_id(entry_id)
            ]
            award = LedgerEngine.find_award(local_awards, instance_id, member_id)
            if award is not None:
                return award[const.DATA_INTERNAL_ID]

        return None

    @staticmethod
    def plan_promotion(
        data: Mapping[str, Any],
        collection: str,
        local_id: str,
        remote_id: str,
    ) -> PromotionPlan:
        """Plan the promotion of ``local_id`` to ``remote_id``.

        If the remote id is already cached (the push echo won the race), the
        local row folds into it: the cached remote row keeps its fields and
        only gains what it lacks (local-only fields included). Every reference
        to the local id across the document is rewritten.
        """
        entities: Mapping[str, Any] = data.get(collection, {})
        local_entity = dict(entities.get(local_id, {}))
        existing_remote = entities.get(remote_id)

        if existing_remote is not None:
            entity = dict(existing_remote)
            for key, value in local_entity.items():
                if key not in entity or (key in LOCAL_ONLY_FIELDS and value is not None):
                    entity[key] = value
            entity[const.DATA_SYNC_STATE] = existing_remote.get(
                const.DATA_SYNC_STATE, const.SYNC_STATE_SYNCED
            )
        else:
            entity = local_entity
        entity[const.DATA_INTERNAL_ID] = remote_id

        plan = PromotionPlan(
            collection=collection,
            local_id=local_id,
            remote_id=remote_id,
            entity=entity,
        )

        for ref_collection, fields in REFERENCE_FIELDS.items():
            ref_keys = [key for key, target in fields.items() if target == collection]
            if not ref_keys:
                continue
            for entity_id, ref_entity in data.get(ref_collection, {}).items():
                if ref_collection == collection and entity_id == local_id:
                    continue
                changed = {key: remote_id for key in ref_keys if ref_entity.get(key) == local_id}
                if changed:
                    updated = dict(ref_entity)
                    updated.update(changed)
                    plan.rewrites.setdefault(ref_collection, {})[entity_id] = updated

        if collection in REFERENCE_FIELDS:
            for key, target in REFERENCE_FIELDS[collection].items():
                if target == collection and entity.get(key) == local_id:
                    entity[key] = remote_id

        return plan

    # =========================================================================
    # Snapshots
    # =========================================================================

    @staticmethod
    def find_missing(
        cached: Mapping[str, EntityData], snapshot_ids: Iterable[str]
    ) -> list[str]:
        """Return confirmed cached ids that are absent from a full snapshot.

        Entities still carrying a local id have never been confirmed and are
        kept regardless.
        """
        present = set(snapshot_ids)
        return [
            entity_id
            for entity_id in cached
            if not is_local_id(entity_id) and entity_id not in present
        ]
