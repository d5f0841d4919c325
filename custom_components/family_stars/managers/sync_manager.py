"""Sync Manager - Reconciliation between the local cache and the remote store.

This manager owns every conversation with the remote data service:
- Mirroring local inserts and (conditional) updates
- Folding canonical rows into the cache (mutation responses, realtime push,
  full pulls) through ReconcileEngine
- Promoting locally minted ids to remote ids, once, via the identity map
- Recording transport failures on the affected entity

ARCHITECTURE:
- SyncManager = "The Courier" (STATEFUL, talks to the remote)
- ReconcileEngine = sanitize / merge / identity matching (STATELESS)
- Other managers apply optimistic changes first, then ask SyncManager to
  mirror them. Transport failures never propagate out of this manager.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from homeassistant.core import callback

from .. import const, data_builders as db
from ..engines.reconcile_engine import ReconcileEngine
from ..helpers.entity_helpers import remove_entities_by_item_id
from ..remote import RemoteError
from ..utils.dt_utils import dt_now_iso
from .base_manager import BaseManager

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant

    from ..coordinator import FamilyStarsCoordinator
    from ..remote import RemoteChange
    from ..type_defs import EntityData, IdentityMap


# Outcomes of a mirrored update
UPDATE_APPLIED = "applied"
UPDATE_CONFLICT = "conflict"
UPDATE_FAILED = "failed"
UPDATE_UNCONFIRMED = "unconfirmed"


class SyncManager(BaseManager):
    """Manager for remote mirroring and reconciliation.

    Responsibilities:
    - Insert / update mirroring with failure bookkeeping
    - apply_canonical(): the single entry point for canonical rows
    - Full pull on setup, reconnect and the sync_now service
    - Realtime subscription lifecycle

    NOT responsible for:
    - Deciding transitions (TaskManager)
    - Ledger totals (LedgerManager, refreshed after merges)
    """

    def __init__(self, hass: HomeAssistant, coordinator: FamilyStarsCoordinator) -> None:
        """Initialize the SyncManager."""
        super().__init__(hass, coordinator)
        self.remote = coordinator.remote
        self.family_id = coordinator.family_id
        self._bulk = False

    async def async_setup(self) -> None:
        """Set up the SyncManager.

        No event subscriptions - other managers call SyncManager directly.
        """
        const.LOGGER.debug("DEBUG: SyncManager initialized for entry %s", self.entry_id)

    # =========================================================================
    # Identity
    # =========================================================================

    @property
    def identity_map(self) -> IdentityMap:
        """Return identity_map[collection][local_id] = remote_id."""
        return self.coordinator._data[const.DATA_IDENTITY_MAP]

    def resolve_id(self, collection: str, entity_id: str) -> str:
        """Translate a possibly promoted local id to the id it is stored under."""
        return ReconcileEngine.resolve_id(self.identity_map, collection, entity_id)

    def _promote(self, collection: str, local_id: str, remote_id: str) -> None:
        """Replace a local id with its remote id everywhere in the document."""
        data = self.coordinator._data
        plan = ReconcileEngine.plan_promotion(data, collection, local_id, remote_id)

        entities = data[collection]
        entities.pop(local_id, None)
        entities[remote_id] = plan.entity
        for ref_collection, rows in plan.rewrites.items():
            data[ref_collection].update(rows)
        self.identity_map.setdefault(collection, {})[local_id] = remote_id

        const.LOGGER.debug(
            "DEBUG: Promoted %s %s -> %s (%d referencing rows rewritten)",
            collection,
            local_id,
            remote_id,
            sum(len(rows) for rows in plan.rewrites.values()),
        )

        if collection == const.DATA_MEMBERS:
            remove_entities_by_item_id(self.hass, self.entry_id, local_id)

        self.emit(
            const.SIGNAL_SUFFIX_IDENTITY_PROMOTED,
            collection=collection,
            local_id=local_id,
            remote_id=remote_id,
        )

    # =========================================================================
    # Canonical rows
    # =========================================================================

    def apply_canonical(
        self,
        table: str,
        row: dict[str, Any],
        *,
        local_hint: str | None = None,
    ) -> str | None:
        """Fold one canonical row into the cache.

        Args:
            table: Remote table the row came from
            row: Raw remote row
            local_hint: Local id of the entity this row answers (insert
                responses); promoted unless already promoted

        Returns:
            The id the entity is stored under, or None if the row was unusable.
            The caller persists.
        """
        collection = const.REMOTE_TABLE_TO_COLLECTION.get(table)
        if collection is None:
            return None

        decoded = db.entity_from_remote(table, row)
        remote_id = decoded.get(const.DATA_INTERNAL_ID)
        if not remote_id:
            const.LOGGER.warning(
                "WARNING: Ignoring %s row without an id: %s", table, list(row.keys())
            )
            return None
        remote_id = str(remote_id)
        decoded[const.DATA_INTERNAL_ID] = remote_id

        data = self.coordinator._data
        entities: dict[str, EntityData] = data[collection]

        local_id: str | None = None
        if (
            local_hint
            and local_hint != remote_id
            and local_hint in entities
            and not ReconcileEngine.is_promoted(self.identity_map, collection, local_hint)
        ):
            local_id = local_hint
        elif remote_id not in entities:
            local_id = ReconcileEngine.find_local_match(collection, decoded, data)
        if local_id is not None:
            self._promote(collection, local_id, remote_id)

        existing = entities.get(remote_id)
        result = ReconcileEngine.sanitize(
            collection, decoded, data, known=existing is not None
        )
        if result.dropped:
            const.LOGGER.warning(
                "WARNING: Dropped malformed fields %s from %s row %s",
                result.dropped,
                table,
                remote_id,
            )

        merged = ReconcileEngine.merge(collection, existing, result.entity)
        entities[remote_id] = merged
        self._after_merge(collection, existing, merged)
        return remote_id

    def _after_merge(
        self,
        collection: str,
        existing: EntityData | None,
        merged: EntityData,
    ) -> None:
        """Emit change events and refresh derived totals after a merge."""
        entity_id = merged[const.DATA_INTERNAL_ID]

        if collection == const.DATA_INSTANCES:
            old_status = existing.get(const.DATA_INSTANCE_STATUS) if existing else None
            new_status = merged.get(const.DATA_INSTANCE_STATUS)
            if existing is None:
                self.emit(
                    const.SIGNAL_SUFFIX_TASK_ASSIGNED,
                    instance_id=entity_id,
                    assignee_id=merged.get(const.DATA_INSTANCE_ASSIGNEE_ID),
                    source="remote",
                )
            elif old_status != new_status:
                self.emit(
                    const.SIGNAL_SUFFIX_TASK_STATUS_CHANGED,
                    instance_id=entity_id,
                    assignee_id=merged.get(const.DATA_INSTANCE_ASSIGNEE_ID),
                    old_status=old_status,
                    new_status=new_status,
                    actor_id=merged.get(const.DATA_INSTANCE_APPROVED_BY),
                    source="remote",
                )
            self.coordinator.ledger_manager.retract_stranded_awards(entity_id)
        elif collection == const.DATA_TEMPLATES:
            self.emit(
                const.SIGNAL_SUFFIX_TEMPLATE_CHANGED,
                template_id=entity_id,
                source="remote",
            )
        elif collection == const.DATA_MEMBERS and existing is None:
            self.emit(
                const.SIGNAL_SUFFIX_MEMBER_CHANGED, member_id=entity_id, source="remote"
            )

        if collection in (const.DATA_LEDGER, const.DATA_MEMBERS) and not self._bulk:
            self.coordinator.ledger_manager.refresh_point_totals()
            if collection == const.DATA_LEDGER and existing is None:
                member_id = merged.get(const.DATA_LEDGER_MEMBER_ID)
                self.emit(
                    const.SIGNAL_SUFFIX_LEDGER_APPENDED,
                    entry_id=entity_id,
                    member_id=member_id,
                    delta=merged.get(const.DATA_LEDGER_DELTA),
                    new_total=self.coordinator.ledger_manager.total_for(member_id),
                    task_instance_id=merged.get(const.DATA_LEDGER_TASK_INSTANCE_ID),
                )

    def apply_delete(self, table: str, row_id: str | None) -> None:
        """Apply a remote delete event.

        Members, instances and rewards are removed, templates archived, ledger
        deletes ignored (the ledger is append-only).
        """
        collection = const.REMOTE_TABLE_TO_COLLECTION.get(table)
        if collection is None or not row_id:
            return

        if collection == const.DATA_LEDGER:
            const.LOGGER.warning(
                "WARNING: Ignoring remote delete of ledger entry %s", row_id
            )
            return

        entity_id = self.resolve_id(collection, str(row_id))
        entities: dict[str, EntityData] = self.coordinator._data[collection]
        if entity_id not in entities:
            const.LOGGER.debug("DEBUG: Delete for unknown %s %s", collection, entity_id)
            return

        if collection == const.DATA_TEMPLATES:
            entities[entity_id][const.DATA_TEMPLATE_ARCHIVED] = True
            self.emit(
                const.SIGNAL_SUFFIX_TEMPLATE_CHANGED,
                template_id=entity_id,
                source="remote",
            )
            return

        entities.pop(entity_id)
        const.LOGGER.info("INFO: Removed %s %s (deleted remotely)", collection, entity_id)
        if collection == const.DATA_MEMBERS:
            remove_entities_by_item_id(self.hass, self.entry_id, entity_id)
            self.coordinator.ledger_manager.refresh_point_totals()
            self.emit(
                const.SIGNAL_SUFFIX_MEMBER_CHANGED, member_id=entity_id, source="remote"
            )

    # =========================================================================
    # Failures
    # =========================================================================

    def record_failure(
        self,
        err: RemoteError,
        *,
        operation: str,
        collection: str | None = None,
        entity_id: str | None = None,
    ) -> None:
        """Mark an entity failed, remember the error and tell listeners.

        The optimistic local state is kept and nothing is retried.
        """
        message = str(err)
        if collection and entity_id:
            entity = self.coordinator._data[collection].get(
                self.resolve_id(collection, entity_id)
            )
            if entity is not None:
                entity[const.DATA_SYNC_STATE] = const.SYNC_STATE_FAILED
                entity[const.DATA_SYNC_ERROR] = f"{err.code}: {message}"

        self.coordinator._data[const.DATA_META][const.DATA_META_LAST_SYNC_ERROR] = {
            "operation": operation,
            "code": err.code,
            "message": message,
            "at": dt_now_iso(),
        }
        const.LOGGER.warning(
            "WARNING: Remote %s failed (%s, status=%s): %s",
            operation,
            err.code,
            err.status,
            message,
        )
        self.emit(
            const.SIGNAL_SUFFIX_SYNC_FAILED,
            operation=operation,
            collection=collection,
            entity_id=entity_id,
            code=err.code,
            message=message,
        )
        self.coordinator._persist_and_update()

    # =========================================================================
    # Mirroring
    # =========================================================================

    async def async_push_insert(self, collection: str, local_id: str) -> str | None:
        """Mirror a locally created entity.

        Returns:
            The remote id, or None if the insert failed
        """
        if ReconcileEngine.is_promoted(self.identity_map, collection, local_id):
            return self.resolve_id(collection, local_id)

        entity = self.coordinator._data[collection].get(local_id)
        if entity is None:
            const.LOGGER.debug("DEBUG: Nothing to insert for %s %s", collection, local_id)
            return None

        table = const.COLLECTION_TO_REMOTE_TABLE[collection]
        row = db.entity_to_remote(collection, entity, self.family_id, self.resolve_id)
        try:
            canonical = await self.remote.async_insert(table, row)
        except RemoteError as err:
            self.record_failure(
                err,
                operation=f"insert {table}",
                collection=collection,
                entity_id=local_id,
            )
            return None

        remote_id = self.apply_canonical(table, canonical, local_hint=local_id)
        self.coordinator._persist_and_update()
        return remote_id

    async def async_push_update(
        self,
        collection: str,
        entity_id: str,
        fields: dict[str, Any],
        *,
        expected_status: str | None = None,
    ) -> str:
        """Mirror a local field change, optionally as a compare-and-set.

        Args:
            collection: Collection of the entity
            entity_id: Entity id (local ids are resolved through the identity map)
            fields: DATA_* keyed values to write
            expected_status: When set, the write only applies if the remote
                row still has this status

        Returns:
            UPDATE_APPLIED, UPDATE_CONFLICT (no row matched), UPDATE_FAILED
            (transport error) or UPDATE_UNCONFIRMED (entity has no remote id)
        """
        entity_id = self.resolve_id(collection, entity_id)
        table = const.COLLECTION_TO_REMOTE_TABLE[collection]
        operation = f"update {table}"

        if db.is_local_id(entity_id):
            const.LOGGER.warning(
                "WARNING: Cannot mirror %s for %s: not confirmed by the remote yet",
                operation,
                entity_id,
            )
            entity = self.coordinator._data[collection].get(entity_id)
            if entity is not None:
                entity[const.DATA_SYNC_STATE] = const.SYNC_STATE_FAILED
                entity[const.DATA_SYNC_ERROR] = UPDATE_UNCONFIRMED
            self.coordinator._persist()
            return UPDATE_UNCONFIRMED

        row = db.fields_to_remote(collection, fields, self.resolve_id)
        try:
            canonical = await self.remote.async_update(
                table, entity_id, row, expected_status=expected_status
            )
        except RemoteError as err:
            self.record_failure(
                err, operation=operation, collection=collection, entity_id=entity_id
            )
            return UPDATE_FAILED

        if canonical is None:
            const.LOGGER.info(
                "INFO: Conditional %s for %s did not match (expected status %s)",
                operation,
                entity_id,
                expected_status,
            )
            return UPDATE_CONFLICT

        self.apply_canonical(table, canonical)
        self.coordinator._persist_and_update()
        return UPDATE_APPLIED

    async def async_push_delete(self, collection: str, entity_id: str) -> bool:
        """Mirror a local delete. The caller has already removed the entity.

        Entities that never got a remote id have nothing to delete. A failed
        delete is recorded; the row comes back with the next full pull.

        Returns:
            False if the remote could not be reached
        """
        entity_id = self.resolve_id(collection, entity_id)
        if db.is_local_id(entity_id):
            const.LOGGER.debug(
                "DEBUG: %s %s was never confirmed, no remote delete",
                collection,
                entity_id,
            )
            return True

        table = const.COLLECTION_TO_REMOTE_TABLE[collection]
        try:
            deleted = await self.remote.async_delete(table, entity_id)
        except RemoteError as err:
            self.record_failure(
                err,
                operation=f"delete {table}",
                collection=collection,
                entity_id=entity_id,
            )
            return False

        if not deleted:
            const.LOGGER.debug(
                "DEBUG: %s row %s was already gone remotely", table, entity_id
            )
        return True

    async def async_insert_row(
        self, table: str, row: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Insert a row into a table that is not cached locally (audit tables)."""
        try:
            return await self.remote.async_insert(table, row)
        except RemoteError as err:
            self.record_failure(err, operation=f"insert {table}")
            return None

    async def async_reread(self, table: str, filters: dict[str, Any]) -> list[str]:
        """Read rows back from the remote and merge them.

        Returns:
            Ids of the merged entities
        """
        try:
            rows = await self.remote.async_select(table, filters)
        except RemoteError as err:
            self.record_failure(err, operation=f"select {table}")
            return []

        merged_ids = [self.apply_canonical(table, row) for row in rows]
        self.coordinator._persist_and_update()
        return [entity_id for entity_id in merged_ids if entity_id]

    # =========================================================================
    # Full pull
    # =========================================================================

    async def async_full_pull(self) -> bool:
        """Read every collection for the family and reconcile the cache.

        Confirmed instances, members and rewards missing from the snapshot are
        removed; entities still carrying a local id are kept. Templates are
        archived, never removed, and the ledger is append-only.

        Returns:
            True on success, False if the remote could not be read
        """
        filters = {const.REMOTE_COLUMN_FAMILY_ID: self.family_id}
        snapshot: dict[str, list[dict[str, Any]]] = {}
        try:
            for table in const.REMOTE_TABLE_TO_COLLECTION:
                snapshot[table] = await self.remote.async_select(table, filters)
        except RemoteError as err:
            self.record_failure(err, operation="full pull")
            return False

        data = self.coordinator._data
        self._bulk = True
        try:
            for table, rows in snapshot.items():
                for row in rows:
                    self.apply_canonical(table, row)
        finally:
            self._bulk = False

        for collection in (
            const.DATA_INSTANCES,
            const.DATA_MEMBERS,
            const.DATA_REWARDS,
        ):
            table = const.COLLECTION_TO_REMOTE_TABLE[collection]
            snapshot_ids = [
                str(row[const.REMOTE_COLUMN_ID])
                for row in snapshot[table]
                if row.get(const.REMOTE_COLUMN_ID)
            ]
            for missing_id in ReconcileEngine.find_missing(
                data[collection], snapshot_ids
            ):
                data[collection].pop(missing_id)
                const.LOGGER.info(
                    "INFO: Removed %s %s (missing from remote snapshot)",
                    collection,
                    missing_id,
                )
                if collection == const.DATA_MEMBERS:
                    remove_entities_by_item_id(self.hass, self.entry_id, missing_id)

        self.coordinator.ledger_manager.refresh_point_totals()
        meta = data[const.DATA_META]
        meta[const.DATA_META_LAST_FULL_SYNC] = dt_now_iso()
        meta[const.DATA_META_LAST_SYNC_ERROR] = None

        const.LOGGER.debug(
            "DEBUG: Full pull complete for family %s: %s",
            self.family_id,
            {table: len(rows) for table, rows in snapshot.items()},
        )
        self.emit(const.SIGNAL_SUFFIX_SYNC_COMPLETED, family_id=self.family_id)
        return True

    async def async_resync(self) -> bool:
        """Full pull followed by persist and listener update."""
        result = await self.async_full_pull()
        self.coordinator._persist_and_update()
        return result

    # =========================================================================
    # Realtime
    # =========================================================================

    async def async_start_realtime(self) -> None:
        """Subscribe to the family's change feed (when enabled in options)."""
        options = self.coordinator.config_entry.options
        if not options.get(const.CONF_REALTIME_ENABLED, const.DEFAULT_REALTIME_ENABLED):
            const.LOGGER.info(
                "INFO: Realtime updates disabled for family %s", self.family_id
            )
            return

        unsubscribe = await self.remote.async_subscribe(
            self.family_id, self._on_remote_change, self.async_resync
        )
        self.coordinator.config_entry.async_on_unload(unsubscribe)

    @callback
    def _on_remote_change(self, change: RemoteChange) -> None:
        """Fold one pushed change into the cache."""
        if change.kind == const.CHANGE_DELETE:
            self.apply_delete(change.table, change.row_id)
        else:
            self.apply_canonical(change.table, change.record)
        self.coordinator._persist_and_update()
