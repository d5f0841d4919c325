"""Task Manager - Task instance workflow orchestration.

This manager handles the task instance lifecycle:
- Assignment (instance creation from a template)
- Completion requests, approvals, rejections
- Expiration of timed-out instances (driven by ScheduleManager)

ARCHITECTURE:
- TaskManager = "The Foreman" (STATEFUL workflow)
- TaskEngine = State machine and guards (STATELESS)
- LedgerManager receives the award for approvals
- SyncManager mirrors each transition as a conditional update

Every transition is applied to the local cache first, then mirrored with a
compare-and-set on the status it was planned from. A lost compare-and-set
retracts the local award and re-reads the canonical row; the winner's award
arrives by push (or the re-read) and becomes the only award.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .. import const, data_builders as db
from ..engines.schedule_engine import ScheduleEngine
from ..engines.task_engine import TaskEngine, TransitionEffect
from ..utils.dt_utils import dt_now_utc, dt_parse
from .base_manager import BaseManager
from .sync_manager import UPDATE_APPLIED, UPDATE_CONFLICT

if TYPE_CHECKING:
    from datetime import datetime

    from ..type_defs import InstanceData


class TaskManager(BaseManager):
    """Manager for task instance transitions.

    Guard failures are silent: the method logs at debug level and returns
    None. Unknown ids are logged as warnings and also return None.
    """

    async def async_setup(self) -> None:
        """Set up the TaskManager.

        Currently no event subscriptions needed - TaskManager is called directly.
        """
        const.LOGGER.debug("DEBUG: TaskManager initialized for entry %s", self.entry_id)

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_instance(self, instance_id: str) -> InstanceData | None:
        """Return an instance by id (local ids are resolved after promotion)."""
        resolved = self.coordinator.sync_manager.resolve_id(
            const.DATA_INSTANCES, instance_id
        )
        return self.coordinator.instances_data.get(resolved)

    def instances_for(
        self, member_id: str, status: str | None = None
    ) -> list[InstanceData]:
        """Return a member's instances, optionally filtered by status."""
        return [
            instance
            for instance in self.coordinator.instances_data.values()
            if instance.get(const.DATA_INSTANCE_ASSIGNEE_ID) == member_id
            and (status is None or instance.get(const.DATA_INSTANCE_STATUS) == status)
        ]

    def pending_approvals(self) -> list[InstanceData]:
        """Return every instance waiting for a guardian decision."""
        return [
            instance
            for instance in self.coordinator.instances_data.values()
            if instance.get(const.DATA_INSTANCE_STATUS)
            == const.TASK_STATUS_PENDING_APPROVAL
        ]

    # =========================================================================
    # Assignment
    # =========================================================================

    async def async_assign(
        self,
        template_id: str,
        assignee_id: str,
        creator_id: str | None = None,
        *,
        due_at: datetime | str | None = None,
        now: datetime | None = None,
    ) -> str | None:
        """Create an open instance of a template for a member.

        Archived or unknown templates are refused (None).

        Returns:
            The instance id (remote id once confirmed), or None
        """
        template_id = self.coordinator.sync_manager.resolve_id(
            const.DATA_TEMPLATES, template_id
        )
        template = self.coordinator.templates_data.get(template_id)
        if template is None:
            const.LOGGER.warning("WARNING: Assign: template %s not found", template_id)
            return None
        if template.get(const.DATA_TEMPLATE_ARCHIVED, False):
            const.LOGGER.debug("DEBUG: Assign: template %s is archived", template_id)
            return None

        now = now or dt_now_utc()
        due_at_value = dt_parse(due_at) if due_at else None
        due_iso, expires_iso = ScheduleEngine.compute_schedule(
            template, now, due_at=due_at_value
        )
        instance = db.build_instance(
            template_id,
            template,
            assignee_id,
            creator_id,
            due_at=due_iso,
            expires_at=expires_iso,
            created_at=now.isoformat(),
        )
        instance[const.DATA_SYNC_STATE] = const.SYNC_STATE_PENDING  # type: ignore[typeddict-unknown-key]
        local_id = instance[const.DATA_INTERNAL_ID]  # type: ignore[literal-required]
        self.coordinator.instances_data[local_id] = instance

        self.emit(
            const.SIGNAL_SUFFIX_TASK_ASSIGNED,
            instance_id=local_id,
            assignee_id=assignee_id,
            template_id=template_id,
            source="local",
        )
        const.LOGGER.debug(
            "DEBUG: Assigned template %s to member %s as %s (due %s, expires %s)",
            template_id,
            assignee_id,
            local_id,
            due_iso,
            expires_iso,
        )
        self.coordinator._persist_and_update()

        remote_id = await self.coordinator.sync_manager.async_push_insert(
            const.DATA_INSTANCES, local_id
        )
        return remote_id or local_id

    # =========================================================================
    # Transitions
    # =========================================================================

    async def async_request_completion(
        self, instance_id: str, actor_id: str, *, now: datetime | None = None
    ) -> TransitionEffect | None:
        """Request completion of an open instance.

        Follows the direct-completion rule: the family's only guardian
        completing an instance approves it immediately with its award.
        """
        instance = self._require_instance(instance_id, "request_completion")
        if instance is None:
            return None

        points = TaskEngine.resolve_points(instance, self.coordinator.templates_data)
        effect = TaskEngine.plan_request_completion(
            instance,
            actor_id,
            self.coordinator.members_data,
            points,
            now or dt_now_utc(),
        )
        return await self._async_run(effect, instance)

    async def async_approve(
        self, instance_id: str, approver_id: str, *, now: datetime | None = None
    ) -> TransitionEffect | None:
        """Approve a pending instance and award its points to the assignee."""
        instance = self._require_instance(instance_id, "approve")
        if instance is None:
            return None

        points = TaskEngine.resolve_points(instance, self.coordinator.templates_data)
        effect = TaskEngine.plan_approve(
            instance,
            approver_id,
            self.coordinator.members_data,
            points,
            now or dt_now_utc(),
        )
        return await self._async_run(effect, instance)

    async def async_reject(
        self, instance_id: str, approver_id: str
    ) -> TransitionEffect | None:
        """Reject a pending instance; it goes back to open."""
        instance = self._require_instance(instance_id, "reject")
        if instance is None:
            return None

        effect = TaskEngine.plan_reject(
            instance, approver_id, self.coordinator.members_data
        )
        return await self._async_run(effect, instance)

    async def async_expire_due(self, now: datetime | None = None) -> list[str]:
        """Expire every instance whose expiration guard holds.

        A row that cannot be expired or mirrored is logged and skipped; the
        rest of the sweep carries on.

        Returns:
            Ids of the instances expired locally
        """
        now = now or dt_now_utc()
        effects: list[TransitionEffect] = []
        for instance_id in ScheduleEngine.plan_expirations(
            self.coordinator.instances_data, now
        ):
            instance = self.coordinator.instances_data[instance_id]
            try:
                effect = TaskEngine.plan_expire(instance, now)
                if effect is None:
                    continue
                self._apply_local(effect, instance)
            except Exception as err:  # pylint: disable=broad-except
                const.LOGGER.warning(
                    "WARNING: Skipping expiration of instance %s: %r",
                    instance_id,
                    err,
                )
                continue
            effects.append(effect)

        if not effects:
            return []

        const.LOGGER.info("INFO: Expired %d task instance(s)", len(effects))
        self.coordinator._persist_and_update()
        for effect in effects:
            try:
                await self._async_mirror(effect, None)
            except Exception as err:  # pylint: disable=broad-except
                const.LOGGER.warning(
                    "WARNING: Could not mirror expiration of instance %s: %r",
                    effect.instance_id,
                    err,
                )
        return [effect.instance_id for effect in effects]

    # =========================================================================
    # Internals
    # =========================================================================

    def _require_instance(self, instance_id: str, action: str) -> InstanceData | None:
        instance = self.get_instance(instance_id)
        if instance is None:
            const.LOGGER.warning(
                "WARNING: %s: task instance %s not found", action, instance_id
            )
        return instance

    async def _async_run(
        self, effect: TransitionEffect | None, instance: InstanceData
    ) -> TransitionEffect | None:
        """Apply a planned transition locally, then mirror it."""
        if effect is None:
            const.LOGGER.debug(
                "DEBUG: Transition guard failed for instance %s (status %s)",
                instance.get(const.DATA_INTERNAL_ID),
                instance.get(const.DATA_INSTANCE_STATUS),
            )
            return None

        award_id = self._apply_local(effect, instance)
        self.coordinator._persist_and_update()
        await self._async_mirror(effect, award_id)
        return effect

    def _apply_local(
        self, effect: TransitionEffect, instance: InstanceData
    ) -> str | None:
        """Apply an effect to the cache; returns the local award id, if any."""
        updated: dict[str, Any] = dict(TaskEngine.apply(instance, effect))
        updated[const.DATA_SYNC_STATE] = const.SYNC_STATE_PENDING
        updated[const.DATA_SYNC_ERROR] = None
        self.coordinator.instances_data[effect.instance_id] = updated  # type: ignore[assignment]

        award_id: str | None = None
        if effect.award_points and effect.assignee_id:
            entry = self.coordinator.ledger_manager.append(
                member_id=effect.assignee_id,
                delta=effect.award_points,
                reason=const.LEDGER_REASON_TASK_COMPLETION,
                creator_id=effect.actor_id,
                task_instance_id=effect.instance_id,
            )
            award_id = entry[const.DATA_INTERNAL_ID]  # type: ignore[literal-required]

        self.emit(
            const.SIGNAL_SUFFIX_TASK_STATUS_CHANGED,
            instance_id=effect.instance_id,
            assignee_id=effect.assignee_id,
            old_status=effect.from_status,
            new_status=effect.to_status,
            actor_id=effect.actor_id,
            source="local",
        )
        const.LOGGER.debug(
            "DEBUG: Instance %s %s -> %s (%s by %s, award %d)",
            effect.instance_id,
            effect.from_status,
            effect.to_status,
            effect.action,
            effect.actor_id,
            effect.award_points,
        )
        return award_id

    async def _async_mirror(
        self, effect: TransitionEffect, award_id: str | None
    ) -> None:
        """Mirror a transition with a compare-and-set on its from_status."""
        sync = self.coordinator.sync_manager
        outcome = await sync.async_push_update(
            const.DATA_INSTANCES,
            effect.instance_id,
            TaskEngine.remote_fields(effect),
            expected_status=effect.from_status,
        )

        if outcome == UPDATE_CONFLICT:
            await self._async_handle_lost_race(effect, award_id)
            return
        if outcome != UPDATE_APPLIED:
            if award_id is not None:
                self.coordinator.ledger_manager.mark_failed(award_id, outcome)
            return

        remote_instance_id = sync.resolve_id(const.DATA_INSTANCES, effect.instance_id)
        if effect.actor_id and effect.to_status in (
            const.TASK_STATUS_APPROVED,
            const.TASK_STATUS_OPEN,
        ):
            await sync.async_insert_row(
                const.REMOTE_TABLE_TASK_APPROVALS,
                {
                    const.REMOTE_COLUMN_FAMILY_ID: sync.family_id,
                    "task_instance_id": remote_instance_id,
                    "approver_profile_id": sync.resolve_id(
                        const.DATA_MEMBERS, effect.actor_id
                    ),
                    "decision": (
                        const.REMOTE_DECISION_APPROVED
                        if effect.to_status == const.TASK_STATUS_APPROVED
                        else const.REMOTE_DECISION_REJECTED
                    ),
                },
            )
        if award_id is not None:
            await sync.async_push_insert(const.DATA_LEDGER, award_id)

    async def _async_handle_lost_race(
        self, effect: TransitionEffect, award_id: str | None
    ) -> None:
        """Undo the optimistic award and converge on the canonical row."""
        sync = self.coordinator.sync_manager
        const.LOGGER.info(
            "INFO: Lost race on instance %s (%s); re-reading canonical state",
            effect.instance_id,
            effect.action,
        )
        if award_id is not None:
            self.coordinator.ledger_manager.retract_unconfirmed(award_id)

        remote_instance_id = sync.resolve_id(const.DATA_INSTANCES, effect.instance_id)
        await sync.async_reread(
            const.REMOTE_TABLE_TASK_INSTANCES,
            {const.REMOTE_COLUMN_ID: remote_instance_id},
        )
        if effect.award_points:
            await sync.async_reread(
                const.REMOTE_TABLE_STARS_LEDGER,
                {"task_instance_id": remote_instance_id},
            )
