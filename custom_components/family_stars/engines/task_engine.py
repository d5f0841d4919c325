"""Task Engine - Pure logic for task instance state transitions.

This engine provides stateless, pure Python functions for:
- The instance state machine (open -> pending_approval -> approved, expired)
- The direct-completion rule (a sole guardian completes without approval)
- Approval authorization (guardian only, never one's own request)
- The expiration guard used by the periodic sweep

Every planner returns a TransitionEffect describing the change, or None when
the guard does not hold. Callers treat None as a silent no-op.

ARCHITECTURE: This is a pure logic engine with NO Home Assistant dependencies.
All functions are static methods that operate on passed-in snapshots and
return new dicts. State management belongs in TaskManager.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .. import const
from ..utils.dt_utils import dt_parse, dt_to_iso, end_of_local_day

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime, tzinfo

    from ..type_defs import InstanceData, MemberData, TemplateData


# =============================================================================
# TASK ACTION CONSTANTS
# =============================================================================

TASK_ACTION_REQUEST_COMPLETION = "request_completion"
TASK_ACTION_APPROVE = "approve"
TASK_ACTION_REJECT = "reject"
TASK_ACTION_EXPIRE = "expire"


# =============================================================================
# TRANSITION EFFECT DATA STRUCTURE
# =============================================================================


@dataclass(frozen=True)
class TransitionEffect:
    """Effect of one task instance transition.

    Attributes:
        action: One of the TASK_ACTION_* constants
        instance_id: The instance being transitioned
        assignee_id: Member who owns the instance (receives any award)
        actor_id: Member performing the action (None for the sweep)
        from_status: Status the guard was evaluated against; the remote
            conditional write uses it as the expected value
        to_status: Target status
        updates: Field values written alongside the status
        award_points: Ledger delta for the assignee, 0 for no ledger effect
    """

    action: str
    instance_id: str
    assignee_id: str | None
    actor_id: str | None
    from_status: str
    to_status: str
    updates: dict[str, Any] = field(default_factory=dict)
    award_points: int = 0


# =============================================================================
# TASK ENGINE
# =============================================================================


class TaskEngine:
    """Pure logic engine for task instance transitions.

    All methods are static - no instance state. This enables easy unit testing
    without any Home Assistant mocking.
    """

    # Valid state transitions matrix
    VALID_TRANSITIONS: dict[str, list[str]] = {
        # From OPEN: completion request (pending or direct approval) or time-out
        const.TASK_STATUS_OPEN: [
            const.TASK_STATUS_PENDING_APPROVAL,
            const.TASK_STATUS_APPROVED,
            const.TASK_STATUS_EXPIRED,
        ],
        # From PENDING_APPROVAL: guardian decision or time-out
        const.TASK_STATUS_PENDING_APPROVAL: [
            const.TASK_STATUS_APPROVED,
            const.TASK_STATUS_OPEN,  # Rejected, back to open
            const.TASK_STATUS_EXPIRED,
        ],
        # Terminal
        const.TASK_STATUS_APPROVED: [],
        const.TASK_STATUS_EXPIRED: [],
    }

    # =========================================================================
    # Guards and queries
    # =========================================================================

    @staticmethod
    def can_transition(current_status: str, target_status: str) -> bool:
        """Return True if target_status is reachable from current_status."""
        return target_status in TaskEngine.VALID_TRANSITIONS.get(current_status, [])

    @staticmethod
    def is_terminal(status: str | None) -> bool:
        """Return True for approved/expired."""
        return status in const.TASK_TERMINAL_STATUSES

    @staticmethod
    def guardian_ids(members: Mapping[str, MemberData]) -> list[str]:
        """Return ids of every guardian in the family, in insertion order."""
        return [
            member_id
            for member_id, member in members.items()
            if member.get(const.DATA_MEMBER_ROLE) == const.ROLE_GUARDIAN
        ]

    @staticmethod
    def is_guardian(members: Mapping[str, MemberData], member_id: str | None) -> bool:
        """Return True if member_id is a known guardian."""
        if not member_id:
            return False
        member = members.get(member_id)
        return bool(member) and member.get(const.DATA_MEMBER_ROLE) == const.ROLE_GUARDIAN

    @staticmethod
    def resolve_points(
        instance: InstanceData, templates: Mapping[str, TemplateData]
    ) -> int:
        """Return the award for approving an instance.

        Falls back to DEFAULT_TASK_POINTS when the template is unknown or its
        point value is missing.
        """
        template = templates.get(instance.get(const.DATA_INSTANCE_TEMPLATE_ID, ""))
        if not template:
            return const.DEFAULT_TASK_POINTS
        points = template.get(const.DATA_TEMPLATE_POINTS)
        if isinstance(points, bool) or not isinstance(points, int):
            return const.DEFAULT_TASK_POINTS
        return points

    @staticmethod
    def award_for(instance: InstanceData, points: int) -> int:
        """Return ``points``, or 0 when the instance has no assignee to credit."""
        return points if instance.get(const.DATA_INSTANCE_ASSIGNEE_ID) else 0

    # =========================================================================
    # Transition planners
    # =========================================================================

    @staticmethod
    def plan_request_completion(
        instance: InstanceData,
        actor_id: str,
        members: Mapping[str, MemberData],
        points: int,
        now: datetime,
    ) -> TransitionEffect | None:
        """Plan a completion request.

        Direct-completion rule: when the family has exactly one guardian and
        that guardian is the actor, the instance goes straight to approved
        with its award. Every other case goes to pending_approval.

        Returns:
            TransitionEffect, or None if the instance is not open
        """
        status = instance.get(const.DATA_INSTANCE_STATUS)
        if status != const.TASK_STATUS_OPEN:
            return None

        now_iso = dt_to_iso(now)
        guardians = TaskEngine.guardian_ids(members)

        if len(guardians) == 1 and guardians[0] == actor_id:
            return TransitionEffect(
                action=TASK_ACTION_REQUEST_COMPLETION,
                instance_id=instance[const.DATA_INTERNAL_ID],
                assignee_id=instance.get(const.DATA_INSTANCE_ASSIGNEE_ID),
                actor_id=actor_id,
                from_status=status,
                to_status=const.TASK_STATUS_APPROVED,
                updates={
                    const.DATA_INSTANCE_APPROVED_BY: actor_id,
                    const.DATA_INSTANCE_APPROVED_AT: now_iso,
                },
                award_points=TaskEngine.award_for(instance, points),
            )

        return TransitionEffect(
            action=TASK_ACTION_REQUEST_COMPLETION,
            instance_id=instance[const.DATA_INTERNAL_ID],
            assignee_id=instance.get(const.DATA_INSTANCE_ASSIGNEE_ID),
            actor_id=actor_id,
            from_status=status,
            to_status=const.TASK_STATUS_PENDING_APPROVAL,
            updates={
                const.DATA_INSTANCE_COMPLETION_REQUESTED_BY: actor_id,
                const.DATA_INSTANCE_COMPLETION_REQUESTED_AT: now_iso,
            },
        )

    @staticmethod
    def _decision_allowed(
        instance: InstanceData,
        approver_id: str,
        members: Mapping[str, MemberData],
    ) -> bool:
        """Shared approve/reject guard: pending, guardian, not own request."""
        if instance.get(const.DATA_INSTANCE_STATUS) != const.TASK_STATUS_PENDING_APPROVAL:
            return False
        if not TaskEngine.is_guardian(members, approver_id):
            return False
        return approver_id != instance.get(const.DATA_INSTANCE_COMPLETION_REQUESTED_BY)

    @staticmethod
    def plan_approve(
        instance: InstanceData,
        approver_id: str,
        members: Mapping[str, MemberData],
        points: int,
        now: datetime,
    ) -> TransitionEffect | None:
        """Plan an approval; awards ``points`` to the assignee."""
        if not TaskEngine._decision_allowed(instance, approver_id, members):
            return None

        return TransitionEffect(
            action=TASK_ACTION_APPROVE,
            instance_id=instance[const.DATA_INTERNAL_ID],
            assignee_id=instance.get(const.DATA_INSTANCE_ASSIGNEE_ID),
            actor_id=approver_id,
            from_status=const.TASK_STATUS_PENDING_APPROVAL,
            to_status=const.TASK_STATUS_APPROVED,
            updates={
                const.DATA_INSTANCE_APPROVED_BY: approver_id,
                const.DATA_INSTANCE_APPROVED_AT: dt_to_iso(now),
            },
            award_points=TaskEngine.award_for(instance, points),
        )

    @staticmethod
    def plan_reject(
        instance: InstanceData,
        approver_id: str,
        members: Mapping[str, MemberData],
    ) -> TransitionEffect | None:
        """Plan a rejection: back to open, completion attempt discarded."""
        if not TaskEngine._decision_allowed(instance, approver_id, members):
            return None

        return TransitionEffect(
            action=TASK_ACTION_REJECT,
            instance_id=instance[const.DATA_INTERNAL_ID],
            assignee_id=instance.get(const.DATA_INSTANCE_ASSIGNEE_ID),
            actor_id=approver_id,
            from_status=const.TASK_STATUS_PENDING_APPROVAL,
            to_status=const.TASK_STATUS_OPEN,
        )

    @staticmethod
    def should_expire(
        instance: InstanceData, now: datetime, tz: tzinfo | None = None
    ) -> bool:
        """Return True if the expiration guard holds at ``now``.

        Guard:
        - status is open or pending_approval, and
        - now > expires_at, or
        - the instance is recurring_daily, still open, and its due day ended
        """
        status = instance.get(const.DATA_INSTANCE_STATUS)
        if status not in (const.TASK_STATUS_OPEN, const.TASK_STATUS_PENDING_APPROVAL):
            return False

        expires_at = dt_parse(instance.get(const.DATA_INSTANCE_EXPIRES_AT))
        if expires_at is not None and now > expires_at:
            return True

        if (
            instance.get(const.DATA_INSTANCE_SCHEDULE_TYPE)
            == const.SCHEDULE_RECURRING_DAILY
            and status == const.TASK_STATUS_OPEN
        ):
            due_at = dt_parse(instance.get(const.DATA_INSTANCE_DUE_AT))
            if due_at is not None and now > end_of_local_day(due_at, tz):
                return True

        return False

    @staticmethod
    def plan_expire(
        instance: InstanceData, now: datetime, tz: tzinfo | None = None
    ) -> TransitionEffect | None:
        """Plan an expiration. No ledger effect."""
        if not TaskEngine.should_expire(instance, now, tz):
            return None

        return TransitionEffect(
            action=TASK_ACTION_EXPIRE,
            instance_id=instance[const.DATA_INTERNAL_ID],
            assignee_id=instance.get(const.DATA_INSTANCE_ASSIGNEE_ID),
            actor_id=None,
            from_status=instance[const.DATA_INSTANCE_STATUS],
            to_status=const.TASK_STATUS_EXPIRED,
        )

    # =========================================================================
    # Application
    # =========================================================================

    @staticmethod
    def apply(instance: InstanceData, effect: TransitionEffect) -> InstanceData:
        """Return a new instance dict with the effect applied.

        Enforces the instance invariants on the result: the completion request
        fields only survive in pending_approval, and expires_at is carried over
        untouched.

        Raises:
            ValueError: if the effect describes an edge outside VALID_TRANSITIONS
                or was planned against a different status
        """
        current = instance.get(const.DATA_INSTANCE_STATUS)
        if current != effect.from_status or not TaskEngine.can_transition(
            current, effect.to_status
        ):
            raise ValueError(
                f"Invalid transition for instance {effect.instance_id}: "
                f"{current} -> {effect.to_status} (planned from {effect.from_status})"
            )

        updated: dict[str, Any] = dict(instance)
        updated.update(effect.updates)
        updated[const.DATA_INSTANCE_STATUS] = effect.to_status
        updated[const.DATA_INSTANCE_EXPIRES_AT] = instance.get(
            const.DATA_INSTANCE_EXPIRES_AT
        )
        if effect.to_status != const.TASK_STATUS_PENDING_APPROVAL:
            updated[const.DATA_INSTANCE_COMPLETION_REQUESTED_BY] = None
            updated[const.DATA_INSTANCE_COMPLETION_REQUESTED_AT] = None
        return updated  # type: ignore[return-value]

    @staticmethod
    def remote_fields(effect: TransitionEffect) -> dict[str, Any]:
        """Return the local field values the remote conditional write must set."""
        fields: dict[str, Any] = {const.DATA_INSTANCE_STATUS: effect.to_status}
        fields.update(effect.updates)
        if effect.to_status != const.TASK_STATUS_PENDING_APPROVAL:
            fields[const.DATA_INSTANCE_COMPLETION_REQUESTED_BY] = None
            fields[const.DATA_INSTANCE_COMPLETION_REQUESTED_AT] = None
        return fields
