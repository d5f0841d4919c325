"""Schedule Engine for Family Stars.

Pure planning for the two wall-clock routines:
- Recurring regeneration: which (template, member) pairs need today's instance
- Expiration sweep: which instances have timed out

Plus the due/expiry calculation applied when an instance is created.
Both planners are idempotent: running them again over the resulting state
plans nothing new, so they are safe to run from several devices.

IMPORTANT: This module must NOT import from coordinator.py to avoid circular imports.
Only import from const.py, type_defs.py, and standard libraries.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from dateutil.relativedelta import relativedelta

from .. import const
from ..utils.dt_utils import dt_parse, dt_to_iso, end_of_local_day, local_date_of
from .task_engine import TaskEngine

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import date, datetime, tzinfo

    from ..type_defs import InstanceData, MemberData, TemplateData


class ScheduleEngine:
    """Planning for recurring regeneration and expiration.

    All methods are static and operate on snapshots of the collections.
    """

    @staticmethod
    def is_eligible(member: MemberData, template: TemplateData) -> bool:
        """Return True if a member gets recurring instances of a template.

        Only dependents are eligible. A missing bound is unbounded; a member
        with no recorded age only passes a template with no bounds at all.
        """
        if member.get(const.DATA_MEMBER_ROLE) != const.ROLE_DEPENDENT:
            return False

        min_age = template.get(const.DATA_TEMPLATE_MIN_AGE)
        max_age = template.get(const.DATA_TEMPLATE_MAX_AGE)
        if min_age is None and max_age is None:
            return True

        age = member.get(const.DATA_MEMBER_AGE)
        if age is None:
            return False
        if min_age is not None and age < min_age:
            return False
        return not (max_age is not None and age > max_age)

    @staticmethod
    def is_recurring_active(template: TemplateData) -> bool:
        """Return True for enabled, non-archived recurring_daily templates."""
        return (
            template.get(const.DATA_TEMPLATE_SCHEDULE_TYPE)
            == const.SCHEDULE_RECURRING_DAILY
            and template.get(const.DATA_TEMPLATE_ENABLED, True)
            and not template.get(const.DATA_TEMPLATE_ARCHIVED, False)
        )

    @staticmethod
    def compute_schedule(
        template: TemplateData,
        now: datetime,
        *,
        due_at: datetime | None = None,
        tz: tzinfo | None = None,
    ) -> tuple[str | None, str | None]:
        """Return (due_at, expires_at) ISO strings for a new instance.

        - one_time: the requested due time (if any), no expiry
        - time_sensitive: expires time_window_minutes after creation; due
          defaults to the expiry
        - recurring_daily: due and expiry both at the end of the local day
        """
        schedule_type = template.get(
            const.DATA_TEMPLATE_SCHEDULE_TYPE, const.SCHEDULE_ONE_TIME
        )

        if schedule_type == const.SCHEDULE_RECURRING_DAILY:
            end_of_day = dt_to_iso(end_of_local_day(now, tz))
            return end_of_day, end_of_day

        if schedule_type == const.SCHEDULE_TIME_SENSITIVE:
            window = template.get(const.DATA_TEMPLATE_TIME_WINDOW_MINUTES)
            if not isinstance(window, int) or isinstance(window, bool) or window <= 0:
                window = const.DEFAULT_TIME_WINDOW_MINUTES
            expires = dt_to_iso(now + relativedelta(minutes=window))
            return (dt_to_iso(due_at) if due_at else expires), expires

        return dt_to_iso(due_at), None

    @staticmethod
    def has_instance_for_day(
        instances: Mapping[str, InstanceData],
        template_id: str,
        member_id: str,
        day: date,
        tz: tzinfo | None = None,
    ) -> bool:
        """Return True if a non-expired instance exists for the pair on ``day``.

        Exact on template id, assignee id and the local calendar day of
        created_at. This check is the only duplicate guard for regeneration.
        """
        for instance in instances.values():
            if instance.get(const.DATA_INSTANCE_TEMPLATE_ID) != template_id:
                continue
            if instance.get(const.DATA_INSTANCE_ASSIGNEE_ID) != member_id:
                continue
            if instance.get(const.DATA_INSTANCE_STATUS) == const.TASK_STATUS_EXPIRED:
                continue
            created_at = dt_parse(instance.get(const.DATA_CREATED_AT))
            if created_at is not None and local_date_of(created_at, tz) == day:
                return True
        return False

    @staticmethod
    def plan_recurring(
        templates: Mapping[str, TemplateData],
        members: Mapping[str, MemberData],
        instances: Mapping[str, InstanceData],
        now: datetime,
        tz: tzinfo | None = None,
    ) -> list[tuple[str, str]]:
        """Return the (template_id, member_id) pairs that need an instance today."""
        today = local_date_of(now, tz)
        planned: list[tuple[str, str]] = []

        for template_id, template in templates.items():
            if not ScheduleEngine.is_recurring_active(template):
                continue
            for member_id, member in members.items():
                if not ScheduleEngine.is_eligible(member, template):
                    continue
                if ScheduleEngine.has_instance_for_day(
                    instances, template_id, member_id, today, tz
                ):
                    continue
                planned.append((template_id, member_id))

        return planned

    @staticmethod
    def plan_expirations(
        instances: Mapping[str, InstanceData],
        now: datetime,
        tz: tzinfo | None = None,
    ) -> list[str]:
        """Return ids of instances whose expiration guard holds at ``now``."""
        return [
            instance_id
            for instance_id, instance in instances.items()
            if TaskEngine.should_expire(instance, now, tz)
        ]
