"""Tests for TaskManager - the task instance workflow end to end.

Each test sets up a scenario against the in-memory remote store, drives the
manager directly and checks both the local cache and the remote rows.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

from homeassistant.core import HomeAssistant
from homeassistant.util import dt as dt_util

from custom_components.family_stars import const
from custom_components.family_stars.coordinator import FamilyStarsCoordinator
from tests.helpers.fakes import FakeRemoteService
from tests.helpers.setup import link_users, load_scenario, setup_entry, setup_from_yaml


def _awards_for(coordinator: FamilyStarsCoordinator, instance_id: str) -> list[dict]:
    return [
        entry
        for entry in coordinator.ledger_data.values()
        if entry.get(const.DATA_LEDGER_TASK_INSTANCE_ID) == instance_id
    ]


# =============================================================================
# TEST: ASSIGNMENT
# =============================================================================


class TestAssign:
    """Creating instances from templates."""

    async def test_assign_is_promoted_to_remote_id(
        self,
        hass: HomeAssistant,
        mock_hass_users: dict[str, Any],
        fake_remote: FakeRemoteService,
    ) -> None:
        """The optimistic instance ends up stored under the remote id."""
        result = await setup_from_yaml(
            hass, mock_hass_users, fake_remote, "scenario_family"
        )
        coordinator = result.coordinator

        instance_id = await coordinator.task_manager.async_assign(
            result.template_ids["Wash dishes"],
            result.member_ids["Max"],
            result.member_ids["Mom"],
        )

        assert instance_id is not None
        assert not instance_id.startswith(const.LOCAL_ID_PREFIX)
        instance = coordinator.instances_data[instance_id]
        assert instance[const.DATA_INSTANCE_STATUS] == const.TASK_STATUS_OPEN
        assert instance[const.DATA_SYNC_STATE] == const.SYNC_STATE_SYNCED
        assert instance[const.DATA_INSTANCE_EXPIRES_AT] is None

        row = fake_remote.tables[const.REMOTE_TABLE_TASK_INSTANCES][instance_id]
        assert row["assignee_profile_id"] == result.member_ids["Max"]
        assert row["created_by_profile_id"] == result.member_ids["Mom"]
        assert row[const.REMOTE_COLUMN_CLIENT_REF].startswith(const.LOCAL_ID_PREFIX)
        assert not any(
            key.startswith(const.LOCAL_ID_PREFIX) for key in coordinator.instances_data
        )

    async def test_time_sensitive_assignment_gets_expiry(
        self,
        hass: HomeAssistant,
        mock_hass_users: dict[str, Any],
        fake_remote: FakeRemoteService,
    ) -> None:
        """A time-sensitive instance expires its window after creation."""
        result = await setup_from_yaml(
            hass, mock_hass_users, fake_remote, "scenario_family"
        )
        now = dt_util.utcnow()

        instance_id = await result.coordinator.task_manager.async_assign(
            result.template_ids["Quick tidy"], result.member_ids["Zoë"], now=now
        )

        instance = result.coordinator.instances_data[instance_id]
        assert instance[const.DATA_INSTANCE_EXPIRES_AT] == (
            now + timedelta(minutes=15)
        ).isoformat()
        assert instance[const.DATA_INSTANCE_SCHEDULE_TYPE] == (
            const.SCHEDULE_TIME_SENSITIVE
        )

    async def test_archived_template_is_refused(
        self,
        hass: HomeAssistant,
        mock_hass_users: dict[str, Any],
        fake_remote: FakeRemoteService,
    ) -> None:
        """Archived templates cannot produce new instances."""
        result = await setup_from_yaml(
            hass, mock_hass_users, fake_remote, "scenario_recurring"
        )
        before = len(result.coordinator.instances_data)

        assert (
            await result.coordinator.task_manager.async_assign(
                result.template_ids["Old routine"], result.member_ids["Zoë"]
            )
            is None
        )
        assert len(result.coordinator.instances_data) == before


# =============================================================================
# TEST: TRANSITIONS
# =============================================================================


class TestTransitions:
    """Request, approve and reject on one device."""

    async def test_dependent_request_goes_pending(
        self,
        hass: HomeAssistant,
        mock_hass_users: dict[str, Any],
        fake_remote: FakeRemoteService,
    ) -> None:
        """The request is applied locally and mirrored as a conditional write."""
        result = await setup_from_yaml(
            hass, mock_hass_users, fake_remote, "scenario_family"
        )
        instance_id = result.instance_ids["dishes_open"]
        zoe = result.member_ids["Zoë"]

        effect = await result.coordinator.task_manager.async_request_completion(
            instance_id, zoe
        )

        assert effect is not None
        instance = result.coordinator.instances_data[instance_id]
        assert instance[const.DATA_INSTANCE_STATUS] == const.TASK_STATUS_PENDING_APPROVAL
        assert instance[const.DATA_INSTANCE_COMPLETION_REQUESTED_BY] == zoe
        row = fake_remote.tables[const.REMOTE_TABLE_TASK_INSTANCES][instance_id]
        assert row["status"] == const.TASK_STATUS_PENDING_APPROVAL
        assert row["completion_requested_by"] == zoe
        assert result.coordinator.ledger_manager.total_for(zoe) == 20

    async def test_approve_awards_once(
        self,
        hass: HomeAssistant,
        mock_hass_users: dict[str, Any],
        fake_remote: FakeRemoteService,
    ) -> None:
        """Approval awards the template points and records the decision."""
        result = await setup_from_yaml(
            hass, mock_hass_users, fake_remote, "scenario_family"
        )
        instance_id = result.instance_ids["dishes_pending"]
        max_id = result.member_ids["Max"]

        await result.coordinator.task_manager.async_approve(
            instance_id, result.member_ids["Mom"]
        )

        instance = result.coordinator.instances_data[instance_id]
        assert instance[const.DATA_INSTANCE_STATUS] == const.TASK_STATUS_APPROVED
        assert instance[const.DATA_INSTANCE_APPROVED_BY] == result.member_ids["Mom"]
        assert instance[const.DATA_INSTANCE_COMPLETION_REQUESTED_BY] is None
        assert result.coordinator.ledger_manager.total_for(max_id) == 5
        assert (
            result.coordinator.members_data[max_id][const.DATA_MEMBER_POINT_TOTAL] == 5
        )

        awards = fake_remote.rows(
            const.REMOTE_TABLE_STARS_LEDGER, task_instance_id=instance_id
        )
        assert len(awards) == 1
        assert awards[0]["profile_id"] == max_id
        assert awards[0]["delta"] == 5
        decisions = fake_remote.rows(const.REMOTE_TABLE_TASK_APPROVALS)
        assert [d["decision"] for d in decisions] == [const.REMOTE_DECISION_APPROVED]

        # A second approval is a silent no-op
        assert (
            await result.coordinator.task_manager.async_approve(
                instance_id, result.member_ids["Dad"]
            )
            is None
        )
        assert len(_awards_for(result.coordinator, instance_id)) == 1

    async def test_reject_returns_to_open(
        self,
        hass: HomeAssistant,
        mock_hass_users: dict[str, Any],
        fake_remote: FakeRemoteService,
    ) -> None:
        """Rejection reopens the instance without touching the ledger."""
        result = await setup_from_yaml(
            hass, mock_hass_users, fake_remote, "scenario_family"
        )
        instance_id = result.instance_ids["dishes_pending"]

        await result.coordinator.task_manager.async_reject(
            instance_id, result.member_ids["Dad"]
        )

        instance = result.coordinator.instances_data[instance_id]
        assert instance[const.DATA_INSTANCE_STATUS] == const.TASK_STATUS_OPEN
        assert instance[const.DATA_INSTANCE_COMPLETION_REQUESTED_BY] is None
        assert _awards_for(result.coordinator, instance_id) == []
        decisions = fake_remote.rows(const.REMOTE_TABLE_TASK_APPROVALS)
        assert [d["decision"] for d in decisions] == [const.REMOTE_DECISION_REJECTED]

    async def test_guardian_cannot_approve_own_request(
        self,
        hass: HomeAssistant,
        mock_hass_users: dict[str, Any],
        fake_remote: FakeRemoteService,
    ) -> None:
        """With two guardians, the other guardian has to decide."""
        result = await setup_from_yaml(
            hass, mock_hass_users, fake_remote, "scenario_family"
        )
        tasks = result.coordinator.task_manager
        instance_id = result.instance_ids["dishes_open"]
        mom, dad = result.member_ids["Mom"], result.member_ids["Dad"]

        await tasks.async_request_completion(instance_id, mom)
        assert (
            result.coordinator.instances_data[instance_id][const.DATA_INSTANCE_STATUS]
            == const.TASK_STATUS_PENDING_APPROVAL
        )

        assert await tasks.async_approve(instance_id, mom) is None
        assert await tasks.async_approve(instance_id, dad) is not None
        assert result.coordinator.ledger_manager.total_for(result.member_ids["Zoë"]) == 25

    async def test_dependent_cannot_approve(
        self,
        hass: HomeAssistant,
        mock_hass_users: dict[str, Any],
        fake_remote: FakeRemoteService,
    ) -> None:
        """Approval needs a guardian."""
        result = await setup_from_yaml(
            hass, mock_hass_users, fake_remote, "scenario_family"
        )
        instance_id = result.instance_ids["dishes_pending"]

        assert (
            await result.coordinator.task_manager.async_approve(
                instance_id, result.member_ids["Zoë"]
            )
            is None
        )
        assert (
            fake_remote.tables[const.REMOTE_TABLE_TASK_INSTANCES][instance_id]["status"]
            == const.TASK_STATUS_PENDING_APPROVAL
        )

    async def test_unknown_instance(
        self,
        hass: HomeAssistant,
        mock_hass_users: dict[str, Any],
        fake_remote: FakeRemoteService,
    ) -> None:
        """Unknown ids are a logged no-op."""
        result = await setup_from_yaml(
            hass, mock_hass_users, fake_remote, "scenario_family"
        )
        assert (
            await result.coordinator.task_manager.async_request_completion(
                "remote-999", result.member_ids["Zoë"]
            )
            is None
        )

    async def test_sole_guardian_completes_directly(
        self,
        hass: HomeAssistant,
        mock_hass_users: dict[str, Any],
        fake_remote: FakeRemoteService,
    ) -> None:
        """The only guardian's completion request is an approval."""
        result = await setup_from_yaml(
            hass, mock_hass_users, fake_remote, "scenario_single_guardian"
        )
        instance_id = result.instance_ids["feed_open"]
        zoe = result.member_ids["Zoë"]

        await result.coordinator.task_manager.async_request_completion(
            instance_id, result.member_ids["Mom"]
        )

        instance = result.coordinator.instances_data[instance_id]
        assert instance[const.DATA_INSTANCE_STATUS] == const.TASK_STATUS_APPROVED
        assert result.coordinator.ledger_manager.total_for(zoe) == 4
        assert len(fake_remote.rows(const.REMOTE_TABLE_STARS_LEDGER, profile_id=zoe)) == 1


# =============================================================================
# TEST: EXPIRATION
# =============================================================================


class TestExpiration:
    """The sweep expires timed-out instances."""

    async def test_sweep_expires_time_sensitive(
        self,
        hass: HomeAssistant,
        mock_hass_users: dict[str, Any],
        fake_remote: FakeRemoteService,
    ) -> None:
        """Past its window, the instance expires locally and remotely."""
        result = await setup_from_yaml(
            hass, mock_hass_users, fake_remote, "scenario_family"
        )
        now = dt_util.utcnow()
        instance_id = await result.coordinator.task_manager.async_assign(
            result.template_ids["Quick tidy"], result.member_ids["Zoë"], now=now
        )

        assert await result.coordinator.schedule_manager.async_sweep(
            now + timedelta(minutes=10)
        ) == []
        expired = await result.coordinator.schedule_manager.async_sweep(
            now + timedelta(minutes=16)
        )

        assert expired == [instance_id]
        assert (
            result.coordinator.instances_data[instance_id][const.DATA_INSTANCE_STATUS]
            == const.TASK_STATUS_EXPIRED
        )
        assert (
            fake_remote.tables[const.REMOTE_TABLE_TASK_INSTANCES][instance_id]["status"]
            == const.TASK_STATUS_EXPIRED
        )
        assert _awards_for(result.coordinator, instance_id) == []

    async def test_expired_instance_cannot_be_completed(
        self,
        hass: HomeAssistant,
        mock_hass_users: dict[str, Any],
        fake_remote: FakeRemoteService,
    ) -> None:
        """Terminal instances ignore requests."""
        result = await setup_from_yaml(
            hass, mock_hass_users, fake_remote, "scenario_family"
        )
        now = dt_util.utcnow()
        tasks = result.coordinator.task_manager
        instance_id = await tasks.async_assign(
            result.template_ids["Quick tidy"], result.member_ids["Zoë"], now=now
        )
        await result.coordinator.schedule_manager.async_sweep(now + timedelta(hours=1))

        assert (
            await tasks.async_request_completion(instance_id, result.member_ids["Zoë"])
            is None
        )


# =============================================================================
# TEST: LOST RACES
# =============================================================================


class TestLostRace:
    """Conflicting transitions converge on the canonical row."""

    async def test_approval_after_remote_expiry_is_undone(
        self,
        hass: HomeAssistant,
        mock_hass_users: dict[str, Any],
        fake_remote: FakeRemoteService,
    ) -> None:
        """The optimistic award is retracted when the row already moved on."""
        result = await setup_from_yaml(
            hass, mock_hass_users, fake_remote, "scenario_family"
        )
        instance_id = result.instance_ids["dishes_pending"]
        max_id = result.member_ids["Max"]
        fake_remote.tables[const.REMOTE_TABLE_TASK_INSTANCES][instance_id][
            "status"
        ] = const.TASK_STATUS_EXPIRED

        await result.coordinator.task_manager.async_approve(
            instance_id, result.member_ids["Mom"]
        )

        instance = result.coordinator.instances_data[instance_id]
        assert instance[const.DATA_INSTANCE_STATUS] == const.TASK_STATUS_EXPIRED
        assert instance[const.DATA_SYNC_STATE] == const.SYNC_STATE_SYNCED
        assert _awards_for(result.coordinator, instance_id) == []
        assert result.coordinator.ledger_manager.total_for(max_id) == 0
        assert fake_remote.rows(const.REMOTE_TABLE_STARS_LEDGER, profile_id=max_id) == []

    async def test_concurrent_approvals_award_once(
        self,
        hass: HomeAssistant,
        mock_hass_users: dict[str, Any],
        fake_remote: FakeRemoteService,
    ) -> None:
        """Two devices approving the same instance produce exactly one award."""
        device_a = await setup_from_yaml(
            hass,
            mock_hass_users,
            fake_remote,
            "scenario_family",
            entry_id="device_a",
            realtime=True,
        )
        entry_b = await setup_entry(
            hass, fake_remote, entry_id="device_b", realtime=True
        )
        coordinator_b: FamilyStarsCoordinator = entry_b.runtime_data
        link_users(
            coordinator_b,
            mock_hass_users,
            load_scenario("scenario_family"),
            device_a.member_ids,
        )
        coordinator_a = device_a.coordinator
        instance_id = device_a.instance_ids["dishes_pending"]
        max_id = device_a.member_ids["Max"]

        await asyncio.gather(
            coordinator_a.task_manager.async_approve(
                instance_id, device_a.member_ids["Mom"]
            ),
            coordinator_b.task_manager.async_approve(
                instance_id, device_a.member_ids["Dad"]
            ),
        )
        fake_remote.deliver_pending()
        await hass.async_block_till_done()

        remote_row = fake_remote.tables[const.REMOTE_TABLE_TASK_INSTANCES][instance_id]
        awards = fake_remote.rows(
            const.REMOTE_TABLE_STARS_LEDGER, task_instance_id=instance_id
        )
        assert remote_row["status"] == const.TASK_STATUS_APPROVED
        assert len(awards) == 1
        assert len(fake_remote.rows(const.REMOTE_TABLE_TASK_APPROVALS)) == 1

        for coordinator in (coordinator_a, coordinator_b):
            instance = coordinator.instances_data[instance_id]
            assert instance[const.DATA_INSTANCE_STATUS] == const.TASK_STATUS_APPROVED
            assert instance[const.DATA_INSTANCE_APPROVED_BY] == remote_row["approved_by"]
            local_awards = _awards_for(coordinator, instance_id)
            assert [entry[const.DATA_INTERNAL_ID] for entry in local_awards] == [
                awards[0]["id"]
            ]
            assert coordinator.ledger_manager.total_for(max_id) == 5
