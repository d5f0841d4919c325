"""Tests for SyncManager - mirroring, promotion and reconciliation."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

from homeassistant.core import HomeAssistant
from homeassistant.helpers.dispatcher import async_dispatcher_connect

from custom_components.family_stars import const
from custom_components.family_stars.data_builders import is_local_id
from custom_components.family_stars.helpers.entity_helpers import get_event_signal
from custom_components.family_stars.managers.sync_manager import (
    UPDATE_APPLIED,
    UPDATE_CONFLICT,
    UPDATE_FAILED,
    UPDATE_UNCONFIRMED,
)
from custom_components.family_stars.remote import RemoteChange
from tests.helpers.fakes import FakeRemoteService
from tests.helpers.setup import setup_from_yaml

GRANDMA = {
    const.DATA_MEMBER_NAME: "Grandma",
    const.DATA_MEMBER_ROLE: const.ROLE_GUARDIAN,
}


# ============================================================================
# Failures
# ============================================================================


async def test_offline_insert_keeps_optimistic_entity(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """A failed insert leaves the local entity marked failed."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_family"
    )
    coordinator = result.coordinator
    listener = MagicMock()
    unsub = async_dispatcher_connect(
        hass,
        get_event_signal(
            result.config_entry.entry_id, const.SIGNAL_SUFFIX_SYNC_FAILED
        ),
        listener,
    )

    fake_remote.fail_network()
    member_id = await coordinator.family_manager.async_add_member(dict(GRANDMA))
    await hass.async_block_till_done()
    unsub()

    assert is_local_id(member_id)
    member = coordinator.members_data[member_id]
    assert member[const.DATA_SYNC_STATE] == const.SYNC_STATE_FAILED
    assert member[const.DATA_SYNC_ERROR].startswith(const.REMOTE_ERROR_NETWORK)
    error = coordinator.meta[const.DATA_META_LAST_SYNC_ERROR]
    assert error["code"] == const.REMOTE_ERROR_NETWORK
    assert error["operation"] == f"insert {const.REMOTE_TABLE_PROFILES}"
    assert listener.call_args[0][0]["entity_id"] == member_id


async def test_failed_update_is_not_retried(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """Transport errors are reported as UPDATE_FAILED and recorded."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_family"
    )
    sync = result.coordinator.sync_manager
    reward_id = result.reward_ids["Ice cream"]

    fake_remote.fail_network()
    outcome = await sync.async_push_update(
        const.DATA_REWARDS, reward_id, {const.DATA_REWARD_COST: 12}
    )
    fake_remote.recover()
    await hass.async_block_till_done()

    assert outcome == UPDATE_FAILED
    reward = result.coordinator.rewards_data[reward_id]
    assert reward[const.DATA_SYNC_STATE] == const.SYNC_STATE_FAILED
    assert fake_remote.tables[const.REMOTE_TABLE_REWARDS][reward_id]["star_cost"] == 10
    updates = [call for call in fake_remote.calls if call[0] == "update"]
    assert len(updates) == 1


async def test_update_before_promotion_is_unconfirmed(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """Entities still carrying a local id cannot be updated remotely."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_family"
    )
    coordinator = result.coordinator

    fake_remote.fail_network()
    template_id = await coordinator.family_manager.async_create_template(
        {
            const.DATA_TEMPLATE_TITLE: "Water plants",
            const.DATA_TEMPLATE_SCHEDULE_TYPE: const.SCHEDULE_ONE_TIME,
            const.DATA_TEMPLATE_POINTS: 2,
        }
    )
    fake_remote.recover()

    outcome = await coordinator.sync_manager.async_push_update(
        const.DATA_TEMPLATES, template_id, {const.DATA_TEMPLATE_POINTS: 6}
    )

    assert outcome == UPDATE_UNCONFIRMED
    template = coordinator.templates_data[template_id]
    assert template[const.DATA_SYNC_ERROR] == UPDATE_UNCONFIRMED
    assert fake_remote.rows(const.REMOTE_TABLE_TASKS, title="Water plants") == []


async def test_conditional_update(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """expected_status guards the write."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_family"
    )
    sync = result.coordinator.sync_manager
    instance_id = result.instance_ids["dishes_open"]
    fields = {const.DATA_INSTANCE_STATUS: const.TASK_STATUS_EXPIRED}

    assert (
        await sync.async_push_update(
            const.DATA_INSTANCES,
            instance_id,
            fields,
            expected_status=const.TASK_STATUS_PENDING_APPROVAL,
        )
        == UPDATE_CONFLICT
    )
    assert (
        await sync.async_push_update(
            const.DATA_INSTANCES,
            instance_id,
            fields,
            expected_status=const.TASK_STATUS_OPEN,
        )
        == UPDATE_APPLIED
    )
    assert (
        result.coordinator.instances_data[instance_id][const.DATA_INSTANCE_STATUS]
        == const.TASK_STATUS_EXPIRED
    )


# ============================================================================
# Full pull
# ============================================================================


async def test_full_pull_prunes_confirmed_and_keeps_local(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """Rows gone from the remote disappear; unsent local entities stay."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_family"
    )
    coordinator = result.coordinator
    removed_id = result.instance_ids["dishes_open"]

    fake_remote.fail_network()
    local_id = await coordinator.family_manager.async_add_member(dict(GRANDMA))
    assert await coordinator.sync_manager.async_resync() is False
    fake_remote.recover()

    del fake_remote.tables[const.REMOTE_TABLE_TASK_INSTANCES][removed_id]
    assert await coordinator.sync_manager.async_resync() is True

    assert removed_id not in coordinator.instances_data
    assert result.instance_ids["dishes_pending"] in coordinator.instances_data
    assert local_id in coordinator.members_data
    assert coordinator.meta[const.DATA_META_LAST_SYNC_ERROR] is None
    assert coordinator.meta[const.DATA_META_LAST_FULL_SYNC]


async def test_full_pull_promotes_member_by_name_and_role(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """A member created elsewhere with the same name and role adopts our entry."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_family"
    )
    coordinator = result.coordinator
    sync = coordinator.sync_manager

    fake_remote.fail_network()
    local_id = await coordinator.family_manager.async_add_member(dict(GRANDMA))
    fake_remote.recover()
    remote_id = fake_remote.seed(
        const.REMOTE_TABLE_PROFILES,
        {
            const.REMOTE_COLUMN_FAMILY_ID: "family-test",
            "display_name": "grandma",
            "role": const.REMOTE_ROLE_GUARDIAN,
            "age": None,
            "powers": [],
        },
    )

    assert await sync.async_resync()

    assert local_id not in coordinator.members_data
    assert coordinator.members_data[remote_id][const.DATA_SYNC_STATE] == (
        const.SYNC_STATE_SYNCED
    )
    assert sync.identity_map[const.DATA_MEMBERS][local_id] == remote_id
    assert sync.resolve_id(const.DATA_MEMBERS, local_id) == remote_id
    assert coordinator.family_manager.get_member(local_id) is not None


async def test_insert_promotes_and_rewrites_references(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """Promotion replaces the local id everywhere it is referenced."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_family"
    )
    coordinator = result.coordinator

    fake_remote.fail_network()
    local_id = await coordinator.family_manager.async_add_member(
        {
            const.DATA_MEMBER_NAME: "Lea",
            const.DATA_MEMBER_ROLE: const.ROLE_DEPENDENT,
            const.DATA_MEMBER_AGE: 6,
        }
    )
    entry = coordinator.ledger_manager.append(
        local_id, 3, const.LEDGER_REASON_MANUAL_AWARD
    )
    fake_remote.recover()

    remote_id = await coordinator.sync_manager.async_push_insert(
        const.DATA_MEMBERS, local_id
    )

    assert remote_id is not None
    assert not is_local_id(remote_id)
    ledger_entry = coordinator.ledger_data[entry[const.DATA_INTERNAL_ID]]
    assert ledger_entry[const.DATA_LEDGER_MEMBER_ID] == remote_id
    assert coordinator.ledger_manager.total_for(remote_id) == 3
    # A second push of the same local id resolves instead of inserting again
    assert (
        await coordinator.sync_manager.async_push_insert(const.DATA_MEMBERS, local_id)
        == remote_id
    )
    assert len(fake_remote.rows(const.REMOTE_TABLE_PROFILES, display_name="Lea")) == 1


# ============================================================================
# Realtime
# ============================================================================


async def test_realtime_update_merges_canonical_row(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """Pushed rows land in the cache; remote-only labels are normalized."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_family", realtime=True
    )
    coordinator = result.coordinator
    instance_id = result.instance_ids["dishes_pending"]
    row = dict(fake_remote.tables[const.REMOTE_TABLE_TASK_INSTANCES][instance_id])

    fake_remote.push(
        RemoteChange(
            kind=const.CHANGE_UPDATE,
            table=const.REMOTE_TABLE_TASK_INSTANCES,
            record={**row, "status": const.REMOTE_TASK_STATUS_REJECTED},
        )
    )
    await hass.async_block_till_done()

    assert (
        coordinator.instances_data[instance_id][const.DATA_INSTANCE_STATUS]
        == const.TASK_STATUS_OPEN
    )


async def test_realtime_insert_from_another_device(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """Queued insert events reach subscribed devices once delivered."""
    device_a = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_family", realtime=True
    )

    fake_remote.pending.clear()
    row_id = await fake_remote.async_insert(
        const.REMOTE_TABLE_STARS_LEDGER,
        {
            const.REMOTE_COLUMN_FAMILY_ID: "family-test",
            "profile_id": device_a.member_ids["Max"],
            "delta": 4,
            "reason": const.LEDGER_REASON_MANUAL_AWARD,
            "created_by_profile_id": None,
            "task_instance_id": None,
        },
    )
    assert fake_remote.deliver_pending() == 1
    await hass.async_block_till_done()

    assert row_id[const.REMOTE_COLUMN_ID] in device_a.coordinator.ledger_data
    assert device_a.coordinator.ledger_manager.total_for(
        device_a.member_ids["Max"]
    ) == 4


async def test_realtime_deletes(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """Members are removed, templates archived, ledger deletes ignored."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_family", realtime=True
    )
    coordinator = result.coordinator
    zoe = result.member_ids["Zoë"]
    ledger_id = fake_remote.rows(const.REMOTE_TABLE_STARS_LEDGER, profile_id=zoe)[0][
        const.REMOTE_COLUMN_ID
    ]

    for table, row_id in (
        (const.REMOTE_TABLE_PROFILES, result.member_ids["Max"]),
        (const.REMOTE_TABLE_TASKS, result.template_ids["Wash dishes"]),
        (const.REMOTE_TABLE_STARS_LEDGER, ledger_id),
    ):
        fake_remote.push(
            RemoteChange(
                kind=const.CHANGE_DELETE,
                table=table,
                record={},
                old_record={const.REMOTE_COLUMN_ID: row_id},
            )
        )
    await hass.async_block_till_done()

    assert result.member_ids["Max"] not in coordinator.members_data
    template = coordinator.templates_data[result.template_ids["Wash dishes"]]
    assert template[const.DATA_TEMPLATE_ARCHIVED] is True
    assert ledger_id in coordinator.ledger_data
    assert coordinator.ledger_manager.total_for(zoe) == 20


async def test_realtime_disabled_does_not_subscribe(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """Without the option the change feed is never opened."""
    await setup_from_yaml(hass, mock_hass_users, fake_remote, "scenario_family")

    assert fake_remote.subscribers == []
    assert not [call for call in fake_remote.calls if call[0] == "subscribe"]


# ============================================================================
# Awards whose transition never reached the remote
# ============================================================================


def _remote_total(remote: FakeRemoteService, profile_id: str) -> int:
    return sum(
        row["delta"]
        for row in remote.rows(const.REMOTE_TABLE_STARS_LEDGER, profile_id=profile_id)
    )


async def test_failed_approval_award_is_retracted_when_remote_reopens(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """The local total follows the remote once the instance row comes back."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_family"
    )
    coordinator = result.coordinator
    max_id = result.member_ids["Max"]
    instance_id = result.instance_ids["dishes_pending"]

    fake_remote.fail_network()
    effect = await coordinator.task_manager.async_approve(
        instance_id, result.member_ids["Mom"]
    )
    fake_remote.recover()

    assert effect is not None
    assert coordinator.ledger_manager.total_for(max_id) == 5
    award = next(
        entry
        for entry in coordinator.ledger_data.values()
        if entry.get(const.DATA_LEDGER_TASK_INSTANCE_ID) == instance_id
    )
    assert award[const.DATA_SYNC_STATE] == const.SYNC_STATE_FAILED
    assert award[const.DATA_SYNC_ERROR] == UPDATE_FAILED

    fake_remote.tables[const.REMOTE_TABLE_TASK_INSTANCES][instance_id][
        const.REMOTE_COLUMN_STATUS
    ] = const.TASK_STATUS_OPEN
    assert await coordinator.sync_manager.async_resync()

    instance = coordinator.instances_data[instance_id]
    assert instance[const.DATA_INSTANCE_STATUS] == const.TASK_STATUS_OPEN
    assert coordinator.ledger_manager.total_for(max_id) == _remote_total(
        fake_remote, max_id
    )
    assert coordinator.ledger_manager.total_for(max_id) == 0
    assert coordinator.members_data[max_id][const.DATA_MEMBER_POINT_TOTAL] == 0


async def test_failed_approval_award_yields_to_remote_award(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """Another guardian's approval is counted once, not twice."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_family"
    )
    coordinator = result.coordinator
    max_id = result.member_ids["Max"]
    dad_id = result.member_ids["Dad"]
    instance_id = result.instance_ids["dishes_pending"]

    fake_remote.fail_network()
    await coordinator.task_manager.async_approve(instance_id, result.member_ids["Mom"])
    fake_remote.recover()

    fake_remote.tables[const.REMOTE_TABLE_TASK_INSTANCES][instance_id].update(
        {
            const.REMOTE_COLUMN_STATUS: const.TASK_STATUS_APPROVED,
            "approved_by": dad_id,
        }
    )
    fake_remote.seed(
        const.REMOTE_TABLE_STARS_LEDGER,
        {
            const.REMOTE_COLUMN_FAMILY_ID: "family-test",
            "profile_id": max_id,
            "delta": 5,
            "reason": const.LEDGER_REASON_TASK_COMPLETION,
            "created_by_profile_id": dad_id,
            "task_instance_id": instance_id,
        },
    )
    assert await coordinator.sync_manager.async_resync()

    awards = [
        entry_id
        for entry_id, entry in coordinator.ledger_data.items()
        if entry.get(const.DATA_LEDGER_TASK_INSTANCE_ID) == instance_id
    ]
    assert len(awards) == 1
    assert not is_local_id(awards[0])
    assert coordinator.ledger_manager.total_for(max_id) == 5
    assert coordinator.instances_data[instance_id][const.DATA_INSTANCE_APPROVED_BY] == (
        dad_id
    )


async def test_confirmed_approval_keeps_its_award(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """Canonical echoes of an applied approval leave the mirrored award alone."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_family"
    )
    coordinator = result.coordinator
    max_id = result.member_ids["Max"]

    await coordinator.task_manager.async_approve(
        result.instance_ids["dishes_pending"], result.member_ids["Mom"]
    )
    assert await coordinator.sync_manager.async_resync()

    assert coordinator.ledger_manager.total_for(max_id) == 5
    assert _remote_total(fake_remote, max_id) == 5
