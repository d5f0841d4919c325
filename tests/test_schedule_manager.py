"""Tests for ScheduleManager - regeneration and the expiration sweep."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from homeassistant.core import HomeAssistant
from homeassistant.util import dt as dt_util
from pytest_homeassistant_custom_component.common import async_fire_time_changed

from custom_components.family_stars import const
from tests.helpers.fakes import FakeRemoteService
from tests.helpers.setup import setup_entry, setup_from_yaml


def _recurring(coordinator, template_id: str) -> list[dict]:
    return [
        instance
        for instance in coordinator.instances_data.values()
        if instance.get(const.DATA_INSTANCE_TEMPLATE_ID) == template_id
    ]


async def test_setup_regenerates_once(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """Startup creates one instance per eligible pair; a rerun creates none."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_recurring"
    )
    coordinator = result.coordinator

    make_bed = _recurring(coordinator, result.template_ids["Make bed"])
    homework = _recurring(coordinator, result.template_ids["Homework"])
    assert sorted(i[const.DATA_INSTANCE_ASSIGNEE_ID] for i in make_bed) == sorted(
        [result.member_ids["Zoë"], result.member_ids["Max"]]
    )
    assert [i[const.DATA_INSTANCE_ASSIGNEE_ID] for i in homework] == [
        result.member_ids["Max"]
    ]
    assert _recurring(coordinator, result.template_ids["Old routine"]) == []
    assert len(fake_remote.rows(const.REMOTE_TABLE_TASK_INSTANCES)) == 3

    assert await coordinator.schedule_manager.async_regenerate() == []
    assert coordinator.meta[const.DATA_META_LAST_REGENERATION_DAY] == (
        dt_util.now().date().isoformat()
    )


async def test_recurring_instances_end_with_the_day(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """Recurring instances expire at local end of day, then regenerate."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_recurring"
    )
    schedule = result.coordinator.schedule_manager
    tomorrow = dt_util.now() + timedelta(days=1)

    expired = await schedule.async_sweep(dt_util.as_utc(tomorrow))
    assert len(expired) == 3

    created = await schedule.async_regenerate(dt_util.as_utc(tomorrow))
    assert len(created) == 3
    statuses = sorted(
        i[const.DATA_INSTANCE_STATUS]
        for i in result.coordinator.instances_data.values()
    )
    assert statuses == [const.TASK_STATUS_EXPIRED] * 3 + [const.TASK_STATUS_OPEN] * 3


async def test_second_device_does_not_regenerate_again(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """A device starting later sees today's instances in its full pull."""
    await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_recurring", entry_id="device_a"
    )
    await setup_entry(hass, fake_remote, entry_id="device_b")

    assert len(fake_remote.rows(const.REMOTE_TABLE_TASK_INSTANCES)) == 3


async def test_new_recurring_template_regenerates(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """Creating a recurring template on this device assigns it right away."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_recurring"
    )

    template_id = await result.coordinator.family_manager.async_create_template(
        {
            const.DATA_TEMPLATE_TITLE: "Brush teeth",
            const.DATA_TEMPLATE_SCHEDULE_TYPE: const.SCHEDULE_RECURRING_DAILY,
            const.DATA_TEMPLATE_POINTS: 1,
        }
    )
    await hass.async_block_till_done()

    assert len(_recurring(result.coordinator, template_id)) == 2


async def test_sweep_timer(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
    freezer: Any,
) -> None:
    """The interval timer runs the sweep."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_family"
    )
    now = dt_util.utcnow()
    instance_id = await result.coordinator.task_manager.async_assign(
        result.template_ids["Quick tidy"], result.member_ids["Zoë"], now=now
    )

    later = now + timedelta(minutes=20)
    freezer.move_to(later)
    async_fire_time_changed(hass, later)
    await hass.async_block_till_done(wait_background_tasks=True)

    assert (
        result.coordinator.instances_data[instance_id][const.DATA_INSTANCE_STATUS]
        == const.TASK_STATUS_EXPIRED
    )


def _seed_expired_instance(
    remote: FakeRemoteService, template_id: str, assignee_id: str | None
) -> str:
    row = {
        const.REMOTE_COLUMN_FAMILY_ID: "family-test",
        "task_id": template_id,
        "status": const.TASK_STATUS_OPEN,
        "schedule_type": const.SCHEDULE_ONE_TIME,
        "expires_at": (dt_util.utcnow() - timedelta(hours=1)).isoformat(),
    }
    if assignee_id is not None:
        row["assignee_profile_id"] = assignee_id
    return remote.seed(const.REMOTE_TABLE_TASK_INSTANCES, row)


async def test_sweep_expires_instance_without_assignee(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """A row missing its assignee column still expires, with no ledger effect."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_family"
    )
    coordinator = result.coordinator
    template_id = result.template_ids["Wash dishes"]
    orphan_id = _seed_expired_instance(fake_remote, template_id, None)
    owned_id = _seed_expired_instance(
        fake_remote, template_id, result.member_ids["Zoë"]
    )
    assert await coordinator.sync_manager.async_resync()
    ledger_size = len(coordinator.ledger_data)

    expired = await coordinator.schedule_manager.async_sweep()

    assert set(expired) == {orphan_id, owned_id}
    for instance_id in (orphan_id, owned_id):
        instance = coordinator.instances_data[instance_id]
        assert instance[const.DATA_INSTANCE_STATUS] == const.TASK_STATUS_EXPIRED
        remote_row = fake_remote.tables[const.REMOTE_TABLE_TASK_INSTANCES][instance_id]
        assert remote_row["status"] == const.TASK_STATUS_EXPIRED
    assert len(coordinator.ledger_data) == ledger_size


async def test_sweep_continues_past_a_broken_mirror(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    fake_remote: FakeRemoteService,
) -> None:
    """One instance whose remote write blows up does not strand the others."""
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "scenario_family"
    )
    coordinator = result.coordinator
    template_id = result.template_ids["Wash dishes"]
    broken_id = _seed_expired_instance(
        fake_remote, template_id, result.member_ids["Zoë"]
    )
    healthy_id = _seed_expired_instance(
        fake_remote, template_id, result.member_ids["Max"]
    )
    assert await coordinator.sync_manager.async_resync()

    original_update = fake_remote.async_update

    async def _update(table: str, row_id: str, fields: dict[str, Any], **kwargs: Any):
        if row_id == broken_id:
            raise RuntimeError("unexpected payload")
        return await original_update(table, row_id, fields, **kwargs)

    fake_remote.async_update = _update  # type: ignore[method-assign]

    expired = await coordinator.schedule_manager.async_sweep()

    assert set(expired) == {broken_id, healthy_id}
    rows = fake_remote.tables[const.REMOTE_TABLE_TASK_INSTANCES]
    assert rows[healthy_id]["status"] == const.TASK_STATUS_EXPIRED
    assert rows[broken_id]["status"] == const.TASK_STATUS_OPEN
    assert (
        coordinator.instances_data[broken_id][const.DATA_INSTANCE_STATUS]
        == const.TASK_STATUS_EXPIRED
    )
