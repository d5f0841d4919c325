"""Setup helpers for Family Stars test configuration.

Scenarios describe the family as the remote store holds it. The helper seeds
the in-memory remote with matching rows, sets up one config entry per device
and returns the ids the full pull produced, so tests can address everything
by name.

Example:
    result = await setup_from_yaml(
        hass, mock_hass_users, fake_remote, "tests/scenarios/scenario_family.yaml"
    )
    zoe_id = result.member_ids["Zoë"]
    await result.coordinator.task_manager.async_approve(instance_id, mom_id)

Scenario keys (all optional):
    members:   name, role (guardian|dependent), age, capabilities, ha_user
    templates: title, points, category, difficulty, schedule_type,
               min_age, max_age, time_window_minutes, archived
    rewards:   title, cost, description
    ledger:    member, delta, reason
    instances: key, template, assignee, status, requested_by, due_at,
               expires_at, created_at
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from unittest.mock import patch

from homeassistant.core import HomeAssistant
from homeassistant.util import dt as dt_util
from pytest_homeassistant_custom_component.common import MockConfigEntry
import yaml

from custom_components.family_stars import const
from custom_components.family_stars.coordinator import FamilyStarsCoordinator
from tests.helpers.fakes import FakeRemoteService

DEFAULT_FAMILY_ID = "family-test"
DEFAULT_ENTRY_ID = "test_entry_id"
SCENARIOS_DIR = Path(__file__).resolve().parent.parent / "scenarios"

_REMOTE_ROLES = {
    const.ROLE_GUARDIAN: const.REMOTE_ROLE_GUARDIAN,
    const.ROLE_DEPENDENT: const.REMOTE_ROLE_KID,
}

# =============================================================================
# DATACLASSES
# =============================================================================


@dataclass
class SeedResult:
    """Remote ids of the seeded rows, keyed by name/title/key."""

    member_ids: dict[str, str] = field(default_factory=dict)
    template_ids: dict[str, str] = field(default_factory=dict)
    reward_ids: dict[str, str] = field(default_factory=dict)
    instance_ids: dict[str, str] = field(default_factory=dict)


@dataclass
class SetupResult:
    """Result from setup_scenario containing all configured entities.

    Attributes:
        config_entry: The created ConfigEntry
        coordinator: The FamilyStarsCoordinator instance
        remote: The in-memory remote store
        member_ids: Member names -> ids
        template_ids: Template titles -> ids
        reward_ids: Reward titles -> ids
        instance_ids: Instance keys -> ids
    """

    config_entry: MockConfigEntry
    coordinator: FamilyStarsCoordinator
    remote: FakeRemoteService
    member_ids: dict[str, str] = field(default_factory=dict)
    template_ids: dict[str, str] = field(default_factory=dict)
    reward_ids: dict[str, str] = field(default_factory=dict)
    instance_ids: dict[str, str] = field(default_factory=dict)


# =============================================================================
# SEEDING
# =============================================================================


def seed_scenario(
    remote: FakeRemoteService,
    scenario: dict[str, Any],
    family_id: str = DEFAULT_FAMILY_ID,
) -> SeedResult:
    """Write a scenario into the remote store as canonical rows."""
    seeded = SeedResult()
    now_iso = dt_util.utcnow().isoformat()

    for member in scenario.get("members", []):
        seeded.member_ids[member["name"]] = remote.seed(
            const.REMOTE_TABLE_PROFILES,
            {
                const.REMOTE_COLUMN_FAMILY_ID: family_id,
                "display_name": member["name"],
                "role": _REMOTE_ROLES[member.get("role", const.ROLE_DEPENDENT)],
                "age": member.get("age"),
                "powers": member.get("capabilities", []),
            },
        )

    for template in scenario.get("templates", []):
        schedule_type = template.get("schedule_type", const.SCHEDULE_ONE_TIME)
        seeded.template_ids[template["title"]] = remote.seed(
            const.REMOTE_TABLE_TASKS,
            {
                const.REMOTE_COLUMN_FAMILY_ID: family_id,
                "title": template["title"],
                "category": template.get("category", const.DEFAULT_TASK_CATEGORY),
                "default_stars": template.get("points", const.DEFAULT_TASK_POINTS),
                "difficulty": template.get("difficulty", const.DEFAULT_TASK_DIFFICULTY),
                "min_age": template.get("min_age"),
                "max_age": template.get("max_age"),
                "schedule_type": schedule_type,
                "time_window_minutes": template.get("time_window_minutes"),
                "enabled": template.get("enabled", True),
                "is_archived": template.get("archived", False),
            },
        )

    for index, instance in enumerate(scenario.get("instances", [])):
        key = instance.get("key", f"instance_{index}")
        template_title = instance["template"]
        template_row = remote.tables[const.REMOTE_TABLE_TASKS][
            seeded.template_ids[template_title]
        ]
        status = instance.get("status", const.TASK_STATUS_OPEN)
        requested_by = instance.get("requested_by")
        seeded.instance_ids[key] = remote.seed(
            const.REMOTE_TABLE_TASK_INSTANCES,
            {
                const.REMOTE_COLUMN_FAMILY_ID: family_id,
                "task_id": seeded.template_ids[template_title],
                "assignee_profile_id": seeded.member_ids[instance["assignee"]],
                "created_by_profile_id": None,
                "created_at": instance.get("created_at", now_iso),
                "due_at": instance.get("due_at"),
                "expires_at": instance.get("expires_at"),
                "schedule_type": template_row["schedule_type"],
                "status": status,
                "completion_requested_by": (
                    seeded.member_ids[requested_by] if requested_by else None
                ),
                "completion_requested_at": now_iso if requested_by else None,
                "approved_by": None,
                "approved_at": None,
            },
        )

    for entry in scenario.get("ledger", []):
        remote.seed(
            const.REMOTE_TABLE_STARS_LEDGER,
            {
                const.REMOTE_COLUMN_FAMILY_ID: family_id,
                "profile_id": seeded.member_ids[entry["member"]],
                "delta": entry["delta"],
                "reason": entry.get("reason", const.LEDGER_REASON_MANUAL_AWARD),
                "created_by_profile_id": None,
                "task_instance_id": None,
            },
        )

    for reward in scenario.get("rewards", []):
        seeded.reward_ids[reward["title"]] = remote.seed(
            const.REMOTE_TABLE_REWARDS,
            {
                const.REMOTE_COLUMN_FAMILY_ID: family_id,
                "name": reward["title"],
                "description": reward.get("description", ""),
                "star_cost": reward.get("cost", 0),
                "status": const.REWARD_STATUS_AVAILABLE,
                "redeemed_by": None,
                "redeemed_at": None,
            },
        )

    return seeded


# =============================================================================
# ENTRY SETUP
# =============================================================================


def build_config_entry(
    *,
    entry_id: str = DEFAULT_ENTRY_ID,
    family_id: str = DEFAULT_FAMILY_ID,
    realtime: bool = False,
) -> MockConfigEntry:
    """Return a config entry for one device of a family."""
    return MockConfigEntry(
        domain=const.DOMAIN,
        title=f"{const.FAMILY_STARS_TITLE} ({family_id})",
        data={
            const.CONF_FAMILY_ID: family_id,
            const.CONF_REMOTE_URL: "https://family-test.supabase.co",
            const.CONF_API_KEY: "test-anon-key",
        },
        options={
            const.CONF_SWEEP_INTERVAL: const.DEFAULT_SWEEP_INTERVAL,
            const.CONF_REALTIME_ENABLED: realtime,
        },
        entry_id=entry_id,
    )


async def setup_entry(
    hass: HomeAssistant,
    remote: FakeRemoteService,
    *,
    entry_id: str = DEFAULT_ENTRY_ID,
    family_id: str = DEFAULT_FAMILY_ID,
    realtime: bool = False,
) -> MockConfigEntry:
    """Add and set up one config entry wired to the in-memory remote."""
    config_entry = build_config_entry(
        entry_id=entry_id, family_id=family_id, realtime=realtime
    )
    config_entry.add_to_hass(hass)
    with patch(
        "custom_components.family_stars.SupabaseRemoteService",
        return_value=remote,
    ):
        assert await hass.config_entries.async_setup(config_entry.entry_id)
        await hass.async_block_till_done()
    return config_entry


def link_users(
    coordinator: FamilyStarsCoordinator,
    mock_hass_users: dict[str, Any],
    scenario: dict[str, Any],
    member_ids: dict[str, str],
) -> None:
    """Link scenario members to the mock Home Assistant users."""
    for member in scenario.get("members", []):
        user_key = member.get("ha_user")
        if user_key:
            coordinator.members_data[member_ids[member["name"]]][
                const.DATA_MEMBER_HA_USER_ID
            ] = mock_hass_users[user_key].id


async def setup_scenario(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    remote: FakeRemoteService,
    scenario: dict[str, Any],
    *,
    entry_id: str = DEFAULT_ENTRY_ID,
    realtime: bool = False,
) -> SetupResult:
    """Seed the remote with a scenario and set up one device for it."""
    seeded = seed_scenario(remote, scenario)
    config_entry = await setup_entry(
        hass, remote, entry_id=entry_id, realtime=realtime
    )
    coordinator: FamilyStarsCoordinator = config_entry.runtime_data
    link_users(coordinator, mock_hass_users, scenario, seeded.member_ids)

    return SetupResult(
        config_entry=config_entry,
        coordinator=coordinator,
        remote=remote,
        member_ids=seeded.member_ids,
        template_ids=seeded.template_ids,
        reward_ids=seeded.reward_ids,
        instance_ids=seeded.instance_ids,
    )


def load_scenario(path: str | Path) -> dict[str, Any]:
    """Load a scenario YAML file (a bare name resolves under tests/scenarios)."""
    scenario_path = Path(path)
    if not scenario_path.suffix:
        scenario_path = SCENARIOS_DIR / f"{scenario_path.name}.yaml"
    elif not scenario_path.is_absolute() and not scenario_path.exists():
        scenario_path = SCENARIOS_DIR / scenario_path.name
    with scenario_path.open(encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


async def setup_from_yaml(
    hass: HomeAssistant,
    mock_hass_users: dict[str, Any],
    remote: FakeRemoteService,
    path: str | Path,
    *,
    entry_id: str = DEFAULT_ENTRY_ID,
    realtime: bool = False,
) -> SetupResult:
    """Set up a scenario loaded from YAML."""
    return await setup_scenario(
        hass,
        mock_hass_users,
        remote,
        load_scenario(path),
        entry_id=entry_id,
        realtime=realtime,
    )
