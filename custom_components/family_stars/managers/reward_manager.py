"""Reward Manager - Reward catalogue and redemption.

This manager handles the reward lifecycle:
- Create: guardian adds a reward with a star cost (status available)
- Update / delete: guardian edits the catalogue (redemption state is kept)
- Redeem: a member spends stars; the reward becomes redeemed

ARCHITECTURE:
- Deductions go through LedgerManager.append() (emits LEDGER_APPENDED)
- The reward status change is mirrored as a compare-and-set on "available",
  so two devices redeeming the same reward cannot both win
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from homeassistant.exceptions import HomeAssistantError

from .. import const, data_builders as db
from ..engines.ledger_engine import InsufficientFundsError, LedgerEngine
from ..utils.dt_utils import dt_now_iso
from .base_manager import BaseManager
from .sync_manager import UPDATE_APPLIED, UPDATE_CONFLICT

if TYPE_CHECKING:
    from ..type_defs import RewardData


class RewardManager(BaseManager):
    """Manager for rewards and redemptions.

    Responsibilities:
    - Create rewards
    - Redeem rewards with funds check and per-reward locking
    - Emit SIGNAL_SUFFIX_REWARD_REDEEMED

    NOT responsible for:
    - Ledger totals (LedgerManager)
    """

    async def async_setup(self) -> None:
        """Set up the RewardManager.

        Currently no event subscriptions needed - RewardManager is called directly.
        """
        const.LOGGER.debug(
            "DEBUG: RewardManager initialized for entry %s", self.entry_id
        )

    # =========================================================================
    # Lookups
    # =========================================================================

    def find_reward(self, title_or_id: str) -> str | None:
        """Return a reward id by id or title (case-insensitive).

        Available rewards win over redeemed ones with the same title.
        """
        rewards = self.coordinator.rewards_data
        resolved = self.coordinator.sync_manager.resolve_id(
            const.DATA_REWARDS, title_or_id
        )
        if resolved in rewards:
            return resolved
        folded = title_or_id.strip().casefold()
        redeemed_match: str | None = None
        for reward_id, reward in rewards.items():
            if str(reward.get(const.DATA_REWARD_TITLE, "")).strip().casefold() != folded:
                continue
            if reward.get(const.DATA_REWARD_STATUS) == const.REWARD_STATUS_AVAILABLE:
                return reward_id
            redeemed_match = redeemed_match or reward_id
        return redeemed_match

    def available_rewards(self) -> list[RewardData]:
        """Return every reward that can still be redeemed."""
        return [
            reward
            for reward in self.coordinator.rewards_data.values()
            if reward.get(const.DATA_REWARD_STATUS) == const.REWARD_STATUS_AVAILABLE
        ]

    # =========================================================================
    # Catalogue
    # =========================================================================

    async def async_create_reward(self, user_input: dict[str, Any]) -> str:
        """Create a reward and mirror it.

        Raises:
            EntityValidationError: empty title or negative cost
        """
        reward = db.build_reward(user_input)
        reward[const.DATA_SYNC_STATE] = const.SYNC_STATE_PENDING  # type: ignore[typeddict-unknown-key]
        local_id = reward[const.DATA_INTERNAL_ID]  # type: ignore[literal-required]
        self.coordinator.rewards_data[local_id] = reward

        const.LOGGER.info(
            "INFO: Created reward '%s' costing %d stars",
            reward[const.DATA_REWARD_TITLE],
            reward[const.DATA_REWARD_COST],
        )
        self.coordinator._persist_and_update()

        remote_id = await self.coordinator.sync_manager.async_push_insert(
            const.DATA_REWARDS, local_id
        )
        return remote_id or local_id

    async def async_update_reward(
        self, reward_id: str, updates: dict[str, Any]
    ) -> None:
        """Change a reward's title, description or cost and mirror it.

        Raises:
            HomeAssistantError: unknown reward
            EntityValidationError: empty title or negative cost
        """
        reward_id = self.coordinator.sync_manager.resolve_id(
            const.DATA_REWARDS, reward_id
        )
        async with self.keyed_lock("redeem", reward_id):
            existing = self._require_reward(reward_id)
            updated: dict[str, Any] = dict(existing)
            updated.update(db.build_reward(updates, existing))
            self.coordinator.rewards_data[reward_id] = updated  # type: ignore[assignment]
            const.LOGGER.info(
                "INFO: Updated reward '%s' (ID: %s)",
                updated[const.DATA_REWARD_TITLE],
                reward_id,
            )
            self.coordinator._persist_and_update()

            # redemption state is never written from here
            remote_fields = {
                key: updated[key]
                for key in (
                    const.DATA_REWARD_TITLE,
                    const.DATA_REWARD_DESCRIPTION,
                    const.DATA_REWARD_COST,
                )
                if key in updates
            }
            if remote_fields:
                await self.coordinator.sync_manager.async_push_update(
                    const.DATA_REWARDS, reward_id, remote_fields
                )

    async def async_delete_reward(self, reward_id: str) -> None:
        """Delete a reward locally and remotely. Past deductions stay.

        Raises:
            HomeAssistantError: unknown reward
        """
        reward_id = self.coordinator.sync_manager.resolve_id(
            const.DATA_REWARDS, reward_id
        )
        async with self.keyed_lock("redeem", reward_id):
            reward = self._require_reward(reward_id)
            del self.coordinator.rewards_data[reward_id]
            const.LOGGER.info(
                "INFO: Deleted reward '%s' (ID: %s)",
                reward.get(const.DATA_REWARD_TITLE),
                reward_id,
            )
            self.coordinator._persist_and_update()

            await self.coordinator.sync_manager.async_push_delete(
                const.DATA_REWARDS, reward_id
            )

    def _require_reward(self, reward_id: str) -> RewardData:
        reward = self.coordinator.rewards_data.get(reward_id)
        if reward is None:
            raise HomeAssistantError(
                translation_domain=const.DOMAIN,
                translation_key=const.TRANS_KEY_ERROR_REWARD_NOT_FOUND,
                translation_placeholders={"name": reward_id},
            )
        return reward

    # =========================================================================
    # Redeem
    # =========================================================================

    async def async_redeem(
        self, reward_id: str, member_id: str, actor_id: str | None = None
    ) -> str | None:
        """Redeem a reward for a member with race condition protection.

        Returns:
            The deduction's ledger entry id, or None if another device
            redeemed the reward first

        Raises:
            HomeAssistantError: unknown reward or member, reward already redeemed
            InsufficientFundsError: display total below the reward cost
        """
        reward_id = self.coordinator.sync_manager.resolve_id(
            const.DATA_REWARDS, reward_id
        )
        lock = self.keyed_lock("redeem", reward_id)
        async with lock:
            return await self._redeem_locked(reward_id, member_id, actor_id)

    async def _redeem_locked(
        self, reward_id: str, member_id: str, actor_id: str | None
    ) -> str | None:
        reward = self.coordinator.rewards_data.get(reward_id)
        if reward is None:
            raise HomeAssistantError(
                translation_domain=const.DOMAIN,
                translation_key=const.TRANS_KEY_ERROR_REWARD_NOT_FOUND,
                translation_placeholders={"name": reward_id},
            )
        if member_id not in self.coordinator.members_data:
            raise HomeAssistantError(
                translation_domain=const.DOMAIN,
                translation_key=const.TRANS_KEY_ERROR_MEMBER_NOT_FOUND,
                translation_placeholders={"name": member_id},
            )

        title = str(reward.get(const.DATA_REWARD_TITLE, reward_id))
        if reward.get(const.DATA_REWARD_STATUS) != const.REWARD_STATUS_AVAILABLE:
            raise HomeAssistantError(
                translation_domain=const.DOMAIN,
                translation_key=const.TRANS_KEY_ERROR_REWARD_REDEEMED,
                translation_placeholders={"name": title},
            )

        cost = int(reward.get(const.DATA_REWARD_COST, 0))
        balance = self.coordinator.ledger_manager.display_total(member_id)
        if not LedgerEngine.validate_sufficient_funds(balance, cost):
            raise InsufficientFundsError(member_id, balance, cost)

        entry_id: str | None = None
        if cost:
            entry = self.coordinator.ledger_manager.append(
                member_id=member_id,
                delta=-cost,
                reason=f"{const.LEDGER_REASON_REWARD_PREFIX}{title}",
                creator_id=actor_id,
            )
            entry_id = entry[const.DATA_INTERNAL_ID]  # type: ignore[literal-required]

        redeemed_at = dt_now_iso()
        fields = {
            const.DATA_REWARD_STATUS: const.REWARD_STATUS_REDEEMED,
            const.DATA_REWARD_REDEEMED_BY: member_id,
            const.DATA_REWARD_REDEEMED_AT: redeemed_at,
        }
        reward.update(fields)  # type: ignore[typeddict-item]
        reward[const.DATA_SYNC_STATE] = const.SYNC_STATE_PENDING  # type: ignore[typeddict-unknown-key]

        self.emit(
            const.SIGNAL_SUFFIX_REWARD_REDEEMED,
            reward_id=reward_id,
            member_id=member_id,
            cost=cost,
            entry_id=entry_id,
        )
        const.LOGGER.info(
            "INFO: Member %s redeemed reward '%s' for %d stars", member_id, title, cost
        )
        self.coordinator._persist_and_update()

        sync = self.coordinator.sync_manager
        outcome = await sync.async_push_update(
            const.DATA_REWARDS,
            reward_id,
            fields,
            expected_status=const.REWARD_STATUS_AVAILABLE,
        )
        if outcome == UPDATE_CONFLICT:
            const.LOGGER.info(
                "INFO: Reward %s was redeemed on another device; undoing", reward_id
            )
            if entry_id is not None:
                self.coordinator.ledger_manager.retract_unconfirmed(entry_id)
            await sync.async_reread(
                const.REMOTE_TABLE_REWARDS, {const.REMOTE_COLUMN_ID: reward_id}
            )
            return None
        if outcome == UPDATE_APPLIED and entry_id is not None:
            return await sync.async_push_insert(const.DATA_LEDGER, entry_id) or entry_id
        return entry_id
