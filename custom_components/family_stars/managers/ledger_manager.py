"""Ledger Manager - Star ledger appends, totals and retractions.

This manager handles all star-related operations:
- Appending ledger entries (awards, deductions, redemptions)
- Folding the ledger into per-member totals (cached)
- Keeping each member's derived point_total equal to its ledger sum
- Retracting an unconfirmed local award after a lost approval race

ARCHITECTURE:
- LedgerManager = "The Bank" (STATEFUL ledger operations)
- LedgerEngine = Pure ledger math (STATELESS)
- Entries are appended optimistically and mirrored through SyncManager
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from homeassistant.core import callback

from .. import const, data_builders as db
from ..engines.ledger_engine import InsufficientFundsError, LedgerEngine
from .base_manager import BaseManager

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant

    from ..coordinator import FamilyStarsCoordinator
    from ..type_defs import LedgerEntry


# Re-export exception for external use
__all__ = ["InsufficientFundsError", "LedgerManager"]


class LedgerManager(BaseManager):
    """Manager for the append-only star ledger.

    Responsibilities:
    - Append entries and mirror them
    - Maintain the per-member total cache and point_total fields
    - Emit SIGNAL_SUFFIX_LEDGER_APPENDED / SIGNAL_SUFFIX_LEDGER_RETRACTED

    NOT responsible for:
    - Deciding when a task award is due (TaskManager)
    - Reward availability (RewardManager)
    """

    def __init__(self, hass: HomeAssistant, coordinator: FamilyStarsCoordinator) -> None:
        """Initialize the LedgerManager."""
        super().__init__(hass, coordinator)
        self._totals: dict[str, int] | None = None

    async def async_setup(self) -> None:
        """Set up the LedgerManager.

        Promotions rewrite member ids inside ledger rows, so the total cache
        is dropped whenever an identity is promoted.
        """
        self.listen(const.SIGNAL_SUFFIX_IDENTITY_PROMOTED, self._on_identity_promoted)
        self.refresh_point_totals()

    @callback
    def _on_identity_promoted(self, payload: dict[str, Any]) -> None:
        """Invalidate cached totals when member or ledger ids change."""
        if payload.get("collection") in (const.DATA_MEMBERS, const.DATA_LEDGER):
            self.invalidate()

    # =========================================================================
    # Totals
    # =========================================================================

    def invalidate(self) -> None:
        """Drop the cached totals; the next read folds the ledger again."""
        self._totals = None

    def _get_totals(self) -> dict[str, int]:
        if self._totals is None:
            self._totals = LedgerEngine.totals_by_member(
                self.coordinator.ledger_data.values()
            )
        return self._totals

    def total_for(self, member_id: str) -> int:
        """Return the true (possibly negative) star total for a member."""
        return self._get_totals().get(member_id, 0)

    def display_total(self, member_id: str) -> int:
        """Return the visible star total (floored at zero)."""
        return LedgerEngine.display_total(self.total_for(member_id))

    def entries_for(self, member_id: str) -> list[LedgerEntry]:
        """Return a member's ledger entries, oldest first."""
        entries = [
            entry
            for entry in self.coordinator.ledger_data.values()
            if entry.get(const.DATA_LEDGER_MEMBER_ID) == member_id
        ]
        return sorted(entries, key=lambda entry: entry.get(const.DATA_CREATED_AT) or "")

    def refresh_point_totals(self) -> None:
        """Recompute every member's point_total from the ledger."""
        self.invalidate()
        totals = self._get_totals()
        for member_id, member in self.coordinator.members_data.items():
            member[const.DATA_MEMBER_POINT_TOTAL] = totals.get(member_id, 0)

    def _set_point_total(self, member_id: str) -> int:
        total = self.total_for(member_id)
        member = self.coordinator.members_data.get(member_id)
        if member is not None:
            member[const.DATA_MEMBER_POINT_TOTAL] = total
        return total

    # =========================================================================
    # Append / retract
    # =========================================================================

    def append(
        self,
        member_id: str,
        delta: int,
        reason: str,
        creator_id: str | None = None,
        task_instance_id: str | None = None,
    ) -> LedgerEntry:
        """Append an entry locally (optimistic, not yet mirrored).

        Always succeeds for an integral delta. A deduction that takes the total
        below zero is recorded verbatim.

        Raises:
            ValueError: delta is not a whole number
        """
        entry = LedgerEngine.create_entry(
            entry_id=db.new_local_id(),
            member_id=member_id,
            delta=delta,
            reason=reason,
            creator_id=creator_id,
            task_instance_id=task_instance_id,
        )
        entry[const.DATA_SYNC_STATE] = const.SYNC_STATE_PENDING  # type: ignore[typeddict-unknown-key]
        entry_id = entry[const.DATA_INTERNAL_ID]  # type: ignore[literal-required]
        self.coordinator.ledger_data[entry_id] = entry

        old_total = self.total_for(member_id)
        self.invalidate()
        new_total = self._set_point_total(member_id)

        self.emit(
            const.SIGNAL_SUFFIX_LEDGER_APPENDED,
            entry_id=entry_id,
            member_id=member_id,
            delta=entry[const.DATA_LEDGER_DELTA],
            new_total=new_total,
            task_instance_id=task_instance_id,
        )
        const.LOGGER.debug(
            "DEBUG: LedgerManager.append: member=%s, delta=%d, old=%d, new=%d, reason=%s",
            member_id,
            entry[const.DATA_LEDGER_DELTA],
            old_total,
            new_total,
            reason,
        )
        self.coordinator._persist_and_update()
        return entry

    async def async_append(
        self,
        member_id: str,
        delta: int,
        reason: str,
        creator_id: str | None = None,
        task_instance_id: str | None = None,
    ) -> str:
        """Append an entry and mirror it to the remote ledger.

        Returns:
            The entry id (the remote id once the insert is confirmed)
        """
        entry = self.append(member_id, delta, reason, creator_id, task_instance_id)
        local_id = entry[const.DATA_INTERNAL_ID]  # type: ignore[literal-required]
        remote_id = await self.coordinator.sync_manager.async_push_insert(
            const.DATA_LEDGER, local_id
        )
        return remote_id or local_id

    async def async_award(
        self,
        member_id: str,
        stars: int,
        reason: str | None = None,
        creator_id: str | None = None,
    ) -> str:
        """Give a member stars (manual award)."""
        return await self.async_append(
            member_id,
            abs(LedgerEngine.validate_delta(stars)),
            reason or const.LEDGER_REASON_MANUAL_AWARD,
            creator_id,
        )

    async def async_deduct(
        self,
        member_id: str,
        stars: int,
        reason: str | None = None,
        creator_id: str | None = None,
    ) -> str:
        """Take stars from a member. Never rejected for going negative."""
        return await self.async_append(
            member_id,
            -abs(LedgerEngine.validate_delta(stars)),
            reason or const.LEDGER_REASON_MANUAL_DEDUCTION,
            creator_id,
        )

    def mark_failed(self, entry_id: str, reason: str) -> None:
        """Flag a local entry that will not be sent (its transition never landed)."""
        entry = self.coordinator.ledger_data.get(entry_id)
        if entry is None or not db.is_local_id(entry_id):
            return
        entry[const.DATA_SYNC_STATE] = const.SYNC_STATE_FAILED  # type: ignore[typeddict-unknown-key]
        entry[const.DATA_SYNC_ERROR] = reason  # type: ignore[typeddict-unknown-key]
        self.coordinator._persist()

    def retract_stranded_awards(self, instance_id: str) -> list[str]:
        """Retract failed local task awards once the instance's canonical row is known.

        A failed award is never sent, so the remote ledger alone decides what
        the instance earned.

        Returns:
            Ids of the retracted entries
        """
        stranded = [
            entry_id
            for entry_id, entry in self.coordinator.ledger_data.items()
            if db.is_local_id(entry_id)
            and entry.get(const.DATA_SYNC_STATE) == const.SYNC_STATE_FAILED
            and entry.get(const.DATA_LEDGER_TASK_INSTANCE_ID) == instance_id
            and entry.get(const.DATA_LEDGER_REASON)
            == const.LEDGER_REASON_TASK_COMPLETION
        ]
        return [entry_id for entry_id in stranded if self.retract_unconfirmed(entry_id)]

    def retract_unconfirmed(self, entry_id: str) -> bool:
        """Remove a local entry the remote never accepted.

        Entries that were already promoted (matched to a canonical row) are
        kept: they now represent the canonical entry.

        Returns:
            True if an entry was removed
        """
        if not db.is_local_id(entry_id) or entry_id not in self.coordinator.ledger_data:
            const.LOGGER.debug(
                "DEBUG: Ledger entry %s already confirmed, not retracted", entry_id
            )
            return False

        entry = self.coordinator.ledger_data.pop(entry_id)
        member_id = entry.get(const.DATA_LEDGER_MEMBER_ID)
        self.invalidate()
        new_total = self._set_point_total(member_id) if member_id else 0

        self.emit(
            const.SIGNAL_SUFFIX_LEDGER_RETRACTED,
            entry_id=entry_id,
            member_id=member_id,
            delta=entry.get(const.DATA_LEDGER_DELTA),
            new_total=new_total,
        )
        const.LOGGER.info(
            "INFO: Retracted unconfirmed ledger entry %s for member %s",
            entry_id,
            member_id,
        )
        self.coordinator._persist_and_update()
        return True
