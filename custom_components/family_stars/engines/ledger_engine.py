"""Ledger Engine - Pure logic for the star ledger.

This engine provides stateless, pure Python functions for:
- Ledger entry creation and delta validation
- Folding entries into per-member totals
- The displayed (floored at zero) balance
- Sufficient funds validation (NSF checks) for reward redemption

The ledger is append-only: entries are never edited. A deduction larger than
the balance is still recorded with its true signed delta; only the displayed
total is clamped.

ARCHITECTURE: This is a pure logic engine with NO Home Assistant dependencies.
All functions are static methods that operate on passed-in data.
State management belongs in LedgerManager.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .. import const
from ..utils.dt_utils import dt_now_iso

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ..type_defs import LedgerEntry


class InsufficientFundsError(Exception):
    """Raised when a redemption costs more than the member's displayed total.

    Attributes:
        member_id: The member attempting the redemption
        current_balance: Displayed star total
        requested_amount: Cost of the redemption
        shortfall: How many more stars are needed
    """

    def __init__(
        self,
        member_id: str,
        current_balance: int,
        requested_amount: int,
    ) -> None:
        """Initialize InsufficientFundsError."""
        self.member_id = member_id
        self.current_balance = current_balance
        self.requested_amount = requested_amount
        self.shortfall = requested_amount - current_balance
        super().__init__(
            f"Insufficient stars for member {member_id}: "
            f"balance={current_balance}, requested={requested_amount}, "
            f"shortfall={self.shortfall}"
        )


class LedgerEngine:
    """Pure logic engine for ledger entries and totals.

    All methods are static - no instance state. This enables easy unit testing
    without any Home Assistant mocking.
    """

    @staticmethod
    def validate_delta(delta: Any) -> int:
        """Return delta as int, rejecting non-integral and boolean values.

        Raises:
            ValueError: delta is not a whole number
        """
        if isinstance(delta, bool):
            raise ValueError(f"Ledger delta must be an integer, got {delta!r}")
        if isinstance(delta, int):
            return delta
        if isinstance(delta, float) and delta.is_integer():
            return int(delta)
        raise ValueError(f"Ledger delta must be an integer, got {delta!r}")

    @staticmethod
    def create_entry(
        entry_id: str,
        member_id: str,
        delta: int,
        reason: str,
        creator_id: str | None = None,
        task_instance_id: str | None = None,
        created_at: str | None = None,
    ) -> LedgerEntry:
        """Create a new ledger entry dict.

        Args:
            entry_id: Identifier for the entry (local id until promoted)
            member_id: Member whose total the entry changes
            delta: Signed star change
            reason: Human-readable reason
            creator_id: Member who caused the entry
            task_instance_id: Linked task instance, if any
            created_at: ISO timestamp (defaults to now)

        Returns:
            LedgerEntry dict
        """
        entry: LedgerEntry = {
            const.DATA_INTERNAL_ID: entry_id,  # type: ignore[misc]
            const.DATA_LEDGER_MEMBER_ID: member_id,
            const.DATA_LEDGER_DELTA: LedgerEngine.validate_delta(delta),
            const.DATA_LEDGER_REASON: reason,
            const.DATA_LEDGER_CREATOR_ID: creator_id,
            const.DATA_LEDGER_TASK_INSTANCE_ID: task_instance_id,
            const.DATA_CREATED_AT: created_at or dt_now_iso(),
        }
        return entry

    @staticmethod
    def total_for(entries: Iterable[LedgerEntry], member_id: str) -> int:
        """Fold all deltas for one member. O(n) over the entry set."""
        return sum(
            int(entry.get(const.DATA_LEDGER_DELTA, 0))
            for entry in entries
            if entry.get(const.DATA_LEDGER_MEMBER_ID) == member_id
        )

    @staticmethod
    def totals_by_member(entries: Iterable[LedgerEntry]) -> dict[str, int]:
        """Fold all deltas grouped by member in a single pass."""
        totals: dict[str, int] = {}
        for entry in entries:
            member_id = entry.get(const.DATA_LEDGER_MEMBER_ID)
            if not member_id:
                continue
            totals[member_id] = totals.get(member_id, 0) + int(
                entry.get(const.DATA_LEDGER_DELTA, 0)
            )
        return totals

    @staticmethod
    def display_total(total: int) -> int:
        """Return the visible balance: the true total floored at zero."""
        return max(0, total)

    @staticmethod
    def validate_sufficient_funds(balance: int, cost: int) -> bool:
        """Check if a displayed balance covers a cost."""
        return balance >= cost

    @staticmethod
    def find_award(
        entries: Iterable[LedgerEntry],
        task_instance_id: str,
        member_id: str,
        *,
        exclude_id: str | None = None,
    ) -> LedgerEntry | None:
        """Return the positive award linked to (instance, member), if any.

        There is at most one such award per pair once reconciled.
        """
        for entry in entries:
            if entry.get(const.DATA_INTERNAL_ID) == exclude_id:
                continue
            if (
                entry.get(const.DATA_LEDGER_TASK_INSTANCE_ID) == task_instance_id
                and entry.get(const.DATA_LEDGER_MEMBER_ID) == member_id
                and int(entry.get(const.DATA_LEDGER_DELTA, 0)) > 0
            ):
                return entry
        return None
