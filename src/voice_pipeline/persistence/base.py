"""
Persistence Store Interface.

PersistenceStore is the single seam between the pipeline and durable
state. Two implementations ship:

    InMemoryStore (memory.py):
        One lock held across every credit operation. For tests and a
        single-process development server.

    SqliteStore (sqlite.py):
        sqlite3 file database; the credit operation is one
        BEGIN IMMEDIATE transaction on a fresh connection.

Credit Operations:
    perform_credit_operation() is the atomic path. In one transaction it:
        1. checks the balance covers the amount
        2. decrements the balance
        3. adds credits_used on the current period's UsageLimits row
        4. increments clones_created for CLONE_CREATE
        5. appends a UsageEvent

    debit_credits() / increment_clone_count() / record_usage_event() are the
    separate steps of the legacy path. A store reports which path it can
    honor through supports_atomic_operations(); the ledger checks this once
    at start-up.

Lazy Rows:
    load_credit_account() creates a missing account with the free monthly
    allotment. load_usage_limits() creates a missing row for the requested
    period; rows from earlier periods are left untouched.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from voice_pipeline.core.models import (
    CreditAccount,
    OperationType,
    UsageEvent,
    UsageLimits,
    VoiceProfile,
)


class AtomicOperationUnavailable(Exception):
    """Raised when a store cannot perform the single-transaction credit operation."""
    pass


@dataclass
class CreditOperationResult:
    """
    Outcome of the atomic credit operation.

    Attributes:
        success: True if the amount was deducted.
        balance: Balance after the operation (unchanged on refusal).
        message: Refusal reason, empty on success.
    """
    success: bool
    balance: int
    message: str = ""


def insufficient_message(needed: int, have: int) -> str:
    return f"Insufficient credits. Need {needed} credits, have {have}"


class PersistenceStore:
    """
    Base class for persistence backends.

    Subclasses implement every method. supports_atomic_operations()
    defaults to False and perform_credit_operation() to raising
    AtomicOperationUnavailable, so a backend without transactions
    only works with the legacy deduct path.
    """

    name: str = "base"

    # ── Voice profiles ───────────────────────────────────────────────────

    def load_voice_profile(self, user_id: str, voice_id: str) -> Optional[VoiceProfile]:
        raise NotImplementedError

    def save_voice_profile(self, profile: VoiceProfile) -> None:
        raise NotImplementedError

    def delete_voice_profile(self, user_id: str, voice_id: str) -> bool:
        """Delete a profile. Returns True if a row was removed."""
        raise NotImplementedError

    # ── Credits and limits ───────────────────────────────────────────────

    def load_credit_account(self, user_id: str) -> CreditAccount:
        raise NotImplementedError

    def save_credit_account(self, account: CreditAccount) -> None:
        raise NotImplementedError

    def load_usage_limits(self, user_id: str, period: Optional[str] = None) -> UsageLimits:
        """Load (creating if needed) limits for period, default the current period."""
        raise NotImplementedError

    def record_usage_event(self, event: UsageEvent) -> None:
        raise NotImplementedError

    def list_usage_events(self, user_id: str, limit: int = 100) -> List[UsageEvent]:
        """Newest first."""
        raise NotImplementedError

    def supports_atomic_operations(self) -> bool:
        return False

    def perform_credit_operation(
        self,
        user_id: str,
        amount: int,
        operation_type: OperationType,
        voice_profile_id: Optional[str] = None,
        character_count: Optional[int] = None,
    ) -> CreditOperationResult:
        raise AtomicOperationUnavailable(f"{self.name} store has no atomic credit operation")

    def debit_credits(self, user_id: str, amount: int) -> Optional[int]:
        """
        Legacy step: subtract amount and add it to the period's credits_used.
        Returns the new balance, or None if the balance no longer covers it.
        """
        raise NotImplementedError

    def increment_clone_count(self, user_id: str) -> None:
        """Legacy step: bump clones_created for the current period."""
        raise NotImplementedError

    def add_credits(self, user_id: str, amount: int) -> int:
        """Top up an account. Returns the new balance."""
        raise NotImplementedError

    def close(self) -> None:
        pass
