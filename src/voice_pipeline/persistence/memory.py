"""
In-Memory Persistence Store.

Thread-safe dict-backed store. A single RLock guards all tables, so the
credit operation's check, debit, usage update and audit append happen as
one critical section.

State is lost on restart; use SqliteStore for anything durable.
"""
from __future__ import annotations

import copy
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from voice_pipeline.core.config import Defaults
from voice_pipeline.core.models import (
    CreditAccount,
    OperationType,
    UsageEvent,
    UsageLimits,
    VoiceProfile,
    current_period,
)
from voice_pipeline.persistence.base import (
    CreditOperationResult,
    PersistenceStore,
    insufficient_message,
)


class InMemoryStore(PersistenceStore):
    """
    Dict-backed PersistenceStore.

    Records are copied on the way in and out so callers never share
    mutable state with the store.

    Args:
        free_monthly_credits: Balance for lazily created accounts.
        free_monthly_clones: clones_limit for lazily created limit rows.
        clock: Wall clock used to pick the current period.
    """

    name = "memory"

    def __init__(
        self,
        free_monthly_credits: int = Defaults.CREDITS_FREE_MONTHLY,
        free_monthly_clones: int = Defaults.CREDITS_FREE_MONTHLY_CLONES,
        clock: Callable[[], float] = time.time,
    ):
        self._free_credits = free_monthly_credits
        self._free_clones = free_monthly_clones
        self._clock = clock
        self._lock = threading.RLock()

        self._profiles: Dict[Tuple[str, str], VoiceProfile] = {}
        self._accounts: Dict[str, CreditAccount] = {}
        self._limits: Dict[Tuple[str, str], UsageLimits] = {}
        self._events: List[UsageEvent] = []

    def _period(self) -> str:
        return current_period(self._clock())

    # Callers must hold self._lock
    def _account(self, user_id: str) -> CreditAccount:
        account = self._accounts.get(user_id)
        if account is None:
            account = CreditAccount(
                user_id=user_id,
                credits_remaining=self._free_credits,
                period_start=self._period(),
            )
            self._accounts[user_id] = account
        return account

    def _limits_row(self, user_id: str, period: Optional[str] = None) -> UsageLimits:
        period = period or self._period()
        row = self._limits.get((user_id, period))
        if row is None:
            row = UsageLimits(
                user_id=user_id,
                period=period,
                credits_limit=self._free_credits,
                clones_limit=self._free_clones,
            )
            self._limits[(user_id, period)] = row
        return row

    # ── Voice profiles ───────────────────────────────────────────────────

    def load_voice_profile(self, user_id: str, voice_id: str) -> Optional[VoiceProfile]:
        with self._lock:
            profile = self._profiles.get((user_id, voice_id))
            return copy.copy(profile) if profile else None

    def save_voice_profile(self, profile: VoiceProfile) -> None:
        with self._lock:
            self._profiles[(profile.user_id, profile.id)] = copy.copy(profile)

    def delete_voice_profile(self, user_id: str, voice_id: str) -> bool:
        with self._lock:
            return self._profiles.pop((user_id, voice_id), None) is not None

    # ── Credits and limits ───────────────────────────────────────────────

    def load_credit_account(self, user_id: str) -> CreditAccount:
        with self._lock:
            return copy.copy(self._account(user_id))

    def save_credit_account(self, account: CreditAccount) -> None:
        if account.credits_remaining < 0:
            raise ValueError("credits_remaining must be non-negative")
        with self._lock:
            self._accounts[account.user_id] = copy.copy(account)

    def load_usage_limits(self, user_id: str, period: Optional[str] = None) -> UsageLimits:
        with self._lock:
            return copy.copy(self._limits_row(user_id, period))

    def record_usage_event(self, event: UsageEvent) -> None:
        with self._lock:
            self._events.append(copy.copy(event))

    def list_usage_events(self, user_id: str, limit: int = 100) -> List[UsageEvent]:
        with self._lock:
            mine = [copy.copy(e) for e in self._events if e.user_id == user_id]
        mine.reverse()
        return mine[:limit]

    def supports_atomic_operations(self) -> bool:
        return True

    def perform_credit_operation(
        self,
        user_id: str,
        amount: int,
        operation_type: OperationType,
        voice_profile_id: Optional[str] = None,
        character_count: Optional[int] = None,
    ) -> CreditOperationResult:
        with self._lock:
            account = self._account(user_id)
            if account.credits_remaining < amount:
                return CreditOperationResult(
                    success=False,
                    balance=account.credits_remaining,
                    message=insufficient_message(amount, account.credits_remaining),
                )

            account.credits_remaining -= amount
            row = self._limits_row(user_id)
            row.credits_used += amount
            if operation_type == OperationType.CLONE_CREATE:
                row.clones_created += 1
            self._events.append(UsageEvent(
                user_id=user_id,
                operation_type=operation_type,
                credits_used=amount,
                voice_profile_id=voice_profile_id,
                character_count=character_count,
                created_at=self._clock(),
            ))
            return CreditOperationResult(success=True, balance=account.credits_remaining)

    def debit_credits(self, user_id: str, amount: int) -> Optional[int]:
        with self._lock:
            account = self._account(user_id)
            if account.credits_remaining < amount:
                return None
            account.credits_remaining -= amount
            self._limits_row(user_id).credits_used += amount
            return account.credits_remaining

    def increment_clone_count(self, user_id: str) -> None:
        with self._lock:
            self._limits_row(user_id).clones_created += 1

    def add_credits(self, user_id: str, amount: int) -> int:
        if amount <= 0:
            raise ValueError("amount must be positive")
        with self._lock:
            account = self._account(user_id)
            account.credits_remaining += amount
            return account.credits_remaining
