"""
Credit Ledger.

Owns every read and write of a user's credit balance and monthly usage.

Features:
    - Cached balance reads (5 minute TTL, invalidated on deduct and grant)
    - Pure eligibility predicates (can_perform, can_clone)
    - Check-and-deduct through a strategy picked once at start-up
    - Operator top-ups (grant_credits)

Deduct Strategies:
    AtomicDeduct:
        One PersistenceStore.perform_credit_operation() call. The store
        checks, debits, updates usage and appends the audit event in a
        single transaction; the balance cannot go negative under
        concurrency.

    LegacyDeduct:
        Separate read, check, debit, audit and clone-count steps. Two
        concurrent requests can both pass the check. Only allowed when
        credits.allow_legacy_deduct is set; every call logs a
        degraded_deduct warning and returns degraded=True.

Usage:
    ledger = CreditLedger(store, config.credits)

    check = ledger.can_perform(user_id, tts_cost(len(text)))
    if not check.allowed:
        raise InsufficientCreditsError(check.reason)

    result = ledger.deduct(user_id, cost, OperationType.TTS_GENERATE, character_count=len(text))

See Also:
    - persistence/base.py: perform_credit_operation contract
    - services/orchestrator.py: Where deduct is called (after decode)
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from voice_pipeline.billing.costs import clone_cost
from voice_pipeline.core.config import ConfigValidationError, CreditsConfig
from voice_pipeline.core.errors import ErrorKind
from voice_pipeline.core.logging import get_logger, info, verbose, warn
from voice_pipeline.core.metrics import metrics
from voice_pipeline.core.models import OperationType, UsageEvent
from voice_pipeline.persistence.base import PersistenceStore, insufficient_message

_LOG = get_logger("voice-pipeline.ledger")


@dataclass
class Eligibility:
    """
    Answer of a pure eligibility check.

    Attributes:
        allowed: Whether the operation may proceed.
        reason: User-facing refusal text when not allowed.
        kind: ErrorKind to surface when not allowed.
        balance: Balance the decision was made on.
    """
    allowed: bool
    reason: Optional[str] = None
    kind: Optional[str] = None
    balance: Optional[int] = None


@dataclass
class DeductResult:
    success: bool
    balance: int
    message: str = ""
    degraded: bool = False


@dataclass
class UsageSummary:
    """Balance plus current-period limits, as reported by GET /v1/credits."""
    user_id: str
    balance: int
    period: str
    credits_used: int
    credits_limit: int
    clones_created: int
    clones_limit: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "balance": self.balance,
            "period": self.period,
            "creditsUsed": self.credits_used,
            "creditsLimit": self.credits_limit,
            "clonesCreated": self.clones_created,
            "clonesLimit": self.clones_limit,
            "clonesRemaining": max(0, self.clones_limit - self.clones_created),
        }


class DeductStrategy:
    """Base class for deduct strategies."""

    name = "base"
    degraded = False

    def deduct(
        self,
        store: PersistenceStore,
        user_id: str,
        amount: int,
        operation_type: OperationType,
        voice_profile_id: Optional[str] = None,
        character_count: Optional[int] = None,
    ) -> DeductResult:
        raise NotImplementedError


class AtomicDeduct(DeductStrategy):
    """Single-transaction deduct via perform_credit_operation."""

    name = "atomic"

    def deduct(self, store, user_id, amount, operation_type, voice_profile_id=None, character_count=None):
        result = store.perform_credit_operation(
            user_id,
            amount,
            operation_type,
            voice_profile_id=voice_profile_id,
            character_count=character_count,
        )
        return DeductResult(success=result.success, balance=result.balance, message=result.message)


class LegacyDeduct(DeductStrategy):
    """
    Multi-step deduct for stores without transactions.

    Not safe under concurrency: the check and the debit are separate
    round trips.
    """

    name = "legacy"
    degraded = True

    def deduct(self, store, user_id, amount, operation_type, voice_profile_id=None, character_count=None):
        warn(
            _LOG, "degraded_deduct",
            user_id=user_id, amount=amount, operation=operation_type.value,
        )

        balance = store.load_credit_account(user_id).credits_remaining
        if balance < amount:
            return DeductResult(False, balance, insufficient_message(amount, balance), degraded=True)

        new_balance = store.debit_credits(user_id, amount)
        if new_balance is None:
            balance = store.load_credit_account(user_id).credits_remaining
            return DeductResult(False, balance, insufficient_message(amount, balance), degraded=True)

        store.record_usage_event(UsageEvent(
            user_id=user_id,
            operation_type=operation_type,
            credits_used=amount,
            voice_profile_id=voice_profile_id,
            character_count=character_count,
        ))
        if operation_type == OperationType.CLONE_CREATE:
            store.increment_clone_count(user_id)

        return DeductResult(True, new_balance, degraded=True)


def select_deduct_strategy(store: PersistenceStore, allow_legacy: bool = False) -> DeductStrategy:
    """
    Check the store once and pick the deduct strategy.

    Raises:
        ConfigValidationError: The store has no atomic operation and the
            operator has not opted in to the legacy path.
    """
    if store.supports_atomic_operations():
        info(_LOG, "deduct_strategy", strategy=AtomicDeduct.name, store=store.name)
        return AtomicDeduct()

    if not allow_legacy:
        raise ConfigValidationError(
            f"persistence backend '{store.name}' has no atomic credit operation; "
            "set credits.allow_legacy_deduct to run with the non-atomic deduct"
        )

    warn(_LOG, "deduct_strategy", strategy=LegacyDeduct.name, store=store.name, degraded=True)
    return LegacyDeduct()


class CreditLedger:
    """
    Balance reads, eligibility checks and deducts for one store.

    Args:
        store: Persistence backend.
        config: Credit prices and allotments.
        strategy: Deduct strategy; picked from the store when omitted.
        clock: Monotonic clock for the balance cache.
    """

    def __init__(
        self,
        store: PersistenceStore,
        config: Optional[CreditsConfig] = None,
        strategy: Optional[DeductStrategy] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._config = config or CreditsConfig()
        self._strategy = strategy or select_deduct_strategy(store, self._config.allow_legacy_deduct)
        self._clock = clock

        self._balance_lock = threading.Lock()
        self._balances: Dict[str, Tuple[int, float]] = {}
        # Bumped on every invalidate; a load that raced one is not cached.
        self._generations: Dict[str, int] = {}

    @property
    def strategy(self) -> DeductStrategy:
        return self._strategy

    @property
    def config(self) -> CreditsConfig:
        return self._config

    # ── Reads ────────────────────────────────────────────────────────────

    def get_balance(self, user_id: str) -> int:
        """Current balance, served from cache for up to balance_ttl_seconds."""
        now = self._clock()
        with self._balance_lock:
            cached = self._balances.get(user_id)
            if cached is not None and now - cached[1] < self._config.balance_ttl_seconds:
                return cached[0]
            generation = self._generations.get(user_id, 0)

        balance = self._store.load_credit_account(user_id).credits_remaining
        with self._balance_lock:
            if self._generations.get(user_id, 0) == generation:
                self._balances[user_id] = (balance, now)
        return balance

    def invalidate_balance(self, user_id: str) -> None:
        with self._balance_lock:
            self._balances.pop(user_id, None)
            self._generations[user_id] = self._generations.get(user_id, 0) + 1

    def can_perform(self, user_id: str, cost: int) -> Eligibility:
        """True if the balance covers cost. Never mutates state."""
        balance = self.get_balance(user_id)
        if balance < cost:
            return Eligibility(
                allowed=False,
                reason=insufficient_message(cost, balance),
                kind=ErrorKind.INSUFFICIENT_CREDITS,
                balance=balance,
            )
        return Eligibility(allowed=True, balance=balance)

    def can_clone(self, user_id: str) -> Eligibility:
        """Credits for one clone, then the monthly clone allowance."""
        check = self.can_perform(user_id, clone_cost(self._config.clone_cost))
        if not check.allowed:
            return check

        limits = self._store.load_usage_limits(user_id)
        if limits.clones_created >= limits.clones_limit:
            return Eligibility(
                allowed=False,
                reason=f"Monthly clone limit reached ({limits.clones_created}/{limits.clones_limit})",
                kind=ErrorKind.MONTHLY_CLONE_LIMIT_REACHED,
                balance=check.balance,
            )
        return check

    def get_usage(self, user_id: str) -> UsageSummary:
        balance = self._store.load_credit_account(user_id).credits_remaining
        limits = self._store.load_usage_limits(user_id)
        return UsageSummary(
            user_id=user_id,
            balance=balance,
            period=limits.period,
            credits_used=limits.credits_used,
            credits_limit=limits.credits_limit,
            clones_created=limits.clones_created,
            clones_limit=limits.clones_limit,
        )

    # ── Writes ───────────────────────────────────────────────────────────

    def deduct(
        self,
        user_id: str,
        amount: int,
        operation_type: OperationType,
        voice_profile_id: Optional[str] = None,
        character_count: Optional[int] = None,
    ) -> DeductResult:
        """
        Check and deduct amount through the selected strategy.

        A refusal is a DeductResult with success=False, never an exception.
        """
        if amount < 0:
            raise ValueError("amount must be non-negative")

        result = self._strategy.deduct(
            self._store,
            user_id,
            amount,
            operation_type,
            voice_profile_id=voice_profile_id,
            character_count=character_count,
        )

        # Either way the cached balance is stale; a refusal means someone else spent it.
        self.invalidate_balance(user_id)
        if result.success:
            metrics.record_credits(operation_type.value, amount)
            verbose(
                _LOG, "deducted",
                user_id=user_id, amount=amount,
                operation=operation_type.value, balance=result.balance,
            )
        else:
            warn(_LOG, "deduct_refused", user_id=user_id, amount=amount, balance=result.balance)
        return result

    def grant_credits(self, user_id: str, amount: int) -> int:
        """Top up a balance. Returns the new balance."""
        balance = self._store.add_credits(user_id, amount)
        self.invalidate_balance(user_id)
        info(_LOG, "credits_granted", user_id=user_id, amount=amount, balance=balance)
        return balance
