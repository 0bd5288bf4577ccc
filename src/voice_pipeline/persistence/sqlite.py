"""
SQLite Persistence Store.

Durable PersistenceStore on a sqlite3 file database.

Connections:
    Every operation opens its own connection and closes it in a finally
    block, so the store is safe to share across FastAPI worker threads.
    Connections run in autocommit mode (isolation_level=None) and issue
    explicit transactions where more than one statement must commit
    together.

Atomic Credit Operation:
    BEGIN IMMEDIATE takes the database write lock before the balance is
    read, so two concurrent deducts serialize: the second one sees the
    first one's debit and cannot overdraw. A busy_timeout makes the
    waiter block instead of failing with "database is locked".

    The credit_accounts table also carries CHECK (credits_remaining >= 0)
    as a last line against a negative balance.

Schema:
    voice_profiles   (user_id, id) primary key
    credit_accounts  user_id primary key
    usage_limits     (user_id, period) primary key
    usage_events     autoincrement id, indexed by (user_id, created_at)

Note:
    db_path must name a file. ":memory:" would give each connection its
    own empty database.
"""
from __future__ import annotations

import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from voice_pipeline.core.config import Defaults
from voice_pipeline.core.logging import get_logger, info
from voice_pipeline.core.models import (
    CloningStatus,
    CreditAccount,
    OperationType,
    ProviderKind,
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

_LOG = get_logger("voice-pipeline.sqlite")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS voice_profiles (
    user_id TEXT NOT NULL,
    id TEXT NOT NULL,
    name TEXT NOT NULL,
    provider TEXT,
    provider_voice_id TEXT,
    sample_url TEXT,
    cloning_status TEXT NOT NULL DEFAULT 'none',
    is_cloned INTEGER NOT NULL DEFAULT 0,
    created_at REAL NOT NULL,
    PRIMARY KEY (user_id, id)
);

CREATE TABLE IF NOT EXISTS credit_accounts (
    user_id TEXT PRIMARY KEY,
    credits_remaining INTEGER NOT NULL CHECK (credits_remaining >= 0),
    period_start TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS usage_limits (
    user_id TEXT NOT NULL,
    period TEXT NOT NULL,
    credits_used INTEGER NOT NULL DEFAULT 0,
    credits_limit INTEGER NOT NULL,
    clones_created INTEGER NOT NULL DEFAULT 0,
    clones_limit INTEGER NOT NULL,
    PRIMARY KEY (user_id, period)
);

CREATE TABLE IF NOT EXISTS usage_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    operation_type TEXT NOT NULL,
    credits_used INTEGER NOT NULL,
    voice_profile_id TEXT,
    character_count INTEGER,
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_usage_events_user
    ON usage_events (user_id, created_at);
"""


def get_connection(db_path: str, timeout_s: float = 10.0) -> sqlite3.Connection:
    """
    Open an autocommit connection with a busy timeout.

    Args:
        db_path: Path to the SQLite database file.
        timeout_s: Seconds to wait for a competing writer's lock.
    """
    conn = sqlite3.connect(str(db_path), timeout=timeout_s, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout = {int(timeout_s * 1000)}")
    return conn


class SqliteStore(PersistenceStore):
    """
    sqlite3-backed PersistenceStore with an atomic credit operation.

    Args:
        db_path: Database file; parent directories are created.
        free_monthly_credits: Balance for lazily created accounts.
        free_monthly_clones: clones_limit for lazily created limit rows.
        busy_timeout_s: Lock wait before a write gives up.
        clock: Wall clock used to pick the current period.
    """

    name = "sqlite"

    def __init__(
        self,
        db_path: str = Defaults.PERSISTENCE_DB_PATH,
        free_monthly_credits: int = Defaults.CREDITS_FREE_MONTHLY,
        free_monthly_clones: int = Defaults.CREDITS_FREE_MONTHLY_CLONES,
        busy_timeout_s: float = 10.0,
        clock: Callable[[], float] = time.time,
    ):
        self.db_path = str(db_path)
        self._free_credits = free_monthly_credits
        self._free_clones = free_monthly_clones
        self._busy_timeout_s = busy_timeout_s
        self._clock = clock

        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(_SCHEMA)
        finally:
            conn.close()
        info(_LOG, "sqlite_ready", path=self.db_path)

    def _connect(self) -> sqlite3.Connection:
        return get_connection(self.db_path, self._busy_timeout_s)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """BEGIN IMMEDIATE ... COMMIT on a fresh connection; ROLLBACK on any error."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _period(self) -> str:
        return current_period(self._clock())

    # Must run inside a transaction
    def _ensure_account(self, conn: sqlite3.Connection, user_id: str) -> int:
        conn.execute(
            "INSERT OR IGNORE INTO credit_accounts (user_id, credits_remaining, period_start) VALUES (?, ?, ?)",
            (user_id, self._free_credits, self._period()),
        )
        row = conn.execute(
            "SELECT credits_remaining FROM credit_accounts WHERE user_id = ?", (user_id,)
        ).fetchone()
        return int(row["credits_remaining"])

    def _ensure_limits(self, conn: sqlite3.Connection, user_id: str, period: str) -> None:
        conn.execute(
            "INSERT OR IGNORE INTO usage_limits (user_id, period, credits_limit, clones_limit) VALUES (?, ?, ?, ?)",
            (user_id, period, self._free_credits, self._free_clones),
        )

    # ── Voice profiles ───────────────────────────────────────────────────

    def load_voice_profile(self, user_id: str, voice_id: str) -> Optional[VoiceProfile]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM voice_profiles WHERE user_id = ? AND id = ?", (user_id, voice_id)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return VoiceProfile(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            provider=ProviderKind(row["provider"]) if row["provider"] else None,
            provider_voice_id=row["provider_voice_id"],
            sample_url=row["sample_url"],
            cloning_status=CloningStatus(row["cloning_status"]),
            is_cloned=bool(row["is_cloned"]),
            created_at=float(row["created_at"]),
        )

    def save_voice_profile(self, profile: VoiceProfile) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO voice_profiles
                    (user_id, id, name, provider, provider_voice_id, sample_url,
                     cloning_status, is_cloned, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id, id) DO UPDATE SET
                    name = excluded.name,
                    provider = excluded.provider,
                    provider_voice_id = excluded.provider_voice_id,
                    sample_url = excluded.sample_url,
                    cloning_status = excluded.cloning_status,
                    is_cloned = excluded.is_cloned
                """,
                (
                    profile.user_id,
                    profile.id,
                    profile.name,
                    profile.provider.value if profile.provider else None,
                    profile.provider_voice_id,
                    profile.sample_url,
                    profile.cloning_status.value,
                    1 if profile.is_cloned else 0,
                    profile.created_at,
                ),
            )
        finally:
            conn.close()

    def delete_voice_profile(self, user_id: str, voice_id: str) -> bool:
        conn = self._connect()
        try:
            cur = conn.execute(
                "DELETE FROM voice_profiles WHERE user_id = ? AND id = ?", (user_id, voice_id)
            )
            return cur.rowcount > 0
        finally:
            conn.close()

    # ── Credits and limits ───────────────────────────────────────────────

    def load_credit_account(self, user_id: str) -> CreditAccount:
        with self._transaction() as conn:
            self._ensure_account(conn, user_id)
            row = conn.execute(
                "SELECT * FROM credit_accounts WHERE user_id = ?", (user_id,)
            ).fetchone()
        return CreditAccount(
            user_id=row["user_id"],
            credits_remaining=int(row["credits_remaining"]),
            period_start=row["period_start"],
        )

    def save_credit_account(self, account: CreditAccount) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO credit_accounts (user_id, credits_remaining, period_start)
                VALUES (?, ?, ?)
                ON CONFLICT (user_id) DO UPDATE SET
                    credits_remaining = excluded.credits_remaining,
                    period_start = excluded.period_start
                """,
                (account.user_id, account.credits_remaining, account.period_start),
            )
        finally:
            conn.close()

    def load_usage_limits(self, user_id: str, period: Optional[str] = None) -> UsageLimits:
        period = period or self._period()
        with self._transaction() as conn:
            self._ensure_limits(conn, user_id, period)
            row = conn.execute(
                "SELECT * FROM usage_limits WHERE user_id = ? AND period = ?", (user_id, period)
            ).fetchone()
        return UsageLimits(
            user_id=row["user_id"],
            period=row["period"],
            credits_used=int(row["credits_used"]),
            credits_limit=int(row["credits_limit"]),
            clones_created=int(row["clones_created"]),
            clones_limit=int(row["clones_limit"]),
        )

    def record_usage_event(self, event: UsageEvent) -> None:
        conn = self._connect()
        try:
            self._insert_event(conn, event)
        finally:
            conn.close()

    @staticmethod
    def _insert_event(conn: sqlite3.Connection, event: UsageEvent) -> None:
        conn.execute(
            """
            INSERT INTO usage_events
                (user_id, operation_type, credits_used, voice_profile_id, character_count, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                event.user_id,
                event.operation_type.value,
                event.credits_used,
                event.voice_profile_id,
                event.character_count,
                event.created_at,
            ),
        )

    def list_usage_events(self, user_id: str, limit: int = 100) -> List[UsageEvent]:
        conn = self._connect()
        try:
            rows = conn.execute(
                """
                SELECT * FROM usage_events WHERE user_id = ?
                ORDER BY created_at DESC, id DESC LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()
        finally:
            conn.close()
        return [
            UsageEvent(
                user_id=row["user_id"],
                operation_type=OperationType(row["operation_type"]),
                credits_used=int(row["credits_used"]),
                voice_profile_id=row["voice_profile_id"],
                character_count=row["character_count"],
                created_at=float(row["created_at"]),
            )
            for row in rows
        ]

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
        period = self._period()
        with self._transaction() as conn:
            balance = self._ensure_account(conn, user_id)
            if balance < amount:
                return CreditOperationResult(
                    success=False,
                    balance=balance,
                    message=insufficient_message(amount, balance),
                )

            conn.execute(
                "UPDATE credit_accounts SET credits_remaining = credits_remaining - ? WHERE user_id = ?",
                (amount, user_id),
            )
            self._ensure_limits(conn, user_id, period)
            clones = 1 if operation_type == OperationType.CLONE_CREATE else 0
            conn.execute(
                """
                UPDATE usage_limits
                SET credits_used = credits_used + ?, clones_created = clones_created + ?
                WHERE user_id = ? AND period = ?
                """,
                (amount, clones, user_id, period),
            )
            self._insert_event(conn, UsageEvent(
                user_id=user_id,
                operation_type=operation_type,
                credits_used=amount,
                voice_profile_id=voice_profile_id,
                character_count=character_count,
                created_at=self._clock(),
            ))
            return CreditOperationResult(success=True, balance=balance - amount)

    def debit_credits(self, user_id: str, amount: int) -> Optional[int]:
        period = self._period()
        with self._transaction() as conn:
            self._ensure_account(conn, user_id)
            cur = conn.execute(
                """
                UPDATE credit_accounts SET credits_remaining = credits_remaining - ?
                WHERE user_id = ? AND credits_remaining >= ?
                """,
                (amount, user_id, amount),
            )
            if cur.rowcount == 0:
                return None
            self._ensure_limits(conn, user_id, period)
            conn.execute(
                "UPDATE usage_limits SET credits_used = credits_used + ? WHERE user_id = ? AND period = ?",
                (amount, user_id, period),
            )
            row = conn.execute(
                "SELECT credits_remaining FROM credit_accounts WHERE user_id = ?", (user_id,)
            ).fetchone()
            return int(row["credits_remaining"])

    def increment_clone_count(self, user_id: str) -> None:
        period = self._period()
        with self._transaction() as conn:
            self._ensure_limits(conn, user_id, period)
            conn.execute(
                "UPDATE usage_limits SET clones_created = clones_created + 1 WHERE user_id = ? AND period = ?",
                (user_id, period),
            )

    def add_credits(self, user_id: str, amount: int) -> int:
        if amount <= 0:
            raise ValueError("amount must be positive")
        with self._transaction() as conn:
            balance = self._ensure_account(conn, user_id)
            conn.execute(
                "UPDATE credit_accounts SET credits_remaining = credits_remaining + ? WHERE user_id = ?",
                (amount, user_id),
            )
            return balance + amount
