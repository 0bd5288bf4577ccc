"""
Persistence Collaborators.

The pipeline only talks to storage through PersistenceStore:
    - base.py: The PersistenceStore interface
    - memory.py: Thread-safe in-process store (tests, single instance)
    - sqlite.py: SQLite store with a single-transaction credit operation
    - samples.py: On-disk storage for recorded voice samples

Usage:
    from voice_pipeline.persistence import create_store

    store = create_store(config)  # backend chosen by persistence.backend
"""
from voice_pipeline.core.config import PipelineConfig
from voice_pipeline.persistence.base import (
    AtomicOperationUnavailable,
    CreditOperationResult,
    PersistenceStore,
)
from voice_pipeline.persistence.memory import InMemoryStore
from voice_pipeline.persistence.samples import SampleStorage, StoredSample
from voice_pipeline.persistence.sqlite import SqliteStore


def create_store(config: PipelineConfig) -> PersistenceStore:
    """Build the PersistenceStore named by config.persistence.backend."""
    if config.persistence.backend == "sqlite":
        return SqliteStore(
            db_path=config.persistence.db_path,
            free_monthly_credits=config.credits.free_monthly_credits,
            free_monthly_clones=config.credits.free_monthly_clones,
        )
    return InMemoryStore(
        free_monthly_credits=config.credits.free_monthly_credits,
        free_monthly_clones=config.credits.free_monthly_clones,
    )


__all__ = [
    "AtomicOperationUnavailable",
    "CreditOperationResult",
    "InMemoryStore",
    "PersistenceStore",
    "SampleStorage",
    "SqliteStore",
    "StoredSample",
    "create_store",
]
