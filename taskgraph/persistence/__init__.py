"""
Persistence package - task records, checkpoints and storage backends
"""
from typing import Optional

from taskgraph.config import Settings, settings
from taskgraph.persistence.adapters import FileStorageAdapter, MemoryStorageAdapter, StorageAdapter
from taskgraph.persistence.manager import PersistenceManager
from taskgraph.persistence.models import (
    Checkpoint,
    PersistedTask,
    StorageStatistics,
    TaskFilter,
    TaskStatus,
    TaskSummary,
)
from taskgraph.persistence.persistent_agent import PersistentAgent


def create_storage_adapter(s: Optional[Settings] = None) -> StorageAdapter:
    """Build the adapter named by PERSISTENCE_BACKEND"""
    s = s or settings
    backend = s.PERSISTENCE_BACKEND.lower()
    if backend == "memory":
        return MemoryStorageAdapter()
    if backend == "file":
        return FileStorageAdapter(s.PERSISTENCE_DIR)
    if backend == "mongo":
        from taskgraph.persistence.mongo import MongoStorageAdapter
        return MongoStorageAdapter(s.MONGODB_URI, s.MONGODB_DB_NAME)
    raise ValueError(f"Unknown persistence backend '{s.PERSISTENCE_BACKEND}'")


__all__ = [
    "create_storage_adapter",
    "StorageAdapter", "MemoryStorageAdapter", "FileStorageAdapter",
    "PersistenceManager", "PersistentAgent",
    "Checkpoint", "PersistedTask", "StorageStatistics", "TaskFilter", "TaskStatus", "TaskSummary",
]
