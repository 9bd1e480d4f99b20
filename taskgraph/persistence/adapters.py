"""
Storage adapters - where tasks and checkpoints live

Every adapter serializes writes per task id with an asyncio.Lock, so
saves for one task land in order while different tasks proceed
concurrently. Checkpoints are write-once.
"""
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional
from datetime import datetime
from enum import Enum
from pathlib import Path
import asyncio
import json
import logging
import re

import aiofiles
import aiofiles.os

from taskgraph.errors import PersistenceError
from taskgraph.persistence.models import (
    Checkpoint,
    PersistedTask,
    StorageStatistics,
    TaskFilter,
    TaskSummary,
)

logger = logging.getLogger(__name__)


class _TaskLock:
    """A per-task lock plus the number of coroutines holding or waiting on it"""

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class StorageAdapter(ABC):
    """Base class for persistence backends"""

    def __init__(self):
        self._locks: Dict[str, _TaskLock] = {}

    @asynccontextmanager
    async def _task_lock(self, task_id: str) -> AsyncIterator[None]:
        """Hold the write lock of one task; the entry is dropped once nobody uses it"""
        entry = self._locks.get(task_id)
        if entry is None:
            entry = self._locks[task_id] = _TaskLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[task_id]

    async def connect(self) -> None:
        """Open the backend; no-op by default"""

    async def disconnect(self) -> None:
        """Close the backend; no-op by default"""

    # ─── Writes (serialized per task) ────────────────────────────────────────

    async def save_task(self, task: PersistedTask) -> None:
        async with self._task_lock(task.id):
            await self._save_task(task)

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task and its checkpoints. Returns False if it did not exist."""
        async with self._task_lock(task_id):
            return await self._delete_task(task_id)

    async def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        async with self._task_lock(checkpoint.task_id):
            await self._save_checkpoint(checkpoint)

    # ─── Backend hooks ───────────────────────────────────────────────────────

    @abstractmethod
    async def _save_task(self, task: PersistedTask) -> None:
        ...

    @abstractmethod
    async def _delete_task(self, task_id: str) -> bool:
        ...

    @abstractmethod
    async def _save_checkpoint(self, checkpoint: Checkpoint) -> None:
        ...

    @abstractmethod
    async def load_task(self, task_id: str) -> Optional[PersistedTask]:
        ...

    @abstractmethod
    async def list_tasks(self, task_filter: Optional[TaskFilter] = None) -> List[TaskSummary]:
        ...

    @abstractmethod
    async def list_checkpoints(self, task_id: str) -> List[Checkpoint]:
        """Checkpoints of a task, newest first"""

    @abstractmethod
    async def get_statistics(self) -> StorageStatistics:
        ...


# ─── In-memory ───────────────────────────────────────────────────────────────

class MemoryStorageAdapter(StorageAdapter):
    """Process-local storage, for tests and single-process use"""

    def __init__(self):
        super().__init__()
        self._tasks: Dict[str, PersistedTask] = {}
        self._checkpoints: Dict[str, List[Checkpoint]] = {}

    async def _save_task(self, task: PersistedTask) -> None:
        self._tasks[task.id] = task.model_copy(deep=True)

    async def _delete_task(self, task_id: str) -> bool:
        self._checkpoints.pop(task_id, None)
        return self._tasks.pop(task_id, None) is not None

    async def _save_checkpoint(self, checkpoint: Checkpoint) -> None:
        existing = self._checkpoints.setdefault(checkpoint.task_id, [])
        if any(c.id == checkpoint.id for c in existing):
            raise PersistenceError(f"Checkpoint '{checkpoint.id}' already exists")
        existing.append(checkpoint.model_copy(deep=True))

    async def load_task(self, task_id: str) -> Optional[PersistedTask]:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def list_tasks(self, task_filter: Optional[TaskFilter] = None) -> List[TaskSummary]:
        return (task_filter or TaskFilter()).apply(list(self._tasks.values()))

    async def list_checkpoints(self, task_id: str) -> List[Checkpoint]:
        checkpoints = self._checkpoints.get(task_id, [])
        return sorted(checkpoints, key=lambda c: c.timestamp, reverse=True)

    async def get_statistics(self) -> StorageStatistics:
        by_status: Dict[str, int] = {}
        for task in self._tasks.values():
            by_status[task.status.value] = by_status.get(task.status.value, 0) + 1
        return StorageStatistics(
            total_tasks=len(self._tasks),
            tasks_by_status=by_status,
            total_checkpoints=sum(len(c) for c in self._checkpoints.values()),
        )


# ─── JSON files ──────────────────────────────────────────────────────────────

_SAFE_ID = re.compile(r"^[\w.-]+$")


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


class FileStorageAdapter(StorageAdapter):
    """
    One JSON file per record:
        <root>/tasks/<task_id>.json
        <root>/checkpoints/<task_id>/<checkpoint_id>.json
    """

    def __init__(self, root_dir: str):
        super().__init__()
        self.root = Path(root_dir)
        self.tasks_dir = self.root / "tasks"
        self.checkpoints_dir = self.root / "checkpoints"

    async def connect(self) -> None:
        await aiofiles.os.makedirs(self.tasks_dir, exist_ok=True)
        await aiofiles.os.makedirs(self.checkpoints_dir, exist_ok=True)
        logger.info(f"File storage ready at {self.root}")

    def _task_path(self, task_id: str) -> Path:
        return self.tasks_dir / f"{self._safe(task_id)}.json"

    def _checkpoint_dir(self, task_id: str) -> Path:
        return self.checkpoints_dir / self._safe(task_id)

    @staticmethod
    def _safe(record_id: str) -> str:
        if not _SAFE_ID.match(record_id) or record_id in (".", ".."):
            raise PersistenceError(f"Invalid record id '{record_id}'")
        return record_id

    async def _write_json(self, path: Path, payload: Dict[str, Any]) -> None:
        tmp = path.with_suffix(".tmp")
        async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
            await f.write(json.dumps(payload, default=_json_default, indent=2))
        await aiofiles.os.replace(tmp, path)

    async def _read_json(self, path: Path) -> Dict[str, Any]:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return json.loads(await f.read())

    async def _save_task(self, task: PersistedTask) -> None:
        await self._write_json(self._task_path(task.id), task.model_dump(mode="python"))

    async def _delete_task(self, task_id: str) -> bool:
        path = self._task_path(task_id)
        existed = await aiofiles.os.path.exists(path)
        if existed:
            await aiofiles.os.remove(path)

        cp_dir = self._checkpoint_dir(task_id)
        if await aiofiles.os.path.isdir(cp_dir):
            for name in await aiofiles.os.listdir(cp_dir):
                await aiofiles.os.remove(cp_dir / name)
            await aiofiles.os.rmdir(cp_dir)
        return existed

    async def _save_checkpoint(self, checkpoint: Checkpoint) -> None:
        cp_dir = self._checkpoint_dir(checkpoint.task_id)
        await aiofiles.os.makedirs(cp_dir, exist_ok=True)
        path = cp_dir / f"{self._safe(checkpoint.id)}.json"
        if await aiofiles.os.path.exists(path):
            raise PersistenceError(f"Checkpoint '{checkpoint.id}' already exists")
        await self._write_json(path, checkpoint.model_dump(mode="python"))

    async def load_task(self, task_id: str) -> Optional[PersistedTask]:
        path = self._task_path(task_id)
        if not await aiofiles.os.path.exists(path):
            return None
        return PersistedTask.model_validate(await self._read_json(path))

    async def _all_tasks(self) -> List[PersistedTask]:
        if not await aiofiles.os.path.isdir(self.tasks_dir):
            return []
        tasks = []
        for name in await aiofiles.os.listdir(self.tasks_dir):
            if name.endswith(".json"):
                tasks.append(PersistedTask.model_validate(await self._read_json(self.tasks_dir / name)))
        return tasks

    async def list_tasks(self, task_filter: Optional[TaskFilter] = None) -> List[TaskSummary]:
        return (task_filter or TaskFilter()).apply(await self._all_tasks())

    async def list_checkpoints(self, task_id: str) -> List[Checkpoint]:
        cp_dir = self._checkpoint_dir(task_id)
        if not await aiofiles.os.path.isdir(cp_dir):
            return []
        checkpoints = [
            Checkpoint.model_validate(await self._read_json(cp_dir / name))
            for name in await aiofiles.os.listdir(cp_dir)
            if name.endswith(".json")
        ]
        return sorted(checkpoints, key=lambda c: c.timestamp, reverse=True)

    async def get_statistics(self) -> StorageStatistics:
        tasks = await self._all_tasks()
        by_status: Dict[str, int] = {}
        total_checkpoints = 0
        for task in tasks:
            by_status[task.status.value] = by_status.get(task.status.value, 0) + 1
            total_checkpoints += len(await self.list_checkpoints(task.id))
        return StorageStatistics(
            total_tasks=len(tasks),
            tasks_by_status=by_status,
            total_checkpoints=total_checkpoints,
        )
