"""
MongoDB storage adapter via Motor
"""
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError
from typing import Any, Dict, List, Optional
import logging

from taskgraph.errors import PersistenceError
from taskgraph.persistence.adapters import StorageAdapter
from taskgraph.persistence.models import (
    Checkpoint,
    PersistedTask,
    StorageStatistics,
    TaskFilter,
    TaskSummary,
)

logger = logging.getLogger(__name__)


def _to_doc(model) -> Dict[str, Any]:
    doc = model.model_dump(mode="python")
    doc["_id"] = doc.pop("id")
    for key in ("status", "state"):
        if key in doc and hasattr(doc[key], "value"):
            doc[key] = doc[key].value
    return doc


def _from_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc["id"] = doc.pop("_id")
    return doc


class MongoStorageAdapter(StorageAdapter):
    """Tasks and checkpoints in two MongoDB collections"""

    def __init__(self, uri: str, db_name: str):
        super().__init__()
        self.uri = uri
        self.db_name = db_name
        self.client: Optional[AsyncIOMotorClient] = None
        self.db = None

    async def connect(self) -> None:
        """Create MongoDB connection and indexes"""
        self.client = AsyncIOMotorClient(self.uri, tz_aware=True)
        self.db = self.client[self.db_name]

        # Test connection
        await self.client.admin.command("ping")
        await self.db.tasks.create_index([("status", 1), ("created_at", DESCENDING)])
        await self.db.checkpoints.create_index([("task_id", 1), ("timestamp", DESCENDING)])
        logger.info("MongoDB connection established")

    async def disconnect(self) -> None:
        """Close MongoDB connection"""
        if self.client:
            self.client.close()
            self.client = None
            logger.info("MongoDB connection closed")

    async def ping(self) -> bool:
        """Health check - ping MongoDB"""
        if not self.client:
            return False
        try:
            await self.client.admin.command("ping")
            return True
        except Exception:
            logger.warning("MongoDB ping failed", exc_info=True)
            return False

    def _require_db(self):
        if self.db is None:
            raise PersistenceError("MongoDB adapter is not connected")
        return self.db

    async def _save_task(self, task: PersistedTask) -> None:
        doc = _to_doc(task)
        await self._require_db().tasks.replace_one({"_id": doc["_id"]}, doc, upsert=True)

    async def _delete_task(self, task_id: str) -> bool:
        db = self._require_db()
        result = await db.tasks.delete_one({"_id": task_id})
        await db.checkpoints.delete_many({"task_id": task_id})
        return result.deleted_count > 0

    async def _save_checkpoint(self, checkpoint: Checkpoint) -> None:
        try:
            await self._require_db().checkpoints.insert_one(_to_doc(checkpoint))
        except DuplicateKeyError:
            raise PersistenceError(f"Checkpoint '{checkpoint.id}' already exists")

    async def load_task(self, task_id: str) -> Optional[PersistedTask]:
        doc = await self._require_db().tasks.find_one({"_id": task_id})
        if not doc:
            return None
        return PersistedTask.model_validate(_from_doc(doc))

    async def list_tasks(self, task_filter: Optional[TaskFilter] = None) -> List[TaskSummary]:
        task_filter = task_filter or TaskFilter()
        query: Dict[str, Any] = {}
        if task_filter.status:
            query["status"] = {"$in": [s.value for s in task_filter.status]}
        created: Dict[str, Any] = {}
        if task_filter.created_after:
            created["$gte"] = task_filter.created_after
        if task_filter.created_before:
            created["$lte"] = task_filter.created_before
        if created:
            query["created_at"] = created

        cursor = (
            self._require_db().tasks.find(query)
            .sort(task_filter.order_by, DESCENDING if task_filter.descending else 1)
            .skip(task_filter.offset)
            .limit(task_filter.limit)
        )
        docs = await cursor.to_list(length=task_filter.limit)
        return [PersistedTask.model_validate(_from_doc(d)).summary() for d in docs]

    async def list_checkpoints(self, task_id: str) -> List[Checkpoint]:
        cursor = self._require_db().checkpoints.find({"task_id": task_id}).sort("timestamp", DESCENDING)
        docs = await cursor.to_list(length=None)
        return [Checkpoint.model_validate(_from_doc(d)) for d in docs]

    async def get_statistics(self) -> StorageStatistics:
        db = self._require_db()
        by_status: Dict[str, int] = {}
        async for row in db.tasks.aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}]):
            by_status[row["_id"]] = row["count"]
        return StorageStatistics(
            total_tasks=sum(by_status.values()),
            tasks_by_status=by_status,
            total_checkpoints=await db.checkpoints.count_documents({}),
        )
