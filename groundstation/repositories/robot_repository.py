from datetime import datetime
from typing import Any, Dict, Optional

from groundstation.db.context import DBContext


class RobotRepository:
    """Data access layer for robot documents (last position and health)."""

    def __init__(self, db_context: Optional[DBContext] = None):
        context = db_context or DBContext()
        self.collection = context.database.robots

    async def upsert(self, name: str, fields: Dict[str, Any]):
        doc = dict(fields)
        doc["timestamp"] = datetime.utcnow()
        await self.collection.update_one({"name": name}, {"$set": doc}, upsert=True)
