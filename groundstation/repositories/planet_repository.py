from datetime import datetime
from typing import Optional

from groundstation.db.context import DBContext


class PlanetRepository:
    """Data access layer for discovered planets, keyed by their size."""

    def __init__(self, db_context: Optional[DBContext] = None):
        context = db_context or DBContext()
        self.collection = context.database.planets

    async def upsert(self, width: int, height: int, reported_by: Optional[str] = None):
        await self.collection.update_one(
            {"width": width, "height": height},
            {
                "$set": {"last_seen": datetime.utcnow()},
                "$setOnInsert": {
                    "name": f"Planet-{width}x{height}",
                    "discovered_by": reported_by,
                },
            },
            upsert=True,
        )
