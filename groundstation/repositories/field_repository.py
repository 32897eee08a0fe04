from datetime import datetime
from typing import Optional

from groundstation.db.context import DBContext


class FieldRepository:
    """Data access layer for measured fields and the measurement history."""

    def __init__(self, db_context: Optional[DBContext] = None):
        context = db_context or DBContext()
        self.collection = context.database.fields
        self.history = context.database.measurements

    async def upsert(
        self,
        planet: str,
        x: int,
        y: int,
        ground: str,
        temperature: float,
        robot_name: Optional[str] = None,
    ):
        now = datetime.utcnow()
        await self.collection.update_one(
            {"planet": planet, "x": x, "y": y},
            {
                "$set": {
                    "ground": ground,
                    "temperature": temperature,
                    "robot": robot_name,
                    "timestamp": now,
                }
            },
            upsert=True,
        )
        await self.history.insert_one(
            {
                "planet": planet,
                "x": x,
                "y": y,
                "ground": ground,
                "temperature": temperature,
                "robot": robot_name,
                "timestamp": now,
            }
        )
