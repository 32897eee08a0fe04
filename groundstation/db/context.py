import os
from typing import Optional

from pymongo.asynchronous.mongo_client import AsyncMongoClient


class DBContext:
    """Singleton wrapper around the async MongoDB client."""

    _instance: "DBContext | None" = None

    def __new__(cls, mongo_url: Optional[str] = None) -> "DBContext":
        if cls._instance is None:
            url = mongo_url or os.getenv("MONGODB_URL")
            if not url:
                raise RuntimeError("MONGODB_URL environment variable is not set")
            instance = super().__new__(cls)
            instance._client = AsyncMongoClient(url)
            instance._db = instance._client.exploration_db
            cls._instance = instance
        return cls._instance

    @property
    def database(self):
        return self._db

    async def close(self) -> None:
        await self._client.close()
        DBContext._instance = None
