from __future__ import annotations
from typing import Optional, TYPE_CHECKING
import logging
import os
from dotenv import load_dotenv

if TYPE_CHECKING:
    from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorCollection

load_dotenv()

logger = logging.getLogger(__name__)


class Database:
    """Gerenciador de conexão MongoDB"""

    client: Optional[AsyncIOMotorClient] = None  # type: ignore

    @classmethod
    async def connect_db(cls) -> None:
        """Conectar ao MongoDB"""
        if cls.client is None:
            mongodb_uri = os.getenv("MONGODB_URI")
            if not mongodb_uri:
                raise ValueError("MONGODB_URI is not set in .env")

            from motor.motor_asyncio import AsyncIOMotorClient
            # tz_aware: created_at/started_at voltam como datetimes UTC
            cls.client = AsyncIOMotorClient(mongodb_uri, tz_aware=True)
            logger.info("✅ MongoDB connected")

    @classmethod
    async def close_db(cls) -> None:
        """Fechar conexão com MongoDB"""
        if cls.client:
            cls.client.close()
            cls.client = None
            logger.info("🔌 MongoDB connection closed")

    @classmethod
    def get_database(cls) -> AsyncIOMotorDatabase:  # type: ignore
        """Obter instância do banco de dados"""
        if cls.client is None:
            raise RuntimeError("Database is not connected")
        db_name = os.getenv("DB_NAME", "sensormonitor")
        return cls.client[db_name]

    @classmethod
    def get_collection(cls, collection_name: str) -> AsyncIOMotorCollection:  # type: ignore
        """Obter coleção específica"""
        db = cls.get_database()
        return db[collection_name]
