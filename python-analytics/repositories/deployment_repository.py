from __future__ import annotations
from typing import List, Optional, TYPE_CHECKING
from pymongo.errors import PyMongoError
from config.database import Database
from models.sensor_data import Deployment
from services.exceptions import FetchError

if TYPE_CHECKING:
    from motor.motor_asyncio import AsyncIOMotorCollection


class DeploymentRepository:
    """Repositório (somente leitura) de deployments"""

    def __init__(self, collection: Optional[AsyncIOMotorCollection] = None):
        # Sem coleção explícita, a conexão só é resolvida na primeira consulta
        self._collection = collection

    @property
    def collection(self) -> AsyncIOMotorCollection:
        if self._collection is not None:
            return self._collection
        return Database.get_collection("deployments")

    async def get_deployments(self, device_id: Optional[str] = None) -> List[Deployment]:
        """Listar deployments (opcionalmente de um dispositivo), mais antigos primeiro"""
        query = {"device_id": device_id} if device_id else {}
        try:
            cursor = self.collection.find(query, {"_id": 0}).sort([("started_at", 1), ("id", 1)])
            docs = await cursor.to_list(length=None)
        except PyMongoError as e:
            raise FetchError(f"Failed to fetch deployments: {e}") from e
        return [Deployment(**doc) for doc in docs]

    async def get_deployment(self, deployment_id: int) -> Optional[Deployment]:
        try:
            doc = await self.collection.find_one({"id": deployment_id}, {"_id": 0})
        except PyMongoError as e:
            raise FetchError(f"Failed to fetch deployment {deployment_id}: {e}") from e
        return Deployment(**doc) if doc else None
