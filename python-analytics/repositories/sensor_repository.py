from __future__ import annotations
from typing import List, Dict, Optional, TYPE_CHECKING
from datetime import datetime
import logging
from pymongo.errors import PyMongoError
from config.database import Database
from config.settings import Settings
from models.sensor_data import Reading, BucketSample
from repositories.deployment_repository import DeploymentRepository
from services.exceptions import FetchError
from utils.time_window import resolve_window, ensure_utc

if TYPE_CHECKING:
    from motor.motor_asyncio import AsyncIOMotorCollection

logger = logging.getLogger(__name__)

ORDER_ASC = [("created_at", 1), ("id", 1)]
ORDER_DESC = [("created_at", -1), ("id", -1)]


class SensorRepository:
    """Repositório para leituras de sensores"""

    def __init__(
        self,
        deployment_repository: Optional[DeploymentRepository] = None,
        collection: Optional[AsyncIOMotorCollection] = None,
        page_size: Optional[int] = None
    ):
        self.deployments = deployment_repository or DeploymentRepository()
        self._collection = collection
        self.page_size = page_size or Settings.READINGS_PAGE_SIZE

    @property
    def collection(self) -> AsyncIOMotorCollection:
        """Coleção 'readings', resolvida só quando uma consulta é feita"""
        if self._collection is not None:
            return self._collection
        return Database.get_collection("readings")

    async def get_deployment_readings(
        self,
        deployment_id: int,
        limit: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        prefer_latest: bool = False
    ) -> List[Reading]:
        """
        Leituras de um deployment dentro da sua janela de validade

        Args:
            deployment_id: ID do deployment
            limit: máximo de linhas; sem limite, pagina até o fim
            start, end: janela pedida (intersectada com a do deployment)
            prefer_latest: com limite, mantém as leituras mais recentes

        Retorna sempre em ordem crescente de created_at/id.
        """
        deployment = await self.deployments.get_deployment(deployment_id)
        if deployment is None:
            return []

        window = resolve_window(deployment, start, end)
        if window is None:
            return []
        effective_start, effective_end = window

        query = {
            "device_id": deployment.device_id,
            "created_at": {"$gte": effective_start, "$lte": effective_end}
        }

        try:
            if limit:
                docs = await self._find_capped(query, limit, prefer_latest)
            else:
                docs = await self._find_paginated(query)
        except PyMongoError as e:
            raise FetchError(f"Failed to fetch readings for deployment {deployment_id}: {e}") from e

        readings = [Reading(**doc) for doc in docs]
        if limit and prefer_latest:
            readings.sort(key=lambda r: (r.created_at, r.id))
        return readings

    async def _find_capped(self, query: Dict, limit: int, prefer_latest: bool) -> List[Dict]:
        order = ORDER_DESC if prefer_latest else ORDER_ASC
        cursor = self.collection.find(query, {"_id": 0}).sort(order).limit(limit)
        return await cursor.to_list(length=limit)

    async def _find_paginated(self, query: Dict) -> List[Dict]:
        rows: List[Dict] = []
        skip = 0
        while True:
            cursor = self.collection.find(query, {"_id": 0}).sort(ORDER_ASC).skip(skip).limit(self.page_size)
            page = await cursor.to_list(length=self.page_size)
            rows.extend(page)
            if len(page) < self.page_size:
                break
            skip += self.page_size
        logger.debug("Fetched %d readings in %d page(s)", len(rows), skip // self.page_size + 1)
        return rows

    async def get_bucketed_samples(
        self,
        start: datetime,
        end: datetime,
        bucket_seconds: int,
        device_id: Optional[str] = None,
        max_rows: Optional[int] = None
    ) -> List[BucketSample]:
        """Médias de temperatura/umidade por intervalo fixo (por dispositivo)"""
        bucket_minutes = max(1, round(bucket_seconds / 60))
        match_stage: Dict = {"created_at": {"$gte": ensure_utc(start), "$lte": ensure_utc(end)}}
        if device_id:
            match_stage["device_id"] = device_id

        pipeline = [
            {"$match": match_stage},
            {"$group": {
                "_id": {
                    "device_id": "$device_id",
                    "bucket_ts": {"$dateTrunc": {
                        "date": "$created_at",
                        "unit": "minute",
                        "binSize": bucket_minutes
                    }}
                },
                "temperature_avg": {"$avg": "$temperature"},
                "humidity_avg": {"$avg": "$humidity"},
                "reading_count": {"$sum": 1}
            }},
            {"$sort": {"_id.bucket_ts": 1, "_id.device_id": 1}},
            {"$project": {
                "_id": 0,
                "bucket_ts": "$_id.bucket_ts",
                "device_id": "$_id.device_id",
                "temperature_avg": 1,
                "humidity_avg": 1,
                "reading_count": 1
            }}
        ]
        if max_rows:
            pipeline.append({"$limit": max_rows})

        try:
            docs = await self.collection.aggregate(pipeline).to_list(length=None)
        except PyMongoError as e:
            raise FetchError(f"Failed to fetch bucketed samples: {e}") from e
        return [BucketSample(**doc) for doc in docs]
