"""
Fixtures e coleções falsas (em memória) no formato do motor
"""
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import numpy as np
import pytest

from models.sensor_data import Deployment
from repositories.deployment_repository import DeploymentRepository
from repositories.sensor_repository import SensorRepository

T0 = datetime(2026, 2, 1, tzinfo=timezone.utc)


def _matches(doc: Dict, query: Dict) -> bool:
    for field, condition in query.items():
        value = doc.get(field)
        if isinstance(condition, dict):
            if "$gte" in condition and not value >= condition["$gte"]:
                return False
            if "$lte" in condition and not value <= condition["$lte"]:
                return False
        elif value != condition:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: List[Dict], collection: "FakeCollection"):
        self._docs = docs
        self._collection = collection
        self._skip = 0
        self._limit = 0

    def sort(self, keys):
        for field, direction in reversed(keys):
            self._docs.sort(key=lambda d: d.get(field), reverse=direction < 0)
        return self

    def skip(self, n: int):
        self._skip = n
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    async def to_list(self, length: Optional[int] = None):
        self._collection.calls.append({"skip": self._skip, "limit": self._limit})
        docs = self._docs[self._skip:]
        if self._limit:
            docs = docs[:self._limit]
        if length:
            docs = docs[:length]
        return [dict(d) for d in docs]


class FakeAggregateCursor:
    def __init__(self, docs: List[Dict]):
        self._docs = docs

    async def to_list(self, length: Optional[int] = None):
        return [dict(d) for d in self._docs]


class FakeCollection:
    """Subconjunto de AsyncIOMotorCollection usado pelos repositórios"""

    def __init__(self, docs: Optional[List[Dict]] = None, aggregate_result: Optional[List[Dict]] = None):
        self.docs = list(docs or [])
        self.aggregate_result = list(aggregate_result or [])
        self.queries: List[Dict] = []
        self.pipelines: List[List[Dict]] = []
        self.calls: List[Dict] = []
        self.error: Optional[Exception] = None

    def find(self, query: Dict, projection: Optional[Dict] = None):
        if self.error:
            raise self.error
        self.queries.append(query)
        return FakeCursor([d for d in self.docs if _matches(d, query)], self)

    async def find_one(self, query: Dict, projection: Optional[Dict] = None):
        if self.error:
            raise self.error
        for doc in self.docs:
            if _matches(doc, query):
                return dict(doc)
        return None

    def aggregate(self, pipeline: List[Dict]):
        if self.error:
            raise self.error
        self.pipelines.append(pipeline)
        return FakeAggregateCursor(self.aggregate_result)


def deployment_doc(
    id: int,
    device_id: str = "node1",
    name: Optional[str] = None,
    location: str = "Yard",
    started_at: datetime = T0,
    ended_at: Optional[datetime] = None
) -> Dict[str, Any]:
    return {
        "id": id,
        "device_id": device_id,
        "name": name or f"Deployment {id}",
        "location": location,
        "started_at": started_at,
        "ended_at": ended_at,
    }


def reading_docs(
    device_id: str,
    start: datetime,
    count: int,
    step: timedelta = timedelta(minutes=15),
    temperature=lambda i: 20.0,
    humidity=lambda i: 50.0,
    first_id: int = 1
) -> List[Dict[str, Any]]:
    return [
        {
            "id": first_id + i,
            "device_id": device_id,
            "temperature": float(temperature(i)),
            "humidity": float(humidity(i)),
            "created_at": start + step * i,
        }
        for i in range(count)
    ]


def daily_cycle(i: int, per_day: int = 96, base: float = 20.0, amplitude: float = 5.0) -> float:
    return base + amplitude * math.sin(2 * math.pi * (i % per_day) / per_day)


def readings_payload(deployment: Dict, docs: List[Dict]) -> List[Dict]:
    """Leituras no formato entregue pelo ReadingFetcher"""
    return [
        {
            "id": d["id"],
            "temperature": d["temperature"],
            "humidity": d["humidity"],
            "created_at": d["created_at"].isoformat(),
            "deployment_id": deployment["id"],
            "deployment_name": deployment["name"],
            "location": deployment["location"],
        }
        for d in docs
    ]


def deployments_payload(*docs: Dict) -> List[Dict]:
    return [Deployment(**d).model_dump(mode="json") for d in docs]


@pytest.fixture
def deployment_docs():
    return [
        deployment_doc(1, "node1", started_at=T0, ended_at=T0 + timedelta(days=3)),
        deployment_doc(2, "node2", location="Barn", started_at=T0),
    ]


@pytest.fixture
def deployments_collection(deployment_docs):
    return FakeCollection(deployment_docs)


@pytest.fixture
def deployment_repository(deployments_collection):
    return DeploymentRepository(collection=deployments_collection)


@pytest.fixture
def readings_collection():
    docs = reading_docs("node1", T0, 400) + reading_docs("node2", T0, 400, first_id=1001)
    return FakeCollection(docs)


@pytest.fixture
def sensor_repository(deployment_repository, readings_collection):
    return SensorRepository(deployment_repository, collection=readings_collection, page_size=100)


class BrokenExponentialSmoothing:
    """Modelo Holt-Winters cujo ajuste sempre falha (com ou sem tendência)"""

    def __init__(self, *args, **kwargs):
        self.kwargs = kwargs

    def fit(self, **kwargs):
        raise np.linalg.LinAlgError("SVD did not converge")


@pytest.fixture
def broken_holt_winters(monkeypatch):
    monkeypatch.setattr("statsmodels.tsa.holtwinters.ExponentialSmoothing", BrokenExponentialSmoothing)
