from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from typing import Optional

from utils.time_window import ensure_utc


class Reading(BaseModel):
    """Leitura bruta do sensor (imutável depois de gravada)"""
    id: int
    device_id: str
    temperature_celsius: float = Field(..., alias="temperature", description="Temperatura em °C")
    humidity_percent: float = Field(..., alias="humidity", description="Umidade relativa em %")
    created_at: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class Deployment(BaseModel):
    """Instalação de um dispositivo em um local, com janela de validade"""
    id: int
    device_id: str
    name: str
    location: str = ""
    started_at: datetime
    ended_at: Optional[datetime] = None

    @field_validator("started_at", "ended_at")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @property
    def is_active(self) -> bool:
        return self.ended_at is None


class BucketSample(BaseModel):
    """Média de leituras agregadas em um intervalo fixo"""
    bucket_ts: datetime
    device_id: str
    temperature_avg: float
    humidity_avg: float
    reading_count: int

    @field_validator("bucket_ts")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)
