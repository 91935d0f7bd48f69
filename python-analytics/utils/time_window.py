from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from models.sensor_data import Deployment


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Datetimes sem fuso são tratados como UTC (padrão do MongoDB)"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_window(
    deployment: Deployment,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None
) -> Optional[Tuple[datetime, datetime]]:
    """
    Intersectar a janela pedida com a vida útil do deployment

    A janela nunca é ampliada além de [started_at, ended_at ou agora].
    Retorna None quando a interseção é vazia.
    """
    deployment_start = ensure_utc(deployment.started_at)
    deployment_end = ensure_utc(deployment.ended_at) if deployment.ended_at else ensure_utc(now or utcnow())

    effective_start = max(deployment_start, ensure_utc(start)) if start else deployment_start
    effective_end = min(deployment_end, ensure_utc(end)) if end else deployment_end

    if effective_start > effective_end:
        return None
    return effective_start, effective_end
