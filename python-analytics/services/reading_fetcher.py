import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from models.sensor_data import Deployment
from repositories.deployment_repository import DeploymentRepository
from repositories.sensor_repository import SensorRepository
from services.exceptions import AnalysisCancelled
from utils.time_window import utcnow

logger = logging.getLogger(__name__)


class ReadingFetcher:
    """Monta o conjunto de leituras (com contexto do deployment) para as análises"""

    def __init__(
        self,
        sensor_repository: Optional[SensorRepository] = None,
        deployment_repository: Optional[DeploymentRepository] = None
    ):
        self.deployments = deployment_repository or DeploymentRepository()
        self.readings = sensor_repository or SensorRepository(self.deployments)

    async def fetch_readings_for_analysis(
        self,
        deployment_ids: List[int],
        start: datetime,
        end: datetime,
        max_rows: Optional[int] = None,
        use_deployment_bounds: bool = False,
        deployments: Optional[List[Deployment]] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[Dict]:
        """
        Buscar leituras de cada deployment pedido

        Args:
            max_rows: limite por deployment (mantém as mais recentes)
            use_deployment_bounds: ignora a janela pedida e usa todo o
                histórico do deployment até agora (previsões)
            deployments: metadados já carregados, evita nova consulta

        IDs inexistentes são ignorados.
        """
        if deployments is None:
            deployments = await self.deployments.get_deployments()
        by_id = {d.id: d for d in deployments}

        combined: List[Dict] = []
        for deployment_id in deployment_ids:
            if cancel_event is not None and cancel_event.is_set():
                raise AnalysisCancelled("Analysis cancelled while fetching readings")

            deployment = by_id.get(deployment_id)
            if deployment is None:
                logger.info("Deployment %s not found, skipping", deployment_id)
                continue

            if use_deployment_bounds:
                requested_start = deployment.started_at
                requested_end = deployment.ended_at or utcnow()
            else:
                requested_start, requested_end = start, end

            readings = await self.readings.get_deployment_readings(
                deployment_id,
                max_rows,
                start=requested_start,
                end=requested_end,
                prefer_latest=bool(max_rows)
            )

            for r in readings:
                combined.append({
                    "id": r.id,
                    "temperature": r.temperature_celsius,
                    "humidity": r.humidity_percent,
                    "created_at": r.created_at.isoformat(),
                    "deployment_id": deployment.id,
                    "deployment_name": deployment.name,
                    "location": deployment.location,
                })

        return combined
