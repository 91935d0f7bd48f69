import asyncio
import json
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from config.settings import Settings
from models.sensor_data import Deployment
from repositories.deployment_repository import DeploymentRepository
from repositories.sensor_repository import SensorRepository
from schemas.analytics_schemas import (
    AnalysisKind,
    AnalysisOutcome,
    AnalysisRequest,
    AnalysisResult,
    DailyForecast,
    HourlyForecast
)
from services.analysis_scripts import ANALYSIS_SCRIPTS, AnalysisScript, daily_forecast_script, hourly_forecast_script
from services.exceptions import AnalysisCancelled, AnalysisError
from services.forecast_service import ForecastService, HOURLY_MIN_POINTS
from services.reading_fetcher import ReadingFetcher
from services.runtime import RuntimeHandle
from utils.stats_utils import StatsUtils
from utils.time_window import ensure_utc, utcnow

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], object]

HOUR_SECONDS = 3600


class AnalysisRunner:
    """Orquestra busca de dados, runtime e scripts de análise"""

    def __init__(
        self,
        sensor_repository: Optional[SensorRepository] = None,
        deployment_repository: Optional[DeploymentRepository] = None,
        scripts: Optional[Dict[AnalysisKind, AnalysisScript]] = None
    ):
        self.deployments = deployment_repository or DeploymentRepository()
        self.readings = sensor_repository or SensorRepository(self.deployments)
        self.fetcher = ReadingFetcher(self.readings, self.deployments)
        self.scripts = scripts or ANALYSIS_SCRIPTS

    async def run_analyses(
        self,
        runtime: RuntimeHandle,
        request: AnalysisRequest,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> AnalysisResult:
        """
        Executar as análises pedidas, uma de cada vez

        Cada formato de dados (janela limitada / histórico completo) é buscado
        uma única vez. A falha de uma análise fica registrada como erro dela e
        não interrompe as demais; falhas de busca abortam o pedido todo.
        Cancelamento é verificado entre buscas e entre análises; um script já
        em execução no runtime vai até o fim.
        """
        def progress(message: str) -> None:
            logger.info(message)
            if on_progress:
                on_progress(message)

        kinds = request.ordered_analyses()
        include_forecasting = AnalysisKind.FORECASTING in kinds
        include_range = any(kind != AnalysisKind.FORECASTING for kind in kinds)

        _check_cancelled(cancel_event)
        deployments = await self.deployments.get_deployments()

        range_readings: List[Dict] = []
        if include_range:
            progress("Fetching sensor data...")
            range_readings = await self.fetcher.fetch_readings_for_analysis(
                request.deployment_ids,
                request.start,
                request.end,
                max_rows=Settings.ANALYSIS_MAX_ROWS,
                deployments=deployments,
                cancel_event=cancel_event
            )

        forecast_readings: List[Dict] = []
        if include_forecasting:
            progress("Fetching full deployment history for forecasting...")
            forecast_readings = await self.fetcher.fetch_readings_for_analysis(
                request.deployment_ids,
                request.start,
                utcnow(),
                use_deployment_bounds=True,
                deployments=deployments,
                cancel_event=cancel_event
            )

        requested_ids = set(request.deployment_ids)
        selected = [d.model_dump(mode="json") for d in deployments if d.id in requested_ids]
        deployments_json = json.dumps(selected)
        range_json = json.dumps(range_readings)
        forecast_json = json.dumps(forecast_readings) if include_forecasting else "[]"

        result = AnalysisResult()
        for kind in kinds:
            _check_cancelled(cancel_event)
            progress(f"Running {kind.label}...")
            try:
                raw = await runtime.execute(
                    self.scripts[kind],
                    readings_json=forecast_json if kind == AnalysisKind.FORECASTING else range_json,
                    deployments_json=deployments_json
                )
                records = StatsUtils.sanitize(json.loads(raw))
                result.outcomes[kind] = AnalysisOutcome.success(records)
            except Exception as e:
                logger.exception("Analysis %s failed", kind.value)
                result.outcomes[kind] = AnalysisOutcome.failure(str(e))

        return result

    async def run_hourly_forecast(
        self,
        runtime: RuntimeHandle,
        device_id: str,
        now: Optional[datetime] = None
    ) -> List[HourlyForecast]:
        """Previsão das próximas 24h (vazia se não houver 48h de histórico)"""
        now = ensure_utc(now) if now else utcnow()
        lookback_days = Settings.HOURLY_LOOKBACK_DAYS
        samples_json = await self._samples_json(device_id, now, lookback_days)
        if samples_json is None:
            return []

        raw = await self._execute(runtime, hourly_forecast_script, samples_json=samples_json)
        points = json.loads(raw)
        if not points:
            return []

        zone = ZoneInfo(Settings.DISPLAY_TIMEZONE)
        return [
            HourlyForecast(
                iso=point["iso"],
                temp_f=point["temp_f"],
                hour_label="Now" if i == 0 else _hour_label(point["iso"], zone)
            )
            for i, point in enumerate(points)
        ]

    async def run_daily_forecast(
        self,
        runtime: RuntimeHandle,
        device_id: str,
        now: Optional[datetime] = None
    ) -> List[DailyForecast]:
        """Máximas/mínimas diárias previstas (0 ou exatamente N dias completos)"""
        now = ensure_utc(now) if now else utcnow()
        samples_json = await self._samples_json(device_id, now, Settings.DAILY_LOOKBACK_DAYS)
        if samples_json is None:
            return []

        raw = await self._execute(
            runtime,
            daily_forecast_script,
            samples_json=samples_json,
            days_json=json.dumps(Settings.DAILY_FORECAST_DAYS)
        )
        series = json.loads(raw)
        days = ForecastService.aggregate_daily(
            series["timestamps"],
            series["values"],
            now=now,
            tz=Settings.DISPLAY_TIMEZONE
        )
        return [DailyForecast(**day) for day in days[:Settings.DAILY_FORECAST_DAYS]]

    async def _samples_json(self, device_id: str, now: datetime, lookback_days: int) -> Optional[str]:
        """Amostras horárias do dispositivo em °F, ou None se forem insuficientes"""
        deployments = await self.deployments.get_deployments(device_id=device_id)
        if not deployments:
            return None

        start = _lookback_start(deployments, now, lookback_days)
        samples = await self.readings.get_bucketed_samples(
            start=start,
            end=now,
            bucket_seconds=HOUR_SECONDS,
            device_id=device_id,
            max_rows=(lookback_days + 2) * 24
        )
        if len(samples) < HOURLY_MIN_POINTS:
            return None

        return json.dumps([
            {
                "bucket_ts": s.bucket_ts.isoformat(),
                "temperature_f": StatsUtils.celsius_to_fahrenheit(s.temperature_avg),
            }
            for s in samples
        ])

    async def _execute(self, runtime: RuntimeHandle, script: AnalysisScript, **payloads: str) -> str:
        try:
            return await runtime.execute(script, **payloads)
        except Exception as e:
            logger.exception("Forecast script %s failed", script.__name__)
            raise AnalysisError(f"Forecast failed: {e}") from e


def _check_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise AnalysisCancelled("Analysis cancelled")


def _lookback_start(deployments: List[Deployment], now: datetime, lookback_days: int) -> datetime:
    """Início da janela: o mais tardio entre (agora - lookback) e o primeiro deployment"""
    lookback_start = now - timedelta(days=lookback_days)
    earliest = min(ensure_utc(d.started_at) for d in deployments)
    return max(earliest, lookback_start)


def _hour_label(iso: str, zone: ZoneInfo) -> str:
    local = datetime.fromisoformat(iso).astimezone(zone)
    hour = local.hour % 12 or 12
    return f"{hour} {'AM' if local.hour < 12 else 'PM'}"
