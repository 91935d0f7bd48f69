"""
Scripts executados dentro do runtime de cálculo

Cada script recebe apenas strings JSON e devolve uma string JSON já
sanitizada; nenhum outro estado atravessa a fronteira do runtime.
"""
import json
from typing import Callable, Dict, List

import pandas as pd

from schemas.analytics_schemas import AnalysisKind
from services.analytics_service import AnalyticsService, readings_frame
from services.forecast_service import ForecastService
from utils.stats_utils import StatsUtils

analytics_service = AnalyticsService()
forecast_service = ForecastService()

AnalysisScript = Callable[..., str]


def _analysis_script(compute: Callable[[pd.DataFrame, List[Dict]], List[Dict]]) -> AnalysisScript:
    def script(readings_json: str, deployments_json: str) -> str:
        df = readings_frame(readings_json)
        deployments = json.loads(deployments_json)
        return StatsUtils.dumps_json_safe(compute(df, deployments))

    script.__name__ = compute.__name__
    return script


ANALYSIS_SCRIPTS: Dict[AnalysisKind, AnalysisScript] = {
    AnalysisKind.DESCRIPTIVE: _analysis_script(analytics_service.descriptive),
    AnalysisKind.CORRELATION: _analysis_script(analytics_service.correlation),
    AnalysisKind.HYPOTHESIS_TEST: _analysis_script(analytics_service.hypothesis_test),
    AnalysisKind.SEASONAL_DECOMPOSITION: _analysis_script(analytics_service.seasonal_decomposition),
    AnalysisKind.FORECASTING: _analysis_script(forecast_service.deployment_forecast),
}


def hourly_forecast_script(samples_json: str) -> str:
    return StatsUtils.dumps_json_safe(forecast_service.hourly_forecast(samples_json))


def daily_forecast_script(samples_json: str, days_json: str) -> str:
    days = int(json.loads(days_json))
    return StatsUtils.dumps_json_safe(forecast_service.daily_forecast_series(samples_json, days))
