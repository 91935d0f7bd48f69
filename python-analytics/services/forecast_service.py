import json
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

import numpy as np
import pandas as pd

from services.analytics_service import METRICS, deployment_groups
from utils.stats_utils import StatsUtils

logger = logging.getLogger(__name__)

# Previsão por deployment (relatório): grade de 15 min, ciclo diário
REPORT_FREQ = "15min"
REPORT_PERIOD = 96
REPORT_MAX_GAP = 4
REPORT_FORECAST_HOURS = 24
REPORT_HISTORY_MAX_POINTS = 1200

# Previsões do dashboard: grade horária
HOURLY_FREQ = "1h"
HOURLY_PERIOD = 24
HOURLY_MAX_GAP = 3
HOURLY_MIN_POINTS = 48
HOURLY_FORECAST_STEPS = 24

# Faixa de plausibilidade da previsão horária (°F)
CLIP_MARGIN = 15.0
CLIP_MIN_WIDTH = 10.0


class ForecastService:
    """Previsões Holt-Winters (suavização exponencial tripla, aditiva)"""

    # ------------------------------------------------------------------
    # Relatório: previsão de 24h por deployment e métrica
    # ------------------------------------------------------------------

    def deployment_forecast(self, df: pd.DataFrame, deployments: List[Dict]) -> List[Dict]:
        """
        Prever 24h à frente para cada deployment/métrica

        O ajuste usa todo o histórico regular (só dias completos); o
        histórico devolvido para o gráfico é subamostrado.
        """
        from statsmodels.tsa.holtwinters import ExponentialSmoothing

        results = []
        for meta, group in deployment_groups(df, deployments):
            indexed = group.set_index("created_at").sort_index()

            for metric, column in METRICS:
                regular = StatsUtils.regularize(indexed[column].dropna().astype(float), REPORT_FREQ, REPORT_MAX_GAP)
                if regular.empty:
                    continue

                regular = self.trim_partial_day(regular)
                if len(regular) < REPORT_PERIOD * 2:
                    continue

                steps = REPORT_FORECAST_HOURS * 60 // 15
                try:
                    model = ExponentialSmoothing(
                        regular.to_numpy(),
                        seasonal_periods=REPORT_PERIOD,
                        trend="add",
                        seasonal="add",
                        initialization_method="estimated",
                    ).fit(optimized=True)
                    forecast = model.forecast(steps)
                except Exception as e:
                    logger.warning("Forecast skipped for deployment %s/%s: %s", meta["deployment_id"], metric, e)
                    continue

                hist_step = StatsUtils.stride(len(regular), REPORT_HISTORY_MAX_POINTS)
                results.append({
                    **meta,
                    "metric": metric,
                    "forecast_hours": REPORT_FORECAST_HOURS,
                    "historical": {
                        "timestamps": [ts.isoformat() for ts in regular.index[::hist_step]],
                        "values": [StatsUtils.safe_float(v) for v in regular.to_numpy()[::hist_step]],
                    },
                    "forecast": {
                        "timestamps": [ts.isoformat() for ts in _future_index(regular.index[-1], steps, REPORT_FREQ)],
                        "values": [StatsUtils.safe_float(v) for v in np.asarray(forecast)],
                    },
                    "model_params": _model_params(model),
                })
        return results

    @staticmethod
    def trim_partial_day(regular: pd.Series) -> pd.Series:
        """Descartar o último dia se ele não terminar no slot das 23:45"""
        last_ts = regular.index[-1]
        if last_ts.hour == 23 and last_ts.minute == 45:
            return regular
        return regular[regular.index < last_ts.floor("D")]

    # ------------------------------------------------------------------
    # Dashboard: previsões horárias a partir de amostras agregadas
    # ------------------------------------------------------------------

    @staticmethod
    def samples_series(samples_json: str) -> pd.Series:
        """Série de temperatura (°F) indexada pelo início do bucket"""
        data = json.loads(samples_json)
        if not data:
            return pd.Series(dtype=float, index=pd.DatetimeIndex([], tz="UTC"))
        df = pd.DataFrame(data)
        df["bucket_ts"] = pd.to_datetime(df["bucket_ts"], utc=True, format="ISO8601")
        df = df.sort_values("bucket_ts").set_index("bucket_ts")
        return pd.to_numeric(df["temperature_f"], errors="coerce").dropna()

    @staticmethod
    def plausibility_band(series: pd.Series) -> Tuple[float, float]:
        """Faixa [q05 - margem, q95 + margem], alargada até a largura mínima"""
        series_min = StatsUtils.safe_float(series.min())
        series_max = StatsUtils.safe_float(series.max())
        q05 = StatsUtils.safe_float(series.quantile(0.05), series_min)
        q95 = StatsUtils.safe_float(series.quantile(0.95), series_max)
        if q95 < q05:
            q05, q95 = series_min, series_max

        lower = q05 - CLIP_MARGIN
        upper = q95 + CLIP_MARGIN
        if upper - lower < CLIP_MIN_WIDTH:
            midpoint = (upper + lower) / 2.0
            lower = midpoint - CLIP_MIN_WIDTH / 2.0
            upper = midpoint + CLIP_MIN_WIDTH / 2.0
        return lower, upper

    @staticmethod
    def fit_damped(values: np.ndarray, period: int):
        """Tendência aditiva amortecida; se o ajuste falhar, modelo sem tendência"""
        from statsmodels.tsa.holtwinters import ExponentialSmoothing

        try:
            return ExponentialSmoothing(
                values,
                seasonal_periods=period,
                trend="add",
                damped_trend=True,
                seasonal="add",
                initialization_method="estimated",
            ).fit(optimized=True)
        except Exception as e:
            logger.warning("Damped trend fit failed, falling back to no trend: %s", e)
            return ExponentialSmoothing(
                values,
                seasonal_periods=period,
                trend=None,
                seasonal="add",
                initialization_method="estimated",
            ).fit(optimized=True)

    def hourly_forecast(self, samples_json: str) -> List[Dict]:
        """Próximas 24h, recortadas na faixa de plausibilidade do histórico"""
        regular = StatsUtils.regularize(self.samples_series(samples_json), HOURLY_FREQ, HOURLY_MAX_GAP)
        if len(regular) < HOURLY_MIN_POINTS:
            return []

        lower, upper = self.plausibility_band(regular)
        try:
            model = self.fit_damped(regular.to_numpy(), HOURLY_PERIOD)
            forecast = np.asarray(model.forecast(HOURLY_FORECAST_STEPS), dtype=float)
        except Exception as e:
            # Ajuste impossível = sem previsão, não erro de sistema
            logger.warning("Hourly forecast fit failed: %s", e)
            return []
        forecast = np.clip(forecast, lower, upper)

        points = []
        for ts, value in zip(_future_index(regular.index[-1], HOURLY_FORECAST_STEPS, HOURLY_FREQ), forecast):
            rounded = round(StatsUtils.safe_float(value, (lower + upper) / 2.0), 1)
            points.append({"iso": ts.isoformat(), "temp_f": min(max(rounded, lower), upper)})
        return points

    def daily_forecast_series(self, samples_json: str, days: int) -> Dict:
        """
        Série horária (sem recorte) para agregação diária

        Prevê um dia a mais que `days` para que, começando no meio de um dia,
        ainda restem `days` dias completos depois do descarte dos parciais.
        """
        regular = StatsUtils.regularize(self.samples_series(samples_json), HOURLY_FREQ, HOURLY_MAX_GAP)
        if len(regular) < HOURLY_MIN_POINTS:
            return {"timestamps": [], "values": []}

        steps = (days + 1) * 24
        try:
            model = self.fit_damped(regular.to_numpy(), HOURLY_PERIOD)
            forecast = np.asarray(model.forecast(steps), dtype=float)
        except Exception as e:
            logger.warning("Daily forecast fit failed: %s", e)
            return {"timestamps": [], "values": []}
        return {
            "timestamps": [ts.isoformat() for ts in _future_index(regular.index[-1], steps, HOURLY_FREQ)],
            "values": [StatsUtils.safe_float(v) for v in forecast],
        }

    @staticmethod
    def aggregate_daily(
        timestamps: Sequence[str],
        values: Sequence[float],
        now: Optional[datetime] = None,
        tz: str = "UTC",
        points_per_hour: int = 1
    ) -> List[Dict]:
        """
        Agrupar a previsão horária por dia (máxima/mínima)

        Só entram dias com um ponto por hora local do dia (23 ou 25 horas nas
        trocas de horário de verão); dias parciais no início ou no fim são
        descartados. Ordem crescente de data.
        """
        if len(timestamps) == 0:
            return []

        zone = ZoneInfo(tz)
        local = pd.to_datetime(pd.Series(list(timestamps)), utc=True, format="ISO8601").dt.tz_convert(zone)
        frame = pd.DataFrame({
            "date": local.dt.date,
            "value": pd.to_numeric(pd.Series(list(values)), errors="coerce"),
        }).dropna()

        daily = frame.groupby("date")["value"].agg(["max", "min", "count"]).sort_index()
        expected = np.array([_local_day_hours(day, zone) * points_per_hour for day in daily.index])
        daily = daily[daily["count"].to_numpy() >= expected]

        today = now.astimezone(zone).date() if now else None
        return [
            {
                "date": day.isoformat(),
                "day_name": "Today" if day == today else day.strftime("%a"),
                "temp_high_f": round(StatsUtils.safe_float(row["max"]), 1),
                "temp_low_f": round(StatsUtils.safe_float(row["min"]), 1),
            }
            for day, row in daily.iterrows()
        ]


def _local_day_hours(day: date, zone: ZoneInfo) -> int:
    start = datetime.combine(day, time.min, tzinfo=zone).astimezone(timezone.utc)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone).astimezone(timezone.utc)
    return int((end - start).total_seconds() // 3600)


def _future_index(last_ts: pd.Timestamp, steps: int, freq: str) -> pd.DatetimeIndex:
    offset = pd.Timedelta(freq)
    return pd.date_range(start=last_ts + offset, periods=steps, freq=offset)


def _model_params(model) -> Dict[str, float]:
    params = model.params
    return {
        "alpha": StatsUtils.safe_float(params.get("smoothing_level")),
        "beta": StatsUtils.safe_float(params.get("smoothing_trend")),
        "gamma": StatsUtils.safe_float(params.get("smoothing_seasonal")),
        "aic": StatsUtils.safe_float(model.aic),
    }
