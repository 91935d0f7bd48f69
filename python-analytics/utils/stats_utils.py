import json
import math
from datetime import date, datetime
from typing import Any, Optional

import numpy as np
import pandas as pd


class StatsUtils:
    """Utilitários numéricos compartilhados pelas análises"""

    @staticmethod
    def safe_float(value: Any, fallback: float = 0.0) -> float:
        """Converter para float finito; NaN, infinito ou não numérico viram fallback"""
        try:
            v = float(value)
        except (TypeError, ValueError):
            return float(fallback)
        if math.isfinite(v):
            return v
        return float(fallback)

    @staticmethod
    def safe_probability(value: Any) -> float:
        """Como safe_float (fallback 1.0), limitado a [0, 1]"""
        p = StatsUtils.safe_float(value, 1.0)
        if p < 0:
            return 0.0
        if p > 1:
            return 1.0
        return p

    @staticmethod
    def safe_optional_float(value: Any) -> Optional[float]:
        """Valor não finito vira None (bordas indefinidas de séries)"""
        try:
            v = float(value)
        except (TypeError, ValueError):
            return None
        if math.isfinite(v):
            return v
        return None

    @staticmethod
    def sanitize(value: Any) -> Any:
        """Percorrer dicts/listas e garantir que todo float seja finito"""
        if isinstance(value, dict):
            return {k: StatsUtils.sanitize(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [StatsUtils.sanitize(v) for v in value]
        if isinstance(value, np.ndarray):
            return [StatsUtils.sanitize(v) for v in value.tolist()]
        # bool antes de int: bool é subclasse de int
        if isinstance(value, (bool, np.bool_)):
            return bool(value)
        if isinstance(value, (int, np.integer)):
            return int(value)
        if isinstance(value, (float, np.floating)):
            return StatsUtils.safe_float(value, 0.0)
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        return value

    @staticmethod
    def encode_json(value: Any) -> str:
        """Serializar rejeitando NaN/Infinity (ValueError) em vez de gerar JSON inválido"""
        return json.dumps(value, allow_nan=False)

    @staticmethod
    def dumps_json_safe(value: Any) -> str:
        return StatsUtils.encode_json(StatsUtils.sanitize(value))

    @staticmethod
    def celsius_to_fahrenheit(celsius):
        """f = c * 9/5 + 32 (aceita escalar ou Series)"""
        return celsius * 9 / 5 + 32

    @staticmethod
    def stride(length: int, max_points: int) -> int:
        """Passo fixo de subamostragem para devolver no máximo max_points"""
        if length <= max_points:
            return 1
        return int(math.ceil(length / max_points))

    @staticmethod
    def regularize(series: pd.Series, freq: str, max_gap: int) -> pd.Series:
        """
        Reamostrar para grade fixa e interpolar lacunas curtas

        Args:
            series: valores indexados por timestamp
            freq: largura da grade (ex.: '15min', '1h')
            max_gap: maior lacuna (em slots consecutivos) interpolada

        Lacunas maiores que max_gap são descartadas por inteiro.
        """
        if series.empty:
            return series.astype(float)

        resampled = series.sort_index().resample(freq).mean()
        missing = resampled.isna()
        if not missing.any():
            return resampled

        gap_id = (~missing).cumsum()
        gap_length = missing.groupby(gap_id).transform("sum")
        filled = resampled.interpolate(method="linear", limit_area="inside")
        filled[missing & (gap_length > max_gap)] = np.nan
        return filled.dropna()
