import json
import logging
from itertools import combinations
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.linear_model import LinearRegression

from utils.stats_utils import StatsUtils

logger = logging.getLogger(__name__)

READING_COLUMNS = ["id", "temperature", "humidity", "created_at", "deployment_id", "deployment_name", "location"]

# (nome da métrica, coluna usada) - temperatura já convertida para °F
METRICS = (("temperature", "temperature_f"), ("humidity", "humidity"))

HISTOGRAM_BINS = 20
SCATTER_MAX_POINTS = 500
SIGNIFICANCE_LEVEL = 0.05
SEASONAL_FREQ = "15min"
SEASONAL_PERIOD = 96  # 24h / 15min
SEASONAL_MAX_GAP = 4
SEASONAL_MAX_POINTS = 1000


def readings_frame(readings_json: str) -> pd.DataFrame:
    """Converter o JSON de leituras em DataFrame ordenado, com temperatura em °F"""
    data = json.loads(readings_json)
    df = pd.DataFrame(data) if data else pd.DataFrame(columns=READING_COLUMNS)
    for column in READING_COLUMNS:
        if column not in df.columns:
            df[column] = None

    df["created_at"] = pd.to_datetime(df["created_at"], utc=True, format="ISO8601")
    df["temperature"] = pd.to_numeric(df["temperature"], errors="coerce")
    df["humidity"] = pd.to_numeric(df["humidity"], errors="coerce")
    df["temperature_f"] = StatsUtils.celsius_to_fahrenheit(df["temperature"])
    df = df.sort_values(["created_at", "id"], kind="mergesort").reset_index(drop=True)
    return df


def deployment_groups(df: pd.DataFrame, deployments: List[Dict]) -> Iterator[Tuple[Dict, pd.DataFrame]]:
    """Iterar por deployment, com id/nome/local prontos para o registro"""
    by_id = {d.get("id"): d for d in deployments}
    for deployment_id, group in df.groupby("deployment_id", sort=True):
        first = group.iloc[0]
        info = by_id.get(deployment_id, {})
        name = first.get("deployment_name")
        location = first.get("location")
        yield {
            "deployment_id": int(deployment_id),
            "deployment_name": name if isinstance(name, str) else info.get("name", str(deployment_id)),
            "location": location if isinstance(location, str) else info.get("location", ""),
        }, group


class AnalyticsService:
    """Análises estatísticas sobre o conjunto normalizado de leituras"""

    def descriptive(self, df: pd.DataFrame, deployments: List[Dict]) -> List[Dict]:
        """Média, mediana, desvio, quartis, assimetria, curtose e histograma"""
        results = []
        for meta, group in deployment_groups(df, deployments):
            for metric, column in METRICS:
                values = group[column].dropna().astype(float)
                count = int(len(values))
                if count == 0:
                    continue

                hist_counts, hist_edges = np.histogram(values.to_numpy(), bins=HISTOGRAM_BINS)
                std = StatsUtils.safe_float(values.std(), 0.0) if count > 1 else 0.0
                # Evita artefatos de divisão por zero
                skewness = StatsUtils.safe_float(stats.skew(values), 0.0) if count > 2 and std > 0 else 0.0
                kurtosis = StatsUtils.safe_float(stats.kurtosis(values), 0.0) if count > 3 and std > 0 else 0.0

                results.append({
                    **meta,
                    "metric": metric,
                    "count": count,
                    "mean": StatsUtils.safe_float(values.mean()),
                    "median": StatsUtils.safe_float(values.median()),
                    "std": std,
                    "min": StatsUtils.safe_float(values.min()),
                    "max": StatsUtils.safe_float(values.max()),
                    "q25": StatsUtils.safe_float(values.quantile(0.25)),
                    "q75": StatsUtils.safe_float(values.quantile(0.75)),
                    "skewness": skewness,
                    "kurtosis": kurtosis,
                    "histogram": {
                        "counts": hist_counts.tolist(),
                        "bin_edges": hist_edges.tolist(),
                    },
                })
        return results

    def correlation(self, df: pd.DataFrame, deployments: List[Dict]) -> List[Dict]:
        """Correlação de Pearson e regressão linear umidade ~ temperatura"""
        results = []
        for meta, group in deployment_groups(df, deployments):
            temp = group["temperature_f"].dropna().astype(float)
            hum = group["humidity"].dropna().astype(float)
            common = temp.index.intersection(hum.index)
            t, h = temp.loc[common], hum.loc[common]

            n_points = int(len(t))
            if n_points == 0:
                continue

            # Sentinela "sem correlação calculável" (não é erro)
            r, p_value, slope = 0.0, 1.0, 0.0
            intercept = StatsUtils.safe_float(h.mean())

            t_std = StatsUtils.safe_float(t.std()) if n_points > 1 else 0.0
            h_std = StatsUtils.safe_float(h.std()) if n_points > 1 else 0.0
            if n_points >= 3 and t_std > 0 and h_std > 0:
                r_raw, p_raw = stats.pearsonr(t, h)
                model = LinearRegression()
                model.fit(t.to_numpy().reshape(-1, 1), h.to_numpy())
                r = StatsUtils.safe_float(r_raw)
                p_value = StatsUtils.safe_probability(p_raw)
                slope = StatsUtils.safe_float(model.coef_[0])
                intercept = StatsUtils.safe_float(model.intercept_, intercept)

            step = StatsUtils.stride(n_points, SCATTER_MAX_POINTS)
            results.append({
                **meta,
                "pearson_r": r,
                "p_value": p_value,
                "r_squared": StatsUtils.safe_float(r ** 2),
                "regression_slope": slope,
                "regression_intercept": intercept,
                "n_points": n_points,
                "scatter_data": [
                    {"x": StatsUtils.safe_float(x), "y": StatsUtils.safe_float(y)}
                    for x, y in zip(t.to_numpy()[::step], h.to_numpy()[::step])
                ],
            })
        return results

    def hypothesis_test(self, df: pd.DataFrame, deployments: List[Dict]) -> List[Dict]:
        """Teste t de Welch para cada par de deployments e cada métrica"""
        groups = {meta["deployment_id"]: (meta, group) for meta, group in deployment_groups(df, deployments)}
        results = []
        for dep_a, dep_b in combinations(sorted(groups), 2):
            meta_a, group_a = groups[dep_a]
            meta_b, group_b = groups[dep_b]

            for metric, column in METRICS:
                a_vals = group_a[column].dropna().astype(float)
                b_vals = group_b[column].dropna().astype(float)
                if len(a_vals) <= 1 or len(b_vals) <= 1:
                    continue

                mean_a = StatsUtils.safe_float(a_vals.mean())
                mean_b = StatsUtils.safe_float(b_vals.mean())
                std_a = StatsUtils.safe_float(a_vals.std())
                std_b = StatsUtils.safe_float(b_vals.std())

                t_raw, p_raw = stats.ttest_ind(a_vals, b_vals, equal_var=False)
                t_statistic = StatsUtils.safe_float(t_raw)
                p_value = StatsUtils.safe_probability(p_raw)

                # d de Cohen com desvio combinado (média simples das variâncias)
                pooled_std = StatsUtils.safe_float(((std_a ** 2 + std_b ** 2) / 2) ** 0.5)
                effect_size = StatsUtils.safe_float(abs(mean_a - mean_b) / pooled_std) if pooled_std > 0 else 0.0

                results.append({
                    "deployment_a": {"id": dep_a, "name": meta_a["deployment_name"]},
                    "deployment_b": {"id": dep_b, "name": meta_b["deployment_name"]},
                    "metric": metric,
                    "mean_a": mean_a,
                    "mean_b": mean_b,
                    "std_a": std_a,
                    "std_b": std_b,
                    "n_a": int(len(a_vals)),
                    "n_b": int(len(b_vals)),
                    "t_statistic": t_statistic,
                    "p_value": p_value,
                    "significant": bool(p_value < SIGNIFICANCE_LEVEL),
                    "effect_size": effect_size,
                })
        return results

    def seasonal_decomposition(self, df: pd.DataFrame, deployments: List[Dict]) -> List[Dict]:
        """Decompor série em tendência, sazonalidade diária e resíduo"""
        from statsmodels.tsa.seasonal import seasonal_decompose

        results = []
        for meta, group in deployment_groups(df, deployments):
            indexed = group.set_index("created_at").sort_index()

            for metric, column in METRICS:
                regular = StatsUtils.regularize(indexed[column].dropna().astype(float), SEASONAL_FREQ, SEASONAL_MAX_GAP)
                if len(regular) < SEASONAL_PERIOD * 2:
                    continue

                try:
                    decomposition = seasonal_decompose(regular, model="additive", period=SEASONAL_PERIOD)
                except ValueError as e:
                    logger.warning("Seasonal decomposition skipped for deployment %s/%s: %s",
                                   meta["deployment_id"], metric, e)
                    continue

                step = StatsUtils.stride(len(regular), SEASONAL_MAX_POINTS)
                results.append({
                    **meta,
                    "metric": metric,
                    "period_minutes": 15 * SEASONAL_PERIOD,
                    "timestamps": [ts.isoformat() for ts in regular.index[::step]],
                    "observed": _optional_list(decomposition.observed, step),
                    "trend": _optional_list(decomposition.trend, step),
                    "seasonal": _optional_list(decomposition.seasonal, step),
                    "residual": _optional_list(decomposition.resid, step),
                })
        return results


def _optional_list(series, step: int) -> List[Optional[float]]:
    values = np.asarray(series, dtype=float)[::step]
    return [StatsUtils.safe_optional_float(v) for v in values]
