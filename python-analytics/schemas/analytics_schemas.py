from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Any, Union

from utils.time_window import ensure_utc


class AnalysisKind(str, Enum):
    """Tipos de análise (a ordem de declaração é a ordem de execução)"""
    DESCRIPTIVE = "descriptive"
    CORRELATION = "correlation"
    HYPOTHESIS_TEST = "hypothesis_test"
    SEASONAL_DECOMPOSITION = "seasonal_decomposition"
    FORECASTING = "forecasting"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


class AnalysisRequest(BaseModel):
    """Pedido de análise para um conjunto de deployments"""
    deployment_ids: List[int] = Field(..., min_length=1)
    start: datetime
    end: datetime
    analyses: List[AnalysisKind] = Field(..., min_length=1)

    @field_validator("deployment_ids")
    @classmethod
    def _unique_ids(cls, v: List[int]) -> List[int]:
        # Repetir um id duplicaria as leituras dele
        return list(dict.fromkeys(v))

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def ordered_analyses(self) -> List[AnalysisKind]:
        """Análises pedidas, sem repetição, na ordem fixa de execução"""
        requested = set(self.analyses)
        return [kind for kind in AnalysisKind if kind in requested]


class AnalysisOutcome(BaseModel):
    """Resultado de um tipo de análise: registros OU mensagem de erro"""
    records: Optional[List[Dict[str, Any]]] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, records: List[Dict[str, Any]]) -> "AnalysisOutcome":
        return cls(records=list(records))

    @classmethod
    def failure(cls, message: str) -> "AnalysisOutcome":
        return cls(error=message or "Unknown error")

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_payload(self) -> Union[List[Dict[str, Any]], Dict[str, str]]:
        if self.ok:
            return self.records or []
        return {"error": self.error}


class AnalysisResult(BaseModel):
    """Mapa tipo de análise -> resultado"""
    outcomes: Dict[AnalysisKind, AnalysisOutcome] = Field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {kind.value: outcome.to_payload() for kind, outcome in self.outcomes.items()}

    @property
    def all_empty(self) -> bool:
        """Todas rodaram e nada se qualificou (problema de dados/período)"""
        return bool(self.outcomes) and all(o.ok and not o.records for o in self.outcomes.values())

    @property
    def all_failed(self) -> bool:
        """Todas falharam (problema de sistema)"""
        return bool(self.outcomes) and all(not o.ok for o in self.outcomes.values())


class DeploymentRef(BaseModel):
    id: int
    name: str


class Histogram(BaseModel):
    counts: List[int]
    bin_edges: List[float]


class DescriptiveResult(BaseModel):
    """Estatísticas descritivas por deployment e métrica"""
    deployment_id: int
    deployment_name: str
    location: str
    metric: str
    count: int
    mean: float
    median: float
    std: float
    min: float
    max: float
    q25: float
    q75: float
    skewness: float
    kurtosis: float
    histogram: Histogram


class ScatterPoint(BaseModel):
    x: float
    y: float


class CorrelationResult(BaseModel):
    """Correlação temperatura x umidade e regressão linear"""
    deployment_id: int
    deployment_name: str
    location: str
    pearson_r: float
    p_value: float
    r_squared: float
    regression_slope: float
    regression_intercept: float
    n_points: int
    scatter_data: List[ScatterPoint]


class HypothesisTestResult(BaseModel):
    """Teste t de Welch entre dois deployments"""
    deployment_a: DeploymentRef
    deployment_b: DeploymentRef
    metric: str
    mean_a: float
    mean_b: float
    std_a: float
    std_b: float
    n_a: int
    n_b: int
    t_statistic: float
    p_value: float
    significant: bool
    effect_size: float


class SeasonalResult(BaseModel):
    """Decomposição sazonal aditiva (período diário)"""
    deployment_id: int
    deployment_name: str
    location: str
    metric: str
    period_minutes: int
    timestamps: List[str]
    observed: List[Optional[float]]
    trend: List[Optional[float]]
    seasonal: List[Optional[float]]
    residual: List[Optional[float]]


class ForecastSeries(BaseModel):
    timestamps: List[str]
    values: List[float]


class ModelParams(BaseModel):
    alpha: float
    beta: float
    gamma: float
    aic: float


class ForecastResult(BaseModel):
    """Previsão Holt-Winters de 24h por deployment e métrica"""
    deployment_id: int
    deployment_name: str
    location: str
    metric: str
    forecast_hours: int
    historical: ForecastSeries
    forecast: ForecastSeries
    model_params: ModelParams


class AnalysisErrorPayload(BaseModel):
    error: str


class AnalysisResponse(BaseModel):
    """Schema da resposta de /api/analytics/run (documentação)"""
    descriptive: Optional[Union[List[DescriptiveResult], AnalysisErrorPayload]] = None
    correlation: Optional[Union[List[CorrelationResult], AnalysisErrorPayload]] = None
    hypothesis_test: Optional[Union[List[HypothesisTestResult], AnalysisErrorPayload]] = None
    seasonal_decomposition: Optional[Union[List[SeasonalResult], AnalysisErrorPayload]] = None
    forecasting: Optional[Union[List[ForecastResult], AnalysisErrorPayload]] = None


class DailyForecast(BaseModel):
    """Máxima/mínima prevista para um dia completo"""
    date: str
    day_name: str
    temp_high_f: float
    temp_low_f: float


class HourlyForecast(BaseModel):
    """Ponto horário da previsão de curto prazo"""
    iso: str
    temp_f: float
    hour_label: str
