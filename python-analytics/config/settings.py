import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Parâmetros do pipeline de análise lidos do ambiente (.env)"""

    # Busca de leituras
    ANALYSIS_MAX_ROWS: int = int(os.getenv("ANALYSIS_MAX_ROWS", 5000))
    READINGS_PAGE_SIZE: int = int(os.getenv("READINGS_PAGE_SIZE", 1000))

    # Runtime de cálculo (segundos)
    RUNTIME_RESOURCE_TIMEOUT: float = float(os.getenv("RUNTIME_RESOURCE_TIMEOUT", 30))
    RUNTIME_OVERALL_TIMEOUT: float = float(os.getenv("RUNTIME_OVERALL_TIMEOUT", 120))
    RUNTIME_WARMUP: bool = _env_bool("RUNTIME_WARMUP", True)

    # Previsões do dashboard
    HOURLY_LOOKBACK_DAYS: int = int(os.getenv("HOURLY_LOOKBACK_DAYS", 10))
    DAILY_LOOKBACK_DAYS: int = int(os.getenv("DAILY_LOOKBACK_DAYS", 180))
    DAILY_FORECAST_DAYS: int = int(os.getenv("DAILY_FORECAST_DAYS", 7))
    DISPLAY_TIMEZONE: str = os.getenv("DISPLAY_TIMEZONE", "UTC")

    # Logs
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: str = os.getenv("LOG_FILE", "")
