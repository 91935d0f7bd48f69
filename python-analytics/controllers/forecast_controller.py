from typing import List
from fastapi import APIRouter, Depends, HTTPException
from controllers.analytics_controller import get_analysis_runner, get_runtime
from schemas.analytics_schemas import DailyForecast, HourlyForecast
from services.analysis_runner import AnalysisRunner
from services.exceptions import AnalysisError, BootstrapError, FetchError
from services.runtime import ComputeRuntime


router = APIRouter(prefix="/api/forecast", tags=["Forecast"])


@router.get("/daily/{device_id}", response_model=List[DailyForecast])
async def daily_forecast(
    device_id: str,
    runtime: ComputeRuntime = Depends(get_runtime),
    runner: AnalysisRunner = Depends(get_analysis_runner)
):
    """
    Previsão de máxima/mínima para os próximos dias (Holt-Winters)

    - **device_id**: ID do dispositivo

    Lista vazia quando não há histórico suficiente; nunca inclui dia parcial.
    """
    try:
        handle = await runtime.acquire()
        return await runner.run_daily_forecast(handle, device_id)
    except BootstrapError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except FetchError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except AnalysisError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/hourly/{device_id}", response_model=List[HourlyForecast])
async def hourly_forecast(
    device_id: str,
    runtime: ComputeRuntime = Depends(get_runtime),
    runner: AnalysisRunner = Depends(get_analysis_runner)
):
    """
    Previsão horária das próximas 24h

    - **device_id**: ID do dispositivo

    Requer pelo menos 48h de histórico.
    """
    try:
        handle = await runtime.acquire()
        return await runner.run_hourly_forecast(handle, device_id)
    except BootstrapError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except FetchError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except AnalysisError as e:
        raise HTTPException(status_code=500, detail=str(e))
