import logging
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from schemas.analytics_schemas import AnalysisRequest, AnalysisResponse
from services.analysis_runner import AnalysisRunner
from services.exceptions import BootstrapError, FetchError
from services.runtime import ComputeRuntime, RuntimeStatus
from utils.stats_utils import StatsUtils

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["Analytics"])

analysis_runner = AnalysisRunner()


def get_runtime(request: Request) -> ComputeRuntime:
    return request.app.state.runtime


def get_analysis_runner() -> AnalysisRunner:
    return analysis_runner


@router.post(
    "/run",
    response_model=AnalysisResponse,
    responses={200: {"model": AnalysisResponse}}
)
async def run_analyses(
    payload: AnalysisRequest,
    runtime: ComputeRuntime = Depends(get_runtime),
    runner: AnalysisRunner = Depends(get_analysis_runner)
):
    """
    Executar análises estatísticas sobre um ou mais deployments

    - **deployment_ids**: IDs dos deployments
    - **start** / **end**: janela de tempo (ISO 8601)
    - **analyses**: descriptive, correlation, hypothesis_test,
      seasonal_decomposition, forecasting

    Cada análise retorna uma lista de registros ou `{"error": ...}`.
    """
    try:
        handle = await runtime.acquire()
        result = await runner.run_analyses(handle, payload)
    except BootstrapError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except FetchError as e:
        raise HTTPException(status_code=502, detail=str(e))

    if result.all_failed:
        logger.warning("All analyses failed for deployments %s", payload.deployment_ids)
    elif result.all_empty:
        logger.info("No analysis produced results for deployments %s", payload.deployment_ids)

    # Serialização estrita: falha alto se algum valor não finito escapar
    return Response(content=StatsUtils.dumps_json_safe(result.to_payload()), media_type="application/json")


@router.get("/runtime", response_model=RuntimeStatus)
async def get_runtime_status(runtime: ComputeRuntime = Depends(get_runtime)):
    """Estado atual do runtime de cálculo"""
    return runtime.status
