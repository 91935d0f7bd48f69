import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from config.database import Database
from config.logging_config import setup_logging
from config.settings import Settings
from controllers.analytics_controller import router as analytics_router
from controllers.forecast_controller import router as forecast_router
from services.exceptions import BootstrapError
from services.runtime import ComputeRuntime

logger = logging.getLogger(__name__)


async def _warm_up(runtime: ComputeRuntime) -> None:
    try:
        await runtime.acquire()
    except BootstrapError as e:
        # A próxima requisição tenta carregar de novo
        logger.error("Runtime warm-up failed: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Gerenciar lifecycle da aplicação"""
    # Startup
    setup_logging(Settings.LOG_LEVEL, Settings.LOG_FILE or None)
    logger.info("🚀 Starting sensor analytics API...")
    await Database.connect_db()

    app.state.runtime = ComputeRuntime()
    warmup_task = None
    if Settings.RUNTIME_WARMUP:
        warmup_task = asyncio.create_task(_warm_up(app.state.runtime))

    logger.info("✅ API ready")

    yield

    # Shutdown
    logger.info("🔌 Shutting down...")
    if warmup_task and not warmup_task.done():
        warmup_task.cancel()
    app.state.runtime.close()
    await Database.close_db()
    logger.info("👋 API stopped")


app = FastAPI(
    title="Sensor Analytics API",
    description="Análises estatísticas e previsões de temperatura/umidade por deployment",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Em produção, especifique os domínios permitidos
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(analytics_router)
app.include_router(forecast_router)


@app.get("/")
async def root():
    """Endpoint raiz"""
    return {
        "message": "Sensor Analytics API",
        "version": "1.0.0",
        "status": "online",
        "endpoints": {
            "docs": "/docs",
            "analytics": "/api/analytics",
            "forecast": "/api/forecast"
        }
    }


@app.get("/health")
async def health_check(request: Request):
    """Verificar saúde da API"""
    runtime_stage = request.app.state.runtime.status.stage.value
    try:
        db = Database.get_database()
        await db.command("ping")

        return {
            "status": "healthy",
            "database": "connected",
            "runtime": runtime_stage,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    except Exception as e:
        logger.warning("Health check failed: %s", e)
        return {
            "status": "unhealthy",
            "runtime": runtime_stage,
            "error": str(e)
        }


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=True,
        log_level="info"
    )
