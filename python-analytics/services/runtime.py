import asyncio
import functools
import importlib
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence

from pydantic import BaseModel

from config.settings import Settings
from services.exceptions import BootstrapError

logger = logging.getLogger(__name__)

REQUIRED_LIBRARIES = (
    "numpy",
    "pandas",
    "scipy.stats",
    "sklearn.linear_model",
    "statsmodels.tsa.seasonal",
    "statsmodels.tsa.holtwinters",
)


class RuntimeStage(str, Enum):
    IDLE = "idle"
    LOADING_RUNTIME = "loading-runtime"
    LOADING_LIBRARIES = "loading-libraries"
    READY = "ready"
    ERROR = "error"


class RuntimeStatus(BaseModel):
    stage: RuntimeStage
    message: str


ProgressCallback = Callable[[RuntimeStatus], Any]


class RuntimeHandle:
    """
    Contexto de cálculo pronto para uso

    Todos os scripts rodam na mesma thread dedicada, um de cada vez.
    A troca de dados é só por strings JSON: entram como argumentos nomeados,
    o resultado volta como retorno do script.
    """

    def __init__(self, executor: ThreadPoolExecutor):
        self._executor = executor
        self._lock = asyncio.Lock()

    async def execute(self, script: Callable[..., str], **payloads: str) -> str:
        async with self._lock:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, functools.partial(script, **payloads))

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


def _start_worker() -> str:
    return threading.current_thread().name


class ComputeRuntime:
    """
    Carrega (uma única vez por processo) o runtime de cálculo

    Estados: idle -> loading-runtime -> loading-libraries -> ready, com
    error alcançável a partir das etapas de carga. Chamadas concorrentes
    durante a carga compartilham a mesma tentativa; uma tentativa que falha
    limpa o estado e a próxima chamada recomeça do zero.
    """

    def __init__(
        self,
        libraries: Sequence[str] = REQUIRED_LIBRARIES,
        resource_timeout: Optional[float] = None,
        overall_timeout: Optional[float] = None,
        importer: Callable[[str], Any] = importlib.import_module
    ):
        self.libraries = tuple(libraries)
        self.resource_timeout = resource_timeout or Settings.RUNTIME_RESOURCE_TIMEOUT
        self.overall_timeout = overall_timeout or Settings.RUNTIME_OVERALL_TIMEOUT
        self._importer = importer
        self._handle: Optional[RuntimeHandle] = None
        self._loading: Optional[asyncio.Future] = None
        self._observers: List[ProgressCallback] = []
        self._status = RuntimeStatus(stage=RuntimeStage.IDLE, message="Runtime not loaded")

    @property
    def status(self) -> RuntimeStatus:
        return self._status

    @property
    def is_ready(self) -> bool:
        return self._handle is not None

    def subscribe(self, callback: ProgressCallback) -> None:
        self._observers.append(callback)

    def unsubscribe(self, callback: ProgressCallback) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    def _notify(self, stage: RuntimeStage, message: str) -> None:
        self._status = RuntimeStatus(stage=stage, message=message)
        logger.info("Runtime %s: %s", stage.value, message)
        for callback in list(self._observers):
            try:
                callback(self._status)
            except Exception:
                logger.exception("Runtime progress observer failed")

    async def acquire(self, on_progress: Optional[ProgressCallback] = None) -> RuntimeHandle:
        """Obter o runtime pronto, carregando-o se necessário"""
        if on_progress:
            self.subscribe(on_progress)
        try:
            if self._handle is not None:
                self._notify(RuntimeStage.READY, "Python ready")
                return self._handle

            if self._loading is None:
                self._loading = asyncio.ensure_future(self._load_with_timeout())

            # shield: um chamador cancelado não derruba a carga dos demais
            return await asyncio.shield(self._loading)
        finally:
            if on_progress:
                self.unsubscribe(on_progress)

    async def _load_with_timeout(self) -> RuntimeHandle:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="compute-runtime")
        try:
            handle = await asyncio.wait_for(self._load(executor), timeout=self.overall_timeout)
        except asyncio.TimeoutError:
            self._fail(executor, f"Runtime loading timed out after {self.overall_timeout:g}s")
            raise BootstrapError(self._status.message)
        except BootstrapError as e:
            self._fail(executor, str(e))
            raise
        except Exception as e:
            self._fail(executor, f"Runtime loading failed: {e}")
            raise BootstrapError(self._status.message) from e

        self._handle = handle
        self._loading = None
        self._notify(RuntimeStage.READY, "Python ready")
        return handle

    def _fail(self, executor: ThreadPoolExecutor, message: str) -> None:
        executor.shutdown(wait=False)
        self._loading = None
        self._handle = None
        self._notify(RuntimeStage.ERROR, message)

    async def _load(self, executor: ThreadPoolExecutor) -> RuntimeHandle:
        loop = asyncio.get_running_loop()

        self._notify(RuntimeStage.LOADING_RUNTIME, "Loading Python runtime...")
        await self._step(loop, executor, "runtime worker", _start_worker)

        self._notify(RuntimeStage.LOADING_LIBRARIES, "Loading scientific packages...")
        for name in self.libraries:
            await self._step(loop, executor, name, functools.partial(self._importer, name))

        return RuntimeHandle(executor)

    async def _step(self, loop, executor: ThreadPoolExecutor, resource: str, func: Callable[[], Any]) -> Any:
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(executor, func),
                timeout=self.resource_timeout
            )
        except asyncio.TimeoutError:
            raise BootstrapError(f"Loading {resource} timed out after {self.resource_timeout:g}s")
        except ImportError as e:
            raise BootstrapError(f"Failed to load {resource}: {e}") from e

    def close(self) -> None:
        """Encerrar a thread do runtime (shutdown da aplicação)"""
        if self._handle is not None:
            self._handle.shutdown()
        self._handle = None
        self._loading = None
        self._status = RuntimeStatus(stage=RuntimeStage.IDLE, message="Runtime closed")
