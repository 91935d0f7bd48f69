"""
Testes do orquestrador de análises e das previsões do dashboard
"""
import asyncio
import json
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from schemas.analytics_schemas import AnalysisKind, AnalysisRequest
from services.analysis_runner import AnalysisRunner
from services.analysis_scripts import ANALYSIS_SCRIPTS
from services.exceptions import AnalysisCancelled, AnalysisError
from services.runtime import RuntimeHandle
from repositories.sensor_repository import SensorRepository
from tests.conftest import T0, FakeCollection


class RecordingScript:
    """Script falso: guarda os payloads recebidos e devolve JSON fixo"""

    def __init__(self, result="[]", error=None):
        self.result = result
        self.error = error
        self.payloads = []
        self.__name__ = "recording_script"

    def __call__(self, readings_json: str, deployments_json: str) -> str:
        self.payloads.append((json.loads(readings_json), json.loads(deployments_json)))
        if self.error:
            raise self.error
        return self.result


class FailingHandle:
    async def execute(self, script, **payloads):
        raise RuntimeError("worker crashed")


@pytest.fixture
def handle():
    runtime_handle = RuntimeHandle(ThreadPoolExecutor(max_workers=1))
    yield runtime_handle
    runtime_handle.shutdown()


@pytest.fixture
def recording_scripts():
    return {kind: RecordingScript() for kind in AnalysisKind}


def _request(*kinds, ids=(1, 2), end=T0 + timedelta(hours=1)):
    return AnalysisRequest(deployment_ids=list(ids), start=T0, end=end, analyses=list(kinds))


def _hourly_buckets(hours: int, device_id: str = "node2"):
    return [
        {
            "bucket_ts": T0 + timedelta(hours=i),
            "device_id": device_id,
            "temperature_avg": 20.0 + 4.0 * ((i % 24) - 12) / 12 + 0.001 * i,
            "humidity_avg": 50.0,
            "reading_count": 4,
        }
        for i in range(hours)
    ]


class TestRunAnalyses:
    """Execução sequencial, isolamento de falhas e escopo dos dados"""

    @pytest.mark.asyncio
    async def test_end_to_end_descriptive(self, handle, sensor_repository, deployment_repository):
        runner = AnalysisRunner(sensor_repository, deployment_repository)
        result = await runner.run_analyses(handle, _request(AnalysisKind.DESCRIPTIVE, AnalysisKind.CORRELATION))

        descriptive = result.outcomes[AnalysisKind.DESCRIPTIVE]
        assert descriptive.ok
        assert {(r["deployment_id"], r["metric"]) for r in descriptive.records} == {
            (1, "temperature"), (1, "humidity"), (2, "temperature"), (2, "humidity")
        }
        assert all(r["count"] == 5 for r in descriptive.records)
        assert result.outcomes[AnalysisKind.CORRELATION].ok

    @pytest.mark.asyncio
    async def test_repeated_ids_fetched_once(self, handle, sensor_repository, deployment_repository):
        runner = AnalysisRunner(sensor_repository, deployment_repository)
        result = await runner.run_analyses(handle, _request(AnalysisKind.DESCRIPTIVE, ids=(1, 1)))
        records = result.outcomes[AnalysisKind.DESCRIPTIVE].records
        assert [r["count"] for r in records] == [5, 5]

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, handle, sensor_repository, deployment_repository, recording_scripts):
        recording_scripts[AnalysisKind.CORRELATION] = RecordingScript(error=ValueError("singular matrix"))
        recording_scripts[AnalysisKind.HYPOTHESIS_TEST] = RecordingScript(result='[{"p_value": 0.5}]')
        runner = AnalysisRunner(sensor_repository, deployment_repository, scripts=recording_scripts)

        result = await runner.run_analyses(handle, _request(
            AnalysisKind.DESCRIPTIVE, AnalysisKind.CORRELATION, AnalysisKind.HYPOTHESIS_TEST
        ))

        assert result.to_payload() == {
            "descriptive": [],
            "correlation": {"error": "singular matrix"},
            "hypothesis_test": [{"p_value": 0.5}],
        }
        assert not result.all_failed
        assert not result.all_empty

    @pytest.mark.asyncio
    async def test_canonical_order_and_progress(self, handle, sensor_repository, deployment_repository, recording_scripts):
        runner = AnalysisRunner(sensor_repository, deployment_repository, scripts=recording_scripts)
        messages = []
        request = _request(
            AnalysisKind.SEASONAL_DECOMPOSITION, AnalysisKind.DESCRIPTIVE, AnalysisKind.DESCRIPTIVE
        )
        result = await runner.run_analyses(handle, request, on_progress=messages.append)

        assert list(result.outcomes) == [AnalysisKind.DESCRIPTIVE, AnalysisKind.SEASONAL_DECOMPOSITION]
        assert messages == [
            "Fetching sensor data...",
            "Running descriptive...",
            "Running seasonal decomposition...",
        ]
        assert len(recording_scripts[AnalysisKind.DESCRIPTIVE].payloads) == 1
        assert result.all_empty

    @pytest.mark.asyncio
    async def test_one_fetch_per_data_shape(self, handle, sensor_repository, deployment_repository, recording_scripts):
        runner = AnalysisRunner(sensor_repository, deployment_repository, scripts=recording_scripts)
        fetch_calls = []
        real_fetch = runner.fetcher.fetch_readings_for_analysis

        async def spy(*args, **kwargs):
            fetch_calls.append(kwargs)
            return await real_fetch(*args, **kwargs)

        runner.fetcher.fetch_readings_for_analysis = spy
        await runner.run_analyses(handle, _request(
            AnalysisKind.DESCRIPTIVE, AnalysisKind.CORRELATION, AnalysisKind.FORECASTING
        ))

        assert len(fetch_calls) == 2
        assert fetch_calls[0]["max_rows"] == 5000
        assert fetch_calls[1]["use_deployment_bounds"] is True
        assert "max_rows" not in fetch_calls[1]

    @pytest.mark.asyncio
    async def test_forecasting_uses_full_deployment_history(
        self, handle, sensor_repository, deployment_repository, recording_scripts
    ):
        runner = AnalysisRunner(sensor_repository, deployment_repository, scripts=recording_scripts)
        await runner.run_analyses(handle, _request(AnalysisKind.DESCRIPTIVE, AnalysisKind.FORECASTING, ids=(2,)))

        [(range_rows, deployments)] = recording_scripts[AnalysisKind.DESCRIPTIVE].payloads
        [(history_rows, _)] = recording_scripts[AnalysisKind.FORECASTING].payloads
        assert len(range_rows) == 5
        assert len(history_rows) == 400
        assert [d["id"] for d in deployments] == [2]
        assert deployments[0]["started_at"].startswith("2026-02-01T00:00:00")

    @pytest.mark.asyncio
    async def test_forecasting_only_skips_capped_fetch(
        self, handle, sensor_repository, deployment_repository, recording_scripts
    ):
        runner = AnalysisRunner(sensor_repository, deployment_repository, scripts=recording_scripts)
        messages = []
        await runner.run_analyses(handle, _request(AnalysisKind.FORECASTING), on_progress=messages.append)
        assert messages[0] == "Fetching full deployment history for forecasting..."
        assert "Fetching sensor data..." not in messages

    @pytest.mark.asyncio
    async def test_non_finite_values_are_sanitized(
        self, handle, sensor_repository, deployment_repository, recording_scripts
    ):
        recording_scripts[AnalysisKind.DESCRIPTIVE] = RecordingScript(result='[{"mean": NaN, "max": Infinity}]')
        runner = AnalysisRunner(sensor_repository, deployment_repository, scripts=recording_scripts)
        result = await runner.run_analyses(handle, _request(AnalysisKind.DESCRIPTIVE))
        assert result.outcomes[AnalysisKind.DESCRIPTIVE].records == [{"mean": 0.0, "max": 0.0}]

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, handle, sensor_repository, deployment_repository, recording_scripts):
        runner = AnalysisRunner(sensor_repository, deployment_repository, scripts=recording_scripts)
        cancel_event = asyncio.Event()
        cancel_event.set()
        with pytest.raises(AnalysisCancelled):
            await runner.run_analyses(handle, _request(AnalysisKind.DESCRIPTIVE), cancel_event=cancel_event)
        assert recording_scripts[AnalysisKind.DESCRIPTIVE].payloads == []

    @pytest.mark.asyncio
    async def test_cancelled_between_analyses(self, handle, sensor_repository, deployment_repository, recording_scripts):
        runner = AnalysisRunner(sensor_repository, deployment_repository, scripts=recording_scripts)
        cancel_event = asyncio.Event()

        def on_progress(message):
            if message == "Running descriptive...":
                cancel_event.set()

        with pytest.raises(AnalysisCancelled):
            await runner.run_analyses(
                handle,
                _request(AnalysisKind.DESCRIPTIVE, AnalysisKind.CORRELATION),
                on_progress=on_progress,
                cancel_event=cancel_event
            )
        # a análise em andamento termina; a próxima não começa
        assert len(recording_scripts[AnalysisKind.DESCRIPTIVE].payloads) == 1
        assert recording_scripts[AnalysisKind.CORRELATION].payloads == []

    def test_default_scripts_cover_every_kind(self):
        assert set(ANALYSIS_SCRIPTS) == set(AnalysisKind)


class TestDashboardForecasts:
    """Previsões horária e diária por dispositivo"""

    @pytest.mark.asyncio
    async def test_hourly_forecast(self, handle, deployment_repository):
        collection = FakeCollection(aggregate_result=_hourly_buckets(24 * 10))
        runner = AnalysisRunner(SensorRepository(deployment_repository, collection=collection), deployment_repository)

        points = await runner.run_hourly_forecast(handle, "node2", now=T0 + timedelta(days=10))

        assert len(points) == 24
        assert points[0].hour_label == "Now"
        assert points[0].iso == (T0 + timedelta(days=10)).isoformat()
        assert points[1].hour_label == "1 AM"
        assert points[13].hour_label == "1 PM"
        assert points[12].hour_label == "12 PM"

        match = collection.pipelines[0][0]["$match"]
        # janela de 10 dias limitada ao início do primeiro deployment
        assert match["created_at"]["$gte"] == T0
        assert collection.pipelines[0][-1] == {"$limit": 12 * 24}

    @pytest.mark.asyncio
    async def test_hourly_requires_48_samples(self, deployment_repository):
        collection = FakeCollection(aggregate_result=_hourly_buckets(47))
        runner = AnalysisRunner(SensorRepository(deployment_repository, collection=collection), deployment_repository)
        assert await runner.run_hourly_forecast(FailingHandle(), "node2", now=T0 + timedelta(days=2)) == []

    @pytest.mark.asyncio
    async def test_unknown_device(self, deployment_repository):
        runner = AnalysisRunner(SensorRepository(deployment_repository, collection=FakeCollection()), deployment_repository)
        assert await runner.run_hourly_forecast(FailingHandle(), "ghost") == []
        assert await runner.run_daily_forecast(FailingHandle(), "ghost") == []

    @pytest.mark.asyncio
    async def test_daily_forecast(self, handle, deployment_repository):
        collection = FakeCollection(aggregate_result=_hourly_buckets(24 * 20))
        runner = AnalysisRunner(SensorRepository(deployment_repository, collection=collection), deployment_repository)

        now = T0 + timedelta(days=20)
        days = await runner.run_daily_forecast(handle, "node2", now=now)

        assert len(days) == 7
        assert days[0].date == "2026-02-21"
        assert days[0].day_name == "Today"
        assert days[1].day_name == "Sun"
        assert all(d.temp_high_f >= d.temp_low_f for d in days)

    @pytest.mark.asyncio
    async def test_failed_fit_is_empty_forecast(self, handle, deployment_repository, broken_holt_winters):
        collection = FakeCollection(aggregate_result=_hourly_buckets(24 * 10))
        runner = AnalysisRunner(SensorRepository(deployment_repository, collection=collection), deployment_repository)
        now = T0 + timedelta(days=10)
        assert await runner.run_hourly_forecast(handle, "node2", now=now) == []
        assert await runner.run_daily_forecast(handle, "node2", now=now) == []

    @pytest.mark.asyncio
    async def test_script_failure_raises(self, deployment_repository):
        collection = FakeCollection(aggregate_result=_hourly_buckets(72))
        runner = AnalysisRunner(SensorRepository(deployment_repository, collection=collection), deployment_repository)
        with pytest.raises(AnalysisError, match="worker crashed"):
            await runner.run_hourly_forecast(FailingHandle(), "node2", now=T0 + timedelta(days=3))
        with pytest.raises(AnalysisError):
            await runner.run_daily_forecast(FailingHandle(), "node2", now=T0 + timedelta(days=3))
