import asyncio
from typing import Any, List
from unittest.mock import AsyncMock

import pytest

from aquadash.alerts import AlertState, AlertThrottle
from aquadash.charts import SUMMARY_KEY, ChartResourceManager, ChartSurface
from aquadash.errors import TransportFailure
from aquadash.models import DashboardViewState
from aquadash.services.poller import PollHandle, PollingOrchestrator
from aquadash.services.source import ReadingSource
from aquadash.status import Severity

from .conftest import make_reading, make_series

T = 1_700_000_000_000.0


class ScriptedSource(ReadingSource):
    """Returns queued responses; exceptions in the queue are raised."""

    def __init__(self, *responses: Any) -> None:
        self.responses: List[Any] = list(responses)
        self.calls = 0

    async def fetch(self) -> Any:
        self.calls += 1
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class GatedSource(ReadingSource):
    """Each fetch waits until the test releases its gate."""

    def __init__(self) -> None:
        self.gates: List[asyncio.Future] = []

    async def fetch(self) -> Any:
        gate = asyncio.get_running_loop().create_future()
        self.gates.append(gate)
        return await gate


class SlowSource(ReadingSource):
    """Answers every fetch with the same batch after ``delay`` seconds."""

    def __init__(self, response: Any, delay: float) -> None:
        self.response = response
        self.delay = delay
        self.running = 0
        self.max_concurrent = 0

    async def fetch(self) -> Any:
        self.running += 1
        self.max_concurrent = max(self.max_concurrent, self.running)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.running -= 1
        return self.response


class Clock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def sink():
    return AsyncMock()


@pytest.fixture
def clock():
    return Clock(T)


def build(registry, source, sink, clock, interval=0.02):
    state = DashboardViewState()
    charts = ChartResourceManager(
        registry,
        ChartSurface([*registry.keys(), SUMMARY_KEY]),
        window_provider=lambda key: state.windows.get(key),
        close_delay=0.02,
        open_delay=0.01,
    )
    return PollingOrchestrator(
        source=source,
        registry=registry,
        charts=charts,
        throttle=AlertThrottle(registry, state=AlertState()),
        sink=sink,
        state=state,
        interval_seconds=interval,
        clock=clock,
    )


@pytest.mark.asyncio
async def test_successful_cycle_updates_state(registry, sink, clock):
    orchestrator = build(registry, ScriptedSource(make_series(15)), sink, clock)
    assert orchestrator.state.show_spinner

    assert await orchestrator.poll_once()

    state = orchestrator.state
    assert not state.is_loading
    assert state.has_loaded
    assert not state.show_spinner
    assert state.current_values["pH"] == 14.0
    assert len(state.windows["pH"]) == 10
    assert orchestrator.charts.get(SUMMARY_KEY).series("pH")[-1] == 14.0
    assert state.to_dict(registry)["severities"]["turbidity"] == "bom"


@pytest.mark.asyncio
async def test_transport_failure_keeps_last_good_state(registry, sink, clock):
    source = ScriptedSource(make_series(3), TransportFailure("boom"))
    orchestrator = build(registry, source, sink, clock)
    await orchestrator.poll_once()

    assert not await orchestrator.poll_once()
    state = orchestrator.state
    assert not state.is_loading
    assert state.error == "boom"
    assert state.current_values["pH"] == 2.0


@pytest.mark.asyncio
async def test_empty_batch_keeps_last_good_state(registry, sink, clock):
    orchestrator = build(registry, ScriptedSource(make_series(3), []), sink, clock)
    await orchestrator.poll_once()
    windows = orchestrator.state.windows

    assert not await orchestrator.poll_once()
    assert orchestrator.state.windows is windows
    assert not orchestrator.state.is_loading


@pytest.mark.asyncio
async def test_alerts_are_throttled_across_polls(registry, sink, clock):
    breaching = [make_reading("01/01/2024, 09:00:00", ph=5.0)]
    orchestrator = build(registry, ScriptedSource(breaching), sink, clock)

    await orchestrator.poll_once()
    clock.now = T + 5 * 60_000
    await orchestrator.poll_once()
    assert sink.deliver.await_count == 1

    clock.now = T + 11 * 60_000
    await orchestrator.poll_once()
    assert sink.deliver.await_count == 2
    payload = sink.deliver.await_args.args[0]
    assert payload.scheduled_at == clock.now + 1000


@pytest.mark.asyncio
async def test_sink_failure_does_not_break_cycle(registry, clock):
    sink = AsyncMock()
    sink.deliver.side_effect = RuntimeError("no permission")
    breaching = [make_reading("01/01/2024, 09:00:00", turbidity=9.0)]
    orchestrator = build(registry, ScriptedSource(breaching), sink, clock)
    assert await orchestrator.poll_once()
    assert orchestrator.state.current_values["turbidity"] == 9.0


@pytest.mark.asyncio
async def test_stale_response_is_discarded(registry, sink, clock):
    source = GatedSource()
    orchestrator = build(registry, source, sink, clock)

    slow = asyncio.create_task(orchestrator.poll_once())
    await asyncio.sleep(0)
    fast = asyncio.create_task(orchestrator.poll_once())
    await asyncio.sleep(0)

    source.gates[1].set_result([make_reading("01/01/2024, 10:00:00", ph=7.4)])
    assert await fast
    source.gates[0].set_result([make_reading("01/01/2024, 09:00:00", ph=6.0)])
    assert not await slow

    assert orchestrator.state.current_values["pH"] == 7.4


@pytest.mark.asyncio
async def test_start_polls_immediately_then_periodically(registry, sink, clock):
    source = ScriptedSource(make_series(2))
    orchestrator = build(registry, source, sink, clock, interval=0.02)

    handle = orchestrator.start()
    assert orchestrator.start() is handle
    await asyncio.sleep(0.07)
    await orchestrator.stop(handle)

    calls = source.calls
    assert calls >= 2
    await asyncio.sleep(0.05)
    assert source.calls == calls
    assert orchestrator.state.has_loaded


@pytest.mark.asyncio
async def test_stop_is_idempotent(registry, sink, clock):
    orchestrator = build(registry, ScriptedSource(make_series(1)), sink, clock)
    handle = orchestrator.start()
    await orchestrator.stop(handle)
    await orchestrator.stop(handle)
    await orchestrator.stop()
    assert not handle.active
    assert orchestrator.handle is None


@pytest.mark.asyncio
async def test_stop_cancels_in_flight_fetch(registry, sink, clock):
    source = GatedSource()
    orchestrator = build(registry, source, sink, clock, interval=10)
    handle = orchestrator.start()
    await asyncio.sleep(0.01)
    assert orchestrator.state.is_loading

    await orchestrator.stop(handle)

    assert source.gates[0].cancelled()
    assert not orchestrator.state.is_loading
    assert not orchestrator.state.has_loaded
    assert orchestrator.state.current_values == {}


@pytest.mark.asyncio
async def test_late_result_of_stopped_handle_is_dropped(registry, sink, clock):
    source = GatedSource()
    orchestrator = build(registry, source, sink, clock, interval=10)
    handle = PollHandle()
    cycle = asyncio.create_task(orchestrator._cycle(handle))
    await asyncio.sleep(0)
    handle.cancel()

    source.gates[0].set_result(make_series(3))
    assert not await cycle
    assert not orchestrator.state.has_loaded


@pytest.mark.asyncio
async def test_endpoint_slower_than_interval_still_updates(registry, sink, clock):
    source = SlowSource(make_series(4), delay=0.05)
    orchestrator = build(registry, source, sink, clock, interval=0.02)
    handle = orchestrator.start()
    await asyncio.sleep(0.3)
    await orchestrator.stop(handle)

    assert orchestrator.state.has_loaded
    assert not orchestrator.state.is_loading
    assert orchestrator.state.current_values["pH"] == 3.0
    # Ticks that land on a running fetch are skipped rather than stacked.
    assert source.max_concurrent == 1


@pytest.mark.asyncio
async def test_open_chart_follows_new_data(registry, sink, clock):
    source = ScriptedSource(make_series(3), make_series(5))
    orchestrator = build(registry, source, sink, clock)
    await orchestrator.poll_once()

    assert orchestrator.toggle("pH") == "pH"
    assert orchestrator.state.open_metric_key == "pH"
    await asyncio.sleep(0.03)
    handle = orchestrator.charts.get("pH")
    assert handle.series("pH") == [0.0, 1.0, 2.0]

    await orchestrator.poll_once()
    assert orchestrator.charts.get("pH") is handle
    assert handle.series("pH") == [0.0, 1.0, 2.0, 3.0, 4.0]

    assert orchestrator.toggle("pH") is None
    assert orchestrator.state.open_metric_key is None
    await orchestrator.charts.aclose()


@pytest.mark.asyncio
async def test_open_detail_snapshot(registry, sink, clock):
    orchestrator = build(registry, ScriptedSource([make_reading("01/01/2024, 09:00:00", ph=6.8)]), sink, clock)
    empty = orchestrator.open_detail("pH")
    assert empty.values == [] and empty.severity is None

    await orchestrator.poll_once()
    detail = orchestrator.open_detail("pH")
    assert detail.values == [6.8]
    assert detail.labels == ["01/01 09:00"]
    assert detail.severity == Severity.WARNING
    assert detail.to_dict()["severity"] == "atencao"

    with pytest.raises(KeyError):
        orchestrator.open_detail("oxygen")
