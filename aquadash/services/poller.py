from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Set

from ..alerts import AlertSink, AlertThrottle
from ..charts import ChartResourceManager
from ..errors import EmptyBatch, TransportFailure
from ..ingest.timestamps import TimestampNormalizer, default_normalizer
from ..ingest.windows import DEFAULT_WINDOW_SIZE, ProcessedBatch, process
from ..metrics.registry import MetricRegistry
from ..models import DashboardViewState, MetricDetail
from ..status import classify
from .source import ReadingSource

logger = logging.getLogger(__name__)


def epoch_millis() -> float:
    return time.time() * 1000.0


class PollHandle:
    """Owned handle for one running poll schedule."""

    def __init__(self) -> None:
        self.task: Optional[asyncio.Task[None]] = None
        self.cycle: Optional[asyncio.Task[bool]] = None
        self.stop_event = asyncio.Event()
        self.active = True

    def cancel(self) -> bool:
        if not self.active:
            return False
        self.active = False
        self.stop_event.set()
        if self.task is not None:
            self.task.cancel()
        return True


class PollingOrchestrator:
    """Periodically fetches readings and pushes them through the pipeline.

    A scheduled tick is skipped while the previous fetch of the same handle is
    still running, so a slow endpoint delays updates instead of starving them.
    Each request gets a sequence number and only the most recently issued one
    may update the view state; responses that arrive after their handle was
    stopped are dropped.
    """

    def __init__(
        self,
        source: ReadingSource,
        registry: MetricRegistry,
        charts: ChartResourceManager,
        throttle: AlertThrottle,
        sink: AlertSink,
        state: Optional[DashboardViewState] = None,
        interval_seconds: float = 7.0,
        window_size: int = DEFAULT_WINDOW_SIZE,
        normalizer: TimestampNormalizer = default_normalizer,
        clock: Callable[[], float] = epoch_millis,
    ) -> None:
        self.source = source
        self.registry = registry
        self.charts = charts
        self.throttle = throttle
        self.sink = sink
        self.state = state if state is not None else DashboardViewState()
        self.interval_seconds = interval_seconds
        self.window_size = window_size
        self.normalizer = normalizer
        self.clock = clock
        self._issued_seq = 0
        self._in_flight = 0
        self._cycles: Set[asyncio.Task[bool]] = set()
        self._handle: Optional[PollHandle] = None

    @property
    def handle(self) -> Optional[PollHandle]:
        return self._handle

    def start(self) -> PollHandle:
        if self._handle is not None and self._handle.active:
            return self._handle
        handle = PollHandle()
        handle.task = asyncio.create_task(self._run(handle), name="reading-poller")
        self._handle = handle
        return handle

    async def stop(self, handle: Optional[PollHandle] = None) -> None:
        handle = handle if handle is not None else self._handle
        if handle is None:
            return
        task = handle.task
        if handle.cancel():
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            pending = [cycle for cycle in self._cycles if not cycle.done()]
            for cycle in pending:
                cycle.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            self.state.is_loading = False
        if self._handle is handle:
            self._handle = None

    async def _run(self, handle: PollHandle) -> None:
        while handle.active:
            if handle.cycle is None or handle.cycle.done():
                handle.cycle = self._spawn_cycle(handle)
            else:
                logger.debug("Previous fetch still running, skipping this tick")
            try:
                await asyncio.wait_for(handle.stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    def _spawn_cycle(self, handle: PollHandle) -> asyncio.Task[bool]:
        task = asyncio.create_task(self._cycle(handle))
        self._cycles.add(task)
        task.add_done_callback(self._cycle_done)
        return task

    def _cycle_done(self, task: asyncio.Task[bool]) -> None:
        self._cycles.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Poll cycle crashed", exc_info=task.exception())

    async def poll_once(self) -> bool:
        """Run a single fetch cycle outside of any schedule."""
        return await self._cycle(None)

    def _is_current(self, handle: Optional[PollHandle], seq: int) -> bool:
        if handle is not None and not handle.active:
            return False
        return seq == self._issued_seq

    async def _cycle(self, handle: Optional[PollHandle]) -> bool:
        self._issued_seq += 1
        seq = self._issued_seq
        self._in_flight += 1
        self.state.is_loading = True
        try:
            return await self._fetch_and_apply(handle, seq)
        finally:
            self._in_flight -= 1
            # Clear once the newest request has settled or nothing is outstanding.
            live = handle is None or handle.active
            if live and (seq == self._issued_seq or self._in_flight == 0):
                self.state.is_loading = False

    async def _fetch_and_apply(self, handle: Optional[PollHandle], seq: int) -> bool:
        try:
            raw = await self.source.fetch()
        except TransportFailure as exc:
            logger.warning("Fetch #%d failed: %s", seq, exc)
            if self._is_current(handle, seq):
                self.state.error = str(exc)
            return False

        if not self._is_current(handle, seq):
            logger.debug("Discarding stale response #%d (latest is #%d)", seq, self._issued_seq)
            return False

        try:
            batch = process(raw, self.registry, self.normalizer, self.window_size)
        except EmptyBatch as exc:
            logger.warning("Keeping previous readings: %s", exc)
            return False

        self._apply(batch)
        await self._alert(batch.current_values)
        return True

    def _apply(self, batch: ProcessedBatch) -> None:
        state = self.state
        state.current_values = batch.current_values
        state.windows = batch.windows
        state.latest = batch.latest
        state.error = None
        state.has_loaded = True
        state.is_loading = False
        state.last_updated = datetime.now(timezone.utc)

        open_key = self.charts.open_key
        state.open_metric_key = open_key
        if open_key is not None:
            self.charts.update_if_open(open_key, batch.windows.get(open_key))
        self.charts.update_summary(batch.windows)

    async def _alert(self, values: Dict[str, float]) -> None:
        payload = self.throttle.evaluate(values, self.clock())
        if payload is None:
            return
        try:
            await self.sink.deliver(payload)
        except Exception:
            logger.exception("Alert sink failed to deliver alert %d", payload.id)

    def toggle(self, metric_key: str) -> Optional[str]:
        open_key = self.charts.toggle(metric_key)
        self.state.open_metric_key = open_key
        return open_key

    def open_detail(self, metric_key: str) -> MetricDetail:
        definition = self.registry.get(metric_key)
        window = self.state.windows.get(metric_key)
        current: Optional[float] = self.state.current_values.get(metric_key)
        return MetricDetail(
            metric_id=definition.id,
            title=definition.name,
            unit=definition.unit,
            values=window.values if window is not None else [],
            labels=window.labels if window is not None else [],
            current=current,
            severity=classify(metric_key, current, self.registry) if current is not None else None,
        )
