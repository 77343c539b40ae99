"""Lifecycle of the per-metric chart resources shown in the detail view.

One :class:`ChartHandle` exists per key at most. Handles are created through
:meth:`ChartResourceManager.acquire` and destroyed through
:meth:`ChartResourceManager.release`; every other path goes through those two.
Creation and teardown triggered by :meth:`ChartResourceManager.toggle` are
deferred with asyncio tasks, and any pending task for a key is cancelled
before new work for the same key is scheduled.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from .errors import ResourceNotReady, ResourceReleased
from .ingest.windows import RollingWindow
from .metrics.base import MetricDefinition
from .metrics.registry import MetricRegistry

logger = logging.getLogger(__name__)

SUMMARY_KEY = "summary"
CLOSE_DELAY_SECONDS = 0.5
OPEN_DELAY_SECONDS = 0.05

WindowProvider = Callable[[str], Optional[RollingWindow]]


class ChartSurface:
    """Canvas slots the front-end has mounted, keyed by chart key."""

    def __init__(self, slots: Iterable[str] = ()) -> None:
        self._attached: Set[str] = set(slots)

    def attach(self, key: str) -> None:
        self._attached.add(key)

    def detach(self, key: str) -> None:
        self._attached.discard(key)

    def is_attached(self, key: str) -> bool:
        return key in self._attached


def _dataset(definition: MetricDefinition) -> Dict[str, Any]:
    return {
        "id": definition.id,
        "label": definition.name,
        "data": [],
        "fill": True,
        "backgroundColor": definition.chart.background_color,
        "borderColor": definition.chart.border_color,
        "borderWidth": 2,
        "tension": 0.3,
    }


class ChartHandle:
    """A live Chart.js-style line chart bound to one key."""

    def __init__(self, key: str, definitions: Sequence[MetricDefinition]) -> None:
        self.key = key
        self.revision = 0
        self._destroyed = False
        self.config: Dict[str, Any] = {
            "type": "line",
            "data": {
                "labels": [],
                "datasets": [_dataset(definition) for definition in definitions],
            },
            "options": {
                "animation": False,
                "responsive": True,
                "maintainAspectRatio": False,
                "scales": {"y": {"beginAtZero": False}},
            },
        }

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def labels(self) -> List[str]:
        return self.config["data"]["labels"]

    def series(self, metric_id: str) -> List[float]:
        for dataset in self.config["data"]["datasets"]:
            if dataset["id"] == metric_id:
                return dataset["data"]
        raise KeyError(metric_id)

    def _ensure_live(self) -> None:
        if self._destroyed:
            raise ResourceReleased(f"chart '{self.key}' has been destroyed")

    def replace_data(self, windows: Mapping[str, RollingWindow]) -> None:
        self._ensure_live()
        labels: List[str] = []
        for dataset in self.config["data"]["datasets"]:
            window = windows.get(dataset["id"])
            if window is None:
                continue
            dataset["data"] = window.values
            if not labels:
                labels = window.labels
        self.config["data"]["labels"] = labels

    def update(self) -> None:
        self._ensure_live()
        self.revision += 1

    def destroy(self) -> None:
        self._destroyed = True
        for dataset in self.config["data"]["datasets"]:
            dataset["data"] = []
        self.config["data"]["labels"] = []

    def to_dict(self) -> Dict[str, Any]:
        self._ensure_live()
        return {"key": self.key, "revision": self.revision, "config": copy.deepcopy(self.config)}


class ChartResourceManager:
    def __init__(
        self,
        registry: MetricRegistry,
        surface: ChartSurface,
        window_provider: WindowProvider,
        close_delay: float = CLOSE_DELAY_SECONDS,
        open_delay: float = OPEN_DELAY_SECONDS,
    ) -> None:
        self.registry = registry
        self.surface = surface
        self.window_provider = window_provider
        self.close_delay = close_delay
        self.open_delay = open_delay
        self._handles: Dict[str, ChartHandle] = {}
        self._pending: Dict[str, asyncio.Task[None]] = {}
        self._open_key: Optional[str] = None

    @property
    def open_key(self) -> Optional[str]:
        return self._open_key

    @property
    def live_keys(self) -> List[str]:
        return sorted(self._handles)

    def get(self, key: str) -> Optional[ChartHandle]:
        return self._handles.get(key)

    def has_pending(self, key: str) -> bool:
        task = self._pending.get(key)
        return task is not None and not task.done()

    def _definitions_for(self, key: str) -> List[MetricDefinition]:
        if key == SUMMARY_KEY:
            return list(self.registry.all())
        return [self.registry.get(key)]

    def _windows_for(self, definitions: Sequence[MetricDefinition]) -> Dict[str, RollingWindow]:
        windows = {}
        for definition in definitions:
            window = self.window_provider(definition.id)
            if window is not None:
                windows[definition.id] = window
        return windows

    def acquire(
        self, key: str, windows: Optional[Mapping[str, RollingWindow]] = None
    ) -> Optional[ChartHandle]:
        """Create the chart for ``key``, replacing any live one."""
        definitions = self._definitions_for(key)
        if not self.surface.is_attached(key):
            logger.warning("%s", ResourceNotReady(f"canvas for chart '{key}' is not attached"))
            return None
        self.release(key)
        handle = ChartHandle(key, definitions)
        handle.replace_data(windows if windows is not None else self._windows_for(definitions))
        handle.update()
        self._handles[key] = handle
        logger.debug("Created chart '%s'", key)
        return handle

    def release(self, key: str) -> bool:
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.destroy()
        logger.debug("Released chart '%s'", key)
        return True

    def _cancel_pending(self, key: str) -> None:
        task = self._pending.pop(key, None)
        if task is not None and not task.done():
            task.cancel()

    def _schedule(self, key: str, delay: float, action: Callable[[str], Any]) -> None:
        self._cancel_pending(key)
        loop = asyncio.get_running_loop()
        self._pending[key] = loop.create_task(
            self._deferred(key, delay, action), name=f"chart-{key}"
        )

    async def _deferred(self, key: str, delay: float, action: Callable[[str], Any]) -> None:
        try:
            await asyncio.sleep(delay)
            action(key)
        finally:
            if self._pending.get(key) is asyncio.current_task():
                del self._pending[key]

    def _create_if_open(self, key: str) -> None:
        if self._open_key == key:
            self.acquire(key)

    def toggle(self, key: str) -> Optional[str]:
        """Open or collapse the detail chart for ``key``; returns the open key."""
        self.registry.get(key)
        current = self._open_key

        if current == key:
            self._open_key = None
            self._schedule(key, self.close_delay, self.release)
            return None

        if current is not None:
            self._cancel_pending(current)
            self.release(current)

        # A teardown still pending for this key is completed now.
        self._cancel_pending(key)
        self.release(key)

        self._open_key = key
        self._schedule(key, self.open_delay, self._create_if_open)
        return key

    def update_if_open(self, key: Optional[str], window: Optional[RollingWindow]) -> bool:
        if key is None or key != self._open_key or window is None:
            return False
        handle = self._handles.get(key)
        if handle is None:
            return False
        handle.replace_data({key: window})
        handle.update()
        return True

    def update_summary(self, windows: Mapping[str, RollingWindow]) -> Optional[ChartHandle]:
        handle = self._handles.get(SUMMARY_KEY)
        if handle is None:
            return self.acquire(SUMMARY_KEY, windows)
        handle.replace_data(windows)
        handle.update()
        return handle

    async def aclose(self) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for key in list(self._handles):
            self.release(key)
        self._open_key = None
