"""Chronological ordering of reading batches and per-metric rolling windows.

Missing or non-numeric metric fields are coerced to ``0.0``. This keeps parity
with the mobile dashboard, which has always plotted absent readings as zero,
but it means a sensor dropout looks the same as a genuine zero reading.
Each :class:`MetricSample` therefore records whether the raw field actually
carried a number in ``present`` so callers can tell the two apart.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Mapping, Sequence, Tuple

from ..errors import EmptyBatch
from ..metrics.base import MetricDefinition
from ..metrics.registry import MetricRegistry
from ..metrics.water import default_registry
from .timestamps import TimestampNormalizer, default_normalizer

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 10


@dataclass(frozen=True)
class MetricSample:
    metric_key: str
    value: float
    at_instant: float
    present: bool = True


class RollingWindow:
    """Bounded, oldest-first buffer of samples with a parallel label list."""

    def __init__(self, capacity: int = DEFAULT_WINDOW_SIZE) -> None:
        if capacity < 1:
            raise ValueError("RollingWindow capacity must be at least 1")
        self.capacity = capacity
        self._samples: Deque[MetricSample] = deque(maxlen=capacity)
        self._labels: Deque[str] = deque(maxlen=capacity)

    def push(self, sample: MetricSample, label: str) -> None:
        self._samples.append(sample)
        self._labels.append(label)

    @property
    def samples(self) -> List[MetricSample]:
        return list(self._samples)

    @property
    def values(self) -> List[float]:
        return [sample.value for sample in self._samples]

    @property
    def labels(self) -> List[str]:
        return list(self._labels)

    @property
    def latest(self) -> MetricSample | None:
        return self._samples[-1] if self._samples else None

    def __len__(self) -> int:
        return len(self._samples)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "values": self.values,
            "labels": self.labels,
            "present": [sample.present for sample in self._samples],
        }


@dataclass
class ProcessedBatch:
    latest: Mapping[str, Any]
    current_values: Dict[str, float]
    windows: Dict[str, RollingWindow] = field(default_factory=dict)


def coerce_number(value: Any) -> Tuple[float, bool]:
    """Leniently convert a raw field to a float, returning ``(value, present)``."""
    if value is None:
        return 0.0, False
    if isinstance(value, bool):
        return float(value), True
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return 0.0, False
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0, False
        try:
            number = float(text)
        except ValueError:
            return 0.0, False
    else:
        return 0.0, False
    if not math.isfinite(number):
        return 0.0, False
    return number, True


def extract_value(record: Any, definition: MetricDefinition) -> Tuple[float, bool]:
    if not isinstance(record, Mapping):
        return 0.0, False
    for name in definition.field_names:
        if name in record:
            return coerce_number(record[name])
    return 0.0, False


def sort_readings(
    batch: Sequence[Any], normalizer: TimestampNormalizer = default_normalizer
) -> List[Any]:
    # sorted() is stable: readings sharing a timestamp keep their source order.
    return sorted(batch, key=normalizer.normalize)


def process(
    batch: Any,
    registry: MetricRegistry = default_registry,
    normalizer: TimestampNormalizer = default_normalizer,
    window_size: int = DEFAULT_WINDOW_SIZE,
) -> ProcessedBatch:
    if not isinstance(batch, (list, tuple)) or not batch:
        raise EmptyBatch(f"expected a non-empty list of readings, got {type(batch).__name__}")

    ordered = sort_readings(batch, normalizer)
    latest = ordered[-1]
    trailing = ordered[-window_size:]
    labels = [normalizer.label(record) for record in trailing]
    instants = [normalizer.normalize(record) for record in trailing]

    windows: Dict[str, RollingWindow] = {}
    current_values: Dict[str, float] = {}
    for definition in registry.all():
        window = RollingWindow(window_size)
        for record, label, instant in zip(trailing, labels, instants):
            value, present = extract_value(record, definition)
            window.push(MetricSample(definition.id, value, instant, present), label)
        windows[definition.id] = window
        current_values[definition.id] = extract_value(latest, definition)[0]

    logger.debug(
        "Processed %d readings into %d windows of up to %d samples",
        len(ordered),
        len(windows),
        window_size,
    )
    return ProcessedBatch(
        latest=latest if isinstance(latest, Mapping) else {},
        current_values=current_values,
        windows=windows,
    )
