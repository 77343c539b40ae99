from __future__ import annotations

from enum import IntEnum
from typing import Dict, Mapping

from .metrics.base import SeverityBands
from .metrics.registry import MetricRegistry
from .metrics.water import default_registry


class Severity(IntEnum):
    SAFE = 0
    WARNING = 1
    DANGER = 2

    @property
    def label(self) -> str:
        # CSS class names used by the mobile front-end.
        return {Severity.SAFE: "bom", Severity.WARNING: "atencao", Severity.DANGER: "perigo"}[self]


def _outside(value: float, below: float | None, above: float | None) -> bool:
    return (below is not None and value < below) or (above is not None and value > above)


def classify_bands(bands: SeverityBands, value: float) -> Severity:
    if _outside(value, bands.danger_below, bands.danger_above):
        return Severity.DANGER
    if _outside(value, bands.warning_below, bands.warning_above):
        return Severity.WARNING
    return Severity.SAFE


def classify(
    metric_key: str, value: float, registry: MetricRegistry = default_registry
) -> Severity:
    return classify_bands(registry.get(metric_key).display, value)


def classify_all(
    values: Mapping[str, float], registry: MetricRegistry = default_registry
) -> Dict[str, Severity]:
    return {key: classify(key, value, registry) for key, value in values.items()}
