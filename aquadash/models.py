from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from .ingest.windows import RollingWindow
from .metrics.registry import MetricRegistry
from .status import Severity, classify_all


@dataclass
class DashboardViewState:
    """Everything the presentation layer reads. Only the poller writes it."""

    is_loading: bool = True
    has_loaded: bool = False
    open_metric_key: Optional[str] = None
    current_values: Dict[str, float] = field(default_factory=dict)
    windows: Dict[str, RollingWindow] = field(default_factory=dict)
    latest: Optional[Mapping[str, Any]] = None
    error: Optional[str] = None
    last_updated: Optional[datetime] = None

    @property
    def show_spinner(self) -> bool:
        # Later polls refresh silently instead of flashing the spinner.
        return self.is_loading and not self.has_loaded

    def to_dict(self, registry: MetricRegistry) -> Dict[str, Any]:
        known = {key: value for key, value in self.current_values.items() if key in registry}
        return {
            "is_loading": self.is_loading,
            "show_spinner": self.show_spinner,
            "open_metric_key": self.open_metric_key,
            "current_values": dict(self.current_values),
            "severities": {
                key: severity.label
                for key, severity in classify_all(known, registry).items()
            },
            "windows": {key: window.to_dict() for key, window in self.windows.items()},
            "latest": dict(self.latest) if self.latest is not None else None,
            "error": self.error,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


@dataclass(frozen=True)
class MetricDetail:
    """Static snapshot handed to the metric detail modal."""

    metric_id: str
    title: str
    unit: Optional[str]
    values: List[float]
    labels: List[str]
    current: Optional[float]
    severity: Optional[Severity]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric_id": self.metric_id,
            "title": self.title,
            "unit": self.unit,
            "values": self.values,
            "labels": self.labels,
            "current": self.current,
            "severity": self.severity.label if self.severity is not None else None,
        }
