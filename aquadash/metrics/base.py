from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True)
class SeverityBands:
    """Display thresholds for a metric. All comparisons are strict."""

    danger_below: Optional[float] = None
    danger_above: Optional[float] = None
    warning_below: Optional[float] = None
    warning_above: Optional[float] = None


@dataclass(frozen=True)
class AlertRule:
    """Notification thresholds, kept apart from the display bands."""

    below: Optional[float] = None
    above: Optional[float] = None
    message: str = "{name} fora da faixa: {value:.2f}"

    def breached(self, value: float) -> bool:
        if self.below is not None and value < self.below:
            return True
        if self.above is not None and value > self.above:
            return True
        return False


@dataclass(frozen=True)
class ChartStyle:
    """Colours used when the metric is drawn on a chart."""

    border_color: str = "#00796b"
    background_color: str = "rgba(0, 121, 107, 0.2)"


@dataclass(frozen=True)
class MetricDefinition:
    """Declarative description of one water-quality metric."""

    id: str
    name: str
    description: str
    field_names: Tuple[str, ...]
    unit: Optional[str] = None
    display: SeverityBands = field(default_factory=SeverityBands)
    alert: AlertRule = field(default_factory=AlertRule)
    chart: ChartStyle = field(default_factory=ChartStyle)
