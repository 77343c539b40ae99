from .base import AlertRule, ChartStyle, MetricDefinition, SeverityBands
from .registry import MetricRegistry


PH = MetricDefinition(
    id="pH",
    name="pH",
    description="Acidity of the water column.",
    field_names=("PH", "pH", "ph"),
    display=SeverityBands(
        danger_below=6.5,
        danger_above=8.0,
        warning_below=7.0,
        warning_above=7.6,
    ),
    alert=AlertRule(below=6.0, above=8.5, message="pH crítico: {value:.2f}"),
    chart=ChartStyle(border_color="#D32F2F", background_color="rgba(211, 47, 47, 0.2)"),
)

TURBIDITY = MetricDefinition(
    id="turbidity",
    name="Turbidez",
    description="Suspended particle level.",
    # Older deployments published turbidity under the "umidade" key.
    field_names=("turbidez", "Turbidez", "turbidity", "umidade"),
    unit="NTU",
    display=SeverityBands(danger_above=5.0, warning_above=3.0),
    alert=AlertRule(above=5.0, message="Turbidez elevada: {value:.2f} NTU"),
    chart=ChartStyle(border_color="#F57C00", background_color="rgba(245, 124, 0, 0.2)"),
)


DEFAULT_METRICS = [
    PH,
    TURBIDITY,
]

default_registry = MetricRegistry(DEFAULT_METRICS)
