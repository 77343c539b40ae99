from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Dict, List

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import RedirectResponse

from .alerts import AlertSink, AlertThrottle, LoggingAlertSink, WebhookAlertSink, alert_state
from .charts import SUMMARY_KEY, ChartResourceManager, ChartSurface
from .config import Settings, configure_logging, settings
from .ingest.timestamps import TimestampNormalizer
from .metrics.registry import MetricRegistry
from .metrics.water import DEFAULT_METRICS
from .models import DashboardViewState
from .services.poller import PollingOrchestrator
from .services.source import HttpReadingSource

logger = logging.getLogger(__name__)


def build_sink(config: Settings) -> AlertSink:
    if config.alert_webhook_url:
        return WebhookAlertSink(config.alert_webhook_url, timeout=config.request_timeout_seconds)
    return LoggingAlertSink()


registry = MetricRegistry(DEFAULT_METRICS).with_field_overrides(settings.metric_fields)
state = DashboardViewState()
surface = ChartSurface([*registry.keys(), SUMMARY_KEY])
charts = ChartResourceManager(
    registry=registry,
    surface=surface,
    window_provider=lambda key: state.windows.get(key),
    close_delay=settings.chart_close_delay_seconds,
    open_delay=settings.chart_open_delay_seconds,
)
orchestrator = PollingOrchestrator(
    source=HttpReadingSource(settings.api_url, timeout=settings.request_timeout_seconds),
    registry=registry,
    charts=charts,
    throttle=AlertThrottle(
        registry,
        cooldown_ms=settings.alert_cooldown_ms,
        state=alert_state,
        title=settings.alert_title,
        sound=settings.alert_sound,
        icon=settings.alert_icon,
    ),
    sink=build_sink(settings),
    state=state,
    interval_seconds=settings.poll_interval_seconds,
    window_size=settings.window_size,
    normalizer=TimestampNormalizer(settings.timestamp_fields, settings.id_field),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    handle = orchestrator.start()
    logger.info("Polling %s every %ss", settings.api_url, settings.poll_interval_seconds)
    try:
        yield
    finally:
        await orchestrator.stop(handle)
        await charts.aclose()


app = FastAPI(title=settings.app_name, lifespan=lifespan)


def get_registry() -> MetricRegistry:
    return registry


def get_orchestrator() -> PollingOrchestrator:
    return orchestrator


def get_charts() -> ChartResourceManager:
    return charts


@app.get("/", include_in_schema=False)
async def root_redirect() -> RedirectResponse:
    return RedirectResponse("/api/state")


@app.get("/api/state")
async def read_state(
    orchestrator: PollingOrchestrator = Depends(get_orchestrator),
    registry: MetricRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    return orchestrator.state.to_dict(registry)


@app.get("/api/metrics")
async def read_metrics(registry: MetricRegistry = Depends(get_registry)) -> List[Dict[str, Any]]:
    return [asdict(definition) for definition in registry.all()]


@app.get("/api/metrics/{metric_id}")
async def read_metric_detail(
    metric_id: str,
    orchestrator: PollingOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    try:
        detail = orchestrator.open_detail(metric_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return detail.to_dict()


@app.post("/api/metrics/{metric_id}/toggle")
async def toggle_metric(
    metric_id: str,
    orchestrator: PollingOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    try:
        open_key = orchestrator.toggle(metric_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"open_metric_key": open_key}


@app.get("/api/charts/{key}")
async def read_chart(
    key: str,
    charts: ChartResourceManager = Depends(get_charts),
) -> Dict[str, Any]:
    handle = charts.get(key)
    if handle is None:
        raise HTTPException(status_code=404, detail=f"No live chart for '{key}'.")
    return handle.to_dict()
