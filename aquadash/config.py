import logging
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Aqualife Dashboard"
    api_url: str = Field(
        "https://esp32-mongodb-idev3.onrender.com/api/leituras/Dezan",
        description="Endpoint returning the JSON array of raw sensor readings.",
    )
    request_timeout_seconds: float = Field(
        10.0, description="Timeout applied to each reading fetch."
    )
    poll_interval_seconds: float = Field(
        7.0, description="How frequently to poll the reading endpoint."
    )
    window_size: int = Field(
        10, description="Number of trailing samples kept per metric for charting."
    )
    alert_cooldown_minutes: float = Field(
        10.0, description="Minimum time between two alert notifications."
    )
    alert_title: str = "Alerta de qualidade da água"
    alert_sound: Optional[str] = None
    alert_icon: Optional[str] = None
    alert_webhook_url: Optional[str] = Field(
        None, description="When set, alerts are POSTed here instead of only logged."
    )
    chart_close_delay_seconds: float = Field(
        0.5, description="Collapse animation duration before a chart is released."
    )
    chart_open_delay_seconds: float = Field(
        0.05, description="Reflow delay before a newly opened chart is created."
    )
    timestamp_fields: List[str] = ["timestamp", "dataHora", "data_hora"]
    id_field: str = "_id"
    metric_fields: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Per-metric override of the raw field names, e.g. {'turbidity': ['umidade']}.",
    )
    log_level: str = "INFO"

    @field_validator("poll_interval_seconds", "request_timeout_seconds")
    def ensure_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("window_size")
    def ensure_window_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("window_size must be at least 1")
        return value

    @field_validator("log_level")
    def normalise_log_level(cls, value: str) -> str:
        return value.upper()

    @property
    def alert_cooldown_ms(self) -> float:
        return self.alert_cooldown_minutes * 60_000

    class Config:
        env_prefix = "AQUADASH_"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


settings = Settings()
