from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import httpx

from .metrics.registry import MetricRegistry

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_MS = 10 * 60 * 1000
SCHEDULE_OFFSET_MS = 1000


@dataclass(frozen=True)
class AlertPayload:
    title: str
    body: str
    id: int
    scheduled_at: float
    sound: Optional[str] = None
    icon: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "title": self.title,
            "body": self.body,
            "id": self.id,
            "scheduledAt": self.scheduled_at,
        }
        if self.sound is not None:
            payload["sound"] = self.sound
        if self.icon is not None:
            payload["icon"] = self.icon
        return payload


@dataclass
class AlertState:
    """Session-wide record of when the last notification went out."""

    last_alert_instant: Optional[float] = None


alert_state = AlertState()


class AlertThrottle:
    """Batches breaching metrics into one alert per global cool-down period.

    The cool-down is shared by every metric: while it is running, a new
    problem on another metric is suppressed as well.
    """

    def __init__(
        self,
        registry: MetricRegistry,
        cooldown_ms: float = DEFAULT_COOLDOWN_MS,
        state: AlertState = alert_state,
        title: str = "Alerta de qualidade da água",
        sound: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> None:
        self.registry = registry
        self.cooldown_ms = cooldown_ms
        self.state = state
        self.title = title
        self.sound = sound
        self.icon = icon
        self._ids = itertools.count(1)

    def in_cooldown(self, now: float) -> bool:
        last = self.state.last_alert_instant
        return last is not None and (now - last) < self.cooldown_ms

    def breaches(self, values: Mapping[str, float]) -> List[str]:
        messages = []
        for definition in self.registry.all():
            if definition.id not in values:
                continue
            value = values[definition.id]
            if definition.alert.breached(value):
                messages.append(
                    definition.alert.message.format(name=definition.name, value=value)
                )
        return messages

    def evaluate(self, values: Mapping[str, float], now: float) -> Optional[AlertPayload]:
        if self.in_cooldown(now):
            return None
        messages = self.breaches(values)
        if not messages:
            return None
        self.state.last_alert_instant = now
        return AlertPayload(
            title=self.title,
            body="\n".join(messages),
            id=next(self._ids),
            scheduled_at=now + SCHEDULE_OFFSET_MS,
            sound=self.sound,
            icon=self.icon,
        )


class AlertSink(ABC):
    """Delivers alert payloads to the user; delivery is entirely its concern."""

    @abstractmethod
    async def deliver(self, payload: AlertPayload) -> None:
        """Hand ``payload`` to the notification channel."""


class LoggingAlertSink(AlertSink):
    async def deliver(self, payload: AlertPayload) -> None:
        logger.warning("ALERT %s: %s", payload.title, payload.body.replace("\n", "; "))


class WebhookAlertSink(AlertSink):
    """POSTs the alert payload as JSON to a notification relay."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def deliver(self, payload: AlertPayload) -> None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(self.url, json=payload.to_dict())
            response.raise_for_status()
