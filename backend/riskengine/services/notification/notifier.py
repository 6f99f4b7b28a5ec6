"""Alert fan-out to webhook, email and dashboard transports.

send_alert() never raises: each transport runs concurrently and its
failure is logged without affecting the others.
"""

from __future__ import annotations

import asyncio
import smtplib
from collections import deque
from email.message import EmailMessage
from pathlib import Path
from typing import Deque, List, Optional, Protocol, Sequence

import httpx

from riskengine.infrastructure.logging.logging import get_logger
from riskengine.infrastructure.utils.config import EmailConfig, NotificationConfig
from riskengine.models.trade_models import Alert, Severity
from riskengine.services.monitoring.metrics_store import write_json


class NotificationError(RuntimeError):
    """Transport failure; never surfaced past NotificationService.send_alert."""


class AlertSink(Protocol):
    async def send_alert(self, alert: Alert) -> None:
        ...


class AlertTransport(Protocol):
    name: str

    async def deliver(self, alert: Alert) -> None:
        ...


class WebhookTransport:
    name = "webhook"

    def __init__(self, url: Optional[str], *, timeout_sec: float = 5.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.url = url
        self.timeout_sec = timeout_sec
        self._client = client

    async def deliver(self, alert: Alert) -> None:
        if not self.url:
            return
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=alert.to_dict(), timeout=self.timeout_sec)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(self.url, json=alert.to_dict(), timeout=self.timeout_sec)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(f"webhook_failed: {e}") from e


class EmailTransport:
    """Only HIGH alerts are mailed."""

    name = "email"

    def __init__(self, config: EmailConfig) -> None:
        self.config = config

    def _build_message(self, alert: Alert) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = f"[{alert.severity.value}] {alert.type.value}"
        msg["From"] = self.config.sender
        msg["To"] = ", ".join(self.config.recipients)
        msg.set_content(f"{alert.message}\n\nat {alert.timestamp.isoformat()}")
        return msg

    def _send_blocking(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=10) as smtp:
            if self.config.use_tls:
                smtp.starttls()
            if self.config.username:
                smtp.login(self.config.username, self.config.password)
            smtp.send_message(msg)

    async def deliver(self, alert: Alert) -> None:
        if alert.severity != Severity.HIGH:
            return
        if not self.config.enabled or not self.config.recipients:
            return
        try:
            await asyncio.to_thread(self._send_blocking, self._build_message(alert))
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"email_failed: {e}") from e


class DashboardFeed:
    """Recent alerts for the status API, optionally mirrored to a JSON file."""

    name = "dashboard"

    def __init__(self, max_alerts: int = 200, path: Optional[Path] = None) -> None:
        self._alerts: Deque[Alert] = deque(maxlen=max_alerts)
        self._path = path

    def recent(self, limit: int = 50) -> List[Alert]:
        items = list(self._alerts)
        return items[-limit:] if limit > 0 else []

    async def deliver(self, alert: Alert) -> None:
        self._alerts.append(alert)
        if self._path is not None:
            try:
                write_json(self._path, [a.to_dict() for a in self._alerts])
            except OSError as e:
                raise NotificationError(f"dashboard_write_failed: {e}") from e


class NotificationService:
    def __init__(self, transports: Sequence[AlertTransport]) -> None:
        self._log = get_logger("notifications")
        self.transports = list(transports)

    @classmethod
    def from_config(cls, config: NotificationConfig, dashboard: Optional[DashboardFeed] = None) -> "NotificationService":
        dashboard = dashboard or DashboardFeed(
            max_alerts=config.dashboard_max_alerts,
            path=Path(config.dashboard_path) if config.dashboard_path else None,
        )
        return cls(
            [
                WebhookTransport(config.webhook_url, timeout_sec=config.webhook_timeout_sec),
                EmailTransport(config.email),
                dashboard,
            ]
        )

    async def _deliver(self, transport: AlertTransport, alert: Alert) -> bool:
        try:
            await transport.deliver(alert)
            return True
        except Exception as e:
            self._log.error(
                "alert_transport_failed",
                transport=getattr(transport, "name", type(transport).__name__),
                alert_type=alert.type.value,
                error=str(e),
            )
            return False

    async def send_alert(self, alert: Alert) -> None:
        results = await asyncio.gather(*(self._deliver(t, alert) for t in self.transports))
        self._log.info(
            "alert_sent",
            alert_type=alert.type.value,
            severity=alert.severity.value,
            message=alert.message,
            delivered=sum(1 for ok in results if ok),
            transports=len(results),
        )
