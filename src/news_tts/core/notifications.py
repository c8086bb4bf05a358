"""
Notification Sinks.

Fire-and-forget operational events ("Content Processed Successfully",
"MP3 Merge Failed", "TTS Retry", ...). A sink never raises into the
caller: delivery failures are logged and counted, nothing more.

Sinks:
    LoggingNotificationSink    Always available; writes a structured log line
    WebhookNotificationSink    Posts a Slack-compatible JSON payload via httpx
    CompositeNotificationSink  Fans out to several sinks

Usage:
    sink = build_notification_sink(config.notifications)
    await sink.notify("MP3 Merge Completed", "merge_3f2a... written", Severity.SUCCESS)
"""
from __future__ import annotations

from enum import Enum
from typing import Iterable, List, Optional

import httpx

from news_tts.core.config import NotificationConfig
from news_tts.core.logging import error, get_logger, get_correlation_id, info, success, warn
from news_tts.core.metrics import NewsTTSMetrics, metrics as global_metrics

_LOG = get_logger("news-tts.notify")


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


# Slack attachment colors
_SEVERITY_COLORS = {
    Severity.INFO: "#439FE0",
    Severity.WARNING: "warning",
    Severity.ERROR: "danger",
    Severity.SUCCESS: "good",
}


class NotificationSink:
    """Base sink. Subclasses implement _deliver(); notify() never raises."""

    name = "base"

    def __init__(self, metrics: Optional[NewsTTSMetrics] = None):
        self._metrics = metrics or global_metrics

    async def notify(self, title: str, message: str, severity: Severity = Severity.INFO) -> None:
        try:
            await self._deliver(title, message, Severity(severity))
        except Exception as exc:
            self._metrics.record_notification_failure(self.name)
            error(_LOG, "notification_failed", sink=self.name, title=title,
                  error=f"{type(exc).__name__}: {exc}")

    async def _deliver(self, title: str, message: str, severity: Severity) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class LoggingNotificationSink(NotificationSink):
    """Writes every notification to the structured log."""

    name = "log"

    async def _deliver(self, title: str, message: str, severity: Severity) -> None:
        if severity is Severity.ERROR:
            error(_LOG, "notification", title=title, detail=message)
        elif severity is Severity.WARNING:
            warn(_LOG, "notification", title=title, detail=message)
        elif severity is Severity.SUCCESS:
            success(_LOG, "notification", title=title, detail=message)
        else:
            info(_LOG, "notification", title=title, detail=message)


class WebhookNotificationSink(NotificationSink):
    """
    Posts notifications to an incoming-webhook URL (Slack format).

    Payload:
        {"text": "*MP3 Merge Failed*", "attachments": [{"color": "danger", "text": "..."}]}
    """

    name = "webhook"

    def __init__(
        self,
        url: str,
        timeout_s: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[NewsTTSMetrics] = None,
    ):
        super().__init__(metrics=metrics)
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None

    async def _deliver(self, title: str, message: str, severity: Severity) -> None:
        payload = {
            "text": f"*{title}*",
            "attachments": [
                {
                    "color": _SEVERITY_COLORS.get(severity, "#439FE0"),
                    "text": message,
                    "footer": f"news-tts | {severity.value} | {get_correlation_id()}",
                }
            ],
        }
        response = await self._client.post(self.url, json=payload)
        response.raise_for_status()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class CompositeNotificationSink(NotificationSink):
    """Delivers to every child sink in order; each child isolates its own failures."""

    name = "composite"

    def __init__(self, sinks: Iterable[NotificationSink], metrics: Optional[NewsTTSMetrics] = None):
        super().__init__(metrics=metrics)
        self.sinks: List[NotificationSink] = list(sinks)

    async def _deliver(self, title: str, message: str, severity: Severity) -> None:
        for sink in self.sinks:
            await sink.notify(title, message, severity)

    async def aclose(self) -> None:
        for sink in self.sinks:
            await sink.aclose()


def build_notification_sink(
    config: Optional[NotificationConfig] = None,
    metrics: Optional[NewsTTSMetrics] = None,
) -> NotificationSink:
    """Logging sink, plus a webhook sink when a URL is configured."""
    config = config or NotificationConfig()
    log_sink = LoggingNotificationSink(metrics=metrics)
    if not config.webhook_url:
        return log_sink
    return CompositeNotificationSink(
        [log_sink, WebhookNotificationSink(config.webhook_url, timeout_s=config.timeout_s, metrics=metrics)],
        metrics=metrics,
    )
