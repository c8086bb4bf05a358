"""Tests for notification sinks: delivery, payload shape and failure isolation."""
from __future__ import annotations

import asyncio
import json

import httpx

from news_tts.core.config import NotificationConfig
from news_tts.core.metrics import NewsTTSMetrics
from news_tts.core.notifications import (
    CompositeNotificationSink,
    LoggingNotificationSink,
    NotificationSink,
    Severity,
    WebhookNotificationSink,
    build_notification_sink,
)

from conftest import RecordingSink


class BrokenSink(NotificationSink):
    name = "broken"

    async def _deliver(self, title, message, severity):
        raise RuntimeError("sink down")


class TestWebhookSink:
    """Slack-compatible payloads over httpx."""

    def test_payload(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, text="ok")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sink = WebhookNotificationSink("https://hooks.test/x", client=client, metrics=NewsTTSMetrics())
        asyncio.run(sink.notify("MP3 Merge Failed", "merge_1 failed", Severity.ERROR))

        assert seen[0]["text"] == "*MP3 Merge Failed*"
        attachment = seen[0]["attachments"][0]
        assert attachment["color"] == "danger"
        assert attachment["text"] == "merge_1 failed"
        assert "error" in attachment["footer"]

    def test_http_error_never_raises(self):
        metrics = NewsTTSMetrics()
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        sink = WebhookNotificationSink("https://hooks.test/x", client=client, metrics=metrics)
        asyncio.run(sink.notify("TTS Retry", "retrying", Severity.WARNING))
        assert metrics.sample("news_tts_notifications_failed_total", {"sink": "webhook"}) == 1.0

    def test_network_error_never_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        metrics = NewsTTSMetrics()
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sink = WebhookNotificationSink("https://hooks.test/x", client=client, metrics=metrics)
        asyncio.run(sink.notify("TTS Retry", "retrying"))
        assert metrics.sample("news_tts_notifications_failed_total", {"sink": "webhook"}) == 1.0


class TestCompositeSink:
    def test_one_failing_child_does_not_block_the_rest(self):
        metrics = NewsTTSMetrics()
        recording = RecordingSink(metrics)
        sink = CompositeNotificationSink([BrokenSink(metrics=metrics), recording], metrics=metrics)
        asyncio.run(sink.notify("Content Processed Successfully", "item 1", Severity.SUCCESS))

        assert recording.titles() == ["Content Processed Successfully"]
        assert metrics.sample("news_tts_notifications_failed_total", {"sink": "broken"}) == 1.0
        assert metrics.sample("news_tts_notifications_failed_total", {"sink": "composite"}) == 0.0

    def test_severity_strings_are_accepted(self):
        sink = RecordingSink()
        asyncio.run(sink.notify("x", "y", "warning"))
        assert sink.events == [("x", "y", Severity.WARNING)]


class TestLoggingSink:
    def test_error_goes_to_log(self, caplog):
        sink = LoggingNotificationSink(metrics=NewsTTSMetrics())
        with caplog.at_level("INFO"):
            asyncio.run(sink.notify("MP3 Merge Failed", "boom", Severity.ERROR))
        records = [r for r in caplog.records if r.getMessage() == "notification"]
        assert records[-1].extra_data["title"] == "MP3 Merge Failed"
        assert records[-1].levelname == "ERROR"


class TestBuild:
    def test_log_only_without_webhook(self):
        assert isinstance(build_notification_sink(NotificationConfig()), LoggingNotificationSink)

    def test_webhook_adds_composite(self):
        sink = build_notification_sink(NotificationConfig(webhook_url="https://hooks.test/x"))
        assert isinstance(sink, CompositeNotificationSink)
        assert [s.name for s in sink.sinks] == ["log", "webhook"]
        asyncio.run(sink.aclose())
