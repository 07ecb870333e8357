"""Tests for the notification webhook, circuit breaker, scheduler and logging helpers."""

import json
import logging
from datetime import datetime, timezone

import httpx
import pytest

from deskwatch.config import SLATrack
from deskwatch.core import NotificationException
from deskwatch.shared.infrastructure.grafana import GrafanaOTLPExporter, TICK_METRICS
from deskwatch.shared.infrastructure.logging import (
    CustomJsonFormatter, EnvironmentFilter, REDACTED
)
from deskwatch.sla.domain import EscalationEvent
from deskwatch.sla.infrastructure import CircuitBreaker, SLAScheduler, WebhookEscalationPublisher


@pytest.fixture
def event():
    return EscalationEvent(
        id="evt-1",
        ticket_id="TICKET-001",
        track=SLATrack.RESPONSE,
        threshold_pct=75,
        notify_roles=("team_lead",),
        elapsed_time=45.123,
        target_time=60,
        triggered_at=datetime(2025, 6, 30, 12, 0, tzinfo=timezone.utc),
    )


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestWebhookEscalationPublisher:

    @pytest.mark.asyncio
    async def test_delivers_with_idempotency_key(self, event):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(202)

        publisher = WebhookEscalationPublisher(
            "https://notify.example.com/hooks/sla", http_client=mock_client(handler)
        )
        await publisher.publish(event)
        await publisher.close()

        assert len(requests) == 1
        assert requests[0].headers["Idempotency-Key"] == "TICKET-001:response:75"
        body = json.loads(requests[0].content)
        assert body["type"] == "sla.escalation"
        assert body["notify_roles"] == ["team_lead"]
        assert body["elapsed_time"] == 45.12

    @pytest.mark.asyncio
    async def test_retries_then_raises(self, event):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(503)

        publisher = WebhookEscalationPublisher(
            "https://notify.example.com/hooks/sla",
            max_retries=3,
            retry_base_delay=0,
            http_client=mock_client(handler),
        )
        with pytest.raises(NotificationException) as exc_info:
            await publisher.publish(event)

        assert len(attempts) == 3
        assert exc_info.value.details["error"] == "HTTP 503"

    @pytest.mark.asyncio
    async def test_transport_error(self, event):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        publisher = WebhookEscalationPublisher(
            "https://notify.example.com/hooks/sla",
            max_retries=1,
            http_client=mock_client(handler),
        )
        with pytest.raises(NotificationException):
            await publisher.publish(event)


class TestCircuitBreaker:

    def test_opens_after_threshold_and_half_opens(self):
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=30, clock=lambda: now[0])

        breaker.record_failure()
        assert breaker.allow_request()
        breaker.record_failure()
        assert breaker.state == "open"
        assert not breaker.allow_request()

        now[0] = 31.0
        assert breaker.state == "half_open"
        assert breaker.allow_request()

        breaker.record_success()
        assert breaker.state == "closed"


class TestSLAScheduler:

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        async def job():
            return None

        scheduler = SLAScheduler(interval_seconds=60)
        await scheduler.start(job)
        assert scheduler.is_running
        await scheduler.start(job)

        await scheduler.stop()
        assert not scheduler.is_running


class TestLogging:

    def test_json_formatter_redacts_and_stamps(self):
        record = logging.LogRecord("deskwatch.test", logging.INFO, __file__, 1, "hello", None, None)
        record.api_key = "sk-123"
        record.ticket_id = "TICKET-001"
        EnvironmentFilter("test").filter(record)

        payload = json.loads(CustomJsonFormatter("%(name)s %(levelname)s %(message)s").format(record))

        assert payload["message"] == "hello"
        assert payload["api_key"] == REDACTED
        assert payload["ticket_id"] == "TICKET-001"
        assert payload["environment"] == "test"
        assert payload["timestamp"]


class TestGrafanaPayload:

    def test_gauges_per_metric(self):
        metrics = [
            {"name": name, "unit": unit, "description": description, "value": value}
            for (name, unit, description), value in zip(TICK_METRICS.values(), (3, 1, 0, 2, 12.5))
        ]
        payload = GrafanaOTLPExporter.build_payload(metrics, {"source": "tick"}, timestamp_ns=1)

        exported = payload["resourceMetrics"][0]["scopeMetrics"][0]["metrics"]
        assert [metric["name"] for metric in exported][:2] == ["sla_tick_evaluated", "sla_tick_deferred"]
        assert exported[0]["gauge"]["dataPoints"][0]["asInt"] == 3
        assert exported[-1]["gauge"]["dataPoints"][0]["asDouble"] == 12.5

    @pytest.mark.asyncio
    async def test_disabled_exporter_skips(self):
        exporter = GrafanaOTLPExporter(host="", api_key="", instance_id="")
        assert await exporter.export_tick_metrics({"evaluated": 1}) is False
