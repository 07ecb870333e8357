"""
Grafana OTLP Metrics Exporter
==============================

Pushes SLA engine metrics to Grafana Cloud via OTLP.

Metrics exported per tick:
- sla_tick_evaluated: Tickets recalculated
- sla_tick_deferred: Tickets deferred because their lock stayed busy
- sla_tick_failed: Tickets whose recalculation raised
- sla_tick_escalations: Escalation events handed to notification
- sla_tick_duration_ms: Wall time of the tick
"""

import base64
import time
from typing import Any, Dict, List, Mapping, Optional

import httpx

from deskwatch.config import settings
from deskwatch.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


TICK_METRICS = {
    "evaluated": ("sla_tick_evaluated", "1", "Tickets recalculated in the tick"),
    "deferred": ("sla_tick_deferred", "1", "Tickets deferred to the next tick"),
    "failed": ("sla_tick_failed", "1", "Tickets whose recalculation failed"),
    "escalations": ("sla_tick_escalations", "1", "Escalation events handed to notification"),
    "duration_ms": ("sla_tick_duration_ms", "ms", "Tick wall time in milliseconds"),
}


class GrafanaOTLPExporter:
    """
    Export SLA metrics to Grafana Cloud via OTLP HTTP endpoint.

    Uses OpenTelemetry Protocol (OTLP) JSON format for metrics.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        instance_id: Optional[str] = None
    ):
        self._host = host or settings.grafana_host
        self._api_key = api_key or settings.grafana_api_key
        self._instance_id = instance_id or settings.grafana_instance_id
        self._enabled = bool(self._host and self._api_key and self._instance_id)

        if self._enabled:
            auth_pair = f"{self._instance_id}:{self._api_key}"
            self._auth_encoded = base64.b64encode(auth_pair.encode()).decode()
            # Don't double-append the path if host already includes it
            if "/otlp/v1/metrics" not in self._host:
                self._url = f"{self._host}/otlp/v1/metrics"
            else:
                self._url = self._host
            logger.info(
                "Grafana OTLP exporter initialized",
                extra={"host": self._host, "instance_id": self._instance_id}
            )
        else:
            logger.info("Grafana OTLP exporter not configured - metrics will not be exported")

    def is_enabled(self) -> bool:
        return self._enabled

    @staticmethod
    def build_payload(
        metrics: List[Dict[str, Any]],
        attributes: Optional[Mapping[str, str]] = None,
        timestamp_ns: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        OTLP JSON body with one gauge data point per metric.

        Each entry of ``metrics`` carries name, unit, description and value.
        """
        timestamp_ns = timestamp_ns or int(time.time() * 1_000_000_000)
        metric_attributes = [
            {"key": "service", "value": {"stringValue": settings.app_name}},
        ]
        for key, value in (attributes or {}).items():
            metric_attributes.append({"key": key, "value": {"stringValue": str(value)}})

        def data_point(value) -> Dict[str, Any]:
            point = {"timeUnixNano": timestamp_ns, "attributes": metric_attributes}
            if isinstance(value, float):
                point["asDouble"] = value
            else:
                point["asInt"] = int(value)
            return point

        return {
            "resourceMetrics": [
                {
                    "resource": {
                        "attributes": [
                            {"key": "service.name", "value": {"stringValue": settings.app_name}},
                            {"key": "service.version", "value": {"stringValue": settings.app_version}},
                            {"key": "deployment.environment", "value": {"stringValue": settings.environment}},
                        ]
                    },
                    "scopeMetrics": [
                        {
                            "metrics": [
                                {
                                    "name": metric["name"],
                                    "unit": metric["unit"],
                                    "description": metric["description"],
                                    "gauge": {"dataPoints": [data_point(metric["value"])]},
                                }
                                for metric in metrics
                            ]
                        }
                    ]
                }
            ]
        }

    async def export_tick_metrics(self, summary: Mapping[str, Any]) -> bool:
        """
        Export one SLA tick summary.

        Returns:
            True if export succeeded, False otherwise
        """
        if not self._enabled:
            return False

        metrics = [
            {"name": name, "unit": unit, "description": description, "value": summary[field]}
            for field, (name, unit, description) in TICK_METRICS.items()
            if field in summary
        ]
        payload = self.build_payload(metrics)

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self._auth_encoded}",
            "X-Grafana-Org-Id": str(self._instance_id)
        }

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(self._url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error("Error exporting metrics to Grafana", extra={"error": str(e)})
            return False

        if response.status_code in (200, 202):
            logger.debug("SLA tick metrics exported to Grafana")
            return True

        logger.warning(
            "Failed to export metrics to Grafana",
            extra={"status_code": response.status_code, "response": response.text[:500]}
        )
        return False


# Global exporter instance
_grafana_exporter: Optional[GrafanaOTLPExporter] = None


def get_grafana_exporter() -> GrafanaOTLPExporter:
    """Get or create global Grafana exporter instance."""
    global _grafana_exporter
    if _grafana_exporter is None:
        _grafana_exporter = GrafanaOTLPExporter()
    return _grafana_exporter
