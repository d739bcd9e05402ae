"""Health check endpoints for the signaling coordinator.

Provides HTTP endpoints for load balancers and monitoring systems:
/health, /liveness, /rooms, /metrics (Prometheus), /metrics/summary.
"""

import logging
import time
from typing import Any

from aiohttp import web

from src.signaling.coordinator import SignalingCoordinator
from src.signaling.metrics import MetricsCollector, get_metrics_collector

logger = logging.getLogger(__name__)


class HealthCheckHandler:
    """Health check handler for the coordinator.

    Healthy means the WebSocket transport is accepting connections.
    """

    def __init__(
        self,
        coordinator: SignalingCoordinator,
        transport: Any = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Args:
            coordinator: Coordinator whose rooms are reported
            transport: WebSocketTransport instance (optional)
            metrics: Metrics collector (defaults to the global collector)
        """
        self.coordinator = coordinator
        self.transport = transport
        self.start_time = time.time()
        self.metrics_collector = metrics or get_metrics_collector()

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        Returns:
            200 OK: Transport is running
            503 Service Unavailable: Transport is stopped

        Response format:
        {
            "status": "healthy" | "unhealthy",
            "uptime_seconds": float,
            "transport": bool,
            "connections": int,
            "active_rooms": int
        }
        """
        transport_ok = self.transport is None or self.transport.is_running
        summary = self.coordinator.get_room_summary()

        response_data = {
            "status": "healthy" if transport_ok else "unhealthy",
            "uptime_seconds": time.time() - self.start_time,
            "transport": transport_ok,
            "connections": self.transport.connection_count if self.transport else 0,
            "active_rooms": summary["active_rooms"],
        }

        logger.debug("Health check performed", extra={"status": response_data["status"]})

        return web.json_response(response_data, status=200 if transport_ok else 503)

    async def liveness_check(self, request: web.Request) -> web.Response:
        """Liveness check endpoint; OK whenever the process is serving HTTP."""
        return web.json_response(
            {
                "status": "alive",
                "uptime_seconds": time.time() - self.start_time,
            },
            status=200,
        )

    async def rooms(self, request: web.Request) -> web.Response:
        """Active room snapshot (occupant counts only, never payloads)."""
        return web.json_response(self.coordinator.get_room_summary())

    async def metrics_endpoint(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint.

        Always 200 unless rendering fails, in which case the body carries a
        single comment line with the error.
        """
        try:
            metrics_text = self.metrics_collector.export_prometheus()
            return web.Response(
                text=metrics_text,
                content_type="text/plain",
                charset="utf-8",
                status=200,
            )
        except Exception as e:
            logger.error("Failed to export metrics", extra={"error": str(e)}, exc_info=True)
            return web.Response(
                text=f"# Error exporting metrics: {e}\n",
                content_type="text/plain",
                status=500,
            )

    async def metrics_summary(self, request: web.Request) -> web.Response:
        """Human-readable metrics summary in JSON."""
        return web.json_response(
            {
                "status": "ok",
                "uptime_seconds": time.time() - self.start_time,
                "metrics": self.metrics_collector.get_summary(),
            },
            status=200,
        )


def setup_health_routes(
    app: web.Application,
    coordinator: SignalingCoordinator,
    transport: Any = None,
    metrics: MetricsCollector | None = None,
) -> None:
    """Register the coordinator endpoints on ``app``.

    Args:
        app: Application served next to the WebSocket listener
        coordinator: Coordinator whose rooms are reported
        transport: WebSocketTransport instance (optional)
        metrics: Metrics collector (optional)
    """
    handler = HealthCheckHandler(coordinator, transport=transport, metrics=metrics)

    routes = {
        "/health": handler.health_check,
        "/liveness": handler.liveness_check,
        "/rooms": handler.rooms,
        "/metrics": handler.metrics_endpoint,
        "/metrics/summary": handler.metrics_summary,
    }
    for path, view in routes.items():
        app.router.add_get(path, view)

    logger.info("Coordinator HTTP endpoints registered", extra={"routes": list(routes)})
