"""
Prometheus metrics for the Vault CRD operator.

This module provides metrics for refresh passes and per-binding outcomes,
and a small HTTP server exposing them for scraping.
"""

import logging

from aiohttp.web import Application, AppRunner, Request, Response, TCPSite, get
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

REGISTRY = CollectorRegistry()

REFRESH_TOTAL = Counter(
    "vault_crd_refresh_total",
    "Total number of per-binding refresh evaluations by outcome",
    ["vault_type", "result"],
    registry=REGISTRY,
)

REFRESH_ERRORS = Counter(
    "vault_crd_refresh_errors_total",
    "Total number of failed refreshes by error type",
    ["vault_type", "error_type"],
    registry=REGISTRY,
)

REFRESH_PASS_DURATION = Histogram(
    "vault_crd_refresh_pass_duration_seconds",
    "Time spent on one scheduled refresh pass",
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=REGISTRY,
)

REFRESH_LAST_PASS_TIMESTAMP = Gauge(
    "vault_crd_refresh_last_pass_timestamp",
    "Unix timestamp of the last completed refresh pass",
    registry=REGISTRY,
)

LISTING_FAILURES = Counter(
    "vault_crd_listing_failures_total",
    "Total number of refresh passes aborted because Vault resources could not be listed",
    registry=REGISTRY,
)


class MetricsServer:
    """
    Small aiohttp application serving ``/metrics`` and ``/healthz``.

    Runs on kopf's event loop next to the handlers and the refresh scheduler.
    """

    def __init__(self, port: int = 8081, host: str = "0.0.0.0"):
        self.port = port
        self.host = host
        self.app = Application()
        self.app.add_routes(
            [
                get("/metrics", self._metrics_handler),
                get("/healthz", self._healthz_handler),
            ]
        )
        self.runner: AppRunner | None = None

    async def _metrics_handler(self, request: Request) -> Response:
        try:
            payload = generate_latest(REGISTRY)
        except Exception as e:
            logger.error(f"Failed to render metrics: {e}", exc_info=True)
            return Response(
                text=f"Error generating metrics: {type(e).__name__}", status=500
            )
        return Response(body=payload, headers={"Content-Type": CONTENT_TYPE_LATEST})

    async def _healthz_handler(self, request: Request) -> Response:
        return Response(text="ok")

    async def start(self) -> None:
        """Bind the listening socket and start serving."""
        runner = AppRunner(self.app, access_log=None)
        await runner.setup()
        try:
            await TCPSite(runner, self.host, self.port).start()
        except OSError:
            await runner.cleanup()
            raise
        self.runner = runner
        logger.info(f"Serving metrics on http://{self.host}:{self.port}/metrics")

    async def stop(self) -> None:
        """Stop serving; a server that never started is left alone."""
        runner, self.runner = self.runner, None
        if runner is not None:
            await runner.cleanup()
            logger.info("Metrics server stopped")
