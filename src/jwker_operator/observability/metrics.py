"""
Prometheus metrics for the Jwker operator.

Metrics are recorded through the MetricsSink protocol. The Prometheus
implementation binds its collectors to a CollectorRegistry of its own, which
the metrics server then exposes; collectors from prometheus_client are safe
to update from concurrent reconciles.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Protocol

from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
    json_response,
)
from kubernetes import client
from kubernetes.client.rest import ApiException
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from ..constants import (
    JWKER_GROUP,
    JWKER_PLURAL,
    JWKER_VERSION,
    METRICS_REFRESH_INTERVAL,
    SECRET_TYPE_LABEL_KEY,
    SECRET_TYPE_LABEL_VALUE,
)

logger = logging.getLogger(__name__)


class MetricsSink(Protocol):
    """What the reconciler and broker client report."""

    def reconcile_processed(self) -> None: ...

    def reconcile_failed(self, phase: str) -> None: ...

    def reconcile_skipped(self) -> None: ...

    def finalized(self) -> None: ...

    def broker_request(self, instance: str, operation: str, result: str) -> None: ...

    def set_resources_total(self, count: int) -> None: ...

    def set_secrets_total(self, count: int) -> None: ...

    def track_reconciliation(self, operation: str) -> Any: ...


class NullMetricsSink:
    """Discards everything."""

    def reconcile_processed(self) -> None:
        pass

    def reconcile_failed(self, phase: str) -> None:
        pass

    def reconcile_skipped(self) -> None:
        pass

    def finalized(self) -> None:
        pass

    def broker_request(self, instance: str, operation: str, result: str) -> None:
        pass

    def set_resources_total(self, count: int) -> None:
        pass

    def set_secrets_total(self, count: int) -> None:
        pass

    @asynccontextmanager
    async def track_reconciliation(self, operation: str) -> AsyncIterator[None]:
        yield


class PrometheusMetricsSink:
    """MetricsSink backed by prometheus_client collectors."""

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Create the collectors.

        Args:
            registry: Registry to bind to; a fresh one is created if omitted
        """
        self.registry = registry if registry is not None else CollectorRegistry()

        self.resources_total = Gauge(
            "jwker_total",
            "Number of jwker resources in the cluster",
            registry=self.registry,
        )
        self.secrets_total = Gauge(
            "jwker_secrets_total",
            "Number of secrets managed by jwker",
            registry=self.registry,
        )
        self.processed = Counter(
            "jwker_processed",
            "Number of jwkers processed successfully",
            registry=self.registry,
        )
        self.failed = Counter(
            "jwker_processing_failed",
            "Number of jwkers that failed to process",
            ["phase"],
            registry=self.registry,
        )
        self.finalized_count = Counter(
            "jwker_finalized",
            "Number of jwkers finalized",
            registry=self.registry,
        )
        self.skipped = Counter(
            "jwker_reconcile_skipped",
            "Number of reconciles skipped because the spec was already synchronized",
            registry=self.registry,
        )
        self.broker_requests = Counter(
            "jwker_broker_requests_total",
            "Requests sent to token broker instances",
            ["instance", "operation", "result"],
            registry=self.registry,
        )
        self.duration = Histogram(
            "jwker_reconcile_duration_seconds",
            "Time spent on reconcile and finalize operations",
            ["operation"],
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
            registry=self.registry,
        )

    def reconcile_processed(self) -> None:
        self.processed.inc()

    def reconcile_failed(self, phase: str) -> None:
        self.failed.labels(phase=phase).inc()

    def reconcile_skipped(self) -> None:
        self.skipped.inc()

    def finalized(self) -> None:
        self.finalized_count.inc()

    def broker_request(self, instance: str, operation: str, result: str) -> None:
        self.broker_requests.labels(
            instance=instance, operation=operation, result=result
        ).inc()

    def set_resources_total(self, count: int) -> None:
        self.resources_total.set(count)

    def set_secrets_total(self, count: int) -> None:
        self.secrets_total.set(count)

    @asynccontextmanager
    async def track_reconciliation(self, operation: str) -> AsyncIterator[None]:
        start_time = time.time()
        try:
            yield
        finally:
            self.duration.labels(operation=operation).observe(time.time() - start_time)


async def refresh_cluster_metrics(
    sink: MetricsSink,
    custom_api: client.CustomObjectsApi,
    core_api: client.CoreV1Api,
) -> None:
    """Recount jwker resources and managed secrets across the cluster."""
    jwkers = await asyncio.to_thread(
        custom_api.list_cluster_custom_object,
        group=JWKER_GROUP,
        version=JWKER_VERSION,
        plural=JWKER_PLURAL,
    )
    secrets = await asyncio.to_thread(
        core_api.list_secret_for_all_namespaces,
        label_selector=f"{SECRET_TYPE_LABEL_KEY}={SECRET_TYPE_LABEL_VALUE}",
    )
    sink.set_resources_total(len(jwkers.get("items", [])))
    sink.set_secrets_total(len(secrets.items or []))


async def run_cluster_metrics_refresh(
    sink: MetricsSink,
    custom_api: client.CustomObjectsApi,
    core_api: client.CoreV1Api,
    interval: float = METRICS_REFRESH_INTERVAL,
) -> None:
    """Refresh cluster gauges forever; failures are logged and retried next tick."""
    while True:
        try:
            await refresh_cluster_metrics(sink, custom_api, core_api)
        except ApiException as e:
            logger.error(f"Failed to refresh cluster metrics: {e.reason}")
        except Exception:
            # Connection errors from urllib3 must not end the loop
            logger.exception("Failed to refresh cluster metrics")
        await asyncio.sleep(interval)


class MetricsServer:
    """HTTP server for exposing Prometheus metrics and health endpoints."""

    def __init__(
        self,
        registry: CollectorRegistry,
        port: int = 8181,
        host: str = "0.0.0.0",
    ):
        """
        Initialize metrics server.

        Args:
            registry: Registry whose collectors are served on /metrics
            port: Port to serve metrics on
            host: Host interface to bind to
        """
        self.registry = registry
        self.port = port
        self.host = host
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/health", self._health_handler)
        self.app.router.add_get("/ready", self._ready_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)  # K8s compatibility

    async def _metrics_handler(self, request: Request) -> Response:
        """Handle /metrics endpoint for Prometheus scraping."""
        return Response(
            body=generate_latest(self.registry),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )

    async def _health_handler(self, request: Request) -> Response:
        """Handle /health endpoint for operator health checks."""
        from .health import HealthChecker

        health_checker = HealthChecker()
        health_results = await health_checker.check_all()
        health_dict = health_checker.to_dict(health_results)
        status_code = 200 if health_dict["status"] in ["healthy", "degraded"] else 503
        return json_response(health_dict, status=status_code)

    async def _ready_handler(self, request: Request) -> Response:
        """Handle /ready endpoint for readiness probes."""
        from .health import HealthChecker

        health_checker = HealthChecker()
        results = {
            "kubernetes_api": await health_checker._check_kubernetes_api(),
            "crds_installed": await health_checker._check_crds_installed(),
        }
        ready = all(result.status == "healthy" for result in results.values())
        return json_response(
            {
                "status": "ready" if ready else "not_ready",
                "timestamp": time.time(),
                "checks": {name: result.status for name, result in results.items()},
            },
            status=200 if ready else 503,
        )

    async def _healthz_handler(self, request: Request) -> Response:
        """Returns 200 while the server is running."""
        return Response(text="ok")

    async def start(self) -> None:
        self.runner = AppRunner(self.app)
        await self.runner.setup()

        self.site = TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(f"Metrics server started on {self.host}:{self.port}")

    async def stop(self) -> None:
        if self.site:
            await self.site.stop()
            self.site = None

        if self.runner:
            await self.runner.cleanup()
            self.runner = None

        logger.info("Metrics server stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
