"""
Health check utilities for the Jwker operator.

This module checks the components the operator cannot work without: the
Kubernetes API, the Jwker CRD and the broker configuration.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import JWKER_GROUP, JWKER_PLURAL

logger = logging.getLogger(__name__)

REQUIRED_CRDS = (f"{JWKER_PLURAL}.{JWKER_GROUP}",)


@dataclass
class HealthCheckResult:
    """Result of a health check operation."""

    name: str
    status: str  # "healthy", "unhealthy", "degraded", "unknown"
    message: str
    details: dict[str, Any] | None = None
    duration: float = 0.0
    timestamp: float = 0.0


class HealthChecker:
    """Performs health checks for the operator."""

    def __init__(self, k8s_client: client.ApiClient | None = None):
        self.k8s_client = k8s_client

    def _api_client(self) -> client.ApiClient:
        if not self.k8s_client:
            from ..utils.kubernetes import get_kubernetes_client

            self.k8s_client = get_kubernetes_client()
        return self.k8s_client

    async def check_all(self) -> dict[str, HealthCheckResult]:
        """
        Run all health checks.

        Returns:
            Dictionary of health check results
        """
        return {
            "kubernetes_api": await self._check_kubernetes_api(),
            "crds_installed": await self._check_crds_installed(),
            "broker_configuration": self._check_broker_configuration(),
        }

    async def _check_kubernetes_api(self) -> HealthCheckResult:
        """Check Kubernetes API connectivity."""
        start_time = time.time()

        try:
            core_api = client.CoreV1Api(self._api_client())
            await asyncio.to_thread(core_api.list_namespace, limit=1, timeout_seconds=5)
            duration = time.time() - start_time
            return HealthCheckResult(
                name="kubernetes_api",
                status="healthy",
                message="Kubernetes API is accessible",
                details={"response_time_ms": round(duration * 1000, 2)},
                duration=duration,
                timestamp=time.time(),
            )

        except ApiException as e:
            duration = time.time() - start_time
            return HealthCheckResult(
                name="kubernetes_api",
                status="unhealthy",
                message=f"Kubernetes API error: {e.reason}",
                details={"status_code": e.status},
                duration=duration,
                timestamp=time.time(),
            )

        except Exception as e:
            # Health endpoints report failures rather than raise them
            duration = time.time() - start_time
            return HealthCheckResult(
                name="kubernetes_api",
                status="unhealthy",
                message=f"Failed to connect to Kubernetes API: {str(e)}",
                duration=duration,
                timestamp=time.time(),
            )

    async def _check_crds_installed(self) -> HealthCheckResult:
        """Check if the Jwker CRD is installed."""
        start_time = time.time()
        installed: list[str] = []
        missing: list[str] = []

        try:
            api_extensions = client.ApiextensionsV1Api(self._api_client())
            for crd_name in REQUIRED_CRDS:
                try:
                    await asyncio.to_thread(
                        api_extensions.read_custom_resource_definition, name=crd_name
                    )
                    installed.append(crd_name)
                except ApiException as e:
                    if e.status != 404:
                        raise
                    missing.append(crd_name)

        except Exception as e:
            duration = time.time() - start_time
            return HealthCheckResult(
                name="crds_installed",
                status="unhealthy",
                message=f"Failed to check CRDs: {str(e)}",
                duration=duration,
                timestamp=time.time(),
            )

        duration = time.time() - start_time
        if missing:
            return HealthCheckResult(
                name="crds_installed",
                status="unhealthy",
                message=f"Missing required CRDs: {', '.join(missing)}",
                details={"installed": installed, "missing": missing},
                duration=duration,
                timestamp=time.time(),
            )
        return HealthCheckResult(
            name="crds_installed",
            status="healthy",
            message="All required CRDs are installed",
            details={"installed": installed},
            duration=duration,
            timestamp=time.time(),
        )

    def _check_broker_configuration(self) -> HealthCheckResult:
        from ..settings import settings

        urls = settings.broker_base_urls
        if not urls:
            return HealthCheckResult(
                name="broker_configuration",
                status="unhealthy",
                message="No token broker base URLs configured",
                timestamp=time.time(),
            )
        return HealthCheckResult(
            name="broker_configuration",
            status="healthy",
            message=f"{len(urls)} broker instance(s) configured",
            details={"instances": urls},
            timestamp=time.time(),
        )

    def get_overall_health(self, results: dict[str, HealthCheckResult]) -> str:
        """
        Determine overall health status from individual check results.

        Returns:
            Overall health status
        """
        if not results:
            return "unknown"

        statuses = [result.status for result in results.values()]

        if "unhealthy" in statuses:
            return "unhealthy"
        elif "degraded" in statuses or "unknown" in statuses:
            return "degraded"
        else:
            return "healthy"

    def to_dict(self, results: dict[str, HealthCheckResult]) -> dict[str, Any]:
        return {
            "status": self.get_overall_health(results),
            "timestamp": time.time(),
            "checks": {
                name: {
                    "status": result.status,
                    "message": result.message,
                    "details": result.details,
                    "duration": result.duration,
                    "timestamp": result.timestamp,
                }
                for name, result in results.items()
            },
        }
