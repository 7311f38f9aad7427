"""
Base reconciler class providing common patterns for resource reconciliation.

This module defines the BaseReconciler class that implements the standard
entry points shared by reconcilers: correlation-ID logging, duration
tracking, and the translation of operator errors into kopf retries.
"""

import time
from abc import ABC, abstractmethod
from typing import Any

import kopf
from kubernetes.client.rest import ApiException

from ..errors import (
    KubernetesAPIError,
    OperatorError,
    PhaseError,
    TemporaryError,
)
from ..observability.logging import OperatorLogger
from ..observability.metrics import MetricsSink, NullMetricsSink
from ..utils.backoff import BackoffPolicy, FixedBackoff


class BaseReconciler(ABC):
    """
    Base class for resource reconcilers.

    Subclasses implement ``do_reconcile`` and ``do_finalize``; failures they
    raise are logged, counted and handed to kopf as temporary errors delayed
    by the backoff policy. Phase failures additionally go through
    ``record_phase_failure`` so the resource status can reflect them.
    """

    resource_type = "resource"

    def __init__(
        self,
        metrics: MetricsSink | None = None,
        backoff: BackoffPolicy | None = None,
    ):
        self.metrics = metrics if metrics is not None else NullMetricsSink()
        self.backoff = backoff if backoff is not None else FixedBackoff(10.0)
        self.logger = OperatorLogger(self.__class__.__name__)

    async def reconcile(
        self, name: str, namespace: str, retry: int = 0, **kwargs
    ) -> dict[str, Any] | None:
        """
        Main reconciliation entry point.

        Args:
            name: Resource name
            namespace: Resource namespace
            retry: kopf's retry counter for this handler
            **kwargs: Additional handler arguments

        Returns:
            Handler result recorded by kopf
        """
        return await self._run(
            "reconcile", self.do_reconcile, name, namespace, retry, **kwargs
        )

    async def finalize(
        self, name: str, namespace: str, retry: int = 0, **kwargs
    ) -> dict[str, Any] | None:
        """Deletion entry point; a failure keeps the finalizer in place."""
        return await self._run(
            "finalize", self.do_finalize, name, namespace, retry, **kwargs
        )

    async def _run(
        self, operation, func, name: str, namespace: str, retry: int, **kwargs
    ) -> dict[str, Any] | None:
        start_time = time.time()
        self.logger.log_reconciliation_start(
            resource_type=self.resource_type, resource_name=name, namespace=namespace
        )

        async with self.metrics.track_reconciliation(operation):
            try:
                result = await func(name, namespace, **kwargs)

            except PhaseError as e:
                self._log_error(name, namespace, e, start_time)
                self.metrics.reconcile_failed(e.phase)
                await self.record_phase_failure(name, namespace, e)
                raise kopf.TemporaryError(
                    str(e), delay=self.backoff.next_delay(retry)
                ) from e

            except OperatorError as e:
                self._log_error(name, namespace, e, start_time)
                self.metrics.reconcile_failed(operation)
                raise self._as_kopf_error(e, retry) from e

            except ApiException as e:
                http_status = getattr(e, "status", None)
                error = KubernetesAPIError(
                    message=str(e),
                    reason=getattr(e, "reason", None),
                    status=http_status,
                    retryable=http_status is None or http_status >= 500,
                )
                self._log_error(name, namespace, error, start_time)
                self.metrics.reconcile_failed(operation)
                raise self._as_kopf_error(error, retry) from e

            except kopf.TemporaryError:
                raise

            except Exception as e:
                # Wrap unexpected errors as temporary to allow retry
                error = TemporaryError(f"Unexpected error during {operation}: {e}")
                self._log_error(name, namespace, error, start_time)
                self.metrics.reconcile_failed(operation)
                raise self._as_kopf_error(error, retry) from e

        self.logger.log_reconciliation_success(
            resource_type=self.resource_type,
            resource_name=name,
            namespace=namespace,
            duration=time.time() - start_time,
        )
        return result

    def _as_kopf_error(self, error: OperatorError, retry: int) -> Exception:
        if not error.retryable:
            return kopf.PermanentError(str(error))
        return kopf.TemporaryError(str(error), delay=self.backoff.next_delay(retry))

    def _log_error(
        self, name: str, namespace: str, error: Exception, start_time: float
    ) -> None:
        self.logger.log_reconciliation_error(
            resource_type=self.resource_type,
            resource_name=name,
            namespace=namespace,
            error=error,
            duration=time.time() - start_time,
        )

    @abstractmethod
    async def do_reconcile(
        self, name: str, namespace: str, **kwargs
    ) -> dict[str, Any] | None:
        """Bring the resource to its desired state."""
        raise NotImplementedError

    @abstractmethod
    async def do_finalize(
        self, name: str, namespace: str, **kwargs
    ) -> dict[str, Any] | None:
        """Release external state held for the resource."""
        raise NotImplementedError

    async def record_phase_failure(
        self, name: str, namespace: str, error: PhaseError
    ) -> None:
        """Reflect a failed phase on the resource; no-op by default."""
        return None
