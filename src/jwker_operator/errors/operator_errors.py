"""
Operator error hierarchy with categorization and retry logic.

This module defines the error types used throughout the Jwker operator,
providing clear categorization and integration with kopf's retry mechanisms.
"""

import kopf


class OperatorError(Exception):
    """
    Base error class for all operator-related exceptions.

    Provides categorization, retry behavior, and user guidance for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = True,
        delay: int = 10,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize operator error.

        Args:
            message: Human-readable error description
            category: Error category (validation, api, configuration, external)
            retryable: Whether kopf should retry this operation
            delay: Suggested retry delay in seconds
            user_action: What user should do to resolve the issue
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.delay = delay
        self.user_action = user_action
        self.cause = cause

    def as_kopf_error(self):
        """Convert to appropriate kopf exception type."""
        if self.retryable:
            return kopf.TemporaryError(str(self), delay=self.delay)
        else:
            return kopf.PermanentError(str(self))

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class ValidationError(OperatorError):
    """Error in resource specification validation."""

    def __init__(
        self, message: str, field: str | None = None, user_action: str | None = None
    ):
        action = user_action or "Check resource specification and fix validation errors"
        if field:
            message = f"Validation error in field '{field}': {message}"
        super().__init__(
            message=message, category="validation", retryable=True, user_action=action
        )


class TemporaryError(OperatorError):
    """Temporary error that should be retried."""

    def __init__(self, message: str, delay: int = 10, user_action: str | None = None):
        super().__init__(
            message=message,
            category="temporary",
            retryable=True,
            delay=delay,
            user_action=user_action
            or "Wait for automatic retry or check system status",
        )


class PermanentError(OperatorError):
    """Permanent error that should not be retried."""

    def __init__(self, message: str, user_action: str | None = None):
        super().__init__(
            message=message,
            category="permanent",
            retryable=False,
            user_action=user_action or "Manual intervention required to resolve",
        )


class ConfigurationError(OperatorError):
    """Error in operator configuration."""

    def __init__(
        self, message: str, retryable: bool = False, user_action: str | None = None
    ):
        super().__init__(
            message=message,
            category="configuration",
            retryable=retryable,
            user_action=user_action or "Review and correct operator configuration",
        )


class ExternalServiceError(OperatorError):
    """Error communicating with external services."""

    def __init__(
        self,
        service: str,
        message: str,
        retryable: bool = True,
        delay: int = 10,
        user_action: str | None = None,
    ):
        action = user_action or f"Check {service} connectivity and credentials"
        super().__init__(
            message=f"{service} error: {message}",
            category="external",
            retryable=retryable,
            delay=delay,
            user_action=action,
        )


class KubernetesAPIError(ExternalServiceError):
    """Error communicating with Kubernetes API."""

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        status: int | None = None,
        retryable: bool = True,
    ):
        if reason:
            message = f"{message} (reason: {reason})"

        # Some K8s errors are not retryable
        non_retryable_reasons = {"Forbidden", "Unauthorized", "Invalid"}
        if reason in non_retryable_reasons:
            retryable = False

        self.status = status
        super().__init__(
            service="Kubernetes API",
            message=message,
            retryable=retryable,
            user_action="Check RBAC permissions and cluster connectivity",
        )


class BrokerError(ExternalServiceError):
    """Error returned by (or while reaching) a token broker instance."""

    def __init__(
        self,
        message: str,
        base_url: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        if status_code:
            message = f"HTTP {status_code}: {message}"
        self.base_url = base_url
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(
            service=f"Broker {base_url}",
            message=message,
            retryable=True,
            user_action="Check broker availability and the controller's client registration",
        )

    def body_preview(self, limit: int = 1024) -> str | None:
        """Return a truncated preview of the response body for logging."""

        if self.response_body is None:
            return None

        if len(self.response_body) <= limit:
            return self.response_body

        return f"{self.response_body[:limit]}...<truncated>"


class KeyMaterialError(OperatorError):
    """Stored key material could not be parsed."""

    def __init__(self, message: str, secret_name: str | None = None):
        if secret_name:
            message = f"Secret '{secret_name}': {message}"
        super().__init__(
            message=message,
            category="key_material",
            retryable=True,
            user_action="Delete the corrupt secret so a fresh key can be issued",
        )


class KeyGenerationError(OperatorError):
    """Key generation failed; not retried at resource level."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(
            message=message,
            category="fatal",
            retryable=False,
            cause=cause,
            user_action="Check the operator host for entropy or memory exhaustion",
        )


class PhaseError(OperatorError):
    """Failure of one reconcile phase, wrapping the underlying error."""

    phase = "reconcile"
    state = ""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(
            message=f"{self.phase} failed: {message}",
            category=self.phase,
            retryable=True,
            cause=cause,
            user_action="Inspect operator logs; the reconcile is retried automatically",
        )


class PrepareError(PhaseError):
    """Inventory read or key decision failed; the broker was not touched."""

    phase = "prepare"
    state = "FailedPrepare"


class SynchronizationError(PhaseError):
    """Broker registration or secret write failed."""

    phase = "synchronization"
    state = "FailedSynchronization"


class FinalizeError(PhaseError):
    """Broker deregistration failed; the finalizer stays in place."""

    phase = "finalize"
