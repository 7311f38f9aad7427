"""Centralized operator settings using pydantic-settings.

This module provides a single source of truth for all operator configuration
loaded from environment variables. Uses pydantic for automatic validation,
type coercion, and documentation.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import DEFAULT_OPERATOR_NAME, DEFAULT_OPERATOR_NAMESPACE


class Settings(BaseSettings):
    """Operator configuration loaded from environment variables.

    All settings have sensible defaults for local development. Override via
    environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Identity
    cluster_name: str = Field(
        default="local",
        validation_alias="CLUSTER_NAME",
        description="Cluster component of every application client identity",
    )
    client_id: str = Field(
        default="",
        validation_alias="JWKER_CLIENT_ID",
        description="Client ID of this controller at the broker",
    )
    client_jwk_file: str = Field(
        default="",
        validation_alias="JWKER_CLIENT_JWK_FILE",
        description="Path to the controller's private JWK (empty = bootstrap from secret)",
    )
    operator_namespace: str = Field(
        default=DEFAULT_OPERATOR_NAMESPACE,
        validation_alias="OPERATOR_NAMESPACE",
        description="Namespace where the operator is deployed",
    )
    private_jwk_secret_name: str = Field(
        default="jwker-private-jwk",
        validation_alias="PRIVATE_JWK_SECRET_NAME",
        description="Secret holding the controller's private JWK",
    )
    shared_public_secret_name: str = Field(
        default="jwker-public-jwks",
        validation_alias="SHARED_PUBLIC_SECRET_NAME",
        description="Secret publishing the controller's public JWKS",
    )

    # Broker
    tokendings_base_urls: str = Field(
        default="",
        validation_alias="TOKENDINGS_BASE_URLS",
        description="Comma-separated list of broker base URLs, in registration order",
    )
    broker_http_timeout_seconds: float = Field(
        default=10.0,
        validation_alias="BROKER_HTTP_TIMEOUT_SECONDS",
        description="Timeout for broker HTTP calls",
    )
    client_assertion_lifetime_seconds: int = Field(
        default=60,
        validation_alias="CLIENT_ASSERTION_LIFETIME_SECONDS",
        description="Validity window of the self-signed bearer assertion",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )

    # Namespace watching
    namespaces: str = Field(
        default="",
        validation_alias="JWKER_OPERATOR_NAMESPACES",
        description="Comma-separated list of namespaces to watch (empty = all namespaces)",
    )

    # Metrics and observability
    metrics_port: int = Field(
        default=8181,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )

    # Reconciliation behavior
    max_concurrent_reconciles: int = Field(
        default=20,
        validation_alias="MAX_CONCURRENT_RECONCILES",
        description="Maximum number of reconciles running in parallel",
    )
    reconcile_retry_interval_seconds: float = Field(
        default=10.0,
        validation_alias="RECONCILE_RETRY_INTERVAL_SECONDS",
        description="Delay before a failed reconcile is retried",
    )
    reconcile_backoff: str = Field(
        default="fixed",
        validation_alias="RECONCILE_BACKOFF",
        description="Retry policy: 'fixed' or 'exponential'",
    )
    reconcile_backoff_max_seconds: float = Field(
        default=300.0,
        validation_alias="RECONCILE_BACKOFF_MAX_SECONDS",
        description="Upper bound for exponential retry delays",
    )
    startup_timeout_seconds: float = Field(
        default=60.0,
        validation_alias="STARTUP_TIMEOUT_SECONDS",
        description="Ceiling for operator startup operations",
    )

    @property
    def watched_namespaces(self) -> list[str] | None:
        """Parse watched namespaces from comma-separated string.

        Returns:
            List of namespace names, or None to watch all namespaces
        """
        if self.namespaces:
            return [ns.strip() for ns in self.namespaces.split(",") if ns.strip()]
        return None

    @property
    def broker_base_urls(self) -> list[str]:
        """Broker base URLs in configured order."""
        return [
            url.strip().rstrip("/")
            for url in self.tokendings_base_urls.split(",")
            if url.strip()
        ]

    @property
    def effective_client_id(self) -> str:
        """Client ID of the controller, defaulting to its own canonical identity."""
        if self.client_id:
            return self.client_id
        return f"{self.cluster_name}:{self.operator_namespace}:{DEFAULT_OPERATOR_NAME}"


# Global settings instance - initialized once at module import
settings = Settings()
