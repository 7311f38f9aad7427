#!/usr/bin/env python3
"""
Jwker Operator - Main entry point for the Kopf-based jwker controller.

The operator issues a signing key per application declared by a Jwker
resource, registers the public keys and the application's access policy
with the configured token brokers, and hands the private key to the
application through a managed secret.

Usage:
    jwker-operator
    # Or with kopf directly:
    kopf run -m jwker_operator.operator --all-namespaces

Environment Variables:
    CLUSTER_NAME: Cluster component of application client IDs
    TOKENDINGS_BASE_URLS: Comma-separated broker base URLs
    JWKER_OPERATOR_NAMESPACES: Comma-separated list of namespaces to watch
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
"""

import asyncio
import logging
import random
import sys

import kopf
from kubernetes import client

# Importing handler modules registers their decorators with kopf
from jwker_operator.constants import JWKER_FINALIZER, JWKER_GROUP, JWKER_PLURAL
from jwker_operator.errors import ConfigurationError
from jwker_operator.handlers import jwker  # noqa: F401
from jwker_operator.observability.health import HealthChecker
from jwker_operator.observability.logging import setup_structured_logging
from jwker_operator.observability.metrics import (
    MetricsServer,
    PrometheusMetricsSink,
    run_cluster_metrics_refresh,
)
from jwker_operator.services import JwkerReconciler
from jwker_operator.settings import settings as operator_settings
from jwker_operator.utils.backoff import backoff_from_settings
from jwker_operator.utils.broker import BrokerClient, BrokerInstance
from jwker_operator.utils.kubernetes import RuntimeInventory, get_kubernetes_client
from jwker_operator.utils.secret_manager import SecretManager, load_jwk_file
from jwker_operator.utils.status import ResourceWriter


def configure_logging() -> None:
    """Configure structured logging for the operator based on operator_settings."""
    setup_structured_logging(
        log_level=operator_settings.log_level.upper(),
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
    )


async def load_controller_key(secrets: SecretManager) -> dict:
    """
    Obtain the controller's own signing key and publish its public half.

    The key comes from JWKER_CLIENT_JWK_FILE when set; otherwise it is read
    from (or generated into) the private key secret in the operator namespace.
    """
    if operator_settings.client_jwk_file:
        key = load_jwk_file(operator_settings.client_jwk_file)
        logging.info(f"Loaded controller key {key['kid']} from file")
    else:
        key = await secrets.ensure_operator_jwk(
            operator_settings.private_jwk_secret_name,
            operator_settings.operator_namespace,
        )

    await secrets.ensure_public_secret(
        operator_settings.shared_public_secret_name,
        operator_settings.operator_namespace,
        key,
    )
    return key


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, memo: kopf.Memo, **_
) -> None:
    """
    Operator startup configuration.

    Configures kopf, bootstraps the controller key, builds the shared
    reconciler and starts the metrics server with its cluster refresh loop.
    """
    configure_logging()
    logging.info("Starting Jwker Operator...")

    settings.watching.reconnect_backoff = 1.0
    settings.peering.name = "jwker-operator"
    settings.peering.priority = random.randint(0, 32767)
    settings.execution.max_workers = operator_settings.max_concurrent_reconciles
    settings.persistence.finalizer = JWKER_FINALIZER

    watched_namespaces = operator_settings.watched_namespaces
    if watched_namespaces:
        logging.info(f"Watching namespaces: {', '.join(watched_namespaces)}")
    else:
        logging.info("Watching all namespaces (cluster-wide mode)")

    base_urls = operator_settings.broker_base_urls
    if not base_urls:
        raise ConfigurationError(
            "No token broker configured",
            user_action="Set TOKENDINGS_BASE_URLS to one or more broker base URLs",
        )

    api_client = get_kubernetes_client()
    core_api = client.CoreV1Api(api_client)
    custom_api = client.CustomObjectsApi(api_client)
    secrets = SecretManager(core_api)

    controller_jwk = await asyncio.wait_for(
        load_controller_key(secrets),
        timeout=operator_settings.startup_timeout_seconds,
    )

    client_id = operator_settings.effective_client_id
    instances = [
        BrokerInstance.from_base_url(url, client_id, controller_jwk)
        for url in base_urls
    ]
    logging.info(
        f"Registering as {client_id} with {len(instances)} broker instance(s): "
        f"{', '.join(base_urls)}"
    )

    metrics_sink = PrometheusMetricsSink()
    broker = BrokerClient(
        instances,
        timeout=operator_settings.broker_http_timeout_seconds,
        assertion_lifetime=operator_settings.client_assertion_lifetime_seconds,
        metrics=metrics_sink,
    )
    memo.broker = broker
    memo.reconciler = JwkerReconciler(
        writer=ResourceWriter(custom_api),
        inventory=RuntimeInventory(core_api),
        secrets=secrets,
        broker=broker,
        controller_jwk=controller_jwk,
        cluster_name=operator_settings.cluster_name,
        metrics=metrics_sink,
        backoff=backoff_from_settings(
            operator_settings.reconcile_backoff,
            operator_settings.reconcile_retry_interval_seconds,
            operator_settings.reconcile_backoff_max_seconds,
        ),
    )

    memo.metrics_refresh = asyncio.create_task(
        run_cluster_metrics_refresh(metrics_sink, custom_api, core_api)
    )

    try:
        metrics_server = MetricsServer(
            metrics_sink.registry,
            port=operator_settings.metrics_port,
            host=operator_settings.metrics_host,
        )
        await metrics_server.start()
        memo.metrics_server = metrics_server
    except OSError as e:
        # Don't fail operator startup if the port is unavailable
        logging.error(f"Failed to start metrics server: {e}")
        logging.warning("Continuing without metrics server")


@kopf.on.cleanup()
async def cleanup_handler(memo: kopf.Memo, **_) -> None:
    """Stop background tasks and release network resources."""
    logging.info("Shutting down Jwker Operator...")

    refresh = getattr(memo, "metrics_refresh", None)
    if refresh is not None:
        refresh.cancel()

    broker = getattr(memo, "broker", None)
    if broker is not None:
        await broker.close()

    metrics_server = getattr(memo, "metrics_server", None)
    if metrics_server is not None:
        await metrics_server.stop()


@kopf.on.probe(id="healthz")
async def health_check(**_) -> dict[str, str]:
    """Health summary for kopf's liveness endpoint."""
    health_checker = HealthChecker()
    results = await health_checker.check_all()
    return {
        "status": health_checker.get_overall_health(results),
        "operator": "jwker-operator",
        "crd": f"{JWKER_PLURAL}.{JWKER_GROUP}",
    }


def main() -> None:
    """
    Main entry point for the operator.

    Configures logging, determines namespace scope and runs kopf.
    """
    configure_logging()

    watched_namespaces = operator_settings.watched_namespaces

    try:
        if watched_namespaces:
            kopf.run(
                namespaces=watched_namespaces,
                liveness_endpoint="http://0.0.0.0:8080/healthz",
            )
        else:
            kopf.run(
                clusterwide=True,
                liveness_endpoint="http://0.0.0.0:8080/healthz",
            )
    except KeyboardInterrupt:
        logging.info("Received shutdown signal")
        sys.exit(0)


if __name__ == "__main__":
    main()
