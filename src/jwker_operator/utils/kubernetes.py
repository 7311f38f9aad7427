"""
Kubernetes utilities for the Jwker operator.

This module provides helper functions for interacting with the Kubernetes API,
including client configuration and the runtime inventory that decides which
managed secrets are still mounted by running pods.

Key functionality:
- Kubernetes client management and configuration
- Listing managed secrets and application pods
- Partitioning managed secrets into used and unused
"""

import asyncio
import logging
from dataclasses import dataclass, field

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from ..constants import APP_LABEL_KEY, SECRET_TYPE_LABEL_KEY, SECRET_TYPE_LABEL_VALUE
from ..errors import KubernetesAPIError
from ..models.jwker import ClientId

logger = logging.getLogger(__name__)

# Pods in these phases will never read a secret again
TERMINAL_POD_PHASES = frozenset({"Succeeded", "Failed"})


def get_kubernetes_client() -> client.ApiClient:
    """
    Get configured Kubernetes API client.

    Tries in-cluster configuration first, then the local kubeconfig.

    Returns:
        Configured Kubernetes API client
    """
    try:
        # Try in-cluster config first (when running in a pod)
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            # Fall back to local kubeconfig (for development)
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()


def managed_secret_selector(identity: ClientId) -> str:
    return (
        f"{APP_LABEL_KEY}={identity.name},"
        f"{SECRET_TYPE_LABEL_KEY}={SECRET_TYPE_LABEL_VALUE}"
    )


def application_pod_selector(identity: ClientId) -> str:
    return f"{APP_LABEL_KEY}={identity.name}"


def pod_secret_names(pod: client.V1Pod) -> set[str]:
    """
    Collect the names of all secrets a pod references.

    Covers secret volumes, projected volume sources, envFrom secretRefs and
    env secretKeyRefs of both regular and init containers.
    """
    names: set[str] = set()
    spec = pod.spec
    if spec is None:
        return names

    for volume in spec.volumes or []:
        if volume.secret and volume.secret.secret_name:
            names.add(volume.secret.secret_name)
        if volume.projected:
            for source in volume.projected.sources or []:
                if source.secret and source.secret.name:
                    names.add(source.secret.name)

    for container in [*(spec.containers or []), *(spec.init_containers or [])]:
        for env_from in container.env_from or []:
            if env_from.secret_ref and env_from.secret_ref.name:
                names.add(env_from.secret_ref.name)
        for env in container.env or []:
            ref = env.value_from.secret_key_ref if env.value_from else None
            if ref and ref.name:
                names.add(ref.name)

    return names


def is_running(pod: client.V1Pod) -> bool:
    phase = pod.status.phase if pod.status else None
    return phase not in TERMINAL_POD_PHASES


@dataclass
class SecretPartition:
    """Managed secrets split by whether a running pod references them."""

    used: list[client.V1Secret] = field(default_factory=list)
    unused: list[client.V1Secret] = field(default_factory=list)

    def used_named(self, name: str) -> client.V1Secret | None:
        for secret in self.used:
            if secret.metadata.name == name:
                return secret
        return None


def partition_by_usage(
    secrets: list[client.V1Secret], pods: list[client.V1Pod]
) -> SecretPartition:
    """
    Partition secrets by usage.

    Args:
        secrets: Managed secrets of one application
        pods: Pods of the same application

    Returns:
        SecretPartition preserving the input order of secrets
    """
    referenced: set[str] = set()
    for pod in pods:
        if is_running(pod):
            referenced |= pod_secret_names(pod)

    partition = SecretPartition()
    for secret in secrets:
        if secret.metadata.name in referenced:
            partition.used.append(secret)
        else:
            partition.unused.append(secret)
    return partition


class RuntimeInventory:
    """Reads managed secrets and running pods for an application."""

    def __init__(self, core_api: client.CoreV1Api):
        self.core_api = core_api

    async def list_managed_secrets(self, identity: ClientId) -> list[client.V1Secret]:
        try:
            result = await asyncio.to_thread(
                self.core_api.list_namespaced_secret,
                namespace=identity.namespace,
                label_selector=managed_secret_selector(identity),
            )
        except ApiException as e:
            raise KubernetesAPIError(
                f"Failed to list secrets for {identity}",
                reason=e.reason,
                status=e.status,
            ) from e
        return list(result.items or [])

    async def list_application_pods(self, identity: ClientId) -> list[client.V1Pod]:
        try:
            result = await asyncio.to_thread(
                self.core_api.list_namespaced_pod,
                namespace=identity.namespace,
                label_selector=application_pod_selector(identity),
            )
        except ApiException as e:
            raise KubernetesAPIError(
                f"Failed to list pods for {identity}",
                reason=e.reason,
                status=e.status,
            ) from e
        return list(result.items or [])

    async def partition(self, identity: ClientId) -> SecretPartition:
        """List and partition in one go; any read failure propagates."""
        secrets = await self.list_managed_secrets(identity)
        pods = await self.list_application_pods(identity)
        partition = partition_by_usage(secrets, pods)
        logger.debug(
            f"Inventory for {identity}: {len(partition.used)} used, "
            f"{len(partition.unused)} unused secrets"
        )
        return partition
