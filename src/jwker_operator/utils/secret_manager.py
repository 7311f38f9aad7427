"""
Secret management utilities for application and controller key material.

This module handles Kubernetes secret operations: writing the managed secret
that hands an application its private key and broker metadata, reading keys
back out of existing secrets, deleting superseded secrets, and bootstrapping
the controller's own signing key.
"""

import asyncio
import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import (
    APP_LABEL_KEY,
    PRIVATE_JWK_DATA_KEY,
    PUBLIC_JWKS_DATA_KEY,
    RELOADER_ANNOTATION_KEY,
    SECRET_TYPE_LABEL_KEY,
    SECRET_TYPE_LABEL_VALUE,
    TOKEN_X_CLIENT_ID_KEY,
    TOKEN_X_ISSUER_KEY,
    TOKEN_X_JWKS_URI_KEY,
    TOKEN_X_PRIVATE_JWK_KEY,
    TOKEN_X_TOKEN_ENDPOINT_KEY,
    TOKEN_X_WELL_KNOWN_URL_KEY,
)
from ..errors import ConfigurationError, KeyMaterialError, KubernetesAPIError
from ..models.jwker import ClientId
from . import jwk as jwkutil
from .broker import BrokerInstance

logger = logging.getLogger(__name__)


def _encode(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


def _decode(secret: client.V1Secret, key: str) -> str | None:
    data = secret.data or {}
    if key not in data:
        return None
    try:
        return base64.b64decode(data[key]).decode()
    except (binascii.Error, UnicodeDecodeError) as e:
        raise KeyMaterialError(
            f"value of '{key}' is not valid base64: {e}",
            secret_name=secret.metadata.name,
        ) from e


def owner_reference(owner: dict[str, Any]) -> dict[str, Any]:
    """Controller owner reference pointing at a Jwker resource body."""
    metadata = owner.get("metadata", {})
    return {
        "apiVersion": owner["apiVersion"],
        "kind": owner["kind"],
        "name": metadata["name"],
        "uid": metadata["uid"],
        "controller": True,
        "blockOwnerDeletion": True,
    }


def build_managed_secret(
    identity: ClientId,
    secret_name: str,
    private_jwk: dict[str, Any],
    instance: BrokerInstance,
    owner: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Build the body of an application's managed secret.

    Args:
        identity: Application the secret belongs to
        secret_name: Name of the secret
        private_jwk: The single private key the application signs with
        instance: Broker whose connection metadata the application receives
        owner: Jwker resource body owning the secret, if any

    Returns:
        Secret manifest with base64-encoded data
    """
    metadata: dict[str, Any] = {
        "name": secret_name,
        "namespace": identity.namespace,
        "labels": {
            APP_LABEL_KEY: identity.name,
            SECRET_TYPE_LABEL_KEY: SECRET_TYPE_LABEL_VALUE,
        },
        "annotations": {RELOADER_ANNOTATION_KEY: "true"},
    }
    if owner is not None:
        metadata["ownerReferences"] = [owner_reference(owner)]

    values = {
        TOKEN_X_PRIVATE_JWK_KEY: jwkutil.serialize(private_jwk),
        TOKEN_X_CLIENT_ID_KEY: str(identity),
        TOKEN_X_WELL_KNOWN_URL_KEY: instance.well_known_url,
        TOKEN_X_ISSUER_KEY: instance.metadata.issuer,
        TOKEN_X_JWKS_URI_KEY: instance.metadata.jwks_uri,
        TOKEN_X_TOKEN_ENDPOINT_KEY: instance.metadata.token_endpoint,
    }
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": metadata,
        "type": "Opaque",
        "data": {key: _encode(value) for key, value in values.items()},
    }


def extract_jwk(secret: client.V1Secret) -> dict[str, Any]:
    """
    Read the private key out of a managed secret.

    Raises:
        KeyMaterialError: If the key is missing, malformed or public-only
    """
    name = secret.metadata.name
    raw = _decode(secret, TOKEN_X_PRIVATE_JWK_KEY)
    if raw is None:
        raise KeyMaterialError(
            f"failed to find '{TOKEN_X_PRIVATE_JWK_KEY}' in secret", secret_name=name
        )
    key = jwkutil.parse(raw, source=name)
    if not jwkutil.is_private(key):
        raise KeyMaterialError(
            f"'{TOKEN_X_PRIVATE_JWK_KEY}' holds no private key", secret_name=name
        )
    return key


def load_jwk_file(path: str) -> dict[str, Any]:
    """Load the controller's private JWK from a mounted file."""
    try:
        raw = Path(path).read_text()
    except OSError as e:
        raise ConfigurationError(f"Unable to read JWK file {path}: {e}") from e
    try:
        key = jwkutil.parse(raw, source=path)
    except KeyMaterialError as e:
        raise ConfigurationError(f"Invalid JWK in {path}: {e}") from e
    if not jwkutil.is_private(key):
        raise ConfigurationError(f"JWK in {path} has no private component")
    return key


class SecretManager:
    """Manages Kubernetes secrets holding key material."""

    def __init__(self, core_api: client.CoreV1Api | None = None):
        """
        Initialize secret manager.

        Args:
            core_api: Optional CoreV1Api client
        """
        self._v1 = core_api

    @property
    def v1(self) -> client.CoreV1Api:
        """Get CoreV1Api client."""
        if self._v1 is None:
            self._v1 = client.CoreV1Api()
        return self._v1

    async def get_secret(self, name: str, namespace: str) -> client.V1Secret | None:
        """
        Retrieve a secret.

        Returns:
            Secret object if found, None if not found

        Raises:
            KubernetesAPIError: If read fails for reasons other than 404
        """
        try:
            return await asyncio.to_thread(
                self.v1.read_namespaced_secret, name=name, namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesAPIError(
                f"Failed to read secret {namespace}/{name}",
                reason=e.reason,
                status=e.status,
            ) from e

    async def apply_secret(self, body: dict[str, Any]) -> client.V1Secret:
        """
        Create the secret, or replace it in place if it already exists.

        Replacement carries the resourceVersion just read, so a concurrent
        writer makes this call fail with a conflict instead of being
        silently overwritten.

        Raises:
            KubernetesAPIError: If the write fails
        """
        name = body["metadata"]["name"]
        namespace = body["metadata"]["namespace"]
        existing = await self.get_secret(name, namespace)

        try:
            if existing is None:
                secret = await asyncio.to_thread(
                    self.v1.create_namespaced_secret, namespace=namespace, body=body
                )
                logger.info(
                    f"Created secret {namespace}/{name}",
                    extra={"secret_name": name, "namespace": namespace},
                )
            else:
                body["metadata"]["resourceVersion"] = (
                    existing.metadata.resource_version
                )
                secret = await asyncio.to_thread(
                    self.v1.replace_namespaced_secret,
                    name=name,
                    namespace=namespace,
                    body=body,
                )
                logger.info(
                    f"Replaced secret {namespace}/{name}",
                    extra={"secret_name": name, "namespace": namespace},
                )
            return secret
        except ApiException as e:
            raise KubernetesAPIError(
                f"Failed to write secret {namespace}/{name}",
                reason=e.reason,
                status=e.status,
            ) from e

    async def delete_secret(self, name: str, namespace: str) -> bool:
        """
        Delete a secret.

        Returns:
            True if deleted, False if it did not exist

        Raises:
            KubernetesAPIError: If deletion fails for reasons other than 404
        """
        try:
            await asyncio.to_thread(
                self.v1.delete_namespaced_secret, name=name, namespace=namespace
            )
            logger.info(
                f"Deleted secret {namespace}/{name}",
                extra={"secret_name": name, "namespace": namespace},
            )
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise KubernetesAPIError(
                f"Failed to delete secret {namespace}/{name}",
                reason=e.reason,
                status=e.status,
            ) from e

    async def ensure_operator_jwk(self, name: str, namespace: str) -> dict[str, Any]:
        """
        Load the controller's signing key, creating it on first start.

        Raises:
            ConfigurationError: If the secret exists without a usable key
        """
        secret = await self.get_secret(name, namespace)
        if secret is not None:
            raw = _decode(secret, PRIVATE_JWK_DATA_KEY)
            if raw is None:
                raise ConfigurationError(
                    f"Secret {namespace}/{name} has no '{PRIVATE_JWK_DATA_KEY}' key"
                )
            try:
                key = jwkutil.parse(raw, source=name)
            except KeyMaterialError as e:
                raise ConfigurationError(str(e)) from e
            if not jwkutil.is_private(key):
                raise ConfigurationError(
                    f"Secret {namespace}/{name} holds no private controller key"
                )
            logger.info(f"Loaded controller key {key['kid']} from {namespace}/{name}")
            return key

        key = jwkutil.generate()
        await self.apply_secret(
            {
                "apiVersion": "v1",
                "kind": "Secret",
                "metadata": {"name": name, "namespace": namespace},
                "type": "Opaque",
                "data": {PRIVATE_JWK_DATA_KEY: _encode(jwkutil.serialize(key))},
            }
        )
        logger.info(f"Generated controller key {key['kid']} in {namespace}/{name}")
        return key

    async def ensure_public_secret(
        self, name: str, namespace: str, controller_jwk: dict[str, Any]
    ) -> None:
        """Publish the controller's public key set for the broker to trust."""
        jwks = {"keys": [jwkutil.public_projection(controller_jwk)]}
        await self.apply_secret(
            {
                "apiVersion": "v1",
                "kind": "Secret",
                "metadata": {"name": name, "namespace": namespace},
                "type": "Opaque",
                "data": {PUBLIC_JWKS_DATA_KEY: _encode(json.dumps(jwks))},
            }
        )
