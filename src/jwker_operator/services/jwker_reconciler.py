"""
Jwker reconciliation service.

This module implements the reconcile loop for Jwker resources: the
fingerprint gate, the prepare phase (runtime inventory and key decision),
the commit phase (broker registration and managed secret write), garbage
collection of superseded secrets, and the finalizer-gated deletion path.
"""

import time
from dataclasses import dataclass
from typing import Any

import pydantic

from ..constants import JWKER_FINALIZER, STATE_ROLLOUT_COMPLETE
from ..errors import (
    ConfigurationError,
    FinalizeError,
    KeyGenerationError,
    OperatorError,
    PhaseError,
    PrepareError,
    SynchronizationError,
    ValidationError,
)
from ..models.jwker import ClientId, JwkerSpec, JwkerStatus
from ..observability.metrics import MetricsSink
from ..utils import jwk as jwkutil
from ..utils.backoff import BackoffPolicy
from ..utils.broker import BrokerClient, make_client_registration
from ..utils.fingerprint import fingerprint, is_synchronized
from ..utils.kubernetes import RuntimeInventory, SecretPartition
from ..utils.secret_manager import SecretManager, build_managed_secret, extract_jwk
from ..utils.status import ResourceWriter
from .base_reconciler import BaseReconciler


@dataclass
class Transaction:
    """Outcome of a successful prepare, consumed by commit."""

    identity: ClientId
    spec: JwkerSpec
    fingerprint: str
    key_set: jwkutil.KeySet
    partition: SecretPartition
    rotated: bool


def _finalizers(body: dict[str, Any]) -> list[str]:
    return body.get("metadata", {}).get("finalizers") or []


class JwkerReconciler(BaseReconciler):
    """Reconciles Jwker resources against the cluster and the token brokers."""

    resource_type = "jwker"

    def __init__(
        self,
        writer: ResourceWriter,
        inventory: RuntimeInventory,
        secrets: SecretManager,
        broker: BrokerClient,
        controller_jwk: dict[str, Any],
        cluster_name: str,
        metrics: MetricsSink | None = None,
        backoff: BackoffPolicy | None = None,
    ):
        super().__init__(metrics=metrics, backoff=backoff)
        self.writer = writer
        self.inventory = inventory
        self.secrets = secrets
        self.broker = broker
        self.controller_jwk = controller_jwk
        self.cluster_name = cluster_name

    def _parse_spec(self, body: dict[str, Any]) -> JwkerSpec:
        try:
            return JwkerSpec.model_validate(body.get("spec") or {})
        except pydantic.ValidationError as e:
            raise ValidationError(str(e), field="spec") from e

    async def do_reconcile(
        self, name: str, namespace: str, **kwargs
    ) -> dict[str, Any] | None:
        body = await self.writer.get(name, namespace)
        if body is None:
            self.logger.debug(f"jwker {namespace}/{name} no longer exists")
            return None

        if body.get("metadata", {}).get("deletionTimestamp"):
            return await self.finalize_resource(body)

        await self.writer.ensure_finalizer(name, namespace)

        try:
            spec = self._parse_spec(body)
        except ValidationError as e:
            raise PrepareError(str(e), cause=e) from e

        status = body.get("status") or {}
        if is_synchronized(spec, status):
            self.metrics.reconcile_skipped()
            self.logger.debug(f"jwker {namespace}/{name} already synchronized")
            return None

        identity = ClientId.from_resource(body, self.cluster_name)
        transaction = await self.prepare(identity, spec, status)
        await self.commit(transaction, body)

        await self.writer.update_status(
            name,
            namespace,
            JwkerStatus(
                synchronization_state=STATE_ROLLOUT_COMPLETE,
                synchronization_hash=transaction.fingerprint,
                synchronization_secret_name=spec.secret_name,
                synchronization_time=time.time_ns(),
            ).to_dict(),
        )
        self.metrics.reconcile_processed()
        self.logger.info(
            f"Rolled out {identity} to secret {spec.secret_name}",
            secret_name=spec.secret_name,
            synchronization_state=STATE_ROLLOUT_COMPLETE,
        )

        await self.collect_garbage(transaction)
        return {
            "secretName": spec.secret_name,
            "rotated": transaction.rotated,
        }

    async def prepare(
        self, identity: ClientId, spec: JwkerSpec, status: dict[str, Any]
    ) -> Transaction:
        """
        Read the runtime inventory and decide on the key to issue.

        The key of the used secret named spec.secretName is kept only when
        that secret is also the one last synchronized; otherwise a new key is
        generated. Keys of all other used secrets stay registered so running
        pods keep working until they pick up the new secret.

        Raises:
            PrepareError: If the inventory or stored key material is unusable
            KeyGenerationError: If a new key cannot be produced
        """
        try:
            partition = await self.inventory.partition(identity)

            reuse = spec.secret_name == status.get("synchronizationSecretName")
            current_key: dict[str, Any] | None = None
            retained: list[dict[str, Any]] = []
            for secret in partition.used:
                key = extract_jwk(secret)
                if reuse and secret.metadata.name == spec.secret_name:
                    current_key = key
                else:
                    retained.append(jwkutil.public_projection(key))

            rotated = current_key is None
            if current_key is None:
                current_key = jwkutil.generate()
                self.logger.info(
                    f"Issuing new key {current_key['kid']} for {identity}",
                    secret_name=spec.secret_name,
                )

            key_set = jwkutil.build_key_set(current_key, retained)

        except KeyGenerationError:
            raise
        except OperatorError as e:
            raise PrepareError(str(e), cause=e) from e

        return Transaction(
            identity=identity,
            spec=spec,
            fingerprint=fingerprint(spec),
            key_set=key_set,
            partition=partition,
            rotated=rotated,
        )

    async def commit(self, transaction: Transaction, owner: dict[str, Any]) -> None:
        """
        Register the public keys with every broker, then write the secret.

        A secret write failing after a successful registration leaves the
        broker ahead of the cluster; the next reconcile registers again.

        Raises:
            SynchronizationError: On any broker or secret write failure
        """
        try:
            if not self.broker.instances:
                raise ConfigurationError("No token broker instances configured")

            registration = make_client_registration(
                self.controller_jwk,
                transaction.key_set.public_jwks(),
                transaction.identity,
                transaction.spec.access_policy,
            )
            await self.broker.register(registration)

            secret = build_managed_secret(
                transaction.identity,
                transaction.spec.secret_name,
                transaction.key_set.private_key,
                self.broker.instances[0],
                owner=owner,
            )
            await self.secrets.apply_secret(secret)

        except OperatorError as e:
            raise SynchronizationError(str(e), cause=e) from e

    async def collect_garbage(self, transaction: Transaction) -> None:
        """Delete unused managed secrets other than the active one; best effort."""
        active = transaction.spec.secret_name
        for secret in transaction.partition.unused:
            secret_name = secret.metadata.name
            if secret_name == active:
                continue
            try:
                await self.secrets.delete_secret(
                    secret_name, transaction.identity.namespace
                )
            except OperatorError as e:
                self.logger.warning(
                    f"Failed to delete unused secret {secret_name}: {e}",
                    secret_name=secret_name,
                )

    async def do_finalize(
        self, name: str, namespace: str, **kwargs
    ) -> dict[str, Any] | None:
        body = kwargs.get("body") or await self.writer.get(name, namespace)
        if body is None:
            return None
        return await self.finalize_resource(dict(body))

    async def finalize_resource(self, body: dict[str, Any]) -> dict[str, Any] | None:
        """
        Deregister from every broker, then release the finalizer.

        Raises:
            FinalizeError: If any broker could not be reached or refused;
                the finalizer stays and deletion remains pending
        """
        metadata = body["metadata"]
        name, namespace = metadata["name"], metadata["namespace"]
        if JWKER_FINALIZER not in _finalizers(body):
            return None

        identity = ClientId.from_resource(body, self.cluster_name)
        try:
            await self.broker.deregister(identity)
        except OperatorError as e:
            raise FinalizeError(str(e), cause=e) from e

        await self._delete_managed_secrets(identity)
        await self.writer.remove_finalizer(name, namespace)
        self.writer.forget(name, namespace)
        self.metrics.finalized()
        self.logger.info(f"Finalized {identity}")
        return {"deregistered": str(identity)}

    async def _delete_managed_secrets(self, identity: ClientId) -> None:
        # Owner references cascade as well, so failures here are not fatal
        try:
            secrets = await self.inventory.list_managed_secrets(identity)
        except OperatorError as e:
            self.logger.warning(f"Failed to list secrets of {identity}: {e}")
            return
        for secret in secrets:
            try:
                await self.secrets.delete_secret(
                    secret.metadata.name, identity.namespace
                )
            except OperatorError as e:
                self.logger.warning(
                    f"Failed to delete secret {secret.metadata.name}: {e}",
                    secret_name=secret.metadata.name,
                )

    async def record_phase_failure(
        self, name: str, namespace: str, error: PhaseError
    ) -> None:
        if not error.state:
            return
        try:
            await self.writer.update_status(
                name, namespace, {"synchronizationState": error.state}
            )
        except OperatorError as e:
            self.logger.warning(
                f"Failed to record {error.state} on jwker {namespace}/{name}: {e}"
            )
