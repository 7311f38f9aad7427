"""
Serialized writes to Jwker resources.

Status and finalizer updates always start from a fresh read of the resource
and are sent with the resourceVersion of that read. Writes for the same
resource are serialized by a per-resource lock; a conflict from the API
server (someone else wrote in between) triggers a re-read and another
attempt, up to a small bound.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import (
    JWKER_FINALIZER,
    JWKER_GROUP,
    JWKER_PLURAL,
    JWKER_VERSION,
    STATUS_CONFLICT_RETRIES,
)
from ..errors import KubernetesAPIError

logger = logging.getLogger(__name__)

Mutation = Callable[[dict[str, Any]], bool | None]


class ResourceWriter:
    """Read-modify-write access to Jwker resources under a per-resource lock."""

    def __init__(
        self,
        custom_api: client.CustomObjectsApi,
        conflict_retries: int = STATUS_CONFLICT_RETRIES,
    ):
        self.custom_api = custom_api
        self.conflict_retries = conflict_retries
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def lock_for(self, name: str, namespace: str) -> asyncio.Lock:
        key = (namespace, name)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def forget(self, name: str, namespace: str) -> None:
        self._locks.pop((namespace, name), None)

    async def get(self, name: str, namespace: str) -> dict[str, Any] | None:
        """Fetch the resource; None if it no longer exists."""
        try:
            return await asyncio.to_thread(
                self.custom_api.get_namespaced_custom_object,
                group=JWKER_GROUP,
                version=JWKER_VERSION,
                namespace=namespace,
                plural=JWKER_PLURAL,
                name=name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesAPIError(
                f"Failed to read jwker {namespace}/{name}",
                reason=e.reason,
                status=e.status,
            ) from e

    async def _modify(
        self,
        name: str,
        namespace: str,
        mutate: Mutation,
        replace: Callable[..., dict[str, Any]],
        what: str,
    ) -> dict[str, Any] | None:
        async with self.lock_for(name, namespace):
            for attempt in range(self.conflict_retries + 1):
                body = await self.get(name, namespace)
                if body is None:
                    logger.debug(f"jwker {namespace}/{name} is gone, skipping {what}")
                    return None
                if mutate(body) is False:
                    return body
                try:
                    return await asyncio.to_thread(
                        replace,
                        group=JWKER_GROUP,
                        version=JWKER_VERSION,
                        namespace=namespace,
                        plural=JWKER_PLURAL,
                        name=name,
                        body=body,
                    )
                except ApiException as e:
                    if e.status == 409 and attempt < self.conflict_retries:
                        logger.debug(
                            f"Conflict writing {what} of jwker {namespace}/{name}, "
                            f"re-reading (attempt {attempt + 1})"
                        )
                        continue
                    if e.status == 404:
                        return None
                    raise KubernetesAPIError(
                        f"Failed to write {what} of jwker {namespace}/{name}",
                        reason=e.reason,
                        status=e.status,
                    ) from e
        return None

    async def update_status(
        self, name: str, namespace: str, status: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Merge the given fields into the status of the latest version."""

        def apply(body: dict[str, Any]) -> None:
            current = body.get("status") or {}
            current.update(status)
            body["status"] = current

        return await self._modify(
            name,
            namespace,
            apply,
            self.custom_api.replace_namespaced_custom_object_status,
            "status",
        )

    async def ensure_finalizer(self, name: str, namespace: str) -> None:
        def apply(body: dict[str, Any]) -> bool:
            finalizers = body["metadata"].setdefault("finalizers", [])
            if JWKER_FINALIZER in finalizers:
                return False
            finalizers.append(JWKER_FINALIZER)
            return True

        await self._modify(
            name,
            namespace,
            apply,
            self.custom_api.replace_namespaced_custom_object,
            "finalizers",
        )

    async def remove_finalizer(self, name: str, namespace: str) -> None:
        def apply(body: dict[str, Any]) -> bool:
            finalizers = body["metadata"].get("finalizers") or []
            if JWKER_FINALIZER not in finalizers:
                return False
            body["metadata"]["finalizers"] = [
                f for f in finalizers if f != JWKER_FINALIZER
            ]
            return True

        await self._modify(
            name,
            namespace,
            apply,
            self.custom_api.replace_namespaced_custom_object,
            "finalizers",
        )
