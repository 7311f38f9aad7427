"""
Jwker handlers - Issue and register client keys for applications.

Create, resume and update events all run the same reconcile: the reconciler
itself decides, from the spec fingerprint and the recorded status, whether
there is work to do. Deletion runs the finalizer path, which deregisters the
application from every broker before the resource may disappear.

The reconciler is built once at startup and shared through kopf's memo.
"""

import asyncio
import logging
import random
from typing import Any

import kopf

from ..constants import JWKER_GROUP, JWKER_PLURAL, JWKER_VERSION, RECONCILE_JITTER_MAX
from ..services import JwkerReconciler
from ..utils.handler_logging import log_handler_entry

logger = logging.getLogger(__name__)


def _reconciler(memo: kopf.Memo) -> JwkerReconciler:
    reconciler = getattr(memo, "reconciler", None)
    if reconciler is None:
        raise kopf.TemporaryError("Operator is still starting up", delay=5)
    return reconciler


@kopf.on.create(JWKER_PLURAL, group=JWKER_GROUP, version=JWKER_VERSION)
@kopf.on.resume(JWKER_PLURAL, group=JWKER_GROUP, version=JWKER_VERSION)
@kopf.on.update(JWKER_PLURAL, group=JWKER_GROUP, version=JWKER_VERSION)
async def reconcile_jwker(
    name: str,
    namespace: str,
    memo: kopf.Memo,
    retry: int,
    reason: str,
    **kwargs: Any,
) -> None:
    """
    Reconcile a Jwker resource.

    Args:
        name: Name of the Jwker resource
        namespace: Namespace of the Jwker resource
        memo: Operator memo holding the shared reconciler
        retry: kopf retry counter, drives the backoff delay
        reason: Event cause (create, resume, update)
    """
    log_handler_entry(str(reason), name, namespace, extra={"retry": retry})

    # Spread reconciles that were triggered together
    await asyncio.sleep(random.uniform(0, RECONCILE_JITTER_MAX))

    await _reconciler(memo).reconcile(name=name, namespace=namespace, retry=retry)
    # Return None to avoid Kopf creating status subpaths
    return None


@kopf.on.delete(JWKER_PLURAL, group=JWKER_GROUP, version=JWKER_VERSION)
async def delete_jwker(
    name: str,
    namespace: str,
    body: kopf.Body,
    memo: kopf.Memo,
    retry: int,
    **kwargs: Any,
) -> None:
    """
    Deregister a deleted Jwker from every broker.

    Raising keeps the finalizer in place; kopf retries after the delay the
    reconciler computed.
    """
    log_handler_entry("delete", name, namespace, extra={"retry": retry})

    await _reconciler(memo).finalize(
        name=name, namespace=namespace, retry=retry, body=body
    )
    return None
