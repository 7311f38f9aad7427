"""Shared logging utilities for kopf handlers.

Handler entry is logged at a configurable level so that it is easy to see
which events reached the operator.
"""

import logging
from typing import Any

from ..constants import HANDLER_ENTRY_LOG_LEVEL

logger = logging.getLogger(__name__)


def log_handler_entry(
    handler_type: str,
    name: str,
    namespace: str,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log handler invocation at HANDLER_ENTRY_LOG_LEVEL.

    Args:
        handler_type: Type of handler (create, update, resume, delete)
        name: Resource name
        namespace: Resource namespace
        extra: Additional context to include in structured log
    """
    log_extra = {
        "handler_type": handler_type,
        "resource_type": "jwker",
        "resource_name": name,
        "namespace": namespace,
    }
    if extra:
        log_extra.update(extra)

    logger.log(
        HANDLER_ENTRY_LOG_LEVEL,
        f"Handler invoked: {handler_type} jwker/{name} in {namespace}",
        extra=log_extra,
    )
