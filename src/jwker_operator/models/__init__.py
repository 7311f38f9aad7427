"""
Pydantic models for the Jwker operator.

This module exports the resource models and the application identity.
"""

from .jwker import (
    AccessPolicy,
    AccessPolicyInbound,
    AccessPolicyOutbound,
    AccessPolicyRule,
    ClientId,
    JwkerSpec,
    JwkerStatus,
)

__all__ = [
    "AccessPolicy",
    "AccessPolicyInbound",
    "AccessPolicyOutbound",
    "AccessPolicyRule",
    "ClientId",
    "JwkerSpec",
    "JwkerStatus",
]
