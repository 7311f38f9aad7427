"""
Service layer for the Jwker operator.

This module provides the reconciler services that hold the business logic
for Jwker resources, separated from the kopf handler layer.
"""

from .base_reconciler import BaseReconciler
from .jwker_reconciler import JwkerReconciler, Transaction

__all__ = [
    "BaseReconciler",
    "JwkerReconciler",
    "Transaction",
]
