"""
Error handling module for the Jwker operator.

This module provides a comprehensive error hierarchy that integrates with kopf
and provides clear categorization for different types of failures.
"""

from .operator_errors import (
    BrokerError,
    ConfigurationError,
    ExternalServiceError,
    FinalizeError,
    KeyGenerationError,
    KeyMaterialError,
    KubernetesAPIError,
    OperatorError,
    PermanentError,
    PhaseError,
    PrepareError,
    SynchronizationError,
    TemporaryError,
    ValidationError,
)

__all__ = [
    "OperatorError",
    "ValidationError",
    "TemporaryError",
    "PermanentError",
    "ConfigurationError",
    "ExternalServiceError",
    "KubernetesAPIError",
    "BrokerError",
    "KeyMaterialError",
    "KeyGenerationError",
    "PhaseError",
    "PrepareError",
    "SynchronizationError",
    "FinalizeError",
]
