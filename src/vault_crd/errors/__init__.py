"""
Error handling module for the Vault CRD operator.

This module provides an error hierarchy that integrates with kopf and
separates per-binding failures from failures of a whole refresh pass.
"""

from .operator_errors import (
    BackendUnreachable,
    ConfigurationError,
    KubernetesAPIError,
    ListingFailed,
    MetadataMissing,
    OperatorError,
    SecretNotAccessible,
    StoreWriteFailed,
    ValidationError,
)

__all__ = [
    "OperatorError",
    "ValidationError",
    "ConfigurationError",
    "BackendUnreachable",
    "SecretNotAccessible",
    "MetadataMissing",
    "KubernetesAPIError",
    "StoreWriteFailed",
    "ListingFailed",
]
