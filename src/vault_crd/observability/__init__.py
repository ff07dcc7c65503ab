"""
Observability utilities for the Vault CRD operator.

This module provides metrics and structured logging capabilities for
production monitoring and troubleshooting.
"""

from .logging import OperatorLogger, setup_structured_logging
from .metrics import MetricsServer

__all__ = [
    "MetricsServer",
    "OperatorLogger",
    "setup_structured_logging",
]
