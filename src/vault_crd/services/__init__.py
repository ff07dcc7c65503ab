"""
Service layer for the Vault CRD operator.

This module provides the refresh strategies, the apply entry point and the
refresh scheduler, separated from the kopf handler layer.
"""

from .event_handler import EventHandler
from .refresh import (
    KeyValueRefresh,
    PkiRefresh,
    RefreshOutcome,
    RefreshResult,
    RefreshStrategy,
    TypeRefreshFactory,
)
from .scheduler import RefreshScheduler

__all__ = [
    "EventHandler",
    "KeyValueRefresh",
    "PkiRefresh",
    "RefreshOutcome",
    "RefreshResult",
    "RefreshScheduler",
    "RefreshStrategy",
    "TypeRefreshFactory",
]
