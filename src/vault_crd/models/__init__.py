"""
Models package - Pydantic models for type-safe resource handling.

Defines data models for:
- Vault custom resources (the bindings this operator reconciles)
- Vault HTTP API responses
"""

from .vault import PkiConfiguration, VaultBinding, VaultSpec, VaultType
from .vault_api import PkiCertificateData, VaultResponse

__all__ = [
    "PkiCertificateData",
    "PkiConfiguration",
    "VaultBinding",
    "VaultResponse",
    "VaultSpec",
    "VaultType",
]
