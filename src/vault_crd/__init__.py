"""
Vault CRD Operator - Keeps Kubernetes secrets in sync with HashiCorp Vault.

This operator provides:
- Secrets created from declarative Vault custom resources
- Periodic refresh of short-lived credentials such as PKI certificates
- Kubernetes events for every failed synchronisation
"""

__version__ = "0.1.0"
