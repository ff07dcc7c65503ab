"""
Utilities package - Helper functions and clients used by the operator.

This package contains:
- kubernetes.py: Kubernetes client setup and Vault resource listing
- secret_store.py: Reading and writing managed secrets
- vault_client.py: Vault HTTP API client
- staleness.py: Staleness annotations on managed secrets
- events.py: Kubernetes event notifications
"""
