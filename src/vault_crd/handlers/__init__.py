"""
Handlers package - Contains the kopf event handlers for Vault resources.

- vault.py: Secret creation, update and deletion for Vault resources
"""
