"""
Constants used throughout the Vault CRD operator.

This module defines:
- The custom resource coordinates of Vault bindings
- Annotation keys used for staleness tracking on managed secrets
- Default configuration values
"""

# Custom resource coordinates
VAULT_GROUP = "koudingspawn.de"
VAULT_VERSION = "v1"
VAULT_PLURAL = "vault"
VAULT_KIND = "Vault"

# Annotation constants for staleness tracking on managed secrets
META_PREFIX = "vault.koudingspawn.de"
LAST_UPDATE_ANNOTATION = f"{META_PREFIX}/lastUpdated"
COMPARE_ANNOTATION = f"{META_PREFIX}/compare"

# Timestamps stored in annotations are UTC with second precision
DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Secret layout
SECRET_TYPE_OPAQUE = "Opaque"
TLS_CERT_KEY = "tls.crt"
TLS_KEY_KEY = "tls.key"

# Event reporting
EVENT_COMPONENT = "vault-crd"

# Default configuration values
DEFAULT_VAULT_URL = "http://localhost:8200/v1/"
DEFAULT_REFRESH_INTERVAL = 60
DEFAULT_REFRESH_INITIAL_DELAY = 30
DEFAULT_REQUEST_TIMEOUT = 10.0

# Error message templates
ERROR_MODIFICATION_FAILED = "Modification of secret failed with exception {}"
ERROR_CREATION_FAILED = "Creation of secret failed with exception {}"
ERROR_DELETION_FAILED = "Deletion of secret failed with exception {}"

# Success message templates
SUCCESS_CREATION = "Secret created from Vault path {}"
SUCCESS_MODIFICATION = "Secret refreshed from Vault path {}"
SUCCESS_DELETION = "Secret deleted"
