"""
Kubernetes utilities for the Vault CRD operator.

This module provides helper functions for interacting with the Kubernetes API:
- Kubernetes client management and configuration
- Listing Vault resources across namespaces
"""

import asyncio
import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from pydantic import ValidationError as PydanticValidationError
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from vault_crd.constants import VAULT_GROUP, VAULT_PLURAL, VAULT_VERSION
from vault_crd.errors import ListingFailed
from vault_crd.models.vault import VaultBinding

logger = logging.getLogger(__name__)


def get_kubernetes_client() -> client.ApiClient:
    """
    Get configured Kubernetes API client.

    This function handles both in-cluster and local development configurations.

    Returns:
        Configured Kubernetes API client
    """
    try:
        # Try in-cluster config first (when running in a pod)
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            # Fall back to local kubeconfig (for development)
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()


class VaultResourceLister:
    """Lists Vault resources and validates them into bindings."""

    def __init__(
        self,
        k8s_client: client.ApiClient | None = None,
        namespaces: list[str] | None = None,
        request_timeout: float | None = None,
    ):
        """
        Initialize the lister.

        Args:
            k8s_client: Optional Kubernetes API client
            namespaces: Namespaces to list, or None for all namespaces
            request_timeout: Timeout in seconds for every API request
        """
        self.k8s_client = k8s_client
        self.namespaces = namespaces
        self.request_timeout = request_timeout
        self._custom_api: client.CustomObjectsApi | None = None

    @property
    def custom_api(self) -> client.CustomObjectsApi:
        if self._custom_api is None:
            self._custom_api = client.CustomObjectsApi(self.k8s_client)
        return self._custom_api

    def _list_raw(self) -> list[dict[str, Any]]:
        if not self.namespaces:
            response = self.custom_api.list_cluster_custom_object(
                group=VAULT_GROUP,
                version=VAULT_VERSION,
                plural=VAULT_PLURAL,
                _request_timeout=self.request_timeout,
            )
            return response.get("items", [])

        items: list[dict[str, Any]] = []
        for namespace in self.namespaces:
            response = self.custom_api.list_namespaced_custom_object(
                group=VAULT_GROUP,
                version=VAULT_VERSION,
                namespace=namespace,
                plural=VAULT_PLURAL,
                _request_timeout=self.request_timeout,
            )
            items.extend(response.get("items", []))
        return items

    async def list_bindings(self) -> list[VaultBinding]:
        """
        List all Vault resources as validated bindings.

        Resources that fail validation are skipped with a warning; they are
        rejected by the creation handler and never reach a refresh strategy.
        The order of the API response is preserved.

        Raises:
            ListingFailed: If the resources cannot be listed at all, including
                when the API server cannot be reached
        """
        try:
            items = await asyncio.to_thread(self._list_raw)
        except ApiException as e:
            raise ListingFailed(
                f"Failed to list Vault resources: {e.reason}", cause=e
            ) from e
        except (Urllib3HTTPError, OSError) as e:
            raise ListingFailed(f"Failed to list Vault resources: {e}", cause=e) from e

        bindings: list[VaultBinding] = []
        for item in items:
            metadata = item.get("metadata") or {}
            try:
                bindings.append(VaultBinding.from_resource(item))
            except PydanticValidationError as e:
                logger.warning(
                    f"Skipping invalid Vault resource "
                    f"{metadata.get('namespace')}/{metadata.get('name')}: "
                    f"{e.error_count()} validation error(s)"
                )

        logger.debug(f"Found {len(bindings)} Vault resources")
        return bindings
