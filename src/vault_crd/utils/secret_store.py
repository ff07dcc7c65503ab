"""
Secret store utilities for managed secrets.

This module handles the Kubernetes secret operations behind a Vault
binding: reading the current secret, writing freshly fetched data together
with its staleness annotations, and deleting it when the binding goes away.
"""

import asyncio
import logging

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from vault_crd.constants import SECRET_TYPE_OPAQUE
from vault_crd.errors import KubernetesAPIError, StoreWriteFailed

logger = logging.getLogger(__name__)

# Connection failures, timeouts and socket errors from the API client
TRANSPORT_ERRORS = (Urllib3HTTPError, OSError)


class SecretStore:
    """Reads and writes the Kubernetes secrets managed by the operator."""

    def __init__(
        self,
        k8s_client: client.ApiClient | None = None,
        request_timeout: float | None = None,
    ):
        self.k8s_client = k8s_client
        self.request_timeout = request_timeout
        self._v1: client.CoreV1Api | None = None

    @property
    def v1(self) -> client.CoreV1Api:
        # Without an explicit client the default configuration is used
        if self._v1 is None:
            self._v1 = client.CoreV1Api(self.k8s_client)
        return self._v1

    async def get_secret(self, name: str, namespace: str) -> client.V1Secret | None:
        """
        Read a managed secret; None if it does not exist.

        Raises:
            KubernetesAPIError: For any API error other than 404, or when the
                API server cannot be reached
        """
        try:
            return await asyncio.to_thread(
                self.v1.read_namespaced_secret,
                name=name,
                namespace=namespace,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesAPIError(
                f"Failed to read secret {namespace}/{name}: {e.reason}",
                reason=e.reason,
                cause=e,
            ) from e
        except TRANSPORT_ERRORS as e:
            raise KubernetesAPIError(
                f"Failed to read secret {namespace}/{name}: {e}", cause=e
            ) from e

    async def write_secret(
        self,
        name: str,
        namespace: str,
        data: dict[str, str],
        annotations: dict[str, str],
        secret_type: str = SECRET_TYPE_OPAQUE,
    ) -> client.V1Secret:
        """
        Create or replace a secret with new data and annotations.

        The whole secret is written in a single create or replace call.
        Existing labels and foreign annotations are preserved; data keys
        not present in ``data`` are dropped.

        Args:
            name: Name shared by the Vault resource and the secret
            namespace: Namespace shared by the Vault resource and the secret
            data: Already base64 encoded values
            annotations: Staleness annotations, merged over existing ones
            secret_type: Kubernetes secret type

        Raises:
            StoreWriteFailed: If the API rejects the write or cannot be reached
        """
        existing = await self.get_secret(name, namespace)

        metadata = client.V1ObjectMeta(
            name=name, namespace=namespace, annotations=dict(annotations)
        )
        if existing is not None and existing.metadata is not None:
            merged = dict(existing.metadata.annotations or {})
            merged.update(annotations)
            metadata.annotations = merged
            metadata.labels = existing.metadata.labels
            metadata.owner_references = existing.metadata.owner_references
            metadata.resource_version = existing.metadata.resource_version

        body = client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=metadata,
            type=secret_type,
            data=data,
        )

        try:
            if existing is None:
                secret = await asyncio.to_thread(
                    self.v1.create_namespaced_secret,
                    namespace=namespace,
                    body=body,
                    _request_timeout=self.request_timeout,
                )
                logger.info(f"Created secret {namespace}/{name}")
            else:
                secret = await asyncio.to_thread(
                    self.v1.replace_namespaced_secret,
                    name=name,
                    namespace=namespace,
                    body=body,
                    _request_timeout=self.request_timeout,
                )
                logger.info(f"Replaced secret {namespace}/{name}")
            return secret
        except ApiException as e:
            raise StoreWriteFailed(
                f"Failed to write secret {namespace}/{name}",
                reason=e.reason,
                cause=e,
            ) from e
        except TRANSPORT_ERRORS as e:
            raise StoreWriteFailed(
                f"Failed to write secret {namespace}/{name}: {e}", cause=e
            ) from e

    async def delete_secret(self, name: str, namespace: str) -> bool:
        """
        Delete a secret.

        Returns:
            True if the secret was deleted, False if it did not exist

        Raises:
            StoreWriteFailed: If deletion fails for reasons other than 404
        """
        try:
            await asyncio.to_thread(
                self.v1.delete_namespaced_secret,
                name=name,
                namespace=namespace,
                propagation_policy="Background",
                _request_timeout=self.request_timeout,
            )
            logger.info(f"Deleted secret {namespace}/{name}")
            return True
        except ApiException as e:
            if e.status == 404:
                logger.debug(f"Secret {namespace}/{name} already deleted")
                return False
            raise StoreWriteFailed(
                f"Failed to delete secret {namespace}/{name}",
                reason=e.reason,
                cause=e,
            ) from e
        except TRANSPORT_ERRORS as e:
            raise StoreWriteFailed(
                f"Failed to delete secret {namespace}/{name}: {e}", cause=e
            ) from e
