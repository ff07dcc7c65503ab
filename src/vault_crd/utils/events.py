"""
Kubernetes event notifications for Vault resources.

Every synchronisation outcome worth an operator's attention is recorded as
a new core/v1 Event attached to the Vault resource, so it shows up in
``kubectl describe vault <name>``. Events are append-only: each call creates
a new Event object.
"""

import asyncio
import logging
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from vault_crd.constants import EVENT_COMPONENT
from vault_crd.models.vault import VaultBinding

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Kinds of events recorded for a Vault resource."""

    CREATION = "CREATION"
    CREATION_FAILED = "CREATION_FAILED"
    MODIFICATION = "MODIFICATION"
    MODIFICATION_FAILED = "MODIFICATION_FAILED"
    DELETION = "DELETION"
    DELETION_FAILED = "DELETION_FAILED"

    @property
    def is_failure(self) -> bool:
        return self.endswith("_FAILED")


class EventNotification:
    """Records Kubernetes events about Vault resources."""

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
        if self._v1 is None:
            self._v1 = client.CoreV1Api(self.k8s_client)
        return self._v1

    async def store_new_event(
        self, kind: EventType, message: str, binding: VaultBinding
    ) -> bool:
        """
        Record an event for a Vault resource.

        Args:
            kind: Event kind, used as the event reason
            message: Human readable message
            binding: The Vault resource the event is about

        Returns:
            True if the event was stored
        """
        return await self.store_event(kind, message, binding.involved_object())

    async def store_event(
        self, kind: EventType, message: str, involved_object: dict[str, Any]
    ) -> bool:
        """
        Record an event for a resource reference.

        Failing to record an event never fails the caller: API errors,
        timeouts and connection failures are logged instead.
        """
        name = involved_object["name"]
        namespace = involved_object["namespace"]
        now = datetime.now(UTC).isoformat()
        body = {
            "metadata": {
                "name": f"{name}.{uuid.uuid4().hex[:16]}",
                "namespace": namespace,
            },
            "type": "Warning" if kind.is_failure else "Normal",
            "reason": kind.value,
            "message": message,
            "involvedObject": involved_object,
            "source": {"component": EVENT_COMPONENT},
            "reportingComponent": EVENT_COMPONENT,
            "count": 1,
            "firstTimestamp": now,
            "lastTimestamp": now,
        }

        try:
            await asyncio.to_thread(
                self.v1.create_namespaced_event,
                namespace=namespace,
                body=body,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            logger.warning(
                f"Failed to store {kind.value} event for {namespace}/{name}: {e.reason}"
            )
            return False
        except Exception as e:
            logger.warning(
                f"Failed to store {kind.value} event for {namespace}/{name}: "
                f"{type(e).__name__}: {e}"
            )
            return False

        logger.debug(f"Stored {kind.value} event for {namespace}/{name}")
        return True
