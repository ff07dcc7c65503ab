"""
Apply entry point shared by the kopf handlers and the refresh scheduler.

``EventHandler.apply`` fetches fresh material for a binding and writes its
secret. kopf create/update handlers and the scheduler run on the same event
loop, so every operation on a binding is serialized through a lock keyed
by the binding's namespace and name.
"""

import asyncio
import time

from vault_crd.constants import (
    ERROR_CREATION_FAILED,
    ERROR_DELETION_FAILED,
    ERROR_MODIFICATION_FAILED,
    SUCCESS_CREATION,
    SUCCESS_DELETION,
    SUCCESS_MODIFICATION,
)
from vault_crd.errors import OperatorError
from vault_crd.models.vault import VaultBinding
from vault_crd.observability.logging import OperatorLogger
from vault_crd.services.refresh import RefreshOutcome, TypeRefreshFactory
from vault_crd.utils.events import EventNotification, EventType
from vault_crd.utils.secret_store import SecretStore


class EventHandler:
    """Creates, refreshes and deletes the secrets behind Vault bindings."""

    def __init__(
        self,
        refresh_factory: TypeRefreshFactory,
        secret_store: SecretStore,
        event_notification: EventNotification,
    ):
        self.refresh_factory = refresh_factory
        self.secret_store = secret_store
        self.event_notification = event_notification
        self.logger = OperatorLogger(self.__class__.__name__)
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def lock_for(self, binding: VaultBinding) -> asyncio.Lock:
        """Lock serializing all work on one binding."""
        lock = self._locks.get(binding.identity)
        if lock is None:
            lock = self._locks[binding.identity] = asyncio.Lock()
        return lock

    async def apply(self, binding: VaultBinding) -> RefreshOutcome:
        """
        Fetch from Vault and write the secret for a binding.

        Raises:
            OperatorError: Any failure of the strategy; nothing is recorded
                here, callers decide how to report it
        """
        strategy = self.refresh_factory.get(binding.spec.type)
        async with self.lock_for(binding):
            return await strategy.fetch_and_apply(binding)

    async def _apply_and_notify(
        self,
        binding: VaultBinding,
        operation: str,
        success: tuple[EventType, str],
        failure: tuple[EventType, str],
    ) -> RefreshOutcome:
        start_time = time.time()
        self.logger.log_refresh_start(
            binding.name, binding.namespace, binding.spec.type, operation
        )
        try:
            outcome = await self.apply(binding)
        except OperatorError as e:
            self.logger.log_refresh_error(
                binding.name, binding.namespace, binding.spec.type, operation, e
            )
            kind, template = failure
            await self.event_notification.store_new_event(
                kind, template.format(e), binding
            )
            raise

        self.logger.log_refresh_success(
            binding.name,
            binding.namespace,
            binding.spec.type,
            operation,
            time.time() - start_time,
        )
        kind, template = success
        await self.event_notification.store_new_event(
            kind, template.format(binding.spec.path), binding
        )
        return outcome

    async def add_handler(self, binding: VaultBinding) -> RefreshOutcome:
        """Create the secret for a newly declared binding."""
        return await self._apply_and_notify(
            binding,
            "creation",
            success=(EventType.CREATION, SUCCESS_CREATION),
            failure=(EventType.CREATION_FAILED, ERROR_CREATION_FAILED),
        )

    async def modify_handler(self, binding: VaultBinding) -> RefreshOutcome:
        """Rewrite the secret of a changed binding."""
        return await self._apply_and_notify(
            binding,
            "modification",
            success=(EventType.MODIFICATION, SUCCESS_MODIFICATION),
            failure=(EventType.MODIFICATION_FAILED, ERROR_MODIFICATION_FAILED),
        )

    async def delete_handler(self, binding: VaultBinding) -> bool:
        """
        Delete the secret of a removed binding.

        Returns:
            True if a secret was deleted, False if none existed
        """
        async with self.lock_for(binding):
            try:
                deleted = await self.secret_store.delete_secret(
                    binding.name, binding.namespace
                )
            except OperatorError as e:
                self.logger.log_refresh_error(
                    binding.name, binding.namespace, binding.spec.type, "deletion", e
                )
                await self.event_notification.store_new_event(
                    EventType.DELETION_FAILED, ERROR_DELETION_FAILED.format(e), binding
                )
                raise

        self._locks.pop(binding.identity, None)
        if deleted:
            await self.event_notification.store_new_event(
                EventType.DELETION, SUCCESS_DELETION, binding
            )
        return deleted
