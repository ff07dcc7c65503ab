"""
Vault handlers - Event-driven lifecycle of the secrets behind Vault resources.

This module handles:
- Creating the secret when a Vault resource is declared
- Re-checking existing resources when the operator restarts
- Rewriting the secret when the resource spec changes
- Deleting the secret when the resource is removed

Periodic refresh is not handled here; see services/scheduler.py.
"""

import logging
from typing import Any

import kopf
from pydantic import ValidationError as PydanticValidationError

from vault_crd.constants import (
    ERROR_CREATION_FAILED,
    ERROR_MODIFICATION_FAILED,
    VAULT_GROUP,
    VAULT_PLURAL,
    VAULT_VERSION,
)
from vault_crd.errors import OperatorError
from vault_crd.models.vault import VaultBinding, VaultSpec, resource_reference
from vault_crd.observability.logging import generate_correlation_id, set_correlation_id
from vault_crd.services.event_handler import EventHandler
from vault_crd.utils.events import EventType

logger = logging.getLogger(__name__)


def build_binding(
    spec: dict[str, Any], name: str, namespace: str, meta: dict[str, Any]
) -> VaultBinding:
    """
    Validate a Vault resource into a binding.

    Raises:
        kopf.PermanentError: If the spec is invalid; retrying an
            invalid resource cannot succeed
    """
    try:
        return VaultBinding(
            name=name,
            namespace=namespace,
            uid=meta.get("uid"),
            spec=VaultSpec.model_validate(dict(spec)),
        )
    except PydanticValidationError as e:
        raise kopf.PermanentError(
            f"Invalid Vault resource {namespace}/{name}: {e}"
        ) from e


async def build_binding_or_record(
    spec: dict[str, Any],
    name: str,
    namespace: str,
    meta: dict[str, Any],
    memo: kopf.Memo,
    kind: EventType,
    template: str,
) -> VaultBinding:
    """Like build_binding, but an invalid spec is also recorded as an event."""
    try:
        return build_binding(spec, name, namespace, meta)
    except kopf.PermanentError as e:
        event_handler: EventHandler = memo.event_handler
        await event_handler.event_notification.store_event(
            kind,
            template.format(e),
            resource_reference(name, namespace, meta.get("uid")),
        )
        raise


@kopf.on.create(VAULT_PLURAL, group=VAULT_GROUP, version=VAULT_VERSION)
async def create_vault_secret(
    spec: dict[str, Any],
    name: str,
    namespace: str,
    meta: dict[str, Any],
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Create the secret for a newly declared Vault resource."""
    set_correlation_id(generate_correlation_id())
    logger.info(f"Vault resource {namespace}/{name} created")

    binding = await build_binding_or_record(
        spec,
        name,
        namespace,
        meta,
        memo,
        EventType.CREATION_FAILED,
        ERROR_CREATION_FAILED,
    )
    event_handler: EventHandler = memo.event_handler
    try:
        await event_handler.add_handler(binding)
    except OperatorError as e:
        raise e.as_kopf_error() from e


@kopf.on.resume(VAULT_PLURAL, group=VAULT_GROUP, version=VAULT_VERSION)
async def resume_vault_secret(
    spec: dict[str, Any],
    name: str,
    namespace: str,
    meta: dict[str, Any],
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """
    Re-check a Vault resource after an operator restart.

    The secret is only rewritten if its strategy reports it as due, so a
    restart does not reissue every certificate.
    """
    set_correlation_id(generate_correlation_id())

    binding = build_binding(spec, name, namespace, meta)
    event_handler: EventHandler = memo.event_handler
    try:
        strategy = event_handler.refresh_factory.get(binding.spec.type)
        if await strategy.refresh_is_needed(binding):
            await event_handler.add_handler(binding)
        else:
            logger.debug(f"Secret {binding} is up to date")
    except OperatorError as e:
        raise e.as_kopf_error() from e


@kopf.on.update(VAULT_PLURAL, group=VAULT_GROUP, version=VAULT_VERSION, field="spec")
async def update_vault_secret(
    new: dict[str, Any],
    name: str,
    namespace: str,
    meta: dict[str, Any],
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Rewrite the secret after a change of the Vault resource spec."""
    set_correlation_id(generate_correlation_id())
    logger.info(f"Vault resource {namespace}/{name} modified")

    binding = await build_binding_or_record(
        new or {},
        name,
        namespace,
        meta,
        memo,
        EventType.MODIFICATION_FAILED,
        ERROR_MODIFICATION_FAILED,
    )
    event_handler: EventHandler = memo.event_handler
    try:
        await event_handler.modify_handler(binding)
    except OperatorError as e:
        raise e.as_kopf_error() from e


@kopf.on.delete(VAULT_PLURAL, group=VAULT_GROUP, version=VAULT_VERSION)
async def delete_vault_secret(
    spec: dict[str, Any],
    name: str,
    namespace: str,
    meta: dict[str, Any],
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Delete the secret of a removed Vault resource."""
    set_correlation_id(generate_correlation_id())
    logger.info(f"Vault resource {namespace}/{name} deleted")

    try:
        binding = build_binding(spec, name, namespace, meta)
    except kopf.PermanentError:
        # An invalid resource never had a secret written for it
        logger.info(f"Skipping cleanup of invalid Vault resource {namespace}/{name}")
        return

    event_handler: EventHandler = memo.event_handler
    try:
        await event_handler.delete_handler(binding)
    except OperatorError as e:
        raise e.as_kopf_error() from e
