"""
Refresh strategies for Vault bindings.

A refresh strategy knows, for one credential type, whether the secret
behind a binding is due for a refresh and how to fetch and write fresh
material. Strategies are looked up by credential type through
``TypeRefreshFactory``.

- ``PkiRefresh``: issues a new certificate once the compare annotation,
  ``truncate_to_minute(request_time + ttl)``, has been reached. The check is
  purely local and never calls Vault.
- ``KeyValueRefresh``: rewrites the secret whenever the digest of the data
  in Vault differs from the one recorded on the secret. The check needs a
  live Vault call.
"""

import base64
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from vault_crd.constants import (
    COMPARE_ANNOTATION,
    LAST_UPDATE_ANNOTATION,
    SECRET_TYPE_OPAQUE,
    TLS_CERT_KEY,
    TLS_KEY_KEY,
)
from vault_crd.errors import (
    BackendUnreachable,
    ConfigurationError,
    MetadataMissing,
    SecretNotAccessible,
    ValidationError,
)
from vault_crd.models.vault import VaultBinding, VaultType
from vault_crd.models.vault_api import PkiCertificateData, VaultResponse
from vault_crd.utils import staleness
from vault_crd.utils.secret_store import SecretStore
from vault_crd.utils.vault_client import VaultClient

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


def b64encode(value: str) -> str:
    """Base64 encode text exactly as received, newlines included."""
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


class RefreshOutcome(StrEnum):
    """Outcome of evaluating one binding in one refresh pass."""

    NO_ACTION_NEEDED = "no_action_needed"
    REFRESHED = "refreshed"
    FAILED = "failed"


@dataclass
class RefreshResult:
    """Outcome of one binding together with its identity."""

    namespace: str
    name: str
    vault_type: str
    outcome: RefreshOutcome
    reason: str | None = None


class RefreshStrategy(ABC):
    """Staleness check and fetch/apply logic for one credential type."""

    vault_type: VaultType

    def __init__(
        self,
        vault_client: VaultClient,
        secret_store: SecretStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize strategy.

        Args:
            vault_client: Client for the Vault HTTP API
            secret_store: Store for the managed secrets
            clock: Source of the current time (aware UTC datetimes)
        """
        self.vault_client = vault_client
        self.secret_store = secret_store
        self.clock = clock

    async def _current_annotations(
        self, binding: VaultBinding
    ) -> dict[str, str] | None:
        """Annotations of the managed secret, or None if it does not exist."""
        secret = await self.secret_store.get_secret(binding.name, binding.namespace)
        if secret is None:
            return None
        if secret.metadata is None:
            return {}
        return dict(secret.metadata.annotations or {})

    def _not_accessible(
        self, binding: VaultBinding, message: str, cause: Exception | None = None
    ) -> SecretNotAccessible:
        return SecretNotAccessible(
            name=binding.name, namespace=binding.namespace, message=message, cause=cause
        )

    @abstractmethod
    async def refresh_is_needed(self, binding: VaultBinding) -> bool:
        """
        Decide whether the secret behind ``binding`` must be refreshed.

        Raises:
            SecretNotAccessible: If the decision needs Vault and Vault fails
            KubernetesAPIError: If the existing secret cannot be read
        """

    @abstractmethod
    async def fetch_and_apply(self, binding: VaultBinding) -> RefreshOutcome:
        """
        Fetch fresh material from Vault and write the managed secret.

        Nothing is written unless the fetch succeeded completely.

        Raises:
            SecretNotAccessible: If Vault fails or returns an unusable payload
            StoreWriteFailed: If the secret cannot be written
        """


class PkiRefresh(RefreshStrategy):
    """Certificate issuance from a Vault PKI role."""

    vault_type = VaultType.PKI

    def __init__(
        self,
        vault_client: VaultClient,
        secret_store: SecretStore,
        clock: Callable[[], datetime] = utcnow,
        refresh_margin: timedelta = timedelta(),
    ):
        super().__init__(vault_client, secret_store, clock)
        self.refresh_margin = refresh_margin

    async def refresh_is_needed(self, binding: VaultBinding) -> bool:
        annotations = await self._current_annotations(binding)
        if annotations is None:
            return True

        try:
            return staleness.is_stale(annotations, self.clock())
        except MetadataMissing as e:
            logger.warning(f"Secret {binding} needs refresh: {e}")
            return True

    async def fetch_and_apply(self, binding: VaultBinding) -> RefreshOutcome:
        pki = binding.spec.pki_configuration
        if pki is None:
            raise ValidationError(
                "pkiConfiguration is required for type PKI", field="pkiConfiguration"
            )
        ttl = staleness.parse_ttl(pki.ttl)
        # Otherwise the compare instant lies at or before issuance
        if self.refresh_margin >= ttl:
            raise ValidationError(
                f"TTL '{pki.ttl}' must be longer than the refresh margin "
                f"of {int(self.refresh_margin.total_seconds())}s",
                field="pkiConfiguration.ttl",
            )

        request_time = self.clock()
        try:
            response = await self.vault_client.issue_certificate(
                binding.spec.path,
                common_name=pki.common_name,
                ttl=pki.ttl,
                alt_names=pki.alt_names,
                ip_sans=pki.ip_sans,
            )
        except BackendUnreachable as e:
            raise self._not_accessible(binding, str(e), cause=e) from e

        if response.data is None:
            raise self._not_accessible(binding, "Vault response contains no data")
        try:
            certificate = PkiCertificateData.model_validate(response.data)
        except PydanticValidationError as e:
            raise self._not_accessible(
                binding, "Vault response is missing certificate or private_key", cause=e
            ) from e

        await self.secret_store.write_secret(
            name=binding.name,
            namespace=binding.namespace,
            data={
                TLS_CERT_KEY: b64encode(certificate.certificate),
                TLS_KEY_KEY: b64encode(certificate.private_key),
            },
            annotations=staleness.encode(request_time, ttl, self.refresh_margin),
            secret_type=SECRET_TYPE_OPAQUE,
        )
        return RefreshOutcome.REFRESHED


def content_digest(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of secret data."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class KeyValueRefresh(RefreshStrategy):
    """Key/value secrets copied verbatim from Vault."""

    vault_type = VaultType.KEYVALUE

    async def _read(self, binding: VaultBinding) -> dict[str, Any]:
        try:
            response: VaultResponse = await self.vault_client.read_secret(
                binding.spec.path
            )
        except BackendUnreachable as e:
            raise self._not_accessible(binding, str(e), cause=e) from e

        if response.data is None:
            raise self._not_accessible(binding, "Vault response contains no data")
        return response.data

    async def refresh_is_needed(self, binding: VaultBinding) -> bool:
        annotations = await self._current_annotations(binding)
        if annotations is None:
            return True

        data = await self._read(binding)
        return annotations.get(COMPARE_ANNOTATION) != content_digest(data)

    async def fetch_and_apply(self, binding: VaultBinding) -> RefreshOutcome:
        now = self.clock()
        data = await self._read(binding)

        encoded = {
            key: b64encode(value if isinstance(value, str) else json.dumps(value))
            for key, value in data.items()
        }
        await self.secret_store.write_secret(
            name=binding.name,
            namespace=binding.namespace,
            data=encoded,
            annotations={
                LAST_UPDATE_ANNOTATION: staleness.format_timestamp(now),
                COMPARE_ANNOTATION: content_digest(data),
            },
            secret_type=SECRET_TYPE_OPAQUE,
        )
        return RefreshOutcome.REFRESHED


class TypeRefreshFactory:
    """Registry of refresh strategies keyed by credential type."""

    def __init__(self, strategies: Iterable[RefreshStrategy]):
        self._strategies: dict[VaultType, RefreshStrategy] = {
            strategy.vault_type: strategy for strategy in strategies
        }

    @classmethod
    def create(
        cls,
        vault_client: VaultClient,
        secret_store: SecretStore,
        refresh_margin: timedelta = timedelta(),
        clock: Callable[[], datetime] = utcnow,
    ) -> "TypeRefreshFactory":
        """Registry with a strategy for every supported credential type."""
        return cls(
            [
                PkiRefresh(vault_client, secret_store, clock, refresh_margin),
                KeyValueRefresh(vault_client, secret_store, clock),
            ]
        )

    def get(self, vault_type: VaultType | str) -> RefreshStrategy:
        """
        Strategy for a credential type.

        Raises:
            ConfigurationError: If no strategy is registered for the type
        """
        try:
            return self._strategies[VaultType(vault_type)]
        except (KeyError, ValueError) as e:
            raise ConfigurationError(
                f"No refresh strategy registered for type '{vault_type}'"
            ) from e

    @property
    def supported_types(self) -> list[VaultType]:
        return list(self._strategies)
