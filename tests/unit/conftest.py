"""Shared pytest fixtures for refresh tests."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from kubernetes import client

from vault_crd.models.vault import VaultBinding


def make_binding(
    name: str = "pki",
    namespace: str = "default",
    vault_type: str = "PKI",
    path: str = "testpki/issue/testrole",
    ttl: str = "10m",
) -> VaultBinding:
    spec: dict = {"type": vault_type, "path": path}
    if vault_type == "PKI":
        spec["pkiConfiguration"] = {"commonName": "test.url.de", "ttl": ttl}
    return VaultBinding.from_resource(
        {
            "metadata": {"name": name, "namespace": namespace, "uid": f"uid-{name}"},
            "spec": spec,
        }
    )


def make_secret(annotations: dict[str, str] | None = None) -> client.V1Secret:
    return client.V1Secret(
        metadata=client.V1ObjectMeta(
            name="pki", namespace="default", annotations=annotations
        ),
        type="Opaque",
        data={},
    )


class FixedClock:
    """Callable clock returning a settable instant."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def pki_binding() -> VaultBinding:
    return make_binding()


@pytest.fixture
def kv_binding() -> VaultBinding:
    return make_binding(name="kv", vault_type="KEYVALUE", path="secret/app")


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 3, 1, 12, 30, 45, tzinfo=UTC))


@pytest.fixture
def secret_store():
    store = MagicMock()
    store.get_secret = AsyncMock(return_value=None)
    store.write_secret = AsyncMock()
    store.delete_secret = AsyncMock(return_value=True)
    return store


@pytest.fixture
def vault_client():
    vault = MagicMock()
    vault.issue_certificate = AsyncMock()
    vault.read_secret = AsyncMock()
    return vault


@pytest.fixture
def event_notification():
    notification = MagicMock()
    notification.store_new_event = AsyncMock(return_value=True)
    return notification
