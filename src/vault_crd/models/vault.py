"""
Pydantic models for Vault custom resources.

A Vault resource binds a path in HashiCorp Vault to a Kubernetes secret of
the same name and namespace. These models validate the resource as it is
read from the cluster, so that an unsupported type or a missing
configuration block is rejected before any refresh work starts.
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from vault_crd.constants import VAULT_GROUP, VAULT_KIND, VAULT_VERSION


def unsafe_path_reason(path: str) -> str | None:
    """
    Why a Vault path would leave the configured API base, or None.

    Paths are appended verbatim to the base URL.
    """
    if "://" in path or "\\" in path:
        return "path must be relative to the Vault API, not a URL"
    segments = path.strip("/").split("/")
    if any(segment in ("", ".", "..") for segment in segments):
        return "path must not contain empty, '.' or '..' segments"
    return None


def resource_reference(
    name: str, namespace: str, uid: str | None = None
) -> dict[str, Any]:
    """
    Event reference to a Vault resource.

    Also used for resources whose spec failed validation and therefore
    have no binding.
    """
    reference: dict[str, Any] = {
        "apiVersion": f"{VAULT_GROUP}/{VAULT_VERSION}",
        "kind": VAULT_KIND,
        "name": name,
        "namespace": namespace,
    }
    if uid:
        reference["uid"] = uid
    return reference


class VaultType(StrEnum):
    """Credential types that have a refresh strategy."""

    PKI = "PKI"
    KEYVALUE = "KEYVALUE"


class PkiConfiguration(BaseModel):
    """Certificate request parameters for PKI bindings."""

    model_config = {"populate_by_name": True}

    common_name: str = Field(
        ..., alias="commonName", description="Common name of the issued certificate"
    )
    ttl: str = Field(
        ..., description="Requested time to live, passed to Vault unchanged (e.g. 10m)"
    )
    alt_names: str | None = Field(
        None, alias="altNames", description="Comma separated subject alternative names"
    )
    ip_sans: str | None = Field(
        None, alias="ipSans", description="Comma separated IP subject alternative names"
    )

    @field_validator("common_name", "ttl")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


class VaultSpec(BaseModel):
    """Specification of a Vault resource."""

    model_config = {"populate_by_name": True}

    type: VaultType = Field(..., description="Credential type")
    path: str = Field(..., description="Vault path relative to the API base URL")
    pki_configuration: PkiConfiguration | None = Field(
        None, alias="pkiConfiguration", description="Required for PKI bindings"
    )

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        v = v.strip().strip("/")
        if not v:
            raise ValueError("path must not be empty")
        problem = unsafe_path_reason(v)
        if problem:
            raise ValueError(problem)
        return v

    @model_validator(mode="after")
    def validate_type_configuration(self) -> "VaultSpec":
        if self.type == VaultType.PKI and self.pki_configuration is None:
            raise ValueError("pkiConfiguration is required for type PKI")
        return self


class VaultBinding(BaseModel):
    """A Vault resource together with the identity of its target secret."""

    name: str
    namespace: str
    uid: str | None = None
    spec: VaultSpec

    @classmethod
    def from_resource(cls, resource: dict[str, Any]) -> "VaultBinding":
        """Build a binding from a raw custom object as returned by the API."""
        metadata = resource.get("metadata") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            uid=metadata.get("uid"),
            spec=VaultSpec.model_validate(resource.get("spec") or {}),
        )

    @property
    def identity(self) -> tuple[str, str]:
        return (self.namespace, self.name)

    def involved_object(self) -> dict[str, Any]:
        """Reference to the Vault resource for Kubernetes events."""
        return resource_reference(self.name, self.namespace, self.uid)

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"
