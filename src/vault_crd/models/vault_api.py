"""
Pydantic models for Vault HTTP API responses.

Only the fields the operator reads are typed; everything else in the
response envelope is accepted and ignored.
"""

from typing import Any

from pydantic import BaseModel, Field


class VaultResponse(BaseModel):
    """Generic Vault response envelope."""

    model_config = {"extra": "ignore"}

    request_id: str | None = None
    lease_id: str | None = None
    renewable: bool = False
    lease_duration: int = 0
    data: dict[str, Any] | None = None
    wrap_info: dict[str, Any] | None = None
    warnings: list[str] | None = None
    auth: dict[str, Any] | None = None


class PkiCertificateData(BaseModel):
    """Payload of a pki/issue response."""

    model_config = {"extra": "ignore"}

    certificate: str = Field(..., min_length=1)
    private_key: str = Field(..., min_length=1)
    issuing_ca: str | None = None
    ca_chain: list[str] | None = None
    serial_number: str | None = None
    private_key_type: str | None = None
    expiration: int | None = None
