"""
Vault HTTP API client utilities.

This module provides a thin asynchronous client for the parts of the Vault
HTTP API the operator uses: issuing certificates from a PKI role and
reading key/value secrets.

The client handles:
- URL construction relative to the configured API base
- Token header injection
- Request timeouts, so a hanging Vault never blocks a refresh pass
- Mapping transport and HTTP failures to BackendUnreachable
"""

import logging
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from vault_crd.errors import BackendUnreachable, ValidationError
from vault_crd.models.vault import unsafe_path_reason
from vault_crd.models.vault_api import VaultResponse

logger = logging.getLogger(__name__)


class VaultClient:
    """
    Asynchronous client for the Vault HTTP API.

    The underlying httpx client is created lazily and reused for all
    requests until ``close()`` is called.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize Vault client.

        Args:
            base_url: API base URL including the version prefix, e.g. http://vault:8200/v1/
            token: Vault token sent as X-Vault-Token, omitted when empty
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self.token = token or None
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            headers = {"X-Vault-Token": self.token} if self.token else {}
            self._client = httpx.AsyncClient(
                headers=headers,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "VaultClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def url_for(self, path: str) -> str:
        """
        Absolute URL for a path relative to the API base.

        Raises:
            ValidationError: If the path is a URL or escapes the API base
        """
        path = path.strip("/")
        problem = unsafe_path_reason(path)
        if problem:
            raise ValidationError(problem, field="path")
        return f"{self.base_url}{path}"

    async def _make_request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
    ) -> VaultResponse:
        """
        Make a request to the Vault API and parse the response envelope.

        Args:
            method: HTTP method (GET, POST)
            path: Path relative to the API base
            json: JSON request body

        Returns:
            Parsed response envelope

        Raises:
            BackendUnreachable: On connection errors, timeouts, non-2xx
                responses and bodies that are not a Vault response
            ValidationError: If the path escapes the API base
        """
        url = self.url_for(path)
        client = self._get_client()

        try:
            response = await client.request(method=method, url=url, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            response_body = e.response.text or "<no content>"
            logger.error(
                f"Request failed: {method} {url} - {e}",
                extra={"http_status": status_code, "response_body": response_body[:1024]},
            )
            raise BackendUnreachable(
                f"{method} {path} failed",
                status_code=status_code,
                response_body=response_body,
                cause=e,
            ) from e
        except httpx.TimeoutException as e:
            logger.error(f"Request timed out after {self.timeout}s: {method} {url}")
            raise BackendUnreachable(
                f"{method} {path} timed out after {self.timeout}s", cause=e
            ) from e
        except httpx.HTTPError as e:
            # Other HTTP errors (connection refused, DNS, protocol)
            logger.error(f"Request failed: {method} {url} - {e}")
            raise BackendUnreachable(f"{method} {path} failed: {e}", cause=e) from e

        try:
            return VaultResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            raise BackendUnreachable(
                f"{method} {path} returned an invalid response body",
                status_code=response.status_code,
                response_body=response.text,
                cause=e,
            ) from e

    async def issue_certificate(
        self,
        path: str,
        common_name: str,
        ttl: str,
        alt_names: str | None = None,
        ip_sans: str | None = None,
    ) -> VaultResponse:
        """
        Issue a certificate from a PKI role, e.g. ``pki/issue/my-role``.

        The TTL is passed through unparsed; Vault owns TTL semantics.
        """
        body: dict[str, Any] = {"common_name": common_name, "ttl": ttl}
        if alt_names:
            body["alt_names"] = alt_names
        if ip_sans:
            body["ip_sans"] = ip_sans

        logger.debug(f"Requesting certificate for {common_name} from {path}")
        return await self._make_request("POST", path, json=body)

    async def read_secret(self, path: str) -> VaultResponse:
        """Read a key/value secret."""
        return await self._make_request("GET", path)
