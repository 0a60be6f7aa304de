"""Access-key provisioning client for Outline-style management APIs.

Each managed server exposes a management API rooted at
https://{ip}:{port}/{management_key}. This module provides a client to:
- Create a new access key on a server
- Revoke (delete) an access key by its server-assigned id

The management key is a bearer secret embedded in the URL path, so URLs
are never logged verbatim.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

if TYPE_CHECKING:
    from keycast.core.config import ProvisioningSettings
    from keycast.db.models.servers import Server

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20.0

DEFAULT_ENCRYPTION_METHOD = "chacha20-ietf-poly1305"

# Effectively unlimited traffic per key
DEFAULT_DATA_LIMIT_BYTES = 1024**5

PASSWORD_LENGTH = 10
PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*-_=+"


@dataclass(frozen=True)
class ProvisioningConfig:
    """Configuration for the provisioning client."""

    timeout: float = DEFAULT_TIMEOUT
    verify_tls: bool = False
    encryption_method: str = DEFAULT_ENCRYPTION_METHOD
    data_limit_bytes: int = DEFAULT_DATA_LIMIT_BYTES
    port_min: int = 1024
    port_max: int = 60000

    @classmethod
    def from_settings(cls, settings: ProvisioningSettings) -> ProvisioningConfig:
        """Create config from application settings."""
        return cls(
            timeout=settings.timeout,
            verify_tls=settings.verify_tls,
            encryption_method=settings.encryption_method,
            data_limit_bytes=settings.data_limit_bytes,
            port_min=settings.port_min,
            port_max=settings.port_max,
        )


class DataLimit(BaseModel):
    """Transfer limit attached to a new key."""

    bytes: int


class CreateAccessKeyRequest(BaseModel):
    """Body of POST /access-keys."""

    name: str
    method: str
    password: str
    port: int
    limit: DataLimit


class AccessKeyResponse(BaseModel):
    """Body returned by the management API for a created key."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str | None = None
    password: str | None = None
    port: int | None = None
    method: str | None = None
    access_url: str = Field(alias="accessUrl", min_length=1)


@dataclass(frozen=True)
class IssuedCredential:
    """A credential freshly created on a server.

    Attributes:
        credential_id: Identifier assigned by the server.
        access_url: Secret handed to subscribers.
        management_url: Base management URL needed to revoke the key later.
    """

    credential_id: str
    access_url: str
    management_url: str


class ProvisioningError(Exception):
    """Base exception for provisioning client errors."""

    pass


class ProvisioningConnectionError(ProvisioningError):
    """Failed to reach the management API (network error or timeout)."""

    pass


class ProvisioningNotFoundError(ProvisioningError):
    """The access key does not exist on the server."""

    pass


class ProvisioningResponseError(ProvisioningError):
    """The management API answered with an unexpected status or body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


def describe_server(server: Server) -> str:
    """Loggable server label without the management secret."""
    return f"{server.ip_address}:{server.port}"


def redact_management_url(management_url: str) -> str:
    """Strip the secret path from a management URL for logging."""
    parsed = httpx.URL(management_url)
    return f"{parsed.scheme}://{parsed.host}:{parsed.port}/***"


class ProvisioningClient:
    """Client for the access-key management API of managed servers.

    One client serves every server; the target is chosen per call from the
    server record or the stored management URL.

    Example usage:
        async with ProvisioningClient(ProvisioningConfig()) as client:
            credential = await client.issue(server)
            ...
            await client.revoke(credential.management_url, credential.credential_id)
    """

    def __init__(self, config: ProvisioningConfig) -> None:
        """Initialize provisioning client with configuration."""
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> ProvisioningClient:
        """Enter async context manager."""
        self._client = httpx.AsyncClient(
            timeout=self._config.timeout,
            verify=self._config.verify_tls,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get the HTTP client, raising if not in context."""
        if self._client is None:
            msg = "ProvisioningClient must be used as async context manager"
            raise RuntimeError(msg)
        return self._client

    def build_request(self) -> CreateAccessKeyRequest:
        """Generate the randomized body for a new access key."""
        port_span = self._config.port_max - self._config.port_min + 1
        return CreateAccessKeyRequest(
            name=f"key-{secrets.token_hex(4)}",
            method=self._config.encryption_method,
            password="".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(PASSWORD_LENGTH)),
            port=self._config.port_min + secrets.randbelow(port_span),
            limit=DataLimit(bytes=self._config.data_limit_bytes),
        )

    async def issue(self, server: Server) -> IssuedCredential:
        """Create a new access key on a server.

        Args:
            server: Target server from the inventory.

        Returns:
            The issued credential.

        Raises:
            ProvisioningConnectionError: Server unreachable or timed out.
            ProvisioningResponseError: Unexpected status or malformed body.
        """
        client = self._get_client()
        management_url = server.management_url
        body = self.build_request()

        try:
            response = await client.post(
                f"{management_url}/access-keys",
                json=body.model_dump(),
            )
        except httpx.RequestError as e:
            raise ProvisioningConnectionError(
                f"Cannot reach management API at {describe_server(server)}: {type(e).__name__}"
            ) from e

        if response.status_code != httpx.codes.CREATED:
            raise ProvisioningResponseError(
                f"Access key creation on {describe_server(server)} "
                f"returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            created = AccessKeyResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise ProvisioningResponseError(
                f"Malformed access key response from {describe_server(server)}",
                status_code=response.status_code,
            ) from e

        logger.info(
            "Access key created: server=%s, credential_id=%s",
            describe_server(server),
            created.id,
        )
        return IssuedCredential(
            credential_id=created.id,
            access_url=created.access_url,
            management_url=management_url,
        )

    async def revoke(self, management_url: str, credential_id: str) -> None:
        """Delete an access key from its server.

        Args:
            management_url: Base management URL stored with the key.
            credential_id: Identifier assigned by the server.

        Raises:
            ProvisioningNotFoundError: The key is already gone.
            ProvisioningConnectionError: Server unreachable or timed out.
            ProvisioningResponseError: Unexpected status.
        """
        client = self._get_client()
        target = redact_management_url(management_url)

        try:
            response = await client.delete(
                f"{management_url.rstrip('/')}/access-keys/{quote(credential_id, safe='')}"
            )
        except httpx.RequestError as e:
            raise ProvisioningConnectionError(
                f"Cannot reach management API at {target}: {type(e).__name__}"
            ) from e

        if response.status_code == httpx.codes.NOT_FOUND:
            raise ProvisioningNotFoundError(
                f"Access key {credential_id} not found at {target}"
            )
        if response.status_code != httpx.codes.NO_CONTENT:
            raise ProvisioningResponseError(
                f"Access key deletion at {target} returned {response.status_code}",
                status_code=response.status_code,
            )

        logger.info("Access key revoked: target=%s, credential_id=%s", target, credential_id)
