"""Access grant issuance for blob storage objects."""

from __future__ import annotations

import logging
from typing import Optional, Protocol
from urllib.parse import quote

from azure.storage.blob import BlobSasPermissions, BlobServiceClient, generate_blob_sas

from .config import StorageConfig
from .contracts import AccessGrant, GrantRequest, Permission
from .errors import GrantIssuanceError

logger = logging.getLogger(__name__)


class AccessGrantIssuer(Protocol):
    """Mints time-scoped grants for storage objects."""

    def issue(self, request: GrantRequest) -> AccessGrant:
        """Return a grant for ``request.container/request.blob_name``."""


class BlobSasGrantIssuer:
    """Sign Azure Blob service SAS URLs with the storage account key.

    Signing is a local computation; no request is sent to storage. The start
    time is omitted so the grant is valid as soon as storage receives it, which
    avoids clock skew between hosts.
    """

    def __init__(
        self,
        account_name: str,
        account_key: str,
        blob_endpoint: Optional[str] = None,
    ) -> None:
        self.account_name = account_name
        self._account_key = account_key
        self.blob_endpoint = (
            blob_endpoint or f"https://{account_name}.blob.core.windows.net"
        ).rstrip("/")

    @classmethod
    def from_config(cls, config: StorageConfig) -> "BlobSasGrantIssuer":
        if config.connection_string:
            try:
                client = BlobServiceClient.from_connection_string(config.connection_string)
            except ValueError as e:
                raise GrantIssuanceError(f"Invalid storage connection string: {e}") from e
            account_key = getattr(client.credential, "account_key", None)
            if not account_key:
                raise GrantIssuanceError("Storage connection string carries no account key")
            return cls(client.account_name, account_key, client.url)
        if not config.account_name or not config.account_key:
            raise GrantIssuanceError("Storage account name and key are required")
        return cls(config.account_name, config.account_key, config.blob_endpoint)

    def blob_url(self, container: str, blob_name: str) -> str:
        return f"{self.blob_endpoint}/{container}/{quote(blob_name, safe='~/')}"

    def issue(self, request: GrantRequest) -> AccessGrant:
        if not request.container or not request.blob_name:
            raise GrantIssuanceError("Container and blob name are required")
        if not request.permissions:
            raise GrantIssuanceError("A grant needs at least one permission")
        permission = BlobSasPermissions(
            read=Permission.READ in request.permissions,
            write=Permission.WRITE in request.permissions,
        )
        try:
            token = generate_blob_sas(
                account_name=self.account_name,
                container_name=request.container,
                blob_name=request.blob_name,
                account_key=self._account_key,
                permission=permission,
                expiry=request.expiry,
            )
        except Exception as e:
            raise GrantIssuanceError(
                f"Failed to sign grant for {request.container}/{request.blob_name}: {e}",
                details={"container": request.container, "blob": request.blob_name},
            ) from e

        grant = AccessGrant(
            resource_uri=f"{self.blob_url(request.container, request.blob_name)}?{token}",
            permissions=request.permissions,
            issued_at=request.issued_at,
            expiry=request.expiry,
        )
        logger.info(
            f"Issued {sorted(p.value for p in request.permissions)} grant for "
            f"{request.container}/{request.blob_name} expiring {request.expiry.isoformat()}"
        )
        return grant
