"""Content fingerprinting of storage objects."""

from __future__ import annotations

import base64
import hashlib
import logging
from typing import Optional

import httpx

from .constants import RETRYABLE_STATUS_CODES
from .contracts import AccessGrant, ContentFingerprint, Permission
from .errors import ObjectNotFoundError, TransientFetchError

logger = logging.getLogger(__name__)


def digest_bytes(data: bytes) -> str:
    """Return the base64 MD5 digest used to name rebuilt artifacts."""
    return base64.b64encode(hashlib.md5(data).digest()).decode("ascii")


class ContentFingerprinter:
    """Download an object through its grant and hash the bytes."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
        chunk_size: int = 64 * 1024,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._chunk_size = chunk_size

    async def fingerprint(self, grant: AccessGrant) -> ContentFingerprint:
        if not grant.allows(Permission.READ):
            raise ObjectNotFoundError("Fingerprinting requires a readable grant")

        if self._client is not None:
            return await self._stream(self._client, grant)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await self._stream(client, grant)

    async def _stream(
        self, client: httpx.AsyncClient, grant: AccessGrant
    ) -> ContentFingerprint:
        md5 = hashlib.md5()
        size = 0
        try:
            async with client.stream("GET", grant.resource_uri) as response:
                self._raise_for_status(response)
                async for chunk in response.aiter_bytes(self._chunk_size):
                    md5.update(chunk)
                    size += len(chunk)
        except httpx.TimeoutException as e:
            raise TransientFetchError(f"Timed out downloading object: {e}") from e
        except httpx.TransportError as e:
            raise TransientFetchError(f"Failed to download object: {e}") from e

        digest = base64.b64encode(md5.digest()).decode("ascii")
        logger.info(f"Fingerprinted object: digest={digest} size={size}")
        return ContentFingerprint(digest=digest, size=size)

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        if status in RETRYABLE_STATUS_CODES or status >= 500:
            raise TransientFetchError(
                f"Storage answered {status}", details={"status_code": status}
            )
        raise ObjectNotFoundError(
            f"Object not retrievable (HTTP {status})", details={"status_code": status}
        )
