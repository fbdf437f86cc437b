"""Shared HTTP plumbing for external service clients."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from ..constants import RETRYABLE_STATUS_CODES
from ..errors import TransientServiceError


class ServiceClient:
    """POST JSON to an external service and map transport failures.

    Timeouts, connection problems and retryable status codes raise
    :class:`TransientServiceError`; any other response is returned to the
    caller for interpretation.
    """

    service_name = "service"

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self.url = url
        self._client = client
        self._timeout = timeout

    async def _post(
        self,
        json: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        if self._client is not None:
            return await self._send(self._client, json, headers, params)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await self._send(client, json, headers, params)

    async def _send(
        self,
        client: httpx.AsyncClient,
        json: Dict[str, Any],
        headers: Optional[Dict[str, str]],
        params: Optional[Dict[str, str]],
    ) -> httpx.Response:
        try:
            response = await client.post(
                self.url, json=json, headers=headers, params=params
            )
        except httpx.TimeoutException as e:
            raise TransientServiceError(f"{self.service_name} timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientServiceError(f"{self.service_name} unreachable: {e}") from e

        status = response.status_code
        if status in RETRYABLE_STATUS_CODES or status >= 500:
            raise TransientServiceError(
                f"{self.service_name} answered {status}",
                details={"status_code": status, "body": response.text[:500]},
            )
        return response
